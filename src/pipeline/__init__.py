"""Record mutation pipeline and its detached side effects (triggers, playbooks)."""
