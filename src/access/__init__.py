"""Access control: permission resolution, record visibility and field masks.

Every check fails closed. A user with no role assignment, or a role with no
permission row for a module, is denied.
"""
