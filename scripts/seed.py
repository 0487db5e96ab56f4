"""Seed script — bootstrap a demo organization in the CRM core database.

Creates:
1. The default role set (Admin, Manager, Sales Rep, Read Only)
2. An Admin assignment for the demo owner
3. A Sales Rep assignment for the demo rep
4. One onboarding playbook fired when an account becomes a customer

Idempotent: safe to run multiple times — skips if the org already has roles.

Usage:
    python -m scripts.seed          # against DATABASE_URL from .env
    pytest tests/scripts/test_seed.py  # against aiosqlite in-memory
"""

import asyncio
import os

from sqlalchemy.ext.asyncio import AsyncSession

from src.access.roles import RoleService
from src.models.playbooks import AssigneeType, PlaybookTrigger
from src.repositories.playbooks import PlaybookRepository
from src.repositories.roles import RoleRepository

DEMO_ORG_ID = os.environ.get("SEED_ORG_ID", "org_demo")
DEMO_ADMIN_ID = os.environ.get("SEED_ADMIN_USER_ID", "user_demo_admin")
DEMO_REP_ID = os.environ.get("SEED_REP_USER_ID", "user_demo_rep")

ONBOARDING_STEPS = [
    {"order": 1, "day_offset": 0, "title": "Send welcome email",
     "task_type": "EMAIL", "assignee_type": AssigneeType.CSM.value},
    {"order": 2, "day_offset": 2, "title": "Kickoff call",
     "task_type": "CALL", "assignee_type": AssigneeType.ACCOUNT_OWNER.value},
    {"order": 3, "day_offset": 14, "title": "Two-week check-in",
     "task_type": "MEETING", "assignee_type": AssigneeType.CSM.value},
]


async def seed_demo(
    session: AsyncSession,
    org_id: str = DEMO_ORG_ID,
    admin_user_id: str = DEMO_ADMIN_ID,
    rep_user_id: str = DEMO_REP_ID,
) -> dict:
    """Create the demo org's roles, assignments and playbook.

    Returns a summary dict; ``created`` is False when the org was already
    seeded. Does not commit.
    """
    if await RoleRepository(session).count_for_org(org_id) > 0:
        return {"created": False, "org_id": org_id}

    service = RoleService(session)
    roles = {r.name: r for r in await service.create_default_roles(org_id)}
    await service.assign_role(org_id, admin_user_id, roles["Admin"].role_id)
    await service.assign_default_role(org_id, rep_user_id)

    playbook = await PlaybookRepository(session).create(
        org_id=org_id,
        name="New customer onboarding",
        description="Welcome sequence for newly converted customers",
        trigger=PlaybookTrigger.NEW_CUSTOMER.value,
        steps=ONBOARDING_STEPS,
        created_by_id=admin_user_id,
    )
    return {
        "created": True,
        "org_id": org_id,
        "roles": sorted(roles),
        "admin_user_id": admin_user_id,
        "rep_user_id": rep_user_id,
        "playbook_id": str(playbook.playbook_id),
    }


async def _run_seed() -> None:
    """Run the seed against the real database (idempotent)."""
    from src.db.session import async_session_factory

    async with async_session_factory() as session:
        result = await seed_demo(session)

        if not result["created"]:
            print(f"Org {result['org_id']} already has roles. Skipping.")
            return

        await session.commit()

        print("Seed complete.")
        print(f"  Org:       {result['org_id']}")
        print(f"  Roles:     {', '.join(result['roles'])}")
        print(f"  Admin:     {result['admin_user_id']}")
        print(f"  Sales Rep: {result['rep_user_id']}")
        print(f"  Playbook:  {result['playbook_id']}")


if __name__ == "__main__":
    asyncio.run(_run_seed())
