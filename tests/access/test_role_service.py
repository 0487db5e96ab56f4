"""Tests for RoleService rules: names, system roles, defaults, assignment."""

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from conftest import ORG_ID, module_perm
from src.access.errors import ConflictState, NotFound, ValidationFailed
from src.access.roles import RoleService, default_role_templates
from src.audit.writer import AuditLogWriter
from src.memory.search_cache import SearchResultCache
from src.models.access import CreateRoleRequest, FieldsConfig, UpdateRoleRequest
from src.models.common import ActionType, ActorType, RecordVisibility
from src.repositories.roles import RoleRepository, UserRoleRepository


class TestDefaultTemplates:
    def test_four_roles_one_default(self) -> None:
        templates = default_role_templates()
        assert [t["name"] for t in templates] == ["Admin", "Manager", "Sales Rep", "Read Only"]
        assert [t["name"] for t in templates if t["is_default"]] == ["Sales Rep"]
        assert [t["name"] for t in templates if t["is_system"]] == ["Admin"]

    def test_sales_rep_is_own_only_without_delete(self) -> None:
        rep = next(t for t in default_role_templates() if t["name"] == "Sales Rep")
        for perm in rep["permissions"]:
            assert perm.record_visibility == RecordVisibility.OWN_ONLY
            assert ActionType.DELETE not in perm.actions
        assert "settings" not in {p.module for p in rep["permissions"]}


@pytest.mark.anyio
class TestCreateAndUpdate:
    async def test_duplicate_name_rejected(self, db_session: AsyncSession) -> None:
        service = RoleService(db_session)
        await service.create_role(ORG_ID, CreateRoleRequest(name="Support"))
        with pytest.raises(ConflictState) as exc_info:
            await service.create_role(ORG_ID, CreateRoleRequest(name="Support"))
        assert exc_info.value.status_code == 400

    async def test_same_name_in_other_org_allowed(self, db_session: AsyncSession) -> None:
        service = RoleService(db_session)
        await service.create_role(ORG_ID, CreateRoleRequest(name="Support"))
        role = await service.create_role("org_2", CreateRoleRequest(name="Support"))
        assert role.org_id == "org_2"

    async def test_single_default_per_org(self, db_session: AsyncSession) -> None:
        service = RoleService(db_session)
        first = await service.create_role(ORG_ID, CreateRoleRequest(name="A", is_default=True))
        second = await service.create_role(ORG_ID, CreateRoleRequest(name="B", is_default=True))
        await db_session.refresh(first)
        assert not first.is_default
        assert second.is_default

        await service.update_role(ORG_ID, first.role_id, UpdateRoleRequest(is_default=True))
        await db_session.refresh(second)
        assert first.is_default and not second.is_default

    async def test_system_role_cannot_be_renamed(self, db_session: AsyncSession) -> None:
        service = RoleService(db_session)
        admin = (await service.create_default_roles(ORG_ID))[0]
        with pytest.raises(ConflictState, match="rename"):
            await service.update_role(ORG_ID, admin.role_id, UpdateRoleRequest(name="Boss"))

    async def test_system_role_cannot_be_field_restricted(
        self, db_session: AsyncSession,
    ) -> None:
        service = RoleService(db_session)
        admin = (await service.create_default_roles(ORG_ID))[0]
        body = UpdateRoleRequest(permissions=[module_perm("leads", view=["first_name"])])
        with pytest.raises(ConflictState, match="restrict fields"):
            await service.update_role(ORG_ID, admin.role_id, body)

    async def test_replace_permissions(self, db_session: AsyncSession) -> None:
        service = RoleService(db_session)
        role = await service.create_role(
            ORG_ID, CreateRoleRequest(name="Support", permissions=[module_perm("leads")]),
        )
        await service.update_role(ORG_ID, role.role_id, UpdateRoleRequest(permissions=[
            module_perm("leads", ["view"]),
            module_perm("tickets", ["view", "edit"]),
        ]))
        modules = {p.module: p.actions for p in role.permissions}
        assert modules == {"leads": ["view"], "tickets": ["view", "edit"]}

    async def test_unknown_role_is_not_found(self, db_session: AsyncSession) -> None:
        service = RoleService(db_session)
        other = await service.create_role("org_2", CreateRoleRequest(name="X"))
        with pytest.raises(NotFound):
            await service.get_role(ORG_ID, other.role_id)


@pytest.mark.anyio
class TestDelete:
    async def test_role_with_users_is_conflict(self, db_session: AsyncSession, grant) -> None:
        role = await grant("u1", module_perm("leads"))
        with pytest.raises(ConflictState) as exc_info:
            await RoleService(db_session).delete_role(ORG_ID, role.role_id)
        assert exc_info.value.status_code == 409

    async def test_system_role_cannot_be_deleted(self, db_session: AsyncSession) -> None:
        service = RoleService(db_session)
        admin = (await service.create_default_roles(ORG_ID))[0]
        with pytest.raises(ConflictState) as exc_info:
            await service.delete_role(ORG_ID, admin.role_id)
        assert exc_info.value.status_code == 400

    async def test_unused_role_deleted(self, db_session: AsyncSession) -> None:
        service = RoleService(db_session)
        role = await service.create_role(ORG_ID, CreateRoleRequest(name="Temp"))
        await service.delete_role(ORG_ID, role.role_id)
        assert await RoleRepository(db_session).get(role.role_id, ORG_ID) is None


@pytest.mark.anyio
class TestDefaults:
    async def test_bootstrap_only_once(self, db_session: AsyncSession) -> None:
        service = RoleService(db_session)
        assert len(await service.create_default_roles(ORG_ID)) == 4
        assert await service.create_default_roles(ORG_ID) == []
        assert len(await service.list_roles(ORG_ID)) == 4


@pytest.mark.anyio
class TestAssignment:
    async def test_assign_rejects_foreign_role(self, db_session: AsyncSession) -> None:
        service = RoleService(db_session)
        foreign = await service.create_role("org_2", CreateRoleRequest(name="X"))
        with pytest.raises(ValidationFailed):
            await service.assign_role(ORG_ID, "u1", foreign.role_id)

    async def test_reassign_replaces_single_assignment(self, db_session: AsyncSession) -> None:
        service = RoleService(db_session)
        a = await service.create_role(ORG_ID, CreateRoleRequest(name="A"))
        b = await service.create_role(ORG_ID, CreateRoleRequest(name="B"))
        await service.assign_role(ORG_ID, "u1", a.role_id)
        await service.assign_role(ORG_ID, "u1", b.role_id)
        rows = await UserRoleRepository(db_session).list_for_org(ORG_ID)
        assert [(r.user_id, r.role_id) for r in rows] == [("u1", b.role_id)]

    async def test_default_role_assignment(self, db_session: AsyncSession) -> None:
        service = RoleService(db_session)
        await service.create_default_roles(ORG_ID)
        assignment = await service.assign_default_role(ORG_ID, "new_user")
        assert assignment.role.name == "Sales Rep"

    async def test_falls_back_to_first_non_system_role(self, db_session: AsyncSession) -> None:
        service = RoleService(db_session)
        await RoleRepository(db_session).create(org_id=ORG_ID, name="Admin", is_system=True)
        await service.create_role(ORG_ID, CreateRoleRequest(
            name="Support",
            permissions=[module_perm("tickets")],
        ))
        assignment = await service.assign_default_role(ORG_ID, "new_user")
        assert assignment.role.name == "Support"

    async def test_no_candidate_role(self, db_session: AsyncSession) -> None:
        assert await RoleService(db_session).assign_default_role(ORG_ID, "u1") is None

    async def test_existing_assignment_kept(self, db_session: AsyncSession, grant) -> None:
        role = await grant("u1", module_perm("leads"), name="Custom")
        assignment = await RoleService(db_session).assign_default_role(ORG_ID, "u1")
        assert assignment.role_id == role.role_id

    async def test_cannot_remove_self(self, db_session: AsyncSession, grant) -> None:
        await grant("u1", module_perm("leads"))
        with pytest.raises(ConflictState, match="yourself"):
            await RoleService(db_session).remove_user(ORG_ID, "u1", acting_user_id="u1")

    async def test_remove_unknown_user(self, db_session: AsyncSession) -> None:
        with pytest.raises(NotFound):
            await RoleService(db_session).remove_user(ORG_ID, "ghost", acting_user_id="admin")


@pytest.mark.anyio
class TestAuditAndCache:
    @pytest.fixture
    def service(self, db_session: AsyncSession, audit_writer: AuditLogWriter,
                search_cache: SearchResultCache) -> RoleService:
        audit = audit_writer.create_audit_context(ORG_ID, "admin", ActorType.USER, "req-roles")
        return RoleService(db_session, audit=audit, search_cache=search_cache)

    async def test_role_changes_audited(
        self, service: RoleService, audit_writer: AuditLogWriter,
    ) -> None:
        role = await service.create_role(
            ORG_ID, CreateRoleRequest(name="Support", permissions=[module_perm("leads")]),
        )
        await service.update_role(ORG_ID, role.role_id, UpdateRoleRequest(
            permissions=[module_perm("leads", ["view"])],
        ))
        await service.delete_role(ORG_ID, role.role_id)

        entries = await audit_writer.get_audit_logs_by_request_id("req-roles")
        assert [(e.action, e.module, e.record_id) for e in entries] == [
            ("CREATE", "ROLE", str(role.role_id)),
            ("UPDATE", "ROLE", str(role.role_id)),
            ("DELETE", "ROLE", str(role.role_id)),
        ]
        assert {e.actor_type for e in entries} == {"USER"}
        update = entries[1]
        assert "delete" in update.previous_state["permissions"][0]["actions"]
        assert update.new_state["permissions"][0]["actions"] == ["view"]
        assert entries[2].new_state is None

    async def test_assignment_changes_audited(
        self, service: RoleService, audit_writer: AuditLogWriter,
    ) -> None:
        a = await service.create_role(ORG_ID, CreateRoleRequest(name="A"))
        b = await service.create_role(ORG_ID, CreateRoleRequest(name="B"))
        await service.assign_role(ORG_ID, "u1", a.role_id)
        await service.assign_role(ORG_ID, "u1", b.role_id)
        await service.remove_user(ORG_ID, "u1", acting_user_id="admin")

        page = await audit_writer.get_audit_logs(ORG_ID, module="ROLE", record_id="u1")
        assert sorted(e.action for e in page.logs) == ["CREATE", "DELETE", "UPDATE"]
        moved = next(e for e in page.logs if e.action == "UPDATE")
        assert moved.previous_state["role_name"] == "A"
        assert moved.new_state["role_name"] == "B"

    async def test_assignment_change_clears_search_cache(
        self, service: RoleService, search_cache: SearchResultCache,
    ) -> None:
        role = await service.create_role(ORG_ID, CreateRoleRequest(name="A"))
        search_cache.set(search_cache.key(ORG_ID, "leads", "u1", "doe"), {"count": 1})
        search_cache.set(search_cache.key("org_2", "leads", "u9", "doe"), {"count": 1})

        await service.assign_role(ORG_ID, "u1", role.role_id)
        assert search_cache.get(search_cache.key(ORG_ID, "leads", "u1", "doe")) is None
        assert len(search_cache) == 1


class TestFieldsConfig:
    def test_restricted_flag(self) -> None:
        assert not module_perm("leads").is_field_restricted
        assert module_perm("leads", edit=["first_name"]).is_field_restricted
        assert FieldsConfig().view is None
