"""HTTP tests for /v1/roles and /v1/team."""

import pytest
from httpx import AsyncClient

from conftest import auth, module_perm

SUPPORT_ROLE = {
    "name": "Support",
    "description": "Ticket desk",
    "permissions": [
        {"module": "tickets", "actions": ["view", "edit"], "record_visibility": "UNASSIGNED"},
        {"module": "employees", "actions": ["view"], "fields": {"view": ["first_name"]}},
    ],
}


@pytest.fixture
async def admin(grant) -> dict[str, str]:
    await grant("admin", name="Admin")
    return auth("admin")


@pytest.mark.anyio
class TestRoleRoutes:
    async def test_requires_settings_permission(self, client: AsyncClient, grant) -> None:
        await grant("rep", module_perm("leads"))
        response = await client.get("/v1/roles", headers=auth("rep"))
        assert response.status_code == 403

    async def test_create_and_get(self, client: AsyncClient, admin: dict) -> None:
        created = await client.post("/v1/roles", json=SUPPORT_ROLE, headers=admin)
        assert created.status_code == 201
        role = created.json()
        assert role["user_count"] == 0
        perms = {p["module"]: p for p in role["permissions"]}
        assert perms["tickets"]["record_visibility"] == "UNASSIGNED"
        assert perms["tickets"]["fields"] == {"view": None, "edit": None}
        assert perms["employees"]["fields"]["view"] == ["first_name"]

        fetched = await client.get(f"/v1/roles/{role['id']}", headers=admin)
        assert fetched.json()["name"] == "Support"

    async def test_duplicate_name_is_400(self, client: AsyncClient, admin: dict) -> None:
        await client.post("/v1/roles", json=SUPPORT_ROLE, headers=admin)
        response = await client.post("/v1/roles", json=SUPPORT_ROLE, headers=admin)
        assert response.status_code == 400

    async def test_invalid_body_is_400(self, client: AsyncClient, admin: dict) -> None:
        response = await client.post("/v1/roles", json={"name": ""}, headers=admin)
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid input"

    async def test_update_replaces_permissions(self, client: AsyncClient, admin: dict) -> None:
        role_id = (await client.post("/v1/roles", json=SUPPORT_ROLE, headers=admin)).json()["id"]
        response = await client.put(
            f"/v1/roles/{role_id}",
            json={"permissions": [{"module": "leads", "actions": ["view"]}]},
            headers=admin,
        )
        assert response.status_code == 200
        assert [p["module"] for p in response.json()["permissions"]] == ["leads"]

    async def test_defaults_fill_in_missing_roles(self, client: AsyncClient, admin: dict) -> None:
        response = await client.post("/v1/roles/defaults", headers=admin)
        assert response.status_code == 201
        assert sorted(r["name"] for r in response.json()["roles"]) == [
            "Manager", "Read Only", "Sales Rep",
        ]
        again = await client.post("/v1/roles/defaults", headers=admin)
        assert again.json()["roles"] == []

        listing = (await client.get("/v1/roles", headers=admin)).json()["roles"]
        assert [r["name"] for r in listing if r["is_default"]] == ["Sales Rep"]
        assert next(r for r in listing if r["name"] == "Admin")["user_count"] == 1

    async def test_delete_role_with_users_is_409(
        self, client: AsyncClient, admin: dict, grant,
    ) -> None:
        role = await grant("someone", module_perm("leads"), name="Busy")
        response = await client.delete(f"/v1/roles/{role.role_id}", headers=admin)
        assert response.status_code == 409

    async def test_delete_unused_role(self, client: AsyncClient, admin: dict) -> None:
        role_id = (await client.post("/v1/roles", json=SUPPORT_ROLE, headers=admin)).json()["id"]
        response = await client.delete(f"/v1/roles/{role_id}", headers=admin)
        assert response.json() == {"success": True}
        assert (await client.get(f"/v1/roles/{role_id}", headers=admin)).status_code == 404


@pytest.mark.anyio
class TestTeamRoutes:
    async def test_assign_role_takes_effect_next_request(
        self, client: AsyncClient, admin: dict,
    ) -> None:
        role_id = (await client.post("/v1/roles", json=SUPPORT_ROLE, headers=admin)).json()["id"]
        assert (await client.get(
            "/v1/modules/tickets/records", headers=auth("agent"),
        )).status_code == 403

        response = await client.put(
            "/v1/team/agent/role", json={"role_id": role_id}, headers=admin,
        )
        assert response.json()["user_role"] == {
            "user_id": "agent", "role": {"id": role_id, "name": "Support"},
        }
        assert (await client.get(
            "/v1/modules/tickets/records", headers=auth("agent"),
        )).status_code == 200

    async def test_assign_unknown_role_is_400(self, client: AsyncClient, admin: dict) -> None:
        response = await client.put(
            "/v1/team/agent/role",
            json={"role_id": "0190a4b2-0000-7000-8000-000000000000"},
            headers=admin,
        )
        assert response.status_code == 400

    async def test_onboard_assigns_default_role(self, client: AsyncClient, admin: dict) -> None:
        await client.post("/v1/roles/defaults", headers=admin)
        response = await client.post("/v1/team/newbie/onboard", headers=admin)
        assert response.json()["success"] is True
        assert response.json()["user_role"]["role"]["name"] == "Sales Rep"

    async def test_remove_user(self, client: AsyncClient, admin: dict, grant) -> None:
        await grant("leaver", module_perm("leads"))
        response = await client.delete("/v1/team/leaver", headers=admin)
        assert response.json() == {"success": True}
        assert (await client.get(
            "/v1/modules/leads/records", headers=auth("leaver"),
        )).status_code == 403

    async def test_cannot_remove_self(self, client: AsyncClient, admin: dict) -> None:
        response = await client.delete("/v1/team/admin", headers=admin)
        assert response.status_code == 400

    async def test_my_permissions(self, client: AsyncClient, grant) -> None:
        await grant("rep", module_perm(
            "leads", ["view", "create"], edit=["first_name"], visibility="OWN_ONLY",
        ), name="Rep")
        body = (await client.get("/v1/me/permissions", headers=auth("rep"))).json()
        assert body["role"]["name"] == "Rep"
        assert body["is_admin"] is False
        assert body["permissions"] == [{
            "module": "leads",
            "actions": ["create", "view"],
            "fields": {"view": None, "edit": ["first_name"]},
            "record_visibility": "OWN_ONLY",
        }]

    async def test_my_permissions_without_role(self, client: AsyncClient) -> None:
        body = (await client.get("/v1/me/permissions", headers=auth("ghost"))).json()
        assert body["role"] is None
        assert body["permissions"] == []


@pytest.mark.anyio
class TestRoleAuditTrail:
    async def test_role_routes_write_role_entries(self, client: AsyncClient, admin: dict) -> None:
        role_id = (await client.post("/v1/roles", json=SUPPORT_ROLE, headers=admin)).json()["id"]
        await client.put(f"/v1/roles/{role_id}", json={"description": "Desk"}, headers=admin)
        await client.delete(f"/v1/roles/{role_id}", headers=admin)

        body = (await client.get(
            f"/v1/audit-logs?module=ROLE&record_id={role_id}", headers=admin,
        )).json()
        assert [e["action"] for e in body["logs"]] == ["DELETE", "UPDATE", "CREATE"]
        assert {(e["actor_type"], e["actor_id"]) for e in body["logs"]} == {("USER", "admin")}
        update = next(e for e in body["logs"] if e["action"] == "UPDATE")
        assert update["previous_state"]["description"] == "Ticket desk"
        assert update["new_state"]["description"] == "Desk"

    async def test_team_routes_write_role_entries(self, client: AsyncClient, admin: dict) -> None:
        role_id = (await client.post("/v1/roles", json=SUPPORT_ROLE, headers=admin)).json()["id"]
        await client.put("/v1/team/agent/role", json={"role_id": role_id}, headers=admin)
        await client.delete("/v1/team/agent", headers=admin)

        body = (await client.get(
            "/v1/audit-logs?module=ROLE&record_id=agent", headers=admin,
        )).json()
        assert [e["action"] for e in body["logs"]] == ["DELETE", "CREATE"]
        assigned = body["logs"][1]
        assert assigned["new_state"] == {"user_id": "agent", "role_id": role_id, "role_name": "Support"}
        assert body["logs"][0]["previous_state"]["role_name"] == "Support"
