"""
tests/test_configuration_items_routes.py -- Integration tests for the CMDB routes.

These tests exercise the full stack: FastAPI routing -> identity and policy
dependencies -> validators -> CMDBStore -> response envelope.

Coverage:
  - Anonymous reads: list, filters, ?id=, /{id}, /ci-types
  - Mutations without a header are stamped "anonymous"; a bad header is a 401
  - Create: 201 with defaults, 400 on missing fields / bad enums / unknown group, no row written
  - Replace: full overwrite, 404 for a missing id, body ciId form
  - Delete: referenced -> 400 and row intact, unreferenced -> 200 and removed

Fixtures used (from conftest.py):
  - api_client: (client, user_store, cmdb)
  - as_user: identity header for a plain directory user
"""

from __future__ import annotations

from cmdb.models import ConfigurationItem


def _create(client, headers, **fields):
    return client.post("/api/configuration-items", json=fields, headers=headers)


class TestCiAuth:
    """Every CI route accepts anonymous callers; a broken header is still rejected."""

    def test_create_without_header(self, api_client) -> None:
        """POST {ciName, ciType} with no principal header -> 201 stamped as anonymous."""
        client, _, cmdb = api_client
        resp = client.post("/api/configuration-items", json={"ciName": "srv01", "ciType": "Server"})
        assert resp.status_code == 201, f"Expected 201, got {resp.status_code}: {resp.text}"
        data = resp.json()["data"]
        assert data["CiName"] == "srv01"
        assert data["Status"] == "Active"
        assert data["Environment"] == "Production"
        assert cmdb.get_item(data["CiId"]).created_by == "anonymous"

    def test_replace_without_header(self, api_client) -> None:
        client, _, cmdb = api_client
        ci_id = cmdb.create_item(ConfigurationItem(ci_name="anon-put", ci_type="Server"), "seed")
        resp = client.put(f"/api/configuration-items/{ci_id}", json={"ciName": "anon-put-2", "ciType": "Server"})
        assert resp.status_code == 200, resp.text
        assert cmdb.get_item(ci_id).modified_by == "anonymous"

    def test_create_with_garbage_header(self, api_client) -> None:
        """An undecodable principal header is a 401 authentication_error and nothing is written."""
        client, _, cmdb = api_client
        before = len(cmdb.list_items())
        resp = client.post(
            "/api/configuration-items",
            json={"ciName": "x", "ciType": "Server"},
            headers={"x-ms-client-principal": "%%%not-base64%%%"},
        )
        assert resp.status_code == 401
        assert resp.json()["code"] == "authentication_error"
        assert len(cmdb.list_items()) == before

    def test_delete_without_header(self, api_client) -> None:
        client, _, cmdb = api_client
        ci_id = cmdb.create_item(ConfigurationItem(ci_name="anon-delete", ci_type="Server"), "seed")
        resp = client.delete(f"/api/configuration-items/{ci_id}")
        assert resp.status_code == 200, resp.text
        assert not cmdb.item_exists(ci_id)

    def test_delete_with_garbage_header(self, api_client) -> None:
        client, _, _ = api_client
        resp = client.delete("/api/configuration-items/1", headers={"x-ms-client-principal": "e30="})  # "{}"
        assert resp.status_code == 401

    def test_list_is_anonymous(self, api_client) -> None:
        client, _, _ = api_client
        resp = client.get("/api/configuration-items")
        assert resp.status_code == 200
        assert resp.json()["success"] is True
        assert isinstance(resp.json()["data"], list)


class TestCiCreate:
    def test_create_applies_defaults(self, api_client, as_user) -> None:
        """POST {ciName, ciType} -> 201 with Active/Production defaults and the caller as creator."""
        client, _, cmdb = api_client
        resp = _create(client, as_user, ciName="srv01", ciType="Server")
        assert resp.status_code == 201, f"Expected 201, got {resp.status_code}: {resp.text}"
        body = resp.json()
        assert body["success"] is True
        assert body["message"] == "Configuration Item created successfully"
        data = body["data"]
        assert set(data) == {"CiId", "CiName", "CiType", "Environment", "Status"}
        assert data["CiName"] == "srv01"
        assert data["Status"] == "Active"
        assert data["Environment"] == "Production"
        assert cmdb.get_item(data["CiId"]).created_by == "user@test.com"

    def test_create_missing_name(self, api_client, as_user) -> None:
        """Missing ciName -> 400 and nothing inserted."""
        client, _, cmdb = api_client
        before = len(cmdb.list_items())
        resp = _create(client, as_user, ciType="Server")
        assert resp.status_code == 400
        assert resp.json()["error"] == "CI name is required"
        assert resp.json()["code"] == "validation_error"
        assert len(cmdb.list_items()) == before

    def test_create_missing_type(self, api_client, as_user) -> None:
        client, _, cmdb = api_client
        before = len(cmdb.list_items())
        resp = _create(client, as_user, ciName="no-type")
        assert resp.status_code == 400
        assert resp.json()["error"] == "CI type is required"
        assert len(cmdb.list_items()) == before

    def test_create_bad_status(self, api_client, as_user) -> None:
        client, _, _ = api_client
        resp = _create(client, as_user, ciName="x", ciType="Server", status="Exploded")
        assert resp.status_code == 400
        assert resp.json()["error"].startswith("Status must be one of")

    def test_create_unknown_support_group(self, api_client, as_user) -> None:
        client, _, _ = api_client
        resp = _create(client, as_user, ciName="x", ciType="Server", supportGroupId=98765)
        assert resp.status_code == 400
        assert resp.json()["details"]["field"] == "supportGroupId"

    def test_create_wrong_json_type(self, api_client, as_user) -> None:
        """Schema errors (cost not a number) are rendered as a 400 validation_error."""
        client, _, _ = api_client
        resp = _create(client, as_user, ciName="x", ciType="Server", cost="lots")
        assert resp.status_code == 400
        assert resp.json()["code"] == "validation_error"
        assert isinstance(resp.json()["details"], list)

    def test_create_full_record(self, api_client, as_user) -> None:
        client, user_store, _ = api_client
        group = user_store.list_groups()[0]
        resp = _create(
            client,
            as_user,
            ciName="db-main",
            ciType="Database",
            subType="PostgreSQL",
            environment="Staging",
            supportGroupId=group.id,
            attributes={"version": "16", "replicas": 2},
            cost=99.95,
            purchaseDate="2024-01-15",
        )
        assert resp.status_code == 201
        detail = client.get(f"/api/configuration-items/{resp.json()['data']['CiId']}").json()["data"]
        assert detail["SubType"] == "PostgreSQL"
        assert detail["Environment"] == "Staging"
        assert detail["SupportGroup"] == group.group_name
        assert detail["Attributes"] == {"version": "16", "replicas": 2}
        assert detail["Cost"] == 99.95
        assert detail["PurchaseDate"] == "2024-01-15"


class TestCiRead:
    def test_filters_and_ordering(self, api_client, as_user) -> None:
        """GET ?status=Active&type=Server returns only matching rows by name ascending."""
        client, _, _ = api_client
        for name, ci_type, status in (
            ("filter-zeta", "Server", "Active"),
            ("filter-alpha", "Server", "Active"),
            ("filter-beta", "Server", "Inactive"),
            ("filter-gamma", "Router", "Active"),
        ):
            assert _create(client, as_user, ciName=name, ciType=ci_type, status=status).status_code == 201

        resp = client.get("/api/configuration-items", params={"status": "Active", "type": "Server"})
        assert resp.status_code == 200
        rows = resp.json()["data"]
        assert all(r["Status"] == "Active" and r["CiType"] == "Server" for r in rows)
        names = [r["CiName"] for r in rows]
        assert names == sorted(names)
        assert "filter-alpha" in names and "filter-zeta" in names
        assert "filter-beta" not in names and "filter-gamma" not in names

    def test_list_rows_are_summaries(self, api_client, as_user) -> None:
        client, _, _ = api_client
        _create(client, as_user, ciName="summary-1", ciType="Server", attributes={"a": 1})
        rows = client.get("/api/configuration-items").json()["data"]
        assert "Attributes" not in rows[0]
        assert "SupportGroup" in rows[0]

    def test_id_query_short_circuits_filters(self, api_client, as_user) -> None:
        client, _, _ = api_client
        ci_id = _create(client, as_user, ciName="by-id", ciType="Server").json()["data"]["CiId"]
        resp = client.get("/api/configuration-items", params={"id": ci_id, "status": "Inactive"})
        assert resp.status_code == 200
        assert resp.json()["data"]["CiId"] == ci_id

    def test_missing_id(self, api_client) -> None:
        client, _, _ = api_client
        for url in ("/api/configuration-items?id=999999", "/api/configuration-items/999999"):
            resp = client.get(url)
            assert resp.status_code == 404, f"{url}: expected 404, got {resp.status_code}"
            assert resp.json()["error"] == "Configuration Item not found"

    def test_non_numeric_id(self, api_client) -> None:
        client, _, _ = api_client
        assert client.get("/api/configuration-items/abc").status_code == 400

    def test_ci_types(self, api_client) -> None:
        client, _, _ = api_client
        resp = client.get("/api/ci-types")
        assert resp.status_code == 200
        first = resp.json()["data"][0]
        assert set(first) == {"TypeId", "TypeName", "Category", "Icon"}


class TestCiReplace:
    def test_replace_overwrites(self, api_client, as_user) -> None:
        """PUT writes every mutable field; fields left out become null."""
        client, _, cmdb = api_client
        ci_id = _create(client, as_user, ciName="put-me", ciType="Server", owner="ops", location="DC1").json()["data"]["CiId"]

        resp = client.put(
            f"/api/configuration-items/{ci_id}",
            json={"ciName": "put-me-2", "ciType": "Server", "status": "Maintenance"},
            headers=as_user,
        )
        assert resp.status_code == 200, resp.text
        assert resp.json()["message"] == "Configuration Item updated successfully"
        assert resp.json()["data"]["CiName"] == "put-me-2"

        item = cmdb.get_item(ci_id)
        assert item.status == "Maintenance"
        assert item.environment == "Production"
        assert item.owner is None and item.location is None
        assert item.modified_by == "user@test.com"

    def test_replace_with_id_in_body(self, api_client, as_user) -> None:
        client, _, _ = api_client
        ci_id = _create(client, as_user, ciName="body-id", ciType="Server").json()["data"]["CiId"]
        resp = client.put(
            "/api/configuration-items",
            json={"ciId": ci_id, "ciName": "body-id-2", "ciType": "Server"},
            headers=as_user,
        )
        assert resp.status_code == 200
        assert resp.json()["data"]["CiName"] == "body-id-2"

    def test_replace_without_any_id(self, api_client, as_user) -> None:
        client, _, _ = api_client
        resp = client.put("/api/configuration-items", json={"ciName": "x", "ciType": "Server"}, headers=as_user)
        assert resp.status_code == 400
        assert resp.json()["error"] == "CI ID is required"

    def test_replace_missing_item(self, api_client, as_user) -> None:
        client, _, _ = api_client
        resp = client.put("/api/configuration-items/999999", json={"ciName": "x", "ciType": "Server"}, headers=as_user)
        assert resp.status_code == 404

    def test_replace_validates_before_writing(self, api_client, as_user) -> None:
        client, _, cmdb = api_client
        ci_id = _create(client, as_user, ciName="keep-me", ciType="Server").json()["data"]["CiId"]
        resp = client.put(f"/api/configuration-items/{ci_id}", json={"ciType": "Server"}, headers=as_user)
        assert resp.status_code == 400
        assert cmdb.get_item(ci_id).ci_name == "keep-me"


class TestCiDelete:
    def test_referenced_item_kept(self, api_client, as_user) -> None:
        """A CI on either end of a relationship cannot be deleted."""
        client, _, cmdb = api_client
        source = cmdb.create_item(ConfigurationItem(ci_name="rel-src", ci_type="Server"), "seed")
        target = cmdb.create_item(ConfigurationItem(ci_name="rel-dst", ci_type="Database"), "seed")
        cmdb.add_relationship(source, target, "DependsOn", "seed")

        resp = client.delete(f"/api/configuration-items/{target}", headers=as_user)
        assert resp.status_code == 400, f"Expected 400, got {resp.status_code}: {resp.text}"
        assert resp.json()["code"] == "conflict"
        assert resp.json()["error"].startswith("Cannot delete CI with existing relationships")
        assert cmdb.item_exists(target)

    def test_service_mapped_item_kept(self, api_client, as_user) -> None:
        client, _, cmdb = api_client
        ci_id = cmdb.create_item(ConfigurationItem(ci_name="mapped", ci_type="Application"), "seed")
        cmdb.map_to_service(cmdb.create_service("Payroll", "seed"), ci_id, "seed")
        assert client.delete(f"/api/configuration-items/{ci_id}", headers=as_user).status_code == 400
        assert cmdb.item_exists(ci_id)

    def test_unreferenced_item_removed(self, api_client, as_user) -> None:
        client, _, cmdb = api_client
        ci_id = _create(client, as_user, ciName="delete-me", ciType="Server").json()["data"]["CiId"]
        resp = client.delete(f"/api/configuration-items/{ci_id}", headers=as_user)
        assert resp.status_code == 200
        assert resp.json() == {"success": True, "data": None, "message": "Configuration Item deleted successfully"}
        assert not cmdb.item_exists(ci_id)

    def test_delete_missing_item(self, api_client, as_user) -> None:
        client, _, _ = api_client
        assert client.delete("/api/configuration-items/999999", headers=as_user).status_code == 404

    def test_delete_without_id(self, api_client, as_user) -> None:
        client, _, _ = api_client
        resp = client.delete("/api/configuration-items", headers=as_user)
        assert resp.status_code == 400
        assert resp.json()["error"] == "CI ID is required"
