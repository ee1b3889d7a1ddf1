"""
HTTP API tests
"""
import pytest
from fastapi.testclient import TestClient

from dynapi.database import session_scope
from dynapi.models import AuditLog
from conftest import (
    ADMIN_APP_USER_ID, BUILDER_ID, INACTIVE_BUILDER_ID, OWNER_ID, VIEWER_APP_USER_ID, auth_header,
)
from test_function_registry import FakeCatalog, FakeSQLEngine

WIDGET_BY_ID = {
    "method": "GET",
    "path": "/widgets/:id",
    "sql": "SELECT * FROM widgets WHERE id = $1",
    "params": [{"name": "id", "in": "path", "type": "number", "required": True}],
    "is_protected": False,
}


@pytest.fixture
def client(widgets, seeded):
    """Test client over an injected runtime."""
    from dynapi.main import app
    app.state.runtime = widgets
    with TestClient(app) as test_client:
        yield test_client
    del app.state.runtime


@pytest.fixture
def owner():
    return auth_header(OWNER_ID)


@pytest.fixture
def builder():
    return auth_header(BUILDER_ID)


class TestSystemRoutes:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_root(self, client):
        assert client.get("/").status_code == 200


class TestEndpointAuthoringAPI:
    """Test /api/endpoints"""

    def test_requires_builder_token(self, client):
        response = client.get("/api/endpoints")
        assert response.status_code == 401
        assert response.json()["kind"] == "Unauthenticated"

        response = client.get("/api/endpoints", headers=auth_header(ADMIN_APP_USER_ID, "app"))
        assert response.status_code == 401

    def test_inactive_builder(self, client):
        response = client.get("/api/endpoints", headers=auth_header(INACTIVE_BUILDER_ID))
        assert response.status_code == 403
        assert response.json()["message"] == "Account not active"

    def test_create_then_call(self, client, builder):
        response = client.post("/api/endpoints", json=WIDGET_BY_ID, headers=builder)
        assert response.status_code == 200
        endpoint = response.json()["endpoint"]
        assert endpoint["params"] == WIDGET_BY_ID["params"]
        assert endpoint["created_by_id"] == BUILDER_ID

        response = client.get("/widgets/42")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "success"
        assert body["rows"][0]["name"] == "gear"

        response = client.get("/widgets/abc")
        assert response.status_code == 400
        assert response.json()["kind"] == "TypeMismatch"

    def test_list_and_get(self, client, builder):
        created = client.post("/api/endpoints", json=WIDGET_BY_ID, headers=builder).json()["endpoint"]

        listed = client.get("/api/endpoints", headers=builder).json()
        assert [e["id"] for e in listed["endpoints"]] == [created["id"]]

        fetched = client.get(f"/api/endpoints/{created['id']}", headers=builder)
        assert fetched.json()["endpoint"]["path"] == "/widgets/:id"

        missing = client.get("/api/endpoints/999", headers=builder)
        assert missing.status_code == 404
        assert missing.json()["kind"] == "NotFound"

    def test_invalid_definition(self, client, builder):
        response = client.post("/api/endpoints", json={**WIDGET_BY_ID, "path": "/api/widgets"}, headers=builder)
        assert response.status_code == 400
        assert response.json()["kind"] == "DefinitionError"

    def test_schema_validation(self, client, builder):
        response = client.post("/api/endpoints", json={"method": "GET", "path": "/x"}, headers=builder)
        assert response.status_code == 422

    def test_collision(self, client, builder):
        client.post("/api/endpoints", json=WIDGET_BY_ID, headers=builder)
        response = client.post("/api/endpoints", json={**WIDGET_BY_ID, "path": "/widgets/{key}", "params": []},
                               headers=builder)
        assert response.status_code == 409
        assert response.json()["kind"] == "Collision"

    def test_only_creator_or_owner_can_modify(self, client, builder, owner):
        created = client.post("/api/endpoints", json=WIDGET_BY_ID, headers=owner).json()["endpoint"]
        url = f"/api/endpoints/{created['id']}"

        response = client.put(url, json={**WIDGET_BY_ID, "description": "mine now"}, headers=builder)
        assert response.status_code == 403

        mine = client.post("/api/endpoints", json={**WIDGET_BY_ID, "path": "/parts/:id"}, headers=builder)
        mine_url = f"/api/endpoints/{mine.json()['endpoint']['id']}"
        response = client.put(mine_url, json={**WIDGET_BY_ID, "path": "/parts/:id", "description": "ok"},
                              headers=builder)
        assert response.status_code == 200
        assert response.json()["endpoint"]["description"] == "ok"

        response = client.put(mine_url, json={**WIDGET_BY_ID, "path": "/parts/:id", "is_active": False},
                              headers=owner)
        assert response.status_code == 200
        assert client.get("/parts/1").status_code == 404

    def test_delete(self, client, builder, session_factory):
        created = client.post("/api/endpoints", json=WIDGET_BY_ID, headers=builder).json()["endpoint"]

        response = client.delete(f"/api/endpoints/{created['id']}", headers=builder)
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}
        assert client.get("/widgets/42").status_code == 404

        with session_scope(session_factory) as db:
            actions = [a.action for a in db.query(AuditLog).order_by(AuditLog.id)]
        assert actions == ["endpoint_create", "endpoint_delete"]

    def test_failed_authoring_is_audited(self, client, builder, session_factory):
        client.post("/api/endpoints", json={**WIDGET_BY_ID, "path": "/api/widgets"}, headers=builder)
        with session_scope(session_factory) as db:
            audit = db.query(AuditLog).one()
            assert audit.status == "failure"
            assert audit.user_id == BUILDER_ID


class TestGeneratedEndpoints:
    """Test the catch-all dynamic surface"""

    def test_unknown_route(self, client):
        response = client.get("/no/such/route")
        assert response.status_code == 404
        assert response.json() == {"status": "error", "kind": "NoMatch", "message": "Endpoint not found"}

    def test_json_body(self, client, builder):
        client.post("/api/endpoints", json={
            "method": "POST",
            "path": "/widgets",
            "sql": "INSERT INTO widgets (id, name, price) VALUES (:id, :name, :price)",
            "params": [
                {"name": "id", "in": "body", "type": "number", "required": True},
                {"name": "name", "in": "body", "required": True},
                {"name": "price", "in": "body", "type": "number"},
            ],
        }, headers=builder)

        response = client.post("/widgets", json={"id": 8, "name": "spring", "price": 1.5})
        assert response.status_code == 200
        assert response.json()["rows_affected"] == 1

        response = client.post("/widgets", json={"name": "nameless"})
        assert response.status_code == 400
        assert response.json()["details"] == {"field": "id"}

    def test_percent_encoded_segment(self, client, builder):
        client.post("/api/endpoints", json={
            "method": "GET", "path": "/by-name/:name", "sql": "SELECT id FROM widgets WHERE name = $1",
        }, headers=builder)
        client.post("/api/tables", json={"sql": "INSERT INTO widgets (id, name) VALUES (9, 'a/b c')"},
                    headers=builder)

        response = client.get("/by-name/a%2Fb%20c")
        assert response.status_code == 200
        assert response.json()["rows"] == [{"id": 9}]

    def test_protected_endpoint_roles(self, client, builder):
        client.post("/api/endpoints", json={**WIDGET_BY_ID, "is_protected": True, "allowed_roles": ["admin"]},
                    headers=builder)

        assert client.get("/widgets/42").status_code == 401
        assert client.get("/widgets/42", headers=auth_header(VIEWER_APP_USER_ID, "app")).status_code == 403
        assert client.get("/widgets/42", headers=auth_header(ADMIN_APP_USER_ID, "app")).status_code == 200
        assert client.get("/widgets/42", headers=auth_header(OWNER_ID)).status_code == 200


class TestTablesAPI:
    """Test /api/tables"""

    def test_create_table(self, client, builder):
        response = client.post("/api/tables", json={"sql": "CREATE TABLE t (id INTEGER PRIMARY KEY)"},
                               headers=builder)
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["warnReplace"] is False
        assert body["warnings"] == []

    def test_destructive_statement_warns(self, client, builder):
        response = client.post("/api/tables", json={"sql": "DROP TABLE widgets"}, headers=builder)
        assert response.status_code == 200
        assert response.json()["warnings"]

    def test_blocked_statement(self, client, builder):
        response = client.post("/api/tables", json={"sql": "CREATE ROLE intruder"}, headers=builder)
        assert response.status_code == 400
        assert response.json()["kind"] == "DefinitionError"

    def test_requires_builder(self, client):
        response = client.post("/api/tables", json={"sql": "CREATE TABLE t (id INTEGER)"})
        assert response.status_code == 401


class TestFunctionsAPI:
    """Test /api/functions over an in-memory catalog"""

    @pytest.fixture
    def fake_catalog(self, widgets):
        catalog = FakeCatalog()
        widgets.functions.catalog = catalog
        widgets.functions.sql_engine = FakeSQLEngine(catalog)
        return catalog

    SQL = "CREATE OR REPLACE FUNCTION add_one(a int) RETURNS int AS $$ SELECT a + 1 $$ LANGUAGE sql"

    def test_create_get_run_drop(self, client, builder, fake_catalog):
        response = client.post("/api/functions", json={"sql": self.SQL, "is_protected": False}, headers=builder)
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["warnReplace"] is True
        assert body["result"]["schema"] == "public"
        assert body["result"]["parameters"] == "a integer"

        listed = client.get("/api/functions", headers=builder).json()
        assert [f["full_name"] for f in listed["functions"]] == ["public.add_one"]

        fetched = client.get("/api/functions/public/add_one", headers=builder).json()
        assert fetched["definition"]["return_type"] == "integer"

        run = client.post("/api/functions/public/add_one/run", json={"args": [1]})
        assert run.status_code == 200
        assert run.json()["rows"] == [{"result": 2}]

        assert client.delete("/api/functions/public/add_one", headers=builder).json() == {"status": "ok"}
        assert client.get("/api/functions/public/add_one", headers=builder).status_code == 404

    def test_run_respects_protection(self, client, builder, fake_catalog):
        client.post("/api/functions", json={"sql": self.SQL, "allowed_roles": ["admin"]}, headers=builder)

        assert client.post("/api/functions/public/add_one/run", json={"args": [1]}).status_code == 401
        response = client.post("/api/functions/public/add_one/run", json={"args": [1]},
                               headers=auth_header(VIEWER_APP_USER_ID, "app"))
        assert response.status_code == 403
        response = client.post("/api/functions/public/add_one/run",
                               headers=auth_header(ADMIN_APP_USER_ID, "app"))
        assert response.status_code == 200

    def test_invalid_function_sql(self, client, builder, fake_catalog):
        response = client.post("/api/functions", json={"sql": "CREATE TABLE nope (id int)"}, headers=builder)
        assert response.status_code == 400
        assert response.json()["kind"] == "DefinitionError"

    def test_drop_unknown(self, client, builder, fake_catalog):
        response = client.delete("/api/functions/public/nope", headers=builder)
        assert response.status_code == 404
