"""
Tests for the dynamic dispatcher
"""
import json

import pytest

from dynapi.services.endpoint_registry import EndpointDefinition, ParameterSpec
from conftest import (
    ADMIN_APP_USER_ID, BUILDER_ID, INACTIVE_BUILDER_ID, OWNER_ID, SUSPENDED_APP_USER_ID, VIEWER_APP_USER_ID,
    auth_header, make_token,
)


def register(runtime, path, sql, params=(), method="GET", **kwargs):
    return runtime.endpoints.register(
        EndpointDefinition(method=method, path=path, sql=sql, params=tuple(params), **kwargs)
    )


@pytest.fixture
def dispatcher(widgets, seeded):
    return widgets.dispatcher


class SpyEngine:
    """Wraps the real engine and counts executions."""

    def __init__(self, inner):
        self.inner = inner
        self.calls = 0

    def execute(self, template, bound, connection=None):
        self.calls += 1
        return self.inner.execute(template, bound, connection=connection)


class TestDispatch:
    """Test the request pipeline"""

    def test_widget_by_id(self, widgets, dispatcher):
        register(widgets, "/widgets/:id", "SELECT id, name FROM widgets WHERE id = $1",
                 [ParameterSpec("id", "path", "number", True)])

        response = dispatcher.handle("GET", "/widgets/42")
        assert response.status_code == 200
        assert response.body["status"] == "success"
        assert response.body["rows"] == [{"id": 42, "name": "gear"}]
        assert response.body["rows_affected"] == 1
        assert "execution_time_ms" in response.body

    def test_type_mismatch_never_reaches_database(self, widgets, dispatcher):
        register(widgets, "/widgets/:id", "SELECT id, name FROM widgets WHERE id = $1",
                 [ParameterSpec("id", "path", "number", True)])
        spy = SpyEngine(widgets.sql_engine)
        dispatcher.sql_engine = spy

        response = dispatcher.handle("GET", "/widgets/abc")
        assert response.status_code == 400
        assert response.body["kind"] == "TypeMismatch"
        assert response.body["details"]["field"] == "id"
        assert spy.calls == 0

    def test_trailing_slash_is_missing_parameter(self, widgets, dispatcher):
        register(widgets, "/widgets/:id", "SELECT id FROM widgets WHERE id = $1")
        response = dispatcher.handle("GET", "/widgets/")
        assert response.status_code == 400
        assert response.body["kind"] == "MissingParameter"

    def test_no_match(self, dispatcher):
        response = dispatcher.handle("GET", "/nothing/here")
        assert response.status_code == 404
        assert response.body["kind"] == "NoMatch"

    def test_inactive_is_indistinguishable_from_missing(self, widgets, dispatcher):
        register(widgets, "/hidden", "SELECT 1 AS one", is_active=False)
        assert dispatcher.handle("GET", "/hidden").body == dispatcher.handle("GET", "/absent").body

    def test_query_and_body_parameters(self, widgets, dispatcher):
        register(widgets, "/widgets", "INSERT INTO widgets (id, name, price) VALUES (:id, :name, :price)",
                 [ParameterSpec("id", "body", "number", True),
                  ParameterSpec("name", "body", "string", True),
                  ParameterSpec("price", "query", "number", False)], method="POST")

        response = dispatcher.handle("POST", "/widgets", query={"price": "3"},
                                     body=json.dumps({"id": 5, "name": "washer"}))
        assert response.status_code == 200
        assert response.body["rows"] is None
        assert response.body["rows_affected"] == 1

        stored = widgets.sql_engine.execute_script("SELECT name, price FROM widgets WHERE id = 5")
        assert stored.rows == [{"name": "washer", "price": 3}]

    def test_non_object_body(self, widgets, dispatcher):
        register(widgets, "/widgets", "INSERT INTO widgets (id, name) VALUES (:id, :name)",
                 [ParameterSpec("id", "body", "number", True), ParameterSpec("name", "body", "string", True)],
                 method="POST")
        response = dispatcher.handle("POST", "/widgets", body=b"[1, 2]")
        assert response.status_code == 400
        assert response.body["kind"] == "ValidationError"

    @pytest.mark.parametrize("body,kind", [
        (b'{"name": {"x": 1}}', "TypeMismatch"),
        (b'{"name": 7}', "TypeMismatch"),
        (b'{"name": "a\xffb"}', "ValidationError"),
    ])
    def test_bad_body_values_never_reach_the_engine(self, widgets, dispatcher, body, kind):
        register(widgets, "/echo", "SELECT :name AS v", [ParameterSpec("name", "body", "string", True)],
                 method="POST")
        spy = SpyEngine(dispatcher.sql_engine)
        dispatcher.sql_engine = spy

        response = dispatcher.handle("POST", "/echo", body=body)
        assert response.status_code == 400
        assert response.body["kind"] == kind
        assert spy.calls == 0

    def test_constraint_violation(self, widgets, dispatcher):
        register(widgets, "/widgets", "INSERT INTO widgets (id, name) VALUES (:id, :name)",
                 [ParameterSpec("id", "query", "number", True), ParameterSpec("name", "query", "string", True)],
                 method="POST")
        response = dispatcher.handle("POST", "/widgets", query={"id": "1", "name": "dup"})
        assert response.status_code == 400
        assert response.body["kind"] == "ConstraintViolation"

    def test_unexpected_errors_are_generic(self, widgets, dispatcher):
        register(widgets, "/boom", "SELECT 1 AS one")

        class Exploding:
            def execute(self, template, bound, connection=None):
                raise KeyError("internal detail")

        dispatcher.sql_engine = Exploding()
        response = dispatcher.handle("GET", "/boom")
        assert response.status_code == 500
        assert response.body["kind"] == "Unknown"
        assert "internal detail" not in response.body["message"]


class TestDispatchAuthorization:
    """Test that authorization precedes binding"""

    @pytest.fixture
    def admin_only(self, widgets):
        return register(widgets, "/admin/widgets/:id", "SELECT id, name FROM widgets WHERE id = $1",
                        [ParameterSpec("id", "path", "number", True)],
                        is_protected=True, allowed_roles=("admin",))

    def test_anonymous_with_invalid_params_is_unauthenticated(self, dispatcher, admin_only):
        response = dispatcher.handle("GET", "/admin/widgets/abc")
        assert response.status_code == 401
        assert response.body["kind"] == "Unauthenticated"

    def test_wrong_role_with_invalid_params_is_forbidden(self, dispatcher, admin_only):
        headers = auth_header(VIEWER_APP_USER_ID, "app")
        response = dispatcher.handle("GET", "/admin/widgets/abc", headers=headers)
        assert response.status_code == 403
        assert response.body["kind"] == "Forbidden"

    def test_allowed_role(self, dispatcher, admin_only):
        response = dispatcher.handle("GET", "/admin/widgets/42", headers=auth_header(ADMIN_APP_USER_ID, "app"))
        assert response.status_code == 200
        assert response.body["rows"] == [{"id": 42, "name": "gear"}]

    def test_owner_bypasses_roles(self, dispatcher, admin_only):
        response = dispatcher.handle("GET", "/admin/widgets/42", headers=auth_header(OWNER_ID))
        assert response.status_code == 200

    def test_builder_without_role_is_forbidden(self, dispatcher, admin_only):
        response = dispatcher.handle("GET", "/admin/widgets/42", headers=auth_header(BUILDER_ID))
        assert response.status_code == 403

    @pytest.mark.parametrize("headers", [
        {"Authorization": "Bearer not-a-token"},
        {"Authorization": f"Token {make_token(ADMIN_APP_USER_ID, 'app')}"},
        {"Authorization": f"Bearer {make_token(ADMIN_APP_USER_ID, 'app', secret='wrong')}"},
        {"Authorization": f"Bearer {make_token(ADMIN_APP_USER_ID, 'app', expires_minutes=-5)}"},
        {"Authorization": f"Bearer {make_token(SUSPENDED_APP_USER_ID, 'app')}"},
        {"Authorization": f"Bearer {make_token(INACTIVE_BUILDER_ID)}"},
        {"Authorization": f"Bearer {make_token(ADMIN_APP_USER_ID, 'refresh')}"},
    ])
    def test_bad_credentials_are_anonymous(self, dispatcher, admin_only, headers):
        response = dispatcher.handle("GET", "/admin/widgets/42", headers=headers)
        assert response.status_code == 401

    def test_header_name_is_case_insensitive(self, dispatcher, admin_only):
        token = make_token(ADMIN_APP_USER_ID, "app")
        response = dispatcher.handle("GET", "/admin/widgets/42", headers={"authorization": f"Bearer {token}"})
        assert response.status_code == 200
