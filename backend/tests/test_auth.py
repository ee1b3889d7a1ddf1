"""
Tests for credential verification
"""
import pytest

from dynapi.core.auth import ANONYMOUS, bearer_token, verify_token
from conftest import (
    ADMIN_APP_USER_ID, BUILDER_ID, INACTIVE_BUILDER_ID, OWNER_ID, SUSPENDED_APP_USER_ID,
    TEST_ALGORITHM, TEST_SECRET_KEY, auth_header, make_token,
)


@pytest.fixture
def verifier(runtime, seeded):
    return runtime.verifier


class TestBearerToken:
    """Test header extraction"""

    def test_case_insensitive_header_name(self):
        assert bearer_token({"authorization": "Bearer abc"}) == "abc"
        assert bearer_token({"AUTHORIZATION": "Bearer abc"}) == "abc"

    @pytest.mark.parametrize("value", ["", "Bearer", "Bearer ", "Basic abc", "bearer abc", "Bearer a b"])
    def test_malformed(self, value):
        assert bearer_token({"Authorization": value}) is None

    def test_missing(self):
        assert bearer_token(None) is None
        assert bearer_token({"Accept": "application/json"}) is None


class TestVerifyToken:
    def test_valid(self):
        payload = verify_token(make_token(OWNER_ID), TEST_SECRET_KEY, TEST_ALGORITHM)
        assert payload.sub == OWNER_ID
        assert payload.type == "access"

    def test_wrong_secret(self):
        assert verify_token(make_token(OWNER_ID, secret="other"), TEST_SECRET_KEY, TEST_ALGORITHM) is None

    def test_expired(self):
        assert verify_token(make_token(OWNER_ID, expires_minutes=-5), TEST_SECRET_KEY, TEST_ALGORITHM) is None

    def test_garbage(self):
        assert verify_token("not-a-jwt", TEST_SECRET_KEY, TEST_ALGORITHM) is None


class TestCredentialVerifier:
    """Test AuthContext construction"""

    def test_no_credentials(self, verifier):
        assert verifier(None) is ANONYMOUS
        assert verifier({}) is ANONYMOUS

    def test_project_owner(self, verifier):
        ctx = verifier(auth_header(OWNER_ID))
        assert ctx.user_id == OWNER_ID
        assert ctx.is_project_owner is True
        assert ctx.roles == frozenset()

    def test_builder(self, verifier):
        ctx = verifier(auth_header(BUILDER_ID))
        assert ctx.is_authenticated
        assert ctx.is_project_owner is False

    def test_app_user_roles(self, verifier):
        ctx = verifier(auth_header(ADMIN_APP_USER_ID, "app"))
        assert ctx.user_id == ADMIN_APP_USER_ID
        assert ctx.roles == frozenset({"admin"})
        assert ctx.is_project_owner is False

    @pytest.mark.parametrize("sub,token_type", [
        (INACTIVE_BUILDER_ID, "access"),
        (SUSPENDED_APP_USER_ID, "app"),
        (999, "access"),
        (999, "app"),
        (OWNER_ID, "refresh"),
    ])
    def test_unusable_credentials_are_anonymous(self, verifier, sub, token_type):
        assert verifier(auth_header(sub, token_type)) is ANONYMOUS

    def test_token_types_do_not_cross(self, verifier):
        # id 10 is an app user, not a builder
        assert verifier(auth_header(ADMIN_APP_USER_ID, "access")) is ANONYMOUS
