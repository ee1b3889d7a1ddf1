"""
Authentication Service

Turns a bearer credential into the per-request AuthContext. Token issuance
lives elsewhere; this module only verifies.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, FrozenSet, Mapping, Optional

from jose import jwt, JWTError
from sqlalchemy.orm import Session, sessionmaker
import structlog

from dynapi.database import session_scope
from dynapi.models import AppUser, Project, User
from dynapi.schemas.auth import TokenPayload

logger = structlog.get_logger()

BUILDER_TOKEN = "access"
APP_TOKEN = "app"


@dataclass(frozen=True)
class AuthContext:
    """Caller identity for one request. Never persisted."""
    user_id: Optional[int] = None
    roles: FrozenSet[str] = field(default_factory=frozenset)
    is_project_owner: bool = False

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None


ANONYMOUS = AuthContext()


def verify_token(token: str, secret_key: str, algorithm: str) -> Optional[TokenPayload]:
    """Verify JWT token and return payload."""
    try:
        payload = jwt.decode(token, secret_key, algorithms=[algorithm])
        return TokenPayload(
            sub=int(payload["sub"]),
            exp=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
            type=payload.get("type", BUILDER_TOKEN),
        )
    except (JWTError, KeyError, TypeError, ValueError):
        return None


def bearer_token(headers: Optional[Mapping[str, Any]]) -> Optional[str]:
    """Extract the token from an ``Authorization: Bearer ...`` header."""
    if not headers:
        return None
    value = None
    for key, item in headers.items():
        if key.lower() == "authorization":
            value = item
            break
    if not value:
        return None
    parts = str(value).split(" ")
    if len(parts) != 2 or parts[0] != "Bearer" or not parts[1]:
        return None
    return parts[1]


def get_project_owner_id(db: Session) -> Optional[int]:
    """The single project's creator is its owner."""
    project = db.query(Project).order_by(Project.id).first()
    return project.created_by_id if project else None


def get_user_by_id(db: Session, user_id: int) -> Optional[User]:
    """Get user by ID."""
    return db.query(User).filter(User.id == user_id).first()


class CredentialVerifier:
    """Builds an AuthContext from request headers."""

    def __init__(self, session_factory: sessionmaker, secret_key: str, algorithm: str):
        self.session_factory = session_factory
        self.secret_key = secret_key
        self.algorithm = algorithm

    def __call__(self, headers: Optional[Mapping[str, Any]]) -> AuthContext:
        token = bearer_token(headers)
        if token is None:
            return ANONYMOUS
        return self.from_token(token)

    def from_token(self, token: str) -> AuthContext:
        payload = verify_token(token, self.secret_key, self.algorithm)
        if payload is None:
            logger.info("credential_rejected", reason="invalid_token")
            return ANONYMOUS

        with session_scope(self.session_factory) as db:
            if payload.type == APP_TOKEN:
                return self._app_user_context(db, payload.sub)
            if payload.type == BUILDER_TOKEN:
                return self._builder_context(db, payload.sub)

        logger.info("credential_rejected", reason="unknown_token_type", token_type=payload.type)
        return ANONYMOUS

    def _app_user_context(self, db: Session, user_id: int) -> AuthContext:
        app_user = db.query(AppUser).filter(AppUser.id == user_id).first()
        if not app_user or app_user.status != "active":
            logger.info("credential_rejected", reason="app_user_unavailable", user_id=user_id)
            return ANONYMOUS
        return AuthContext(user_id=app_user.id, roles=frozenset(app_user.role_names()))

    def _builder_context(self, db: Session, user_id: int) -> AuthContext:
        user = get_user_by_id(db, user_id)
        if not user or not user.is_active:
            logger.info("credential_rejected", reason="user_unavailable", user_id=user_id)
            return ANONYMOUS
        return AuthContext(
            user_id=user.id,
            is_project_owner=get_project_owner_id(db) == user.id,
        )
