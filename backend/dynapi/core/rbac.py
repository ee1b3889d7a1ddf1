"""
Request dependencies: runtime, App DB session and caller identity
"""
from typing import Generator, Optional
from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from dynapi.core.auth import ANONYMOUS, AuthContext, BUILDER_TOKEN, get_project_owner_id, get_user_by_id, verify_token
from dynapi.core.errors import Forbidden, Unauthenticated
from dynapi.models import User
from dynapi.runtime import ProjectRuntime

security = HTTPBearer(auto_error=False)


def get_runtime(request: Request) -> ProjectRuntime:
    """The ProjectRuntime created by the application lifespan."""
    return request.app.state.runtime


def get_app_db(runtime: ProjectRuntime = Depends(get_runtime)) -> Generator[Session, None, None]:
    """App DB session for the duration of one request."""
    db = runtime.session_factory()
    try:
        yield db
    finally:
        db.close()


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    runtime: ProjectRuntime = Depends(get_runtime),
    db: Session = Depends(get_app_db),
) -> User:
    """Builder user behind a valid access token."""
    if credentials is None:
        raise Unauthenticated()

    payload = verify_token(credentials.credentials, runtime.verifier.secret_key, runtime.verifier.algorithm)
    if not payload or payload.type != BUILDER_TOKEN:
        raise Unauthenticated("Invalid or expired token")

    user = get_user_by_id(db, payload.sub)
    if not user:
        raise Unauthenticated("User not found")

    if not user.is_active:
        raise Forbidden("Account not active")

    return user


async def get_auth_context(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    runtime: ProjectRuntime = Depends(get_runtime),
) -> AuthContext:
    """Caller identity from an optional bearer token; anonymous otherwise."""
    if credentials is None:
        return ANONYMOUS
    return runtime.verifier.from_token(credentials.credentials)


def is_project_owner(db: Session, user: User) -> bool:
    return get_project_owner_id(db) == user.id
