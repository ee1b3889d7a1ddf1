"""
Access Control Enforcer

One rule set for both generated endpoints and database functions. The
target only needs ``is_active``, ``is_protected`` and ``allowed_roles``.
"""
import enum
from dataclasses import dataclass
from typing import Any, Optional

from dynapi.core.auth import AuthContext
from dynapi.core.errors import Forbidden, NoMatch, Unauthenticated


class DenialReason(str, enum.Enum):
    NOT_FOUND = "NotFound"
    UNAUTHENTICATED = "Unauthenticated"
    FORBIDDEN = "Forbidden"


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    reason: Optional[DenialReason] = None


ALLOWED = AccessDecision(allowed=True)


def deny(reason: DenialReason) -> AccessDecision:
    return AccessDecision(allowed=False, reason=reason)


def authorize(target: Any, ctx: AuthContext) -> AccessDecision:
    """
    Evaluate, in order:

    1. inactive targets are reported as not found
    2. unprotected targets are open to everyone
    3. protected targets require an authenticated caller
    4. the project owner passes role checks
    5. no allowed roles means any authenticated caller
    6. otherwise the caller needs at least one allowed role
    """
    if not getattr(target, "is_active", True):
        return deny(DenialReason.NOT_FOUND)

    if not target.is_protected:
        return ALLOWED

    if not ctx.is_authenticated:
        return deny(DenialReason.UNAUTHENTICATED)

    if ctx.is_project_owner:
        return ALLOWED

    allowed_roles = set(target.allowed_roles or ())
    if not allowed_roles:
        return ALLOWED

    if allowed_roles & set(ctx.roles):
        return ALLOWED
    return deny(DenialReason.FORBIDDEN)


def raise_for_denial(decision: AccessDecision) -> None:
    """Convert a denial into the matching runtime error."""
    if decision.allowed:
        return
    if decision.reason == DenialReason.NOT_FOUND:
        raise NoMatch()
    if decision.reason == DenialReason.UNAUTHENTICATED:
        raise Unauthenticated()
    raise Forbidden("Forbidden: role not allowed")
