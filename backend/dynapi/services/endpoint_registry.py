"""
Endpoint Registry & Matcher

Definitions are persisted in the App DB and served from an in-memory
snapshot. Readers take the current snapshot without locking; writers are
serialized, persist first and then swap in a rebuilt snapshot, so a match
sees a definition either entirely before or entirely after a write.
"""
import dataclasses
import re
import threading
from dataclasses import dataclass
from datetime import datetime
from functools import cached_property
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy.orm import sessionmaker
import structlog

from dynapi.core.errors import CollisionError, DefinitionError, Forbidden, NoMatch, NotFoundError
from dynapi.database import session_scope
from dynapi.models import SysEndpoint
from dynapi.services.param_binder import LOCATIONS, TYPES
from dynapi.services.path_pattern import PathPattern, split_request_path
from dynapi.services.sql_guard import StatementGuard
from dynapi.services.sql_template import NAMED, ORDINAL, find_placeholders, placeholder_style

logger = structlog.get_logger()

METHODS = ("GET", "POST", "PUT", "DELETE")

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_PLACEHOLDER_AS_IDENTIFIER_RE = re.compile(
    r"\b(from|join|update|into|delete\s+from|truncate(\s+table)?|alter\s+table|create\s+table)"
    r"\s+(\$\d+|:[A-Za-z_]\w*|\{[A-Za-z_]\w*\})",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class ParameterSpec:
    name: str
    location: str
    type: str = "string"
    required: bool = False

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ParameterSpec":
        location = data.get("in", data.get("location"))
        return cls(
            name=str(data.get("name") or "").strip(),
            location=str(location or "").strip().lower(),
            type=str(data.get("type") or "string").strip().lower(),
            required=bool(data.get("required", False)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "in": self.location, "type": self.type, "required": self.required}


@dataclass(frozen=True)
class EndpointDefinition:
    """An authored route: method, path pattern, SQL template and access rules."""

    method: str
    path: str
    sql: str
    params: Tuple[ParameterSpec, ...] = ()
    description: Optional[str] = None
    is_active: bool = True
    is_protected: bool = False
    allowed_roles: Tuple[str, ...] = ()
    id: Optional[int] = None
    created_by_id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @cached_property
    def pattern(self) -> PathPattern:
        return PathPattern.parse(self.path)

    @classmethod
    def from_row(cls, row: SysEndpoint) -> "EndpointDefinition":
        return cls(
            id=row.id,
            method=row.method,
            path=row.path,
            sql=row.sql,
            description=row.description,
            is_active=bool(row.is_active),
            is_protected=bool(row.is_protected),
            allowed_roles=tuple(row.allowed_roles or ()),
            params=tuple(ParameterSpec.from_dict(p) for p in (row.params or ())),
            created_by_id=row.created_by_id,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "method": self.method,
            "path": self.path,
            "description": self.description,
            "sql": self.sql,
            "is_active": self.is_active,
            "is_protected": self.is_protected,
            "allowed_roles": list(self.allowed_roles),
            "params": [p.to_dict() for p in self.params],
            "created_by_id": self.created_by_id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


# ==================== Authoring rules ====================

def normalize_roles(roles: Optional[Iterable[str]]) -> Tuple[str, ...]:
    """Ordered, de-duplicated, non-empty role names."""
    seen: List[str] = []
    for role in roles or ():
        if role is None:
            continue
        name = str(role).strip()
        if name and name not in seen:
            seen.append(name)
    return tuple(seen)


def _check_path(path: str, reserved_prefixes: Sequence[str]) -> PathPattern:
    if not path:
        raise DefinitionError("Path is required")
    if re.search(r"\s", path):
        raise DefinitionError("Path must not contain whitespace")

    pattern = PathPattern.parse(path)
    if not pattern.segments:
        raise DefinitionError("Path must contain at least one segment")

    lowered = path.lower()
    for prefix in reserved_prefixes:
        prefix = prefix.rstrip("/").lower()
        if prefix and (lowered == prefix or lowered.startswith(prefix + "/")):
            raise DefinitionError(f"Path must not start with the reserved prefix {prefix}")
    return pattern


def _check_params(params: Sequence[ParameterSpec], pattern: PathPattern) -> None:
    names = set()
    placeholders = set(pattern.placeholder_names)
    for spec in params:
        if not _IDENTIFIER_RE.match(spec.name):
            raise DefinitionError(f"Invalid parameter name: {spec.name!r}")
        if spec.name in names:
            raise DefinitionError(f"Duplicate parameter name: {spec.name}")
        names.add(spec.name)
        if spec.location not in LOCATIONS:
            raise DefinitionError(f"Parameter '{spec.name}' has invalid location: {spec.location!r}")
        if spec.type not in TYPES:
            raise DefinitionError(f"Parameter '{spec.name}' has invalid type: {spec.type!r}")
        if spec.location == "path" and spec.name not in placeholders:
            raise DefinitionError(f"Path parameter '{spec.name}' does not appear in the path")


def _check_sql(sql: str) -> None:
    if not sql:
        raise DefinitionError("SQL is required")

    placeholders = find_placeholders(sql)
    remainder = list(sql)
    for placeholder in placeholders:
        remainder[placeholder.start:placeholder.end] = [" "] * (placeholder.end - placeholder.start)
    if not "".join(remainder).strip():
        raise DefinitionError("SQL must contain static text, not only placeholders")

    if _PLACEHOLDER_AS_IDENTIFIER_RE.search(StatementGuard.normalize(sql)):
        raise DefinitionError("Placeholders cannot be used as table or column identifiers")

    StatementGuard.ensure_valid(StatementGuard.check(sql))


def normalize_definition(
    definition: EndpointDefinition,
    reserved_prefixes: Sequence[str] = (),
) -> EndpointDefinition:
    """
    Validate an authored definition and fill in inferred parameters.

    Raises DefinitionError describing the first rule that fails.
    """
    method = (definition.method or "").strip().upper()
    if method not in METHODS:
        raise DefinitionError(f"Method must be one of {', '.join(METHODS)}")

    path = (definition.path or "").strip()
    pattern = _check_path(path, reserved_prefixes)

    sql = (definition.sql or "").strip()
    _check_sql(sql)

    params = list(definition.params)
    _check_params(params, pattern)
    declared = {p.name for p in params}

    for name in pattern.placeholder_names:
        if name not in declared:
            params.append(ParameterSpec(name=name, location="path", type="string", required=True))
            declared.add(name)

    placeholders = find_placeholders(sql)
    style = placeholder_style(placeholders)
    if style == ORDINAL:
        highest = max(p.index for p in placeholders)
        if highest > len(params):
            raise DefinitionError(
                f"Placeholder ${highest} exceeds the number of declared parameters ({len(params)})"
            )
    elif style == NAMED:
        for placeholder in placeholders:
            if placeholder.name not in declared:
                params.append(ParameterSpec(name=placeholder.name, location="query", type="string", required=True))
                declared.add(placeholder.name)

    return dataclasses.replace(
        definition,
        method=method,
        path=path,
        sql=sql,
        description=(definition.description or "").strip() or None,
        params=tuple(params),
        allowed_roles=normalize_roles(definition.allowed_roles),
    )


def ensure_can_modify(definition: EndpointDefinition, user_id: Optional[int], is_project_owner: bool) -> None:
    """Only the creator or the project owner may change a definition."""
    if is_project_owner:
        return
    if user_id is None or definition.created_by_id != user_id:
        raise Forbidden("Only the endpoint's creator or the project owner can modify it")


# ==================== Registry ====================

@dataclass(frozen=True)
class _Snapshot:
    by_id: Mapping[int, EndpointDefinition]
    # (method, segment count) -> active definitions
    index: Mapping[Tuple[str, int], Tuple[EndpointDefinition, ...]]

    @classmethod
    def build(cls, definitions: Iterable[EndpointDefinition]) -> "_Snapshot":
        by_id: Dict[int, EndpointDefinition] = {}
        index: Dict[Tuple[str, int], List[EndpointDefinition]] = {}
        for definition in definitions:
            by_id[definition.id] = definition
            if definition.is_active:
                key = (definition.method, len(definition.pattern.segments))
                index.setdefault(key, []).append(definition)
        return cls(
            by_id=MappingProxyType(by_id),
            index=MappingProxyType({k: tuple(v) for k, v in index.items()}),
        )


class EndpointRegistry:
    """Sole writer of endpoint definitions; serves lookups from a snapshot."""

    def __init__(self, session_factory: sessionmaker, reserved_prefixes: Sequence[str] = ()):
        self.session_factory = session_factory
        self.reserved_prefixes = tuple(reserved_prefixes)
        self._lock = threading.Lock()
        self._snapshot = _Snapshot.build(())

    def load(self) -> int:
        """Rebuild the snapshot from the App DB."""
        with self._lock:
            definitions = []
            with session_scope(self.session_factory) as db:
                for row in db.query(SysEndpoint).order_by(SysEndpoint.id).all():
                    try:
                        PathPattern.parse(row.path)
                    except DefinitionError as e:
                        logger.warning("endpoint_definition_invalid", endpoint_id=row.id, error=e.message)
                        continue
                    definitions.append(EndpointDefinition.from_row(row))
            self._snapshot = _Snapshot.build(definitions)

        logger.info("endpoint_registry_loaded", count=len(definitions))
        return len(definitions)

    def list(self) -> List[EndpointDefinition]:
        return sorted(self._snapshot.by_id.values(), key=lambda d: d.id)

    def get(self, endpoint_id: int) -> EndpointDefinition:
        definition = self._snapshot.by_id.get(endpoint_id)
        if definition is None:
            raise NotFoundError(f"Endpoint {endpoint_id} not found")
        return definition

    def _check_collision(self, snapshot: _Snapshot, candidate: EndpointDefinition) -> None:
        if not candidate.is_active:
            return
        key = (candidate.method, len(candidate.pattern.segments))
        for existing in snapshot.index.get(key, ()):
            if existing.id == candidate.id:
                continue
            if candidate.pattern.collides_with(existing.pattern):
                logger.info(
                    "endpoint_collision",
                    method=candidate.method,
                    path=candidate.path,
                    existing_id=existing.id,
                    existing_path=existing.path,
                )
                raise CollisionError(
                    f"{candidate.method} {candidate.path} collides with endpoint "
                    f"{existing.id} ({existing.method} {existing.path})",
                    {"endpoint_id": existing.id},
                )

    def _swap(self, snapshot: _Snapshot, changed: Optional[EndpointDefinition] = None,
              removed_id: Optional[int] = None) -> None:
        definitions = dict(snapshot.by_id)
        if removed_id is not None:
            definitions.pop(removed_id, None)
        if changed is not None:
            definitions[changed.id] = changed
        self._snapshot = _Snapshot.build(sorted(definitions.values(), key=lambda d: d.id))

    def register(self, definition: EndpointDefinition, created_by_id: Optional[int] = None) -> EndpointDefinition:
        """Validate, persist and publish a new definition."""
        candidate = normalize_definition(
            dataclasses.replace(definition, id=None, created_by_id=created_by_id),
            self.reserved_prefixes,
        )

        with self._lock:
            snapshot = self._snapshot
            self._check_collision(snapshot, candidate)

            with session_scope(self.session_factory) as db:
                row = SysEndpoint(
                    method=candidate.method,
                    path=candidate.path,
                    description=candidate.description,
                    sql=candidate.sql,
                    is_active=candidate.is_active,
                    is_protected=candidate.is_protected,
                    allowed_roles=list(candidate.allowed_roles),
                    params=[p.to_dict() for p in candidate.params],
                    created_by_id=created_by_id,
                )
                db.add(row)
                db.flush()
                db.refresh(row)
                stored = EndpointDefinition.from_row(row)

            self._swap(snapshot, changed=stored)

        logger.info("endpoint_registered", endpoint_id=stored.id, method=stored.method, path=stored.path)
        return stored

    def update(self, endpoint_id: int, definition: EndpointDefinition) -> EndpointDefinition:
        """Replace an existing definition's authored fields."""
        with self._lock:
            snapshot = self._snapshot
            current = snapshot.by_id.get(endpoint_id)
            if current is None:
                raise NotFoundError(f"Endpoint {endpoint_id} not found")

            candidate = normalize_definition(
                dataclasses.replace(definition, id=endpoint_id, created_by_id=current.created_by_id),
                self.reserved_prefixes,
            )
            self._check_collision(snapshot, candidate)

            with session_scope(self.session_factory) as db:
                row = db.get(SysEndpoint, endpoint_id)
                if row is None:
                    raise NotFoundError(f"Endpoint {endpoint_id} not found")
                row.method = candidate.method
                row.path = candidate.path
                row.description = candidate.description
                row.sql = candidate.sql
                row.is_active = candidate.is_active
                row.is_protected = candidate.is_protected
                row.allowed_roles = list(candidate.allowed_roles)
                row.params = [p.to_dict() for p in candidate.params]
                db.flush()
                db.refresh(row)
                stored = EndpointDefinition.from_row(row)

            self._swap(snapshot, changed=stored)

        logger.info("endpoint_updated", endpoint_id=stored.id, method=stored.method, path=stored.path)
        return stored

    def remove(self, endpoint_id: int) -> None:
        with self._lock:
            snapshot = self._snapshot
            with session_scope(self.session_factory) as db:
                row = db.get(SysEndpoint, endpoint_id)
                if row is None:
                    raise NotFoundError(f"Endpoint {endpoint_id} not found")
                db.delete(row)
            self._swap(snapshot, removed_id=endpoint_id)

        logger.info("endpoint_removed", endpoint_id=endpoint_id)

    def match(self, method: str, raw_path: str) -> Tuple[EndpointDefinition, Dict[str, Optional[str]]]:
        """
        Resolve a request to exactly one active definition.

        The definition with the fewest placeholders wins. Two winners with the
        same count cannot both exist once collision checks have run, so a tie
        is an internal error rather than a NoMatch.
        """
        parts = split_request_path(raw_path)
        candidates = self._snapshot.index.get(((method or "").upper(), len(parts)), ())

        matches = []
        for definition in candidates:
            captures = definition.pattern.match(parts)
            if captures is not None:
                matches.append((definition, captures))

        if not matches:
            raise NoMatch()

        matches.sort(key=lambda m: m[0].pattern.placeholder_count)
        if len(matches) > 1 and matches[0][0].pattern.placeholder_count == matches[1][0].pattern.placeholder_count:
            raise RuntimeError(
                f"Ambiguous endpoint match for {method} {raw_path}: "
                f"{matches[0][0].id} and {matches[1][0].id}"
            )
        return matches[0]
