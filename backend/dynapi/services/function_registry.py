"""
Function Registry

Installs author-submitted ``CREATE FUNCTION`` statements, reads their
metadata back from the Postgres catalog and invokes them positionally.
Protection fields live in the App DB ``sys_functions`` table.
"""
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import text
from sqlalchemy.engine import Connection
from sqlalchemy.orm import sessionmaker
import structlog

from dynapi.core.access import authorize, raise_for_denial
from dynapi.core.auth import AuthContext
from dynapi.core.errors import ExecutionError, Forbidden, NotFoundError, TypeMismatch
from dynapi.database import session_scope
from dynapi.models import SysFunction
from dynapi.services.endpoint_registry import normalize_roles
from dynapi.services.sql_engine import ExecutionResult, SQLExecutionEngine
from dynapi.services.sql_guard import StatementGuard
from dynapi.services.sql_template import escape_colons

logger = structlog.get_logger()

_SCALAR_TYPES = (str, int, float, bool, Decimal)


@dataclass
class FunctionDefinition:
    """Catalog metadata for one installed function plus its protection fields."""
    schema: str
    name: str
    parameters: str = ""
    return_type: Optional[str] = None
    definition: Optional[str] = None
    is_protected: bool = True
    allowed_roles: List[str] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def full_name(self) -> str:
        return f"{self.schema}.{self.name}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "schema": self.schema,
            "name": self.name,
            "full_name": self.full_name,
            "parameters": self.parameters,
            "return_type": self.return_type,
            "definition": self.definition,
            "is_protected": self.is_protected,
            "allowed_roles": list(self.allowed_roles),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


class PostgresFunctionCatalog:
    """Reads function metadata from pg_proc; newest overload first."""

    _SELECT = """
        SELECT p.oid AS oid,
               n.nspname AS schema,
               p.proname AS name,
               pg_get_function_arguments(p.oid) AS parameters,
               pg_get_function_result(p.oid) AS return_type,
               pg_get_functiondef(p.oid) AS definition,
               p.oid::regprocedure::text AS signature
        FROM pg_proc p
        JOIN pg_namespace n ON n.oid = p.pronamespace
        WHERE p.prokind = 'f'
    """

    LOOKUP_SQL = _SELECT + " AND n.nspname = :schema AND p.proname = :name ORDER BY p.oid DESC"

    LIST_SQL = _SELECT + (
        " AND left(n.nspname, 3) <> 'pg_' AND n.nspname <> 'information_schema'"
        " ORDER BY n.nspname, p.proname, p.oid DESC"
    )

    def lookup(self, conn: Connection, schema: str, name: str) -> List[Dict[str, Any]]:
        result = conn.execute(text(self.LOOKUP_SQL), {"schema": schema, "name": name})
        return [dict(row._mapping) for row in result]

    def list(self, conn: Connection) -> List[Dict[str, Any]]:
        return [dict(row._mapping) for row in conn.execute(text(self.LIST_SQL))]


class FunctionRegistry:
    """Create, inspect, drop and invoke database functions."""

    def __init__(
        self,
        sql_engine: SQLExecutionEngine,
        session_factory: sessionmaker,
        catalog: Optional[PostgresFunctionCatalog] = None,
    ):
        self.sql_engine = sql_engine
        self.session_factory = session_factory
        self.catalog = catalog or PostgresFunctionCatalog()

    def _metadata(self) -> Dict[Tuple[str, str], SysFunction]:
        with session_scope(self.session_factory) as db:
            return {(row.schema, row.name): row for row in db.query(SysFunction).all()}

    @staticmethod
    def _merge(entry: Dict[str, Any], meta: Optional[SysFunction]) -> FunctionDefinition:
        definition = FunctionDefinition(
            schema=entry["schema"],
            name=entry["name"],
            parameters=entry.get("parameters") or "",
            return_type=entry.get("return_type"),
            definition=entry.get("definition"),
        )
        if meta is not None:
            definition.is_protected = bool(meta.is_protected)
            definition.allowed_roles = list(meta.allowed_roles or [])
            definition.created_at = meta.created_at
            definition.updated_at = meta.updated_at
        return definition

    def list(self) -> List[FunctionDefinition]:
        """Catalog functions outside system schemas, merged with stored protection fields."""
        with self.sql_engine.transaction() as conn:
            entries = self.catalog.list(conn)

        metadata = self._metadata()
        seen = set()
        functions = []
        for entry in entries:
            key = (entry["schema"], entry["name"])
            if key in seen:
                continue
            seen.add(key)
            functions.append(self._merge(entry, metadata.get(key)))
        return functions

    def get(self, schema: str, name: str) -> FunctionDefinition:
        if StatementGuard.is_system_schema(schema):
            raise NotFoundError(f"Function {schema}.{name} not found")

        with self.sql_engine.transaction() as conn:
            entries = self.catalog.lookup(conn, schema, name)
        if not entries:
            raise NotFoundError(f"Function {schema}.{name} not found")

        with session_scope(self.session_factory) as db:
            meta = db.query(SysFunction).filter(
                SysFunction.schema == schema, SysFunction.name == name
            ).first()
            return self._merge(entries[0], meta)

    def create(
        self,
        sql: str,
        is_protected: bool = True,
        allowed_roles: Optional[Sequence[str]] = None,
        created_by_id: Optional[int] = None,
    ) -> Tuple[FunctionDefinition, bool]:
        """
        Install a function and record its catalog metadata.

        Returns the definition and whether the statement carried a
        CREATE OR REPLACE clause.
        """
        StatementGuard.ensure_valid(StatementGuard.check_function(sql))
        schema, name = StatementGuard.parse_function_name(sql)

        with self.sql_engine.transaction() as conn:
            outcome = self.sql_engine.execute_script(sql, connection=conn)
            entries = self.catalog.lookup(conn, schema, name)
            if not entries:
                # rolls back the CREATE
                raise ExecutionError(
                    ExecutionError.NOT_FOUND,
                    f"Function {schema}.{name} was not found in the catalog after creation",
                )
        entry = entries[0]

        roles = list(normalize_roles(allowed_roles))
        with session_scope(self.session_factory) as db:
            meta = db.query(SysFunction).filter(
                SysFunction.schema == schema, SysFunction.name == name
            ).first()
            if meta is None:
                meta = SysFunction(schema=schema, name=name, created_by_id=created_by_id)
                db.add(meta)

            values = {
                "full_name": f"{schema}.{name}",
                "parameters": entry.get("parameters") or "",
                "return_type": entry.get("return_type"),
                "definition": entry.get("definition"),
                "is_protected": bool(is_protected),
                "allowed_roles": roles,
            }
            # only touch changed columns so updated_at reflects real changes
            for key, value in values.items():
                if getattr(meta, key) != value:
                    setattr(meta, key, value)
            db.flush()
            db.refresh(meta)
            definition = self._merge(entry, meta)

        logger.info(
            "function_created",
            schema=schema,
            name=name,
            warn_replace=outcome.warn_replace,
            overloads=len(entries),
        )
        return definition, outcome.warn_replace

    def drop(self, schema: str, name: str) -> None:
        """Drop every overload of ``schema.name`` and forget its metadata."""
        if StatementGuard.is_system_schema(schema):
            raise Forbidden("Functions in system schemas cannot be dropped")

        with self.sql_engine.transaction() as conn:
            entries = self.catalog.lookup(conn, schema, name)
            if not entries:
                raise NotFoundError(f"Function {schema}.{name} not found")
            for entry in entries:
                self.sql_engine.execute_script(f"DROP FUNCTION {entry['signature']}", connection=conn)

        with session_scope(self.session_factory) as db:
            db.query(SysFunction).filter(
                SysFunction.schema == schema, SysFunction.name == name
            ).delete(synchronize_session=False)

        logger.info("function_dropped", schema=schema, name=name, overloads=len(entries))

    def invoke(
        self,
        schema: str,
        name: str,
        args: Sequence[Any],
        auth_ctx: AuthContext,
    ) -> ExecutionResult:
        """Resolve, authorize, then call the function with positional binds."""
        if StatementGuard.is_system_schema(schema):
            raise Forbidden("Functions in system schemas cannot be invoked")

        definition = self.get(schema, name)
        raise_for_denial(authorize(definition, auth_ctx))

        params: Dict[str, Any] = {}
        for position, value in enumerate(args or ()):
            if value is not None and not isinstance(value, _SCALAR_TYPES):
                raise TypeMismatch(f"args[{position}]", "scalar")
            params[f"a{position}"] = value

        target = escape_colons(
            f"{self.sql_engine.quote_identifier(schema)}.{self.sql_engine.quote_identifier(name)}"
        )
        binds = ", ".join(f":{key}" for key in params)
        result = self.sql_engine.execute_statement(f"SELECT * FROM {target}({binds})", params)

        logger.info("function_invoked", schema=schema, name=name, arg_count=len(params))
        return result
