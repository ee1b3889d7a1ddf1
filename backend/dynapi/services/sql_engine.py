"""
SQL Execution Engine - Parameterized execution against the Project DB
"""
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Generator, List, Optional

from sqlalchemy import exc as sa_exc, text
from sqlalchemy.engine import Connection, CursorResult, Engine
import structlog

from dynapi.core.errors import ExecutionError
from dynapi.services.sql_guard import StatementGuard
from dynapi.services.sql_template import BoundArgs, compile_template

logger = structlog.get_logger()

NOT_FOUND_SQLSTATES = {"42P01", "42883", "42703", "42704", "3F000", "42P02"}
PERMISSION_SQLSTATE = "42501"
QUERY_CANCELED_SQLSTATE = "57014"


@dataclass
class ExecutionResult:
    """Outcome of one statement."""
    rows: Optional[List[Dict[str, Any]]] = None
    columns: List[str] = field(default_factory=list)
    rows_affected: int = 0
    execution_time_ms: float = 0.0
    warn_replace: bool = False

    @property
    def returns_rows(self) -> bool:
        return self.rows is not None


def _sqlstate(error: BaseException) -> Optional[str]:
    orig = getattr(error, "orig", None) or error
    for attr in ("pgcode", "sqlstate"):
        code = getattr(orig, attr, None)
        if code:
            return str(code)
    return None


def _driver_message(error: BaseException) -> str:
    orig = getattr(error, "orig", None) or error
    diag = getattr(orig, "diag", None)
    primary = getattr(diag, "message_primary", None)
    if primary:
        return primary
    lines = str(orig).strip().splitlines()
    return lines[0] if lines else error.__class__.__name__


def kind_for_sqlstate(code: str) -> Optional[str]:
    """Map a Postgres SQLSTATE to an error kind, or None if unrecognised."""
    if code == QUERY_CANCELED_SQLSTATE:
        return ExecutionError.TIMEOUT
    if code == PERMISSION_SQLSTATE:
        return ExecutionError.PERMISSION
    if code in NOT_FOUND_SQLSTATES:
        return ExecutionError.NOT_FOUND
    if code.startswith("42"):
        return ExecutionError.SYNTAX
    if code.startswith("23") or code.startswith("22"):
        return ExecutionError.CONSTRAINT
    return None


def classify_error(error: BaseException) -> ExecutionError:
    """Translate a driver/SQLAlchemy failure into an ExecutionError."""
    if isinstance(error, ExecutionError):
        return error

    if isinstance(error, sa_exc.TimeoutError):
        return ExecutionError(ExecutionError.TIMEOUT, "Timed out waiting for a database connection")

    code = _sqlstate(error)
    message = _driver_message(error)
    kind = kind_for_sqlstate(code) if code else None

    if kind is None:
        if isinstance(error, (sa_exc.IntegrityError, sa_exc.DataError)):
            kind = ExecutionError.CONSTRAINT
        elif isinstance(error, sa_exc.ProgrammingError):
            kind = ExecutionError.SYNTAX
        else:
            kind = ExecutionError.UNKNOWN

    return ExecutionError(kind, message, sqlstate=code)


def statement_kind(sql: str) -> str:
    """First keyword of a statement, for logging."""
    words = StatementGuard.normalize(sql).split(" ", 1)
    return words[0].upper() if words and words[0] else "UNKNOWN"


def _collect(result: CursorResult) -> ExecutionResult:
    if result.returns_rows:
        columns = list(result.keys())
        rows = [dict(row._mapping) for row in result]
        return ExecutionResult(rows=rows, columns=columns, rows_affected=len(rows))
    return ExecutionResult(rows_affected=max(result.rowcount, 0))


class SQLExecutionEngine:
    """
    Runs statements on pooled Project DB connections.

    Every call checks a connection out for one transaction and returns it on
    all exit paths. Caller values only ever travel as bind parameters.
    """

    def __init__(self, engine: Engine, statement_timeout_ms: int = 30000):
        self.engine = engine
        self.statement_timeout_ms = statement_timeout_ms

    def quote_identifier(self, name: str) -> str:
        return self.engine.dialect.identifier_preparer.quote_identifier(name)

    def _apply_timeout(self, conn: Connection) -> None:
        if self.statement_timeout_ms and conn.dialect.name == "postgresql":
            conn.execute(
                text("SELECT set_config('statement_timeout', :timeout, true)"),
                {"timeout": str(int(self.statement_timeout_ms))},
            )

    @contextmanager
    def transaction(self) -> Generator[Connection, None, None]:
        """
        One Project DB transaction.

        Commits on success, rolls back on any exception; SQLAlchemy errors
        surface as classified ExecutionError.
        """
        try:
            with self.engine.begin() as conn:
                self._apply_timeout(conn)
                yield conn
        except sa_exc.SQLAlchemyError as e:
            error = classify_error(e)
            log_method = logger.error if error.kind == ExecutionError.UNKNOWN else logger.warning
            log_method(
                "sql_failed",
                kind=error.kind,
                sqlstate=error.sqlstate,
                error=str(e) if error.kind == ExecutionError.UNKNOWN else error.message,
            )
            raise error from e

    def execute_statement(
        self,
        sql: str,
        params: Optional[Dict[str, Any]] = None,
        connection: Optional[Connection] = None,
    ) -> ExecutionResult:
        """Execute an already-compiled ``text()`` statement with bind params."""
        started = time.perf_counter()
        if connection is not None:
            outcome = _collect(connection.execute(text(sql), params or {}))
        else:
            with self.transaction() as conn:
                outcome = _collect(conn.execute(text(sql), params or {}))

        outcome.execution_time_ms = round((time.perf_counter() - started) * 1000, 2)
        logger.info(
            "sql_executed",
            statement_kind=statement_kind(sql),
            duration_ms=outcome.execution_time_ms,
            row_count=outcome.rows_affected,
            param_count=len(params or {}),
        )
        return outcome

    def execute(
        self,
        template: str,
        bound: BoundArgs,
        connection: Optional[Connection] = None,
    ) -> ExecutionResult:
        """Execute an endpoint SQL template with bound arguments."""
        statement = compile_template(template, bound)
        return self.execute_statement(statement.sql, statement.params, connection=connection)

    def execute_script(self, sql: str, connection: Optional[Connection] = None) -> ExecutionResult:
        """
        Execute author-submitted SQL verbatim (table and function creation).

        No bind processing happens, so ``$$`` bodies and ``%`` pass through
        untouched. ``warn_replace`` flags a CREATE OR REPLACE clause.
        """
        warn_replace = StatementGuard.is_replace(sql)
        started = time.perf_counter()
        options = {"no_parameters": True}
        if connection is not None:
            outcome = _collect(connection.exec_driver_sql(sql, execution_options=options))
        else:
            with self.transaction() as conn:
                outcome = _collect(conn.exec_driver_sql(sql, execution_options=options))

        outcome.warn_replace = warn_replace
        outcome.execution_time_ms = round((time.perf_counter() - started) * 1000, 2)
        logger.info(
            "sql_executed",
            statement_kind=statement_kind(sql),
            duration_ms=outcome.execution_time_ms,
            row_count=outcome.rows_affected,
            warn_replace=warn_replace,
        )
        return outcome

    def dispose(self) -> None:
        self.engine.dispose()
