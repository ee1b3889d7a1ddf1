"""
Table and View Statement API Routes
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from dynapi.core.audit import AuditLogger
from dynapi.core.errors import RuntimeFault
from dynapi.core.rbac import get_app_db, get_current_user, get_runtime
from dynapi.models import AuditActionType, User
from dynapi.runtime import ProjectRuntime
from dynapi.schemas import StatementRequest, StatementResponse, StatementResult
from dynapi.services.sql_guard import StatementGuard

router = APIRouter()


@router.post("", response_model=StatementResponse)
def execute_statement(
    payload: StatementRequest,
    current_user: User = Depends(get_current_user),
    runtime: ProjectRuntime = Depends(get_runtime),
    db: Session = Depends(get_app_db),
):
    """
    Run author-submitted DDL/DML verbatim on the Project DB.

    The statement is screened first; ``warnReplace`` reports a
    CREATE OR REPLACE clause and ``warnings`` lists destructive commands.
    """
    audit = AuditLogger(db)
    try:
        guard = StatementGuard.ensure_valid(StatementGuard.check(payload.sql))
        result = runtime.sql_engine.execute_script(payload.sql)
    except RuntimeFault as e:
        audit.log_failure(AuditActionType.STATEMENT_EXECUTE.value, e, user=current_user,
                          resource_type="table")
        raise

    audit.log(AuditActionType.STATEMENT_EXECUTE.value, user=current_user, resource_type="table",
              details={"warn_replace": result.warn_replace, "warnings": guard.warnings})
    return StatementResponse(
        result=StatementResult(
            rows=result.rows,
            rows_affected=result.rows_affected,
            execution_time_ms=result.execution_time_ms,
        ),
        warn_replace=result.warn_replace,
        warnings=guard.warnings,
    )
