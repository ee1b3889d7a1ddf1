"""
Dynamic Dispatcher

Single entry point for generated routes: match, authorize, bind, execute,
always in that order, so callers without access never learn about
parameter validation.
"""
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Sequence

import structlog

from dynapi.core.access import DenialReason, authorize, raise_for_denial
from dynapi.core.auth import ANONYMOUS, AuthContext
from dynapi.core.errors import GENERIC_MESSAGE, RuntimeFault
from dynapi.services.endpoint_registry import EndpointRegistry
from dynapi.services.function_registry import FunctionRegistry
from dynapi.services.param_binder import bind, parse_json_body
from dynapi.services.sql_engine import ExecutionResult, SQLExecutionEngine

logger = structlog.get_logger()


@dataclass
class DispatchResponse:
    status_code: int
    body: Dict[str, Any]


def success_body(result: ExecutionResult) -> Dict[str, Any]:
    return {
        "status": "success",
        "rows": result.rows,
        "rows_affected": result.rows_affected,
        "execution_time_ms": result.execution_time_ms,
    }


class Dispatcher:
    """Wires registry, enforcer, binder and engine together per request."""

    def __init__(
        self,
        registry: EndpointRegistry,
        sql_engine: SQLExecutionEngine,
        function_registry: Optional[FunctionRegistry] = None,
        verifier: Optional[Callable[[Optional[Mapping[str, Any]]], AuthContext]] = None,
        debug: bool = False,
    ):
        self.registry = registry
        self.sql_engine = sql_engine
        self.function_registry = function_registry
        self.verifier = verifier
        self.debug = debug

    def _auth_context(self, headers: Optional[Mapping[str, Any]]) -> AuthContext:
        if self.verifier is None:
            return ANONYMOUS
        return self.verifier(headers)

    def _error(self, error: RuntimeFault) -> DispatchResponse:
        return DispatchResponse(status_code=error.status_code, body=error.to_dict(debug=self.debug))

    def _unexpected(self, error: Exception, **context) -> DispatchResponse:
        logger.exception("dynamic_request_failed", error=str(error), **context)
        body = {"status": "error", "kind": "Unknown", "message": GENERIC_MESSAGE}
        if self.debug:
            body["message"] = str(error)
        return DispatchResponse(status_code=500, body=body)

    def handle(
        self,
        method: str,
        path: str,
        headers: Optional[Mapping[str, Any]] = None,
        query: Optional[Mapping[str, Any]] = None,
        body: Any = None,
    ) -> DispatchResponse:
        """Serve one request against the generated surface."""
        try:
            definition, path_values = self.registry.match(method, path)

            decision = authorize(definition, self._auth_context(headers))
            if not decision.allowed:
                if decision.reason != DenialReason.NOT_FOUND:
                    logger.info(
                        "dynamic_request_denied",
                        endpoint_id=definition.id,
                        method=definition.method,
                        path=definition.path,
                        reason=decision.reason.value,
                    )
                raise_for_denial(decision)

            parsed_body = None
            if any(p.location == "body" for p in definition.params):
                parsed_body = parse_json_body(body)

            bound = bind(definition.params, path_values, query, parsed_body)
            result = self.sql_engine.execute(definition.sql, bound)
            return DispatchResponse(status_code=200, body=success_body(result))
        except RuntimeFault as e:
            if e.kind == "Unknown":
                logger.error("dynamic_request_failed", method=method, path=path, error=e.message)
            return self._error(e)
        except Exception as e:
            return self._unexpected(e, method=method, path=path)

    def invoke_function(
        self,
        schema: str,
        name: str,
        args: Sequence[Any],
        auth_ctx: AuthContext,
    ) -> ExecutionResult:
        """Resolve, authorize and invoke a database function."""
        if self.function_registry is None:
            raise RuntimeError("Function registry is not configured")
        return self.function_registry.invoke(schema, name, args, auth_ctx)
