"""
Project runtime

Owns every per-project component for the life of the application: the App
DB session factory, the Project DB engine and the registries and dispatcher
built on top of them.
"""
from typing import Optional, Sequence

from sqlalchemy.engine import Engine
import structlog

from dynapi.config import Settings
from dynapi.core.auth import CredentialVerifier
from dynapi.database import Base, build_engine, build_session_factory
from dynapi.services.dispatcher import Dispatcher
from dynapi.services.endpoint_registry import EndpointRegistry
from dynapi.services.function_registry import FunctionRegistry, PostgresFunctionCatalog
from dynapi.services.sql_engine import SQLExecutionEngine

logger = structlog.get_logger()


class ProjectRuntime:
    """Constructed at startup, disposed at shutdown, passed to handlers by dependency."""

    def __init__(
        self,
        app_engine: Engine,
        project_engine: Engine,
        secret_key: str,
        algorithm: str = "HS256",
        statement_timeout_ms: int = 30000,
        reserved_prefixes: Sequence[str] = (),
        debug: bool = False,
        catalog: Optional[PostgresFunctionCatalog] = None,
    ):
        self.app_engine = app_engine
        self.project_engine = project_engine
        self.debug = debug

        self.session_factory = build_session_factory(app_engine)
        self.sql_engine = SQLExecutionEngine(project_engine, statement_timeout_ms)
        self.endpoints = EndpointRegistry(self.session_factory, reserved_prefixes)
        self.functions = FunctionRegistry(self.sql_engine, self.session_factory, catalog)
        self.verifier = CredentialVerifier(self.session_factory, secret_key, algorithm)
        self.dispatcher = Dispatcher(
            registry=self.endpoints,
            sql_engine=self.sql_engine,
            function_registry=self.functions,
            verifier=self.verifier,
            debug=debug,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "ProjectRuntime":
        app_engine = build_engine(settings.DATABASE_URL, echo=settings.DEBUG)
        project_engine = build_engine(
            settings.get_project_db_url(),
            pool_size=settings.DB_POOL_SIZE,
            pool_timeout=settings.DB_POOL_TIMEOUT_SECONDS,
            echo=settings.DEBUG,
        )
        return cls(
            app_engine=app_engine,
            project_engine=project_engine,
            secret_key=settings.SECRET_KEY,
            algorithm=settings.ALGORITHM,
            statement_timeout_ms=settings.STATEMENT_TIMEOUT_MS,
            reserved_prefixes=settings.RESERVED_PATH_PREFIXES,
            debug=settings.DEBUG,
        )

    def start(self) -> None:
        """Create App DB tables and load the endpoint snapshot."""
        Base.metadata.create_all(bind=self.app_engine)
        count = self.endpoints.load()
        logger.info("project_runtime_started", endpoints=count)

    def close(self) -> None:
        self.project_engine.dispose()
        if self.app_engine is not self.project_engine:
            self.app_engine.dispose()
        logger.info("project_runtime_closed")
