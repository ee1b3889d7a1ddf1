"""
Database engines and session management - DUAL DATABASE ARCHITECTURE

App DB:     users, project, endpoint definitions, function metadata, audit log.
Project DB: the project's own tables and functions; only reached through
            the SQL execution engine.
"""
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.pool import QueuePool, StaticPool

Base = declarative_base()


def build_engine(
    url: str,
    pool_size: int = 5,
    pool_timeout: int = 30,
    echo: bool = False,
    max_overflow: int = 0,
) -> Engine:
    """
    Create a SQLAlchemy engine.

    Postgres and file-backed SQLite engines get a bounded QueuePool;
    acquisition waits at most ``pool_timeout`` seconds. In-memory SQLite
    (used by tests) gets a single shared connection instead.
    """
    if url.startswith("sqlite"):
        if url in ("sqlite://", "sqlite:///:memory:"):
            return create_engine(
                url,
                echo=echo,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
        return create_engine(
            url,
            poolclass=QueuePool,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_timeout=pool_timeout,
            echo=echo,
            connect_args={"check_same_thread": False},
        )

    return create_engine(
        url,
        poolclass=QueuePool,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_timeout=pool_timeout,
        pool_pre_ping=True,
        echo=echo,
        connect_args={"connect_timeout": 10},
    )


def build_session_factory(engine: Engine) -> sessionmaker:
    """Session factory bound to the App DB engine."""
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


@contextmanager
def session_scope(factory: sessionmaker) -> Generator[Session, None, None]:
    """Context manager for an App DB session."""
    db = factory()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
