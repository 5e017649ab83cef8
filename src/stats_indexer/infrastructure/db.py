from __future__ import annotations
from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker, DeclarativeBase
from sqlalchemy.pool import StaticPool
from stats_indexer.config import get_settings


class Base(DeclarativeBase):
    pass


def _dsn() -> str:
    return get_settings().database_url


def make_engine(url: str):
    if url.startswith("sqlite"):
        # in-memory databases must share a single connection across threads
        if url in ("sqlite://", "sqlite:///:memory:", "sqlite+pysqlite://"):
            return create_engine(url, connect_args={"check_same_thread": False}, poolclass=StaticPool)
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(url, pool_pre_ping=True)


engine = make_engine(_dsn())
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def override_engine(e):  # test helper
    global engine, SessionLocal
    engine = e
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def get_session_factory():
    """Return the current session factory (honours override_engine)."""
    return SessionLocal


def create_all():
    from stats_indexer.models import tables  # noqa: F401
    Base.metadata.create_all(engine)


def healthcheck() -> bool:
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
        return True
