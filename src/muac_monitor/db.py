"""Engine and session wiring for the MUAC monitor database.

The service owns the label tables (severity tags, recommendations) and the
measurements table. Regions, operators and patients are shared with the CRUD
layer and are only read here, apart from the foreign keys measurements hold.
"""

from collections.abc import Generator

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from .config import get_settings

Base = declarative_base()

settings = get_settings()


def enable_sqlite_foreign_keys(target: Engine) -> None:
    """Make SQLite enforce foreign keys and their ``ondelete`` actions."""

    if target.dialect.name != "sqlite":
        return

    @event.listens_for(target, "connect")
    def _set_pragma(dbapi_connection, _connection_record) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def build_engine(database_url: str, *, echo: bool = False, **kwargs) -> Engine:
    if database_url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    created = create_engine(database_url, echo=echo, future=True, **kwargs)
    enable_sqlite_foreign_keys(created)
    return created


engine = build_engine(settings.database_url, echo=settings.sql_echo)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


def get_db_session() -> Generator[Session, None, None]:
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def init_db() -> None:
    """Create any missing tables and the partial unique label indexes."""

    from . import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
