from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ticketflow.core.config import settings


def _configure_sqlite(engine: Engine) -> None:
    """Enforce foreign keys and let SQLAlchemy own BEGIN so SAVEPOINT works on pysqlite."""

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def create_db_engine(database_url: str) -> Engine:
    """Build an engine for DATABASE_URL with per-dialect connect args."""
    url = make_url(database_url)
    backend = url.get_backend_name()

    if backend.startswith("postgresql"):
        return create_engine(
            database_url,
            pool_pre_ping=True,
            connect_args={"options": "-c timezone=utc"},
        )

    if backend == "sqlite":
        kwargs: dict = {"connect_args": {"check_same_thread": False}}
        if url.database in (None, "", ":memory:"):
            kwargs["poolclass"] = StaticPool
        engine = create_engine(database_url, **kwargs)
        _configure_sqlite(engine)
        return engine

    return create_engine(database_url, pool_pre_ping=True)


engine = create_db_engine(settings.DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@contextmanager
def atomic(db: Session) -> Iterator[Session]:
    """
    Run one service operation as a single transaction.

    Commits on success. On any error the whole unit (ticket row and its
    activity rows) is rolled back and the error re-raised.
    """
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
