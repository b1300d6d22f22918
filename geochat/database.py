from typing import Generator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session

from geochat import config


def _enable_postgis(dbapi_connection, connection_record) -> None:
    """
    Enable the PostGIS extension on every new PostgreSQL connection.

    - CREATE EXTENSION IF NOT EXISTS postgis;
    - Needs a role allowed to create extensions; on managed databases the
      migration (001) is expected to have done it already.
    """
    cursor = dbapi_connection.cursor()
    try:
        cursor.execute("CREATE EXTENSION IF NOT EXISTS postgis;")
        dbapi_connection.commit()
    finally:
        cursor.close()


def _configure_sqlite(engine: Engine) -> None:
    """
    SQLite has no row locks: every transaction starts with BEGIN IMMEDIATE so
    writers are serialised by the database lock (FOR UPDATE is a no-op there).
    The driver's own transaction handling is switched off so the BEGIN below
    is the only one emitted.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record) -> None:
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_db_engine(url: Optional[str] = None, **kwargs) -> Engine:
    """Build an engine for `url` (defaults to DATABASE_URL) with per-dialect setup."""
    url = url or config.DATABASE_URL
    if url.startswith("sqlite"):
        connect_args = kwargs.pop("connect_args", {})
        connect_args.setdefault("check_same_thread", False)
        connect_args.setdefault("timeout", 30)
        engine = create_engine(url, echo=False, future=True, connect_args=connect_args, **kwargs)
        _configure_sqlite(engine)
        return engine

    engine = create_engine(url, echo=False, future=True, pool_pre_ping=True, **kwargs)
    if engine.dialect.name == "postgresql":
        event.listen(engine, "connect", _enable_postgis)
    return engine


# Engine creation does not connect; the first session does
engine: Engine = create_db_engine()

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)


def get_db() -> Generator[Session, None, None]:
    """
    Request-scoped session for FastAPI dependencies.

    Routers own the transaction: commit on success, rollback on error.
    """
    db: Session = SessionLocal()
    try:
        yield db
    finally:
        db.close()
