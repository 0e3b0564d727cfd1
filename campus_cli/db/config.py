from typing import Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.pool import NullPool

from campus_cli.config import Settings
from campus_cli.models import Base
from campus_cli.utils.logging_config import get_logger

logger = get_logger(__name__)

TIMEOUT_SECONDS = 120


def _register_sqlite_locking(engine: Engine) -> None:
    """Take the write lock when a transaction starts so parallel batches queue up."""

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def get_engine(database_url: Optional[str] = None) -> Engine:
    url = database_url or Settings.from_env().database_url
    if url.startswith("sqlite"):
        logger.info(f"Using SQLite database at {url}")
        engine = create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": TIMEOUT_SECONDS},
            echo=False,
            poolclass=NullPool,
        )
        _register_sqlite_locking(engine)
        return engine

    logger.info("Using remote database")
    return create_engine(url, echo=False, pool_pre_ping=True)


def init_db(engine: Engine) -> None:
    Base.metadata.create_all(engine)

