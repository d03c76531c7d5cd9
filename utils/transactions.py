import logging
from contextlib import contextmanager

from sqlalchemy import event
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from services.errors import Conflict, OperationFailed, PlatformError

logger = logging.getLogger(__name__)


@contextmanager
def atomic(session):
    """
    Commit the block as one unit of work or roll all of it back.

    Domain errors propagate unchanged; store errors are folded into the
    error taxonomy so callers never see a raw SQLAlchemy exception.
    """
    try:
        yield session
        session.commit()
    except PlatformError:
        session.rollback()
        raise
    except IntegrityError as exc:
        session.rollback()
        logger.warning("Integrity error, transaction rolled back: %s", exc.orig)
        raise Conflict("Conflicting write rejected by the database") from exc
    except SQLAlchemyError as exc:
        session.rollback()
        logger.exception("Database error, transaction rolled back")
        raise OperationFailed("Database operation failed") from exc
    except Exception:
        session.rollback()
        raise


def serialize_sqlite_writes(engine):
    """
    SQLite ignores SELECT ... FOR UPDATE, so open every transaction with
    BEGIN IMMEDIATE instead: the write lock is taken up front and concurrent
    check-then-insert sequences queue behind each other.
    """

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")
