# database.py
import logging
import sqlite3
from contextlib import asynccontextmanager

from databases import Database
from sqlalchemy import create_engine, MetaData

from slot_swap.errors import ErrorKind, SwapError

logger = logging.getLogger(__name__)

metadata = MetaData()


def create_database(database_url: str) -> Database:
    """Creates the async storage handle shared by the slot store and the negotiator."""
    return Database(database_url)


def create_tables(database_url: str) -> None:
    """Creates any missing tables using a short-lived sync engine."""
    # Table definitions must be registered on `metadata` before create_all
    import slot_swap.models  # noqa: F401

    engine = create_engine(database_url)
    try:
        metadata.create_all(bind=engine)
    finally:
        engine.dispose()


# SQLSTATEs PostgreSQL drivers attach to aborted transactions
RETRYABLE_SQLSTATES = {"40001", "40P01"}  # serialization_failure, deadlock_detected
UNIQUE_VIOLATION_SQLSTATE = "23505"


def _sqlstate(exc: BaseException):
    # asyncpg exposes .sqlstate, psycopg2 exposes .pgcode
    return getattr(exc, "sqlstate", None) or getattr(exc, "pgcode", None)


def is_unique_violation(exc: BaseException) -> bool:
    return isinstance(exc, sqlite3.IntegrityError) or _sqlstate(exc) == UNIQUE_VIOLATION_SQLSTATE


@asynccontextmanager
async def unit_of_work(database: Database):
    """
    Runs the enclosed reads and writes as one transaction.

    Commits on normal exit and rolls back on any exception. A lost write race
    ("database is locked" on SQLite, a deadlock or serialization failure on
    PostgreSQL) is surfaced as a Conflict so the caller can re-read and retry.
    Any other SQLite failure becomes an Internal error.
    """
    try:
        async with database.transaction():
            yield
    except sqlite3.OperationalError as exc:
        if "locked" not in str(exc).lower():
            logger.error(f"Transaction aborted by storage failure: {exc}")
            raise SwapError(ErrorKind.INTERNAL, str(exc)) from exc
        logger.warning(f"Transaction aborted on lock contention: {exc}")
        raise SwapError(ErrorKind.CONFLICT, "The slots were modified concurrently, please retry") from exc
    except Exception as exc:
        if _sqlstate(exc) not in RETRYABLE_SQLSTATES:
            raise
        logger.warning(f"Transaction aborted on lock contention: {exc}")
        raise SwapError(ErrorKind.CONFLICT, "The slots were modified concurrently, please retry") from exc
