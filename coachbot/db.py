"""Shared SQLite helpers for the relational and vector stores."""

from __future__ import annotations

import asyncio
import datetime
import sqlite3
from pathlib import Path
from typing import TYPE_CHECKING, TypeVar

from .config import config
from .errors import PersistenceError

if TYPE_CHECKING:
    from collections.abc import Callable

T = TypeVar("T")

logger = config.get_logger(__name__)


def utc_now() -> str:
    """Current UTC time as an ISO-8601 string with microseconds.

    Returns:
        Timestamp string that sorts chronologically.
    """
    return datetime.datetime.now(tz=datetime.UTC).isoformat()


def connect(db_path: Path) -> sqlite3.Connection:
    """Open a connection with row access by column name.

    Returns:
        New SQLite connection; callers own its lifetime.
    """
    conn = sqlite3.connect(str(db_path), timeout=30)
    conn.row_factory = sqlite3.Row
    return conn


def prepare_database(db_path: Path) -> Path:
    """Create the database directory and enable write-ahead logging.

    Returns:
        The resolved database path.
    """
    db_path = Path(db_path)
    db_path.parent.mkdir(exist_ok=True, parents=True)
    with connect(db_path) as conn:
        conn.execute("PRAGMA journal_mode=WAL")
    return db_path


async def run_in_thread(
    operation: str,
    func: Callable[..., T],
    *args: object,
    errors: tuple[type[Exception], ...] = (sqlite3.Error,),
) -> T:
    """Run a blocking store call off the event loop.

    Returns:
        Whatever ``func`` returns.

    Raises:
        PersistenceError: If the call raises one of ``errors``.
    """
    try:
        return await asyncio.to_thread(func, *args)
    except errors as exc:
        logger.exception("Database error during %s", operation)
        msg = f"Database error during {operation}"
        raise PersistenceError(msg, details=str(exc)) from exc
