"""Opening the app's database connection."""

from __future__ import annotations

import sqlite3
from typing import Any

from copper.cerrors import Error
from copper.clifecycle import Lifecycle
from copper.clogger import Logger
from copper.csql.sql_config import Config

_SQLITE_DIALECTS = frozenset({"sqlite3", "sqlite"})


def _open(config: Config) -> Any:
    if config.dialect not in _SQLITE_DIALECTS:
        raise ValueError(f"sql: unknown driver {config.dialect!r}")
    return sqlite3.connect(
        config.dsn,
        isolation_level=None,
        check_same_thread=False,
        uri=config.dsn.startswith("file:"),
    )


def new_db_connection(lifecycle: Lifecycle, config: Config, logger: Logger) -> Any:
    """Open and check a database connection that is closed when the app stops.

    The connection runs in autocommit mode; transactions are begun explicitly.
    """
    logger.with_tags({"dialect": config.dialect}).info("Opening a database connection..")

    try:
        db = _open(config)
    except (ValueError, sqlite3.Error) as exc:
        raise Error("failed to open db connection", {"dialect": config.dialect}, exc) from exc

    try:
        db.execute("SELECT 1").fetchone()
    except sqlite3.Error as exc:
        db.close()
        raise Error("failed to ping db", None, exc) from exc

    def close(timeout: float) -> None:
        logger.info("Closing database connection..")
        try:
            db.close()
        except sqlite3.Error as exc:
            raise Error("failed to close db connection", None, exc) from exc

    lifecycle.on_stop(close)

    return db