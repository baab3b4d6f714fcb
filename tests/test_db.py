import sqlite3

import pytest

from copper.cerrors import Error
from copper.clifecycle import Lifecycle
from copper.clogger import Level, new_noop, new_recorder
from copper.csql.db import new_db_connection
from copper.csql.sql_config import Config


def test_new_db_connection():
    logger = new_noop()
    lifecycle = Lifecycle()

    db = new_db_connection(lifecycle, Config(dialect="sqlite3", dsn=":memory:"), logger)
    assert db.execute("select 1").fetchone() == (1,)

    lifecycle.stop(logger)

    with pytest.raises(sqlite3.ProgrammingError):
        db.execute("select 1")


def test_new_db_connection_logs():
    logs = []
    logger = new_recorder(logs)
    lifecycle = Lifecycle()

    new_db_connection(lifecycle, Config(dialect="sqlite3", dsn=":memory:"), logger)
    lifecycle.stop(logger)

    assert [(log.level, log.msg) for log in logs] == [
        (Level.INFO, "Opening a database connection.."),
        (Level.INFO, "Closing database connection.."),
    ]
    assert logs[0].tags == {"dialect": "sqlite3"}


def test_new_db_connection_file_persists(tmp_path):
    dsn = str(tmp_path / "app.db")
    lifecycle = Lifecycle()

    db = new_db_connection(lifecycle, Config(dialect="sqlite3", dsn=dsn), new_noop())
    db.execute("create table people (name text)")
    db.execute("insert into people (name) values ('test')")
    lifecycle.stop(new_noop())

    again = new_db_connection(Lifecycle(), Config(dialect="sqlite", dsn=dsn), new_noop())
    assert again.execute("select name from people").fetchall() == [("test",)]
    again.close()


def test_new_db_connection_unknown_dialect():
    lifecycle = Lifecycle()

    with pytest.raises(Error) as exc_info:
        new_db_connection(lifecycle, Config(dialect="nosuchdb", dsn=""), new_noop())

    message = str(exc_info.value)
    assert message.startswith("failed to open db connection where dialect=nosuchdb")
    assert "unknown driver" in message


def test_new_db_connection_bad_path(tmp_path):
    dsn = str(tmp_path / "missing" / "app.db")

    with pytest.raises(Error, match="failed to open db connection"):
        new_db_connection(Lifecycle(), Config(dialect="sqlite3", dsn=dsn), new_noop())