import sqlite3

import pytest

from copper.cerrors import Error
from copper.csql.querier import Querier, expand_in, rebind
from copper.csql.sql_config import Config
from copper.csql.sql_tx import ctx_with_tx


@pytest.fixture
def db():
    conn = sqlite3.connect(":memory:", isolation_level=None)
    conn.executescript("create table people (name text);insert into people (name) values ('test');")
    yield conn
    conn.close()


@pytest.fixture
def querier(db):
    return Querier(db, Config(dialect="sqlite3"))


def test_get(db, querier):
    with ctx_with_tx(db, "sqlite3") as tx:
        assert querier.get("select * from people") == {"name": "test"}
        tx.rollback()


def test_get_no_rows(db, querier):
    with ctx_with_tx(db, "sqlite3") as tx:
        with pytest.raises(Error, match="no rows in result set"):
            querier.get("select * from people where name = ?", "nobody")
        tx.rollback()


def test_select(db, querier):
    with ctx_with_tx(db, "sqlite3") as tx:
        rows = querier.select("select * from people")
        tx.rollback()

    assert len(rows) == 1
    assert rows[0]["name"] == "test"


def test_select_in(db, querier):
    with ctx_with_tx(db, "sqlite3") as tx:
        rows = querier.with_in().select("select * from people where name in (?)", ["test"])
        tx.rollback()

    assert rows == [{"name": "test"}]


def test_with_in_returns_new_querier(querier):
    in_querier = querier.with_in()

    assert in_querier is not querier
    assert in_querier.db is querier.db
    assert in_querier.config == querier.config


def test_select_in_empty_list(db, querier):
    with ctx_with_tx(db, "sqlite3") as tx:
        with pytest.raises(Error, match="failed to create IN query"):
            querier.with_in().select("select * from people where name in (?)", [])
        tx.rollback()


def test_exec(db, querier):
    with ctx_with_tx(db, "sqlite3") as tx:
        res = querier.exec("delete from people")
        tx.commit()

    assert res.rowcount == 1
    assert db.execute("select count(*) from people").fetchone() == (0,)


def test_exec_without_tx(querier):
    with pytest.raises(Error, match="no database transaction in the context"):
        querier.exec("delete from people")


def test_exec_after_tx_done(db, querier):
    with ctx_with_tx(db, "sqlite3") as tx:
        tx.commit()
        with pytest.raises(Error, match="already been committed"):
            querier.exec("delete from people")


def test_expand_in():
    query, args = expand_in("select * from t where a in (?) and b = ?", [[1, 2, 3], "x"])

    assert query == "select * from t where a in (?, ?, ?) and b = ?"
    assert args == [1, 2, 3, "x"]


def test_expand_in_without_lists():
    assert expand_in("select ? and ?", [1, 2]) == ("select ? and ?", [1, 2])


@pytest.mark.parametrize(
    "query, args, message",
    [
        ("select ?", [[1], 2], "less than"),
        ("select ? ? ?", [[1], 2], "exceeds"),
        ("select ?", [[]], "empty slice"),
    ],
)
def test_expand_in_errors(query, args, message):
    with pytest.raises(ValueError, match=message):
        expand_in(query, args)


def test_rebind_question_dialects_unchanged():
    query = "select * from t where a = ? and b = ?"

    assert rebind("sqlite3", query) == query
    assert rebind("mysql", query) == query
    assert rebind("unknown", query) == query


def test_rebind_postgres():
    assert rebind("postgres", "select ? , ?") == "select $1 , $2"


def test_rebind_named_and_at():
    assert rebind("oci8", "a = ? and b = ?") == "a = :arg1 and b = :arg2"
    assert rebind("sqlserver", "a = ?") == "a = @p1"