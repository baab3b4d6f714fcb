import sqlite3

import pytest
from werkzeug.wrappers import Request, Response

from copper.cerrors import Error
from copper.clogger import Level, new_noop, new_recorder
from copper.csql.sql_config import Config
from copper.csql.sql_tx import Transaction, TxMiddleware, ctx_with_tx, tx_from_ctx


@pytest.fixture
def db():
    conn = sqlite3.connect(":memory:", isolation_level=None)
    conn.execute("create table people (name text)")
    yield conn
    conn.close()


def _names(db):
    return db.execute("select name from people").fetchall()


def _insert(request):
    tx_from_ctx().connection.cursor().execute("insert into people (name) values ('test')")


def test_ctx_with_tx(db):
    with ctx_with_tx(db, "sqlite3") as tx1:
        tx2 = tx_from_ctx()
        assert tx1 is tx2
        assert tx2.dialect == "sqlite3"
        tx1.rollback()


def test_tx_from_ctx_without_tx(db):
    with ctx_with_tx(db, "sqlite3") as tx:
        tx.commit()

    with pytest.raises(Error, match="no database transaction in the context"):
        tx_from_ctx()


def test_transaction_commit_twice(db):
    with ctx_with_tx(db, "sqlite3") as tx:
        tx.commit()
        assert tx.done
        with pytest.raises(Error, match="already been committed or rolled back"):
            tx.commit()
        with pytest.raises(Error, match="already been committed or rolled back"):
            tx.rollback()


def test_transaction_rollback_discards(db):
    with ctx_with_tx(db, "sqlite3") as tx:
        tx.connection.execute("insert into people (name) values ('test')")
        tx.rollback()

    assert _names(db) == []


def test_ctx_with_tx_begin_failure(db):
    db.close()

    with pytest.raises(Error, match="failed to begin db transaction"):
        with ctx_with_tx(db, "sqlite3"):
            pass


def test_middleware_commit(db):
    mw = TxMiddleware(db, Config(dialect="sqlite3"), new_noop())

    response = mw.handle(_insert)(Request.from_values("/"))

    assert response is None
    assert _names(db) == [("test",)]


def test_middleware_commit_on_redirect(db):
    mw = TxMiddleware(db, Config(dialect="sqlite3"), new_noop())

    def handler(request):
        _insert(request)
        return Response(status=302)

    response = mw.handle(handler)(Request.from_values("/"))

    assert response.status_code == 302
    assert _names(db) == [("test",)]


def test_middleware_rollback(db):
    mw = TxMiddleware(db, Config(dialect="sqlite3"), new_noop())

    def handler(request):
        _insert(request)
        return Response(status=500)

    response = mw.handle(handler)(Request.from_values("/"))

    assert response.status_code == 500
    assert _names(db) == []


def test_middleware_rollback_on_exception(db):
    logs = []
    mw = TxMiddleware(db, Config(dialect="sqlite3"), new_recorder(logs))

    def handler(request):
        _insert(request)
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError, match="boom"):
        mw.handle(handler)(Request.from_values("/"))

    assert _names(db) == []
    assert [(log.level, log.msg) for log in logs] == [
        (Level.WARN, "Rolled back an unexpectedly open database transaction")
    ]


def test_middleware_begin_failure(db):
    logs = []
    mw = TxMiddleware(db, Config(dialect="sqlite3"), new_recorder(logs))
    db.close()

    response = mw.handle(_insert)(Request.from_values("/"))

    assert response.status_code == 500
    assert logs[0].msg == "Failed to create context with database transaction"
    assert logs[0].level == Level.ERROR


def test_middleware_handler_finishing_tx_itself(db):
    mw = TxMiddleware(db, Config(dialect="sqlite3"), new_noop())

    def handler(request):
        _insert(request)
        tx_from_ctx().rollback()
        return Response(status=200)

    response = mw.handle(handler)(Request.from_values("/"))

    assert response.status_code == 200
    assert _names(db) == []


def test_transaction_is_plain_holder(db):
    tx = Transaction(db, "sqlite3")

    assert tx.connection is db
    assert tx.done is False