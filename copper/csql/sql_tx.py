"""Database transactions bound to the current context, and a middleware that
wraps each HTTP request in one."""

from __future__ import annotations

from contextlib import ExitStack, contextmanager
from contextvars import ContextVar
from typing import Any, Iterator, Optional

from werkzeug.wrappers import Request, Response

from copper.cerrors import Error
from copper.chttp.handler import Handler, Middleware
from copper.clogger import Logger, new_noop
from copper.csql.sql_config import Config

_TX_DONE = "sql: transaction has already been committed or rolled back"
_MIN_ERROR_STATUS = 400


class Transaction:
    """An open transaction on a DB-API connection."""

    def __init__(self, connection: Any, dialect: str) -> None:
        self.connection = connection
        self.dialect = dialect
        self._done = False

    @property
    def done(self) -> bool:
        """Whether the transaction was committed or rolled back."""
        return self._done

    def _finish(self) -> None:
        if self._done:
            raise Error(_TX_DONE)
        self._done = True

    def commit(self) -> None:
        """Commit the transaction."""
        self._finish()
        try:
            self.connection.commit()
        except Exception as exc:  # noqa: BLE001 - drivers raise their own types
            raise Error("failed to commit database transaction", None, exc) from exc

    def rollback(self) -> None:
        """Roll the transaction back."""
        self._finish()
        try:
            self.connection.rollback()
        except Exception as exc:  # noqa: BLE001 - drivers raise their own types
            raise Error("failed to roll back database transaction", None, exc) from exc


_current_tx: ContextVar[Optional[Transaction]] = ContextVar("copper_csql_tx", default=None)


@contextmanager
def ctx_with_tx(db: Any, dialect: str) -> Iterator[Transaction]:
    """Begin a transaction on ``db`` and make it current within the block.

    Queries run through a Querier inside the block use this transaction.
    Committing or rolling it back is left to the caller.
    """
    try:
        db.cursor().execute("BEGIN")
    except Exception as exc:  # noqa: BLE001 - drivers raise their own types
        raise Error("failed to begin db transaction", {"dialect": dialect}, exc) from exc

    tx = Transaction(db, dialect)
    token = _current_tx.set(tx)
    try:
        yield tx
    finally:
        _current_tx.reset(token)


def tx_from_ctx() -> Transaction:
    """Return the current transaction set up by :func:`ctx_with_tx`."""
    tx = _current_tx.get()
    if tx is None:
        raise Error("no database transaction in the context")
    return tx


class TxMiddleware(Middleware):
    """Runs each request in a transaction.

    The transaction is committed for responses below 400 and rolled back
    otherwise, or when the handler raises.
    """

    def __init__(self, db: Any, config: Optional[Config] = None, logger: Optional[Logger] = None) -> None:
        self.db = db
        self.config = config if config is not None else Config()
        self.logger = logger if logger is not None else new_noop()

    def handle(self, next_handler: Handler) -> Handler:
        def handler(request: Request) -> Optional[Response]:
            with ExitStack() as stack:
                try:
                    tx = stack.enter_context(ctx_with_tx(self.db, self.config.dialect))
                except Error as exc:
                    self.logger.error("Failed to create context with database transaction", exc)
                    return Response(status=500)

                try:
                    response = next_handler(request)
                except BaseException:
                    self._rollback_open(tx)
                    raise

                return self._settle(tx, response)

        return handler

    def _settle(self, tx: Transaction, response: Optional[Response]) -> Optional[Response]:
        if tx.done:
            return response

        status = 200 if response is None else response.status_code

        if status >= _MIN_ERROR_STATUS:
            try:
                tx.rollback()
            except Error as exc:
                self.logger.with_tags({"originalStatusCode": status}).error(
                    "Failed to roll back database transaction", exc
                )
                return Response(status=500)
            return response

        try:
            tx.commit()
        except Error as exc:
            self.logger.error("Failed to commit database transaction", exc)
            return Response(status=500)
        return response

    def _rollback_open(self, tx: Transaction) -> None:
        if tx.done:
            return
        try:
            tx.rollback()
        except Error as exc:
            self.logger.error("Failed to rollback database transaction", exc)
            return
        self.logger.warn("Rolled back an unexpectedly open database transaction", None)