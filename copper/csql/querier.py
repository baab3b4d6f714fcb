"""Parameterised queries run within the current transaction."""

from __future__ import annotations

import itertools
import re
from typing import Any, Dict, List, Optional, Sequence, Tuple

from copper.cerrors import Error
from copper.csql.sql_config import Config
from copper.csql.sql_tx import Transaction, tx_from_ctx

_DOLLAR = "$"
_NAMED = ":arg"
_AT = "@p"

_BIND_PREFIXES = {
    "postgres": _DOLLAR,
    "pgx": _DOLLAR,
    "pq-timeouts": _DOLLAR,
    "cloudsqlpostgres": _DOLLAR,
    "ql": _DOLLAR,
    "nrpostgres": _DOLLAR,
    "cockroach": _DOLLAR,
    "oci8": _NAMED,
    "ora": _NAMED,
    "goracle": _NAMED,
    "godror": _NAMED,
    "sqlserver": _AT,
}

_BINDVAR = re.compile(r"\?")


def rebind(dialect: str, query: str) -> str:
    """Rewrite ``?`` placeholders into the bind style of ``dialect``.

    Dialects that use ``?`` themselves, and unknown ones, are left as is.
    """
    prefix = _BIND_PREFIXES.get(dialect)
    if prefix is None:
        return query
    counter = itertools.count(1)
    return _BINDVAR.sub(lambda _: f"{prefix}{next(counter)}", query)


def _is_list(value: Any) -> bool:
    return isinstance(value, (list, tuple))


def expand_in(query: str, args: Sequence[Any]) -> Tuple[str, List[Any]]:
    """Expand list arguments into one ``?`` per element.

    ``select * from t where a in (?)`` with ``[[1, 2]]`` becomes
    ``select * from t where a in (?, ?)`` with ``[1, 2]``. Without list
    arguments the query is returned unchanged.
    """
    args = list(args)
    if not any(_is_list(arg) for arg in args):
        return query, args

    pieces = query.split("?")
    bindvars = len(pieces) - 1
    if bindvars < len(args):
        raise ValueError("number of bindVars less than number arguments")
    if bindvars > len(args):
        raise ValueError("number of bindVars exceeds arguments")

    parts = [pieces[0]]
    expanded: List[Any] = []
    for arg, piece in zip(args, pieces[1:]):
        if _is_list(arg):
            if not arg:
                raise ValueError("empty slice passed to 'in' query")
            parts.append(", ".join("?" * len(arg)))
            expanded.extend(arg)
        else:
            parts.append("?")
            expanded.append(arg)
        parts.append(piece)

    return "".join(parts), expanded


def _row_dict(cursor: Any, row: Sequence[Any]) -> Dict[str, Any]:
    return {column[0]: value for column, value in zip(cursor.description, row)}


class Querier:
    """Runs queries in the transaction made current by ``ctx_with_tx``.

    Rows are returned as dicts keyed by column name.
    """

    def __init__(self, db: Any, config: Optional[Config] = None) -> None:
        self.db = db
        self.config = config if config is not None else Config()
        self._in = False

    def with_in(self) -> "Querier":
        """Return a querier that expands list arguments for ``IN (?)`` clauses."""
        querier = Querier(self.db, self.config)
        querier._in = True
        return querier

    def _execute(self, query: str, args: Sequence[Any]) -> Any:
        params = list(args)
        if self._in:
            try:
                query, params = expand_in(query, params)
            except ValueError as exc:
                raise Error("failed to create IN query", None, exc) from exc

        tx: Transaction = tx_from_ctx()
        if tx.done:
            raise Error("sql: transaction has already been committed or rolled back")

        cursor = tx.connection.cursor()
        cursor.execute(rebind(tx.dialect, query), params)
        return cursor

    def get(self, query: str, *args: Any) -> Dict[str, Any]:
        """Return the first row of ``query``; raise if there is none."""
        cursor = self._execute(query, args)
        row = cursor.fetchone()
        if row is None:
            raise Error("sql: no rows in result set")
        return _row_dict(cursor, row)

    def select(self, query: str, *args: Any) -> List[Dict[str, Any]]:
        """Return every row of ``query``."""
        cursor = self._execute(query, args)
        return [_row_dict(cursor, row) for row in cursor.fetchall()]

    def exec(self, query: str, *args: Any) -> Any:
        """Run ``query`` and return its cursor, giving ``rowcount`` and ``lastrowid``."""
        return self._execute(query, args)