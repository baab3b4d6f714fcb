"""Running SQL migrations, recorded in a ``gorp_migrations`` table.

A migration file holds ``-- +migrate Up`` and ``-- +migrate Down`` sections.
Statements end with a line ending in ``;``, or are enclosed between
``-- +migrate StatementBegin`` and ``-- +migrate StatementEnd``. Adding
``notransaction`` after ``Up`` or ``Down`` runs that section outside a
transaction.
"""

from __future__ import annotations

import hashlib
import os
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, List, Optional, Tuple

from copper.cerrors import Error
from copper.clogger import Logger, new_noop
from copper.csql.querier import rebind
from copper.csql.sql_config import MIGRATIONS_SOURCE_DIR, Config, MigrationDirection

_EMPTY_MIGRATIONS_CHECKSUM = "fba9ab24993a94e181dc952f2568a4e98b47e331d89772af3115fe1c7b90d27f"
_LOCAL_MIGRATIONS_DIR = os.path.join(".", "migrations")
_TABLE = "gorp_migrations"
_COMMAND_PREFIX = "-- +migrate"
_NUMBER_PREFIX = re.compile(r"^(\d+)")


@dataclass
class Migration:
    """The statements of one migration file."""

    id: str
    up: List[str] = field(default_factory=list)
    down: List[str] = field(default_factory=list)
    disable_transaction_up: bool = False
    disable_transaction_down: bool = False

    def sort_key(self) -> Tuple[int, int, str]:
        """Order by numeric prefix first, then by id; numbered files go first."""
        match = _NUMBER_PREFIX.match(self.id)
        if match is None:
            return (1, 0, self.id)
        return (0, int(match.group(1)), self.id)


def parse_migration(name: str, text: str) -> Migration:
    """Parse the text of a migration file named ``name``."""
    migration = Migration(id=name)
    statements: Optional[List[str]] = None
    buffer: List[str] = []
    in_block = False
    found = False

    def unterminated() -> bool:
        return any(line.strip() for line in buffer)

    for raw in text.splitlines():
        line = raw.strip()

        if line.startswith(_COMMAND_PREFIX):
            command, *options = line[len(_COMMAND_PREFIX):].split() or [""]
            if command in ("Up", "Down"):
                if unterminated():
                    raise Error(
                        "the last statement must be ended by a semicolon or "
                        "'-- +migrate StatementEnd' marker",
                        {"name": name},
                    )
                buffer.clear()
                found = True
                no_tx = "notransaction" in options
                if command == "Up":
                    statements = migration.up
                    migration.disable_transaction_up = no_tx
                else:
                    statements = migration.down
                    migration.disable_transaction_down = no_tx
            elif command == "StatementBegin":
                if statements is None:
                    raise Error("StatementBegin outside of an Up or Down section", {"name": name})
                in_block = True
            elif command == "StatementEnd":
                if not in_block:
                    raise Error("StatementEnd without StatementBegin", {"name": name})
                in_block = False
                statements.append("\n".join(buffer).strip())
                buffer.clear()
            else:
                raise Error("unknown migration command", {"name": name, "command": command})
            continue

        if statements is None:
            continue
        if not in_block and (line.startswith("--") or (not line and not buffer)):
            continue

        buffer.append(raw)
        if not in_block and line.endswith(";"):
            statements.append("\n".join(buffer).strip())
            buffer.clear()

    if in_block or unterminated():
        raise Error(
            "the last statement must be ended by a semicolon or '-- +migrate StatementEnd' marker",
            {"name": name},
        )
    if not found:
        raise Error("no Up/Down annotations found, so no statements were executed", {"name": name})

    return migration


class Migrator:
    """Applies or rolls back the migrations in a directory of ``.sql`` files."""

    def __init__(
        self,
        db: Any,
        migrations: Any = None,
        config: Optional[Config] = None,
        logger: Optional[Logger] = None,
    ) -> None:
        self.db = db
        self.migrations = migrations
        self.config = config if config is not None else Config()
        self.logger = logger if logger is not None else new_noop()

    def run(self) -> None:
        """Run the migrations in the configured direction."""
        self.logger.with_tags(
            {
                "direction": self.config.migrations.direction,
                "source": self.config.migrations.source,
            }
        ).info("Running database migrations..")

        try:
            direction = self.config.migrations.migrate_direction()
        except Error as exc:
            raise Error("failed to get sql migrate direction from config", None, exc) from exc

        try:
            has_migrations = self._has_migrations()
        except Error as exc:
            raise Error("failed to check for migrations", None, exc) from exc

        if not has_migrations:
            self.logger.info("No migrations found")
            return

        source = self.migrations
        if self.config.migrations.source == MIGRATIONS_SOURCE_DIR:
            source = _LOCAL_MIGRATIONS_DIR

        try:
            count = self._exec(source, direction)
        except Error as exc:
            raise Error("failed to exec database migrations", None, exc) from exc

        self.logger.with_tags({"count": count}).info("Successfully applied migrations")

    def _has_migrations(self) -> bool:
        if self.migrations is None:
            return False
        try:
            with os.scandir(self.migrations) as it:
                entries = list(it)
        except OSError as exc:
            raise Error("failed to read migrations dir", None, exc) from exc

        if not entries:
            return False
        if len(entries) > 1:
            return True

        digest = hashlib.sha256()
        try:
            with open(entries[0].path, "rb") as fh:
                for chunk in iter(lambda: fh.read(65536), b""):
                    digest.update(chunk)
        except OSError as exc:
            raise Error("failed to open migrations file", {"name": entries[0].name}, exc) from exc

        return digest.hexdigest() != _EMPTY_MIGRATIONS_CHECKSUM

    @staticmethod
    def _load(source: Any) -> List[Migration]:
        try:
            files = sorted(
                path for path in Path(source).iterdir() if path.suffix == ".sql" and path.is_file()
            )
            contents = [(path.name, path.read_text(encoding="utf-8")) for path in files]
        except OSError as exc:
            raise Error("failed to read migrations", {"source": os.fspath(source)}, exc) from exc

        migrations = [parse_migration(name, text) for name, text in contents]
        return sorted(migrations, key=Migration.sort_key)

    def _exec(self, source: Any, direction: MigrationDirection) -> int:
        migrations = self._load(source)

        try:
            cursor = self.db.cursor()
            cursor.execute(
                f"CREATE TABLE IF NOT EXISTS {_TABLE} "
                "(id VARCHAR(255) NOT NULL PRIMARY KEY, applied_at DATETIME)"
            )
            self.db.commit()
            cursor.execute(f"SELECT id FROM {_TABLE}")
            applied = {row[0] for row in cursor.fetchall()}
        except Exception as exc:  # noqa: BLE001 - drivers raise their own types
            raise Error("failed to read applied migrations", None, exc) from exc

        unknown = sorted(applied - {migration.id for migration in migrations})
        if unknown:
            raise Error("unknown migration in database", {"id": unknown[0]})

        if direction is MigrationDirection.UP:
            plan = [
                (m, m.up, m.disable_transaction_up, True) for m in migrations if m.id not in applied
            ]
        else:
            plan = [
                (m, m.down, m.disable_transaction_down, False)
                for m in reversed(migrations)
                if m.id in applied
            ]

        for migration, statements, no_tx, up in plan:
            self._apply(migration, statements, no_tx, up)

        return len(plan)

    def _apply(self, migration: Migration, statements: List[str], no_tx: bool, up: bool) -> None:
        dialect = self.config.dialect
        cursor = self.db.cursor()
        try:
            if not no_tx:
                cursor.execute("BEGIN")
            for statement in statements:
                cursor.execute(statement)
            if up:
                cursor.execute(
                    rebind(dialect, f"INSERT INTO {_TABLE} (id, applied_at) VALUES (?, ?)"),
                    [migration.id, datetime.now(timezone.utc).isoformat()],
                )
            else:
                cursor.execute(rebind(dialect, f"DELETE FROM {_TABLE} WHERE id = ?"), [migration.id])
        except Exception as exc:  # noqa: BLE001 - drivers raise their own types
            if not no_tx:
                self.db.rollback()
            raise Error("failed to run migration", {"id": migration.id}, exc) from exc

        self.db.commit()