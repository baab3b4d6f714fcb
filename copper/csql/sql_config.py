"""Configuration of the database connection and its migrations."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from copper.cerrors import Error

MIGRATIONS_SOURCE_DIR = "dir"
MIGRATIONS_SOURCE_EMBED = "embed"

MIGRATIONS_DIRECTION_UP = "up"
MIGRATIONS_DIRECTION_DOWN = "down"


class MigrationDirection(Enum):
    """Whether migrations are applied or rolled back."""

    UP = MIGRATIONS_DIRECTION_UP
    DOWN = MIGRATIONS_DIRECTION_DOWN


@dataclass
class MigrationsConfig:
    """Where migrations come from and which way they run.

    ``source`` is ``"embed"`` for the migrations directory given to the
    migrator, or ``"dir"`` for ``./migrations`` in the working directory.
    """

    direction: str = MIGRATIONS_DIRECTION_UP
    source: str = MIGRATIONS_SOURCE_EMBED

    def migrate_direction(self) -> MigrationDirection:
        """Return the configured direction, ignoring case."""
        try:
            return MigrationDirection(self.direction.lower())
        except (ValueError, AttributeError):
            raise Error("invalid migration direction", {"direction": self.direction}) from None


@dataclass
class Config:
    """Database dialect, connection string and migration settings."""

    dialect: str = ""
    dsn: str = ""
    migrations: MigrationsConfig = field(default_factory=MigrationsConfig)


def load_config(app_config: Any) -> Config:
    """Load the ``csql`` table from the app config."""
    try:
        return app_config.load("csql", Config())
    except Error as exc:
        raise Error("failed to load sql config", None, exc) from exc