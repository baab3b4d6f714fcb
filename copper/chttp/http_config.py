"""HTTP server configuration and an empty file system for apps without HTML."""

from __future__ import annotations

import errno
from dataclasses import dataclass
from typing import Any, NoReturn

from copper.cerrors import Error

DEFAULT_PORT = 7501


@dataclass
class Config:
    """Parameters that configure the HTTP server and HTML rendering."""

    port: int = DEFAULT_PORT
    use_local_html: bool = False
    render_html_error: bool = False
    enable_single_page_routing: bool = False


def load_config(app_config: Any) -> Config:
    """Load the ``chttp`` table from the app config."""
    try:
        config = app_config.load("chttp", Config)
    except Error as exc:
        raise Error("failed to load chttp config", None, exc) from exc

    if config.port < 0:
        raise Error(
            "failed to load chttp config",
            None,
            ValueError(f"port must not be negative, got {config.port}"),
        )

    return config


class EmptyFS:
    """A file system with no files, standing in for an empty directory."""

    def open(self, name: str) -> NoReturn:
        """Always fail: there is nothing to open."""
        raise FileNotFoundError(errno.ENOENT, "empty fs", name)