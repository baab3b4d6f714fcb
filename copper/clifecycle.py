"""Application lifecycle: cleanup functions that run before the app exits."""

from __future__ import annotations

from typing import Callable, List, Optional, Protocol

DEFAULT_STOP_TIMEOUT = 10.0

StopFunc = Callable[[float], None]


class Logger(Protocol):
    """The logging needed by :class:`Lifecycle` to report failures."""

    def error(self, msg: str, err: Optional[BaseException]) -> None:
        ...


class Lifecycle:
    """Holds stop functions that are run in order when the app stops.

    Each stop function is called with the number of seconds it has before
    the app may exit forcefully.
    """

    def __init__(self, stop_timeout: float = DEFAULT_STOP_TIMEOUT) -> None:
        self.stop_timeout = stop_timeout
        self._on_stop: List[StopFunc] = []

    def on_stop(self, fn: StopFunc) -> StopFunc:
        """Register ``fn`` to run on stop. Usable as a decorator."""
        self._on_stop.append(fn)
        return fn

    def stop(self, logger: Logger) -> None:
        """Run every registered stop function, logging any that fail."""
        for fn in self._on_stop:
            try:
                fn(self.stop_timeout)
            except Exception as exc:  # noqa: BLE001 - every failure is reported
                logger.error("Failed to run cleanup func", exc)