"""The application container: lifecycle, config and logger, plus running code in them."""

from __future__ import annotations

import argparse
import signal
import sys
import threading
from dataclasses import dataclass
from typing import Iterable, Optional, Protocol, Sequence, runtime_checkable

from copper import cconfig, clogger
from copper.clifecycle import Lifecycle

DEFAULT_CONFIG_PATH = "./config/dev.toml"

_STOP_SIGNALS = (signal.SIGINT, signal.SIGTERM)
_SIGNAL_POLL_SECONDS = 0.1


@runtime_checkable
class Runner(Protocol):
    """Something an app can run, such as an HTTP server or a migrator."""

    def run(self) -> None:
        """Run, raising on failure."""
        ...


@dataclass
class Flags:
    """Command-line values that choose the config file and override its keys."""

    config_path: str = DEFAULT_CONFIG_PATH
    config_overrides: str = ""


def new_flags(argv: Optional[Sequence[str]] = None) -> Flags:
    """Parse ``argv`` (the process arguments by default) into :class:`Flags`."""
    parser = argparse.ArgumentParser()
    parser.add_argument(
        "-config",
        "--config",
        dest="config",
        default=DEFAULT_CONFIG_PATH,
        help="Path to config file",
    )
    parser.add_argument(
        "-set",
        "--set",
        dest="overrides",
        default="",
        help='Config overrides ex. "chttp.port=5902". Separate multiple overrides with ;',
    )
    args = parser.parse_args(argv)
    return Flags(config_path=args.config, config_overrides=args.overrides)


@dataclass
class App:
    """Runs code within a managed lifecycle, with the app's config and logger."""

    lifecycle: Lifecycle
    config: cconfig.Loader
    logger: clogger.Logger

    def _run_all(self, runners: Iterable[Runner], stop_on_failure: bool) -> None:
        for runner in runners:
            try:
                runner.run()
            except Exception as exc:  # noqa: BLE001 - any failure ends the app
                self.logger.error("Failed to run", exc)
                if stop_on_failure:
                    self.lifecycle.stop(self.logger)
                sys.exit(1)

    def run(self, *args: Runner) -> None:
        """Run each runner in turn, then the lifecycle's stop functions.

        Meant for runners that finish. If one fails, the failure is logged,
        the lifecycle is stopped and the process exits with code 1.
        """
        self._run_all(args, stop_on_failure=True)
        self.lifecycle.stop(self.logger)

    def start(self, *args: Runner) -> None:
        """Run each runner, then wait for SIGINT or SIGTERM before stopping.

        Meant for long-running runners such as servers. If one fails to run,
        the failure is logged and the process exits with code 1.
        """
        self._run_all(args, stop_on_failure=False)

        received = threading.Event()

        def on_signal(signum, frame) -> None:
            received.set()

        previous = {sig: signal.signal(sig, on_signal) for sig in _STOP_SIGNALS}
        try:
            while not received.wait(_SIGNAL_POLL_SECONDS):
                pass
        finally:
            for sig, handler in previous.items():
                signal.signal(sig, handler if handler is not None else signal.SIG_DFL)

        self.lifecycle.stop(self.logger)


def init_app(argv: Optional[Sequence[str]] = None) -> App:
    """Build an app from the command-line flags, raising if any part fails."""
    flags = new_flags(argv)
    lifecycle = Lifecycle()
    loader = cconfig.new_loader_with_key_overrides(flags.config_path, flags.config_overrides)
    logger_config = clogger.load_config(loader)
    logger = clogger.new_std_logger(logger_config, lifecycle)
    return App(lifecycle=lifecycle, config=loader, logger=logger)


def new_app(argv: Optional[Sequence[str]] = None) -> App:
    """Build an app like :func:`init_app`, exiting with code 1 on failure."""
    try:
        return init_app(argv)
    except Exception as exc:  # noqa: BLE001 - any failure ends the process
        print(exc, file=sys.stderr)
        raise SystemExit(1) from exc