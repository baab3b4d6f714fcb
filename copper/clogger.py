"""Loggers for messages and errors, with structured tags."""

from __future__ import annotations

import abc
import json
import logging
import sys
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum, IntEnum
from typing import IO, Any, Dict, List, Mapping, Optional

from copper.cerrors import Error

Tags = Dict[str, Any]


class Format(str, Enum):
    """Output format of log statements."""

    PLAIN = "plain"
    JSON = "json"

    def __str__(self) -> str:
        return self.value


class Level(IntEnum):
    """Severity level of a log."""

    DEBUG = 1
    INFO = 2
    WARN = 3
    ERROR = 4

    def __str__(self) -> str:
        return self.name


@dataclass
class Config:
    """Where logs go and in which format."""

    out: str = ""
    err: str = ""
    format: Format = Format.PLAIN


def load_config(app_config: Any) -> Config:
    """Load the ``clogger`` table from the app config.

    An unknown format falls back to plain.
    """
    try:
        table = app_config.load("clogger", dict) or {}
    except Error as exc:
        raise Error("failed to load clogger config", None, exc) from exc

    out = table.get("out", "")
    err = table.get("err", "")
    if not isinstance(out, str) or not isinstance(err, str):
        raise Error(
            "failed to load clogger config",
            None,
            TypeError("out and err must be strings"),
        )

    try:
        fmt = Format(table.get("format", Format.PLAIN.value))
    except (ValueError, TypeError):
        fmt = Format.PLAIN

    return Config(out=out, err=err, format=fmt)


def merge_tags(t1: Optional[Mapping[str, Any]], t2: Optional[Mapping[str, Any]]) -> Tags:
    """Return a new dict with the tags of ``t1`` updated by ``t2``."""
    return {**(t1 or {}), **(t2 or {})}


class Logger(abc.ABC):
    """Logs messages and errors."""

    @abc.abstractmethod
    def with_tags(self, tags: Optional[Mapping[str, Any]]) -> "Logger":
        """Return a logger that adds ``tags`` to every log."""

    @abc.abstractmethod
    def debug(self, msg: str) -> None:
        """Log a debug message."""

    @abc.abstractmethod
    def info(self, msg: str) -> None:
        """Log an informational message."""

    @abc.abstractmethod
    def warn(self, msg: str, err: Optional[BaseException] = None) -> None:
        """Log a warning with an optional error."""

    @abc.abstractmethod
    def error(self, msg: str, err: Optional[BaseException] = None) -> None:
        """Log an error."""


class WriterLogger(Logger):
    """Writes logs to text streams: ``out`` for debug and info, ``err`` for warn and error."""

    def __init__(
        self,
        out: Optional[IO[str]] = None,
        err: Optional[IO[str]] = None,
        format: Format = Format.PLAIN,
        tags: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self.out = out
        self.err = err
        self.format = format
        self.tags = dict(tags or {})

    def with_tags(self, tags: Optional[Mapping[str, Any]]) -> "WriterLogger":
        return WriterLogger(self.out, self.err, self.format, merge_tags(self.tags, tags))

    def debug(self, msg: str) -> None:
        self._log(self.out or sys.stdout, Level.DEBUG, msg, None)

    def info(self, msg: str) -> None:
        self._log(self.out or sys.stdout, Level.INFO, msg, None)

    def warn(self, msg: str, err: Optional[BaseException] = None) -> None:
        self._log(self.err or sys.stderr, Level.WARN, msg, err)

    def error(self, msg: str, err: Optional[BaseException] = None) -> None:
        self._log(self.err or sys.stderr, Level.ERROR, msg, err)

    def _log(self, dest: IO[str], level: Level, msg: str, cause: Optional[BaseException]) -> None:
        if self.format == Format.JSON:
            line = self._json_line(level, msg, cause)
        else:
            stamp = time.strftime("%Y/%m/%d %H:%M:%S")
            line = f"{stamp} [{level}] {Error(msg, self.tags, cause)}"
        dest.write(line + "\n")
        flush = getattr(dest, "flush", None)
        if flush is not None:
            flush()

    def _json_line(self, level: Level, msg: str, cause: Optional[BaseException]) -> str:
        entry: Tags = {
            "ts": datetime.now().astimezone().isoformat(timespec="seconds"),
            "level": str(level),
        }
        entry = merge_tags(entry, self.tags)
        entry["msg"] = msg
        if cause is not None:
            entry["error"] = str(cause)
        return json.dumps(entry, sort_keys=True, separators=(",", ":"), default=str)


def new_with_writers(
    out: Optional[IO[str]], err: Optional[IO[str]], format: Format = Format.PLAIN
) -> WriterLogger:
    """Create a logger that writes to the given streams."""
    return WriterLogger(out, err, format)


def new_logger() -> WriterLogger:
    """Create a plain logger writing to stdout and stderr."""
    return new_with_writers(sys.stdout, sys.stderr, Format.PLAIN)


def new_with_config(config: Config) -> WriterLogger:
    """Create a logger from ``config``, appending to the configured files."""
    out_file: IO[str] = sys.stdout
    err_file: IO[str] = sys.stderr

    if config.out:
        try:
            out_file = open(config.out, "a", encoding="utf-8")  # noqa: SIM115
        except OSError as exc:
            raise Error("failed to open log file", {"path": config.out}, exc) from exc

    if config.out == config.err:
        err_file = out_file
    elif config.err:
        try:
            err_file = open(config.err, "a", encoding="utf-8")  # noqa: SIM115
        except OSError as exc:
            if config.out:
                out_file.close()
            raise Error("failed to open error log file", {"path": config.err}, exc) from exc

    return new_with_writers(out_file, err_file, config.format)


class NoopLogger(Logger):
    """A logger that discards everything."""

    def with_tags(self, tags: Optional[Mapping[str, Any]]) -> "NoopLogger":
        return self

    def debug(self, msg: str) -> None:
        pass

    def info(self, msg: str) -> None:
        pass

    def warn(self, msg: str, err: Optional[BaseException] = None) -> None:
        pass

    def error(self, msg: str, err: Optional[BaseException] = None) -> None:
        pass


def new_noop() -> NoopLogger:
    """Create a logger that discards everything."""
    return NoopLogger()


@dataclass
class RecordedLog:
    """A single log kept by :class:`RecorderLogger`."""

    level: Level
    tags: Tags
    msg: str
    error: Optional[BaseException] = None


class RecorderLogger(Logger):
    """A logger that appends every log to a shared list."""

    def __init__(
        self,
        logs: Optional[List[RecordedLog]] = None,
        tags: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self.logs = logs if logs is not None else []
        self.tags = dict(tags or {})

    def with_tags(self, tags: Optional[Mapping[str, Any]]) -> "RecorderLogger":
        return RecorderLogger(self.logs, merge_tags(self.tags, tags))

    def _record(self, level: Level, msg: str, err: Optional[BaseException]) -> None:
        self.logs.append(RecordedLog(level, merge_tags(self.tags, None), msg, err))

    def debug(self, msg: str) -> None:
        self._record(Level.DEBUG, msg, None)

    def info(self, msg: str) -> None:
        self._record(Level.INFO, msg, None)

    def warn(self, msg: str, err: Optional[BaseException] = None) -> None:
        self._record(Level.WARN, msg, err)

    def error(self, msg: str, err: Optional[BaseException] = None) -> None:
        self._record(Level.ERROR, msg, err)


def new_recorder(logs: Optional[List[RecordedLog]] = None) -> RecorderLogger:
    """Create a logger that records logs into ``logs``."""
    return RecorderLogger(logs)


_LEVEL_NAMES = {
    logging.DEBUG: "DEBUG",
    logging.INFO: "INFO",
    logging.WARNING: "WARN",
    logging.ERROR: "ERROR",
}

_STDERR = "stderr"
_STDOUT = "stdout"


class _ConsoleFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        stamp = datetime.fromtimestamp(record.created).astimezone().isoformat(timespec="milliseconds")
        level = _LEVEL_NAMES.get(record.levelno, record.levelname)
        line = f"{stamp}\t{level}\t{record.getMessage()}"
        tags = getattr(record, "tags", None)
        if tags:
            line += "\t" + json.dumps(tags, default=str, sort_keys=True)
        return line


class _JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry: Tags = {
            "level": _LEVEL_NAMES.get(record.levelno, record.levelname).lower(),
            "ts": record.created,
            "msg": record.getMessage(),
        }
        entry.update(getattr(record, "tags", None) or {})
        return json.dumps(entry, default=str)


class _SinkHandler(logging.StreamHandler):
    """Stream handler that reports its own failures to a separate stream."""

    def __init__(self, stream: IO[str], error_stream: IO[str]) -> None:
        super().__init__(stream)
        self.error_stream = error_stream

    def handleError(self, record: logging.LogRecord) -> None:  # noqa: N802
        exc = sys.exc_info()[1]
        try:
            self.error_stream.write(f"failed to write log: {exc}\n")
            self.error_stream.flush()
        except OSError:
            pass


def _open_sink(path: str) -> IO[str]:
    if path == _STDERR:
        return sys.stderr
    if path == _STDOUT:
        return sys.stdout
    return open(path, "a", encoding="utf-8")  # noqa: SIM115


class StdLogger(Logger):
    """A logger backed by the standard :mod:`logging` package."""

    def __init__(self, logger: logging.Logger, tags: Optional[Mapping[str, Any]] = None) -> None:
        self.logger = logger
        self.tags = dict(tags or {})

    def with_tags(self, tags: Optional[Mapping[str, Any]]) -> "StdLogger":
        return StdLogger(self.logger, merge_tags(self.tags, tags))

    def _fields(self, err: Optional[BaseException]) -> Tags:
        if err is None:
            return dict(self.tags)
        return merge_tags({"error": str(err)}, self.tags)

    def debug(self, msg: str) -> None:
        self.logger.debug(msg, extra={"tags": self._fields(None)})

    def info(self, msg: str) -> None:
        self.logger.info(msg, extra={"tags": self._fields(None)})

    def warn(self, msg: str, err: Optional[BaseException] = None) -> None:
        self.logger.warning(msg, extra={"tags": self._fields(err)})

    def error(self, msg: str, err: Optional[BaseException] = None) -> None:
        self.logger.error(msg, extra={"tags": self._fields(err)})


def new_std_logger(config: Config, lifecycle: Any) -> StdLogger:
    """Create a :class:`StdLogger` from ``config``.

    Logs go to ``config.out`` (stderr when empty); failures of the logger
    itself go to ``config.err`` (stderr when empty). Output is flushed when
    ``lifecycle`` stops.
    """
    out_path = config.out or _STDERR
    err_path = config.err or _STDERR

    try:
        out_stream = _open_sink(out_path)
        err_stream = out_stream if err_path == out_path else _open_sink(err_path)
    except OSError as exc:
        raise Error("failed to create logger", None, exc) from exc

    handler = _SinkHandler(out_stream, err_stream)
    handler.setFormatter(_JSONFormatter() if config.format == Format.JSON else _ConsoleFormatter())

    logger = logging.Logger("copper")
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    logger.addHandler(handler)

    def _sync(timeout: float) -> None:
        if out_path == _STDERR and err_path == _STDERR:
            return
        handler.flush()
        err_stream.flush()

    lifecycle.on_stop(_sync)

    return StdLogger(logger)