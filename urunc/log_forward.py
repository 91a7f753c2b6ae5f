"""Forwarding of JSON log lines from a child process into local logging."""

from __future__ import annotations

import json
import logging
import re
import threading
from concurrent.futures import Future
from datetime import datetime
from typing import BinaryIO

STANDARD_LOGGER_NAME = "urunc"
TRACE = 5
logging.addLevelName(TRACE, "TRACE")

_MSG_REGEX = re.compile(r"^([\w\-]+\[\d+\]): (.+)$")

_LEVELS_BY_NAME = {
    "panic": logging.CRITICAL,
    "fatal": logging.CRITICAL,
    "error": logging.ERROR,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
    "trace": TRACE,
}

_NAMES_BY_LEVEL = {
    logging.CRITICAL: "fatal",
    logging.ERROR: "error",
    logging.WARNING: "warning",
    logging.INFO: "info",
    logging.DEBUG: "debug",
    TRACE: "trace",
}


def _standard_logger() -> logging.Logger:
    return logging.getLogger(STANDARD_LOGGER_NAME)


class StructuredJSONFormatter(logging.Formatter):
    """Formats records as single-line JSON, splitting out a subsystem prefix.

    Extra structured data is taken from a ``fields`` mapping on the record.
    """

    def format(self, record: logging.LogRecord) -> str:
        data = dict(getattr(record, "fields", None) or {})
        data["time"] = (
            datetime.fromtimestamp(record.created).astimezone().isoformat(timespec="seconds")
        )
        data["level"] = _NAMES_BY_LEVEL.get(record.levelno, record.levelname.lower())
        message = record.getMessage()
        match = _MSG_REGEX.match(message)
        if match:
            data["subsystem"] = match.group(1)
            data["msg"] = match.group(2)
        else:
            data["msg"] = message
        return json.dumps(data, ensure_ascii=False, sort_keys=True, separators=(",", ":"), default=str)


def _parse_entry(text: str) -> tuple[int, str]:
    payload = json.loads(text)
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValueError(f"cannot unmarshal {type(payload).__name__} into log entry")
    level_name = payload.get("level", "panic")
    if not isinstance(level_name, str):
        raise ValueError("level must be a string")
    level = _LEVELS_BY_NAME.get(level_name.lower())
    if level is None:
        raise ValueError(f"not a valid log level: {level_name!r}")
    msg = payload.get("msg", "")
    if not isinstance(msg, str):
        raise ValueError("msg must be a string")
    return level, msg


def process_entry(text: bytes | str, logger: logging.Logger) -> None:
    """Decode one JSON log line with ``level`` and ``msg`` and log it."""
    if not text:
        return
    decoded = text.decode("utf-8", errors="replace") if isinstance(text, bytes) else text
    try:
        level, msg = _parse_entry(decoded)
    except ValueError as exc:
        _standard_logger().error("failed to decode %r to json: %s", decoded, exc)
        return
    logger.log(level, msg)


def forward_logs(log_pipe: BinaryIO, logger: logging.Logger | None = None) -> Future:
    """Read log lines from ``log_pipe`` in the background and log them.

    The returned future completes with ``None`` once the pipe is drained,
    or with the exception raised while reading from it.
    """
    target = logger if logger is not None else _standard_logger()
    done: Future = Future()

    def _pump() -> None:
        read_error: BaseException | None = None
        try:
            for line in iter(log_pipe.readline, b""):
                process_entry(line.rstrip(b"\n").rstrip(b"\r"), target)
        except OSError as exc:
            read_error = exc
        try:
            log_pipe.close()
        except OSError as exc:
            _standard_logger().error("error closing log source: %s", exc)
        if read_error is None:
            done.set_result(None)
        else:
            done.set_exception(read_error)

    threading.Thread(target=_pump, name="log-forward", daemon=True).start()
    return done