"""Command-line helpers: argument checks, logging setup and fatal exits."""

from __future__ import annotations

import enum
import logging
import logging.handlers
import os
import shutil
import socket
import sys
from typing import IO, NoReturn

from urunc.log_forward import STANDARD_LOGGER_NAME, StructuredJSONFormatter

_OUTPUT_HANDLER_NAME = "urunc-output"
_TEXT_FORMAT = 'time="%(asctime)s" level=%(levelname)s msg="%(message)s"'
_DEBUG_FORMAT = (
    'time="%(asctime)s" level=%(levelname)s msg="%(message)s" '
    'func="%(funcName)s()" file="%(filename)s:%(lineno)d"'
)

_log = logging.getLogger(STANDARD_LOGGER_NAME)


class ArgCheck(enum.Enum):
    """How the number of positional arguments is checked."""

    EXACT = "exactly"
    MIN = "a minimum of"
    MAX = "a maximum of"


class EmptyContainerIDError(ValueError):
    """Raised when a container ID is required but empty."""

    def __init__(self) -> None:
        super().__init__("container ID can not be empty")


def check_args(command_name: str, args: list[str], expected: int, check_type: ArgCheck) -> None:
    """Raise ``ValueError`` if ``args`` does not satisfy the count check."""
    count = len(args)
    failed = {
        ArgCheck.EXACT: count != expected,
        ArgCheck.MIN: count < expected,
        ArgCheck.MAX: count > expected,
    }[check_type]
    if not failed:
        return
    print("Incorrect Usage.\n")
    raise ValueError(
        f'{sys.argv[0]}: "{command_name}" requires {check_type.value} {expected} argument(s)'
    )


def revise_root_dir(root: str | None) -> str | None:
    """Return ``root`` as an absolute, cleaned path; reject the filesystem root."""
    if root is None:
        return None
    revised = os.path.abspath(root)
    if revised == "/":
        raise ValueError("option --root argument should not be set to /")
    return revised


def _output_handler() -> logging.Handler:
    for handler in _log.handlers:
        if handler.get_name() == _OUTPUT_HANDLER_NAME:
            return handler
    handler = logging.StreamHandler(sys.stderr)
    handler.set_name(_OUTPUT_HANDLER_NAME)
    handler.setFormatter(logging.Formatter(_TEXT_FORMAT))
    _log.addHandler(handler)
    return handler


def config_logging(debug: bool = False, log_format: str = "text", log_file: str = "") -> None:
    """Configure the runtime logger from the global command-line options."""
    handler = _output_handler()
    if _log.level == logging.NOTSET:
        _log.setLevel(logging.INFO)

    if debug:
        _log.setLevel(logging.DEBUG)
        handler.setFormatter(logging.Formatter(_DEBUG_FORMAT))
        try:
            syslog = logging.handlers.SysLogHandler(address="/dev/log")
        except OSError as exc:
            sys.exit(str(exc))
        syslog.setLevel(logging.DEBUG)
        _log.addHandler(syslog)

    if log_format in ("", "text"):
        pass
    elif log_format == "json":
        handler.setFormatter(StructuredJSONFormatter())
    else:
        raise ValueError("invalid log-format: " + log_format)

    if log_file:
        fd = os.open(log_file, os.O_CREAT | os.O_WRONLY | os.O_APPEND | os.O_SYNC, 0o644)
        new_handler = logging.StreamHandler(os.fdopen(fd, "a", encoding="utf-8"))
        new_handler.set_name(_OUTPUT_HANDLER_NAME)
        new_handler.setFormatter(handler.formatter)
        _log.removeHandler(handler)
        if isinstance(handler, logging.StreamHandler) and handler.stream not in (
            sys.stderr,
            sys.__stderr__,
        ):
            handler.close()
            handler.stream.close()
        _log.addHandler(new_handler)


def logging_to_stderr() -> bool:
    """Whether the runtime logger writes to standard error."""
    stream = getattr(_output_handler(), "stream", None)
    if stream is None:
        return False
    if stream is sys.stderr:
        return True
    try:
        return stream.fileno() == sys.stderr.fileno()
    except (AttributeError, OSError, ValueError):
        return False


class FatalWriter:
    """Error writer that logs everything and echoes it if logs go elsewhere."""

    def __init__(self, err_writer: IO) -> None:
        self.err_writer = err_writer

    def write(self, data: str | bytes) -> int:
        text = data.decode("utf-8", errors="replace") if isinstance(data, bytes) else data
        _log.error(text)
        if not logging_to_stderr():
            return self.err_writer.write(data)
        return len(data)


def new_sock_pair(name: str) -> tuple[socket.socket, socket.socket]:
    """Return a connected (parent, child) pair of close-on-exec stream sockets."""
    child, parent = socket.socketpair(socket.AF_UNIX, socket.SOCK_STREAM)
    _log.debug("created socket pair %s-p/%s-c", name, name)
    return parent, child


def runc_exec(argv: list[str] | None = None) -> NoReturn:
    """Replace the current process with runc, passing on the same arguments."""
    args = list(sys.argv if argv is None else argv)
    bin_path = shutil.which("runc")
    if bin_path is None:
        raise FileNotFoundError('executable file "runc" not found in $PATH')
    args[0] = bin_path
    os.execve(bin_path, args, dict(os.environ))


def fatal(err: BaseException | str) -> NoReturn:
    """Report ``err`` and exit with status 1."""
    fatal_with_code(err, 1)


def fatal_with_code(err: BaseException | str, ret: int) -> NoReturn:
    """Report ``err`` and exit with status ``ret``."""
    _log.error("%s", err)
    if not logging_to_stderr():
        print(err, file=sys.stderr)
    sys.exit(ret)