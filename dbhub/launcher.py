"""
Spawns client processes, either with captured output (for probing commands)
or attached to the terminal (for the final interactive client).
"""

import locale
import logging
import re
import shutil
import signal
import subprocess
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Sequence

from dbhub.errors import CommandNotFound, ProcessSpawnError

LOGGER = logging.getLogger(__name__)

_SECRET_PATTERNS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"(--?(?:password|pass|token|secret|api[-_]?key)[=\s]+)([^\s]+)",
        r"((?:password|token|secret|api[-_]?key)\s*=\s*)([^\s]+)",
        r"(?-i:(\s-p))([^\s]+)",
        r"(?-i:(\s-a\s+))([^\s]+)",
        r"(://[^:/@\s]*:)([^@\s]+)(?=@)",
    )
]


@dataclass(frozen=True)
class CapturedProcess:
    """Result of a command run with captured output."""

    returncode: int
    stdout: str
    stderr: str


def mask_command(command: str) -> str:
    """
    Hide passwords in a command line before it's logged.
    """
    masked = f" {command}"
    for pattern in _SECRET_PATTERNS:
        masked = pattern.sub(r"\1***", masked)
    return masked[1:]


class ProcessLauncher:
    """
    Runs an already-resolved executable in one of two modes. Both modes
    report a missing executable as CommandNotFound and any other failure to
    start as ProcessSpawnError.
    """

    def resolve(self, executable: str) -> str | None:
        """
        Return the full path of an executable on PATH, or None.
        """
        return shutil.which(executable)

    def capture(self, executable: str, args: Sequence[str]) -> CapturedProcess:
        """
        Run a command with stdout and stderr captured and stdin closed.
        There is no timeout.
        """
        LOGGER.info(
            "capture_request",
            extra={"command": mask_command(" ".join([executable, *args]))},
        )
        try:
            process = subprocess.run(
                [executable, *args],
                stdin=subprocess.DEVNULL,
                capture_output=True,
                check=False,
                text=False,
            )
        except FileNotFoundError as e:
            raise CommandNotFound(executable) from e
        except OSError as e:
            raise ProcessSpawnError(executable, e) from e

        result = CapturedProcess(
            returncode=process.returncode,
            stdout=_normalize_output(process.stdout),
            stderr=_normalize_output(process.stderr),
        )
        LOGGER.info(
            "capture_result",
            extra={
                "executable": executable,
                "returncode": result.returncode,
                "stdout_length": len(result.stdout),
                "stderr_length": len(result.stderr),
            },
        )
        return result

    def interactive(self, executable: str, args: Sequence[str]) -> int:
        """
        Run a command attached to the current terminal and wait for it to
        exit. Interrupts belong to the child while it runs.

        :returns: the child's exit status
        """
        LOGGER.info(
            "interactive_request",
            extra={"command": mask_command(" ".join([executable, *args]))},
        )
        try:
            process = subprocess.Popen([executable, *args])
        except FileNotFoundError as e:
            raise CommandNotFound(executable) from e
        except OSError as e:
            raise ProcessSpawnError(executable, e) from e

        returncode = _wait_for_child(process)

        LOGGER.info(
            "interactive_result",
            extra={"executable": executable, "returncode": returncode},
        )
        return returncode


@contextmanager
def _child_owns_interrupts() -> Iterator[None]:
    # Signal handlers can only be installed from the main thread.
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    previous = signal.signal(signal.SIGINT, signal.SIG_IGN)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


def _wait_for_child(process: subprocess.Popen) -> int:
    # Ignored dispositions survive exec, so the parent only starts ignoring
    # SIGINT once the child is running. An interrupt that lands before that
    # went to the child as well, so keep waiting rather than orphan it.
    try:
        with _child_owns_interrupts():
            return process.wait()
    except KeyboardInterrupt:
        LOGGER.debug("interrupted_before_wait", extra={"pid": process.pid})
        with _child_owns_interrupts():
            return process.wait()


def _normalize_output(payload: bytes | str | None) -> str:
    if payload is None:
        return ""
    if isinstance(payload, str):
        return payload

    for encoding in ("utf-8", "utf-8-sig", locale.getpreferredencoding(False), "latin-1"):
        try:
            return payload.decode(encoding)
        except (LookupError, UnicodeDecodeError):
            continue
    return payload.decode("utf-8", errors="replace")
