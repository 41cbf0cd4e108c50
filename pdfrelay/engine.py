"""Core PDF engine types: split modes, formats, contexts and command execution."""

from __future__ import annotations

import logging
import os
import re
import signal
import subprocess
import threading
import time
from dataclasses import dataclass
from typing import Any, Iterable, Sequence

SPLIT_MODE_INTERVALS = "intervals"
SPLIT_MODE_PAGES = "pages"

_POLL_INTERVAL = 0.05
_NATURAL_CHUNKS = re.compile(r"(\d+)")


@dataclass(frozen=True)
class SplitMode:
    """How a PDF should be split: by intervals or by page ranges."""

    mode: str = ""
    span: str = ""
    unify: bool = False

    def is_empty(self) -> bool:
        """Return True when no split was requested."""
        return self == SplitMode()


@dataclass(frozen=True)
class PdfFormats:
    """Target PDF/A and PDF/UA conformance."""

    pdf_a: str = ""
    pdf_ua: bool = False

    def is_empty(self) -> bool:
        """Return True when no conversion was requested."""
        return self == PdfFormats()


class PdfEngineError(Exception):
    """Base error for PDF engine failures."""

    def __init__(self, message: str, causes: Iterable[BaseException] = ()) -> None:
        super().__init__(message)
        self.causes = list(causes)


class MethodNotSupportedError(PdfEngineError):
    """The engine does not implement the requested operation."""


class SplitModeNotSupportedError(PdfEngineError):
    """The engine cannot split using the requested mode."""


class CommandError(PdfEngineError):
    """An external command could not be started or exited with an error."""

    def __init__(self, message: str, returncode: int | None = None, stderr: str = "") -> None:
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


class ContextCancelledError(PdfEngineError):
    """The operation's context was cancelled or its deadline passed."""


class Context:
    """Cancellation and deadline carrier for a unit of work."""

    def __init__(self, timeout: float | None = None, logger: logging.Logger | None = None) -> None:
        self._cancelled = threading.Event()
        self._deadline = None if timeout is None else time.monotonic() + timeout
        self.logger = logger or logging.getLogger("pdfrelay")

    def cancel(self) -> None:
        """Cancel the context."""
        self._cancelled.set()

    def is_done(self) -> bool:
        """Return True once cancelled or past the deadline."""
        if self._cancelled.is_set():
            return True
        return self._deadline is not None and time.monotonic() >= self._deadline

    def check(self) -> None:
        """Raise ContextCancelledError if the context is done."""
        if self._cancelled.is_set():
            raise ContextCancelledError("context canceled")
        if self._deadline is not None and time.monotonic() >= self._deadline:
            raise ContextCancelledError("context deadline exceeded")

    def remaining(self) -> float | None:
        """Seconds left before the deadline, or None when there is none."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())


class PdfEngine:
    """Interface of a PDF engine; every operation is unsupported by default."""

    engine_id: str = ""

    @property
    def _label(self) -> str:
        return self.engine_id or type(self).__name__

    def _unsupported(self, action: str) -> MethodNotSupportedError:
        return MethodNotSupportedError(f"{action} with {self._label}: method not supported")

    def merge(self, ctx: Context, input_paths: Sequence[str], output_path: str) -> None:
        raise self._unsupported("merge PDFs")

    def split(self, ctx: Context, mode: SplitMode, input_path: str, output_dir_path: str) -> list[str]:
        raise self._unsupported(f"split PDFs using mode '{mode.mode}'")

    def flatten(self, ctx: Context, input_path: str) -> None:
        raise self._unsupported("flatten PDF")

    def convert(self, ctx: Context, formats: PdfFormats, input_path: str, output_path: str) -> None:
        raise self._unsupported(f"convert PDF to '{formats}'")

    def read_metadata(self, ctx: Context, input_path: str) -> dict[str, Any]:
        raise self._unsupported("read PDF metadata")

    def write_metadata(self, ctx: Context, metadata: dict[str, Any], input_path: str) -> None:
        raise self._unsupported("write PDF metadata")


def _kill(process: subprocess.Popen) -> None:
    if hasattr(os, "killpg"):
        try:
            os.killpg(process.pid, signal.SIGKILL)
        except (ProcessLookupError, PermissionError):
            process.kill()
    else:
        process.kill()
    process.communicate()


def run_command(ctx: Context, bin_path: str, args: Sequence[str]) -> str:
    """Run a command in its own process group, honouring the context; return stdout."""
    ctx.check()
    command = [bin_path, *args]
    ctx.logger.debug("run command: %s", " ".join(command))
    try:
        process = subprocess.Popen(
            command,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            start_new_session=True,
        )
    except OSError as exc:
        raise CommandError(f"create command: {exc}") from exc

    while True:
        wait = _POLL_INTERVAL
        remaining = ctx.remaining()
        if remaining is not None:
            wait = min(wait, remaining)
        try:
            stdout, stderr = process.communicate(timeout=wait)
            break
        except subprocess.TimeoutExpired:
            if ctx.is_done():
                _kill(process)
                ctx.check()

    if process.returncode != 0:
        raise CommandError(
            f"command '{bin_path}' exited with code {process.returncode}: {stderr.strip()}",
            returncode=process.returncode,
            stderr=stderr,
        )
    return stdout


def natural_sort_key(value: str) -> tuple:
    """Key that orders embedded numbers numerically ("a2" before "a10")."""
    key = []
    for chunk in _NATURAL_CHUNKS.split(value):
        if not chunk:
            continue
        if chunk.isdigit():
            key.append((0, int(chunk), chunk))
        else:
            key.append((1, 0, chunk))
    return tuple(key)