"""Cancellable, deadline-bounded execution of external tools."""

import logging
import shutil
import subprocess
import threading
import time
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from .errors import OperationCancelled, ProcessTimeout

# How often a running child is checked for cancellation.
POLL_INTERVAL_SECONDS = 0.2
# Grace period between terminate() and kill().
KILL_GRACE_SECONDS = 5.0

_GB = 1024.0 ** 3
_MB = 1024.0 ** 2


class CancellationToken:
    """Cooperative cancellation flag shared between a caller and a job."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled("operation cancelled by user")

    def wait(self, timeout: float) -> bool:
        return self._event.wait(timeout)


# ------------------------------------------------------------------
# Deadlines
# ------------------------------------------------------------------

def _file_size(path: Path) -> Optional[int]:
    try:
        return path.stat().st_size
    except OSError:
        return None


def extraction_timeout(container: Path) -> float:
    """Return the demux deadline in seconds for *container*.

    5 minutes base plus 1, 2 or 3 minutes per GB for files under 10 GB,
    under 50 GB and above, capped at 4 hours. Unknown sizes get 2 hours.
    """
    size = _file_size(container)
    if size is None:
        return 2 * 3600.0
    size_gb = size / _GB
    if size_gb < 10:
        per_gb = 1.0
    elif size_gb < 50:
        per_gb = 2.0
    else:
        per_gb = 3.0
    minutes = min(5.0 + size_gb * per_gb, 4 * 60.0)
    return minutes * 60.0


def ocr_timeout(sidecar: Path) -> float:
    """Return the OCR deadline in seconds: 5 min + 3 min per 50 MB, max 2 h."""
    size = _file_size(sidecar)
    if size is None:
        return 30 * 60.0
    minutes = min(5.0 + (size / _MB / 50.0) * 3.0, 120.0)
    return minutes * 60.0


# ------------------------------------------------------------------
# Runner
# ------------------------------------------------------------------

def tool_available(name: str) -> bool:
    return shutil.which(name) is not None


def run_tool(
    cmd: Sequence[str],
    timeout: Optional[float] = None,
    cancel_token: Optional[CancellationToken] = None,
) -> Tuple[int, str, str]:
    """Run *cmd* and return ``(returncode, stdout, stderr)``.

    The child is killed when *cancel_token* fires or *timeout* elapses; the
    former raises :class:`OperationCancelled`, the latter
    :class:`ProcessTimeout`. A missing executable raises ``FileNotFoundError``.
    """
    args: List[str] = [str(part) for part in cmd]
    logging.debug(f"Running: {' '.join(args)}")

    if cancel_token is not None:
        cancel_token.raise_if_cancelled()

    proc = subprocess.Popen(
        args,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        encoding="utf-8",
        errors="replace",
    )
    deadline = time.monotonic() + timeout if timeout else None
    try:
        while True:
            try:
                stdout, stderr = proc.communicate(timeout=POLL_INTERVAL_SECONDS)
                break
            except subprocess.TimeoutExpired:
                pass
            if cancel_token is not None and cancel_token.cancelled:
                _kill(proc)
                raise OperationCancelled(f"{Path(args[0]).name} cancelled")
            if deadline is not None and time.monotonic() > deadline:
                _kill(proc)
                raise ProcessTimeout(
                    f"{Path(args[0]).name} timed out after {timeout / 60:.0f} minutes"
                )
    finally:
        if proc.poll() is None:
            _kill(proc)

    logging.debug(f"{Path(args[0]).name} exited with code {proc.returncode}")
    return proc.returncode, stdout, stderr


def _kill(proc: subprocess.Popen) -> None:
    proc.terminate()
    try:
        proc.wait(timeout=KILL_GRACE_SECONDS)
    except subprocess.TimeoutExpired:
        logging.warning(f"Process {proc.pid} ignored terminate; killing")
        proc.kill()
        proc.wait()
    # Drain pipes so the child's file descriptors are released.
    proc.communicate()
