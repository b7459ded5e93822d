"""Progress reporting for the bulk file export."""

from __future__ import annotations

import math
import threading
from dataclasses import asdict, dataclass, replace
from typing import Any, Dict, Literal, Optional


ExportPhase = Literal["idle", "fetching", "compressing", "completed", "failed"]

# Share of the overall bar given to fetching; compression fills the rest up
# to 99 so that 100 is only ever shown for a finished run.
FETCH_SHARE = 90
COMPRESS_CEILING = 99


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _percent(completed: float, total: float) -> int:
    if total <= 0:
        return 0
    ratio = max(0.0, min(float(completed) / float(total), 1.0))
    return _round_half_up(ratio * 100)


@dataclass(frozen=True)
class ExportProgress:
    """Snapshot of one export run.

    ``percent`` is local to the current phase: the share of files fetched
    while ``phase == "fetching"`` and the compression percentage while
    ``phase == "compressing"``. ``overall`` spans the whole run and never
    decreases until the run fails.
    """

    phase: ExportPhase = "idle"
    completed: int = 0
    total: int = 0
    percent: int = 0
    overall: int = 0
    message: str = ""

    @classmethod
    def fetching(cls, completed: int, total: int) -> "ExportProgress":
        percent = _percent(completed, total)
        return cls(
            phase="fetching",
            completed=completed,
            total=total,
            percent=percent,
            overall=(percent * FETCH_SHARE) // 100,
            message=f"Fetched {completed} of {total} file(s)",
        )

    @classmethod
    def compressing(cls, percent: float, *, completed: int, total: int) -> "ExportProgress":
        local = _round_half_up(max(0.0, min(float(percent), 100.0)))
        span = COMPRESS_CEILING - FETCH_SHARE
        return cls(
            phase="compressing",
            completed=completed,
            total=total,
            percent=local,
            overall=FETCH_SHARE + (local * span) // 100,
            message="Compressing archive",
        )

    @classmethod
    def finished(cls, *, completed: int, total: int) -> "ExportProgress":
        return cls(
            phase="completed",
            completed=completed,
            total=total,
            percent=100,
            overall=100,
            message="Export completed",
        )

    @classmethod
    def failed(cls, message: str, *, completed: int = 0, total: int = 0) -> "ExportProgress":
        return cls(phase="failed", completed=completed, total=total, message=message)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class ExportProgressTracker:
    """Hold the latest export progress for UI polling.

    The pipeline is the only writer; readers call :meth:`snapshot`.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._state = ExportProgress()
        self._error: Optional[str] = None

    def __call__(self, progress: ExportProgress) -> None:
        self.update(progress)

    @property
    def active(self) -> bool:
        with self._lock:
            return self._state.phase in {"fetching", "compressing"}

    def start(self, total: int = 0) -> bool:
        """Claim the tracker for a new export; ``False`` if one is already running."""

        with self._lock:
            if self._state.phase in {"fetching", "compressing"}:
                return False
            self._state = ExportProgress(phase="fetching", total=total, message="Export started")
            self._error = None
            return True

    def update(self, progress: ExportProgress) -> None:
        with self._lock:
            if progress.phase == "failed":
                self._state = progress
                self._error = progress.message or None
                return
            running = self._state.phase in {"fetching", "compressing"}
            if running and progress.overall < self._state.overall:
                progress = replace(progress, overall=self._state.overall)
            if not running:
                self._error = None
            self._state = progress

    def fail(self, message: str) -> None:
        self.update(ExportProgress.failed(message))

    def reset(self) -> None:
        with self._lock:
            self._state = ExportProgress()
            self._error = None

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            payload = self._state.to_dict()
            payload["error"] = self._error
            payload["active"] = self._state.phase in {"fetching", "compressing"}
            return payload


def format_progress_message(
    message: str,
    completed_steps: Optional[float],
    total_steps: Optional[float],
) -> str:
    """Append a percentage indicator to ``message`` when possible.

    When the totals are unavailable (``None`` or zero) the message is
    returned unchanged. Percentages are clamped to ``[0, 100]``.
    """

    if completed_steps is None or total_steps in {None, 0}:
        return message

    try:
        percent = _percent(float(completed_steps), float(total_steps))
    except (TypeError, ValueError):
        return message

    return f"{message} ({percent}%)"


__all__ = [
    "COMPRESS_CEILING",
    "ExportPhase",
    "ExportProgress",
    "ExportProgressTracker",
    "FETCH_SHARE",
    "format_progress_message",
]
