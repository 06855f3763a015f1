"""Live attempted/failed counters per stage and their console reporter."""

from __future__ import annotations

import sys
import threading
from typing import Dict, Optional

PRINT_LOCK = threading.Lock()

STAGE_LABELS = {
    "users": "Creating AppStudio Users",
    "resources": "Creating AppStudio User Resources",
    "pipelines": "Waiting for pipelines to finish",
}


def log_line(message: str, *, stream: Optional[object] = None) -> None:
    target = stream or sys.stdout
    with PRINT_LOCK:
        print(message, file=target, flush=True)


class ProgressBoard:
    def __init__(self, total: int) -> None:
        self.total = total
        self._lock = threading.Lock()
        self._done: Dict[str, int] = {stage: 0 for stage in STAGE_LABELS}
        self._failed: Dict[str, int] = {stage: 0 for stage in STAGE_LABELS}

    def advance(self, stage: str, count: int = 1) -> None:
        with self._lock:
            self._done[stage] += count

    def fail(self, stage: str, count: int = 1) -> None:
        with self._lock:
            self._failed[stage] += count

    def snapshot(self) -> Dict[str, Dict[str, int]]:
        with self._lock:
            return {
                stage: {"done": self._done[stage], "failed": self._failed[stage]}
                for stage in STAGE_LABELS
            }

    def render(self, *, include_pipelines: bool = True) -> str:
        snap = self.snapshot()
        parts = []
        for stage, label in STAGE_LABELS.items():
            if stage == "pipelines" and not include_pipelines:
                continue
            counts = snap[stage]
            parts.append(f"{label} ({counts['done']}/{self.total}) [{counts['failed']} failed]")
        return " | ".join(parts)


class ProgressReporter:
    """Print the board every ``interval`` seconds until stopped."""

    def __init__(
        self,
        board: ProgressBoard,
        interval: float,
        *,
        include_pipelines: bool = True,
    ) -> None:
        self.board = board
        self.interval = max(0.1, interval)
        self.include_pipelines = include_pipelines
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._loop, name="progress-reporter", daemon=True)

    def _loop(self) -> None:
        while not self._stop.wait(self.interval):
            log_line(f"[progress] {self.board.render(include_pipelines=self.include_pipelines)}")

    def start(self) -> "ProgressReporter":
        self._thread.start()
        return self

    def stop(self) -> None:
        self._stop.set()
        if self._thread.is_alive():
            self._thread.join(timeout=5)
        log_line(f"[progress] {self.board.render(include_pipelines=self.include_pipelines)}")

    def __enter__(self) -> "ProgressReporter":
        return self.start()

    def __exit__(self, *exc_info: object) -> None:
        self.stop()
