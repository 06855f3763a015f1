"""Failure and latency accounting shared by all worker pipelines."""

from __future__ import annotations

import logging
import os
import sys
import threading
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, Iterable, List, Optional

from .errors import STAGE_CODES


@dataclass
class ErrorOccurrence:
    error_number: int
    latest_message: str
    count: int = 1

    def to_dict(self) -> Dict[str, object]:
        return {
            "errorNumber": self.error_number,
            "latestMessage": self.latest_message,
            "count": self.count,
        }


def _terminate(message: str) -> None:
    for handler in logging.getLogger().handlers:
        handler.flush()
    sys.stdout.flush()
    os._exit(1)


class ErrorRecorder:
    """Process-wide error table keyed by error code.

    ``record`` may be called from any stage thread; the table is guarded by a
    single lock. ``snapshot`` is meant to be read once every worker has
    joined. With ``fail_fast`` the first recorded error ends the process via
    ``on_fatal``.
    """

    def __init__(
        self,
        *,
        fail_fast: bool = False,
        on_fatal: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.fail_fast = fail_fast
        self._on_fatal = on_fatal or _terminate
        self._lock = threading.Lock()
        self._occurrences: Dict[int, ErrorOccurrence] = {}

    def record(self, code: int, message: str) -> None:
        code = int(code)
        text = f"Error #{code}: {message}"
        if self.fail_fast:
            logging.critical(text)
            self._on_fatal(text)
        else:
            logging.error(text)
        with self._lock:
            occurrence = self._occurrences.get(code)
            if occurrence is None:
                self._occurrences[code] = ErrorOccurrence(code, message)
            else:
                occurrence.count += 1
                occurrence.latest_message = message

    def snapshot(self) -> Dict[int, ErrorOccurrence]:
        with self._lock:
            return {code: replace(occ) for code, occ in self._occurrences.items()}


@dataclass
class WorkerResult:
    """Counters owned by one worker pipeline.

    Stage 1 writes the ``user_*`` fields, stage 2 the ``resource_*`` fields
    and stage 3 the ``pipeline_*`` fields, so the stage threads of a worker
    never write the same attribute.
    """

    worker_id: int
    attempted_users: int = 0
    user_creation_seconds: float = 0.0
    failed_user_creations: int = 0
    forwarded_users: int = 0
    resource_creation_seconds: float = 0.0
    failed_resource_creations: int = 0
    provisioned_users: int = 0
    pipeline_run_seconds: float = 0.0
    failed_pipeline_runs: int = 0
    observed_pipelines: int = 0
    user_samples: List[float] = field(default_factory=list)
    resource_samples: List[float] = field(default_factory=list)
    pipeline_samples: List[float] = field(default_factory=list)


STAGES = ("users", "resources", "pipelines")


@dataclass
class StageSummary:
    total_seconds: float
    average_seconds: float
    failures: int
    failure_rate: float
    recorded_errors: int = 0
    samples: List[float] = field(default_factory=list)


@dataclass
class RunAggregate:
    threads: int
    users_per_thread: int
    batch_size: int
    total_users: int
    stages: Dict[str, StageSummary]
    errors: Dict[int, ErrorOccurrence]
    forwarded_users: int = 0
    provisioned_users: int = 0
    observed_pipelines: int = 0

    @property
    def total_failures(self) -> int:
        return sum(stage.failures for stage in self.stages.values())

    def error_list(self) -> List[ErrorOccurrence]:
        return [self.errors[code] for code in sorted(self.errors)]


def average_seconds(total_seconds: float, attempted: int) -> float:
    # Divides by attempted users, not completed ones.
    if attempted <= 0:
        return 0.0
    return total_seconds / attempted


def failure_rate(failures: int, attempted: int) -> float:
    if attempted <= 0:
        return 0.0
    return 100.0 * failures / attempted


def aggregate_results(
    results: Iterable[WorkerResult],
    errors: ErrorRecorder,
    *,
    threads: int,
    users_per_thread: int,
    batch_size: int,
) -> RunAggregate:
    """Merge worker results and check each stage's counter against its recorded errors."""
    results = sorted(results, key=lambda item: item.worker_id)
    total_users = threads * users_per_thread
    snapshot = errors.snapshot()

    def summarize(
        stage: str, seconds_attr: str, failures_attr: str, samples_attr: str
    ) -> StageSummary:
        total_seconds = sum(getattr(result, seconds_attr) for result in results)
        failures = sum(getattr(result, failures_attr) for result in results)
        recorded = sum(snapshot[code].count for code in STAGE_CODES[stage] if code in snapshot)
        if recorded != failures:
            logging.warning(
                "Stage %s counted %d failure(s) but recorded %d error(s)", stage, failures, recorded
            )
        samples: List[float] = []
        for result in results:
            samples.extend(getattr(result, samples_attr))
        return StageSummary(
            total_seconds=total_seconds,
            average_seconds=average_seconds(total_seconds, total_users),
            failures=failures,
            failure_rate=failure_rate(failures, total_users),
            recorded_errors=recorded,
            samples=samples,
        )

    stages = {
        "users": summarize(
            "users", "user_creation_seconds", "failed_user_creations", "user_samples"
        ),
        "resources": summarize(
            "resources",
            "resource_creation_seconds",
            "failed_resource_creations",
            "resource_samples",
        ),
        "pipelines": summarize(
            "pipelines", "pipeline_run_seconds", "failed_pipeline_runs", "pipeline_samples"
        ),
    }
    return RunAggregate(
        threads=threads,
        users_per_thread=users_per_thread,
        batch_size=batch_size,
        total_users=total_users,
        stages=stages,
        errors=snapshot,
        forwarded_users=sum(result.forwarded_users for result in results),
        provisioned_users=sum(result.provisioned_users for result in results),
        observed_pipelines=sum(result.observed_pipelines for result in results),
    )
