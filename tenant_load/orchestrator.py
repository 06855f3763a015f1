"""Fan the user journey out over a fixed pool of worker pipelines."""

from __future__ import annotations

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from typing import Dict, List, Optional

from .metrics import ErrorRecorder, RunAggregate, WorkerResult, aggregate_results
from .pipeline import WorkerPipeline
from .progress import ProgressBoard
from .settings import LoadTestSettings


def run_load_test(
    settings: LoadTestSettings,
    cluster: object,
    *,
    errors: Optional[ErrorRecorder] = None,
    progress: Optional[ProgressBoard] = None,
) -> RunAggregate:
    """Run ``settings.threads`` independent pipelines and merge their results.

    Configuration problems raise ``SystemExit`` before any worker starts. A
    worker pipeline that crashes aborts the whole run; no partial aggregate
    is returned.
    """
    settings.validate()
    errors = errors or ErrorRecorder(fail_fast=settings.fail_fast)
    progress = progress or ProgressBoard(settings.total_users)

    logging.info("Number of threads: %d", settings.threads)
    logging.info("Number of users per thread: %d", settings.users_per_thread)
    logging.info("Batch Size per thread: %d", settings.batch_size)

    start = time.perf_counter()
    results: List[WorkerResult] = []
    futures: Dict[Future[WorkerResult], int] = {}
    with ThreadPoolExecutor(max_workers=settings.threads, thread_name_prefix="journey") as executor:
        for worker_id in range(settings.threads):
            pipeline = WorkerPipeline(worker_id, settings, cluster, errors, progress)
            futures[executor.submit(pipeline.run)] = worker_id
        for future in as_completed(futures):
            worker_id = futures[future]
            try:
                result = future.result()
            except Exception as exc:
                raise SystemExit(f"[run] Worker {worker_id} failed: {exc}") from exc
            logging.info(
                "[w%02d] finished: users failed=%d forwarded=%d, resources failed=%d, "
                "pipelines failed=%d",
                worker_id,
                result.failed_user_creations,
                result.forwarded_users,
                result.failed_resource_creations,
                result.failed_pipeline_runs,
            )
            results.append(result)

    logging.info("All %d worker(s) joined after %.1fs", settings.threads, time.perf_counter() - start)
    return aggregate_results(
        results,
        errors,
        threads=settings.threads,
        users_per_thread=settings.users_per_thread,
        batch_size=settings.batch_size,
    )
