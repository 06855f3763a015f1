"""Final JSON report, results summary and stage chart."""

from __future__ import annotations

import json
import logging
import platform
import socket
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt  # noqa: E402
import numpy as np  # noqa: E402
import seaborn as sns  # noqa: E402

from .metrics import RunAggregate  # noqa: E402

STAGE_TITLES = {
    "users": "Create users",
    "resources": "Create resources",
    "pipelines": "Run pipelines",
}


def timestamp_now() -> str:
    return datetime.now().astimezone().isoformat(timespec="seconds")


def binary_details() -> str:
    return (
        f"Built with Python {platform.python_version()} for "
        f"{sys.platform}/{platform.machine() or 'unknown'}"
    )


def latency_percentiles(aggregate: RunAggregate) -> Dict[str, Dict[str, float]]:
    percentiles: Dict[str, Dict[str, float]] = {}
    for stage, summary in aggregate.stages.items():
        if not summary.samples:
            continue
        arr = np.asarray(summary.samples, dtype=float)
        percentiles[stage] = {
            "p50": round(float(np.percentile(arr, 50)), 3),
            "p95": round(float(np.percentile(arr, 95)), 3),
            "max": round(float(arr.max()), 3),
        }
    return percentiles


def build_report(
    aggregate: RunAggregate,
    *,
    started: str,
    finished: str,
    status: str = "Completed",
    cluster_metrics: Optional[Dict[str, Dict[str, float]]] = None,
) -> Dict[str, Any]:
    users = aggregate.stages["users"]
    resources = aggregate.stages["resources"]
    pipelines = aggregate.stages["pipelines"]
    report: Dict[str, Any] = {
        "timestamp": started,
        "endTimestamp": finished,
        "machineName": socket.gethostname(),
        "binaryDetails": binary_details(),
        "threads": aggregate.threads,
        "usersPerThread": aggregate.users_per_thread,
        "threadBatchSize": aggregate.batch_size,
        "totalUsers": aggregate.total_users,
        "status": status,
        "createUserTimeAvg": users.average_seconds,
        "createResourcesTimeAvg": resources.average_seconds,
        "runPipelineTimeAvg": pipelines.average_seconds,
        "createUserFailures": users.failures,
        "createUserFailureRate": users.failure_rate,
        "createResourcesFailures": resources.failures,
        "createResourcesFailureRate": resources.failure_rate,
        "runPipelineFailures": pipelines.failures,
        "runPipelineFailureRate": pipelines.failure_rate,
        "errors": [occurrence.to_dict() for occurrence in aggregate.error_list()],
        "stageLatencyPercentiles": latency_percentiles(aggregate),
    }
    if cluster_metrics:
        report["clusterMetrics"] = cluster_metrics
    return report


def write_report(report: Dict[str, Any], path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(report, indent=2) + "\n", encoding="utf-8")
    logging.info("Report written to %s", path)
    return path


def log_summary(aggregate: RunAggregate) -> None:
    users = aggregate.stages["users"]
    resources = aggregate.stages["resources"]
    pipelines = aggregate.stages["pipelines"]
    logging.info("Load Test Completed!")
    logging.info("Results")
    logging.info("Average Time taken to spin up users: %.2f s", users.average_seconds)
    logging.info("Average Time taken to Create Resources: %.2f s", resources.average_seconds)
    logging.info("Average Time taken to Run Pipelines: %.2f s", pipelines.average_seconds)
    logging.info(
        "Number of times user creation failed: %d (%.2f %%)", users.failures, users.failure_rate
    )
    logging.info(
        "Number of times resource creation failed: %d (%.2f %%)",
        resources.failures,
        resources.failure_rate,
    )
    logging.info(
        "Number of times pipeline run failed: %d (%.2f %%)",
        pipelines.failures,
        pipelines.failure_rate,
    )
    for occurrence in aggregate.error_list():
        logging.info(
            "Number of error #%d occurred: %d (latest: %s)",
            occurrence.error_number,
            occurrence.count,
            occurrence.latest_message,
        )


def plot_stage_summary(aggregate: RunAggregate, path: Path) -> Path:
    """Bar charts of average duration and failure rate per stage."""
    sns.set_theme(style="whitegrid")
    stages = list(STAGE_TITLES)
    labels = [STAGE_TITLES[stage] for stage in stages]
    averages = [aggregate.stages[stage].average_seconds for stage in stages]
    rates = [aggregate.stages[stage].failure_rate for stage in stages]
    palette = plt.get_cmap("tab10")

    fig, axes = plt.subplots(1, 2, figsize=(11, 4.5))
    axes[0].bar(labels, averages, color=[palette(i) for i in range(len(stages))])
    axes[0].set_title("Average duration per attempted user")
    axes[0].set_ylabel("seconds")
    axes[1].bar(labels, rates, color=[palette(i) for i in range(len(stages))])
    axes[1].set_title("Failure rate")
    axes[1].set_ylabel("% of attempted users")
    axes[1].set_ylim(0, 100)
    fig.suptitle(
        f"{aggregate.total_users} users ({aggregate.threads} threads x "
        f"{aggregate.users_per_thread}, batch {aggregate.batch_size})"
    )
    fig.tight_layout()
    path.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(path, dpi=110)
    plt.close(fig)
    logging.info("Stage chart written to %s", path)
    return path
