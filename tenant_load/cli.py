"""Entry point: provision synthetic AppStudio tenants under load and report."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import List, Optional, Sequence

from .cleanup import purge_namespaces, purge_users
from .cluster import ClusterClient, docker_config_json_from_env
from .cluster_metrics import ClusterMetricsSampler, token_from_oc
from .config import (
    apply_config_overrides,
    configure_logging,
    ensure_effective_args,
    load_json_config,
    parse_args,
    print_config_summary,
    settings_from_args,
    validate_config_schema,
)
from .metrics import ErrorRecorder
from .orchestrator import run_load_test
from .pipeline import UserNames, user_names
from .progress import ProgressBoard, ProgressReporter, log_line
from .report import build_report, log_summary, plot_stage_summary, timestamp_now, write_report
from .settings import LoadTestSettings


def start_metrics_sampler(
    args: argparse.Namespace, cluster: ClusterClient
) -> Optional[ClusterMetricsSampler]:
    """Start cluster metrics sampling, or return None when it is unavailable."""
    if not args.metrics_enabled:
        logging.info("[metrics] Cluster metrics gathering disabled")
        return None
    token = args.token or token_from_oc()
    if not token:
        logging.warning("[metrics] No bearer token (use --token or log in with oc); metrics disabled")
        return None
    base_url = args.prometheus_url
    if not base_url:
        try:
            base_url = cluster.prometheus_url()
        except Exception as exc:
            logging.warning("[metrics] Unable to discover the Prometheus URL: %s; metrics disabled", exc)
            return None
    sampler = ClusterMetricsSampler(
        base_url,
        token,
        Path(args.artifacts_dir) / "cluster-metrics.csv",
        queries=args.metrics_queries,
        interval=args.metrics_interval,
        verify_tls=args.metrics_verify_tls,
    )
    return sampler.start()


def all_user_names(settings: LoadTestSettings) -> List[UserNames]:
    return [
        user_names(settings.username_prefix, worker_id, settings.users_per_thread, ordinal)
        for worker_id in range(settings.threads)
        for ordinal in range(1, settings.users_per_thread + 1)
    ]


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = parse_args(argv)
    config_path, config_data = load_json_config(args.config)
    validate_config_schema(config_data)
    env_overrides, ignored_env = apply_config_overrides(args, config_data, config_path)
    ensure_effective_args(args)
    print_config_summary(args, env_overrides, ignored_env)
    log_path = configure_logging(args)
    log_line(f"[run] Logging to {log_path}")

    settings = settings_from_args(args, docker_config_json_from_env())
    settings.validate()
    cluster = ClusterClient(
        host_operator_namespace=args.host_operator_namespace,
        poll_interval=settings.namespace_poll_interval,
        gitops_poll_interval=settings.gitops_poll_interval,
    )

    sampler = start_metrics_sampler(args, cluster)
    board = ProgressBoard(settings.total_users)
    errors = ErrorRecorder(fail_fast=settings.fail_fast)
    started = timestamp_now()
    try:
        with ProgressReporter(
            board, settings.progress_interval, include_pipelines=settings.wait_pipelines
        ):
            aggregate = run_load_test(settings, cluster, errors=errors, progress=board)
    finally:
        cluster_summary = sampler.stop() if sampler is not None else None
    finished = timestamp_now()

    log_summary(aggregate)
    report = build_report(
        aggregate, started=started, finished=finished, cluster_metrics=cluster_summary
    )
    write_report(report, Path(args.report_file))
    if args.chart:
        plot_stage_summary(aggregate, Path(args.artifacts_dir) / "stage-summary.png")

    if args.purge:
        names = all_user_names(settings)
        try:
            if args.purge == "namespaces":
                purge_namespaces(cluster, [item.namespace for item in names])
            else:
                purge_users(cluster, [item.username for item in names])
        except RuntimeError as exc:
            raise SystemExit(f"[purge] {exc}") from exc

    log_line(
        f"[run] Completed: {aggregate.total_users} users, "
        f"{aggregate.total_failures} stage failure(s), report at {args.report_file}"
    )


if __name__ == "__main__":
    main()
