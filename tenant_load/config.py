"""Command line, JSON config and environment handling for the load run."""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from .cluster_metrics import DEFAULT_QUERIES
from .settings import DEFAULT_QUAY_ORGANIZATION, LoadTestSettings

BASE_DIR = Path(__file__).resolve().parent
DEFAULT_CONFIG_PATH = BASE_DIR / "load_config.json"


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="tenant-load",
        description="Used to Generate Users and Run Load Tests on AppStudio.",
    )
    parser.add_argument("--config", help="Path to JSON config (default: bundled load_config.json).")
    parser.add_argument(
        "--allow-env-overrides",
        action="store_true",
        help="Allow environment variables to override JSON config keys (default: off).",
    )
    parser.add_argument("--username", dest="username_prefix", help="The prefix used for usersignup names.")
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="If 'debug' traces should be written to the log.",
    )
    parser.add_argument("-u", "--users", type=int, help="The number of user accounts to provision per thread.")
    parser.add_argument(
        "-b",
        "--batch",
        type=int,
        help="Create user accounts in batches of N; increasing batch size may cause performance problems.",
    )
    parser.add_argument(
        "-w",
        "--waitpipelines",
        dest="wait_pipelines",
        action="store_true",
        default=None,
        help="Wait for build pipelines to finish.",
    )
    parser.add_argument(
        "-l",
        "--log-to-console",
        action="store_true",
        help="Log to console in addition to the log file.",
    )
    parser.add_argument(
        "--fail-fast",
        action="store_true",
        default=None,
        help="Terminate the test at the first failure.",
    )
    parser.add_argument("--disable-metrics", action="store_true", help="Disable cluster metrics gathering.")
    parser.add_argument("-t", "--threads", type=int, help="Number of concurrent threads to execute.")
    parser.add_argument("--token", help="Bearer token used for cluster metrics queries.")
    parser.add_argument(
        "--purge",
        nargs="?",
        const="users",
        choices=("users", "namespaces"),
        help="Once the report is written, delete the user signups (default) or only the "
        "workload resources inside each tenant namespace.",
    )
    parser.add_argument("--no-chart", action="store_true", help="Skip rendering the stage chart.")
    return parser.parse_args(argv)


def load_json_config(path: Optional[str]) -> Tuple[Path, Dict[str, object]]:
    config_path = Path(path).expanduser() if path else DEFAULT_CONFIG_PATH
    if not config_path.exists():
        raise SystemExit(f"Config file not found: {config_path}")
    try:
        data = json.loads(config_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise SystemExit(f"Invalid JSON in {config_path}: {exc}") from exc
    if not isinstance(data, dict):
        raise SystemExit(f"Config {config_path} must contain a JSON object.")
    return config_path, data


def validate_config_schema(config: Dict[str, object]) -> None:
    def require(key: str) -> Dict[str, object]:
        if key not in config:
            raise SystemExit(f"Config missing required key: {key}")
        value = config[key]
        if not isinstance(value, dict):
            raise SystemExit(f"Config key {key} must be an object.")
        return value

    run_cfg = require("run")
    for key in ("threads", "users_per_thread", "batch_size"):
        if key not in run_cfg:
            raise SystemExit(f"Config missing run.{key}")
    timeouts = require("timeouts")
    for key in ("namespace_seconds", "gitops_repo_seconds", "pipeline_timeout_seconds"):
        if key not in timeouts:
            raise SystemExit(f"Config missing timeouts.{key}")
    for optional in ("cluster", "metrics", "output"):
        if optional in config and not isinstance(config[optional], dict):
            raise SystemExit(f"Config key {optional} must be an object.")


def apply_config_overrides(
    args: argparse.Namespace, config: Dict[str, object], config_path: Path
) -> Tuple[List[str], List[str]]:
    """Resolve every effective value: CLI, then env (if allowed), then config."""
    env_overrides: List[str] = []
    ignored_env: List[str] = []
    env_allowed = bool(getattr(args, "allow_env_overrides", False))

    def pick(
        cli_value: Optional[object],
        config_value: Optional[object],
        env_name: Optional[str] = None,
        cast: Optional[callable] = None,
    ) -> Optional[object]:
        if cli_value is not None:
            return cli_value
        if env_name:
            env_val = os.getenv(env_name)
            if env_val not in (None, ""):
                if env_allowed:
                    env_overrides.append(env_name)
                    return cast(env_val) if cast else env_val
                ignored_env.append(env_name)
        return config_value

    run_cfg = config.get("run", {})
    args.threads = pick(args.threads, run_cfg.get("threads"), "LOAD_TEST_THREADS", int)
    args.users = pick(args.users, run_cfg.get("users_per_thread"), "LOAD_TEST_USERS", int)
    args.batch = pick(args.batch, run_cfg.get("batch_size"), "LOAD_TEST_BATCH", int)
    args.username_prefix = pick(
        args.username_prefix, run_cfg.get("username_prefix", "testuser"), "LOAD_TEST_USERNAME"
    )
    args.wait_pipelines = bool(pick(args.wait_pipelines, run_cfg.get("wait_pipelines", False)))
    args.fail_fast = bool(pick(args.fail_fast, run_cfg.get("fail_fast", False)))
    args.progress_interval = pick(None, run_cfg.get("progress_interval_seconds", 10), None, float)

    timeouts = config.get("timeouts", {})
    args.namespace_timeout = timeouts.get("namespace_seconds")
    args.namespace_poll_interval = timeouts.get("namespace_poll_interval_seconds", 1)
    args.gitops_timeout = timeouts.get("gitops_repo_seconds")
    args.gitops_poll_interval = timeouts.get("gitops_poll_interval_seconds", 1)
    args.pipeline_poll_interval = timeouts.get("pipeline_poll_interval_seconds", 0.2)
    args.pipeline_timeout = timeouts.get("pipeline_timeout_seconds")

    cluster_cfg = config.get("cluster", {}) or {}
    args.host_operator_namespace = cluster_cfg.get("host_operator_namespace", "toolchain-host-operator")
    args.registry_secret_name = cluster_cfg.get(
        "registry_secret_name", "redhat-appstudio-registry-pull-secret"
    )
    args.component_source_url = cluster_cfg.get("component_source_url")
    args.quay_organization = pick(
        None,
        cluster_cfg.get("quay_organization", DEFAULT_QUAY_ORGANIZATION),
        "QUAY_E2E_ORGANIZATION",
    )

    metrics_cfg = config.get("metrics", {}) or {}
    args.metrics_enabled = bool(metrics_cfg.get("enabled", True)) and not args.disable_metrics
    args.metrics_interval = float(metrics_cfg.get("interval_seconds", 60))
    args.metrics_verify_tls = bool(metrics_cfg.get("verify_tls", False))
    args.metrics_queries = metrics_cfg.get("queries") or dict(DEFAULT_QUERIES)
    args.prometheus_url = pick(None, metrics_cfg.get("prometheus_url"), "PROMETHEUS_URL")
    args.token = pick(args.token, None, "LOAD_TEST_TOKEN")

    output_cfg = config.get("output", {}) or {}
    args.log_file = output_cfg.get("log_file", "load-tests.log")
    args.report_file = output_cfg.get("report_file", "load-tests.json")
    args.artifacts_dir = output_cfg.get("artifacts_dir", "artifacts")
    args.chart = bool(output_cfg.get("chart", True)) and not args.no_chart

    args.config_path = str(config_path)
    return env_overrides, ignored_env


def ensure_effective_args(args: argparse.Namespace) -> None:
    required_ints = {
        "threads": args.threads,
        "users": args.users,
        "batch": args.batch,
    }
    for name, value in required_ints.items():
        if value is None:
            raise SystemExit(f"Config missing value for {name}.")
        if value < 1:
            raise SystemExit(f"{name} must be >= 1 (got {value}).")
    if args.users % args.batch != 0:
        raise SystemExit("Please Provide Correct Batches!")
    for name in ("namespace_timeout", "gitops_timeout", "pipeline_timeout"):
        value = getattr(args, name)
        if value is None or float(value) <= 0:
            raise SystemExit(f"{name} must be > 0 (got {value}).")
    if args.progress_interval is None or args.progress_interval <= 0:
        args.progress_interval = 10.0
    if not args.component_source_url:
        args.component_source_url = (
            "https://github.com/devfile-samples/devfile-sample-code-with-quarkus"
        )


def settings_from_args(args: argparse.Namespace, docker_config_json: str) -> LoadTestSettings:
    return LoadTestSettings(
        threads=int(args.threads),
        users_per_thread=int(args.users),
        batch_size=int(args.batch),
        wait_pipelines=bool(args.wait_pipelines),
        username_prefix=str(args.username_prefix),
        fail_fast=bool(args.fail_fast),
        progress_interval=float(args.progress_interval),
        namespace_timeout=float(args.namespace_timeout),
        namespace_poll_interval=float(args.namespace_poll_interval),
        gitops_timeout=float(args.gitops_timeout),
        gitops_poll_interval=float(args.gitops_poll_interval),
        pipeline_poll_interval=float(args.pipeline_poll_interval),
        pipeline_timeout=float(args.pipeline_timeout),
        registry_secret_name=str(args.registry_secret_name),
        docker_config_json=docker_config_json,
        component_source_url=str(args.component_source_url),
        quay_organization=str(args.quay_organization),
    )


def print_config_summary(
    args: argparse.Namespace, env_overrides: Sequence[str], ignored_env: Sequence[str]
) -> None:
    print(f"[config] Loaded {args.config_path}")
    print(
        "[config] threads=%s users_per_thread=%s batch=%s total_users=%s wait_pipelines=%s "
        "fail_fast=%s prefix=%s"
        % (
            args.threads,
            args.users,
            args.batch,
            args.threads * args.users,
            args.wait_pipelines,
            args.fail_fast,
            args.username_prefix,
        )
    )
    print(
        "[config] timeouts namespace=%ss gitops=%ss pipeline=%ss (poll %ss) metrics=%s"
        % (
            args.namespace_timeout,
            args.gitops_timeout,
            args.pipeline_timeout,
            args.pipeline_poll_interval,
            "on" if args.metrics_enabled else "off",
        )
    )
    if env_overrides:
        print(f"[config] Environment overrides applied: {', '.join(env_overrides)}")
    elif ignored_env:
        print(
            "[config] Ignored env overrides: %s (use --allow-env-overrides to enable)"
            % ", ".join(ignored_env)
        )


def configure_logging(args: argparse.Namespace) -> Path:
    """Log to the run's log file and, with --log-to-console, to stdout."""
    log_level = logging.DEBUG if args.verbose else logging.INFO
    log_path = Path(args.log_file).expanduser()
    log_path.parent.mkdir(parents=True, exist_ok=True)
    handlers: List[logging.Handler] = [logging.FileHandler(log_path, mode="w")]
    if args.log_to_console:
        handlers.append(logging.StreamHandler(sys.stdout))

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s %(levelname)s %(message)s",
        handlers=handlers,
        force=True,
    )
    # The kubernetes client logs every request at DEBUG.
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    return log_path
