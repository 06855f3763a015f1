import json
import logging

import pytest

from tenant_load.config import (
    DEFAULT_CONFIG_PATH,
    apply_config_overrides,
    configure_logging,
    ensure_effective_args,
    load_json_config,
    parse_args,
    settings_from_args,
    validate_config_schema,
)

ENV_NAMES = (
    "LOAD_TEST_THREADS",
    "LOAD_TEST_USERS",
    "LOAD_TEST_BATCH",
    "LOAD_TEST_USERNAME",
    "LOAD_TEST_TOKEN",
    "PROMETHEUS_URL",
    "QUAY_E2E_ORGANIZATION",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_NAMES:
        monkeypatch.delenv(name, raising=False)


def resolve(argv):
    args = parse_args(argv)
    path, data = load_json_config(args.config)
    validate_config_schema(data)
    overrides = apply_config_overrides(args, data, path)
    return args, overrides


def test_bundled_config_defaults():
    args, (applied, ignored) = resolve([])
    assert args.config_path == str(DEFAULT_CONFIG_PATH)
    assert (args.threads, args.users, args.batch) == (1, 5, 5)
    assert args.wait_pipelines is False
    assert args.namespace_timeout == 300
    assert args.pipeline_poll_interval == 0.2
    assert args.log_file == "load-tests.log"
    assert args.metrics_enabled is True
    assert applied == [] and ignored == []


def test_cli_flags_win_over_config():
    args, _ = resolve(
        ["-t", "3", "-u", "6", "-b", "2", "-w", "--username", "perf", "--disable-metrics", "--no-chart"]
    )
    assert (args.threads, args.users, args.batch) == (3, 6, 2)
    assert args.wait_pipelines is True
    assert args.username_prefix == "perf"
    assert args.metrics_enabled is False
    assert args.chart is False


def test_env_ignored_unless_allowed(monkeypatch):
    monkeypatch.setenv("LOAD_TEST_THREADS", "7")
    args, (applied, ignored) = resolve([])
    assert args.threads == 1
    assert ignored == ["LOAD_TEST_THREADS"]

    args, (applied, ignored) = resolve(["--allow-env-overrides"])
    assert args.threads == 7
    assert applied == ["LOAD_TEST_THREADS"]


def test_cli_beats_env(monkeypatch):
    monkeypatch.setenv("LOAD_TEST_USERS", "9")
    args, _ = resolve(["--allow-env-overrides", "-u", "4", "-b", "2"])
    assert args.users == 4


def test_custom_config_file(tmp_path):
    cfg = {
        "run": {"threads": 2, "users_per_thread": 4, "batch_size": 2, "wait_pipelines": True},
        "timeouts": {
            "namespace_seconds": 10,
            "gitops_repo_seconds": 5,
            "pipeline_timeout_seconds": 20,
        },
    }
    path = tmp_path / "cfg.json"
    path.write_text(json.dumps(cfg))
    args, _ = resolve(["--config", str(path)])
    ensure_effective_args(args)
    settings = settings_from_args(args, '{"auths":{}}')
    assert settings.total_users == 8
    assert settings.wait_pipelines is True
    assert settings.namespace_timeout == 10.0
    assert settings.quay_organization == "redhat-appstudio-qe"
    assert settings.component_source_url.startswith("https://github.com/devfile-samples/")


@pytest.mark.parametrize(
    "config,message",
    [
        ({}, "Config missing required key: run"),
        ({"run": []}, "Config key run must be an object"),
        ({"run": {"threads": 1, "users_per_thread": 1}}, "Config missing run.batch_size"),
        (
            {"run": {"threads": 1, "users_per_thread": 1, "batch_size": 1}, "timeouts": {}},
            "Config missing timeouts.namespace_seconds",
        ),
    ],
)
def test_schema_errors(config, message):
    with pytest.raises(SystemExit, match=message):
        validate_config_schema(config)


def test_invalid_json(tmp_path):
    path = tmp_path / "broken.json"
    path.write_text("{not json")
    with pytest.raises(SystemExit, match="Invalid JSON"):
        load_json_config(str(path))
    with pytest.raises(SystemExit, match="Config file not found"):
        load_json_config(str(tmp_path / "missing.json"))


def test_indivisible_batches_rejected():
    args, _ = resolve(["-u", "5", "-b", "2"])
    with pytest.raises(SystemExit, match="Please Provide Correct Batches"):
        ensure_effective_args(args)


def test_zero_threads_rejected():
    args, _ = resolve(["-t", "0"])
    with pytest.raises(SystemExit, match="threads must be >= 1"):
        ensure_effective_args(args)


def test_logging_goes_to_file(tmp_path):
    args, _ = resolve(["-v"])
    args.log_file = str(tmp_path / "logs" / "run.log")
    path = configure_logging(args)
    logging.getLogger().debug("debug trace visible")
    for handler in logging.getLogger().handlers:
        handler.flush()
    assert "debug trace visible" in path.read_text()
    assert not any(
        type(handler) is logging.StreamHandler for handler in logging.getLogger().handlers
    )
