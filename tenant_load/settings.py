"""Run parameters consumed by the orchestration engine."""

from __future__ import annotations

from dataclasses import dataclass

QUARKUS_DEVFILE_SOURCE = "https://github.com/devfile-samples/devfile-sample-code-with-quarkus"
REGISTRY_AUTH_SECRET_NAME = "redhat-appstudio-registry-pull-secret"
DEFAULT_QUAY_ORGANIZATION = "redhat-appstudio-qe"


@dataclass
class LoadTestSettings:
    threads: int = 1
    users_per_thread: int = 5
    batch_size: int = 5
    wait_pipelines: bool = False
    username_prefix: str = "testuser"
    fail_fast: bool = False
    progress_interval: float = 10.0
    namespace_timeout: float = 300.0
    namespace_poll_interval: float = 1.0
    gitops_timeout: float = 60.0
    gitops_poll_interval: float = 1.0
    pipeline_poll_interval: float = 0.2
    pipeline_timeout: float = 3600.0
    registry_secret_name: str = REGISTRY_AUTH_SECRET_NAME
    docker_config_json: str = '{"auths":{}}'
    component_source_url: str = QUARKUS_DEVFILE_SOURCE
    quay_organization: str = DEFAULT_QUAY_ORGANIZATION

    @property
    def total_users(self) -> int:
        return self.threads * self.users_per_thread

    def validate(self) -> None:
        """Reject configurations the pipeline cannot checkpoint correctly."""
        if self.threads < 1:
            raise SystemExit(f"threads must be >= 1 (got {self.threads})")
        if self.users_per_thread < 1:
            raise SystemExit(f"users per thread must be >= 1 (got {self.users_per_thread})")
        if self.batch_size < 1:
            raise SystemExit(f"batch size must be >= 1 (got {self.batch_size})")
        if self.users_per_thread % self.batch_size != 0:
            raise SystemExit(
                "Please Provide Correct Batches! users per thread "
                f"({self.users_per_thread}) must be a multiple of batch size ({self.batch_size})."
            )
        if self.pipeline_poll_interval <= 0 or self.pipeline_timeout <= 0:
            raise SystemExit("pipeline poll interval and timeout must be > 0")
        if not self.username_prefix:
            raise SystemExit("username prefix must not be empty")
