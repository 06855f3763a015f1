"""Shared fixtures: an in-memory cluster that mimics ClusterClient."""

import threading
from datetime import datetime, timedelta, timezone

import pytest

from tenant_load.cluster import BuildRun
from tenant_load.errors import PollTimeoutError
from tenant_load.metrics import ErrorRecorder
from tenant_load.settings import LoadTestSettings


class FakeCluster:
    """Records every call and fails the names it was told to fail."""

    def __init__(self):
        self.lock = threading.Lock()
        self.calls = []
        self.failing_users = set()
        self.unready_namespaces = set()
        self.failing_secrets = set()
        self.failing_applications = set()
        self.stale_gitops = set()
        self.failing_components = set()
        self.renamed_components = {}
        self.stuck_builds = set()
        self.failed_builds = set()
        self.failing_deletes = set()
        self.build_seconds = 1.0

    def _log(self, *call):
        with self.lock:
            self.calls.append(call)

    def called(self, name):
        with self.lock:
            return [call for call in self.calls if call[0] == name]

    def create_user(self, username):
        self._log("create_user", username)
        if username in self.failing_users:
            raise RuntimeError(f"usersignup {username} rejected")
        return {"metadata": {"name": username}}

    def delete_user(self, username):
        self._log("delete_user", username)
        if username in self.failing_deletes:
            raise RuntimeError(f"usersignup {username} not found")

    def delete_namespace_resources(self, namespace):
        self._log("delete_namespace_resources", namespace)
        if namespace in self.failing_deletes:
            raise RuntimeError(f"Error when deleting applications in namespace {namespace}")

    def wait_for_namespace(self, namespace, timeout):
        self._log("wait_for_namespace", namespace, timeout)
        if namespace in self.unready_namespaces:
            raise PollTimeoutError(f"namespace {namespace}", timeout)

    def create_registry_secret(self, name, namespace, docker_config_json):
        self._log("create_registry_secret", name, namespace)
        if namespace in self.failing_secrets:
            raise RuntimeError("forbidden")

    def create_application(self, name, namespace):
        self._log("create_application", name, namespace)
        if name in self.failing_applications:
            raise RuntimeError("admission webhook denied the request")
        return {"metadata": {"name": name, "namespace": namespace}}

    def wait_for_gitops_repo(self, application, timeout):
        name = application["metadata"]["name"]
        self._log("wait_for_gitops_repo", name, timeout)
        if name in self.stale_gitops:
            raise PollTimeoutError(f"gitops repo of {name}", timeout)

    def create_component(self, application, name, namespace, source_url, image):
        self._log("create_component", application, name, namespace, image)
        if name in self.failing_components:
            raise RuntimeError("component quota exceeded")
        return {"metadata": {"name": self.renamed_components.get(name, name)}}

    def get_build_run(self, component, application, namespace):
        self._log("get_build_run", component, application, namespace)
        if component in self.stuck_builds:
            return None
        created = datetime(2024, 1, 1, tzinfo=timezone.utc)
        failed = component in self.failed_builds
        return BuildRun(
            name=f"{component}-build",
            created=created,
            completed=created + timedelta(seconds=self.build_seconds),
            succeeded="False" if failed else "True",
            reason="BuildFailed" if failed else "Succeeded",
            message="step build exited 1" if failed else "",
        )


@pytest.fixture
def fake_cluster():
    return FakeCluster()


@pytest.fixture
def errors():
    return ErrorRecorder()


@pytest.fixture
def make_settings():
    def factory(**overrides):
        values = dict(
            threads=1,
            users_per_thread=4,
            batch_size=2,
            wait_pipelines=False,
            username_prefix="testuser",
            namespace_timeout=5.0,
            gitops_timeout=5.0,
            pipeline_poll_interval=0.01,
            pipeline_timeout=0.05,
        )
        values.update(overrides)
        return LoadTestSettings(**values)

    return factory
