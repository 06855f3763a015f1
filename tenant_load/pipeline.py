"""Per-worker three-stage user journey.

Stage 1 provisions user signups and releases them cohort by cohort once their
tenant namespaces are ready, stage 2 creates the workload resources for each
released user, and stage 3 (optional) waits for the build pipeline the
platform starts for the new component. Stages run on their own threads and
hand ordinals over through bounded queues.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
import uuid
from dataclasses import dataclass
from typing import Iterator, List, Optional, Tuple

from .batching import BatchGate
from .errors import ErrorCode, PollTimeoutError
from .metrics import ErrorRecorder, WorkerResult
from .polling import poll_until
from .progress import ProgressBoard
from .settings import LoadTestSettings

_CLOSED = object()


class HandoffQueue:
    """Bounded queue with an explicit close marker for its single consumer."""

    def __init__(self, capacity: int) -> None:
        self._queue: "queue.Queue[object]" = queue.Queue(maxsize=capacity + 1)
        self._closed = False

    def put(self, item: int) -> None:
        if self._closed:
            raise RuntimeError("put on a closed hand-off queue")
        self._queue.put(item)

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put(_CLOSED)

    def __iter__(self) -> Iterator[int]:
        while True:
            item = self._queue.get()
            if item is _CLOSED:
                return
            yield item  # type: ignore[misc]

    def drain(self) -> List[int]:
        return list(self)


@dataclass(frozen=True)
class UserNames:
    username: str
    namespace: str
    application: str
    component: str


def user_names(prefix: str, worker_id: int, users_per_thread: int, ordinal: int) -> UserNames:
    username = f"{prefix}-{worker_id * users_per_thread + ordinal:04d}"
    return UserNames(
        username=username,
        namespace=f"{username}-tenant",
        application=f"{username}-app",
        component=f"{username}-component",
    )


class WorkerPipeline:
    def __init__(
        self,
        worker_id: int,
        settings: LoadTestSettings,
        cluster: object,
        errors: ErrorRecorder,
        progress: Optional[ProgressBoard] = None,
    ) -> None:
        self.worker_id = worker_id
        self.settings = settings
        self.cluster = cluster
        self.errors = errors
        self.progress = progress or ProgressBoard(settings.total_users)
        self.result = WorkerResult(worker_id=worker_id)
        self.users_ready = HandoffQueue(settings.users_per_thread)
        self.resources_ready = HandoffQueue(settings.users_per_thread)
        self._stage_errors: List[Tuple[str, Exception]] = []
        self._stage_errors_lock = threading.Lock()

    def names(self, ordinal: int) -> UserNames:
        return user_names(
            self.settings.username_prefix,
            self.worker_id,
            self.settings.users_per_thread,
            ordinal,
        )

    def run(self) -> WorkerResult:
        stages = [
            ("users", self.provision_users),
            ("resources", self.provision_resources),
        ]
        if self.settings.wait_pipelines:
            stages.append(("pipelines", self.observe_builds))

        threads = [
            threading.Thread(
                target=self._guard,
                args=(stage, target),
                name=f"w{self.worker_id:02d}-{stage}",
            )
            for stage, target in stages
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        if not self.settings.wait_pipelines:
            skipped = self.resources_ready.drain()
            logging.debug(
                "[w%02d] %d user(s) not observed; pipelines disabled", self.worker_id, len(skipped)
            )

        if self._stage_errors:
            stage, exc = self._stage_errors[0]
            raise RuntimeError(f"worker {self.worker_id} stage {stage} crashed: {exc}") from exc
        return self.result

    def _guard(self, stage: str, target) -> None:
        try:
            target()
        except Exception as exc:
            logging.exception("[w%02d] stage %s aborted", self.worker_id, stage)
            with self._stage_errors_lock:
                self._stage_errors.append((stage, exc))
            # Unblock the downstream consumer.
            if stage == "users":
                self.users_ready.close()
            elif stage == "resources":
                self.resources_ready.close()

    # Stage 1 -----------------------------------------------------------------

    def provision_users(self) -> None:
        gate = BatchGate(self.settings.batch_size)
        result = self.result
        try:
            for ordinal in range(1, self.settings.users_per_thread + 1):
                result.attempted_users += 1
                names = self.names(ordinal)
                start = time.perf_counter()
                try:
                    self.cluster.create_user(names.username)
                except Exception as exc:
                    self.errors.record(
                        ErrorCode.USER_PROVISIONING,
                        f"Unable to provision user '{names.username}': {exc}",
                    )
                    result.failed_user_creations += 1
                    self.progress.fail("users")
                else:
                    elapsed = time.perf_counter() - start
                    result.user_creation_seconds += elapsed
                    result.user_samples.append(elapsed)
                    gate.add(ordinal)
                    logging.debug(
                        "[w%02d] user %s created in %.3fs", self.worker_id, names.username, elapsed
                    )

                if gate.boundary(ordinal):
                    self._release_cohort(gate)
        finally:
            self.users_ready.close()

    def _release_cohort(self, gate: BatchGate) -> None:
        members = gate.pending
        if not members:
            return

        def namespace_ready(ordinal: int) -> None:
            self.cluster.wait_for_namespace(
                self.names(ordinal).namespace, self.settings.namespace_timeout
            )

        released, failed_member, exc = gate.release(namespace_ready)
        if failed_member is not None:
            namespace = self.names(failed_member).namespace
            # One outcome per abandoned member keeps counters and recorded errors equal.
            for ordinal in members:
                self.errors.record(
                    ErrorCode.NAMESPACE_READINESS,
                    f"Abandoned user '{self.names(ordinal).username}': unable to find "
                    f"namespace '{namespace}' within {self.settings.namespace_timeout:g}s: {exc}",
                )
            self.result.failed_user_creations += len(members)
            self.progress.fail("users", len(members))
            return
        for ordinal in released:
            self.users_ready.put(ordinal)
        self.result.forwarded_users += len(released)
        self.progress.advance("users", len(released))

    # Stage 2 -----------------------------------------------------------------

    def provision_resources(self) -> None:
        try:
            for ordinal in self.users_ready:
                start = time.perf_counter()
                failure = self._create_resources(self.names(ordinal))
                if failure is not None:
                    code, message = failure
                    self.errors.record(code, message)
                    self.result.failed_resource_creations += 1
                    self.progress.fail("resources")
                    continue
                elapsed = time.perf_counter() - start
                self.result.resource_creation_seconds += elapsed
                self.result.resource_samples.append(elapsed)
                self.result.provisioned_users += 1
                self.resources_ready.put(ordinal)
                self.progress.advance("resources")
        finally:
            self.resources_ready.close()

    def _create_resources(self, names: UserNames) -> Optional[Tuple[ErrorCode, str]]:
        settings = self.settings
        cluster = self.cluster
        try:
            cluster.create_registry_secret(
                settings.registry_secret_name, names.namespace, settings.docker_config_json
            )
        except Exception as exc:
            return (
                ErrorCode.REGISTRY_SECRET,
                f"Unable to create the secret {settings.registry_secret_name} "
                f"in namespace {names.namespace}: {exc}",
            )

        try:
            application = cluster.create_application(names.application, names.namespace)
        except Exception as exc:
            return (
                ErrorCode.APPLICATION_CREATION,
                f"Unable to create the Application {names.application}: {exc}",
            )

        try:
            cluster.wait_for_gitops_repo(application, settings.gitops_timeout)
        except Exception as exc:
            return (
                ErrorCode.GITOPS_REPO,
                f"Unable to create application {names.application} gitops repo "
                f"within {settings.gitops_timeout:g}s: {exc}",
            )

        image = (
            f"quay.io/{settings.quay_organization}/test-images:"
            f"{names.username}-{uuid.uuid4().hex}"
        )
        try:
            component = cluster.create_component(
                names.application,
                names.component,
                names.namespace,
                settings.component_source_url,
                image,
            )
        except Exception as exc:
            return (
                ErrorCode.COMPONENT_CREATION,
                f"Unable to create the Component {names.component}: {exc}",
            )

        actual = component_name(component)
        if actual != names.component:
            return (
                ErrorCode.COMPONENT_NAME_MISMATCH,
                f"Actual component name ({actual}) does not match expected ({names.component})",
            )
        return None

    # Stage 3 -----------------------------------------------------------------

    def observe_builds(self) -> None:
        settings = self.settings
        for ordinal in self.resources_ready:
            names = self.names(ordinal)
            observed = {}

            def build_finished() -> bool:
                run = self.cluster.get_build_run(names.component, names.application, names.namespace)
                if run is None or not run.is_done():
                    return False
                observed["run"] = run
                return True

            try:
                poll_until(
                    build_finished,
                    settings.pipeline_poll_interval,
                    settings.pipeline_timeout,
                    description=f"pipeline run of {names.application}/{names.component}",
                )
            except PollTimeoutError as exc:
                self.errors.record(
                    ErrorCode.PIPELINE_TIMEOUT,
                    f"Pipeline run for {names.application}/{names.component} failed to succeed "
                    f"within {settings.pipeline_timeout:g}s: {exc}",
                )
                self.result.failed_pipeline_runs += 1
                self.progress.fail("pipelines")
                continue

            run = observed["run"]
            duration = run.duration_seconds
            self.result.pipeline_run_seconds += duration
            self.result.pipeline_samples.append(duration)
            self.result.observed_pipelines += 1
            if run.failed:
                self.errors.record(
                    ErrorCode.PIPELINE_FAILED,
                    f"Pipeline run for {names.application}/{names.component} failed due to "
                    f"{run.reason}: {run.message}",
                )
                self.result.failed_pipeline_runs += 1
                self.progress.fail("pipelines")
            self.progress.advance("pipelines")


def component_name(component: object) -> Optional[str]:
    if isinstance(component, dict):
        return (component.get("metadata") or {}).get("name")
    return getattr(component, "name", None)
