"""Kubernetes/OpenShift operations the load run drives.

Everything here talks to the API server through the official ``kubernetes``
client. Failures surface as ``ApiException`` (or :class:`PollTimeoutError`
for bounded waits) and are classified by the calling stage.
"""

from __future__ import annotations

import base64
import hashlib
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import yaml
from kubernetes import client, config
from kubernetes.client.rest import ApiException

from .polling import poll_until

HOST_OPERATOR_NAMESPACE = "toolchain-host-operator"

TOOLCHAIN_GROUP = "toolchain.dev.openshift.com"
TOOLCHAIN_VERSION = "v1alpha1"
APPSTUDIO_GROUP = "appstudio.redhat.com"
APPSTUDIO_VERSION = "v1alpha1"
TEKTON_GROUP = "tekton.dev"
TEKTON_VERSION = "v1"

COMPONENT_LABEL = "appstudio.openshift.io/component"
APPLICATION_LABEL = "appstudio.openshift.io/application"
GITOPS_REPO_ATTRIBUTE = "gitOpsRepository.url"

# Workload kinds removed from a tenant namespace when it is purged.
PURGED_KINDS = ("applications", "componentdetectionqueries", "buildpipelineselectors")


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


@dataclass
class BuildRun:
    name: str
    created: datetime
    completed: Optional[datetime] = None
    succeeded: str = "Unknown"
    reason: str = ""
    message: str = ""

    def is_done(self) -> bool:
        return self.succeeded in ("True", "False")

    @property
    def failed(self) -> bool:
        return self.succeeded == "False"

    @property
    def duration_seconds(self) -> float:
        if self.completed is None:
            return 0.0
        return (self.completed - self.created).total_seconds()

    @classmethod
    def from_pipeline_run(cls, obj: Dict[str, Any]) -> "BuildRun":
        metadata = obj.get("metadata") or {}
        status = obj.get("status") or {}
        condition: Dict[str, Any] = {}
        for item in status.get("conditions") or []:
            if item.get("type") == "Succeeded":
                condition = item
                break
        return cls(
            name=metadata.get("name", ""),
            created=_parse_timestamp(metadata.get("creationTimestamp")) or datetime.now(timezone.utc),
            completed=_parse_timestamp(status.get("completionTime")),
            succeeded=condition.get("status", "Unknown"),
            reason=condition.get("reason", ""),
            message=condition.get("message", ""),
        )


def docker_config_json_from_env(env_name: str = "QUAY_TOKEN") -> str:
    """Return the docker config JSON stored base64-encoded in ``env_name``."""
    encoded = os.getenv(env_name, "")
    if not encoded:
        return '{"auths":{}}'
    return base64.b64decode(encoded).decode("utf-8")


class ClusterClient:
    def __init__(
        self,
        *,
        host_operator_namespace: str = HOST_OPERATOR_NAMESPACE,
        poll_interval: float = 1.0,
        gitops_poll_interval: Optional[float] = None,
        core_v1: Optional[client.CoreV1Api] = None,
        custom_objects: Optional[client.CustomObjectsApi] = None,
    ) -> None:
        self.host_operator_namespace = host_operator_namespace
        self.poll_interval = poll_interval
        self.gitops_poll_interval = gitops_poll_interval or poll_interval
        if core_v1 is None or custom_objects is None:
            load_cluster_config()
        self.core_v1 = core_v1 or client.CoreV1Api()
        self.custom_objects = custom_objects or client.CustomObjectsApi()

    # Identity ----------------------------------------------------------------

    def create_user(self, username: str) -> Dict[str, Any]:
        body = {
            "apiVersion": f"{TOOLCHAIN_GROUP}/{TOOLCHAIN_VERSION}",
            "kind": "UserSignup",
            "metadata": {
                "name": username,
                "namespace": self.host_operator_namespace,
                "annotations": {
                    "toolchain.dev.openshift.com/user-email": f"{username}@user.us",
                },
                "labels": {
                    "toolchain.dev.openshift.com/email-hash": _email_hash(f"{username}@user.us"),
                },
            },
            "spec": {
                "userid": username,
                "username": username,
                "states": ["approved"],
            },
        }
        return self.custom_objects.create_namespaced_custom_object(
            TOOLCHAIN_GROUP,
            TOOLCHAIN_VERSION,
            self.host_operator_namespace,
            "usersignups",
            body,
        )

    def delete_user(self, username: str) -> None:
        self.custom_objects.delete_namespaced_custom_object(
            TOOLCHAIN_GROUP,
            TOOLCHAIN_VERSION,
            self.host_operator_namespace,
            "usersignups",
            username,
        )

    def wait_for_namespace(self, namespace: str, timeout: float) -> None:
        def active() -> bool:
            ns = self.core_v1.read_namespace(name=namespace)
            return getattr(getattr(ns, "status", None), "phase", None) == "Active"

        poll_until(active, self.poll_interval, timeout, description=f"namespace {namespace}")

    # Workload resources -------------------------------------------------------

    def create_registry_secret(
        self, name: str, namespace: str, docker_config_json: str
    ) -> client.V1Secret:
        body = client.V1Secret(
            metadata=client.V1ObjectMeta(name=name, namespace=namespace),
            type="kubernetes.io/dockerconfigjson",
            string_data={".dockerconfigjson": docker_config_json},
        )
        try:
            return self.core_v1.create_namespaced_secret(namespace=namespace, body=body)
        except ApiException as exc:
            if exc.status != 409:
                raise
        return self.core_v1.replace_namespaced_secret(name=name, namespace=namespace, body=body)

    def create_application(self, name: str, namespace: str) -> Dict[str, Any]:
        body = {
            "apiVersion": f"{APPSTUDIO_GROUP}/{APPSTUDIO_VERSION}",
            "kind": "Application",
            "metadata": {"name": name, "namespace": namespace},
            "spec": {"displayName": name},
        }
        return self.custom_objects.create_namespaced_custom_object(
            APPSTUDIO_GROUP, APPSTUDIO_VERSION, namespace, "applications", body
        )

    def get_application(self, name: str, namespace: str) -> Dict[str, Any]:
        return self.custom_objects.get_namespaced_custom_object(
            APPSTUDIO_GROUP, APPSTUDIO_VERSION, namespace, "applications", name
        )

    def wait_for_gitops_repo(self, application: Dict[str, Any], timeout: float) -> None:
        metadata = application.get("metadata") or {}
        name = metadata.get("name", "")
        namespace = metadata.get("namespace", "")

        def repo_published() -> bool:
            current = self.get_application(name, namespace)
            return gitops_repo_url(current) is not None

        poll_until(
            repo_published,
            self.gitops_poll_interval,
            timeout,
            description=f"gitops repo of {name}",
        )

    def create_component(
        self,
        application: str,
        name: str,
        namespace: str,
        source_url: str,
        image: str,
    ) -> Dict[str, Any]:
        body = {
            "apiVersion": f"{APPSTUDIO_GROUP}/{APPSTUDIO_VERSION}",
            "kind": "Component",
            "metadata": {
                "name": name,
                "namespace": namespace,
                "annotations": {"skip-initial-checks": "true"},
            },
            "spec": {
                "componentName": name,
                "application": application,
                "containerImage": image,
                "source": {"git": {"url": source_url}},
            },
        }
        return self.custom_objects.create_namespaced_custom_object(
            APPSTUDIO_GROUP, APPSTUDIO_VERSION, namespace, "components", body
        )

    def delete_namespace_resources(self, namespace: str) -> None:
        for plural in PURGED_KINDS:
            try:
                self.custom_objects.delete_collection_namespaced_custom_object(
                    APPSTUDIO_GROUP, APPSTUDIO_VERSION, namespace, plural
                )
            except ApiException as exc:
                raise RuntimeError(
                    f"Error when deleting {plural} in namespace {namespace}: {exc.reason}"
                ) from exc

    # Builds ------------------------------------------------------------------

    def get_build_run(self, component: str, application: str, namespace: str) -> Optional[BuildRun]:
        selector = f"{COMPONENT_LABEL}={component},{APPLICATION_LABEL}={application}"
        listing = self.custom_objects.list_namespaced_custom_object(
            TEKTON_GROUP,
            TEKTON_VERSION,
            namespace,
            "pipelineruns",
            label_selector=selector,
        )
        items: List[Dict[str, Any]] = listing.get("items") or []
        if not items:
            return None
        newest = max(items, key=lambda item: (item.get("metadata") or {}).get("creationTimestamp", ""))
        return BuildRun.from_pipeline_run(newest)

    # Monitoring --------------------------------------------------------------

    def prometheus_url(self) -> str:
        route = self.custom_objects.get_namespaced_custom_object(
            "route.openshift.io", "v1", "openshift-monitoring", "routes", "thanos-querier"
        )
        host = (route.get("spec") or {}).get("host")
        if not host:
            raise RuntimeError("thanos-querier route has no host")
        return f"https://{host}"


def gitops_repo_url(application: Dict[str, Any]) -> Optional[str]:
    devfile = (application.get("status") or {}).get("devfile")
    if not devfile:
        return None
    try:
        parsed = yaml.safe_load(devfile) or {}
    except yaml.YAMLError as exc:
        logging.debug("Unable to parse application devfile: %s", exc)
        return None
    attributes = (parsed.get("metadata") or {}).get("attributes") or {}
    url = attributes.get(GITOPS_REPO_ATTRIBUTE)
    return url or None


def load_cluster_config() -> None:
    try:
        config.load_incluster_config()
        logging.info("Using in-cluster Kubernetes configuration")
    except config.ConfigException:
        try:
            config.load_kube_config()
        except config.ConfigException as exc:
            raise SystemExit(f"Failed to load Kubernetes configuration: {exc}") from exc
        logging.info("Using kubeconfig file")


def _email_hash(email: str) -> str:
    return hashlib.md5(email.encode("utf-8")).hexdigest()
