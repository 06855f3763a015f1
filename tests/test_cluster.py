import base64
from types import SimpleNamespace
from unittest import mock

import pytest
from kubernetes.client.rest import ApiException

from tenant_load.cluster import (
    BuildRun,
    ClusterClient,
    docker_config_json_from_env,
    gitops_repo_url,
)
from tenant_load.errors import PollTimeoutError

DEVFILE_WITH_REPO = """
schemaVersion: 2.2.0
metadata:
  name: demo-app
  attributes:
    gitOpsRepository.url: https://github.com/redhat-appstudio-appdata/demo-app
"""


@pytest.fixture
def apis():
    return mock.MagicMock(), mock.MagicMock()


@pytest.fixture
def client(apis):
    core_v1, custom_objects = apis
    return ClusterClient(poll_interval=0.01, core_v1=core_v1, custom_objects=custom_objects)


def namespace(phase):
    return SimpleNamespace(status=SimpleNamespace(phase=phase))


def pipeline_run(name, created, status=None, completed=None, reason="", message=""):
    obj = {"metadata": {"name": name, "creationTimestamp": created}, "status": {}}
    if status is not None:
        obj["status"]["conditions"] = [
            {"type": "Succeeded", "status": status, "reason": reason, "message": message}
        ]
    if completed:
        obj["status"]["completionTime"] = completed
    return obj


def test_create_user_posts_approved_signup(client, apis):
    _, custom_objects = apis
    client.create_user("testuser-0001")
    group, version, ns, plural, body = custom_objects.create_namespaced_custom_object.call_args.args
    assert (group, version, ns, plural) == (
        "toolchain.dev.openshift.com",
        "v1alpha1",
        "toolchain-host-operator",
        "usersignups",
    )
    assert body["kind"] == "UserSignup"
    assert body["spec"]["username"] == "testuser-0001"
    assert body["spec"]["states"] == ["approved"]


def test_wait_for_namespace_until_active(client, apis):
    core_v1, _ = apis
    core_v1.read_namespace.side_effect = [
        ApiException(status=404),
        namespace("Pending"),
        namespace("Active"),
    ]
    client.wait_for_namespace("testuser-0001-tenant", 1.0)
    assert core_v1.read_namespace.call_count == 3


def test_wait_for_namespace_times_out(client, apis):
    core_v1, _ = apis
    core_v1.read_namespace.return_value = namespace("Terminating")
    with pytest.raises(PollTimeoutError):
        client.wait_for_namespace("testuser-0001-tenant", 0.05)


def test_registry_secret_replaced_when_present(client, apis):
    core_v1, _ = apis
    core_v1.create_namespaced_secret.side_effect = ApiException(status=409)
    client.create_registry_secret("pull-secret", "ns", '{"auths":{}}')
    core_v1.replace_namespaced_secret.assert_called_once()
    body = core_v1.replace_namespaced_secret.call_args.kwargs["body"]
    assert body.type == "kubernetes.io/dockerconfigjson"


def test_registry_secret_other_errors_propagate(client, apis):
    core_v1, _ = apis
    core_v1.create_namespaced_secret.side_effect = ApiException(status=403)
    with pytest.raises(ApiException):
        client.create_registry_secret("pull-secret", "ns", "{}")
    core_v1.replace_namespaced_secret.assert_not_called()


def test_wait_for_gitops_repo(client, apis):
    _, custom_objects = apis
    custom_objects.get_namespaced_custom_object.side_effect = [
        {"status": {}},
        {"status": {"devfile": DEVFILE_WITH_REPO}},
    ]
    client.wait_for_gitops_repo({"metadata": {"name": "demo-app", "namespace": "ns"}}, 1.0)
    assert custom_objects.get_namespaced_custom_object.call_count == 2


def test_gitops_repo_url_parsing():
    assert gitops_repo_url({"status": {"devfile": DEVFILE_WITH_REPO}}) == (
        "https://github.com/redhat-appstudio-appdata/demo-app"
    )
    assert gitops_repo_url({"status": {"devfile": "metadata: {name: x}"}}) is None
    assert gitops_repo_url({"status": {"devfile": "key: [unclosed"}}) is None
    assert gitops_repo_url({}) is None


def test_create_component_uses_requested_image(client, apis):
    _, custom_objects = apis
    client.create_component("app", "comp", "ns", "https://github.com/x/y", "quay.io/o/i:tag")
    body = custom_objects.create_namespaced_custom_object.call_args.args[4]
    assert body["spec"]["containerImage"] == "quay.io/o/i:tag"
    assert body["spec"]["application"] == "app"
    assert body["spec"]["source"]["git"]["url"] == "https://github.com/x/y"


def test_get_build_run_picks_newest(client, apis):
    _, custom_objects = apis
    custom_objects.list_namespaced_custom_object.return_value = {
        "items": [
            pipeline_run("old", "2024-01-01T00:00:00Z", "False"),
            pipeline_run(
                "new", "2024-01-01T00:05:00Z", "True", completed="2024-01-01T00:07:30Z"
            ),
        ]
    }
    run = client.get_build_run("comp", "app", "ns")
    assert run.name == "new"
    assert run.is_done() and not run.failed
    assert run.duration_seconds == pytest.approx(150.0)
    selector = custom_objects.list_namespaced_custom_object.call_args.kwargs["label_selector"]
    assert "appstudio.openshift.io/component=comp" in selector


def test_get_build_run_none_when_missing(client, apis):
    _, custom_objects = apis
    custom_objects.list_namespaced_custom_object.return_value = {"items": []}
    assert client.get_build_run("comp", "app", "ns") is None


def test_build_run_states():
    running = BuildRun.from_pipeline_run(pipeline_run("r", "2024-01-01T00:00:00Z"))
    assert not running.is_done()
    assert running.duration_seconds == 0.0
    failed = BuildRun.from_pipeline_run(
        pipeline_run(
            "f",
            "2024-01-01T00:00:00Z",
            "False",
            completed="2024-01-01T00:00:10Z",
            reason="Failed",
            message="task build failed",
        )
    )
    assert failed.is_done() and failed.failed
    assert failed.reason == "Failed"


def test_prometheus_url_from_route(client, apis):
    _, custom_objects = apis
    custom_objects.get_namespaced_custom_object.return_value = {
        "spec": {"host": "thanos-querier.apps.example.com"}
    }
    assert client.prometheus_url() == "https://thanos-querier.apps.example.com"
    custom_objects.get_namespaced_custom_object.return_value = {"spec": {}}
    with pytest.raises(RuntimeError):
        client.prometheus_url()


def test_docker_config_from_env(monkeypatch):
    monkeypatch.delenv("QUAY_TOKEN", raising=False)
    assert docker_config_json_from_env() == '{"auths":{}}'
    payload = '{"auths":{"quay.io":{"auth":"abc"}}}'
    monkeypatch.setenv("QUAY_TOKEN", base64.b64encode(payload.encode()).decode())
    assert docker_config_json_from_env() == payload


def test_delete_namespace_resources(client, apis):
    _, custom_objects = apis
    client.delete_namespace_resources("ns")
    deletes = custom_objects.delete_collection_namespaced_custom_object.call_args_list
    plurals = [call.args[3] for call in deletes]
    assert plurals == ["applications", "componentdetectionqueries", "buildpipelineselectors"]

    custom_objects.delete_collection_namespaced_custom_object.side_effect = ApiException(
        status=403, reason="Forbidden"
    )
    with pytest.raises(RuntimeError, match="Error when deleting applications in namespace ns"):
        client.delete_namespace_resources("ns")
