import copy

from kube_mock import valid_spec
from kubenova_operator.builders.common import BACKEND_BY_NAME
from kubenova_operator.builders.services import build_backend_deployment
from kubenova_operator.builders.web import build_web_deployment
from kubenova_operator.diff import (
    WorkloadFields,
    changed_fields,
    splice_workload,
    workloads_equal,
)
from kubenova_operator.models import KubeNovaSpec


def _spec(**overrides) -> KubeNovaSpec:
    return KubeNovaSpec.model_validate(valid_spec(**overrides))


def _deployment(**overrides) -> dict:
    return build_backend_deployment(_spec(**overrides), BACKEND_BY_NAME["portal-api"], "nova", "default")


def _as_observed(desired: dict) -> dict:
    """What the API server hands back: defaults and bookkeeping filled in."""
    observed = copy.deepcopy(desired)
    observed["metadata"].update({
        "resourceVersion": "42",
        "uid": "abc",
        "annotations": {"deployment.kubernetes.io/revision": "3"},
    })
    pod = observed["spec"]["template"]["spec"]
    pod["serviceAccount"] = pod.get("serviceAccountName", "")
    pod["schedulerName"] = "default-scheduler"
    container = pod["containers"][0]
    container["terminationMessagePath"] = "/dev/termination-log"
    container["livenessProbe"]["timeoutSeconds"] = 1
    container["env"][1]["valueFrom"]["fieldRef"]["apiVersion"] = "v1"
    observed["status"] = {"readyReplicas": 2}
    return observed


def test_server_defaults_do_not_count_as_drift():
    desired = _deployment()
    assert workloads_equal(_as_observed(desired), desired)


def test_web_deployment_with_shared_volume_mounts_is_stable():
    desired = build_web_deployment(_spec(), "nova", "default")
    assert workloads_equal(copy.deepcopy(desired), desired)


def test_equivalent_quantities_are_equal():
    desired = _deployment()
    observed = copy.deepcopy(desired)
    resources = observed["spec"]["template"]["spec"]["containers"][0]["resources"]
    resources["limits"]["cpu"] = "1"
    resources["requests"]["memory"] = "268435456"

    assert workloads_equal(observed, desired)


def test_replica_change_is_detected():
    desired = _deployment()
    observed = copy.deepcopy(desired)
    observed["spec"]["replicas"] = 5

    assert not workloads_equal(observed, desired)
    assert changed_fields(observed, desired) == ["replicas"]


def test_missing_replicas_means_one():
    doc = _deployment()
    doc["spec"].pop("replicas")
    assert WorkloadFields.from_document(doc).replicas == 1


def test_image_and_env_changes_are_detected():
    desired = _deployment()
    observed = copy.deepcopy(desired)
    container = observed["spec"]["template"]["spec"]["containers"][0]
    container["image"] = "example.com/other:1"
    container["env"][0]["value"] = "UTC"

    assert set(changed_fields(observed, desired)) == {"image", "env_values"}


def test_added_env_var_is_detected():
    desired = _deployment(services={
        **valid_spec()["services"],
        "portalAPI": {"env": [{"name": "FEATURE_X", "value": "on"}]},
    })
    observed = _deployment()

    assert "env_names" in changed_fields(observed, desired)


def test_volume_reference_change_is_detected():
    desired = _deployment()
    observed = copy.deepcopy(desired)
    observed["spec"]["template"]["spec"]["volumes"][0]["configMap"]["name"] = "elsewhere"

    assert changed_fields(observed, desired) == ["volumes"]


def test_service_account_change_is_detected():
    desired = _deployment()
    observed = copy.deepcopy(desired)
    observed["spec"]["template"]["spec"]["serviceAccountName"] = "default"

    assert changed_fields(observed, desired) == ["service_account"]


def test_splice_keeps_cluster_fields_and_version():
    desired = _deployment()
    latest = _as_observed(desired)
    latest["spec"]["replicas"] = 7
    latest["spec"]["template"]["spec"]["containers"][0]["image"] = "old:1"

    spliced = splice_workload(latest, desired)

    assert spliced["metadata"]["resourceVersion"] == "42"
    assert spliced["metadata"]["annotations"] == {"deployment.kubernetes.io/revision": "3"}
    assert spliced["spec"]["template"]["spec"]["schedulerName"] == "default-scheduler"
    assert "serviceAccount" not in spliced["spec"]["template"]["spec"]
    assert workloads_equal(spliced, desired)
    # the input document is not modified
    assert latest["spec"]["replicas"] == 7


def test_splice_removes_pull_secrets_no_longer_wanted():
    desired = _deployment()
    latest = copy.deepcopy(desired)
    latest["spec"]["template"]["spec"]["imagePullSecrets"] = [{"name": "old-creds"}]

    spliced = splice_workload(latest, desired)

    assert "imagePullSecrets" not in spliced["spec"]["template"]["spec"]


def test_splice_sets_pull_secrets():
    desired = _deployment(imageRegistry={"pullSecrets": ["regcred"]})
    spliced = splice_workload(_deployment(), desired)

    assert spliced["spec"]["template"]["spec"]["imagePullSecrets"] == [{"name": "regcred"}]
