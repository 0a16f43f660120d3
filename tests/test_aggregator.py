import pytest
from kubernetes.client import ApiException

from kube_mock import FakeStore, kubenova_doc, node, nodeport_web, valid_spec
from kubenova_operator.aggregator import (
    NODE_IP_PLACEHOLDER,
    NODEPORT_ALLOCATING,
    SERVICE_PENDING,
    StatusAggregator,
    classify,
    resolve_node_address,
    resolve_phase,
)
from kubenova_operator.builders import build_backend_services, build_web_resources
from kubenova_operator.models import ComponentState, KubeNova, KubeNovaSpec, Phase
from kubenova_operator.status import get_condition

S = ComponentState


def _deploy_all(store: FakeStore, spec: KubeNovaSpec, namespace="default"):
    for res in build_backend_services(spec, "nova", namespace).values():
        store.create("Deployment", res.deployment)
    web = build_web_resources(spec, "nova", namespace)
    store.create("Deployment", web.deployment)
    store.create("Service", web.service)


def _setup(spec_doc=None):
    store = FakeStore()
    spec_doc = spec_doc or valid_spec()
    kn = KubeNova.from_document(store.add_kubenova(kubenova_doc(spec=spec_doc, generation=4)))
    spec = KubeNovaSpec.model_validate(spec_doc)
    return store, kn, spec, StatusAggregator(store)


@pytest.mark.parametrize("ready, desired, state", [
    (2, 2, S.READY),
    (1, 2, S.RUNNING),
    (0, 2, S.PENDING),
    (0, 0, S.READY),
])
def test_classify(ready, desired, state):
    assert classify(ready, desired) == state


def test_phase_ready_only_when_everything_ready():
    assert resolve_phase([S.READY, S.READY], Phase.CREATING) == Phase.READY
    assert resolve_phase([S.READY, S.RUNNING], Phase.READY) == Phase.CREATING
    assert resolve_phase([], Phase.CREATING) == Phase.CREATING


def test_failed_and_deleting_are_sticky_until_ready():
    assert resolve_phase([S.PENDING], Phase.FAILED) == Phase.FAILED
    assert resolve_phase([S.PENDING], Phase.DELETING) == Phase.DELETING
    assert resolve_phase([S.READY], Phase.FAILED) == Phase.READY


def test_node_address_prefers_ready_external_ip():
    nodes = [
        node("a", ready=False, external="1.1.1.1"),
        node("b", internal="10.0.0.2", external="2.2.2.2"),
    ]
    assert resolve_node_address(nodes) == "2.2.2.2"


def test_node_address_falls_back_to_internal_ip():
    assert resolve_node_address([node("a", internal="10.0.0.1")]) == "10.0.0.1"


def test_node_address_uses_first_node_when_none_ready():
    nodes = [node("a", ready=False, internal="10.0.0.9"), node("b", ready=False)]
    assert resolve_node_address(nodes) == "10.0.0.9"
    assert resolve_node_address([]) == ""


def test_aggregate_all_ready():
    store, kn, spec, agg = _setup()
    _deploy_all(store, spec)
    store.set_all_ready("default")

    assert agg.aggregate(kn, spec) is True

    status = kn.status
    assert status.phase == Phase.READY
    assert status.observedGeneration == 4
    assert len(status.componentStatus.services) == 7
    assert status.componentStatus.web.state == S.READY
    ready = get_condition(status, "Ready")
    assert (ready.status, ready.reason) == ("True", "AllComponentsReady")
    assert status.accessInfo.webURL == "http://nova.example.com"
    assert status.accessInfo.databaseEndpoint == "mysql.db.svc:3306"
    assert status.accessInfo.serviceEndpoints["portal-api"] == "portal-api.default.svc.cluster.local"


def test_aggregate_partial_readiness():
    store, kn, spec, agg = _setup()
    _deploy_all(store, spec)
    store.set_all_ready("default")
    store.set_ready("manager-rpc", "default", ready=1)

    assert agg.aggregate(kn, spec) is False

    assert kn.status.phase == Phase.CREATING
    cs = kn.status.componentStatus.services["manager-rpc"]
    assert (cs.state, cs.readyReplicas, cs.desiredReplicas) == (S.RUNNING, 1, 2)
    ready = get_condition(kn.status, "Ready")
    assert (ready.status, ready.reason) == ("False", "ComponentsNotReady")


def test_missing_deployment_is_not_ready():
    store, kn, spec, agg = _setup()
    _deploy_all(store, spec)
    store.set_all_ready("default")
    store.delete("Deployment", "console-api", "default")

    assert agg.aggregate(kn, spec) is False
    assert kn.status.phase == Phase.CREATING
    assert "console-api" not in kn.status.componentStatus.services


def test_disabled_component_is_dropped_from_status():
    services = {**valid_spec()["services"], "consoleAPI": {"enabled": False}}
    store, kn, spec, agg = _setup(valid_spec(services=services))
    _deploy_all(store, spec)
    store.set_all_ready("default")

    assert agg.aggregate(kn, spec) is True
    assert "console-api" not in kn.status.componentStatus.services


def test_component_transition_time_kept_while_state_unchanged():
    store, kn, spec, agg = _setup()
    _deploy_all(store, spec)
    agg.aggregate(kn, spec)
    first = kn.status.componentStatus.services["portal-api"].lastTransitionTime
    kn.status.componentStatus.services["portal-api"].lastTransitionTime = "earlier"

    agg.aggregate(kn, spec)

    assert first is not None
    assert kn.status.componentStatus.services["portal-api"].lastTransitionTime == "earlier"


def test_nodeport_url_uses_node_address():
    store, kn, spec, agg = _setup(valid_spec(web=nodeport_web()))
    store.nodes = [node("a", internal="10.0.0.5")]
    _deploy_all(store, spec)
    store.assign_node_ports("kube-nova-web", "default", {"http": 31080})

    assert agg.access_info(spec, "default").webURL == "http://10.0.0.5:31080"


def test_nodeport_url_placeholder_when_nodes_unreadable():
    store, kn, spec, agg = _setup(valid_spec(web=nodeport_web()))
    store.node_error = ApiException(status=403, reason="forbidden")
    _deploy_all(store, spec)
    store.assign_node_ports("kube-nova-web", "default", {"http": 31080})

    assert agg.access_info(spec, "default").webURL == f"http://{NODE_IP_PLACEHOLDER}:31080"


def test_nodeport_url_while_allocating_and_pending():
    store, kn, spec, agg = _setup(valid_spec(web=nodeport_web()))
    assert agg.access_info(spec, "default").webURL == SERVICE_PENDING

    _deploy_all(store, spec)
    assert agg.access_info(spec, "default").webURL == NODEPORT_ALLOCATING


def test_web_node_port_prefers_https():
    https = {"enabled": True, "port": 30443, "secretName": "web-tls"}
    store, kn, spec, agg = _setup(valid_spec(web=nodeport_web(30080, https)))
    _deploy_all(store, spec)

    assert agg.web_node_port(spec, "default") == 30443


def test_web_node_port_falls_back_without_service():
    store, kn, spec, agg = _setup(valid_spec(web=nodeport_web(32000)))
    assert agg.web_node_port(spec, "default") == 32000

    store, kn, spec, agg = _setup(valid_spec(web=nodeport_web()))
    assert agg.web_node_port(spec, "default") == 30080


def test_web_node_port_https_falls_back_to_https_port():
    https = {"enabled": True, "port": 31443, "secretName": "web-tls"}
    store, kn, spec, agg = _setup(valid_spec(web=nodeport_web(30080, https)))
    assert agg.web_node_port(spec, "default") == 31443

    https = {"enabled": True, "secretName": "web-tls"}
    store, kn, spec, agg = _setup(valid_spec(web=nodeport_web(30080, https)))
    assert agg.web_node_port(spec, "default") == 30443


def test_jaeger_url_only_with_telemetry():
    telemetry = {"enabled": True, "jaegerEndpoint": "http://jaeger:14268"}
    store, kn, spec, agg = _setup(valid_spec(telemetry=telemetry))
    assert agg.access_info(spec, "default").jaegerUIURL == "http://jaeger:14268"

    store, kn, spec, agg = _setup()
    assert agg.access_info(spec, "default").jaegerUIURL == ""
