"""
Status aggregation: fold live Deployment health into component states, the
root phase, the Ready condition and the access-info block.
"""
import logging
from typing import Iterable, Optional

from kubernetes.client import ApiException

from .builders import BACKEND_COMPONENTS, WEB_NAME, enabled_components
from .kube import KubeStore
from .models import (
    DEFAULT_NODEPORT_HTTP,
    DEFAULT_NODEPORT_HTTPS,
    AccessInfo,
    ComponentState,
    ComponentStatus,
    ConditionType,
    ExposeType,
    KubeNova,
    KubeNovaSpec,
    Phase,
)
from .status import now, set_condition, set_phase

logger = logging.getLogger("kubenova.aggregator")

NODE_IP_PLACEHOLDER = "<NODE-IP>"
NODEPORT_ALLOCATING = "NodePort (allocating...)"
SERVICE_PENDING = "Service pending..."

_STICKY_PHASES = (Phase.FAILED, Phase.DELETING)


def classify(ready: int, desired: int) -> ComponentState:
    if ready == desired:
        return ComponentState.READY
    if ready > 0:
        return ComponentState.RUNNING
    return ComponentState.PENDING


def resolve_phase(states: Iterable[ComponentState], current: Optional[Phase]) -> Phase:
    """Ready only when every component is Ready; Failed/Deleting are kept otherwise."""
    states = list(states)
    if states and all(s == ComponentState.READY for s in states):
        return Phase.READY
    if current in _STICKY_PHASES:
        return current
    return Phase.CREATING


def _node_ready(node: dict) -> bool:
    for cond in (node.get("status") or {}).get("conditions") or []:
        if cond.get("type") == "Ready" and cond.get("status") == "True":
            return True
    return False


def _node_address(node: dict, types: tuple) -> str:
    addresses = (node.get("status") or {}).get("addresses") or []
    for addr_type in types:
        for addr in addresses:
            if addr.get("type") == addr_type:
                return addr.get("address", "")
    return ""


def resolve_node_address(nodes: list) -> str:
    """
    First Ready node's ExternalIP, else its InternalIP. With no Ready node
    fall back to whatever the first node reports. Empty string when nothing
    resolves.
    """
    for node in nodes:
        if not _node_ready(node):
            continue
        addr = _node_address(node, ("ExternalIP", "InternalIP"))
        if addr:
            return addr
    if nodes:
        addresses = (nodes[0].get("status") or {}).get("addresses") or []
        for addr in addresses:
            if addr.get("type") in ("ExternalIP", "InternalIP"):
                return addr.get("address", "")
    return ""


def _node_ports(service: dict) -> dict:
    return {
        p.get("name"): p.get("nodePort")
        for p in (service.get("spec") or {}).get("ports") or []
        if p.get("nodePort")
    }


class StatusAggregator:

    def __init__(self, store: KubeStore):
        self.store = store

    # -- live lookups ---------------------------------------------------------

    def node_address(self) -> str:
        try:
            return resolve_node_address(self.store.list_nodes())
        except ApiException as e:
            logger.warning(f"Listing nodes failed, using placeholder address: {e}")
            return ""

    def web_node_port(self, spec: KubeNovaSpec, namespace: str) -> int:
        """Port the web tier is reachable on in nodeport mode; 0 otherwise."""
        if spec.web.exposeType != ExposeType.NODEPORT.value:
            return 0
        https = spec.web.nodeport_https_enabled
        if https:
            configured = spec.web.nodePort.https.port
            fallback = configured if configured > 0 else DEFAULT_NODEPORT_HTTPS
        else:
            configured = spec.web.nodePort.httpPort if spec.web.nodePort is not None else 0
            fallback = configured if configured > 0 else DEFAULT_NODEPORT_HTTP
        try:
            svc = self.store.get("Service", WEB_NAME, namespace)
        except ApiException as e:
            logger.warning(f"[{namespace}] reading web Service failed, using port {fallback}: {e}")
            return fallback
        if svc is None:
            return fallback

        ports = _node_ports(svc)
        return ports.get("https" if https else "http") or fallback

    # -- aggregation ----------------------------------------------------------

    def _component(self, name: str, namespace: str,
                   previous: Optional[ComponentStatus]) -> Optional[ComponentStatus]:
        deploy = self.store.get("Deployment", name, namespace)
        if deploy is None:
            return None
        desired = (deploy.get("spec") or {}).get("replicas")
        desired = 1 if desired is None else desired
        ready = (deploy.get("status") or {}).get("readyReplicas") or 0
        state = classify(ready, desired)

        if state == ComponentState.READY:
            message = "running"
        elif state == ComponentState.RUNNING:
            message = f"partially ready ({ready}/{desired})"
        else:
            message = "waiting for pods"

        changed = previous is None or previous.state != state
        return ComponentStatus(
            state=state,
            readyReplicas=ready,
            desiredReplicas=desired,
            message=message,
            lastTransitionTime=now() if changed else previous.lastTransitionTime,
        )

    def _web_url(self, spec: KubeNovaSpec, namespace: str) -> str:
        web = spec.web
        if web.exposeType == ExposeType.INGRESS.value:
            if web.ingress is None:
                return ""
            scheme = "https" if web.ingress.tls_enabled else "http"
            return f"{scheme}://{web.ingress.host}"

        if web.exposeType != ExposeType.NODEPORT.value:
            return ""
        svc = self.store.get("Service", WEB_NAME, namespace)
        if svc is None:
            return SERVICE_PENDING
        ports = _node_ports(svc)
        if ports.get("https"):
            scheme, port = "https", ports["https"]
        elif ports.get("http"):
            scheme, port = "http", ports["http"]
        else:
            return NODEPORT_ALLOCATING
        address = self.node_address() or NODE_IP_PLACEHOLDER
        return f"{scheme}://{address}:{port}"

    def access_info(self, spec: KubeNovaSpec, namespace: str) -> AccessInfo:
        info = AccessInfo(
            webURL=self._web_url(spec, namespace),
            databaseEndpoint=spec.database.endpoint(),
            cacheEndpoint=spec.cache.endpoint(),
            storageEndpoint=spec.storage.endpoint_url(),
            serviceEndpoints={
                c.name: f"{c.name}.{namespace}.svc.cluster.local" for c in BACKEND_COMPONENTS
            },
        )
        if spec.telemetry_enabled:
            info.jaegerUIURL = spec.telemetry.jaegerEndpoint
        return info

    def aggregate(self, kn: KubeNova, spec: KubeNovaSpec) -> bool:
        """
        Update kn.status in memory from live state. Returns True when every
        managed component is Ready. Does not persist.
        """
        status = kn.status
        previous = status.componentStatus.services
        services = {}
        states = []
        all_present = True

        for component in enabled_components(spec):
            cs = self._component(component.name, kn.namespace, previous.get(component.name))
            if cs is None:
                all_present = False
                continue
            services[component.name] = cs
            states.append(cs.state)

        web = self._component(WEB_NAME, kn.namespace, status.componentStatus.web)
        if web is None:
            all_present = False
        else:
            states.append(web.state)

        status.componentStatus.services = services
        status.componentStatus.web = web
        status.accessInfo = self.access_info(spec, kn.namespace)

        phase = resolve_phase(states, status.phase)
        all_ready = all_present and phase == Phase.READY
        if not all_ready and phase == Phase.READY:
            phase = Phase.CREATING

        if all_ready:
            set_phase(status, phase, "All components are running")
            set_condition(status, ConditionType.READY.value, True, "AllComponentsReady",
                          "All components are running", kn.generation)
        else:
            set_phase(status, phase, "Some components are not ready yet")
            set_condition(status, ConditionType.READY.value, False, "ComponentsNotReady",
                          "Some components are not ready yet", kn.generation)
        status.observedGeneration = kn.generation
        return all_ready
