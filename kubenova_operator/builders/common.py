"""Shared names, labels and helpers for the desired-state builders."""
import base64
import hashlib
from dataclasses import dataclass, field
from typing import Optional

from ..models import KubeNovaSpec, ServiceConfig

APP_NAME = "kube-nova"
MANAGED_BY = "kube-nova-operator"

SERVICE_ACCOUNT_NAME = "kube-nova-sa"
SECRET_NAME = "kube-nova-secret"
WEB_NAME = "kube-nova-web"
NGINX_CONFIG_MAP_NAME = "frontend-nginx-config"
METRICS_PORT = 9999
TIMEZONE = "Asia/Shanghai"


@dataclass(frozen=True)
class BackendComponent:
    name: str
    port: int
    kind: str  # "api" or "rpc"
    spec_field: str
    rpc_deps: tuple = ()
    needs_cache_dir: bool = False
    needs_mysql: bool = False
    extra: dict = field(default_factory=dict)

    @property
    def config_map_name(self) -> str:
        return f"{self.name}-config"

    def overrides(self, spec: KubeNovaSpec) -> Optional[ServiceConfig]:
        return getattr(spec.services, self.spec_field)


BACKEND_COMPONENTS = (
    BackendComponent("portal-api", 8810, "api", "portalAPI", rpc_deps=("portal-rpc",)),
    BackendComponent("portal-rpc", 30010, "rpc", "portalRPC", needs_mysql=True,
                     extra={"DemoMode": "${DEMO_MODE}", "PortalName": "${PORTAL_NAME}",
                            "PortalUrl": "${PORTAL_URL}"}),
    BackendComponent("manager-api", 8811, "api", "managerAPI",
                     rpc_deps=("manager-rpc", "portal-rpc"),
                     extra={"Webhook": {"Token": "${ALERTMANAGER_WEBHOOK_TOKEN}"}}),
    BackendComponent("manager-rpc", 30011, "rpc", "managerRPC", rpc_deps=("portal-rpc",),
                     needs_mysql=True),
    BackendComponent("workload-api", 8812, "api", "workloadAPI",
                     rpc_deps=("manager-rpc", "portal-rpc"),
                     extra={"InjectImage": "${INJECT_IMAGE}"}),
    BackendComponent("console-api", 8818, "api", "consoleAPI",
                     rpc_deps=("manager-rpc", "console-rpc", "portal-rpc"), needs_cache_dir=True,
                     extra={"LocalCacheDir": "/app/cache"}),
    BackendComponent("console-rpc", 30018, "rpc", "consoleRPC", needs_cache_dir=True,
                     needs_mysql=True),
)

BACKEND_BY_NAME = {c.name: c for c in BACKEND_COMPONENTS}


def common_labels(instance: str) -> dict:
    return {
        "app.kubernetes.io/name": APP_NAME,
        "app.kubernetes.io/instance": instance,
        "app.kubernetes.io/managed-by": MANAGED_BY,
    }


def component_labels(instance: str, app: str, component: str) -> dict:
    labels = common_labels(instance)
    labels["app"] = app
    labels["app.kubernetes.io/component"] = component
    return labels


def b64(value) -> str:
    """Secret `data` values travel base64-encoded, as the API stores them."""
    if not isinstance(value, str):
        value = str(value)
    return base64.b64encode(value.encode("utf-8")).decode("ascii")


def config_checksum(data: Optional[dict]) -> str:
    """SHA-256 over sorted key=value lines; empty string for no data."""
    if not data:
        return ""
    blob = "".join(f"{k}={data[k]}\n" for k in sorted(data))
    return hashlib.sha256(blob.encode("utf-8")).hexdigest()


def image_pull_secrets(spec: KubeNovaSpec) -> list:
    return [{"name": s} for s in spec.image_registry().pullSecrets]


def empty_dir(name: str, size_limit: str) -> dict:
    return {"name": name, "emptyDir": {"sizeLimit": size_limit}}


def http_probe(path: str, port: int, initial: int, period: int, failures: int) -> dict:
    return {
        "httpGet": {"path": path, "port": port, "scheme": "HTTP"},
        "initialDelaySeconds": initial,
        "periodSeconds": period,
        "timeoutSeconds": 3,
        "successThreshold": 1,
        "failureThreshold": failures,
    }


def anti_affinity(app: str, weight: int) -> dict:
    return {
        "podAntiAffinity": {
            "preferredDuringSchedulingIgnoredDuringExecution": [{
                "weight": weight,
                "podAffinityTerm": {
                    "labelSelector": {
                        "matchExpressions": [{"key": "app", "operator": "In", "values": [app]}],
                    },
                    "topologyKey": "kubernetes.io/hostname",
                },
            }],
        },
    }
