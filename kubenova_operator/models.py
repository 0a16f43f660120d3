"""
Pydantic models for the KubeNova custom resource: spec, status and the
root object envelope.

Field names follow the CRD's camelCase so documents round-trip through
`model_validate` / `model_dump` without an alias layer.
"""
import logging
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger("kubenova.models")


DEFAULT_REGISTRY = "registry.cn-hangzhou.aliyuncs.com"
DEFAULT_ORGANIZATION = "kube-nova"
DEFAULT_TAG = "latest"
DEFAULT_NODEPORT_HTTP = 30080
DEFAULT_NODEPORT_HTTPS = 30443


class ExposeType(str, Enum):
    INGRESS = "ingress"
    NODEPORT = "nodeport"


class Phase(str, Enum):
    VALIDATING = "Validating"
    PENDING = "Pending"
    CREATING = "Creating"
    READY = "Ready"
    UPDATING = "Updating"
    FAILED = "Failed"
    DELETING = "Deleting"


class ComponentState(str, Enum):
    PENDING = "Pending"
    CREATING = "Creating"
    RUNNING = "Running"
    READY = "Ready"
    FAILED = "Failed"
    UPDATING = "Updating"


class ConditionType(str, Enum):
    READY = "Ready"
    VALIDATED = "Validated"
    DATABASE_CONNECTED = "DatabaseConnected"
    CACHE_CONNECTED = "CacheConnected"
    STORAGE_CONNECTED = "StorageConnected"
    TELEMETRY_READY = "TelemetryReady"
    SERVICES_READY = "ServicesReady"
    WEB_READY = "WebReady"


# ---------------------------------------------------------------------------
# Spec
# ---------------------------------------------------------------------------

class ImageRegistryConfig(BaseModel):
    registry: str = DEFAULT_REGISTRY
    organization: str = DEFAULT_ORGANIZATION
    tag: str = DEFAULT_TAG
    pullPolicy: str = "Always"
    pullSecrets: List[str] = []


class DatabaseConfig(BaseModel):
    host: str = ""
    port: int = 3306
    database: str = ""
    user: str = ""
    password: str = ""
    maxOpenConns: int = 0
    maxIdleConns: int = 0
    connMaxLifetime: str = ""

    def endpoint(self) -> str:
        return f"{self.host}:{self.port}"

    def max_open_conns(self) -> int:
        return self.maxOpenConns if self.maxOpenConns > 0 else 100

    def max_idle_conns(self) -> int:
        return self.maxIdleConns if self.maxIdleConns > 0 else 50

    def conn_max_lifetime(self) -> str:
        return self.connMaxLifetime or "30m"


class CacheConfig(BaseModel):
    host: str = ""
    port: int = 6379
    type: str = "node"
    password: str = ""
    tls: bool = False
    nonBlock: bool = False
    pingTimeout: str = ""

    def endpoint(self) -> str:
        return f"{self.host}:{self.port}"


class TLSSecretConfig(BaseModel):
    enabled: bool = False
    secretName: str = ""


class StorageConfig(BaseModel):
    endpoint: str = ""
    endpointProxy: str = ""
    accessKey: str = ""
    secretKey: str = ""
    bucket: str = ""
    tls: Optional[TLSSecretConfig] = None

    @property
    def tls_enabled(self) -> bool:
        return self.tls is not None and self.tls.enabled

    def endpoint_url(self) -> str:
        scheme = "https" if self.tls_enabled else "http"
        return f"{scheme}://{self.endpoint}"


class TelemetryConfig(BaseModel):
    enabled: bool = False
    jaegerEndpoint: str = ""
    sampler: str = ""
    batcher: str = ""


class JWTConfig(BaseModel):
    accessSecret: str = ""
    accessExpire: int = 0
    refreshSecret: str = ""
    refreshExpire: int = 0
    refreshAfter: int = 0


class PortalConfig(BaseModel):
    name: str = ""
    url: str = ""
    demoMode: bool = False


class ServiceConfig(BaseModel):
    """Per-backend overrides. A missing block means enabled with defaults."""
    enabled: Optional[bool] = None
    replicas: int = 0
    image: str = ""
    resources: Optional[Dict[str, Dict[str, str]]] = None
    env: List[Dict] = []


class ServicesConfig(BaseModel):
    globalTimeout: int = 0
    jwt: JWTConfig = Field(default_factory=JWTConfig)
    portal: Optional[PortalConfig] = None
    webhookToken: str = ""
    injectImage: str = ""
    portalAPI: Optional[ServiceConfig] = None
    portalRPC: Optional[ServiceConfig] = None
    managerAPI: Optional[ServiceConfig] = None
    managerRPC: Optional[ServiceConfig] = None
    workloadAPI: Optional[ServiceConfig] = None
    consoleAPI: Optional[ServiceConfig] = None
    consoleRPC: Optional[ServiceConfig] = None


class IngressConfig(BaseModel):
    className: str = ""
    host: str = ""
    tls: Optional[TLSSecretConfig] = None
    annotations: Dict[str, str] = {}

    @property
    def tls_enabled(self) -> bool:
        return self.tls is not None and self.tls.enabled


class NodePortHTTPSConfig(BaseModel):
    enabled: bool = False
    port: int = 0
    secretName: str = ""


class NodePortConfig(BaseModel):
    httpPort: int = 0
    https: Optional[NodePortHTTPSConfig] = None


class MinIOProxyConfig(BaseModel):
    enabled: bool = False
    pathPrefix: str = ""
    proxyEndpoint: str = ""


class WebConfig(BaseModel):
    replicas: int = 0
    image: str = ""
    resources: Optional[Dict[str, Dict[str, str]]] = None
    exposeType: str = ""
    ingress: Optional[IngressConfig] = None
    nodePort: Optional[NodePortConfig] = None
    minioProxy: Optional[MinIOProxyConfig] = None
    customNginxConfigMap: str = ""

    def web_replicas(self) -> int:
        return self.replicas if self.replicas > 0 else 3

    @property
    def nodeport_https_enabled(self) -> bool:
        return (
            self.exposeType == ExposeType.NODEPORT.value
            and self.nodePort is not None
            and self.nodePort.https is not None
            and self.nodePort.https.enabled
        )


class KubeNovaSpec(BaseModel):
    imageRegistry: Optional[ImageRegistryConfig] = None
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    telemetry: Optional[TelemetryConfig] = None
    services: ServicesConfig = Field(default_factory=ServicesConfig)
    web: WebConfig = Field(default_factory=WebConfig)

    def image_registry(self) -> ImageRegistryConfig:
        return self.imageRegistry or ImageRegistryConfig()

    @property
    def telemetry_enabled(self) -> bool:
        return self.telemetry is not None and self.telemetry.enabled

    @property
    def minio_proxy_enabled(self) -> bool:
        return self.web.minioProxy is not None and self.web.minioProxy.enabled

    def minio_proxy_path(self) -> str:
        if self.web.minioProxy is None or not self.web.minioProxy.pathPrefix:
            return "/storage"
        return self.web.minioProxy.pathPrefix

    def minio_endpoint_for_backend(self, node_ip: str = "", node_port: int = 0) -> str:
        """
        Address the front end uses to reach object storage.

        Without the proxy this is the storage endpoint itself. With the proxy
        it is the web tier's externally reachable address plus the proxy path.
        """
        if not self.minio_proxy_enabled:
            return self.storage.endpoint
        if self.web.minioProxy.proxyEndpoint:
            return self.web.minioProxy.proxyEndpoint

        path = self.minio_proxy_path().lstrip("/")
        if self.web.exposeType == ExposeType.INGRESS.value and self.web.ingress is not None:
            scheme = "https" if self.web.ingress.tls_enabled else "http"
            return f"{scheme}://{self.web.ingress.host}/{path}"

        scheme = "https" if self.web.nodeport_https_enabled else "http"
        if not node_ip:
            node_ip = "<NODE_IP>"
        if not node_port:
            node_port = DEFAULT_NODEPORT_HTTPS if scheme == "https" else DEFAULT_NODEPORT_HTTP
        return f"{scheme}://{node_ip}:{node_port}/{path}"


def service_enabled(cfg: Optional[ServiceConfig]) -> bool:
    if cfg is None or cfg.enabled is None:
        return True
    return cfg.enabled


def service_replicas(cfg: Optional[ServiceConfig]) -> int:
    if cfg is None or cfg.replicas <= 0:
        return 2
    return cfg.replicas


# ---------------------------------------------------------------------------
# Status
# ---------------------------------------------------------------------------

class Condition(BaseModel):
    type: str
    status: str
    reason: str = ""
    message: str = ""
    lastTransitionTime: Optional[str] = None
    observedGeneration: Optional[int] = None


class ComponentStatus(BaseModel):
    state: ComponentState = ComponentState.PENDING
    readyReplicas: int = 0
    desiredReplicas: int = 0
    message: str = ""
    lastTransitionTime: Optional[str] = None


class ComponentStatusMap(BaseModel):
    services: Dict[str, ComponentStatus] = {}
    web: Optional[ComponentStatus] = None


class AccessInfo(BaseModel):
    webURL: str = ""
    databaseEndpoint: str = ""
    cacheEndpoint: str = ""
    storageEndpoint: str = ""
    jaegerUIURL: str = ""
    serviceEndpoints: Dict[str, str] = {}


class KubeNovaStatus(BaseModel):
    phase: Optional[Phase] = None
    message: str = ""
    lastUpdateTime: Optional[str] = None
    observedGeneration: int = 0
    conditions: List[Condition] = []
    componentStatus: ComponentStatusMap = Field(default_factory=ComponentStatusMap)
    accessInfo: Optional[AccessInfo] = None


# ---------------------------------------------------------------------------
# Root object
# ---------------------------------------------------------------------------

class ObjectMeta(BaseModel):
    # extra metadata (labels and the like) is carried through untouched
    model_config = ConfigDict(extra="allow")

    name: str
    namespace: str
    uid: str = ""
    generation: int = 0
    resourceVersion: str = ""
    finalizers: List[str] = []
    deletionTimestamp: Optional[str] = None


class KubeNova(BaseModel):
    """
    In-memory copy of the root entity for one pass.

    `spec` stays a raw mapping here; it is parsed into `KubeNovaSpec` by the
    validation stage so malformed input surfaces as a validation failure
    instead of a fetch error.
    """
    apiVersion: str = ""
    kind: str = "KubeNova"
    metadata: ObjectMeta
    spec: Dict = {}
    status: KubeNovaStatus = Field(default_factory=KubeNovaStatus)

    @classmethod
    def from_document(cls, doc: dict) -> "KubeNova":
        """
        Status is parsed on its own: anything may have written it, and an
        unreadable status must not block the pass or the deletion branch.
        It is rebuilt from scratch by the pass.
        """
        kn = cls.model_validate({
            "apiVersion": doc.get("apiVersion", ""),
            "kind": doc.get("kind", "KubeNova"),
            "metadata": doc["metadata"],
            "spec": doc.get("spec") or {},
        })
        try:
            kn.status = KubeNovaStatus.model_validate(doc.get("status") or {})
        except ValidationError as e:
            logger.warning(f"[{kn.key}] Unreadable status discarded: {e.error_count()} error(s)")
        return kn

    def to_document(self) -> dict:
        return self.model_dump(mode="json", exclude_none=True)

    def status_document(self) -> dict:
        return self.status.model_dump(mode="json", exclude_none=True)

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    @property
    def generation(self) -> int:
        return self.metadata.generation

    @property
    def resource_version(self) -> str:
        return self.metadata.resourceVersion

    @property
    def key(self) -> str:
        return f"{self.metadata.namespace}/{self.metadata.name}"

    @property
    def being_deleted(self) -> bool:
        return bool(self.metadata.deletionTimestamp)

    def has_finalizer(self, finalizer: str) -> bool:
        return finalizer in self.metadata.finalizers
