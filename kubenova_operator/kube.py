"""
Kubernetes store client. The only module that talks to the API server.

Every object crosses this boundary as a plain camelCase document (the same
shape `kubectl get -o json` prints), so builders, the diff engine and the
tests never depend on the generated V1* model classes.

Semantics relied on by the engine:
  - get_* returns None on 404, raises ApiException otherwise
  - writes carrying a stale metadata.resourceVersion fail with 409
  - delete returns False when the object was already gone
"""

import logging
from typing import NewType, Optional

from kubernetes import client, config
from kubernetes.client import ApiException

from .config import Settings, settings as default_settings
from .errors import is_not_found

logger = logging.getLogger("kubenova.kube")

# Optimistic-concurrency token (metadata.resourceVersion)
ResourceVersion = NewType("ResourceVersion", str)


# ---------------------------------------------------------------------------
# Kubernetes client helpers
# ---------------------------------------------------------------------------

_k8s_loaded = False


def _ensure_k8s(cfg: Settings = default_settings):
    """Load kubeconfig exactly once."""
    global _k8s_loaded
    if _k8s_loaded:
        return
    if cfg.IN_CLUSTER:
        config.load_incluster_config()
    else:
        try:
            config.load_incluster_config()
        except config.ConfigException:
            config.load_kube_config(config_file=cfg.KUBECONFIG or None)
    _k8s_loaded = True


# kind -> (API group attribute, method suffix, namespaced)
_KINDS = {
    "ServiceAccount": ("core", "service_account", True),
    "Secret": ("core", "secret", True),
    "ConfigMap": ("core", "config_map", True),
    "Service": ("core", "service", True),
    "Deployment": ("apps", "deployment", True),
    "Ingress": ("networking", "ingress", True),
    "ClusterRoleBinding": ("rbac", "cluster_role_binding", False),
}


class KubeStore:
    """Resource store backed by the Kubernetes API."""

    def __init__(self, cfg: Settings = default_settings):
        self._cfg = cfg
        _ensure_k8s(cfg)
        self._serializer = client.ApiClient()
        self._apis = {
            "core": client.CoreV1Api(),
            "apps": client.AppsV1Api(),
            "networking": client.NetworkingV1Api(),
            "rbac": client.RbacAuthorizationV1Api(),
        }
        self._custom = client.CustomObjectsApi()

    def _to_doc(self, obj) -> dict:
        return self._serializer.sanitize_for_serialization(obj)

    def _method(self, kind: str, verb: str):
        group, suffix, namespaced = _KINDS[kind]
        scope = "namespaced_" if namespaced else ""
        return getattr(self._apis[group], f"{verb}_{scope}{suffix}"), namespaced

    # -- root entity --------------------------------------------------------

    def get_kubenova(self, name: str, namespace: str) -> Optional[dict]:
        try:
            return self._custom.get_namespaced_custom_object(
                self._cfg.CRD_GROUP, self._cfg.CRD_VERSION, namespace, self._cfg.CRD_PLURAL, name
            )
        except ApiException as e:
            if is_not_found(e):
                return None
            raise

    def replace_kubenova(self, doc: dict, resource_version: ResourceVersion) -> dict:
        """Write metadata/spec (e.g. finalizers). Fails with 409 on a stale token."""
        body = dict(doc)
        body["metadata"] = {**doc["metadata"], "resourceVersion": resource_version}
        body.pop("status", None)
        meta = body["metadata"]
        return self._custom.replace_namespaced_custom_object(
            self._cfg.CRD_GROUP, self._cfg.CRD_VERSION, meta["namespace"],
            self._cfg.CRD_PLURAL, meta["name"], body,
        )

    def replace_kubenova_status(self, doc: dict, status: dict,
                                resource_version: ResourceVersion) -> dict:
        """Write the status subresource only. Fails with 409 on a stale token."""
        body = dict(doc)
        body["metadata"] = {**doc["metadata"], "resourceVersion": resource_version}
        body["status"] = status
        meta = body["metadata"]
        return self._custom.replace_namespaced_custom_object_status(
            self._cfg.CRD_GROUP, self._cfg.CRD_VERSION, meta["namespace"],
            self._cfg.CRD_PLURAL, meta["name"], body,
        )

    # -- dependent resources ------------------------------------------------

    def get(self, kind: str, name: str, namespace: Optional[str] = None) -> Optional[dict]:
        read, namespaced = self._method(kind, "read")
        try:
            obj = read(name, namespace) if namespaced else read(name)
        except ApiException as e:
            if is_not_found(e):
                return None
            raise
        return self._to_doc(obj)

    def create(self, kind: str, body: dict) -> dict:
        create, namespaced = self._method(kind, "create")
        if namespaced:
            obj = create(body["metadata"]["namespace"], body)
        else:
            obj = create(body)
        logger.info(f"Created {kind} {body['metadata']['name']}")
        return self._to_doc(obj)

    def replace(self, kind: str, body: dict) -> dict:
        replace, namespaced = self._method(kind, "replace")
        meta = body["metadata"]
        if namespaced:
            obj = replace(meta["name"], meta["namespace"], body)
        else:
            obj = replace(meta["name"], body)
        logger.info(f"Replaced {kind} {meta['name']}")
        return self._to_doc(obj)

    def delete(self, kind: str, name: str, namespace: Optional[str] = None) -> bool:
        delete, namespaced = self._method(kind, "delete")
        try:
            if namespaced:
                delete(name, namespace)
            else:
                delete(name)
        except ApiException as e:
            if is_not_found(e):
                logger.info(f"{kind} {name} already gone")
                return False
            raise
        logger.info(f"Deleted {kind} {name}")
        return True

    # -- cluster inventory --------------------------------------------------

    def namespace_exists(self, name: str) -> bool:
        try:
            self._apis["core"].read_namespace(name)
            return True
        except ApiException as e:
            if is_not_found(e):
                return False
            raise

    def list_nodes(self) -> list[dict]:
        nodes = self._apis["core"].list_node()
        return [self._to_doc(n) for n in nodes.items]
