"""
Finalizer handling and the deletion lifecycle.

Namespaced dependents carry owner references and are collected by the API
server's garbage collector. The ClusterRoleBinding is cluster-scoped, so it
is deleted here before the finalizer is released.
"""
import logging

from .builders import cluster_role_binding_name
from .errors import StatusUpdateError
from .kube import KubeStore, ResourceVersion
from .models import KubeNova, Phase
from .status import StatusWriter, set_phase

logger = logging.getLogger("kubenova.finalizer")


def _persist_finalizers(store: KubeStore, kn: KubeNova, finalizers: list):
    doc = kn.to_document()
    doc["metadata"]["finalizers"] = finalizers
    written = store.replace_kubenova(doc, ResourceVersion(kn.resource_version))
    kn.metadata.finalizers = list(written["metadata"].get("finalizers") or [])
    kn.metadata.resourceVersion = written["metadata"]["resourceVersion"]


def add_finalizer(store: KubeStore, kn: KubeNova, finalizer: str) -> bool:
    """Add and persist the marker. Returns False when it was already present."""
    if kn.has_finalizer(finalizer):
        return False
    _persist_finalizers(store, kn, kn.metadata.finalizers + [finalizer])
    logger.info(f"[{kn.key}] Finalizer {finalizer} added")
    return True


def remove_finalizer(store: KubeStore, kn: KubeNova, finalizer: str) -> bool:
    if not kn.has_finalizer(finalizer):
        return False
    _persist_finalizers(store, kn, [f for f in kn.metadata.finalizers if f != finalizer])
    logger.info(f"[{kn.key}] Finalizer {finalizer} removed")
    return True


def run_deletion(store: KubeStore, writer: StatusWriter, kn: KubeNova, finalizer: str):
    """
    1. phase Deleting, persisted best-effort
    2. delete the ClusterRoleBinding (already gone counts as done)
    3. release the finalizer

    A failure in step 2 propagates, so the finalizer stays until the binding
    is confirmed gone.
    """
    logger.info(f"[{kn.key}] Running deletion lifecycle")
    set_phase(kn.status, Phase.DELETING, "Deleting resources")
    try:
        writer.write(kn)
    except StatusUpdateError as e:
        logger.warning(f"[{kn.key}] Could not record Deleting phase (ignored): {e}")

    crb = cluster_role_binding_name(kn.name, kn.namespace)
    store.delete("ClusterRoleBinding", crb)

    remove_finalizer(store, kn, finalizer)
    logger.info(f"[{kn.key}] Deletion cleanup complete")
