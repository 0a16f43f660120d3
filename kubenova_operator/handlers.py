"""
kopf wiring for the KubeNova reconciliation engine.

  create / update / resume ──► one pass, requeue mapped to TemporaryError
  delete (optional)        ──► one pass; the engine sees deletionTimestamp
  timer                    ──► periodic resync, never raises

kopf runs these sync handlers in a thread pool, and a timer can fire while a
change handler for the same object is still running. `object_lock` keeps it
to one pass per namespace/name at a time.
"""

import logging
import threading

import kopf

from . import metrics
from .config import settings as cfg
from .kube import KubeStore
from .reconciler import KubeNovaReconciler, Outcome, ReconcileResult

logger = logging.getLogger("kubenova.handlers")

CRD_GROUP = cfg.CRD_GROUP
CRD_VERSION = cfg.CRD_VERSION
CRD_PLURAL = cfg.CRD_PLURAL

# ---------------------------------------------------------------------------
# Engine + per-object locking
# ---------------------------------------------------------------------------

_reconciler = None
# namespace/name -> [lock, passes holding or waiting on it]
_locks: dict = {}
_locks_guard = threading.Lock()


def get_reconciler() -> KubeNovaReconciler:
    """Lazy-init the engine so importing this module needs no cluster."""
    global _reconciler
    if _reconciler is None:
        _reconciler = KubeNovaReconciler(KubeStore(cfg), cfg)
    return _reconciler


def object_lock(namespace: str, name: str) -> threading.Lock:
    """Check out the lock for one object. Pair every call with release_lock."""
    key = f"{namespace}/{name}"
    with _locks_guard:
        entry = _locks.get(key)
        if entry is None:
            entry = _locks[key] = [threading.Lock(), 0]
        entry[1] += 1
        return entry[0]


def release_lock(namespace: str, name: str, finished: bool = False):
    """
    Return a checked-out lock. A finished object (its pass came back DONE)
    loses its entry once no other pass is holding or waiting on it.
    """
    key = f"{namespace}/{name}"
    with _locks_guard:
        entry = _locks.get(key)
        if entry is None:
            return
        entry[1] -= 1
        if finished and entry[1] <= 0:
            del _locks[key]


def run_pass(name: str, namespace: str) -> ReconcileResult:
    lock = object_lock(namespace, name)
    result = None
    try:
        with lock:
            result = get_reconciler().reconcile(name, namespace)
    finally:
        release_lock(namespace, name, finished=result is not None and result.outcome == Outcome.DONE)
    return result


def raise_for_requeue(result: ReconcileResult):
    """Translate a pass outcome into kopf's retry semantics."""
    if result.outcome == Outcome.REQUEUE_AFTER_ERROR:
        raise kopf.TemporaryError(str(result.error), delay=result.requeue_after)
    if result.outcome == Outcome.REQUEUE_IMMEDIATE:
        raise kopf.TemporaryError("finalizer added, reconciling again", delay=0)
    if result.outcome == Outcome.REQUEUE_SHORT:
        raise kopf.TemporaryError("components not ready yet", delay=result.requeue_after)
    # DONE and REQUEUE_IDLE: the resync timer picks the object up again.


# ---------------------------------------------------------------------------
# Kopf operator settings
# ---------------------------------------------------------------------------

@kopf.on.startup()
def configure(settings: kopf.OperatorSettings, **kwargs):
    settings.posting.enabled = True
    # kopf's own finalizer is unused: the engine manages cfg.FINALIZER itself.
    settings.persistence.finalizer = "kubenova.io/kopf-finalizer"
    settings.persistence.progress_storage = kopf.AnnotationsProgressStorage(prefix="kubenova.io")
    settings.execution.max_workers = cfg.MAX_WORKERS
    metrics.serve(cfg.METRICS_PORT)
    logger.info(
        f"KubeNova operator started (max_workers={cfg.MAX_WORKERS}, "
        f"metrics_port={cfg.METRICS_PORT}, namespace={cfg.WATCH_NAMESPACE or '*'})"
    )


# ---------------------------------------------------------------------------
# CREATE / UPDATE / RESUME
# ---------------------------------------------------------------------------

@kopf.on.create(CRD_GROUP, CRD_VERSION, CRD_PLURAL)
@kopf.on.update(CRD_GROUP, CRD_VERSION, CRD_PLURAL)
@kopf.on.resume(CRD_GROUP, CRD_VERSION, CRD_PLURAL)
def reconcile_kubenova(name, namespace, logger, **kwargs):
    result = run_pass(name, namespace)
    logger.info(f"Pass finished: {result.outcome.value}")
    raise_for_requeue(result)


# ---------------------------------------------------------------------------
# DELETE
# ---------------------------------------------------------------------------

@kopf.on.delete(CRD_GROUP, CRD_VERSION, CRD_PLURAL, optional=True)
def delete_kubenova(name, namespace, logger, **kwargs):
    result = run_pass(name, namespace)
    logger.info(f"Deletion pass finished: {result.outcome.value}")
    if result.outcome == Outcome.REQUEUE_AFTER_ERROR:
        raise kopf.TemporaryError(str(result.error), delay=result.requeue_after)


# ---------------------------------------------------------------------------
# TIMER: periodic resync
# ---------------------------------------------------------------------------

@kopf.timer(CRD_GROUP, CRD_VERSION, CRD_PLURAL, interval=cfg.RESYNC_INTERVAL_SECONDS)
def resync_kubenova(name, namespace, logger, **kwargs):
    result = run_pass(name, namespace)
    if result.error is not None:
        logger.warning(f"Resync failed: {result.error}")
    else:
        logger.debug(f"Resync finished: {result.outcome.value}")
