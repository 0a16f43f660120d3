"""
KubeNova reconciliation engine.

One call to `KubeNovaReconciler.reconcile(name, namespace)` is one pass:

  fetch root ─┬─ gone ─────────────────────────────► DONE
              ├─ deletionTimestamp ─► finalize ────► DONE
              ├─ no finalizer ─► add + persist ────► REQUEUE_IMMEDIATE
              ├─ Ready at current generation ──────► REQUEUE_IDLE
              └─ pipeline:
                   Validating → NamespaceCheck → RBACSync → SecretSync
                   → ConfigSync → ServiceSync → WebSync → StatusAggregation

A failing stage sets phase Failed, persists status best-effort and returns
REQUEUE_AFTER_ERROR. After aggregation the pass returns REQUEUE_IDLE when
every component is Ready and REQUEUE_SHORT otherwise.

Stages only mutate the in-memory status; it is written on failure and once
at the end. A crash mid-pipeline therefore leaves status from the previous
pass until the next one completes.
"""
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

import kopf
import pydantic
from kubernetes.client import ApiException

from . import events, metrics
from .aggregator import StatusAggregator
from .builders import (
    build_backend_services,
    build_cluster_role_binding,
    build_config_maps,
    build_secret,
    build_service_account,
    build_web_resources,
    config_checksum,
)
from .config import Settings, settings as default_settings
from .diff import changed_fields, splice_workload, workloads_equal
from .errors import (
    DependencyMissingError,
    StageError,
    StatusUpdateError,
    ValidationFailedError,
)
from .finalizer import add_finalizer, run_deletion
from .kube import KubeStore
from .models import ConditionType, ExposeType, KubeNova, KubeNovaSpec, Phase
from .status import StatusWriter, set_condition, set_phase
from .validator import validate_kubenova

logger = logging.getLogger("kubenova.reconciler")


class Outcome(str, Enum):
    DONE = "done"
    REQUEUE_IMMEDIATE = "requeue_immediate"
    REQUEUE_AFTER_ERROR = "requeue_after_error"
    REQUEUE_IDLE = "requeue_idle"
    REQUEUE_SHORT = "requeue_short"


@dataclass
class ReconcileResult:
    outcome: Outcome
    requeue_after: float = 0.0
    error: Optional[StageError] = None

    @property
    def requeue(self) -> bool:
        return self.outcome != Outcome.DONE


@dataclass
class PassContext:
    """State carried between the stages of one pass."""
    kn: KubeNova
    spec: Optional[KubeNovaSpec] = None


def _pydantic_violations(err: pydantic.ValidationError) -> list:
    return [
        f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}"
        for e in err.errors()
    ]


class KubeNovaReconciler:

    def __init__(self, store: KubeStore, cfg: Settings = default_settings,
                 sleep: Callable[[float], None] = time.sleep):
        self.store = store
        self.cfg = cfg
        self.writer = StatusWriter(
            store,
            attempts=cfg.STATUS_WRITE_ATTEMPTS,
            backoff=cfg.STATUS_RETRY_BACKOFF_SECONDS,
            sleep=sleep,
        )
        self.aggregator = StatusAggregator(store)
        self.stages = (
            ("Validating", "Validation failed", self.validate),
            ("NamespaceCheck", "Namespace check failed", self.check_namespace),
            ("RBACSync", "RBAC sync failed", self.sync_rbac),
            ("SecretSync", "Secret sync failed", self.sync_secret),
            ("ConfigSync", "ConfigMap sync failed", self.sync_config_maps),
            ("ServiceSync", "Backend service sync failed", self.sync_services),
            ("WebSync", "Web sync failed", self.sync_web),
            ("StatusAggregation", "Status aggregation failed", self.aggregate),
        )

    # ---------------------------------------------------------------------
    # Entry point
    # ---------------------------------------------------------------------

    def reconcile(self, name: str, namespace: str) -> ReconcileResult:
        with metrics.reconcile_duration_histogram.time():
            result = self._reconcile(name, namespace)
        metrics.reconcile_total.labels(outcome=result.outcome.value).inc()
        return result

    def _result(self, outcome: Outcome, error: Optional[StageError] = None) -> ReconcileResult:
        delays = {
            Outcome.DONE: 0.0,
            Outcome.REQUEUE_IMMEDIATE: 0.0,
            Outcome.REQUEUE_AFTER_ERROR: self.cfg.ERROR_REQUEUE_SECONDS,
            Outcome.REQUEUE_IDLE: self.cfg.IDLE_REQUEUE_SECONDS,
            Outcome.REQUEUE_SHORT: self.cfg.SHORT_REQUEUE_SECONDS,
        }
        return ReconcileResult(outcome=outcome, requeue_after=delays[outcome], error=error)

    def _reconcile(self, name: str, namespace: str) -> ReconcileResult:
        key = f"{namespace}/{name}"
        try:
            doc = self.store.get_kubenova(name, namespace)
        except ApiException as e:
            logger.error(f"[{key}] Fetching KubeNova failed: {e}")
            return self._result(Outcome.REQUEUE_AFTER_ERROR, StageError("Fetch", e))
        if doc is None:
            logger.info(f"[{key}] KubeNova is gone, nothing to do")
            return self._result(Outcome.DONE)
        try:
            kn = KubeNova.from_document(doc)
        except pydantic.ValidationError as e:
            logger.error(f"[{key}] KubeNova metadata is unreadable: {e}")
            return self._result(Outcome.REQUEUE_AFTER_ERROR, StageError("Fetch", e))

        if kn.being_deleted:
            return self._finalize(kn)

        if not kn.has_finalizer(self.cfg.FINALIZER):
            try:
                add_finalizer(self.store, kn, self.cfg.FINALIZER)
            except ApiException as e:
                logger.error(f"[{key}] Adding finalizer failed: {e}")
                return self._result(Outcome.REQUEUE_AFTER_ERROR, StageError("Finalizer", e))
            return self._result(Outcome.REQUEUE_IMMEDIATE)

        if kn.status.observedGeneration == kn.generation and kn.status.phase == Phase.READY:
            logger.debug(f"[{key}] Ready at generation {kn.generation}, skipping pipeline")
            return self._result(Outcome.REQUEUE_IDLE)

        logger.info(f"[{key}] Reconciling generation {kn.generation}")
        ctx = PassContext(kn=kn)
        all_ready = False
        for stage, failure_message, run in self.stages:
            try:
                all_ready = run(ctx)
            except Exception as e:  # recorded on the resource, retried after backoff
                return self._fail(kn, stage, failure_message, e)

        try:
            self.writer.write(kn)
        except StatusUpdateError as e:
            # Dependents are already correct; the next pass repairs status.
            logger.warning(f"[{key}] Final status write failed: {e}")
            return self._result(Outcome.REQUEUE_SHORT)

        if all_ready:
            logger.info(f"[{key}] All components ready")
            events.publish_event(namespace, name, "READY", "All components ready", Phase.READY.value)
            return self._result(Outcome.REQUEUE_IDLE)
        return self._result(Outcome.REQUEUE_SHORT)

    def _fail(self, kn: KubeNova, stage: str, failure_message: str,
              exc: Exception) -> ReconcileResult:
        logger.error(f"[{kn.key}] {stage} failed: {exc}")
        metrics.stage_failures_total.labels(stage=stage).inc()
        message = f"{failure_message}: {exc}"
        set_phase(kn.status, Phase.FAILED, message)
        try:
            self.writer.write(kn)
        except StatusUpdateError as e:
            logger.error(f"[{kn.key}] Recording failure in status failed: {e}")
        events.publish_event(kn.namespace, kn.name, "STAGE_FAILED", message, Phase.FAILED.value)
        return self._result(Outcome.REQUEUE_AFTER_ERROR, StageError(stage, exc))

    def _finalize(self, kn: KubeNova) -> ReconcileResult:
        if not kn.has_finalizer(self.cfg.FINALIZER):
            return self._result(Outcome.DONE)
        events.publish_event(kn.namespace, kn.name, "DELETE_START", "Deleting", Phase.DELETING.value)
        try:
            run_deletion(self.store, self.writer, kn, self.cfg.FINALIZER)
        except ApiException as e:
            logger.error(f"[{kn.key}] Deletion cleanup failed: {e}")
            metrics.stage_failures_total.labels(stage="Deleting").inc()
            return self._result(Outcome.REQUEUE_AFTER_ERROR, StageError("Deleting", e))
        events.drop_stream(kn.namespace, kn.name)
        return self._result(Outcome.DONE)

    # ---------------------------------------------------------------------
    # Write helpers
    # ---------------------------------------------------------------------

    def _owned(self, kn: KubeNova, body: dict) -> dict:
        kopf.append_owner_reference(body, owner=kn.to_document())
        return body

    def _record(self, kind: str, action: str):
        metrics.resource_writes_total.labels(kind=kind, action=action).inc()

    def ensure_created(self, kind: str, body: dict) -> dict:
        """Create when absent; an existing object is left untouched."""
        meta = body["metadata"]
        existing = self.store.get(kind, meta["name"], meta.get("namespace"))
        if existing is not None:
            return existing
        created = self.store.create(kind, body)
        self._record(kind, "create")
        return created

    def ensure_data(self, kind: str, body: dict) -> dict:
        """Create when absent, replace when `data` differs as a whole."""
        meta = body["metadata"]
        existing = self.store.get(kind, meta["name"], meta["namespace"])
        if existing is None:
            created = self.store.create(kind, body)
            self._record(kind, "create")
            return created
        current = existing.get("data") or {}
        if current == body["data"]:
            return existing
        logger.info(
            f"{kind} {meta['namespace']}/{meta['name']} data changed "
            f"({config_checksum(current)[:12]} -> {config_checksum(body['data'])[:12]})"
        )
        existing["data"] = body["data"]
        replaced = self.store.replace(kind, existing)
        self._record(kind, "update")
        return replaced

    def ensure_workload(self, body: dict) -> dict:
        """Create, or splice convergence-relevant fields onto a fresh read and replace."""
        meta = body["metadata"]
        existing = self.store.get("Deployment", meta["name"], meta["namespace"])
        if existing is None:
            created = self.store.create("Deployment", body)
            self._record("Deployment", "create")
            return created
        if workloads_equal(existing, body):
            return existing

        logger.info(
            f"Deployment {meta['namespace']}/{meta['name']} drifted: "
            f"{', '.join(changed_fields(existing, body))}"
        )
        latest = self.store.get("Deployment", meta["name"], meta["namespace"])
        if latest is None:
            created = self.store.create("Deployment", body)
            self._record("Deployment", "create")
            return created
        replaced = self.store.replace("Deployment", splice_workload(latest, body))
        self._record("Deployment", "update")
        return replaced

    # ---------------------------------------------------------------------
    # Stages
    # ---------------------------------------------------------------------

    def validate(self, ctx: PassContext):
        kn = ctx.kn
        set_phase(kn.status, Phase.VALIDATING, "Validating configuration")
        try:
            try:
                spec = KubeNovaSpec.model_validate(kn.spec)
            except pydantic.ValidationError as e:
                raise ValidationFailedError(_pydantic_violations(e)) from e
            validate_kubenova(spec)
        except ValidationFailedError as e:
            set_condition(kn.status, ConditionType.VALIDATED.value, False, "ValidationFailed",
                          f"Validation failed: {e}", kn.generation)
            raise
        set_condition(kn.status, ConditionType.VALIDATED.value, True, "ValidationSucceeded",
                      "Configuration is valid", kn.generation)
        ctx.spec = spec

    def check_namespace(self, ctx: PassContext):
        if not self.store.namespace_exists(ctx.kn.namespace):
            raise DependencyMissingError(
                f"namespace {ctx.kn.namespace} does not exist; create it first"
            )

    def sync_rbac(self, ctx: PassContext):
        kn = ctx.kn
        self.ensure_created("ServiceAccount",
                            self._owned(kn, build_service_account(kn.name, kn.namespace)))
        # cluster-scoped, no owner reference; removed by the deletion lifecycle
        self.ensure_created("ClusterRoleBinding", build_cluster_role_binding(kn.name, kn.namespace))

    def sync_secret(self, ctx: PassContext):
        kn, spec = ctx.kn, ctx.spec
        node_ip, node_port = "", 0
        needs_node_address = (
            spec.minio_proxy_enabled
            and not spec.web.minioProxy.proxyEndpoint
            and spec.web.exposeType == ExposeType.NODEPORT.value
        )
        if needs_node_address:
            node_ip = self.aggregator.node_address()
            node_port = self.aggregator.web_node_port(spec, kn.namespace)
        secret = build_secret(spec, kn.name, kn.namespace, node_ip, node_port)
        self.ensure_data("Secret", self._owned(kn, secret))

    def sync_config_maps(self, ctx: PassContext):
        kn = ctx.kn
        for cm in build_config_maps(kn.name, kn.namespace):
            self.ensure_data("ConfigMap", self._owned(kn, cm))

    def sync_services(self, ctx: PassContext):
        kn = ctx.kn
        set_phase(kn.status, Phase.CREATING, "Deploying backend services")
        for component, res in build_backend_services(ctx.spec, kn.name, kn.namespace).items():
            logger.debug(f"[{kn.key}] Syncing {component}")
            self.ensure_workload(self._owned(kn, res.deployment))
            self.ensure_created("Service", self._owned(kn, res.service))

    def sync_web(self, ctx: PassContext):
        kn = ctx.kn
        res = build_web_resources(ctx.spec, kn.name, kn.namespace)
        if res.nginx_config_map is not None:
            self.ensure_data("ConfigMap", self._owned(kn, res.nginx_config_map))
        self.ensure_workload(self._owned(kn, res.deployment))
        self.ensure_created("Service", self._owned(kn, res.service))
        if res.ingress is not None:
            self.ensure_created("Ingress", self._owned(kn, res.ingress))

    def aggregate(self, ctx: PassContext) -> bool:
        return self.aggregator.aggregate(ctx.kn, ctx.spec)
