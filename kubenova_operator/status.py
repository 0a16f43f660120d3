"""
Status helpers and the retry-safe status writer.

Stages only mutate `KubeNova.status` in memory; `StatusWriter.write` is the
single place status reaches the API server.
"""
import logging
import time
from datetime import datetime, timezone
from typing import Callable, Optional

from kubernetes.client import ApiException

from . import metrics
from .errors import StatusUpdateError, is_conflict
from .kube import KubeStore, ResourceVersion
from .models import Condition, KubeNova, KubeNovaStatus, Phase

logger = logging.getLogger("kubenova.status")


def now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def get_condition(status: KubeNovaStatus, ctype: str) -> Optional[Condition]:
    for c in status.conditions:
        if c.type == ctype:
            return c
    return None


def set_condition(status: KubeNovaStatus, ctype: str, cstatus: bool, reason: str,
                  message: str, generation: Optional[int] = None):
    """Upsert a condition. lastTransitionTime only moves when the status flips."""
    value = "True" if cstatus else "False"
    existing = get_condition(status, ctype)
    if existing is None:
        status.conditions.append(Condition(
            type=ctype,
            status=value,
            reason=reason,
            message=message,
            lastTransitionTime=now(),
            observedGeneration=generation,
        ))
        return
    if existing.status != value:
        existing.lastTransitionTime = now()
    existing.status = value
    existing.reason = reason
    existing.message = message
    existing.observedGeneration = generation


def set_phase(status: KubeNovaStatus, phase: Phase, message: str):
    status.phase = phase
    status.message = message
    status.lastUpdateTime = now()


class StatusWriter:
    """
    Compare-and-swap status writes with bounded retry.

    Each attempt re-reads the root to get the current version token, puts the
    caller's in-memory status on top of it, and writes the status subresource.
    A 409 is retried after `backoff * attempt` seconds; anything else, or
    running out of attempts, raises StatusUpdateError.
    """

    def __init__(self, store: KubeStore, attempts: int = 3, backoff: float = 0.1,
                 sleep: Callable[[float], None] = time.sleep):
        self.store = store
        self.attempts = max(1, attempts)
        self.backoff = backoff
        self._sleep = sleep

    def write(self, kn: KubeNova) -> None:
        status_doc = kn.status_document()
        for attempt in range(1, self.attempts + 1):
            try:
                latest = self.store.get_kubenova(kn.name, kn.namespace)
            except ApiException as e:
                raise StatusUpdateError(f"[{kn.key}] re-fetch for status write failed: {e}") from e
            if latest is None:
                raise StatusUpdateError(f"[{kn.key}] resource disappeared before status write")

            token = ResourceVersion(latest["metadata"]["resourceVersion"])
            try:
                written = self.store.replace_kubenova_status(latest, status_doc, token)
            except ApiException as e:
                if not is_conflict(e):
                    raise StatusUpdateError(f"[{kn.key}] status write failed: {e}") from e
                metrics.status_conflicts_total.inc()
                if attempt == self.attempts:
                    raise StatusUpdateError(
                        f"[{kn.key}] status write conflicted {self.attempts} times"
                    ) from e
                logger.info(f"[{kn.key}] status conflict (attempt {attempt}/{self.attempts}), retrying")
                self._sleep(self.backoff * attempt)
                continue

            kn.metadata.resourceVersion = written["metadata"]["resourceVersion"]
            kn.status = KubeNovaStatus.model_validate(written.get("status") or {})
            return
