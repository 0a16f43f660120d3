import pytest

from kube_mock import FakeStore
from kubenova_operator import events
from kubenova_operator.config import Settings
from kubenova_operator.reconciler import KubeNovaReconciler

FINALIZER = "kubenova.io/finalizer"


@pytest.fixture(autouse=True)
def no_redis(monkeypatch):
    monkeypatch.setattr(events, "_get_redis", lambda: None)


@pytest.fixture
def store() -> FakeStore:
    return FakeStore(namespaces=("default", "other"))


@pytest.fixture
def sleeps() -> list:
    return []


@pytest.fixture
def reconciler(store, sleeps) -> KubeNovaReconciler:
    cfg = Settings(FINALIZER=FINALIZER, STATUS_WRITE_ATTEMPTS=3, STATUS_RETRY_BACKOFF_SECONDS=0.1,
                   IDLE_REQUEUE_SECONDS=300, SHORT_REQUEUE_SECONDS=30, ERROR_REQUEUE_SECONDS=60)
    return KubeNovaReconciler(store, cfg, sleep=sleeps.append)
