import kopf
import pytest

from kube_mock import FakeStore, kubenova_doc
from kubenova_operator import handlers
from kubenova_operator.errors import StageError
from kubenova_operator.reconciler import KubeNovaReconciler, Outcome, ReconcileResult


class _Log:
    def __init__(self):
        self.lines = []

    def info(self, msg):
        self.lines.append(msg)

    debug = warning = info


@pytest.fixture
def fake_engine(monkeypatch, reconciler):
    monkeypatch.setattr(handlers, "_reconciler", reconciler)
    return reconciler


def test_requeue_after_error_becomes_temporary_error():
    result = ReconcileResult(Outcome.REQUEUE_AFTER_ERROR, 60, StageError("RBACSync", RuntimeError("boom")))

    with pytest.raises(kopf.TemporaryError) as excinfo:
        handlers.raise_for_requeue(result)
    assert excinfo.value.delay == 60
    assert "RBACSync: boom" in str(excinfo.value)


@pytest.mark.parametrize("outcome, delay", [
    (Outcome.REQUEUE_IMMEDIATE, 0),
    (Outcome.REQUEUE_SHORT, 30),
])
def test_retrying_outcomes(outcome, delay):
    with pytest.raises(kopf.TemporaryError) as excinfo:
        handlers.raise_for_requeue(ReconcileResult(outcome, delay))
    assert excinfo.value.delay == delay


@pytest.mark.parametrize("outcome", [Outcome.DONE, Outcome.REQUEUE_IDLE])
def test_settled_outcomes_do_not_raise(outcome):
    handlers.raise_for_requeue(ReconcileResult(outcome, 300))


@pytest.fixture(autouse=True)
def fresh_locks(monkeypatch):
    monkeypatch.setattr(handlers, "_locks", {})


def test_object_lock_is_per_key():
    a = handlers.object_lock("default", "nova")
    assert handlers.object_lock("default", "nova") is a
    assert handlers.object_lock("other", "nova") is not a


def test_finished_object_drops_its_lock():
    handlers.object_lock("default", "nova")
    handlers.object_lock("default", "nova")

    handlers.release_lock("default", "nova", finished=True)
    assert "default/nova" in handlers._locks

    handlers.release_lock("default", "nova", finished=True)
    assert "default/nova" not in handlers._locks


def test_unfinished_object_keeps_its_lock():
    a = handlers.object_lock("default", "nova")
    handlers.release_lock("default", "nova")

    assert handlers.object_lock("default", "nova") is a


def test_get_reconciler_is_lazy(monkeypatch):
    built = []

    class _Store:
        def __init__(self, cfg):
            built.append(cfg)

    monkeypatch.setattr(handlers, "_reconciler", None)
    monkeypatch.setattr(handlers, "KubeStore", _Store)

    first = handlers.get_reconciler()
    assert isinstance(first, KubeNovaReconciler)
    assert handlers.get_reconciler() is first
    assert len(built) == 1


def test_create_handler_adds_finalizer_and_requeues(fake_engine, store: FakeStore):
    store.add_kubenova(kubenova_doc())

    with pytest.raises(kopf.TemporaryError):
        handlers.reconcile_kubenova(name="nova", namespace="default", logger=_Log())
    assert store.peek("KubeNova", "nova", "default")["metadata"]["finalizers"]


def test_delete_handler_only_raises_on_error(fake_engine, store: FakeStore):
    store.add_kubenova(kubenova_doc(finalizers=["kubenova.io/finalizer"]))
    store.mark_deleted("nova", "default")
    store.fail("delete", "ClusterRoleBinding")

    with pytest.raises(kopf.TemporaryError):
        handlers.delete_kubenova(name="nova", namespace="default", logger=_Log())

    log = _Log()
    handlers.delete_kubenova(name="nova", namespace="default", logger=log)
    assert log.lines == ["Deletion pass finished: done"]
    assert store.peek("KubeNova", "nova", "default") is None
    assert "default/nova" not in handlers._locks


def test_timer_swallows_failures(fake_engine, store: FakeStore):
    store.add_kubenova(kubenova_doc())
    store.fail("replace", "KubeNova")
    log = _Log()

    handlers.resync_kubenova(name="nova", namespace="default", logger=log)

    assert log.lines and log.lines[0].startswith("Resync failed: Finalizer")


def test_live_object_keeps_its_lock_between_passes(fake_engine, store: FakeStore):
    store.add_kubenova(kubenova_doc())

    with pytest.raises(kopf.TemporaryError):
        handlers.reconcile_kubenova(name="nova", namespace="default", logger=_Log())

    assert handlers._locks["default/nova"][1] == 0
