import pytest
from kubernetes.client import ApiException

from kube_mock import FakeStore, kubenova_doc
from kubenova_operator.errors import StatusUpdateError
from kubenova_operator.models import KubeNova, KubeNovaStatus, Phase
from kubenova_operator.status import StatusWriter, get_condition, set_condition, set_phase


def _setup(attempts=3):
    store = FakeStore()
    kn = KubeNova.from_document(store.add_kubenova(kubenova_doc()))
    sleeps = []
    return store, kn, StatusWriter(store, attempts=attempts, backoff=0.1, sleep=sleeps.append), sleeps


def test_write_persists_status_and_refreshes_version():
    store, kn, writer, sleeps = _setup()
    set_phase(kn.status, Phase.CREATING, "Deploying")

    writer.write(kn)

    stored = store.peek("KubeNova", "nova", "default")
    assert stored["status"]["phase"] == "Creating"
    assert kn.resource_version == stored["metadata"]["resourceVersion"]
    assert sleeps == []


def test_write_uses_fresh_version_when_local_copy_is_stale():
    store, kn, writer, _ = _setup()
    store.edit_kubenova_spec("nova", "default", lambda spec: spec.update(extra=True))
    set_phase(kn.status, Phase.CREATING, "Deploying")

    writer.write(kn)

    assert store.peek("KubeNova", "nova", "default")["status"]["phase"] == "Creating"


def test_conflicts_are_retried_with_linear_backoff():
    store, kn, writer, sleeps = _setup(attempts=3)
    store.status_conflicts = 2
    set_phase(kn.status, Phase.READY, "ok")

    writer.write(kn)

    assert sleeps == pytest.approx([0.1, 0.2])
    assert store.peek("KubeNova", "nova", "default")["status"]["phase"] == "Ready"
    assert kn.resource_version == store.peek("KubeNova", "nova", "default")["metadata"]["resourceVersion"]


def test_conflict_retry_is_bounded():
    store, kn, writer, sleeps = _setup(attempts=3)
    store.status_conflicts = 10

    with pytest.raises(StatusUpdateError, match="conflicted 3 times"):
        writer.write(kn)

    assert len(sleeps) == 2
    assert store.status_conflicts == 7


def test_non_conflict_error_is_not_retried():
    store, kn, writer, sleeps = _setup()
    store.fail("replace_status", "KubeNova", ApiException(status=500, reason="boom"))

    with pytest.raises(StatusUpdateError):
        writer.write(kn)
    assert sleeps == []


def test_vanished_root_raises():
    store, kn, writer, _ = _setup()
    del store.objects[("KubeNova", "default", "nova")]

    with pytest.raises(StatusUpdateError, match="disappeared"):
        writer.write(kn)


def test_zero_attempts_still_tries_once():
    store, kn, writer, _ = _setup(attempts=0)
    writer.write(kn)
    assert store.writes("replace_status") == [("replace_status", "KubeNova", "nova")]


def test_condition_transition_time_moves_only_on_flip(monkeypatch):
    from kubenova_operator import status as status_mod

    status = KubeNovaStatus()
    monkeypatch.setattr(status_mod, "now", lambda: "T1")
    set_condition(status, "Ready", False, "ComponentsNotReady", "waiting", 1)

    monkeypatch.setattr(status_mod, "now", lambda: "T2")
    set_condition(status, "Ready", False, "ComponentsNotReady", "still waiting", 2)
    cond = get_condition(status, "Ready")
    assert cond.lastTransitionTime == "T1"
    assert cond.message == "still waiting"
    assert cond.observedGeneration == 2

    set_condition(status, "Ready", True, "AllComponentsReady", "done", 2)
    assert get_condition(status, "Ready").lastTransitionTime == "T2"
    assert len(status.conditions) == 1
