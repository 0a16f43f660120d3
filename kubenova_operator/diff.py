"""
Workload diffing over a fixed, typed projection of a Deployment.

Only fields the builders compute are projected; everything the API server or
other controllers inject (labels, annotations, status, defaulted probe fields,
scheduling decisions) is invisible here and therefore never causes an update.
"""
import copy
from dataclasses import dataclass
from decimal import Decimal
from typing import FrozenSet, Optional, Tuple

from kubernetes.utils import parse_quantity

# Volume source keys that reference another object by name.
_VOLUME_REFS = {
    "configMap": "name",
    "secret": "secretName",
    "persistentVolumeClaim": "claimName",
}


def _quantities(values: Optional[dict]) -> FrozenSet[Tuple[str, Decimal]]:
    # "1000m" and "1" are the same CPU; compare numerically.
    return frozenset((k, parse_quantity(v)) for k, v in (values or {}).items())


def _volume_key(volume: dict) -> Tuple[str, str, str]:
    for kind, value in volume.items():
        if kind == "name" or value is None:
            continue
        ref_field = _VOLUME_REFS.get(kind)
        ref = value.get(ref_field, "") if ref_field and isinstance(value, dict) else ""
        return volume["name"], kind, ref
    return volume["name"], "", ""


@dataclass(frozen=True)
class WorkloadFields:
    replicas: int
    container_count: int
    image: str
    env_values: FrozenSet[Tuple[str, str]]
    env_names: FrozenSet[str]
    requests: FrozenSet[Tuple[str, Decimal]]
    limits: FrozenSet[Tuple[str, Decimal]]
    mounts: FrozenSet[Tuple[str, str, str]]
    volumes: FrozenSet[Tuple[str, str, str]]
    service_account: str

    @classmethod
    def from_document(cls, doc: dict) -> "WorkloadFields":
        spec = doc.get("spec") or {}
        pod = (spec.get("template") or {}).get("spec") or {}
        containers = pod.get("containers") or []
        first = containers[0] if containers else {}

        env = first.get("env") or []
        # valueFrom sources come back normalised (defaulted apiVersion etc),
        # so only literal values are compared; presence is covered by env_names.
        env_values = frozenset(
            (e["name"], e.get("value") or "") for e in env if not e.get("valueFrom")
        )
        resources = first.get("resources") or {}
        replicas = spec.get("replicas")

        return cls(
            replicas=1 if replicas is None else replicas,
            container_count=len(containers),
            image=first.get("image", ""),
            env_values=env_values,
            env_names=frozenset(e["name"] for e in env),
            requests=_quantities(resources.get("requests")),
            limits=_quantities(resources.get("limits")),
            mounts=frozenset(
                (m["name"], m["mountPath"], m.get("subPath") or "")
                for m in first.get("volumeMounts") or []
            ),
            volumes=frozenset(_volume_key(v) for v in pod.get("volumes") or []),
            service_account=pod.get("serviceAccountName") or "",
        )


def workloads_equal(observed: dict, desired: dict) -> bool:
    return WorkloadFields.from_document(observed) == WorkloadFields.from_document(desired)


def changed_fields(observed: dict, desired: dict) -> list:
    """Names of projected fields that differ, for log messages."""
    a = WorkloadFields.from_document(observed)
    b = WorkloadFields.from_document(desired)
    return [f for f in WorkloadFields.__dataclass_fields__ if getattr(a, f) != getattr(b, f)]


def splice_workload(latest: dict, desired: dict) -> dict:
    """
    Copy the convergence-relevant fields of `desired` onto a fresh copy of
    `latest`, keeping its resourceVersion and everything else the cluster set.
    """
    result = copy.deepcopy(latest)
    spec = result.setdefault("spec", {})
    pod = spec.setdefault("template", {}).setdefault("spec", {})
    want_spec = desired["spec"]
    want_pod = want_spec["template"]["spec"]

    spec["replicas"] = want_spec.get("replicas")
    pod["containers"] = copy.deepcopy(want_pod["containers"])
    pod["volumes"] = copy.deepcopy(want_pod.get("volumes") or [])

    # deprecated alias; the API server re-derives it from serviceAccountName
    pod.pop("serviceAccount", None)
    if want_pod.get("serviceAccountName"):
        pod["serviceAccountName"] = want_pod["serviceAccountName"]
    else:
        pod.pop("serviceAccountName", None)

    if want_pod.get("imagePullSecrets"):
        pod["imagePullSecrets"] = copy.deepcopy(want_pod["imagePullSecrets"])
    else:
        pod.pop("imagePullSecrets", None)
    return result
