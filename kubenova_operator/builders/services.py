"""Deployment + ClusterIP Service for each enabled backend component."""
from dataclasses import dataclass

from ..models import KubeNovaSpec, ServiceConfig, service_enabled, service_replicas
from .common import (
    BACKEND_COMPONENTS,
    METRICS_PORT,
    SECRET_NAME,
    SERVICE_ACCOUNT_NAME,
    TIMEZONE,
    BackendComponent,
    anti_affinity,
    component_labels,
    empty_dir,
    http_probe,
    image_pull_secrets,
)
from .secret import MINIO_CERT_DIR

DEFAULT_SERVICE_RESOURCES = {
    "requests": {"cpu": "200m", "memory": "256Mi"},
    "limits": {"cpu": "1000m", "memory": "512Mi"},
}


@dataclass
class ServiceResources:
    deployment: dict
    service: dict


def _image(spec: KubeNovaSpec, component: BackendComponent, cfg) -> str:
    if cfg is not None and cfg.image:
        return cfg.image
    reg = spec.image_registry()
    return f"{reg.registry}/{reg.organization}/{component.name}:{reg.tag}"


def _resources(cfg) -> dict:
    if cfg is not None and cfg.resources:
        return cfg.resources
    return {k: dict(v) for k, v in DEFAULT_SERVICE_RESOURCES.items()}


def _minio_cert_secret(spec: KubeNovaSpec, component: BackendComponent) -> str:
    if component.name != "portal-rpc" or not spec.storage.tls_enabled:
        return ""
    return spec.storage.tls.secretName


def _mounts_and_volumes(spec: KubeNovaSpec, component: BackendComponent):
    mounts = [{"name": "config", "mountPath": "/app/etc", "readOnly": True}]
    volumes = [{"name": "config", "configMap": {"name": component.config_map_name}}]

    cert_secret = _minio_cert_secret(spec, component)
    if cert_secret:
        mounts.append({"name": "minio-certs", "mountPath": MINIO_CERT_DIR, "readOnly": True})
        volumes.append({
            "name": "minio-certs",
            "secret": {
                "secretName": cert_secret,
                "optional": False,
                "items": [
                    {"key": "public.crt", "path": "public.crt"},
                    {"key": "private.key", "path": "private.key"},
                ],
            },
        })

    if component.needs_cache_dir:
        mounts.append({"name": "cache", "mountPath": "/app/cache"})
        volumes.append(empty_dir("cache", "1Gi"))
    return mounts, volumes


def build_backend_deployment(spec: KubeNovaSpec, component: BackendComponent,
                             name: str, namespace: str) -> dict:
    cfg: ServiceConfig = component.overrides(spec)
    labels = component_labels(name, component.name, component.kind)
    labels["component"] = component.kind
    mounts, volumes = _mounts_and_volumes(spec, component)

    env = [
        {"name": "TZ", "value": TIMEZONE},
        {"name": "POD_NAMESPACE", "valueFrom": {"fieldRef": {"fieldPath": "metadata.namespace"}}},
    ]
    if cfg is not None:
        env.extend(cfg.env)

    container = {
        "name": component.name,
        "image": _image(spec, component, cfg),
        "imagePullPolicy": spec.image_registry().pullPolicy,
        "ports": [
            {"containerPort": component.port, "protocol": "TCP"},
            {"name": "metrics", "containerPort": METRICS_PORT, "protocol": "TCP"},
        ],
        "envFrom": [{"secretRef": {"name": SECRET_NAME}}],
        "env": env,
        "startupProbe": http_probe("/healthz", METRICS_PORT, 0, 5, 12),
        "livenessProbe": http_probe("/healthz", METRICS_PORT, 30, 10, 3),
        "readinessProbe": http_probe("/healthz", METRICS_PORT, 10, 5, 3),
        "resources": _resources(cfg),
        "volumeMounts": mounts,
        "securityContext": {
            "runAsNonRoot": False,
            "readOnlyRootFilesystem": False,
            "allowPrivilegeEscalation": False,
            "capabilities": {"drop": ["ALL"]},
        },
    }

    pod_spec = {
        "serviceAccountName": SERVICE_ACCOUNT_NAME,
        "affinity": anti_affinity(component.name, 50),
        "containers": [container],
        "volumes": volumes,
        "dnsPolicy": "ClusterFirst",
        "restartPolicy": "Always",
        "terminationGracePeriodSeconds": 30,
    }
    pull_secrets = image_pull_secrets(spec)
    if pull_secrets:
        pod_spec["imagePullSecrets"] = pull_secrets

    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": {"name": component.name, "namespace": namespace, "labels": labels},
        "spec": {
            "replicas": service_replicas(cfg),
            "strategy": {
                "type": "RollingUpdate",
                "rollingUpdate": {"maxSurge": 1, "maxUnavailable": 0},
            },
            "selector": {"matchLabels": {"app": component.name}},
            "template": {
                "metadata": {
                    "labels": dict(labels),
                    "annotations": {
                        "prometheus.io/scrape": "true",
                        "prometheus.io/port": str(METRICS_PORT),
                        "prometheus.io/path": "/metrics",
                    },
                },
                "spec": pod_spec,
            },
        },
    }


def build_backend_service(component: BackendComponent, namespace: str) -> dict:
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": {
            "name": component.name,
            "namespace": namespace,
            "labels": {"app": component.name, "component": component.kind},
        },
        "spec": {
            "type": "ClusterIP",
            "selector": {"app": component.name},
            "ports": [{
                "name": "http",
                "port": component.port,
                "targetPort": component.port,
                "protocol": "TCP",
            }],
        },
    }


def enabled_components(spec: KubeNovaSpec) -> list:
    return [c for c in BACKEND_COMPONENTS if service_enabled(c.overrides(spec))]


def build_backend_services(spec: KubeNovaSpec, name: str, namespace: str) -> dict:
    """
    Desired workloads keyed by component name, in pipeline order.

    Disabled components are left out entirely; anything already running for
    them is not touched.
    """
    return {
        c.name: ServiceResources(
            deployment=build_backend_deployment(spec, c, name, namespace),
            service=build_backend_service(c, namespace),
        )
        for c in enabled_components(spec)
    }
