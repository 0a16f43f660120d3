"""nginx front end: Deployment, Service, optional nginx ConfigMap and Ingress."""
from dataclasses import dataclass
from typing import Optional

from ..models import ExposeType, KubeNovaSpec
from .common import (
    NGINX_CONFIG_MAP_NAME,
    TIMEZONE,
    WEB_NAME,
    anti_affinity,
    common_labels,
    empty_dir,
    http_probe,
    image_pull_secrets,
)
from .nginx import build_nginx_config_map

DEFAULT_WEB_RESOURCES = {
    "requests": {"cpu": "100m", "memory": "128Mi"},
    "limits": {"cpu": "500m", "memory": "512Mi"},
}

_INGRESS_PREFIX = "nginx.ingress.kubernetes.io/"

DEFAULT_INGRESS_ANNOTATIONS = {
    "ssl-redirect": "false",
    "force-ssl-redirect": "false",
    "proxy-body-size": "1024m",
    "proxy-connect-timeout": "600",
    "proxy-send-timeout": "600",
    "proxy-read-timeout": "600",
    "proxy-buffer-size": "8k",
    "proxy-buffers-number": "4",
    "websocket-services": WEB_NAME,
    "proxy-http-version": "1.1",
    "enable-cors": "true",
    "cors-allow-methods": "GET, POST, PUT, DELETE, OPTIONS, PATCH",
    "cors-allow-origin": "*",
    "cors-allow-credentials": "true",
    "cors-max-age": "3600",
    "limit-rps": "100",
    "limit-connections": "50",
    "affinity": "cookie",
    "affinity-mode": "persistent",
    "session-cookie-name": "route",
    "session-cookie-hash": "sha1",
}


@dataclass
class WebResources:
    deployment: dict
    service: dict
    nginx_config_map: Optional[dict] = None
    ingress: Optional[dict] = None


def web_labels(name: str) -> dict:
    labels = common_labels(name)
    labels["app"] = WEB_NAME
    labels["tier"] = "frontend"
    labels["app.kubernetes.io/component"] = "web"
    return labels


def _https_secret(spec: KubeNovaSpec) -> str:
    if not spec.web.nodeport_https_enabled:
        return ""
    return spec.web.nodePort.https.secretName


def build_web_deployment(spec: KubeNovaSpec, name: str, namespace: str) -> dict:
    web = spec.web
    reg = spec.image_registry()
    labels = web_labels(name)
    image = web.image or f"{reg.registry}/{reg.organization}/{WEB_NAME}:{reg.tag}"

    ports = [{"name": "http", "containerPort": 80, "protocol": "TCP"}]
    if web.nodeport_https_enabled:
        ports.append({"name": "https", "containerPort": 443, "protocol": "TCP"})

    # Two mounts share the nginx-config volume through subPath.
    mounts = [
        {"name": "cache", "mountPath": "/var/cache/nginx"},
        {"name": "logs", "mountPath": "/var/log/nginx"},
        {"name": "run", "mountPath": "/var/run"},
        {"name": "nginx-config", "mountPath": "/etc/nginx/nginx.conf", "subPath": "nginx.conf"},
        {"name": "nginx-config", "mountPath": "/etc/nginx/conf.d/default.conf",
         "subPath": "default.conf"},
    ]
    volumes = [
        {
            "name": "nginx-config",
            "configMap": {
                "name": web.customNginxConfigMap or NGINX_CONFIG_MAP_NAME,
                "items": [
                    {"key": "nginx.conf", "path": "nginx.conf"},
                    {"key": "default.conf", "path": "default.conf"},
                ],
            },
        },
        empty_dir("cache", "1Gi"),
        empty_dir("logs", "500Mi"),
        empty_dir("run", "10Mi"),
    ]
    tls_secret = _https_secret(spec)
    if tls_secret:
        mounts.append({"name": "tls-certs", "mountPath": "/etc/nginx/certs", "readOnly": True})
        volumes.append({"name": "tls-certs", "secret": {"secretName": tls_secret, "optional": False}})

    container = {
        "name": WEB_NAME,
        "image": image,
        "imagePullPolicy": reg.pullPolicy,
        "ports": ports,
        "env": [
            {"name": "TZ", "value": TIMEZONE},
            {"name": "NGINX_WORKER_PROCESSES", "value": "auto"},
            {"name": "NGINX_WORKER_CONNECTIONS", "value": "4096"},
        ],
        "volumeMounts": mounts,
        "livenessProbe": http_probe("/health", 80, 10, 10, 3),
        "readinessProbe": http_probe("/health", 80, 5, 5, 3),
        "startupProbe": http_probe("/health", 80, 0, 2, 30),
        "resources": web.resources or {k: dict(v) for k, v in DEFAULT_WEB_RESOURCES.items()},
    }

    pod_spec = {
        "affinity": anti_affinity(WEB_NAME, 100),
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
        "metadata": {"name": WEB_NAME, "namespace": namespace, "labels": labels},
        "spec": {
            "replicas": web.web_replicas(),
            "strategy": {
                "type": "RollingUpdate",
                "rollingUpdate": {"maxSurge": 1, "maxUnavailable": 0},
            },
            "selector": {"matchLabels": {"app": WEB_NAME}},
            "template": {"metadata": {"labels": dict(labels)}, "spec": pod_spec},
        },
    }


def build_web_service(spec: KubeNovaSpec, name: str, namespace: str) -> dict:
    web = spec.web
    http_port = {"name": "http", "port": 80, "targetPort": 80, "protocol": "TCP"}
    svc_spec = {"selector": {"app": WEB_NAME}, "ports": [http_port]}

    if web.exposeType == ExposeType.INGRESS.value:
        svc_spec["type"] = "ClusterIP"
    elif web.exposeType == ExposeType.NODEPORT.value:
        svc_spec["type"] = "NodePort"
        svc_spec["sessionAffinity"] = "ClientIP"
        svc_spec["sessionAffinityConfig"] = {"clientIP": {"timeoutSeconds": 10800}}
        svc_spec["externalTrafficPolicy"] = "Cluster"
        if web.nodePort is not None and web.nodePort.httpPort > 0:
            http_port["nodePort"] = web.nodePort.httpPort
        if web.nodeport_https_enabled:
            https_port = {"name": "https", "port": 443, "targetPort": 443, "protocol": "TCP"}
            if web.nodePort.https.port > 0:
                https_port["nodePort"] = web.nodePort.https.port
            svc_spec["ports"].append(https_port)

    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": {"name": WEB_NAME, "namespace": namespace, "labels": web_labels(name)},
        "spec": svc_spec,
    }


def ingress_annotations(spec: KubeNovaSpec) -> dict:
    """Controller defaults, TLS redirect when TLS is on, then user overrides."""
    annotations = {_INGRESS_PREFIX + k: v for k, v in DEFAULT_INGRESS_ANNOTATIONS.items()}
    ingress = spec.web.ingress
    if ingress is None:
        return annotations
    if ingress.tls_enabled:
        annotations[_INGRESS_PREFIX + "ssl-redirect"] = "true"
        annotations[_INGRESS_PREFIX + "force-ssl-redirect"] = "true"
    annotations.update(ingress.annotations)
    return annotations


def build_web_ingress(spec: KubeNovaSpec, name: str, namespace: str) -> Optional[dict]:
    ingress = spec.web.ingress
    if ingress is None:
        return None

    ing_spec = {
        "rules": [{
            "host": ingress.host,
            "http": {
                "paths": [{
                    "path": "/",
                    "pathType": "Prefix",
                    "backend": {"service": {"name": WEB_NAME, "port": {"number": 80}}},
                }],
            },
        }],
    }
    if ingress.className:
        ing_spec["ingressClassName"] = ingress.className
    if ingress.tls_enabled and ingress.tls.secretName:
        ing_spec["tls"] = [{"hosts": [ingress.host], "secretName": ingress.tls.secretName}]

    return {
        "apiVersion": "networking.k8s.io/v1",
        "kind": "Ingress",
        "metadata": {
            "name": WEB_NAME,
            "namespace": namespace,
            "labels": web_labels(name),
            "annotations": ingress_annotations(spec),
        },
        "spec": ing_spec,
    }


def build_web_resources(spec: KubeNovaSpec, name: str, namespace: str) -> WebResources:
    res = WebResources(
        deployment=build_web_deployment(spec, name, namespace),
        service=build_web_service(spec, name, namespace),
    )
    if not spec.web.customNginxConfigMap:
        res.nginx_config_map = build_nginx_config_map(spec, name, namespace)
    if spec.web.exposeType == ExposeType.INGRESS.value:
        res.ingress = build_web_ingress(spec, name, namespace)
    return res
