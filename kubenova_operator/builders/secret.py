"""
Credential Secret consumed by every backend through `envFrom`.

The ConfigMaps only carry `${VAR}` placeholders; the values all live here,
so a password rotation touches exactly one document.
"""
from ..models import KubeNovaSpec
from .common import SECRET_NAME, b64, common_labels

MINIO_CERT_DIR = "/app/etc/minio-certs"


def _bool(value: bool) -> str:
    return "true" if value else "false"


def build_secret_data(spec: KubeNovaSpec, node_ip: str = "", node_port: int = 0) -> dict:
    """Plain-text key/values before encoding."""
    db, cache, storage, svc = spec.database, spec.cache, spec.storage, spec.services
    use_ssl = storage.tls_enabled

    if storage.endpointProxy:
        endpoint_proxy = storage.endpointProxy
    elif spec.minio_proxy_enabled:
        endpoint_proxy = spec.minio_endpoint_for_backend(node_ip, node_port)
    else:
        endpoint_proxy = storage.endpoint_url()

    data = {
        "DEFAULT_TIMEOUT": str(svc.globalTimeout),
        "MYSQL_HOST": db.host,
        "MYSQL_PORT": str(db.port),
        "MYSQL_DATABASE": db.database,
        "MYSQL_USER": db.user,
        "MYSQL_PASSWORD": db.password,
        "MYSQL_MAX_OPEN_CONNS": str(db.max_open_conns()),
        "MYSQL_MAX_IDLE_CONNS": str(db.max_idle_conns()),
        "MYSQL_CONN_MAX_LIFETIME": db.conn_max_lifetime(),
        "REDIS_HOST": cache.host,
        "REDIS_PORT": str(cache.port),
        "REDIS_PASSWORD": cache.password,
        "REDIS_TYPE": cache.type,
        "REDIS_TLS": _bool(cache.tls),
        "REDIS_NONBLOCK": _bool(cache.nonBlock),
        "REDIS_PING_TIMEOUT": cache.pingTimeout,
        "MINIO_ENDPOINT": storage.endpoint,
        "MINIO_ACCESS_KEY": storage.accessKey,
        "MINIO_SECRET_KEY": storage.secretKey,
        "MINIO_BUCKET": storage.bucket,
        "MINIO_USE_SSL": _bool(use_ssl),
        "MINIO_CA_FILE": f"{MINIO_CERT_DIR}/public.crt" if use_ssl else "",
        "MINIO_CA_KEY": f"{MINIO_CERT_DIR}/private.key" if use_ssl else "",
        "MINIO_ENDPOINT_PROXY": endpoint_proxy,
        "JWT_ACCESS_SECRET": svc.jwt.accessSecret,
        "JWT_ACCESS_EXPIRE": str(svc.jwt.accessExpire),
        "JWT_REFRESH_SECRET": svc.jwt.refreshSecret,
        "JWT_REFRESH_EXPIRE": str(svc.jwt.refreshExpire),
        "JWT_REFRESH_AFTER": str(svc.jwt.refreshAfter),
        "ALERTMANAGER_WEBHOOK_TOKEN": svc.webhookToken,
        "INJECT_IMAGE": svc.injectImage,
    }

    if spec.telemetry_enabled:
        data["JAEGER_ENDPOINT"] = spec.telemetry.jaegerEndpoint
        data["TELEMETRY_SAMPLER"] = spec.telemetry.sampler
        data["TELEMETRY_BATCHER"] = spec.telemetry.batcher
    else:
        data["JAEGER_ENDPOINT"] = ""
        data["TELEMETRY_SAMPLER"] = "0"
        data["TELEMETRY_BATCHER"] = "jaeger"

    if svc.portal is not None:
        data["PORTAL_NAME"] = svc.portal.name
        data["PORTAL_URL"] = svc.portal.url
        data["DEMO_MODE"] = _bool(svc.portal.demoMode)
    else:
        data["PORTAL_NAME"] = "Kube-Nova Cloud Native Platform"
        data["PORTAL_URL"] = ""
        data["DEMO_MODE"] = "false"

    return data


def build_secret(spec: KubeNovaSpec, name: str, namespace: str,
                 node_ip: str = "", node_port: int = 0) -> dict:
    plain = build_secret_data(spec, node_ip, node_port)
    return {
        "apiVersion": "v1",
        "kind": "Secret",
        "metadata": {
            "name": SECRET_NAME,
            "namespace": namespace,
            "labels": common_labels(name),
        },
        "type": "Opaque",
        "data": {k: b64(v) for k, v in plain.items()},
    }
