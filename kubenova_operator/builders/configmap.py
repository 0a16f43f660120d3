"""
Backend ConfigMaps (`{component}-config`, key `config.yaml`).

Values are `${VAR}` placeholders expanded by the services from the
credential Secret at start-up; the documents themselves hold no secrets.
"""
import yaml

from .common import (
    BACKEND_BY_NAME,
    BACKEND_COMPONENTS,
    METRICS_PORT,
    BackendComponent,
    common_labels,
)

_CACHE_SECTION = {
    "Host": "${REDIS_HOST}:${REDIS_PORT}",
    "Type": "${REDIS_TYPE}",
    "Pass": "${REDIS_PASSWORD}",
    "Tls": "${REDIS_TLS}",
    "NonBlock": "${REDIS_NONBLOCK}",
    "PingTimeout": "${REDIS_PING_TIMEOUT}",
}

_MYSQL_SECTION = {
    "DataSource": (
        "${MYSQL_USER}:${MYSQL_PASSWORD}@tcp(${MYSQL_HOST}:${MYSQL_PORT})/${MYSQL_DATABASE}"
        "?charset=utf8mb4&parseTime=True&loc=Local&timeout=10s"
    ),
    "MaxOpenConns": "${MYSQL_MAX_OPEN_CONNS}",
    "MaxIdleConns": "${MYSQL_MAX_IDLE_CONNS}",
    "ConnMaxLifetime": "${MYSQL_CONN_MAX_LIFETIME}",
}

_STORAGE_SECTION = {
    "Provider": "minio",
    "Endpoints": ["${MINIO_ENDPOINT}"],
    "EndpointProxy": "${MINIO_ENDPOINT_PROXY}",
    "AccessKey": "${MINIO_ACCESS_KEY}",
    "AccessSecret": "${MINIO_SECRET_KEY}",
    "BucketName": "${MINIO_BUCKET}",
    "UseTLS": "${MINIO_USE_SSL}",
    "CAFile": "${MINIO_CA_FILE}",
    "CAKey": "${MINIO_CA_KEY}",
}

_AUTH_SECTION = {
    "AccessSecret": "${JWT_ACCESS_SECRET}",
    "AccessExpire": "${JWT_ACCESS_EXPIRE}",
    "RefreshSecret": "${JWT_REFRESH_SECRET}",
    "RefreshExpire": "${JWT_REFRESH_EXPIRE}",
    "RefreshAfter": "${JWT_REFRESH_AFTER}",
}


def _rpc_section_name(dep: str) -> str:
    # "manager-rpc" -> "ManagerRpc"
    return "".join(part.capitalize() for part in dep.split("-"))


def service_config(component: BackendComponent) -> dict:
    cfg: dict = {}
    if component.kind == "api":
        cfg["Name"] = component.name
        cfg["Host"] = "0.0.0.0"
        cfg["Port"] = component.port
    else:
        cfg["Name"] = component.name.replace("-", ".")
        cfg["ListenOn"] = f"0.0.0.0:{component.port}"
    cfg["Mode"] = "pro"
    cfg["Timeout"] = "${DEFAULT_TIMEOUT}"
    if component.kind == "api":
        cfg["MaxBytes"] = 5048576000 if component.needs_cache_dir else 10485760
    cfg.update(component.extra)

    cfg["DevServer"] = {
        "Enabled": True,
        "Port": METRICS_PORT,
        "HealthPath": "/healthz",
        "MetricsPath": "/metrics",
        "EnableMetrics": True,
    }
    cfg["Telemetry"] = {
        "Name": component.name,
        "Endpoint": "${JAEGER_ENDPOINT}",
        "Sampler": "${TELEMETRY_SAMPLER}",
        "Batcher": "${TELEMETRY_BATCHER}",
    }
    cfg["Log"] = {
        "ServiceName": component.name,
        "Mode": "console",
        "Encoding": "plain",
        "TimeFormat": "2006-01-02 15:04:05",
        "Level": "info",
        "KeepDays": 7,
        "Rotation": "daily",
    }
    cfg["Cache"] = dict(_CACHE_SECTION)

    if component.needs_mysql:
        cfg["Mysql"] = dict(_MYSQL_SECTION)
        cfg["DBCache"] = [dict(_CACHE_SECTION)]
    if component.name == "portal-rpc":
        cfg["StorageConf"] = dict(_STORAGE_SECTION)
        cfg["AuthConfig"] = dict(_AUTH_SECTION)

    for dep in component.rpc_deps:
        cfg[_rpc_section_name(dep)] = {
            "Target": f"k8s://${{POD_NAMESPACE}}/{dep}:{BACKEND_BY_NAME[dep].port}",
            "Optional": True,
            "NonBlock": True,
            "Timeout": "${DEFAULT_TIMEOUT}",
        }
    return cfg


def build_config_map(component: BackendComponent, name: str, namespace: str) -> dict:
    text = yaml.safe_dump(service_config(component), sort_keys=False, allow_unicode=True)
    return {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {
            "name": component.config_map_name,
            "namespace": namespace,
            "labels": common_labels(name),
        },
        "data": {"config.yaml": text},
    }


def build_config_maps(name: str, namespace: str) -> list:
    """One ConfigMap per backend, enabled or not, so toggling a service is cheap."""
    return [build_config_map(c, name, namespace) for c in BACKEND_COMPONENTS]
