"""Desired-state builders: pure functions from a parsed spec to API documents."""
from .common import (
    BACKEND_COMPONENTS,
    SECRET_NAME,
    SERVICE_ACCOUNT_NAME,
    WEB_NAME,
    config_checksum,
)
from .configmap import build_config_maps
from .rbac import build_cluster_role_binding, build_service_account, cluster_role_binding_name
from .secret import build_secret
from .services import ServiceResources, build_backend_services, enabled_components
from .web import WebResources, build_web_resources

__all__ = [
    "BACKEND_COMPONENTS",
    "SECRET_NAME",
    "SERVICE_ACCOUNT_NAME",
    "WEB_NAME",
    "ServiceResources",
    "WebResources",
    "build_backend_services",
    "build_cluster_role_binding",
    "build_config_maps",
    "build_secret",
    "build_service_account",
    "build_web_resources",
    "cluster_role_binding_name",
    "config_checksum",
    "enabled_components",
]
