"""
Well-formedness checks for a parsed KubeNova spec.

`collect_violations` walks every section and returns all problems at once so
the user can fix the resource in one edit; `validate_kubenova` raises them as
a single `ValidationFailedError`.
"""
from typing import List

from .errors import ValidationFailedError
from .models import (
    CacheConfig,
    DatabaseConfig,
    ExposeType,
    JWTConfig,
    KubeNovaSpec,
    StorageConfig,
    TelemetryConfig,
    WebConfig,
)

MIN_JWT_SECRET_LENGTH = 32
MAX_SECRET_NAME_LENGTH = 253
CACHE_TYPES = ("node", "cluster")


def _valid_port(port: int) -> bool:
    return 0 < port <= 65535


def validate_tls_secret_name(secret_name: str) -> List[str]:
    if not secret_name:
        return ["TLS secret name must not be empty"]
    return []


def validate_secret_name(secret_name: str) -> List[str]:
    if not secret_name:
        return ["secret name must not be empty"]
    if len(secret_name) > MAX_SECRET_NAME_LENGTH:
        return [f"secret name too long ({len(secret_name)} > {MAX_SECRET_NAME_LENGTH})"]
    if " " in secret_name:
        return ["secret name must not contain spaces"]
    return []


def validate_telemetry(telemetry: TelemetryConfig) -> List[str]:
    if telemetry.enabled and not telemetry.jaegerEndpoint:
        return ["telemetry: jaegerEndpoint is required when telemetry is enabled"]
    return []


def _database(db: DatabaseConfig) -> List[str]:
    errors = []
    for field in ("host", "database", "user", "password"):
        if not getattr(db, field):
            errors.append(f"database: {field} is required")
    if not _valid_port(db.port):
        errors.append(f"database: invalid port {db.port}")
    return errors


def _cache(cache: CacheConfig) -> List[str]:
    errors = []
    if not cache.host:
        errors.append("cache: host is required")
    if not _valid_port(cache.port):
        errors.append(f"cache: invalid port {cache.port}")
    if cache.type not in CACHE_TYPES:
        errors.append(f"cache: type must be node or cluster, got {cache.type!r}")
    return errors


def _storage(storage: StorageConfig) -> List[str]:
    errors = []
    for field in ("endpoint", "accessKey", "secretKey", "bucket"):
        if not getattr(storage, field):
            errors.append(f"storage: {field} is required")
    if storage.tls_enabled:
        errors.extend(f"storage: {e}" for e in validate_secret_name(storage.tls.secretName))
    return errors


def _jwt(jwt: JWTConfig) -> List[str]:
    errors = []
    for field in ("accessSecret", "refreshSecret"):
        value = getattr(jwt, field)
        if not value:
            errors.append(f"jwt: {field} is required")
        elif len(value) < MIN_JWT_SECRET_LENGTH:
            errors.append(
                f"jwt: {field} must be at least {MIN_JWT_SECRET_LENGTH} characters (got {len(value)})"
            )
    return errors


def _web(web: WebConfig) -> List[str]:
    if web.exposeType == ExposeType.INGRESS.value:
        if web.ingress is None:
            return ["web: ingress settings are required when exposeType is ingress"]
        errors = []
        if not web.ingress.host:
            errors.append("web: ingress host is required")
        if web.ingress.tls_enabled:
            errors.extend(f"web: ingress {e}" for e in validate_tls_secret_name(web.ingress.tls.secretName))
        return errors

    if web.exposeType == ExposeType.NODEPORT.value:
        if web.nodeport_https_enabled:
            return [f"web: nodePort https {e}"
                    for e in validate_tls_secret_name(web.nodePort.https.secretName)]
        return []

    return [f"web: unsupported exposeType {web.exposeType!r} (expected ingress or nodeport)"]


def collect_violations(spec: KubeNovaSpec) -> List[str]:
    violations = []
    violations.extend(_database(spec.database))
    violations.extend(_cache(spec.cache))
    violations.extend(_storage(spec.storage))
    if spec.telemetry is not None:
        violations.extend(validate_telemetry(spec.telemetry))
    violations.extend(_jwt(spec.services.jwt))
    violations.extend(_web(spec.web))
    return violations


def validate_kubenova(spec: KubeNovaSpec) -> None:
    """Raise ValidationFailedError listing every violation; return None when clean."""
    violations = collect_violations(spec)
    if violations:
        raise ValidationFailedError(violations)
