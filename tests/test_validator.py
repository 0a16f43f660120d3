import pytest

from kube_mock import nodeport_web, valid_spec
from kubenova_operator.errors import ValidationFailedError
from kubenova_operator.models import KubeNovaSpec, TelemetryConfig
from kubenova_operator.validator import (
    collect_violations,
    validate_kubenova,
    validate_secret_name,
    validate_telemetry,
)


def _violations(**overrides) -> list:
    return collect_violations(KubeNovaSpec.model_validate(valid_spec(**overrides)))


def test_valid_spec_passes():
    validate_kubenova(KubeNovaSpec.model_validate(valid_spec()))


def test_all_violations_are_reported_together():
    spec = KubeNovaSpec.model_validate(valid_spec(
        database={"host": "", "port": 70000, "database": "d", "user": "u", "password": "p"},
        cache={"host": "redis", "type": "sentinel"},
    ))
    with pytest.raises(ValidationFailedError) as excinfo:
        validate_kubenova(spec)

    assert excinfo.value.violations == [
        "database: host is required",
        "database: invalid port 70000",
        "cache: type must be node or cluster, got 'sentinel'",
    ]


def test_missing_storage_fields():
    violations = _violations(storage={"endpoint": "minio:9000"})
    assert violations == [
        "storage: accessKey is required",
        "storage: secretKey is required",
        "storage: bucket is required",
    ]


def test_storage_tls_secret_name_is_checked():
    storage = {**valid_spec()["storage"], "tls": {"enabled": True, "secretName": "has space"}}
    assert _violations(storage=storage) == ["storage: secret name must not contain spaces"]


def test_short_jwt_secret():
    services = valid_spec()["services"]
    services["jwt"]["accessSecret"] = "short"
    assert _violations(services=services) == [
        "jwt: accessSecret must be at least 32 characters (got 5)",
    ]


def test_unknown_expose_type():
    assert _violations(web={"exposeType": "loadbalancer"}) == [
        "web: unsupported exposeType 'loadbalancer' (expected ingress or nodeport)",
    ]


def test_ingress_requires_host_and_tls_secret():
    web = {"exposeType": "ingress", "ingress": {"host": "", "tls": {"enabled": True}}}
    assert _violations(web=web) == [
        "web: ingress host is required",
        "web: ingress TLS secret name must not be empty",
    ]


def test_ingress_block_required():
    assert _violations(web={"exposeType": "ingress"}) == [
        "web: ingress settings are required when exposeType is ingress",
    ]


def test_nodeport_https_needs_secret():
    assert _violations(web=nodeport_web(https={"enabled": True})) == [
        "web: nodePort https TLS secret name must not be empty",
    ]
    assert _violations(web=nodeport_web()) == []


def test_telemetry_needs_endpoint_when_enabled():
    assert validate_telemetry(TelemetryConfig(enabled=True)) != []
    assert validate_telemetry(TelemetryConfig(enabled=False)) == []


@pytest.mark.parametrize("name, ok", [
    ("tls-secret", True),
    ("", False),
    ("x" * 254, False),
    ("bad name", False),
])
def test_secret_name_format(name, ok):
    assert (validate_secret_name(name) == []) is ok
