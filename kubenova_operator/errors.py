"""
Error taxonomy for a reconciliation pass.

Store errors are not wrapped here: they stay `kubernetes.client.ApiException`
and are classified with `is_not_found` / `is_conflict` at the call site.
"""
from kubernetes.client import ApiException


class KubeNovaError(Exception):
    """Base class for errors raised by the reconciliation engine."""


class ValidationFailedError(KubeNovaError):
    """The KubeNova spec is malformed; needs a fix to the resource itself."""

    def __init__(self, violations: list[str]):
        self.violations = list(violations)
        super().__init__("; ".join(self.violations))


class DependencyMissingError(KubeNovaError):
    """A prerequisite the engine does not create (e.g. the namespace) is absent."""


class StatusUpdateError(KubeNovaError):
    """Status could not be persisted after the allowed attempts."""


class StageError(KubeNovaError):
    """A pipeline stage failed; wraps the underlying cause with the stage name."""

    def __init__(self, stage: str, cause: BaseException):
        self.stage = stage
        self.cause = cause
        super().__init__(f"{stage}: {cause}")


def is_not_found(exc: BaseException) -> bool:
    return isinstance(exc, ApiException) and exc.status == 404


def is_conflict(exc: BaseException) -> bool:
    return isinstance(exc, ApiException) and exc.status == 409
