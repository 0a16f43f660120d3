"""
Configuration module. All settings from env vars with sensible defaults.
Follows 12-factor app methodology.
"""
import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    # Kubernetes
    KUBECONFIG: str = os.environ.get("KUBECONFIG", "")
    IN_CLUSTER: bool = os.environ.get("IN_CLUSTER", "false").lower() == "true"
    WATCH_NAMESPACE: str = os.environ.get("WATCH_NAMESPACE", "")

    # CRD
    CRD_GROUP: str = os.environ.get("CRD_GROUP", "apps.ikubeops.com")
    CRD_VERSION: str = os.environ.get("CRD_VERSION", "v1")
    CRD_PLURAL: str = os.environ.get("CRD_PLURAL", "kubenova")
    CRD_KIND: str = "KubeNova"
    FINALIZER: str = os.environ.get("FINALIZER", "kubenova.io/finalizer")

    # Requeue timing (seconds)
    IDLE_REQUEUE_SECONDS: float = float(os.environ.get("IDLE_REQUEUE_SECONDS", "300"))
    SHORT_REQUEUE_SECONDS: float = float(os.environ.get("SHORT_REQUEUE_SECONDS", "30"))
    ERROR_REQUEUE_SECONDS: float = float(os.environ.get("ERROR_REQUEUE_SECONDS", "60"))
    RESYNC_INTERVAL_SECONDS: float = float(os.environ.get("RESYNC_INTERVAL_SECONDS", "300"))

    # Status writes
    STATUS_WRITE_ATTEMPTS: int = int(os.environ.get("STATUS_WRITE_ATTEMPTS", "3"))
    STATUS_RETRY_BACKOFF_SECONDS: float = float(os.environ.get("STATUS_RETRY_BACKOFF_SECONDS", "0.1"))

    # Runtime
    MAX_WORKERS: int = int(os.environ.get("MAX_WORKERS", "4"))
    METRICS_PORT: int = int(os.environ.get("METRICS_PORT", "8080"))
    LIVENESS_ENDPOINT: str = os.environ.get("LIVENESS_ENDPOINT", "http://0.0.0.0:8081/healthz")
    LOG_LEVEL: str = os.environ.get("LOG_LEVEL", "INFO")

    # Event stream (optional)
    REDIS_URL: str = os.environ.get("REDIS_URL", "")

    @property
    def api_version(self) -> str:
        return f"{self.CRD_GROUP}/{self.CRD_VERSION}"


settings = Settings()
