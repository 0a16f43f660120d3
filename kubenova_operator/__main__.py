"""
Operator entrypoint: `python -m kubenova_operator`.

Equivalent to `kopf run -m kubenova_operator.handlers` with the namespace
scope and liveness endpoint taken from the environment.
"""
import logging

import kopf

from .config import settings

# --- Logging ---
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("kubenova")


def main():
    from . import handlers  # noqa: F401  registers the kopf handlers

    if settings.WATCH_NAMESPACE:
        scope = {"namespaces": [settings.WATCH_NAMESPACE]}
    else:
        scope = {"clusterwide": True}
    logger.info(f"Starting KubeNova operator ({settings.api_version}, scope={scope})")
    kopf.run(liveness_endpoint=settings.LIVENESS_ENDPOINT, **scope)


if __name__ == "__main__":
    main()
