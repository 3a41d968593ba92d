"""Main entry point for the UserConfig operator.

The operator polls UserConfig entities and reconciles each one into its
namespace, quota, RBAC, limit range, network policy, secrets and
kubeconfig. Credentials for the API server come from the in-cluster
service account, or from the local kubeconfig when run outside a cluster.
"""

from __future__ import annotations

import asyncio
import json
import logging
import signal
import sys
from datetime import UTC, datetime

from kubernetes.config import ConfigException

from .cluster import ClusterClient, load_kube_config
from .config import ConfigurationError, OperatorConfig
from .reconciler import Reconciler

# LogRecord attributes that are not extra fields
_RESERVED_RECORD_KEYS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    }
)


class JsonFormatter(logging.Formatter):
    """Format logs as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        # Add extra fields from the record
        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_KEYS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(json_output: bool = True, level: int = logging.INFO) -> None:
    """Configure logging: JSON lines for production, plain text otherwise."""
    handler = logging.StreamHandler(sys.stdout)
    if json_output:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))

    root_logger = logging.getLogger()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    # Reduce noise from the Kubernetes client
    logging.getLogger("kubernetes").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


async def main() -> int:
    """Run the operator.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    try:
        config = OperatorConfig.from_env()
    except ConfigurationError as e:
        setup_logging()
        logging.getLogger(__name__).error("Configuration error", extra={"error": str(e)})
        return 1

    setup_logging(json_output=config.enable_audit_logging)
    logger = logging.getLogger(__name__)

    logger.info(
        "Starting UserConfig operator",
        extra={
            "crd_group": config.crd_group,
            "crd_version": config.crd_version,
            "interval_seconds": config.reconcile_interval_seconds,
        },
    )

    try:
        load_kube_config()
    except ConfigException as e:
        logger.error("Failed to load cluster credentials", extra={"error": str(e)})
        return 1

    cluster = ClusterClient(
        crd_group=config.crd_group,
        crd_version=config.crd_version,
        crd_plural=config.crd_plural,
    )
    reconciler = Reconciler(config, cluster)

    # Set up signal handlers for graceful shutdown
    loop = asyncio.get_running_loop()

    def signal_handler(sig: signal.Signals) -> None:
        logger.info("Received signal", extra={"signal": sig.name})
        reconciler.shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, lambda s=sig: signal_handler(s))

    try:
        await reconciler.run()
    except Exception as e:
        logger.exception("Unhandled exception", extra={"error": str(e)})
        return 1

    logger.info("Operator stopped")
    return 0


def run() -> None:
    """Entry point for the operator process."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
