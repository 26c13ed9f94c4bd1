"""Main entry point for the Workshop GitOps Operator.

Runs reconciliation passes forever: the spec is re-read from disk on every
pass (it is synced into SPECS_DIR by a git-sync sidecar), the GitOps pass and
the identity pass run in a worker thread, and the loop sleeps for the requeue
delay or the reconcile interval depending on how the pass ended.
"""

from __future__ import annotations

import asyncio
import json
import logging
import signal
import sys
from datetime import UTC, datetime, timedelta

from .config import Config, ConfigurationError
from .kube import KubernetesStore
from .reconciler import ReconcileResult, WorkshopReconciler
from .spec_loader import SpecLoadError, load_spec

logger = logging.getLogger(__name__)

# Circuit breaker constants
MAX_CONSECUTIVE_FAILURES = 5
CIRCUIT_BREAKER_RESET_SECONDS = 300

_RESERVED_LOG_ATTRS = frozenset(
    (
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
    )
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

        # Fields passed through extra={...}
        for key, value in record.__dict__.items():
            if key not in _RESERVED_LOG_ATTRS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(level: int = logging.INFO) -> None:
    """Configure structured logging with JSON output for production."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())

    root_logger = logging.getLogger()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    # Reduce noise from the Kubernetes client
    logging.getLogger("kubernetes").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


class OperatorLoop:
    """Runs reconciliation passes sequentially until shutdown.

    Passes never overlap: the next one starts only after the previous one has
    returned. After MAX_CONSECUTIVE_FAILURES failed passes in a row the
    circuit opens and no pass runs for CIRCUIT_BREAKER_RESET_SECONDS.
    """

    def __init__(self, config: Config, reconciler: WorkshopReconciler) -> None:
        self._config = config
        self._reconciler = reconciler
        self._shutdown_event = asyncio.Event()

        # Circuit breaker state
        self._consecutive_failures = 0
        self._circuit_open_until: datetime | None = None

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    @property
    def circuit_open(self) -> bool:
        return self._circuit_open_until is not None

    def reconcile_once(self) -> ReconcileResult:
        """Run one full pass synchronously.

        The identity pass does not depend on the GitOps control plane and
        runs even when the GitOps pass is waiting. The first failed result
        wins, then the first requeued one.
        """
        try:
            spec = load_spec(self._config.spec_path)
        except SpecLoadError as e:
            logger.error("Spec loading failed", extra={"error": str(e)})
            return ReconcileResult(
                operation="load_spec",
                end_time=datetime.now(UTC),
                requeue=True,
                error=e,
                reason="spec invalid",
            )

        results = [self._reconciler.reconcile_gitops_stack(spec)]
        if self._config.manage_identities:
            results.append(self._reconciler.reconcile_tenant_identities(spec))

        for result in results:
            if result.error is not None:
                return result
        for result in results:
            if result.requeue:
                return result
        return results[-1]

    async def run(self) -> None:
        """Run the reconciliation loop until shutdown."""
        logger.info(
            "Starting reconciler",
            extra={
                "workshop": self._config.workshop_name,
                "interval_seconds": self._config.reconcile_interval_seconds,
                "requeue_delay_seconds": self._config.requeue_delay_seconds,
                "manage_identities": self._config.manage_identities,
            },
        )

        while not self._shutdown_event.is_set():
            if self._circuit_open_until is not None:
                now = datetime.now(UTC)
                if now < self._circuit_open_until:
                    remaining = (self._circuit_open_until - now).total_seconds()
                    logger.warning(
                        "Circuit breaker open, skipping reconciliation",
                        extra={
                            "remaining_seconds": remaining,
                            "consecutive_failures": self._consecutive_failures,
                        },
                    )
                    await self._wait(remaining)
                    continue

                logger.info("Circuit breaker reset, resuming reconciliation")
                self._circuit_open_until = None
                self._consecutive_failures = 0

            result = await asyncio.to_thread(self.reconcile_once)
            self._record(result)

            delay = (
                self._config.requeue_delay_seconds
                if result.should_requeue
                else self._config.reconcile_interval_seconds
            )
            await self._wait(delay)

        logger.info("Reconciler shutdown complete", extra={"workshop": self._config.workshop_name})

    def _record(self, result: ReconcileResult) -> None:
        if result.error is None:
            self._consecutive_failures = 0
            return

        self._consecutive_failures += 1
        if self._consecutive_failures >= MAX_CONSECUTIVE_FAILURES:
            self._circuit_open_until = datetime.now(UTC) + timedelta(
                seconds=CIRCUIT_BREAKER_RESET_SECONDS
            )
            logger.error(
                "Circuit breaker opened after consecutive failures",
                extra={
                    "consecutive_failures": self._consecutive_failures,
                    "reset_seconds": CIRCUIT_BREAKER_RESET_SECONDS,
                },
            )

    async def _wait(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._shutdown_event.wait(), timeout=seconds)
        except TimeoutError:
            pass

    def shutdown(self) -> None:
        """Signal the loop to stop after the current pass."""
        logger.info("Shutdown requested")
        self._shutdown_event.set()


async def main() -> int:
    """Run the operator.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    setup_logging()

    try:
        config = Config.from_env()
    except ConfigurationError as e:
        logger.error("Configuration error", extra={"error": str(e)})
        return 1

    logger.info(
        "Starting Workshop GitOps Operator",
        extra={
            "workshop": config.workshop_name,
            "argocd_namespace": config.argocd_namespace,
            "operator_namespace": config.operator_namespace,
        },
    )

    try:
        store = KubernetesStore()
    except Exception as e:
        logger.error(
            "Failed to initialize Kubernetes client",
            extra={"error": str(e), "error_type": type(e).__name__},
        )
        return 1

    operator = OperatorLoop(config, WorkshopReconciler.from_config(config, store))

    loop = asyncio.get_running_loop()

    def signal_handler(sig: signal.Signals) -> None:
        logger.info("Received signal", extra={"signal": sig.name})
        operator.shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, lambda s=sig: signal_handler(s))

    try:
        await operator.run()
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
