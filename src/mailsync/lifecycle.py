"""Cooperative shutdown coordination for the sync worker."""
import asyncio

import structlog

logger = structlog.get_logger()


class GracefulShutdown:
    """Coordinates a cooperative stop across the worker's tasks.

    A trigger comes from a signal handler or from a task that failed.
    The first trigger records why the worker is stopping and whether the
    process should exit with a failure status.

    Attributes:
        is_triggered: Whether shutdown has been triggered.
        reason: Why shutdown was triggered, if it was.
        failed: Whether the trigger represents a fault.
    """

    def __init__(self, timeout: float = 30.0) -> None:
        """Initialize shutdown coordinator.

        Args:
            timeout: Seconds in-flight work may take to finish once triggered.
        """
        self._event = asyncio.Event()
        self._timeout = timeout
        self._reason: str | None = None
        self._failed = False

    @property
    def is_triggered(self) -> bool:
        """True once a shutdown signal has been received."""
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        """Reason recorded by the first trigger."""
        return self._reason

    @property
    def failed(self) -> bool:
        """True if the first trigger was a fault rather than a request."""
        return self._failed

    @property
    def timeout(self) -> float:
        """Seconds allowed for in-flight work after the trigger."""
        return self._timeout

    def trigger(self, reason: str = "requested", *, failed: bool = False) -> None:
        """Signal all waiting tasks to begin shutdown.

        Idempotent: only the first call records a reason.

        Args:
            reason: Short description (signal name, fault type).
            failed: Mark the shutdown as caused by a fault.
        """
        if self._event.is_set():
            return
        self._reason = reason
        self._failed = failed
        logger.info("shutdown_triggered", reason=reason, failed=failed)
        self._event.set()

    async def wait_for_trigger(self) -> None:
        """Block until trigger() is called from another task or signal handler."""
        await self._event.wait()

    async def drain(self, task: "asyncio.Task[None]") -> bool:
        """Wait for a task to finish its in-flight work.

        The task is cancelled only when it overruns the shutdown timeout.

        Args:
            task: Task to wait for.

        Returns:
            True if the task finished within the timeout, False otherwise.
        """
        done, _ = await asyncio.wait({task}, timeout=self._timeout)
        if done:
            return True
        logger.warning("shutdown_timeout", timeout_seconds=self._timeout)
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        return False
