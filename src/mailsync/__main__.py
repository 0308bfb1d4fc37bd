"""Entry point for the sync worker."""

import asyncio
import signal
import sys

import structlog
import uvicorn
from pydantic import ValidationError

from mailsync.app import create_app
from mailsync.config import Settings
from mailsync.exceptions import ConnectionFault
from mailsync.lifecycle import GracefulShutdown
from mailsync.logging import configure_logging
from mailsync.search.index import ElasticIndex
from mailsync.source.gateway import MongoSource
from mailsync.sync.engine import SyncEngine

logger = structlog.get_logger()


def _on_engine_done(task: "asyncio.Task[None]", shutdown: GracefulShutdown) -> None:
    """Turn the end of the engine task into a shutdown trigger.

    Args:
        task: Finished engine task.
        shutdown: Shutdown coordinator instance.
    """
    if task.cancelled():
        return
    error = task.exception()
    if error is None:
        shutdown.trigger("engine_stopped")
        return
    logger.error("sync_engine_failed", error=str(error), error_type=type(error).__name__)
    shutdown.trigger(type(error).__name__, failed=True)


async def _close_gateways(source: MongoSource, index: ElasticIndex) -> None:
    """Release both backend connections, logging (not raising) failures.

    Args:
        source: Source gateway to close.
        index: Index gateway to close.
    """
    for name, gateway in (("mongodb", source), ("elasticsearch", index)):
        try:
            await gateway.close()
        except Exception as e:
            logger.error("gateway_close_failed", gateway=name, error=str(e))
    logger.info("cleanup_completed")


async def run_worker(settings: Settings) -> int:
    """Connect both backends, run the sync engine, and shut down on signal.

    Backend connection failures abort startup. SIGTERM/SIGINT stop the
    subscription, let the in-flight event finish, and close both
    connections. An engine fault ends the worker with a failure status.

    Args:
        settings: Worker configuration.

    Returns:
        Process exit code.
    """
    source = MongoSource(
        settings.mongodb_uri,
        settings.mongodb_database,
        settings.mongodb_collection,
        batch_size=settings.batch_size,
        max_resume_attempts=settings.max_resume_attempts,
        resume_backoff=settings.resume_backoff,
    )
    index = ElasticIndex(
        settings.elasticsearch_url,
        settings.elasticsearch_index,
        request_timeout=settings.request_timeout,
    )
    engine = SyncEngine(source, index, progress_interval=settings.progress_interval)
    shutdown = GracefulShutdown(timeout=settings.shutdown_timeout)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, shutdown.trigger, sig.name)

    try:
        await source.connect()
        await index.connect()
    except ConnectionFault as e:
        logger.error("sync_worker_start_failed", error=str(e))
        await _close_gateways(source, index)
        return 1

    engine_task = asyncio.create_task(engine.run(), name="sync-engine")
    engine_task.add_done_callback(lambda task: _on_engine_done(task, shutdown))

    server: uvicorn.Server | None = None
    server_task: asyncio.Task[None] | None = None
    if settings.api_enabled:
        app = create_app(settings, engine=engine, index=index, source=source)
        server = uvicorn.Server(
            uvicorn.Config(
                app,
                host=settings.host,
                port=settings.port,
                log_level="warning",
                access_log=False,
            )
        )
        server_task = asyncio.create_task(server.serve(), name="search-api")
        server_task.add_done_callback(lambda _: shutdown.trigger("api_server_exited"))

    logger.info("sync_worker_running", api_enabled=settings.api_enabled)
    await shutdown.wait_for_trigger()
    logger.info("sync_worker_shutting_down", reason=shutdown.reason)

    await engine.stop()
    await shutdown.drain(engine_task)

    if server is not None and server_task is not None:
        server.should_exit = True
        await asyncio.gather(server_task, return_exceptions=True)

    await _close_gateways(source, index)
    return 1 if shutdown.failed else 0


def main() -> None:
    """Entry point for python -m mailsync."""
    try:
        settings = Settings()
    except ValidationError as e:
        configure_logging()
        logger.error(
            "sync_worker_config_invalid",
            errors=[
                f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}"
                for err in e.errors()
            ],
        )
        sys.exit(1)

    configure_logging(debug=settings.debug)
    logger.info("sync_worker_starting")

    try:
        exit_code = asyncio.run(run_worker(settings))
    except KeyboardInterrupt:
        exit_code = 0
    except Exception as e:
        logger.exception("sync_worker_crashed", error=str(e))
        exit_code = 1

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
