"""Archival worker entry point: python -m realprice.main"""

import asyncio
import logging
import signal

from prometheus_client import start_http_server

from realprice.config import settings
from realprice.logging_config import setup_logging
from realprice.store.registry import create_document_store
from realprice.worker.scheduler import archival_sweep_job, setup_scheduler

setup_logging()
logger = logging.getLogger(__name__)


async def run_worker() -> None:
    """Run the archival sweep until SIGINT/SIGTERM."""
    logger.info("Starting RealPrice worker...")
    if settings.metrics_port:
        start_http_server(settings.metrics_port)
        logger.info(f"Metrics exposed on port {settings.metrics_port}")

    store = create_document_store()
    scheduler = setup_scheduler(store)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Not available on Windows event loops
            pass

    try:
        if settings.archive_sweep_enabled:
            await archival_sweep_job(store)
        scheduler.start()
        logger.info("Scheduler started")
        await stop.wait()
    finally:
        logger.info("Shutting down...")
        if scheduler.running:
            scheduler.shutdown(wait=False)
        await store.close()
        logger.info("Shutdown complete")


def main() -> None:
    try:
        asyncio.run(run_worker())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
