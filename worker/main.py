# ============================================================================
# WORKER MAIN ENTRY POINT
# ============================================================================
# EPOCH: 1 - ELASTIC FAN-OUT
# STATUS: Core - Worker process entry point
# PURPOSE: Start an analysis worker
# CREATED: 19 OCT 2026
# ============================================================================
"""
Worker Main Entry Point

Starts an analysis worker process that:
1. Loads analyzer modules
2. Connects to Service Bus and Blob Storage
3. Processes tasks until shutdown

Usage:
    python -m worker.main

Environment Variables:
    WORKER_ID: Unique worker identifier (default: worker-{hostname})
    SERVICE_BUS_CONNECTION_STRING / SERVICE_BUS_NAMESPACE: Service Bus
    STORAGE_ACCOUNT / STORAGE_CONTAINER: Blob Storage
    ANALYZER_MODULES: Comma-separated analyzer modules (default: handlers.text)
    WORKER_HEALTH_PORT: Health server port (default: 8081)
    LOG_LEVEL / LOG_FORMAT: Logging
"""

import asyncio
import os
import signal
import sys
from typing import Optional

import httpx
from aiohttp import web

from __version__ import __version__, BUILD_DATE
from core.config import get_defaults
from core.logging import ComponentType, configure_logging, get_logger
from handlers import list_analyzers, load_analyzer_modules
from infrastructure.service_bus import ServiceBusConfig, ServiceBusQueueService
from infrastructure.storage import BlobRepository
from messaging import MessagePublisher
from worker.consumer import TaskConsumer
from worker.contracts import WorkerConfig
from worker.executor import TaskExecutor

logger = get_logger(__name__, ComponentType.WORKER)

# Worker state for health checks
_worker_status = "starting"
_worker_config: Optional[WorkerConfig] = None
_consumer: Optional[TaskConsumer] = None


# ============================================================================
# HEALTH SERVER
# ============================================================================

async def health_handler(request):
    """Report version, identity and consumer counters."""
    healthy = not _worker_status.startswith("error")
    response_data = {
        "status": "healthy" if healthy else "unhealthy",
        "worker_status": _worker_status,
        "version": __version__,
        "build_date": BUILD_DATE,
        "worker_id": _worker_config.worker_id if _worker_config else "unknown",
        "queue": _worker_config.task_queue if _worker_config else "unknown",
        "consuming": _consumer.running if _consumer else False,
    }

    if _consumer:
        response_data["stats"] = {
            "messages_received": _consumer.messages_received,
            "tasks_completed": _consumer.tasks_completed,
            "tasks_failed": _consumer.tasks_failed,
        }

    return web.json_response(response_data, status=200 if healthy else 503)


async def start_health_server(port: int):
    """Start minimal HTTP server for health probes."""
    app = web.Application()
    app.router.add_get("/", health_handler)
    app.router.add_get("/health", health_handler)
    app.router.add_get("/livez", health_handler)
    app.router.add_get("/readyz", health_handler)

    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "0.0.0.0", port)
    await site.start()
    logger.info(f"Health server started on port {port}")
    return runner


# ============================================================================
# MAIN
# ============================================================================

async def main() -> int:
    """Main entry point. Returns the process exit code."""
    global _worker_status, _worker_config, _consumer

    defaults = get_defaults()
    config = WorkerConfig.from_env(defaults)
    _worker_config = config

    logger.info("=" * 60)
    logger.info(f"Analysis Worker Starting v{__version__} ({config.worker_id})")
    logger.info("=" * 60)

    try:
        load_analyzer_modules(config.analyzer_modules)
    except ImportError as e:
        logger.error(f"Failed to load analyzer modules: {e}")
        return 1
    logger.info(f"Registered analyzers: {[a['kind'] for a in list_analyzers()]}")

    health_runner = await start_health_server(config.health_port)

    queues = ServiceBusQueueService(ServiceBusConfig.from_env())
    blobs = BlobRepository(defaults.storage)
    publisher = MessagePublisher(queues, defaults.queues)

    exit_code = 0
    async with httpx.AsyncClient() as http:
        executor = TaskExecutor(
            blobs,
            http,
            worker_id=config.worker_id,
            storage=defaults.storage,
            fetch_timeout_seconds=config.fetch_timeout_seconds,
            max_resource_bytes=config.max_resource_bytes,
        )
        _consumer = TaskConsumer(config, queues, executor, publisher)

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, _consumer.stop)
            except NotImplementedError:
                # Windows doesn't support add_signal_handler
                pass

        _worker_status = "running"
        try:
            await _consumer.run()
        except Exception as e:
            logger.exception(f"Worker failed: {e}")
            _worker_status = f"error: {str(e)[:100]}"
            exit_code = 1
        finally:
            await queues.close()
            await blobs.close()
            await health_runner.cleanup()

    logger.info("Analysis Worker stopped")
    return exit_code


def run() -> None:
    """Synchronous entry point."""
    configure_logging(
        level=os.environ.get("LOG_LEVEL", "INFO"),
        json_output=os.environ.get("LOG_FORMAT", "").lower() == "json",
    )
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
