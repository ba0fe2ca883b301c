# ============================================================================
# ANALYSIS COORDINATOR - MAIN APPLICATION
# ============================================================================
# EPOCH: 1 - ELASTIC FAN-OUT
# STATUS: Core - Coordinator process entry point
# PURPOSE: Wire adapters, serve health probes, run the coordinator
# CREATED: 19 OCT 2026
# ============================================================================
"""
Analysis Coordinator Main Application

Runs on the Manager instance:
1. Connects to Service Bus, Blob Storage and the VM fleet
2. Serves health probes (aiohttp)
3. Runs the coordinator until the termination sentinel has been processed
   and the deployment torn down

Usage:
    python main.py

Environment Variables:
    SERVICE_BUS_CONNECTION_STRING / SERVICE_BUS_NAMESPACE: Service Bus
    STORAGE_ACCOUNT / STORAGE_CONTAINER: Blob Storage
    AZURE_SUBSCRIPTION_ID / AZURE_RESOURCE_GROUP: Worker fleet
    HEALTH_PORT: Health server port (default: 8080)
    LOG_LEVEL / LOG_FORMAT: Logging
"""

import asyncio
import os
import signal
import sys
from typing import Optional

from aiohttp import web

from __version__ import __version__, BUILD_DATE, EPOCH
from core.config import get_defaults
from core.logging import ComponentType, configure_logging, get_logger
from infrastructure.base import InfrastructureError
from infrastructure.fleet import AzureFleetProvisioner
from infrastructure.service_bus import ServiceBusConfig, ServiceBusQueueService
from infrastructure.storage import BlobRepository
from orchestrator import Coordinator

logger = get_logger(__name__, ComponentType.COORDINATOR)

# Global instances
_coordinator: Optional[Coordinator] = None


# ============================================================================
# HEALTH SERVER
# ============================================================================

async def health_handler(request):
    """Report version, coordinator state and counters."""
    stats = _coordinator.stats() if _coordinator else {"state": "starting"}
    return web.json_response(
        {
            "status": "healthy",
            "version": __version__,
            "build_date": BUILD_DATE,
            "epoch": EPOCH,
            "coordinator": stats,
        }
    )


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
    """Run the coordinator. Returns the process exit code."""
    global _coordinator

    defaults = get_defaults()
    logger.info(f"Starting Analysis Coordinator v{__version__} (Epoch {EPOCH}, Build {BUILD_DATE})")

    try:
        fleet = AzureFleetProvisioner(defaults.fleet)
    except ValueError as e:
        logger.error(f"Fleet provisioning is not configured: {e}")
        return 1

    queues = ServiceBusQueueService(ServiceBusConfig.from_env())
    blobs = BlobRepository(defaults.storage)
    health_runner = None

    try:
        await blobs.ensure_container()
        _coordinator = Coordinator(queues, blobs, fleet, defaults)
        health_runner = await start_health_server(defaults.coordinator.health_port)

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(
                    sig, lambda: asyncio.ensure_future(_coordinator.stop())
                )
            except NotImplementedError:
                # Windows doesn't support add_signal_handler
                pass

        report = await _coordinator.run()
    except (InfrastructureError, ValueError) as e:
        logger.error(f"Coordinator failed to start: {e}")
        return 1
    finally:
        if health_runner is not None:
            await health_runner.cleanup()
        await queues.close()
        await blobs.close()
        await fleet.close()

    if report is None:
        logger.info("Coordinator stopped by signal")
        return 0

    if not report.clean:
        logger.warning(f"Teardown finished with errors: {report.errors}")
    logger.info("Analysis Coordinator stopped")
    return 0


def run() -> None:
    """Synchronous entry point."""
    configure_logging(
        level=os.environ.get("LOG_LEVEL", "INFO"),
        json_output=os.environ.get("LOG_FORMAT", "").lower() == "json",
    )
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
