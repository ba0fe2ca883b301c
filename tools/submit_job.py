#!/usr/bin/env python3
# ============================================================================
# CLI JOB SUBMISSION TOOL
# ============================================================================
# EPOCH: 1 - ELASTIC FAN-OUT
# STATUS: Tool - Submit an analysis job and wait for its report
# PURPOSE: Upload input, start a coordinator if needed, fetch the report
# CREATED: 19 OCT 2026
# ============================================================================
"""
Submit an analysis job and wait for the report.

Steps:
1. Uploads INPUT to the blob container under input/{submission_id}/
2. Launches a Manager instance unless one is running or pending
3. Creates a private reply queue and sends the job request
4. Long-polls the reply queue for the completion notice
5. Downloads the report to OUTPUT
6. Optionally sends the termination sentinel
7. Deletes the reply queue

Usage:
    python tools/submit_job.py directives.txt report.html 3
    python tools/submit_job.py directives.txt report.html 3 --terminate

Requires:
    SERVICE_BUS_CONNECTION_STRING env var (or SERVICE_BUS_NAMESPACE for managed identity)
    STORAGE_ACCOUNT (or STORAGE_CONNECTION_STRING)
    AZURE_SUBSCRIPTION_ID / AZURE_RESOURCE_GROUP for the Manager launch
"""

import argparse
import asyncio
import os
import sys
import time
import uuid
from pathlib import Path
from typing import Optional

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.config import Defaults, get_defaults
from core.contracts import InstanceState
from core.logging import ComponentType, configure_logging, get_logger
from core.models import JobRequest
from infrastructure.base import BlobStore, FleetProvisioner, QueueService

logger = get_logger(__name__, ComponentType.SUBMITTER)


class SubmissionTimeout(Exception):
    """No completion notice arrived in time."""


async def ensure_manager(fleet: FleetProvisioner, defaults: Defaults) -> Optional[str]:
    """
    Make sure a coordinator instance exists.

    Returns:
        The launched instance id, or None if one was already running/pending
    """
    role = defaults.fleet.manager_role
    managers = await fleet.list_instances(
        role, states=[InstanceState.RUNNING, InstanceState.PENDING]
    )
    if managers:
        print(f"  manager:        {managers[0].instance_id} ({managers[0].state.value})")
        return None

    launched = await fleet.launch_instances(role, 1)
    logger.info(f"No {role} instance running; launched {launched[0]}")
    print(f"  manager:        launched {launched[0]}")
    return launched[0]


async def wait_for_report_key(
    queues: QueueService,
    reply_queue: str,
    wait_seconds: int,
    timeout: Optional[float] = None,
) -> str:
    """Long-poll the reply queue until the completion notice arrives."""
    start = time.time()
    while timeout is None or time.time() - start < timeout:
        messages = await queues.receive(reply_queue, 1, wait_seconds)
        if not messages:
            elapsed = int(time.time() - start)
            print(f"  [{elapsed:4d}s] waiting for report...")
            continue
        message = messages[0]
        await queues.acknowledge(message)
        return message.body.strip()

    raise SubmissionTimeout(f"No completion notice on {reply_queue} after {timeout}s")


async def submit_and_wait(
    input_path: Path,
    output_path: Path,
    concurrency_hint: int,
    queues: QueueService,
    blobs: BlobStore,
    fleet: FleetProvisioner,
    defaults: Optional[Defaults] = None,
    terminate: bool = False,
    timeout: Optional[float] = None,
    submission_id: Optional[str] = None,
) -> str:
    """
    Run one submission end to end.

    Returns:
        The blob key of the downloaded report
    """
    defaults = defaults or get_defaults()
    submission_id = submission_id or uuid.uuid4().hex[:12]

    input_key = defaults.storage.input_key(submission_id, input_path.name)
    await blobs.put_text(input_key, input_path.read_text(encoding="utf-8"))
    print(f"  input:          {input_key}")

    await ensure_manager(fleet, defaults)

    reply_queue = f"{defaults.queues.reply_queue_prefix}{submission_id}"
    await queues.create_queue(reply_queue)
    # The intake queue may not exist yet if the manager is still booting
    await queues.create_queue(defaults.queues.intake_queue)

    try:
        request = JobRequest(
            input_key=input_key,
            concurrency_hint=concurrency_hint,
            reply_address=reply_queue,
        )
        await queues.send(defaults.queues.intake_queue, request.to_body())
        logger.info(f"Job request sent for {input_key} (n={concurrency_hint}, reply={reply_queue})")
        print(f"  reply queue:    {reply_queue}")
        print()

        report_key = await wait_for_report_key(
            queues, reply_queue, defaults.queues.wait_seconds, timeout
        )
        report = await blobs.get_text(report_key)
        output_path.write_text(report, encoding="utf-8")
        print(f"Report {report_key} written to {output_path}")

        if terminate:
            await queues.send(defaults.queues.intake_queue, defaults.queues.terminate_sentinel)
            print("Termination requested")

        return report_key
    finally:
        await queues.delete_queue(reply_queue)


async def _run(args) -> int:
    from infrastructure.fleet import AzureFleetProvisioner
    from infrastructure.service_bus import ServiceBusConfig, ServiceBusQueueService
    from infrastructure.storage import BlobRepository

    defaults = get_defaults()
    try:
        fleet = AzureFleetProvisioner(defaults.fleet)
    except ValueError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    queues = ServiceBusQueueService(ServiceBusConfig.from_env())
    blobs = BlobRepository(defaults.storage)

    try:
        await blobs.ensure_container()
        await submit_and_wait(
            Path(args.input),
            Path(args.output),
            args.n,
            queues,
            blobs,
            fleet,
            defaults=defaults,
            terminate=args.terminate,
            timeout=args.timeout,
        )
        return 0
    except Exception as e:
        logger.debug("Submission failed", exc_info=True)
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    finally:
        await queues.close()
        await blobs.close()
        await fleet.close()


def main():
    parser = argparse.ArgumentParser(
        description="Submit an analysis job and wait for its report",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s directives.txt report.html 3
  %(prog)s directives.txt report.html 3 --terminate
        """,
    )
    parser.add_argument("input", help="Directive file (one KIND<tab>URL per line)")
    parser.add_argument("output", help="Where to write the HTML report")
    parser.add_argument("n", type=int, help="Tasks per worker (concurrency hint)")
    parser.add_argument(
        "--terminate",
        action="store_true",
        help="Tear down the deployment after the report arrives",
    )
    parser.add_argument(
        "--timeout", "-t",
        type=float,
        default=None,
        help="Give up after this many seconds (default: wait forever)",
    )

    args = parser.parse_args()

    if args.n < 1:
        print("ERROR: n must be at least 1", file=sys.stderr)
        sys.exit(1)
    if not Path(args.input).is_file():
        print(f"ERROR: Input file not found: {args.input}", file=sys.stderr)
        sys.exit(1)

    # Check env
    has_conn_str = bool(os.environ.get("SERVICE_BUS_CONNECTION_STRING"))
    has_namespace = bool(os.environ.get("SERVICE_BUS_NAMESPACE"))
    if not has_conn_str and not has_namespace:
        print(
            "ERROR: Set SERVICE_BUS_CONNECTION_STRING or SERVICE_BUS_NAMESPACE",
            file=sys.stderr,
        )
        sys.exit(1)

    configure_logging(level=os.environ.get("LOG_LEVEL", "WARNING"))

    print(f"Submitting job:")
    print(f"  input file:     {args.input}")
    print(f"  n:              {args.n}")
    sys.exit(asyncio.run(_run(args)))


if __name__ == "__main__":
    main()
