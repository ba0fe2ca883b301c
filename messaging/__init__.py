# ============================================================================
# MESSAGING MODULE
# ============================================================================
# EPOCH: 1 - ELASTIC FAN-OUT
# STATUS: Core - Queue message dispatch
# PURPOSE: Send tasks, results, notices and job requests
# CREATED: 19 OCT 2026
# ============================================================================
"""
Messaging Module

Usage:
    from messaging import MessagePublisher

    publisher = MessagePublisher(queue_service)
    await publisher.dispatch_task(task_message)
"""

from .publisher import MessagePublisher

__all__ = [
    "MessagePublisher",
]
