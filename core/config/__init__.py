# ============================================================================
# CONFIGURATION MODULE
# ============================================================================
# EPOCH: 1 - ELASTIC FAN-OUT
# STATUS: Core - Configuration and defaults
# PURPOSE: Centralized configuration management
# CREATED: 19 OCT 2026
# ============================================================================
"""
Configuration Module

Provides centralized configuration and defaults for the coordinator,
the worker fleet and the submitter.
"""

from core.config.defaults import (
    QueueDefaults,
    InstanceTemplate,
    FleetDefaults,
    StorageDefaults,
    CoordinatorDefaults,
    WorkerDefaults,
    Defaults,
    get_defaults,
    reset_defaults,
)

__all__ = [
    "QueueDefaults",
    "InstanceTemplate",
    "FleetDefaults",
    "StorageDefaults",
    "CoordinatorDefaults",
    "WorkerDefaults",
    "Defaults",
    "get_defaults",
    "reset_defaults",
]
