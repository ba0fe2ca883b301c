# ============================================================================
# VERSION - ANALYSIS COORDINATOR
# ============================================================================
# EPOCH: 1 - ELASTIC FAN-OUT
# ============================================================================
"""
Version information for the Analysis Coordinator.

This is the single source of truth for the application version.
Updated manually for each release.
"""
# Version format: major.minor.patch.build
# Criteria for 0.2 - terminate sentinel drains and tears down the fleet
__version__ = "0.2.0.0"
__version_info__ = tuple(int(x) for x in __version__.split("."))

# Build metadata
BUILD_DATE = "2026-10-19"

EPOCH = 1
CODENAME = "Elastic Fan-Out"
