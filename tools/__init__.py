# ============================================================================
# TOOLS
# ============================================================================
# EPOCH: 1 - ELASTIC FAN-OUT
# STATUS: Tool - Command-line helpers
# PURPOSE: Job submission from outside the deployment
# CREATED: 19 OCT 2026
# ============================================================================
"""Command-line tools. Run as scripts, e.g. ``python tools/submit_job.py``."""
