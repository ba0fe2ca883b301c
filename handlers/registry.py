# ============================================================================
# ANALYZER REGISTRY
# ============================================================================
# EPOCH: 1 - ELASTIC FAN-OUT
# STATUS: Core - Analyzer registration and lookup
# PURPOSE: Register and discover analyzers by analysis kind
# CREATED: 19 OCT 2026
# ============================================================================
"""
Analyzer Registry

Central registry for analyzers. Workers use this to look up the function
that handles a task's analysis kind.

Design:
- Analyzers are registered at import time via decorator
- Registry is a simple dict (KIND -> analyzer)
- Kinds are stored upper-case, matching how the coordinator normalizes them
- Fail-fast on duplicate registration
- Supports both sync and async analyzers
"""

import asyncio
import importlib
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from core.models import TaskMessage

logger = logging.getLogger(__name__)


# ============================================================================
# ANALYZER TYPES
# ============================================================================

@dataclass
class AnalysisContext:
    """Input handed to an analyzer: the task and the fetched resource text."""
    task: TaskMessage
    text: str
    worker_id: Optional[str] = None

    @property
    def analysis_kind(self) -> str:
        return self.task.analysis_kind

    @property
    def resource_locator(self) -> str:
        return self.task.resource_locator


# Analyzer function type: returns the analysis output as text
AnalyzerFunc = Callable[[AnalysisContext], Union[str, Awaitable[str]]]


# ============================================================================
# EXCEPTIONS
# ============================================================================

class AnalyzerError(Exception):
    """Base exception for analyzer errors."""
    pass


class AnalyzerNotFoundError(AnalyzerError):
    """Raised when no analyzer is registered for a kind."""
    def __init__(self, kind: str):
        self.kind = kind
        super().__init__(f"No analyzer for kind: {kind}")


class DuplicateAnalyzerError(AnalyzerError):
    """Raised when a kind is already registered."""
    def __init__(self, kind: str):
        self.kind = kind
        super().__init__(f"Analyzer already registered: {kind}")


# ============================================================================
# REGISTRY
# ============================================================================

_analyzers: Dict[str, AnalyzerFunc] = {}
_analyzer_metadata: Dict[str, Dict[str, Any]] = {}


def register_analyzer(
    kind: str,
    *,
    description: str = "",
) -> Callable[[AnalyzerFunc], AnalyzerFunc]:
    """
    Decorator to register an analyzer.

    Example:
        @register_analyzer("TOKENS")
        def tokens(ctx: AnalysisContext) -> str:
            return "\\n".join(ctx.text.split())
    """
    key = kind.strip().upper()

    def decorator(func: AnalyzerFunc) -> AnalyzerFunc:
        if key in _analyzers:
            raise DuplicateAnalyzerError(key)

        _analyzers[key] = func
        _analyzer_metadata[key] = {
            "kind": key,
            "description": description,
            "function": func.__name__,
            "module": func.__module__,
            "is_async": asyncio.iscoroutinefunction(func),
            "registered_at": datetime.utcnow().isoformat(),
        }

        logger.debug(f"Registered analyzer: {key} ({func.__module__}.{func.__name__})")
        return func

    return decorator


def get_analyzer(kind: str) -> AnalyzerFunc:
    """
    Get the analyzer for a kind.

    Raises:
        AnalyzerNotFoundError if none is registered
    """
    analyzer = _analyzers.get(kind.strip().upper())
    if analyzer is None:
        raise AnalyzerNotFoundError(kind)
    return analyzer


def list_analyzers() -> List[Dict[str, Any]]:
    """List all registered analyzers with metadata."""
    return list(_analyzer_metadata.values())


def clear_analyzers() -> None:
    """
    Clear all registered analyzers.

    Primarily for testing.
    """
    _analyzers.clear()
    _analyzer_metadata.clear()
    logger.debug("Cleared all analyzers")


def load_analyzer_modules(modules: str) -> List[str]:
    """
    Import analyzer modules so their decorators run.

    Args:
        modules: Comma-separated module paths (e.g. "handlers.text,myorg.nlp")

    Returns:
        Modules that were imported

    Raises:
        ImportError: If a module cannot be imported
    """
    loaded = []
    for module_path in (m.strip() for m in modules.split(",")):
        if not module_path:
            continue
        importlib.import_module(module_path)
        loaded.append(module_path)
        logger.info(f"Loaded analyzer module: {module_path}")
    return loaded


# ============================================================================
# ASYNC ANALYZER EXECUTION
# ============================================================================

async def run_analyzer(context: AnalysisContext) -> str:
    """
    Run the analyzer for the context's kind.

    Sync analyzers run in the default thread pool.

    Raises:
        AnalyzerNotFoundError: No analyzer for the kind
        Exception: Whatever the analyzer raised
    """
    analyzer = get_analyzer(context.analysis_kind)

    if asyncio.iscoroutinefunction(analyzer):
        output = await analyzer(context)
    else:
        loop = asyncio.get_running_loop()
        output = await loop.run_in_executor(None, analyzer, context)

    if not isinstance(output, str):
        raise AnalyzerError(
            f"Analyzer {context.analysis_kind} returned {type(output).__name__}, expected str"
        )
    return output


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "register_analyzer",
    "get_analyzer",
    "list_analyzers",
    "clear_analyzers",
    "load_analyzer_modules",
    "run_analyzer",
    "AnalyzerFunc",
    "AnalysisContext",
    "AnalyzerError",
    "AnalyzerNotFoundError",
    "DuplicateAnalyzerError",
]
