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

Provides a decorator-based registration system for analyzers.

Usage:
    from handlers import register_analyzer, run_analyzer

    @register_analyzer("MY_KIND")
    def my_analyzer(ctx: AnalysisContext) -> str:
        return ctx.text.upper()

    # Later, in the worker:
    output = await run_analyzer(AnalysisContext(task, text))

Analyzer modules are imported by the worker at startup from the
ANALYZER_MODULES setting (default: handlers.text).

Bundled kinds: TOKENS, SENTENCES, WORDFREQ (handlers.text).

The parser kinds POS, CONSTITUENCY and DEPENDENCY are not bundled. A
deployment that submits them lists its NLP module in ANALYZER_MODULES,
for example ANALYZER_MODULES=handlers.text,acme_nlp.parsers, where the
module registers each kind with @register_analyzer. Until then a worker
answers those tasks with an "Exception: ..." result fragment.
"""

from handlers.registry import (
    register_analyzer,
    get_analyzer,
    list_analyzers,
    clear_analyzers,
    load_analyzer_modules,
    run_analyzer,
    AnalyzerFunc,
    AnalysisContext,
    AnalyzerError,
    AnalyzerNotFoundError,
    DuplicateAnalyzerError,
)

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
