# ============================================================================
# TEXT ANALYZERS
# ============================================================================
# EPOCH: 1 - ELASTIC FAN-OUT
# STATUS: Analyzers - Built-in text statistics
# PURPOSE: Lightweight analyzers that need no language models
# CREATED: 19 OCT 2026
# ============================================================================
"""
Text Analyzers

Built-in analyzers used for smoke tests and as templates for real ones.
Parsing analyzers (POS, CONSTITUENCY, DEPENDENCY) need a language model
and are registered by a separate module listed in ANALYZER_MODULES.
"""

import logging
import re
from collections import Counter

from handlers.registry import AnalysisContext, register_analyzer

logger = logging.getLogger(__name__)

_WORD_RE = re.compile(r"[A-Za-z0-9]+(?:['\-][A-Za-z0-9]+)*")
_SENTENCE_END_RE = re.compile(r"(?<=[.!?])\s+")


@register_analyzer("TOKENS", description="One word token per line")
def tokens(ctx: AnalysisContext) -> str:
    return "\n".join(_WORD_RE.findall(ctx.text))


@register_analyzer("SENTENCES", description="One sentence per line")
def sentences(ctx: AnalysisContext) -> str:
    text = " ".join(ctx.text.split())
    if not text:
        return ""
    return "\n".join(s for s in _SENTENCE_END_RE.split(text) if s)


@register_analyzer("WORDFREQ", description="Case-folded word counts, most frequent first")
def word_frequencies(ctx: AnalysisContext) -> str:
    counts = Counter(word.lower() for word in _WORD_RE.findall(ctx.text))
    # Ties broken alphabetically so output is stable
    ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    return "\n".join(f"{word}\t{count}" for word, count in ranked)
