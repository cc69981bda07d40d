"""Runtime collaborators and context shared by the fix executors."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

from .agents.section_writer import SectionWriter
from .llm import StructuredLLM
from .models import ArticlePlan, FixerSettings, RetrySettings


@dataclass
class FixerDeps:
    """LLM, writer and limits handed to every executor call."""
    llm: StructuredLLM
    writer: SectionWriter | None = None
    settings: FixerSettings = field(default_factory=FixerSettings)
    retry: RetrySettings = field(default_factory=RetrySettings)
    cancel_event: asyncio.Event | None = None


@dataclass(frozen=True)
class FixerContext:
    """Read-only article inputs the special fixes pass to the writer.

    ``research_pool`` and ``article_context`` are opaque here; only the
    section writer looks inside them.
    """
    plan: ArticlePlan
    research_pool: Any = None
    article_context: Any = None
    target_word_count: int | None = None
