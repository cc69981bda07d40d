"""SectionWriter — produces prose for one planned section.

The recovery loop only depends on the ``SectionWriter`` protocol; the AG2
implementation below is the default used by the CLI.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Protocol

import autogen

from ..config import build_role_llm_config
from ..llm import extract_text, make_orchestrator, run_cancellable, strip_fences
from ..models import ArticlePlan, ProjectConfig, SourceSummary, TokenUsage

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """\
You are a gaming content specialist writing ONE section of a longer article.

Write the section described in the request as markdown prose. Use the
research provided; do not invent facts, prices or scores that are not in it.

Guidelines:
- Stay on the section goal; do not repeat other sections.
- Use proper names for places, items and characters.
- Use ### for sub-headings if needed; never use ## (the caller adds it).
- If FEEDBACK is given, it describes what was wrong with a previous version.
  Address every point.
- If a WORD TARGET is given, stay close to it.

Return ONLY the section body. No heading, no meta-commentary.
"""


@dataclass
class SectionText:
    text: str
    token_usage: TokenUsage = field(default_factory=TokenUsage)


class SectionWriter(Protocol):
    """Writes the body of ``plan.sections[section_index]``."""

    async def __call__(
        self,
        context: Any,
        plan: ArticlePlan,
        section_index: int,
        pool: Any,
        *,
        feedback: str | None = None,
        target_word_count: int | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> SectionText: ...


# ---------------------------------------------------------------------------
# AG2 implementation
# ---------------------------------------------------------------------------

_LEADING_H2_RE = re.compile(r"\A\s*##[^#].*\n?")


def _render_pool(pool: Any, limit: int = 6000) -> str:
    """Best-effort text rendering of the research pool."""
    if pool is None:
        return "(no research provided)"
    if isinstance(pool, str):
        text = pool
    elif isinstance(pool, (list, tuple)):
        parts = []
        for item in pool:
            if isinstance(item, SourceSummary):
                facts = "; ".join(item.key_facts[:5])
                parts.append(f"- {item.title}: {item.detailed_summary} {facts}".strip())
            else:
                parts.append(f"- {item}")
        text = "\n".join(parts)
    else:
        text = str(pool)
    return text if len(text) <= limit else text[:limit] + "\n...(truncated)"


def build_section_message(
    context: Any,
    plan: ArticlePlan,
    section_index: int,
    pool: Any,
    *,
    feedback: str | None = None,
    target_word_count: int | None = None,
) -> str:
    section = plan.sections[section_index]
    outline = "\n".join(
        f"{'->' if i == section_index else '  '} {s.headline}" for i, s in enumerate(plan.sections)
    )
    message = f"ARTICLE: {plan.title}\n"
    if context:
        message += f"CONTEXT: {context}\n"
    message += f"\nOUTLINE:\n{outline}\n\n"
    message += f"SECTION: {section.headline}\nGOAL: {section.goal}\n"
    if target_word_count:
        message += f"WORD TARGET: about {target_word_count} words\n"
    if feedback:
        message += f"\nFEEDBACK:\n{feedback}\n"
    message += f"\nRESEARCH:\n{_render_pool(pool)}\n"
    return message


def clean_section_text(text: str) -> str:
    """Strip fences and a leading ``## `` heading the model may have added."""
    text = strip_fences(text)
    return _LEADING_H2_RE.sub("", text, count=1).strip()


def make_section_writer_agent(config: ProjectConfig) -> autogen.AssistantAgent:
    """Create the SectionWriter agent."""
    return autogen.AssistantAgent(
        name="SectionWriter",
        system_message=SYSTEM_PROMPT,
        llm_config=build_role_llm_config("section_writer", config),
    )


class AutogenSectionWriter:
    """``SectionWriter`` backed by a single-turn AG2 chat."""

    def __init__(self, config: ProjectConfig) -> None:
        self.config = config

    async def __call__(
        self,
        context: Any,
        plan: ArticlePlan,
        section_index: int,
        pool: Any,
        *,
        feedback: str | None = None,
        target_word_count: int | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> SectionText:
        if not 0 <= section_index < len(plan.sections):
            raise IndexError(f"Section index {section_index} out of range for plan with {len(plan.sections)} sections")

        message = build_section_message(
            context, plan, section_index, pool,
            feedback=feedback, target_word_count=target_word_count,
        )
        agent = make_section_writer_agent(self.config)
        orchestrator = make_orchestrator()
        response = await run_cancellable(
            orchestrator.a_initiate_chat(agent, message=message, max_turns=1, silent=True),
            cancel_event,
        )
        headline = plan.sections[section_index].headline
        text = clean_section_text(extract_text(response))
        if not text:
            raise ValueError(f"Section writer returned empty text for {headline!r}")
        logger.debug("Section %r written (%d words)", headline, len(text.split()))
        return SectionText(text=text, token_usage=TokenUsage.from_autogen_cost(getattr(response, "cost", None)))
