"""SpecialFixer — regenerate or add whole sections through the SectionWriter.

This module validates preconditions, locates or synthesises the target
section, and splices the writer's text into the document. Prose generation
is entirely the writer's job.
"""

from __future__ import annotations

import logging

from ..deps import FixerContext, FixerDeps
from ..llm import OperationCancelled
from ..models import FixResult, FixStrategy, ReviewIssue, SectionPlan, TokenUsage
from ..tools.sections import find_section, get_section_content, insert_section, replace_section

logger = logging.getLogger(__name__)

FALLBACK_HEADLINE = "Additional Information"


def _failed(markdown: str, description: str, usage: TokenUsage | None = None) -> FixResult:
    return FixResult(markdown=markdown, success=False, description=description, token_usage=usage or TokenUsage())


def build_feedback(issue: ReviewIssue) -> str:
    return "\n".join(part for part in (issue.message, issue.fix_instruction) if part)


async def regenerate_section(
    markdown: str,
    issue: ReviewIssue,
    ctx: FixerContext,
    deps: FixerDeps,
) -> FixResult:
    """Rewrite the planned section ``issue.location`` with reviewer feedback."""
    if not issue.location:
        logger.warning("Regenerate requested but no location specified")
        return _failed(markdown, "No section location specified")
    if deps.writer is None:
        return _failed(markdown, "No section writer configured")

    index = ctx.plan.find_section_index(issue.location)
    if index is None:
        logger.warning("Section %r not found in plan", issue.location)
        return _failed(markdown, f'Section "{issue.location}" not found in plan')

    logger.info("Regenerating section %r with feedback", issue.location)
    try:
        result = await deps.writer(
            ctx.article_context,
            ctx.plan,
            index,
            ctx.research_pool,
            feedback=build_feedback(issue),
            target_word_count=ctx.target_word_count,
            cancel_event=deps.cancel_event,
        )
    except OperationCancelled:
        raise
    except Exception as e:
        logger.error("Section regeneration failed: %s", e)
        return _failed(markdown, f"Regeneration failed: {e}")

    updated = replace_section(markdown, issue.location, result.text)
    if updated is None:
        logger.error("Failed to replace section %r in markdown", issue.location)
        return _failed(markdown, f'Failed to replace section "{issue.location}"', result.token_usage)

    if result.text.strip() == get_section_content(markdown, issue.location) or updated == markdown:
        logger.info("Regenerated section %r is unchanged", issue.location)
        return _failed(markdown, f'Regenerated section "{issue.location}" is unchanged', result.token_usage)

    logger.info("Section %r regenerated", issue.location)
    return FixResult(
        markdown=updated,
        success=True,
        description=f'Regenerated section "{issue.location}"',
        token_usage=result.token_usage,
        issues_addressed=1,
    )


async def add_section(
    markdown: str,
    issue: ReviewIssue,
    ctx: FixerContext,
    deps: FixerDeps,
) -> FixResult:
    """Write a new section for a coverage gap and insert it before Sources.

    The plan is extended on a copy; ``ctx.plan`` itself is never changed.
    """
    if not issue.has_instruction:
        logger.warning("Add section requested but no fix instruction provided")
        return _failed(markdown, "No section specification provided")
    if deps.writer is None:
        return _failed(markdown, "No section writer configured")

    headline = (issue.location or "").strip() or FALLBACK_HEADLINE
    if find_section(markdown, headline) is not None:
        logger.warning("Section %r already exists; not adding a duplicate", headline)
        return _failed(markdown, f'Section "{headline}" already exists')

    section = SectionPlan(headline=headline, goal=issue.fix_instruction.strip(), research_queries=[])
    extended = ctx.plan.with_section(section)
    index = len(extended.sections) - 1

    logger.info("Adding new section %r", headline)
    try:
        result = await deps.writer(
            ctx.article_context,
            extended,
            index,
            ctx.research_pool,
            target_word_count=ctx.target_word_count,
            cancel_event=deps.cancel_event,
        )
    except OperationCancelled:
        raise
    except Exception as e:
        logger.error("Adding section failed: %s", e)
        return _failed(markdown, f"Add section failed: {e}")

    updated = insert_section(markdown, None, headline, result.text)
    logger.info("New section %r added", headline)
    return FixResult(
        markdown=updated,
        success=True,
        description=f'Added new section "{headline}"',
        token_usage=result.token_usage,
        issues_addressed=1,
    )


async def apply_special_fix(
    markdown: str,
    issue: ReviewIssue,
    ctx: FixerContext,
    deps: FixerDeps,
) -> FixResult:
    """Dispatch a special issue to its executor."""
    if issue.fix_strategy is FixStrategy.REGENERATE:
        return await regenerate_section(markdown, issue, ctx, deps)
    if issue.fix_strategy is FixStrategy.ADD_SECTION:
        return await add_section(markdown, issue, ctx, deps)
    logger.warning("Unsupported special fix strategy %r for %r", issue.fix_strategy.value, issue.target)
    return _failed(markdown, f"Unknown strategy: {issue.fix_strategy.value}")
