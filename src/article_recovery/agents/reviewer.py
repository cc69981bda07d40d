"""Reviewer agent — turns the article markdown into a structured issue list.

One structured LLM call per review:
- input: plan, markdown (Sources stripped, length-capped), research summary
- output: ``ReviewerOutput`` with approval flag, validated issues, suggestions

Raw issues are post-processed before anything is routed:
- unknown or internal-only strategies are dropped with a warning
- critical/major issues missing an instruction get a generated default
- minor issues missing an instruction are dropped
- issues pointing at no concrete location are dropped

Transport/format failures are retried; once retries are exhausted the
error propagates as ``ReviewerError``. There is no fallback to "approved".
"""

from __future__ import annotations

import asyncio
import logging
from typing import Iterable, Sequence

from ..llm import OperationCancelled, ReviewerError, StructuredLLM, with_retry
from ..models import (
    REVIEWER_STRATEGIES,
    ArticlePlan,
    FixStrategy,
    IssueCategory,
    IssueSeverity,
    RawReviewIssue,
    RetrySettings,
    ReviewerLLMOutput,
    ReviewerOutput,
    ReviewerSettings,
    ReviewIssue,
    SeverityCounts,
    SourceSummary,
)
from ..prompts import ReviewerPromptContext, reviewer_system_prompt, reviewer_user_prompt
from ..tools.sections import strip_sources_section

logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "\n\n...(article truncated for review)"
RESEARCH_TRUNCATION_MARKER = "\n...(truncated)"

INVALID_LOCATIONS = ("throughout article", "multiple sections", "various", "general")

# Legacy strategy names the model still produces now and then.
_STRATEGY_ALIASES = {"inline_insert": FixStrategy.DIRECT_EDIT.value}


# ---------------------------------------------------------------------------
# Input preparation
# ---------------------------------------------------------------------------


def truncate_article(markdown: str, max_length: int) -> str:
    if len(markdown) <= max_length:
        return markdown
    return markdown[:max_length] + TRUNCATION_MARKER


def build_research_summary(sources: Sequence[SourceSummary] | None, max_length: int) -> str:
    """Condense per-source summaries into the reviewer's fact-checking context."""
    if not sources:
        return ""

    parts = ["=== RESEARCH SUMMARIES (Top Sources by Quality) ==="]
    for source in sources:
        block = [
            f'--- Source: "{source.title}" ---',
            f"URL: {source.url}",
            f'Query: "{source.query}"',
            f"Quality: {source.quality_score}/100 | Relevance: {source.relevance_score}/100",
            "",
            "DETAILED SUMMARY:",
            source.detailed_summary,
        ]
        if source.key_facts:
            block += ["", "KEY FACTS:"]
            block += [f"• {fact}" for fact in source.key_facts[:7]]
        if source.data_points:
            block += ["", "DATA POINTS:", " | ".join(source.data_points[:10])]
        parts.append("\n".join(block))
        parts.append("")

    combined = "\n".join(parts)
    if len(combined) > max_length:
        return combined[:max_length] + RESEARCH_TRUNCATION_MARKER
    return combined


def _research_text(research: Sequence[SourceSummary] | str | None, max_length: int) -> str:
    if isinstance(research, str):
        if len(research) > max_length:
            return research[:max_length] + RESEARCH_TRUNCATION_MARKER
        return research
    return build_research_summary(research, max_length)


# ---------------------------------------------------------------------------
# Output validation
# ---------------------------------------------------------------------------


def default_fix_instruction(issue: RawReviewIssue) -> str:
    """Instruction used when the model flags a serious issue without one."""
    location = issue.location or "the appropriate section"
    if issue.category is IssueCategory.CHECKLIST or "CHECKLIST FAILURE" in issue.message:
        return (
            f'Add paragraph in "{location}" covering the missing element. '
            f"Based on issue: {issue.message[:200]}. "
            "Include: name, location, how to obtain/use, and relevance."
        )
    if issue.category is IssueCategory.STRUCTURE:
        return f'Fix structural issue in "{location}": {issue.message[:150]}'
    if issue.category is IssueCategory.COVERAGE:
        return f'In section "{location}", add the missing information: {issue.message[:150]}'
    return f'Fix in "{location}": {issue.message[:150]}'


def _resolve_strategy(raw: str | None) -> FixStrategy | None:
    value = (raw or FixStrategy.NO_ACTION.value).strip().lower()
    value = _STRATEGY_ALIASES.get(value, value)
    try:
        strategy = FixStrategy(value)
    except ValueError:
        return None
    return strategy if strategy in REVIEWER_STRATEGIES else None


def filter_valid_issues(raw_issues: Iterable[RawReviewIssue]) -> list[ReviewIssue]:
    """Validate model issues and convert them to ``ReviewIssue``."""
    valid: list[ReviewIssue] = []
    skipped_instruction = skipped_location = skipped_strategy = 0

    for raw in raw_issues:
        strategy = _resolve_strategy(raw.fix_strategy)
        if strategy is None:
            logger.warning("Skipping issue with unknown fix strategy %r: %s", raw.fix_strategy, raw.message[:60])
            skipped_strategy += 1
            continue

        instruction = (raw.fix_instruction or "").strip() or None
        if strategy is not FixStrategy.NO_ACTION and instruction is None:
            if raw.severity in (IssueSeverity.CRITICAL, IssueSeverity.MAJOR):
                instruction = default_fix_instruction(raw)
                logger.warning(
                    "Issue missing fix instruction (generated default): %s [strategy: %s]",
                    raw.message[:60], strategy.value,
                )
            else:
                logger.warning(
                    "Skipping minor issue (missing fix instruction): %s [strategy: %s]",
                    raw.message[:60], strategy.value,
                )
                skipped_instruction += 1
                continue

        location = raw.location.strip() if raw.location and raw.location.strip() else None
        if location and any(bad in location.lower() for bad in INVALID_LOCATIONS):
            logger.warning("Skipping issue (invalid location %r): %s", location, raw.message[:60])
            skipped_location += 1
            continue

        valid.append(ReviewIssue(
            severity=raw.severity,
            category=raw.category,
            location=location,
            message=raw.message,
            suggestion=raw.suggestion,
            fix_strategy=strategy,
            fix_instruction=None if strategy is FixStrategy.NO_ACTION else instruction,
        ))

    skipped = skipped_instruction + skipped_location + skipped_strategy
    if skipped:
        logger.info(
            "Filtered out %d invalid issues (%d missing instruction, %d invalid location, %d unknown strategy)",
            skipped, skipped_instruction, skipped_location, skipped_strategy,
        )
    return valid


# ---------------------------------------------------------------------------
# Issue helpers
# ---------------------------------------------------------------------------


def count_issues_by_severity(issues: Iterable[ReviewIssue]) -> SeverityCounts:
    issues = list(issues)
    return SeverityCounts(
        critical=sum(1 for i in issues if i.severity is IssueSeverity.CRITICAL),
        major=sum(1 for i in issues if i.severity is IssueSeverity.MAJOR),
        minor=sum(1 for i in issues if i.severity is IssueSeverity.MINOR),
    )


def should_reject_article(issues: Iterable[ReviewIssue]) -> bool:
    """An article with any critical issue is not publishable."""
    return any(i.severity is IssueSeverity.CRITICAL for i in issues)


def get_issues_by_category(issues: Iterable[ReviewIssue], category: IssueCategory) -> list[ReviewIssue]:
    return [i for i in issues if i.category is category]


# ---------------------------------------------------------------------------
# Review call
# ---------------------------------------------------------------------------


async def run_reviewer(
    markdown: str,
    plan: ArticlePlan,
    llm: StructuredLLM,
    *,
    research: Sequence[SourceSummary] | str | None = None,
    settings: ReviewerSettings | None = None,
    retry: RetrySettings | None = None,
    cancel_event: asyncio.Event | None = None,
) -> ReviewerOutput:
    """Review *markdown* against *plan*.

    Raises ``ReviewerError`` when the call keeps failing and
    ``OperationCancelled`` when *cancel_event* fires.
    """
    settings = settings or ReviewerSettings()
    retry = retry or RetrySettings()

    logger.info("Starting review for article: %r", plan.title)

    article = truncate_article(strip_sources_section(markdown), settings.max_article_content_length)
    ctx = ReviewerPromptContext(
        plan=plan,
        markdown=article,
        research_summary=_research_text(research, settings.max_research_context_length),
    )
    system = reviewer_system_prompt(plan.category_slug)
    prompt = reviewer_user_prompt(ctx)

    async def _call():
        return await llm(
            ReviewerLLMOutput,
            system=system,
            prompt=prompt,
            temperature=settings.temperature,
            max_tokens=settings.max_output_tokens,
            cancel_event=cancel_event,
        )

    try:
        response = await with_retry(_call, retry, operation="Reviewer analysis", cancel_event=cancel_event)
    except OperationCancelled:
        raise
    except Exception as e:
        raise ReviewerError(f"Reviewer failed: {e}") from e

    result = response.object
    issues = filter_valid_issues(result.issues)
    counts = count_issues_by_severity(issues)
    logger.info(
        "Review complete: %s (%d critical, %d major, %d minor issues)",
        "APPROVED" if result.approved else "NEEDS REVISION",
        counts.critical, counts.major, counts.minor,
    )
    for issue in issues:
        logger.debug("  [%s/%s] %s", issue.severity.value, issue.category.value, issue.message)

    return ReviewerOutput(
        approved=result.approved,
        issues=issues,
        suggestions=list(result.suggestions),
        token_usage=response.usage,
    )
