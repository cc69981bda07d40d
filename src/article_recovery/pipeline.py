"""Pipeline — Review → Dispatch → Fix → Re-review recovery loop.

Phase 1: REVIEW    — Reviewer turns the markdown into issues
Phase 2: DISPATCH  — issues grouped per section, special vs batchable
Phase 3: FIX       — per section: special fix first, else one batch fix
Phase 4: RE-REVIEW — loop until approved, no actionable issues, or budget spent

The loop owns the document: executors get the current markdown and return
a new string, and only successful results are threaded forward.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Sequence

from .agents.batch_fixer import batch_fix
from .agents.reviewer import count_issues_by_severity, run_reviewer
from .agents.section_writer import AutogenSectionWriter, SectionWriter
from .agents.special_fixer import apply_special_fix
from .deps import FixerContext, FixerDeps
from .llm import AutogenStructuredLLM, OperationCancelled, StructuredLLM, check_cancelled
from .logging_config import RecoveryCallbacks, RichCallbacks
from .models import (
    ArticlePlan,
    FixApplied,
    FixerIterationOutput,
    FixResult,
    FixStrategy,
    OutcomeMetrics,
    ProjectConfig,
    RecoveryMetadata,
    RecoveryResult,
    ReviewerOutput,
    ReviewIssue,
    SeverityCounts,
    SourceSummary,
    StopReason,
    TokenUsage,
)
from .tools.dispatch import SectionFixGroup, actionable_issues, plan_fixes

logger = logging.getLogger(__name__)


class IterationCancelled(OperationCancelled):
    """Cancellation inside a fixer iteration, carrying the fixes applied so far."""

    def __init__(self, output: FixerIterationOutput) -> None:
        super().__init__("fixer iteration cancelled")
        self.output = output


# ---------------------------------------------------------------------------
# One fixer iteration
# ---------------------------------------------------------------------------


def _group_strategy(group: SectionFixGroup) -> FixStrategy:
    if len(group.batchable) >= 2:
        return FixStrategy.BATCH
    return group.batchable[0].fix_strategy


async def _fix_group(
    markdown: str,
    group: SectionFixGroup,
    ctx: FixerContext,
    deps: FixerDeps,
) -> tuple[FixStrategy, str, FixResult] | None:
    if group.special is not None:
        # A regenerated or new section supersedes wording fixes in it this round.
        result = await apply_special_fix(markdown, group.special, ctx, deps)
        return group.special.fix_strategy, group.special.message, result
    if group.batchable:
        result = await batch_fix(markdown, group.target, group.batchable, deps)
        reason = "; ".join(i.message for i in group.batchable)
        return _group_strategy(group), reason, result
    return None


async def run_fixer_iteration(
    markdown: str,
    issues: Sequence[ReviewIssue],
    ctx: FixerContext,
    deps: FixerDeps,
    iteration: int = 1,
    callbacks: RecoveryCallbacks | None = None,
) -> FixerIterationOutput:
    """Apply at most one operation per section for this round's issues.

    Failed operations are recorded and skipped; the next section is fixed
    against the last successful document. Raises ``IterationCancelled``
    (with the partial output) when the cancel event fires.
    """
    fix_plan = plan_fixes(issues, deps.settings.max_fixes_per_iteration)
    if not fix_plan.groups:
        logger.info("No actionable issues to fix")
        return FixerIterationOutput(markdown=markdown)

    logger.info(
        "Fixer iteration %d: %d section(s), %d deferred",
        iteration, len(fix_plan.groups), len(fix_plan.deferred),
    )

    current = markdown
    fixes: list[FixApplied] = []
    usage = TokenUsage()

    def _partial() -> FixerIterationOutput:
        return FixerIterationOutput(
            markdown=current,
            fixes_applied=fixes,
            token_usage=usage,
            deferred_targets=fix_plan.deferred_targets,
        )

    for group in fix_plan.groups:
        try:
            check_cancelled(deps.cancel_event)
            outcome = await _fix_group(current, group, ctx, deps)
        except OperationCancelled as e:
            raise IterationCancelled(_partial()) from e
        if outcome is None:
            continue

        strategy, reason, result = outcome
        fix = FixApplied(
            iteration=iteration,
            strategy=strategy,
            target=group.target,
            reason=reason,
            success=result.success,
        )
        fixes.append(fix)
        usage = usage + result.token_usage
        if callbacks is not None:
            callbacks.on_fix(fix)

        if result.success:
            current = result.markdown
        else:
            logger.warning("Fix failed for %r: %s", group.target, result.description)

    logger.info(
        "Fixer iteration %d complete: %d/%d operations succeeded",
        iteration, sum(1 for f in fixes if f.success), len(fixes),
    )
    return _partial()


# ---------------------------------------------------------------------------
# Recovery loop
# ---------------------------------------------------------------------------


class RecoveryLoop:
    """Runs review/fix rounds over one article until a terminal state."""

    def __init__(
        self,
        config: ProjectConfig,
        *,
        reviewer_llm: StructuredLLM | None = None,
        fixer_llm: StructuredLLM | None = None,
        writer: SectionWriter | None = None,
        callbacks: RecoveryCallbacks | None = None,
    ) -> None:
        self.config = config
        self.reviewer_llm = reviewer_llm or AutogenStructuredLLM(config, "reviewer")
        self.fixer_llm = fixer_llm or AutogenStructuredLLM(config, "batch_fixer")
        self.writer = writer or AutogenSectionWriter(config)
        self.callbacks = callbacks or RichCallbacks()

    async def review(
        self,
        markdown: str,
        plan: ArticlePlan,
        research: Sequence[SourceSummary] | str | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> ReviewerOutput:
        review = await run_reviewer(
            markdown,
            plan,
            self.reviewer_llm,
            research=research,
            settings=self.config.reviewer,
            retry=self.config.retry,
            cancel_event=cancel_event,
        )
        self.callbacks.on_review(review, count_issues_by_severity(review.issues))
        return review

    async def run(
        self,
        markdown: str,
        plan: ArticlePlan,
        *,
        research: Sequence[SourceSummary] | str | None = None,
        research_pool: Any = None,
        article_context: Any = None,
        plan_retries: int = 0,
        cancel_event: asyncio.Event | None = None,
    ) -> RecoveryResult:
        """Review and repair *markdown*.

        ``ReviewerError`` propagates; every fix failure is recorded instead.
        On cancellation the last successfully applied markdown is returned
        with ``stop_reason=cancelled``.
        """
        settings = self.config.fixer
        deps = FixerDeps(
            llm=self.fixer_llm,
            writer=self.writer,
            settings=settings,
            retry=self.config.retry,
            cancel_event=cancel_event,
        )
        ctx = FixerContext(
            plan=plan,
            research_pool=research_pool if research_pool is not None else research,
            article_context=article_context,
            target_word_count=settings.target_word_count,
        )

        current = markdown
        fixes: list[FixApplied] = []
        usage = TokenUsage()
        iterations = 0
        first: ReviewerOutput | None = None
        last: ReviewerOutput | None = None

        try:
            last = first = await self.review(current, plan, research, cancel_event)
            usage = usage + last.token_usage

            while True:
                if last.approved:
                    stop = StopReason.APPROVED
                    break
                if not actionable_issues(last.issues):
                    stop = StopReason.ISSUES_EXHAUSTED
                    break
                if iterations >= settings.max_iterations:
                    stop = StopReason.MAX_ITERATIONS
                    break

                iterations += 1
                self.callbacks.on_iteration_start(iterations, settings.max_iterations)
                out = await run_fixer_iteration(current, last.issues, ctx, deps, iterations, self.callbacks)
                current = out.markdown
                fixes.extend(out.fixes_applied)
                usage = usage + out.token_usage
                for target in out.deferred_targets:
                    self.callbacks.on_warning(f"Deferred to next iteration: {target}")

                last = await self.review(current, plan, research, cancel_event)
                usage = usage + last.token_usage
        except IterationCancelled as e:
            current = e.output.markdown
            fixes.extend(e.output.fixes_applied)
            usage = usage + e.output.token_usage
            stop = StopReason.CANCELLED
        except OperationCancelled:
            stop = StopReason.CANCELLED

        if stop is StopReason.CANCELLED:
            logger.warning("Recovery cancelled after %d iteration(s)", iterations)
        self.callbacks.on_stop(stop.value)

        metrics = OutcomeMetrics(
            issues_before=count_issues_by_severity(first.issues) if first else SeverityCounts(),
            issues_after=count_issues_by_severity(last.issues) if last else SeverityCounts(),
            operations_attempted=len(fixes),
            operations_succeeded=sum(1 for f in fixes if f.success),
        )
        return RecoveryResult(
            markdown=current,
            stop_reason=stop,
            approved=bool(last and last.approved),
            remaining_issues=list(last.issues) if last else [],
            suggestions=list(last.suggestions) if last else [],
            metadata=RecoveryMetadata(
                plan_retries=plan_retries,
                fixer_iterations=iterations,
                fixes_applied=fixes,
                outcome_metrics=metrics,
            ),
            token_usage=usage,
        )


def run_recovery(
    config: ProjectConfig,
    markdown: str,
    plan: ArticlePlan,
    **kwargs: Any,
) -> RecoveryResult:
    """Synchronous wrapper around ``RecoveryLoop.run`` with AG2 collaborators."""
    return asyncio.run(RecoveryLoop(config).run(markdown, plan, **kwargs))
