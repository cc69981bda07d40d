"""Fix dispatcher: group review issues per section and classify them.

Pure functions over immutable issues. Nothing here calls an LLM or touches
the markdown; the recovery loop consumes the returned plan in order.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable

from ..models import FixStrategy, ReviewIssue
from .sections import normalize_heading

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SectionFixGroup:
    """Actionable issues that target one section."""
    target: str
    special: ReviewIssue | None = None
    batchable: tuple[ReviewIssue, ...] = ()
    special_candidates: tuple[ReviewIssue, ...] = ()

    @property
    def issues(self) -> tuple[ReviewIssue, ...]:
        return (*self.special_candidates, *self.batchable)

    @property
    def is_global(self) -> bool:
        return normalize_heading(self.target) == "global"


@dataclass(frozen=True)
class FixPlan:
    """Ordered groups to execute this iteration plus the ones left for later."""
    groups: tuple[SectionFixGroup, ...] = ()
    deferred: tuple[SectionFixGroup, ...] = ()
    dropped: int = 0

    @property
    def deferred_targets(self) -> list[str]:
        return [g.target for g in self.deferred]


@dataclass
class _Bucket:
    target: str
    issues: list[ReviewIssue] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


def actionable_issues(issues: Iterable[ReviewIssue]) -> list[ReviewIssue]:
    """Issues with a real strategy; ``no_action`` is removed."""
    return [i for i in issues if i.fix_strategy is not FixStrategy.NO_ACTION]


def group_by_target(issues: Iterable[ReviewIssue]) -> list[tuple[str, list[ReviewIssue]]]:
    """Group issues by ``location`` (``"global"`` when absent), keeping first-seen order.

    Keys are compared whitespace- and case-insensitively; the first spelling
    seen is kept for display.
    """
    buckets: dict[str, _Bucket] = {}
    for issue in issues:
        key = normalize_heading(issue.target)
        bucket = buckets.get(key)
        if bucket is None:
            bucket = buckets[key] = _Bucket(target=issue.target.strip())
        bucket.issues.append(issue)
    return [(b.target, list(b.issues)) for b in buckets.values()]


def select_special(candidates: Iterable[ReviewIssue]) -> ReviewIssue | None:
    """Pick the one special issue to run: ``regenerate`` wins, else the first."""
    candidates = list(candidates)
    if not candidates:
        return None
    for issue in candidates:
        if issue.fix_strategy is FixStrategy.REGENERATE:
            return issue
    return candidates[0]


def classify_group(target: str, issues: Iterable[ReviewIssue]) -> SectionFixGroup:
    issues = tuple(issues)
    special = tuple(i for i in issues if i.is_special)
    batchable = tuple(i for i in issues if not i.is_special and i.is_actionable)
    return SectionFixGroup(
        target=target,
        special=select_special(special),
        batchable=batchable,
        special_candidates=special,
    )


def plan_fixes(issues: Iterable[ReviewIssue], max_sections: int | None = None) -> FixPlan:
    """Build the per-iteration fix plan.

    Drops ``no_action`` issues, groups the rest by section, classifies each
    group and applies the per-iteration section cap. Groups past the cap are
    returned in ``deferred`` so the caller can surface them.
    """
    issues = list(issues)
    actionable = actionable_issues(issues)
    dropped = len(issues) - len(actionable)

    groups = [classify_group(target, members) for target, members in group_by_target(actionable)]

    if max_sections is not None and len(groups) > max_sections:
        kept, deferred = groups[:max_sections], groups[max_sections:]
        logger.info(
            "Fix cap reached: %d section(s) this iteration, %d deferred",
            len(kept), len(deferred),
        )
    else:
        kept, deferred = groups, []

    return FixPlan(groups=tuple(kept), deferred=tuple(deferred), dropped=dropped)
