"""BatchFixer — resolve every batchable issue in one section with one LLM call.

The edited section is only swapped in when it passes the length gate:
``removal_bound`` stops a truncated stub from replacing real content and
``addition_bound`` stops a rewrite of the whole article landing in one
section. Both bounds are inclusive.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Sequence

from ..deps import FixerDeps
from ..llm import OperationCancelled, strip_fences, with_retry
from ..models import BatchEditOutput, FixerSettings, FixResult, FixStrategy, IssueSeverity, ReviewIssue, TokenUsage
from ..prompts import BATCH_FIX_SYSTEM
from ..tools.sections import get_section_content, normalize_heading, replace_section

logger = logging.getLogger(__name__)

_GROWTH_STRATEGIES = frozenset({FixStrategy.EXPAND, FixStrategy.REGENERATE})


@dataclass(frozen=True)
class LengthBounds:
    removal: int
    addition: int

    def accepts(self, delta: int) -> bool:
        return -self.removal <= delta <= self.addition


def compute_bounds(original: str, issues: Sequence[ReviewIssue], settings: FixerSettings) -> LengthBounds:
    """Inclusive length-delta bounds for a batch edit of *original*."""
    removal = int(len(original) * settings.max_removal_ratio)
    addition = 0
    for issue in issues:
        if issue.fix_strategy in _GROWTH_STRATEGIES or issue.severity is IssueSeverity.CRITICAL:
            addition += settings.expand_addition_chars
        else:
            addition += settings.addition_chars_per_issue
    return LengthBounds(removal=removal, addition=addition)


def clean_edited_content(text: str, headline: str) -> str:
    """Strip fences and a leading copy of the section's own heading."""
    text = strip_fences(text)
    m = re.match(r"\A\s*##[ \t]+(.*)\n?", text)
    if m and normalize_heading(m.group(1)) == normalize_heading(headline):
        text = text[m.end():]
    return text.strip()


def build_batch_prompt(headline: str, content: str, issues: Sequence[ReviewIssue]) -> str:
    lines = [f"SECTION: {headline}", "", "ISSUES TO RESOLVE:"]
    for n, issue in enumerate(issues, 1):
        lines.append(f"{n}. [{issue.severity.value}/{issue.fix_strategy.value}] {issue.message}")
        lines.append(f"   INSTRUCTION: {issue.fix_instruction}")
    lines += [
        "",
        "ORIGINAL CONTENT:",
        content,
        "",
        "Return the full revised section body in edited_content, one entry in "
        "changes per issue you resolved, and your grammar check.",
    ]
    return "\n".join(lines)


def _failed(markdown: str, description: str, usage: TokenUsage | None = None) -> FixResult:
    return FixResult(markdown=markdown, success=False, description=description, token_usage=usage or TokenUsage())


async def batch_fix(
    markdown: str,
    headline: str,
    issues: Sequence[ReviewIssue],
    deps: FixerDeps,
) -> FixResult:
    """Apply all *issues* to section *headline* in one edit.

    Never raises except for ``OperationCancelled``; every other failure is
    a ``FixResult`` with ``success=False`` and the input markdown.
    """
    actionable = [i for i in issues if i.has_instruction]
    if not actionable:
        return FixResult(markdown=markdown, success=True, description="No fix instructions provided; nothing to do")

    original = get_section_content(markdown, headline)
    if original is None:
        logger.warning("Batch fix: section %r not found", headline)
        return _failed(markdown, f'Section "{headline}" not found')

    settings = deps.settings
    prompt = build_batch_prompt(headline, original, actionable)

    async def _call():
        return await deps.llm(
            BatchEditOutput,
            system=BATCH_FIX_SYSTEM,
            prompt=prompt,
            temperature=settings.temperature,
            max_tokens=settings.max_output_tokens,
            cancel_event=deps.cancel_event,
        )

    try:
        response = await with_retry(
            _call, deps.retry,
            operation=f'Batch fix "{headline}"',
            cancel_event=deps.cancel_event,
        )
    except OperationCancelled:
        raise
    except Exception as e:
        logger.error("Batch fix for %r failed: %s", headline, e)
        return _failed(markdown, f"Batch fix failed: {e}")

    usage = response.usage
    edited = clean_edited_content(response.object.edited_content, headline)
    bounds = compute_bounds(original, actionable, settings)
    delta = len(edited) - len(original)

    if not bounds.accepts(delta):
        kind = "removed" if delta < 0 else "added"
        logger.warning(
            "Batch fix for %r rejected: %s %d chars (bounds -%d/+%d)",
            headline, kind, abs(delta), bounds.removal, bounds.addition,
        )
        return _failed(
            markdown,
            f"Edit rejected: {kind} {abs(delta)} chars (allowed -{bounds.removal}/+{bounds.addition})",
            usage,
        )

    replaced = replace_section(markdown, headline, edited)
    if replaced is None:
        return _failed(markdown, f'Failed to replace section "{headline}"', usage)

    # replace_section normalises blank lines, so compare the bodies as well.
    success = edited != original and replaced != markdown
    # Self-reported by the model, capped at the number of issues sent.
    addressed = min(len(response.object.changes), len(actionable))
    if success:
        logger.info("Batch fix applied to %r (%d/%d issues, %+d chars)", headline, addressed, len(actionable), delta)
        description = f'Batch-fixed {len(actionable)} issue(s) in "{headline}"'
    else:
        logger.info("Batch fix for %r had no effect", headline)
        description = "Batch edit had no effect"

    return FixResult(
        markdown=replaced if success else markdown,
        success=success,
        description=description,
        token_usage=usage,
        issues_addressed=addressed if success else 0,
    )
