"""Tests for agents/reviewer.py and prompts.py."""

from __future__ import annotations

import pytest

from article_recovery.agents.reviewer import (
    RESEARCH_TRUNCATION_MARKER,
    TRUNCATION_MARKER,
    build_research_summary,
    count_issues_by_severity,
    filter_valid_issues,
    get_issues_by_category,
    run_reviewer,
    should_reject_article,
    truncate_article,
)
from article_recovery.llm import ReviewerError
from article_recovery.models import (
    ArticleCategory,
    FixStrategy,
    IssueCategory,
    IssueSeverity,
    RawReviewIssue,
    ReviewerLLMOutput,
    ReviewerSettings,
    SourceSummary,
)
from article_recovery.prompts import (
    GUIDES_SYSTEM,
    NEWS_SYSTEM,
    REVIEWS_SYSTEM,
    ReviewerPromptContext,
    reviewer_system_prompt,
    reviewer_user_prompt,
)


def _raw(**overrides) -> RawReviewIssue:
    fields = {
        "severity": "major",
        "category": "style",
        "location": "Combat",
        "message": "Wordy phrasing",
        "fix_strategy": "direct_edit",
        "fix_instruction": "Replace 'utilize' with 'use'",
    }
    fields.update(overrides)
    return RawReviewIssue(**fields)


# ---------------------------------------------------------------------------
# Input preparation
# ---------------------------------------------------------------------------


class TestTruncation:
    def test_short_article_untouched(self):
        assert truncate_article("abc", 10) == "abc"

    def test_long_article_marked(self):
        out = truncate_article("a" * 20, 10)
        assert out == "a" * 10 + TRUNCATION_MARKER


class TestResearchSummary:
    def _source(self, **overrides) -> SourceSummary:
        fields = {
            "title": "Elden Ring Wiki",
            "url": "https://example.com/wiki",
            "query": "elden ring torrent",
            "quality_score": 90,
            "relevance_score": 80,
            "detailed_summary": "Torrent is unlocked at the Church of Elleh.",
            "key_facts": [f"fact {n}" for n in range(10)],
            "data_points": [f"dp {n}" for n in range(12)],
        }
        fields.update(overrides)
        return SourceSummary(**fields)

    def test_empty(self):
        assert build_research_summary(None, 1000) == ""
        assert build_research_summary([], 1000) == ""

    def test_format(self):
        out = build_research_summary([self._source()], 10_000)
        assert out.startswith("=== RESEARCH SUMMARIES (Top Sources by Quality) ===")
        assert '--- Source: "Elden Ring Wiki" ---' in out
        assert "Quality: 90/100 | Relevance: 80/100" in out
        assert "• fact 6" in out and "fact 7" not in out
        assert "dp 9" in out and "dp 10" not in out

    def test_capped(self):
        out = build_research_summary([self._source()] * 5, 200)
        assert out.endswith(RESEARCH_TRUNCATION_MARKER)
        assert len(out) == 200 + len(RESEARCH_TRUNCATION_MARKER)


# ---------------------------------------------------------------------------
# Output validation
# ---------------------------------------------------------------------------


class TestFilterValidIssues:
    def test_valid_issue_kept(self):
        [issue] = filter_valid_issues([_raw()])
        assert issue.fix_strategy is FixStrategy.DIRECT_EDIT
        assert issue.location == "Combat"

    def test_unknown_strategy_dropped(self):
        assert filter_valid_issues([_raw(fix_strategy="rewrite_everything")]) == []

    def test_batch_not_accepted_from_reviewer(self):
        assert filter_valid_issues([_raw(fix_strategy="batch")]) == []

    def test_inline_insert_alias(self):
        [issue] = filter_valid_issues([_raw(fix_strategy="inline_insert")])
        assert issue.fix_strategy is FixStrategy.DIRECT_EDIT

    def test_strategy_case_insensitive(self):
        [issue] = filter_valid_issues([_raw(fix_strategy=" Expand ")])
        assert issue.fix_strategy is FixStrategy.EXPAND

    def test_minor_without_instruction_dropped(self):
        assert filter_valid_issues([_raw(severity="minor", fix_instruction="  ")]) == []

    @pytest.mark.parametrize("severity", ["critical", "major"])
    def test_serious_without_instruction_gets_default(self, severity):
        [issue] = filter_valid_issues([_raw(severity=severity, fix_instruction=None)])
        assert issue.fix_instruction == 'Fix in "Combat": Wordy phrasing'

    def test_default_instruction_by_category(self):
        coverage, structure, checklist = filter_valid_issues([
            _raw(category="coverage", fix_instruction=None, message="No boss list"),
            _raw(category="structure", fix_instruction=None, message="Out of order"),
            _raw(category="checklist", fix_instruction=None, location=None, message="No Torrent"),
        ])
        assert coverage.fix_instruction == 'In section "Combat", add the missing information: No boss list'
        assert structure.fix_instruction.startswith('Fix structural issue in "Combat"')
        assert checklist.fix_instruction.startswith('Add paragraph in "the appropriate section"')

    @pytest.mark.parametrize("location", ["Throughout article", "multiple sections", "Various places", "General"])
    def test_vague_location_dropped(self, location):
        assert filter_valid_issues([_raw(location=location)]) == []

    def test_no_action_keeps_no_instruction(self):
        [issue] = filter_valid_issues([_raw(fix_strategy="no_action", severity="minor", fix_instruction="ignored")])
        assert issue.fix_strategy is FixStrategy.NO_ACTION
        assert issue.fix_instruction is None

    def test_blank_location_becomes_none(self):
        [issue] = filter_valid_issues([_raw(location="  ")])
        assert issue.location is None
        assert issue.target == "global"


class TestIssueHelpers:
    def test_counts(self, make_issue):
        issues = [
            make_issue(severity=IssueSeverity.CRITICAL),
            make_issue(),
            make_issue(),
            make_issue(severity=IssueSeverity.MINOR),
        ]
        counts = count_issues_by_severity(issues)
        assert (counts.critical, counts.major, counts.minor, counts.total) == (1, 2, 1, 4)

    def test_reject_on_critical(self, make_issue):
        assert should_reject_article([make_issue(severity=IssueSeverity.CRITICAL)])
        assert not should_reject_article([make_issue()])

    def test_by_category(self, make_issue):
        factual = make_issue(category=IssueCategory.FACTUAL)
        assert get_issues_by_category([make_issue(), factual], IssueCategory.FACTUAL) == [factual]


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------


class TestPrompts:
    def test_system_prompt_per_category(self):
        assert reviewer_system_prompt(ArticleCategory.NEWS) == NEWS_SYSTEM
        assert reviewer_system_prompt("reviews") == REVIEWS_SYSTEM

    def test_unknown_category_uses_guides(self):
        assert reviewer_system_prompt("recipes") == GUIDES_SYSTEM
        assert reviewer_system_prompt(None) == GUIDES_SYSTEM

    def test_user_prompt_sections(self, sample_plan):
        prompt = reviewer_user_prompt(ReviewerPromptContext(plan=sample_plan, markdown="BODY", research_summary=""))
        assert "Review this GUIDE article draft." in prompt
        assert "- Intro\n- Combat" in prompt
        assert "BODY" in prompt
        assert "(no research summary available)" in prompt


# ---------------------------------------------------------------------------
# Review call
# ---------------------------------------------------------------------------


class TestRunReviewer:
    def test_sources_stripped_and_issues_validated(self, run, sample_markdown, sample_plan, make_llm, fast_retry):
        llm = make_llm(ReviewerLLMOutput(
            approved=False,
            issues=[_raw(), _raw(fix_strategy="bogus")],
            suggestions=["Add a boss list"],
        ))
        review = run(run_reviewer(sample_markdown, sample_plan, llm, retry=fast_retry))

        assert review.approved is False
        assert len(review.issues) == 1
        assert review.suggestions == ["Add a boss list"]
        assert review.token_usage.input == 100

        call = llm.calls[0]
        assert call["schema"] is ReviewerLLMOutput
        assert call["system"] == GUIDES_SYSTEM
        assert "## Sources" not in call["prompt"]
        assert "example.com/elden-ring-guide" not in call["prompt"]
        assert "dodge roll" in call["prompt"]

    def test_settings_applied(self, run, sample_markdown, sample_plan, make_llm, fast_retry):
        llm = make_llm(ReviewerLLMOutput(approved=True))
        settings = ReviewerSettings(temperature=0.1, max_output_tokens=1234, max_article_content_length=40)
        run(run_reviewer(sample_markdown, sample_plan, llm, settings=settings, retry=fast_retry))

        call = llm.calls[0]
        assert call["temperature"] == 0.1
        assert call["max_tokens"] == 1234
        assert TRUNCATION_MARKER in call["prompt"]

    def test_research_text_passed_through(self, run, sample_markdown, sample_plan, make_llm, fast_retry):
        llm = make_llm(ReviewerLLMOutput(approved=True))
        run(run_reviewer(sample_markdown, sample_plan, llm, research="Torrent unlocks early.", retry=fast_retry))
        assert "Torrent unlocks early." in llm.calls[0]["prompt"]

    def test_transient_failure_retried(self, run, sample_markdown, sample_plan, make_llm, fast_retry):
        llm = make_llm(RuntimeError("503 Service Unavailable"), ReviewerLLMOutput(approved=True))
        review = run(run_reviewer(sample_markdown, sample_plan, llm, retry=fast_retry))
        assert review.approved is True
        assert len(llm.calls) == 2

    def test_exhausted_retries_raise(self, run, sample_markdown, sample_plan, make_llm, fast_retry):
        llm = make_llm(*[RuntimeError("rate limit exceeded")] * 3)
        with pytest.raises(ReviewerError):
            run(run_reviewer(sample_markdown, sample_plan, llm, retry=fast_retry))
        assert len(llm.calls) == fast_retry.max_retries + 1

    def test_non_retryable_raises_immediately(self, run, sample_markdown, sample_plan, make_llm, fast_retry):
        llm = make_llm(PermissionError("invalid api key"))
        with pytest.raises(ReviewerError, match="invalid api key"):
            run(run_reviewer(sample_markdown, sample_plan, llm, retry=fast_retry))
        assert len(llm.calls) == 1
