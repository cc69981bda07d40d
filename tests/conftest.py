"""Shared test fixtures."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest
from pydantic import BaseModel

from article_recovery.agents.section_writer import SectionText
from article_recovery.llm import StructuredResponse
from article_recovery.models import (
    ArticlePlan,
    FixStrategy,
    IssueCategory,
    IssueSeverity,
    RetrySettings,
    ReviewIssue,
    SectionPlan,
    TokenUsage,
)

FIXTURES_DIR = Path(__file__).parent / "fixtures"
SAMPLE_CONFIG = FIXTURES_DIR / "sample_config.yaml"
SAMPLE_ARTICLE = FIXTURES_DIR / "sample_article.md"
SAMPLE_PLAN = FIXTURES_DIR / "sample_plan.json"
SAMPLE_SOURCES = FIXTURES_DIR / "sample_sources.json"

SAMPLE_MARKDOWN = (
    "# Elden Ring Beginner Guide\n"
    "\n"
    "Everything you need for your first hours in the Lands Between.\n"
    "\n"
    "## Intro\n"
    "\n"
    "Welcome to the Lands Between. Learn to utilize Torrent early.\n"
    "\n"
    "## Combat\n"
    "\n"
    "You should utilize the dodge roll often. Timing matters more than stats.\n"
    "\n"
    "## Sources\n"
    "\n"
    "- https://example.com/elden-ring-guide\n"
)


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeLLM:
    """Scripted ``StructuredLLM``.

    Each queued item is returned in order: a model instance, a
    ``StructuredResponse``, an exception to raise, or a callable
    ``(schema, prompt) -> item``.
    """

    def __init__(self, *responses, usage: TokenUsage | None = None) -> None:
        self.responses = list(responses)
        self.usage = usage or TokenUsage(input=100, output=20)
        self.calls: list[dict] = []

    async def __call__(self, schema, *, system, prompt, temperature, max_tokens, cancel_event=None):
        self.calls.append({
            "schema": schema,
            "system": system,
            "prompt": prompt,
            "temperature": temperature,
            "max_tokens": max_tokens,
        })
        if not self.responses:
            raise AssertionError("FakeLLM: no response queued")
        item = self.responses.pop(0)
        if callable(item) and not isinstance(item, BaseModel):
            item = item(schema, prompt)
        if isinstance(item, BaseException):
            raise item
        if isinstance(item, StructuredResponse):
            return item
        return StructuredResponse(object=item, usage=self.usage)


class FakeWriter:
    """Scripted ``SectionWriter`` recording every call."""

    def __init__(self, *texts, usage: TokenUsage | None = None) -> None:
        self.texts = list(texts)
        self.usage = usage or TokenUsage(input=200, output=80)
        self.calls: list[dict] = []

    async def __call__(
        self,
        context,
        plan,
        section_index,
        pool,
        *,
        feedback=None,
        target_word_count=None,
        cancel_event=None,
    ):
        self.calls.append({
            "context": context,
            "plan": plan,
            "section_index": section_index,
            "pool": pool,
            "feedback": feedback,
            "target_word_count": target_word_count,
        })
        if not self.texts:
            raise AssertionError("FakeWriter: no text queued")
        item = self.texts.pop(0)
        if isinstance(item, BaseException):
            raise item
        return SectionText(text=item, token_usage=self.usage)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def fixtures_dir() -> Path:
    return FIXTURES_DIR


@pytest.fixture
def sample_config_path() -> Path:
    return SAMPLE_CONFIG


@pytest.fixture
def sample_markdown() -> str:
    return SAMPLE_MARKDOWN


@pytest.fixture
def sample_plan() -> ArticlePlan:
    return ArticlePlan(
        title="Elden Ring Beginner Guide",
        category_slug="guides",
        excerpt="First hours in the Lands Between.",
        sections=[
            SectionPlan(headline="Intro", goal="Set expectations for new players"),
            SectionPlan(headline="Combat", goal="Explain dodging and timing"),
        ],
    )


@pytest.fixture
def fast_retry() -> RetrySettings:
    return RetrySettings(max_retries=2, initial_delay=0.001, max_delay=0.001)


@pytest.fixture
def make_llm():
    return FakeLLM


@pytest.fixture
def make_writer():
    return FakeWriter


@pytest.fixture
def make_issue():
    def _make(
        location: str | None = "Combat",
        strategy: FixStrategy = FixStrategy.DIRECT_EDIT,
        instruction: str | None = "Replace 'utilize' with 'use'",
        severity: IssueSeverity = IssueSeverity.MAJOR,
        category: IssueCategory = IssueCategory.STYLE,
        message: str = "Wordy phrasing",
    ) -> ReviewIssue:
        return ReviewIssue(
            severity=severity,
            category=category,
            location=location,
            message=message,
            fix_strategy=strategy,
            fix_instruction=instruction,
        )
    return _make


@pytest.fixture
def run():
    """Run a coroutine to completion from a synchronous test."""
    return asyncio.run
