"""Pydantic models for the article recovery loop."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class IssueSeverity(str, Enum):
    CRITICAL = "critical"
    MAJOR = "major"
    MINOR = "minor"


class IssueCategory(str, Enum):
    REDUNDANCY = "redundancy"
    COVERAGE = "coverage"
    FACTUAL = "factual"
    STYLE = "style"
    SEO = "seo"
    STRUCTURE = "structure"
    CHECKLIST = "checklist"


class FixStrategy(str, Enum):
    DIRECT_EDIT = "direct_edit"
    REGENERATE = "regenerate"
    ADD_SECTION = "add_section"
    EXPAND = "expand"
    BATCH = "batch"
    NO_ACTION = "no_action"


# Strategies that go through the external section writer.
SPECIAL_STRATEGIES = frozenset({FixStrategy.REGENERATE, FixStrategy.ADD_SECTION})

# Strategies the reviewer is allowed to emit.
REVIEWER_STRATEGIES = frozenset(FixStrategy) - {FixStrategy.BATCH}


class ArticleCategory(str, Enum):
    NEWS = "news"
    REVIEWS = "reviews"
    GUIDES = "guides"
    LISTS = "lists"


_CATEGORY_ALIASES = {"review": "reviews", "guide": "guides", "list": "lists"}


def normalize_category_slug(value: str) -> str:
    """Map singular aliases (``guide``, ``review``, ``list``) to canonical slugs."""
    slug = value.strip().lower()
    return _CATEGORY_ALIASES.get(slug, slug)


def _loose_heading(text: str) -> str:
    # Same comparison as tools.sections.normalize_heading.
    return " ".join(text.split()).lower()


class StopReason(str, Enum):
    APPROVED = "approved"
    ISSUES_EXHAUSTED = "issues_exhausted"
    MAX_ITERATIONS = "max_iterations"
    CANCELLED = "cancelled"


# ---------------------------------------------------------------------------
# Token accounting
# ---------------------------------------------------------------------------

class TokenUsage(BaseModel):
    """Prompt/completion token counts for one or more LLM calls."""
    model_config = ConfigDict(frozen=True)

    input: int = Field(default=0, ge=0, description="Prompt tokens")
    output: int = Field(default=0, ge=0, description="Completion tokens")

    def __add__(self, other: TokenUsage) -> TokenUsage:
        return TokenUsage(input=self.input + other.input, output=self.output + other.output)

    @property
    def total(self) -> int:
        return self.input + self.output

    @classmethod
    def from_autogen_cost(cls, cost: Any) -> TokenUsage:
        """Build usage from an AG2 ``ChatResult.cost`` dict.

        The dict is keyed by ``usage_including_cached_inference`` /
        ``usage_excluding_cached_inference``; each maps model names to
        ``{"prompt_tokens", "completion_tokens", ...}`` plus a ``total_cost``
        float. Anything unexpected yields zero usage.
        """
        if not isinstance(cost, dict):
            return cls()
        bucket = cost.get("usage_including_cached_inference") or cost.get(
            "usage_excluding_cached_inference"
        ) or {}
        prompt = completion = 0
        for key, entry in bucket.items():
            if key == "total_cost" or not isinstance(entry, dict):
                continue
            prompt += int(entry.get("prompt_tokens", 0) or 0)
            completion += int(entry.get("completion_tokens", 0) or 0)
        return cls(input=prompt, output=completion)


# ---------------------------------------------------------------------------
# Article plan (read-only input)
# ---------------------------------------------------------------------------

class SectionPlan(BaseModel):
    """Plan for a single H2 section of the article."""
    model_config = ConfigDict(frozen=True)

    headline: str = Field(..., min_length=1, description="Section headline as it appears after '## '")
    goal: str = Field(..., min_length=1, description="What the section must accomplish")
    research_queries: list[str] = Field(default_factory=list, description="Queries used to research the section")


class ArticleSafety(BaseModel):
    model_config = ConfigDict(frozen=True)

    no_prices: bool = Field(default=True)
    no_scores_unless_review: bool = Field(default=True)


class ArticlePlan(BaseModel):
    """Editor output describing the expected article structure."""
    model_config = ConfigDict(frozen=True)

    title: str = Field(..., min_length=1, max_length=100)
    category_slug: ArticleCategory = Field(default=ArticleCategory.GUIDES)
    excerpt: str = Field(default="")
    tags: list[str] = Field(default_factory=list)
    sections: list[SectionPlan] = Field(default_factory=list)
    safety: ArticleSafety = Field(default_factory=ArticleSafety)

    @field_validator("category_slug", mode="before")
    @classmethod
    def _normalize_category(cls, value: Any) -> Any:
        if isinstance(value, str):
            return normalize_category_slug(value)
        return value

    def find_section_index(self, headline: str) -> int | None:
        """Index of the planned section whose headline matches ignoring case and spacing."""
        wanted = _loose_heading(headline)
        for i, section in enumerate(self.sections):
            if _loose_heading(section.headline) == wanted:
                return i
        return None

    def with_section(self, section: SectionPlan) -> ArticlePlan:
        """Return a copy of the plan with *section* appended."""
        return self.model_copy(update={"sections": [*self.sections, section]})


class SourceSummary(BaseModel):
    """Condensed per-source research used by the reviewer for fact-checking."""
    title: str = Field(...)
    url: str = Field(default="")
    query: str = Field(default="")
    quality_score: int = Field(default=0, ge=0, le=100)
    relevance_score: int = Field(default=0, ge=0, le=100)
    detailed_summary: str = Field(default="")
    key_facts: list[str] = Field(default_factory=list)
    data_points: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Review
# ---------------------------------------------------------------------------

class ReviewIssue(BaseModel):
    """A single defect reported by the reviewer."""
    model_config = ConfigDict(frozen=True)

    severity: IssueSeverity = Field(...)
    category: IssueCategory = Field(...)
    location: str | None = Field(default=None, description="Section headline, 'global', or None")
    message: str = Field(..., description="Human-readable description of the defect")
    suggestion: str | None = Field(default=None)
    fix_strategy: FixStrategy = Field(default=FixStrategy.NO_ACTION)
    fix_instruction: str | None = Field(default=None, description="Directive for the fixer")

    @property
    def is_actionable(self) -> bool:
        return self.fix_strategy is not FixStrategy.NO_ACTION

    @property
    def is_special(self) -> bool:
        return self.fix_strategy in SPECIAL_STRATEGIES

    @property
    def target(self) -> str:
        return self.location or "global"

    @property
    def has_instruction(self) -> bool:
        return bool(self.fix_instruction and self.fix_instruction.strip())


class RawReviewIssue(BaseModel):
    """Issue as emitted by the model, before strategy/instruction validation."""
    severity: IssueSeverity = Field(...)
    category: IssueCategory = Field(...)
    location: str | None = Field(default=None)
    message: str = Field(...)
    suggestion: str | None = Field(default=None)
    fix_strategy: str = Field(
        default="no_action",
        description="One of: direct_edit, regenerate, add_section, expand, no_action",
    )
    fix_instruction: str | None = Field(default=None)


class ReviewerLLMOutput(BaseModel):
    """Structured output schema requested from the reviewer model."""
    approved: bool = Field(..., description="True if the article is publishable as-is")
    issues: list[RawReviewIssue] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)


class ReviewerOutput(BaseModel):
    """Validated reviewer result handed to the recovery loop."""
    approved: bool = Field(...)
    issues: list[ReviewIssue] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)
    token_usage: TokenUsage = Field(default_factory=TokenUsage)


class SeverityCounts(BaseModel):
    critical: int = Field(default=0, ge=0)
    major: int = Field(default=0, ge=0)
    minor: int = Field(default=0, ge=0)

    @property
    def total(self) -> int:
        return self.critical + self.major + self.minor


# ---------------------------------------------------------------------------
# Fixing
# ---------------------------------------------------------------------------

class BatchChange(BaseModel):
    issue_number: int = Field(..., description="1-based number of the issue this change addresses")
    summary: str = Field(..., description="What was changed")


class BatchEditOutput(BaseModel):
    """Structured output schema requested from the batch fixer model."""
    reasoning: str = Field(default="", description="Brief plan for resolving every issue")
    edited_content: str = Field(..., description="Full replacement content for the section, without its heading")
    changes: list[BatchChange] = Field(default_factory=list, description="One entry per issue addressed")
    grammar_check: str = Field(default="", description="Self-reported grammar/spelling check of the result")


class FixResult(BaseModel):
    """Outcome of one section-level fix operation."""
    markdown: str = Field(..., description="Document after the operation (unchanged on failure)")
    success: bool = Field(...)
    description: str = Field(default="")
    token_usage: TokenUsage = Field(default_factory=TokenUsage)
    issues_addressed: int = Field(default=0, ge=0, description="Model-claimed count, not verified")


class FixApplied(BaseModel):
    """Audit record appended for every attempted section-level operation."""
    model_config = ConfigDict(frozen=True)

    iteration: int = Field(..., ge=1)
    strategy: FixStrategy = Field(...)
    target: str = Field(...)
    reason: str = Field(default="")
    success: bool = Field(...)


class FixerIterationOutput(BaseModel):
    markdown: str = Field(...)
    fixes_applied: list[FixApplied] = Field(default_factory=list)
    token_usage: TokenUsage = Field(default_factory=TokenUsage)
    deferred_targets: list[str] = Field(
        default_factory=list,
        description="Sections skipped because the per-iteration cap was reached",
    )


OUTCOME_NOTE = (
    "operations_succeeded counts edits that changed the markdown; it does not "
    "mean the issue was resolved. Compare issues_before with issues_after, "
    "since the reviewer can report new issues while old ones are fixed."
)


class OutcomeMetrics(BaseModel):
    issues_before: SeverityCounts = Field(default_factory=SeverityCounts)
    issues_after: SeverityCounts = Field(default_factory=SeverityCounts)
    operations_attempted: int = Field(default=0, ge=0)
    operations_succeeded: int = Field(default=0, ge=0)
    note: str = Field(default=OUTCOME_NOTE)


class RecoveryMetadata(BaseModel):
    plan_retries: int = Field(default=0, ge=0)
    fixer_iterations: int = Field(default=0, ge=0)
    fixes_applied: list[FixApplied] = Field(default_factory=list)
    outcome_metrics: OutcomeMetrics = Field(default_factory=OutcomeMetrics)


class RecoveryResult(BaseModel):
    """Top-level result of a recovery run."""
    markdown: str = Field(...)
    stop_reason: StopReason = Field(...)
    approved: bool = Field(default=False)
    remaining_issues: list[ReviewIssue] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)
    metadata: RecoveryMetadata = Field(default_factory=RecoveryMetadata)
    token_usage: TokenUsage = Field(default_factory=TokenUsage)


# ---------------------------------------------------------------------------
# Project configuration (loaded from YAML)
# ---------------------------------------------------------------------------

class ModelEndpointOverride(BaseModel):
    """Per-model endpoint settings that replace the global Azure values."""
    endpoint: str = Field(default="")
    api_key: str | None = Field(default=None)
    api_version: str | None = Field(default=None)
    api_type: str | None = Field(default=None, description="Forced AG2 api_type, e.g. 'anthropic'")


class ModelConfig(BaseModel):
    """LLM model configuration per role."""
    default: str = Field(default="gpt-5.2", description="Default model")
    reviewer: str | None = Field(default=None)
    fixer: str | None = Field(default=None)
    writer: str | None = Field(default=None)
    overrides: dict[str, ModelEndpointOverride] = Field(default_factory=dict)


class AzureConfig(BaseModel):
    """Azure OpenAI connection settings."""
    api_key: str = Field(default="", description="Azure OpenAI API key (or ${ENV_VAR})")
    api_version: str = Field(default="", description="API version")
    endpoint: str = Field(default="", description="Azure endpoint URL")


class ReviewerSettings(BaseModel):
    temperature: float = Field(default=0.2, ge=0.0, le=2.0)
    max_output_tokens: int = Field(default=4000, gt=0)
    max_article_content_length: int = Field(default=60000, gt=0, description="Characters of article sent for review")
    max_research_context_length: int = Field(default=8000, gt=0, description="Characters of research summary")


class FixerSettings(BaseModel):
    max_iterations: int = Field(default=3, ge=0, description="Review/fix rounds before giving up")
    max_fixes_per_iteration: int = Field(default=5, gt=0, description="Sections touched per round")
    temperature: float = Field(default=0.3, ge=0.0, le=2.0)
    max_output_tokens: int = Field(default=6000, gt=0)
    max_removal_ratio: float = Field(
        default=0.5, ge=0.0, le=1.0,
        description="Largest share of a section a batch edit may delete",
    )
    addition_chars_per_issue: int = Field(default=600, ge=0)
    expand_addition_chars: int = Field(
        default=1500, ge=0,
        description="Per-issue growth allowance for expand/regenerate or critical issues",
    )
    target_word_count: int | None = Field(default=None, description="Word target handed to the section writer")

    @model_validator(mode="after")
    def _check_allowances(self) -> FixerSettings:
        if self.expand_addition_chars < self.addition_chars_per_issue:
            raise ValueError(
                f"expand_addition_chars ({self.expand_addition_chars}) cannot be smaller than "
                f"addition_chars_per_issue ({self.addition_chars_per_issue})"
            )
        return self


class RetrySettings(BaseModel):
    max_retries: int = Field(default=3, ge=0)
    initial_delay: float = Field(default=1.0, gt=0.0, description="Seconds before the first retry")
    max_delay: float = Field(default=10.0, gt=0.0, description="Upper bound on a single backoff")
    backoff_multiplier: float = Field(default=2.0, gt=0.0)

    @model_validator(mode="after")
    def _check_delays(self) -> RetrySettings:
        if self.initial_delay > self.max_delay:
            raise ValueError(
                f"initial_delay ({self.initial_delay}) cannot be greater than max_delay ({self.max_delay})"
            )
        return self


class ProjectConfig(BaseModel):
    """Full project configuration loaded from config.yaml."""
    project_name: str = Field(default="article-recovery")

    # Azure OpenAI
    azure: AzureConfig = Field(default_factory=AzureConfig)

    # Models
    models: ModelConfig = Field(default_factory=ModelConfig)

    timeout: int = Field(default=120, description="LLM call timeout in seconds")
    seed: int = Field(default=42, description="LLM seed for reproducibility")

    reviewer: ReviewerSettings = Field(default_factory=ReviewerSettings)
    fixer: FixerSettings = Field(default_factory=FixerSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
