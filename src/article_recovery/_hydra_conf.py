"""Hydra structured config dataclasses.

These mirror the Pydantic ``ProjectConfig`` for Hydra schema validation.
At runtime the Hydra DictConfig is converted to ``ProjectConfig`` via
``cli._to_project_config()``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from hydra.core.config_store import ConfigStore


@dataclass
class AzureConf:
    api_key: str = "${oc.env:AZURE_OPENAI_API_KEY,''}"
    api_version: str = "${oc.env:AZURE_OPENAI_API_VERSION,''}"
    endpoint: str = "${oc.env:AZURE_OPENAI_ENDPOINT,''}"


@dataclass
class ModelConf:
    default: str = "gpt-5.2"
    reviewer: Optional[str] = None
    fixer: Optional[str] = None
    writer: Optional[str] = None


@dataclass
class ReviewerConf:
    temperature: float = 0.2
    max_output_tokens: int = 4000
    max_article_content_length: int = 60000
    max_research_context_length: int = 8000


@dataclass
class FixerConf:
    max_iterations: int = 3
    max_fixes_per_iteration: int = 5
    temperature: float = 0.3
    max_output_tokens: int = 6000
    max_removal_ratio: float = 0.5
    addition_chars_per_issue: int = 600
    expand_addition_chars: int = 1500
    target_word_count: Optional[int] = None


@dataclass
class RetryConf:
    max_retries: int = 3
    initial_delay: float = 1.0
    max_delay: float = 10.0
    backoff_multiplier: float = 2.0


@dataclass
class RecoveryConf:
    # --- Dispatch + CLI-only fields ---
    mode: str = "fix"
    verbose: bool = False
    quiet: bool = False
    article: Optional[str] = None
    plan: Optional[str] = None
    research: Optional[str] = None
    output: Optional[str] = None

    # --- ProjectConfig fields (1:1 mapping) ---
    project_name: str = "article-recovery"

    azure: AzureConf = field(default_factory=AzureConf)
    models: ModelConf = field(default_factory=ModelConf)

    timeout: int = 120
    seed: int = 42

    reviewer: ReviewerConf = field(default_factory=ReviewerConf)
    fixer: FixerConf = field(default_factory=FixerConf)
    retry: RetryConf = field(default_factory=RetryConf)


# Keys present in RecoveryConf that are NOT part of ProjectConfig.
CLI_ONLY_KEYS = frozenset({
    "mode", "verbose", "quiet", "article", "plan", "research", "output",
})


def register_configs() -> None:
    """Register the structured config schema with Hydra's ConfigStore."""
    cs = ConfigStore.instance()
    cs.store(name="recovery_schema", node=RecoveryConf)
