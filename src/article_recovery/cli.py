"""CLI entry point using Hydra.

Usage examples:
  article-recovery mode=sections article=draft.md
  article-recovery mode=review article=draft.md plan=plan.json research=sources.json
  article-recovery mode=fix article=draft.md plan=plan.yaml output=fixed.md fixer.max_iterations=2
  article-recovery --config-dir . --config-name config mode=fix article=draft.md plan=plan.json
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Any

import hydra
import yaml
from omegaconf import DictConfig, OmegaConf
from rich.markup import escape

from ._hydra_conf import CLI_ONLY_KEYS, register_configs
from .config import fill_credentials_from_env
from .logging_config import console, issues_table, setup_logging
from .models import ArticlePlan, ProjectConfig, SourceSummary
from .tools.sections import parse_sections

register_configs()

# ---------------------------------------------------------------------------
# Hydra DictConfig → Pydantic ProjectConfig bridge
# ---------------------------------------------------------------------------


def _to_project_config(cfg: DictConfig) -> ProjectConfig:
    """Convert a Hydra *DictConfig* to a Pydantic ``ProjectConfig``.

    CLI-only keys (``mode``, ``article``, etc.) are stripped before validation.
    Azure credential env-var fallbacks are applied afterwards.
    """
    container: dict[str, Any] = OmegaConf.to_container(cfg, resolve=True)  # type: ignore[assignment]
    for key in CLI_ONLY_KEYS:
        container.pop(key, None)
    config = ProjectConfig.model_validate(container)
    return fill_credentials_from_env(config)


# ---------------------------------------------------------------------------
# Input loading
# ---------------------------------------------------------------------------


def _require(cfg: DictConfig, key: str) -> Path:
    value = cfg.get(key)
    if not value:
        console.print(f"[red]{key}= is required for mode {cfg.get('mode')!r}[/]")
        sys.exit(1)
    path = Path(value)
    if not path.exists():
        console.print(f"[red]File not found: {escape(str(path))}[/]")
        sys.exit(1)
    return path


def load_plan(path: str | Path) -> ArticlePlan:
    """Load an ``ArticlePlan`` from JSON or YAML."""
    with open(path, encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    return ArticlePlan.model_validate(raw)


def load_research(path: str | Path | None) -> list[SourceSummary] | str | None:
    """Load research as source summaries (JSON/YAML list) or plain text."""
    if not path:
        return None
    p = Path(path)
    if p.suffix.lower() in (".json", ".yaml", ".yml"):
        with open(p, encoding="utf-8") as f:
            raw = yaml.safe_load(f) or []
        if isinstance(raw, dict):
            raw = raw.get("sources", [])
        return [SourceSummary.model_validate(item) for item in raw]
    return p.read_text(encoding="utf-8")


# ---------------------------------------------------------------------------
# Mode handlers
# ---------------------------------------------------------------------------


def _sections_mode(cfg: DictConfig) -> None:
    markdown = _require(cfg, "article").read_text(encoding="utf-8")
    sections = parse_sections(markdown)
    if not sections:
        console.print("[yellow]No ## sections found.[/]")
        return
    console.print(f"[bold]Sections ({len(sections)}):[/]")
    for s in sections:
        console.print(f"  - {escape(s.heading)} [dim]({len(s.content.split())} words)[/]")


def _review_mode(cfg: DictConfig) -> None:
    config = _to_project_config(cfg)
    markdown = _require(cfg, "article").read_text(encoding="utf-8")
    plan = load_plan(_require(cfg, "plan"))
    research = load_research(cfg.get("research"))

    from .pipeline import RecoveryLoop

    loop = RecoveryLoop(config)
    review = asyncio.run(loop.review(markdown, plan, research))

    if review.issues:
        console.print(issues_table(review))
    for s in review.suggestions:
        console.print(f"  [dim]Suggestion:[/] {escape(s)}")
    console.print(f"  Tokens: {review.token_usage.input} in / {review.token_usage.output} out")
    if not review.approved:
        sys.exit(1)


def _fix_mode(cfg: DictConfig) -> None:
    config = _to_project_config(cfg)
    article_path = _require(cfg, "article")
    markdown = article_path.read_text(encoding="utf-8")
    plan = load_plan(_require(cfg, "plan"))
    research = load_research(cfg.get("research"))

    from .pipeline import RecoveryLoop

    console.print("[bold]Starting recovery loop...[/]")
    result = asyncio.run(RecoveryLoop(config).run(markdown, plan, research=research))

    output = Path(cfg.get("output") or article_path.with_suffix(".fixed.md"))
    output.write_text(result.markdown, encoding="utf-8")

    metrics = result.metadata.outcome_metrics
    before, after = metrics.issues_before, metrics.issues_after
    console.print(f"\n[bold]Stopped:[/] {result.stop_reason.value}")
    console.print(f"  Output: {escape(str(output))}")
    console.print(f"  Iterations: {result.metadata.fixer_iterations}")
    console.print(f"  Operations: {metrics.operations_succeeded}/{metrics.operations_attempted} changed the markdown")
    console.print(
        f"  Issues before: {before.critical}/{before.major}/{before.minor}  "
        f"after: {after.critical}/{after.major}/{after.minor} (critical/major/minor)"
    )
    console.print(f"  [dim]{metrics.note}[/]")
    console.print(f"  Tokens: {result.token_usage.input} in / {result.token_usage.output} out")
    if not result.approved:
        sys.exit(1)


_MODE_DISPATCH: dict[str, Any] = {
    "review": _review_mode,
    "fix": _fix_mode,
    "sections": _sections_mode,
}


# ---------------------------------------------------------------------------
# Hydra entry point
# ---------------------------------------------------------------------------


@hydra.main(config_path="conf", config_name="config", version_base=None)
def hydra_entry(cfg: DictConfig) -> None:
    """Hydra-managed CLI entry point."""
    setup_logging(verbose=cfg.get("verbose", False), quiet=cfg.get("quiet", False))

    mode = cfg.get("mode", "fix")
    handler = _MODE_DISPATCH.get(mode)
    if handler is None:
        console.print(f"[red]Unknown mode: {mode!r}. Choose from: {', '.join(_MODE_DISPATCH)}[/]")
        sys.exit(1)

    handler(cfg)


def main() -> None:
    """Package entry point (``[project.scripts]`` target)."""
    hydra_entry()  # pylint: disable=no-value-for-parameter
