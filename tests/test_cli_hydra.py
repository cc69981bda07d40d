"""Tests for the Hydra-based CLI (cli.py)."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from hydra import compose, initialize_config_dir
from omegaconf import OmegaConf

import article_recovery
from article_recovery._hydra_conf import CLI_ONLY_KEYS, RecoveryConf, register_configs
from article_recovery.cli import (
    _MODE_DISPATCH,
    _fix_mode,
    _review_mode,
    _sections_mode,
    _to_project_config,
    load_plan,
    load_research,
)
from article_recovery.models import (
    ArticleCategory,
    ProjectConfig,
    RecoveryResult,
    ReviewerOutput,
    SourceSummary,
    StopReason,
)

FIXTURES_DIR = Path(__file__).parent / "fixtures"
SAMPLE_ARTICLE = FIXTURES_DIR / "sample_article.md"
SAMPLE_PLAN = FIXTURES_DIR / "sample_plan.json"
SAMPLE_SOURCES = FIXTURES_DIR / "sample_sources.json"

CONF_DIR = str(Path(article_recovery.__file__).resolve().parent / "conf")


def _compose(*overrides: str):
    register_configs()
    with initialize_config_dir(config_dir=CONF_DIR, version_base=None):
        return compose(config_name="config", overrides=list(overrides))


class TestDefaultConfig:
    """Verify the package's conf/config.yaml loads correctly."""

    def test_default_config_loads(self):
        cfg = _compose()
        assert cfg.mode == "fix"
        assert cfg.article is None
        assert cfg.fixer.max_iterations == 3
        assert cfg.retry.backoff_multiplier == 2.0

    def test_default_config_converts_to_project_config(self, monkeypatch):
        monkeypatch.setenv("AZURE_OPENAI_API_KEY", "test")
        monkeypatch.setenv("AZURE_OPENAI_API_VERSION", "2024-01-01")
        monkeypatch.setenv("AZURE_OPENAI_ENDPOINT", "https://test.openai.azure.com")

        pc = _to_project_config(_compose())
        assert isinstance(pc, ProjectConfig)
        assert pc.project_name == "article-recovery"
        assert pc.azure.api_key == "test"
        assert pc == ProjectConfig(azure=pc.azure)

    def test_overrides_applied(self):
        pc = _to_project_config(_compose("fixer.max_iterations=1", "models.reviewer=gpt-5.2-mini"))
        assert pc.fixer.max_iterations == 1
        assert pc.models.reviewer == "gpt-5.2-mini"


class TestModeDispatch:
    def test_all_modes_present(self):
        assert set(_MODE_DISPATCH.keys()) == {"review", "fix", "sections"}

    def test_all_modes_are_callable(self):
        for name, handler in _MODE_DISPATCH.items():
            assert callable(handler), f"Handler for mode {name!r} is not callable"


class TestCliOnlyKeys:
    def test_cli_keys_not_in_project_config(self):
        pc_fields = set(ProjectConfig.model_fields.keys())
        for key in CLI_ONLY_KEYS:
            assert key not in pc_fields, f"CLI-only key {key!r} found in ProjectConfig"

    def test_cli_keys_in_recovery_conf(self):
        conf_fields = set(RecoveryConf.__dataclass_fields__)
        for key in CLI_ONLY_KEYS:
            assert key in conf_fields, f"CLI-only key {key!r} not found in RecoveryConf"


class TestInputLoading:
    def test_load_plan_json(self):
        plan = load_plan(SAMPLE_PLAN)
        assert plan.category_slug is ArticleCategory.GUIDES
        assert [s.headline for s in plan.sections] == ["Intro", "Combat"]

    def test_load_plan_yaml(self, tmp_path):
        path = tmp_path / "plan.yaml"
        path.write_text("title: Patch notes\ncategory_slug: news\nsections:\n  - headline: Changes\n    goal: List them\n")
        plan = load_plan(path)
        assert plan.category_slug is ArticleCategory.NEWS

    def test_load_research_sources(self):
        [source] = load_research(SAMPLE_SOURCES)
        assert isinstance(source, SourceSummary)
        assert source.quality_score == 85

    def test_load_research_wrapped(self, tmp_path):
        path = tmp_path / "research.yaml"
        path.write_text("sources:\n  - title: Wiki\n")
        assert [s.title for s in load_research(path)] == ["Wiki"]

    def test_load_research_text(self, tmp_path):
        path = tmp_path / "notes.txt"
        path.write_text("Torrent unlocks early.")
        assert load_research(path) == "Torrent unlocks early."

    def test_no_research(self):
        assert load_research(None) is None


class TestModes:
    def test_sections_mode(self, capsys):
        _sections_mode(OmegaConf.create({"mode": "sections", "article": str(SAMPLE_ARTICLE)}))
        out = capsys.readouterr().out
        assert "Sections (3)" in out
        assert "Combat" in out

    def test_sections_mode_prints_bracketed_headings(self, tmp_path, capsys):
        article = tmp_path / "draft.md"
        article.write_text("## Loot [bold]Rare[/bold] drops\n\nTalismans.\n", encoding="utf-8")
        _sections_mode(OmegaConf.create({"mode": "sections", "article": str(article)}))
        assert "Loot [bold]Rare[/bold] drops" in capsys.readouterr().out

    def test_missing_article_exits(self):
        with pytest.raises(SystemExit):
            _sections_mode(OmegaConf.create({"mode": "sections", "article": None}))

    def test_nonexistent_article_exits(self, tmp_path):
        with pytest.raises(SystemExit):
            _sections_mode(OmegaConf.create({"mode": "sections", "article": str(tmp_path / "none.md")}))

    def test_fix_mode_writes_output(self, tmp_path):
        output = tmp_path / "fixed.md"
        cfg = _compose(f"article='{SAMPLE_ARTICLE}'", f"plan='{SAMPLE_PLAN}'", f"output='{output}'")
        result = RecoveryResult(markdown="## Intro\n\nFixed.\n", stop_reason=StopReason.APPROVED, approved=True)

        with patch("article_recovery.pipeline.RecoveryLoop") as loop_cls:
            loop_cls.return_value.run = AsyncMock(return_value=result)
            _fix_mode(cfg)

        assert output.read_text() == "## Intro\n\nFixed.\n"
        args, kwargs = loop_cls.return_value.run.call_args
        assert args[1].title == "Elden Ring Beginner Guide"
        assert kwargs["research"] is None

    def test_fix_mode_not_approved_exits(self, tmp_path):
        cfg = _compose(f"article='{SAMPLE_ARTICLE}'", f"plan='{SAMPLE_PLAN}'", f"output='{tmp_path / 'out.md'}'")
        result = RecoveryResult(markdown="x", stop_reason=StopReason.MAX_ITERATIONS)

        with patch("article_recovery.pipeline.RecoveryLoop") as loop_cls:
            loop_cls.return_value.run = AsyncMock(return_value=result)
            with pytest.raises(SystemExit):
                _fix_mode(cfg)
        assert (tmp_path / "out.md").read_text() == "x"

    def test_review_mode_approved(self):
        cfg = _compose(f"article='{SAMPLE_ARTICLE}'", f"plan='{SAMPLE_PLAN}'", f"research='{SAMPLE_SOURCES}'")
        loop = MagicMock()
        loop.review = AsyncMock(return_value=ReviewerOutput(approved=True))

        with patch("article_recovery.pipeline.RecoveryLoop", return_value=loop):
            _review_mode(cfg)

        markdown, plan, research = loop.review.call_args.args
        assert "## Combat" in markdown
        assert research[0].title == "Elden Ring beginner guide"
