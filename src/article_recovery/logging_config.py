"""Rich console setup and recovery progress helpers."""

from __future__ import annotations

import logging
from typing import Protocol

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from .models import FixApplied, ReviewerOutput, SeverityCounts

console = Console()

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


def setup_logging(*, verbose: bool = False, quiet: bool = False) -> None:
    """Configure root logger with Rich handler."""
    level = logging.DEBUG if verbose else (logging.ERROR if quiet else logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=verbose)],
        force=True,
    )


logger = logging.getLogger("article_recovery")


# ---------------------------------------------------------------------------
# Recovery callbacks protocol
# ---------------------------------------------------------------------------


class RecoveryCallbacks(Protocol):
    """Protocol for recovery loop progress reporting."""

    def on_iteration_start(self, iteration: int, max_iterations: int) -> None: ...
    def on_review(self, review: ReviewerOutput, counts: SeverityCounts) -> None: ...
    def on_fix(self, fix: FixApplied) -> None: ...
    def on_stop(self, reason: str) -> None: ...
    def on_warning(self, message: str) -> None: ...


class NullCallbacks:
    """Callbacks that report nothing; used by tests and library callers."""

    def on_iteration_start(self, iteration: int, max_iterations: int) -> None:
        pass

    def on_review(self, review: ReviewerOutput, counts: SeverityCounts) -> None:
        pass

    def on_fix(self, fix: FixApplied) -> None:
        pass

    def on_stop(self, reason: str) -> None:
        pass

    def on_warning(self, message: str) -> None:
        pass


class RichCallbacks:
    """Rich-based implementation of RecoveryCallbacks."""

    def on_iteration_start(self, iteration: int, max_iterations: int) -> None:
        console.rule(f"[bold blue]Fix iteration {iteration}/{max_iterations}[/]")

    def on_review(self, review: ReviewerOutput, counts: SeverityCounts) -> None:
        verdict = "[green]approved[/]" if review.approved else "[red]not approved[/]"
        console.print(
            f"  Review: {verdict} "
            f"([red]{counts.critical}[/] critical, [yellow]{counts.major}[/] major, "
            f"[dim]{counts.minor}[/] minor)"
        )

    def on_fix(self, fix: FixApplied) -> None:
        status = "[green]OK[/]" if fix.success else "[red]FAILED[/]"
        label = escape(f"[{fix.strategy.value}]")
        console.print(f"  {label} {escape(fix.target)}: {status}")

    def on_stop(self, reason: str) -> None:
        console.print(f"  [cyan]Stopped:[/] {escape(reason)}")

    def on_warning(self, message: str) -> None:
        console.print(f"  [yellow]WARNING:[/] {escape(message)}")


def issues_table(review: ReviewerOutput) -> Table:
    """Render reviewer issues as a Rich table."""
    table = Table(title="Review issues", show_lines=False)
    table.add_column("Severity")
    table.add_column("Category")
    table.add_column("Location")
    table.add_column("Strategy")
    table.add_column("Message")
    colors = {"critical": "red", "major": "yellow", "minor": "dim"}
    for issue in review.issues:
        sev = issue.severity.value
        table.add_row(
            f"[{colors[sev]}]{sev}[/]",
            issue.category.value,
            escape(issue.target),
            issue.fix_strategy.value,
            escape(issue.message),
        )
    return table
