"""A Rich-powered console overview of stored files and revenue."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Dict, List, Optional

from rich import box
from rich.columns import Columns
from rich.console import Console, Group
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text
from rich.tree import Tree

from ..services.categories import get_category
from ..services.income import IncomeRepository, IncomeSummary, summarize_income
from ..services.storage import FileRecord, FileRepository


@dataclass
class CategoryOverview:
    category_id: str
    label: str
    files: List[FileRecord]


@dataclass
class OverviewSnapshot:
    categories: List[CategoryOverview]
    file_count: int
    total_size: int
    income: IncomeSummary


def format_file_size(size: int) -> str:
    """Render *size* bytes the way the file list does (``1.5 KB``)."""

    if size <= 0:
        return "0 Bytes"
    units = ("Bytes", "KB", "MB", "GB")
    value = float(size)
    index = 0
    while value >= 1024 and index < len(units) - 1:
        value /= 1024
        index += 1
    return f"{round(value, 2):g} {units[index]}"


def collect_overview(
    files: FileRepository,
    income: IncomeRepository,
    *,
    today: Optional[date] = None,
) -> OverviewSnapshot:
    """Aggregate repository data into a snapshot grouped by category."""

    grouped: Dict[str, List[FileRecord]] = {}
    records = files.list_all_files()
    for record in records:
        grouped.setdefault(record.category_id, []).append(record)

    categories: List[CategoryOverview] = []
    for category_id in sorted(grouped):
        category = get_category(category_id)
        categories.append(
            CategoryOverview(
                category_id=category_id,
                label=category.name if category else category_id,
                files=grouped[category_id],
            )
        )

    return OverviewSnapshot(
        categories=categories,
        file_count=len(records),
        total_size=sum(record.file_size for record in records),
        income=summarize_income(income.list_income(), today=today),
    )


class OverviewUI:
    """Render the overview using Rich widgets."""

    def __init__(
        self,
        files: FileRepository,
        income: IncomeRepository,
        *,
        console: Optional[Console] = None,
    ) -> None:
        self._files = files
        self._income = income
        self._console = console or Console()

    def run(self) -> None:
        snapshot = collect_overview(self._files, self._income)
        console = self._console

        console.rule("[bold magenta]Instructor Hub Overview")

        if snapshot.file_count == 0 and snapshot.income.count == 0:
            console.print(
                Panel(
                    "Nothing has been stored yet.\n"
                    "Use [bold]python run.py upload[/bold] to add your first file.",
                    border_style="yellow",
                    box=box.ROUNDED,
                )
            )
            return

        files_panel = Panel(
            self._build_tree(snapshot.categories),
            title="Files",
            border_style="cyan",
            box=box.ROUNDED,
        )
        console.print(Columns([files_panel, self._build_stats_panel(snapshot)], expand=True, equal=True))

    @staticmethod
    def _build_tree(categories: List[CategoryOverview]) -> Tree:
        tree = Tree("[bold cyan]Categories", guide_style="cyan")
        if not categories:
            tree.add("[dim]No files yet")
            return tree

        for overview in categories:
            label = Text(overview.label, style="bold")
            label.append(f"  {len(overview.files)} file(s)", style="dim")
            node = tree.add(label)
            for record in overview.files:
                entry = Text(record.file_name, style="white")
                entry.append(f"  {format_file_size(record.file_size)}", style="green")
                node.add(entry)
        return tree

    @staticmethod
    def _build_stats_panel(snapshot: OverviewSnapshot) -> Panel:
        metrics = Table.grid(expand=True, padding=(0, 1))
        metrics.add_column(style="dim")
        metrics.add_column(justify="right", style="bold")
        metrics.add_row("Files", str(snapshot.file_count))
        metrics.add_row("Stored", format_file_size(snapshot.total_size))
        metrics.add_row("Categories", str(len(snapshot.categories)))

        revenue = Table.grid(expand=True, padding=(0, 1))
        revenue.add_column(style="dim")
        revenue.add_column(justify="right", style="bold")
        revenue.add_row("Total income", f"{snapshot.income.total:,.2f}")
        revenue.add_row("Average per entry", f"{snapshot.income.average:,.2f}")
        for name, total in snapshot.income.top_organizations:
            revenue.add_row(f"  {name}", f"{total:,.2f}")

        body = Group(metrics, Rule(style="magenta"), revenue)
        return Panel(body, title="At a glance", border_style="magenta", box=box.ROUNDED)


__all__ = [
    "CategoryOverview",
    "OverviewSnapshot",
    "OverviewUI",
    "collect_overview",
    "format_file_size",
]
