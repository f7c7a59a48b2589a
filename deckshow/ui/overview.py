"""A Rich-powered console overview of stored projects and their latest sets."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..services.projects import ProjectRegistry
from ..services.storage import ProjectRecord, SlideSetRecord, SlideSetRepository


@dataclass
class ProjectOverview:
    record: ProjectRecord
    set_count: int
    latest: Optional[SlideSetRecord]
    slide_count: int


@dataclass
class OverviewSnapshot:
    projects: List[ProjectOverview]
    default_project: str

    @property
    def set_count(self) -> int:
        return sum(project.set_count for project in self.projects)


def collect_overview(repository: SlideSetRepository) -> OverviewSnapshot:
    """Aggregate repository data into a snapshot for console rendering."""

    registry = ProjectRegistry(repository)
    records = registry.list_projects()
    projects: List[ProjectOverview] = []
    for record in records:
        sets = repository.list_sets(record.id)
        latest = sets[0] if sets else None
        slide_count = len(repository.slides_of(latest)) if latest else 0
        projects.append(
            ProjectOverview(
                record=record,
                set_count=len(sets),
                latest=latest,
                slide_count=slide_count,
            )
        )
    return OverviewSnapshot(projects=projects, default_project=registry.default_project(records))


class OverviewUI:
    """Render the project overview using Rich widgets."""

    def __init__(self, repository: SlideSetRepository, *, console: Optional[Console] = None) -> None:
        self._repository = repository
        self._console = console or Console()

    def run(self) -> None:
        snapshot = collect_overview(self._repository)
        console = self._console

        console.rule("[bold magenta]Deckshow Overview")
        if not snapshot.projects:
            console.print(
                Panel(
                    "No presentations have been uploaded yet.\n"
                    "Use [bold]python run.py ingest deck.pdf[/bold] to add your first deck.",
                    border_style="yellow",
                    box=box.ROUNDED,
                )
            )
            return

        console.print(self._build_table(snapshot))
        console.print(
            f"[dim]{len(snapshot.projects)} project(s), {snapshot.set_count} set(s); "
            f"default selection: {snapshot.default_project}[/dim]"
        )

    @staticmethod
    def _build_table(snapshot: OverviewSnapshot) -> Table:
        table = Table(box=box.SIMPLE_HEAVY, header_style="bold cyan")
        table.add_column("Project")
        table.add_column("Sets", justify="right")
        table.add_column("Latest set")
        table.add_column("Slides", justify="right")
        for project in snapshot.projects:
            latest_label = project.latest.set_id if project.latest else "[dim]none[/dim]"
            table.add_row(
                project.record.display_name,
                str(project.set_count),
                latest_label,
                str(project.slide_count),
            )
        return table


__all__ = ["OverviewSnapshot", "OverviewUI", "ProjectOverview", "collect_overview"]
