"""A Rich-powered console view of the markers stored under an item."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..services.storage import MarkerRepository
from ..shifting import Marker, MarkerType, ParentItem


TYPE_STYLES: Dict[MarkerType, str] = {
    MarkerType.INTRO: "cyan",
    MarkerType.CREDITS: "magenta",
    MarkerType.AD: "yellow",
}


def format_timestamp(milliseconds: int) -> str:
    """Render ``milliseconds`` as ``H:MM:SS.mmm``."""

    sign = "-" if milliseconds < 0 else ""
    remaining = abs(int(milliseconds))
    hours, remaining = divmod(remaining, 3_600_000)
    minutes, remaining = divmod(remaining, 60_000)
    seconds, millis = divmod(remaining, 1000)
    return f"{sign}{hours}:{minutes:02d}:{seconds:02d}.{millis:03d}"


@dataclass
class ParentOverview:
    parent: Optional[ParentItem]
    parent_id: int
    markers: List[Marker]

    @property
    def label(self) -> str:
        if self.parent is None:
            return f"Item {self.parent_id}"
        title = self.parent.title or f"Item {self.parent_id}"
        if self.parent.season_index is not None and self.parent.index is not None:
            return f"S{self.parent.season_index:02d}E{self.parent.index:02d} {title}"
        return title


class MarkerOverview:
    """Print one table per episode or movie listing its markers."""

    def __init__(self, repository: MarkerRepository, *, console: Optional[Console] = None) -> None:
        self._repository = repository
        self._console = console or Console()

    def collect(self, metadata_id: int) -> List[ParentOverview]:
        markers = self._repository.get_markers(metadata_id)
        grouped: Dict[int, List[Marker]] = {}
        for marker in markers:
            grouped.setdefault(marker.parent_id, []).append(marker)
        parents = self._repository.get_parent_durations(grouped) if grouped else {}
        return [
            ParentOverview(parent=parents.get(parent_id), parent_id=parent_id, markers=grouped[parent_id])
            for parent_id in sorted(grouped)
        ]

    def render(self, metadata_id: int) -> int:
        """Print the overview and return how many markers were shown."""

        overviews = self.collect(metadata_id)
        console = self._console
        if not overviews:
            console.print(
                Panel(
                    f"No markers found under item {metadata_id}.",
                    border_style="yellow",
                    box=box.ROUNDED,
                )
            )
            return 0

        for overview in overviews:
            console.print(self._build_table(overview))
        total = sum(len(overview.markers) for overview in overviews)
        console.print(f"[dim]{total} markers across {len(overviews)} items")
        return total

    def _build_table(self, overview: ParentOverview) -> Table:
        caption = None
        if overview.parent is not None:
            caption = f"duration {format_timestamp(overview.parent.duration)}"
        table = Table(title=overview.label, caption=caption, box=box.SIMPLE_HEAVY)
        table.add_column("#", justify="right")
        table.add_column("Id", justify="right")
        table.add_column("Type")
        table.add_column("Start", justify="right")
        table.add_column("End", justify="right")
        table.add_column("Flags")

        for marker in overview.markers:
            flags = []
            if marker.final:
                flags.append("final")
            if marker.created_by_user:
                flags.append("user")
            style = TYPE_STYLES[marker.marker_type]
            table.add_row(
                str(marker.index),
                str(marker.id),
                f"[{style}]{marker.marker_type.value}[/{style}]",
                format_timestamp(marker.start),
                format_timestamp(marker.end),
                ", ".join(flags),
            )
        return table


__all__ = ["MarkerOverview", "ParentOverview", "format_timestamp"]
