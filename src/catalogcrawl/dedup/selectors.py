"""
Selection policies for DuplicateResolver.
"""

from __future__ import annotations

from typing import List, Optional, TextIO

from rich.console import Console
from rich.prompt import Prompt
from rich.table import Table

from catalogcrawl.models import DuplicateGroup


def keep_earliest(group: DuplicateGroup) -> List[int]:
    """Batch policy: keep the earliest member, delete the rest."""
    return list(range(1, len(group)))


def parse_selection(answer: str, size: int) -> List[int]:
    """
    Parse a 1-based, comma or space separated answer into member indices.

    An empty answer selects nothing. Raises ValueError on anything else that
    is not a valid member number.
    """
    indices: List[int] = []
    for token in answer.replace(",", " ").split():
        number = int(token)
        if not 1 <= number <= size:
            raise ValueError(f"{number} is not between 1 and {size}")
        if number - 1 not in indices:
            indices.append(number - 1)
    return indices


class InteractiveSelector:
    """Shows each group as a table and asks the operator which members to delete."""

    def __init__(self, console: Optional[Console] = None, stream: Optional[TextIO] = None):
        self.console = console or Console()
        self.stream = stream

    def _render(self, group: DuplicateGroup) -> None:
        table = Table(title=f"Duplicates for {group.business_key}")
        table.add_column("#", justify="right", style="cyan")
        table.add_column("Record")
        table.add_column("Author")
        table.add_column("Collection")
        for number, member in enumerate(group.members, start=1):
            table.add_row(
                str(number),
                member.label(),
                member.author,
                "/".join(part for part in (member.collection, member.sub_collection) if part),
            )
        self.console.print(table)

    def __call__(self, group: DuplicateGroup) -> List[int]:
        self._render(group)
        while True:
            answer = Prompt.ask(
                "Members to delete (e.g. 2,3; blank keeps all)",
                console=self.console,
                default="",
                show_default=False,
                stream=self.stream,
            )
            try:
                return parse_selection(answer, len(group))
            except ValueError as e:
                self.console.print(f"[red]Invalid selection:[/red] {e}")
