"""Render projected trees and summaries as plain terminal text."""

from __future__ import annotations

import io
from typing import Any

from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.tree import Tree

from .outline.views import TreeNode


def _console() -> Console:
    return Console(record=True, width=100, file=io.StringIO())


def _label(node: TreeNode) -> str:
    label = escape(node.label or node.id)
    if node.status == "completed":
        label = f"[strike]{label}[/strike]"
    elif node.status == "dropped":
        label = f"[dim]{label}[/dim]"
    if node.blocking is not None and node.blocking.blocked:
        waiting = ", ".join(b.id for b in node.blocking.blockers if not b.completed)
        label += f" [yellow](blocked by {waiting})[/yellow]"
    if node.attributes.get("flagged"):
        label += " [red]⚑[/red]"
    return f"{label} [dim]{node.id}[/dim]"


def render_tree(roots: list[TreeNode], title: str) -> str:
    """Render *roots* and their descendants as an indented tree."""
    tree = Tree(f"[bold]{title}[/bold]")

    def add(parent: Tree, node: TreeNode) -> None:
        branch = parent.add(_label(node))
        for project in node.projects:
            branch.add(f"[cyan]{escape(project.name)}[/cyan] [dim]{project.id}[/dim]")
        for child in node.children:
            add(branch, child)

    for root in roots:
        add(tree, root)

    console = _console()
    console.print(tree)
    return console.export_text()


def render_summary(summary: dict[str, Any]) -> str:
    table = Table(title="Outline Summary", show_header=True)
    table.add_column("Entity", style="cyan")
    table.add_column("Count", justify="right")
    table.add_column("Breakdown")

    for entity, counts in summary.items():
        breakdown = ", ".join(f"{k}={v}" for k, v in counts.items() if k != "total")
        table.add_row(entity, str(counts.get("total", 0)), breakdown)

    console = _console()
    console.print(table)
    return console.export_text()
