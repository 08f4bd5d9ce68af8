from typing import List, Optional, Tuple
from rich.console import Console
from rich.table import Table

from videoconverter.domain.models import RunCounters


def summary_rows(counters: RunCounters) -> List[Tuple[str, int]]:
    return [
        ("Videos received", counters.discovered),
        ("Converted", counters.converted),
        ("Not converted", counters.convert_failed),
        ("Uploaded to cloud", counters.uploaded),
        ("Not uploaded to cloud", counters.upload_failed),
    ]


def format_summary(counters: RunCounters) -> str:
    """Plain-text summary used for the log file."""
    return "\n".join(f"{label}: {value}" for label, value in summary_rows(counters))


def render_summary(counters: RunCounters, console: Optional[Console] = None, title: str = "Run summary") -> Table:
    """Prints the end-of-run counters as a table and returns it."""
    console = console or Console()
    table = Table(title=title, show_header=False)
    table.add_column("Counter")
    table.add_column("Value", justify="right")

    for label, value in summary_rows(counters):
        failed = label.startswith("Not ") and value > 0
        table.add_row(label, f"[bold red]{value}[/]" if failed else str(value))

    console.print(table)
    if counters.has_failures():
        console.print("[bold red]Processing errors occurred[/]")
    elif not counters.completed:
        console.print("[yellow]Run stopped before all videos finished[/]")
    return table
