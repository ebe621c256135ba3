"""CLI output formatters for Rich tables and JSON.

Commands build their output here and print the returned string, so
formatting stays testable without a terminal.
"""

import json

from rich.console import Console
from rich.table import Table

from linkconsole.services.connection_store import ConnectionRecord
from linkconsole.services.status_scheduler import ReconciliationReport

console = Console()

# Matches the console's status badge colors
STATUS_COLORS = {
    "active": "green",
    "connecting": "yellow",
    "inactive": "dim",
    "disconnected": "red",
    "error": "red",
}


def _render(table: Table) -> str:
    with console.capture() as capture:
        console.print(table)
    return capture.get()


def format_connection_table(records: list[ConnectionRecord], as_json: bool = False) -> str:
    """Format stored connections as a Rich table or JSON."""
    if as_json:
        return json.dumps(
            [
                {
                    "id": r.id,
                    "name": r.name,
                    "owner_id": r.owner_id,
                    "status": r.status,
                    "profile_name": r.profile_name,
                    "contact": r.contact,
                    "connected_at": r.connected_at,
                    "created_at": r.created_at,
                }
                for r in records
            ],
            indent=2,
        )

    if not records:
        return "No connections found."

    table = Table(title="Connections", show_lines=True)
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Name", style="white")
    table.add_column("Owner")
    table.add_column("Status")
    table.add_column("Profile")
    table.add_column("Contact")
    table.add_column("Created")

    for r in records:
        color = STATUS_COLORS.get(r.status, "white")
        table.add_row(
            r.id[:8],
            r.name,
            r.owner_id,
            f"[{color}]{r.status}[/{color}]",
            r.profile_name or "—",
            r.contact or "—",
            r.created_at[:19] if r.created_at else "—",
        )
    return _render(table)


def format_report(report: ReconciliationReport, as_json: bool = False) -> str:
    """Format a reconciliation report."""
    if as_json:
        return json.dumps(report.to_dict(), indent=2)
    if report.skipped:
        return f"Check skipped ({report.reason})."

    table = Table(title="Status check")
    table.add_column("Checked", justify="right")
    table.add_column("Changed", justify="right", style="yellow")
    table.add_column("Failed", justify="right", style="red")
    table.add_column("Batches", justify="right")
    table.add_row(
        str(report.checked), str(report.changed), str(report.failed), str(report.batches)
    )
    return _render(table)
