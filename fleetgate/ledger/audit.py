"""
Decision Audit Report — terminal view of the authorization audit trail.

Connects directly to the database and prints today's dispatch and
identity counts followed by the most recent decisions.

Usage:
    python -m fleetgate.ledger.audit
    python -m fleetgate.ledger.audit --database-url sqlite:///./fleetgate.db
    python -m fleetgate.ledger.audit --action DISPATCH_DENIED --limit 100
"""

from __future__ import annotations

import argparse
import sys

from rich.console import Console
from rich.table import Table

from fleetgate.config import settings
from fleetgate.errors import FleetGateError
from fleetgate.ledger.records import SqlRecordStore
from fleetgate.ledger.service import AuditLedgerService
from fleetgate.verification.chain import (
    DISPATCH_AUTHORIZED,
    DISPATCH_DENIED,
    IDENTITY_AUTHORIZED,
    IDENTITY_DENIED,
)

console = Console()

_STATUS_STYLE = {
    "AUTHORIZED": "green",
    "SUCCESS": "green",
    "DENIED": "red",
    "FAILURE": "red",
}


def run_report(database_url: str, limit: int = 50, actions: list[str] | None = None) -> bool:
    """
    Print today's counts and recent audit entries.

    Args:
        database_url: SQLAlchemy connection string.
        limit: Maximum number of entries listed.
        actions: Only list entries with these actions.

    Returns:
        True if the report could be produced, False otherwise.
    """
    console.print("\n[bold blue]═══ FleetGate Decision Audit ═══[/bold blue]\n")

    ledger = AuditLedgerService(SqlRecordStore(database_url))
    try:
        dispatch = ledger.daily_counts(DISPATCH_AUTHORIZED, DISPATCH_DENIED)
        identity = ledger.daily_counts(IDENTITY_AUTHORIZED, IDENTITY_DENIED)
        entries = ledger.recent(actions, limit=limit)
    except FleetGateError as exc:
        console.print(f"[bold red]✗ Could not read audit trail:[/bold red] {exc}")
        return False

    summary = Table(title="Today (UTC)")
    summary.add_column("Decision", style="cyan")
    summary.add_column("Authorized", style="green", justify="right")
    summary.add_column("Denied", style="red", justify="right")
    summary.add_column("Total", justify="right")
    for label, counts in (("Dispatch", dispatch), ("Identity", identity)):
        summary.add_row(
            label, str(counts["authorized"]), str(counts["denied"]), str(counts["total"])
        )
    console.print(summary)

    if not entries:
        console.print("[yellow]⚠ No audit entries found[/yellow]")
    else:
        table = Table(show_lines=True, title=f"Latest {len(entries)} entries")
        table.add_column("Timestamp", width=20)
        table.add_column("Action", style="cyan", width=22)
        table.add_column("Entity", style="yellow", width=14)
        table.add_column("Status", width=11)
        table.add_column("Code", style="dim", width=18)
        table.add_column("Detail")

        for entry in entries:
            style = _STATUS_STYLE.get(entry.status.upper(), "white")
            table.add_row(
                str(entry.timestamp)[:19],
                entry.action,
                entry.entity_id,
                f"[{style}]{entry.status}[/{style}]",
                entry.details.get("code") or "—",
                entry.detail or "",
            )
        console.print(table)

    console.print("\n[bold blue]═══ Report Complete ═══[/bold blue]\n")
    return True


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="FleetGate decision audit report")
    parser.add_argument(
        "--database-url",
        default=None,
        help="SQLAlchemy connection string (defaults to .env settings)",
    )
    parser.add_argument("--limit", type=int, default=50, help="Entries to list")
    parser.add_argument(
        "--action",
        action="append",
        default=None,
        help="Only list this action (repeatable)",
    )
    args = parser.parse_args(argv)

    db_url = args.database_url or settings.database_url_sync
    ok = run_report(db_url, limit=args.limit, actions=args.action)
    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    main()
