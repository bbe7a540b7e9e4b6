"""
Event Ledger Audit Tool — Independent chain integrity verification.

Recomputes every hash in the persisted event ledger and reports whether any
entry was altered after it was written. Optionally lists every entry.

Usage:
    python -m parametric_ledger.ledger.audit
    python -m parametric_ledger.ledger.audit --database-url sqlite:///events.db
    python -m parametric_ledger.ledger.audit --verbose
"""

from __future__ import annotations

import argparse
import sys
import time

from rich.console import Console
from rich.table import Table

from parametric_ledger.config import settings
from parametric_ledger.ledger.service import EventLedgerService

console = Console()


def run_audit(
    database_url: str,
    verbose: bool = False,
    output: Console | None = None,
) -> bool:
    """
    Run a full hash chain integrity audit.

    Args:
        database_url: SQLAlchemy connection string.
        verbose: Print every entry if True.
        output: Console to render to. Defaults to stdout.

    Returns:
        True if the chain is valid or the ledger is empty, False if it is
        broken or was never initialized.
    """
    out = output or console
    out.print("\n[bold blue]═══ Event Ledger Integrity Audit ═══[/bold blue]\n")

    service = EventLedgerService(database_url)

    if not service.is_initialized():
        out.print("[red]✗ Ledger is not initialized: no event table at this URL[/red]")
        return False

    count = service.get_entry_count()
    out.print(f"  Entries in ledger: [bold]{count}[/bold]")

    if count == 0:
        out.print("[yellow]⚠ Ledger is empty — no entries to verify[/yellow]")
        return True

    out.print("  Verifying hash chain...", end=" ")
    start_time = time.time()

    is_valid, entries_verified, message = service.verify_chain()

    elapsed = time.time() - start_time

    if is_valid:
        out.print("[bold green]✓ VALID[/bold green]")
        out.print(f"  Entries verified: [bold]{entries_verified}[/bold]")
        out.print(f"  Verification time: {elapsed:.3f}s")
    else:
        out.print("[bold red]✗ INVALID[/bold red]")
        out.print(f"  Failure at entry: {entries_verified}")
        out.print(f"  Reason: {message}")

    if verbose:
        out.print("\n[bold]Detailed Entry Listing:[/bold]")
        table = Table(show_lines=True)
        table.add_column("Seq", style="cyan", width=6)
        table.add_column("Type", style="green", width=24)
        table.add_column("Payload", width=40)
        table.add_column("Hash (first 16)", style="dim", width=18)
        table.add_column("Timestamp", width=22)

        entries = service.get_latest_entries(limit=count)
        for entry in reversed(entries):
            table.add_row(
                str(entry.sequence_number),
                entry.event_type,
                ", ".join(f"{k}={v}" for k, v in sorted(entry.payload.items())),
                entry.entry_hash[:16] + "...",
                entry.timestamp[:19],
            )
        out.print(table)

    out.print("\n[bold blue]═══ Audit Complete ═══[/bold blue]\n")
    return is_valid


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Parametric insurance event ledger integrity auditor"
    )
    parser.add_argument(
        "--database-url",
        default=None,
        help="SQLAlchemy connection string (defaults to LEDGER_EVENT_LOG_URL)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Show detailed entry listing",
    )
    args = parser.parse_args()

    db_url = args.database_url or settings.event_log_url
    if not db_url:
        console.print("[red]No event log configured; set LEDGER_EVENT_LOG_URL[/red]")
        sys.exit(2)
    is_valid = run_audit(db_url, verbose=args.verbose)
    sys.exit(0 if is_valid else 1)


if __name__ == "__main__":
    main()
