#!/usr/bin/env python3
"""
View stored reimbursement claims from the database.

Usage:
    python view_claims.py                     # List recent claims
    python view_claims.py 42                  # View one claim in detail
    python view_claims.py 42 --json           # Dump one claim as JSON
    python view_claims.py --status RECALLED   # Filter by status
    python view_claims.py --owner u-17        # Filter by owner id
    python view_claims.py --stats             # Per-status counts
"""

import argparse
import sys
from datetime import datetime
from typing import Optional

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from src.claims.schema import ClaimResponse, ClaimStatus
from src.storage import ClaimQuery, StoredClaim, get_claim_store
from src.utils.config import get_settings

console = Console()

STATUS_STYLES = {
    ClaimStatus.PENDING: "yellow",
    ClaimStatus.APPROVED: "green",
    ClaimStatus.REJECTED: "red",
    ClaimStatus.RECALLED: "magenta",
}


def format_datetime(value: Optional[datetime]) -> str:
    """Local time for display."""
    if value is None:
        return ""
    return value.astimezone(get_settings().zone).strftime("%Y-%m-%d %H:%M")


def format_money(claim: StoredClaim) -> str:
    return f"{claim.currency_code.value} {claim.amount_minor_units / 100:,.2f}"


def truncate(text: Optional[str], max_len: int = 40) -> str:
    """Truncate text with ellipsis."""
    if not text:
        return ""
    if len(text) > max_len:
        return text[:max_len - 3] + "..."
    return text


def status_text(status: ClaimStatus) -> str:
    style = STATUS_STYLES.get(status, "white")
    return f"[{style}]{status.value}[/{style}]"


def make_claims_table(claims: list, total: int) -> Table:
    table = Table(
        title=f"Claims ({len(claims)} of {total})",
        box=box.ROUNDED,
        header_style="bold cyan",
    )
    table.add_column("ID", justify="right", style="bold")
    table.add_column("Owner")
    table.add_column("Title")
    table.add_column("Type")
    table.add_column("Amount", justify="right")
    table.add_column("Status")
    table.add_column("Recall")
    table.add_column("Receipt", justify="center")
    table.add_column("Created")

    for claim in claims:
        recall = ""
        if claim.recall_active:
            recall = "attachment" if claim.recall_requires_attachment else "active"
        table.add_row(
            str(claim.id),
            truncate(claim.owner_email or claim.owner_id, 28),
            truncate(claim.title),
            claim.claim_type.value,
            format_money(claim),
            status_text(claim.status),
            recall,
            "✓" if claim.receipt_present else "",
            format_datetime(claim.created_at),
        )
    return table


def print_claim_detail(claim: StoredClaim, store):
    """Print detailed view of a single claim."""
    lines = [
        f"[bold]Status:[/bold]        {status_text(claim.status)}",
        f"[bold]Owner:[/bold]         {claim.owner_name or ''} <{claim.owner_email or '-'}> ({claim.owner_id})",
        f"[bold]Type:[/bold]          {claim.claim_type.value}",
        f"[bold]Amount:[/bold]        {format_money(claim)}",
        f"[bold]Claim date:[/bold]    {claim.claim_date.isoformat()}",
        f"[bold]Created:[/bold]       {format_datetime(claim.created_at)}",
        f"[bold]Updated:[/bold]       {format_datetime(claim.updated_at)} (v{claim.version})",
    ]
    if claim.description:
        lines.append(f"[bold]Description:[/bold]   {claim.description}")
    if claim.admin_comment:
        lines.append(f"[bold]Admin comment:[/bold] {claim.admin_comment}")

    metadata = store.receipt_metadata(claim.id)
    if claim.receipt_filename:
        lines.append(
            f"[bold]Receipt:[/bold]       {claim.receipt_filename} "
            f"({claim.receipt_content_type}, {metadata.content_length if metadata else 0} bytes)"
        )
    elif claim.external_receipt_url:
        lines.append(f"[bold]Receipt:[/bold]       {claim.external_receipt_url}")
    else:
        lines.append("[bold]Receipt:[/bold]       [dim](none)[/dim]")

    if claim.recall_active or claim.recalled_at:
        lines.append("")
        lines.append(f"[bold]Recall active:[/bold] {claim.recall_active}")
        if claim.recall_reason:
            lines.append(f"[bold]Reason:[/bold]        {claim.recall_reason}")
        lines.append(f"[bold]Needs receipt:[/bold] {claim.recall_requires_attachment}")
        lines.append(f"[bold]Recalled at:[/bold]   {format_datetime(claim.recalled_at)}")
    if claim.resubmitted_at or claim.resubmit_comment:
        lines.append(f"[bold]Resubmitted:[/bold]   {format_datetime(claim.resubmitted_at)}")
        if claim.resubmit_comment:
            lines.append(f"[bold]Owner note:[/bold]    {claim.resubmit_comment}")

    console.print(Panel("\n".join(lines), title=f"Claim #{claim.id}: {claim.title}", box=box.ROUNDED))


def print_stats(store):
    """Print database statistics."""
    table = Table(title="Claims by status", box=box.SIMPLE_HEAVY, header_style="bold cyan")
    table.add_column("Status")
    table.add_column("Count", justify="right")
    for status in ClaimStatus:
        table.add_row(status_text(status), str(store.count(status=status)))
    table.add_row("[bold]Total[/bold]", f"[bold]{store.count()}[/bold]")
    console.print(table)

    _, active = store.find(ClaimQuery(recall_active=True, limit=0))
    console.print(f"Active recalls: {active}")
    console.print(f"[dim]Database: {store.db_path}[/dim]")


def main():
    parser = argparse.ArgumentParser(description="View stored reimbursement claims")
    parser.add_argument("claim_id", nargs="?", type=int, help="Specific claim ID to view")
    parser.add_argument("--status", type=str.upper, choices=[s.value for s in ClaimStatus],
                        help="Filter by status")
    parser.add_argument("--owner", help="Filter by owner id")
    parser.add_argument("--stats", action="store_true", help="Show statistics")
    parser.add_argument("--json", action="store_true", help="Print the claim as JSON")
    parser.add_argument("--limit", type=int, default=50, help="Max claims to list")

    args = parser.parse_args()

    store = get_claim_store()

    if args.stats:
        print_stats(store)
        return

    if args.claim_id is not None:
        claim = store.get(args.claim_id)
        if claim is None:
            console.print(f"[red]Claim not found: {args.claim_id}[/red]")
            sys.exit(1)
        if args.json:
            console.print_json(ClaimResponse.from_stored(claim).model_dump_json(by_alias=True))
        else:
            print_claim_detail(claim, store)
        return

    claims, total = store.find(ClaimQuery(
        owner_id=args.owner,
        statuses=(ClaimStatus(args.status),) if args.status else (),
        limit=args.limit,
    ))
    if not claims:
        console.print("[yellow]No claims found.[/yellow]")
        return
    console.print(make_claims_table(claims, total))


if __name__ == "__main__":
    main()
