"""Markets subcommand: list, show."""

from __future__ import annotations

import typer
from web3 import Web3

from snarkels.storage.db import get_connection, init_schema
from snarkels.storage.event_log import get_market_events
from snarkels.storage.markets import get_market_by_id, get_markets_paginated
from snarkels.storage.participants import get_market_participants

app = typer.Typer(help="Browse mirrored markets")


def _celo(wei: str) -> str:
    try:
        return f"{Web3.from_wei(int(wei), 'ether'):.4f}"
    except ValueError:
        return wei


@app.command("list")
def list_markets(
    ctx: typer.Context,
    page: int = typer.Option(1, "--page"),
    limit: int = typer.Option(20, "--limit", "-n"),
    search: str | None = typer.Option(None, "--search", "-s"),
    category: str | None = typer.Option(None, "--category", "-c"),
    sort_by: str = typer.Option("newest", "--sort", help="newest, oldest, volume or ending"),
) -> None:
    """List markets in the local mirror."""
    settings = ctx.obj["settings"]
    conn = get_connection(settings.db_path)
    init_schema(conn)
    try:
        data = get_markets_paginated(conn, page, limit, search, category, sort_by)
        for m in data["markets"]:
            state = "resolved" if m.is_resolved else "open"
            typer.echo(f"  #{m.id:<5} {state:<8} {_celo(m.total_pool):>12} CELO  {m.question[:60]}")
        p = data["pagination"]
        typer.echo(f"Page {p['currentPage']}/{p['totalPages']} - {p['totalMarkets']} markets")
    finally:
        conn.close()


@app.command("show")
def show(ctx: typer.Context, market_id: str = typer.Argument(..., help="On-chain market id")) -> None:
    """Show one market with its participants and recent events."""
    settings = ctx.obj["settings"]
    conn = get_connection(settings.db_path)
    init_schema(conn)
    try:
        market = get_market_by_id(conn, market_id)
        if market is None:
            typer.echo(f"Market not found: {market_id}")
            raise typer.Exit(1)
        typer.echo(f"#{market.id} {market.question}")
        typer.echo(f"  Category: {market.category or '-'}   Creator: {market.creator}")
        typer.echo(f"  Pool: {_celo(market.total_pool)} CELO (yes {_celo(market.total_yes)} / no {_celo(market.total_no)})")
        if market.is_resolved:
            typer.echo(f"  Resolved: {'YES' if market.outcome else 'NO'}")
        participants = get_market_participants(conn, market_id)
        typer.echo(f"Participants: {len(participants)}")
        for p in participants[:10]:
            typer.echo(f"  {p.address}  {_celo(p.total_investment)} CELO")
        events = get_market_events(conn, market_id)
        typer.echo(f"Events: {len(events)}")
        for e in events[:10]:
            typer.echo(f"  {e.block_number}  {e.event_type:<15} {e.transaction_hash}")
    finally:
        conn.close()
