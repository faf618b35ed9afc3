from __future__ import annotations

import asyncio
import json
from datetime import datetime
from pathlib import Path
from typing import Optional

import typer

from .config.runtime_config import load_runtime_config
from .config.settings import settings
from .logs import LOG_TYPES, log_error, read_logs
from .orders.schema import parse_draft
from .orders.service import OrderService
from .orders.shortage import derive_plan
from .zoho.client import ZohoClient, retry_policy
from .zoho.errors import SalesDeskError
from .zoho.oauth import RefreshTokenProvider, TokenStore
from .zoho.queries import InventoryQueries

app = typer.Typer(add_completion=False)


def _read_json(path: Path) -> dict:
    if not path.exists():
        typer.echo(f"File not found: {path}")
        raise typer.Exit(code=1)
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except ValueError as e:
        typer.echo(f"{path} is not valid JSON: {e}")
        raise typer.Exit(code=1)


def _draft(path: Path):
    try:
        return parse_draft(_read_json(path))
    except SalesDeskError as e:
        typer.echo(f"Error: {e.user_message}")
        raise typer.Exit(code=1)


def _run(coro):
    try:
        return asyncio.run(coro)
    except SalesDeskError as e:
        log_error(f"CLI command failed: {e.message}")
        typer.echo(f"Error: {e.user_message}")
        raise typer.Exit(code=1)


@app.command("serve")
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Port"),
    reload: bool = typer.Option(False, "--reload", help="Auto-reload on code changes"),
):
    """Run the HTTP API."""
    import uvicorn

    uvicorn.run(
        "salesdesk.api.server:create_app",
        factory=True,
        host=host or settings.api_host,
        port=port or settings.api_port,
        reload=reload,
        log_level=settings.zohoinv_log_level.lower(),
    )


@app.command("zoho-status")
def zoho_status():
    """Check the token and the organization the API key is bound to."""
    async def _show():
        tokens = RefreshTokenProvider.from_settings()
        queries = InventoryQueries(ZohoClient.from_settings(tokens=tokens))
        org = await queries.healthcheck()
        typer.echo(f"Organization: {org.get('name')} ({org.get('id')})")
        if tokens.expires_at:
            typer.echo(f"Access token valid until {datetime.fromtimestamp(tokens.expires_at):%Y-%m-%d %H:%M:%S}")
        typer.echo(f"Retry policy: {settings.zohoinv_retry_policy} -> {retry_policy(settings.zohoinv_retry_policy)}")

    _run(_show())


@app.command("token-clear")
def token_clear():
    """Drop the cached access token; the next call refreshes it."""
    TokenStore.clear()
    typer.echo(f"Token cache cleared ({settings.zoho_token_file}).")


@app.command("create-order")
def create_order(
    file: Path = typer.Argument(..., help="JSON body, same shape as POST /salesorders"),
):
    """Create a sales order (and purchase orders, if requested) from a JSON file."""
    draft = _draft(file)

    async def _create():
        service = OrderService(ZohoClient.from_settings(), load_runtime_config())
        result = await service.create_order(draft)
        typer.echo(f"{result.message} #{result.order_number} (reference {result.reference_number})")
        if result.purchase_orders:
            for po in result.purchase_orders.created:
                typer.echo(f"  PO {po.purchaseorder_number} for vendor {po.vendor_id}: {len(po.lines)} lines")
            for row in result.purchase_orders.skipped:
                typer.echo(f"  skipped {row.item_id} x{row.quantity:g}: {row.reason}")

    _run(_create())


@app.command("plan")
def plan(
    file: Path = typer.Argument(..., help="JSON body, same shape as POST /salesorders"),
):
    """Print the purchase plan (shortfall per item) for an order draft."""
    draft = _draft(file)

    async def _plan():
        queries = InventoryQueries(ZohoClient.from_settings())
        items = {}
        for item_id in {line.item_id for line in draft.lines}:
            item = await queries.get_item(item_id)
            if item is None:
                typer.echo(f"Item {item_id} not found; ignored")
                continue
            items[item_id] = item
        rows = derive_plan(draft.lines, items)
        if not rows:
            typer.echo("Everything is in stock.")
        for row in rows:
            typer.echo(f"{row.item_id} {items[row.item_id]['name']}: short {row.quantity:g}")
        typer.echo(json.dumps({"purchasePlan": [r.model_dump() for r in rows]}, indent=2))

    _run(_plan())


@app.command("logs")
def logs(
    log_type: str = typer.Option("zoho", "--type", "-t", help=f"One of: {', '.join(LOG_TYPES)}"),
    lines: int = typer.Option(50, "--lines", "-n", help="Number of lines to show"),
    search: Optional[str] = typer.Option(None, "--search", "-s", help="Filter by text"),
    level: Optional[str] = typer.Option(None, "--level", "-l", help="Filter by level, e.g. ERROR"),
):
    """Show recent log entries, newest first."""
    if log_type not in LOG_TYPES:
        typer.echo(f"Unknown log type {log_type!r}")
        raise typer.Exit(code=1)
    for entry in read_logs(log_type, max_lines=lines, search_text=search, level_filter=level):
        typer.echo(f"{entry['timestamp']} {entry['level']:<7} {entry['message']}")


if __name__ == "__main__":
    app()
