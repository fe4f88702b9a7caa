"""
CLI interface for Catalog Optimizer.

Provides command-line access to the credit ledger, optimization records and
the classification rules.
"""

import json
import logging
import sys
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from catalog_optimizer.config.loader import load_engine_config
from catalog_optimizer.core.billing import BillingTopUp
from catalog_optimizer.core.catalog import CatalogProduct, OptimizationType
from catalog_optimizer.core.classifier import Classification, classify
from catalog_optimizer.core.errors import OptimizationError
from catalog_optimizer.core.fallbacks import fallback_value
from catalog_optimizer.storage.db import DEFAULT_DB_PATH, initialize_schema
from catalog_optimizer.storage.ledger import CreditLedger
from catalog_optimizer.storage.records import OptimizationRecordStore

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    db: str = typer.Option(DEFAULT_DB_PATH, "--db", help="Path to SQLite database"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Engine YAML config"),
    log_level: str = typer.Option("WARNING", "--log-level", help="Logging level"),
):
    """Catalog Optimizer CLI."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = {"db": db, "config": config}
    if ctx.invoked_subcommand is None:
        console.print("Catalog Optimizer - Use --help to see available commands")


@app.command()
def init(ctx: typer.Context):
    """Initialize the Catalog Optimizer database."""
    try:
        initialize_schema(ctx.obj["db"])
        console.print("[green]✓[/] Database initialized successfully")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command("create-account")
def create_account(
    ctx: typer.Context,
    owner_id: str = typer.Argument(..., help="Account owner id"),
    opening_balance: Optional[int] = typer.Option(
        None, "--opening-balance", "-o", help="Opening credits (config default when omitted)"
    ),
):
    """Create a credit account."""
    try:
        settings = load_engine_config(ctx.obj["config"])
        if opening_balance is None:
            opening_balance = settings.credits.opening_balance
        account = CreditLedger(ctx.obj["db"]).create_account(owner_id, opening_balance)
    except (OptimizationError, ValueError) as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)
    console.print(f"[green]✓[/] Created account {account.owner_id} with {account.balance} credits")


@app.command()
def balance(ctx: typer.Context, account_id: str = typer.Argument(..., help="Account id")):
    """Show the credit balance of an account."""
    try:
        credits = CreditLedger(ctx.obj["db"]).get_balance(account_id)
    except OptimizationError as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)
    console.print(f"{account_id}: [bold]{credits}[/] credits")


@app.command("top-up")
def top_up(
    ctx: typer.Context,
    account_id: str = typer.Argument(..., help="Account id"),
    amount: Optional[int] = typer.Option(None, "--amount", "-a", help="Credits to add"),
    package: Optional[str] = typer.Option(None, "--package", "-p", help="Credit package name"),
    memo: str = typer.Option("Manual top-up", "--memo", "-m", help="Transaction memo"),
    payment_id: Optional[str] = typer.Option(None, "--payment-id", help="Payment reference"),
):
    """Add credits to an account, by amount or by package."""
    if (amount is None) == (package is None):
        console.print("[red]Error:[/] pass exactly one of --amount or --package")
        sys.exit(EXIT_CODE_FAIL)
    billing = BillingTopUp(CreditLedger(ctx.obj["db"]))
    try:
        if package:
            transaction = billing.purchase_package(account_id, package, payment_id)
        else:
            transaction = billing.credit(account_id, amount, memo, payment_id)
    except OptimizationError as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)
    console.print(f"[green]✓[/] Added {transaction.delta} credits to {account_id}")


@app.command()
def transactions(
    ctx: typer.Context,
    account_id: str = typer.Argument(..., help="Account id"),
    limit: int = typer.Option(20, "--limit", "-n", help="Number of transactions"),
):
    """List recent credit transactions, newest first."""
    entries = CreditLedger(ctx.obj["db"]).get_transactions(account_id, limit)
    if not entries:
        console.print(f"[dim]No transactions for {account_id}.[/]")
        return

    table = Table(title=f"Credit transactions - {account_id}")
    table.add_column("ID", justify="right")
    table.add_column("Delta", justify="right")
    table.add_column("Reason")
    table.add_column("Related")
    table.add_column("Timestamp")
    for entry in entries:
        delta_style = "green" if entry.delta > 0 else "red"
        table.add_row(
            str(entry.id),
            f"[{delta_style}]{entry.delta:+d}[/]",
            entry.reason,
            entry.related_entity_id or "",
            entry.timestamp.isoformat(timespec="seconds"),
        )
    console.print(table)


@app.command()
def reconcile(ctx: typer.Context, account_id: str = typer.Argument(..., help="Account id")):
    """Check that an account's balance matches its transaction log."""
    try:
        report = CreditLedger(ctx.obj["db"]).reconcile(account_id)
    except OptimizationError as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(f"Balance: {report.balance}")
    console.print(f"Ledger total: {report.ledger_total} ({report.transaction_count} transactions)")
    if not report.consistent:
        console.print("[bold red]✗ Ledger mismatch[/]")
        sys.exit(EXIT_CODE_FAIL)
    console.print("[green]✓[/] Ledger consistent")


@app.command()
def records(
    ctx: typer.Context,
    store_id: str = typer.Argument(..., help="Store id"),
    optimization_type: str = typer.Option("title", "--type", "-t", help="Optimization type"),
):
    """List applied optimizations for a store and type."""
    try:
        store = OptimizationRecordStore(ctx.obj["db"])
        entries = store.get_map(store_id, optimization_type)
    except OptimizationError as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)

    if not entries:
        console.print(f"[dim]No {optimization_type} optimizations for store {store_id}.[/]")
        return

    table = Table(title=f"{optimization_type.title()} optimizations - {store_id}")
    table.add_column("Product")
    table.add_column("Original")
    table.add_column("Optimized")
    table.add_column("Credits", justify="right")
    table.add_column("Applied")
    for product_id, record in sorted(entries.items()):
        table.add_row(
            product_id,
            _truncate(record.original_value or ""),
            _truncate(record.optimized_value),
            str(record.credits_used),
            record.applied_at.isoformat(timespec="seconds"),
        )
    console.print(table)

    summary = store.summarize(store_id)
    console.print(
        f"\n{summary.optimized_products} products optimized, "
        f"{summary.total_optimizations} optimizations across "
        f"{', '.join(t.value for t in summary.types)}"
    )


@app.command("classify")
def classify_command(
    product_file: str = typer.Argument(..., help="Product JSON file"),
    optimization_type: Optional[str] = typer.Option(
        None, "--type", "-t", help="Optimization type (all types when omitted)"
    ),
):
    """Classify a product and show the fallback suggestion per type."""
    try:
        with open(product_file, 'r', encoding='utf-8') as f:
            product = CatalogProduct.from_dict(json.load(f))
        types = [OptimizationType.parse(optimization_type)] if optimization_type else list(OptimizationType)
    except (OSError, json.JSONDecodeError, OptimizationError) as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)

    table = Table(title=f"Product {product.id}")
    table.add_column("Type")
    table.add_column("Status")
    table.add_column("Current")
    table.add_column("Fallback suggestion")
    for t in types:
        status = classify(product, t)
        label = (
            "[yellow]needs optimization[/]"
            if status is Classification.NEEDS_OPTIMIZATION
            else "[green]optimized[/]"
        )
        table.add_row(
            t.value,
            label,
            _truncate(product.current_value(t)),
            _truncate(fallback_value(t, product)),
        )
    console.print(table)


def _truncate(text: str, width: int = 60) -> str:
    return text if len(text) <= width else text[:width - 3] + "..."


if __name__ == "__main__":
    app()
