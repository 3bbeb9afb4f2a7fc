#!/usr/bin/env python3
"""
PromptInvoice: CLI entry point.

Usage examples:
  python main.py check                                  # Verify setup (LLM endpoint, storage)
  python main.py list                                   # List all invoices
  python main.py list --search acme
  python main.py next-number                            # Next free INV-### number
  python main.py create --client "Acme" --item "Logo design:2:500" --tax-rate 0.2
  python main.py update <id> --item "Logo design:3:500" --notes "Rush job"
  python main.py show <id>
  python main.py delete <id>
  python main.py parse "Invoice Apple for 2 logo designs at 500 each, 20% tax"
  python main.py parse "..." --save                     # Fill a form with AI and create it
  python main.py export <id> -o out/                    # One invoice as HTML
  python main.py export -o out/                         # All-invoices report as HTML
"""
import asyncio
import json
import logging
import sys
from contextlib import asynccontextmanager
from datetime import date
from pathlib import Path
from typing import Optional

import click

from config import Config
from models.forms import InvoiceInput, InvoicePatch, ItemInput
from models.invoice import Invoice
from invoicing.export import (
    export_filename,
    render_invoice_html,
    render_report_html,
    write_html,
)
from invoicing.llm_parser import LLMParser
from invoicing.money import format_money
from invoicing.numbering import next_invoice_number
from invoicing.repository import InvoiceRepository
from invoicing.storage import SQLiteKeyValueStore
from invoicing.validator import InvoiceFormValidator, ValidationIssue

logger = logging.getLogger(__name__)


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s  %(levelname)-8s  %(name)s — %(message)s",
        datefmt="%H:%M:%S",
    )
    # Quieten noisy third-party loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)


@asynccontextmanager
async def _session(config: Config):
    """Load the collection, hand out the repository, wait for writes on exit."""
    repo = InvoiceRepository(
        SQLiteKeyValueStore(config.db_path),
        storage_key=config.storage_key,
    )
    await repo.load_all()
    try:
        yield repo
    finally:
        await repo.flush()


def _parse_item(ctx: click.Context, param: click.Parameter, values: tuple) -> list[ItemInput]:
    """--item "description:quantity:price"; the description may itself contain colons."""
    items = []
    for raw in values:
        parts = raw.rsplit(":", 2)
        if len(parts) != 3:
            raise click.BadParameter(f"expected DESCRIPTION:QUANTITY:PRICE, got {raw!r}")
        description, quantity, price = parts
        try:
            items.append(ItemInput(
                description=description.strip(),
                quantity=float(quantity),
                price=float(price),
            ))
        except ValueError:
            raise click.BadParameter(f"quantity and price must be numbers in {raw!r}")
    return items


def _fail_on_issues(issues: list[ValidationIssue]) -> None:
    if not issues:
        return
    click.echo("Validation failed:", err=True)
    for issue in issues:
        click.echo(f"  ✗ {issue.field}: {issue.message}", err=True)
    raise click.exceptions.Exit(1)


def _echo_invoice(invoice: Invoice) -> None:
    click.echo()
    click.echo(f"  Invoice:     {invoice.invoice_number}   ({invoice.id})")
    click.echo(f"  Client:      {invoice.client_name}")
    click.echo(f"  Date:        {invoice.date}")
    click.echo(f"  Due:         {invoice.due_date or '(none)'}")
    click.echo()
    for item in invoice.items:
        click.echo(
            f"    {item.description:<32} {item.quantity:>8g} × {format_money(item.price):>10}"
            f"  = {format_money(item.subtotal):>10}"
        )
    click.echo()
    click.echo(f"  Subtotal:    {format_money(invoice.subtotal)}")
    if invoice.tax_rate > 0:
        click.echo(f"  Tax ({invoice.tax_rate * 100:.0f}%):   {format_money(invoice.tax_amount)}")
    if invoice.discount > 0:
        click.echo(f"  Discount:    {invoice.discount * 100:.0f}%")
    click.echo(f"  Total:       {format_money(invoice.total)}")
    if invoice.notes:
        click.echo(f"  Notes:       {invoice.notes}")
    click.echo()


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.option("--db", default=None, type=click.Path(dir_okay=False), help="SQLite storage file")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, db: Optional[str]) -> None:
    """PromptInvoice: create, edit, list and export invoices."""
    ctx.ensure_object(dict)
    _setup_logging(verbose)
    config = Config()
    if db:
        config.db_path = Path(db)
    ctx.obj["config"] = config


# --------------------------------------------------------------------
# check command
# --------------------------------------------------------------------

@cli.command()
@click.option("--model", default=None, help="LLM model name to check")
@click.pass_context
def check(ctx: click.Context, model: Optional[str]) -> None:
    """Verify that the LLM backend and the storage file are ready."""
    config: Config = ctx.obj["config"]
    if model:
        config.llm_model = model

    click.echo("\n=== Setup Check ===\n")

    llm = LLMParser.from_config(config).check_connection()
    click.echo(f"  LLM endpoint:  {config.llm_base_url}")
    if llm["ok"]:
        model_status = "✓ available" if llm.get("model_available") else "✗ NOT found"
        click.echo(f"  Model '{config.llm_model}':  {model_status}")
    else:
        click.echo(f"  LLM backend:   ✗ NOT reachable ({llm.get('error')})")
        click.echo("  → Check LLM_BASE_URL, LLM_API_KEY in your .env")

    async def _count() -> int:
        async with _session(config) as repo:
            return len(repo)

    click.echo(f"  Storage:       {config.db_path}  ({asyncio.run(_count())} invoices)")
    click.echo()


# --------------------------------------------------------------------
# query commands
# --------------------------------------------------------------------

@cli.command("list")
@click.option("--search", "-s", default=None, help="Filter by invoice number or client name")
@click.pass_context
def list_invoices(ctx: click.Context, search: Optional[str]) -> None:
    """List invoices in creation order."""
    config: Config = ctx.obj["config"]

    async def _list() -> tuple[list[Invoice], float]:
        async with _session(config) as repo:
            return repo.search(search), repo.total_revenue()

    invoices, revenue = asyncio.run(_list())
    if not invoices:
        click.echo("No invoices.")
        return

    for inv in invoices:
        click.echo(
            f"  {inv.invoice_number:<12} {inv.date:<11} {inv.client_name:<30} "
            f"{format_money(inv.total):>12}   {inv.id}"
        )
    click.echo(f"\n  {len(invoices)} invoice(s).  Total revenue: {format_money(revenue)}")


@cli.command()
@click.argument("invoice_id")
@click.option("--json", "as_json", is_flag=True, help="Print the stored JSON record")
@click.pass_context
def show(ctx: click.Context, invoice_id: str, as_json: bool) -> None:
    """Show one invoice."""
    config: Config = ctx.obj["config"]

    async def _get() -> Optional[Invoice]:
        async with _session(config) as repo:
            return repo.get(invoice_id)

    invoice = asyncio.run(_get())
    if invoice is None:
        click.echo(f"Error: invoice {invoice_id!r} not found.", err=True)
        sys.exit(1)

    if as_json:
        click.echo(json.dumps(invoice.to_json_dict(), indent=2))
    else:
        _echo_invoice(invoice)


@cli.command("next-number")
@click.pass_context
def next_number(ctx: click.Context) -> None:
    """Print the next sequential invoice number."""
    config: Config = ctx.obj["config"]

    async def _next() -> str:
        async with _session(config) as repo:
            return next_invoice_number(repo.invoice_numbers())

    click.echo(asyncio.run(_next()))


# --------------------------------------------------------------------
# mutation commands
# --------------------------------------------------------------------

@cli.command()
@click.option("--client", "client_name", required=True, help="Client name")
@click.option("--number", "invoice_number", default=None, help="Invoice number (default: next INV-###)")
@click.option("--date", "invoice_date", default=None, help="Invoice date YYYY-MM-DD (default: today)")
@click.option("--due-date", default=None, help="Due date YYYY-MM-DD")
@click.option("--item", "items", multiple=True, callback=_parse_item,
              help='Line item "description:quantity:price" (repeatable)')
@click.option("--tax-rate", type=float, default=None, help="Tax rate as a fraction, e.g. 0.2")
@click.option("--discount", type=float, default=None, help="Discount as a fraction, e.g. 0.1")
@click.option("--notes", default=None, help="Free-text notes")
@click.pass_context
def create(
    ctx: click.Context,
    client_name: str,
    invoice_number: Optional[str],
    invoice_date: Optional[str],
    due_date: Optional[str],
    items: list[ItemInput],
    tax_rate: Optional[float],
    discount: Optional[float],
    notes: Optional[str],
) -> None:
    """Create a new invoice."""
    config: Config = ctx.obj["config"]

    async def _create() -> Invoice:
        async with _session(config) as repo:
            form = InvoiceInput(
                client_name=client_name.strip(),
                invoice_number=(invoice_number or next_invoice_number(repo.invoice_numbers())).strip(),
                date=invoice_date or date.today().isoformat(),
                due_date=due_date or None,
                items=items,
                tax_rate=config.default_tax_rate if tax_rate is None else tax_rate,
                discount=config.default_discount if discount is None else discount,
                notes=(notes or "").strip() or None,
            )
            _fail_on_issues(InvoiceFormValidator().validate(form, repo.all()))
            return repo.create(form)

    invoice = asyncio.run(_create())
    click.echo(f"✓ Invoice created: {invoice.invoice_number}  ({invoice.id})")
    _echo_invoice(invoice)


@cli.command()
@click.argument("invoice_id")
@click.option("--client", "client_name", default=None, help="Client name")
@click.option("--number", "invoice_number", default=None, help="Invoice number")
@click.option("--date", "invoice_date", default=None, help="Invoice date YYYY-MM-DD")
@click.option("--due-date", default=None, help="Due date YYYY-MM-DD")
@click.option("--clear-due-date", is_flag=True, help="Remove the due date")
@click.option("--item", "items", multiple=True, callback=_parse_item,
              help='Replacement line item "description:quantity:price" (repeatable)')
@click.option("--tax-rate", type=float, default=None, help="Tax rate as a fraction")
@click.option("--discount", type=float, default=None, help="Discount as a fraction")
@click.option("--notes", default=None, help="Free-text notes")
@click.option("--clear-notes", is_flag=True, help="Remove the notes")
@click.pass_context
def update(
    ctx: click.Context,
    invoice_id: str,
    client_name: Optional[str],
    invoice_number: Optional[str],
    invoice_date: Optional[str],
    due_date: Optional[str],
    clear_due_date: bool,
    items: list[ItemInput],
    tax_rate: Optional[float],
    discount: Optional[float],
    notes: Optional[str],
    clear_notes: bool,
) -> None:
    """Edit an existing invoice. Only the given options change."""
    config: Config = ctx.obj["config"]

    changes: dict = {}
    if client_name is not None:
        changes["client_name"] = client_name.strip()
    if invoice_number is not None:
        changes["invoice_number"] = invoice_number.strip()
    if invoice_date is not None:
        changes["date"] = invoice_date
    if due_date is not None or clear_due_date:
        changes["due_date"] = None if clear_due_date else due_date
    if items:
        changes["items"] = items
    if tax_rate is not None:
        changes["tax_rate"] = tax_rate
    if discount is not None:
        changes["discount"] = discount
    if notes is not None or clear_notes:
        changes["notes"] = None if clear_notes else notes.strip()
    patch = InvoicePatch(**changes)

    async def _update() -> Optional[Invoice]:
        async with _session(config) as repo:
            if repo.get(invoice_id) is None:
                return None
            _fail_on_issues(InvoiceFormValidator().validate_patch(patch, repo.all(), invoice_id))
            repo.update(invoice_id, patch)
            return repo.get(invoice_id)

    invoice = asyncio.run(_update())
    if invoice is None:
        click.echo(f"Error: invoice {invoice_id!r} not found.", err=True)
        sys.exit(1)
    click.echo(f"✓ Invoice updated: {invoice.invoice_number}")
    _echo_invoice(invoice)


@cli.command()
@click.argument("invoice_id")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def delete(ctx: click.Context, invoice_id: str, yes: bool) -> None:
    """Delete an invoice permanently."""
    config: Config = ctx.obj["config"]

    async def _delete() -> Optional[Invoice]:
        async with _session(config) as repo:
            invoice = repo.get(invoice_id)
            if invoice is None:
                return None
            if not yes and not click.confirm(f"Delete invoice {invoice.invoice_number}?"):
                return invoice
            repo.delete(invoice_id)
            click.echo(f"✓ Invoice deleted: {invoice.invoice_number}")
            return invoice

    if asyncio.run(_delete()) is None:
        click.echo(f"Error: invoice {invoice_id!r} not found.", err=True)
        sys.exit(1)


# --------------------------------------------------------------------
# AI fill
# --------------------------------------------------------------------

@cli.command()
@click.argument("text")
@click.option("--model", "-m", default=None, help="LLM model (default: LLM_MODEL or llama3.2)")
@click.option("--save", is_flag=True, help="Validate and create the invoice from the filled form")
@click.pass_context
def parse(ctx: click.Context, text: str, model: Optional[str], save: bool) -> None:
    """Fill an invoice form from a free-text description using the LLM."""
    config: Config = ctx.obj["config"]
    if model:
        config.llm_model = model

    parser = LLMParser.from_config(config)
    try:
        form = parser.fill_form(text)
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    except Exception as e:
        logger.error("AI fill failed: %s", e)
        click.echo(
            "Error: failed to fill the form with AI. Check your connection and try again.",
            err=True,
        )
        sys.exit(1)

    if form is None:
        click.echo(
            "Error: could not read invoice data from the AI response. Try rephrasing your request.",
            err=True,
        )
        sys.exit(1)

    click.echo(json.dumps(form.to_json_dict(), indent=2))
    if not save:
        return

    async def _save() -> Invoice:
        async with _session(config) as repo:
            invoice_input = form.to_input(
                invoice_number=next_invoice_number(repo.invoice_numbers()),
                date=date.today().isoformat(),
                tax_rate=config.default_tax_rate,
                discount=config.default_discount,
            )
            _fail_on_issues(InvoiceFormValidator().validate(invoice_input, repo.all()))
            return repo.create(invoice_input)

    invoice = asyncio.run(_save())
    click.echo(f"\n✓ Invoice created: {invoice.invoice_number}  ({invoice.id})")


# --------------------------------------------------------------------
# export command
# --------------------------------------------------------------------

@cli.command()
@click.argument("invoice_id", required=False)
@click.option("--output", "-o", default=None, type=click.Path(file_okay=False),
              help="Output directory (default: EXPORT_DIR)")
@click.pass_context
def export(ctx: click.Context, invoice_id: Optional[str], output: Optional[str]) -> None:
    """
    Render one invoice (or, without INVOICE_ID, every invoice) as HTML.
    """
    config: Config = ctx.obj["config"]
    out_dir = Path(output) if output else config.export_dir

    async def _load() -> tuple[Optional[Invoice], list[Invoice]]:
        async with _session(config) as repo:
            return (repo.get(invoice_id) if invoice_id else None), repo.all()

    invoice, invoices = asyncio.run(_load())
    try:
        if invoice_id:
            html = render_invoice_html(invoice, template_file=config.invoice_template)
            path = write_html(html, out_dir / export_filename(invoice))
        else:
            html = render_report_html(invoices, template_file=config.report_template)
            path = write_html(html, out_dir / f"invoices_report_{date.today().isoformat()}.html")
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo(f"✓ Exported to: {path}")


if __name__ == "__main__":
    cli()
