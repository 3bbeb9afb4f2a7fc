"""
HTML rendering for a single invoice and for the all-invoices report.

Templates are Jinja2 with autoescaping on. The built-in defaults below can be
replaced by dropping invoice.html.j2 / report.html.j2 into the config
directory. Turning the HTML into PDF or sharing it is left to the caller.
"""
import logging
import re
from datetime import date, datetime
from pathlib import Path
from typing import Optional, Sequence

from jinja2 import BaseLoader, Environment, FileSystemLoader

from models.invoice import Invoice
from invoicing.money import discount_amount, format_money

logger = logging.getLogger(__name__)

_STYLE = """\
  <style>
    * { margin: 0; padding: 0; box-sizing: border-box; }
    body { font-family: -apple-system, 'Segoe UI', Roboto, sans-serif; color: #333; line-height: 1.6; padding: 40px; }
    .header { display: flex; justify-content: space-between; margin-bottom: 40px; padding-bottom: 20px; border-bottom: 3px solid #27AE60; }
    .invoice-number { font-size: 18px; color: #27AE60; font-weight: 600; }
    table { width: 100%; border-collapse: collapse; margin-bottom: 30px; }
    th { background: #F8F9FA; text-align: left; padding: 12px; font-size: 12px; text-transform: uppercase; }
    td { padding: 12px; border-bottom: 1px solid #EEE; }
    .text-right { text-align: right; }
    .totals-row { display: flex; justify-content: space-between; padding: 6px 0; }
    .totals-row.final { font-size: 20px; font-weight: 700; color: #27AE60; border-top: 2px solid #27AE60; }
    .notes-section, .footer { margin-top: 40px; padding-top: 20px; border-top: 1px solid #EEE; }
    .footer { text-align: center; color: #999; font-size: 12px; }
    .invoice-block { page-break-after: always; margin-top: 40px; }
  </style>
"""

_INVOICE_BODY = """\
  <div class="header">
    <div class="invoice-info">
      <h2>INVOICE</h2>
      <div class="invoice-number">{{ invoice.invoice_number }}</div>
      <p>Date: {{ invoice.date | us_date }}</p>
      {% if invoice.due_date %}<p>Due Date: {{ invoice.due_date | us_date }}</p>
      {% endif %}
    </div>
  </div>

  <div class="client-section">
    <h3>Bill To</h3>
    <p><strong>{{ invoice.client_name }}</strong></p>
  </div>

  <table>
    <thead>
      <tr><th>Description</th><th class="text-right">Qty</th><th class="text-right">Price</th><th class="text-right">Amount</th></tr>
    </thead>
    <tbody>
      {% for item in invoice.items %}
      <tr>
        <td>{{ item.description }}</td>
        <td class="text-right">{{ item.quantity | qty }}</td>
        <td class="text-right">{{ item.price | money }}</td>
        <td class="text-right">{{ item.subtotal | money }}</td>
      </tr>
      {% endfor %}
    </tbody>
  </table>

  <div class="totals">
    <div class="totals-row"><span class="label">Subtotal:</span><span class="value">{{ invoice.subtotal | money }}</span></div>
    {% if invoice.tax_rate > 0 %}
    <div class="totals-row"><span class="label">Tax ({{ invoice.tax_rate | percent }}):</span><span class="value">{{ invoice.tax_amount | money }}</span></div>
    {% endif %}
    {% if invoice.discount > 0 %}
    <div class="totals-row"><span class="label">Discount ({{ invoice.discount | percent }}):</span><span class="value">-{{ discount_amount(invoice.subtotal, invoice.discount) | money }}</span></div>
    {% endif %}
    <div class="totals-row final"><span class="label">Total:</span><span class="value">{{ invoice.total | money }}</span></div>
  </div>

  {% if invoice.notes %}
  <div class="notes-section">
    <h3>Notes</h3>
    <p>{% for line in invoice.notes.splitlines() %}{{ line }}{% if not loop.last %}<br>{% endif %}{% endfor %}</p>
  </div>
  {% endif %}
"""

DEFAULT_INVOICE_TEMPLATE = (
    "<!DOCTYPE html>\n<html>\n<head>\n  <meta charset=\"UTF-8\">\n"
    "  <title>Invoice {{ invoice.invoice_number }}</title>\n"
    + _STYLE
    + "</head>\n<body>\n<div class=\"invoice-container\">\n"
    + _INVOICE_BODY
    + """\
  <div class="footer">
    <p>Created: {{ invoice.created_at | us_date }}</p>
  </div>
</div>
</body>
</html>
"""
)

DEFAULT_REPORT_TEMPLATE = (
    "<!DOCTYPE html>\n<html>\n<head>\n  <meta charset=\"UTF-8\">\n"
    "  <title>All Invoices Report</title>\n"
    + _STYLE
    + """\
</head>
<body>
<div class="report-container">
  <div class="report-header">
    <h1>All Invoices Report</h1>
    <p>Generated: {{ generated_at | us_date }}</p>
  </div>

  <div class="summary-section">
    <div class="summary-row"><span class="summary-label">Total Invoices:</span><span class="summary-value">{{ invoices | length }}</span></div>
    <div class="summary-row"><span class="summary-label">Total Amount:</span><span class="summary-value">{{ total_revenue | money }}</span></div>
  </div>

  {% for invoice in invoices %}
  <div class="invoice-block">
"""
    + _INVOICE_BODY
    + """\
  </div>
  {% endfor %}
</div>
</body>
</html>
"""
)


# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------

def _us_date(value) -> str:
    """'2024-01-05' or an ISO timestamp -> '1/5/2024'. Unparseable input is returned as-is."""
    if value is None:
        return ""
    if isinstance(value, datetime):
        value = value.date()
    if not isinstance(value, date):
        try:
            value = date.fromisoformat(str(value)[:10])
        except ValueError:
            return str(value)
    return f"{value.month}/{value.day}/{value.year}"


def _percent(fraction: float) -> str:
    return f"{fraction * 100:.0f}%"


def _qty(value: float) -> str:
    return f"{value:g}"


def _environment(loader) -> Environment:
    env = Environment(loader=loader, autoescape=True, keep_trailing_newline=True)
    env.filters["money"] = format_money
    env.filters["us_date"] = _us_date
    env.filters["percent"] = _percent
    env.filters["qty"] = _qty
    env.globals["discount_amount"] = discount_amount
    return env


def _template(default: str, template_file: Optional[Path]):
    if template_file and template_file.exists():
        env = _environment(FileSystemLoader(str(template_file.parent)))
        return env.get_template(template_file.name)
    return _environment(BaseLoader()).from_string(default)


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------

def render_invoice_html(
    invoice: Optional[Invoice],
    template_file: Optional[Path] = None,
) -> str:
    """Render one invoice. Raises ValueError when there is no invoice to render."""
    if invoice is None:
        raise ValueError("Invoice data is missing")
    return _template(DEFAULT_INVOICE_TEMPLATE, template_file).render(invoice=invoice)


def render_report_html(
    invoices: Optional[Sequence[Invoice]],
    generated_at: Optional[date] = None,
    template_file: Optional[Path] = None,
) -> str:
    """Render every invoice into one report with a count and revenue summary."""
    if not invoices:
        raise ValueError("No invoices to export")
    return _template(DEFAULT_REPORT_TEMPLATE, template_file).render(
        invoices=list(invoices),
        total_revenue=sum(inv.total for inv in invoices),
        generated_at=generated_at or date.today(),
    )


def export_filename(invoice: Invoice) -> str:
    """Filesystem-safe name derived from the invoice number."""
    stem = re.sub(r"[^A-Za-z0-9._-]+", "_", invoice.invoice_number).strip("._") or invoice.id
    return f"{stem}.html"


def write_html(html: str, destination: Path) -> Path:
    destination.parent.mkdir(parents=True, exist_ok=True)
    destination.write_text(html, encoding="utf-8")
    logger.info("HTML written: %s", destination)
    return destination
