"""
Creation-form validation.

The repository trusts its input; this module is what stands in front of it.

Checks:
  Required:    client name, invoice number, date, at least one item
  Uniqueness:  invoice number (case-insensitive, excluding the invoice being edited)
  Dates:       YYYY-MM-DD and a real calendar date (due date optional)
  Ranges:      tax rate and discount in [0, 1], quantity >= 0.01, price >= 0,
               every number and line amount finite
"""
import logging
import math
import re
from datetime import date
from typing import Iterable, Optional

from pydantic import BaseModel

from models.forms import InvoiceInput, InvoicePatch, ItemInput
from models.invoice import Invoice
from invoicing.money import item_subtotal
from invoicing.numbering import is_invoice_number_unique

logger = logging.getLogger(__name__)

_DATE_RE = re.compile(r"\d{4}-\d{2}-\d{2}", re.ASCII)

MIN_QUANTITY = 0.01


class ValidationIssue(BaseModel):
    """One problem with one form field."""
    field: str          # e.g. "invoice_number", "items[1].price"
    message: str        # Human-readable explanation


def is_valid_date(value: Optional[str]) -> bool:
    if not value or not value.strip():
        return False
    if not _DATE_RE.fullmatch(value):
        return False
    try:
        date.fromisoformat(value)
    except ValueError:
        return False
    return True


def _in_range(value: Optional[float], low: float, high: Optional[float] = None) -> bool:
    if value is None or not math.isfinite(value):
        return False
    if value < low:
        return False
    if high is not None and value > high:
        return False
    return True


class InvoiceFormValidator:
    """
    Produces a list of ValidationIssue objects for a creation or edit form.

    Usage:
        validator = InvoiceFormValidator()
        issues = validator.validate(form, repo.all(), exclude_id=None)
    """

    def validate(
        self,
        form: InvoiceInput,
        invoices: Iterable[Invoice],
        exclude_id: Optional[str] = None,
    ) -> list[ValidationIssue]:
        """Run every check against a complete form."""
        issues: list[ValidationIssue] = []
        issues.extend(self._check_client_name(form.client_name))
        issues.extend(self._check_invoice_number(form.invoice_number, invoices, exclude_id))
        issues.extend(self._check_dates(form.date, form.due_date))
        issues.extend(self._check_rates(form.tax_rate, form.discount))
        issues.extend(self._check_items(form.items))
        return issues

    def validate_patch(
        self,
        patch: InvoicePatch,
        invoices: Iterable[Invoice],
        invoice_id: str,
    ) -> list[ValidationIssue]:
        """Check only the fields a partial update actually sets."""
        fields = patch.model_fields_set
        issues: list[ValidationIssue] = []
        if "client_name" in fields and patch.client_name is not None:
            issues.extend(self._check_client_name(patch.client_name))
        if "invoice_number" in fields and patch.invoice_number is not None:
            issues.extend(self._check_invoice_number(patch.invoice_number, invoices, invoice_id))
        if "date" in fields and patch.date is not None:
            issues.extend(self._check_dates(patch.date, None))
        if "due_date" in fields and patch.due_date:
            issues.extend(self._check_due_date(patch.due_date))
        if "tax_rate" in fields and patch.tax_rate is not None:
            issues.extend(self._check_rates(patch.tax_rate, None))
        if "discount" in fields and patch.discount is not None:
            issues.extend(self._check_rates(None, patch.discount))
        if "items" in fields and patch.items is not None:
            issues.extend(self._check_items(patch.items))
        return issues

    # ------------------------------------------------------------------
    # Individual checks
    # ------------------------------------------------------------------

    def _check_client_name(self, name: str) -> list[ValidationIssue]:
        if not name or not name.strip():
            return [ValidationIssue(field="client_name", message="Client name is required")]
        return []

    def _check_invoice_number(
        self,
        number: str,
        invoices: Iterable[Invoice],
        exclude_id: Optional[str],
    ) -> list[ValidationIssue]:
        if not number or not number.strip():
            return [ValidationIssue(field="invoice_number", message="Invoice number is required")]
        if not is_invoice_number_unique(number.strip(), invoices, exclude_id):
            return [ValidationIssue(field="invoice_number", message="Invoice number already in use")]
        return []

    def _check_dates(self, invoice_date: str, due_date: Optional[str]) -> list[ValidationIssue]:
        issues = []
        if not is_valid_date(invoice_date):
            issues.append(ValidationIssue(field="date", message="Invalid date format (YYYY-MM-DD)"))
        if due_date:
            issues.extend(self._check_due_date(due_date))
        return issues

    def _check_due_date(self, due_date: str) -> list[ValidationIssue]:
        if not is_valid_date(due_date):
            return [ValidationIssue(field="due_date", message="Invalid date format (YYYY-MM-DD)")]
        return []

    def _check_rates(
        self,
        tax_rate: Optional[float],
        discount: Optional[float],
    ) -> list[ValidationIssue]:
        issues = []
        if tax_rate is not None and not _in_range(tax_rate, 0, 1):
            issues.append(ValidationIssue(
                field="tax_rate", message="Tax rate must be between 0 and 1",
            ))
        if discount is not None and not _in_range(discount, 0, 1):
            issues.append(ValidationIssue(
                field="discount", message="Discount must be between 0 and 1 (0% to 100%)",
            ))
        return issues

    def _check_items(self, items: list[ItemInput]) -> list[ValidationIssue]:
        if not items:
            return [ValidationIssue(field="items", message="Add at least one item")]

        issues = []
        for i, item in enumerate(items):
            if not item.description or not item.description.strip():
                issues.append(ValidationIssue(
                    field=f"items[{i}].description", message="Description is required",
                ))
            if not _in_range(item.quantity, MIN_QUANTITY):
                issues.append(ValidationIssue(
                    field=f"items[{i}].quantity", message="Quantity must be greater than 0",
                ))
            if not _in_range(item.price, 0):
                issues.append(ValidationIssue(
                    field=f"items[{i}].price", message="Price cannot be negative",
                ))
            elif _in_range(item.quantity, MIN_QUANTITY) and not math.isfinite(
                item_subtotal(item.quantity, item.price)
            ):
                issues.append(ValidationIssue(
                    field=f"items[{i}]", message="Amount is too large",
                ))
        if not issues and not math.isfinite(
            sum(item_subtotal(item.quantity, item.price) for item in items)
        ):
            issues.append(ValidationIssue(field="items", message="Amount is too large"))
        if issues:
            logger.debug("Item validation failed: %d issue(s)", len(issues))
        return issues
