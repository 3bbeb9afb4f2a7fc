from pydantic import Field
from typing import Optional, List

from .invoice import CamelModel


class ItemInput(CamelModel):
    """A line item as entered on the creation form (no id, no subtotal)."""
    description: str
    quantity: float
    price: float


class InvoiceInput(CamelModel):
    """Everything needed to create an invoice."""
    client_name: str
    invoice_number: str
    date: str
    due_date: Optional[str] = None
    items: List[ItemInput] = Field(default_factory=list)
    tax_rate: float = 0.0
    discount: float = 0.0
    notes: Optional[str] = None


class InvoicePatch(CamelModel):
    """
    Partial update for an existing invoice.

    Only fields that were explicitly set are merged (see model_fields_set).
    """
    client_name: Optional[str] = None
    invoice_number: Optional[str] = None
    date: Optional[str] = None
    due_date: Optional[str] = None
    items: Optional[List[ItemInput]] = None
    tax_rate: Optional[float] = None
    discount: Optional[float] = None
    notes: Optional[str] = None


class ParsedItem(CamelModel):
    """Line item as returned by the language model."""
    name: str
    quantity: float
    price: float


class ParsedInvoiceData(CamelModel):
    """
    Whatever the language model managed to extract from free text.
    Transient: consumed once to pre-fill a creation form.
    """
    client_name: Optional[str] = None
    invoice_number: Optional[str] = None
    date: Optional[str] = None
    due_date: Optional[str] = None
    items: Optional[List[ParsedItem]] = None
    tax_rate: Optional[float] = None
    discount: Optional[float] = None
    notes: Optional[str] = None


class InvoiceFormData(CamelModel):
    """
    A pre-filled creation form.

    client_name is never None and items is never None; number, dates and
    rates stay None until the caller fills or defaults them.
    """
    client_name: str = ""
    invoice_number: Optional[str] = None
    date: Optional[str] = None
    due_date: Optional[str] = None
    items: List[ItemInput] = Field(default_factory=list)
    tax_rate: Optional[float] = None
    discount: Optional[float] = None
    notes: Optional[str] = None

    def to_input(
        self,
        invoice_number: str,
        date: str,
        tax_rate: float = 0.0,
        discount: float = 0.0,
    ) -> InvoiceInput:
        """Complete the form, using the given defaults for any blank field."""
        return InvoiceInput(
            client_name=self.client_name,
            invoice_number=self.invoice_number or invoice_number,
            date=self.date or date,
            due_date=self.due_date,
            items=list(self.items),
            tax_rate=self.tax_rate if self.tax_rate is not None else tax_rate,
            discount=self.discount if self.discount is not None else discount,
            notes=self.notes,
        )
