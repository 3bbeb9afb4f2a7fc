from .invoice import Invoice, InvoiceItem
from .forms import (
    InvoiceInput, InvoicePatch, ItemInput,
    ParsedInvoiceData, ParsedItem, InvoiceFormData,
)

__all__ = [
    "Invoice", "InvoiceItem",
    "InvoiceInput", "InvoicePatch", "ItemInput",
    "ParsedInvoiceData", "ParsedItem", "InvoiceFormData",
]
