from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Optional, List


class CamelModel(BaseModel):
    """
    Base for every record that crosses the JSON boundary.

    Attributes are snake_case in Python; the persisted and AI-facing JSON uses
    camelCase keys (clientName, invoiceNumber, taxRate, ...). Both spellings
    are accepted on input.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class InvoiceItem(CamelModel):
    """A single line item, owned by exactly one invoice."""
    id: str
    description: str
    quantity: float
    price: float
    subtotal: float                       # quantity * price, unrounded


class Invoice(CamelModel):
    """
    A billable document for one client.

    subtotal / tax_amount / total are always derived from items, tax_rate and
    discount by the repository; they are never edited directly.
    Dates are YYYY-MM-DD strings, timestamps ISO 8601 UTC strings.
    """
    id: str
    client_name: str
    invoice_number: str
    date: str
    due_date: Optional[str] = None

    items: List[InvoiceItem] = Field(default_factory=list)

    subtotal: float = 0.0
    tax_rate: float = 0.0                 # fraction, e.g. 0.20 for 20%
    tax_amount: float = 0.0
    discount: float = 0.0                 # fraction, e.g. 0.10 for 10%
    total: float = 0.0

    notes: Optional[str] = None

    created_at: str
    updated_at: str
