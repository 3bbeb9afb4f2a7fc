from .money import Totals, round2, item_subtotal, invoice_totals
from .numbering import next_invoice_number, is_invoice_number_unique
from .llm_parser import LLMParser, extract_json, map_to_form, parse_invoice_data
from .storage import KeyValueStore, MemoryKeyValueStore, SQLiteKeyValueStore
from .repository import InvoiceRepository, STORAGE_KEY
from .validator import InvoiceFormValidator, ValidationIssue

__all__ = [
    "Totals", "round2", "item_subtotal", "invoice_totals",
    "next_invoice_number", "is_invoice_number_unique",
    "LLMParser", "extract_json", "map_to_form", "parse_invoice_data",
    "KeyValueStore", "MemoryKeyValueStore", "SQLiteKeyValueStore",
    "InvoiceRepository", "STORAGE_KEY",
    "InvoiceFormValidator", "ValidationIssue",
]
