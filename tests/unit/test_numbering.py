"""
Unit tests for invoice number generation and uniqueness.
"""
import pytest

from models.invoice import Invoice
from invoicing.numbering import is_invoice_number_unique, next_invoice_number


def _invoice(invoice_id: str, number: str) -> Invoice:
    return Invoice(
        id=invoice_id,
        client_name="Client",
        invoice_number=number,
        date="2024-01-01",
        created_at="2024-01-01T00:00:00+00:00",
        updated_at="2024-01-01T00:00:00+00:00",
    )


@pytest.mark.unit
class TestNextInvoiceNumber:
    """Tests for next_invoice_number()."""

    def test_first_number(self):
        """Test an empty collection starts at INV-001."""
        assert next_invoice_number([]) == "INV-001"

    def test_sequential(self):
        """Test the number after the highest existing one is returned."""
        assert next_invoice_number(["INV-001", "INV-002"]) == "INV-003"

    def test_gaps_are_not_refilled(self):
        """Test gaps in the sequence are skipped, not reused."""
        assert next_invoice_number(["INV-001", "INV-005"]) == "INV-006"

    def test_non_standard_numbers_ignored(self):
        """Test numbers outside the INV-### pattern do not affect the sequence."""
        assert next_invoice_number(["INV-003", "CUSTOM-001", "ABC123"]) == "INV-004"

    def test_only_non_standard_numbers(self):
        """Test a collection with no INV-### numbers starts at INV-001."""
        assert next_invoice_number(["CUSTOM-999", "2024/17"]) == "INV-001"

    def test_case_insensitive(self):
        """Test a lowercase prefix still counts."""
        assert next_invoice_number(["inv-005"]) == "INV-006"

    def test_match_is_anchored(self):
        """Prefixes, suffixes and padding spaces disqualify a number."""
        assert next_invoice_number(["XINV-050", "INV-050A", " INV-070", "INV-"]) == "INV-001"

    def test_grows_past_three_digits(self):
        """Test numbers widen instead of wrapping after INV-999."""
        assert next_invoice_number(["INV-999"]) == "INV-1000"
        assert next_invoice_number(["INV-1000"]) == "INV-1001"

    def test_leading_zeros_parsed_as_decimal(self):
        """Test extra zero padding is read as a decimal number."""
        assert next_invoice_number(["INV-0009"]) == "INV-010"


@pytest.mark.unit
class TestIsInvoiceNumberUnique:
    """Tests for is_invoice_number_unique()."""

    @pytest.fixture
    def invoices(self):
        return [_invoice("1", "INV-001"), _invoice("2", "INV-002")]

    def test_unique(self, invoices):
        """Test an unused number is unique."""
        assert is_invoice_number_unique("INV-003", invoices) is True

    def test_existing(self, invoices):
        """Test a number already in use is not unique."""
        assert is_invoice_number_unique("INV-001", invoices) is False

    def test_case_insensitive(self, invoices):
        """Test uniqueness ignores case."""
        assert is_invoice_number_unique("inv-001", invoices) is False

    def test_excludes_invoice_being_edited(self, invoices):
        """Test the invoice being edited may keep its own number."""
        assert is_invoice_number_unique("INV-001", invoices, exclude_id="1") is True

    def test_exclusion_does_not_hide_other_invoices(self, invoices):
        """Test exclusion only skips the given invoice."""
        assert is_invoice_number_unique("INV-002", invoices, exclude_id="1") is False

    def test_empty_collection(self):
        """Test any number is unique in an empty collection."""
        assert is_invoice_number_unique("INV-001", []) is True
