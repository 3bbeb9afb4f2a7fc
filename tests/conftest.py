"""
Pytest configuration and shared fixtures for the PromptInvoice test suite.
"""
import itertools
import os
import shutil
import tempfile
from pathlib import Path
from typing import Generator

import pytest

from models.forms import InvoiceInput, ItemInput

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
os.chdir(PROJECT_ROOT)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory for test files."""
    tmp_path = tempfile.mkdtemp(prefix="promptinvoice_test_")
    yield Path(tmp_path)
    shutil.rmtree(tmp_path, ignore_errors=True)


@pytest.fixture
def test_config(temp_dir: Path) -> "Config":
    """Provide a test configuration with isolated directories."""
    from config import Config

    config = Config()
    config.output_dir = temp_dir / "output"
    config.export_dir = temp_dir / "output" / "export"
    config.db_path = temp_dir / "output" / "promptinvoice.db"
    config.invoice_template = None
    config.report_template = None
    config.ensure_output_dir()
    return config


@pytest.fixture
def memory_store() -> "MemoryKeyValueStore":
    from invoicing.storage import MemoryKeyValueStore
    return MemoryKeyValueStore()


@pytest.fixture
def tick_clock():
    """Clock returning strictly increasing ISO timestamps, one second apart."""
    counter = itertools.count()

    def _now() -> str:
        return f"2024-01-01T00:00:{next(counter):02d}+00:00"

    return _now


@pytest.fixture
def repository(memory_store, tick_clock) -> "InvoiceRepository":
    """A fresh repository over an empty in-memory store."""
    from invoicing.repository import InvoiceRepository
    return InvoiceRepository(memory_store, clock=tick_clock)


@pytest.fixture
def sample_input() -> InvoiceInput:
    """Two items, 10% tax, no discount: 250 / 25 / 275."""
    return InvoiceInput(
        client_name="Acme Supplies",
        invoice_number="INV-001",
        date="2024-01-15",
        due_date="2024-02-15",
        items=[
            ItemInput(description="A", quantity=2, price=100),
            ItemInput(description="B", quantity=1, price=50),
        ],
        tax_rate=0.1,
        discount=0,
        notes="Thanks for your business",
    )


@pytest.fixture
def mock_llm_response() -> str:
    """A typical chatty model reply wrapping the JSON in prose and a fence."""
    return (
        "Sure! Here is the extracted data:\n"
        "```json\n"
        '{"clientName": "Apple", "invoiceNumber": "INV-042", "date": "2024-03-01",\n'
        ' "items": [{"name": "logo design", "quantity": 2, "price": 500}],\n'
        ' "taxRate": 0.2, "notes": "Net 30"}\n'
        "```\n"
        "Let me know if you need anything else."
    )


# Configure pytest markers
def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
