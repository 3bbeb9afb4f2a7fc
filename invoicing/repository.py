"""
In-memory invoice collection backed by a key-value store.

Every mutation runs synchronously against memory, recomputes derived totals,
and then schedules a write of the whole collection without waiting for it.
A crash between the two loses that one change; the last completed write wins.

Lifecycle of an invoice: created -> updated any number of times -> deleted.
There are no draft or archived states.

The repository does not validate. Callers check input (see
invoicing.validator) before calling create() or update().
"""
import asyncio
import json
import logging
import random
import string
import time
from datetime import datetime, timezone
from typing import Callable, Iterator, List, Optional

from pydantic import TypeAdapter

from models.forms import InvoiceInput, InvoicePatch, ItemInput
from models.invoice import Invoice, InvoiceItem
from invoicing.money import invoice_totals, item_subtotal
from invoicing.storage import KeyValueStore

logger = logging.getLogger(__name__)

STORAGE_KEY = "@promptinvoice_invoices"

_INVOICE_LIST = TypeAdapter(List[Invoice])
_ID_ALPHABET = string.digits + string.ascii_lowercase

# Optional fields that an explicit None in a patch clears.
_CLEARABLE = {"due_date", "notes"}


def generate_id() -> str:
    """'<epoch millis>-<9 base36 chars>', unique enough for a single-user store."""
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"{int(time.time() * 1000)}-{suffix}"


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class InvoiceRepository:
    """
    The single authority for invoice data in a session.

    Usage:
        repo = InvoiceRepository(SQLiteKeyValueStore(config.db_path))
        await repo.load_all()
        invoice = repo.create(form)
        await repo.flush()
    """

    def __init__(
        self,
        store: KeyValueStore,
        storage_key: str = STORAGE_KEY,
        clock: Callable[[], str] = utc_now,
        id_factory: Callable[[], str] = generate_id,
    ) -> None:
        self.store = store
        self.storage_key = storage_key
        self._clock = clock
        self._new_id = id_factory
        self._invoices: list[Invoice] = []
        self._pending: set[asyncio.Task] = set()
        self._last_write: Optional[asyncio.Task] = None
        self.is_loading = False

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._invoices)

    def __iter__(self) -> Iterator[Invoice]:
        return iter(list(self._invoices))

    def all(self) -> list[Invoice]:
        """All invoices in creation order."""
        return list(self._invoices)

    def get(self, invoice_id: str) -> Optional[Invoice]:
        return next((inv for inv in self._invoices if inv.id == invoice_id), None)

    def search(self, text: Optional[str] = None) -> list[Invoice]:
        """Case-insensitive substring match on invoice number or client name."""
        if not text:
            return self.all()
        needle = text.lower()
        return [
            inv for inv in self._invoices
            if needle in inv.invoice_number.lower() or needle in inv.client_name.lower()
        ]

    def invoice_numbers(self) -> list[str]:
        return [inv.invoice_number for inv in self._invoices]

    def total_revenue(self) -> float:
        return sum(inv.total for inv in self._invoices)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create(self, form: InvoiceInput) -> Invoice:
        """Build, store and return a new invoice. Persistence is scheduled, not awaited."""
        items = [self._build_item(item, self._new_id()) for item in form.items]
        totals = invoice_totals(items, form.tax_rate, form.discount)
        now = self._clock()

        invoice = Invoice(
            id=self._new_id(),
            client_name=form.client_name,
            invoice_number=form.invoice_number,
            date=form.date,
            due_date=form.due_date,
            items=items,
            subtotal=totals.subtotal,
            tax_rate=form.tax_rate,
            tax_amount=totals.tax_amount,
            discount=form.discount,
            total=totals.total,
            notes=form.notes,
            created_at=now,
            updated_at=now,
        )
        self._invoices.append(invoice)
        logger.info("Invoice created: %s (%s)", invoice.invoice_number, invoice.id)

        self._schedule_persist()
        return invoice

    def update(self, invoice_id: str, patch: InvoicePatch) -> None:
        """
        Merge the explicitly set fields of patch into an invoice.

        Unknown ids are logged and ignored. When items are replaced, an item
        keeps its old id if an existing item has the same description and
        price (so editing only the quantity preserves identity).
        """
        index = next(
            (i for i, inv in enumerate(self._invoices) if inv.id == invoice_id), None
        )
        if index is None:
            logger.warning("Invoice %s not found, update ignored", invoice_id)
            return

        existing = self._invoices[index]
        changes = {
            name: getattr(patch, name)
            for name in patch.model_fields_set
            if getattr(patch, name) is not None or name in _CLEARABLE
        }

        items = existing.items
        if "items" in changes:
            items = self._rebuild_items(existing.items, changes.pop("items"))

        tax_rate = changes.pop("tax_rate", existing.tax_rate)
        discount = changes.pop("discount", existing.discount)
        totals = invoice_totals(items, tax_rate, discount)

        updated = existing.model_copy(update={
            **changes,
            "items": items,
            "subtotal": totals.subtotal,
            "tax_rate": tax_rate,
            "tax_amount": totals.tax_amount,
            "discount": discount,
            "total": totals.total,
            "updated_at": self._clock(),
        })
        self._invoices[index] = updated
        logger.info("Invoice updated: %s (%s)", updated.invoice_number, invoice_id)

        self._schedule_persist()

    def delete(self, invoice_id: str) -> None:
        """Remove an invoice. Deleting an unknown id still rewrites storage."""
        before = len(self._invoices)
        self._invoices = [inv for inv in self._invoices if inv.id != invoice_id]
        if len(self._invoices) < before:
            logger.info("Invoice deleted: %s", invoice_id)
        else:
            logger.debug("Delete of unknown invoice %s", invoice_id)

        self._schedule_persist()

    # ------------------------------------------------------------------
    # Item helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _build_item(item: ItemInput, item_id: str) -> InvoiceItem:
        return InvoiceItem(
            id=item_id,
            description=item.description,
            quantity=item.quantity,
            price=item.price,
            subtotal=item_subtotal(item.quantity, item.price),
        )

    def _rebuild_items(
        self,
        old_items: list[InvoiceItem],
        new_items: list[ItemInput],
    ) -> list[InvoiceItem]:
        # Each old id is handed out at most once so ids stay unique per invoice.
        available = list(old_items)
        rebuilt = []
        for item in new_items:
            match = next(
                (
                    old for old in available
                    if old.description == item.description and old.price == item.price
                ),
                None,
            )
            if match is not None:
                available.remove(match)
            rebuilt.append(self._build_item(item, match.id if match else self._new_id()))
        return rebuilt

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def load_all(self) -> None:
        """
        Replace the in-memory collection with what storage holds.

        Missing data gives an empty collection; unreadable data is logged and
        also gives an empty collection so startup is never blocked.
        """
        self.is_loading = True
        try:
            stored = await self.store.get(self.storage_key)
            if stored:
                self._invoices = _INVOICE_LIST.validate_json(stored)
            else:
                self._invoices = []
            logger.info("Loaded %d invoice(s) from storage", len(self._invoices))
        except Exception as e:
            logger.error("Failed to load invoices: %s", e)
            self._invoices = []
        finally:
            self.is_loading = False

    def serialize(self) -> str:
        return json.dumps([inv.to_json_dict() for inv in self._invoices])

    async def persist(self) -> None:
        """Overwrite storage with the whole collection. Failures are logged, not raised."""
        try:
            await self.store.set(self.storage_key, self.serialize())
            logger.debug("Persisted %d invoice(s)", len(self._invoices))
        except Exception as e:
            logger.error("Failed to save invoices: %s", e)

    @property
    def pending_write(self) -> Optional[asyncio.Task]:
        """The most recently scheduled write, if it has not finished yet."""
        if self._last_write is not None and not self._last_write.done():
            return self._last_write
        return None

    async def flush(self) -> None:
        """Wait for every scheduled write to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _schedule_persist(self) -> Optional[asyncio.Task]:
        """
        Start a background write on the running event loop.

        Writes are chained so they land in scheduling order. Without a running
        loop the write completes before this returns.
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            asyncio.run(self.persist())
            return None

        previous = self.pending_write
        if previous is not None and previous.get_loop() is not loop:
            previous = None

        task = loop.create_task(self._write_after(previous))
        self._last_write = task
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _write_after(self, previous: Optional[asyncio.Task]) -> None:
        if previous is not None:
            await asyncio.wait([previous])
        await self.persist()
