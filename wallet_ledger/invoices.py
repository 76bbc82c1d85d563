import logging
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional

from .config import Settings, get_settings
from .exceptions import ConcurrentModificationError, InvoiceNotFoundError
from .models import (
    BuyerInfo,
    Invoice,
    InvoiceBuyer,
    InvoiceItem,
    InvoiceStatus,
    OrderItem,
    SellerInfo,
    TaxSummary,
    utcnow,
)
from . import tax
from .storage import InMemoryStorage

logger = logging.getLogger(__name__)

INVOICES = "invoices"
COUNTERS = "counters"
INVOICE_COUNTER = "invoices"


def invoice_id_for_order(order_id: str) -> str:
    return f"inv_{order_id}"


def financial_year_key(now: datetime) -> str:
    """Indian financial year label; FY26 runs April 2025 to March 2026."""
    start_year = now.year - 1 if now.month < 4 else now.year
    return f"FY{(start_year + 1) % 100:02d}"


class InvoiceService:
    def __init__(
        self,
        storage: InMemoryStorage,
        config: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.storage = storage
        self.config = config or get_settings()
        self.clock = clock

    @property
    def seller(self) -> SellerInfo:
        return SellerInfo(
            name=self.config.SELLER_NAME,
            address=self.config.SELLER_ADDRESS,
            state=self.config.SELLER_STATE,
            state_code=tax.state_code(self.config.SELLER_STATE),
            gstin=self.config.SELLER_GSTIN or None,
        )

    def create_draft(
        self,
        order_id: str,
        items: list[OrderItem],
        buyer: BuyerInfo,
        delivery_charges: Decimal = Decimal("0.00"),
    ) -> Invoice:
        interstate = tax.is_interstate(buyer.state, self.config.SELLER_STATE)

        invoice_items = []
        for item in items:
            gst_rate = item.gst_rate if item.gst_rate is not None else tax.default_gst_rate(item.category)
            breakdown = tax.calculate_item_tax(item.price, item.quantity, gst_rate, interstate)
            invoice_items.append(InvoiceItem(
                name=item.name,
                hsn_code=item.hsn_code or tax.default_hsn_code(item.category),
                quantity=item.quantity,
                unit_price=item.price,
                base_price=breakdown.base_price,
                gst_rate=gst_rate,
                gst_amount=breakdown.gst_amount,
                cgst=breakdown.cgst,
                sgst=breakdown.sgst,
                igst=breakdown.igst,
                total_amount=breakdown.total_amount,
            ))

        summary = TaxSummary(
            taxable_amount=sum((i.base_price for i in invoice_items), Decimal("0.00")),
            cgst=sum((i.cgst for i in invoice_items), Decimal("0.00")),
            sgst=sum((i.sgst for i in invoice_items), Decimal("0.00")),
            igst=sum((i.igst for i in invoice_items), Decimal("0.00")),
            total_tax=sum((i.gst_amount for i in invoice_items), Decimal("0.00")),
        )
        subtotal = sum((i.total_amount for i in invoice_items), Decimal("0.00"))
        grand_total = subtotal + delivery_charges

        invoice = Invoice(
            id=invoice_id_for_order(order_id),
            order_id=order_id,
            seller=self.seller,
            buyer=InvoiceBuyer(**buyer.model_dump(), state_code=tax.state_code(buyer.state)),
            items=invoice_items,
            tax_summary=summary,
            subtotal=subtotal,
            delivery_charges=delivery_charges,
            grand_total=grand_total,
            amount_in_words=tax.amount_to_words(grand_total),
            is_interstate=interstate,
            status=InvoiceStatus.DRAFT,
            created_at=self.clock(),
        )
        self.storage.set(INVOICES, invoice.id, invoice.model_dump(exclude={"id"}))
        return invoice

    def next_invoice_number(self) -> str:
        fy_key = financial_year_key(self.clock())
        for _ in range(max(1, self.config.LEDGER_MAX_RETRIES)):
            snapshot = self.storage.get(COUNTERS, INVOICE_COUNTER)
            version = snapshot.version if snapshot else 0
            counter = snapshot.data if snapshot else {}
            # numbering restarts at 1 each financial year
            next_number = counter.get("last_number", 0) + 1 if counter.get("current_fy") == fy_key else 1
            try:
                self.storage.compare_and_set(
                    COUNTERS, INVOICE_COUNTER, version,
                    {"current_fy": fy_key, "last_number": next_number, "updated_at": self.clock()},
                )
            except ConcurrentModificationError:
                continue
            return f"{self.config.INVOICE_PREFIX}/{fy_key}/{next_number:04d}"
        raise ConcurrentModificationError("Invoice counter update failed")

    def finalize(self, invoice_id: str) -> str:
        invoice = self.get_invoice(invoice_id)
        if invoice.invoice_number:
            return invoice.invoice_number

        number = self.next_invoice_number()
        self.storage.update(INVOICES, invoice_id, {
            "invoice_number": number,
            "generated_at": self.clock(),
            "status": InvoiceStatus.GENERATED,
        })
        logger.info("Invoice %s finalized as %s", invoice_id, number)
        return number

    def get_invoice(self, invoice_id: str) -> Invoice:
        snapshot = self.storage.get(INVOICES, invoice_id)
        if snapshot is None:
            raise InvoiceNotFoundError(f"Invoice {invoice_id} not found")
        return Invoice(id=snapshot.id, **snapshot.data)

    def get_invoice_for_order(self, order_id: str) -> Invoice:
        return self.get_invoice(invoice_id_for_order(order_id))
