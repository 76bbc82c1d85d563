from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict, model_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Role(str, Enum):
    CUSTOMER = "customer"
    ADMIN = "admin"


class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class CommissionStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"


class WithdrawalStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    REJECTED = "rejected"


class WithdrawalDecision(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"


class TransactionType(str, Enum):
    COMMISSION_CREDIT = "commission_credit"
    CHECKOUT_DEBIT = "checkout_debit"
    WITHDRAWAL_DEBIT = "withdrawal_debit"
    ORDER_REFUND = "order_refund"


class WithdrawalErrorCode(str, Enum):
    MISSING_PAYMENT_DETAILS = "missing_payment_details"
    BELOW_MINIMUM = "below_minimum"
    PENDING_REQUEST_EXISTS = "pending_request_exists"
    COOLDOWN_ACTIVE = "cooldown_active"
    INVALID_AMOUNT = "invalid_amount"
    ALREADY_PROCESSED = "already_processed"


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

class LedgerSettings(BaseModel):
    """Admin-editable configuration stored in the settings/app document."""

    commission_enabled: bool = True
    commission_rate: int = Field(default=10, ge=0, le=100)
    max_commission_purchases: int = Field(default=1, ge=0, description="0 = unlimited")
    min_withdrawal: int = Field(default=100, ge=0)
    withdrawal_cooldown_days: int = Field(default=7, ge=0)
    max_wallet_usage_percent: int = Field(default=40, ge=0, le=100)

    model_config = ConfigDict(from_attributes=True)


class SettingsUpdate(BaseModel):
    commission_enabled: Optional[bool] = None
    commission_rate: Optional[int] = Field(default=None, ge=0, le=100)
    max_commission_purchases: Optional[int] = Field(default=None, ge=0)
    min_withdrawal: Optional[int] = Field(default=None, ge=0)
    withdrawal_cooldown_days: Optional[int] = Field(default=None, ge=0)
    max_wallet_usage_percent: Optional[int] = Field(default=None, ge=0, le=100)


# ---------------------------------------------------------------------------
# Users & wallet
# ---------------------------------------------------------------------------

class PaymentDetails(BaseModel):
    full_name: Optional[str] = None
    phone: Optional[str] = None
    upi_id: Optional[str] = None

    def is_complete(self) -> bool:
        return bool(self.full_name and self.phone and self.upi_id)


class UserRecord(BaseModel):
    id: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    role: Role = Role.CUSTOMER
    referral_code: Optional[str] = None
    referred_by: Optional[str] = None
    referred_at: Optional[datetime] = None
    wallet_balance: int = 0
    wallet_on_hold: int = 0
    last_withdrawal_request: Optional[datetime] = None
    payment_details: Optional[PaymentDetails] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class WalletView(BaseModel):
    balance: int
    on_hold: int
    available: int


class SignInRequest(BaseModel):
    id: str = Field(..., description="Verified user id from the auth provider")
    email: Optional[str] = None
    display_name: Optional[str] = None
    device_id: Optional[str] = Field(default=None, description="Browser/device holding a pending referral")


# ---------------------------------------------------------------------------
# Transaction log
# ---------------------------------------------------------------------------

class TransactionLogEntry(BaseModel):
    id: str
    user_id: str
    type: TransactionType
    amount: int
    balance_after: int
    description: str
    reference_id: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TransactionHistoryResponse(BaseModel):
    user_id: str
    entries: list[TransactionLogEntry]
    total_count: int
    wallet: WalletView


# ---------------------------------------------------------------------------
# Referrals & commissions
# ---------------------------------------------------------------------------

class Commission(BaseModel):
    id: str
    referrer_id: str
    referrer_name: Optional[str] = None
    order_id: str
    order_user_id: str
    order_user_name: Optional[str] = None
    order_total: Decimal
    commission: int
    commission_rate: int
    status: CommissionStatus = CommissionStatus.PENDING
    created_at: datetime
    paid_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    def can_mark_paid(self) -> bool:
        return self.status == CommissionStatus.PENDING


class CommissionOutcome(BaseModel):
    created: bool
    commission: Optional[Commission] = None
    ledger_entry: Optional[TransactionLogEntry] = None
    message: str


class ReferralStats(BaseModel):
    total_referred: int = 0
    total_purchased: int = 0
    total_earned: int = 0
    pending_commissions: int = 0


class ReferralSummary(BaseModel):
    code: str
    link: str
    stats: ReferralStats


class ReferralVisitRequest(BaseModel):
    code: str
    device_id: str


# ---------------------------------------------------------------------------
# Withdrawals
# ---------------------------------------------------------------------------

class WithdrawalRecord(BaseModel):
    id: str
    user_id: str
    user_email: Optional[str] = None
    amount: int
    full_name: str
    phone: str
    upi_id: str
    status: WithdrawalStatus = WithdrawalStatus.PENDING
    requested_at: datetime
    processed_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)

    def is_terminal(self) -> bool:
        return self.status != WithdrawalStatus.PENDING


class WithdrawalRequestBody(BaseModel):
    amount: int = Field(..., gt=0)


class ProcessWithdrawalRequest(BaseModel):
    decision: WithdrawalDecision
    reason: Optional[str] = None


class WithdrawalOutcome(BaseModel):
    success: bool
    error: Optional[WithdrawalErrorCode] = None
    message: str
    withdrawal: Optional[WithdrawalRecord] = None
    wallet: Optional[WalletView] = None
    next_available_date: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------

class OrderItem(BaseModel):
    id: Optional[str] = None
    name: str
    price: Decimal = Field(..., ge=0)
    quantity: int = Field(..., ge=1)
    category: Optional[str] = None
    gst_rate: Optional[int] = None
    hsn_code: Optional[str] = None

    def line_total(self) -> Decimal:
        return self.price * self.quantity


class BuyerInfo(BaseModel):
    name: str
    phone: str
    address: str
    state: str
    gstin: Optional[str] = None


class CreateOrderRequest(BaseModel):
    items: list[OrderItem] = Field(..., min_length=1)
    total: Decimal = Field(..., ge=0)
    referral_code: Optional[str] = None
    buyer: Optional[BuyerInfo] = None
    wallet_amount: int = Field(default=0, ge=0, description="Wallet credit applied at checkout")

    @model_validator(mode="after")
    def total_matches_items(self):
        expected = sum((item.line_total() for item in self.items), Decimal("0"))
        if self.total != expected:
            raise ValueError(f"Order total {self.total} does not match item total {expected}")
        return self


class Order(BaseModel):
    id: str
    user_id: str
    user_email: Optional[str] = None
    user_name: Optional[str] = None
    items: list[OrderItem]
    total: Decimal
    referral_code: Optional[str] = None
    status: OrderStatus = OrderStatus.PENDING
    wallet_amount_used: int = 0
    wallet_refunded: bool = False
    invoice_id: Optional[str] = None
    buyer: Optional[BuyerInfo] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class UpdateOrderStatusRequest(BaseModel):
    status: OrderStatus


class OrderStatusResponse(BaseModel):
    order: Order
    commission: Optional[CommissionOutcome] = None
    invoice_number: Optional[str] = None
    wallet_refund: Optional[TransactionLogEntry] = None


# ---------------------------------------------------------------------------
# Tax & invoices
# ---------------------------------------------------------------------------

class TaxQuoteRequest(BaseModel):
    amount: Decimal = Field(..., ge=0, description="GST inclusive line total")
    gst_rate: int = Field(..., ge=0, le=100)
    buyer_state: str


class TaxBreakdown(BaseModel):
    base_price: Decimal
    gst_amount: Decimal
    cgst: Decimal
    sgst: Decimal
    igst: Decimal
    total_amount: Decimal
    is_interstate: bool


class SellerInfo(BaseModel):
    name: str
    address: str
    state: str
    state_code: str
    gstin: Optional[str] = None


class InvoiceBuyer(BuyerInfo):
    state_code: str = ""


class InvoiceItem(BaseModel):
    name: str
    hsn_code: str
    quantity: int
    unit_price: Decimal
    base_price: Decimal
    gst_rate: int
    gst_amount: Decimal
    cgst: Decimal
    sgst: Decimal
    igst: Decimal
    total_amount: Decimal


class TaxSummary(BaseModel):
    taxable_amount: Decimal = Decimal("0.00")
    cgst: Decimal = Decimal("0.00")
    sgst: Decimal = Decimal("0.00")
    igst: Decimal = Decimal("0.00")
    total_tax: Decimal = Decimal("0.00")


class InvoiceStatus(str, Enum):
    DRAFT = "draft"
    GENERATED = "generated"


class Invoice(BaseModel):
    id: str
    invoice_number: Optional[str] = None
    order_id: str
    seller: SellerInfo
    buyer: InvoiceBuyer
    items: list[InvoiceItem]
    tax_summary: TaxSummary
    subtotal: Decimal
    delivery_charges: Decimal = Decimal("0.00")
    grand_total: Decimal
    amount_in_words: str
    is_interstate: bool
    status: InvoiceStatus = InvoiceStatus.DRAFT
    created_at: datetime
    generated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
