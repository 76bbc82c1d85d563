import logging
from typing import Optional
from uuid import uuid4

from .commission import CommissionLedger
from .exceptions import (
    ConcurrentModificationError,
    InsufficientBalanceError,
    LedgerServiceError,
    OrderNotFoundError,
    UserNotFoundError,
)
from .invoices import InvoiceService, invoice_id_for_order
from .models import (
    CreateOrderRequest,
    Order,
    OrderStatus,
    OrderStatusResponse,
    TransactionLogEntry,
    TransactionType,
    utcnow,
)
from .settings_store import SettingsStore
from .storage import InMemoryStorage
from .wallet import WalletLedger, calculate_max_wallet_usage, get_wallet

logger = logging.getLogger(__name__)

ORDERS = "orders"
USERS = "users"

INVOICED_STATUSES = (OrderStatus.SHIPPED, OrderStatus.COMPLETED)


class OrderService:
    def __init__(
        self,
        storage: InMemoryStorage,
        settings: SettingsStore,
        wallet: WalletLedger,
        commissions: CommissionLedger,
        invoices: InvoiceService,
    ):
        self.storage = storage
        self.settings = settings
        self.wallet = wallet
        self.commissions = commissions
        self.invoices = invoices

    def create_order(self, user_id: str, request: CreateOrderRequest) -> Order:
        user_snap = self.storage.get(USERS, user_id)
        if user_snap is None:
            raise UserNotFoundError(f"User {user_id} not found")
        user = user_snap.data

        referral_code = request.referral_code or self._referrer_code(user)

        if request.wallet_amount:
            cap = calculate_max_wallet_usage(
                request.total, get_wallet(user).available, self.settings.get().max_wallet_usage_percent
            )
            if request.wallet_amount > cap:
                raise InsufficientBalanceError(
                    f"At most ₹{cap} of wallet balance can be used on this order"
                )

        order_id = uuid4().hex
        if request.wallet_amount:
            self.wallet.debit(
                user_id,
                request.wallet_amount,
                description=f"Wallet used on order #{order_id[-6:].upper()}",
                reference_id=order_id,
            )

        order_data = {
            "user_id": user_id,
            "user_email": user.get("email"),
            "user_name": user.get("display_name"),
            "items": [item.model_dump() for item in request.items],
            "total": request.total,
            "referral_code": referral_code,
            "status": OrderStatus.PENDING,
            "wallet_amount_used": request.wallet_amount,
            "wallet_refunded": False,
            "invoice_id": None,
            "buyer": request.buyer.model_dump() if request.buyer else None,
            "created_at": utcnow(),
            "updated_at": None,
        }
        self.storage.create(ORDERS, order_id, order_data)

        if request.buyer:
            invoice = self.invoices.create_draft(order_id, request.items, request.buyer)
            self.storage.update(ORDERS, order_id, {"invoice_id": invoice.id})

        logger.info("Order %s created for %s (referral=%s)", order_id, user_id, referral_code)
        return self.get_order(order_id)

    def _referrer_code(self, user: dict) -> Optional[str]:
        referrer_id = user.get("referred_by")
        if not referrer_id:
            return None
        referrer = self.storage.get(USERS, referrer_id)
        return referrer.data.get("referral_code") if referrer else None

    def update_status(self, order_id: str, status: OrderStatus) -> OrderStatusResponse:
        snapshot = self.storage.get(ORDERS, order_id)
        if snapshot is None:
            raise OrderNotFoundError(f"Order {order_id} not found")
        previous = OrderStatus(snapshot.data["status"])

        self.storage.update(ORDERS, order_id, {"status": status, "updated_at": utcnow()})
        logger.info("Order %s status %s -> %s", order_id, previous.value, status.value)

        invoice_number = None
        if status in INVOICED_STATUSES and snapshot.data.get("invoice_id"):
            try:
                invoice_number = self.invoices.finalize(invoice_id_for_order(order_id))
            except LedgerServiceError:
                # the status change stands even if the invoice cannot be numbered
                logger.exception("Could not finalize invoice for order %s", order_id)

        commission = None
        if status == OrderStatus.COMPLETED and previous != OrderStatus.COMPLETED:
            commission = self.commissions.on_order_completed(order_id)

        wallet_refund = None
        if status == OrderStatus.CANCELLED:
            wallet_refund = self._refund_wallet(order_id)

        return OrderStatusResponse(
            order=self.get_order(order_id),
            commission=commission,
            invoice_number=invoice_number,
            wallet_refund=wallet_refund,
        )

    def _refund_wallet(self, order_id: str) -> Optional[TransactionLogEntry]:
        """Return wallet credit spent on a cancelled order, at most once."""
        snapshot = self.storage.get(ORDERS, order_id)
        amount = snapshot.data.get("wallet_amount_used") or 0
        if amount <= 0 or snapshot.data.get("wallet_refunded"):
            return None

        # mark the order before crediting so a repeated cancel finds the marker
        self.storage.compare_and_set(ORDERS, order_id, snapshot.version, {**snapshot.data, "wallet_refunded": True})
        try:
            entry = self.wallet.credit(
                snapshot.data["user_id"],
                amount,
                description=f"Refund for cancelled order #{order_id[-6:].upper()}",
                type=TransactionType.ORDER_REFUND,
                reference_id=order_id,
            )
        except ConcurrentModificationError:
            self.storage.update(ORDERS, order_id, {"wallet_refunded": False})
            raise

        logger.info("Refunded %s wallet credit to %s for order %s", amount, snapshot.data["user_id"], order_id)
        return entry

    def get_order(self, order_id: str) -> Order:
        snapshot = self.storage.get(ORDERS, order_id)
        if snapshot is None:
            raise OrderNotFoundError(f"Order {order_id} not found")
        return Order(id=snapshot.id, **snapshot.data)

    def list_orders(self, user_id: Optional[str] = None, status: Optional[OrderStatus] = None) -> list[Order]:
        filters = {}
        if user_id:
            filters["user_id"] = user_id
        if status:
            filters["status"] = status
        orders = [Order(id=s.id, **s.data) for s in self.storage.query(ORDERS, **filters)]
        orders.sort(key=lambda o: o.created_at, reverse=True)
        return orders
