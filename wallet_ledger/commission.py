"""
Commission ledger.

Turns a completed, referred order into a commission record and a wallet
credit for the referrer. The commission document id is the order id, which
makes order completion idempotent: a retried or duplicated completion finds
the existing record instead of crediting twice.
"""

import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from .exceptions import (
    CommissionNotFoundError,
    ConcurrentModificationError,
    DocumentExistsError,
    InvalidStateTransitionError,
)
from .models import (
    Commission,
    CommissionOutcome,
    CommissionStatus,
    OrderStatus,
    TransactionType,
    utcnow,
)
from .referral import ReferralService
from .settings_store import SettingsStore
from .storage import InMemoryStorage
from .wallet import WalletLedger

logger = logging.getLogger(__name__)

ORDERS = "orders"
USERS = "users"
COMMISSIONS = "referrals"


def calculate_commission(order_total: Decimal, commission_rate: int) -> int:
    amount = Decimal(order_total) * commission_rate / 100
    return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class CommissionLedger:
    def __init__(
        self,
        storage: InMemoryStorage,
        settings: SettingsStore,
        referrals: ReferralService,
        wallet: WalletLedger,
    ):
        self.storage = storage
        self.settings = settings
        self.referrals = referrals
        self.wallet = wallet

    def on_order_completed(self, order_id: str) -> CommissionOutcome:
        existing = self.get_commission_for_order(order_id)
        if existing:
            return CommissionOutcome(
                created=False,
                commission=existing,
                message="Commission already recorded for this order (idempotent return)",
            )

        order_snap = self.storage.get(ORDERS, order_id)
        if order_snap is None:
            logger.warning("Order %s not found while processing commission", order_id)
            return CommissionOutcome(created=False, message="Order not found")
        order = order_snap.data

        if order.get("status") != OrderStatus.COMPLETED:
            return CommissionOutcome(created=False, message="Order is not completed")
        if not order.get("referral_code"):
            return CommissionOutcome(created=False, message="Order has no referral code")

        # settings in force at completion time, not at order creation
        settings = self.settings.get()
        if not settings.commission_enabled:
            logger.info("Commissions disabled; skipping order %s", order_id)
            return CommissionOutcome(created=False, message="Commissions are disabled")

        referrer_id = self.referrals.resolve_user_by_code(order["referral_code"])
        if referrer_id is None:
            logger.info("Referral code %s on order %s matches no user", order["referral_code"], order_id)
            return CommissionOutcome(created=False, message="Referral code does not match any user")
        if referrer_id == order["user_id"]:
            logger.info("Self-referral on order %s; no commission", order_id)
            return CommissionOutcome(created=False, message="Self-referral does not earn commission")

        if settings.max_commission_purchases > 0:
            prior = self.storage.query(COMMISSIONS, referrer_id=referrer_id, order_user_id=order["user_id"])
            if len(prior) >= settings.max_commission_purchases:
                logger.info(
                    "Commission cap (%d) reached for referrer %s and buyer %s",
                    settings.max_commission_purchases, referrer_id, order["user_id"],
                )
                return CommissionOutcome(created=False, message="Commission purchase limit reached")

        amount = calculate_commission(order["total"], settings.commission_rate)
        if amount <= 0:
            return CommissionOutcome(created=False, message="Commission amount is zero")

        referrer_snap = self.storage.get(USERS, referrer_id)
        referrer = referrer_snap.data if referrer_snap else {}
        commission_data = {
            "referrer_id": referrer_id,
            "referrer_name": referrer.get("display_name") or referrer.get("email"),
            "order_id": order_id,
            "order_user_id": order["user_id"],
            "order_user_name": order.get("user_name"),
            "order_total": order["total"],
            "commission": amount,
            "commission_rate": settings.commission_rate,
            "status": CommissionStatus.PENDING,
            "created_at": utcnow(),
            "paid_at": None,
        }

        try:
            self.storage.create(COMMISSIONS, order_id, commission_data)
        except DocumentExistsError:
            return CommissionOutcome(
                created=False,
                commission=self.get_commission_for_order(order_id),
                message="Commission already recorded for this order (idempotent return)",
            )

        try:
            entry = self.wallet.credit(
                referrer_id,
                amount,
                description=f"Commission from order #{order_id[-6:].upper()}",
                type=TransactionType.COMMISSION_CREDIT,
                reference_id=order_id,
            )
        except ConcurrentModificationError:
            # drop the claim so a retry can credit the wallet
            self.storage.delete(COMMISSIONS, order_id)
            raise

        logger.info("Commission %s credited to %s for order %s", amount, referrer_id, order_id)
        return CommissionOutcome(
            created=True,
            commission=Commission(id=order_id, **commission_data),
            ledger_entry=entry,
            message="Commission created successfully",
        )

    def get_commission_for_order(self, order_id: str) -> Optional[Commission]:
        snapshot = self.storage.get(COMMISSIONS, order_id)
        return Commission(id=snapshot.id, **snapshot.data) if snapshot else None

    def get_commission(self, commission_id: str) -> Commission:
        commission = self.get_commission_for_order(commission_id)
        if commission is None:
            raise CommissionNotFoundError(f"Commission {commission_id} not found")
        return commission

    def mark_paid(self, commission_id: str) -> Commission:
        snapshot = self.storage.get(COMMISSIONS, commission_id)
        if snapshot is None:
            raise CommissionNotFoundError(f"Commission {commission_id} not found")

        commission = Commission(id=snapshot.id, **snapshot.data)
        if not commission.can_mark_paid():
            raise InvalidStateTransitionError(f"Cannot mark commission in {commission.status.value} state as paid")

        data = {**snapshot.data, "status": CommissionStatus.PAID, "paid_at": utcnow()}
        try:
            self.storage.compare_and_set(COMMISSIONS, commission_id, snapshot.version, data)
        except ConcurrentModificationError:
            raise InvalidStateTransitionError(f"Commission {commission_id} was modified concurrently")
        return Commission(id=commission_id, **data)

    def list_commissions(
        self,
        referrer_id: Optional[str] = None,
        status: Optional[CommissionStatus] = None,
    ) -> list[Commission]:
        filters = {}
        if referrer_id:
            filters["referrer_id"] = referrer_id
        if status:
            filters["status"] = status
        commissions = [Commission(id=snap.id, **snap.data) for snap in self.storage.query(COMMISSIONS, **filters)]
        commissions.sort(key=lambda c: c.created_at, reverse=True)
        return commissions
