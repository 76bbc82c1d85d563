"""
Withdrawal workflow: pending -> paid | rejected.

Filing a request puts the amount on hold; approving settles it out of the
balance, rejecting releases the hold. Validation failures come back as a
WithdrawalOutcome rather than an exception.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional
from uuid import uuid4

from .exceptions import (
    ConcurrentModificationError,
    DocumentExistsError,
    InsufficientBalanceError,
    UserNotFoundError,
    WithdrawalNotFoundError,
)
from .models import (
    LedgerSettings,
    PaymentDetails,
    UserRecord,
    WithdrawalDecision,
    WithdrawalErrorCode,
    WithdrawalOutcome,
    WithdrawalRecord,
    WithdrawalStatus,
    utcnow,
)
from .settings_store import SettingsStore
from .storage import InMemoryStorage
from .wallet import WalletLedger, get_wallet

logger = logging.getLogger(__name__)

USERS = "users"
WITHDRAWALS = "withdrawals"
# one claim document per user with an open request; its id is the user id
PENDING_CLAIMS = "pendingWithdrawals"


def _failure(code: WithdrawalErrorCode, message: str, **extra) -> WithdrawalOutcome:
    return WithdrawalOutcome(success=False, error=code, message=message, **extra)


class WithdrawalWorkflow:
    def __init__(
        self,
        storage: InMemoryStorage,
        settings: SettingsStore,
        wallet: WalletLedger,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.storage = storage
        self.settings = settings
        self.wallet = wallet
        self.clock = clock

    def check_eligibility(self, user_id: str, amount: Optional[int] = None) -> WithdrawalOutcome:
        snapshot = self.storage.get(USERS, user_id)
        if snapshot is None:
            raise UserNotFoundError(f"User {user_id} not found")
        user = UserRecord(**snapshot.data)
        return self._validate(user, self.settings.get(), amount)

    def _validate(self, user: UserRecord, settings: LedgerSettings, amount: Optional[int]) -> WithdrawalOutcome:
        wallet = get_wallet(user)
        details = user.payment_details or PaymentDetails()

        if not details.is_complete():
            return _failure(
                WithdrawalErrorCode.MISSING_PAYMENT_DETAILS,
                "Please save your payment details (Name, Phone, UPI ID) first.",
                wallet=wallet,
            )

        if wallet.available < settings.min_withdrawal:
            return _failure(
                WithdrawalErrorCode.BELOW_MINIMUM,
                f"Minimum withdrawal amount is ₹{settings.min_withdrawal}. You have ₹{wallet.available} available.",
                wallet=wallet,
            )

        if self.pending_withdrawal(user.id) is not None:
            return _failure(
                WithdrawalErrorCode.PENDING_REQUEST_EXISTS,
                "You already have a pending withdrawal request. Please wait for admin to process it.",
                wallet=wallet,
            )

        if user.last_withdrawal_request is not None:
            next_available = user.last_withdrawal_request + timedelta(days=settings.withdrawal_cooldown_days)
            if self.clock() < next_available:
                return _failure(
                    WithdrawalErrorCode.COOLDOWN_ACTIVE,
                    f"You can only request withdrawal once per {settings.withdrawal_cooldown_days} days.",
                    wallet=wallet,
                    next_available_date=next_available,
                )

        if amount is not None:
            if amount <= 0:
                return _failure(
                    WithdrawalErrorCode.INVALID_AMOUNT,
                    "Withdrawal amount must be greater than zero.",
                    wallet=wallet,
                )
            if amount < settings.min_withdrawal:
                return _failure(
                    WithdrawalErrorCode.INVALID_AMOUNT,
                    f"Minimum withdrawal amount is ₹{settings.min_withdrawal}.",
                    wallet=wallet,
                )
            if amount > wallet.available:
                return _failure(
                    WithdrawalErrorCode.INVALID_AMOUNT,
                    f"Requested amount exceeds available balance (₹{wallet.available}).",
                    wallet=wallet,
                )

        return WithdrawalOutcome(success=True, message="Eligible for withdrawal", wallet=wallet)

    def request_withdrawal(self, user_id: str, amount: int) -> WithdrawalOutcome:
        eligibility = self.check_eligibility(user_id, amount)
        if not eligibility.success:
            logger.info("Withdrawal of %s by %s refused: %s", amount, user_id, eligibility.error.value)
            return eligibility

        withdrawal_id = uuid4().hex
        try:
            self.storage.create(PENDING_CLAIMS, user_id, {"withdrawal_id": withdrawal_id})
        except DocumentExistsError:
            return _failure(
                WithdrawalErrorCode.PENDING_REQUEST_EXISTS,
                "You already have a pending withdrawal request. Please wait for admin to process it.",
            )

        now = self.clock()
        try:
            wallet = self.wallet.reserve(user_id, amount, extra_fields={"last_withdrawal_request": now})
        except InsufficientBalanceError:
            self.storage.delete(PENDING_CLAIMS, user_id)
            available = self.wallet.wallet_for(user_id).available
            return _failure(
                WithdrawalErrorCode.INVALID_AMOUNT,
                f"Requested amount exceeds available balance (₹{available}).",
            )
        except Exception:
            self.storage.delete(PENDING_CLAIMS, user_id)
            raise

        user = UserRecord(**self.storage.get(USERS, user_id).data)
        details = user.payment_details
        withdrawal_data = {
            "user_id": user_id,
            "user_email": user.email,
            "amount": amount,
            "full_name": details.full_name,
            "phone": details.phone,
            "upi_id": details.upi_id,
            "status": WithdrawalStatus.PENDING,
            "requested_at": now,
            "processed_at": None,
            "rejection_reason": None,
        }
        self.storage.create(WITHDRAWALS, withdrawal_id, withdrawal_data)
        logger.info("Withdrawal %s of %s requested by %s", withdrawal_id, amount, user_id)

        return WithdrawalOutcome(
            success=True,
            message="Withdrawal request submitted",
            withdrawal=WithdrawalRecord(id=withdrawal_id, **withdrawal_data),
            wallet=wallet,
        )

    def process_withdrawal(
        self,
        withdrawal_id: str,
        decision: WithdrawalDecision,
        reason: Optional[str] = None,
    ) -> WithdrawalOutcome:
        snapshot = self.storage.get(WITHDRAWALS, withdrawal_id)
        if snapshot is None:
            raise WithdrawalNotFoundError(f"Withdrawal {withdrawal_id} not found")

        record = WithdrawalRecord(id=snapshot.id, **snapshot.data)
        if record.is_terminal():
            return self._already_processed(record)

        approved = decision == WithdrawalDecision.APPROVE
        data = {
            **snapshot.data,
            "status": WithdrawalStatus.PAID if approved else WithdrawalStatus.REJECTED,
            "processed_at": self.clock(),
            "rejection_reason": None if approved else reason,
        }
        # claim the transition first so a second admin cannot process the same request
        try:
            self.storage.compare_and_set(WITHDRAWALS, withdrawal_id, snapshot.version, data)
        except ConcurrentModificationError:
            current = self.get_withdrawal(withdrawal_id)
            if current.is_terminal():
                return self._already_processed(current)
            raise

        try:
            if approved:
                self.wallet.settle(
                    record.user_id,
                    record.amount,
                    description=f"Withdrawal to {record.upi_id}",
                    reference_id=withdrawal_id,
                )
            else:
                self.wallet.release(record.user_id, record.amount)
        except ConcurrentModificationError:
            self.storage.set(WITHDRAWALS, withdrawal_id, snapshot.data)
            raise

        self.storage.delete(PENDING_CLAIMS, record.user_id)
        logger.info("Withdrawal %s %s", withdrawal_id, "paid" if approved else "rejected")

        return WithdrawalOutcome(
            success=True,
            message="Withdrawal marked as paid" if approved else "Withdrawal rejected",
            withdrawal=WithdrawalRecord(id=withdrawal_id, **data),
            wallet=self.wallet.wallet_for(record.user_id),
        )

    def _already_processed(self, record: WithdrawalRecord) -> WithdrawalOutcome:
        return _failure(
            WithdrawalErrorCode.ALREADY_PROCESSED,
            f"Withdrawal {record.id} is already {record.status.value}",
            withdrawal=record,
        )

    def get_withdrawal(self, withdrawal_id: str) -> WithdrawalRecord:
        snapshot = self.storage.get(WITHDRAWALS, withdrawal_id)
        if snapshot is None:
            raise WithdrawalNotFoundError(f"Withdrawal {withdrawal_id} not found")
        return WithdrawalRecord(id=snapshot.id, **snapshot.data)

    def pending_withdrawal(self, user_id: str) -> Optional[WithdrawalRecord]:
        pending = self.storage.query(WITHDRAWALS, user_id=user_id, status=WithdrawalStatus.PENDING)
        return WithdrawalRecord(id=pending[0].id, **pending[0].data) if pending else None

    def withdrawal_history(self, user_id: str) -> list[WithdrawalRecord]:
        records = [WithdrawalRecord(id=s.id, **s.data) for s in self.storage.query(WITHDRAWALS, user_id=user_id)]
        records.sort(key=lambda w: w.requested_at, reverse=True)
        return records

    def list_withdrawals(self, status: Optional[WithdrawalStatus] = None) -> list[WithdrawalRecord]:
        filters = {"status": status} if status else {}
        records = [WithdrawalRecord(id=s.id, **s.data) for s in self.storage.query(WITHDRAWALS, **filters)]
        records.sort(key=lambda w: w.requested_at, reverse=True)
        return records
