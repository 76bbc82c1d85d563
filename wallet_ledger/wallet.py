"""
Wallet ledger.

Balances live on the user document (wallet_balance, wallet_on_hold). Every
mutation is a read-modify-write committed with compare-and-set against the
document version and retried on conflict, so concurrent credits, holds and
settlements never lose an update.
"""

import logging
from decimal import Decimal, ROUND_FLOOR
from typing import Callable, Optional, Union

from .config import Settings, get_settings
from .exceptions import ConcurrentModificationError, InsufficientBalanceError, UserNotFoundError
from .models import TransactionLogEntry, TransactionType, UserRecord, WalletView
from .storage import InMemoryStorage
from .transaction_log import TransactionLog

logger = logging.getLogger(__name__)

USERS = "users"


def get_wallet(user: Union[UserRecord, dict]) -> WalletView:
    if isinstance(user, UserRecord):
        balance, on_hold = user.wallet_balance, user.wallet_on_hold
    else:
        balance, on_hold = user.get("wallet_balance") or 0, user.get("wallet_on_hold") or 0
    return WalletView(balance=balance, on_hold=on_hold, available=max(0, balance - on_hold))


def calculate_max_wallet_usage(cart_total: Decimal, available: int, max_usage_percent: int) -> int:
    """Largest wallet amount usable against a cart, in whole currency units."""
    by_percent = (Decimal(cart_total) * max_usage_percent / 100).to_integral_value(rounding=ROUND_FLOOR)
    return max(0, min(int(by_percent), available))


class WalletLedger:
    def __init__(
        self,
        storage: InMemoryStorage,
        transaction_log: TransactionLog,
        config: Optional[Settings] = None,
    ):
        self.storage = storage
        self.transaction_log = transaction_log
        self.config = config or get_settings()

    def wallet_for(self, user_id: str) -> WalletView:
        snapshot = self.storage.get(USERS, user_id)
        if snapshot is None:
            raise UserNotFoundError(f"User {user_id} not found")
        return get_wallet(snapshot.data)

    def credit(
        self,
        user_id: str,
        amount: int,
        description: str,
        type: TransactionType = TransactionType.COMMISSION_CREDIT,
        reference_id: Optional[str] = None,
    ) -> TransactionLogEntry:
        _require_positive(amount)

        def mutate(data: dict) -> dict:
            data["wallet_balance"] = (data.get("wallet_balance") or 0) + amount
            return data

        data = self._apply(user_id, mutate)
        logger.info("Credited %s to %s (%s)", amount, user_id, type.value)
        return self.transaction_log.append(
            user_id, type, amount, data["wallet_balance"], description, reference_id
        )

    def reserve(self, user_id: str, amount: int, extra_fields: Optional[dict] = None) -> WalletView:
        """Put amount on hold. Fails if it exceeds the available balance at commit time."""
        _require_positive(amount)

        def mutate(data: dict) -> dict:
            available = get_wallet(data).available
            if amount > available:
                raise InsufficientBalanceError(
                    f"Cannot hold {amount} for {user_id}: only {available} available"
                )
            data["wallet_on_hold"] = (data.get("wallet_on_hold") or 0) + amount
            data.update(extra_fields or {})
            return data

        return get_wallet(self._apply(user_id, mutate))

    def release(self, user_id: str, amount: int) -> WalletView:
        _require_positive(amount)

        def mutate(data: dict) -> dict:
            data["wallet_on_hold"] = max(0, (data.get("wallet_on_hold") or 0) - amount)
            return data

        return get_wallet(self._apply(user_id, mutate))

    def settle(
        self,
        user_id: str,
        amount: int,
        description: str,
        reference_id: Optional[str] = None,
    ) -> TransactionLogEntry:
        """Pay out a held amount: both balance and hold drop by amount."""
        _require_positive(amount)

        def mutate(data: dict) -> dict:
            data["wallet_balance"] = max(0, (data.get("wallet_balance") or 0) - amount)
            data["wallet_on_hold"] = max(0, (data.get("wallet_on_hold") or 0) - amount)
            return data

        data = self._apply(user_id, mutate)
        logger.info("Settled withdrawal of %s for %s", amount, user_id)
        return self.transaction_log.append(
            user_id, TransactionType.WITHDRAWAL_DEBIT, -amount, data["wallet_balance"], description, reference_id
        )

    def debit(
        self,
        user_id: str,
        amount: int,
        description: str,
        reference_id: Optional[str] = None,
    ) -> TransactionLogEntry:
        """Spend available balance directly, e.g. wallet credit used at checkout."""
        _require_positive(amount)

        def mutate(data: dict) -> dict:
            available = get_wallet(data).available
            if amount > available:
                raise InsufficientBalanceError(
                    f"Cannot debit {amount} from {user_id}: only {available} available"
                )
            data["wallet_balance"] = (data.get("wallet_balance") or 0) - amount
            return data

        data = self._apply(user_id, mutate)
        logger.info("Debited %s from %s at checkout", amount, user_id)
        return self.transaction_log.append(
            user_id, TransactionType.CHECKOUT_DEBIT, -amount, data["wallet_balance"], description, reference_id
        )

    def _apply(self, user_id: str, mutate: Callable[[dict], dict]) -> dict:
        attempts = max(1, self.config.LEDGER_MAX_RETRIES)
        for attempt in range(1, attempts + 1):
            snapshot = self.storage.get(USERS, user_id)
            if snapshot is None:
                raise UserNotFoundError(f"User {user_id} not found")
            data = mutate(snapshot.data)
            try:
                self.storage.compare_and_set(USERS, user_id, snapshot.version, data)
                return data
            except ConcurrentModificationError:
                logger.warning("Wallet %s changed during update (attempt %d/%d)", user_id, attempt, attempts)
        raise ConcurrentModificationError(f"Wallet {user_id} update failed after {attempts} attempts")


def _require_positive(amount: int) -> None:
    if amount <= 0:
        raise ValueError(f"Amount must be positive, got {amount}")
