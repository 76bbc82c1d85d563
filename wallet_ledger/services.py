from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from .commission import CommissionLedger
from .config import Settings, get_settings
from .invoices import InvoiceService
from .models import utcnow
from .orders import OrderService
from .referral import PendingReferralStore, ReferralService, generate_referral_code
from .settings_store import SettingsStore
from .storage import InMemoryStorage
from .transaction_log import TransactionLog
from .users import UserDirectory
from .wallet import WalletLedger
from .withdrawals import WithdrawalWorkflow


@dataclass
class LedgerServices:
    storage: InMemoryStorage
    settings: SettingsStore
    transaction_log: TransactionLog
    wallet: WalletLedger
    referrals: ReferralService
    users: UserDirectory
    commissions: CommissionLedger
    withdrawals: WithdrawalWorkflow
    invoices: InvoiceService
    orders: OrderService


def build_services(
    storage: Optional[InMemoryStorage] = None,
    config: Optional[Settings] = None,
    clock: Callable[[], datetime] = utcnow,
    code_generator: Callable[[], str] = generate_referral_code,
) -> LedgerServices:
    storage = storage or InMemoryStorage()
    config = config or get_settings()

    settings = SettingsStore(storage, config)
    transaction_log = TransactionLog(storage)
    wallet = WalletLedger(storage, transaction_log, config)
    referrals = ReferralService(storage, PendingReferralStore(), config, code_generator)
    users = UserDirectory(storage, referrals)
    commissions = CommissionLedger(storage, settings, referrals, wallet)
    withdrawals = WithdrawalWorkflow(storage, settings, wallet, clock)
    invoices = InvoiceService(storage, config, clock)
    orders = OrderService(storage, settings, wallet, commissions, invoices)

    return LedgerServices(
        storage=storage,
        settings=settings,
        transaction_log=transaction_log,
        wallet=wallet,
        referrals=referrals,
        users=users,
        commissions=commissions,
        withdrawals=withdrawals,
        invoices=invoices,
        orders=orders,
    )
