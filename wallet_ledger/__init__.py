"""
Wallet & Referral Commission Ledger

This package provides:
- Per-user wallets with an on-hold reserve for pending withdrawals
- Referral codes and first-referrer-wins attribution
- Idempotent commission crediting when referred orders complete
- Withdrawal workflow: pending → paid / rejected
- Append-only transaction log
- GST calculation and invoice numbering
"""

from .models import (
    CommissionStatus,
    LedgerSettings,
    OrderStatus,
    TransactionType,
    WalletView,
    WithdrawalStatus,
)
from .services import LedgerServices, build_services

__all__ = [
    "CommissionStatus",
    "LedgerSettings",
    "OrderStatus",
    "TransactionType",
    "WalletView",
    "WithdrawalStatus",
    "LedgerServices",
    "build_services",
]
