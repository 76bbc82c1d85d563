from typing import Optional

from .models import TransactionLogEntry, TransactionType, utcnow
from .storage import InMemoryStorage

TRANSACTION_LOGS = "transactionLogs"


class TransactionLog:
    """Append-only audit trail of balance-affecting events.

    Entries are only ever added; there is no update or delete path.
    """

    def __init__(self, storage: InMemoryStorage):
        self.storage = storage

    def append(
        self,
        user_id: str,
        type: TransactionType,
        amount: int,
        balance_after: int,
        description: str,
        reference_id: Optional[str] = None,
    ) -> TransactionLogEntry:
        entry_data = {
            "user_id": user_id,
            "type": type,
            "amount": amount,
            "balance_after": balance_after,
            "description": description,
            "reference_id": reference_id,
            "created_at": utcnow(),
        }
        entry_id = self.storage.add(TRANSACTION_LOGS, entry_data)
        return TransactionLogEntry(id=entry_id, **entry_data)

    def history(self, user_id: str, limit: int = 20, offset: int = 0) -> list[TransactionLogEntry]:
        entries = self.entries_for(user_id)
        entries.sort(key=lambda e: e.created_at, reverse=True)
        return entries[offset:offset + limit]

    def entries_for(self, user_id: str, type: Optional[TransactionType] = None) -> list[TransactionLogEntry]:
        filters = {"user_id": user_id}
        if type is not None:
            filters["type"] = type
        return [
            TransactionLogEntry(id=snap.id, **snap.data)
            for snap in self.storage.query(TRANSACTION_LOGS, **filters)
        ]

    def net_amount(self, user_id: str) -> int:
        return sum(entry.amount for entry in self.entries_for(user_id))
