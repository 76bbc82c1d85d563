import logging
from typing import Optional

from .config import Settings, get_settings
from .models import LedgerSettings, SettingsUpdate
from .storage import ChangeEvent, InMemoryStorage

logger = logging.getLogger(__name__)

SETTINGS_COLLECTION = "settings"
SETTINGS_DOC_ID = "app"


class SettingsStore:
    """Reads and writes the settings/app document.

    The parsed value is cached and dropped whenever the document changes, so
    every ledger operation sees the settings in force when it runs.
    """

    def __init__(self, storage: InMemoryStorage, config: Optional[Settings] = None):
        self.storage = storage
        self.config = config or get_settings()
        self._cached: Optional[LedgerSettings] = None
        self._unsubscribe = storage.subscribe(SETTINGS_COLLECTION, self._invalidate, doc_id=SETTINGS_DOC_ID)

    def defaults(self) -> LedgerSettings:
        return LedgerSettings(
            commission_enabled=self.config.DEFAULT_COMMISSION_ENABLED,
            commission_rate=self.config.DEFAULT_COMMISSION_RATE,
            max_commission_purchases=self.config.DEFAULT_MAX_COMMISSION_PURCHASES,
            min_withdrawal=self.config.DEFAULT_MIN_WITHDRAWAL,
            withdrawal_cooldown_days=self.config.DEFAULT_WITHDRAWAL_COOLDOWN_DAYS,
            max_wallet_usage_percent=self.config.DEFAULT_MAX_WALLET_USAGE_PERCENT,
        )

    def get(self) -> LedgerSettings:
        if self._cached is None:
            snapshot = self.storage.get(SETTINGS_COLLECTION, SETTINGS_DOC_ID)
            stored = snapshot.data if snapshot else {}
            self._cached = LedgerSettings.model_validate({**self.defaults().model_dump(), **stored})
        return self._cached

    def update(self, changes: SettingsUpdate) -> LedgerSettings:
        fields = changes.model_dump(exclude_none=True)
        merged = LedgerSettings.model_validate({**self.get().model_dump(), **fields})
        self.storage.set(SETTINGS_COLLECTION, SETTINGS_DOC_ID, merged.model_dump())
        logger.info("Settings updated: %s", fields)
        return self.get()

    def _invalidate(self, event: ChangeEvent) -> None:
        self._cached = None

    def close(self) -> None:
        self._unsubscribe()
