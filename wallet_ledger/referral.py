import logging
import secrets
import string
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from .config import Settings, get_settings
from .exceptions import (
    CodeGenerationExhaustedError,
    ConcurrentModificationError,
    DocumentExistsError,
    UserNotFoundError,
)
from .models import CommissionStatus, ReferralStats, utcnow
from .storage import InMemoryStorage

logger = logging.getLogger(__name__)

USERS = "users"
REFERRAL_CODES = "referralCodes"
COMMISSIONS = "referrals"

CODE_ALPHABET = string.ascii_uppercase + string.digits
CODE_LENGTH = 6


def generate_referral_code() -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))


@dataclass
class PendingReferral:
    code: str
    captured_at: datetime


class PendingReferralStore:
    """Referral codes seen by signed-out visitors, keyed by device.

    Best effort only: nothing here is persisted, so a code captured on one
    device is never applied to a sign-in on another.
    """

    def __init__(self):
        self._pending: dict[str, PendingReferral] = {}

    def capture(self, device_id: str, code: str) -> None:
        self._pending[device_id] = PendingReferral(code=code, captured_at=utcnow())

    def peek(self, device_id: str) -> Optional[PendingReferral]:
        return self._pending.get(device_id)

    def clear(self, device_id: str) -> None:
        self._pending.pop(device_id, None)


class ReferralService:
    def __init__(
        self,
        storage: InMemoryStorage,
        pending: Optional[PendingReferralStore] = None,
        config: Optional[Settings] = None,
        code_generator: Callable[[], str] = generate_referral_code,
    ):
        self.storage = storage
        self.pending = pending or PendingReferralStore()
        self.config = config or get_settings()
        self.code_generator = code_generator

    def ensure_referral_code(self, user_id: str) -> str:
        snapshot = self.storage.get(USERS, user_id)
        if snapshot and snapshot.data.get("referral_code"):
            return snapshot.data["referral_code"]

        attempts = self.config.REFERRAL_CODE_MAX_ATTEMPTS
        for _ in range(attempts):
            code = self.code_generator()
            try:
                # the index document id is the code itself, so a taken code cannot be claimed twice
                self.storage.create(REFERRAL_CODES, code, {"user_id": user_id, "created_at": utcnow()})
            except DocumentExistsError:
                logger.debug("Referral code collision on %s", code)
                continue
            self.storage.update(USERS, user_id, {"referral_code": code})
            logger.info("Assigned referral code %s to %s", code, user_id)
            return code

        raise CodeGenerationExhaustedError(
            f"Could not find a free referral code for {user_id} in {attempts} attempts"
        )

    def resolve_user_by_code(self, code: Optional[str]) -> Optional[str]:
        if not code:
            return None
        snapshot = self.storage.get(REFERRAL_CODES, code)
        return snapshot.data["user_id"] if snapshot else None

    def attach_referral(self, user_id: str, code: str) -> bool:
        """Record who referred user_id. The first referrer wins; later calls are no-ops."""
        referrer_id = self.resolve_user_by_code(code)
        if referrer_id is None:
            logger.info("Ignoring unknown referral code %s for %s", code, user_id)
            return False
        if referrer_id == user_id:
            logger.info("Ignoring self-referral by %s", user_id)
            return False

        for _ in range(max(1, self.config.LEDGER_MAX_RETRIES)):
            snapshot = self.storage.get(USERS, user_id)
            if snapshot is None:
                raise UserNotFoundError(f"User {user_id} not found")
            if snapshot.data.get("referred_by"):
                return False
            data = {**snapshot.data, "referred_by": referrer_id, "referred_at": utcnow()}
            try:
                self.storage.compare_and_set(USERS, user_id, snapshot.version, data)
            except ConcurrentModificationError:
                continue
            logger.info("User %s referred by %s", user_id, referrer_id)
            return True
        raise ConcurrentModificationError(f"Could not attach referral for {user_id}")

    def referral_link(self, code: str) -> str:
        return f"{self.config.PUBLIC_BASE_URL.rstrip('/')}/?ref={code}"

    def track_visit(self, code: str, device_id: str, user_id: Optional[str] = None) -> bool:
        """Handle a visit carrying ?ref=<code>.

        Signed-in visitors get the referral applied immediately; for anyone
        else the code is parked against the device until the next sign-in.
        """
        if user_id:
            return self.attach_referral(user_id, code)
        self.pending.capture(device_id, code)
        return False

    def apply_pending(self, user_id: str, device_id: str) -> bool:
        pending = self.pending.peek(device_id)
        if pending is None:
            return False
        self.pending.clear(device_id)
        return self.attach_referral(user_id, pending.code)

    def referral_stats(self, user_id: str) -> ReferralStats:
        referred = self.storage.query(USERS, referred_by=user_id)
        commissions = [snap.data for snap in self.storage.query(COMMISSIONS, referrer_id=user_id)]

        purchasers = {c["order_user_id"] for c in commissions}
        return ReferralStats(
            total_referred=len(referred),
            total_purchased=len(purchasers),
            total_earned=sum(c["commission"] for c in commissions if c["status"] == CommissionStatus.PAID),
            pending_commissions=sum(c["commission"] for c in commissions if c["status"] == CommissionStatus.PENDING),
        )
