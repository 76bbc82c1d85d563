import logging

from .exceptions import UserNotFoundError
from .models import PaymentDetails, Role, SignInRequest, UserRecord, utcnow
from .referral import ReferralService
from .storage import InMemoryStorage

logger = logging.getLogger(__name__)

USERS = "users"


class UserDirectory:
    """User records keyed by the identity the auth provider verified."""

    def __init__(self, storage: InMemoryStorage, referrals: ReferralService):
        self.storage = storage
        self.referrals = referrals

    def sign_in(self, request: SignInRequest) -> UserRecord:
        snapshot = self.storage.get(USERS, request.id)
        if snapshot is None:
            self.storage.create(USERS, request.id, {
                "id": request.id,
                "email": request.email,
                "display_name": request.display_name,
                "role": Role.CUSTOMER,
                "wallet_balance": 0,
                "wallet_on_hold": 0,
                "created_at": utcnow(),
            })
            logger.info("Created user %s", request.id)
        else:
            profile = {k: v for k, v in (("email", request.email), ("display_name", request.display_name)) if v}
            if profile:
                self.storage.update(USERS, request.id, profile)

        self.referrals.ensure_referral_code(request.id)
        if request.device_id:
            self.referrals.apply_pending(request.id, request.device_id)
        return self.get_user(request.id)

    def get_user(self, user_id: str) -> UserRecord:
        snapshot = self.storage.get(USERS, user_id)
        if snapshot is None:
            raise UserNotFoundError(f"User {user_id} not found")
        return UserRecord(**snapshot.data)

    def save_payment_details(self, user_id: str, details: PaymentDetails) -> UserRecord:
        self.get_user(user_id)
        self.storage.update(USERS, user_id, {"payment_details": details.model_dump()})
        return self.get_user(user_id)

    def set_role(self, user_id: str, role: Role) -> UserRecord:
        self.get_user(user_id)
        self.storage.update(USERS, user_id, {"role": role})
        logger.info("User %s role set to %s", user_id, role.value)
        return self.get_user(user_id)
