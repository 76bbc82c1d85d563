from enum import Enum

from .exceptions import PermissionDeniedError
from .models import Role, UserRecord


class Capability(str, Enum):
    MANAGE_ORDERS = "manage_orders"
    PROCESS_WITHDRAWALS = "process_withdrawals"
    MANAGE_COMMISSIONS = "manage_commissions"
    MANAGE_SETTINGS = "manage_settings"


ROLE_CAPABILITIES: dict[Role, frozenset[Capability]] = {
    Role.CUSTOMER: frozenset(),
    Role.ADMIN: frozenset(Capability),
}


def has_capability(user: UserRecord, capability: Capability) -> bool:
    return capability in ROLE_CAPABILITIES.get(user.role, frozenset())


def require_capability(user: UserRecord, capability: Capability) -> None:
    if not has_capability(user, capability):
        raise PermissionDeniedError(f"User {user.id} lacks capability {capability.value}")
