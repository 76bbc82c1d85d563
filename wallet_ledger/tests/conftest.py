from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from wallet_ledger.config import Settings
from wallet_ledger.models import PaymentDetails, Role, SignInRequest, TransactionType
from wallet_ledger.services import LedgerServices, build_services
from wallet_ledger.storage import InMemoryStorage


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def make_config(**overrides) -> Settings:
    values = {"PUBLIC_BASE_URL": "https://shop.example", "LEDGER_MAX_RETRIES": 3}
    values.update(overrides)
    return Settings(**values)


def make_services(storage: Optional[InMemoryStorage] = None, clock: Optional[FakeClock] = None, **kwargs) -> LedgerServices:
    clock = clock or FakeClock(datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc))
    return build_services(storage=storage, config=make_config(), clock=clock, **kwargs)


def sign_up(
    services: LedgerServices,
    user_id: str,
    balance: int = 0,
    payment_details: bool = False,
    role: Role = Role.CUSTOMER,
):
    services.users.sign_in(SignInRequest(id=user_id, email=f"{user_id}@example.com", display_name=user_id.title()))
    if balance:
        services.wallet.credit(user_id, balance, "Opening credit", type=TransactionType.COMMISSION_CREDIT)
    if payment_details:
        services.users.save_payment_details(
            user_id, PaymentDetails(full_name=user_id.title(), phone="9876543210", upi_id=f"{user_id}@upi")
        )
    if role != Role.CUSTOMER:
        services.users.set_role(user_id, role)
    return services.users.get_user(user_id)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def services(clock) -> LedgerServices:
    return make_services(clock=clock)
