from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware

from .config import get_settings
from .exceptions import (
    CommissionNotFoundError,
    InsufficientBalanceError,
    InvalidStateTransitionError,
    InvoiceNotFoundError,
    LedgerServiceError,
    OrderNotFoundError,
    PermissionDeniedError,
    UserNotFoundError,
    WithdrawalNotFoundError,
)
from .logging_config import configure_logging
from .models import (
    Commission,
    CommissionStatus,
    CreateOrderRequest,
    Invoice,
    LedgerSettings,
    Order,
    OrderStatusResponse,
    PaymentDetails,
    ProcessWithdrawalRequest,
    ReferralSummary,
    ReferralVisitRequest,
    SettingsUpdate,
    SignInRequest,
    TaxBreakdown,
    TaxQuoteRequest,
    TransactionHistoryResponse,
    UpdateOrderStatusRequest,
    UserRecord,
    WalletView,
    WithdrawalErrorCode,
    WithdrawalOutcome,
    WithdrawalRecord,
    WithdrawalRequestBody,
    WithdrawalStatus,
)
from .policy import Capability, require_capability
from .services import LedgerServices, build_services
from . import tax
from .wallet import get_wallet

config = get_settings()
configure_logging(config)

app = FastAPI(
    title=config.APP_NAME,
    description="Wallet, referral commission and withdrawal ledger for the storefront",
    version=config.APP_VERSION,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

ledger_services = build_services(config=config)


def get_services() -> LedgerServices:
    return ledger_services


def get_current_user(
    x_user_id: Optional[str] = Header(default=None),
    services: LedgerServices = Depends(get_services),
) -> UserRecord:
    """Identity is verified upstream by the auth provider and forwarded as X-User-Id."""
    if not x_user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-User-Id header")
    try:
        return services.users.get_user(x_user_id)
    except UserNotFoundError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unknown user; sign in first")


def require(capability: Capability):
    def dependency(user: UserRecord = Depends(get_current_user)) -> UserRecord:
        try:
            require_capability(user, capability)
        except PermissionDeniedError as e:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
        return user
    return dependency


def withdrawal_response(outcome: WithdrawalOutcome) -> WithdrawalOutcome:
    if outcome.success:
        return outcome
    if outcome.error == WithdrawalErrorCode.ALREADY_PROCESSED:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=outcome.model_dump(mode="json"))
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=outcome.model_dump(mode="json"))


@app.get("/health", tags=["System"])
def health_check():
    return {"status": "healthy", "service": "wallet-ledger"}


# -- users ------------------------------------------------------------------

@app.post("/auth/sign-in", response_model=UserRecord, tags=["Users"])
def sign_in(request: SignInRequest, services: LedgerServices = Depends(get_services)) -> UserRecord:
    return services.users.sign_in(request)


@app.put("/me/payment-details", response_model=UserRecord, tags=["Users"])
def save_payment_details(
    details: PaymentDetails,
    user: UserRecord = Depends(get_current_user),
    services: LedgerServices = Depends(get_services),
) -> UserRecord:
    return services.users.save_payment_details(user.id, details)


@app.get("/me/wallet", response_model=WalletView, tags=["Wallet"])
def get_my_wallet(user: UserRecord = Depends(get_current_user)) -> WalletView:
    return get_wallet(user)


@app.get("/me/transactions", response_model=TransactionHistoryResponse, tags=["Wallet"])
def get_my_transactions(
    limit: int = 20,
    offset: int = 0,
    user: UserRecord = Depends(get_current_user),
    services: LedgerServices = Depends(get_services),
) -> TransactionHistoryResponse:
    return TransactionHistoryResponse(
        user_id=user.id,
        entries=services.transaction_log.history(user.id, limit, offset),
        total_count=len(services.transaction_log.entries_for(user.id)),
        wallet=get_wallet(user),
    )


# -- referrals --------------------------------------------------------------

@app.get("/me/referral", response_model=ReferralSummary, tags=["Referrals"])
def get_my_referral(
    user: UserRecord = Depends(get_current_user),
    services: LedgerServices = Depends(get_services),
) -> ReferralSummary:
    code = services.referrals.ensure_referral_code(user.id)
    return ReferralSummary(
        code=code,
        link=services.referrals.referral_link(code),
        stats=services.referrals.referral_stats(user.id),
    )


@app.post("/referrals/visit", tags=["Referrals"])
def track_referral_visit(
    request: ReferralVisitRequest,
    x_user_id: Optional[str] = Header(default=None),
    services: LedgerServices = Depends(get_services),
):
    try:
        applied = services.referrals.track_visit(request.code, request.device_id, x_user_id)
    except UserNotFoundError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unknown user; sign in first")
    return {"applied": applied}


# -- orders -----------------------------------------------------------------

@app.post("/orders", response_model=Order, status_code=status.HTTP_201_CREATED, tags=["Orders"])
def create_order(
    request: CreateOrderRequest,
    user: UserRecord = Depends(get_current_user),
    services: LedgerServices = Depends(get_services),
) -> Order:
    try:
        return services.orders.create_order(user.id, request)
    except InsufficientBalanceError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@app.get("/orders/{order_id}", response_model=Order, tags=["Orders"])
def get_order(
    order_id: str,
    user: UserRecord = Depends(get_current_user),
    services: LedgerServices = Depends(get_services),
) -> Order:
    try:
        order = services.orders.get_order(order_id)
    except OrderNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Order {order_id} not found")
    if order.user_id != user.id:
        require(Capability.MANAGE_ORDERS)(user)
    return order


@app.patch("/admin/orders/{order_id}/status", response_model=OrderStatusResponse, tags=["Admin"])
def update_order_status(
    order_id: str,
    request: UpdateOrderStatusRequest,
    admin: UserRecord = Depends(require(Capability.MANAGE_ORDERS)),
    services: LedgerServices = Depends(get_services),
) -> OrderStatusResponse:
    try:
        return services.orders.update_status(order_id, request.status)
    except OrderNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Order {order_id} not found")
    except LedgerServiceError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))


# -- withdrawals ------------------------------------------------------------

@app.post("/withdrawals", response_model=WithdrawalOutcome, status_code=status.HTTP_201_CREATED, tags=["Withdrawals"])
def request_withdrawal(
    request: WithdrawalRequestBody,
    user: UserRecord = Depends(get_current_user),
    services: LedgerServices = Depends(get_services),
) -> WithdrawalOutcome:
    try:
        outcome = services.withdrawals.request_withdrawal(user.id, request.amount)
    except LedgerServiceError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return withdrawal_response(outcome)


@app.get("/me/withdrawals", response_model=list[WithdrawalRecord], tags=["Withdrawals"])
def get_my_withdrawals(
    user: UserRecord = Depends(get_current_user),
    services: LedgerServices = Depends(get_services),
) -> list[WithdrawalRecord]:
    return services.withdrawals.withdrawal_history(user.id)


@app.get("/admin/withdrawals", response_model=list[WithdrawalRecord], tags=["Admin"])
def list_withdrawals(
    withdrawal_status: Optional[WithdrawalStatus] = None,
    admin: UserRecord = Depends(require(Capability.PROCESS_WITHDRAWALS)),
    services: LedgerServices = Depends(get_services),
) -> list[WithdrawalRecord]:
    return services.withdrawals.list_withdrawals(withdrawal_status)


@app.post("/admin/withdrawals/{withdrawal_id}/process", response_model=WithdrawalOutcome, tags=["Admin"])
def process_withdrawal(
    withdrawal_id: str,
    request: ProcessWithdrawalRequest,
    admin: UserRecord = Depends(require(Capability.PROCESS_WITHDRAWALS)),
    services: LedgerServices = Depends(get_services),
) -> WithdrawalOutcome:
    try:
        outcome = services.withdrawals.process_withdrawal(withdrawal_id, request.decision, request.reason)
    except WithdrawalNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Withdrawal {withdrawal_id} not found")
    except LedgerServiceError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return withdrawal_response(outcome)


# -- commissions ------------------------------------------------------------

@app.get("/admin/commissions", response_model=list[Commission], tags=["Admin"])
def list_commissions(
    referrer_id: Optional[str] = None,
    commission_status: Optional[CommissionStatus] = None,
    admin: UserRecord = Depends(require(Capability.MANAGE_COMMISSIONS)),
    services: LedgerServices = Depends(get_services),
) -> list[Commission]:
    return services.commissions.list_commissions(referrer_id, commission_status)


@app.post("/admin/commissions/{commission_id}/paid", response_model=Commission, tags=["Admin"])
def mark_commission_paid(
    commission_id: str,
    admin: UserRecord = Depends(require(Capability.MANAGE_COMMISSIONS)),
    services: LedgerServices = Depends(get_services),
) -> Commission:
    try:
        return services.commissions.mark_paid(commission_id)
    except CommissionNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Commission {commission_id} not found")
    except InvalidStateTransitionError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))


# -- settings ---------------------------------------------------------------

@app.get("/settings", response_model=LedgerSettings, tags=["Settings"])
def get_ledger_settings(services: LedgerServices = Depends(get_services)) -> LedgerSettings:
    return services.settings.get()


@app.put("/admin/settings", response_model=LedgerSettings, tags=["Admin"])
def update_ledger_settings(
    changes: SettingsUpdate,
    admin: UserRecord = Depends(require(Capability.MANAGE_SETTINGS)),
    services: LedgerServices = Depends(get_services),
) -> LedgerSettings:
    return services.settings.update(changes)


# -- tax & invoices ---------------------------------------------------------

@app.post("/tax/quote", response_model=TaxBreakdown, tags=["Tax"])
def quote_tax(request: TaxQuoteRequest) -> TaxBreakdown:
    return tax.quote(request.amount, request.gst_rate, request.buyer_state, config.SELLER_STATE)


@app.get("/invoices/{order_id}", response_model=Invoice, tags=["Tax"])
def get_invoice(
    order_id: str,
    user: UserRecord = Depends(get_current_user),
    services: LedgerServices = Depends(get_services),
) -> Invoice:
    try:
        order = services.orders.get_order(order_id)
        if order.user_id != user.id:
            require(Capability.MANAGE_ORDERS)(user)
        return services.invoices.get_invoice_for_order(order_id)
    except (OrderNotFoundError, InvoiceNotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"No invoice for order {order_id}")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
