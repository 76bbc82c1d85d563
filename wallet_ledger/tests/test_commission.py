"""
Unit Tests for the Commission Ledger and Order flow

Tests cover:
1. Commission credit on order completion
2. Idempotency (duplicate completion)
3. Skipped cases: no referral, unknown code, self-referral, disabled, cap
4. Commission payout marking
5. Order creation and status transitions
"""

from decimal import Decimal

import pytest
from pydantic import ValidationError

from conftest import sign_up
from wallet_ledger.commission import calculate_commission
from wallet_ledger.exceptions import (
    CommissionNotFoundError,
    InsufficientBalanceError,
    InvalidStateTransitionError,
    OrderNotFoundError,
)
from wallet_ledger.models import (
    BuyerInfo,
    CommissionStatus,
    CreateOrderRequest,
    OrderItem,
    OrderStatus,
    SettingsUpdate,
    TransactionType,
)


def place_order(services, user_id, total="1000", referral_code=None, buyer=None, wallet_amount=0):
    request = CreateOrderRequest(
        items=[OrderItem(name="Dragon figurine", price=Decimal(total), quantity=1, category="3d-print")],
        total=Decimal(total),
        referral_code=referral_code,
        buyer=buyer,
        wallet_amount=wallet_amount,
    )
    return services.orders.create_order(user_id, request)


def referred_pair(services):
    referrer = sign_up(services, "alice")
    sign_up(services, "bob")
    services.referrals.attach_referral("bob", referrer.referral_code)
    return referrer


class TestCommissionCalculation:
    """Tests for calculate_commission rounding."""

    def test_rounds_half_up(self):
        """Test commission rounds half up to whole units."""
        assert calculate_commission(Decimal("1005"), 10) == 101
        assert calculate_commission(Decimal("1004"), 10) == 100

    def test_zero_rate(self):
        """Test a zero rate yields no commission."""
        assert calculate_commission(Decimal("1000"), 0) == 0


class TestOrderCompletion:
    """Tests for on_order_completed."""

    def test_commission_credited_on_completion(self, services):
        """Test completing a referred order credits the referrer."""
        referrer = referred_pair(services)
        order = place_order(services, "bob", total="1000", referral_code=referrer.referral_code)

        response = services.orders.update_status(order.id, OrderStatus.COMPLETED)

        outcome = response.commission
        assert outcome.created is True
        assert outcome.commission.commission == 100
        assert outcome.commission.status == CommissionStatus.PENDING
        assert outcome.commission.referrer_id == "alice"
        assert outcome.ledger_entry.type == TransactionType.COMMISSION_CREDIT
        assert outcome.ledger_entry.amount == 100
        assert services.wallet.wallet_for("alice").balance == 100
        assert len(services.commissions.list_commissions(referrer_id="alice")) == 1

    def test_referral_code_taken_from_referred_by(self, services):
        """Test orders pick up the buyer's referrer when no code is given."""
        referrer = referred_pair(services)

        order = place_order(services, "bob")

        assert order.referral_code == referrer.referral_code

    def test_completion_is_idempotent(self, services):
        """Test a repeated completion returns the existing commission."""
        referrer = referred_pair(services)
        order = place_order(services, "bob", referral_code=referrer.referral_code)
        services.orders.update_status(order.id, OrderStatus.COMPLETED)

        again = services.commissions.on_order_completed(order.id)

        assert again.created is False
        assert again.commission.order_id == order.id
        assert services.wallet.wallet_for("alice").balance == 100
        assert len(services.transaction_log.entries_for("alice", TransactionType.COMMISSION_CREDIT)) == 1

    def test_recompleting_order_does_not_credit_twice(self, services):
        """Test moving an order back into completed does not credit again."""
        services.settings.update(SettingsUpdate(max_commission_purchases=0))
        referrer = referred_pair(services)
        order = place_order(services, "bob", referral_code=referrer.referral_code)
        services.orders.update_status(order.id, OrderStatus.COMPLETED)
        services.orders.update_status(order.id, OrderStatus.PROCESSING)

        services.orders.update_status(order.id, OrderStatus.COMPLETED)

        assert services.wallet.wallet_for("alice").balance == 100

    def test_order_without_referral(self, services):
        """Test orders without a referral code earn nothing."""
        sign_up(services, "bob")
        order = place_order(services, "bob")

        response = services.orders.update_status(order.id, OrderStatus.COMPLETED)

        assert response.commission.created is False
        assert services.commissions.list_commissions() == []

    def test_non_completed_order_is_dormant(self, services):
        """Test orders that are not completed earn nothing."""
        referrer = referred_pair(services)
        order = place_order(services, "bob", referral_code=referrer.referral_code)

        response = services.orders.update_status(order.id, OrderStatus.SHIPPED)

        assert response.commission is None
        assert services.commissions.on_order_completed(order.id).created is False
        assert services.wallet.wallet_for("alice").balance == 0

    def test_unknown_referral_code_skipped(self, services):
        """Test an unknown referral code is skipped with a message."""
        sign_up(services, "bob")
        order = place_order(services, "bob", referral_code="ZZZZZZ")

        response = services.orders.update_status(order.id, OrderStatus.COMPLETED)

        assert response.commission.created is False
        assert "does not match" in response.commission.message

    def test_self_referral_skipped(self, services):
        """Test buyers cannot earn commission on their own orders."""
        bob = sign_up(services, "bob")
        order = place_order(services, "bob", referral_code=bob.referral_code)

        response = services.orders.update_status(order.id, OrderStatus.COMPLETED)

        assert response.commission.created is False
        assert services.wallet.wallet_for("bob").balance == 0

    def test_disabled_commissions_skipped(self, services):
        """Test nothing is credited while commissions are disabled."""
        referrer = referred_pair(services)
        services.settings.update(SettingsUpdate(commission_enabled=False))
        order = place_order(services, "bob", referral_code=referrer.referral_code)

        response = services.orders.update_status(order.id, OrderStatus.COMPLETED)

        assert response.commission.created is False

    def test_rate_read_at_completion_time(self, services):
        """Test the rate in force at completion is used."""
        referrer = referred_pair(services)
        order = place_order(services, "bob", referral_code=referrer.referral_code)
        services.settings.update(SettingsUpdate(commission_rate=25))

        response = services.orders.update_status(order.id, OrderStatus.COMPLETED)

        assert response.commission.commission.commission == 250
        assert response.commission.commission.commission_rate == 25

    def test_first_purchase_only_cap(self, services):
        """Test the default cap pays only the first purchase."""
        referrer = referred_pair(services)
        first = place_order(services, "bob", referral_code=referrer.referral_code)
        second = place_order(services, "bob", referral_code=referrer.referral_code)
        services.orders.update_status(first.id, OrderStatus.COMPLETED)

        response = services.orders.update_status(second.id, OrderStatus.COMPLETED)

        assert response.commission.created is False
        assert "limit" in response.commission.message
        assert services.wallet.wallet_for("alice").balance == 100

    def test_unlimited_cap(self, services):
        """Test a cap of zero pays every purchase."""
        services.settings.update(SettingsUpdate(max_commission_purchases=0))
        referrer = referred_pair(services)
        for _ in range(3):
            order = place_order(services, "bob", referral_code=referrer.referral_code)
            services.orders.update_status(order.id, OrderStatus.COMPLETED)

        assert services.wallet.wallet_for("alice").balance == 300
        stats = services.referrals.referral_stats("alice")
        assert stats.total_purchased == 1
        assert stats.pending_commissions == 300

    def test_missing_order_is_soft_failure(self, services):
        """Test a missing order is reported, not raised."""
        outcome = services.commissions.on_order_completed("missing")
        assert outcome.created is False
        assert outcome.message == "Order not found"


class TestCommissionPayout:
    """Tests for mark_paid."""

    def test_mark_paid(self, services):
        """Test marking a commission paid."""
        referrer = referred_pair(services)
        order = place_order(services, "bob", referral_code=referrer.referral_code)
        services.orders.update_status(order.id, OrderStatus.COMPLETED)

        commission = services.commissions.mark_paid(order.id)

        assert commission.status == CommissionStatus.PAID
        assert commission.paid_at is not None
        stats = services.referrals.referral_stats("alice")
        assert stats.total_earned == 100
        assert stats.pending_commissions == 0
        # payout marking does not touch the wallet
        assert services.wallet.wallet_for("alice").balance == 100

    def test_cannot_mark_paid_twice(self, services):
        """Test a paid commission cannot be marked paid again."""
        referrer = referred_pair(services)
        order = place_order(services, "bob", referral_code=referrer.referral_code)
        services.orders.update_status(order.id, OrderStatus.COMPLETED)
        services.commissions.mark_paid(order.id)

        with pytest.raises(InvalidStateTransitionError):
            services.commissions.mark_paid(order.id)

    def test_unknown_commission(self, services):
        """Test marking an unknown commission fails."""
        with pytest.raises(CommissionNotFoundError):
            services.commissions.mark_paid("missing")


class TestOrders:
    """Tests for order creation and status updates."""

    def test_update_unknown_order(self, services):
        """Test updating an unknown order fails."""
        with pytest.raises(OrderNotFoundError):
            services.orders.update_status("missing", OrderStatus.COMPLETED)

    def test_wallet_used_at_checkout(self, services):
        """Test wallet credit applied at checkout is debited and logged."""
        sign_up(services, "bob", balance=500)

        order = place_order(services, "bob", total="1000", wallet_amount=300)

        assert order.wallet_amount_used == 300
        assert services.wallet.wallet_for("bob").balance == 200
        debits = services.transaction_log.entries_for("bob", TransactionType.CHECKOUT_DEBIT)
        assert [d.amount for d in debits] == [-300]

    def test_wallet_usage_above_cap_rejected(self, services):
        """Test wallet usage above the cap is refused before anything is written."""
        sign_up(services, "bob", balance=900)

        with pytest.raises(InsufficientBalanceError):
            place_order(services, "bob", total="1000", wallet_amount=500)

        assert services.wallet.wallet_for("bob").balance == 900
        assert services.orders.list_orders(user_id="bob") == []

    def test_total_must_match_items(self):
        """Test an order total that disagrees with its items is refused."""
        with pytest.raises(ValidationError):
            CreateOrderRequest(
                items=[OrderItem(name="Keychain", price=Decimal("10"), quantity=1)],
                total=Decimal("100000"),
                wallet_amount=1000,
            )

    def test_total_counts_quantities(self, services):
        """Test the order total is the sum of price times quantity."""
        sign_up(services, "bob")
        request = CreateOrderRequest(
            items=[
                OrderItem(name="T-shirt", price=Decimal("250"), quantity=2),
                OrderItem(name="Mug", price=Decimal("112.50"), quantity=1),
            ],
            total=Decimal("612.50"),
        )

        order = services.orders.create_order("bob", request)

        assert order.total == Decimal("612.50")

    def test_cancel_refunds_wallet_credit_once(self, services):
        """Test cancelling an order returns the wallet credit spent on it exactly once."""
        sign_up(services, "bob", balance=1000)
        order = place_order(services, "bob", total="1000", wallet_amount=200)
        assert services.wallet.wallet_for("bob").balance == 800

        response = services.orders.update_status(order.id, OrderStatus.CANCELLED)

        assert response.wallet_refund.type == TransactionType.ORDER_REFUND
        assert response.wallet_refund.amount == 200
        assert response.order.wallet_refunded is True
        assert services.wallet.wallet_for("bob").balance == 1000

        services.orders.update_status(order.id, OrderStatus.PENDING)
        again = services.orders.update_status(order.id, OrderStatus.CANCELLED)

        assert again.wallet_refund is None
        assert services.wallet.wallet_for("bob").balance == 1000
        assert services.transaction_log.net_amount("bob") == 1000

    def test_cancel_without_wallet_usage(self, services):
        """Test cancelling an order paid without wallet credit leaves the wallet alone."""
        sign_up(services, "bob", balance=500)
        order = place_order(services, "bob")

        response = services.orders.update_status(order.id, OrderStatus.CANCELLED)

        assert response.wallet_refund is None
        assert services.transaction_log.entries_for("bob", TransactionType.ORDER_REFUND) == []

    def test_invoice_finalized_on_ship(self, services):
        """Test the invoice gets its number when the order ships."""
        sign_up(services, "bob")
        buyer = BuyerInfo(name="Bob", phone="9876543210", address="Imphal", state="Manipur")
        order = place_order(services, "bob", total="250", buyer=buyer)
        assert order.invoice_id == f"inv_{order.id}"

        response = services.orders.update_status(order.id, OrderStatus.SHIPPED)

        assert response.invoice_number == "IA/FY26/0001"
        assert services.orders.update_status(order.id, OrderStatus.COMPLETED).invoice_number == "IA/FY26/0001"
