"""Tests for subscription length resolution and create-or-extend."""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal

from payments_reconciler.database import (
    BillingPeriod,
    PricingPlan,
    SubscriptionStatus,
    UserProductSubscription,
)
from payments_reconciler.errors import NotFound, ValidationFailure
from payments_reconciler.finalization import (
    create_or_extend_user_subscription,
    months_for_billing_period,
    resolve_subscription_months,
)
from payments_reconciler.timeutils import add_months

NOW = datetime(2025, 3, 15, 9, 30)


def annual_plan(**overrides):
    fields = dict(
        id="plan-annual",
        content_product_id="product-1",
        billing_period=BillingPeriod.ANNUAL.value,
        amount=Decimal("12000"),
        is_active=True,
    )
    fields.update(overrides)
    return PricingPlan(**fields)


class TestMonthsForBillingPeriod:
    """Tests for billing period conversion."""

    def test_annual_is_twelve_months(self):
        assert months_for_billing_period("annual") == 12

    def test_anything_else_is_one_month(self):
        assert months_for_billing_period("monthly") == 1
        assert months_for_billing_period("weekly") == 1


class TestResolveSubscriptionMonths:
    """Tests for resolve_subscription_months."""

    async def test_annual_plan(self, db_session, seed):
        """Test an annual plan buys twelve months."""
        await seed(annual_plan())

        months = await resolve_subscription_months(db_session, "product-1", "plan-annual", None, NOW)

        assert months == 12

    async def test_plan_wins_over_legacy_duration(self, db_session, seed):
        """Test the legacy duration is ignored when a plan is referenced."""
        await seed(annual_plan(billing_period=BillingPeriod.MONTHLY.value))

        months = await resolve_subscription_months(db_session, "product-1", "plan-annual", 6, NOW)

        assert months == 1

    async def test_legacy_duration_without_plan(self, db_session):
        """Test the legacy duration, defaulting to and never below one month."""
        assert await resolve_subscription_months(db_session, "product-1", None, 6, NOW) == 6
        assert await resolve_subscription_months(db_session, "product-1", None, None, NOW) == 1
        assert await resolve_subscription_months(db_session, "product-1", None, 0, NOW) == 1
        assert await resolve_subscription_months(db_session, "product-1", None, -3, NOW) == 1

    async def test_missing_plan(self, db_session):
        """Test an unknown plan raises NotFound."""
        with pytest.raises(NotFound):
            await resolve_subscription_months(db_session, "product-1", "nope", None, NOW)

    async def test_plan_for_other_product(self, db_session, seed):
        """Test a plan of another product is rejected."""
        await seed(annual_plan(content_product_id="product-2"))

        with pytest.raises(ValidationFailure):
            await resolve_subscription_months(db_session, "product-1", "plan-annual", None, NOW)

    async def test_inactive_plan(self, db_session, seed):
        """Test an inactive plan is rejected."""
        await seed(annual_plan(is_active=False))

        with pytest.raises(ValidationFailure):
            await resolve_subscription_months(db_session, "product-1", "plan-annual", None, NOW)

    async def test_plan_outside_effective_window(self, db_session, seed):
        """Test plans not yet effective or already expired are rejected."""
        await seed(
            annual_plan(id="future", effective_from_utc=NOW + timedelta(days=1)),
            annual_plan(id="expired", effective_to_utc=NOW - timedelta(days=1)),
            annual_plan(
                id="current",
                effective_from_utc=NOW - timedelta(days=1),
                effective_to_utc=NOW + timedelta(days=1),
            ),
        )

        with pytest.raises(ValidationFailure):
            await resolve_subscription_months(db_session, "product-1", "future", None, NOW)
        with pytest.raises(ValidationFailure):
            await resolve_subscription_months(db_session, "product-1", "expired", None, NOW)
        assert await resolve_subscription_months(db_session, "product-1", "current", None, NOW) == 12


class TestCreateOrExtendUserSubscription:
    """Tests for create_or_extend_user_subscription."""

    async def test_creates_new_subscription(self, db_session):
        """Test a first payment creates an active subscription starting now."""
        subscription = await create_or_extend_user_subscription(
            db_session, "user-1", "product-1", 12, None, NOW
        )

        assert subscription.status == SubscriptionStatus.ACTIVE.value
        assert subscription.start_date == NOW
        assert subscription.end_date == datetime(2026, 3, 15, 9, 30)
        assert subscription.is_trial is False

    async def test_extends_active_subscription_from_end_date(self, db_session, seed):
        """Test paid time stacks onto an active subscription."""
        end = datetime(2025, 4, 10)
        await seed(UserProductSubscription(
            user_id="user-1",
            content_product_id="product-1",
            status=SubscriptionStatus.ACTIVE.value,
            start_date=NOW - timedelta(days=30),
            end_date=end,
        ))

        subscription = await create_or_extend_user_subscription(
            db_session, "user-1", "product-1", 12, "ops-1", NOW
        )

        assert subscription.end_date == add_months(end, 12)
        assert subscription.start_date == NOW - timedelta(days=30)
        assert subscription.granted_by_user_id == "ops-1"

    async def test_expired_subscription_restarts_now(self, db_session, seed):
        """Test a lapsed subscription restarts at now instead of stacking."""
        await seed(UserProductSubscription(
            user_id="user-1",
            content_product_id="product-1",
            status=SubscriptionStatus.ACTIVE.value,
            start_date=NOW - timedelta(days=90),
            end_date=NOW - timedelta(days=60),
        ))

        subscription = await create_or_extend_user_subscription(
            db_session, "user-1", "product-1", 1, None, NOW
        )

        assert subscription.start_date == NOW
        assert subscription.end_date == add_months(NOW, 1)

    async def test_suspended_subscription_is_not_extended(self, db_session, seed):
        """Test a non-active subscription inside its dates restarts at now and becomes active."""
        await seed(UserProductSubscription(
            user_id="user-1",
            content_product_id="product-1",
            status=SubscriptionStatus.SUSPENDED.value,
            start_date=NOW - timedelta(days=10),
            end_date=NOW + timedelta(days=20),
            is_trial=True,
        ))

        subscription = await create_or_extend_user_subscription(
            db_session, "user-1", "product-1", 1, None, NOW
        )

        assert subscription.status == SubscriptionStatus.ACTIVE.value
        assert subscription.start_date == NOW
        assert subscription.end_date == add_months(NOW, 1)
        assert subscription.is_trial is False
