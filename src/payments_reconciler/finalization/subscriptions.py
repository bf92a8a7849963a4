"""Subscription length resolution and individual-user create-or-extend."""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..database.models import BillingPeriod, SubscriptionStatus, UserProductSubscription
from ..database.repository import PricingPlanRepository, SubscriptionRepository
from ..errors import NotFound, ValidationFailure
from ..timeutils import add_months

logger = logging.getLogger(__name__)


def months_for_billing_period(billing_period: str) -> int:
    """
    >>> months_for_billing_period("annual")
    12
    """
    if billing_period == BillingPeriod.ANNUAL.value:
        return 12
    return 1


async def resolve_subscription_months(
    session: AsyncSession,
    content_product_id: str,
    price_plan_id: Optional[str],
    legacy_duration_months: Optional[int],
    now: datetime,
) -> int:
    """Work out how many months a subscription payment buys.

    A pricing plan, when referenced, must belong to the product and be
    currently effective. Without one, the legacy duration on the intent is
    used, defaulting to a single month.

    Args:
        session: Session of the caller's unit of work.
        content_product_id: Product the payment was for.
        price_plan_id: Optional pricing plan id recorded on the intent.
        legacy_duration_months: Duration stored on older intents.
        now: Reference time for the plan's effective window.

    Returns:
        Number of months, always at least 1.

    Raises:
        NotFound: The referenced plan does not exist.
        ValidationFailure: The plan is for another product, inactive, or not
            effective at ``now``.
    """
    if price_plan_id:
        plan = await PricingPlanRepository(session).get_by_id(price_plan_id)
        if plan is None:
            raise NotFound("Pricing plan", price_plan_id)
        if plan.content_product_id != content_product_id:
            raise ValidationFailure(
                f"Pricing plan {price_plan_id} does not belong to product {content_product_id}."
            )
        if not plan.is_active:
            raise ValidationFailure(f"Pricing plan {price_plan_id} is not active.")
        if plan.effective_from_utc is not None and plan.effective_from_utc > now:
            raise ValidationFailure(f"Pricing plan {price_plan_id} is not yet effective.")
        if plan.effective_to_utc is not None and plan.effective_to_utc < now:
            raise ValidationFailure(f"Pricing plan {price_plan_id} has expired.")
        return months_for_billing_period(plan.billing_period)

    months = legacy_duration_months or 1
    return max(1, months)


async def create_or_extend_user_subscription(
    session: AsyncSession,
    user_id: str,
    content_product_id: str,
    months: int,
    granted_by_user_id: Optional[str],
    now: datetime,
) -> UserProductSubscription:
    """Create the user's subscription or extend the existing one by ``months``.

    A subscription active right now is extended from its current end date so
    paid time stacks; anything else restarts at ``now``.
    """
    repo = SubscriptionRepository(session)
    subscription = await repo.get_for_user_product(user_id, content_product_id)

    if subscription is None:
        subscription = await repo.add(
            UserProductSubscription(
                user_id=user_id,
                content_product_id=content_product_id,
                status=SubscriptionStatus.ACTIVE.value,
                start_date=now,
                end_date=add_months(now, months),
                is_trial=False,
                granted_by_user_id=granted_by_user_id,
            )
        )
        logger.info(f"Created subscription for user {user_id} on product {content_product_id}")
        return subscription

    # Evaluate before the status is overwritten below.
    active_now = (
        subscription.status == SubscriptionStatus.ACTIVE.value
        and subscription.start_date <= now <= subscription.end_date
    )

    if active_now:
        subscription.end_date = add_months(subscription.end_date, months)
    else:
        subscription.start_date = now
        subscription.end_date = add_months(now, months)

    subscription.status = SubscriptionStatus.ACTIVE.value
    subscription.is_trial = False
    subscription.granted_by_user_id = granted_by_user_id
    await session.flush()

    logger.info(
        f"{'Extended' if active_now else 'Reactivated'} subscription for user {user_id} "
        f"on product {content_product_id} until {subscription.end_date.isoformat()}"
    )
    return subscription
