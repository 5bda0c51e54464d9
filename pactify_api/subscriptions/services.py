import logging
from datetime import datetime, timezone as dt_timezone

from django.conf import settings
from django.contrib.auth import get_user_model
from django.utils import timezone

from pactify_api.exceptions import NotFoundError, PaymentFailure, StateConflictError
from payments.providers import PaymentProviderError
from payments.services import PaymentService
from .models import Subscription

logger = logging.getLogger(__name__)

User = get_user_model()
Tier = User.SubscriptionTier

PAID_TIERS = (Tier.PROFESSIONAL, Tier.BUSINESS)
ENTITLED_STATUSES = (Subscription.Status.ACTIVE, Subscription.Status.TRIALING, Subscription.Status.PAST_DUE)


def price_for_tier(tier):
    price = settings.SUBSCRIPTION_PRICES.get(tier)
    if not price:
        raise StateConflictError(f"No price is configured for the {tier} plan", code='PLAN_UNAVAILABLE')
    return price


def tier_for_price(price_ref):
    for tier, price in settings.SUBSCRIPTION_PRICES.items():
        if price and price == price_ref:
            return tier
    return None


def set_subscription_tier(user_id, tier):
    """Write the tier only when it differs; returns whether the user row changed."""
    changed = User.objects.filter(pk=user_id).exclude(subscription_tier=tier).update(
        subscription_tier=tier, updated_at=timezone.now()
    )
    if changed:
        logger.info("User %s moved to the %s tier", user_id, tier)
    return bool(changed)


class SubscriptionService:
    """
    Starts, changes and cancels plan subscriptions and keeps each user's
    ``subscription_tier`` in line with the processor, which drives the platform fee.
    """
    def __init__(self, payment_service=None):
        self.payment_service = payment_service or PaymentService()

    @property
    def provider(self):
        return self.payment_service.provider

    def _live_subscription(self, user):
        subscription = Subscription.objects.filter(user=user).first()
        if subscription is None or subscription.status not in ENTITLED_STATUSES:
            raise NotFoundError("You have no active subscription", code='SUBSCRIPTION_NOT_FOUND')
        return subscription

    def start_checkout(self, user, tier, success_url=None, cancel_url=None):
        """Open a hosted checkout that subscribes ``user`` to a paid tier."""
        if tier not in PAID_TIERS:
            raise StateConflictError("Only paid plans can be purchased", code='INVALID_PLAN')
        existing = Subscription.objects.filter(user=user, status__in=ENTITLED_STATUSES).first()
        if existing is not None:
            raise StateConflictError(
                "You already have a subscription; change its plan instead",
                code='SUBSCRIPTION_EXISTS',
                details={'tier': existing.tier, 'status': existing.status},
            )

        try:
            session = self.provider.create_subscription_session(
                price_ref=price_for_tier(tier),
                customer_email=user.email,
                metadata={'user_id': str(user.pk), 'tier': tier, 'type': 'subscription'},
                success_url=success_url,
                cancel_url=cancel_url,
            )
        except PaymentProviderError as e:
            logger.error("Subscription checkout for user %s failed: %s", user.pk, e.message)
            raise PaymentFailure(e.message, details={'provider_code': e.code})

        logger.info("Subscription checkout %s opened for user %s (%s)", session['session_id'], user.pk, tier)
        return {'session_id': session['session_id'], 'checkout_url': session.get('url'), 'tier': tier}

    def sync_subscription(self, subscription_ref):
        """
        Refresh the local row from the processor and apply the resulting tier.

        Entitled statuses grant the subscribed tier; any other status drops the user
        back to free. Returns the row, or None for a subscription no user owns.
        """
        try:
            live = self.provider.get_subscription(subscription_ref)
        except PaymentProviderError as e:
            logger.error("Could not read subscription %s: %s", subscription_ref, e.message)
            raise PaymentFailure(e.message, details={'provider_code': e.code})

        subscription = Subscription.objects.filter(external_subscription_id=subscription_ref).first()
        user_id = subscription.user_id if subscription else live['user_id']
        if not user_id or not User.objects.filter(pk=user_id).exists():
            logger.warning("Subscription %s does not belong to a known user", subscription_ref)
            return None

        tier = tier_for_price(live['price_ref'])
        if tier is None:
            logger.error("Subscription %s uses unknown price %s", subscription_ref, live['price_ref'])
            raise StateConflictError("Subscription price does not match any plan", code='UNKNOWN_PLAN_PRICE')

        period_end = None
        if live['current_period_end']:
            period_end = datetime.fromtimestamp(live['current_period_end'], tz=dt_timezone.utc)

        subscription, _ = Subscription.objects.update_or_create(
            user_id=user_id,
            defaults={
                'tier': tier,
                'status': live['status'],
                'external_subscription_id': subscription_ref,
                'external_customer_id': live['customer_ref'],
                'price_reference': live['price_ref'],
                'item_reference': live['item_ref'],
                'cancel_at_period_end': live['cancel_at_period_end'],
                'current_period_end': period_end,
            },
        )

        entitled = subscription.status in ENTITLED_STATUSES
        set_subscription_tier(user_id, tier if entitled else Tier.FREE)
        return subscription

    def change_plan(self, user, tier):
        if tier not in PAID_TIERS:
            raise StateConflictError("Cancel the subscription to return to the free plan", code='INVALID_PLAN')
        subscription = self._live_subscription(user)
        if subscription.tier == tier and not subscription.cancel_at_period_end:
            raise StateConflictError(f"You are already on the {tier} plan", code='PLAN_UNCHANGED')

        try:
            self.provider.change_subscription_price(
                subscription.external_subscription_id, subscription.item_reference, price_for_tier(tier)
            )
        except PaymentProviderError as e:
            logger.error("Plan change for user %s failed: %s", user.pk, e.message)
            raise PaymentFailure(e.message, details={'provider_code': e.code})

        return self.sync_subscription(subscription.external_subscription_id)

    def cancel(self, user):
        """Stop renewal. The paid tier stays until the processor ends the subscription."""
        subscription = self._live_subscription(user)
        if subscription.cancel_at_period_end:
            raise StateConflictError("Subscription is already cancelled", code='SUBSCRIPTION_ALREADY_CANCELLED')

        try:
            self.provider.cancel_subscription(subscription.external_subscription_id)
        except PaymentProviderError as e:
            logger.error("Cancelling subscription %s failed: %s", subscription.external_subscription_id, e.message)
            raise PaymentFailure(e.message, details={'provider_code': e.code})

        return self.sync_subscription(subscription.external_subscription_id)
