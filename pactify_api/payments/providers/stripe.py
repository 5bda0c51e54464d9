import logging

import stripe
from django.conf import settings

from .base import BasePaymentProvider, PaymentProviderError

logger = logging.getLogger(__name__)


class StripeProvider(BasePaymentProvider):
    """
    Stripe payment provider implementation for the escrow system.
    Client charges go through Checkout; freelancers are paid with Connect transfers.
    """

    name = 'stripe'

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        stripe.api_key = settings.STRIPE_SECRET_KEY
        self.publishable_key = settings.STRIPE_PUBLISHABLE_KEY
        self.currency = getattr(settings, 'STRIPE_CURRENCY', 'usd')
        self.country = getattr(settings, 'STRIPE_COUNTRY', 'US')
        self.webhook_secret = getattr(settings, 'STRIPE_WEBHOOK_SECRET', '')

    def create_funding_session(self, *, amount_minor, currency, line_items, metadata,
                               customer_email=None, success_url=None, cancel_url=None):
        try:
            session = stripe.checkout.Session.create(
                mode='payment',
                payment_method_types=['card'],
                line_items=[
                    {
                        'price_data': {
                            'currency': currency.lower(),
                            'product_data': {
                                'name': item['name'],
                                'description': item.get('description') or item['name'],
                            },
                            'unit_amount': item['amount_minor'],
                        },
                        'quantity': 1,
                    }
                    for item in line_items
                ],
                customer_email=customer_email,
                success_url=success_url or f"{settings.FRONTEND_DOMAIN}/contracts/{metadata['contract_id']}?payment=success",
                cancel_url=cancel_url or f"{settings.FRONTEND_DOMAIN}/contracts/{metadata['contract_id']}?payment=cancelled",
                metadata=metadata,
                payment_intent_data={'metadata': metadata},
            )
        except stripe.StripeError as e:
            logger.error("Stripe API error creating checkout session: %s", e)
            raise PaymentProviderError(e.user_message or str(e), code=e.code)

        logger.info("Stripe checkout session %s created for %s minor units", session.id, amount_minor)
        return {'session_id': session.id, 'url': session.url}

    def get_funding_session(self, session_ref):
        try:
            session = stripe.checkout.Session.retrieve(session_ref)
        except stripe.StripeError as e:
            logger.error("Stripe API error retrieving session %s: %s", session_ref, e)
            raise PaymentProviderError(e.user_message or str(e), code=e.code)

        payment_intent = getattr(session, 'payment_intent', None)
        if payment_intent is not None and not isinstance(payment_intent, str):
            payment_intent = payment_intent.id
        return {
            'paid': session.payment_status == 'paid',
            'payment_reference': payment_intent or '',
        }

    def expire_funding_session(self, session_ref):
        try:
            stripe.checkout.Session.expire(session_ref)
        except stripe.StripeError as e:
            logger.error("Stripe API error expiring session %s: %s", session_ref, e)
            raise PaymentProviderError(e.user_message or str(e), code=e.code)

        logger.info("Stripe checkout session %s expired", session_ref)

    def transfer_funds(self, *, amount_minor, currency, destination, transfer_group, metadata,
                       idempotency_key=None):
        try:
            transfer = stripe.Transfer.create(
                amount=amount_minor,
                currency=currency.lower(),
                destination=destination,
                transfer_group=transfer_group,
                metadata=metadata,
                idempotency_key=idempotency_key,
            )
        except stripe.StripeError as e:
            logger.error("Stripe transfer to %s failed: %s", destination, e)
            raise PaymentProviderError(e.user_message or str(e), code=e.code)

        logger.info("Stripe transfer %s created: %s minor units to %s", transfer.id, amount_minor, destination)
        return transfer.id

    def refund(self, payment_ref, amount_minor=None, reason=None):
        params = {
            'payment_intent': payment_ref,
            'metadata': {'reason': reason or 'Escrow refund', 'escrow_refund': 'true'},
        }
        if amount_minor:
            params['amount'] = amount_minor

        try:
            refund = stripe.Refund.create(**params)
        except stripe.StripeError as e:
            logger.error("Stripe refund for %s failed: %s", payment_ref, e)
            raise PaymentProviderError(e.user_message or str(e), code=e.code)

        logger.info("Stripe refund %s created for intent %s", refund.id, payment_ref)
        return refund.id

    def get_connected_account_status(self, account_ref):
        try:
            account = stripe.Account.retrieve(account_ref)
        except stripe.StripeError as e:
            logger.error("Stripe account lookup for %s failed: %s", account_ref, e)
            raise PaymentProviderError(e.user_message or str(e), code=e.code)

        capabilities = getattr(account, 'capabilities', None)
        requirements = getattr(account, 'requirements', None)
        return {
            'transfers_active': getattr(capabilities, 'transfers', None) == 'active',
            'payouts_enabled': bool(getattr(account, 'payouts_enabled', False)),
            'charges_enabled': bool(getattr(account, 'charges_enabled', False)),
            'details_submitted': bool(getattr(account, 'details_submitted', False)),
            'requirements_currently_due': list(getattr(requirements, 'currently_due', None) or []),
            'requirements_past_due': list(getattr(requirements, 'past_due', None) or []),
            'requirements_eventually_due': list(getattr(requirements, 'eventually_due', None) or []),
            'disabled_reason': getattr(requirements, 'disabled_reason', None) or '',
        }

    def create_connected_account(self, user):
        try:
            account = stripe.Account.create(
                type='express',
                country=self.country,
                email=user.email,
                capabilities={'transfers': {'requested': True}},
                metadata={'user_id': str(user.pk)},
            )
        except stripe.StripeError as e:
            logger.error("Stripe account creation for user %s failed: %s", user.pk, e)
            raise PaymentProviderError(e.user_message or str(e), code=e.code)

        logger.info("Stripe connected account %s created for user %s", account.id, user.pk)
        return account.id

    def get_account_link(self, account_ref, refresh_url, return_url):
        try:
            link = stripe.AccountLink.create(
                account=account_ref,
                refresh_url=refresh_url,
                return_url=return_url,
                type='account_onboarding',
            )
        except stripe.StripeError as e:
            logger.error("Stripe onboarding link for %s failed: %s", account_ref, e)
            raise PaymentProviderError(e.user_message or str(e), code=e.code)

        return {'url': link.url, 'expires_at': link.expires_at}

    def create_payout(self, *, amount_minor, currency, account_ref, metadata):
        try:
            payout = stripe.Payout.create(
                amount=amount_minor,
                currency=currency.lower(),
                metadata=metadata,
                stripe_account=account_ref,
            )
        except stripe.StripeError as e:
            logger.error("Stripe payout for %s failed: %s", account_ref, e)
            raise PaymentProviderError(e.user_message or str(e), code=e.code)

        logger.info("Stripe payout %s created on %s", payout.id, account_ref)
        return payout.id

    def create_subscription_session(self, *, price_ref, customer_email, metadata, success_url=None, cancel_url=None):
        try:
            session = stripe.checkout.Session.create(
                mode='subscription',
                line_items=[{'price': price_ref, 'quantity': 1}],
                customer_email=customer_email,
                client_reference_id=metadata.get('user_id'),
                success_url=success_url or f"{settings.FRONTEND_DOMAIN}/settings/billing?subscription=success",
                cancel_url=cancel_url or f"{settings.FRONTEND_DOMAIN}/settings/billing?subscription=cancelled",
                metadata=metadata,
                subscription_data={'metadata': metadata},
            )
        except stripe.StripeError as e:
            logger.error("Stripe API error creating subscription checkout: %s", e)
            raise PaymentProviderError(e.user_message or str(e), code=e.code)

        logger.info("Stripe subscription checkout %s created for price %s", session.id, price_ref)
        return {'session_id': session.id, 'url': session.url}

    def get_subscription(self, subscription_ref):
        try:
            subscription = stripe.Subscription.retrieve(subscription_ref)
        except stripe.StripeError as e:
            logger.error("Stripe API error retrieving subscription %s: %s", subscription_ref, e)
            raise PaymentProviderError(e.user_message or str(e), code=e.code)

        item = subscription['items'].data[0]
        customer = subscription.customer or ''
        if not isinstance(customer, str):
            customer = customer.id
        return {
            'subscription_id': subscription.id,
            'status': subscription.status,
            'price_ref': item.price.id,
            'item_ref': item.id,
            'customer_ref': customer,
            'user_id': getattr(subscription.metadata, 'user_id', None),
            'cancel_at_period_end': bool(subscription.cancel_at_period_end),
            # newer API versions report the period on the item
            'current_period_end': (getattr(subscription, 'current_period_end', None)
                                   or getattr(item, 'current_period_end', None)),
        }

    def change_subscription_price(self, subscription_ref, item_ref, price_ref):
        try:
            stripe.Subscription.modify(
                subscription_ref,
                items=[{'id': item_ref, 'price': price_ref}],
                proration_behavior='create_prorations',
                cancel_at_period_end=False,
            )
        except stripe.StripeError as e:
            logger.error("Stripe API error changing subscription %s: %s", subscription_ref, e)
            raise PaymentProviderError(e.user_message or str(e), code=e.code)

        logger.info("Stripe subscription %s moved to price %s", subscription_ref, price_ref)

    def cancel_subscription(self, subscription_ref):
        try:
            stripe.Subscription.modify(subscription_ref, cancel_at_period_end=True)
        except stripe.StripeError as e:
            logger.error("Stripe API error cancelling subscription %s: %s", subscription_ref, e)
            raise PaymentProviderError(e.user_message or str(e), code=e.code)

        logger.info("Stripe subscription %s set to cancel at period end", subscription_ref)

    def construct_webhook_event(self, payload, signature):
        try:
            event = stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except ValueError as e:
            raise PaymentProviderError(f"Invalid payload: {e}", code='invalid_payload')
        except stripe.SignatureVerificationError as e:
            raise PaymentProviderError(f"Invalid signature: {e}", code='invalid_signature')

        return {
            'id': event.id,
            'type': event.type,
            'object_id': event.data.object.id,
        }
