import logging

from django.conf import settings
from django.db import IntegrityError, transaction

from pactify_api.exceptions import NotFoundError, PaymentFailure
from .providers import get_payment_provider, PaymentProviderError
from .models import ConnectedAccount, WebhookEvent

logger = logging.getLogger(__name__)


class PaymentService:
    """
    Provider adapter. This class does not create or update escrow ledger records;
    it only calls the configured payment provider and keeps the connected-account
    and webhook bookkeeping that belongs to the payments app.
    """
    def __init__(self, provider_name=None):
        self.default_provider_name = provider_name or settings.PAYMENT_PROVIDER

    def _get_provider(self, provider_name=None):
        name = provider_name or self.default_provider_name
        if not name:
            raise ValueError("provider_name is required (no default configured).")
        return get_payment_provider(name), name

    @property
    def provider(self):
        provider, _ = self._get_provider()
        return provider

    def get_or_create_connected_account(self, user):
        """
        Return the user's connected account, registering one with the processor on first use.
        """
        account = ConnectedAccount.objects.filter(user=user).first()
        if account is not None:
            return account, False

        provider, name = self._get_provider()
        try:
            external_id = provider.create_connected_account(user)
        except PaymentProviderError as e:
            raise PaymentFailure(e.message, details={'provider_code': e.code})

        try:
            with transaction.atomic():
                account = ConnectedAccount.objects.create(user=user, provider=name, external_account_id=external_id)
        except IntegrityError:
            # a concurrent request registered the account first
            logger.warning("Connected account for user %s already exists; orphan %s left at %s",
                           user.pk, external_id, name)
            return ConnectedAccount.objects.get(user=user), False

        logger.info("Connected account %s registered for user %s", external_id, user.pk)
        return account, True

    def create_onboarding_link(self, user):
        account = ConnectedAccount.objects.filter(user=user).first()
        if account is None:
            raise NotFoundError("Create a payout account first", code='PAYOUT_ACCOUNT_MISSING')

        provider, _ = self._get_provider(account.provider)
        base = settings.FRONTEND_DOMAIN
        try:
            return provider.get_account_link(
                account.external_account_id,
                refresh_url=f"{base}/settings/payouts?refresh=1",
                return_url=f"{base}/settings/payouts?onboarding=complete",
            )
        except PaymentProviderError as e:
            raise PaymentFailure(e.message, details={'provider_code': e.code})

    def record_webhook_event(self, provider_name, event_id, event_type=''):
        """
        Remember a webhook delivery. Returns False when the event was already processed.
        """
        try:
            with transaction.atomic():
                WebhookEvent.objects.create(provider=provider_name, event_id=event_id, event_type=event_type)
        except IntegrityError:
            return False
        return True
