"""
Shared fixtures: users, authenticated API clients, and a fake payment provider that
records every processor call instead of talking to Stripe.
"""
import json
from decimal import Decimal

import pytest
from django.core.cache import cache
from rest_framework.test import APIClient

from accounts.models import CustomUser
from contracts import lifecycle
from contracts.models import Contract, ContractParty
from escrow.services import EscrowService
from payments.models import ConnectedAccount
from payments.providers import BasePaymentProvider, PaymentProviderError

ACTIVE_ACCOUNT = {
    'transfers_active': True,
    'payouts_enabled': True,
    'charges_enabled': True,
    'details_submitted': True,
    'requirements_currently_due': [],
    'requirements_past_due': [],
    'requirements_eventually_due': [],
    'disabled_reason': '',
}


class FakeProvider(BasePaymentProvider):
    name = 'stripe'

    def __init__(self):
        super().__init__()
        self.calls = []
        self.failing = set()
        self.session_paid = True
        self.account_status = dict(ACTIVE_ACCOUNT)
        self.subscriptions = {}
        self._sequence = 0

    def _call(self, method, **kwargs):
        if method in self.failing:
            raise PaymentProviderError(f"{method} was declined", code='declined')
        self.calls.append((method, kwargs))
        self._sequence += 1
        return self._sequence

    def calls_to(self, method):
        return [kwargs for name, kwargs in self.calls if name == method]

    def create_funding_session(self, *, amount_minor, currency, line_items, metadata,
                               customer_email=None, success_url=None, cancel_url=None):
        n = self._call('create_funding_session', amount_minor=amount_minor, currency=currency,
                       line_items=line_items, metadata=metadata)
        return {'session_id': f'cs_test_{n}', 'url': f'https://checkout.test/cs_test_{n}'}

    def get_funding_session(self, session_ref):
        self._call('get_funding_session', session_ref=session_ref)
        return {'paid': self.session_paid, 'payment_reference': f'pi_{session_ref}'}

    def transfer_funds(self, *, amount_minor, currency, destination, transfer_group, metadata,
                       idempotency_key=None):
        n = self._call('transfer_funds', amount_minor=amount_minor, currency=currency, destination=destination,
                       transfer_group=transfer_group, idempotency_key=idempotency_key)
        return f'tr_test_{n}'

    def refund(self, payment_ref, amount_minor=None, reason=None):
        n = self._call('refund', payment_ref=payment_ref, amount_minor=amount_minor)
        return f're_test_{n}'

    def get_connected_account_status(self, account_ref):
        self._call('get_connected_account_status', account_ref=account_ref)
        return dict(self.account_status)

    def create_connected_account(self, user):
        n = self._call('create_connected_account', user_id=user.pk)
        return f'acct_test_{n}'

    def get_account_link(self, account_ref, refresh_url, return_url):
        self._call('get_account_link', account_ref=account_ref)
        return {'url': f'https://connect.test/{account_ref}', 'expires_at': 1900000000}

    def create_payout(self, *, amount_minor, currency, account_ref, metadata):
        n = self._call('create_payout', amount_minor=amount_minor, currency=currency, account_ref=account_ref)
        return f'po_test_{n}'

    def expire_funding_session(self, session_ref):
        self._call('expire_funding_session', session_ref=session_ref)

    def create_subscription_session(self, *, price_ref, customer_email, metadata, success_url=None,
                                    cancel_url=None):
        n = self._call('create_subscription_session', price_ref=price_ref, customer_email=customer_email,
                       metadata=metadata)
        return {'session_id': f'cs_test_{n}', 'url': f'https://checkout.test/cs_test_{n}'}

    def add_subscription(self, user, price_ref, status='active'):
        """Register a subscription the way the processor would after a completed checkout."""
        ref = f'sub_test_{len(self.subscriptions) + 1}'
        self.subscriptions[ref] = {
            'subscription_id': ref,
            'status': status,
            'price_ref': price_ref,
            'item_ref': f'si_{ref}',
            'customer_ref': f'cus_{user.pk}',
            'user_id': str(user.pk),
            'cancel_at_period_end': False,
            'current_period_end': 1900000000,
        }
        return ref

    def get_subscription(self, subscription_ref):
        self._call('get_subscription', subscription_ref=subscription_ref)
        if subscription_ref not in self.subscriptions:
            raise PaymentProviderError(f"No such subscription: {subscription_ref}", code='resource_missing')
        return dict(self.subscriptions[subscription_ref])

    def change_subscription_price(self, subscription_ref, item_ref, price_ref):
        self._call('change_subscription_price', subscription_ref=subscription_ref, item_ref=item_ref,
                   price_ref=price_ref)
        self.subscriptions[subscription_ref].update(price_ref=price_ref, cancel_at_period_end=False)

    def cancel_subscription(self, subscription_ref):
        self._call('cancel_subscription', subscription_ref=subscription_ref)
        self.subscriptions[subscription_ref]['cancel_at_period_end'] = True

    def construct_webhook_event(self, payload, signature):
        if signature != 'valid':
            raise PaymentProviderError("Invalid signature", code='invalid_signature')
        event = json.loads(payload)
        return {'id': event['id'], 'type': event['type'], 'object_id': event['object_id']}


@pytest.fixture(autouse=True)
def clear_throttle_cache():
    cache.clear()
    yield
    cache.clear()


@pytest.fixture
def provider(monkeypatch):
    fake = FakeProvider()
    monkeypatch.setattr('payments.services.get_payment_provider', lambda name, **kwargs: fake)
    return fake


def _make_user(email, **extra):
    return CustomUser.objects.create_user(
        email=email, password='Str0ng-pass!', first_name=email.split('@')[0].title(), last_name='Tester', **extra
    )


@pytest.fixture
def client_user(db):
    return _make_user('client@example.com')


@pytest.fixture
def freelancer(db):
    return _make_user(
        'freelancer@example.com',
        kyc_status=CustomUser.KycStatus.APPROVED,
        verification_level=CustomUser.VerificationLevel.ENHANCED,
        enhanced_kyc_status=CustomUser.EnhancedKycStatus.VERIFIED,
    )


@pytest.fixture
def outsider(db):
    return _make_user('outsider@example.com')


@pytest.fixture
def api():
    def make(user=None):
        client = APIClient()
        if user is not None:
            client.force_authenticate(user)
        return client
    return make


@pytest.fixture
def payout_account(freelancer):
    return ConnectedAccount.objects.create(user=freelancer, external_account_id='acct_freelancer')


@pytest.fixture
def make_contract(client_user, freelancer):
    def make(total='1000.00', milestones=None, status=None, **extra):
        data = {
            'title': extra.pop('title', 'Landing page'),
            'description': 'Design and build',
            'total_amount': Decimal(total),
            'currency': 'USD',
            'type': Contract.ContractType.MILESTONE if milestones else Contract.ContractType.FIXED,
            'creator_role': ContractParty.Role.CLIENT,
            'counterparty': freelancer,
            'milestones': milestones or [],
        }
        contract = lifecycle.create_contract(client_user, data)
        if status is not None:
            Contract.objects.filter(pk=contract.pk).update(status=status, **extra)
            contract.refresh_from_db()
        return contract
    return make


@pytest.fixture
def signed_contract(make_contract, client_user, freelancer):
    """A contract both parties signed, waiting for the client to fund it."""
    def make(**kwargs):
        contract = make_contract(**kwargs)
        lifecycle.sign_contract(contract.pk, client_user, 'client-signature')
        lifecycle.sign_contract(contract.pk, freelancer, 'freelancer-signature')
        contract.refresh_from_db()
        return contract
    return make


@pytest.fixture
def funded_contract(signed_contract, client_user, provider):
    """A signed contract whose checkout session was paid: one held entry, status active."""
    def make(**kwargs):
        contract = signed_contract(**kwargs)
        service = EscrowService()
        session = service.fund_escrow(contract.pk, client_user)
        service.confirm_funding(session['session_id'])
        contract.refresh_from_db()
        return contract
    return make
