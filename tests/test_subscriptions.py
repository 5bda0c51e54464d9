import json
from decimal import Decimal

import pytest

from accounts.models import CustomUser
from escrow.fees import to_minor_units
from escrow.services import EscrowService
from pactify_api.exceptions import NotFoundError, StateConflictError
from payments.models import WebhookEvent
from subscriptions.models import Subscription
from subscriptions.services import SubscriptionService, set_subscription_tier

pytestmark = pytest.mark.django_db

Tier = CustomUser.SubscriptionTier
WEBHOOK_URL = '/api/payments/webhooks/stripe/'


@pytest.fixture(autouse=True)
def plan_prices(settings):
    settings.SUBSCRIPTION_PRICES = {'professional': 'price_pro', 'business': 'price_biz'}


def post_event(api, event_id, event_type, object_id):
    return api().post(
        WEBHOOK_URL,
        data=json.dumps({'id': event_id, 'type': event_type, 'object_id': object_id}),
        content_type='application/json',
        HTTP_STRIPE_SIGNATURE='valid',
    )


class TestCheckout:
    url = '/api/subscriptions/checkout/'

    def test_opens_subscription_checkout(self, api, client_user, provider):
        response = api(client_user).post(self.url, {'tier': 'professional'}, format='json')

        assert response.status_code == 201
        assert response.json()['checkout_url'].startswith('https://checkout.test/')
        [call] = provider.calls_to('create_subscription_session')
        assert call['price_ref'] == 'price_pro'
        assert call['customer_email'] == 'client@example.com'
        assert call['metadata']['user_id'] == str(client_user.pk)
        # the tier changes only once the processor reports the subscription
        client_user.refresh_from_db()
        assert client_user.subscription_tier == Tier.FREE

    def test_free_tier_cannot_be_bought(self, api, client_user, provider):
        response = api(client_user).post(self.url, {'tier': 'free'}, format='json')

        assert response.status_code == 400
        assert provider.calls_to('create_subscription_session') == []

    def test_unconfigured_price_is_refused(self, api, client_user, provider, settings):
        settings.SUBSCRIPTION_PRICES = {'professional': '', 'business': ''}

        response = api(client_user).post(self.url, {'tier': 'business'}, format='json')

        assert response.status_code == 400
        assert response.json()['error'] == 'PLAN_UNAVAILABLE'

    def test_second_subscription_is_refused(self, client_user, provider):
        ref = provider.add_subscription(client_user, 'price_pro')
        SubscriptionService().sync_subscription(ref)

        with pytest.raises(StateConflictError) as exc:
            SubscriptionService().start_checkout(client_user, Tier.BUSINESS)
        assert exc.value.code == 'SUBSCRIPTION_EXISTS'

    def test_processor_failure_is_reported(self, api, client_user, provider):
        provider.failing.add('create_subscription_session')

        response = api(client_user).post(self.url, {'tier': 'professional'}, format='json')

        assert response.status_code == 502


class TestSubscriptionWebhooks:
    def test_created_subscription_sets_tier(self, api, client_user, provider):
        ref = provider.add_subscription(client_user, 'price_pro')

        assert post_event(api, 'evt_sub_1', 'customer.subscription.created', ref).status_code == 200

        client_user.refresh_from_db()
        assert client_user.subscription_tier == Tier.PROFESSIONAL
        subscription = Subscription.objects.get(user=client_user)
        assert subscription.external_subscription_id == ref
        assert subscription.external_customer_id == f'cus_{client_user.pk}'
        assert subscription.current_period_end is not None

    def test_upgrade_and_deletion(self, api, client_user, provider):
        ref = provider.add_subscription(client_user, 'price_pro')
        post_event(api, 'evt_sub_1', 'customer.subscription.created', ref)

        provider.subscriptions[ref]['price_ref'] = 'price_biz'
        post_event(api, 'evt_sub_2', 'customer.subscription.updated', ref)
        client_user.refresh_from_db()
        assert client_user.subscription_tier == Tier.BUSINESS

        provider.subscriptions[ref]['status'] = 'canceled'
        post_event(api, 'evt_sub_3', 'customer.subscription.deleted', ref)
        client_user.refresh_from_db()
        assert client_user.subscription_tier == Tier.FREE
        assert Subscription.objects.get(user=client_user).status == Subscription.Status.CANCELED

    def test_incomplete_subscription_grants_nothing(self, api, client_user, provider):
        ref = provider.add_subscription(client_user, 'price_biz', status='incomplete')

        post_event(api, 'evt_sub_1', 'customer.subscription.created', ref)

        client_user.refresh_from_db()
        assert client_user.subscription_tier == Tier.FREE

    def test_unknown_price_is_retried(self, api, client_user, provider):
        ref = provider.add_subscription(client_user, 'price_legacy')

        response = post_event(api, 'evt_sub_1', 'customer.subscription.created', ref)

        assert response.status_code == 400
        assert response.json()['error'] == 'UNKNOWN_PLAN_PRICE'
        assert not WebhookEvent.objects.filter(event_id='evt_sub_1').exists()
        assert not Subscription.objects.exists()

    def test_subscription_without_user_is_acknowledged(self, api, client_user, provider):
        ref = provider.add_subscription(client_user, 'price_pro')
        provider.subscriptions[ref]['user_id'] = None

        assert post_event(api, 'evt_sub_1', 'customer.subscription.created', ref).status_code == 200
        assert not Subscription.objects.exists()


class TestFeesFollowTier:
    def test_funding_uses_current_tier(self, api, signed_contract, client_user, provider):
        ref = provider.add_subscription(client_user, 'price_pro')
        post_event(api, 'evt_sub_1', 'customer.subscription.created', ref)
        client_user.refresh_from_db()

        EscrowService().fund_escrow(signed_contract().pk, client_user)

        [session] = provider.calls_to('create_funding_session')
        assert session['amount_minor'] == to_minor_units(Decimal('1106.475')) == 110648

    def test_downgrade_restores_free_rate(self, api, signed_contract, client_user, provider):
        ref = provider.add_subscription(client_user, 'price_biz')
        post_event(api, 'evt_sub_1', 'customer.subscription.created', ref)
        provider.subscriptions[ref]['status'] = 'canceled'
        post_event(api, 'evt_sub_2', 'customer.subscription.deleted', ref)
        client_user.refresh_from_db()

        EscrowService().fund_escrow(signed_contract().pk, client_user)

        [session] = provider.calls_to('create_funding_session')
        assert session['amount_minor'] == 113220


class TestPlanManagement:
    def subscribe(self, user, provider, price='price_pro'):
        ref = provider.add_subscription(user, price)
        SubscriptionService().sync_subscription(ref)
        user.refresh_from_db()
        return ref

    def test_current_plan(self, api, client_user, provider):
        self.subscribe(client_user, provider)

        body = api(client_user).get('/api/subscriptions/').json()

        assert body['subscription_tier'] == 'professional'
        assert body['subscription']['status'] == 'active'

    def test_no_plan(self, api, client_user):
        body = api(client_user).get('/api/subscriptions/').json()

        assert body['subscription_tier'] == 'free'
        assert body['subscription'] is None

    def test_change_plan(self, api, client_user, provider):
        ref = self.subscribe(client_user, provider)

        response = api(client_user).post('/api/subscriptions/change/', {'tier': 'business'}, format='json')

        assert response.status_code == 200
        assert response.json()['subscription_tier'] == 'business'
        [call] = provider.calls_to('change_subscription_price')
        assert call == {'subscription_ref': ref, 'item_ref': f'si_{ref}', 'price_ref': 'price_biz'}

    def test_same_plan_is_refused(self, client_user, provider):
        self.subscribe(client_user, provider)

        with pytest.raises(StateConflictError) as exc:
            SubscriptionService().change_plan(client_user, Tier.PROFESSIONAL)
        assert exc.value.code == 'PLAN_UNCHANGED'

    def test_change_without_subscription(self, client_user, provider):
        with pytest.raises(NotFoundError):
            SubscriptionService().change_plan(client_user, Tier.BUSINESS)

    def test_cancel_keeps_tier_until_period_end(self, api, client_user, provider):
        self.subscribe(client_user, provider)

        response = api(client_user).post('/api/subscriptions/cancel/')

        assert response.status_code == 200
        body = response.json()
        assert body['subscription']['cancel_at_period_end'] is True
        assert body['subscription_tier'] == 'professional'

        again = api(client_user).post('/api/subscriptions/cancel/')
        assert again.json()['error'] == 'SUBSCRIPTION_ALREADY_CANCELLED'


def test_tier_write_is_conditional(client_user):
    CustomUser.objects.filter(pk=client_user.pk).update(subscription_tier=Tier.PROFESSIONAL)

    assert set_subscription_tier(client_user.pk, Tier.PROFESSIONAL) is False
    assert set_subscription_tier(client_user.pk, Tier.BUSINESS) is True
    client_user.refresh_from_db()
    assert client_user.subscription_tier == Tier.BUSINESS
