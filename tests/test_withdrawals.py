import json
from decimal import Decimal

import pytest

from accounts.models import CustomUser
from contracts import lifecycle
from contracts.models import Contract, ContractParty
from pactify_api.exceptions import PaymentFailure, StateConflictError, VerificationDenied
from escrow.services import EscrowService
from withdrawals.models import Withdrawal
from withdrawals.services import available_balance, request_withdrawal, settle_payout

pytestmark = pytest.mark.django_db


@pytest.fixture
def earned(funded_contract, client_user, payout_account, provider):
    """The freelancer has 1000.00 released to them."""
    contract = funded_contract()
    EscrowService().release_escrow(contract.pk, client_user)
    return contract


def test_balance_counts_released_minus_withdrawn(earned, freelancer):
    assert available_balance(freelancer) == Decimal('1000.00')
    Withdrawal.objects.create(user=freelancer, amount=Decimal('300'), status=Withdrawal.Status.PROCESSING)
    Withdrawal.objects.create(user=freelancer, amount=Decimal('200'), status=Withdrawal.Status.FAILED)

    assert available_balance(freelancer) == Decimal('700.00')


def test_withdrawal_creates_payout(earned, freelancer, provider):
    withdrawal = request_withdrawal(freelancer, Decimal('400.00'))

    assert withdrawal.status == Withdrawal.Status.PROCESSING
    assert withdrawal.payout_reference.startswith('po_test_')
    assert withdrawal.required_verification == 'enhanced'
    [payout] = provider.calls_to('create_payout')
    assert payout == {'amount_minor': 40000, 'currency': 'USD', 'account_ref': 'acct_freelancer'}
    assert available_balance(freelancer) == Decimal('600.00')


def test_cannot_withdraw_more_than_balance(earned, freelancer, provider):
    with pytest.raises(StateConflictError) as excinfo:
        request_withdrawal(freelancer, Decimal('1000.01'))

    assert excinfo.value.code == 'INSUFFICIENT_BALANCE'
    assert provider.calls_to('create_payout') == []


def test_insufficient_verification(earned, freelancer, provider):
    freelancer.verification_level = 'basic'
    freelancer.save(update_fields=['verification_level'])

    with pytest.raises(VerificationDenied) as excinfo:
        request_withdrawal(freelancer, Decimal('500'))

    assert excinfo.value.code == 'VERIFICATION_REQUIRED'
    assert excinfo.value.details['required_verification'] == 'enhanced'
    assert not Withdrawal.objects.exists()


def test_failed_payout_frees_the_balance(earned, freelancer, provider):
    provider.failing.add('create_payout')

    with pytest.raises(PaymentFailure):
        request_withdrawal(freelancer, Decimal('400'))

    withdrawal = Withdrawal.objects.get(user=freelancer)
    assert withdrawal.status == Withdrawal.Status.FAILED
    assert withdrawal.failure_reason == 'create_payout was declined'
    assert available_balance(freelancer) == Decimal('1000.00')


def test_payout_outcome_is_applied_once(earned, freelancer, provider):
    withdrawal = request_withdrawal(freelancer, Decimal('100'))

    settle_payout(withdrawal.payout_reference, paid=True)
    settle_payout(withdrawal.payout_reference, paid=False)

    withdrawal.refresh_from_db()
    assert withdrawal.status == Withdrawal.Status.PAID
    assert withdrawal.completed_at is not None
    assert freelancer.notifications.filter(notification_type='withdrawal_update').count() == 1


class TestWithdrawalApi:
    def test_request_and_list(self, api, earned, freelancer):
        client = api(freelancer)

        created = client.post('/api/withdrawals/request/', {'amount': '250.00'}, format='json')

        assert created.status_code == 201
        assert created.json()['withdrawal']['status'] == 'processing'
        listed = client.get('/api/withdrawals/').json()
        assert listed['count'] == 1
        assert listed['results'][0]['amount'] == '250.00'

    def test_eligibility_report(self, api, earned, freelancer):
        response = api(freelancer).get('/api/withdrawals/eligibility/', {'amount': '1500'})

        assert response.status_code == 200
        body = response.json()
        assert body['eligible'] is True
        assert body['available_balance'] == '1000.00'
        assert body['sufficient_balance'] is False

    def test_denied_request_lists_requirements(self, api, earned, freelancer, provider):
        provider.account_status.update(payouts_enabled=False, requirements_currently_due=['external_account'])

        response = api(freelancer).post('/api/withdrawals/request/', {'amount': '50'}, format='json')

        assert response.status_code == 403
        assert response.json()['missing'] == ['external_account']


def test_newly_registered_freelancer_can_withdraw(api, client_user, provider):
    registered = api().post('/api/account/register/', {
        'first_name': 'Nia',
        'last_name': 'Okafor',
        'email': 'nia@example.com',
        'password': 'Payout-Ready-42',
        'confirm_password': 'Payout-Ready-42',
    }, format='json')
    assert registered.status_code == 201
    newcomer = CustomUser.objects.get(email='nia@example.com')
    newcomer_api = api(newcomer)

    account_id = newcomer_api.post('/api/payments/connect/account/').json()['account']['external_account_id']
    before = newcomer_api.get('/api/withdrawals/eligibility/', {'amount': '50'}).json()
    assert before['eligible'] is False

    webhook = api().post(
        '/api/payments/webhooks/stripe/',
        data=json.dumps({'id': 'evt_account', 'type': 'account.updated', 'object_id': account_id}),
        content_type='application/json',
        HTTP_STRIPE_SIGNATURE='valid',
    )
    assert webhook.status_code == 200
    newcomer.refresh_from_db()
    assert newcomer.kyc_status == CustomUser.KycStatus.APPROVED

    contract = lifecycle.create_contract(client_user, {
        'title': 'Logo',
        'total_amount': Decimal('300.00'),
        'type': Contract.ContractType.FIXED,
        'creator_role': ContractParty.Role.CLIENT,
        'counterparty': newcomer,
    })
    lifecycle.sign_contract(contract.pk, client_user, 'client-signature')
    lifecycle.sign_contract(contract.pk, newcomer, 'newcomer-signature')
    service = EscrowService()
    session = service.fund_escrow(contract.pk, client_user)
    service.confirm_funding(session['session_id'])
    service.release_escrow(contract.pk, client_user)

    response = newcomer_api.post('/api/withdrawals/request/', {'amount': '50.00'}, format='json')

    assert response.status_code == 201
    assert response.json()['withdrawal']['status'] == Withdrawal.Status.PROCESSING
    assert provider.calls_to('create_payout')[0]['account_ref'] == account_id
