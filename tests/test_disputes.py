import pytest
from django.contrib.auth.models import Group
from django.core.management import call_command

from accounts.models import CustomUser
from pactify_api.exceptions import AuthorizationError, PaymentFailure, StateConflictError
from contracts.models import ContractStatus
from disputes.models import Dispute
from disputes.permissions import MODERATORS_GROUP
from disputes.services import open_dispute, resolve_dispute
from escrow.models import EscrowLedgerEntry

pytestmark = pytest.mark.django_db


@pytest.fixture
def moderator(db):
    user = CustomUser.objects.create_user(email='mod@example.com', password='Str0ng-pass!')
    group, _ = Group.objects.get_or_create(name=MODERATORS_GROUP)
    user.groups.add(group)
    return user


class TestOpenDispute:
    def test_moves_contract_to_disputed(self, funded_contract, client_user, freelancer):
        contract = funded_contract()

        dispute = open_dispute(contract, freelancer, Dispute.DisputeType.PAYMENT, 'Client went silent')

        contract.refresh_from_db()
        assert contract.status == ContractStatus.DISPUTED
        assert dispute.contract_status_at_open == ContractStatus.ACTIVE
        assert client_user.notifications.filter(notification_type='dispute_opened').exists()

    def test_only_one_open_dispute(self, funded_contract, client_user, freelancer):
        contract = funded_contract()
        open_dispute(contract, freelancer, 'payment', 'First')
        contract.refresh_from_db()

        with pytest.raises(StateConflictError):
            open_dispute(contract, client_user, 'quality', 'Second')

    def test_not_before_funding(self, make_contract, client_user):
        contract = make_contract(status=ContractStatus.PENDING_FUNDING)
        with pytest.raises(StateConflictError) as excinfo:
            open_dispute(contract, client_user, 'other', 'Too early')
        assert excinfo.value.code == 'INVALID_STATUS'


class TestResolveDispute:
    def test_initiator_cannot_resolve(self, funded_contract, freelancer):
        contract = funded_contract()
        dispute = open_dispute(contract, freelancer, 'payment', 'Late')

        with pytest.raises(AuthorizationError):
            resolve_dispute(dispute, freelancer, Dispute.Outcome.RESUME)

    def test_other_party_resumes_work(self, funded_contract, client_user, freelancer):
        contract = funded_contract()
        dispute = open_dispute(contract, freelancer, 'payment', 'Late')

        resolved = resolve_dispute(dispute, client_user, Dispute.Outcome.RESUME, 'Paying this week')

        assert resolved.status == Dispute.Status.RESOLVED
        assert resolved.resolved_by == client_user
        contract.refresh_from_db()
        assert contract.status == ContractStatus.ACTIVE
        assert EscrowLedgerEntry.objects.get(contract=contract).status == EscrowLedgerEntry.Status.HELD

    def test_moderator_refund_cancels_contract(self, funded_contract, client_user, moderator, provider):
        contract = funded_contract()
        dispute = open_dispute(contract, client_user, 'quality', 'Nothing delivered')

        resolve_dispute(dispute, moderator, Dispute.Outcome.REFUND, 'Refund in full')

        contract.refresh_from_db()
        assert contract.status == ContractStatus.CANCELLED
        assert EscrowLedgerEntry.objects.get(contract=contract).status == EscrowLedgerEntry.Status.REFUNDED
        [refund] = provider.calls_to('refund')
        assert refund['amount_minor'] == 100000

    def test_failed_refund_reopens_dispute(self, funded_contract, client_user, moderator, provider):
        contract = funded_contract()
        dispute = open_dispute(contract, client_user, 'quality', 'Nothing delivered')
        provider.failing.add('refund')

        with pytest.raises(PaymentFailure):
            resolve_dispute(dispute, moderator, Dispute.Outcome.REFUND)

        dispute.refresh_from_db()
        assert dispute.status == Dispute.Status.OPEN
        contract.refresh_from_db()
        assert contract.status == ContractStatus.DISPUTED

    def test_cannot_resolve_twice(self, funded_contract, client_user, freelancer):
        contract = funded_contract()
        dispute = open_dispute(contract, freelancer, 'payment', 'Late')
        resolve_dispute(dispute, client_user, Dispute.Outcome.RESUME)
        dispute.refresh_from_db()

        with pytest.raises(StateConflictError) as excinfo:
            resolve_dispute(dispute, client_user, Dispute.Outcome.RESUME)
        assert excinfo.value.code == 'DISPUTE_ALREADY_RESOLVED'


class TestDisputeApi:
    def test_open_message_and_resolve(self, api, funded_contract, client_user, freelancer):
        contract = funded_contract()
        base = f'/api/contracts/{contract.pk}/disputes/'

        opened = api(freelancer).post(base, {'dispute_type': 'timeline', 'description': 'Scope creep'}, format='json')
        assert opened.status_code == 201
        assert opened.json()['contract_status'] == 'disputed'
        dispute_id = opened.json()['dispute']['id']

        message = api(client_user).post(f'{base}{dispute_id}/messages/', {'message': 'Let us talk'}, format='json')
        assert message.status_code == 201

        resolved = api(client_user).post(f'{base}{dispute_id}/resolve/', {'outcome': 'resume'}, format='json')
        assert resolved.status_code == 200
        assert resolved.json()['contract_status'] == 'active'
        assert resolved.json()['dispute']['messages'][0]['message'] == 'Let us talk'

        closed = api(client_user).post(f'{base}{dispute_id}/messages/', {'message': 'Thanks'}, format='json')
        assert closed.status_code == 400

    def test_moderator_sees_any_contract_disputes(self, api, funded_contract, client_user, moderator):
        contract = funded_contract()
        open_dispute(contract, client_user, 'quality', 'Bad')

        response = api(moderator).get(f'/api/contracts/{contract.pk}/disputes/')

        assert response.status_code == 200
        assert response.json()['count'] == 1


def test_create_moderator_group_command(client_user):
    call_command('create_moderator_group', email='client@example.com')

    group = Group.objects.get(name=MODERATORS_GROUP)
    assert client_user.groups.filter(pk=group.pk).exists()
    assert group.permissions.filter(codename='change_dispute').exists()
