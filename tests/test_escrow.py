"""Escrow funding, release and refunds against the fake processor."""
from decimal import Decimal

import pytest

from pactify_api.exceptions import AuthorizationError, PaymentFailure, StateConflictError, VerificationDenied
from contracts.models import Contract, ContractStatus
from escrow.models import EscrowLedgerEntry
from escrow.services import EscrowService
from payments.models import ConnectedAccount

pytestmark = pytest.mark.django_db

Entry = EscrowLedgerEntry.Status


class TestFunding:
    def test_opens_session_for_amount_plus_fees(self, signed_contract, client_user, provider):
        contract = signed_contract()

        result = EscrowService().fund_escrow(contract.pk, client_user)

        [call] = provider.calls_to('create_funding_session')
        assert call['amount_minor'] == 113220
        assert [item['amount_minor'] for item in call['line_items']] == [100000, 10000, 3220]
        assert call['metadata']['type'] == 'escrow_funding'
        assert Decimal(result['fee_breakdown']['total_charge']) == Decimal('1132.20')

        entry = EscrowLedgerEntry.objects.get(pk=result['ledger_entry_id'])
        assert entry.status == Entry.PENDING
        assert entry.amount == Decimal('1000.00')
        assert entry.payee_id == contract.freelancer_id
        contract.refresh_from_db()
        assert not contract.is_funded
        assert contract.total_charged_amount == Decimal('1132.20')

    def test_second_session_is_refused_without_processor_call(self, signed_contract, client_user, provider):
        contract = signed_contract()
        service = EscrowService()
        service.fund_escrow(contract.pk, client_user)

        with pytest.raises(StateConflictError) as excinfo:
            service.fund_escrow(contract.pk, client_user)

        assert excinfo.value.code == 'FUNDING_IN_PROGRESS'
        assert len(provider.calls_to('create_funding_session')) == 1

    def test_funded_contract_cannot_be_funded_again(self, funded_contract, client_user, provider):
        contract = funded_contract()

        with pytest.raises(StateConflictError) as excinfo:
            EscrowService().fund_escrow(contract.pk, client_user)

        assert excinfo.value.code == 'CONTRACT_ALREADY_FUNDED'
        assert len(provider.calls_to('create_funding_session')) == 1

    def test_only_client_funds(self, signed_contract, freelancer, provider):
        contract = signed_contract()
        with pytest.raises(AuthorizationError) as excinfo:
            EscrowService().fund_escrow(contract.pk, freelancer)
        assert excinfo.value.code == 'INVALID_ROLE_CLIENT'
        assert provider.calls == []

    def test_unsigned_contract_cannot_be_funded(self, make_contract, client_user, provider):
        contract = make_contract()
        with pytest.raises(StateConflictError) as excinfo:
            EscrowService().fund_escrow(contract.pk, client_user)
        assert excinfo.value.code == 'INVALID_STATUS'
        assert provider.calls == []

    def test_processor_failure_leaves_no_entry(self, signed_contract, client_user, provider):
        contract = signed_contract()
        provider.failing.add('create_funding_session')

        with pytest.raises(PaymentFailure):
            EscrowService().fund_escrow(contract.pk, client_user)

        assert not EscrowLedgerEntry.objects.filter(contract=contract).exists()

    def race_with_competing_session(self, provider, contract, client_user):
        """Make another request record its pending entry while this one is at the processor."""
        open_session = provider.create_funding_session

        def create_after_competitor(**kwargs):
            EscrowLedgerEntry.objects.create(
                contract=contract, payer=client_user, payee=contract.freelancer, amount=contract.total_amount,
                status=Entry.PENDING, funding_session_ref='cs_winner',
            )
            return open_session(**kwargs)

        provider.create_funding_session = create_after_competitor

    def test_losing_session_is_expired(self, signed_contract, client_user, provider):
        contract = signed_contract()
        self.race_with_competing_session(provider, contract, client_user)

        with pytest.raises(StateConflictError) as excinfo:
            EscrowService().fund_escrow(contract.pk, client_user)

        assert excinfo.value.code == 'FUNDING_IN_PROGRESS'
        assert len(provider.calls_to('create_funding_session')) == 1
        assert provider.calls_to('expire_funding_session') == [{'session_ref': 'cs_test_1'}]
        entry = EscrowLedgerEntry.objects.get(contract=contract)
        assert entry.funding_session_ref == 'cs_winner'

    def test_losing_session_that_cannot_be_expired_is_reported(self, signed_contract, client_user, provider):
        contract = signed_contract()
        self.race_with_competing_session(provider, contract, client_user)
        provider.failing.add('expire_funding_session')

        with pytest.raises(PaymentFailure) as excinfo:
            EscrowService().fund_escrow(contract.pk, client_user)

        assert excinfo.value.details['session_id'] == 'cs_test_1'


class TestConfirmFunding:
    def test_unpaid_session_stays_pending(self, signed_contract, client_user, provider):
        contract = signed_contract()
        service = EscrowService()
        session = service.fund_escrow(contract.pk, client_user)
        provider.session_paid = False

        with pytest.raises(StateConflictError) as excinfo:
            service.confirm_funding(session['session_id'])

        assert excinfo.value.code == 'PAYMENT_NOT_COMPLETED'
        assert EscrowLedgerEntry.objects.get(contract=contract).status == Entry.PENDING

    def test_paid_session_holds_funds_and_activates(self, signed_contract, client_user, freelancer, provider):
        contract = signed_contract()
        service = EscrowService()
        session = service.fund_escrow(contract.pk, client_user)

        entry = service.confirm_funding(session['session_id'])

        assert entry.status == Entry.HELD
        assert entry.payment_reference == f"pi_{session['session_id']}"
        contract.refresh_from_db()
        assert contract.is_funded
        assert contract.status == ContractStatus.ACTIVE
        assert freelancer.notifications.filter(notification_type='escrow_funded').exists()

    def test_confirming_twice_is_harmless(self, signed_contract, client_user, provider):
        contract = signed_contract()
        service = EscrowService()
        session = service.fund_escrow(contract.pk, client_user)
        service.confirm_funding(session['session_id'])

        entry = service.confirm_funding(session['session_id'])

        assert entry.status == Entry.HELD
        assert len(provider.calls_to('get_funding_session')) == 1

    def test_expired_session_is_discarded(self, signed_contract, client_user, provider):
        contract = signed_contract()
        service = EscrowService()
        session = service.fund_escrow(contract.pk, client_user)

        assert service.discard_expired_session(session['session_id']) == 1
        assert not EscrowLedgerEntry.objects.filter(contract=contract).exists()
        # a new session can be opened afterwards
        service.fund_escrow(contract.pk, client_user)

    def test_contract_cancelled_before_confirmation_is_refunded(self, signed_contract, client_user, provider):
        contract = signed_contract()
        service = EscrowService()
        session = service.fund_escrow(contract.pk, client_user)
        Contract.objects.filter(pk=contract.pk).update(status=ContractStatus.CANCELLED)

        entry = service.confirm_funding(session['session_id'])

        entry.refresh_from_db()
        assert entry.status == Entry.REFUNDED
        assert entry.refund_reference.startswith('re_test_')
        [refund] = provider.calls_to('refund')
        assert refund['amount_minor'] == 100000


class TestRelease:
    def test_full_release_completes_contract(self, funded_contract, client_user, payout_account, provider):
        contract = funded_contract()

        result = EscrowService().release_escrow(contract.pk, client_user, reason='All done')

        [transfer] = provider.calls_to('transfer_funds')
        assert transfer['amount_minor'] == 100000
        assert transfer['destination'] == 'acct_freelancer'
        assert transfer['transfer_group'] == f'contract_{contract.pk}'
        assert result['contract_completed'] is True
        assert result['remaining_entry_id'] is None

        contract.refresh_from_db()
        assert contract.status == ContractStatus.COMPLETED
        assert contract.completed_at > contract.created_at
        entry = EscrowLedgerEntry.objects.get(pk=result['ledger_entry_id'])
        assert entry.status == Entry.RELEASED
        assert entry.transfer_reference == result['transfer_id']

    def test_partial_release_keeps_remainder_held(self, funded_contract, client_user, payout_account, provider):
        contract = funded_contract()

        result = EscrowService().release_escrow(contract.pk, client_user, amount=Decimal('400'))

        released = EscrowLedgerEntry.objects.get(pk=result['ledger_entry_id'])
        remainder = EscrowLedgerEntry.objects.get(pk=result['remaining_entry_id'])
        assert (released.status, released.amount) == (Entry.RELEASED, Decimal('400.00'))
        assert (remainder.status, remainder.amount) == (Entry.HELD, Decimal('600.00'))
        assert remainder.parent_id == released.pk
        assert remainder.payment_reference == released.payment_reference
        contract.refresh_from_db()
        assert contract.status == ContractStatus.ACTIVE
        assert result['contract_completed'] is False

        final = EscrowService().release_escrow(contract.pk, client_user)

        assert final['released_amount'] == '600.00'
        contract.refresh_from_db()
        assert contract.status == ContractStatus.COMPLETED
        assert contract.completed_at > contract.created_at

    def test_released_entry_is_not_transferred_twice(self, funded_contract, client_user, payout_account, provider):
        contract = funded_contract()
        service = EscrowService()
        service.release_escrow(contract.pk, client_user)

        with pytest.raises(StateConflictError):
            service.release_escrow(contract.pk, client_user)

        # even if the contract is put back in a releasable state, nothing is held any more
        Contract.objects.filter(pk=contract.pk).update(status=ContractStatus.ACTIVE)
        with pytest.raises(StateConflictError) as excinfo:
            service.release_escrow(contract.pk, client_user)

        assert excinfo.value.code == 'NO_HELD_ENTRIES'
        assert len(provider.calls_to('transfer_funds')) == 1

    def test_kyc_denial_carries_outstanding_requirements(self, funded_contract, client_user, payout_account, provider):
        contract = funded_contract()
        provider.account_status.update(
            transfers_active=False,
            payouts_enabled=False,
            requirements_currently_due=['individual.verification.document', 'external_account'],
            requirements_past_due=['external_account'],
        )

        with pytest.raises(VerificationDenied) as excinfo:
            EscrowService().release_escrow(contract.pk, client_user)

        denial = excinfo.value.details
        assert denial['missing'] == ['individual.verification.document', 'external_account']
        assert denial['verification_status']['payouts_enabled'] is False
        assert denial['verification_status']['requirements_currently_due'] == [
            'individual.verification.document', 'external_account'
        ]
        assert provider.calls_to('transfer_funds') == []
        assert EscrowLedgerEntry.objects.get(contract=contract).status == Entry.HELD

        payout_account.refresh_from_db()
        assert payout_account.payouts_enabled is False
        assert payout_account.requirements_currently_due == ['individual.verification.document', 'external_account']
        assert payout_account.last_synced_at is not None

    def test_cached_flags_do_not_bypass_live_check(self, funded_contract, client_user, freelancer, provider):
        contract = funded_contract()
        ConnectedAccount.objects.create(
            user=freelancer, external_account_id='acct_freelancer', transfers_active=True, payouts_enabled=True
        )
        provider.account_status['payouts_enabled'] = False

        with pytest.raises(VerificationDenied):
            EscrowService().release_escrow(contract.pk, client_user)

    def test_missing_payout_account(self, funded_contract, client_user, provider):
        contract = funded_contract()
        with pytest.raises(StateConflictError) as excinfo:
            EscrowService().release_escrow(contract.pk, client_user)
        assert excinfo.value.code == 'PAYOUT_ACCOUNT_MISSING'

    def test_failed_transfer_puts_claim_back(self, funded_contract, client_user, payout_account, provider):
        contract = funded_contract()
        provider.failing.add('transfer_funds')

        with pytest.raises(PaymentFailure) as excinfo:
            EscrowService().release_escrow(contract.pk, client_user)

        assert excinfo.value.details == {'provider_code': 'declined'}
        entry = EscrowLedgerEntry.objects.get(contract=contract)
        assert entry.status == Entry.HELD
        assert entry.released_at is None
        contract.refresh_from_db()
        assert contract.status == ContractStatus.ACTIVE

    def test_amount_above_entry_is_rejected(self, funded_contract, client_user, payout_account, provider):
        contract = funded_contract()
        with pytest.raises(StateConflictError) as excinfo:
            EscrowService().release_escrow(contract.pk, client_user, amount=Decimal('1000.01'))
        assert excinfo.value.code == 'INVALID_RELEASE_AMOUNT'
        assert provider.calls_to('get_connected_account_status') == []

    def test_only_client_releases(self, funded_contract, freelancer, payout_account, provider):
        contract = funded_contract()
        with pytest.raises(AuthorizationError):
            EscrowService().release_escrow(contract.pk, freelancer)
        assert provider.calls_to('transfer_funds') == []

    def test_unapproved_milestone_cannot_be_paid(self, funded_contract, client_user, payout_account, provider):
        contract = funded_contract(total='1000.00', milestones=[
            {'title': 'Design', 'amount': Decimal('400.00')},
            {'title': 'Build', 'amount': Decimal('600.00')},
        ])
        milestone = contract.milestones.first()

        with pytest.raises(StateConflictError) as excinfo:
            EscrowService().release_escrow(contract.pk, client_user, milestone_id=milestone.pk)
        assert excinfo.value.code == 'MILESTONE_NOT_APPROVED'


class TestRefund:
    def test_refunds_every_held_entry(self, funded_contract, client_user, payout_account, provider):
        contract = funded_contract()
        service = EscrowService()
        service.release_escrow(contract.pk, client_user, amount=Decimal('250'))

        total = service.refund_held_entries(contract, 'Dispute settled')

        assert total == Decimal('750.00')
        [refund] = provider.calls_to('refund')
        assert refund['amount_minor'] == 75000
        assert client_user.notifications.filter(notification_type='payment_refunded').exists()

    def test_failed_refund_keeps_funds_held(self, funded_contract, provider):
        contract = funded_contract()
        provider.failing.add('refund')

        with pytest.raises(PaymentFailure):
            EscrowService().refund_held_entries(contract, 'Cancelled')

        assert EscrowLedgerEntry.objects.get(contract=contract).status == Entry.HELD
