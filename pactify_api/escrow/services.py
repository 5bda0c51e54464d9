import logging
from decimal import Decimal

from django.db import IntegrityError, transaction
from django.utils import timezone

from pactify_api.exceptions import NotFoundError, PaymentFailure, StateConflictError, VerificationDenied
from contracts.lifecycle import (
    RELEASE_ELIGIBLE_STATUSES, transition_contract, transition_milestone, validate_contract_access,
)
from contracts.models import Contract, ContractStatus, MilestoneStatus
from kyc.gate import evaluate_release_gate, DENIAL_MESSAGE
from notifications.models import Notification
from notifications.services import notify
from payments.models import ConnectedAccount
from payments.providers import PaymentProviderError
from payments.services import PaymentService
from .fees import calculate_fees, to_minor_units
from .models import EscrowLedgerEntry

logger = logging.getLogger(__name__)

Entry = EscrowLedgerEntry.Status


class EscrowService:
    """
    Orchestrates escrow funding, release and refund against the payment processor.

    Ledger entries only change status through conditional updates guarded on the
    status this service expects; processor failures leave the previous state intact.
    """
    def __init__(self, payment_service=None):
        self.payment_service = payment_service or PaymentService()

    @property
    def provider(self):
        return self.payment_service.provider

    def fund_escrow(self, contract_id, user, success_url=None, cancel_url=None):
        """
        Open a checkout session for the contract amount plus fees and record a pending entry.

        Only the client may fund, only once, and only after both parties signed.
        """
        contract = validate_contract_access(contract_id, user, required_role='client')

        if contract.is_funded:
            raise StateConflictError("Contract is already funded", code='CONTRACT_ALREADY_FUNDED')
        if contract.status != ContractStatus.PENDING_FUNDING:
            raise StateConflictError(
                f"Contract must be signed by both parties before funding (status: {contract.status})",
                code='INVALID_STATUS',
            )
        if contract.total_amount <= 0:
            raise StateConflictError("Contract amount must be greater than zero", code='INVALID_AMOUNT')

        in_progress = EscrowLedgerEntry.objects.filter(contract=contract, status=Entry.PENDING).first()
        if in_progress is not None:
            raise StateConflictError(
                "A funding session is already in progress for this contract",
                code='FUNDING_IN_PROGRESS',
                details={'session_id': in_progress.funding_session_ref},
            )

        fees = calculate_fees(contract.total_amount, user.subscription_tier)
        metadata = {
            'contract_id': str(contract.pk),
            'contract_number': contract.contract_number,
            'contract_amount': str(fees.contract_amount),
            'platform_fee': str(fees.platform_fee),
            'stripe_fee': str(fees.processor_fee),
            'total_charge': str(fees.total_charge),
            'type': 'escrow_funding',
        }
        line_items = [
            {
                'name': f"Contract: {contract.title}",
                'description': f"Escrow payment for contract {contract.contract_number}",
                'amount_minor': to_minor_units(fees.contract_amount),
            },
            {
                'name': f"Platform fee ({fees.platform_fee_percentage}%)",
                'description': f"{user.subscription_tier.title()} plan platform fee",
                'amount_minor': to_minor_units(fees.platform_fee),
            },
            {
                'name': "Payment processing fee",
                'description': "Card processing fee (2.9% + $0.30)",
                'amount_minor': to_minor_units(fees.processor_fee),
            },
        ]

        try:
            session = self.provider.create_funding_session(
                amount_minor=to_minor_units(fees.total_charge),
                currency=contract.currency,
                line_items=line_items,
                metadata=metadata,
                customer_email=user.email,
                success_url=success_url,
                cancel_url=cancel_url,
            )
        except PaymentProviderError as e:
            logger.error("Funding session for contract %s failed: %s", contract.pk, e.message)
            raise PaymentFailure(e.message, details={'provider_code': e.code})

        try:
            with transaction.atomic():
                entry = EscrowLedgerEntry.objects.create(
                    contract=contract,
                    payer=user,
                    payee=contract.freelancer,
                    amount=contract.total_amount,
                    currency=contract.currency,
                    platform_fee=fees.platform_fee,
                    processor_fee=fees.processor_fee,
                    total_charged=fees.total_charge,
                    status=Entry.PENDING,
                    funding_session_ref=session['session_id'],
                )
                Contract.objects.filter(pk=contract.pk).update(
                    platform_fee_amount=fees.platform_fee,
                    processor_fee_amount=fees.processor_fee,
                    total_charged_amount=fees.total_charge,
                    updated_at=timezone.now(),
                )
        except IntegrityError:
            logger.warning("Concurrent funding for contract %s; expiring session %s",
                           contract.pk, session['session_id'])
            try:
                self.provider.expire_funding_session(session['session_id'])
            except PaymentProviderError as e:
                logger.error("Unused funding session %s for contract %s could not be expired: %s",
                             session['session_id'], contract.pk, e.message)
                raise PaymentFailure(e.message, details={'provider_code': e.code,
                                                         'session_id': session['session_id']})
            raise StateConflictError(
                "A funding session is already in progress for this contract",
                code='FUNDING_IN_PROGRESS',
            )

        logger.info("Escrow funding session %s opened for contract %s (total %s)",
                    session['session_id'], contract.pk, fees.total_charge)
        return {
            'session_id': session['session_id'],
            'checkout_url': session.get('url'),
            'ledger_entry_id': str(entry.pk),
            'fee_breakdown': {
                'contract_amount': str(fees.contract_amount),
                'platform_fee_percentage': str(fees.platform_fee_percentage),
                'platform_fee': str(fees.platform_fee),
                'processor_fee': str(fees.processor_fee),
                'total_charge': str(fees.total_charge),
                'total_charge_minor': to_minor_units(fees.total_charge),
            },
        }

    def confirm_funding(self, session_ref, contract=None):
        """
        Mark the pending entry for ``session_ref`` as held once the processor reports it paid,
        then flag the contract funded and activate it. Repeated calls return the current entry.
        """
        entries = EscrowLedgerEntry.objects.select_related('contract', 'contract__freelancer')
        if contract is not None:
            entries = entries.filter(contract=contract)
        entry = entries.filter(funding_session_ref=session_ref).first()
        if entry is None:
            raise NotFoundError("Funding session not found", code='FUNDING_NOT_FOUND')

        if entry.status != Entry.PENDING:
            return entry

        try:
            session = self.provider.get_funding_session(session_ref)
        except PaymentProviderError as e:
            logger.error("Could not verify funding session %s: %s", session_ref, e.message)
            raise PaymentFailure(e.message, details={'provider_code': e.code})

        if not session['paid']:
            raise StateConflictError("Payment has not been completed", code='PAYMENT_NOT_COMPLETED')

        now = timezone.now()
        contract = entry.contract
        with transaction.atomic():
            claimed = EscrowLedgerEntry.objects.filter(pk=entry.pk, status=Entry.PENDING).update(
                status=Entry.HELD,
                held_at=now,
                payment_reference=session['payment_reference'],
                updated_at=now,
            )
            if not claimed:
                entry.refresh_from_db()
                return entry

            Contract.objects.filter(pk=contract.pk, is_funded=False).update(
                is_funded=True, funded_at=now, updated_at=now
            )
            contract.refresh_from_db()
            if contract.status == ContractStatus.PENDING_FUNDING:
                transition_contract(contract, ContractStatus.ACTIVE)

        entry.refresh_from_db()
        logger.info("Escrow entry %s held for contract %s", entry.pk, contract.pk)

        if contract.status == ContractStatus.CANCELLED:
            logger.error("Contract %s was cancelled before funding %s completed; refunding", contract.pk, entry.pk)
            self._refund_entry(entry, "Contract cancelled before funding completed")
            return entry

        notify(
            contract.freelancer,
            Notification.NotificationType.ESCROW_FUNDED,
            "Escrow funded",
            f'{contract.currency} {entry.amount} is held in escrow for "{contract.title}". You can start work.',
            contract=contract,
            metadata={'ledger_entry_id': str(entry.pk)},
        )
        return entry

    def discard_expired_session(self, session_ref):
        """Drop the pending entry of a checkout session that expired unpaid."""
        deleted, _ = EscrowLedgerEntry.objects.filter(
            funding_session_ref=session_ref, status=Entry.PENDING
        ).delete()
        if deleted:
            logger.info("Discarded pending escrow entry for expired session %s", session_ref)
        return deleted

    def _select_release_entry(self, contract, milestone):
        held = EscrowLedgerEntry.objects.filter(contract=contract, status=Entry.HELD).order_by('created_at')
        entry = None
        if milestone is not None:
            entry = held.filter(milestone=milestone).first() or held.filter(milestone__isnull=True).first()
        else:
            entry = held.first()
        if entry is None:
            raise StateConflictError("No held entries found", code='NO_HELD_ENTRIES')
        return entry

    def release_escrow(self, contract_id, user, milestone_id=None, amount=None, reason=''):
        """
        Transfer held funds to the freelancer's connected account.

        The target entry is claimed (held -> released) before the transfer is requested, so a
        second request for the same entry finds nothing to release. A failed transfer puts the
        claim back. Releasing less than the entry amount books the rest as a new held entry.
        """
        contract = validate_contract_access(contract_id, user, required_role='client')

        if not contract.is_funded:
            raise StateConflictError("Contract is not funded", code='CONTRACT_NOT_FUNDED')
        if contract.status not in RELEASE_ELIGIBLE_STATUSES:
            raise StateConflictError(
                f"Payments cannot be released while the contract is {contract.status}",
                code='INVALID_STATUS',
            )

        milestone = None
        if milestone_id is not None:
            milestone = contract.milestones.filter(pk=milestone_id).first()
            if milestone is None:
                raise NotFoundError("Milestone not found", code='MILESTONE_NOT_FOUND')
            if milestone.status != MilestoneStatus.APPROVED:
                raise StateConflictError("Milestone must be approved before its payment is released",
                                         code='MILESTONE_NOT_APPROVED')

        account = ConnectedAccount.objects.filter(user_id=contract.freelancer_id).first()
        if account is None:
            raise StateConflictError("Freelancer has not set up a payout account", code='PAYOUT_ACCOUNT_MISSING')

        entry = self._select_release_entry(contract, milestone)

        if amount is None:
            if milestone is not None and entry.milestone_id is None:
                amount = min(milestone.amount, entry.amount)
            else:
                amount = entry.amount
        amount = Decimal(amount)
        if amount <= 0 or amount > entry.amount:
            raise StateConflictError(
                f"Release amount must be between 0 and {entry.amount}",
                code='INVALID_RELEASE_AMOUNT',
                details={'available': str(entry.amount)},
            )

        decision = evaluate_release_gate(account, self.provider)
        if not decision.allowed:
            raise VerificationDenied(DENIAL_MESSAGE, details=decision.denial)

        now = timezone.now()
        claimed = EscrowLedgerEntry.objects.filter(pk=entry.pk, status=Entry.HELD).update(
            status=Entry.RELEASED, released_at=now, release_reason=reason or '', updated_at=now
        )
        if not claimed:
            raise StateConflictError("No held entries found", code='NO_HELD_ENTRIES')

        amount_minor = to_minor_units(amount)
        try:
            transfer_ref = self.provider.transfer_funds(
                amount_minor=amount_minor,
                currency=entry.currency,
                destination=account.external_account_id,
                transfer_group=f"contract_{contract.pk}",
                metadata={
                    'contract_id': str(contract.pk),
                    'ledger_entry_id': str(entry.pk),
                    'milestone_id': str(milestone.pk) if milestone else '',
                    'release_reason': reason or '',
                },
                idempotency_key=f"release-{entry.pk}-{amount_minor}",
            )
        except PaymentProviderError as e:
            EscrowLedgerEntry.objects.filter(pk=entry.pk, status=Entry.RELEASED, transfer_reference='').update(
                status=Entry.HELD, released_at=None, release_reason='', updated_at=timezone.now()
            )
            logger.error("Release of entry %s for contract %s failed, claim reverted: %s",
                         entry.pk, contract.pk, e.message)
            raise PaymentFailure(e.message, details={'provider_code': e.code})

        remainder = None
        with transaction.atomic():
            EscrowLedgerEntry.objects.filter(pk=entry.pk).update(
                transfer_reference=transfer_ref,
                amount=amount,
                milestone=milestone or entry.milestone,
                updated_at=timezone.now(),
            )
            if amount < entry.amount:
                remainder = EscrowLedgerEntry.objects.create(
                    contract=contract,
                    milestone=entry.milestone,
                    parent=entry,
                    payer=entry.payer,
                    payee=entry.payee,
                    amount=entry.amount - amount,
                    currency=entry.currency,
                    status=Entry.HELD,
                    payment_reference=entry.payment_reference,
                    held_at=entry.held_at,
                )

        logger.info("Released %s %s from entry %s of contract %s (transfer %s)",
                    amount, entry.currency, entry.pk, contract.pk, transfer_ref)

        if milestone is not None:
            try:
                transition_milestone(milestone, MilestoneStatus.COMPLETED)
            except StateConflictError:
                logger.warning("Milestone %s changed status during release of entry %s", milestone.pk, entry.pk)

        notify(
            contract.freelancer,
            Notification.NotificationType.PAYMENT_RELEASED,
            "Payment released",
            f'{entry.currency} {amount} was released to your payout account for "{contract.title}".',
            contract=contract,
            metadata={'amount': str(amount), 'transfer_id': transfer_ref, 'ledger_entry_id': str(entry.pk)},
        )

        completed = False
        if not EscrowLedgerEntry.objects.filter(contract=contract, status=Entry.HELD).exists():
            contract.refresh_from_db()
            try:
                transition_contract(contract, ContractStatus.COMPLETED, completed_at=timezone.now())
                completed = True
            except StateConflictError:
                logger.warning("Contract %s fully released but could not complete from %s",
                               contract.pk, contract.status)

        return {
            'transfer_id': transfer_ref,
            'released_amount': str(amount),
            'ledger_entry_id': str(entry.pk),
            'remaining_entry_id': str(remainder.pk) if remainder else None,
            'remaining_amount': str(remainder.amount) if remainder else '0.00',
            'contract_status': contract.status,
            'contract_completed': completed,
        }

    def _refund_entry(self, entry, reason):
        now = timezone.now()
        claimed = EscrowLedgerEntry.objects.filter(pk=entry.pk, status=Entry.HELD).update(
            status=Entry.REFUNDED, refunded_at=now, updated_at=now
        )
        if not claimed:
            return None

        try:
            refund_ref = self.provider.refund(entry.payment_reference, to_minor_units(entry.amount), reason)
        except PaymentProviderError as e:
            EscrowLedgerEntry.objects.filter(pk=entry.pk, status=Entry.REFUNDED, refund_reference='').update(
                status=Entry.HELD, refunded_at=None, updated_at=timezone.now()
            )
            logger.error("Refund of entry %s failed, claim reverted: %s", entry.pk, e.message)
            raise PaymentFailure(e.message, details={'provider_code': e.code})

        EscrowLedgerEntry.objects.filter(pk=entry.pk).update(refund_reference=refund_ref)
        logger.info("Refunded entry %s (%s %s), refund %s", entry.pk, entry.amount, entry.currency, refund_ref)
        return refund_ref

    def refund_held_entries(self, contract, reason):
        """
        Refund every held entry of ``contract`` to the client. Returns the total refunded.
        """
        total = Decimal('0')
        for entry in EscrowLedgerEntry.objects.filter(contract=contract, status=Entry.HELD).order_by('created_at'):
            if self._refund_entry(entry, reason) is not None:
                total += entry.amount

        if total:
            notify(
                contract.client,
                Notification.NotificationType.PAYMENT_REFUNDED,
                "Escrow refunded",
                f'{contract.currency} {total} held for "{contract.title}" was refunded to you.',
                contract=contract,
                metadata={'amount': str(total), 'reason': reason},
            )
        return total
