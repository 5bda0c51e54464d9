import logging

from django.db import IntegrityError, transaction
from django.utils import timezone

from pactify_api.exceptions import AuthorizationError, PaymentFailure, StateConflictError
from contracts.lifecycle import WORKING_STATUSES, transition_contract
from contracts.models import ContractParty, ContractStatus
from escrow.services import EscrowService
from notifications.models import Notification
from notifications.services import notify
from .models import Dispute
from .permissions import is_moderator

logger = logging.getLogger(__name__)

PARTY_ROLES = (ContractParty.Role.CLIENT, ContractParty.Role.FREELANCER)


def open_dispute(contract, user, dispute_type, description):
    """
    Open a dispute on a funded contract in one of its working phases and move the
    contract to disputed. A contract has at most one open dispute.
    """
    if contract.role_of(user) not in PARTY_ROLES:
        raise AuthorizationError("Only the client or the freelancer can open a dispute",
                                 code='CONTRACT_ACCESS_DENIED')
    if contract.status not in WORKING_STATUSES:
        raise StateConflictError(
            f"A dispute cannot be opened while the contract is {contract.status}",
            code='INVALID_STATUS',
        )
    if contract.disputes.filter(status=Dispute.Status.OPEN).exists():
        raise StateConflictError("This contract already has an open dispute", code='DISPUTE_ALREADY_OPEN')

    try:
        with transaction.atomic():
            dispute = Dispute.objects.create(
                contract=contract,
                initiated_by=user,
                dispute_type=dispute_type,
                description=description,
                contract_status_at_open=contract.status,
            )
            transition_contract(contract, ContractStatus.DISPUTED)
    except IntegrityError:
        raise StateConflictError("This contract already has an open dispute", code='DISPUTE_ALREADY_OPEN')

    logger.info("Dispute %s opened on contract %s by user %s", dispute.pk, contract.pk, user.pk)
    other = contract.freelancer if user.pk == contract.client_id else contract.client
    notify(
        other,
        Notification.NotificationType.DISPUTE_OPENED,
        "Dispute opened",
        f'A {dispute.get_dispute_type_display().lower()} dispute was opened on "{contract.title}".',
        contract=contract,
        metadata={'dispute_id': dispute.pk},
    )
    return dispute


def can_resolve(dispute, user):
    """Moderators, or the party on the other side of the dispute."""
    if is_moderator(user):
        return True
    contract = dispute.contract
    return user.pk in (contract.client_id, contract.freelancer_id) and user.pk != dispute.initiated_by_id


def resolve_dispute(dispute, user, outcome, resolution='', escrow_service=None):
    """
    Close an open dispute. ``resume`` puts the contract back to active; ``refund``
    returns every held entry to the client and cancels the contract. A failed refund
    reopens the dispute.
    """
    if not can_resolve(dispute, user):
        raise AuthorizationError("Only a moderator or the other party can resolve this dispute",
                                 code='DISPUTE_RESOLUTION_DENIED')
    if dispute.status != Dispute.Status.OPEN:
        raise StateConflictError("Dispute is already resolved", code='DISPUTE_ALREADY_RESOLVED')

    now = timezone.now()
    claimed = Dispute.objects.filter(pk=dispute.pk, status=Dispute.Status.OPEN).update(
        status=Dispute.Status.RESOLVED,
        outcome=outcome,
        resolution=resolution,
        resolved_by=user,
        resolved_at=now,
        updated_at=now,
    )
    if not claimed:
        raise StateConflictError("Dispute is already resolved", code='DISPUTE_ALREADY_RESOLVED')

    contract = dispute.contract
    contract.refresh_from_db()
    refunded = None
    if outcome == Dispute.Outcome.REFUND:
        try:
            refunded = (escrow_service or EscrowService()).refund_held_entries(
                contract, f"Dispute {dispute.pk} resolved with refund"
            )
        except PaymentFailure:
            Dispute.objects.filter(pk=dispute.pk, status=Dispute.Status.RESOLVED).update(
                status=Dispute.Status.OPEN, outcome='', resolved_by=None, resolved_at=None,
                updated_at=timezone.now(),
            )
            logger.error("Refund for dispute %s failed, dispute reopened", dispute.pk)
            raise
        transition_contract(contract, ContractStatus.CANCELLED)
    else:
        transition_contract(contract, ContractStatus.ACTIVE)

    dispute.refresh_from_db()
    logger.info("Dispute %s resolved by user %s with outcome %s", dispute.pk, user.pk, outcome)

    for party in (contract.client, contract.freelancer):
        notify(
            party,
            Notification.NotificationType.DISPUTE_RESOLVED,
            "Dispute resolved",
            f'The dispute on "{contract.title}" was resolved: {dispute.get_outcome_display().lower()}.',
            contract=contract,
            metadata={'dispute_id': dispute.pk, 'outcome': outcome,
                      'refunded': str(refunded) if refunded is not None else None},
        )
    return dispute
