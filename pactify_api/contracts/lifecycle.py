"""
Contract and milestone state machines.

This module is the only writer of ``Contract.status`` and ``Milestone.status``.
Every status change is a conditional ``UPDATE`` guarded on the status the caller
observed, so two requests racing on the same row cannot both succeed.
"""
import logging
from decimal import Decimal

from django.db import transaction
from django.utils import timezone
from rest_framework.exceptions import ValidationError

from pactify_api.exceptions import AuthorizationError, NotFoundError, StateConflictError
from notifications.models import Notification
from notifications.services import notify
from .models import Contract, ContractParty, ContractStatus, Milestone, MilestoneStatus, Deliverable

logger = logging.getLogger(__name__)

S = ContractStatus
M = MilestoneStatus

CONTRACT_TRANSITIONS = {
    S.DRAFT: {S.PENDING_SIGNATURES, S.CANCELLED, S.DISPUTED},
    S.PENDING_SIGNATURES: {S.PENDING_FUNDING, S.DRAFT, S.CANCELLED, S.DISPUTED},
    S.PENDING_FUNDING: {S.ACTIVE, S.CANCELLED, S.DISPUTED},
    S.ACTIVE: {S.PENDING_DELIVERY, S.COMPLETED, S.CANCELLED, S.DISPUTED},
    S.PENDING_DELIVERY: {S.IN_REVIEW, S.ACTIVE, S.COMPLETED, S.CANCELLED, S.DISPUTED},
    S.IN_REVIEW: {S.REVISION_REQUESTED, S.PENDING_COMPLETION, S.COMPLETED, S.CANCELLED, S.DISPUTED},
    S.REVISION_REQUESTED: {S.ACTIVE, S.PENDING_COMPLETION, S.CANCELLED, S.DISPUTED},
    S.PENDING_COMPLETION: {S.COMPLETED, S.CANCELLED, S.DISPUTED},
    S.DISPUTED: {S.ACTIVE, S.CANCELLED},
    S.COMPLETED: set(),
    S.CANCELLED: set(),
}

MILESTONE_TRANSITIONS = {
    M.PENDING: {M.IN_PROGRESS},
    M.IN_PROGRESS: {M.SUBMITTED},
    M.SUBMITTED: {M.APPROVED, M.REVISION_REQUESTED},
    M.APPROVED: {M.COMPLETED},
    M.REVISION_REQUESTED: {M.IN_PROGRESS},
    M.COMPLETED: set(),
}

# Statuses in which escrowed funds may be released to the freelancer.
RELEASE_ELIGIBLE_STATUSES = frozenset({S.ACTIVE, S.PENDING_DELIVERY, S.IN_REVIEW, S.PENDING_COMPLETION})

# Funded working phases: milestones progress and disputes may be opened.
WORKING_STATUSES = frozenset(RELEASE_ELIGIBLE_STATUSES | {S.REVISION_REQUESTED})

# (from, to) -> role allowed to request the change by hand.
MANUAL_TRANSITIONS = {
    (S.ACTIVE, S.PENDING_DELIVERY): ContractParty.Role.FREELANCER,
    (S.REVISION_REQUESTED, S.ACTIVE): ContractParty.Role.FREELANCER,
    (S.PENDING_DELIVERY, S.IN_REVIEW): ContractParty.Role.CLIENT,
    (S.PENDING_DELIVERY, S.ACTIVE): ContractParty.Role.CLIENT,
    (S.IN_REVIEW, S.REVISION_REQUESTED): ContractParty.Role.CLIENT,
    (S.IN_REVIEW, S.PENDING_COMPLETION): ContractParty.Role.CLIENT,
    (S.REVISION_REQUESTED, S.PENDING_COMPLETION): ContractParty.Role.CLIENT,
    (S.PENDING_SIGNATURES, S.DRAFT): 'creator',
}

SIGNABLE_STATUSES = frozenset({S.DRAFT, S.PENDING_SIGNATURES})


def validate_contract_status_transition(from_status, to_status):
    if to_status not in CONTRACT_TRANSITIONS.get(from_status, ()):
        raise StateConflictError(
            f"Invalid status transition from {from_status} to {to_status}",
            code='INVALID_STATUS_TRANSITION',
            details={'from': from_status, 'to': to_status},
        )


def validate_milestone_status_transition(from_status, to_status):
    if to_status not in MILESTONE_TRANSITIONS.get(from_status, ()):
        raise StateConflictError(
            f"Invalid milestone status transition from {from_status} to {to_status}",
            code='INVALID_STATUS_TRANSITION',
            details={'from': from_status, 'to': to_status},
        )


def validate_contract_access(contract_id, user, required_role=None):
    """
    Load a contract the caller participates in.

    ``required_role`` is one of 'client', 'freelancer' or 'creator'. Raises
    CONTRACT_NOT_FOUND, CONTRACT_ACCESS_DENIED or INVALID_ROLE_<ROLE>.
    """
    try:
        contract = Contract.objects.select_related('client', 'freelancer', 'creator').get(pk=contract_id)
    except (Contract.DoesNotExist, ValueError, TypeError):
        raise NotFoundError("Contract not found", code='CONTRACT_NOT_FOUND')

    role = contract.role_of(user)
    if role is None:
        raise AuthorizationError("Access denied to contract", code='CONTRACT_ACCESS_DENIED')

    if required_role:
        if required_role == 'creator':
            allowed = contract.creator_id == user.pk
        else:
            allowed = role == required_role
        if not allowed:
            raise AuthorizationError(
                f"Only the {required_role} can perform this action",
                code=f"INVALID_ROLE_{str(required_role).upper()}",
            )

    return contract


def _conditional_update(model, instance, field_from, to_status, extra):
    values = {'status': to_status, **extra}
    if hasattr(instance, 'updated_at'):
        values['updated_at'] = timezone.now()
    updated = model.objects.filter(pk=instance.pk, status=field_from).update(**values)
    if not updated:
        raise StateConflictError(
            "Status was changed by another request",
            code='INVALID_STATUS_TRANSITION',
            details={'reason': 'STATUS_CHANGED_CONCURRENTLY', 'from': field_from, 'to': to_status},
        )
    for field, value in values.items():
        setattr(instance, field, value)
    return instance


def transition_contract(contract, to_status, **extra):
    """Move ``contract`` along one legal edge. ``extra`` fields are written in the same UPDATE."""
    from_status = contract.status
    validate_contract_status_transition(from_status, to_status)
    _conditional_update(Contract, contract, from_status, to_status, extra)
    logger.info("Contract %s: %s -> %s", contract.pk, from_status, to_status)
    return contract


def transition_milestone(milestone, to_status, **extra):
    from_status = milestone.status
    validate_milestone_status_transition(from_status, to_status)
    _conditional_update(Milestone, milestone, from_status, to_status, extra)
    logger.info("Milestone %s: %s -> %s", milestone.pk, from_status, to_status)
    return milestone


def validate_milestone_amounts(contract_type, total_amount, milestones):
    if total_amount is None or total_amount <= 0:
        raise ValidationError({'total_amount': "Contract amount must be greater than zero."})

    if contract_type != Contract.ContractType.MILESTONE:
        if milestones:
            raise ValidationError({'milestones': "Only milestone contracts can define milestones."})
        return

    if not milestones:
        raise ValidationError({'milestones': "Milestone contracts need at least one milestone."})

    milestone_total = sum((Decimal(m["amount"]) for m in milestones), Decimal("0"))
    if milestone_total != total_amount:
        raise ValidationError({
            'milestones': f"Milestone amounts ({milestone_total}) must add up to the contract total ({total_amount})."
        })


def create_contract(creator, data):
    """
    Create a draft contract between ``creator`` and the counterparty named by email.

    ``data`` carries title, description, total_amount, currency, type, creator_role,
    counterparty (the resolved user) and an optional milestones list.
    """
    milestones = data.get('milestones') or []
    validate_milestone_amounts(data.get('type'), data.get('total_amount'), milestones)

    counterparty = data['counterparty']
    if counterparty.pk == creator.pk:
        raise ValidationError({'counterparty_email': "You cannot create a contract with yourself."})

    if data['creator_role'] == ContractParty.Role.CLIENT:
        client, freelancer = creator, counterparty
    else:
        client, freelancer = counterparty, creator

    with transaction.atomic():
        contract = Contract.objects.create(
            creator=creator,
            client=client,
            freelancer=freelancer,
            title=data['title'],
            description=data.get('description', ''),
            total_amount=data['total_amount'],
            currency=(data.get('currency') or 'USD').upper(),
            type=data.get('type') or Contract.ContractType.FIXED,
        )
        ContractParty.objects.bulk_create([
            ContractParty(contract=contract, user=client, role=ContractParty.Role.CLIENT),
            ContractParty(contract=contract, user=freelancer, role=ContractParty.Role.FREELANCER),
        ])
        Milestone.objects.bulk_create([
            Milestone(
                contract=contract,
                title=m['title'],
                description=m.get('description', ''),
                amount=m['amount'],
                due_date=m.get('due_date'),
                order_index=m.get('order_index', index),
            )
            for index, m in enumerate(milestones)
        ])

    logger.info("Contract %s created by %s", contract.pk, creator.pk)
    return contract


def sign_contract(contract_id, user, signature_data):
    """
    Record the caller's signature and advance the contract.

    The first signature moves draft -> pending_signatures; the last one moves
    pending_signatures -> pending_funding. The party row flips pending -> signed in a
    conditional update, so concurrent signers never overwrite one another.
    """
    contract = validate_contract_access(contract_id, user)
    if contract.status not in SIGNABLE_STATUSES:
        raise StateConflictError("Contract is not awaiting signatures", code='INVALID_STATUS')

    party = contract.parties.filter(user=user).first()
    if party is None:
        raise AuthorizationError("Only the client or the freelancer can sign this contract",
                                 code='NOT_A_SIGNING_PARTY')

    signed = ContractParty.objects.filter(pk=party.pk, status=ContractParty.Status.PENDING).update(
        status=ContractParty.Status.SIGNED,
        signature_data=signature_data,
        signature_date=timezone.now(),
    )
    if not signed:
        raise StateConflictError("You have already signed this contract", code='ALREADY_SIGNED')

    logger.info("Contract %s signed by %s as %s", contract.pk, user.pk, party.role)
    _advance_after_signature(contract, user)
    return contract


def _advance_after_signature(contract, signer):
    # A concurrent signer may win an edge; re-read and try the next one.
    for _ in range(3):
        contract.refresh_from_db(fields=['status', 'updated_at'])
        fully_signed = not contract.parties.exclude(status=ContractParty.Status.SIGNED).exists()

        if contract.status == S.DRAFT:
            target = S.PENDING_SIGNATURES
        elif contract.status == S.PENDING_SIGNATURES and fully_signed:
            target = S.PENDING_FUNDING
        else:
            break

        try:
            transition_contract(contract, target)
        except StateConflictError:
            continue

        if target == S.PENDING_FUNDING:
            notify(
                contract.client,
                Notification.NotificationType.READY_FOR_FUNDING,
                "Contract ready for funding",
                f'All parties signed "{contract.title}". Fund the escrow to start work.',
                contract=contract,
            )
            break

        other = contract.freelancer if signer.pk == contract.client_id else contract.client
        notify(
            other,
            Notification.NotificationType.CONTRACT_SIGNED,
            "Contract signed",
            f'{signer.get_full_name() or signer.email} signed "{contract.title}". Your signature is needed.',
            contract=contract,
        )


def request_transition(contract, user, to_status):
    """Apply a hand-requested status change after checking the caller's role for that edge."""
    role = contract.role_of(user)
    from_status = contract.status

    if to_status == S.CANCELLED:
        if role is None:
            raise AuthorizationError("Access denied to contract", code='CONTRACT_ACCESS_DENIED')
        # local import: escrow.models depends on this app
        from escrow.models import EscrowLedgerEntry
        if EscrowLedgerEntry.objects.filter(contract=contract, status=EscrowLedgerEntry.Status.HELD).exists():
            raise StateConflictError(
                "Contract has funds held in escrow; open a dispute to request a refund",
                code='FUNDS_HELD',
            )
        return transition_contract(contract, S.CANCELLED)

    required = MANUAL_TRANSITIONS.get((from_status, to_status))
    if required is None:
        validate_contract_status_transition(from_status, to_status)
        raise StateConflictError(
            f"Status {to_status} cannot be requested directly",
            code='INVALID_STATUS_TRANSITION',
            details={'from': from_status, 'to': to_status},
        )

    allowed = contract.creator_id == user.pk if required == 'creator' else role == required
    if not allowed:
        raise AuthorizationError(f"Only the {required} can perform this action",
                                 code=f"INVALID_ROLE_{required.upper()}")

    with transaction.atomic():
        transition_contract(contract, to_status)
        if to_status == S.DRAFT:
            # edits after reverting to draft invalidate earlier signatures
            contract.parties.update(status=ContractParty.Status.PENDING, signature_data='', signature_date=None)
    return contract


def _require_working_contract(contract):
    if not contract.is_funded or contract.status not in WORKING_STATUSES:
        raise StateConflictError("Contract is not in an active, funded phase", code='INVALID_STATUS')


def start_milestone(contract, milestone, user):
    if contract.role_of(user) != ContractParty.Role.FREELANCER:
        raise AuthorizationError("Only the freelancer can perform this action", code='INVALID_ROLE_FREELANCER')
    _require_working_contract(contract)
    return transition_milestone(milestone, M.IN_PROGRESS)


def approve_milestone(contract, milestone, user):
    if contract.role_of(user) != ContractParty.Role.CLIENT:
        raise AuthorizationError("Only the client can perform this action", code='INVALID_ROLE_CLIENT')
    _require_working_contract(contract)
    transition_milestone(milestone, M.APPROVED, approved_at=timezone.now())
    notify(
        contract.freelancer,
        Notification.NotificationType.MILESTONE_APPROVED,
        "Milestone approved",
        f'"{milestone.title}" was approved and is ready for payment release.',
        contract=contract,
        metadata={'milestone_id': milestone.pk},
    )
    return milestone


def request_milestone_revision(contract, milestone, user, notes=''):
    if contract.role_of(user) != ContractParty.Role.CLIENT:
        raise AuthorizationError("Only the client can perform this action", code='INVALID_ROLE_CLIENT')
    _require_working_contract(contract)
    transition_milestone(milestone, M.REVISION_REQUESTED, revision_notes=notes)
    notify(
        contract.freelancer,
        Notification.NotificationType.REVISION_REQUESTED,
        "Revision requested",
        f'The client requested changes to "{milestone.title}".',
        contract=contract,
        metadata={'milestone_id': milestone.pk, 'notes': notes},
    )
    return milestone


def submit_deliverable(contract, user, data):
    """
    Store a deliverable and, when it targets a milestone, move that milestone to submitted.

    Resubmitting under the same title creates the next version and retires the previous one.
    """
    if contract.role_of(user) != ContractParty.Role.FREELANCER:
        raise AuthorizationError("Only the freelancer can perform this action", code='INVALID_ROLE_FREELANCER')
    _require_working_contract(contract)

    milestone = data.get('milestone')
    if milestone is not None and milestone.contract_id != contract.pk:
        raise NotFoundError("Milestone not found", code='MILESTONE_NOT_FOUND')

    with transaction.atomic():
        if milestone is not None:
            if milestone.status in (M.PENDING, M.REVISION_REQUESTED):
                transition_milestone(milestone, M.IN_PROGRESS)
            transition_milestone(milestone, M.SUBMITTED, submitted_at=timezone.now())

        previous = Deliverable.objects.filter(contract=contract, title=data['title'], is_latest=True)
        last_version = previous.order_by('-version').values_list('version', flat=True).first() or 0
        previous.update(is_latest=False)

        deliverable = Deliverable.objects.create(
            contract=contract,
            milestone=milestone,
            submitted_by=user,
            deliverable_type=data['deliverable_type'],
            title=data['title'],
            description=data.get('description', ''),
            link_url=data.get('link_url', ''),
            text_content=data.get('text_content', ''),
            file_url=data.get('file_url', ''),
            version=last_version + 1,
        )

    notify(
        contract.client,
        Notification.NotificationType.DELIVERABLE_SUBMITTED,
        "Deliverable submitted",
        f'A new deliverable "{deliverable.title}" (v{deliverable.version}) was submitted for review.',
        contract=contract,
        metadata={'deliverable_id': deliverable.pk, 'milestone_id': milestone.pk if milestone else None},
    )
    return deliverable
