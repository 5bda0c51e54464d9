import logging
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.db import transaction
from django.db.models import Sum
from django.utils import timezone

from pactify_api.exceptions import PaymentFailure, StateConflictError, VerificationDenied
from escrow.fees import quantize_money, to_minor_units
from escrow.models import EscrowLedgerEntry
from kyc.eligibility import check_withdrawal_eligibility
from kyc.gate import evaluate_release_gate, DENIAL_MESSAGE
from notifications.models import Notification
from notifications.services import notify
from payments.models import ConnectedAccount
from payments.providers import PaymentProviderError
from payments.services import PaymentService
from .models import Withdrawal

logger = logging.getLogger(__name__)

User = get_user_model()


def available_balance(user, currency='USD'):
    """Released escrow received by ``user`` minus every withdrawal that has not failed."""
    released = EscrowLedgerEntry.objects.filter(
        payee=user, currency=currency, status=EscrowLedgerEntry.Status.RELEASED
    ).aggregate(total=Sum('amount'))['total'] or Decimal('0')
    withdrawn = Withdrawal.objects.filter(user=user, currency=currency).exclude(
        status=Withdrawal.Status.FAILED
    ).aggregate(total=Sum('amount'))['total'] or Decimal('0')
    return quantize_money(released - withdrawn)


def request_withdrawal(user, amount, currency='USD', payment_service=None):
    """
    Queue a withdrawal after the verification and balance checks, then ask the
    processor for the payout. The row ends up ``processing`` with the payout
    reference, or ``failed`` with the processor's reason.
    """
    amount = Decimal(amount)
    eligibility = check_withdrawal_eligibility(user, amount, currency)
    if not eligibility['eligible']:
        raise VerificationDenied(
            "Your verification level does not allow this withdrawal",
            code='VERIFICATION_REQUIRED',
            details=eligibility,
        )

    account = ConnectedAccount.objects.filter(user=user).first()
    if account is None:
        raise StateConflictError("Set up a payout account first", code='PAYOUT_ACCOUNT_MISSING')

    payment_service = payment_service or PaymentService(account.provider)
    decision = evaluate_release_gate(account, payment_service.provider)
    if not decision.allowed:
        raise VerificationDenied(DENIAL_MESSAGE, details=decision.denial)

    with transaction.atomic():
        # serialises withdrawals of the same user so the balance cannot be spent twice
        User.objects.select_for_update().filter(pk=user.pk).first()
        balance = available_balance(user, currency)
        if amount > balance:
            raise StateConflictError(
                "Insufficient available balance",
                code='INSUFFICIENT_BALANCE',
                details={'available': str(balance), 'requested': str(amount)},
            )
        withdrawal = Withdrawal.objects.create(
            user=user,
            amount=amount,
            currency=currency,
            required_verification=eligibility['required_verification'],
        )

    try:
        payout_ref = payment_service.provider.create_payout(
            amount_minor=to_minor_units(amount),
            currency=currency,
            account_ref=account.external_account_id,
            metadata={'withdrawal_id': str(withdrawal.pk), 'trace_id': str(withdrawal.trace_id)},
        )
    except PaymentProviderError as e:
        logger.error("Payout for withdrawal %s failed: %s", withdrawal.pk, e.message)
        Withdrawal.objects.filter(pk=withdrawal.pk, status=Withdrawal.Status.QUEUED).update(
            status=Withdrawal.Status.FAILED, failure_reason=e.message[:500], updated_at=timezone.now()
        )
        raise PaymentFailure(e.message, details={'provider_code': e.code, 'withdrawal_id': withdrawal.pk})

    Withdrawal.objects.filter(pk=withdrawal.pk, status=Withdrawal.Status.QUEUED).update(
        status=Withdrawal.Status.PROCESSING, payout_reference=payout_ref, updated_at=timezone.now()
    )
    withdrawal.refresh_from_db()
    logger.info("Withdrawal %s processing as payout %s", withdrawal.pk, payout_ref)
    return withdrawal


def settle_payout(payout_ref, paid, failure_reason=''):
    """Apply a processor payout outcome to the matching processing withdrawal."""
    withdrawal = Withdrawal.objects.select_related('user').filter(payout_reference=payout_ref).first()
    if withdrawal is None:
        logger.warning("No withdrawal for payout %s", payout_ref)
        return None

    now = timezone.now()
    if paid:
        changed = Withdrawal.objects.filter(pk=withdrawal.pk, status=Withdrawal.Status.PROCESSING).update(
            status=Withdrawal.Status.PAID, completed_at=now, updated_at=now
        )
    else:
        changed = Withdrawal.objects.filter(pk=withdrawal.pk, status=Withdrawal.Status.PROCESSING).update(
            status=Withdrawal.Status.FAILED, failure_reason=failure_reason or "Payout failed", updated_at=now
        )
    withdrawal.refresh_from_db()

    if changed:
        if paid:
            message = f"Your withdrawal of {withdrawal.currency} {withdrawal.amount} has been paid out."
        else:
            message = (f"Your withdrawal of {withdrawal.currency} {withdrawal.amount} failed. "
                       "The amount is available again.")
        notify(
            withdrawal.user,
            Notification.NotificationType.WITHDRAWAL_UPDATE,
            "Withdrawal update",
            message,
            metadata={'withdrawal_id': withdrawal.pk, 'status': withdrawal.status},
        )
    return withdrawal
