"""
Release gate: decides, from the processor's live view of a freelancer's connected
account, whether escrowed funds may be transferred to it.
"""
import logging
from collections import namedtuple

from django.db.models import Case, Value, When
from django.utils import timezone

from pactify_api.exceptions import PaymentFailure
from accounts.models import CustomUser
from payments.models import ConnectedAccount
from payments.providers import PaymentProviderError
from payments.services import PaymentService

logger = logging.getLogger(__name__)

GateDecision = namedtuple('GateDecision', ['allowed', 'status', 'denial'])

DENIAL_MESSAGE = 'Freelancer account is not fully verified for payouts'


def evaluate_release_gate(account, provider=None):
    """
    Check ``account`` live with the processor and refresh its local snapshot.

    Allows iff transfers are active and payouts are enabled. The cached flags on
    ``account`` never take part in the decision.
    """
    provider = provider or PaymentService(account.provider).provider
    try:
        status = provider.get_connected_account_status(account.external_account_id)
    except PaymentProviderError as e:
        logger.error("Release gate could not read account %s: %s", account.external_account_id, e.message)
        raise PaymentFailure(e.message, details={'provider_code': e.code})

    now = timezone.now()
    ConnectedAccount.objects.filter(pk=account.pk).update(
        transfers_active=status['transfers_active'],
        payouts_enabled=status['payouts_enabled'],
        charges_enabled=status['charges_enabled'],
        details_submitted=status['details_submitted'],
        requirements_currently_due=status['requirements_currently_due'],
        requirements_past_due=status['requirements_past_due'],
        requirements_eventually_due=status['requirements_eventually_due'],
        disabled_reason=status['disabled_reason'] or '',
        last_synced_at=now,
        updated_at=now,
    )
    record_verification(account, status)

    if status['transfers_active'] and status['payouts_enabled']:
        return GateDecision(allowed=True, status=status, denial=None)

    logger.info("Release gate denied for account %s: due=%s past_due=%s disabled=%s",
                account.external_account_id, status['requirements_currently_due'],
                status['requirements_past_due'], status['disabled_reason'])
    denial = {
        'missing': status['requirements_currently_due'],
        'past_due': status['requirements_past_due'],
        'disabled_reason': status['disabled_reason'] or None,
        'verification_status': {
            'transfers_active': status['transfers_active'],
            'payouts_enabled': status['payouts_enabled'],
            'requirements_currently_due': status['requirements_currently_due'],
            'requirements_past_due': status['requirements_past_due'],
            'requirements_disabled_reason': status['disabled_reason'] or None,
        },
    }
    return GateDecision(allowed=False, status=status, denial=denial)


def record_verification(account, status):
    """
    Carry the processor's identity verification over to the account owner.

    A connected account with its details submitted, payouts enabled and nothing
    currently due approves the owner at the enhanced level, keeping a business level
    granted by manual review. Submitted details with requirements still open mark a
    not yet started verification as pending. Returns the number of users updated.
    """
    now = timezone.now()
    owner = CustomUser.objects.filter(pk=account.user_id)

    if status['details_submitted'] and status['payouts_enabled'] and not status['requirements_currently_due']:
        updated = owner.exclude(
            kyc_status=CustomUser.KycStatus.APPROVED,
            enhanced_kyc_status=CustomUser.EnhancedKycStatus.VERIFIED,
            verification_level__in=[CustomUser.VerificationLevel.ENHANCED, CustomUser.VerificationLevel.BUSINESS],
        ).update(
            kyc_status=CustomUser.KycStatus.APPROVED,
            enhanced_kyc_status=CustomUser.EnhancedKycStatus.VERIFIED,
            verification_level=Case(
                When(verification_level=CustomUser.VerificationLevel.BUSINESS,
                     then=Value(CustomUser.VerificationLevel.BUSINESS)),
                default=Value(CustomUser.VerificationLevel.ENHANCED),
            ),
            kyc_verified_at=now,
            updated_at=now,
        )
        if updated:
            logger.info("User %s verified through account %s", account.user_id, account.external_account_id)
        return updated

    if status['details_submitted']:
        return owner.filter(kyc_status=CustomUser.KycStatus.NOT_STARTED).update(
            kyc_status=CustomUser.KycStatus.PENDING,
            enhanced_kyc_status=CustomUser.EnhancedKycStatus.PENDING,
            updated_at=now,
        )
    return 0
