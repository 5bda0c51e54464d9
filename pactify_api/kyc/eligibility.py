"""
Amount-based verification requirements for withdrawals, funding and releases.

Thresholds are compared in minor units. A user's level only counts once their KYC
review is approved.
"""
from decimal import Decimal

from accounts.models import CustomUser
from escrow.fees import to_minor_units
from payments.models import ConnectedAccount

Level = CustomUser.VerificationLevel

LEVEL_RANK = {Level.NONE: 0, Level.BASIC: 1, Level.ENHANCED: 2, Level.BUSINESS: 3}

ACTION_WITHDRAWAL = 'withdrawal'
ACTION_CONTRACT_FUNDING = 'contract_funding'
ACTION_CONTRACT_CREATION = 'contract_creation'
ACTION_PAYMENT_RELEASE = 'payment_release'
ACTIONS = (ACTION_WITHDRAWAL, ACTION_CONTRACT_FUNDING, ACTION_CONTRACT_CREATION, ACTION_PAYMENT_RELEASE)

# (minimum minor units, level), checked from the top
THRESHOLDS = {
    ACTION_WITHDRAWAL: [(1_000_000, Level.BUSINESS), (10_000, Level.ENHANCED), (0, Level.BASIC)],
    ACTION_CONTRACT_FUNDING: [(2_500_000, Level.BUSINESS), (100_000, Level.ENHANCED), (10_000, Level.BASIC), (0, Level.NONE)],
    'default': [(2_500_000, Level.BUSINESS), (500_000, Level.ENHANCED), (50_000, Level.BASIC), (0, Level.NONE)],
}

ENHANCED_KYC_AMOUNT = Decimal('2500')

VERIFICATION_LEVELS = {
    Level.BASIC: {
        'name': "Basic Verification",
        'max_amount': 50000,
        'requirements': ["Email verification", "Phone verification"],
        'estimated_time': "Instant",
        'stripe_required': False,
        'description': "For small transactions up to $500",
    },
    Level.ENHANCED: {
        'name': "Enhanced Verification",
        'max_amount': 250000,
        'requirements': ["Government ID", "Address proof", "Selfie verification"],
        'estimated_time': "1-2 business days",
        'stripe_required': True,
        'description': "For transactions up to $2,500 and withdrawal access",
    },
    Level.BUSINESS: {
        'name': "Business Verification",
        'max_amount': None,
        'requirements': ["Business registration", "Tax ID", "Business bank account", "Beneficial ownership"],
        'estimated_time': "3-5 business days",
        'stripe_required': True,
        'description': "For unlimited transaction amounts and business features",
    },
}


def required_verification_level(amount, action=ACTION_WITHDRAWAL):
    minor = to_minor_units(amount)
    for minimum, level in THRESHOLDS.get(action, THRESHOLDS['default']):
        if minor >= minimum:
            return level
    return Level.NONE


def current_verification_level(user):
    if user.kyc_status != CustomUser.KycStatus.APPROVED:
        return Level.NONE
    return user.verification_level or Level.NONE


def is_verification_sufficient(user, required_level):
    if user.kyc_status != CustomUser.KycStatus.APPROVED:
        return False
    return LEVEL_RANK.get(user.verification_level, 0) >= LEVEL_RANK.get(required_level, 0)


def check_withdrawal_eligibility(user, amount, currency='USD'):
    required = required_verification_level(amount, ACTION_WITHDRAWAL)
    return {
        'eligible': is_verification_sufficient(user, required),
        'current_verification': current_verification_level(user),
        'required_verification': required,
        'amount': str(amount),
        'currency': currency,
    }


def _action_plan(user, required, has_payout_account, needs_identity_check):
    steps = []

    if not has_payout_account:
        steps.append({
            'action': 'create_stripe_account',
            'title': "Set Up Payout Account",
            'description': "Create the payout account that holds your verified identity and bank details",
            'endpoint': '/api/payments/connect/account/',
            'method': 'POST',
            'estimated_time': "1 minute",
        })

    if needs_identity_check:
        steps.append({
            'action': 'complete_stripe_onboarding',
            'title': "Complete Identity Verification",
            'description': "Open the hosted onboarding form and submit your ID, address and bank account",
            'endpoint': '/api/payments/connect/onboarding-link/',
            'method': 'POST',
            'estimated_time': "10-15 minutes",
            'depends_on': None if has_payout_account else 'create_stripe_account',
        })
        steps.append({
            'action': 'confirm_verification',
            'title': "Confirm Verification",
            'description': "Refresh your verification status once onboarding is finished",
            'endpoint': '/api/kyc/verify/',
            'method': 'POST',
            'estimated_time': "Instant",
            'depends_on': 'complete_stripe_onboarding',
        })

    if required == Level.BUSINESS and user.verification_level != Level.BUSINESS:
        steps.append({
            'action': 'initiate_business_kyc',
            'title': "Complete Business Verification",
            'description': "Send business registration, tax ID and beneficial ownership documents to our compliance team",
            'estimated_time': VERIFICATION_LEVELS[Level.BUSINESS]['estimated_time'],
            'depends_on': 'confirm_verification' if needs_identity_check else None,
        })

    for number, step in enumerate(steps, start=1):
        step['step'] = number
        step['required'] = True
    return steps


def check_requirements(user, amount, currency='USD', action=ACTION_WITHDRAWAL):
    """
    Full verification report for ``amount`` and ``action``: the required level, which checks
    pass, the level catalogue and, when not eligible, an ordered action plan.
    """
    amount = Decimal(amount)
    required = required_verification_level(amount, action)
    account = ConnectedAccount.objects.filter(user=user).first()
    has_payout_account = account is not None

    verification_sufficient = is_verification_sufficient(user, required)

    payout_account_required = action == ACTION_WITHDRAWAL and required != Level.BASIC
    payout_account_ready = has_payout_account if payout_account_required else True

    enhanced_kyc_required = amount > ENHANCED_KYC_AMOUNT or required == Level.BUSINESS
    enhanced_kyc_ready = (
        user.enhanced_kyc_status == CustomUser.EnhancedKycStatus.VERIFIED if enhanced_kyc_required else True
    )

    eligible = verification_sufficient and payout_account_ready and enhanced_kyc_ready
    identity_level = Level.ENHANCED if LEVEL_RANK[required] >= LEVEL_RANK[Level.ENHANCED] else required
    needs_identity_check = not is_verification_sufficient(user, identity_level) or not enhanced_kyc_ready

    return {
        'eligible': eligible,
        'amount': str(amount),
        'currency': currency,
        'action': action,
        'current_verification': {
            'level': user.verification_level,
            'status': user.kyc_status,
            'enhanced_kyc_status': user.enhanced_kyc_status,
            'payout_account_id': account.external_account_id if account else None,
            'payout_account_ready': payout_account_ready,
            'kyc_verified_at': user.kyc_verified_at,
        },
        'required_verification': {
            'level': required,
            'details': VERIFICATION_LEVELS.get(required),
        },
        'verification_levels': VERIFICATION_LEVELS,
        'checks': {
            'verification_sufficient': verification_sufficient,
            'payout_account_required': payout_account_required,
            'payout_account_ready': payout_account_ready,
            'enhanced_kyc_required': enhanced_kyc_required,
            'enhanced_kyc_ready': enhanced_kyc_ready,
        },
        'action_plan': None if eligible else _action_plan(user, required, has_payout_account, needs_identity_check),
    }
