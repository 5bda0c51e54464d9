"""
Platform and processor fee arithmetic.

All values are ``Decimal`` currency units with no intermediate rounding; conversion to
integer minor units happens only when an amount is handed to the payment processor.
"""
from collections import namedtuple
from decimal import Decimal, ROUND_HALF_UP

from django.conf import settings


CENT = Decimal('0.01')

FeeBreakdown = namedtuple(
    'FeeBreakdown',
    ['contract_amount', 'platform_fee_percentage', 'platform_fee', 'processor_fee', 'total_charge'],
)


def platform_fee_percentage(subscription_tier):
    """Fee percentage for the payer's tier; unknown tiers pay the free-tier rate."""
    table = settings.PLATFORM_FEE_PERCENTAGES
    return table.get(subscription_tier, table['free'])


def calculate_fees(amount, subscription_tier):
    amount = Decimal(amount)
    percentage = platform_fee_percentage(subscription_tier)
    platform_fee = amount * percentage / Decimal('100')
    processor_fee = (amount + platform_fee) * settings.PROCESSOR_FEE_RATE + settings.PROCESSOR_FEE_FIXED
    return FeeBreakdown(
        contract_amount=amount,
        platform_fee_percentage=percentage,
        platform_fee=platform_fee,
        processor_fee=processor_fee,
        total_charge=amount + platform_fee + processor_fee,
    )


def quantize_money(value):
    """Two-place currency amount, independent of how the database returns aggregates."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def to_minor_units(value):
    """Round half up to whole cents: Decimal('31.475') -> 3148."""
    return int((Decimal(value) * 100).quantize(Decimal('1'), rounding=ROUND_HALF_UP))
