from decimal import Decimal

import pytest

from escrow.fees import calculate_fees, platform_fee_percentage, quantize_money, to_minor_units


@pytest.mark.parametrize('tier,platform_fee,processor_fee', [
    ('free', Decimal('100.00'), Decimal('32.20')),
    ('professional', Decimal('75.00'), Decimal('31.475')),
    ('business', Decimal('50.00'), Decimal('30.75')),
])
def test_fee_breakdown_per_tier(tier, platform_fee, processor_fee):
    fees = calculate_fees(Decimal('1000'), tier)

    assert fees.contract_amount == Decimal('1000')
    assert fees.platform_fee == platform_fee
    assert fees.processor_fee == processor_fee
    assert fees.total_charge == Decimal('1000') + platform_fee + processor_fee


def test_unknown_tier_pays_free_rate():
    assert platform_fee_percentage('enterprise') == platform_fee_percentage('free')


def test_fees_are_not_rounded_before_conversion():
    fees = calculate_fees(Decimal('1000'), 'professional')
    assert fees.total_charge == Decimal('1106.475')
    assert to_minor_units(fees.total_charge) == 110648


def test_minor_units_round_half_up():
    assert to_minor_units(Decimal('31.475')) == 3148
    assert to_minor_units(Decimal('0.004')) == 0
    assert to_minor_units('2830.05') == 283005


@pytest.mark.parametrize('value,rendered', [
    (Decimal('1000'), '1000.00'),
    (Decimal('1750.0000'), '1750.00'),
    (Decimal('0'), '0.00'),
    (Decimal('31.475'), '31.48'),
])
def test_money_is_rendered_with_two_places(value, rendered):
    assert str(quantize_money(value)) == rendered
