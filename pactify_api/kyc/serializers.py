from decimal import Decimal

from rest_framework import serializers

from .eligibility import ACTIONS, ACTION_WITHDRAWAL


class CheckRequirementsSerializer(serializers.Serializer):
    amount = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal('0.01'))
    currency = serializers.CharField(max_length=3, default='USD')
    action = serializers.ChoiceField(choices=ACTIONS, default=ACTION_WITHDRAWAL)

    def validate_currency(self, value):
        return value.upper()


class VerificationStatusSerializer(serializers.Serializer):
    kyc_status = serializers.CharField()
    verification_level = serializers.CharField()
    enhanced_kyc_status = serializers.CharField()
    kyc_verified_at = serializers.DateTimeField(allow_null=True)
    payout_account_id = serializers.CharField(allow_null=True)
    transfers_active = serializers.BooleanField()
    payouts_enabled = serializers.BooleanField()
    requirements_currently_due = serializers.ListField(child=serializers.CharField())
