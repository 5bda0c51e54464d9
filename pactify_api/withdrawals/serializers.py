from decimal import Decimal

from rest_framework import serializers

from .models import Withdrawal


class WithdrawalSerializer(serializers.ModelSerializer):
    class Meta:
        model = Withdrawal
        fields = (
            'id',
            'amount',
            'currency',
            'status',
            'required_verification',
            'payout_reference',
            'failure_reason',
            'trace_id',
            'created_at',
            'updated_at',
            'completed_at',
        )
        read_only_fields = fields


class WithdrawalRequestSerializer(serializers.Serializer):
    amount = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal('0.01'))
    currency = serializers.CharField(max_length=3, default='USD')

    def validate_currency(self, value):
        return value.upper()
