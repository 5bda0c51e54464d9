from decimal import Decimal

from rest_framework import serializers

from .models import EscrowLedgerEntry


class EscrowLedgerEntrySerializer(serializers.ModelSerializer):
    payer_email = serializers.EmailField(source="payer.email", read_only=True)
    payee_email = serializers.EmailField(source="payee.email", read_only=True)

    class Meta:
        model = EscrowLedgerEntry
        fields = (
            "id",
            "contract",
            "milestone",
            "parent",
            "payer_email",
            "payee_email",
            "amount",
            "currency",
            "platform_fee",
            "processor_fee",
            "total_charged",
            "status",
            "transfer_reference",
            "refund_reference",
            "release_reason",
            "created_at",
            "held_at",
            "released_at",
            "refunded_at",
        )
        read_only_fields = fields


class FundEscrowSerializer(serializers.Serializer):
    success_url = serializers.URLField(required=False)
    cancel_url = serializers.URLField(required=False)


class ConfirmFundingSerializer(serializers.Serializer):
    session_id = serializers.CharField(max_length=255)


class EscrowReleaseSerializer(serializers.Serializer):
    """
    Fields:
        - milestone_id (optional): release the payment for this approved milestone
        - amount (optional): partial release; defaults to the milestone amount or the full entry
        - reason (optional)
    """
    milestone_id = serializers.IntegerField(required=False, allow_null=True)
    amount = serializers.DecimalField(
        required=False,
        allow_null=True,
        max_digits=12,
        decimal_places=2,
        min_value=Decimal("0.01"),
    )
    reason = serializers.CharField(required=False, allow_blank=True, max_length=500, default="")
