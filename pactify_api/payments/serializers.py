from rest_framework import serializers

from .models import ConnectedAccount


class ConnectedAccountSerializer(serializers.ModelSerializer):
    class Meta:
        model = ConnectedAccount
        fields = (
            'provider',
            'external_account_id',
            'transfers_active',
            'payouts_enabled',
            'charges_enabled',
            'details_submitted',
            'requirements_currently_due',
            'requirements_past_due',
            'requirements_eventually_due',
            'disabled_reason',
            'last_synced_at',
            'created_at',
        )
        read_only_fields = fields


class OnboardingLinkSerializer(serializers.Serializer):
    url = serializers.URLField(read_only=True)
    expires_at = serializers.IntegerField(read_only=True)
