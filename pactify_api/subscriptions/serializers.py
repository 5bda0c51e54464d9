from rest_framework import serializers

from .models import Subscription
from .services import PAID_TIERS


class SubscriptionSerializer(serializers.ModelSerializer):
    class Meta:
        model = Subscription
        fields = (
            'tier',
            'status',
            'cancel_at_period_end',
            'current_period_end',
            'created_at',
            'updated_at',
        )
        read_only_fields = fields


class SubscriptionCheckoutSerializer(serializers.Serializer):
    tier = serializers.ChoiceField(choices=[(tier.value, tier.label) for tier in PAID_TIERS])
    success_url = serializers.URLField(required=False)
    cancel_url = serializers.URLField(required=False)


class PlanChangeSerializer(serializers.Serializer):
    tier = serializers.ChoiceField(choices=[(tier.value, tier.label) for tier in PAID_TIERS])
