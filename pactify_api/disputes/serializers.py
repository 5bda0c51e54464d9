from rest_framework import serializers

from .models import Dispute, DisputeMessage
from . import services


class DisputeMessageSerializer(serializers.ModelSerializer):
    sender = serializers.StringRelatedField(read_only=True)

    class Meta:
        model = DisputeMessage
        fields = ['id', 'sender', 'message', 'created_at']
        read_only_fields = ['id', 'sender', 'created_at']


class DisputeCreateSerializer(serializers.ModelSerializer):
    """
    Serializer for opening a dispute. Assumes the view provides 'contract'
    and 'request' in the context.
    """
    initiated_by = serializers.StringRelatedField(read_only=True)
    status = serializers.CharField(read_only=True)

    class Meta:
        model = Dispute
        fields = ['id', 'dispute_type', 'description', 'initiated_by', 'status', 'created_at']
        read_only_fields = ['id', 'initiated_by', 'status', 'created_at']

    def create(self, validated_data):
        return services.open_dispute(
            self.context['contract'],
            self.context['request'].user,
            validated_data['dispute_type'],
            validated_data['description'],
        )


class DisputeDetailSerializer(serializers.ModelSerializer):
    """
    Serializer for retrieving a single dispute with all its details and messages.
    """
    contract = serializers.UUIDField(source='contract_id', read_only=True)
    initiated_by = serializers.StringRelatedField()
    resolved_by = serializers.StringRelatedField()
    messages = DisputeMessageSerializer(many=True, read_only=True)

    class Meta:
        model = Dispute
        fields = ['id', 'contract', 'initiated_by', 'dispute_type', 'description', 'contract_status_at_open',
                  'status', 'outcome', 'resolution', 'resolved_by', 'resolved_at', 'messages',
                  'created_at', 'updated_at']
        read_only_fields = fields


class ResolveDisputeSerializer(serializers.Serializer):
    outcome = serializers.ChoiceField(choices=Dispute.Outcome.choices)
    resolution = serializers.CharField(required=False, allow_blank=True, default='')
