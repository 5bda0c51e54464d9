from rest_framework import serializers

from .models import Notification


class NotificationSerializer(serializers.ModelSerializer):
    class Meta:
        model = Notification
        fields = ['id', 'contract', 'notification_type', 'title', 'message', 'metadata', 'is_read', 'created_at']
        read_only_fields = fields
