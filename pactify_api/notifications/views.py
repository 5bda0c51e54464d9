from rest_framework import views as drf_views, generics, status, filters
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated
from rest_framework_simplejwt.authentication import JWTAuthentication
from django.shortcuts import get_object_or_404
from django_filters.rest_framework import DjangoFilterBackend
from drf_yasg.utils import swagger_auto_schema

from .models import Notification
from .serializers import NotificationSerializer


class ListNotificationsAPIView(generics.ListAPIView):
    """Notifications addressed to the authenticated user, newest first."""
    serializer_class = NotificationSerializer
    permission_classes = [IsAuthenticated]
    authentication_classes = [JWTAuthentication]
    filter_backends = [DjangoFilterBackend, filters.OrderingFilter]
    filterset_fields = ['is_read', 'notification_type', 'contract']
    ordering_fields = ['created_at']
    ordering = ['-created_at']

    def get_queryset(self):
        if getattr(self, 'swagger_fake_view', False):
            return Notification.objects.none()
        return Notification.objects.filter(user=self.request.user)


class MarkNotificationReadAPIView(drf_views.APIView):
    permission_classes = [IsAuthenticated]
    authentication_classes = [JWTAuthentication]

    @swagger_auto_schema(
        operation_summary="Mark a notification as read",
        responses={200: NotificationSerializer, 404: "Notification not found"}
    )
    def post(self, request, id):
        notification = get_object_or_404(Notification, id=id, user=request.user)
        if not notification.is_read:
            notification.is_read = True
            notification.save(update_fields=['is_read'])

        return Response({
            'success': True,
            'notification': NotificationSerializer(notification).data
        }, status=status.HTTP_200_OK)
