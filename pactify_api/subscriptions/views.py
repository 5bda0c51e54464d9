from rest_framework import permissions, status
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView
from rest_framework_simplejwt.authentication import JWTAuthentication
from drf_yasg.utils import swagger_auto_schema

from .models import Subscription
from . import serializers as my_serializers
from .services import SubscriptionService


def _plan(user, subscription=None):
    if subscription is None:
        subscription = Subscription.objects.filter(user=user).first()
    return {
        'subscription_tier': user.subscription_tier,
        'subscription': my_serializers.SubscriptionSerializer(subscription).data if subscription else None,
    }


class SubscriptionAPIView(APIView):
    """The caller's current plan."""
    permission_classes = [permissions.IsAuthenticated]
    authentication_classes = [JWTAuthentication]

    @swagger_auto_schema(operation_summary="Show the current subscription")
    def get(self, request):
        return Response({'success': True, **_plan(request.user)}, status=status.HTTP_200_OK)


class SubscriptionCheckoutAPIView(APIView):
    permission_classes = [permissions.IsAuthenticated]
    authentication_classes = [JWTAuthentication]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = 'money'

    @swagger_auto_schema(
        operation_summary="Start a hosted checkout for a paid plan",
        request_body=my_serializers.SubscriptionCheckoutSerializer,
    )
    def post(self, request):
        serializer = my_serializers.SubscriptionCheckoutSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        session = SubscriptionService().start_checkout(request.user, **serializer.validated_data)
        return Response({'success': True, **session}, status=status.HTTP_201_CREATED)


class PlanChangeAPIView(APIView):
    permission_classes = [permissions.IsAuthenticated]
    authentication_classes = [JWTAuthentication]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = 'money'

    @swagger_auto_schema(
        operation_summary="Move the subscription to another paid plan",
        request_body=my_serializers.PlanChangeSerializer,
    )
    def post(self, request):
        serializer = my_serializers.PlanChangeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        subscription = SubscriptionService().change_plan(request.user, serializer.validated_data['tier'])
        request.user.refresh_from_db()
        return Response({'success': True, **_plan(request.user, subscription)}, status=status.HTTP_200_OK)


class CancelSubscriptionAPIView(APIView):
    """Stops renewal at the end of the paid period."""
    permission_classes = [permissions.IsAuthenticated]
    authentication_classes = [JWTAuthentication]

    @swagger_auto_schema(operation_summary="Cancel the subscription at period end")
    def post(self, request):
        subscription = SubscriptionService().cancel(request.user)
        request.user.refresh_from_db()
        return Response({'success': True, **_plan(request.user, subscription)}, status=status.HTTP_200_OK)
