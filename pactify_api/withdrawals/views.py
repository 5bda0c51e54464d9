from rest_framework import views as drf_views, generics, status, filters
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated
from rest_framework.throttling import ScopedRateThrottle
from rest_framework_simplejwt.authentication import JWTAuthentication
from django_filters.rest_framework import DjangoFilterBackend
from drf_yasg.utils import swagger_auto_schema
from drf_yasg import openapi

from kyc.eligibility import check_withdrawal_eligibility
from . import serializers as my_serializers
from .models import Withdrawal
from .services import available_balance, request_withdrawal


class ListWithdrawalsAPIView(generics.ListAPIView):
    serializer_class = my_serializers.WithdrawalSerializer
    permission_classes = [IsAuthenticated]
    authentication_classes = [JWTAuthentication]
    filter_backends = [DjangoFilterBackend, filters.OrderingFilter]
    filterset_fields = ['status', 'currency']
    ordering_fields = ['created_at', 'amount']
    ordering = ['-created_at']

    def get_queryset(self):
        if getattr(self, 'swagger_fake_view', False):
            return Withdrawal.objects.none()
        return Withdrawal.objects.filter(user=self.request.user)


class RequestWithdrawalAPIView(drf_views.APIView):
    permission_classes = [IsAuthenticated]
    authentication_classes = [JWTAuthentication]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = 'money'

    @swagger_auto_schema(
        operation_summary="Withdraw released funds to the payout account",
        request_body=my_serializers.WithdrawalRequestSerializer,
        responses={
            201: my_serializers.WithdrawalSerializer,
            400: "Insufficient balance or no payout account",
            403: "Verification required",
            502: "Payment provider error",
        }
    )
    def post(self, request):
        serializer = my_serializers.WithdrawalRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        withdrawal = request_withdrawal(request.user, **serializer.validated_data)
        return Response({
            'success': True,
            'withdrawal': my_serializers.WithdrawalSerializer(withdrawal).data
        }, status=status.HTTP_201_CREATED)


class WithdrawalEligibilityAPIView(drf_views.APIView):
    permission_classes = [IsAuthenticated]
    authentication_classes = [JWTAuthentication]

    @swagger_auto_schema(
        operation_summary="Check whether an amount can be withdrawn",
        manual_parameters=[
            openapi.Parameter('amount', openapi.IN_QUERY, type=openapi.TYPE_NUMBER, required=True),
            openapi.Parameter('currency', openapi.IN_QUERY, type=openapi.TYPE_STRING),
        ],
        responses={200: "Eligibility report", 400: "Validation error"}
    )
    def get(self, request):
        serializer = my_serializers.WithdrawalRequestSerializer(data=request.query_params)
        serializer.is_valid(raise_exception=True)
        amount = serializer.validated_data['amount']
        currency = serializer.validated_data['currency']

        report = check_withdrawal_eligibility(request.user, amount, currency)
        balance = available_balance(request.user, currency)
        return Response({
            'success': True,
            **report,
            'available_balance': str(balance),
            'sufficient_balance': amount <= balance,
        }, status=status.HTTP_200_OK)
