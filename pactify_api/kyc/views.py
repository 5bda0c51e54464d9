from rest_framework import views as drf_views, status
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated
from rest_framework_simplejwt.authentication import JWTAuthentication
from drf_yasg.utils import swagger_auto_schema

from pactify_api.exceptions import NotFoundError
from payments.models import ConnectedAccount
from . import serializers as my_serializers
from .eligibility import check_requirements
from .gate import evaluate_release_gate


def verification_status(user):
    account = ConnectedAccount.objects.filter(user=user).first()
    payload = {
        'kyc_status': user.kyc_status,
        'verification_level': user.verification_level,
        'enhanced_kyc_status': user.enhanced_kyc_status,
        'kyc_verified_at': user.kyc_verified_at,
        'payout_account_id': account.external_account_id if account else None,
        'transfers_active': account.transfers_active if account else False,
        'payouts_enabled': account.payouts_enabled if account else False,
        'requirements_currently_due': account.requirements_currently_due if account else [],
    }
    return my_serializers.VerificationStatusSerializer(payload).data


class CheckRequirementsAPIView(drf_views.APIView):
    """
    Reports the verification level needed for an amount and action, whether the
    caller meets it, and the steps to take when they do not.
    """
    permission_classes = [IsAuthenticated]
    authentication_classes = [JWTAuthentication]

    @swagger_auto_schema(
        operation_summary="Check verification requirements for an amount",
        request_body=my_serializers.CheckRequirementsSerializer,
        responses={200: "Verification report", 400: "Validation error"}
    )
    def post(self, request):
        serializer = my_serializers.CheckRequirementsSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        report = check_requirements(request.user, data['amount'], data['currency'], data['action'])
        return Response({'success': True, **report}, status=status.HTTP_200_OK)


class VerificationStatusAPIView(drf_views.APIView):
    permission_classes = [IsAuthenticated]
    authentication_classes = [JWTAuthentication]

    @swagger_auto_schema(
        operation_summary="Current verification status of the authenticated user",
        responses={200: my_serializers.VerificationStatusSerializer}
    )
    def get(self, request):
        return Response({
            'success': True,
            'status': verification_status(request.user)
        }, status=status.HTTP_200_OK)


class ConfirmVerificationAPIView(drf_views.APIView):
    """
    Called when the user returns from hosted onboarding. Reads the payout account
    live from the processor and approves the user's verification once the
    processor has verified them.
    """
    permission_classes = [IsAuthenticated]
    authentication_classes = [JWTAuthentication]

    @swagger_auto_schema(
        operation_summary="Refresh verification from the payout account",
        request_body=None,
        responses={200: my_serializers.VerificationStatusSerializer, 404: "No payout account",
                   502: "Payment provider error"}
    )
    def post(self, request):
        account = ConnectedAccount.objects.filter(user=request.user).first()
        if account is None:
            raise NotFoundError("Create a payout account first", code='PAYOUT_ACCOUNT_MISSING')

        decision = evaluate_release_gate(account)
        request.user.refresh_from_db()
        return Response({
            'success': True,
            'payouts_ready': decision.allowed,
            'missing': decision.denial['missing'] if decision.denial else [],
            'status': verification_status(request.user),
        }, status=status.HTTP_200_OK)
