from decimal import Decimal

from django.db.models import Sum
from rest_framework import generics, permissions, status, views
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework_simplejwt.authentication import JWTAuthentication
from drf_yasg.utils import swagger_auto_schema
from drf_yasg import openapi

from contracts.permissions import IsContractParticipant
from contracts.lifecycle import validate_contract_access
from .fees import quantize_money
from .models import EscrowLedgerEntry
from .serializers import (
	ConfirmFundingSerializer,
	EscrowLedgerEntrySerializer,
	EscrowReleaseSerializer,
	FundEscrowSerializer,
)
from .services import EscrowService


class EscrowLedgerView(generics.ListAPIView):
	"""Ledger entries of a contract with per-status totals."""

	serializer_class = EscrowLedgerEntrySerializer
	permission_classes = [permissions.IsAuthenticated, IsContractParticipant]
	authentication_classes = [JWTAuthentication]
	pagination_class = None

	@swagger_auto_schema(
		operation_summary="List the escrow ledger of a contract",
		responses={200: EscrowLedgerEntrySerializer(many=True)}
	)
	def get(self, request, *args, **kwargs):
		return super().get(request, *args, **kwargs)

	def get_queryset(self):
		if getattr(self, "swagger_fake_view", False):
			return EscrowLedgerEntry.objects.none()
		return EscrowLedgerEntry.objects.filter(contract=self.contract).select_related("payer", "payee")

	def list(self, request, *args, **kwargs):
		queryset = self.get_queryset()
		totals = {
			row["status"]: str(quantize_money(row["total"]))
			for row in queryset.order_by().values("status").annotate(total=Sum("amount"))
		}
		for entry_status in EscrowLedgerEntry.Status.values:
			totals.setdefault(entry_status, str(Decimal("0.00")))

		return Response({
			"success": True,
			"contract_id": str(self.contract.pk),
			"is_funded": self.contract.is_funded,
			"totals": totals,
			"entries": self.get_serializer(queryset, many=True).data,
		}, status=status.HTTP_200_OK)


class FundEscrowView(views.APIView):
	permission_classes = [permissions.IsAuthenticated]
	authentication_classes = [JWTAuthentication]
	throttle_classes = [ScopedRateThrottle]
	throttle_scope = "money"

	@swagger_auto_schema(
		operation_summary="Open a checkout session to fund the contract escrow",
		operation_description=(
			"Client only. Charges the contract amount plus the platform fee for the client's "
			"subscription tier and the processing fee (2.9% + $0.30)."
		),
		request_body=FundEscrowSerializer,
		responses={
			200: openapi.Response(description="Checkout session created"),
			400: "Already funded, not signed, or funding in progress",
			403: "Not the client",
			404: "Contract not found",
			502: "Payment provider error",
		}
	)
	def post(self, request, contract_id):
		serializer = FundEscrowSerializer(data=request.data)
		serializer.is_valid(raise_exception=True)

		result = EscrowService().fund_escrow(contract_id, request.user, **serializer.validated_data)
		return Response({"success": True, **result}, status=status.HTTP_200_OK)


class ConfirmFundingView(views.APIView):
	permission_classes = [permissions.IsAuthenticated]
	authentication_classes = [JWTAuthentication]

	@swagger_auto_schema(
		operation_summary="Confirm a completed checkout session",
		request_body=ConfirmFundingSerializer,
		responses={
			200: EscrowLedgerEntrySerializer(),
			400: "Payment not completed",
			404: "Funding session not found",
			502: "Payment provider error",
		}
	)
	def post(self, request, contract_id):
		contract = validate_contract_access(contract_id, request.user, required_role="client")
		serializer = ConfirmFundingSerializer(data=request.data)
		serializer.is_valid(raise_exception=True)

		entry = EscrowService().confirm_funding(serializer.validated_data["session_id"], contract=contract)
		contract.refresh_from_db()

		return Response({
			"success": True,
			"contract_status": contract.status,
			"is_funded": contract.is_funded,
			"ledger_entry": EscrowLedgerEntrySerializer(entry).data,
		}, status=status.HTTP_200_OK)


class ReleaseEscrowView(views.APIView):
	permission_classes = [permissions.IsAuthenticated]
	authentication_classes = [JWTAuthentication]
	throttle_classes = [ScopedRateThrottle]
	throttle_scope = "money"

	@swagger_auto_schema(
		operation_summary="Release held escrow funds to the freelancer",
		request_body=EscrowReleaseSerializer,
		responses={
			200: openapi.Response(description="Funds released"),
			400: "No held entries, invalid status or payout account missing",
			403: "Not the client, or freelancer not verified (kyc_not_verified)",
			404: "Contract or milestone not found",
			502: "Payment provider error",
		}
	)
	def post(self, request, contract_id):
		serializer = EscrowReleaseSerializer(data=request.data)
		serializer.is_valid(raise_exception=True)
		data = serializer.validated_data

		result = EscrowService().release_escrow(
			contract_id,
			request.user,
			milestone_id=data.get("milestone_id"),
			amount=data.get("amount"),
			reason=data.get("reason", ""),
		)
		return Response({"success": True, **result}, status=status.HTTP_200_OK)
