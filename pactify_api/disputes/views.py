from rest_framework import generics, status, filters
from rest_framework.response import Response
from rest_framework_simplejwt.authentication import JWTAuthentication
from django_filters.rest_framework import DjangoFilterBackend
from rest_framework.permissions import IsAuthenticated
from drf_yasg.utils import swagger_auto_schema
from drf_yasg import openapi

from pactify_api.exceptions import NotFoundError, StateConflictError
from . import serializers as my_serializers
from . import services
from .permissions import IsContractParticipantOrModerator
from .models import Dispute, DisputeMessage


class DisputeMixin:
    def get_dispute(self):
        dispute = self.contract.disputes.select_related('contract', 'initiated_by').filter(
            pk=self.kwargs['dispute_id']
        ).first()
        if dispute is None:
            raise NotFoundError("Dispute not found", code='DISPUTE_NOT_FOUND')
        return dispute


class ListCreateDisputesAPIView(generics.ListCreateAPIView):
    """
    GET: disputes raised on the contract.
    POST: open a dispute; the contract moves to disputed until it is resolved.
    """
    permission_classes = [IsAuthenticated, IsContractParticipantOrModerator]
    authentication_classes = [JWTAuthentication]
    filter_backends = [filters.OrderingFilter, DjangoFilterBackend]
    filterset_fields = ['status', 'dispute_type']
    ordering_fields = ['created_at', 'updated_at']
    ordering = ['-created_at']

    def get_serializer_class(self):
        if self.request.method == 'POST':
            return my_serializers.DisputeCreateSerializer
        return my_serializers.DisputeDetailSerializer

    def get_serializer_context(self):
        context = super().get_serializer_context()
        context['contract'] = getattr(self, 'contract', None)
        return context

    def get_queryset(self):
        if getattr(self, 'swagger_fake_view', False):
            return Dispute.objects.none()
        return self.contract.disputes.select_related('initiated_by', 'resolved_by').prefetch_related('messages__sender')

    @swagger_auto_schema(
        operation_summary="List disputes of a contract",
        manual_parameters=[
            openapi.Parameter(
                'status',
                openapi.IN_QUERY,
                description="Filter disputes by status",
                type=openapi.TYPE_STRING
            ),
        ],
        responses={200: my_serializers.DisputeDetailSerializer(many=True)}
    )
    def get(self, request, *args, **kwargs):
        return super().get(request, *args, **kwargs)

    @swagger_auto_schema(
        operation_summary="Open a dispute on a contract",
        request_body=my_serializers.DisputeCreateSerializer,
        responses={
            201: openapi.Response(description="Dispute opened"),
            400: "Invalid contract status or a dispute is already open",
            403: "Not a party to the contract",
        }
    )
    def post(self, request, *args, **kwargs):
        return super().post(request, *args, **kwargs)

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        dispute = serializer.save()

        return Response({
            'success': True,
            'dispute': my_serializers.DisputeDetailSerializer(dispute).data,
            'contract_status': dispute.contract.status,
        }, status=status.HTTP_201_CREATED)


class ResolveDisputeAPIView(DisputeMixin, generics.GenericAPIView):
    serializer_class = my_serializers.ResolveDisputeSerializer
    permission_classes = [IsAuthenticated, IsContractParticipantOrModerator]
    authentication_classes = [JWTAuthentication]

    @swagger_auto_schema(
        operation_summary="Resolve a dispute",
        operation_description=(
            "Moderators or the party that did not open the dispute. 'resume' returns the contract "
            "to active; 'refund' refunds all held escrow to the client and cancels the contract."
        ),
        request_body=my_serializers.ResolveDisputeSerializer,
        responses={200: my_serializers.DisputeDetailSerializer(), 400: "Already resolved",
                   403: "Not allowed to resolve", 502: "Refund failed"}
    )
    def post(self, request, contract_id, dispute_id):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        dispute = services.resolve_dispute(
            self.get_dispute(), request.user,
            serializer.validated_data['outcome'], serializer.validated_data['resolution'],
        )
        dispute.contract.refresh_from_db()
        return Response({
            'success': True,
            'dispute': my_serializers.DisputeDetailSerializer(dispute).data,
            'contract_status': dispute.contract.status,
        }, status=status.HTTP_200_OK)


class ListCreateDisputeMessagesAPIView(DisputeMixin, generics.ListCreateAPIView):
    serializer_class = my_serializers.DisputeMessageSerializer
    permission_classes = [IsAuthenticated, IsContractParticipantOrModerator]
    authentication_classes = [JWTAuthentication]
    pagination_class = None

    def get_queryset(self):
        if getattr(self, 'swagger_fake_view', False):
            return DisputeMessage.objects.none()
        return self.get_dispute().messages.select_related('sender')

    @swagger_auto_schema(
        operation_summary="Post a message on a dispute",
        request_body=my_serializers.DisputeMessageSerializer,
        responses={201: my_serializers.DisputeMessageSerializer(), 400: "Dispute is resolved"}
    )
    def post(self, request, *args, **kwargs):
        return super().post(request, *args, **kwargs)

    def perform_create(self, serializer):
        dispute = self.get_dispute()
        if dispute.status != Dispute.Status.OPEN:
            raise StateConflictError("Cannot post to a resolved dispute", code='DISPUTE_ALREADY_RESOLVED')
        serializer.save(dispute=dispute, sender=self.request.user)

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        self.perform_create(serializer)
        return Response({'success': True, 'message': serializer.data}, status=status.HTTP_201_CREATED)
