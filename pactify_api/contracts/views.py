from rest_framework import views as drf_views, generics, status, filters
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated
from rest_framework_simplejwt.authentication import JWTAuthentication
from django.db.models import Q
from django_filters.rest_framework import DjangoFilterBackend
from drf_yasg.utils import swagger_auto_schema

from pactify_api.exceptions import NotFoundError
from . import serializers as my_serializers
from . import lifecycle
from .models import Contract, Deliverable
from .permissions import IsContractParticipant


class ListCreateContractsAPIView(generics.ListCreateAPIView):
    """
    GET: contracts the authenticated user created or is a party to.
    POST: create a draft contract with the counterparty named by email.
    """
    permission_classes = [IsAuthenticated]
    authentication_classes = [JWTAuthentication]
    filter_backends = [DjangoFilterBackend, filters.OrderingFilter]
    filterset_fields = ['status', 'type', 'is_funded']
    ordering_fields = ['created_at', 'updated_at', 'total_amount']
    ordering = ['-created_at']

    def get_serializer_class(self):
        if self.request.method == 'POST':
            return my_serializers.ContractCreateSerializer
        return my_serializers.ContractSerializer

    def get_queryset(self):
        if getattr(self, 'swagger_fake_view', False):
            return Contract.objects.none()
        user = self.request.user
        return (
            Contract.objects.filter(Q(client=user) | Q(freelancer=user) | Q(creator=user))
            .select_related('client', 'freelancer', 'creator')
            .prefetch_related('parties__user', 'milestones')
        )

    @swagger_auto_schema(
        operation_summary="Create a draft contract",
        request_body=my_serializers.ContractCreateSerializer,
        responses={201: my_serializers.ContractSerializer, 400: "Validation error"}
    )
    def post(self, request, *args, **kwargs):
        return super().post(request, *args, **kwargs)

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        serializer.save()

        return Response({
            'success': True,
            'contract': serializer.data
        }, status=status.HTTP_201_CREATED)


class RetrieveContractAPIView(generics.RetrieveAPIView):
    serializer_class = my_serializers.ContractSerializer
    permission_classes = [IsAuthenticated, IsContractParticipant]
    authentication_classes = [JWTAuthentication]

    def get_object(self):
        return self.contract


class SignContractAPIView(drf_views.APIView):
    """
    Records the caller's e-signature. The contract advances to pending_funding once
    both the client and the freelancer have signed.
    """
    permission_classes = [IsAuthenticated]
    authentication_classes = [JWTAuthentication]

    @swagger_auto_schema(
        operation_summary="Sign a contract",
        request_body=my_serializers.SignContractSerializer,
        responses={
            200: my_serializers.ContractSerializer,
            400: "Already signed or not awaiting signatures",
            403: "Not a party to this contract",
            404: "Contract not found"
        }
    )
    def post(self, request, contract_id):
        serializer = my_serializers.SignContractSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        contract = lifecycle.sign_contract(contract_id, request.user, serializer.validated_data['signature_data'])
        contract.refresh_from_db()

        return Response({
            'success': True,
            'contract': my_serializers.ContractSerializer(contract).data
        }, status=status.HTTP_200_OK)


class ContractTransitionAPIView(drf_views.APIView):
    permission_classes = [IsAuthenticated, IsContractParticipant]
    authentication_classes = [JWTAuthentication]

    @swagger_auto_schema(
        operation_summary="Request a contract status change",
        operation_description=(
            "Freelancer: active -> pending_delivery, revision_requested -> active. "
            "Client: pending_delivery -> in_review | active, in_review -> revision_requested | pending_completion, "
            "revision_requested -> pending_completion. Creator: pending_signatures -> draft. "
            "Any party: -> cancelled while no funds are held."
        ),
        request_body=my_serializers.ContractTransitionSerializer,
        responses={200: my_serializers.ContractSerializer, 400: "Invalid transition", 403: "Wrong role"}
    )
    def post(self, request, contract_id):
        serializer = my_serializers.ContractTransitionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        contract = lifecycle.request_transition(self.contract, request.user, serializer.validated_data['status'])

        return Response({
            'success': True,
            'contract': my_serializers.ContractSerializer(contract).data
        }, status=status.HTTP_200_OK)


class ListCreateDeliverablesAPIView(generics.ListCreateAPIView):
    """
    GET: deliverables of the contract, filterable by milestone and latest version.
    POST: freelancer submits a deliverable; a milestone_id moves that milestone to submitted.
    """
    serializer_class = my_serializers.DeliverableSerializer
    permission_classes = [IsAuthenticated, IsContractParticipant]
    authentication_classes = [JWTAuthentication]
    filter_backends = [DjangoFilterBackend, filters.OrderingFilter]
    filterset_fields = ['milestone', 'is_latest', 'deliverable_type']
    ordering_fields = ['created_at', 'version']
    ordering = ['-created_at']

    def get_queryset(self):
        if getattr(self, 'swagger_fake_view', False):
            return Deliverable.objects.none()
        return Deliverable.objects.filter(contract=self.contract).select_related('submitted_by')

    def get_serializer_context(self):
        context = super().get_serializer_context()
        context['contract'] = getattr(self, 'contract', None)
        return context

    @swagger_auto_schema(
        operation_summary="Submit a deliverable",
        request_body=my_serializers.DeliverableSerializer,
        responses={201: my_serializers.DeliverableSerializer, 400: "Validation error", 403: "Not the freelancer"}
    )
    def post(self, request, *args, **kwargs):
        return super().post(request, *args, **kwargs)

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        deliverable = lifecycle.submit_deliverable(self.contract, request.user, serializer.validated_data)

        return Response({
            'success': True,
            'deliverable': my_serializers.DeliverableSerializer(deliverable).data
        }, status=status.HTTP_201_CREATED)


class MilestoneActionAPIView(drf_views.APIView):
    """Base view for milestone actions; subclasses implement ``perform``."""
    permission_classes = [IsAuthenticated, IsContractParticipant]
    authentication_classes = [JWTAuthentication]

    def get_milestone(self, milestone_id):
        milestone = self.contract.milestones.filter(pk=milestone_id).first()
        if milestone is None:
            raise NotFoundError("Milestone not found", code='MILESTONE_NOT_FOUND')
        return milestone

    def perform(self, request, milestone):
        raise NotImplementedError

    def post(self, request, contract_id, milestone_id):
        milestone = self.perform(request, self.get_milestone(milestone_id))
        return Response({
            'success': True,
            'milestone': my_serializers.MilestoneSerializer(milestone).data
        }, status=status.HTTP_200_OK)


class StartMilestoneAPIView(MilestoneActionAPIView):
    @swagger_auto_schema(
        operation_summary="Freelancer starts work on a milestone",
        responses={200: my_serializers.MilestoneSerializer, 400: "Invalid transition"}
    )
    def post(self, request, contract_id, milestone_id):
        return super().post(request, contract_id, milestone_id)

    def perform(self, request, milestone):
        return lifecycle.start_milestone(self.contract, milestone, request.user)


class ApproveMilestoneAPIView(MilestoneActionAPIView):
    @swagger_auto_schema(
        operation_summary="Client approves a submitted milestone",
        responses={200: my_serializers.MilestoneSerializer, 400: "Invalid transition"}
    )
    def post(self, request, contract_id, milestone_id):
        return super().post(request, contract_id, milestone_id)

    def perform(self, request, milestone):
        return lifecycle.approve_milestone(self.contract, milestone, request.user)


class RequestMilestoneRevisionAPIView(MilestoneActionAPIView):
    @swagger_auto_schema(
        operation_summary="Client requests changes to a submitted milestone",
        request_body=my_serializers.MilestoneRevisionSerializer,
        responses={200: my_serializers.MilestoneSerializer, 400: "Invalid transition"}
    )
    def post(self, request, contract_id, milestone_id):
        return super().post(request, contract_id, milestone_id)

    def perform(self, request, milestone):
        serializer = my_serializers.MilestoneRevisionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        return lifecycle.request_milestone_revision(
            self.contract, milestone, request.user, serializer.validated_data['notes']
        )
