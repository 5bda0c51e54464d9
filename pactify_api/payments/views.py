from django.db import transaction
from django.utils.decorators import method_decorator
from django.views.decorators.csrf import csrf_exempt
from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework import status, permissions
from rest_framework_simplejwt.authentication import JWTAuthentication
from drf_yasg.utils import swagger_auto_schema
import logging

from pactify_api.exceptions import NotFoundError, StateConflictError
from escrow.services import EscrowService
from kyc.gate import evaluate_release_gate
from subscriptions.services import SubscriptionService
from withdrawals.services import settle_payout
from .serializers import ConnectedAccountSerializer, OnboardingLinkSerializer
from .models import ConnectedAccount
from .providers import PaymentProviderError
from .services import PaymentService


logger = logging.getLogger(__name__)


class ConnectedAccountView(APIView):
    permission_classes = [permissions.IsAuthenticated]
    authentication_classes = [JWTAuthentication]

    @swagger_auto_schema(
        operation_summary="Get the current user's payout account",
        responses={200: ConnectedAccountSerializer(), 404: "No payout account"}
    )
    def get(self, request):
        account = ConnectedAccount.objects.filter(user=request.user).first()
        if account is None:
            raise NotFoundError("Create a payout account first", code='PAYOUT_ACCOUNT_MISSING')
        return Response({'success': True, 'account': ConnectedAccountSerializer(account).data})

    @swagger_auto_schema(
        operation_summary="Create a payout account with the payment processor",
        request_body=None,
        responses={201: ConnectedAccountSerializer(), 200: ConnectedAccountSerializer(), 502: "Payment provider error"}
    )
    def post(self, request):
        account, created = PaymentService().get_or_create_connected_account(request.user)
        return Response(
            {'success': True, 'created': created, 'account': ConnectedAccountSerializer(account).data},
            status=status.HTTP_201_CREATED if created else status.HTTP_200_OK,
        )


class OnboardingLinkView(APIView):
    permission_classes = [permissions.IsAuthenticated]
    authentication_classes = [JWTAuthentication]

    @swagger_auto_schema(
        operation_summary="Get a hosted onboarding link for the payout account",
        request_body=None,
        responses={200: OnboardingLinkSerializer(), 404: "No payout account", 502: "Payment provider error"}
    )
    def post(self, request):
        link = PaymentService().create_onboarding_link(request.user)
        return Response({'success': True, **link}, status=status.HTTP_200_OK)


@method_decorator(csrf_exempt, name='dispatch')
class StripeWebhookView(APIView):
    """
    Processor callbacks. Authenticated by the Stripe-Signature header only.

    Each event id is handled at most once; a handler failure rolls back the
    idempotency record so the processor's retry is processed again.
    """
    permission_classes = [permissions.AllowAny]
    authentication_classes = []
    swagger_schema = None

    provider_name = 'stripe'

    def post(self, request):
        payment_service = PaymentService(self.provider_name)
        signature = request.META.get('HTTP_STRIPE_SIGNATURE', '')
        try:
            event = payment_service.provider.construct_webhook_event(request.body, signature)
        except PaymentProviderError as e:
            logger.warning("Rejected %s webhook: %s", self.provider_name, e.message)
            return Response({'success': False, 'error': e.code, 'message': e.message},
                            status=status.HTTP_400_BAD_REQUEST)

        with transaction.atomic():
            if not payment_service.record_webhook_event(self.provider_name, event['id'], event['type']):
                logger.info("Duplicate webhook %s ignored", event['id'])
                return Response({'success': True, 'duplicate': True})
            self.handle_event(event, payment_service)

        return Response({'success': True})

    def handle_event(self, event, payment_service):
        event_type = event['type']
        object_id = event['object_id']

        if event_type in ('checkout.session.completed', 'checkout.session.async_payment_succeeded'):
            try:
                EscrowService(payment_service).confirm_funding(object_id)
            except NotFoundError:
                logger.warning("Webhook for unknown checkout session %s", object_id)
            except StateConflictError as e:
                if e.code != 'PAYMENT_NOT_COMPLETED':
                    raise
                # async payment methods complete the session before the charge settles
                logger.info("Checkout session %s not paid yet: %s", object_id, e.code)
        elif event_type == 'checkout.session.expired':
            EscrowService(payment_service).discard_expired_session(object_id)
        elif event_type == 'account.updated':
            account = ConnectedAccount.objects.filter(external_account_id=object_id).first()
            if account is not None:
                evaluate_release_gate(account, payment_service.provider)
        elif event_type in ('payout.paid', 'payout.failed'):
            settle_payout(object_id, paid=event_type == 'payout.paid')
        elif event_type.startswith('customer.subscription.'):
            SubscriptionService(payment_service).sync_subscription(object_id)
        else:
            logger.debug("Unhandled webhook event type %s", event_type)
