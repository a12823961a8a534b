"""
Billing Views
API endpoints for invoices, billing preferences, the tenant subscription and provider webhooks
"""
import uuid

from django_filters.rest_framework import DjangoFilterBackend
from rest_framework import filters, viewsets, status
from rest_framework.decorators import action
from rest_framework.exceptions import PermissionDenied
from rest_framework.permissions import IsAuthenticated, AllowAny
from rest_framework.response import Response
from rest_framework.views import APIView, exception_handler
from django.shortcuts import get_object_or_404

from accounts.models import Business
from .exceptions import NotFound, PaymentFailed, ProviderError, SubscriptionError, ValidationFailure
from .invoice_generation import InvoiceGenerationService
from .invoice_payment import InvoicePaymentService
from .models import BillingPreferences, Invoice
from .payment_gateways import PROVIDER_RAZORPAY, PROVIDER_STRIPE
from .permissions import IsPlatformAdmin, is_business_admin, user_business_ids
from .serializers import (
    BillingPreferencesSerializer,
    CancelSubscriptionSerializer,
    ConfirmPaymentSerializer,
    GenerateInvoiceSerializer,
    InvoiceSerializer,
    SubscriptionSerializer,
)
from .services import SubscriptionService
from .webhooks import WebhookService

import logging
logger = logging.getLogger(__name__)


ERROR_STATUS_CODES = [
    (NotFound, status.HTTP_404_NOT_FOUND),
    (ValidationFailure, status.HTTP_400_BAD_REQUEST),
    (PaymentFailed, status.HTTP_402_PAYMENT_REQUIRED),
    (ProviderError, status.HTTP_503_SERVICE_UNAVAILABLE),
]


def billing_exception_handler(exc, context):
    """Map billing exceptions to HTTP responses, everything else goes to DRF"""
    if isinstance(exc, SubscriptionError):
        for exc_class, status_code in ERROR_STATUS_CODES:
            if isinstance(exc, exc_class):
                return Response(
                    {'error': exc.__class__.__name__, 'detail': str(exc)},
                    status=status_code,
                )
        logger.error(f"Unhandled billing error: {str(exc)}", exc_info=exc)
        return Response({'error': exc.__class__.__name__, 'detail': str(exc)}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)
    return exception_handler(exc, context)


def resolve_business(request, require_admin=False):
    """
    Business the request acts on: ?business_id= (or body business_id),
    defaulting to the user's first membership.
    """
    business_id = request.query_params.get('business_id') or request.data.get('business_id')
    if business_id:
        try:
            business_id = uuid.UUID(str(business_id))
        except ValueError:
            raise ValidationFailure(f"Invalid business id: {business_id}")
        business = get_object_or_404(Business, id=business_id)
    else:
        business_ids = list(user_business_ids(request.user))
        if not business_ids:
            raise PermissionDenied('You are not a member of any business')
        business = Business.objects.get(id=business_ids[0])

    if not request.user.is_staff and business.id not in set(user_business_ids(request.user)):
        raise PermissionDenied('You do not have access to this business')
    if require_admin and not is_business_admin(request.user, business):
        raise PermissionDenied('Only business administrators can change billing settings')
    return business


class InvoiceViewSet(viewsets.ReadOnlyModelViewSet):
    """Invoices of the user's businesses; platform admins see all"""
    serializer_class = InvoiceSerializer
    permission_classes = [IsAuthenticated]
    filter_backends = [DjangoFilterBackend, filters.OrderingFilter]
    filterset_fields = ['status', 'business']
    ordering_fields = ['due_date', 'billing_period_start', 'total_amount']

    def get_queryset(self):
        queryset = Invoice.objects.select_related('business').prefetch_related('line_items', 'transactions')
        if not self.request.user.is_staff:
            queryset = queryset.filter(business_id__in=user_business_ids(self.request.user))
        return queryset

    @action(detail=False, methods=['post'], permission_classes=[IsPlatformAdmin])
    def generate(self, request):
        """Manually generate the invoice for a business and month"""
        serializer = GenerateInvoiceSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        invoice = InvoiceGenerationService.manually_generate_invoice(data['business_id'], data['year'], data['month'])
        if invoice is None:
            return Response(
                {'error': 'Invoice generation failed', 'stats': InvoiceGenerationService.get_generation_stats(data['year'], data['month'])},
                status=status.HTTP_500_INTERNAL_SERVER_ERROR,
            )
        return Response(InvoiceSerializer(invoice).data, status=status.HTTP_201_CREATED)

    @action(detail=False, methods=['get'], url_path='generation-stats', permission_classes=[IsPlatformAdmin])
    def generation_stats(self, request):
        try:
            year = int(request.query_params['year'])
            month = int(request.query_params['month'])
        except (KeyError, ValueError):
            raise ValidationFailure('year and month query parameters are required')
        return Response(InvoiceGenerationService.get_generation_stats(year, month))

    @action(detail=True, methods=['post'], url_path='confirm-payment')
    def confirm_payment(self, request, pk=None):
        """Confirm a payment completed through a payment link or checkout"""
        invoice = self.get_object()
        serializer = ConfirmPaymentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        invoice = InvoicePaymentService.process_manual_payment(
            invoice,
            serializer.validated_data['external_payment_id'],
            serializer.validated_data['provider'],
        )
        return Response(InvoiceSerializer(invoice).data)


class BillingPreferencesViewSet(viewsets.GenericViewSet):
    serializer_class = BillingPreferencesSerializer
    permission_classes = [IsAuthenticated]

    @action(detail=False, methods=['get', 'patch'])
    def me(self, request):
        business = resolve_business(request, require_admin=request.method == 'PATCH')
        prefs = BillingPreferences.objects.for_business(business)

        if request.method == 'PATCH':
            serializer = self.get_serializer(prefs, data=request.data, partial=True)
            serializer.is_valid(raise_exception=True)
            serializer.save()
            logger.info(f"Billing preferences updated for business {business.id} by {request.user}")
            return Response(serializer.data)

        return Response(self.get_serializer(prefs).data)


class SubscriptionViewSet(viewsets.GenericViewSet):
    """The tenant's own subscription"""
    serializer_class = SubscriptionSerializer
    permission_classes = [IsAuthenticated]

    @action(detail=False, methods=['get'])
    def me(self, request):
        business = resolve_business(request)
        return Response(self.get_serializer(SubscriptionService.get_subscription(business)).data)

    @action(detail=False, methods=['post'], url_path='me/cancel')
    def cancel(self, request):
        business = resolve_business(request, require_admin=True)
        serializer = CancelSubscriptionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        subscription = SubscriptionService.cancel(business, serializer.validated_data['reason'])
        return Response(self.get_serializer(subscription).data)

    @action(detail=False, methods=['post'], url_path='me/pause')
    def pause(self, request):
        business = resolve_business(request, require_admin=True)
        return Response(self.get_serializer(SubscriptionService.pause(business)).data)

    @action(detail=False, methods=['post'], url_path='me/resume')
    def resume(self, request):
        business = resolve_business(request, require_admin=True)
        return Response(self.get_serializer(SubscriptionService.resume(business)).data)


class PaymentWebhookView(APIView):
    """
    Inbound Razorpay / Stripe webhooks.
    No authentication; the provider signature is verified instead.
    """
    permission_classes = [AllowAny]
    authentication_classes = []

    SIGNATURE_HEADERS = {
        PROVIDER_RAZORPAY: 'HTTP_X_RAZORPAY_SIGNATURE',
        PROVIDER_STRIPE: 'HTTP_STRIPE_SIGNATURE',
    }

    def post(self, request, provider):
        provider = provider.upper()
        if provider not in self.SIGNATURE_HEADERS:
            return Response({'error': f'Unknown provider {provider}'}, status=status.HTTP_404_NOT_FOUND)

        signature = request.META.get(self.SIGNATURE_HEADERS[provider], '')
        if not signature:
            logger.warning(f'Missing {provider} webhook signature')
            return Response({'error': 'Missing signature'}, status=status.HTTP_400_BAD_REQUEST)

        try:
            result = WebhookService.handle(
                provider,
                request.body,
                signature,
                event_id=request.META.get('HTTP_X_RAZORPAY_EVENT_ID'),
            )
        except ProviderError as e:
            return Response({'error': str(e)}, status=status.HTTP_400_BAD_REQUEST)

        return Response(result, status=status.HTTP_200_OK)
