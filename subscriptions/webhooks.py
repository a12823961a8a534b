"""
Payment provider webhooks
Every inbound call is written to WebhookLog; WebhookEvent makes processing
idempotent per (provider, event id).
"""
import json
import logging

from django.db import IntegrityError, transaction
from django.utils import timezone

from .exceptions import InvoiceNotFound, ProviderError
from .invoice_payment import InvoicePaymentService
from .models import Invoice, WebhookEvent, WebhookLog, next_retry_time
from .payment_gateways import PROVIDER_RAZORPAY, PROVIDER_STRIPE, get_payment_gateway

logger = logging.getLogger(__name__)


RAZORPAY_PAYMENT_EVENTS = ['payment_link.paid']
STRIPE_PAYMENT_EVENTS = ['checkout.session.completed']
STRIPE_FAILURE_EVENTS = ['payment_intent.payment_failed']


def parse_event(provider, data, event_id=None):
    """Pull the fields billing cares about out of a provider payload"""
    event = {
        'event_id': event_id or '',
        'event_type': '',
        'invoice_number': '',
        'payment_id': '',
        'external_subscription_id': '',
        'failure_reason': '',
    }

    if provider == PROVIDER_RAZORPAY:
        event['event_type'] = data.get('event', '')
        payload = data.get('payload', {})
        payment = payload.get('payment', {}).get('entity', {})
        link = payload.get('payment_link', {}).get('entity', {})
        event['payment_id'] = payment.get('id', '')
        event['invoice_number'] = link.get('reference_id', '')
        event['external_subscription_id'] = payload.get('subscription', {}).get('entity', {}).get('id', '')
        # Razorpay sends the event id as a header only
        if not event['event_id']:
            event['event_id'] = f"{event['event_type']}:{event['payment_id'] or link.get('id', '')}"

    elif provider == PROVIDER_STRIPE:
        event['event_id'] = data.get('id', '')
        event['event_type'] = data.get('type', '')
        obj = data.get('data', {}).get('object', {})
        event['invoice_number'] = (obj.get('metadata') or {}).get('invoice_number', '')
        event['external_subscription_id'] = obj.get('subscription') or ''
        if event['event_type'] in STRIPE_FAILURE_EVENTS:
            event['payment_id'] = obj.get('id', '')
            event['failure_reason'] = (obj.get('last_payment_error') or {}).get('message', 'Payment failed')
        else:
            event['payment_id'] = obj.get('payment_intent') or ''

    return event


class WebhookService:

    @staticmethod
    def log_webhook(provider, payload, signature=''):
        if isinstance(payload, bytes):
            payload = payload.decode('utf-8', errors='replace')
        return WebhookLog.objects.create(
            provider=provider,
            payload=payload,
            signature=signature or '',
            status=WebhookLog.STATUS_RECEIVED,
        )

    @staticmethod
    def is_processed(provider, event_id):
        return WebhookEvent.objects.filter(provider=provider, event_id=event_id).exists()

    @staticmethod
    def mark_as_processed(provider, event_id, event_type, payload=None, external_subscription_id=''):
        """Insert-if-absent. Returns (event, created)."""
        try:
            with transaction.atomic():
                return WebhookEvent.objects.get_or_create(
                    provider=provider,
                    event_id=event_id,
                    defaults={
                        'event_type': event_type,
                        'payload': payload or {},
                        'external_subscription_id': external_subscription_id or '',
                    },
                )
        except IntegrityError:
            return WebhookEvent.objects.get(provider=provider, event_id=event_id), False

    @staticmethod
    def update_status(log, status, error=None):
        log.status = status
        if status == WebhookLog.STATUS_PROCESSED:
            log.processed_at = timezone.now()
            log.next_retry_at = None
            log.error_message = ''
        elif status == WebhookLog.STATUS_FAILED:
            log.retry_count += 1
            log.error_message = str(error) if error else ''
            log.next_retry_at = next_retry_time(log.retry_count)
        log.save()
        return log

    @staticmethod
    def handle(provider, payload, signature, event_id=None):
        """
        Entry point for an inbound webhook.
        Raises ProviderError on a bad signature; processing errors are
        recorded on the log for retry and not raised.
        """
        provider = provider.upper()
        gateway = get_payment_gateway(provider)
        log = WebhookService.log_webhook(provider, payload, signature)

        if not gateway.verify_webhook_signature(payload, signature):
            log.status = WebhookLog.STATUS_FAILED
            log.error_message = 'Invalid webhook signature'
            log.save(update_fields=['status', 'error_message', 'updated_at'])
            logger.warning(f"Rejected {provider} webhook with invalid signature (log {log.id})")
            raise ProviderError('Invalid webhook signature')

        return WebhookService.process_log(log, event_id)

    @staticmethod
    def process_log(log, event_id=None):
        try:
            data = json.loads(log.payload)
        except ValueError as e:
            WebhookService.update_status(log, WebhookLog.STATUS_FAILED, f"Invalid JSON payload: {str(e)}")
            return {'status': 'failed', 'log_id': str(log.id)}

        event = parse_event(log.provider, data, event_id or log.event_id or None)
        log.event_id = event['event_id']
        log.event_type = event['event_type']

        if WebhookService.is_processed(log.provider, event['event_id']):
            logger.info(f"Duplicate {log.provider} webhook {event['event_id']}, skipping")
            WebhookService.update_status(log, WebhookLog.STATUS_PROCESSED)
            return {'status': 'duplicate', 'event_id': event['event_id']}

        WebhookService.update_status(log, WebhookLog.STATUS_PROCESSING)
        try:
            WebhookService.dispatch(log.provider, event)
            WebhookService.mark_as_processed(
                log.provider, event['event_id'], event['event_type'], data, event['external_subscription_id']
            )
        except Exception as e:
            logger.error(f"{log.provider} webhook {event['event_id']} processing error: {str(e)}", exc_info=True)
            WebhookService.update_status(log, WebhookLog.STATUS_FAILED, e)
            return {'status': 'failed', 'event_id': event['event_id']}

        WebhookService.update_status(log, WebhookLog.STATUS_PROCESSED)
        return {'status': 'processed', 'event_id': event['event_id']}

    @staticmethod
    def dispatch(provider, event):
        event_type = event['event_type']
        if event_type in RAZORPAY_PAYMENT_EVENTS + STRIPE_PAYMENT_EVENTS:
            invoice = WebhookService._get_invoice(event['invoice_number'])
            InvoicePaymentService.process_manual_payment(invoice, event['payment_id'], provider)
        elif event_type in STRIPE_FAILURE_EVENTS and event['invoice_number']:
            invoice = WebhookService._get_invoice(event['invoice_number'])
            if invoice.status != Invoice.STATUS_PAID:
                InvoicePaymentService.record_payment_failure(invoice, event['failure_reason'], provider=provider)
        else:
            logger.info(f"Ignoring {provider} webhook event type {event_type}")

    @staticmethod
    def _get_invoice(invoice_number):
        try:
            return Invoice.objects.get(invoice_number=invoice_number)
        except Invoice.DoesNotExist:
            raise InvoiceNotFound(f"Invoice {invoice_number or '?'} not found")

    @staticmethod
    def retry_failed_webhooks(now=None):
        now = now or timezone.now()
        logs = WebhookLog.objects.filter(
            status=WebhookLog.STATUS_FAILED,
            next_retry_at__isnull=False,
            next_retry_at__lte=now,
        )
        results = {'retried': 0, 'processed': 0, 'failed': 0}
        for log in logs:
            results['retried'] += 1
            outcome = WebhookService.process_log(log)
            if outcome['status'] == 'failed':
                results['failed'] += 1
            else:
                results['processed'] += 1

        logger.info(f"Webhook retry sweep: {results}")
        return results
