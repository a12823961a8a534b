"""
Invoice payment processing
Auto-charge a saved payment method when one is configured, otherwise (or
when the charge fails) send a hosted payment link.
"""
import logging

from django.db import transaction
from django.utils import timezone

from . import notifications
from .downgrade import SubscriptionDowngradeService
from .exceptions import PaymentFailed, PaymentMethodNotFound, ValidationFailure
from .models import Invoice, InvoiceGenerationLog, PaymentTransaction, Subscription
from .payment_gateways import get_payment_gateway, provider_for_currency
from .suspension import InvoiceSuspensionService

logger = logging.getLogger(__name__)


class InvoicePaymentService:

    @staticmethod
    def process_invoice_payment(log, invoice, prefs):
        """
        Drive payment for a freshly generated invoice and record the
        outcome on the generation log. Never raises.
        """
        if prefs.is_auto_payment_configured():
            log.mark_payment_processing(InvoiceGenerationLog.PAYMENT_AUTO_CHARGING)
            log.save(update_fields=['payment_status', 'updated_at'])
            try:
                InvoicePaymentService.process_auto_payment(invoice)
                log.mark_payment_processing(InvoiceGenerationLog.PAYMENT_AUTO_CHARGE_SUCCESS)
                log.save(update_fields=['payment_status', 'updated_at'])
                return log
            except Exception as e:
                logger.warning(f"Auto-charge failed for {invoice.invoice_number}, falling back to payment link: {str(e)}")
                log.mark_payment_processing(InvoiceGenerationLog.PAYMENT_AUTO_CHARGE_FAILED, error=e)
                log.save(update_fields=['payment_status', 'payment_error', 'updated_at'])

        log.mark_payment_processing(InvoiceGenerationLog.PAYMENT_LINK_GENERATING)
        log.save(update_fields=['payment_status', 'updated_at'])
        try:
            InvoicePaymentService.generate_payment_link(invoice)
        except Exception as e:
            logger.error(f"Payment link generation failed for {invoice.invoice_number}: {str(e)}", exc_info=True)
            log.mark_payment_processing(InvoiceGenerationLog.PAYMENT_LINK_FAILED, error=e)
            log.save(update_fields=['payment_status', 'payment_error', 'updated_at'])
            return log

        log.mark_payment_processing(InvoiceGenerationLog.PAYMENT_LINK_SENT)
        log.save(update_fields=['payment_status', 'payment_link_sent_at', 'updated_at'])
        try:
            notifications.payment_link_sent(invoice)
        except Exception as e:
            logger.error(f"Failed to notify about payment link for {invoice.invoice_number}: {str(e)}", exc_info=True)
        return log

    @staticmethod
    def generate_payment_link(invoice):
        gateway = get_payment_gateway(provider_for_currency(invoice.currency))
        url = gateway.create_link(invoice)
        invoice.payment_link_url = url
        invoice.save(update_fields=['payment_link_url', 'updated_at'])
        logger.info(f"Payment link created for {invoice.invoice_number} via {gateway.provider}")
        return url

    @staticmethod
    def process_auto_payment(invoice):
        if not invoice.auto_payment_enabled:
            raise PaymentFailed(f"Auto payment is not enabled for invoice {invoice.invoice_number}")

        payment_method = invoice.payment_method
        if payment_method is None or not payment_method.is_verified():
            raise PaymentMethodNotFound(f"No verified payment method for invoice {invoice.invoice_number}")

        gateway = get_payment_gateway(payment_method.provider)
        result = gateway.charge(invoice, payment_method)
        if not result.success:
            InvoicePaymentService.record_payment_failure(invoice, result.failure_reason, provider=payment_method.provider)
            raise PaymentFailed(result.failure_reason or 'Charge declined')

        return InvoicePaymentService.mark_invoice_paid(
            invoice, payment_method.provider, result.external_payment_id, result.raw_response
        )

    @staticmethod
    def process_manual_payment(invoice, external_payment_id, provider):
        """Confirm a payment made through a link or checkout page"""
        if invoice.status == Invoice.STATUS_PAID:
            already_recorded = invoice.transactions.filter(
                external_payment_id=external_payment_id,
                status=PaymentTransaction.STATUS_SUCCEEDED,
            ).exists()
            if already_recorded:
                return invoice
            raise ValidationFailure(f"Invoice {invoice.invoice_number} is already paid")

        gateway = get_payment_gateway(provider)
        if not gateway.verify(external_payment_id):
            raise PaymentFailed(f"Payment {external_payment_id} could not be verified")

        return InvoicePaymentService.mark_invoice_paid(invoice, provider, external_payment_id)

    @staticmethod
    def mark_invoice_paid(invoice, provider, external_payment_id, gateway_response=None):
        now = timezone.now()
        with transaction.atomic():
            invoice = Invoice.objects.select_for_update().select_related('business').get(id=invoice.id)
            was_suspended = invoice.status == Invoice.STATUS_SUSPENDED

            invoice.status = Invoice.STATUS_PAID
            invoice.paid_amount = invoice.total_amount
            invoice.paid_at = now
            invoice.save(update_fields=['status', 'paid_amount', 'paid_at', 'updated_at'])

            PaymentTransaction.objects.create(
                business=invoice.business,
                subscription_id=invoice.subscription_id,
                invoice=invoice,
                provider=provider,
                external_payment_id=external_payment_id or '',
                status=PaymentTransaction.STATUS_SUCCEEDED,
                amount=invoice.total_amount,
                currency=invoice.currency,
                net_amount=invoice.total_amount,
                gateway_response=gateway_response or {},
            )

            subscription = Subscription.objects.select_for_update().filter(id=invoice.subscription_id).first()
            if subscription:
                subscription.failed_payment_count = 0
                subscription.last_payment_status = Subscription.PAYMENT_SUCCEEDED
                subscription.last_payment_at = now
                if subscription.status == Subscription.STATUS_PAST_DUE:
                    subscription.status = Subscription.STATUS_ACTIVE
                subscription.save()

        logger.info(f"Invoice {invoice.invoice_number} paid via {provider} ({external_payment_id})")
        notifications.payment_succeeded(invoice)
        if was_suspended:
            InvoiceSuspensionService.reactivate_workspace(invoice)
        return invoice

    @staticmethod
    def record_payment_failure(invoice, reason, provider=None):
        PaymentTransaction.objects.create(
            business=invoice.business,
            subscription_id=invoice.subscription_id,
            invoice=invoice,
            provider=provider or provider_for_currency(invoice.currency),
            status=PaymentTransaction.STATUS_FAILED,
            amount=invoice.balance_due,
            currency=invoice.currency,
            failure_reason=reason or '',
        )
        notifications.payment_failed(invoice, reason)

        subscription = Subscription.objects.filter(id=invoice.subscription_id).first()
        if subscription is None:
            return None
        return SubscriptionDowngradeService.handle_payment_failure(
            subscription.business_id, subscription.failed_payment_count + 1
        )
