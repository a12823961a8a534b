"""
Postpaid invoice generation

The daily reconciliation makes sure every POSTPAID business has exactly one
invoice per calendar month for the trailing months, retries failed
generations with backoff and pushes generated invoices through payment.
InvoiceGenerationLog is the idempotency ledger: a (business, year, month)
row exists as soon as generation was attempted.
"""
import logging
from datetime import datetime, timedelta, timezone as dt_timezone
from decimal import Decimal

from dateutil.relativedelta import relativedelta
from django.conf import settings
from django.db import transaction
from django.db.models import Count
from django.utils import timezone

from . import notifications
from .exceptions import BillingPreferencesNotFound, SubscriptionNotFound, ValidationFailure
from .invoice_payment import InvoicePaymentService
from .models import (
    BillingPreferences, Invoice, InvoiceGenerationLog, InvoiceLineItem, InvoiceSequence, Subscription,
)

logger = logging.getLogger(__name__)


def lookback_months():
    return getattr(settings, 'INVOICE_LOOKBACK_MONTHS', 3)


def tax_rate_for_country(country):
    """Flat tax rate for a billing country, 0 when the country is not listed"""
    rates = getattr(settings, 'BILLING_TAX_RATES', {'IN': '0.18'})
    return Decimal(str(rates.get((country or '').upper(), '0')))


def billing_period_bounds(year, month):
    """First instant of the month to the last second of the month, UTC"""
    start = datetime(year, month, 1, tzinfo=dt_timezone.utc)
    end = start + relativedelta(months=1) - timedelta(seconds=1)
    return start, end


class InvoiceGenerationService:

    @staticmethod
    def months_to_reconcile(now=None):
        """(year, month) pairs for the trailing months, oldest first"""
        now = now or timezone.now()
        current = datetime(now.year, now.month, 1, tzinfo=dt_timezone.utc)
        months = []
        for offset in range(lookback_months(), -1, -1):
            month_start = current - relativedelta(months=offset)
            if now > month_start:
                months.append((month_start.year, month_start.month))
        return months

    @staticmethod
    def postpaid_subscriptions():
        postpaid_business_ids = BillingPreferences.objects.filter(
            billing_mode=BillingPreferences.MODE_POSTPAID
        ).values('business_id')
        return Subscription.objects.filter(
            status=Subscription.STATUS_ACTIVE,
            is_free=False,
            business_id__in=postpaid_business_ids,
        ).select_related('business', 'plan')

    @staticmethod
    def daily_reconciliation(now=None):
        """Generate missing invoices, retry failures, then chase pending payments"""
        now = now or timezone.now()
        results = {}
        steps = [
            ('generation', InvoiceGenerationService.generate_missing_invoices),
            ('retries', InvoiceGenerationService.retry_failed_generations),
            ('payments', InvoiceGenerationService.process_pending_payments),
        ]
        for name, step in steps:
            try:
                results[name] = step(now)
            except Exception as e:
                logger.error(f"Daily reconciliation step '{name}' failed: {str(e)}", exc_info=True)
                results[name] = {'error': str(e)}

        logger.info(f"Daily invoice reconciliation: {results}")
        return results

    @staticmethod
    def generate_missing_invoices(now=None, months=None):
        now = now or timezone.now()
        months = months or InvoiceGenerationService.months_to_reconcile(now)
        results = {'checked': 0, 'generated': 0, 'failed': 0, 'skipped': 0}

        subscriptions = list(InvoiceGenerationService.postpaid_subscriptions())
        for year, month in months:
            # FAILED logs belong to the retry sweep
            attempted = set(
                InvoiceGenerationLog.objects.filter(
                    billing_period_year=year, billing_period_month=month
                ).values_list('business_id', flat=True)
            )
            for subscription in subscriptions:
                results['checked'] += 1
                if subscription.business_id in attempted:
                    results['skipped'] += 1
                    continue
                try:
                    invoice = InvoiceGenerationService.generate_invoice_for_subscription(subscription, year, month, now)
                except Exception as e:
                    logger.error(
                        f"Invoice generation crashed for business {subscription.business_id} "
                        f"{year}-{month:02d}: {str(e)}",
                        exc_info=True,
                    )
                    invoice = None
                if invoice is None:
                    results['failed'] += 1
                else:
                    results['generated'] += 1

        return results

    @staticmethod
    def generate_monthly_invoices(now=None):
        """Single pass over the current month, run on the 1st of each month"""
        now = now or timezone.now()
        return InvoiceGenerationService.generate_missing_invoices(now, months=[(now.year, now.month)])

    @staticmethod
    def generate_invoice_for_subscription(subscription, year, month, now=None, prefs=None):
        """
        Generate the invoice for one business and month.

        Returns the invoice, or None when generation failed. Failures are
        recorded on the generation log and never raised, so one tenant
        cannot break the batch.
        """
        now = now or timezone.now()
        period_start, period_end = billing_period_bounds(year, month)
        prefs = prefs or BillingPreferences.objects.for_business(subscription.business)

        with transaction.atomic():
            log, _ = InvoiceGenerationLog.objects.select_for_update().get_or_create(
                business=subscription.business,
                billing_period_year=year,
                billing_period_month=month,
                defaults={
                    'subscription': subscription,
                    'billing_period_start': period_start,
                    'billing_period_end': period_end,
                },
            )
            if log.status == InvoiceGenerationLog.STATUS_SUCCESS:
                return log.invoice

            log.subscription = subscription
            log.mark_in_progress()
            log.save()

            try:
                with transaction.atomic():
                    invoice, created = InvoiceGenerationService._create_invoice(
                        subscription, prefs, year, month, period_start, period_end, now
                    )
            except Exception as e:
                logger.error(
                    f"Invoice generation failed for business {subscription.business_id} "
                    f"{year}-{month:02d} (attempt {log.attempt_count}): {str(e)}",
                    exc_info=True,
                )
                log.mark_failed(e)
                log.save()
                return None

            log.mark_succeeded(invoice)
            log.save()

        if not created:
            logger.info(f"Invoice {invoice.invoice_number} already existed for business {subscription.business_id}")
            return invoice

        logger.info(f"Generated invoice {invoice.invoice_number} for business {subscription.business_id}")
        try:
            notifications.invoice_generated(invoice)
        except Exception as e:
            logger.error(f"Failed to notify about {invoice.invoice_number}: {str(e)}", exc_info=True)

        if invoice.status == Invoice.STATUS_PAID:
            # nothing owed
            log.mark_payment_processing(InvoiceGenerationLog.PAYMENT_AUTO_CHARGE_SUCCESS)
            log.save(update_fields=['payment_status', 'updated_at'])
            return invoice

        try:
            InvoicePaymentService.process_invoice_payment(log, invoice, prefs)
        except Exception as e:
            # the pending-payment sweep picks the invoice up again
            logger.error(f"Payment handoff failed for {invoice.invoice_number}: {str(e)}", exc_info=True)
        return invoice

    @staticmethod
    def _create_invoice(subscription, prefs, year, month, period_start, period_end, now):
        existing = Invoice.objects.filter(
            business=subscription.business,
            billing_period_start=period_start,
            billing_period_end=period_end,
        ).first()
        if existing:
            return existing, False

        auto_payment = prefs.is_auto_payment_configured()
        amount = subscription.next_billing_amount or Decimal('0.00')

        invoice = Invoice(
            business=subscription.business,
            subscription=subscription,
            invoice_number=Invoice.format_number(year, month, InvoiceSequence.next_value()),
            billing_period_start=period_start,
            billing_period_end=period_end,
            generated_at=now,
            due_date=now + timedelta(days=prefs.grace_period_days),
            status=Invoice.STATUS_PENDING,
            currency=prefs.billing_currency,
            auto_payment_enabled=auto_payment,
            payment_method=prefs.default_payment_method if auto_payment else None,
        )
        line_item = InvoiceLineItem(
            description=f"{subscription.plan_code} - {period_start:%B %Y}",
            item_type=InvoiceLineItem.TYPE_SUBSCRIPTION,
            quantity=1,
            unit_price=amount,
            amount=amount,
            period_start=period_start,
            period_end=period_end,
        )
        invoice.tax_rate = tax_rate_for_country(prefs.billing_country)
        invoice.recalculate_totals([line_item])
        if invoice.total_amount <= 0:
            invoice.status = Invoice.STATUS_PAID
            invoice.paid_at = now
        invoice.save()

        line_item.invoice = invoice
        line_item.save()
        return invoice, True

    @staticmethod
    def retry_failed_generations(now=None):
        now = now or timezone.now()
        logs = InvoiceGenerationLog.objects.filter(
            status=InvoiceGenerationLog.STATUS_FAILED,
            should_retry=True,
            next_retry_at__lte=now,
        ).select_related('subscription', 'business')
        results = {'retried': 0, 'succeeded': 0, 'failed': 0, 'abandoned': 0}

        for log in logs:
            subscription = log.subscription
            prefs = BillingPreferences.objects.filter(business_id=log.business_id).first()
            if subscription is None or subscription.is_free or prefs is None or not prefs.is_postpaid:
                logger.warning(
                    f"Abandoning invoice generation retry for business {log.business_id} "
                    f"{log.billing_period_year}-{log.billing_period_month:02d}"
                )
                log.should_retry = False
                log.next_retry_at = None
                log.save(update_fields=['should_retry', 'next_retry_at', 'updated_at'])
                results['abandoned'] += 1
                continue

            results['retried'] += 1
            try:
                invoice = InvoiceGenerationService.generate_invoice_for_subscription(
                    subscription, log.billing_period_year, log.billing_period_month, now, prefs
                )
            except Exception as e:
                logger.error(f"Invoice generation retry crashed for business {log.business_id}: {str(e)}", exc_info=True)
                invoice = None
            if invoice is None:
                results['failed'] += 1
            else:
                results['succeeded'] += 1

        return results

    @staticmethod
    def process_pending_payments(now=None):
        logs = InvoiceGenerationLog.objects.filter(
            status=InvoiceGenerationLog.STATUS_SUCCESS,
            invoice__isnull=False,
        ).exclude(
            payment_status__in=InvoiceGenerationLog.TERMINAL_PAYMENT_STATUSES
        ).select_related('invoice', 'business')
        results = {'processed': 0, 'already_paid': 0, 'failed': 0}

        for log in logs:
            invoice = log.invoice
            if invoice.status == Invoice.STATUS_PAID:
                log.mark_payment_processing(InvoiceGenerationLog.PAYMENT_AUTO_CHARGE_SUCCESS)
                log.save(update_fields=['payment_status', 'updated_at'])
                results['already_paid'] += 1
                continue
            try:
                prefs = BillingPreferences.objects.for_business(log.business)
                InvoicePaymentService.process_invoice_payment(log, invoice, prefs)
                results['processed'] += 1
            except Exception as e:
                results['failed'] += 1
                logger.error(f"Pending payment processing failed for {invoice.invoice_number}: {str(e)}", exc_info=True)

        return results

    @staticmethod
    def manually_generate_invoice(business_id, year, month):
        if not 1 <= int(month) <= 12:
            raise ValidationFailure(f"Invalid month: {month}")

        subscription = Subscription.objects.select_related('business').filter(business_id=business_id).first()
        if subscription is None:
            raise SubscriptionNotFound(f"No subscription for business {business_id}")
        if subscription.is_free:
            raise ValidationFailure(f"Business {business_id} is on the FREE plan")

        prefs = BillingPreferences.objects.filter(business_id=business_id).first()
        if prefs is None:
            raise BillingPreferencesNotFound(f"No billing preferences for business {business_id}")
        if not prefs.is_postpaid:
            raise ValidationFailure(f"Business {business_id} is not in POSTPAID mode")

        return InvoiceGenerationService.generate_invoice_for_subscription(subscription, int(year), int(month), prefs=prefs)

    @staticmethod
    def get_generation_stats(year, month):
        logs = InvoiceGenerationLog.objects.filter(billing_period_year=year, billing_period_month=month)
        counts = {status: 0 for status, _ in InvoiceGenerationLog.STATUS_CHOICES}
        for row in logs.values('status').annotate(count=Count('id')):
            counts[row['status']] = row['count']

        failed = [
            {
                'business_id': str(log.business_id),
                'business_name': log.business.name,
                'attempt_count': log.attempt_count,
                'error_message': log.error_message,
                'next_retry_at': log.next_retry_at,
                'should_retry': log.should_retry,
            }
            for log in logs.filter(status=InvoiceGenerationLog.STATUS_FAILED).select_related('business')
        ]
        return {
            'year': year,
            'month': month,
            'total': sum(counts.values()),
            'by_status': counts,
            'failed': failed,
        }
