"""
Dunning and workspace suspension
Driven only by elapsed days since the invoice due date.
"""
import logging
from datetime import timedelta

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from . import notifications
from .models import BillingPreferences, Invoice

logger = logging.getLogger(__name__)


def suspension_days():
    return getattr(settings, 'DUNNING_SUSPENSION_DAYS', 15)


def overdue_reminder_days():
    return sorted(getattr(settings, 'DUNNING_OVERDUE_REMINDER_DAYS', [3, 7, 14]))


def reminder_before_due_days():
    return getattr(settings, 'DUNNING_REMINDER_BEFORE_DUE_DAYS', 3)


class InvoiceSuspensionService:

    @staticmethod
    def reminder_checkpoint(invoice, days_past_due):
        """
        Latest overdue checkpoint crossed that has not been reminded yet.
        Returns the checkpoint (days) or None.
        """
        crossed = [day for day in overdue_reminder_days() if day <= days_past_due]
        if not crossed:
            return None
        checkpoint = crossed[-1]
        checkpoint_at = invoice.due_date + timedelta(days=checkpoint)
        if invoice.last_reminder_sent_at and invoice.last_reminder_sent_at >= checkpoint_at:
            return None
        return checkpoint

    @staticmethod
    def check_overdue_invoices(now=None):
        now = now or timezone.now()
        invoice_ids = list(
            Invoice.objects.filter(
                due_date__lt=now,
                status__in=[Invoice.STATUS_PENDING, Invoice.STATUS_OVERDUE, Invoice.STATUS_PARTIALLY_PAID],
            ).values_list('id', flat=True)
        )
        results = {'checked': 0, 'suspended': 0, 'reminded': 0, 'failed': 0}

        for invoice_id in invoice_ids:
            results['checked'] += 1
            try:
                outcome = InvoiceSuspensionService._process_overdue_invoice(invoice_id, now)
            except Exception as e:
                results['failed'] += 1
                logger.error(f"Error processing overdue invoice {invoice_id}: {str(e)}", exc_info=True)
                continue
            if outcome:
                results[outcome] += 1

        logger.info(f"Overdue invoice check: {results}")
        return results

    @staticmethod
    def _process_overdue_invoice(invoice_id, now):
        with transaction.atomic():
            invoice = Invoice.objects.select_for_update().select_related('business').get(id=invoice_id)
            days_past_due = invoice.days_past_due(now)

            if days_past_due >= suspension_days():
                invoice.status = Invoice.STATUS_SUSPENDED
                invoice.suspended_at = now
                invoice.save(update_fields=['status', 'suspended_at', 'updated_at'])
                logger.warning(
                    f"Suspended workspace {invoice.business_id}: invoice {invoice.invoice_number} "
                    f"is {days_past_due} days past due"
                )
                notifications.workspace_suspended(invoice, days_past_due)
                return 'suspended'

            if InvoiceSuspensionService.reminder_checkpoint(invoice, days_past_due) is None:
                return None

            if invoice.status == Invoice.STATUS_PENDING:
                invoice.status = Invoice.STATUS_OVERDUE
            invoice.reminder_count += 1
            invoice.last_reminder_sent_at = now
            invoice.save(update_fields=['status', 'reminder_count', 'last_reminder_sent_at', 'updated_at'])
            notifications.payment_overdue(invoice, days_past_due)
            return 'reminded'

    @staticmethod
    def send_pre_due_reminders(now=None):
        now = now or timezone.now()
        window_end = now + timedelta(days=reminder_before_due_days())
        invoices = Invoice.objects.filter(
            status=Invoice.STATUS_PENDING,
            due_date__gt=now,
            due_date__lt=window_end,
        ).select_related('business')

        sent = 0
        for invoice in invoices:
            if invoice.last_reminder_sent_at and invoice.last_reminder_sent_at > now - timedelta(hours=24):
                continue
            prefs = BillingPreferences.objects.filter(business=invoice.business).first()
            if prefs and not prefs.send_reminders:
                continue
            try:
                notifications.payment_due_soon(invoice)
                invoice.last_reminder_sent_at = now
                invoice.reminder_count += 1
                invoice.save(update_fields=['last_reminder_sent_at', 'reminder_count', 'updated_at'])
                sent += 1
            except Exception as e:
                logger.error(f"Error sending due reminder for {invoice.invoice_number}: {str(e)}", exc_info=True)

        logger.info(f"Sent {sent} pre-due reminders")
        return sent

    @staticmethod
    def reactivate_workspace(invoice):
        """
        Called after a previously suspended invoice is paid.
        Returns True when the business has nothing else outstanding.
        """
        if invoice.suspended_at is None or invoice.status != Invoice.STATUS_PAID:
            return False

        outstanding = Invoice.objects.filter(
            business=invoice.business,
            status__in=[Invoice.STATUS_PENDING, Invoice.STATUS_OVERDUE, Invoice.STATUS_SUSPENDED],
        ).exclude(id=invoice.id)
        if outstanding.exists():
            logger.info(f"Business {invoice.business_id} still has unpaid invoices, staying suspended")
            return False

        logger.info(f"Reactivating workspace {invoice.business_id} after payment of {invoice.invoice_number}")
        notifications.workspace_reactivated(invoice)
        return True
