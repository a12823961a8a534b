"""
Celery Tasks for Billing
Thin wrappers around the billing services, scheduled by Celery beat (see app/celery.py)
"""
from celery import shared_task
import logging

from .downgrade import SubscriptionDowngradeService
from .invoice_generation import InvoiceGenerationService
from .suspension import InvoiceSuspensionService
from .webhooks import WebhookService

logger = logging.getLogger(__name__)


@shared_task(name='subscriptions.tasks.generate_monthly_invoices')
def generate_monthly_invoices():
    """
    Generate invoices for the current month
    Run on the 1st of each month at 02:00 UTC
    """
    logger.info("Starting monthly invoice generation")
    return InvoiceGenerationService.generate_monthly_invoices()


@shared_task(name='subscriptions.tasks.daily_invoice_reconciliation')
def daily_invoice_reconciliation():
    """
    Generate missing invoices for the trailing months, retry failed
    generations and process pending payments
    Run daily at 02:00 UTC
    """
    logger.info("Starting daily invoice reconciliation")
    return InvoiceGenerationService.daily_reconciliation()


@shared_task(name='subscriptions.tasks.check_overdue_invoices')
def check_overdue_invoices():
    """
    Send overdue reminders and suspend workspaces past the grace period
    Run daily at 00:00 UTC
    """
    return InvoiceSuspensionService.check_overdue_invoices()


@shared_task(name='subscriptions.tasks.send_payment_due_reminders')
def send_payment_due_reminders():
    """Run daily at 10:00 UTC"""
    return InvoiceSuspensionService.send_pre_due_reminders()


@shared_task(name='subscriptions.tasks.process_subscription_downgrades')
def process_subscription_downgrades():
    """
    Move expired and repeatedly failing subscriptions to FREE
    Run daily at 01:00 UTC
    """
    return SubscriptionDowngradeService.process_subscription_downgrades()


@shared_task(name='subscriptions.tasks.retry_failed_webhooks')
def retry_failed_webhooks():
    """Run every 5 minutes"""
    return WebhookService.retry_failed_webhooks()


BILLING_JOBS = {
    'monthly': generate_monthly_invoices,
    'reconciliation': daily_invoice_reconciliation,
    'overdue': check_overdue_invoices,
    'reminders': send_payment_due_reminders,
    'downgrades': process_subscription_downgrades,
    'webhooks': retry_failed_webhooks,
}
