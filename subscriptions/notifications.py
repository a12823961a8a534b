"""
Billing notifications
Every notification writes an Alert row for the business and emails the
billing contact. Email errors are logged; the Alert is kept either way.
"""
import logging

from django.conf import settings
from django.core.mail import send_mail

from .models import Alert, BillingPreferences

logger = logging.getLogger(__name__)


def notify(business, alert_type, title, message, invoice=None, priority='MEDIUM', metadata=None):
    """Create an Alert and send it by email"""
    alert = Alert.objects.create(
        business=business,
        invoice=invoice,
        alert_type=alert_type,
        priority=priority,
        title=title,
        message=message,
        metadata=metadata or {},
    )

    recipient = BillingPreferences.objects.for_business(business).notification_email()
    if not recipient:
        logger.warning(f"No billing email for business {business.id}, alert {alert.id} not emailed")
        return alert

    try:
        send_mail(
            f"{title} - {business.name}",
            f"Hello {business.name},\n\n{message}\n\nBest regards,\nBilling Team\n",
            getattr(settings, 'DEFAULT_FROM_EMAIL', 'billing@localhost'),
            [recipient],
            fail_silently=False,
        )
    except Exception as e:
        logger.error(f"Error emailing {alert_type} alert to {recipient}: {str(e)}", exc_info=True)
        return alert

    alert.email_sent = True
    alert.save(update_fields=['email_sent'])
    logger.info(f"{alert_type} notification sent to {recipient}")
    return alert


def _amount(invoice):
    return f"{invoice.currency} {invoice.total_amount}"


def invoice_generated(invoice):
    return notify(
        invoice.business,
        Alert.TYPE_INVOICE_GENERATED,
        'New Invoice',
        f"Invoice {invoice.invoice_number} for {_amount(invoice)} has been generated. "
        f"It is due on {invoice.due_date:%d %b %Y}.",
        invoice=invoice,
        priority='LOW',
        metadata={'invoice_number': invoice.invoice_number},
    )


def payment_link_sent(invoice):
    return notify(
        invoice.business,
        Alert.TYPE_PAYMENT_LINK,
        'Invoice Payment Link',
        f"Pay invoice {invoice.invoice_number} ({_amount(invoice)}) here: {invoice.payment_link_url}",
        invoice=invoice,
        metadata={'invoice_number': invoice.invoice_number, 'payment_link_url': invoice.payment_link_url},
    )


def payment_due_soon(invoice):
    return notify(
        invoice.business,
        Alert.TYPE_PAYMENT_DUE,
        'Payment Due Soon',
        f"Invoice {invoice.invoice_number} for {_amount(invoice)} is due on {invoice.due_date:%d %b %Y}.",
        invoice=invoice,
        metadata={'invoice_number': invoice.invoice_number, 'due_date': invoice.due_date.isoformat()},
    )


def payment_overdue(invoice, days_past_due):
    return notify(
        invoice.business,
        Alert.TYPE_PAYMENT_OVERDUE,
        'Payment Overdue',
        f"Invoice {invoice.invoice_number} for {_amount(invoice)} is {days_past_due} days past due. "
        f"Your workspace will be suspended if it remains unpaid.",
        invoice=invoice,
        priority='HIGH',
        metadata={'invoice_number': invoice.invoice_number, 'days_past_due': days_past_due},
    )


def workspace_suspended(invoice, days_past_due):
    return notify(
        invoice.business,
        Alert.TYPE_WORKSPACE_SUSPENDED,
        'Workspace Suspended',
        f"Your workspace has been suspended because invoice {invoice.invoice_number} "
        f"is {days_past_due} days past due. Pay the invoice to restore access.",
        invoice=invoice,
        priority='CRITICAL',
        metadata={'invoice_number': invoice.invoice_number, 'days_past_due': days_past_due},
    )


def workspace_reactivated(invoice):
    return notify(
        invoice.business,
        Alert.TYPE_WORKSPACE_REACTIVATED,
        'Workspace Reactivated',
        f"Payment for invoice {invoice.invoice_number} was received. Your workspace is active again.",
        invoice=invoice,
        metadata={'invoice_number': invoice.invoice_number},
    )


def payment_succeeded(invoice):
    return notify(
        invoice.business,
        Alert.TYPE_PAYMENT_SUCCESS,
        'Payment Received',
        f"We received {_amount(invoice)} for invoice {invoice.invoice_number}. Thank you!",
        invoice=invoice,
        priority='LOW',
        metadata={'invoice_number': invoice.invoice_number},
    )


def payment_failed(invoice, reason):
    return notify(
        invoice.business,
        Alert.TYPE_PAYMENT_FAILED,
        'Payment Failed',
        f"Payment for invoice {invoice.invoice_number} failed: {reason}",
        invoice=invoice,
        priority='HIGH',
        metadata={'invoice_number': invoice.invoice_number, 'reason': reason},
    )


def plan_downgraded(business, previous_plan_code, reason):
    return notify(
        business,
        Alert.TYPE_PLAN_DOWNGRADED,
        'Plan Downgraded',
        f"Your subscription was moved from {previous_plan_code} to the FREE plan. Reason: {reason}",
        priority='HIGH',
        metadata={'previous_plan_code': previous_plan_code, 'reason': reason},
    )
