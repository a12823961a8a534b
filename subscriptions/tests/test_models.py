"""
Model tests for invoices, generation logs and billing preferences
"""
import re
from datetime import timedelta
from decimal import Decimal

from django.test import TestCase, override_settings
from django.utils import timezone

from subscriptions.models import (
    BillingPreferences,
    Invoice,
    InvoiceGenerationLog,
    InvoiceLineItem,
    InvoiceSequence,
    PaymentMethod,
    next_retry_time,
)

from .helpers import NOW, create_business, create_invoice, create_verified_card


class InvoiceTotalsTestCase(TestCase):

    def setUp(self):
        self.business = create_business()

    def test_line_item_amount_computed_on_save(self):
        invoice = create_invoice(self.business)
        item = InvoiceLineItem.objects.create(
            invoice=invoice, description='Extra devices', item_type=InvoiceLineItem.TYPE_ADDON,
            quantity=3, unit_price=Decimal('99.50'), amount=Decimal('0'),
        )
        self.assertEqual(item.amount, Decimal('298.50'))

    def test_total_equals_subtotal_plus_tax_after_line_change(self):
        invoice = create_invoice(self.business)
        self.assertEqual(invoice.subtotal, Decimal('1000.00'))
        self.assertEqual(invoice.tax_amount, Decimal('180.00'))
        self.assertEqual(invoice.total_amount, Decimal('1180.00'))

        item = invoice.line_items.get()
        item.quantity = 2
        item.save()
        InvoiceLineItem.objects.create(invoice=invoice, description='Adjustment', unit_price=Decimal('-100.00'), amount=Decimal('0'))
        invoice.recalculate_totals()
        invoice.save()
        invoice.refresh_from_db()

        self.assertEqual(invoice.subtotal, Decimal('1900.00'))
        self.assertEqual(invoice.tax_amount, Decimal('342.00'))
        self.assertEqual(invoice.total_amount, invoice.subtotal + invoice.tax_amount)

    def test_zero_tax_rate(self):
        invoice = create_invoice(self.business, tax_rate=Decimal('0'))
        self.assertEqual(invoice.tax_amount, Decimal('0.00'))
        self.assertEqual(invoice.total_amount, Decimal('1000.00'))

    def test_days_past_due(self):
        invoice = create_invoice(self.business, due_date=NOW - timedelta(days=16, hours=3))
        self.assertEqual(invoice.days_past_due(NOW), 16)
        self.assertTrue(invoice.is_overdue(NOW))

        invoice.due_date = NOW + timedelta(days=1)
        self.assertEqual(invoice.days_past_due(NOW), 0)
        self.assertFalse(invoice.is_overdue(NOW))

    def test_balance_due(self):
        invoice = create_invoice(self.business)
        invoice.paid_amount = Decimal('180.00')
        self.assertEqual(invoice.balance_due, Decimal('1000.00'))

    def test_invoice_number_format(self):
        number = Invoice.format_number(2026, 2, 42)
        self.assertEqual(number, 'INV-2026-02-000042')
        self.assertRegex(number, re.compile(r'^INV-\d{4}-\d{2}-\d{6}$'))


class InvoiceSequenceTestCase(TestCase):

    def test_values_are_monotonic(self):
        first = InvoiceSequence.next_value()
        second = InvoiceSequence.next_value()
        third = InvoiceSequence.next_value()
        self.assertEqual([second, third], [first + 1, first + 2])

    def test_scopes_are_independent(self):
        InvoiceSequence.next_value()
        InvoiceSequence.next_value()
        self.assertEqual(InvoiceSequence.next_value(scope='credit_note'), 1)


class InvoiceGenerationLogTestCase(TestCase):

    def setUp(self):
        self.business = create_business()
        self.log = InvoiceGenerationLog.objects.create(
            business=self.business,
            billing_period_year=2026,
            billing_period_month=2,
            billing_period_start=NOW - timedelta(days=37),
            billing_period_end=NOW - timedelta(days=10),
        )

    def _fail(self):
        self.log.mark_in_progress()
        try:
            raise RuntimeError('database unavailable')
        except RuntimeError as e:
            self.log.mark_failed(e)

    def test_first_failure_schedules_retry_after_one_minute(self):
        before = timezone.now()
        self._fail()

        self.assertEqual(self.log.status, InvoiceGenerationLog.STATUS_FAILED)
        self.assertEqual(self.log.attempt_count, 1)
        self.assertTrue(self.log.should_retry)
        self.assertEqual(self.log.error_message, 'database unavailable')
        self.assertIn('RuntimeError', self.log.error_traceback)
        self.assertGreaterEqual(self.log.next_retry_at, before + timedelta(minutes=1))
        self.assertLess(self.log.next_retry_at, before + timedelta(minutes=2))

    def test_retries_stop_when_schedule_exhausted(self):
        for _ in range(4):
            self._fail()
        self.assertTrue(self.log.should_retry)

        self._fail()
        self.assertEqual(self.log.attempt_count, 5)
        self.assertFalse(self.log.should_retry)
        self.assertIsNone(self.log.next_retry_at)

    def test_is_ready_for_retry(self):
        self._fail()
        self.assertFalse(self.log.is_ready_for_retry(timezone.now()))
        self.assertTrue(self.log.is_ready_for_retry(timezone.now() + timedelta(minutes=2)))

    def test_has_pending_payment(self):
        invoice = create_invoice(self.business)
        self.log.mark_succeeded(invoice)
        self.assertTrue(self.log.has_pending_payment())

        self.log.mark_payment_processing(InvoiceGenerationLog.PAYMENT_LINK_SENT)
        self.assertIsNotNone(self.log.payment_link_sent_at)
        self.assertFalse(self.log.has_pending_payment())

    @override_settings(BILLING_RETRY_BACKOFF_MINUTES=[2, 10])
    def test_backoff_schedule_from_settings(self):
        now = timezone.now()
        self.assertEqual(next_retry_time(2, now), now + timedelta(minutes=10))
        self.assertIsNone(next_retry_time(3, now))


class BillingPreferencesTestCase(TestCase):

    def setUp(self):
        self.business = create_business()

    def test_for_business_creates_defaults(self):
        prefs = BillingPreferences.objects.for_business(self.business)
        self.assertEqual(prefs.billing_mode, BillingPreferences.MODE_PREPAID)
        self.assertEqual(prefs.billing_currency, 'INR')
        self.assertEqual(prefs.grace_period_days, 15)
        self.assertEqual(BillingPreferences.objects.for_business(self.business).pk, prefs.pk)

    def test_auto_payment_requires_verified_method(self):
        prefs = BillingPreferences.objects.for_business(self.business)
        prefs.auto_payment_enabled = True
        self.assertFalse(prefs.is_auto_payment_configured())

        card = create_verified_card(self.business, now=timezone.now())
        prefs.default_payment_method = card
        self.assertTrue(prefs.is_auto_payment_configured())

        card.verified_at = None
        self.assertFalse(prefs.is_auto_payment_configured())

    def test_expired_card_is_not_verified(self):
        card = create_verified_card(self.business, now=timezone.now())
        card.expiry_year = timezone.now().year - 1
        self.assertTrue(card.is_expired())
        self.assertFalse(card.is_verified())

    def test_upi_never_expires(self):
        method = PaymentMethod(business=self.business, provider='RAZORPAY', method_type=PaymentMethod.TYPE_UPI,
                               external_payment_method_id='upi_1', verified_at=timezone.now())
        self.assertTrue(method.is_verified())

    def test_notification_email_falls_back_to_business(self):
        prefs = BillingPreferences.objects.for_business(self.business)
        self.assertEqual(prefs.notification_email(), 'billing@acme.test')
        prefs.billing_email = 'accounts@acme.test'
        self.assertEqual(prefs.notification_email(), 'accounts@acme.test')
