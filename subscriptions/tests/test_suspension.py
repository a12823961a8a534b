"""
Tests for overdue reminders and workspace suspension
"""
from datetime import timedelta

from django.test import TestCase, override_settings

from subscriptions.models import Alert, BillingPreferences, Invoice
from subscriptions.suspension import InvoiceSuspensionService

from .helpers import NOW, create_business, create_invoice


class OverdueInvoiceTestCase(TestCase):

    def setUp(self):
        self.business = create_business()

    def _invoice_due(self, days_ago, **kwargs):
        return create_invoice(self.business, due_date=NOW - timedelta(days=days_ago, hours=1), **kwargs)

    def test_suspends_after_fifteen_days(self):
        invoice = self._invoice_due(16)

        results = InvoiceSuspensionService.check_overdue_invoices(NOW)

        self.assertEqual(results, {'checked': 1, 'suspended': 1, 'reminded': 0, 'failed': 0})
        invoice.refresh_from_db()
        self.assertEqual(invoice.status, Invoice.STATUS_SUSPENDED)
        self.assertEqual(invoice.suspended_at, NOW)
        alert = Alert.objects.get(invoice=invoice)
        self.assertEqual(alert.alert_type, Alert.TYPE_WORKSPACE_SUSPENDED)
        self.assertEqual(alert.priority, 'CRITICAL')

    def test_suspends_on_exact_boundary(self):
        invoice = create_invoice(self.business, due_date=NOW - timedelta(days=15))

        InvoiceSuspensionService.check_overdue_invoices(NOW)

        invoice.refresh_from_db()
        self.assertEqual(invoice.status, Invoice.STATUS_SUSPENDED)

    def test_suspended_invoice_is_not_processed_again(self):
        self._invoice_due(16)
        InvoiceSuspensionService.check_overdue_invoices(NOW)

        results = InvoiceSuspensionService.check_overdue_invoices(NOW + timedelta(days=1))

        self.assertEqual(results['checked'], 0)
        self.assertEqual(Alert.objects.count(), 1)

    def test_overdue_reminder_at_first_checkpoint(self):
        invoice = self._invoice_due(5)

        results = InvoiceSuspensionService.check_overdue_invoices(NOW)

        self.assertEqual(results['reminded'], 1)
        invoice.refresh_from_db()
        self.assertEqual(invoice.status, Invoice.STATUS_OVERDUE)
        self.assertEqual(invoice.reminder_count, 1)
        self.assertEqual(invoice.last_reminder_sent_at, NOW)
        alert = Alert.objects.get(invoice=invoice)
        self.assertEqual(alert.alert_type, Alert.TYPE_PAYMENT_OVERDUE)
        self.assertEqual(alert.metadata['days_past_due'], 5)

    def test_same_checkpoint_is_reminded_once(self):
        invoice = self._invoice_due(5)
        InvoiceSuspensionService.check_overdue_invoices(NOW)

        results = InvoiceSuspensionService.check_overdue_invoices(NOW + timedelta(hours=6))

        self.assertEqual(results['reminded'], 0)
        invoice.refresh_from_db()
        self.assertEqual(invoice.reminder_count, 1)

    def test_next_checkpoint_sends_another_reminder(self):
        invoice = self._invoice_due(5)
        InvoiceSuspensionService.check_overdue_invoices(NOW)

        results = InvoiceSuspensionService.check_overdue_invoices(NOW + timedelta(days=2))

        self.assertEqual(results['reminded'], 1)
        invoice.refresh_from_db()
        self.assertEqual(invoice.status, Invoice.STATUS_OVERDUE)
        self.assertEqual(invoice.reminder_count, 2)

    def test_not_yet_at_first_checkpoint(self):
        invoice = self._invoice_due(2)

        results = InvoiceSuspensionService.check_overdue_invoices(NOW)

        self.assertEqual(results, {'checked': 1, 'suspended': 0, 'reminded': 0, 'failed': 0})
        invoice.refresh_from_db()
        self.assertEqual(invoice.status, Invoice.STATUS_PENDING)
        self.assertFalse(Alert.objects.exists())

    def test_paid_invoices_are_ignored(self):
        self._invoice_due(20, status=Invoice.STATUS_PAID)

        results = InvoiceSuspensionService.check_overdue_invoices(NOW)

        self.assertEqual(results['checked'], 0)

    @override_settings(DUNNING_SUSPENSION_DAYS=30, DUNNING_OVERDUE_REMINDER_DAYS=[10, 20])
    def test_thresholds_are_configurable(self):
        invoice = self._invoice_due(16)

        results = InvoiceSuspensionService.check_overdue_invoices(NOW)

        self.assertEqual(results['reminded'], 1)
        invoice.refresh_from_db()
        self.assertEqual(invoice.status, Invoice.STATUS_OVERDUE)

    def test_reminder_checkpoint(self):
        invoice = self._invoice_due(8)
        self.assertIsNone(InvoiceSuspensionService.reminder_checkpoint(invoice, 2))
        self.assertEqual(InvoiceSuspensionService.reminder_checkpoint(invoice, 3), 3)
        self.assertEqual(InvoiceSuspensionService.reminder_checkpoint(invoice, 8), 7)

        invoice.last_reminder_sent_at = invoice.due_date + timedelta(days=7, hours=2)
        self.assertIsNone(InvoiceSuspensionService.reminder_checkpoint(invoice, 8))
        self.assertEqual(InvoiceSuspensionService.reminder_checkpoint(invoice, 14), 14)


class PreDueReminderTestCase(TestCase):

    def setUp(self):
        self.business = create_business()

    def test_reminds_invoices_due_within_window(self):
        due_soon = create_invoice(self.business, due_date=NOW + timedelta(days=2))
        create_invoice(self.business, due_date=NOW + timedelta(days=10), number='INV-2026-01-000002',
                       period_start=NOW - timedelta(days=60))

        sent = InvoiceSuspensionService.send_pre_due_reminders(NOW)

        self.assertEqual(sent, 1)
        due_soon.refresh_from_db()
        self.assertEqual(due_soon.reminder_count, 1)
        self.assertEqual(due_soon.last_reminder_sent_at, NOW)
        self.assertEqual(Alert.objects.get().alert_type, Alert.TYPE_PAYMENT_DUE)

    def test_reminder_not_repeated_within_a_day(self):
        create_invoice(self.business, due_date=NOW + timedelta(days=2))
        InvoiceSuspensionService.send_pre_due_reminders(NOW)

        self.assertEqual(InvoiceSuspensionService.send_pre_due_reminders(NOW + timedelta(hours=12)), 0)
        self.assertEqual(InvoiceSuspensionService.send_pre_due_reminders(NOW + timedelta(hours=25)), 1)

    def test_reminders_disabled_in_preferences(self):
        prefs = BillingPreferences.objects.for_business(self.business)
        prefs.send_reminders = False
        prefs.save()
        create_invoice(self.business, due_date=NOW + timedelta(days=1))

        self.assertEqual(InvoiceSuspensionService.send_pre_due_reminders(NOW), 0)


class ReactivationTestCase(TestCase):

    def setUp(self):
        self.business = create_business()

    def test_reactivates_when_nothing_else_outstanding(self):
        invoice = create_invoice(self.business, status=Invoice.STATUS_PAID)
        invoice.suspended_at = NOW

        self.assertTrue(InvoiceSuspensionService.reactivate_workspace(invoice))
        self.assertTrue(Alert.objects.filter(alert_type=Alert.TYPE_WORKSPACE_REACTIVATED).exists())

    def test_other_unpaid_invoice_blocks_reactivation(self):
        invoice = create_invoice(self.business, status=Invoice.STATUS_PAID)
        invoice.suspended_at = NOW
        create_invoice(self.business, status=Invoice.STATUS_OVERDUE, number='INV-2026-01-000002',
                       period_start=NOW - timedelta(days=60))

        self.assertFalse(InvoiceSuspensionService.reactivate_workspace(invoice))
        self.assertFalse(Alert.objects.filter(alert_type=Alert.TYPE_WORKSPACE_REACTIVATED).exists())

    def test_never_suspended_invoice(self):
        invoice = create_invoice(self.business, status=Invoice.STATUS_PAID)
        self.assertFalse(InvoiceSuspensionService.reactivate_workspace(invoice))
