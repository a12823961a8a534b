"""
Tests for invoice payment handling and the payment gateways
"""
import hashlib
import hmac
import os
from datetime import timedelta
from decimal import Decimal
from unittest.mock import MagicMock, patch

import requests
from django.test import TestCase, override_settings
from django.utils import timezone

from subscriptions.exceptions import PaymentFailed, PaymentMethodNotFound, ProviderError, ValidationFailure
from subscriptions.invoice_payment import InvoicePaymentService
from subscriptions.models import Alert, Invoice, PaymentTransaction, Subscription
from subscriptions.payment_gateways import (
    RazorpayGateway,
    StripeGateway,
    get_payment_gateway,
    provider_for_currency,
    to_minor_units,
)

from .helpers import (
    FAKE_GATEWAYS,
    NOW,
    FakeGateway,
    create_business,
    create_invoice,
    create_paid_subscription,
    create_plans,
    create_verified_card,
)


RAZORPAY_ENV = {
    'PAYMENT_GATEWAY_MODE': 'test',
    'RAZORPAY_KEY_ID_TEST': 'rzp_test_key',
    'RAZORPAY_KEY_SECRET_TEST': 'rzp_test_secret',
    'RAZORPAY_WEBHOOK_SECRET_TEST': 'whsec_razorpay',
}


@override_settings(PAYMENT_GATEWAY_CLASSES=FAKE_GATEWAYS)
class ManualPaymentTestCase(TestCase):

    def setUp(self):
        FakeGateway.reset()
        self.free_plan, self.plan = create_plans()
        self.business = create_business()
        self.subscription = create_paid_subscription(self.business, self.plan)
        self.invoice = create_invoice(self.business, self.subscription)

    def test_verified_payment_marks_invoice_paid(self):
        invoice = InvoicePaymentService.process_manual_payment(self.invoice, 'pay_001', 'RAZORPAY')

        self.assertEqual(invoice.status, Invoice.STATUS_PAID)
        self.assertEqual(invoice.paid_amount, Decimal('1180.00'))
        self.assertIsNotNone(invoice.paid_at)
        self.assertIn(('verify', 'pay_001'), FakeGateway.calls)

        txn = PaymentTransaction.objects.get(invoice=invoice)
        self.assertEqual(txn.status, PaymentTransaction.STATUS_SUCCEEDED)
        self.assertEqual(txn.amount, Decimal('1180.00'))
        self.assertTrue(Alert.objects.filter(invoice=invoice, alert_type=Alert.TYPE_PAYMENT_SUCCESS).exists())

    def test_same_payment_twice_is_idempotent(self):
        InvoicePaymentService.process_manual_payment(self.invoice, 'pay_001', 'RAZORPAY')
        self.invoice.refresh_from_db()

        invoice = InvoicePaymentService.process_manual_payment(self.invoice, 'pay_001', 'RAZORPAY')

        self.assertEqual(invoice.status, Invoice.STATUS_PAID)
        self.assertEqual(PaymentTransaction.objects.filter(invoice=self.invoice).count(), 1)

    def test_different_payment_for_paid_invoice_rejected(self):
        InvoicePaymentService.process_manual_payment(self.invoice, 'pay_001', 'RAZORPAY')
        self.invoice.refresh_from_db()

        with self.assertRaises(ValidationFailure):
            InvoicePaymentService.process_manual_payment(self.invoice, 'pay_002', 'RAZORPAY')

    def test_unverified_payment_raises(self):
        FakeGateway.verify_result = False

        with self.assertRaises(PaymentFailed):
            InvoicePaymentService.process_manual_payment(self.invoice, 'pay_bad', 'RAZORPAY')

        self.invoice.refresh_from_db()
        self.assertEqual(self.invoice.status, Invoice.STATUS_PENDING)
        self.assertFalse(PaymentTransaction.objects.exists())

    def test_payment_clears_past_due(self):
        self.subscription.status = Subscription.STATUS_PAST_DUE
        self.subscription.failed_payment_count = 2
        self.subscription.save()

        InvoicePaymentService.process_manual_payment(self.invoice, 'pay_001', 'RAZORPAY')

        self.subscription.refresh_from_db()
        self.assertEqual(self.subscription.status, Subscription.STATUS_ACTIVE)
        self.assertEqual(self.subscription.failed_payment_count, 0)
        self.assertEqual(self.subscription.last_payment_status, Subscription.PAYMENT_SUCCEEDED)

    def test_paying_suspended_invoice_reactivates_workspace(self):
        Invoice.objects.filter(pk=self.invoice.pk).update(status=Invoice.STATUS_SUSPENDED, suspended_at=NOW)
        self.invoice.refresh_from_db()

        InvoicePaymentService.process_manual_payment(self.invoice, 'pay_001', 'RAZORPAY')

        self.assertTrue(
            Alert.objects.filter(business=self.business, alert_type=Alert.TYPE_WORKSPACE_REACTIVATED).exists()
        )

    def test_record_payment_failure_escalates(self):
        InvoicePaymentService.record_payment_failure(self.invoice, 'Insufficient funds')

        txn = PaymentTransaction.objects.get(invoice=self.invoice)
        self.assertEqual(txn.status, PaymentTransaction.STATUS_FAILED)
        self.assertEqual(txn.provider, 'RAZORPAY')
        self.assertEqual(txn.failure_reason, 'Insufficient funds')
        self.subscription.refresh_from_db()
        self.assertEqual(self.subscription.status, Subscription.STATUS_PAST_DUE)
        self.assertEqual(self.subscription.failed_payment_count, 1)


@override_settings(PAYMENT_GATEWAY_CLASSES=FAKE_GATEWAYS)
class AutoPaymentTestCase(TestCase):

    def setUp(self):
        FakeGateway.reset()
        self.free_plan, self.plan = create_plans()
        self.business = create_business()
        self.subscription = create_paid_subscription(self.business, self.plan)
        self.invoice = create_invoice(self.business, self.subscription)

    def test_auto_payment_disabled(self):
        with self.assertRaises(PaymentFailed):
            InvoicePaymentService.process_auto_payment(self.invoice)

    def test_auto_payment_without_verified_method(self):
        card = create_verified_card(self.business, now=timezone.now())
        card.verified_at = None
        card.save()
        self.invoice.auto_payment_enabled = True
        self.invoice.payment_method = card

        with self.assertRaises(PaymentMethodNotFound):
            InvoicePaymentService.process_auto_payment(self.invoice)
        self.assertEqual(FakeGateway.calls, [])

    def test_auto_payment_charges_saved_method(self):
        self.invoice.auto_payment_enabled = True
        self.invoice.payment_method = create_verified_card(self.business, now=timezone.now())

        invoice = InvoicePaymentService.process_auto_payment(self.invoice)

        self.assertEqual(invoice.status, Invoice.STATUS_PAID)
        self.assertEqual(FakeGateway.calls, [('charge', self.invoice.invoice_number)])


class GatewaySelectionTestCase(TestCase):

    def test_provider_for_currency(self):
        self.assertEqual(provider_for_currency('INR'), 'RAZORPAY')
        self.assertEqual(provider_for_currency('inr'), 'RAZORPAY')
        self.assertEqual(provider_for_currency('USD'), 'STRIPE')
        self.assertEqual(provider_for_currency('GHS'), 'STRIPE')

    def test_to_minor_units(self):
        self.assertEqual(to_minor_units(Decimal('1180.00')), 118000)
        self.assertEqual(to_minor_units(Decimal('0.015')), 2)

    def test_unknown_provider(self):
        with self.assertRaises(ProviderError):
            get_payment_gateway('PAYPAL')

    @override_settings(PAYMENT_GATEWAY_CLASSES=FAKE_GATEWAYS)
    def test_configured_class_is_used(self):
        self.assertIsInstance(get_payment_gateway('stripe'), FakeGateway)

    def test_missing_razorpay_keys(self):
        with patch.dict(os.environ, {}, clear=True):
            with self.assertRaises(ProviderError):
                RazorpayGateway()

    def test_missing_stripe_keys(self):
        with patch.dict(os.environ, {}, clear=True):
            with self.assertRaises(ProviderError):
                StripeGateway()

    def test_live_mode_reads_live_keys(self):
        env = {'PAYMENT_GATEWAY_MODE': 'live', 'STRIPE_SECRET_KEY_LIVE': 'sk_live_x'}
        with patch.dict(os.environ, env, clear=True):
            gateway = StripeGateway()
        self.assertEqual(gateway.mode, 'live')
        self.assertEqual(gateway.secret_key, 'sk_live_x')


class RazorpayGatewayTestCase(TestCase):

    def setUp(self):
        self.business = create_business()
        self.invoice = create_invoice(self.business, due_date=NOW + timedelta(days=15))
        with patch.dict(os.environ, RAZORPAY_ENV, clear=True):
            self.gateway = RazorpayGateway()

    def test_webhook_signature(self):
        payload = b'{"event": "payment_link.paid"}'
        signature = hmac.new(b'whsec_razorpay', payload, hashlib.sha256).hexdigest()

        self.assertTrue(self.gateway.verify_webhook_signature(payload, signature))
        self.assertTrue(self.gateway.verify_webhook_signature(payload.decode('utf-8'), signature))
        self.assertFalse(self.gateway.verify_webhook_signature(payload, 'not-a-signature'))
        self.assertFalse(self.gateway.verify_webhook_signature(payload, None))

    @patch('subscriptions.payment_gateways.requests.post')
    def test_create_link(self, mock_post):
        mock_post.return_value = MagicMock(status_code=200)
        mock_post.return_value.json.return_value = {'id': 'plink_1', 'short_url': 'https://rzp.io/i/abc'}

        url = self.gateway.create_link(self.invoice)

        self.assertEqual(url, 'https://rzp.io/i/abc')
        args, kwargs = mock_post.call_args
        self.assertEqual(args[0], 'https://api.razorpay.com/v1/payment_links')
        self.assertEqual(kwargs['auth'], ('rzp_test_key', 'rzp_test_secret'))
        self.assertEqual(kwargs['json']['amount'], 118000)
        self.assertEqual(kwargs['json']['reference_id'], self.invoice.invoice_number)

    @patch('subscriptions.payment_gateways.requests.post')
    def test_create_link_without_url(self, mock_post):
        mock_post.return_value = MagicMock(status_code=200)
        mock_post.return_value.json.return_value = {'id': 'plink_1'}

        with self.assertRaises(ProviderError):
            self.gateway.create_link(self.invoice)

    @patch('subscriptions.payment_gateways.requests.get')
    def test_verify_captured_payment(self, mock_get):
        mock_get.return_value = MagicMock(status_code=200)
        mock_get.return_value.json.return_value = {'id': 'pay_1', 'status': 'captured'}
        self.assertTrue(self.gateway.verify('pay_1'))

        mock_get.return_value.json.return_value = {'id': 'pay_1', 'status': 'failed'}
        self.assertFalse(self.gateway.verify('pay_1'))

    @patch('subscriptions.payment_gateways.requests.post')
    def test_charge_network_error_on_recurring_payment(self, mock_post):
        order_response = MagicMock(status_code=200)
        order_response.json.return_value = {'id': 'order_1'}
        mock_post.side_effect = [order_response, requests.exceptions.ConnectionError('timeout')]
        card = create_verified_card(self.business, now=timezone.now())

        result = self.gateway.charge(self.invoice, card)

        self.assertFalse(result.success)
        self.assertIn('timeout', result.failure_reason)
