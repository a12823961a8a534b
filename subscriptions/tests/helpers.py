"""
Shared fixtures for billing tests
"""
from datetime import datetime, timedelta, timezone as dt_timezone
from decimal import Decimal

from accounts.models import Business
from subscriptions.models import (
    BillingPreferences,
    Invoice,
    InvoiceLineItem,
    PaymentMethod,
    Subscription,
    SubscriptionPlan,
)
from subscriptions.payment_gateways import ChargeResult, PaymentGateway


FAKE_GATEWAYS = {
    'RAZORPAY': 'subscriptions.tests.helpers.FakeGateway',
    'STRIPE': 'subscriptions.tests.helpers.FakeGateway',
}

NOW = datetime(2026, 3, 10, 9, 0, tzinfo=dt_timezone.utc)


class FakeGateway(PaymentGateway):
    """In-memory gateway; behaviour is set through class attributes"""
    provider = 'RAZORPAY'

    calls = []
    charge_result = None
    verify_result = True
    verify_error = None
    link_url = 'https://pay.example.com/l/abc123'
    link_error = None
    signature_valid = True

    @classmethod
    def reset(cls):
        cls.calls = []
        cls.charge_result = ChargeResult(success=True, external_payment_id='pay_auto_001')
        cls.verify_result = True
        cls.verify_error = None
        cls.link_url = 'https://pay.example.com/l/abc123'
        cls.link_error = None
        cls.signature_valid = True

    def charge(self, invoice, payment_method):
        self.calls.append(('charge', invoice.invoice_number))
        return self.charge_result

    def verify(self, external_payment_id):
        self.calls.append(('verify', external_payment_id))
        if self.verify_error:
            raise self.verify_error
        return self.verify_result

    def create_link(self, invoice):
        self.calls.append(('create_link', invoice.invoice_number))
        if self.link_error:
            raise self.link_error
        return self.link_url

    def verify_webhook_signature(self, payload, signature):
        self.calls.append(('verify_webhook_signature', signature))
        return self.signature_valid


def create_plans():
    free = SubscriptionPlan.objects.create(
        plan_code='FREE', name='Free', monthly_price=Decimal('0.00'), annual_price=Decimal('0.00'),
        max_users=1, max_products=50, sort_order=1,
    )
    starter = SubscriptionPlan.objects.create(
        plan_code='STARTER', name='Starter', monthly_price=Decimal('1000.00'), annual_price=Decimal('10000.00'),
        max_users=3, max_products=500, sort_order=2,
    )
    return free, starter


def create_business(name='Acme Retail', country='IN', email='billing@acme.test'):
    return Business.objects.create(name=name, email=email, country=country)


def create_paid_subscription(business, plan, now=NOW, amount=Decimal('1000.00')):
    return Subscription.objects.create(
        business=business,
        plan=plan,
        plan_code=plan.plan_code,
        is_free=False,
        status=Subscription.STATUS_ACTIVE,
        billing_cycle=Subscription.CYCLE_MONTHLY,
        currency='INR',
        current_period_start=now - timedelta(days=10),
        current_period_end=now + timedelta(days=20),
        next_billing_amount=amount,
    )


def create_free_subscription(business, free_plan):
    return Subscription.objects.create(
        business=business,
        plan=free_plan,
        plan_code='FREE',
        is_free=True,
        status=Subscription.STATUS_ACTIVE,
    )


def create_postpaid_preferences(business, **kwargs):
    defaults = {
        'billing_mode': BillingPreferences.MODE_POSTPAID,
        'billing_currency': 'INR',
        'billing_country': 'IN',
    }
    defaults.update(kwargs)
    return BillingPreferences.objects.create(business=business, **defaults)


def create_verified_card(business, now=NOW, provider='RAZORPAY'):
    return PaymentMethod.objects.create(
        business=business,
        provider=provider,
        external_payment_method_id='token_abc',
        external_customer_id='cust_abc',
        method_type=PaymentMethod.TYPE_CARD,
        last4='4242',
        expiry_month=12,
        expiry_year=now.year + 2,
        is_default=True,
        verified_at=now,
    )


def create_invoice(business, subscription=None, due_date=None, status=Invoice.STATUS_PENDING,
                   number='INV-2026-02-000001', amount=Decimal('1000.00'), tax_rate=Decimal('0.18'),
                   period_start=None):
    period_start = period_start or datetime(2026, 2, 1, tzinfo=dt_timezone.utc)
    invoice = Invoice.objects.create(
        business=business,
        subscription=subscription,
        invoice_number=number,
        billing_period_start=period_start,
        billing_period_end=period_start + timedelta(days=28) - timedelta(seconds=1),
        due_date=due_date or NOW + timedelta(days=15),
        status=status,
        currency='INR',
        tax_rate=tax_rate,
    )
    InvoiceLineItem.objects.create(invoice=invoice, description='STARTER - February 2026', unit_price=amount, amount=amount)
    invoice.recalculate_totals()
    invoice.save()
    return invoice
