"""
Payment Gateway Integrations
Handles Razorpay (INR) and Stripe (everything else) with environment variable configuration.

Engines only talk to the PaymentGateway interface. The concrete class for a
provider is resolved from settings.PAYMENT_GATEWAY_CLASSES so a fake gateway
can be swapped in without touching the billing code.
"""
import hashlib
import hmac
import logging
import os
from dataclasses import dataclass, field
from decimal import Decimal

import requests
import stripe
from django.conf import settings
from django.utils.module_loading import import_string

from .exceptions import ProviderError

logger = logging.getLogger(__name__)


PROVIDER_RAZORPAY = 'RAZORPAY'
PROVIDER_STRIPE = 'STRIPE'

DEFAULT_GATEWAY_CLASSES = {
    PROVIDER_RAZORPAY: 'subscriptions.payment_gateways.RazorpayGateway',
    PROVIDER_STRIPE: 'subscriptions.payment_gateways.StripeGateway',
}


@dataclass
class ChargeResult:
    success: bool
    external_payment_id: str = ''
    failure_reason: str = ''
    raw_response: dict = field(default_factory=dict)


def get_payment_mode():
    """Get payment gateway mode from environment (test or live)"""
    return os.getenv('PAYMENT_GATEWAY_MODE', 'test').lower()


def provider_for_currency(currency):
    """INR is collected through Razorpay, every other currency through Stripe"""
    if (currency or '').upper() == 'INR':
        return PROVIDER_RAZORPAY
    return PROVIDER_STRIPE


def to_minor_units(amount):
    """Convert a major-unit Decimal (rupees, dollars) to paise/cents"""
    return int((Decimal(amount) * 100).quantize(Decimal('1')))


def _frontend_url(path):
    base = getattr(settings, 'FRONTEND_URL', 'http://localhost:5173').rstrip('/')
    return f"{base}{path}"


class PaymentGateway:
    """Interface every payment provider implements"""

    provider = None

    def charge(self, invoice, payment_method):
        """Charge a saved payment method for the invoice balance. Returns ChargeResult."""
        raise NotImplementedError

    def verify(self, external_payment_id):
        """True when the provider confirms the payment was captured"""
        raise NotImplementedError

    def create_link(self, invoice):
        """Create a hosted payment link for the invoice and return its URL"""
        raise NotImplementedError

    def verify_webhook_signature(self, payload, signature):
        raise NotImplementedError


class RazorpayGateway(PaymentGateway):
    """Razorpay REST integration (cards, UPI, netbanking in India)"""

    provider = PROVIDER_RAZORPAY
    BASE_URL = "https://api.razorpay.com/v1"

    def __init__(self):
        """Initialize Razorpay with keys from environment variables"""
        self.mode = get_payment_mode()
        suffix = 'LIVE' if self.mode == 'live' else 'TEST'

        self.key_id = os.getenv(f'RAZORPAY_KEY_ID_{suffix}')
        self.key_secret = os.getenv(f'RAZORPAY_KEY_SECRET_{suffix}')
        self.webhook_secret = os.getenv(f'RAZORPAY_WEBHOOK_SECRET_{suffix}')

        if not self.key_id or not self.key_secret:
            raise ProviderError(
                f"Razorpay {self.mode} keys not found in environment variables. "
                f"Please set RAZORPAY_KEY_ID_{suffix} and RAZORPAY_KEY_SECRET_{suffix}"
            )

        logger.info(f"Razorpay gateway initialized in {self.mode.upper()} mode")

    def _make_request(self, method, endpoint, data=None):
        """Make API request to Razorpay"""
        url = f"{self.BASE_URL}/{endpoint}"

        try:
            if method == "GET":
                response = requests.get(url, auth=(self.key_id, self.key_secret), params=data, timeout=30)
            elif method == "POST":
                response = requests.post(url, auth=(self.key_id, self.key_secret), json=data, timeout=30)
            else:
                raise ValueError(f"Unsupported HTTP method: {method}")

            response.raise_for_status()
            return response.json()
        except requests.exceptions.RequestException as e:
            logger.error(f"Razorpay API error ({self.mode} mode): {str(e)}")
            raise ProviderError(f"Razorpay API error: {str(e)}")

    def charge(self, invoice, payment_method):
        amount = to_minor_units(invoice.balance_due)
        order = self._make_request("POST", "orders", {
            "amount": amount,
            "currency": invoice.currency,
            "receipt": invoice.invoice_number,
            "notes": {"invoice_number": invoice.invoice_number, "business_id": str(invoice.business_id)},
        })

        data = {
            "email": invoice.business.email,
            "contact": (invoice.business.phone_numbers or [''])[0],
            "amount": amount,
            "currency": invoice.currency,
            "order_id": order['id'],
            "customer_id": payment_method.external_customer_id,
            "token": payment_method.external_payment_method_id,
            "recurring": "1",
            "description": f"Invoice {invoice.invoice_number}",
        }
        try:
            response = self._make_request("POST", "payments/create/recurring", data)
        except ProviderError as e:
            return ChargeResult(success=False, failure_reason=str(e))

        payment_id = response.get('razorpay_payment_id') or response.get('id', '')
        if not payment_id:
            return ChargeResult(success=False, failure_reason='No payment id returned', raw_response=response)
        return ChargeResult(success=True, external_payment_id=payment_id, raw_response=response)

    def verify(self, external_payment_id):
        response = self._make_request("GET", f"payments/{external_payment_id}")
        return response.get('status') == 'captured'

    def create_link(self, invoice):
        data = {
            "amount": to_minor_units(invoice.balance_due),
            "currency": invoice.currency,
            "accept_partial": False,
            "reference_id": invoice.invoice_number,
            "description": f"Invoice {invoice.invoice_number}",
            "customer": {
                "name": invoice.business.name,
                "email": invoice.business.email,
            },
            "notify": {"email": True, "sms": False},
            "reminder_enable": True,
            "callback_url": _frontend_url(f"/billing/invoices/{invoice.id}"),
            "callback_method": "get",
            "notes": {"invoice_id": str(invoice.id), "business_id": str(invoice.business_id)},
        }
        response = self._make_request("POST", "payment_links", data)
        url = response.get('short_url')
        if not url:
            raise ProviderError('Razorpay did not return a payment link')
        return url

    def verify_webhook_signature(self, payload, signature):
        if not self.webhook_secret:
            raise ProviderError(f"Razorpay {self.mode} webhook secret not configured")
        if isinstance(payload, str):
            payload = payload.encode('utf-8')
        expected = hmac.new(self.webhook_secret.encode('utf-8'), msg=payload, digestmod=hashlib.sha256).hexdigest()
        return hmac.compare_digest(expected, signature or '')


class StripeGateway(PaymentGateway):
    """Stripe payment gateway integration (International cards)"""

    provider = PROVIDER_STRIPE

    def __init__(self):
        """Initialize Stripe with keys from environment variables"""
        self.mode = get_payment_mode()
        suffix = 'LIVE' if self.mode == 'live' else 'TEST'

        self.secret_key = os.getenv(f'STRIPE_SECRET_KEY_{suffix}')
        self.webhook_secret = os.getenv(f'STRIPE_WEBHOOK_SECRET_{suffix}')

        if not self.secret_key:
            raise ProviderError(
                f"Stripe {self.mode} secret key not found in environment variables. "
                f"Please set STRIPE_SECRET_KEY_{suffix} in your .env file"
            )

        stripe.api_key = self.secret_key
        logger.info(f"Stripe gateway initialized in {self.mode.upper()} mode")

    def charge(self, invoice, payment_method):
        try:
            intent = stripe.PaymentIntent.create(
                amount=to_minor_units(invoice.balance_due),
                currency=invoice.currency.lower(),
                customer=payment_method.external_customer_id or None,
                payment_method=payment_method.external_payment_method_id,
                off_session=True,
                confirm=True,
                description=f"Invoice {invoice.invoice_number}",
                metadata={
                    'invoice_number': invoice.invoice_number,
                    'business_id': str(invoice.business_id),
                },
            )
        except stripe.CardError as e:
            logger.warning(f"Stripe card declined for {invoice.invoice_number}: {str(e)}")
            return ChargeResult(success=False, failure_reason=str(e))
        except stripe.StripeError as e:
            logger.error(f"Stripe charge error: {str(e)}")
            raise ProviderError(f"Stripe charge error: {str(e)}")

        if intent.status != 'succeeded':
            return ChargeResult(success=False, external_payment_id=intent.id,
                                failure_reason=f"Payment intent status {intent.status}")
        return ChargeResult(success=True, external_payment_id=intent.id)

    def verify(self, external_payment_id):
        try:
            intent = stripe.PaymentIntent.retrieve(external_payment_id)
        except stripe.StripeError as e:
            logger.error(f"Stripe verification error: {str(e)}")
            raise ProviderError(f"Failed to verify payment: {str(e)}")
        return intent.status == 'succeeded'

    def create_link(self, invoice):
        """Create Stripe checkout session"""
        try:
            session = stripe.checkout.Session.create(
                payment_method_types=['card'],
                line_items=[{
                    'price_data': {
                        'currency': invoice.currency.lower(),
                        'unit_amount': to_minor_units(invoice.balance_due),
                        'product_data': {'name': f"Invoice {invoice.invoice_number}"},
                    },
                    'quantity': 1,
                }],
                mode='payment',
                customer_email=invoice.business.email,
                success_url=_frontend_url(f"/billing/invoices/{invoice.id}?paid=1"),
                cancel_url=_frontend_url(f"/billing/invoices/{invoice.id}"),
                client_reference_id=str(invoice.id),
                metadata={
                    'invoice_number': invoice.invoice_number,
                    'business_id': str(invoice.business_id),
                },
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe checkout error: {str(e)}")
            raise ProviderError(f"Failed to create checkout session: {str(e)}")
        return session.url

    def verify_webhook_signature(self, payload, signature):
        if not self.webhook_secret:
            raise ProviderError(f"Stripe {self.mode} webhook secret not configured")
        try:
            stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except ValueError:
            return False
        except stripe.SignatureVerificationError:
            return False
        return True


def get_payment_gateway(provider):
    """Factory function to get the configured gateway for a provider"""
    classes = getattr(settings, 'PAYMENT_GATEWAY_CLASSES', DEFAULT_GATEWAY_CLASSES)
    path = classes.get((provider or '').upper())
    if not path:
        raise ProviderError(f"Unsupported payment provider: {provider}")
    return import_string(path)()
