"""
Billing exceptions
Raised by the subscription/invoice services and mapped to HTTP status codes
by subscriptions.views.billing_exception_handler
"""


class SubscriptionError(Exception):
    """Base exception for billing errors"""
    pass


class NotFound(SubscriptionError):
    pass


class SubscriptionNotFound(NotFound):
    pass


class PlanNotFound(NotFound):
    pass


class InvoiceNotFound(NotFound):
    pass


class PaymentMethodNotFound(NotFound):
    pass


class BillingPreferencesNotFound(NotFound):
    pass


class ValidationFailure(SubscriptionError):
    """Operation not allowed in the current state, or a limit was exceeded"""
    pass


class PaymentFailed(SubscriptionError):
    """A charge or payment verification did not succeed"""
    pass


class ProviderError(SubscriptionError):
    """Payment provider is misconfigured or unreachable"""
    pass
