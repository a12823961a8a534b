from django.urls import path, include
from rest_framework.routers import DefaultRouter
from .views import (
    BillingPreferencesViewSet,
    InvoiceViewSet,
    PaymentWebhookView,
    SubscriptionViewSet,
)

router = DefaultRouter()
router.register(r'invoices', InvoiceViewSet, basename='invoice')
router.register(r'billing-preferences', BillingPreferencesViewSet, basename='billing-preferences')
router.register(r'subscriptions', SubscriptionViewSet, basename='subscription')

urlpatterns = [
    path('api/', include(router.urls)),
    path('api/webhooks/<str:provider>/', PaymentWebhookView.as_view(), name='payment-webhook'),
]
