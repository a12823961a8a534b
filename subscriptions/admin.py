"""
Django Admin for Billing
"""
from django.contrib import admin, messages
from django.utils.html import format_html

from .invoice_generation import InvoiceGenerationService
from .models import (
    Alert,
    BillingPreferences,
    Invoice,
    InvoiceGenerationLog,
    InvoiceLineItem,
    PaymentMethod,
    PaymentTransaction,
    Subscription,
    SubscriptionPlan,
    UsageTracking,
    WebhookEvent,
    WebhookLog,
)


@admin.register(SubscriptionPlan)
class SubscriptionPlanAdmin(admin.ModelAdmin):
    list_display = ['plan_code', 'name', 'monthly_price', 'annual_price', 'currency', 'is_active', 'sort_order']
    list_filter = ['is_active', 'currency']
    search_fields = ['plan_code', 'name']


@admin.register(Subscription)
class SubscriptionAdmin(admin.ModelAdmin):
    list_display = ['business', 'plan_code', 'status', 'billing_cycle', 'current_period_end', 'failed_payment_count']
    list_filter = ['status', 'plan_code', 'billing_cycle', 'is_free']
    search_fields = ['business__name', 'external_subscription_id']
    readonly_fields = ['created_at', 'updated_at']

    fieldsets = (
        ('Subscription Info', {
            'fields': ('business', 'plan', 'plan_code', 'is_free', 'status', 'billing_cycle', 'currency')
        }),
        ('Billing Period', {
            'fields': ('current_period_start', 'current_period_end', 'next_billing_amount', 'trial_ends_at')
        }),
        ('Payment', {
            'fields': ('failed_payment_count', 'last_payment_status', 'last_payment_at',
                       'payment_provider', 'external_subscription_id', 'external_customer_id')
        }),
        ('Cancellation', {
            'fields': ('cancelled_at', 'cancellation_reason', 'paused_at')
        }),
        ('Timestamps', {
            'fields': ('created_at', 'updated_at')
        }),
    )


@admin.register(BillingPreferences)
class BillingPreferencesAdmin(admin.ModelAdmin):
    list_display = ['business', 'billing_mode', 'billing_currency', 'billing_country', 'grace_period_days', 'auto_payment_enabled']
    list_filter = ['billing_mode', 'billing_currency', 'auto_payment_enabled']
    search_fields = ['business__name', 'billing_email']


@admin.register(PaymentMethod)
class PaymentMethodAdmin(admin.ModelAdmin):
    list_display = ['business', 'provider', 'method_type', 'last4', 'is_default', 'is_active', 'verified_at']
    list_filter = ['provider', 'method_type', 'is_active']
    search_fields = ['business__name', 'external_payment_method_id']


class InvoiceLineItemInline(admin.TabularInline):
    model = InvoiceLineItem
    extra = 0
    readonly_fields = ['amount']


@admin.register(Invoice)
class InvoiceAdmin(admin.ModelAdmin):
    list_display = ['invoice_number', 'business', 'status_badge', 'total_amount', 'currency', 'due_date', 'reminder_count']
    list_filter = ['status', 'currency']
    search_fields = ['invoice_number', 'business__name']
    readonly_fields = ['created_at', 'updated_at', 'subtotal', 'tax_amount', 'total_amount']
    date_hierarchy = 'due_date'
    inlines = [InvoiceLineItemInline]

    STATUS_COLORS = {
        Invoice.STATUS_PENDING: 'orange',
        Invoice.STATUS_PAID: 'green',
        Invoice.STATUS_PARTIALLY_PAID: 'blue',
        Invoice.STATUS_OVERDUE: 'red',
        Invoice.STATUS_SUSPENDED: 'darkred',
    }

    def status_badge(self, obj):
        color = self.STATUS_COLORS.get(obj.status, 'gray')
        return format_html('<span style="color: {}; font-weight: bold;">{}</span>', color, obj.get_status_display())
    status_badge.short_description = 'Status'


@admin.register(InvoiceGenerationLog)
class InvoiceGenerationLogAdmin(admin.ModelAdmin):
    list_display = ['business', 'billing_period_year', 'billing_period_month', 'status', 'payment_status',
                    'attempt_count', 'should_retry', 'next_retry_at']
    list_filter = ['status', 'payment_status', 'should_retry', 'billing_period_year', 'billing_period_month']
    search_fields = ['business__name', 'invoice_number']
    readonly_fields = ['error_traceback', 'created_at', 'updated_at']
    actions = ['retry_generation']

    def retry_generation(self, request, queryset):
        """Re-run generation for the selected periods"""
        succeeded = 0
        for log in queryset.exclude(status=InvoiceGenerationLog.STATUS_SUCCESS).select_related('subscription'):
            if log.subscription is None:
                continue
            invoice = InvoiceGenerationService.generate_invoice_for_subscription(
                log.subscription, log.billing_period_year, log.billing_period_month
            )
            if invoice is not None:
                succeeded += 1
        self.message_user(request, f"{succeeded} invoice(s) generated", messages.SUCCESS)
    retry_generation.short_description = 'Retry invoice generation'


@admin.register(PaymentTransaction)
class PaymentTransactionAdmin(admin.ModelAdmin):
    list_display = ['external_payment_id', 'business', 'invoice', 'provider', 'status', 'amount', 'currency', 'created_at']
    list_filter = ['provider', 'status']
    search_fields = ['external_payment_id', 'business__name', 'invoice__invoice_number']


@admin.register(WebhookEvent)
class WebhookEventAdmin(admin.ModelAdmin):
    list_display = ['provider', 'event_type', 'event_id', 'processed_at']
    list_filter = ['provider', 'event_type']
    search_fields = ['event_id']


@admin.register(WebhookLog)
class WebhookLogAdmin(admin.ModelAdmin):
    list_display = ['provider', 'event_type', 'event_id', 'status', 'retry_count', 'next_retry_at', 'created_at']
    list_filter = ['provider', 'status']
    search_fields = ['event_id']


@admin.register(UsageTracking)
class UsageTrackingAdmin(admin.ModelAdmin):
    list_display = ['business', 'user_count', 'device_count', 'product_count', 'customer_count', 'invoice_count']
    search_fields = ['business__name']


@admin.register(Alert)
class AlertAdmin(admin.ModelAdmin):
    list_display = ['business', 'alert_type', 'priority', 'title', 'email_sent', 'is_read', 'created_at']
    list_filter = ['alert_type', 'priority', 'email_sent', 'is_read']
    search_fields = ['business__name', 'title']
    actions = ['mark_read']

    def mark_read(self, request, queryset):
        alerts = list(queryset.filter(is_read=False))
        for alert in alerts:
            alert.mark_as_read()
        self.message_user(request, f"{len(alerts)} alert(s) marked as read", messages.SUCCESS)
    mark_read.short_description = 'Mark selected alerts as read'
