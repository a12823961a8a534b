"""
Billing Serializers
Handles serialization/deserialization of invoice, subscription and billing preference data
"""
from rest_framework import serializers

from .models import (
    BillingPreferences,
    Invoice,
    InvoiceLineItem,
    PaymentMethod,
    PaymentTransaction,
    Subscription,
    SubscriptionPlan,
)
from .payment_gateways import PROVIDER_RAZORPAY, PROVIDER_STRIPE


class SubscriptionPlanSerializer(serializers.ModelSerializer):
    class Meta:
        model = SubscriptionPlan
        fields = [
            'id', 'plan_code', 'name', 'description', 'monthly_price', 'annual_price',
            'currency', 'trial_days', 'max_users', 'max_devices', 'max_products',
            'max_customers', 'max_invoices_per_month', 'features', 'is_active',
        ]
        read_only_fields = fields


class SubscriptionSerializer(serializers.ModelSerializer):
    plan = SubscriptionPlanSerializer(read_only=True)
    business_id = serializers.UUIDField(source='business.id', read_only=True)
    business_name = serializers.CharField(source='business.name', read_only=True)
    days_until_expiry = serializers.SerializerMethodField()

    class Meta:
        model = Subscription
        fields = [
            'id', 'business_id', 'business_name', 'plan', 'plan_code', 'is_free',
            'billing_cycle', 'status', 'currency', 'current_period_start',
            'current_period_end', 'next_billing_amount', 'trial_ends_at',
            'cancelled_at', 'cancellation_reason', 'paused_at',
            'failed_payment_count', 'last_payment_status', 'last_payment_at',
            'payment_provider', 'days_until_expiry', 'created_at', 'updated_at',
        ]
        read_only_fields = fields

    def get_days_until_expiry(self, obj):
        return obj.days_until_expiry()


class InvoiceLineItemSerializer(serializers.ModelSerializer):
    class Meta:
        model = InvoiceLineItem
        fields = ['id', 'description', 'item_type', 'quantity', 'unit_price', 'amount', 'period_start', 'period_end']
        read_only_fields = fields


class PaymentTransactionSerializer(serializers.ModelSerializer):
    class Meta:
        model = PaymentTransaction
        fields = ['id', 'provider', 'external_payment_id', 'status', 'amount', 'currency', 'failure_reason', 'created_at']
        read_only_fields = fields


class InvoiceSerializer(serializers.ModelSerializer):
    """Invoice with its line items and payment attempts"""
    line_items = InvoiceLineItemSerializer(many=True, read_only=True)
    transactions = PaymentTransactionSerializer(many=True, read_only=True)
    business_name = serializers.CharField(source='business.name', read_only=True)
    balance_due = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)
    days_past_due = serializers.SerializerMethodField()

    class Meta:
        model = Invoice
        fields = [
            'id', 'business', 'business_name', 'subscription', 'invoice_number',
            'billing_period_start', 'billing_period_end', 'generated_at', 'due_date',
            'status', 'currency', 'subtotal', 'tax_rate', 'tax_amount', 'total_amount',
            'paid_amount', 'paid_at', 'balance_due', 'days_past_due', 'reminder_count',
            'last_reminder_sent_at', 'suspended_at', 'payment_link_url',
            'auto_payment_enabled', 'line_items', 'transactions', 'created_at',
        ]
        read_only_fields = fields

    def get_days_past_due(self, obj):
        if obj.status == Invoice.STATUS_PAID:
            return 0
        return obj.days_past_due()


class PaymentMethodSerializer(serializers.ModelSerializer):
    """Saved payment method, without provider secrets"""
    is_expired = serializers.SerializerMethodField()

    class Meta:
        model = PaymentMethod
        fields = [
            'id', 'provider', 'method_type', 'last4', 'expiry_month', 'expiry_year',
            'is_default', 'is_active', 'is_expired', 'verified_at',
        ]
        read_only_fields = fields

    def get_is_expired(self, obj):
        return obj.is_expired()


class BillingPreferencesSerializer(serializers.ModelSerializer):
    default_payment_method = serializers.PrimaryKeyRelatedField(
        queryset=PaymentMethod.objects.filter(is_active=True),
        required=False,
        allow_null=True,
    )
    default_payment_method_detail = PaymentMethodSerializer(source='default_payment_method', read_only=True)
    auto_payment_configured = serializers.SerializerMethodField()
    grace_period_days = serializers.IntegerField(required=False, min_value=0, max_value=90)

    class Meta:
        model = BillingPreferences
        fields = [
            'id', 'billing_mode', 'billing_currency', 'billing_country', 'billing_email',
            'grace_period_days', 'default_payment_method', 'default_payment_method_detail',
            'auto_payment_enabled', 'auto_payment_configured', 'send_reminders', 'updated_at',
        ]
        read_only_fields = ['id', 'updated_at']

    def get_auto_payment_configured(self, obj):
        return obj.is_auto_payment_configured()

    def validate_billing_currency(self, value):
        value = value.upper()
        if len(value) != 3 or not value.isalpha():
            raise serializers.ValidationError('Use a 3-letter ISO 4217 currency code')
        return value

    def validate_billing_country(self, value):
        value = value.upper()
        if len(value) != 2 or not value.isalpha():
            raise serializers.ValidationError('Use a 2-letter ISO 3166-1 country code')
        return value

    def validate_default_payment_method(self, value):
        """Only the business's own payment methods can be made default"""
        if value is not None and self.instance is not None and value.business_id != self.instance.business_id:
            raise serializers.ValidationError('Payment method not found for this business')
        return value


class GenerateInvoiceSerializer(serializers.Serializer):
    business_id = serializers.UUIDField()
    year = serializers.IntegerField(min_value=2000, max_value=9999)
    month = serializers.IntegerField(min_value=1, max_value=12)


class ConfirmPaymentSerializer(serializers.Serializer):
    external_payment_id = serializers.CharField(max_length=255)
    provider = serializers.ChoiceField(choices=[PROVIDER_RAZORPAY, PROVIDER_STRIPE])


class CancelSubscriptionSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=500, allow_blank=True, default='')
