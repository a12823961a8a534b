import traceback
import uuid
from datetime import timedelta
from decimal import Decimal, ROUND_HALF_UP

from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models, transaction
from django.db.models import F
from django.utils import timezone


FREE_PLAN_CODE = 'FREE'

# Minutes to wait before retry N (1-based). Shared by invoice generation
# and webhook retries.
DEFAULT_RETRY_BACKOFF_MINUTES = [1, 5, 30, 120, 720]

TWO_PLACES = Decimal('0.01')


def retry_backoff_schedule():
    """Backoff schedule in minutes, overridable with BILLING_RETRY_BACKOFF_MINUTES"""
    return list(getattr(settings, 'BILLING_RETRY_BACKOFF_MINUTES', DEFAULT_RETRY_BACKOFF_MINUTES))


def next_retry_time(retry_count, now=None):
    """
    Time of the next retry after `retry_count` failed attempts.
    Returns None once the schedule is exhausted.
    """
    schedule = retry_backoff_schedule()
    if retry_count < 1 or retry_count > len(schedule):
        return None
    now = now or timezone.now()
    return now + timedelta(minutes=schedule[retry_count - 1])


class SubscriptionPlan(models.Model):
    """Plans a business can subscribe to. FREE always exists and never expires."""
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    plan_code = models.CharField(max_length=50, unique=True)
    name = models.CharField(max_length=100)
    description = models.TextField(blank=True)
    monthly_price = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'),
                                        validators=[MinValueValidator(Decimal('0.00'))])
    annual_price = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'),
                                       validators=[MinValueValidator(Decimal('0.00'))])
    currency = models.CharField(max_length=3, default='INR')
    trial_days = models.PositiveIntegerField(default=0)

    # Resource limits, None = unlimited
    max_users = models.PositiveIntegerField(null=True, blank=True)
    max_devices = models.PositiveIntegerField(null=True, blank=True)
    max_products = models.PositiveIntegerField(null=True, blank=True)
    max_customers = models.PositiveIntegerField(null=True, blank=True)
    max_invoices_per_month = models.PositiveIntegerField(null=True, blank=True)

    features = models.JSONField(default=list, blank=True)
    is_active = models.BooleanField(default=True)
    sort_order = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'subscription_plans'
        ordering = ['sort_order', 'monthly_price']

    def __str__(self):
        return f"{self.name} ({self.plan_code}) - {self.currency} {self.monthly_price}/month"

    @property
    def is_free(self):
        return self.plan_code == FREE_PLAN_CODE

    def price_for_cycle(self, billing_cycle):
        """Price charged for one period of the given billing cycle"""
        if billing_cycle == Subscription.CYCLE_ANNUAL:
            return self.annual_price
        if billing_cycle == Subscription.CYCLE_QUARTERLY:
            return self.monthly_price * 3
        return self.monthly_price

    def limit_for(self, resource_type):
        """Plan limit for a UsageTracking resource type"""
        field = UsageTracking.LIMIT_FIELDS.get(resource_type)
        return getattr(self, field) if field else None


class Subscription(models.Model):
    """Business subscriptions - each business has exactly ONE subscription row"""
    STATUS_ACTIVE = 'ACTIVE'
    STATUS_TRIALING = 'TRIALING'
    STATUS_PAST_DUE = 'PAST_DUE'
    STATUS_PAUSED = 'PAUSED'
    STATUS_CANCELLED = 'CANCELLED'
    STATUS_EXPIRED = 'EXPIRED'
    STATUS_CHOICES = [
        (STATUS_ACTIVE, 'Active'),
        (STATUS_TRIALING, 'Trialing'),
        (STATUS_PAST_DUE, 'Past Due'),  # Payment failed, still usable
        (STATUS_PAUSED, 'Paused'),
        (STATUS_CANCELLED, 'Cancelled'),
        (STATUS_EXPIRED, 'Expired'),
    ]

    CYCLE_MONTHLY = 'MONTHLY'
    CYCLE_QUARTERLY = 'QUARTERLY'
    CYCLE_ANNUAL = 'ANNUAL'
    BILLING_CYCLE_CHOICES = [
        (CYCLE_MONTHLY, 'Monthly'),
        (CYCLE_QUARTERLY, 'Quarterly'),
        (CYCLE_ANNUAL, 'Annual'),
    ]

    PAYMENT_SUCCEEDED = 'SUCCEEDED'
    PAYMENT_FAILED = 'FAILED'
    PAYMENT_PENDING = 'PENDING'
    PAYMENT_STATUS_CHOICES = [
        (PAYMENT_SUCCEEDED, 'Succeeded'),
        (PAYMENT_FAILED, 'Failed'),
        (PAYMENT_PENDING, 'Pending'),
    ]

    PROVIDER_RAZORPAY = 'RAZORPAY'
    PROVIDER_STRIPE = 'STRIPE'
    PROVIDER_CHOICES = [
        (PROVIDER_RAZORPAY, 'Razorpay'),
        (PROVIDER_STRIPE, 'Stripe'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    business = models.OneToOneField('accounts.Business', on_delete=models.CASCADE, related_name='subscription')
    plan = models.ForeignKey(SubscriptionPlan, on_delete=models.PROTECT, related_name='subscriptions')
    plan_code = models.CharField(max_length=50, default=FREE_PLAN_CODE)
    is_free = models.BooleanField(default=True)
    billing_cycle = models.CharField(max_length=20, choices=BILLING_CYCLE_CHOICES, default=CYCLE_MONTHLY)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_ACTIVE)
    currency = models.CharField(max_length=3, default='INR')

    # Billing period. current_period_end is NULL for plans that never expire.
    current_period_start = models.DateTimeField(default=timezone.now)
    current_period_end = models.DateTimeField(null=True, blank=True)
    next_billing_amount = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)

    trial_ends_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancellation_reason = models.TextField(blank=True)
    paused_at = models.DateTimeField(null=True, blank=True)

    # Payment failure tracking
    failed_payment_count = models.PositiveIntegerField(default=0)
    last_payment_status = models.CharField(max_length=20, choices=PAYMENT_STATUS_CHOICES, blank=True)
    last_payment_at = models.DateTimeField(null=True, blank=True)

    # External provider linkage
    payment_provider = models.CharField(max_length=20, choices=PROVIDER_CHOICES, null=True, blank=True)
    external_subscription_id = models.CharField(max_length=255, null=True, blank=True)
    external_customer_id = models.CharField(max_length=255, null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'subscriptions'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['status', 'current_period_end'], name='subs_status_period_idx'),
            models.Index(fields=['status', 'failed_payment_count'], name='subs_status_failures_idx'),
        ]

    def __str__(self):
        return f"{self.business.name} - {self.plan_code} - {self.status}"

    def is_active(self):
        return self.status in [self.STATUS_ACTIVE, self.STATUS_TRIALING]

    def is_expired(self, now=None):
        """Paid period ended. FREE subscriptions never expire."""
        if self.current_period_end is None:
            return False
        return self.current_period_end < (now or timezone.now())

    def days_until_expiry(self):
        if self.current_period_end is None:
            return None
        if self.is_expired():
            return 0
        return (self.current_period_end - timezone.now()).days


class PaymentMethod(models.Model):
    """Saved payment method used for auto-charge"""
    TYPE_CARD = 'CARD'
    TYPE_UPI = 'UPI'
    TYPE_BANK_ACCOUNT = 'BANK_ACCOUNT'
    TYPE_CHOICES = [
        (TYPE_CARD, 'Card'),
        (TYPE_UPI, 'UPI'),
        (TYPE_BANK_ACCOUNT, 'Bank Account'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    business = models.ForeignKey('accounts.Business', on_delete=models.CASCADE, related_name='payment_methods')
    provider = models.CharField(max_length=20, choices=Subscription.PROVIDER_CHOICES)
    external_payment_method_id = models.CharField(max_length=255)
    external_customer_id = models.CharField(max_length=255, blank=True)
    method_type = models.CharField(max_length=20, choices=TYPE_CHOICES, default=TYPE_CARD)
    last4 = models.CharField(max_length=4, blank=True)
    expiry_month = models.PositiveSmallIntegerField(null=True, blank=True)
    expiry_year = models.PositiveSmallIntegerField(null=True, blank=True)
    is_default = models.BooleanField(default=False)
    is_active = models.BooleanField(default=True)
    verified_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'payment_methods'
        ordering = ['-is_default', '-created_at']

    def __str__(self):
        suffix = f" ****{self.last4}" if self.last4 else ''
        return f"{self.provider} {self.method_type}{suffix}"

    def is_expired(self, today=None):
        if self.method_type != self.TYPE_CARD or not self.expiry_year or not self.expiry_month:
            return False
        today = today or timezone.now().date()
        return (self.expiry_year, self.expiry_month) < (today.year, today.month)

    def is_verified(self):
        """Active, verified with the provider and not expired"""
        return self.is_active and self.verified_at is not None and not self.is_expired()


class BillingPreferencesManager(models.Manager):

    def for_business(self, business):
        """Fetch preferences, creating them with defaults on first access"""
        prefs, _ = self.get_or_create(business=business)
        return prefs


class BillingPreferences(models.Model):
    """Per-business billing configuration"""
    MODE_PREPAID = 'PREPAID'
    MODE_POSTPAID = 'POSTPAID'
    BILLING_MODE_CHOICES = [
        (MODE_PREPAID, 'Prepaid'),
        (MODE_POSTPAID, 'Postpaid'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    business = models.OneToOneField('accounts.Business', on_delete=models.CASCADE, related_name='billing_preferences')
    billing_mode = models.CharField(max_length=20, choices=BILLING_MODE_CHOICES, default=MODE_PREPAID)
    billing_currency = models.CharField(max_length=3, default='INR')
    billing_country = models.CharField(max_length=2, default='IN', help_text='ISO 3166-1 alpha-2 country code')
    billing_email = models.EmailField(blank=True)
    grace_period_days = models.PositiveIntegerField(default=15, help_text='Days between invoice generation and due date')
    default_payment_method = models.ForeignKey(
        PaymentMethod,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+',
    )
    auto_payment_enabled = models.BooleanField(default=False)
    send_reminders = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = BillingPreferencesManager()

    class Meta:
        db_table = 'billing_preferences'
        verbose_name_plural = 'billing preferences'

    def __str__(self):
        return f"{self.business.name} - {self.billing_mode} ({self.billing_currency})"

    @property
    def is_postpaid(self):
        return self.billing_mode == self.MODE_POSTPAID

    def is_auto_payment_configured(self):
        """A saved, verified payment method is on file and auto-pay is on"""
        return (
            self.auto_payment_enabled
            and self.default_payment_method is not None
            and self.default_payment_method.is_verified()
        )

    def notification_email(self):
        return self.billing_email or self.business.email


class InvoiceSequence(models.Model):
    """Storage-backed monotonic counter for invoice numbers"""
    scope = models.CharField(max_length=50, default='invoice', unique=True)
    last_value = models.BigIntegerField(default=0)

    class Meta:
        db_table = 'invoice_sequence'

    def __str__(self):
        return f"{self.scope}: {self.last_value}"

    @classmethod
    def next_value(cls, scope='invoice'):
        """Increment and return the next value atomically"""
        with transaction.atomic():
            sequence, _ = cls.objects.select_for_update().get_or_create(scope=scope)
            cls.objects.filter(pk=sequence.pk).update(last_value=F('last_value') + 1)
            sequence.refresh_from_db(fields=['last_value'])
            return sequence.last_value


class Invoice(models.Model):
    """Invoice for one billing period of one business"""
    STATUS_PENDING = 'PENDING'
    STATUS_PAID = 'PAID'
    STATUS_PARTIALLY_PAID = 'PARTIALLY_PAID'
    STATUS_OVERDUE = 'OVERDUE'
    STATUS_SUSPENDED = 'SUSPENDED'
    STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_PAID, 'Paid'),
        (STATUS_PARTIALLY_PAID, 'Partially Paid'),
        (STATUS_OVERDUE, 'Overdue'),
        (STATUS_SUSPENDED, 'Suspended'),
    ]
    UNPAID_STATUSES = [STATUS_PENDING, STATUS_PARTIALLY_PAID, STATUS_OVERDUE, STATUS_SUSPENDED]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    business = models.ForeignKey('accounts.Business', on_delete=models.PROTECT, related_name='invoices')
    subscription = models.ForeignKey(Subscription, on_delete=models.SET_NULL, null=True, blank=True, related_name='invoices')
    invoice_number = models.CharField(max_length=50, unique=True)
    billing_period_start = models.DateTimeField()
    billing_period_end = models.DateTimeField()
    generated_at = models.DateTimeField(default=timezone.now)
    due_date = models.DateTimeField()
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_PENDING)
    currency = models.CharField(max_length=3, default='INR')

    subtotal = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    tax_rate = models.DecimalField(max_digits=5, decimal_places=4, default=Decimal('0.0000'))
    tax_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    total_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    paid_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    paid_at = models.DateTimeField(null=True, blank=True)

    # Dunning
    reminder_count = models.PositiveIntegerField(default=0)
    last_reminder_sent_at = models.DateTimeField(null=True, blank=True)
    suspended_at = models.DateTimeField(null=True, blank=True)

    # Payment
    payment_link_url = models.URLField(max_length=500, blank=True)
    auto_payment_enabled = models.BooleanField(default=False)
    payment_method = models.ForeignKey(PaymentMethod, on_delete=models.SET_NULL, null=True, blank=True, related_name='invoices')

    notes = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'invoices'
        ordering = ['-billing_period_start', '-created_at']
        indexes = [
            models.Index(fields=['business', 'status'], name='invoice_business_status_idx'),
            models.Index(fields=['due_date', 'status'], name='invoice_due_status_idx'),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=['business', 'billing_period_start', 'billing_period_end'],
                name='one_invoice_per_business_period',
            ),
        ]

    def __str__(self):
        return f"Invoice {self.invoice_number} - {self.business.name}"

    @staticmethod
    def format_number(year, month, sequence):
        return f"INV-{year:04d}-{month:02d}-{sequence:06d}"

    def recalculate_totals(self, line_items=None):
        """
        Recompute subtotal/tax/total from line items.
        Pass line_items for an invoice that is not saved yet.
        """
        if line_items is None:
            if self.pk is None or self._state.adding:
                line_items = []
            else:
                line_items = list(self.line_items.all())
        subtotal = sum((item.amount for item in line_items), Decimal('0.00'))
        self.subtotal = subtotal.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)
        self.tax_amount = (self.subtotal * self.tax_rate).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)
        self.total_amount = self.subtotal + self.tax_amount
        return self.total_amount

    @property
    def balance_due(self):
        return max(self.total_amount - self.paid_amount, Decimal('0.00'))

    def is_overdue(self, now=None):
        now = now or timezone.now()
        return self.status != self.STATUS_PAID and self.due_date < now

    def days_past_due(self, now=None):
        """Whole days elapsed since the due date (0 if not yet due)"""
        now = now or timezone.now()
        if self.due_date >= now:
            return 0
        return (now - self.due_date).days


class InvoiceLineItem(models.Model):
    """Line item owned by an invoice"""
    TYPE_SUBSCRIPTION = 'SUBSCRIPTION'
    TYPE_ADDON = 'ADDON'
    TYPE_ADJUSTMENT = 'ADJUSTMENT'
    ITEM_TYPE_CHOICES = [
        (TYPE_SUBSCRIPTION, 'Subscription'),
        (TYPE_ADDON, 'Add-on'),
        (TYPE_ADJUSTMENT, 'Adjustment'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    invoice = models.ForeignKey(Invoice, on_delete=models.CASCADE, related_name='line_items')
    description = models.CharField(max_length=255)
    item_type = models.CharField(max_length=20, choices=ITEM_TYPE_CHOICES, default=TYPE_SUBSCRIPTION)
    quantity = models.PositiveIntegerField(default=1)
    unit_price = models.DecimalField(max_digits=12, decimal_places=2)
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    period_start = models.DateTimeField(null=True, blank=True)
    period_end = models.DateTimeField(null=True, blank=True)
    sort_order = models.PositiveIntegerField(default=0)

    class Meta:
        db_table = 'invoice_line_items'
        ordering = ['sort_order', 'id']

    def __str__(self):
        return f"{self.description}: {self.amount}"

    def save(self, *args, **kwargs):
        self.amount = (Decimal(self.quantity) * self.unit_price).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)
        super().save(*args, **kwargs)


class InvoiceGenerationLog(models.Model):
    """
    Idempotency ledger for invoice generation.
    One row per (business, year, month); the unique constraint is what
    prevents duplicate invoices under concurrent runs.
    """
    STATUS_PENDING = 'PENDING'
    STATUS_IN_PROGRESS = 'IN_PROGRESS'
    STATUS_SUCCESS = 'SUCCESS'
    STATUS_FAILED = 'FAILED'
    STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_IN_PROGRESS, 'In Progress'),
        (STATUS_SUCCESS, 'Success'),
        (STATUS_FAILED, 'Failed'),
    ]

    PAYMENT_NOT_STARTED = 'NOT_STARTED'
    PAYMENT_AUTO_CHARGING = 'AUTO_CHARGING'
    PAYMENT_AUTO_CHARGE_SUCCESS = 'AUTO_CHARGE_SUCCESS'
    PAYMENT_AUTO_CHARGE_FAILED = 'AUTO_CHARGE_FAILED'
    PAYMENT_LINK_GENERATING = 'LINK_GENERATING'
    PAYMENT_LINK_SENT = 'LINK_SENT'
    PAYMENT_LINK_FAILED = 'LINK_FAILED'
    PAYMENT_STATUS_CHOICES = [
        (PAYMENT_NOT_STARTED, 'Not Started'),
        (PAYMENT_AUTO_CHARGING, 'Auto Charging'),
        (PAYMENT_AUTO_CHARGE_SUCCESS, 'Auto Charge Success'),
        (PAYMENT_AUTO_CHARGE_FAILED, 'Auto Charge Failed'),
        (PAYMENT_LINK_GENERATING, 'Link Generating'),
        (PAYMENT_LINK_SENT, 'Link Sent'),
        (PAYMENT_LINK_FAILED, 'Link Failed'),
    ]
    TERMINAL_PAYMENT_STATUSES = [PAYMENT_AUTO_CHARGE_SUCCESS, PAYMENT_LINK_SENT]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    business = models.ForeignKey('accounts.Business', on_delete=models.CASCADE, related_name='invoice_generation_logs')
    subscription = models.ForeignKey(Subscription, on_delete=models.SET_NULL, null=True, blank=True, related_name='generation_logs')
    billing_period_year = models.PositiveIntegerField()
    billing_period_month = models.PositiveSmallIntegerField()
    billing_period_start = models.DateTimeField()
    billing_period_end = models.DateTimeField()
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_PENDING)

    invoice = models.ForeignKey(Invoice, on_delete=models.SET_NULL, null=True, blank=True, related_name='generation_logs')
    invoice_number = models.CharField(max_length=50, blank=True)

    attempt_count = models.PositiveIntegerField(default=0)
    last_attempt_at = models.DateTimeField(null=True, blank=True)
    succeeded_at = models.DateTimeField(null=True, blank=True)
    error_message = models.TextField(null=True, blank=True)
    error_traceback = models.TextField(blank=True)

    payment_status = models.CharField(max_length=30, choices=PAYMENT_STATUS_CHOICES, default=PAYMENT_NOT_STARTED)
    payment_link_sent_at = models.DateTimeField(null=True, blank=True)
    payment_error = models.TextField(blank=True)

    next_retry_at = models.DateTimeField(null=True, blank=True)
    should_retry = models.BooleanField(default=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'invoice_generation_logs'
        ordering = ['-billing_period_year', '-billing_period_month']
        constraints = [
            models.UniqueConstraint(
                fields=['business', 'billing_period_year', 'billing_period_month'],
                name='one_generation_log_per_business_period',
            ),
        ]
        indexes = [
            models.Index(fields=['status', 'should_retry', 'next_retry_at'], name='genlog_retry_idx'),
            models.Index(fields=['status', 'payment_status'], name='genlog_payment_idx'),
        ]

    def __str__(self):
        return f"{self.business_id} {self.billing_period_year}-{self.billing_period_month:02d}: {self.status}"

    def mark_in_progress(self):
        self.status = self.STATUS_IN_PROGRESS
        self.last_attempt_at = timezone.now()
        self.attempt_count += 1

    def mark_succeeded(self, invoice):
        self.status = self.STATUS_SUCCESS
        self.invoice = invoice
        self.invoice_number = invoice.invoice_number
        self.succeeded_at = timezone.now()
        self.error_message = None
        self.error_traceback = ''
        self.next_retry_at = None
        self.should_retry = False

    def mark_failed(self, error, should_retry=True):
        """Record the failure and schedule the next retry with backoff"""
        self.status = self.STATUS_FAILED
        self.error_message = str(error) or error.__class__.__name__
        self.error_traceback = ''.join(traceback.format_exception(type(error), error, error.__traceback__))
        self.should_retry = should_retry and self.attempt_count < len(retry_backoff_schedule())
        self.next_retry_at = next_retry_time(self.attempt_count) if self.should_retry else None

    def mark_payment_processing(self, payment_status, error=None):
        self.payment_status = payment_status
        if payment_status == self.PAYMENT_LINK_SENT:
            self.payment_link_sent_at = timezone.now()
        if error:
            self.payment_error = str(error)

    def is_ready_for_retry(self, now=None):
        now = now or timezone.now()
        return (
            self.should_retry
            and self.status == self.STATUS_FAILED
            and self.next_retry_at is not None
            and self.next_retry_at <= now
        )

    def has_pending_payment(self):
        return (
            self.status == self.STATUS_SUCCESS
            and self.invoice_id is not None
            and self.payment_status not in self.TERMINAL_PAYMENT_STATUSES
        )


class PaymentTransaction(models.Model):
    """Record of a settlement attempt against an invoice"""
    STATUS_PENDING = 'PENDING'
    STATUS_SUCCEEDED = 'SUCCEEDED'
    STATUS_FAILED = 'FAILED'
    STATUS_REFUNDED = 'REFUNDED'
    STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_SUCCEEDED, 'Succeeded'),
        (STATUS_FAILED, 'Failed'),
        (STATUS_REFUNDED, 'Refunded'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    business = models.ForeignKey('accounts.Business', on_delete=models.PROTECT, related_name='payment_transactions')
    subscription = models.ForeignKey(Subscription, on_delete=models.SET_NULL, null=True, blank=True, related_name='payment_transactions')
    invoice = models.ForeignKey(Invoice, on_delete=models.PROTECT, null=True, blank=True, related_name='transactions')
    provider = models.CharField(max_length=20, choices=Subscription.PROVIDER_CHOICES)
    external_payment_id = models.CharField(max_length=255, blank=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_PENDING)
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    currency = models.CharField(max_length=3)
    net_amount = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    failure_reason = models.TextField(blank=True)
    gateway_response = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'payment_transactions'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['external_payment_id'], name='paytxn_external_id_idx'),
            models.Index(fields=['business', 'status'], name='paytxn_business_status_idx'),
        ]

    def __str__(self):
        return f"{self.provider} {self.external_payment_id or '-'} {self.amount} {self.currency} - {self.status}"


class WebhookEvent(models.Model):
    """Processed webhook events, one row per (provider, event id)"""
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    provider = models.CharField(max_length=20, choices=Subscription.PROVIDER_CHOICES)
    event_id = models.CharField(max_length=255)
    event_type = models.CharField(max_length=100)
    payload = models.JSONField(default=dict, blank=True)
    external_subscription_id = models.CharField(max_length=255, blank=True)
    processed_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = 'webhook_events'
        ordering = ['-processed_at']
        constraints = [
            models.UniqueConstraint(fields=['provider', 'event_id'], name='unique_webhook_event_per_provider'),
        ]

    def __str__(self):
        return f"{self.provider} - {self.event_type} - {self.event_id}"


class WebhookLog(models.Model):
    """Audit log of every inbound webhook call, with retry bookkeeping"""
    STATUS_RECEIVED = 'RECEIVED'
    STATUS_PROCESSING = 'PROCESSING'
    STATUS_PROCESSED = 'PROCESSED'
    STATUS_FAILED = 'FAILED'
    STATUS_CHOICES = [
        (STATUS_RECEIVED, 'Received'),
        (STATUS_PROCESSING, 'Processing'),
        (STATUS_PROCESSED, 'Processed'),
        (STATUS_FAILED, 'Failed'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    provider = models.CharField(max_length=20, choices=Subscription.PROVIDER_CHOICES)
    payload = models.TextField()
    signature = models.CharField(max_length=512, blank=True)
    event_id = models.CharField(max_length=255, blank=True)
    event_type = models.CharField(max_length=100, blank=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_RECEIVED)
    error_message = models.TextField(blank=True)
    retry_count = models.PositiveIntegerField(default=0)
    next_retry_at = models.DateTimeField(null=True, blank=True)
    processed_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'webhook_logs'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['status', 'next_retry_at'], name='webhooklog_status_retry_idx'),
            models.Index(fields=['provider', 'event_id'], name='webhooklog_event_idx'),
        ]

    def __str__(self):
        return f"{self.provider} {self.event_type or '?'} - {self.status}"


class UsageTracking(models.Model):
    """Per-business resource counters checked against plan limits"""
    RESOURCE_USERS = 'USERS'
    RESOURCE_DEVICES = 'DEVICES'
    RESOURCE_PRODUCTS = 'PRODUCTS'
    RESOURCE_CUSTOMERS = 'CUSTOMERS'
    RESOURCE_INVOICES = 'INVOICES'
    RESOURCE_CHOICES = [
        (RESOURCE_USERS, 'Users'),
        (RESOURCE_DEVICES, 'Devices'),
        (RESOURCE_PRODUCTS, 'Products'),
        (RESOURCE_CUSTOMERS, 'Customers'),
        (RESOURCE_INVOICES, 'Invoices this month'),
    ]

    # resource type -> counter field on this model
    COUNTER_FIELDS = {
        RESOURCE_USERS: 'user_count',
        RESOURCE_DEVICES: 'device_count',
        RESOURCE_PRODUCTS: 'product_count',
        RESOURCE_CUSTOMERS: 'customer_count',
        RESOURCE_INVOICES: 'invoice_count',
    }
    # resource type -> limit field on SubscriptionPlan
    LIMIT_FIELDS = {
        RESOURCE_USERS: 'max_users',
        RESOURCE_DEVICES: 'max_devices',
        RESOURCE_PRODUCTS: 'max_products',
        RESOURCE_CUSTOMERS: 'max_customers',
        RESOURCE_INVOICES: 'max_invoices_per_month',
    }

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    business = models.OneToOneField('accounts.Business', on_delete=models.CASCADE, related_name='usage')
    user_count = models.PositiveIntegerField(default=0)
    device_count = models.PositiveIntegerField(default=0)
    product_count = models.PositiveIntegerField(default=0)
    customer_count = models.PositiveIntegerField(default=0)
    invoice_count = models.PositiveIntegerField(default=0)
    period_start = models.DateField(default=timezone.localdate)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'usage_tracking'

    def __str__(self):
        return f"Usage for {self.business.name}"

    def get_count(self, resource_type):
        return getattr(self, self.COUNTER_FIELDS[resource_type])

    def set_count(self, resource_type, value):
        setattr(self, self.COUNTER_FIELDS[resource_type], max(int(value), 0))


class Alert(models.Model):
    """Billing notifications raised for a business"""
    TYPE_INVOICE_GENERATED = 'INVOICE_GENERATED'
    TYPE_PAYMENT_LINK = 'PAYMENT_LINK'
    TYPE_PAYMENT_DUE = 'PAYMENT_DUE'
    TYPE_PAYMENT_OVERDUE = 'PAYMENT_OVERDUE'
    TYPE_PAYMENT_SUCCESS = 'PAYMENT_SUCCESS'
    TYPE_PAYMENT_FAILED = 'PAYMENT_FAILED'
    TYPE_WORKSPACE_SUSPENDED = 'WORKSPACE_SUSPENDED'
    TYPE_WORKSPACE_REACTIVATED = 'WORKSPACE_REACTIVATED'
    TYPE_PLAN_DOWNGRADED = 'PLAN_DOWNGRADED'
    ALERT_TYPE_CHOICES = [
        (TYPE_INVOICE_GENERATED, 'Invoice Generated'),
        (TYPE_PAYMENT_LINK, 'Payment Link'),
        (TYPE_PAYMENT_DUE, 'Payment Due'),
        (TYPE_PAYMENT_OVERDUE, 'Payment Overdue'),
        (TYPE_PAYMENT_SUCCESS, 'Payment Success'),
        (TYPE_PAYMENT_FAILED, 'Payment Failed'),
        (TYPE_WORKSPACE_SUSPENDED, 'Workspace Suspended'),
        (TYPE_WORKSPACE_REACTIVATED, 'Workspace Reactivated'),
        (TYPE_PLAN_DOWNGRADED, 'Plan Downgraded'),
    ]

    PRIORITY_CHOICES = [
        ('LOW', 'Low'),
        ('MEDIUM', 'Medium'),
        ('HIGH', 'High'),
        ('CRITICAL', 'Critical'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    business = models.ForeignKey('accounts.Business', on_delete=models.CASCADE, related_name='billing_alerts')
    invoice = models.ForeignKey(Invoice, on_delete=models.SET_NULL, null=True, blank=True, related_name='alerts')
    alert_type = models.CharField(max_length=30, choices=ALERT_TYPE_CHOICES)
    priority = models.CharField(max_length=10, choices=PRIORITY_CHOICES, default='MEDIUM')
    title = models.CharField(max_length=200)
    message = models.TextField()
    metadata = models.JSONField(default=dict, blank=True)
    email_sent = models.BooleanField(default=False)
    is_read = models.BooleanField(default=False)
    read_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'billing_alerts'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['business', 'alert_type'], name='alert_business_type_idx'),
            models.Index(fields=['is_read', 'priority'], name='alert_read_priority_idx'),
        ]

    def __str__(self):
        return f"{self.alert_type} - {self.business.name}"

    def mark_as_read(self):
        self.is_read = True
        self.read_at = timezone.now()
        self.save(update_fields=['is_read', 'read_at'])
