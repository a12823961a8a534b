import uuid
from decimal import Decimal

import django.core.validators
import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models


PROVIDER_CHOICES = [("RAZORPAY", "Razorpay"), ("STRIPE", "Stripe")]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("accounts", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="SubscriptionPlan",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("plan_code", models.CharField(max_length=50, unique=True)),
                ("name", models.CharField(max_length=100)),
                ("description", models.TextField(blank=True)),
                (
                    "monthly_price",
                    models.DecimalField(
                        decimal_places=2,
                        default=Decimal("0.00"),
                        max_digits=10,
                        validators=[django.core.validators.MinValueValidator(Decimal("0.00"))],
                    ),
                ),
                (
                    "annual_price",
                    models.DecimalField(
                        decimal_places=2,
                        default=Decimal("0.00"),
                        max_digits=10,
                        validators=[django.core.validators.MinValueValidator(Decimal("0.00"))],
                    ),
                ),
                ("currency", models.CharField(default="INR", max_length=3)),
                ("trial_days", models.PositiveIntegerField(default=0)),
                ("max_users", models.PositiveIntegerField(blank=True, null=True)),
                ("max_devices", models.PositiveIntegerField(blank=True, null=True)),
                ("max_products", models.PositiveIntegerField(blank=True, null=True)),
                ("max_customers", models.PositiveIntegerField(blank=True, null=True)),
                ("max_invoices_per_month", models.PositiveIntegerField(blank=True, null=True)),
                ("features", models.JSONField(blank=True, default=list)),
                ("is_active", models.BooleanField(default=True)),
                ("sort_order", models.PositiveIntegerField(default=0)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "db_table": "subscription_plans",
                "ordering": ["sort_order", "monthly_price"],
            },
        ),
        migrations.CreateModel(
            name="PaymentMethod",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("provider", models.CharField(choices=PROVIDER_CHOICES, max_length=20)),
                ("external_payment_method_id", models.CharField(max_length=255)),
                ("external_customer_id", models.CharField(blank=True, max_length=255)),
                (
                    "method_type",
                    models.CharField(
                        choices=[("CARD", "Card"), ("UPI", "UPI"), ("BANK_ACCOUNT", "Bank Account")],
                        default="CARD",
                        max_length=20,
                    ),
                ),
                ("last4", models.CharField(blank=True, max_length=4)),
                ("expiry_month", models.PositiveSmallIntegerField(blank=True, null=True)),
                ("expiry_year", models.PositiveSmallIntegerField(blank=True, null=True)),
                ("is_default", models.BooleanField(default=False)),
                ("is_active", models.BooleanField(default=True)),
                ("verified_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "business",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="payment_methods",
                        to="accounts.business",
                    ),
                ),
            ],
            options={
                "db_table": "payment_methods",
                "ordering": ["-is_default", "-created_at"],
            },
        ),
        migrations.CreateModel(
            name="Subscription",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("plan_code", models.CharField(default="FREE", max_length=50)),
                ("is_free", models.BooleanField(default=True)),
                (
                    "billing_cycle",
                    models.CharField(
                        choices=[("MONTHLY", "Monthly"), ("QUARTERLY", "Quarterly"), ("ANNUAL", "Annual")],
                        default="MONTHLY",
                        max_length=20,
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("ACTIVE", "Active"),
                            ("TRIALING", "Trialing"),
                            ("PAST_DUE", "Past Due"),
                            ("PAUSED", "Paused"),
                            ("CANCELLED", "Cancelled"),
                            ("EXPIRED", "Expired"),
                        ],
                        default="ACTIVE",
                        max_length=20,
                    ),
                ),
                ("currency", models.CharField(default="INR", max_length=3)),
                ("current_period_start", models.DateTimeField(default=django.utils.timezone.now)),
                ("current_period_end", models.DateTimeField(blank=True, null=True)),
                ("next_billing_amount", models.DecimalField(blank=True, decimal_places=2, max_digits=10, null=True)),
                ("trial_ends_at", models.DateTimeField(blank=True, null=True)),
                ("cancelled_at", models.DateTimeField(blank=True, null=True)),
                ("cancellation_reason", models.TextField(blank=True)),
                ("paused_at", models.DateTimeField(blank=True, null=True)),
                ("failed_payment_count", models.PositiveIntegerField(default=0)),
                (
                    "last_payment_status",
                    models.CharField(
                        blank=True,
                        choices=[("SUCCEEDED", "Succeeded"), ("FAILED", "Failed"), ("PENDING", "Pending")],
                        max_length=20,
                    ),
                ),
                ("last_payment_at", models.DateTimeField(blank=True, null=True)),
                ("payment_provider", models.CharField(blank=True, choices=PROVIDER_CHOICES, max_length=20, null=True)),
                ("external_subscription_id", models.CharField(blank=True, max_length=255, null=True)),
                ("external_customer_id", models.CharField(blank=True, max_length=255, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "business",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="subscription",
                        to="accounts.business",
                    ),
                ),
                (
                    "plan",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="subscriptions",
                        to="subscriptions.subscriptionplan",
                    ),
                ),
            ],
            options={
                "db_table": "subscriptions",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["status", "current_period_end"], name="subs_status_period_idx"),
                    models.Index(fields=["status", "failed_payment_count"], name="subs_status_failures_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="BillingPreferences",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                (
                    "billing_mode",
                    models.CharField(
                        choices=[("PREPAID", "Prepaid"), ("POSTPAID", "Postpaid")],
                        default="PREPAID",
                        max_length=20,
                    ),
                ),
                ("billing_currency", models.CharField(default="INR", max_length=3)),
                ("billing_country", models.CharField(default="IN", help_text="ISO 3166-1 alpha-2 country code", max_length=2)),
                ("billing_email", models.EmailField(blank=True, max_length=254)),
                (
                    "grace_period_days",
                    models.PositiveIntegerField(default=15, help_text="Days between invoice generation and due date"),
                ),
                ("auto_payment_enabled", models.BooleanField(default=False)),
                ("send_reminders", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "business",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="billing_preferences",
                        to="accounts.business",
                    ),
                ),
                (
                    "default_payment_method",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to="subscriptions.paymentmethod",
                    ),
                ),
            ],
            options={
                "verbose_name_plural": "billing preferences",
                "db_table": "billing_preferences",
            },
        ),
        migrations.CreateModel(
            name="InvoiceSequence",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("scope", models.CharField(default="invoice", max_length=50, unique=True)),
                ("last_value", models.BigIntegerField(default=0)),
            ],
            options={
                "db_table": "invoice_sequence",
            },
        ),
        migrations.CreateModel(
            name="Invoice",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("invoice_number", models.CharField(max_length=50, unique=True)),
                ("billing_period_start", models.DateTimeField()),
                ("billing_period_end", models.DateTimeField()),
                ("generated_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("due_date", models.DateTimeField()),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("PENDING", "Pending"),
                            ("PAID", "Paid"),
                            ("PARTIALLY_PAID", "Partially Paid"),
                            ("OVERDUE", "Overdue"),
                            ("SUSPENDED", "Suspended"),
                        ],
                        default="PENDING",
                        max_length=20,
                    ),
                ),
                ("currency", models.CharField(default="INR", max_length=3)),
                ("subtotal", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=12)),
                ("tax_rate", models.DecimalField(decimal_places=4, default=Decimal("0.0000"), max_digits=5)),
                ("tax_amount", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=12)),
                ("total_amount", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=12)),
                ("paid_amount", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=12)),
                ("paid_at", models.DateTimeField(blank=True, null=True)),
                ("reminder_count", models.PositiveIntegerField(default=0)),
                ("last_reminder_sent_at", models.DateTimeField(blank=True, null=True)),
                ("suspended_at", models.DateTimeField(blank=True, null=True)),
                ("payment_link_url", models.URLField(blank=True, max_length=500)),
                ("auto_payment_enabled", models.BooleanField(default=False)),
                ("notes", models.TextField(blank=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "business",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="invoices",
                        to="accounts.business",
                    ),
                ),
                (
                    "payment_method",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="invoices",
                        to="subscriptions.paymentmethod",
                    ),
                ),
                (
                    "subscription",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="invoices",
                        to="subscriptions.subscription",
                    ),
                ),
            ],
            options={
                "db_table": "invoices",
                "ordering": ["-billing_period_start", "-created_at"],
                "indexes": [
                    models.Index(fields=["business", "status"], name="invoice_business_status_idx"),
                    models.Index(fields=["due_date", "status"], name="invoice_due_status_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("business", "billing_period_start", "billing_period_end"),
                        name="one_invoice_per_business_period",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="InvoiceLineItem",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("description", models.CharField(max_length=255)),
                (
                    "item_type",
                    models.CharField(
                        choices=[("SUBSCRIPTION", "Subscription"), ("ADDON", "Add-on"), ("ADJUSTMENT", "Adjustment")],
                        default="SUBSCRIPTION",
                        max_length=20,
                    ),
                ),
                ("quantity", models.PositiveIntegerField(default=1)),
                ("unit_price", models.DecimalField(decimal_places=2, max_digits=12)),
                ("amount", models.DecimalField(decimal_places=2, max_digits=12)),
                ("period_start", models.DateTimeField(blank=True, null=True)),
                ("period_end", models.DateTimeField(blank=True, null=True)),
                ("sort_order", models.PositiveIntegerField(default=0)),
                (
                    "invoice",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="line_items",
                        to="subscriptions.invoice",
                    ),
                ),
            ],
            options={
                "db_table": "invoice_line_items",
                "ordering": ["sort_order", "id"],
            },
        ),
        migrations.CreateModel(
            name="InvoiceGenerationLog",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("billing_period_year", models.PositiveIntegerField()),
                ("billing_period_month", models.PositiveSmallIntegerField()),
                ("billing_period_start", models.DateTimeField()),
                ("billing_period_end", models.DateTimeField()),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("PENDING", "Pending"),
                            ("IN_PROGRESS", "In Progress"),
                            ("SUCCESS", "Success"),
                            ("FAILED", "Failed"),
                        ],
                        default="PENDING",
                        max_length=20,
                    ),
                ),
                ("invoice_number", models.CharField(blank=True, max_length=50)),
                ("attempt_count", models.PositiveIntegerField(default=0)),
                ("last_attempt_at", models.DateTimeField(blank=True, null=True)),
                ("succeeded_at", models.DateTimeField(blank=True, null=True)),
                ("error_message", models.TextField(blank=True, null=True)),
                ("error_traceback", models.TextField(blank=True)),
                (
                    "payment_status",
                    models.CharField(
                        choices=[
                            ("NOT_STARTED", "Not Started"),
                            ("AUTO_CHARGING", "Auto Charging"),
                            ("AUTO_CHARGE_SUCCESS", "Auto Charge Success"),
                            ("AUTO_CHARGE_FAILED", "Auto Charge Failed"),
                            ("LINK_GENERATING", "Link Generating"),
                            ("LINK_SENT", "Link Sent"),
                            ("LINK_FAILED", "Link Failed"),
                        ],
                        default="NOT_STARTED",
                        max_length=30,
                    ),
                ),
                ("payment_link_sent_at", models.DateTimeField(blank=True, null=True)),
                ("payment_error", models.TextField(blank=True)),
                ("next_retry_at", models.DateTimeField(blank=True, null=True)),
                ("should_retry", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "business",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="invoice_generation_logs",
                        to="accounts.business",
                    ),
                ),
                (
                    "invoice",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="generation_logs",
                        to="subscriptions.invoice",
                    ),
                ),
                (
                    "subscription",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="generation_logs",
                        to="subscriptions.subscription",
                    ),
                ),
            ],
            options={
                "db_table": "invoice_generation_logs",
                "ordering": ["-billing_period_year", "-billing_period_month"],
                "indexes": [
                    models.Index(fields=["status", "should_retry", "next_retry_at"], name="genlog_retry_idx"),
                    models.Index(fields=["status", "payment_status"], name="genlog_payment_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("business", "billing_period_year", "billing_period_month"),
                        name="one_generation_log_per_business_period",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="PaymentTransaction",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("provider", models.CharField(choices=PROVIDER_CHOICES, max_length=20)),
                ("external_payment_id", models.CharField(blank=True, max_length=255)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("PENDING", "Pending"),
                            ("SUCCEEDED", "Succeeded"),
                            ("FAILED", "Failed"),
                            ("REFUNDED", "Refunded"),
                        ],
                        default="PENDING",
                        max_length=20,
                    ),
                ),
                ("amount", models.DecimalField(decimal_places=2, max_digits=12)),
                ("currency", models.CharField(max_length=3)),
                ("net_amount", models.DecimalField(blank=True, decimal_places=2, max_digits=12, null=True)),
                ("failure_reason", models.TextField(blank=True)),
                ("gateway_response", models.JSONField(blank=True, default=dict)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "business",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payment_transactions",
                        to="accounts.business",
                    ),
                ),
                (
                    "invoice",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="transactions",
                        to="subscriptions.invoice",
                    ),
                ),
                (
                    "subscription",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="payment_transactions",
                        to="subscriptions.subscription",
                    ),
                ),
            ],
            options={
                "db_table": "payment_transactions",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["external_payment_id"], name="paytxn_external_id_idx"),
                    models.Index(fields=["business", "status"], name="paytxn_business_status_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="WebhookEvent",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("provider", models.CharField(choices=PROVIDER_CHOICES, max_length=20)),
                ("event_id", models.CharField(max_length=255)),
                ("event_type", models.CharField(max_length=100)),
                ("payload", models.JSONField(blank=True, default=dict)),
                ("external_subscription_id", models.CharField(blank=True, max_length=255)),
                ("processed_at", models.DateTimeField(default=django.utils.timezone.now)),
            ],
            options={
                "db_table": "webhook_events",
                "ordering": ["-processed_at"],
                "constraints": [
                    models.UniqueConstraint(fields=("provider", "event_id"), name="unique_webhook_event_per_provider"),
                ],
            },
        ),
        migrations.CreateModel(
            name="WebhookLog",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("provider", models.CharField(choices=PROVIDER_CHOICES, max_length=20)),
                ("payload", models.TextField()),
                ("signature", models.CharField(blank=True, max_length=512)),
                ("event_id", models.CharField(blank=True, max_length=255)),
                ("event_type", models.CharField(blank=True, max_length=100)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("RECEIVED", "Received"),
                            ("PROCESSING", "Processing"),
                            ("PROCESSED", "Processed"),
                            ("FAILED", "Failed"),
                        ],
                        default="RECEIVED",
                        max_length=20,
                    ),
                ),
                ("error_message", models.TextField(blank=True)),
                ("retry_count", models.PositiveIntegerField(default=0)),
                ("next_retry_at", models.DateTimeField(blank=True, null=True)),
                ("processed_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "db_table": "webhook_logs",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["status", "next_retry_at"], name="webhooklog_status_retry_idx"),
                    models.Index(fields=["provider", "event_id"], name="webhooklog_event_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="UsageTracking",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("user_count", models.PositiveIntegerField(default=0)),
                ("device_count", models.PositiveIntegerField(default=0)),
                ("product_count", models.PositiveIntegerField(default=0)),
                ("customer_count", models.PositiveIntegerField(default=0)),
                ("invoice_count", models.PositiveIntegerField(default=0)),
                ("period_start", models.DateField(default=django.utils.timezone.localdate)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "business",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="usage",
                        to="accounts.business",
                    ),
                ),
            ],
            options={
                "db_table": "usage_tracking",
            },
        ),
        migrations.CreateModel(
            name="Alert",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                (
                    "alert_type",
                    models.CharField(
                        choices=[
                            ("INVOICE_GENERATED", "Invoice Generated"),
                            ("PAYMENT_LINK", "Payment Link"),
                            ("PAYMENT_DUE", "Payment Due"),
                            ("PAYMENT_OVERDUE", "Payment Overdue"),
                            ("PAYMENT_SUCCESS", "Payment Success"),
                            ("PAYMENT_FAILED", "Payment Failed"),
                            ("WORKSPACE_SUSPENDED", "Workspace Suspended"),
                            ("WORKSPACE_REACTIVATED", "Workspace Reactivated"),
                            ("PLAN_DOWNGRADED", "Plan Downgraded"),
                        ],
                        max_length=30,
                    ),
                ),
                (
                    "priority",
                    models.CharField(
                        choices=[("LOW", "Low"), ("MEDIUM", "Medium"), ("HIGH", "High"), ("CRITICAL", "Critical")],
                        default="MEDIUM",
                        max_length=10,
                    ),
                ),
                ("title", models.CharField(max_length=200)),
                ("message", models.TextField()),
                ("metadata", models.JSONField(blank=True, default=dict)),
                ("email_sent", models.BooleanField(default=False)),
                ("is_read", models.BooleanField(default=False)),
                ("read_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "business",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="billing_alerts",
                        to="accounts.business",
                    ),
                ),
                (
                    "invoice",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="alerts",
                        to="subscriptions.invoice",
                    ),
                ),
            ],
            options={
                "db_table": "billing_alerts",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["business", "alert_type"], name="alert_business_type_idx"),
                    models.Index(fields=["is_read", "priority"], name="alert_read_priority_idx"),
                ],
            },
        ),
    ]
