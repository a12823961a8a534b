"""
Management command to create or update the default subscription plans
"""
from django.core.management.base import BaseCommand
from subscriptions.models import SubscriptionPlan
from decimal import Decimal


DEFAULT_PLANS = [
    {
        'plan_code': 'FREE',
        'name': 'Free',
        'description': 'Perfect for getting started with basic features',
        'monthly_price': Decimal('0.00'),
        'annual_price': Decimal('0.00'),
        'max_users': 1,
        'max_devices': 2,
        'max_products': 50,
        'max_customers': 50,
        'max_invoices_per_month': 20,
        'features': ['invoicing', 'basic_reports'],
        'sort_order': 1,
    },
    {
        'plan_code': 'STARTER',
        'name': 'Starter',
        'description': 'For small shops with a few devices',
        'monthly_price': Decimal('499.00'),
        'annual_price': Decimal('4990.00'),
        'max_users': 3,
        'max_devices': 5,
        'max_products': 500,
        'max_customers': 500,
        'max_invoices_per_month': 500,
        'features': ['invoicing', 'basic_reports', 'inventory', 'tax_invoices'],
        'sort_order': 2,
    },
    {
        'plan_code': 'PROFESSIONAL',
        'name': 'Professional',
        'description': 'For growing businesses with multiple locations',
        'monthly_price': Decimal('1499.00'),
        'annual_price': Decimal('14990.00'),
        'max_users': 10,
        'max_devices': 20,
        'max_products': 5000,
        'max_customers': 5000,
        'max_invoices_per_month': None,
        'features': ['invoicing', 'advanced_reports', 'inventory', 'tax_invoices', 'api_access'],
        'trial_days': 14,
        'sort_order': 3,
    },
    {
        'plan_code': 'ENTERPRISE',
        'name': 'Enterprise',
        'description': 'Unlimited usage with priority support',
        'monthly_price': Decimal('4999.00'),
        'annual_price': Decimal('49990.00'),
        'max_users': None,
        'max_devices': None,
        'max_products': None,
        'max_customers': None,
        'max_invoices_per_month': None,
        'features': ['invoicing', 'advanced_reports', 'inventory', 'tax_invoices', 'api_access', 'priority_support'],
        'sort_order': 4,
    },
]


class Command(BaseCommand):
    help = 'Create or update the default subscription plans (FREE, STARTER, PROFESSIONAL, ENTERPRISE)'

    def add_arguments(self, parser):
        parser.add_argument(
            '--currency',
            default='INR',
            help='Currency for the seeded plans (default: INR)',
        )

    def handle(self, *args, **options):
        self.stdout.write('Seeding subscription plans...')

        for plan_data in DEFAULT_PLANS:
            defaults = dict(plan_data)
            plan_code = defaults.pop('plan_code')
            defaults['currency'] = options['currency'].upper()
            defaults.setdefault('trial_days', 0)
            defaults['is_active'] = True

            plan, created = SubscriptionPlan.objects.update_or_create(plan_code=plan_code, defaults=defaults)
            action = 'Created' if created else 'Updated'
            self.stdout.write(self.style.SUCCESS(f'✓ {action}: {plan}'))

        self.stdout.write(self.style.SUCCESS(f'\n{len(DEFAULT_PLANS)} plans ready'))
