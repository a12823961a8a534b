"""
Tests for the subscription lifecycle and usage tracking services
"""
from datetime import timedelta
from decimal import Decimal

from django.test import TestCase
from django.utils import timezone

from subscriptions.exceptions import PlanNotFound, SubscriptionNotFound, ValidationFailure
from subscriptions.models import BillingPreferences, Subscription, SubscriptionPlan, UsageTracking
from subscriptions.services import SubscriptionService
from subscriptions.usage import UsageTrackingService

from .helpers import create_business, create_plans


class SubscriptionLifecycleTestCase(TestCase):

    def setUp(self):
        self.free_plan, self.plan = create_plans()
        self.business = create_business()

    def test_business_starts_on_free_plan(self):
        subscription = SubscriptionService.get_subscription(self.business)

        self.assertEqual(subscription.plan_code, 'FREE')
        self.assertTrue(subscription.is_free)
        self.assertEqual(subscription.status, Subscription.STATUS_ACTIVE)
        self.assertIsNone(subscription.current_period_end)
        self.assertEqual(SubscriptionService.get_subscription(self.business).pk, subscription.pk)

    def test_get_for_unknown_business(self):
        with self.assertRaises(SubscriptionNotFound):
            SubscriptionService.get_for_business_id(self.business.id)

    def test_activate_paid_plan(self):
        subscription = SubscriptionService.activate(
            self.business, 'STARTER', Subscription.CYCLE_ANNUAL, provider=Subscription.PROVIDER_RAZORPAY,
        )

        self.assertEqual(subscription.plan_code, 'STARTER')
        self.assertFalse(subscription.is_free)
        self.assertEqual(subscription.status, Subscription.STATUS_ACTIVE)
        self.assertEqual(subscription.next_billing_amount, Decimal('10000.00'))
        self.assertEqual(subscription.current_period_end.year, subscription.current_period_start.year + 1)
        self.assertFalse(BillingPreferences.objects.for_business(self.business).is_postpaid)

    def test_activate_postpaid_plan_is_open_ended(self):
        subscription = SubscriptionService.activate(
            self.business, 'STARTER', billing_mode=BillingPreferences.MODE_POSTPAID,
        )

        self.assertIsNone(subscription.current_period_end)
        self.assertIsNone(subscription.days_until_expiry())
        self.assertEqual(subscription.next_billing_amount, Decimal('1000.00'))
        self.assertTrue(BillingPreferences.objects.for_business(self.business).is_postpaid)

    def test_postpaid_subscription_cannot_renew(self):
        SubscriptionService.activate(self.business, 'STARTER', billing_mode=BillingPreferences.MODE_POSTPAID)
        with self.assertRaises(ValidationFailure):
            SubscriptionService.renew(self.business)

    def test_upgrade_from_free_keeps_postpaid_mode(self):
        prefs = BillingPreferences.objects.for_business(self.business)
        prefs.billing_mode = BillingPreferences.MODE_POSTPAID
        prefs.save()

        subscription = SubscriptionService.change_plan(self.business, 'STARTER')

        self.assertEqual(subscription.plan_code, 'STARTER')
        self.assertIsNone(subscription.current_period_end)
        self.assertTrue(BillingPreferences.objects.for_business(self.business).is_postpaid)

    def test_activate_plan_with_trial(self):
        self.plan.trial_days = 14
        self.plan.save()

        subscription = SubscriptionService.activate(self.business, 'STARTER')

        self.assertEqual(subscription.status, Subscription.STATUS_TRIALING)
        self.assertIsNotNone(subscription.trial_ends_at)

    def test_activate_unknown_plan(self):
        with self.assertRaises(PlanNotFound):
            SubscriptionService.activate(self.business, 'PLATINUM')

    def test_renew_extends_from_period_end(self):
        subscription = SubscriptionService.activate(self.business, 'STARTER')
        period_end = subscription.current_period_end

        renewed = SubscriptionService.renew(self.business)

        self.assertEqual(renewed.current_period_start, period_end)
        self.assertGreater(renewed.current_period_end, period_end)

    def test_free_subscription_cannot_renew(self):
        with self.assertRaises(ValidationFailure):
            SubscriptionService.renew(self.business)

    def test_change_plan(self):
        SubscriptionPlan.objects.create(plan_code='PROFESSIONAL', name='Professional',
                                        monthly_price=Decimal('2500.00'), annual_price=Decimal('25000.00'))
        SubscriptionService.activate(self.business, 'STARTER')

        subscription = SubscriptionService.change_plan(self.business, 'PROFESSIONAL')

        self.assertEqual(subscription.plan_code, 'PROFESSIONAL')
        self.assertEqual(subscription.next_billing_amount, Decimal('2500.00'))
        with self.assertRaises(ValidationFailure):
            SubscriptionService.change_plan(self.business, 'PROFESSIONAL')

    def test_change_plan_to_free_downgrades(self):
        SubscriptionService.activate(self.business, 'STARTER')

        subscription = SubscriptionService.change_plan(self.business, 'FREE')

        self.assertTrue(subscription.is_free)
        self.assertIsNone(subscription.current_period_end)

    def test_pause_and_resume_extends_period(self):
        SubscriptionService.activate(self.business, 'STARTER')
        subscription = SubscriptionService.pause(self.business)
        self.assertEqual(subscription.status, Subscription.STATUS_PAUSED)
        period_end = subscription.current_period_end

        Subscription.objects.filter(pk=subscription.pk).update(paused_at=timezone.now() - timedelta(days=5))
        resumed = SubscriptionService.resume(self.business)

        self.assertEqual(resumed.status, Subscription.STATUS_ACTIVE)
        self.assertIsNone(resumed.paused_at)
        self.assertGreaterEqual(resumed.current_period_end - period_end, timedelta(days=5))

    def test_free_subscription_cannot_pause(self):
        with self.assertRaises(ValidationFailure):
            SubscriptionService.pause(self.business)

    def test_resume_requires_paused(self):
        SubscriptionService.activate(self.business, 'STARTER')
        with self.assertRaises(ValidationFailure):
            SubscriptionService.resume(self.business)

    def test_cancel_downgrades_immediately(self):
        SubscriptionService.activate(self.business, 'STARTER')

        subscription = SubscriptionService.cancel(self.business, 'Closing the shop')

        self.assertEqual(subscription.plan_code, 'FREE')
        self.assertEqual(subscription.status, Subscription.STATUS_ACTIVE)

    def test_free_subscription_cannot_cancel(self):
        with self.assertRaises(ValidationFailure):
            SubscriptionService.cancel(self.business)


class UsageTrackingTestCase(TestCase):

    def setUp(self):
        self.free_plan, self.plan = create_plans()
        self.business = create_business()
        SubscriptionService.get_subscription(self.business)

    def test_increment_and_decrement(self):
        self.assertEqual(UsageTrackingService.increment(self.business, UsageTracking.RESOURCE_PRODUCTS, by=5), 5)
        self.assertEqual(UsageTrackingService.decrement(self.business, UsageTracking.RESOURCE_PRODUCTS), 4)
        self.assertEqual(UsageTrackingService.get_usage(self.business).product_count, 4)

    def test_counts_never_go_negative(self):
        self.assertEqual(UsageTrackingService.decrement(self.business, UsageTracking.RESOURCE_USERS, by=3), 0)

    def test_set(self):
        self.assertEqual(UsageTrackingService.set(self.business, UsageTracking.RESOURCE_CUSTOMERS, 42), 42)

    def test_unknown_resource(self):
        with self.assertRaises(ValidationFailure):
            UsageTrackingService.increment(self.business, 'WIDGETS')

    def test_check_limit(self):
        UsageTrackingService.set(self.business, UsageTracking.RESOURCE_USERS, 0)
        self.assertEqual(UsageTrackingService.check_limit(self.business, UsageTracking.RESOURCE_USERS), (True, 0, 1))

        UsageTrackingService.increment(self.business, UsageTracking.RESOURCE_USERS)
        self.assertEqual(UsageTrackingService.check_limit(self.business, UsageTracking.RESOURCE_USERS), (False, 1, 1))

    def test_unlimited_resource(self):
        UsageTrackingService.set(self.business, UsageTracking.RESOURCE_DEVICES, 1000)
        self.assertEqual(
            UsageTrackingService.check_limit(self.business, UsageTracking.RESOURCE_DEVICES), (True, 1000, None)
        )

    def test_enforce_limit(self):
        UsageTrackingService.set(self.business, UsageTracking.RESOURCE_PRODUCTS, 50)

        with self.assertRaises(ValidationFailure) as ctx:
            UsageTrackingService.enforce_limit(self.business, UsageTracking.RESOURCE_PRODUCTS)
        self.assertIn('limit exceeded', str(ctx.exception))

        SubscriptionService.activate(self.business, 'STARTER')
        self.assertEqual(
            UsageTrackingService.enforce_limit(self.business, UsageTracking.RESOURCE_PRODUCTS), (50, 500)
        )
