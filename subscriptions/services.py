"""
Subscription lifecycle: activation, renewal, plan changes, pause/resume and cancellation.
"""
import logging

from dateutil.relativedelta import relativedelta
from django.db import transaction
from django.utils import timezone

from .downgrade import SubscriptionDowngradeService
from .exceptions import PlanNotFound, SubscriptionNotFound, ValidationFailure
from .models import FREE_PLAN_CODE, BillingPreferences, Subscription, SubscriptionPlan

logger = logging.getLogger(__name__)


CYCLE_DELTAS = {
    Subscription.CYCLE_MONTHLY: relativedelta(months=1),
    Subscription.CYCLE_QUARTERLY: relativedelta(months=3),
    Subscription.CYCLE_ANNUAL: relativedelta(years=1),
}


def period_end_for(start, billing_cycle):
    try:
        return start + CYCLE_DELTAS[billing_cycle]
    except KeyError:
        raise ValidationFailure(f"Unsupported billing cycle: {billing_cycle}")


def get_plan(plan_code):
    try:
        return SubscriptionPlan.objects.get(plan_code=plan_code, is_active=True)
    except SubscriptionPlan.DoesNotExist:
        raise PlanNotFound(f"Plan {plan_code} not found")


class SubscriptionService:

    @staticmethod
    def get_subscription(business):
        """Return the business subscription, starting it on FREE if it has none"""
        subscription = Subscription.objects.filter(business=business).select_related('plan').first()
        if subscription:
            return subscription

        free_plan = get_plan(FREE_PLAN_CODE)
        subscription, created = Subscription.objects.get_or_create(
            business=business,
            defaults={
                'plan': free_plan,
                'plan_code': FREE_PLAN_CODE,
                'is_free': True,
                'status': Subscription.STATUS_ACTIVE,
                'currency': free_plan.currency,
            },
        )
        if created:
            logger.info(f"Started FREE subscription for business {business.id}")
        return subscription

    @staticmethod
    def get_for_business_id(business_id):
        try:
            return Subscription.objects.select_related('plan', 'business').get(business_id=business_id)
        except Subscription.DoesNotExist:
            raise SubscriptionNotFound(f"No subscription for business {business_id}")

    @staticmethod
    def activate(business, plan_code, billing_cycle=Subscription.CYCLE_MONTHLY, provider=None,
                 external_subscription_id=None, external_customer_id=None,
                 billing_mode=BillingPreferences.MODE_PREPAID):
        plan = get_plan(plan_code)
        subscription = SubscriptionService.get_subscription(business)

        if plan.is_free:
            return SubscriptionDowngradeService.downgrade_to_free_plan(business.id, 'Activated FREE plan')

        now = timezone.now()
        with transaction.atomic():
            subscription = Subscription.objects.select_for_update().get(pk=subscription.pk)
            subscription.plan = plan
            subscription.plan_code = plan.plan_code
            subscription.is_free = False
            subscription.billing_cycle = billing_cycle
            subscription.currency = plan.currency
            subscription.current_period_start = now
            # postpaid runs open-ended, billed in arrears
            if billing_mode == BillingPreferences.MODE_POSTPAID:
                subscription.current_period_end = None
            else:
                subscription.current_period_end = period_end_for(now, billing_cycle)
            subscription.next_billing_amount = plan.price_for_cycle(billing_cycle)
            subscription.cancelled_at = None
            subscription.cancellation_reason = ''
            subscription.paused_at = None
            subscription.failed_payment_count = 0
            if plan.trial_days and subscription.trial_ends_at is None:
                subscription.status = Subscription.STATUS_TRIALING
                subscription.trial_ends_at = now + relativedelta(days=plan.trial_days)
            else:
                subscription.status = Subscription.STATUS_ACTIVE
            subscription.payment_provider = provider
            subscription.external_subscription_id = external_subscription_id
            subscription.external_customer_id = external_customer_id
            subscription.save()

            prefs = BillingPreferences.objects.for_business(business)
            if prefs.billing_mode != billing_mode:
                prefs.billing_mode = billing_mode
                prefs.save(update_fields=['billing_mode', 'updated_at'])

        logger.info(f"Activated {plan.plan_code} ({billing_cycle}, {billing_mode}) for business {business.id}")
        return subscription

    @staticmethod
    def renew(business):
        """Advance the subscription by one billing cycle"""
        subscription = SubscriptionService.get_subscription(business)
        if subscription.is_free:
            raise ValidationFailure('FREE subscriptions do not renew')
        if subscription.status in [Subscription.STATUS_CANCELLED, Subscription.STATUS_EXPIRED]:
            raise ValidationFailure(f"Cannot renew a {subscription.status.lower()} subscription")
        if BillingPreferences.objects.for_business(business).is_postpaid:
            raise ValidationFailure('Postpaid subscriptions are billed monthly in arrears and do not renew')

        now = timezone.now()
        start = subscription.current_period_end if subscription.current_period_end and subscription.current_period_end > now else now
        subscription.current_period_start = start
        subscription.current_period_end = period_end_for(start, subscription.billing_cycle)
        subscription.next_billing_amount = subscription.plan.price_for_cycle(subscription.billing_cycle)
        subscription.status = Subscription.STATUS_ACTIVE
        subscription.save()
        logger.info(f"Renewed subscription for business {business.id} until {subscription.current_period_end}")
        return subscription

    @staticmethod
    def change_plan(business, plan_code):
        plan = get_plan(plan_code)
        subscription = SubscriptionService.get_subscription(business)
        if plan.plan_code == subscription.plan_code:
            raise ValidationFailure(f"Already on plan {plan_code}")
        if plan.is_free:
            return SubscriptionDowngradeService.downgrade_to_free_plan(business.id, 'Plan changed to FREE')
        if subscription.is_free:
            prefs = BillingPreferences.objects.for_business(business)
            return SubscriptionService.activate(business, plan_code, subscription.billing_cycle, billing_mode=prefs.billing_mode)

        subscription.plan = plan
        subscription.plan_code = plan.plan_code
        subscription.currency = plan.currency
        subscription.next_billing_amount = plan.price_for_cycle(subscription.billing_cycle)
        subscription.save()
        logger.info(f"Changed plan for business {business.id} to {plan.plan_code}")
        return subscription

    @staticmethod
    def pause(business):
        subscription = SubscriptionService.get_subscription(business)
        if subscription.is_free:
            raise ValidationFailure('FREE subscriptions cannot be paused')
        if subscription.status != Subscription.STATUS_ACTIVE:
            raise ValidationFailure(f"Only active subscriptions can be paused (status {subscription.status})")

        subscription.status = Subscription.STATUS_PAUSED
        subscription.paused_at = timezone.now()
        subscription.save(update_fields=['status', 'paused_at', 'updated_at'])
        return subscription

    @staticmethod
    def resume(business):
        subscription = SubscriptionService.get_subscription(business)
        if subscription.status != Subscription.STATUS_PAUSED:
            raise ValidationFailure('Subscription is not paused')

        # Paused time is added back to the current period
        if subscription.current_period_end and subscription.paused_at:
            subscription.current_period_end += timezone.now() - subscription.paused_at
        subscription.status = Subscription.STATUS_ACTIVE
        subscription.paused_at = None
        subscription.save(update_fields=['status', 'paused_at', 'current_period_end', 'updated_at'])
        return subscription

    @staticmethod
    def cancel(business, reason=''):
        subscription = SubscriptionService.get_subscription(business)
        if subscription.is_free:
            raise ValidationFailure('FREE subscriptions cannot be cancelled')
        return SubscriptionDowngradeService.handle_user_cancellation(business.id, reason)
