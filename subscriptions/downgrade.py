"""
Subscription downgrade engine
Every dead end (repeated payment failure, expiry, cancellation) ends on the
FREE plan. A subscription is never deleted or left without a plan.
"""
import logging

from django.conf import settings
from django.db import transaction
from django.db.models import Q
from django.utils import timezone

from . import notifications
from .exceptions import PlanNotFound, SubscriptionNotFound
from .models import FREE_PLAN_CODE, BillingPreferences, Subscription, SubscriptionPlan

logger = logging.getLogger(__name__)


def failed_payment_threshold():
    return getattr(settings, 'DOWNGRADE_FAILED_PAYMENT_THRESHOLD', 3)


class SubscriptionDowngradeService:

    @staticmethod
    def downgrade_to_free_plan(business_id, reason):
        """
        Reset the subscription to FREE / ACTIVE with no expiry.
        Returns the subscription; already-FREE subscriptions are left alone.
        """
        with transaction.atomic():
            try:
                subscription = Subscription.objects.select_for_update().get(business_id=business_id)
            except Subscription.DoesNotExist:
                raise SubscriptionNotFound(f"No subscription for business {business_id}")

            if subscription.plan_code == FREE_PLAN_CODE:
                logger.info(f"Business {business_id} already on FREE plan, skipping downgrade")
                return subscription

            try:
                free_plan = SubscriptionPlan.objects.get(plan_code=FREE_PLAN_CODE)
            except SubscriptionPlan.DoesNotExist:
                raise PlanNotFound("FREE plan is not configured")

            previous_plan_code = subscription.plan_code
            now = timezone.now()

            subscription.plan = free_plan
            subscription.plan_code = FREE_PLAN_CODE
            subscription.is_free = True
            subscription.status = Subscription.STATUS_ACTIVE
            subscription.billing_cycle = Subscription.CYCLE_MONTHLY
            subscription.current_period_start = now
            subscription.current_period_end = None
            subscription.next_billing_amount = None
            subscription.trial_ends_at = None
            subscription.cancelled_at = None
            subscription.cancellation_reason = ''
            subscription.paused_at = None
            subscription.payment_provider = None
            subscription.external_subscription_id = None
            subscription.external_customer_id = None
            subscription.failed_payment_count = 0
            subscription.save()

        logger.info(f"Downgraded business {business_id} from {previous_plan_code} to FREE: {reason}")
        notifications.plan_downgraded(subscription.business, previous_plan_code, reason)
        return subscription

    @staticmethod
    def handle_payment_failure(business_id, failed_count):
        """
        Escalate a failed payment. PAST_DUE below the threshold,
        downgrade to FREE once it is reached.
        """
        try:
            subscription = Subscription.objects.get(business_id=business_id)
        except Subscription.DoesNotExist:
            raise SubscriptionNotFound(f"No subscription for business {business_id}")

        if subscription.is_free:
            logger.info(f"Ignoring payment failure for FREE subscription of business {business_id}")
            return subscription

        if failed_count >= failed_payment_threshold():
            logger.warning(f"Business {business_id} reached {failed_count} failed payments, downgrading")
            return SubscriptionDowngradeService.downgrade_to_free_plan(
                business_id, f"Payment failed {failed_count} times"
            )

        subscription.status = Subscription.STATUS_PAST_DUE
        subscription.failed_payment_count = failed_count
        subscription.last_payment_status = Subscription.PAYMENT_FAILED
        subscription.save(update_fields=['status', 'failed_payment_count', 'last_payment_status', 'updated_at'])
        logger.info(f"Business {business_id} marked PAST_DUE after {failed_count} failed payment(s)")
        return subscription

    @staticmethod
    def handle_subscription_expiry(business_id):
        try:
            subscription = Subscription.objects.get(business_id=business_id)
        except Subscription.DoesNotExist:
            raise SubscriptionNotFound(f"No subscription for business {business_id}")

        if not subscription.is_expired():
            return subscription
        if BillingPreferences.objects.filter(business_id=business_id, billing_mode=BillingPreferences.MODE_POSTPAID).exists():
            return subscription
        return SubscriptionDowngradeService.downgrade_to_free_plan(business_id, 'Subscription expired')

    @staticmethod
    def handle_user_cancellation(business_id, reason=''):
        """Cancellation takes effect immediately"""
        return SubscriptionDowngradeService.downgrade_to_free_plan(
            business_id, f"Cancelled by user: {reason}" if reason else 'Cancelled by user'
        )

    @staticmethod
    def get_subscriptions_to_downgrade(now=None):
        now = now or timezone.now()
        # postpaid periods do not lapse; unpaid invoices go through dunning instead
        postpaid_business_ids = BillingPreferences.objects.filter(
            billing_mode=BillingPreferences.MODE_POSTPAID
        ).values('business_id')
        expired = Q(status=Subscription.STATUS_ACTIVE, is_free=False, current_period_end__lt=now) & ~Q(
            business_id__in=postpaid_business_ids
        )
        return Subscription.objects.filter(
            Q(status=Subscription.STATUS_PAST_DUE, failed_payment_count__gte=failed_payment_threshold())
            | expired
        ).select_related('business')

    @staticmethod
    def process_subscription_downgrades(now=None):
        """Downgrade every dead-end subscription, each one independently"""
        candidates = list(SubscriptionDowngradeService.get_subscriptions_to_downgrade(now))
        results = {'processed': 0, 'downgraded': 0, 'failed': 0}

        for subscription in candidates:
            results['processed'] += 1
            if subscription.status == Subscription.STATUS_PAST_DUE:
                reason = f"Payment failed {subscription.failed_payment_count} times"
            else:
                reason = 'Subscription expired'
            try:
                SubscriptionDowngradeService.downgrade_to_free_plan(subscription.business_id, reason)
                results['downgraded'] += 1
            except Exception as e:
                results['failed'] += 1
                logger.error(f"Failed to downgrade business {subscription.business_id}: {str(e)}", exc_info=True)

        logger.info(f"Downgrade sweep: {results}")
        return results
