import logging

from django.db import transaction

from .exceptions import ValidationFailure
from .models import Subscription, UsageTracking

logger = logging.getLogger(__name__)


class UsageTrackingService:
    """Resource counters per business, checked against the plan limits"""

    @staticmethod
    def _validate(resource_type):
        if resource_type not in UsageTracking.COUNTER_FIELDS:
            raise ValidationFailure(f"Unknown resource type: {resource_type}")

    @staticmethod
    def get_usage(business):
        usage, _ = UsageTracking.objects.get_or_create(business=business)
        return usage

    @staticmethod
    def _update(business, resource_type, compute):
        UsageTrackingService._validate(resource_type)
        with transaction.atomic():
            UsageTracking.objects.get_or_create(business=business)
            usage = UsageTracking.objects.select_for_update().get(business=business)
            usage.set_count(resource_type, compute(usage.get_count(resource_type)))
            usage.save()
        return usage.get_count(resource_type)

    @staticmethod
    def increment(business, resource_type, by=1):
        return UsageTrackingService._update(business, resource_type, lambda current: current + by)

    @staticmethod
    def decrement(business, resource_type, by=1):
        return UsageTrackingService._update(business, resource_type, lambda current: current - by)

    @staticmethod
    def set(business, resource_type, value):
        return UsageTrackingService._update(business, resource_type, lambda current: value)

    @staticmethod
    def check_limit(business, resource_type):
        """Returns (allowed, current, limit); limit None means unlimited"""
        UsageTrackingService._validate(resource_type)
        current = UsageTrackingService.get_usage(business).get_count(resource_type)

        subscription = Subscription.objects.filter(business=business).select_related('plan').first()
        limit = subscription.plan.limit_for(resource_type) if subscription else None
        if limit is None:
            return True, current, None
        return current < limit, current, limit

    @staticmethod
    def enforce_limit(business, resource_type):
        allowed, current, limit = UsageTrackingService.check_limit(business, resource_type)
        if not allowed:
            logger.info(f"Business {business.id} hit {resource_type} limit ({current}/{limit})")
            raise ValidationFailure(f"{resource_type.title()} limit exceeded ({current}/{limit})")
        return current, limit
