"""
Permissions for billing endpoints
"""
from rest_framework.permissions import BasePermission

from accounts.models import BusinessMembership


class IsPlatformAdmin(BasePermission):
    """
    Permission check for platform administrators (Django staff users).
    """
    def has_permission(self, request, view):
        if not request.user or not request.user.is_authenticated:
            return False
        return request.user.is_staff


def user_business_ids(user):
    """Businesses the user is an active member of"""
    return BusinessMembership.objects.filter(user=user, is_active=True).values_list('business_id', flat=True)


def is_business_admin(user, business):
    if user.is_staff:
        return True
    return BusinessMembership.objects.filter(
        user=user, business=business, is_active=True, is_admin=True
    ).exists()
