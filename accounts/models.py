import uuid

from django.conf import settings
from django.core.exceptions import ObjectDoesNotExist
from django.db import models


class Business(models.Model):
    """Represents a business (tenant) registered on the platform."""
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name='owned_businesses',
        null=True,
        blank=True,
    )
    name = models.CharField(max_length=255, unique=True)
    email = models.EmailField()
    country = models.CharField(max_length=2, default='IN', help_text='ISO 3166-1 alpha-2 country code')
    address = models.TextField(blank=True)
    phone_numbers = models.JSONField(default=list, blank=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'businesses'
        ordering = ['name']
        verbose_name_plural = 'businesses'

    def __str__(self):
        return self.name

    def has_active_subscription(self):
        """Check if business has an active subscription (FREE counts)"""
        try:
            return self.subscription.status == 'ACTIVE'
        except ObjectDoesNotExist:
            return False


class BusinessMembership(models.Model):
    """Associates users with businesses and roles."""
    OWNER = 'OWNER'
    ADMIN = 'ADMIN'
    MANAGER = 'MANAGER'
    STAFF = 'STAFF'
    ROLE_CHOICES = [
        (OWNER, 'Owner'),
        (ADMIN, 'Administrator'),
        (MANAGER, 'Manager'),
        (STAFF, 'Staff'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    business = models.ForeignKey(Business, on_delete=models.CASCADE, related_name='memberships')
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='business_memberships')
    role = models.CharField(max_length=20, choices=ROLE_CHOICES, default=STAFF)
    is_admin = models.BooleanField(default=False)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'business_memberships'
        unique_together = ['business', 'user']
        ordering = ['business__name']

    def __str__(self):
        return f"{self.user} - {self.business.name} ({self.role})"

    def save(self, *args, **kwargs):
        if self.role in (self.OWNER, self.ADMIN):
            self.is_admin = True
        super().save(*args, **kwargs)
