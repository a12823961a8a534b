from django.contrib.auth import get_user_model
from django.test import TestCase

from .models import Business, BusinessMembership

User = get_user_model()


class BusinessMembershipTest(TestCase):
    """Test cases for business memberships"""

    def setUp(self):
        self.user = User.objects.create_user(username='owner', email='owner@example.com', password='testpass123')
        self.business = Business.objects.create(name='Corner Shop', email='shop@example.com', owner=self.user)

    def test_owner_and_admin_roles_are_admins(self):
        membership = BusinessMembership.objects.create(
            business=self.business, user=self.user, role=BusinessMembership.OWNER
        )
        self.assertTrue(membership.is_admin)

        staff_user = User.objects.create_user(username='staff', password='testpass123')
        staff = BusinessMembership.objects.create(business=self.business, user=staff_user)
        self.assertEqual(staff.role, BusinessMembership.STAFF)
        self.assertFalse(staff.is_admin)

    def test_business_defaults(self):
        self.assertEqual(self.business.country, 'IN')
        self.assertEqual(self.business.phone_numbers, [])
        self.assertFalse(self.business.has_active_subscription())
