from django.contrib import admin

from .models import Business, BusinessMembership


class BusinessMembershipInline(admin.TabularInline):
    model = BusinessMembership
    extra = 0
    fields = ['user', 'role', 'is_admin', 'is_active']


@admin.register(Business)
class BusinessAdmin(admin.ModelAdmin):
    list_display = ['name', 'owner', 'email', 'country', 'is_active', 'created_at']
    list_filter = ['is_active', 'country']
    search_fields = ['name', 'email', 'owner__email']
    inlines = [BusinessMembershipInline]


@admin.register(BusinessMembership)
class BusinessMembershipAdmin(admin.ModelAdmin):
    list_display = ['user', 'business', 'role', 'is_admin', 'is_active']
    list_filter = ['role', 'is_admin', 'is_active']
    search_fields = ['user__username', 'user__email', 'business__name']
