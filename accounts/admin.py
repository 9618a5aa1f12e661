"""
Admin configuration for user accounts.
"""
from django.contrib import admin
from .models import User


@admin.register(User)
class UserAdmin(admin.ModelAdmin):
    list_display = ['email', 'token_balance', 'subscription_status', 'created_at']
    list_filter = ['subscription_status', 'is_staff']
    search_fields = ['email', 'stripe_customer_id']
    readonly_fields = ['created_at', 'updated_at', 'token_balance']
