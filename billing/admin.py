"""
Admin configuration for billing models.
"""
from django.contrib import admin
from .models import TokenUsage


@admin.register(TokenUsage)
class TokenUsageAdmin(admin.ModelAdmin):
    list_display = ['user', 'service_name', 'model_name', 'total_tokens', 'cost_usd', 'balance_after', 'created_at']
    list_filter = ['service_name', 'model_name']
    search_fields = ['user__email', 'service_name']
    readonly_fields = [f.name for f in TokenUsage._meta.fields]
    date_hierarchy = 'created_at'

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
