from django.contrib import admin
from .models import CMSIntegration, CMSSyncRecord


@admin.register(CMSIntegration)
class CMSIntegrationAdmin(admin.ModelAdmin):
    list_display = ('brand', 'platform', 'site_url', 'shop_domain', 'is_active', 'updated_at')
    list_filter = ('platform', 'is_active')
    search_fields = ('brand__name', 'site_url', 'shop_domain')
    exclude = ('application_password', 'access_token')
    readonly_fields = ('created_at', 'updated_at')


@admin.register(CMSSyncRecord)
class CMSSyncRecordAdmin(admin.ModelAdmin):
    list_display = ('article', 'platform', 'status', 'external_id', 'attempt_count', 'last_attempt_at')
    list_filter = ('platform', 'status')
    search_fields = ('article__title', 'external_id')
    readonly_fields = ('created_at', 'updated_at', 'last_attempt_at')
