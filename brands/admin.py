from django.contrib import admin
from .models import Brand


@admin.register(Brand)
class BrandAdmin(admin.ModelAdmin):
    list_display = ('name', 'website', 'user', 'industry', 'created_at')
    list_filter = ('created_at',)
    search_fields = ('name', 'website', 'user__email')
    readonly_fields = ('created_at', 'updated_at')
