from django.contrib import admin
from .models import Campaign, StageArtifact, Source, BlogPost


class StageArtifactInline(admin.TabularInline):
    model = StageArtifact
    extra = 0
    can_delete = False
    fields = ('stage', 'version', 'success', 'error_kind', 'model', 'total_tokens', 'cost_usd', 'created_at')
    readonly_fields = fields

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Campaign)
class CampaignAdmin(admin.ModelAdmin):
    list_display = ('id', 'brand', 'website_url', 'status', 'progress', 'is_archived', 'created_at')
    list_filter = ('status', 'is_archived', 'article_length')
    search_fields = ('website_url', 'brand__name', 'user__email')
    readonly_fields = ('created_at', 'updated_at', 'archived_at')
    inlines = [StageArtifactInline]


@admin.register(Source)
class SourceAdmin(admin.ModelAdmin):
    list_display = ('url', 'campaign', 'status', 'fetched_at')
    list_filter = ('status',)
    search_fields = ('url', 'title')


@admin.register(BlogPost)
class BlogPostAdmin(admin.ModelAdmin):
    list_display = ('title', 'brand', 'campaign', 'status', 'word_count', 'updated_at')
    list_filter = ('status',)
    search_fields = ('title', 'brand__name')
    readonly_fields = ('word_count', 'created_at', 'updated_at')
