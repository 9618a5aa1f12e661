"""
Models for CMS integrations (WordPress, Shopify) and per-article sync state.
"""
from django.db import models


class CMSIntegration(models.Model):
    """
    Publishing credentials for one brand on one platform.
    WordPress uses username + application password; Shopify uses an Admin API token.
    """
    PLATFORM_CHOICES = [
        ('wordpress', 'WordPress'),
        ('shopify', 'Shopify'),
    ]

    brand = models.ForeignKey(
        'brands.Brand',
        on_delete=models.CASCADE,
        related_name='cms_integrations'
    )
    platform = models.CharField(max_length=20, choices=PLATFORM_CHOICES)

    # WordPress
    site_url = models.URLField(blank=True, help_text="WordPress site root, e.g. https://example.com")
    username = models.CharField(max_length=255, blank=True)
    application_password = models.CharField(max_length=255, blank=True)

    # Shopify
    shop_domain = models.CharField(max_length=255, blank=True, help_text="e.g. my-store.myshopify.com")
    access_token = models.CharField(max_length=255, blank=True)
    blog_id = models.CharField(max_length=50, blank=True, help_text="Destination blog; first blog when empty")
    api_version = models.CharField(max_length=20, blank=True)

    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'cms_integrations'
        ordering = ['brand', 'platform']
        unique_together = [['brand', 'platform']]

    def __str__(self):
        return f"{self.brand.name} - {self.get_platform_display()}"


class CMSSyncRecord(models.Model):
    """
    Where (and whether) an article lives on a platform.
    A synced record always carries the remote id so re-publishing updates in place.
    """
    STATUS_CHOICES = [
        ('pending', 'Pending'),
        ('synced', 'Synced'),
        ('sync_error', 'Sync Error'),
    ]

    article = models.ForeignKey(
        'campaigns.BlogPost',
        on_delete=models.CASCADE,
        related_name='sync_records'
    )
    platform = models.CharField(max_length=20, choices=CMSIntegration.PLATFORM_CHOICES)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='pending')
    external_id = models.CharField(max_length=100, null=True, blank=True)
    external_url = models.URLField(max_length=1000, blank=True)
    # Remote status last requested (draft/published); survives a sync_error on the article
    remote_status = models.CharField(max_length=20, default='draft')
    last_error = models.TextField(blank=True)
    last_attempt_at = models.DateTimeField(null=True, blank=True)
    attempt_count = models.PositiveIntegerField(default=0)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'cms_sync_records'
        ordering = ['-updated_at']
        unique_together = [['article', 'platform']]

    def __str__(self):
        return f"{self.article_id} -> {self.platform} ({self.status})"
