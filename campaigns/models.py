"""
Content campaign models.
A campaign walks a brand's keyword intent through the staged pipeline; every
stage attempt is kept as a versioned StageArtifact.
"""
import re

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models
from django.utils.html import strip_tags
from django.utils.text import slugify

META_DESCRIPTION_MAX_LENGTH = 160


def clamp_meta_description(value):
    """Meta descriptions over 160 chars become the first 157 chars + '...'."""
    value = (value or '').strip()
    if len(value) > META_DESCRIPTION_MAX_LENGTH:
        return value[:META_DESCRIPTION_MAX_LENGTH - 3] + '...'
    return value


def count_words(html):
    text = strip_tags(html or '')
    return len(re.findall(r'\S+', text))


class Campaign(models.Model):
    """
    A content campaign created from the quick setup form.
    status mirrors the stage currently being worked on, then completed/failed.
    """
    STAGE_CHOICES = [
        ('keyword_research', 'Keyword Research'),
        ('content_strategy', 'Content Strategy'),
        ('source_discovery', 'Source Discovery'),
        ('writing', 'Writing'),
        ('humanization', 'Humanization'),
        ('review', 'Review'),
    ]
    STATUS_CHOICES = STAGE_CHOICES + [
        ('completed', 'Completed'),
        ('failed', 'Failed'),
    ]
    LENGTH_CHOICES = [
        ('short', 'Short'),
        ('medium', 'Medium'),
        ('long', 'Long'),
    ]

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='campaigns'
    )
    brand = models.ForeignKey(
        'brands.Brand',
        on_delete=models.CASCADE,
        related_name='campaigns'
    )

    # Quick setup inputs
    website_url = models.URLField(max_length=500)
    target_country = models.CharField(max_length=100, blank=True)
    language = models.CharField(max_length=50, default='English')
    keywords = models.JSONField(default=list, blank=True, help_text="Seed keywords from the user")
    target_article_count = models.PositiveIntegerField(default=1)
    article_length = models.CharField(max_length=10, choices=LENGTH_CHOICES, default='medium')

    # Pipeline state
    current_step = models.CharField(max_length=30, choices=STAGE_CHOICES, default='keyword_research')
    status = models.CharField(max_length=30, choices=STATUS_CHOICES, default='keyword_research')
    progress = models.PositiveSmallIntegerField(default=0)
    error_message = models.TextField(null=True, blank=True)

    # Soft delete
    is_archived = models.BooleanField(default=False)
    archived_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'campaigns'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['user', 'is_archived'], name='campaigns_user_archived_idx'),
        ]

    def __str__(self):
        return f"{self.brand.name} - {self.website_url} ({self.status})"

    def clean(self):
        if self.status == 'failed' and not self.error_message:
            raise ValidationError({'error_message': 'A failed campaign must carry an error message.'})
        if self.progress == 100 and self.status != 'completed':
            raise ValidationError({'progress': 'Progress 100 is only valid for completed campaigns.'})
        if self.progress > 100:
            raise ValidationError({'progress': 'Progress cannot exceed 100.'})

    @property
    def can_resume(self):
        return self.status != 'completed' and not self.is_archived


class StageArtifact(models.Model):
    """
    One attempt at one stage. Immutable once written; a retry writes version N+1.
    """
    campaign = models.ForeignKey(
        Campaign,
        on_delete=models.CASCADE,
        related_name='artifacts'
    )
    stage = models.CharField(max_length=30)
    version = models.PositiveIntegerField(default=1)

    success = models.BooleanField(default=False)
    payload = models.JSONField(null=True, blank=True)
    raw_response = models.TextField(blank=True)
    error_kind = models.CharField(max_length=50, blank=True)
    error_message = models.TextField(blank=True)

    # Usage
    model = models.CharField(max_length=100, blank=True)
    prompt_tokens = models.IntegerField(default=0)
    completion_tokens = models.IntegerField(default=0)
    total_tokens = models.IntegerField(default=0)
    cost_usd = models.DecimalField(max_digits=12, decimal_places=6, default=0)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'stage_artifacts'
        ordering = ['campaign', 'stage', '-version']
        unique_together = [['campaign', 'stage', 'version']]

    def __str__(self):
        state = 'ok' if self.success else self.error_kind or 'failed'
        return f"{self.campaign_id}:{self.stage} v{self.version} ({state})"

    def save(self, *args, **kwargs):
        if self.pk is not None:
            raise ValueError("Stage artifacts are immutable; write a new version instead")
        super().save(*args, **kwargs)


class Source(models.Model):
    """A web page fetched and analysed as research for a campaign."""
    STATUS_CHOICES = [
        ('pending', 'Pending'),
        ('success', 'Success'),
        ('partial', 'Partial'),
        ('failed', 'Failed'),
    ]

    campaign = models.ForeignKey(
        Campaign,
        on_delete=models.CASCADE,
        related_name='sources'
    )
    url = models.URLField(max_length=1000)
    title = models.CharField(max_length=500, blank=True)
    description = models.TextField(blank=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='pending')
    content_excerpt = models.TextField(blank=True)
    insights = models.JSONField(default=dict, blank=True)
    error = models.TextField(blank=True)
    fetched_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = 'campaign_sources'
        ordering = ['id']
        unique_together = [['campaign', 'url']]

    def __str__(self):
        return f"{self.url} ({self.status})"

    @property
    def is_usable(self):
        return self.status in ('success', 'partial')


class BlogPost(models.Model):
    """
    An article produced by a campaign (or written by hand) and published to a CMS.
    """
    STATUS_CHOICES = [
        ('draft', 'Draft'),
        ('published', 'Published'),
        ('sync_error', 'Sync Error'),
    ]

    brand = models.ForeignKey(
        'brands.Brand',
        on_delete=models.CASCADE,
        related_name='blog_posts'
    )
    campaign = models.ForeignKey(
        Campaign,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='blog_posts'
    )
    title = models.CharField(max_length=500)
    slug = models.SlugField(max_length=500, blank=True)
    content = models.TextField(blank=True, help_text="Article body (HTML)")
    meta_description = models.CharField(max_length=META_DESCRIPTION_MAX_LENGTH, blank=True)
    keywords = models.JSONField(default=list, blank=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='draft')
    word_count = models.PositiveIntegerField(default=0)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'blog_posts'
        ordering = ['-created_at']

    def __str__(self):
        return self.title

    def clean(self):
        if self.status == 'published' and not self.keywords:
            raise ValidationError({'keywords': 'Keywords are required before publishing.'})

    def save(self, *args, **kwargs):
        self.meta_description = clamp_meta_description(self.meta_description)
        if not self.slug:
            self.slug = slugify(self.title)[:500]
        self.word_count = count_words(self.content)
        super().save(*args, **kwargs)
