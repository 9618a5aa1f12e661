"""
Brand profile models.
"""
from django.db import models
from django.conf import settings


class Brand(models.Model):
    """
    A business whose voice and positioning ground every generated article.
    One user can own multiple brands.
    """
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='brands'
    )
    name = models.CharField(max_length=255)
    website = models.URLField(blank=True, help_text="Primary website of the brand")
    description = models.TextField(
        blank=True,
        help_text="Brief description of the business"
    )
    industry = models.CharField(max_length=255, blank=True)
    target_audience = models.TextField(
        blank=True,
        help_text="Description of target audience/customers"
    )
    brand_voice = models.TextField(
        blank=True,
        help_text="Tone and style the brand writes in"
    )
    key_selling_points = models.JSONField(
        default=list,
        blank=True,
        help_text="List of differentiators to weave into content"
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'brands'
        ordering = ['-created_at']
        unique_together = [['user', 'name']]

    def __str__(self):
        return self.name

    def as_prompt_context(self):
        """Brand fields handed to generation prompts."""
        return {
            'name': self.name,
            'website': self.website,
            'description': self.description,
            'industry': self.industry,
            'target_audience': self.target_audience,
            'brand_voice': self.brand_voice,
            'key_selling_points': list(self.key_selling_points or []),
        }
