"""
API URL routing for seopilot_backend.
All API endpoints are prefixed with /api/v1/
"""
from django.urls import path, include

from .views import health_check

urlpatterns = [
    # Health check (no auth) - GET /api/v1/health/
    path('health/', health_check),
    # Brand profiles used as prompt context
    path('brands/', include('brands.urls')),
    # Content campaigns: quick setup, stage runs, resume
    path('campaigns/', include('campaigns.urls')),
    # Generated articles + CMS publishing
    path('articles/', include('campaigns.article_urls')),
    # WordPress / Shopify credentials
    path('integrations/', include('integrations.urls')),
    # Token balance, usage ledger, subscriptions
    path('billing/', include('billing.urls')),
]
