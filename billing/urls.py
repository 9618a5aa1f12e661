"""
URL configuration for billing app.
"""
from django.urls import path
from . import views

urlpatterns = [
    path('balance/', views.get_balance, name='billing-balance'),
    path('usage/', views.TokenUsageListView.as_view(), name='billing-usage'),
    path('subscription/', views.subscription, name='billing-subscription'),
    path('webhook/', views.stripe_webhook, name='stripe-webhook'),
]
