"""
URL routing for CMS integrations.
"""
from django.urls import path, include
from rest_framework.routers import DefaultRouter
from .views import CMSIntegrationViewSet

router = DefaultRouter()
router.register(r'', CMSIntegrationViewSet, basename='cms-integration')

urlpatterns = [
    path('', include(router.urls)),
]
