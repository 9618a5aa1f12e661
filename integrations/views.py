"""
Views for CMS integration management.
"""
from rest_framework import viewsets
from rest_framework.permissions import IsAuthenticated

from brands.permissions import IsBrandOwner

from .models import CMSIntegration
from .serializers import CMSIntegrationSerializer


class CMSIntegrationViewSet(viewsets.ModelViewSet):
    """
    ViewSet for WordPress / Shopify publishing credentials.

    list: GET /api/v1/integrations/ - Integrations for the user's brands (?brand=)
    create: POST /api/v1/integrations/
    retrieve: GET /api/v1/integrations/{id}/
    update: PUT/PATCH /api/v1/integrations/{id}/ - blank credentials keep the stored ones
    destroy: DELETE /api/v1/integrations/{id}/
    """
    serializer_class = CMSIntegrationSerializer
    permission_classes = [IsAuthenticated, IsBrandOwner]

    def get_queryset(self):
        """Return only integrations of brands owned by the current user."""
        queryset = CMSIntegration.objects.filter(brand__user=self.request.user).select_related('brand')
        brand_id = self.request.query_params.get('brand')
        if brand_id:
            queryset = queryset.filter(brand_id=brand_id)
        return queryset
