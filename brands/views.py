"""
Views for Brand management.
"""
from rest_framework import viewsets
from rest_framework.permissions import IsAuthenticated
from .models import Brand
from .serializers import BrandSerializer
from .permissions import IsBrandOwner


class BrandViewSet(viewsets.ModelViewSet):
    """
    ViewSet for managing brands.

    list: GET /api/v1/brands/ - List all brands for current user
    create: POST /api/v1/brands/ - Create a new brand
    retrieve: GET /api/v1/brands/{id}/ - Get brand details
    update: PUT /api/v1/brands/{id}/ - Update brand
    destroy: DELETE /api/v1/brands/{id}/ - Delete brand
    """
    serializer_class = BrandSerializer
    permission_classes = [IsAuthenticated, IsBrandOwner]

    def get_queryset(self):
        """Return only brands owned by the current user."""
        return Brand.objects.filter(user=self.request.user)

    def perform_create(self, serializer):
        """Set the user when creating a brand."""
        serializer.save(user=self.request.user)
