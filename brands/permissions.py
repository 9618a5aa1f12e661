"""
Object permissions for brand-owned resources.
"""
from rest_framework import permissions


class IsBrandOwner(permissions.BasePermission):
    """
    The object is a brand, or hangs off one (campaign, article, CMS integration),
    owned by the requesting user.
    """
    def has_object_permission(self, request, view, obj):
        brand = obj if not hasattr(obj, 'brand') else obj.brand
        return brand.user_id == request.user.id
