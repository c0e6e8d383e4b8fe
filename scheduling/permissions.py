"""
Role based permission classes for the scheduling API.
"""
from rest_framework.permissions import BasePermission, SAFE_METHODS

from .models import User


class IsStaffRole(BasePermission):
    """Allow access only to clinic staff (doctors and administrators)."""
    def has_permission(self, request, view) -> bool:  # type: ignore[override]
        user = getattr(request, "user", None)
        return bool(user and user.is_authenticated and getattr(user, "role", None) in User.STAFF_ROLES)


class IsStaffOrReadOnly(BasePermission):
    """Anyone authenticated may read; only staff may write."""
    def has_permission(self, request, view) -> bool:  # type: ignore[override]
        if request.method in SAFE_METHODS:
            user = getattr(request, "user", None)
            return bool(user and user.is_authenticated)
        return IsStaffRole().has_permission(request, view)
