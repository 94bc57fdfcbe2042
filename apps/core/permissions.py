"""
Role-Based Permissions for the Symploke API.

Maps OperatorProfile.role to DRF permission classes.

Roles:
- viewer: Read-only access to runs and weaves
- operator: Can trigger and cancel discovery runs
- admin: Full access including plexus data resets

Usage:
    from apps.core.permissions import IsOperator, IsAdmin

    class MyView(APIView):
        permission_classes = [IsAuthenticated, IsOperator]
"""

from rest_framework.permissions import BasePermission
import logging

logger = logging.getLogger(__name__)


def get_user_role(user):
    """Return the role of a user ('viewer' when no profile exists)."""
    if not user or not user.is_authenticated:
        return None
    from apps.core.models import OperatorProfile
    profile = OperatorProfile.objects.filter(user=user).only('role').first()
    return profile.role if profile else 'viewer'


class RolePermission(BasePermission):
    """Base class for role-based permissions."""

    # Override in subclasses
    allowed_roles = []

    def has_permission(self, request, view):
        if not request.user or not request.user.is_authenticated:
            return False

        # Superusers always have access
        if request.user.is_superuser:
            return True

        return get_user_role(request.user) in self.allowed_roles


class IsOperator(RolePermission):
    """
    Allow access to users with operator role or higher.

    Operators can trigger and cancel discovery runs.
    """
    allowed_roles = ['operator', 'admin']
    message = "Operator access required."


class IsAdmin(RolePermission):
    """
    Allow access to admin users only.

    Admins can reset a plexus's discovery data.
    """
    allowed_roles = ['admin']
    message = "Admin access required."
