import logging

from rest_framework.permissions import BasePermission

from core.models import User

logger = logging.getLogger("security.authorization")

ALL_ROLES = {User.Role.CLERK, User.Role.BUYER, User.Role.ADMIN}

ROLE_CAPABILITY_MATRIX = {
    "purchasing.view": ALL_ROLES,
    "purchasing.reports.view": ALL_ROLES,
    "purchasing.order.create": {User.Role.BUYER, User.Role.ADMIN},
    "purchasing.order.update": {User.Role.BUYER, User.Role.ADMIN},
    "purchasing.order.approve": {User.Role.ADMIN},
    "purchasing.order.receive": {User.Role.CLERK, User.Role.BUYER, User.Role.ADMIN},
    "purchasing.order.cancel": {User.Role.BUYER, User.Role.ADMIN},
    "purchasing.invoice.create": {User.Role.BUYER, User.Role.ADMIN},
    "purchasing.payment.create": {User.Role.ADMIN},
    "purchasing.quotation.create": {User.Role.BUYER, User.Role.ADMIN},
    "purchasing.quotation.convert": {User.Role.BUYER, User.Role.ADMIN},
    "supplier.manage": {User.Role.BUYER, User.Role.ADMIN},
    "company.view": ALL_ROLES,
    "inventory.view": ALL_ROLES,
    "inventory.manage": {User.Role.BUYER, User.Role.ADMIN},
    "admin.records.manage": {User.Role.ADMIN},
}


def get_user_role(user):
    if not user or not user.is_authenticated:
        return None
    if user.is_superuser:
        return User.Role.ADMIN
    role = getattr(user, "role", None)
    if role:
        return role
    if getattr(user, "is_staff", False):
        return User.Role.ADMIN
    return User.Role.CLERK


def user_has_capability(user, capability):
    if not user or not user.is_authenticated:
        return False
    if user.is_superuser:
        return True
    allowed_roles = ROLE_CAPABILITY_MATRIX.get(capability)
    if not allowed_roles:
        return False
    return get_user_role(user) in allowed_roles


class RoleCapabilityPermission(BasePermission):
    """Permission class that validates role capability by action/method and logs denied attempts."""

    message = "You do not have permission to perform this action."

    def has_permission(self, request, view):
        capability_map = getattr(view, "permission_action_map", {})
        action_key = getattr(view, "action", None) or request.method.lower()
        capability = capability_map.get(action_key)
        if capability is None:
            return True

        allowed = user_has_capability(request.user, capability)
        if not allowed:
            logger.warning(
                "permission_denied capability=%s user=%s role=%s method=%s path=%s view=%s action=%s",
                capability,
                getattr(request.user, "username", "anonymous"),
                get_user_role(request.user),
                request.method,
                request.path,
                view.__class__.__name__,
                action_key,
            )
        return allowed


class BelongsToCompany(BasePermission):
    message = "Authenticated user must belong to a company."

    def has_permission(self, request, view):
        user = request.user
        return bool(user and user.is_authenticated and getattr(user, "company_id", None))
