"""
Policy enforcement module for Encore
Role catalog, caller context resolution and the permission guard
"""

from .models import Entity, Action, Permission, Role
from .catalog import PolicyCatalog, default_roles, load_catalog
from .context import Identity, AuthContext, CallContext, AuthContextResolver
from .guard import PermissionGuard, PermissionRequirement, Decision

__all__ = [
    "Entity",
    "Action",
    "Permission",
    "Role",
    "PolicyCatalog",
    "default_roles",
    "load_catalog",
    "Identity",
    "AuthContext",
    "CallContext",
    "AuthContextResolver",
    "PermissionGuard",
    "PermissionRequirement",
    "Decision",
]
