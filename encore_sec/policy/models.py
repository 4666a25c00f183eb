"""
Policy data models for Encore
Entities, actions, permissions and role definitions
"""

from enum import Enum
from typing import FrozenSet, List, Tuple

from pydantic import BaseModel, ConfigDict, Field


class Entity(str, Enum):
    """Resource types that permissions refer to"""
    USER = "USER"
    EVENT = "EVENT"
    REQUEST = "REQUEST"
    WISH_SONG = "WISH_SONG"
    SONG = "SONG"
    SINGER = "SINGER"
    PLAYER = "PLAYER"
    AUDIT_LOG = "AUDIT_LOG"
    SYSTEM = "SYSTEM"
    ANALYTICS = "ANALYTICS"

    ANY = "*"


class Action(str, Enum):
    """Operations that can be performed on an entity"""
    VIEW = "VIEW"
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    EXPORT = "EXPORT"
    ASSIGN = "ASSIGN"
    APPROVE = "APPROVE"
    REORDER = "REORDER"
    PROXY = "PROXY"

    ANY = "*"


class Permission(BaseModel):
    """
    An (entity, action) capability.

    ``own_only`` marks the self-service form: it is only honoured when the
    caller owns the target resource, and never counts as a full grant.
    """
    model_config = ConfigDict(frozen=True)

    entity: Entity
    action: Action
    own_only: bool = False

    def matches(self, entity: Entity, action: Action) -> bool:
        """Check whether this permission covers (entity, action)"""
        entity_ok = self.entity == Entity.ANY or self.entity == entity
        action_ok = self.action == Action.ANY or self.action == action
        return entity_ok and action_ok

    @property
    def specificity(self) -> int:
        """2 for an exact pair, 0 for a full wildcard"""
        return int(self.entity != Entity.ANY) + int(self.action != Action.ANY)

    @property
    def label(self) -> str:
        return f"{self.entity.value}:{self.action.value}"


class Role(BaseModel):
    """Immutable role definition"""
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    description: str = ""
    permissions: Tuple[Permission, ...] = ()

    def permission_set(self) -> FrozenSet[Permission]:
        return frozenset(self.permissions)

    def has_permission(self, entity: Entity, action: Action) -> bool:
        """Check if role fully grants (entity, action)"""
        return any(
            not p.own_only and p.matches(entity, action)
            for p in self.permissions
        )


class CatalogDocument(BaseModel):
    """On-disk role catalog format"""
    roles: List[Role]


def perm(entity: Entity, action: Action, own_only: bool = False) -> Permission:
    """Shorthand used by catalog definitions"""
    return Permission(entity=entity, action=action, own_only=own_only)


def own(entity: Entity, action: Action) -> Permission:
    """Self-service permission: honoured only for the caller's own resources"""
    return Permission(entity=entity, action=action, own_only=True)
