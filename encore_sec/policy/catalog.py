"""
Role catalog for Encore
Static role -> permission table, loaded once at startup and read-only afterwards
"""

from pathlib import Path
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterable, Mapping, Optional, Sequence

import structlog
from pydantic import ValidationError as PydanticValidationError

from ..constants import Roles
from ..exceptions import CatalogLoadError
from .models import Action, CatalogDocument, Entity, Permission, Role, own, perm

logger = structlog.get_logger(__name__)

_ALL = frozenset({Permission(entity=Entity.ANY, action=Action.ANY)})


class PolicyCatalog:
    """
    Read-only mapping of role name to permission set.

    The catalog never changes after construction, so concurrent readers
    need no locking. The designated super admin role is granted every
    permission without consulting the table.
    """

    def __init__(self, roles: Mapping[str, Role], super_admin_role: str = Roles.SUPER_ADMIN):
        self._roles: Mapping[str, Role] = MappingProxyType(dict(roles))
        self._permissions: Mapping[str, FrozenSet[Permission]] = MappingProxyType(
            {name: role.permission_set() for name, role in self._roles.items()}
        )
        self.super_admin_role = super_admin_role

    @classmethod
    def from_definitions(cls, definitions: Iterable[Role],
                         super_admin_role: str = Roles.SUPER_ADMIN,
                         required_roles: Sequence[str] = ()) -> "PolicyCatalog":
        """Build a catalog, failing on duplicate or missing roles"""
        roles: Dict[str, Role] = {}
        for role in definitions:
            if role.name in roles:
                raise CatalogLoadError(f"Duplicate role name: {role.name}", role_name=role.name)
            roles[role.name] = role

        for name in required_roles:
            if name != super_admin_role and name not in roles:
                raise CatalogLoadError(f"Required role missing from catalog: {name}", role_name=name)

        logger.info("Policy catalog loaded", roles=sorted(roles))
        return cls(roles, super_admin_role=super_admin_role)

    @property
    def role_names(self) -> FrozenSet[str]:
        return frozenset(self._roles) | {self.super_admin_role}

    def has_role(self, role_name: str) -> bool:
        return role_name == self.super_admin_role or role_name in self._roles

    def get_role(self, role_name: str) -> Optional[Role]:
        return self._roles.get(role_name)

    def permissions_for(self, role_name: str) -> FrozenSet[Permission]:
        """Permission set held by a single role (empty for unknown roles)"""
        if role_name == self.super_admin_role:
            return _ALL
        return self._permissions.get(role_name, frozenset())

    def resolve(self, role_names: Iterable[str]) -> FrozenSet[Permission]:
        """Union of the permission sets of every held role"""
        resolved: set = set()
        for name in role_names:
            resolved.update(self.permissions_for(name))
        return frozenset(resolved)

    def is_granted(self, role_names: Iterable[str], entity: Entity, action: Action) -> bool:
        """True if any held role fully grants (entity, action)"""
        role_names = tuple(role_names)
        if self.super_admin_role in role_names:
            return True
        return any(
            not p.own_only and p.matches(entity, action)
            for name in role_names
            for p in self._permissions.get(name, ())
        )

    def best_match(self, role_names: Iterable[str], entity: Entity, action: Action,
                   own_only: bool = False) -> Optional[Permission]:
        """Most specific matching permission, used for diagnostics only"""
        role_names = tuple(role_names)
        if not own_only and self.super_admin_role in role_names:
            return next(iter(_ALL))
        candidates = [
            p for name in role_names
            for p in self._permissions.get(name, ())
            if p.own_only == own_only and p.matches(entity, action)
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda p: (p.specificity, p.label))


def default_roles() -> Sequence[Role]:
    """Built-in role definitions for the request-management service"""
    return (
        Role(
            name=Roles.HOST_ADMIN,
            description="Runs events and manages their request queues",
            permissions=(
                perm(Entity.EVENT, Action.ANY),
                perm(Entity.REQUEST, Action.VIEW),
                perm(Entity.REQUEST, Action.ASSIGN),
                perm(Entity.REQUEST, Action.REORDER),
                perm(Entity.REQUEST, Action.UPDATE),
                perm(Entity.REQUEST, Action.DELETE),
                perm(Entity.WISH_SONG, Action.VIEW),
                perm(Entity.WISH_SONG, Action.APPROVE),
                perm(Entity.SONG, Action.VIEW),
                perm(Entity.SINGER, Action.VIEW),
                perm(Entity.PLAYER, Action.VIEW),
                perm(Entity.ANALYTICS, Action.VIEW),
            ),
        ),
        Role(
            name=Roles.SINGER,
            description="Performer managing a personal songbook",
            permissions=(
                perm(Entity.SONG, Action.VIEW),
                perm(Entity.SONG, Action.CREATE),
                own(Entity.SONG, Action.UPDATE),
                own(Entity.SINGER, Action.VIEW),
                own(Entity.SINGER, Action.UPDATE),
                own(Entity.REQUEST, Action.VIEW),
                own(Entity.REQUEST, Action.UPDATE),
                own(Entity.WISH_SONG, Action.VIEW),
                own(Entity.WISH_SONG, Action.UPDATE),
                perm(Entity.EVENT, Action.VIEW),
                own(Entity.ANALYTICS, Action.VIEW),
            ),
        ),
        Role(
            name=Roles.PLAYER,
            description="Audience member placing song requests",
            permissions=(
                perm(Entity.REQUEST, Action.CREATE),
                own(Entity.REQUEST, Action.VIEW),
                own(Entity.REQUEST, Action.UPDATE),
                perm(Entity.WISH_SONG, Action.CREATE),
                own(Entity.WISH_SONG, Action.VIEW),
                own(Entity.PLAYER, Action.VIEW),
                own(Entity.PLAYER, Action.UPDATE),
                perm(Entity.SINGER, Action.VIEW),
                perm(Entity.SONG, Action.VIEW),
                perm(Entity.EVENT, Action.VIEW),
            ),
        ),
        Role(
            name=Roles.GUEST,
            description="Anonymous browsing of public listings",
            permissions=(
                perm(Entity.SINGER, Action.VIEW),
                perm(Entity.SONG, Action.VIEW),
                perm(Entity.EVENT, Action.VIEW),
            ),
        ),
    )


def load_catalog(path: Optional[str] = None,
                 super_admin_role: str = Roles.SUPER_ADMIN,
                 required_roles: Sequence[str] = (Roles.GUEST,)) -> PolicyCatalog:
    """Load the catalog from a JSON document, or the built-in roles if no path is given"""
    if path is None:
        return PolicyCatalog.from_definitions(default_roles(), super_admin_role, required_roles)

    try:
        raw = Path(path).read_text(encoding="utf-8")
        document = CatalogDocument.model_validate_json(raw)
    except OSError as exc:
        raise CatalogLoadError(f"Cannot read policy catalog at {path}: {exc}") from exc
    except PydanticValidationError as exc:
        raise CatalogLoadError(f"Malformed policy catalog at {path}: {exc.error_count()} error(s)") from exc

    return PolicyCatalog.from_definitions(document.roles, super_admin_role, required_roles)
