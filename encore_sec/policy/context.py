"""
Caller context for Encore
Immutable per-request identity snapshots and the resolver that builds them
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Dict, FrozenSet, Iterable, Mapping, Optional

import structlog

from ..crypto.jwt import JWTError, extract_bearer_token, verify_access_token
from ..exceptions import AuthenticationRequired
from .catalog import PolicyCatalog
from .models import Action, Entity, Permission

logger = structlog.get_logger(__name__)

RoleDirectory = Callable[[str], Iterable[str]]


def _frozen_mapping(value: Optional[Mapping[str, Any]]) -> Mapping[str, Any]:
    return MappingProxyType(dict(value or {}))


@dataclass(frozen=True)
class Identity:
    """An authenticated caller, as established by credential verification"""
    user_id: str
    roles: FrozenSet[str] = frozenset()
    attributes: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "roles", frozenset(self.roles))
        object.__setattr__(self, "attributes", _frozen_mapping(self.attributes))


@dataclass(frozen=True)
class AuthContext:
    """
    Resolved snapshot of a caller for one request.

    Never mutated after construction. Ownership facts are not cached
    here; they are computed from the request when a guard evaluates.
    """
    user_id: str
    roles: FrozenSet[str]
    permissions: FrozenSet[Permission]
    attributes: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "roles", frozenset(self.roles))
        object.__setattr__(self, "permissions", frozenset(self.permissions))
        object.__setattr__(self, "attributes", _frozen_mapping(self.attributes))

    def has_role(self, role_name: str) -> bool:
        return role_name in self.roles

    def holds(self, entity: Entity, action: Action, own_only: bool = False) -> bool:
        """Check the resolved set for a matching permission of the given strength"""
        return any(
            p.own_only == own_only and p.matches(entity, action)
            for p in self.permissions
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "roles": sorted(self.roles),
            "permissions": sorted(
                ({"entity": p.entity.value, "action": p.action.value, "own_only": p.own_only}
                 for p in self.permissions),
                key=lambda p: (p["entity"], p["action"], p["own_only"]),
            ),
        }


@dataclass(frozen=True)
class CallContext:
    """
    Structured inputs of one guarded operation call.

    Extractors and owner resolvers read named fields from here instead
    of indexing into positional handler arguments.
    """
    actor: Optional[AuthContext] = None
    operation: str = ""
    body: Mapping[str, Any] = field(default_factory=dict)
    params: Mapping[str, Any] = field(default_factory=dict)
    query: Mapping[str, Any] = field(default_factory=dict)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "body", _frozen_mapping(self.body))
        object.__setattr__(self, "params", _frozen_mapping(self.params))
        object.__setattr__(self, "query", _frozen_mapping(self.query))

    @property
    def actor_id(self) -> Optional[str]:
        return self.actor.user_id if self.actor else None


class AuthContextResolver:
    """Turns a verified identity into an AuthContext against a catalog snapshot"""

    def __init__(self, catalog: PolicyCatalog, default_role: Optional[str] = None,
                 role_directory: Optional[RoleDirectory] = None,
                 secret_key: Optional[str] = None):
        self.catalog = catalog
        self.default_role = default_role
        self.role_directory = role_directory
        self.secret_key = secret_key

    def resolve(self, identity: Optional[Identity]) -> AuthContext:
        """Build the caller's context; deterministic for an identity and catalog"""
        if identity is None or not str(identity.user_id or "").strip():
            raise AuthenticationRequired(reason="missing_identity")

        roles = set(identity.roles)
        if self.role_directory is not None:
            roles.update(self.role_directory(identity.user_id))
        if not roles and self.default_role:
            roles.add(self.default_role)

        unknown = sorted(r for r in roles if not self.catalog.has_role(r))
        if unknown:
            logger.warning("Identity holds roles missing from catalog",
                           user_id=identity.user_id, roles=unknown)

        return AuthContext(
            user_id=str(identity.user_id),
            roles=frozenset(roles),
            permissions=self.catalog.resolve(roles),
            attributes=identity.attributes,
        )

    def identity_from_bearer(self, authorization_header: Optional[str]) -> Identity:
        """Verify a bearer token and return the identity it asserts"""
        if not self.secret_key:
            raise AuthenticationRequired(reason="token_verification_disabled")
        try:
            token = extract_bearer_token(authorization_header)
            claims = verify_access_token(token, self.secret_key)
        except JWTError as exc:
            logger.warning("Authentication failed", error=str(exc))
            raise AuthenticationRequired(reason="invalid_token") from exc

        return Identity(
            user_id=claims["user_id"],
            roles=frozenset(claims["roles"]),
            attributes=claims["attributes"],
        )

    def resolve_bearer(self, authorization_header: Optional[str]) -> AuthContext:
        return self.resolve(self.identity_from_bearer(authorization_header))
