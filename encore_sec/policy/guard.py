"""
Permission guard for Encore
Pure grant/deny decisions evaluated before a guarded operation runs
"""

from dataclasses import dataclass
from typing import Any, Callable, Optional

import structlog

from .catalog import PolicyCatalog
from .context import AuthContext, CallContext
from .models import Action, Entity, Permission

logger = structlog.get_logger(__name__)

OwnerResolver = Callable[[CallContext], Any]


@dataclass(frozen=True)
class PermissionRequirement:
    """Declarative (entity, action) requirement attached to an operation"""
    entity: Entity
    action: Action
    owner_resolver: Optional[OwnerResolver] = None

    @property
    def label(self) -> str:
        return f"{self.entity.value}:{self.action.value}"


@dataclass(frozen=True)
class Decision:
    """Outcome of a guard evaluation"""
    granted: bool
    reason: str
    matched: Optional[Permission] = None
    via_ownership: bool = False

    def __bool__(self) -> bool:
        return self.granted


class PermissionGuard:
    """
    Decides whether a caller may perform (entity, action).

    ``check`` performs no I/O and keeps no state between calls: identical
    inputs always yield identical decisions, so it is safe to call
    concurrently without synchronisation.
    """

    def __init__(self, catalog: PolicyCatalog):
        self.catalog = catalog

    def check(self, context: AuthContext, entity: Entity, action: Action,
              owner_resolver: Optional[OwnerResolver] = None,
              call: Optional[CallContext] = None) -> Decision:
        required = f"{entity.value}:{action.value}"

        if self.catalog.is_granted(context.roles, entity, action):
            return Decision(
                granted=True,
                reason=f"Granted {required}",
                matched=self.catalog.best_match(context.roles, entity, action),
            )

        self_service = _most_specific(context, entity, action)

        if owner_resolver is not None and self_service is not None:
            owner = _resolve_owner(owner_resolver, call)
            if owner is not None and str(owner) == context.user_id:
                return Decision(
                    granted=True,
                    reason=f"Granted {required} on own resource",
                    matched=self_service,
                    via_ownership=True,
                )
            return Decision(
                granted=False,
                reason=f"Missing permission {required}; "
                       f"own-resource access applies only to resources you own",
            )

        if self_service is not None:
            return Decision(
                granted=False,
                reason=f"Missing permission {required}; only own-resource access is held",
            )

        return Decision(granted=False, reason=f"Missing permission {required}")

    def require(self, context: AuthContext, requirement: PermissionRequirement,
                call: Optional[CallContext] = None) -> Decision:
        return self.check(context, requirement.entity, requirement.action,
                          requirement.owner_resolver, call)


def _most_specific(context: AuthContext, entity: Entity, action: Action) -> Optional[Permission]:
    candidates = [
        p for p in context.permissions
        if p.own_only and p.matches(entity, action)
    ]
    if not candidates:
        return None
    return max(candidates, key=lambda p: (p.specificity, p.label))


def _resolve_owner(owner_resolver: OwnerResolver, call: Optional[CallContext]) -> Any:
    # A resolver that cannot find an owner denies rather than erroring.
    if call is None:
        return None
    try:
        return owner_resolver(call)
    except Exception as e:
        logger.warning("Owner resolver failed", operation=call.operation, error=str(e))
        return None
