"""
Operation pipeline for Encore
Explicit registry of guarded operations and the ordered stages they run through
"""

import inspect
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

import structlog

from .audit.interceptor import AuditInterceptor
from .audit.models import AuditConfig
from .exceptions import AuthenticationRequired, OperationNotFound, PermissionDenied, ValidationError
from .policy.context import CallContext
from .policy.guard import PermissionGuard, PermissionRequirement

logger = structlog.get_logger(__name__)

Handler = Callable[[CallContext], Any]
Next = Callable[[CallContext], Awaitable[Any]]
Stage = Callable[[CallContext, Next], Awaitable[Any]]


class AuthenticationStage:
    """Rejects calls that carry no resolved caller"""

    async def __call__(self, call: CallContext, next_stage: Next) -> Any:
        if call.actor is None:
            raise AuthenticationRequired(reason="missing_identity")
        return await next_stage(call)


class AuthorizationStage:
    """Evaluates the guard; a denial stops the call before the handler runs"""

    def __init__(self, guard: PermissionGuard, requirement: PermissionRequirement,
                 interceptor: Optional[AuditInterceptor] = None,
                 audit: Optional[AuditConfig] = None,
                 audit_denials: bool = True):
        self.guard = guard
        self.requirement = requirement
        self.interceptor = interceptor
        self.audit = audit
        self.audit_denials = audit_denials

    async def __call__(self, call: CallContext, next_stage: Next) -> Any:
        if call.actor is None:
            raise AuthenticationRequired(reason="missing_identity")

        decision = self.guard.require(call.actor, self.requirement, call)
        if not decision.granted:
            logger.warning("Permission denied", operation=call.operation,
                           user_id=call.actor_id, required=self.requirement.label)
            if self.interceptor is not None and self.audit_denials:
                await self.interceptor.record_denial(self.requirement, call, decision, self.audit)
            raise PermissionDenied(decision.reason,
                                   entity=self.requirement.entity.value,
                                   action=self.requirement.action.value)

        return await next_stage(call)


class AuditStage:
    """Runs the rest of the pipeline inside the audit interceptor"""

    def __init__(self, interceptor: AuditInterceptor, config: AuditConfig):
        self.interceptor = interceptor
        self.config = config

    async def __call__(self, call: CallContext, next_stage: Next) -> Any:
        return await self.interceptor.run(self.config, call, lambda: next_stage(call))


async def invoke_handler(handler: Handler, call: CallContext) -> Any:
    """Call a sync or async handler and await the result if needed"""
    result = handler(call)
    if inspect.isawaitable(result):
        result = await result
    return result


class Pipeline:
    """Ordered chain of stages ending in the operation handler"""

    def __init__(self, stages: Sequence[Stage], handler: Handler):
        self.stages = tuple(stages)
        self.handler = handler

    async def __call__(self, call: CallContext) -> Any:
        async def terminal(c: CallContext) -> Any:
            return await invoke_handler(self.handler, c)

        chain: Next = terminal
        for stage in reversed(self.stages):
            chain = _link(stage, chain)
        return await chain(call)


def _link(stage: Stage, next_stage: Next) -> Next:
    async def run(call: CallContext) -> Any:
        return await stage(call, next_stage)
    return run


@dataclass(frozen=True)
class RegisteredOperation:
    """An operation with its requirement and audit config resolved at registration"""
    name: str
    handler: Handler
    requirement: Optional[PermissionRequirement]
    audit: Optional[AuditConfig]
    authenticated: bool
    pipeline: Pipeline


class OperationRegistry:
    """
    Maps operation names to their guard and audit configuration.

    Configuration is attached once, at registration, and every invocation
    reuses the composed pipeline.
    """

    def __init__(self, guard: PermissionGuard,
                 interceptor: Optional[AuditInterceptor] = None,
                 audit_denials: bool = True):
        self.guard = guard
        self.interceptor = interceptor
        self.audit_denials = audit_denials
        self._operations: Dict[str, RegisteredOperation] = {}

    def build_stages(self, requires: Optional[PermissionRequirement],
                     audit: Optional[AuditConfig], authenticated: bool) -> List[Stage]:
        stages: List[Stage] = []
        if requires is not None:
            stages.append(AuthorizationStage(self.guard, requires, self.interceptor,
                                             audit, self.audit_denials))
        elif authenticated:
            stages.append(AuthenticationStage())
        if audit is not None and self.interceptor is not None:
            stages.append(AuditStage(self.interceptor, audit))
        return stages

    def register(self, name: str, handler: Handler,
                 requires: Optional[PermissionRequirement] = None,
                 audit: Optional[AuditConfig] = None,
                 authenticated: bool = True) -> RegisteredOperation:
        if not name:
            raise ValidationError("Operation name is required", field="name")
        if name in self._operations:
            raise ValidationError(f"Operation already registered: {name}", field="name")

        operation = RegisteredOperation(
            name=name,
            handler=handler,
            requirement=requires,
            audit=audit,
            authenticated=authenticated,
            pipeline=Pipeline(self.build_stages(requires, audit, authenticated), handler),
        )
        self._operations[name] = operation
        logger.debug("Registered operation", operation=name,
                     required=requires.label if requires else None,
                     audited=audit is not None)
        return operation

    def operation(self, name: str, requires: Optional[PermissionRequirement] = None,
                  audit: Optional[AuditConfig] = None,
                  authenticated: bool = True) -> Callable[[Handler], Handler]:
        """Decorator form of register; returns the handler unchanged"""
        def decorator(handler: Handler) -> Handler:
            self.register(name, handler, requires=requires, audit=audit,
                          authenticated=authenticated)
            return handler
        return decorator

    def get(self, name: str) -> RegisteredOperation:
        try:
            return self._operations[name]
        except KeyError:
            raise OperationNotFound(name)

    def __contains__(self, name: str) -> bool:
        return name in self._operations

    @property
    def names(self) -> List[str]:
        return sorted(self._operations)

    async def invoke(self, name: str, call: CallContext) -> Any:
        """Run a registered operation through its pipeline"""
        operation = self.get(name)
        if call.operation != name:
            call = replace(call, operation=name)
        return await operation.pipeline(call)
