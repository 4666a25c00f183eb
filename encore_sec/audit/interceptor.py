"""
Audit interceptor for Encore
Wraps guarded operations and writes one audit record per invocation
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional

import structlog

from ..constants import AuditActions, AuditDefaults, RelayEvents
from ..extractors import Extractor
from ..notifications import NotificationRelay, publish_safely
from ..policy.context import CallContext
from ..policy.guard import Decision, PermissionRequirement
from ..utils.validators import sanitize_audit_message
from .models import AuditConfig, AuditOutcome, AuditRecord, freeze_details
from .redaction import SecretRedactor, get_secret_redactor
from .store import AuditStore

logger = structlog.get_logger(__name__)

Operation = Callable[[], Awaitable[Any]]


class AuditInterceptor:
    """
    Produces audit side effects around an operation without changing it.

    The wrapped operation's return value and exceptions reach the caller
    untouched. Anything that goes wrong while building, storing or
    announcing the record is logged and dropped.
    """

    def __init__(self, store: AuditStore, relay: Optional[NotificationRelay] = None,
                 redactor: Optional[SecretRedactor] = None, enabled: bool = True):
        self.store = store
        self.relay = relay
        self.redactor = redactor or get_secret_redactor()
        self.enabled = enabled

    async def run(self, config: AuditConfig, call: CallContext, operation: Operation) -> Any:
        """Invoke the operation and record its outcome"""
        if not self.enabled:
            return await operation()

        try:
            result = await operation()
        except Exception as exc:
            if not config.skip_on_error:
                await self._write(config, call, self._safe_build(config, call, None, exc))
            raise

        await self._write(config, call, self._safe_build(config, call, result, None))
        return result

    async def record_denial(self, requirement: PermissionRequirement, call: CallContext,
                            decision: Decision, config: Optional[AuditConfig] = None
                            ) -> Optional[AuditRecord]:
        """Record a guard denial as a security event"""
        if not self.enabled:
            return None

        try:
            record = AuditRecord.create(
                action=config.action if config else AuditActions.PERMISSION_DENIED,
                entity_type=config.entity_type if config else requirement.entity.value,
                actor_user_id=call.actor_id,
                entity_id=self._extract(config.get_entity_id, call, None, "entity_id") if config else None,
                details={"operation": call.operation, "required": requirement.label},
                reason=sanitize_audit_message(decision.reason),
                sensitive=config.sensitive if config else False,
                outcome=AuditOutcome.DENIED,
                ip_address=call.ip_address,
                user_agent=call.user_agent,
            )
        except Exception as e:
            logger.error("Failed to build denial record", operation=call.operation, error=str(e))
            return None

        written = await self._append(call, record)
        publish_safely(self.relay, RelayEvents.PERMISSION_DENIED, {
            "operation": call.operation,
            "userId": call.actor_id,
            "required": requirement.label,
            "reason": decision.reason,
        })
        return written

    def build_record(self, config: AuditConfig, call: CallContext,
                     result: Any = None, error: Optional[BaseException] = None) -> AuditRecord:
        """Derive the record for one invocation"""
        entity_id = self._extract(config.get_entity_id, call, result, "entity_id")
        details = self._details(config, call, result)

        if error is not None:
            outcome = AuditOutcome.FAILURE
            reason = f"{type(error).__name__}: {error}"
        else:
            outcome = AuditOutcome.SUCCESS
            reason = config.reason or AuditDefaults.DEFAULT_REASON

        if config.sensitive:
            details, _ = self.redactor.redact(details)
            reason, _ = self.redactor.redact_text(reason)

        return AuditRecord.create(
            action=config.action,
            entity_type=config.entity_type,
            actor_user_id=call.actor_id,
            entity_id=entity_id,
            details=details,
            reason=sanitize_audit_message(reason),
            sensitive=config.sensitive,
            outcome=outcome,
            ip_address=call.ip_address,
            user_agent=call.user_agent,
        )

    def _safe_build(self, config: AuditConfig, call: CallContext,
                    result: Any, error: Optional[BaseException]) -> Optional[AuditRecord]:
        try:
            return self.build_record(config, call, result, error)
        except Exception as e:
            logger.error("Failed to build audit record", operation=call.operation,
                         action=config.action, error=str(e))
            return None

    def _details(self, config: AuditConfig, call: CallContext, result: Any) -> Any:
        raw = self._extract(config.get_details, call, result, "details")
        try:
            return freeze_details(raw)
        except (TypeError, ValueError) as e:
            logger.warning("Audit details not serialisable", operation=call.operation, error=str(e))
            return None

    @staticmethod
    def _extract(extractor: Optional[Extractor], call: CallContext, result: Any, name: str) -> Any:
        if extractor is None:
            return None
        try:
            return extractor(call, result)
        except Exception as e:
            logger.warning("Audit extractor failed", operation=call.operation,
                           extractor=name, error=str(e))
            return None

    async def _write(self, config: AuditConfig, call: CallContext,
                     record: Optional[AuditRecord]) -> Optional[AuditRecord]:
        if record is None:
            return None
        written = await self._append(call, record)
        if written is not None and config.notify:
            publish_safely(self.relay, f"{RelayEvents.AUDIT_PREFIX}{config.action}",
                           _relay_payload(written))
        return written

    async def _append(self, call: CallContext, record: AuditRecord) -> Optional[AuditRecord]:
        try:
            await asyncio.to_thread(self.store.append, record)
        except Exception as e:
            logger.error("Failed to write audit record", operation=call.operation,
                         action=record.action, record_id=record.id, error=str(e))
            return None
        return record


def _relay_payload(record: AuditRecord) -> Dict[str, Any]:
    payload = {
        "id": record.id,
        "action": record.action,
        "entityType": record.entity_type,
        "entityId": record.entity_id,
        "userId": record.actor_user_id,
        "outcome": record.outcome.value,
        "timestamp": record.timestamp.isoformat(),
    }
    if not record.sensitive:
        payload["details"] = record.details
    return payload
