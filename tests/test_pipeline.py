"""Tests for the operation registry and its guard/audit pipeline."""

from __future__ import annotations

from typing import Any, List

import pytest

from encore_sec.audit.interceptor import AuditInterceptor
from encore_sec.audit.models import AuditConfig, AuditOutcome
from encore_sec.audit.store import InMemoryAuditStore
from encore_sec.constants import AuditActions, Roles
from encore_sec.exceptions import (
    AuthenticationRequired, OperationNotFound, PermissionDenied, ValidationError,
)
from encore_sec.extractors import from_body, from_params, from_result
from encore_sec.notifications import RecordingRelay
from encore_sec.pipeline import AuditStage, AuthorizationStage, OperationRegistry, Pipeline
from encore_sec.policy.catalog import load_catalog
from encore_sec.policy.context import AuthContextResolver, CallContext, Identity
from encore_sec.policy.guard import PermissionGuard, PermissionRequirement
from encore_sec.policy.models import Action, Entity

SONG_CREATE = PermissionRequirement(Entity.SONG, Action.CREATE)
SONG_AUDIT = AuditConfig(action="SONG_CREATE", entity_type="SONG", get_entity_id=from_result("id"))


class TestOperationRegistry:
    """Registration and invocation through the pipeline."""

    def setup_method(self) -> None:
        catalog = load_catalog()
        self.resolver = AuthContextResolver(catalog)
        self.store = InMemoryAuditStore()
        self.relay = RecordingRelay()
        self.interceptor = AuditInterceptor(self.store, relay=self.relay)
        self.registry = OperationRegistry(PermissionGuard(catalog), self.interceptor)
        self.calls: List[CallContext] = []

    def actor(self, user_id: str, *roles: str):
        return self.resolver.resolve(Identity(user_id=user_id, roles=frozenset(roles)))

    async def create_song(self, call: CallContext) -> Any:
        self.calls.append(call)
        return {"id": 11, "title": call.body.get("title")}

    @pytest.mark.asyncio
    async def test_granted_call_runs_handler_and_audits(self) -> None:
        self.registry.register("songs.create", self.create_song, requires=SONG_CREATE, audit=SONG_AUDIT)
        call = CallContext(actor=self.actor("s1", Roles.SINGER), body={"title": "Creep"})

        result = await self.registry.invoke("songs.create", call)

        assert result == {"id": 11, "title": "Creep"}
        assert self.calls[0].operation == "songs.create"
        [record] = self.store.all_records()
        assert record.outcome == AuditOutcome.SUCCESS
        assert record.entity_id == "11"

    @pytest.mark.asyncio
    async def test_denial_short_circuits_handler(self) -> None:
        self.registry.register("songs.create", self.create_song, requires=SONG_CREATE, audit=SONG_AUDIT)
        call = CallContext(actor=self.actor("p1", Roles.PLAYER), body={"title": "Creep"})

        with pytest.raises(PermissionDenied) as exc_info:
            await self.registry.invoke("songs.create", call)

        assert self.calls == []
        assert exc_info.value.details["required"] == "SONG:CREATE"
        [record] = self.store.all_records()
        assert record.outcome == AuditOutcome.DENIED
        assert record.actor_user_id == "p1"
        assert record.action == "SONG_CREATE"
        assert self.relay.kinds() == ["security.permission_denied"]

    @pytest.mark.asyncio
    async def test_denial_without_audit_config_uses_generic_action(self) -> None:
        self.registry.register("songs.create", self.create_song, requires=SONG_CREATE)
        call = CallContext(actor=self.actor("p1", Roles.PLAYER))

        with pytest.raises(PermissionDenied):
            await self.registry.invoke("songs.create", call)

        [record] = self.store.all_records()
        assert record.action == AuditActions.PERMISSION_DENIED
        assert record.entity_type == "SONG"
        assert record.details == {"operation": "songs.create", "required": "SONG:CREATE"}

    @pytest.mark.asyncio
    async def test_denials_not_recorded_when_disabled(self) -> None:
        registry = OperationRegistry(self.registry.guard, self.interceptor, audit_denials=False)
        registry.register("songs.create", self.create_song, requires=SONG_CREATE, audit=SONG_AUDIT)

        with pytest.raises(PermissionDenied):
            await registry.invoke("songs.create", CallContext(actor=self.actor("p1", Roles.PLAYER)))

        assert len(self.store) == 0

    @pytest.mark.asyncio
    async def test_missing_actor_requires_authentication(self) -> None:
        self.registry.register("songs.create", self.create_song, requires=SONG_CREATE)
        self.registry.register("me.activity", self.create_song)

        with pytest.raises(AuthenticationRequired):
            await self.registry.invoke("songs.create", CallContext())
        with pytest.raises(AuthenticationRequired):
            await self.registry.invoke("me.activity", CallContext())
        assert self.calls == []

    @pytest.mark.asyncio
    async def test_public_operation_runs_without_actor(self) -> None:
        self.registry.register("health", lambda call: "ok", authenticated=False)

        assert await self.registry.invoke("health", CallContext()) == "ok"

    @pytest.mark.asyncio
    async def test_self_service_through_registry(self) -> None:
        requirement = PermissionRequirement(Entity.REQUEST, Action.UPDATE, owner_resolver=from_body("ownerId"))
        self.registry.register("requests.update", lambda call: "updated", requires=requirement)
        player = self.actor("p1", Roles.PLAYER)

        assert await self.registry.invoke("requests.update", CallContext(actor=player, body={"ownerId": "p1"})) == "updated"
        with pytest.raises(PermissionDenied):
            await self.registry.invoke("requests.update", CallContext(actor=player, body={"ownerId": "p2"}))

    @pytest.mark.asyncio
    async def test_handler_error_recorded_and_propagated(self) -> None:
        def failing(call: CallContext) -> Any:
            raise LookupError("song 5 missing")

        audit = AuditConfig(action="SONG_DELETE", entity_type="SONG", get_entity_id=from_params("songId"))
        self.registry.register("songs.delete", failing,
                               requires=PermissionRequirement(Entity.SONG, Action.DELETE), audit=audit)

        with pytest.raises(LookupError):
            await self.registry.invoke(
                "songs.delete", CallContext(actor=self.actor("root", Roles.SUPER_ADMIN), params={"songId": 5})
            )

        [record] = self.store.all_records()
        assert record.outcome == AuditOutcome.FAILURE
        assert record.entity_id == "5"
        assert record.reason == "LookupError: song 5 missing"

    def test_duplicate_name_rejected(self) -> None:
        self.registry.register("songs.create", self.create_song)

        with pytest.raises(ValidationError):
            self.registry.register("songs.create", self.create_song)

    def test_empty_name_rejected(self) -> None:
        with pytest.raises(ValidationError):
            self.registry.register("", self.create_song)

    @pytest.mark.asyncio
    async def test_unknown_operation(self) -> None:
        with pytest.raises(OperationNotFound):
            await self.registry.invoke("songs.fly", CallContext())

    def test_decorator_registers_handler(self) -> None:
        @self.registry.operation("songs.list", requires=PermissionRequirement(Entity.SONG, Action.VIEW))
        def list_songs(call: CallContext) -> list:
            return []

        assert "songs.list" in self.registry
        assert self.registry.get("songs.list").handler is list_songs
        assert self.registry.names == ["songs.list"]

    def test_stage_order_is_guard_then_audit(self) -> None:
        operation = self.registry.register("songs.create", self.create_song,
                                           requires=SONG_CREATE, audit=SONG_AUDIT)

        assert [type(s) for s in operation.pipeline.stages] == [AuthorizationStage, AuditStage]


class TestPipeline:
    """Stage chaining independent of the registry."""

    @pytest.mark.asyncio
    async def test_stages_run_in_order(self) -> None:
        order: List[str] = []

        def stage(name: str):
            async def run(call: CallContext, next_stage) -> Any:
                order.append(f"{name}:before")
                result = await next_stage(call)
                order.append(f"{name}:after")
                return result
            return run

        def handler(call: CallContext) -> str:
            order.append("handler")
            return "done"

        result = await Pipeline([stage("outer"), stage("inner")], handler)(CallContext())

        assert result == "done"
        assert order == ["outer:before", "inner:before", "handler", "inner:after", "outer:after"]

    @pytest.mark.asyncio
    async def test_authorization_stage_without_interceptor(self) -> None:
        catalog = load_catalog()
        actor = AuthContextResolver(catalog).resolve(Identity(user_id="g1", roles=frozenset({Roles.GUEST})))
        stage = AuthorizationStage(PermissionGuard(catalog), SONG_CREATE)

        async def never(call: CallContext) -> Any:
            raise AssertionError("handler must not run")

        with pytest.raises(PermissionDenied) as exc_info:
            await stage(CallContext(actor=actor), never)
        assert str(exc_info.value) == "Missing permission SONG:CREATE"
