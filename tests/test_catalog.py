"""Tests for the role catalog: grants, unions and startup validation."""

from __future__ import annotations

import itertools
import json

import pytest

from encore_sec.constants import Roles
from encore_sec.exceptions import CatalogLoadError
from encore_sec.policy.catalog import PolicyCatalog, default_roles, load_catalog
from encore_sec.policy.models import Action, Entity, Permission, Role, own, perm


CONCRETE_PAIRS = [
    (entity, action)
    for entity, action in itertools.product(Entity, Action)
    if entity != Entity.ANY and action != Action.ANY
]


class TestPolicyCatalog:
    """Grant resolution over the built-in catalog."""

    def setup_method(self) -> None:
        self.catalog = load_catalog()

    @pytest.mark.parametrize("role_name", [Roles.HOST_ADMIN, Roles.SINGER, Roles.PLAYER, Roles.GUEST])
    def test_every_full_permission_is_granted(self, role_name: str) -> None:
        """Each non self-service permission of a role grants its own pair."""
        for permission in self.catalog.permissions_for(role_name):
            if permission.own_only:
                continue
            assert self.catalog.is_granted([role_name], permission.entity, permission.action)

    @pytest.mark.parametrize("role_name", [Roles.HOST_ADMIN, Roles.SINGER, Roles.PLAYER, Roles.GUEST])
    def test_pairs_outside_role_are_denied(self, role_name: str) -> None:
        """A pair is granted exactly when some full permission matches it."""
        held = self.catalog.permissions_for(role_name)
        for entity, action in CONCRETE_PAIRS:
            expected = any(not p.own_only and p.matches(entity, action) for p in held)
            assert self.catalog.is_granted([role_name], entity, action) is expected

    def test_union_of_roles_grants_nothing_extra(self) -> None:
        """Holding two roles grants exactly what either role grants alone."""
        roles = [Roles.SINGER, Roles.PLAYER]
        for entity, action in CONCRETE_PAIRS:
            combined = self.catalog.is_granted(roles, entity, action)
            separate = any(self.catalog.is_granted([r], entity, action) for r in roles)
            assert combined is separate

    def test_resolve_is_union_of_permission_sets(self) -> None:
        resolved = self.catalog.resolve([Roles.SINGER, Roles.PLAYER])
        expected = self.catalog.permissions_for(Roles.SINGER) | self.catalog.permissions_for(Roles.PLAYER)
        assert resolved == expected

    def test_player_cannot_create_songs_but_singer_can(self) -> None:
        assert not self.catalog.is_granted([Roles.PLAYER], Entity.SONG, Action.CREATE)
        assert self.catalog.is_granted([Roles.SINGER], Entity.SONG, Action.CREATE)

    def test_self_service_permission_is_not_a_full_grant(self) -> None:
        """PLAYER holds REQUEST:UPDATE only in its self-service form."""
        held = self.catalog.permissions_for(Roles.PLAYER)
        assert own(Entity.REQUEST, Action.UPDATE) in held
        assert not self.catalog.is_granted([Roles.PLAYER], Entity.REQUEST, Action.UPDATE)

    def test_wildcard_action_matches_every_action(self) -> None:
        """HOST_ADMIN holds EVENT:* and so every event action."""
        for action in Action:
            if action == Action.ANY:
                continue
            assert self.catalog.is_granted([Roles.HOST_ADMIN], Entity.EVENT, action)

    def test_super_admin_bypasses_catalog(self) -> None:
        """The super admin is granted even pairs no catalog role holds."""
        empty = PolicyCatalog({}, super_admin_role=Roles.SUPER_ADMIN)
        for entity, action in CONCRETE_PAIRS:
            assert empty.is_granted([Roles.SUPER_ADMIN], entity, action)

    def test_unknown_role_grants_nothing(self) -> None:
        assert self.catalog.permissions_for("DJ") == frozenset()
        assert not self.catalog.is_granted(["DJ"], Entity.SONG, Action.VIEW)

    def test_role_lookup(self) -> None:
        singer = self.catalog.get_role(Roles.SINGER)

        assert singer is not None
        assert singer.has_permission(Entity.SONG, Action.CREATE)
        assert not singer.has_permission(Entity.SONG, Action.UPDATE)
        assert self.catalog.get_role("DJ") is None

    def test_best_match_prefers_exact_permission(self) -> None:
        catalog = PolicyCatalog.from_definitions([
            Role(name="A", permissions=(perm(Entity.SONG, Action.ANY), perm(Entity.SONG, Action.VIEW))),
        ])
        match = catalog.best_match(["A"], Entity.SONG, Action.VIEW)
        assert match == Permission(entity=Entity.SONG, action=Action.VIEW)


class TestCatalogLoading:
    """Startup validation of catalog definitions."""

    def test_duplicate_role_is_fatal(self) -> None:
        with pytest.raises(CatalogLoadError) as exc_info:
            PolicyCatalog.from_definitions([Role(name="A"), Role(name="A")])
        assert exc_info.value.details["role"] == "A"

    def test_missing_required_role_is_fatal(self) -> None:
        with pytest.raises(CatalogLoadError):
            PolicyCatalog.from_definitions([Role(name="A")], required_roles=[Roles.GUEST])

    def test_super_admin_need_not_be_defined(self) -> None:
        catalog = PolicyCatalog.from_definitions(
            default_roles(), required_roles=[Roles.SUPER_ADMIN, Roles.GUEST]
        )
        assert catalog.has_role(Roles.SUPER_ADMIN)

    def test_load_from_json_file(self, tmp_path) -> None:
        document = {
            "roles": [
                {"name": "GUEST", "permissions": [{"entity": "SONG", "action": "VIEW"}]},
                {"name": "DJ", "description": "Runs the decks", "permissions": [
                    {"entity": "REQUEST", "action": "*"},
                    {"entity": "SONG", "action": "UPDATE", "own_only": True},
                ]},
            ]
        }
        path = tmp_path / "catalog.json"
        path.write_text(json.dumps(document), encoding="utf-8")

        catalog = load_catalog(str(path))

        assert catalog.is_granted(["DJ"], Entity.REQUEST, Action.REORDER)
        assert not catalog.is_granted(["DJ"], Entity.SONG, Action.UPDATE)
        assert catalog.is_granted(["GUEST"], Entity.SONG, Action.VIEW)

    def test_malformed_file_is_fatal(self, tmp_path) -> None:
        path = tmp_path / "catalog.json"
        path.write_text(json.dumps({"roles": [{"name": "GUEST", "permissions": [
            {"entity": "SPACESHIP", "action": "VIEW"}
        ]}]}), encoding="utf-8")

        with pytest.raises(CatalogLoadError):
            load_catalog(str(path))

    def test_missing_file_is_fatal(self, tmp_path) -> None:
        with pytest.raises(CatalogLoadError):
            load_catalog(str(tmp_path / "absent.json"))
