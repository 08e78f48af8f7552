"""Unit tests for schema_engine.diff.follower_changes."""

from __future__ import annotations

from schema_engine.analyzer import LexicalLanguageService, QuerySchemaAnalyzer
from schema_engine.diff import BasicChange, FollowerPermissionChange, generate_follower_changes
from schema_engine.models import (
    FollowerCache,
    FollowerDatabase,
    FollowerModificationKind,
    FollowerPermissions,
    Principal,
)


def _make_follower(**cache) -> FollowerDatabase:
    return FollowerDatabase(database_name="Telemetry", cache=FollowerCache(**cache))


def _generate(old: FollowerDatabase, new: FollowerDatabase):
    return generate_follower_changes(old, new, QuerySchemaAnalyzer(LexicalLanguageService()))


def _by_entity(changes) -> dict[str, BasicChange]:
    return {change.entity: change for change in changes}


class TestCachingChanges:
    def test_identical_followers(self):
        follower = _make_follower(tables={"Events": "7d"}, default_hot_cache="3d")
        assert _generate(follower, follower.model_copy(deep=True)) == []

    def test_table_override_changed_and_removed(self):
        old = _make_follower(tables={"Events": "7d", "Logs": "1d"})
        new = _make_follower(tables={"Events": "14d"})
        changes = _by_entity(_generate(old, new))

        deleted = changes["DeleteTableCachingPolicy"]
        assert deleted.entity_type == "FollowerDatabase"
        assert [s.text for s in deleted.scripts] == [".delete follower database Telemetry table Logs policy caching"]
        assert deleted.scripts[0].kind == "FollowerDeleteTableCachingPolicies"

        changed = changes["ChangeTableCachingPolicy"]
        assert [s.text for s in changed.scripts] == [
            ".alter follower database Telemetry table Events policy caching hot = 14d"
        ]
        assert changed.description == "Events | 7d | 14d"

    def test_new_view_override(self):
        changes = _generate(_make_follower(), _make_follower(materialized_views={"ById": "2d"}))
        [change] = changes
        assert change.entity == "ChangeMVCachingPolicy"
        assert change.scripts[0].kind == "FollowerChangeMVCachingPolicies"
        assert change.scripts[0].text == (
            ".alter follower database Telemetry materialized-view ById policy caching hot = 2d"
        )
        assert change.description == "ById | default | 2d"


class TestModificationKinds:
    def test_caching_modification_kind(self):
        changes = _generate(_make_follower(), _make_follower(modification_kind=FollowerModificationKind.UNION))
        [change] = changes
        assert change.entity == "ChangeModificationKind"
        assert change.scripts[0].text == ".alter follower database Telemetry caching-policies-modification-kind = union"

    def test_permissions_modification_kind(self):
        old = FollowerDatabase(database_name="Telemetry")
        new = FollowerDatabase(
            database_name="Telemetry",
            permissions=FollowerPermissions(modification_kind=FollowerModificationKind.REPLACE),
        )
        [change] = _generate(old, new)
        assert change.entity == "PermissionsModificationKind"
        assert change.scripts[0].kind == "FollowerChangePolicyModificationKind"
        assert change.scripts[0].text == ".alter follower database Telemetry principals-modification-kind = replace"


class TestDefaultHotCache:
    def test_changed(self):
        [change] = _generate(_make_follower(default_hot_cache="3d"), _make_follower(default_hot_cache="5d"))
        assert change.entity == "ChangeDefaultHotCache"
        assert change.scripts[0].text == ".alter follower database Telemetry policy caching hot = 5d"

    def test_removed(self):
        [change] = _generate(_make_follower(default_hot_cache="3d"), _make_follower())
        assert change.entity == "DeleteDefaultHotCache"
        assert change.scripts[0].kind == "FollowerDeleteDefaultHotCache"
        assert change.scripts[0].text == ".delete follower database Telemetry policy caching"


class TestFollowerPermissions:
    def test_admins_and_viewers(self):
        old = FollowerDatabase(database_name="Telemetry")
        new = FollowerDatabase(
            database_name="Telemetry",
            permissions=FollowerPermissions(
                admins=[Principal(id="aaduser=a@contoso.com")],
                viewers=[Principal(id="aadgroup=v@contoso.com")],
                leader_name="leader1",
            ),
        )
        changes = _generate(old, new)

        assert all(isinstance(change, FollowerPermissionChange) for change in changes)
        assert [change.entity for change in changes] == ["Admins", "Viewers"]
        assert changes[0].scripts[0].text == (
            ".add follower database Telemetry admins (\"aaduser=a@contoso.com\") 'leader1'"
        )
