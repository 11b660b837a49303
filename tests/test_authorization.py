"""
Tests for the central view-permission policy.

Coverage:
- Missing records never grant access
- Implicit custodian and administrator access
- Explicit grants from the Access Matrix
- Registry-level can_view agrees with the pure evaluator
"""

import pytest

from manuscript_ledger.authorization import can_view
from manuscript_ledger.ledger import ManualHeight
from manuscript_ledger.models import ManuscriptRecord
from manuscript_ledger.registry import ManuscriptRegistry
from manuscript_ledger.store import AccessMatrix, RecordStore

ADMIN = "admin"


@pytest.fixture
def stores():
    records = RecordStore()
    records.put(1, ManuscriptRecord(
        manuscript_id=1,
        title="Codex",
        custodian="alice",
        storage_size=10,
        registration_height=0,
    ))
    return records, AccessMatrix()


class TestCanView:
    """Pure evaluator behaviour."""

    def test_missing_record_denies_everyone(self, stores):
        records, grants = stores
        grants.set(99, "bob", True)
        assert can_view(records, grants, 99, "bob", ADMIN) is False
        assert can_view(records, grants, 99, ADMIN, ADMIN) is False

    def test_custodian_has_implicit_access(self, stores):
        records, grants = stores
        assert can_view(records, grants, 1, "alice", ADMIN) is True

    def test_administrator_has_implicit_access(self, stores):
        records, grants = stores
        assert can_view(records, grants, 1, ADMIN, ADMIN) is True

    def test_stranger_denied_without_grant(self, stores):
        records, grants = stores
        assert can_view(records, grants, 1, "bob", ADMIN) is False

    def test_explicit_grant_allows(self, stores):
        records, grants = stores
        grants.set(1, "bob", True)
        assert can_view(records, grants, 1, "bob", ADMIN) is True

    def test_false_grant_entry_denies(self, stores):
        records, grants = stores
        grants.set(1, "bob", False)
        assert can_view(records, grants, 1, "bob", ADMIN) is False

    def test_evaluator_does_not_mutate(self, stores):
        records, grants = stores
        can_view(records, grants, 1, "bob", ADMIN)
        assert len(grants) == 0
        assert records.get(1).custodian == "alice"


class TestRegistryCanView:
    """Registry exposes the same policy."""

    def test_grant_then_revoke(self):
        registry = ManuscriptRegistry(administrator=ADMIN, height_source=ManualHeight(5))
        mid = registry.register_manuscript("alice", "Codex", storage_size=1)

        assert registry.can_view("bob", mid) is False
        registry.grant_view("alice", mid, "bob")
        assert registry.can_view("bob", mid) is True
        registry.revoke_view("alice", mid, "bob")
        assert registry.can_view("bob", mid) is False

    def test_custodian_and_admin_always_view(self):
        registry = ManuscriptRegistry(administrator=ADMIN, height_source=ManualHeight(5))
        mid = registry.register_manuscript("alice", "Codex", storage_size=1)

        assert registry.has_explicit_grant(mid, "alice") is False
        assert registry.has_explicit_grant(mid, ADMIN) is False
        assert registry.can_view("alice", mid) is True
        assert registry.can_view(ADMIN, mid) is True
