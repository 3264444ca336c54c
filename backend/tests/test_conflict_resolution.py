"""
Test cases for conflict resolution between global and tenant records
"""

import pytest

from tenant_sync.core.exceptions import (
    GlobalRecordNotFoundError, MergePolicyRequiredError, UnknownStrategyError
)
from tenant_sync.models import (
    DataSyncLog, GlobalUser, SyncOperationType, SyncStatus, SyncType, tenant_users
)
from tenant_sync.services.sync import ConflictResolver, ConflictStrategy

from conftest import FIXED_NOW


@pytest.fixture
def projected_alice(service, switcher, global_users):
    """Alice projected into alpha; returns the tenant row id"""
    service.sync_global_user_to_tenants(global_users["alice"], ["tenant-alpha"])
    with switcher.tenant_context("tenant-alpha") as context:
        return context.first(tenant_users, global_user_id="user-alice")["id"]


@pytest.fixture
def conflict(projected_alice):
    return {
        "source_table": "global_users",
        "target_table": "users",
        "global_record_id": "user-alice",
        "tenant_record_id": projected_alice,
        "global_data": {"name": "Alice Global", "email": "alice@example.edu"},
        "tenant_data": {"name": "Alice Tenant", "email": "alice.t@example.edu"},
    }


def _tenant_user(switcher, row_id):
    with switcher.tenant_context("tenant-alpha") as context:
        return context.first(tenant_users, id=row_id)


def _resolution_entry(db_session):
    return (
        db_session.query(DataSyncLog)
        .filter(DataSyncLog.sync_type == SyncType.CONFLICT_RESOLUTION.value)
        .one()
    )


class TestResolutionStrategies:
    """Test each resolution strategy"""

    def test_global_wins_overwrites_tenant(self, service, switcher, db_session, conflict):
        resolution = service.resolve_data_conflicts("tenant-alpha", "data_mismatch", conflict, "global_wins")

        assert resolution["strategy"] == "global_wins"
        assert resolution["action"] == "overwrite_tenant_data"
        assert resolution["resolved_at"] == FIXED_NOW.isoformat()
        assert resolution["tenant_written"] is True
        assert _tenant_user(switcher, conflict["tenant_record_id"])["name"] == "Alice Global"
        assert db_session.get(GlobalUser, "user-alice").name == "Alice Alumna"

    def test_tenant_wins_overwrites_global(self, service, switcher, db_session, conflict):
        resolution = service.resolve_data_conflicts("tenant-alpha", "data_mismatch", conflict, "tenant_wins")

        assert resolution["action"] == "overwrite_global_data"
        alice = db_session.get(GlobalUser, "user-alice")
        assert alice.name == "Alice Tenant"
        assert alice.email == "alice.t@example.edu"
        assert _tenant_user(switcher, conflict["tenant_record_id"])["name"] == "Alice Alumna"

    def test_merge_uses_injected_policy(self, db_session, switcher, ledger, clock, conflict):
        def prefer_tenant_name(global_data, tenant_data):
            return {**global_data, "name": tenant_data["name"]}

        resolver = ConflictResolver(ledger, switcher, db_session, clock=clock, merge_policy=prefer_tenant_name)
        resolution = resolver.resolve("tenant-alpha", "data_mismatch", conflict, ConflictStrategy.MERGE)

        expected = {"name": "Alice Tenant", "email": "alice@example.edu"}
        assert resolution["action"] == "merge_data_fields"
        assert resolution["resolved_data"] == expected
        assert db_session.get(GlobalUser, "user-alice").name == "Alice Tenant"
        tenant_row = _tenant_user(switcher, conflict["tenant_record_id"])
        assert (tenant_row["name"], tenant_row["email"]) == ("Alice Tenant", "alice@example.edu")

    def test_merge_against_missing_global_record_leaves_tenant_untouched(
        self, db_session, switcher, ledger, clock, conflict
    ):
        def prefer_tenant_name(global_data, tenant_data):
            return {**global_data, "name": tenant_data["name"]}

        resolver = ConflictResolver(ledger, switcher, db_session, clock=clock, merge_policy=prefer_tenant_name)
        conflict["global_record_id"] = "user-gone"

        with pytest.raises(GlobalRecordNotFoundError):
            resolver.resolve("tenant-alpha", "data_mismatch", conflict, ConflictStrategy.MERGE)

        assert _tenant_user(switcher, conflict["tenant_record_id"])["name"] == "Alice Alumna"
        assert _resolution_entry(db_session).status == SyncStatus.FAILED

    def test_merge_without_policy_fails(self, service, db_session, conflict):
        with pytest.raises(MergePolicyRequiredError):
            service.resolve_data_conflicts("tenant-alpha", "data_mismatch", conflict, "merge")

        entry = _resolution_entry(db_session)
        assert entry.status == SyncStatus.FAILED
        assert entry.error_details["exception"] == "MergePolicyRequiredError"

    def test_manual_flags_without_writing(self, service, switcher, db_session, conflict):
        resolution = service.resolve_data_conflicts("tenant-alpha", "data_mismatch", conflict, "manual")

        assert resolution["action"] == "flag_for_review"
        assert resolution["flagged_at"] == FIXED_NOW.isoformat()
        assert "resolved_at" not in resolution

        entry = _resolution_entry(db_session)
        assert entry.conflicts[0]["status"] == "pending_review"
        assert entry.conflicts[0]["conflict_type"] == "data_mismatch"
        assert db_session.get(GlobalUser, "user-alice").name == "Alice Alumna"
        assert _tenant_user(switcher, conflict["tenant_record_id"])["name"] == "Alice Alumna"


class TestResolutionLedger:
    """Test the ledger entry wrapping each resolution"""

    def test_resolution_entry_recorded(self, service, db_session, conflict):
        resolution = service.resolve_data_conflicts("tenant-alpha", "data_mismatch", conflict)

        entry = _resolution_entry(db_session)
        assert entry.status == SyncStatus.COMPLETED
        assert entry.operation == SyncOperationType.RECONCILE
        assert entry.sync_direction == "bidirectional"
        assert entry.resolution_data == resolution
        assert entry.sync_stats == {"conflicts_resolved": 1, "resolution_strategy": "global_wins"}
        assert entry.sync_metadata["conflict_type"] == "data_mismatch"
        assert entry.source_record_id == "user-alice"

    def test_unknown_strategy_fails_entry(self, service, db_session, conflict):
        with pytest.raises(UnknownStrategyError) as exc_info:
            service.resolve_data_conflicts("tenant-alpha", "data_mismatch", conflict, "coin_flip")

        assert "coin_flip" in str(exc_info.value)
        entry = _resolution_entry(db_session)
        assert entry.status == SyncStatus.FAILED
        assert entry.sync_metadata["resolution_strategy"] == "coin_flip"

    def test_unknown_tables_write_nothing(self, service, db_session, tenants):
        resolution = service.resolve_data_conflicts(
            "tenant-alpha",
            "data_mismatch",
            {"global_data": {"value": 1}, "tenant_data": {"value": 2}},
            "global_wins",
        )

        assert resolution["tenant_written"] is False
        assert _resolution_entry(db_session).source_table == "unknown"
