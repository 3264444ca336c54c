"""
Test cases for sync monitoring, retries and retention cleanup
"""

import pytest
from datetime import timedelta
from unittest.mock import Mock

from tenant_sync.models import DataSyncLog, SyncStatus
from tenant_sync.services.sync import SyncMonitor

from conftest import FIXED_NOW


@pytest.fixture
def executor():
    return Mock(name="executor")


@pytest.fixture
def monitor(ledger, cache, clock, executor):
    return SyncMonitor(ledger, cache, executor=executor, clock=clock)


class TestSyncStatus:
    """Test windowed status reporting"""

    @pytest.fixture
    def window_entries(self, make_log):
        for index in range(7):
            make_log(
                SyncStatus.COMPLETED,
                sync_type="user_sync" if index < 5 else "course_sync",
                tenant_id="tenant-alpha" if index % 2 == 0 else "tenant-beta",
                duration_seconds=10 * (index + 1),
                sync_data={"stats": {"records_processed": 3}},
            )
        make_log(SyncStatus.FAILED, sync_type="user_sync", error_message="timeout")
        make_log(SyncStatus.FAILED, sync_type="course_sync", retry_count=3)
        make_log(SyncStatus.IN_PROGRESS, sync_type="user_sync")
        # Outside the window
        make_log(SyncStatus.COMPLETED, started_at=FIXED_NOW - timedelta(hours=30))

    def test_totals(self, monitor, window_entries):
        status = monitor.get_sync_status(hours=24)

        assert status["total_syncs"] == 10
        assert status["completed_syncs"] == 7
        assert status["failed_syncs"] == 2
        assert status["running_syncs"] == 1
        assert status["success_rate"] == 70.0

    def test_by_sync_type_breakdown(self, monitor, window_entries):
        by_type = monitor.get_sync_status(hours=24)["by_sync_type"]

        assert by_type["user_sync"]["total"] == 7
        assert by_type["user_sync"]["completed"] == 5
        assert by_type["user_sync"]["success_rate"] == round(5 / 7 * 100, 2)
        assert by_type["user_sync"]["avg_duration"] == 30.0
        assert by_type["course_sync"]["total"] == 3
        assert by_type["course_sync"]["failed"] == 1
        assert by_type["course_sync"]["success_rate"] == round(2 / 3 * 100, 2)

    def test_by_tenant_only_when_unfiltered(self, monitor, window_entries):
        assert "by_tenant" in monitor.get_sync_status()
        filtered = monitor.get_sync_status(tenant_id="tenant-beta")

        assert "by_tenant" not in filtered
        assert filtered["total_syncs"] == 3

    def test_recent_failures_report_retryability(self, monitor, window_entries):
        failures = monitor.get_sync_status()["recent_failures"]

        assert len(failures) == 2
        by_retry = {f["retry_count"]: f for f in failures}
        assert by_retry[0]["can_retry"] is True
        assert by_retry[0]["error_message"] == "timeout"
        assert by_retry[3]["can_retry"] is False

    def test_performance_metrics(self, monitor, window_entries):
        metrics = monitor.get_sync_status(hours=24)["performance_metrics"]

        assert metrics["min_duration"] == 10.0
        assert metrics["max_duration"] == 70.0
        assert metrics["avg_duration"] == 40.0
        assert metrics["total_records_processed"] == 21
        assert metrics["throughput_per_hour"] == round(21 / 24, 2)

    def test_recent_failures_include_cancelled(self, monitor, make_log):
        make_log(SyncStatus.FAILED, failed_at=FIXED_NOW - timedelta(minutes=5))
        make_log(SyncStatus.CANCELLED, failed_at=FIXED_NOW - timedelta(minutes=1))
        make_log(SyncStatus.COMPLETED)

        status = monitor.get_sync_status()

        assert [f["status"] for f in status["recent_failures"]] == ["cancelled", "failed"]
        assert status["failed_syncs"] == len(status["recent_failures"])

    def test_zero_hour_window(self, monitor, make_log):
        make_log(SyncStatus.COMPLETED)

        status = monitor.get_sync_status(hours=0)

        assert status["window_hours"] == 0
        assert status["total_syncs"] == 0
        assert status["performance_metrics"]["throughput_per_hour"] == 0.0

    def test_recent_failures_capped(self, monitor, make_log):
        for minute in range(12):
            make_log(SyncStatus.FAILED, failed_at=FIXED_NOW - timedelta(minutes=minute))

        failures = monitor.get_sync_status()["recent_failures"]

        assert len(failures) == 10
        assert failures[0]["failed_at"] == FIXED_NOW.isoformat()

    def test_cached_status(self, monitor, redis_client, make_log):
        make_log(SyncStatus.COMPLETED)
        first = monitor.get_sync_status(use_cache=True)
        make_log(SyncStatus.COMPLETED)

        assert monitor.get_sync_status(use_cache=True) == first
        assert monitor.get_sync_status()["total_syncs"] == 2
        assert redis_client.expiries["test:sync_status:all:24"] == 60


class TestRetryFailedSyncs:
    """Test the retry manager"""

    def test_limit_picks_highest_priority_oldest(self, monitor, executor, make_log):
        base = FIXED_NOW - timedelta(hours=5)
        entries = [
            make_log(SyncStatus.FAILED, priority=2, failed_at=base),
            make_log(SyncStatus.FAILED, priority=4, failed_at=base + timedelta(hours=2)),
            make_log(SyncStatus.FAILED, priority=4, failed_at=base + timedelta(hours=1)),
            make_log(SyncStatus.FAILED, priority=1, failed_at=base),
            make_log(SyncStatus.FAILED, priority=3, failed_at=base),
        ]
        executor.side_effect = lambda entry: entry

        result = monitor.retry_failed_syncs(limit=2)

        assert [e.id for e in result] == [entries[2].id, entries[1].id]
        assert [call.args[0].id for call in executor.call_args_list] == [entries[2].id, entries[1].id]
        for untouched in (entries[0], entries[3], entries[4]):
            assert untouched.status == SyncStatus.FAILED
            assert untouched.retry_count == 0

    def test_successful_retry_increments_count(self, monitor, executor, make_log):
        entry = make_log(SyncStatus.FAILED)

        result = monitor.retry_failed_syncs()

        assert len(result.succeeded) == 1
        assert entry.retry_count == 1
        assert entry.status == SyncStatus.RETRYING
        executor.assert_called_once_with(entry)

    def test_failed_retry_is_recorded(self, monitor, executor, make_log):
        entry = make_log(SyncStatus.FAILED)
        executor.side_effect = RuntimeError("tenant database unavailable")

        result = monitor.retry_failed_syncs()

        assert result.failed[0].error == "tenant database unavailable"
        assert entry.status == SyncStatus.FAILED
        assert entry.retry_count == 1
        assert entry.error_message == "Retry failed: tenant database unavailable"
        assert entry.error_details["retry_error"] == "tenant database unavailable"

    def test_exhausted_entries_skipped(self, monitor, executor, make_log):
        make_log(SyncStatus.FAILED, retry_count=3)

        result = monitor.retry_failed_syncs()

        assert len(result) == 0
        executor.assert_not_called()

    def test_zero_limit_retries_nothing(self, monitor, executor, make_log):
        entry = make_log(SyncStatus.FAILED)

        result = monitor.retry_failed_syncs(limit=0)

        assert len(result) == 0
        executor.assert_not_called()
        assert entry.retry_count == 0

    def test_end_to_end_retry_through_service(self, service, global_users):
        batch = service.sync_global_user_to_tenants(
            global_users["alice"], ["tenant-alpha", "tenant-missing"]
        )
        failed = batch.failed[0].entry

        result = service.retry_failed_syncs()

        assert [e.id for e in result] == [failed.id]
        assert failed.status == SyncStatus.FAILED
        assert failed.retry_count == 1
        assert failed.error_message == "Retry failed: Tenant not found: tenant-missing"


class TestCleanup:
    """Test ledger retention cleanup"""

    @pytest.fixture
    def aged_entries(self, make_log):
        old = FIXED_NOW - timedelta(days=120)
        for status in (SyncStatus.COMPLETED,) * 3 + (SyncStatus.FAILED, SyncStatus.CANCELLED):
            make_log(status, started_at=old)
        make_log(SyncStatus.COMPLETED, started_at=FIXED_NOW - timedelta(days=10))
        make_log(SyncStatus.FAILED, started_at=FIXED_NOW - timedelta(days=30))

    def test_dry_run_reports_without_deleting(self, monitor, db_session, aged_entries):
        result = monitor.cleanup_sync_data(days_to_keep=90, dry_run=True)

        assert result["status"] == "dry_run"
        assert result["records_found"] == 5
        assert "records_deleted" not in result
        assert db_session.query(DataSyncLog).count() == 7

    def test_cleanup_deletes_old_entries(self, monitor, db_session, aged_entries):
        result = monitor.cleanup_sync_data(days_to_keep=90)

        assert result["status"] == "completed"
        assert result["records_found"] == 5
        assert result["records_deleted"] == 5
        assert result["cutoff_date"] == (FIXED_NOW - timedelta(days=90)).isoformat()
        assert db_session.query(DataSyncLog).count() == 2

    def test_zero_days_to_keep_uses_current_time(self, monitor, make_log):
        make_log(SyncStatus.COMPLETED, started_at=FIXED_NOW - timedelta(days=2))
        make_log(SyncStatus.IN_PROGRESS, started_at=FIXED_NOW - timedelta(days=2))

        result = monitor.cleanup_sync_data(days_to_keep=0, dry_run=True)

        assert result["records_found"] == 1
        assert result["cutoff_date"] == FIXED_NOW.isoformat()

    def test_cleanup_invalidates_sync_cache(self, monitor, cache, redis_client, aged_entries):
        monitor.get_sync_status(use_cache=True)
        cache.put("tenant_sync:summary", {"ok": True}, ttl=60, tags=["tenant_sync"])
        cache.put("unrelated", {"ok": True}, ttl=60, tags=["other"])

        result = monitor.cleanup_sync_data()

        assert result["cache_entries_cleared"] == 2
        assert cache.get("sync_status:all:24") is None
        assert cache.get("tenant_sync:summary") is None
        assert cache.get("unrelated") == {"ok": True}
