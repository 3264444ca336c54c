"""
Sync Monitor and Retry Manager

Aggregates ledger entries into health metrics, re-drives retryable failures
and enforces ledger retention.
"""

import logging
import traceback
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional

from tenant_sync.core.cache import SyncCache
from tenant_sync.core.config import Settings, settings as default_settings
from tenant_sync.models.sync_log import DataSyncLog, SyncStatus, FAILED_STATUSES, RUNNING_STATUSES
from tenant_sync.services.sync.ledger import SyncLogLedger
from tenant_sync.services.sync.results import SyncBatchResult, UnitOutcome
from tenant_sync.utils import new_id, utcnow

logger = logging.getLogger(__name__)

SYNC_CACHE_TAGS = ("sync", "tenant_sync")
RECENT_FAILURE_LIMIT = 10


def _success_rate(completed: int, total: int) -> float:
    return round(completed / total * 100, 2) if total else 0.0


def _average(values: List[float]) -> float:
    return round(sum(values) / len(values), 2) if values else 0.0


class SyncMonitor:
    """
    Health reporting and retry driver over the sync ledger.

    ``executor`` re-runs the operation recorded by a ledger entry; it is
    expected to raise when the re-run fails.
    """

    def __init__(
        self,
        ledger: SyncLogLedger,
        cache: SyncCache,
        executor: Callable[[DataSyncLog], Any],
        clock: Callable[[], datetime] = utcnow,
        config: Settings = None,
    ):
        self.ledger = ledger
        self.cache = cache
        self.executor = executor
        self.clock = clock
        self.config = config or default_settings

    # === STATUS ===

    def get_sync_status(
        self,
        tenant_id: Optional[str] = None,
        hours: Optional[int] = None,
        use_cache: bool = False
    ) -> Dict[str, Any]:
        """
        Summarize ledger activity in the last ``hours`` hours.

        Args:
            tenant_id: Restrict to one tenant; per-tenant breakdown is only
                included when unrestricted
            hours: Window size (defaults to SYNC_STATUS_WINDOW_HOURS)
            use_cache: Serve and store the report through the sync cache
        """
        if hours is None:
            hours = self.config.SYNC_STATUS_WINDOW_HOURS
        cache_key = f"sync_status:{tenant_id or 'all'}:{hours}"
        if use_cache:
            cached = self.cache.get(cache_key)
            if cached is not None:
                return cached

        now = self.clock()
        entries = self.ledger.entries_since(now - timedelta(hours=hours), tenant_id)

        status = {
            'window_hours': hours,
            'generated_at': now.isoformat(),
            'total_syncs': len(entries),
            'completed_syncs': sum(1 for e in entries if e.status == SyncStatus.COMPLETED),
            'failed_syncs': sum(1 for e in entries if e.status in FAILED_STATUSES),
            'running_syncs': sum(1 for e in entries if e.status in RUNNING_STATUSES),
            'by_sync_type': self._group(entries, lambda e: e.sync_type),
            'recent_failures': self._recent_failures(entries),
            'performance_metrics': self._performance_metrics(entries, hours),
        }
        status['success_rate'] = _success_rate(status['completed_syncs'], status['total_syncs'])
        if not tenant_id:
            status['by_tenant'] = self._group(entries, lambda e: e.tenant_id or 'global')

        if use_cache:
            self.cache.put(
                cache_key, status, self.config.SYNC_STATUS_CACHE_TTL_SECONDS, tags=("sync",)
            )
        return status

    def _group(
        self,
        entries: List[DataSyncLog],
        key: Callable[[DataSyncLog], str]
    ) -> Dict[str, Dict[str, Any]]:
        groups: Dict[str, List[DataSyncLog]] = defaultdict(list)
        for entry in entries:
            groups[key(entry)].append(entry)

        breakdown = {}
        for name, group in groups.items():
            completed = [e for e in group if e.status == SyncStatus.COMPLETED]
            durations = [e.duration for e in completed if e.duration is not None]
            breakdown[name] = {
                'total': len(group),
                'completed': len(completed),
                'failed': sum(1 for e in group if e.status in FAILED_STATUSES),
                'success_rate': _success_rate(len(completed), len(group)),
                'avg_duration': _average(durations),
            }
        return breakdown

    def _recent_failures(self, entries: List[DataSyncLog]) -> List[Dict[str, Any]]:
        failed = [e for e in entries if e.status in FAILED_STATUSES]
        failed.sort(key=lambda e: e.failed_at or datetime.min, reverse=True)
        return [
            {
                'id': e.id,
                'sync_type': e.sync_type,
                'status': e.status,
                'tenant_id': e.tenant_id,
                'error_message': e.error_message,
                'failed_at': e.failed_at.isoformat() if e.failed_at else None,
                'retry_count': e.retry_count,
                'can_retry': e.can_retry(),
            }
            for e in failed[:RECENT_FAILURE_LIMIT]
        ]

    def _performance_metrics(self, entries: List[DataSyncLog], hours: int) -> Dict[str, Any]:
        completed = [e for e in entries if e.status == SyncStatus.COMPLETED]
        durations = [e.duration for e in completed if e.duration is not None]
        total_records = sum(int(e.sync_stats.get('records_processed', 0) or 0) for e in completed)
        return {
            'avg_duration': _average(durations),
            'min_duration': min(durations) if durations else 0,
            'max_duration': max(durations) if durations else 0,
            'total_records_processed': total_records,
            'throughput_per_hour': round(total_records / hours, 2) if hours else 0.0,
        }

    # === RETRIES ===

    def retry_failed_syncs(
        self,
        tenant_id: Optional[str] = None,
        sync_types: Optional[Iterable[str]] = None,
        limit: Optional[int] = None
    ) -> SyncBatchResult:
        """
        Re-drive failed entries that still have attempts left.

        Entries are taken highest priority first, oldest failure first. A
        retry that raises is recorded on the entry as a new failure.
        """
        if limit is None:
            limit = self.config.SYNC_RETRY_LIMIT
        candidates = self.ledger.get_retryable_syncs(tenant_id, sync_types, limit)
        result = SyncBatchResult(new_id())

        for entry in candidates:
            try:
                self.ledger.retry(entry)
                self.executor(entry)
                result.add(UnitOutcome(entry=entry, succeeded=True))
                logger.info(f"Retried sync {entry.id} (attempt {entry.retry_count})")
            except Exception as exc:
                self.ledger.db.rollback()
                if entry.status in RUNNING_STATUSES:
                    self.ledger.fail(entry, f"Retry failed: {exc}", {
                        'retry_error': str(exc),
                        'exception': type(exc).__name__,
                        'trace': traceback.format_exc(),
                    })
                logger.error(f"Retry of sync {entry.id} failed: {exc}")
                result.add(UnitOutcome(
                    entry=entry, succeeded=False, error=str(exc), error_type=type(exc).__name__
                ))

        logger.info(f"Retry pass finished: {result.summary()}")
        return result

    # === RETENTION ===

    def cleanup_sync_data(self, days_to_keep: Optional[int] = None, dry_run: bool = False) -> Dict[str, Any]:
        """Delete terminal entries older than ``days_to_keep`` days."""
        if days_to_keep is None:
            days_to_keep = self.config.SYNC_RETENTION_DAYS
        cutoff = self.clock() - timedelta(days=days_to_keep)
        found, deleted = self.ledger.cleanup(cutoff, dry_run=dry_run)

        if dry_run:
            return {
                'status': 'dry_run',
                'records_found': found,
                'cutoff_date': cutoff.isoformat(),
            }

        cleared = self.cache.flush_tags(SYNC_CACHE_TAGS)
        logger.info(f"Sync cleanup removed {deleted} entries and {cleared} cache entries")
        return {
            'status': 'completed',
            'records_found': found,
            'records_deleted': deleted,
            'cutoff_date': cutoff.isoformat(),
            'cache_entries_cleared': cleared,
        }
