"""
Background tasks for cross-tenant synchronization.

Cron-friendly entrypoints around the sync service: full bidirectional passes,
retry of failed ledger entries, ledger retention and integrity checks.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from tenant_sync.core.cache import SyncCache, get_redis
from tenant_sync.core.database import get_engine, get_session_factory
from tenant_sync.core.logging import configure_logging
from tenant_sync.core.exceptions import SyncError, SyncInProgressError
from tenant_sync.models.global_data import Tenant
from tenant_sync.services.sync.cross_tenant_sync import CrossTenantSyncService
from tenant_sync.services.sync.monitor import SyncMonitor

logger = logging.getLogger(__name__)


class SyncTaskManager:
    """
    Runs scheduled sync work and reports a summary for each run.
    """

    def __init__(self, service: CrossTenantSyncService, monitor: Optional[SyncMonitor] = None):
        self.service = service
        self.monitor = monitor or service.monitor

    def _tenant_ids(self, tenant_ids: Optional[Iterable[str]]) -> List[str]:
        if tenant_ids is not None:
            return list(tenant_ids)
        return list(self.service.db.execute(
            select(Tenant.id).where(Tenant.status == "active").order_by(Tenant.id)
        ).scalars())

    def run_bidirectional_sync(
        self,
        tenant_ids: Optional[Iterable[str]] = None,
        sync_types: Optional[Iterable[str]] = None
    ) -> Dict[str, Any]:
        """
        Run a bidirectional pass for each tenant.

        Tenants whose sync lock is held are skipped and reported; any other
        sync error for one tenant is reported without stopping the run.
        """
        summary: Dict[str, Any] = {'synced': {}, 'skipped': [], 'errors': {}}

        for tenant_id in self._tenant_ids(tenant_ids):
            try:
                results = self.service.perform_bidirectional_sync(tenant_id, sync_types)
            except SyncInProgressError:
                logger.info(f"Skipping tenant {tenant_id}: sync already in progress")
                summary['skipped'].append(tenant_id)
                continue
            except SyncError as e:
                logger.error(f"Bidirectional sync failed for tenant {tenant_id}: {e}")
                summary['errors'][tenant_id] = e.to_dict()
                continue

            summary['synced'][tenant_id] = {
                sync_type: {direction: outcome.to_dict() for direction, outcome in directions.items()}
                for sync_type, directions in results.items()
            }

        logger.info(
            f"Bidirectional sync run: {len(summary['synced'])} synced, "
            f"{len(summary['skipped'])} skipped, {len(summary['errors'])} errors"
        )
        return summary

    def run_retry_failed_syncs(
        self,
        tenant_id: Optional[str] = None,
        sync_types: Optional[Iterable[str]] = None,
        limit: Optional[int] = None
    ) -> Dict[str, Any]:
        result = self.monitor.retry_failed_syncs(tenant_id, sync_types, limit)
        summary = result.summary()
        summary['failures'] = [outcome.to_dict() for outcome in result.failed]
        return summary

    def run_cleanup(self, days_to_keep: Optional[int] = None, dry_run: bool = False) -> Dict[str, Any]:
        result = self.monitor.cleanup_sync_data(days_to_keep, dry_run)
        logger.info(f"Sync cleanup: {result}")
        return result

    def run_integrity_checks(self, tenant_id: Optional[str] = None) -> Dict[str, Any]:
        results = self.service.validate_data_integrity(tenant_id)
        invalid = {
            tid: [name for name, check in checks.items() if check['status'] != 'valid']
            for tid, checks in results.items()
        }
        invalid = {tid: names for tid, names in invalid.items() if names}
        if invalid:
            logger.warning(f"Integrity checks reported problems: {invalid}")
        else:
            logger.info(f"Integrity checks passed for {len(results)} tenants")
        return {'results': results, 'tenants_with_issues': invalid}


# Standalone task functions for use with a scheduler

def _build_manager(db: Session) -> SyncTaskManager:
    configure_logging()
    service = CrossTenantSyncService(db, get_engine(), SyncCache(get_redis()))
    return SyncTaskManager(service)


def run_scheduled_sync(tenant_ids: Optional[List[str]] = None) -> Dict[str, Any]:
    db = get_session_factory()()
    try:
        return _build_manager(db).run_bidirectional_sync(tenant_ids)
    finally:
        db.close()


def retry_failed_syncs(limit: Optional[int] = None) -> Dict[str, Any]:
    db = get_session_factory()()
    try:
        return _build_manager(db).run_retry_failed_syncs(limit=limit)
    finally:
        db.close()


def cleanup_sync_logs(days_to_keep: Optional[int] = None, dry_run: bool = False) -> Dict[str, Any]:
    db = get_session_factory()()
    try:
        return _build_manager(db).run_cleanup(days_to_keep, dry_run)
    finally:
        db.close()
