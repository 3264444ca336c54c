"""
Sync Log Ledger

Durable, queryable record of sync operations. Owns the lifecycle of every
``DataSyncLog`` row: entries are created here, every state transition is
persisted here, and retention cleanup deletes them here.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

from sqlalchemy import select, delete, func
from sqlalchemy.orm import Session

from tenant_sync.core.config import settings
from tenant_sync.models.sync_log import (
    DataSyncLog, SyncType, SyncOperationType, SyncDirection, SyncStatus, SyncPriority,
    RUNNING_STATUSES, TERMINAL_STATUSES, FAILED_STATUSES
)
from tenant_sync.utils import utcnow, new_id

logger = logging.getLogger(__name__)


def _value(item: Any) -> Any:
    """Store enum members by value."""
    if isinstance(item, SyncPriority):
        return int(item)
    return getattr(item, "value", item)


class SyncLogLedger:
    """
    Persistence layer for sync ledger entries.

    Every transition commits immediately.
    """

    def __init__(
        self,
        db: Session,
        clock: Callable[[], datetime] = utcnow,
        id_factory: Callable[[], str] = new_id,
        max_retries: Optional[int] = None
    ):
        self.db = db
        self.clock = clock
        self.id_factory = id_factory
        self.max_retries = max_retries if max_retries is not None else settings.SYNC_MAX_RETRY_ATTEMPTS

    # === CREATION ===

    def create_sync(
        self,
        sync_type: Union[SyncType, str],
        operation: Union[SyncOperationType, str],
        source_table: str,
        target_table: str,
        tenant_id: Optional[str],
        batch_id: Optional[str] = None,
        source_record_id: Optional[Any] = None,
        target_record_id: Optional[Any] = None,
        sync_direction: Union[SyncDirection, str] = SyncDirection.GLOBAL_TO_TENANT,
        priority: Union[SyncPriority, int] = SyncPriority.NORMAL,
        metadata: Optional[Dict[str, Any]] = None,
        tags: Optional[List[str]] = None,
        max_retries: Optional[int] = None,
    ) -> DataSyncLog:
        """
        Create a new ledger entry in ``pending``.

        Constraint violations from the database propagate to the caller.
        """
        entry = DataSyncLog(
            id=self.id_factory(),
            sync_type=_value(sync_type),
            operation=_value(operation),
            source_table=source_table,
            target_table=target_table,
            tenant_id=tenant_id,
            batch_id=batch_id,
            source_record_id=str(source_record_id) if source_record_id is not None else None,
            target_record_id=str(target_record_id) if target_record_id is not None else None,
            sync_direction=_value(sync_direction),
            priority=_value(priority),
            status=SyncStatus.PENDING.value,
            retry_count=0,
            max_retries=max_retries if max_retries is not None else self.max_retries,
            sync_data={},
            sync_metadata=metadata or {},
            tags=tags or [],
            created_at=self.clock(),
        )
        self.db.add(entry)
        self.db.commit()
        return entry

    def create_batch(
        self,
        specs: Iterable[Dict[str, Any]],
        batch_id: Optional[str] = None
    ) -> List[DataSyncLog]:
        """Create several entries sharing one batch id."""
        batch_id = batch_id or self.id_factory()
        entries = []
        for spec in specs:
            spec = dict(spec)
            spec['batch_id'] = batch_id
            entries.append(self.create_sync(
                spec.pop('sync_type'),
                spec.pop('operation'),
                spec.pop('source_table'),
                spec.pop('target_table'),
                spec.pop('tenant_id', None),
                **spec
            ))
        return entries

    # === TRANSITIONS ===

    def _persist(self, entry: DataSyncLog) -> DataSyncLog:
        self.db.add(entry)
        self.db.commit()
        return entry

    def start(self, entry: DataSyncLog) -> DataSyncLog:
        entry.mark_started(self.clock())
        return self._persist(entry)

    def complete(self, entry: DataSyncLog, stats: Optional[Dict[str, Any]] = None) -> DataSyncLog:
        entry.mark_completed(self.clock(), stats)
        return self._persist(entry)

    def fail(
        self,
        entry: DataSyncLog,
        message: str,
        context: Optional[Dict[str, Any]] = None
    ) -> DataSyncLog:
        entry.mark_failed(self.clock(), message, context)
        return self._persist(entry)

    def retry(self, entry: DataSyncLog) -> DataSyncLog:
        entry.mark_retrying()
        return self._persist(entry)

    def cancel(self, entry: DataSyncLog, reason: Optional[str] = None) -> DataSyncLog:
        entry.mark_cancelled(self.clock(), reason)
        return self._persist(entry)

    def update_stats(self, entry: DataSyncLog, delta: Dict[str, Any]) -> DataSyncLog:
        """
        Additively merge ``delta`` into the entry's stats.

        The row is re-read under ``SELECT ... FOR UPDATE``.
        """
        locked = self.db.execute(
            select(DataSyncLog)
            .where(DataSyncLog.id == entry.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one()
        locked.add_stats(delta)
        return self._persist(locked)

    def set_target_record(self, entry: DataSyncLog, target_record_id: Any) -> DataSyncLog:
        entry.target_record_id = str(target_record_id)
        return self._persist(entry)

    def add_conflict(self, entry: DataSyncLog, conflict: Dict[str, Any]) -> DataSyncLog:
        entry.add_conflict(conflict, self.clock())
        return self._persist(entry)

    def add_validation_error(self, entry: DataSyncLog, error: Dict[str, Any]) -> DataSyncLog:
        entry.add_validation_error(error, self.clock())
        return self._persist(entry)

    def set_resolution(self, entry: DataSyncLog, resolution: Dict[str, Any]) -> DataSyncLog:
        entry.set_resolution(resolution)
        return self._persist(entry)

    # === QUERIES ===

    def get(self, entry_id: str) -> Optional[DataSyncLog]:
        return self.db.get(DataSyncLog, entry_id)

    def get_pending_syncs(self, limit: int = 100) -> List[DataSyncLog]:
        return list(self.db.execute(
            select(DataSyncLog)
            .where(DataSyncLog.status == SyncStatus.PENDING.value)
            .order_by(DataSyncLog.priority.desc(), DataSyncLog.created_at.asc())
            .limit(limit)
        ).scalars())

    def get_retryable_syncs(
        self,
        tenant_id: Optional[str] = None,
        sync_types: Optional[Iterable[Union[SyncType, str]]] = None,
        limit: int = 50
    ) -> List[DataSyncLog]:
        """Failed entries with attempts left, highest priority and oldest failure first."""
        query = select(DataSyncLog).where(
            DataSyncLog.status == SyncStatus.FAILED.value,
            DataSyncLog.retry_count < DataSyncLog.max_retries,
        )
        if tenant_id:
            query = query.where(DataSyncLog.tenant_id == tenant_id)
        if sync_types:
            query = query.where(DataSyncLog.sync_type.in_([_value(t) for t in sync_types]))

        query = query.order_by(
            DataSyncLog.priority.desc(),
            DataSyncLog.failed_at.asc(),
        ).limit(limit)
        return list(self.db.execute(query).scalars())

    def entries_since(self, since: datetime, tenant_id: Optional[str] = None) -> List[DataSyncLog]:
        """Entries whose start (or creation, if never started) falls at or after ``since``."""
        started = func.coalesce(DataSyncLog.started_at, DataSyncLog.created_at)
        query = select(DataSyncLog).where(started >= since)
        if tenant_id:
            query = query.where(DataSyncLog.tenant_id == tenant_id)
        return list(self.db.execute(query.order_by(started.desc())).scalars())

    def get_batch(self, batch_id: str) -> List[DataSyncLog]:
        return list(self.db.execute(
            select(DataSyncLog).where(DataSyncLog.batch_id == batch_id)
        ).scalars())

    def get_batch_status(self, batch_id: str) -> Dict[str, Any]:
        entries = self.get_batch(batch_id)
        if not entries:
            return {'status': 'not_found'}

        total = len(entries)
        completed = sum(1 for e in entries if e.status == SyncStatus.COMPLETED)
        failed = sum(1 for e in entries if e.status in FAILED_STATUSES)
        running = sum(1 for e in entries if e.status in RUNNING_STATUSES)

        status = 'in_progress'
        if completed == total:
            status = 'completed'
        elif failed > 0 and running == 0 and completed == 0:
            status = 'failed'
        elif running == 0:
            status = 'partial'

        return {
            'status': status,
            'total': total,
            'completed': completed,
            'failed': failed,
            'running': running,
            'progress': round(completed / total * 100, 2),
        }

    def cleanup(self, cutoff: datetime, dry_run: bool = False) -> Tuple[int, int]:
        """
        Delete terminal entries that started before ``cutoff``.

        Returns ``(found, deleted)``; nothing is deleted on a dry run.
        """
        started = func.coalesce(DataSyncLog.started_at, DataSyncLog.created_at)
        condition = (
            started < cutoff,
            DataSyncLog.status.in_([s.value for s in TERMINAL_STATUSES]),
        )
        found = self.db.execute(
            select(func.count()).select_from(DataSyncLog).where(*condition)
        ).scalar_one()

        if dry_run or found == 0:
            return found, 0

        result = self.db.execute(
            delete(DataSyncLog).where(*condition).execution_options(synchronize_session=False)
        )
        self.db.commit()
        logger.info(f"Deleted {result.rowcount} sync log entries older than {cutoff.isoformat()}")
        return found, result.rowcount
