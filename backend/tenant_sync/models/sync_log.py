"""
SQLAlchemy model for the sync ledger.

Every unit of cross-tenant sync work is recorded as one ``DataSyncLog`` row.
The row carries its own state machine; the ledger service persists each
transition.
"""

import enum
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import Column, DateTime, Index, Integer, JSON, String, Text
from sqlalchemy.sql import func

from tenant_sync.core.database import Base
from tenant_sync.core.exceptions import InvalidStateError, RetryExhaustedError


class SyncType(str, enum.Enum):
    """Kind of data a ledger entry synchronizes."""
    USER_SYNC = "user_sync"
    COURSE_SYNC = "course_sync"
    ENROLLMENT_SYNC = "enrollment_sync"
    ANALYTICS_SYNC = "analytics_sync"
    CONFLICT_RESOLUTION = "conflict_resolution"


class SyncOperationType(str, enum.Enum):
    CREATE = "create"
    UPDATE = "update"
    RECONCILE = "reconcile"
    VALIDATE = "validate"
    CLEANUP = "cleanup"


class SyncDirection(str, enum.Enum):
    """Direction of synchronization."""
    GLOBAL_TO_TENANT = "global_to_tenant"
    TENANT_TO_GLOBAL = "tenant_to_global"
    BIDIRECTIONAL = "bidirectional"


class SyncStatus(str, enum.Enum):
    """Status of a ledger entry."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    RETRYING = "retrying"


class SyncPriority(enum.IntEnum):
    LOW = 1
    NORMAL = 2
    HIGH = 3
    CRITICAL = 4
    URGENT = 5


RUNNING_STATUSES = (SyncStatus.PENDING, SyncStatus.IN_PROGRESS, SyncStatus.RETRYING)
TERMINAL_STATUSES = (SyncStatus.COMPLETED, SyncStatus.FAILED, SyncStatus.CANCELLED)
FAILED_STATUSES = (SyncStatus.FAILED, SyncStatus.CANCELLED)

SYNC_TYPE_NAMES = {
    SyncType.USER_SYNC: "User Synchronization",
    SyncType.COURSE_SYNC: "Course Synchronization",
    SyncType.ENROLLMENT_SYNC: "Enrollment Synchronization",
    SyncType.ANALYTICS_SYNC: "Analytics Synchronization",
    SyncType.CONFLICT_RESOLUTION: "Conflict Resolution",
}

STATUS_NAMES = {
    SyncStatus.PENDING: "Pending",
    SyncStatus.IN_PROGRESS: "In Progress",
    SyncStatus.COMPLETED: "Completed",
    SyncStatus.FAILED: "Failed",
    SyncStatus.CANCELLED: "Cancelled",
    SyncStatus.RETRYING: "Retrying",
}


def _display_name(value: Optional[str], names: Dict[str, str]) -> str:
    if value is None:
        return "N/A"
    return names.get(value) or value.replace("_", " ").capitalize()


class DataSyncLog(Base):
    """Ledger entry for a single sync attempt."""

    __tablename__ = "data_sync_logs"

    id = Column(String(36), primary_key=True)

    # Identity
    sync_type = Column(String(50), nullable=False, index=True)
    operation = Column(String(50), nullable=False)
    sync_direction = Column(String(50), nullable=False, default=SyncDirection.GLOBAL_TO_TENANT.value)

    # Source/target
    tenant_id = Column(String(36), nullable=True, index=True)
    source_table = Column(String(100), nullable=False)
    target_table = Column(String(100), nullable=False)
    source_record_id = Column(String(64), nullable=True)
    target_record_id = Column(String(64), nullable=True)

    # Grouping
    batch_id = Column(String(36), nullable=True, index=True)
    priority = Column(Integer, nullable=False, default=int(SyncPriority.NORMAL))

    # Lifecycle
    status = Column(String(20), nullable=False, default=SyncStatus.PENDING.value, index=True)
    retry_count = Column(Integer, nullable=False, default=0)
    max_retries = Column(Integer, nullable=False, default=3)

    # Outcome
    sync_data = Column(JSON, nullable=True)
    error_message = Column(Text, nullable=True)
    error_details = Column(JSON, nullable=True)
    sync_metadata = Column("metadata", JSON, nullable=True)
    tags = Column(JSON, nullable=True)

    # Timing
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    failed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=True, onupdate=func.now())

    __table_args__ = (
        Index("ix_data_sync_logs_retryable", "status", "priority", "failed_at"),
    )

    def __repr__(self):
        return (
            f"<DataSyncLog(id={self.id}, sync_type={self.sync_type}, "
            f"tenant_id={self.tenant_id}, status={self.status}, retry_count={self.retry_count})>"
        )

    # === DERIVED ATTRIBUTES ===

    @property
    def duration(self) -> Optional[float]:
        """Seconds between start and the terminal timestamp; None until terminal."""
        if self.status not in TERMINAL_STATUSES or not self.started_at:
            return None
        end = self.completed_at if self.status == SyncStatus.COMPLETED else self.failed_at
        if end is None:
            return None
        return (end - self.started_at).total_seconds()

    @property
    def formatted_duration(self) -> str:
        duration = self.duration
        if duration is None:
            return "N/A"
        if duration < 60:
            return f"{int(duration)}s"
        if duration < 3600:
            return f"{round(duration / 60, 1)}m"
        return f"{round(duration / 3600, 1)}h"

    @property
    def sync_stats(self) -> Dict[str, Any]:
        return dict((self.sync_data or {}).get("stats", {}))

    @property
    def conflicts(self) -> List[Dict[str, Any]]:
        return list((self.sync_data or {}).get("conflicts", []))

    @property
    def validation_errors(self) -> List[Dict[str, Any]]:
        return list((self.sync_data or {}).get("validation_errors", []))

    @property
    def resolution_data(self) -> Optional[Dict[str, Any]]:
        return (self.sync_data or {}).get("resolution_data")

    @property
    def sync_type_display_name(self) -> str:
        return _display_name(self.sync_type, SYNC_TYPE_NAMES)

    @property
    def status_display_name(self) -> str:
        return _display_name(self.status, STATUS_NAMES)

    @property
    def sync_direction_display_name(self) -> str:
        return _display_name(self.sync_direction, {})

    @property
    def priority_display_name(self) -> str:
        try:
            return SyncPriority(self.priority).name.capitalize()
        except ValueError:
            return str(self.priority)

    @property
    def is_running(self) -> bool:
        return self.status in RUNNING_STATUSES

    @property
    def is_completed(self) -> bool:
        return self.status == SyncStatus.COMPLETED

    @property
    def is_failed(self) -> bool:
        return self.status in FAILED_STATUSES

    def can_retry(self) -> bool:
        return self.status == SyncStatus.FAILED and self.retry_count < self.max_retries

    # === STATE TRANSITIONS ===

    def _require_status(self, allowed, action: str) -> None:
        if self.status not in allowed:
            raise InvalidStateError(
                f"Cannot {action} sync {self.id} from status '{self.status}'",
                tenant_id=self.tenant_id,
                details={'sync_log_id': self.id, 'status': self.status},
            )

    def _merge_sync_data(self, key: str, values: Dict[str, Any]) -> None:
        data = dict(self.sync_data or {})
        merged = dict(data.get(key, {}))
        merged.update(values)
        data[key] = merged
        self.sync_data = data

    def _append_sync_data(self, key: str, item: Dict[str, Any]) -> None:
        data = dict(self.sync_data or {})
        data[key] = list(data.get(key, [])) + [item]
        self.sync_data = data

    def mark_started(self, now: datetime) -> None:
        self._require_status((SyncStatus.PENDING, SyncStatus.RETRYING), "start")
        self.status = SyncStatus.IN_PROGRESS.value
        self.started_at = now
        self.completed_at = None
        self.failed_at = None

    def mark_completed(self, now: datetime, stats: Optional[Dict[str, Any]] = None) -> None:
        self._require_status((SyncStatus.IN_PROGRESS,), "complete")
        self._merge_sync_data("stats", stats or {})
        self.status = SyncStatus.COMPLETED.value
        self.completed_at = now

    def mark_failed(
        self,
        now: datetime,
        message: str,
        details: Optional[Dict[str, Any]] = None
    ) -> None:
        self._require_status(RUNNING_STATUSES, "fail")
        self.status = SyncStatus.FAILED.value
        self.failed_at = now
        self.error_message = message
        self.error_details = details or {}

    def mark_retrying(self) -> None:
        self._require_status((SyncStatus.FAILED,), "retry")
        if self.retry_count >= self.max_retries:
            raise RetryExhaustedError(
                f"Sync {self.id} exhausted its {self.max_retries} retry attempts",
                tenant_id=self.tenant_id,
                details={'sync_log_id': self.id, 'retry_count': self.retry_count},
            )
        self.retry_count += 1
        self.status = SyncStatus.RETRYING.value
        self.failed_at = None
        self.error_message = None
        self.error_details = None

    def mark_cancelled(self, now: datetime, reason: Optional[str] = None) -> None:
        self._require_status(RUNNING_STATUSES + (SyncStatus.FAILED,), "cancel")
        if reason:
            metadata = dict(self.sync_metadata or {})
            metadata['cancellation_reason'] = reason
            self.sync_metadata = metadata
        self.status = SyncStatus.CANCELLED.value
        self.failed_at = now

    def add_stats(self, delta: Dict[str, Any]) -> None:
        """Additive merge: numbers are summed, anything else overwrites."""
        stats = self.sync_stats
        for key, value in delta.items():
            current = stats.get(key)
            if isinstance(value, (int, float)) and isinstance(current, (int, float)):
                stats[key] = current + value
            else:
                stats[key] = value
        data = dict(self.sync_data or {})
        data["stats"] = stats
        self.sync_data = data

    def add_conflict(self, conflict: Dict[str, Any], now: datetime) -> None:
        self._append_sync_data("conflicts", {**conflict, 'detected_at': now.isoformat()})

    def add_validation_error(self, error: Dict[str, Any], now: datetime) -> None:
        self._append_sync_data("validation_errors", {**error, 'detected_at': now.isoformat()})

    def set_resolution(self, resolution: Dict[str, Any]) -> None:
        data = dict(self.sync_data or {})
        data["resolution_data"] = resolution
        self.sync_data = data
