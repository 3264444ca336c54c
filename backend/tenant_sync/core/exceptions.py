"""
Error taxonomy for the tenant synchronization engine.

Errors local to one record or tenant are converted into failed ledger
entries by the orchestrator. Errors signalling a caller or configuration
mistake propagate as exceptions.
"""

from typing import Any, Dict, Optional

from tenant_sync.utils import utcnow


class SyncErrorCategory:
    """Error categories for classification in ledger details and logs."""
    CONFIGURATION = "configuration"
    TENANT = "tenant"
    DATA_INTEGRITY = "data_integrity"
    CONCURRENCY = "concurrency"
    STATE = "state"
    UNKNOWN = "unknown"


class SyncError(Exception):
    """Base exception for sync engine errors with metadata."""

    category = SyncErrorCategory.UNKNOWN
    retryable = False

    def __init__(
        self,
        message: str,
        tenant_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.tenant_id = tenant_id
        self.details = details or {}
        self.timestamp = utcnow()

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for logging/storage."""
        return {
            'error': type(self).__name__,
            'message': self.message,
            'category': self.category,
            'tenant_id': self.tenant_id,
            'details': self.details,
            'retryable': self.retryable,
            'timestamp': self.timestamp.isoformat(),
        }


class TenantNotFoundError(SyncError):
    """Referenced tenant id does not resolve to a schema."""
    category = SyncErrorCategory.TENANT

    def __init__(self, tenant_id: str, **kwargs):
        super().__init__(f"Tenant not found: {tenant_id}", tenant_id=tenant_id, **kwargs)


class MissingOfferingError(SyncError):
    """Course sync attempted without a tenant course offering."""
    category = SyncErrorCategory.DATA_INTEGRITY
    retryable = True

    def __init__(self, global_course_id: str, tenant_id: str, **kwargs):
        super().__init__(
            f"No course offering found for global course {global_course_id} in tenant {tenant_id}",
            tenant_id=tenant_id,
            **kwargs
        )
        self.global_course_id = global_course_id


class GlobalRecordNotFoundError(SyncError):
    """A global record referenced by a sync unit does not exist."""
    category = SyncErrorCategory.DATA_INTEGRITY
    retryable = True


class UnsupportedSyncTypeError(SyncError):
    category = SyncErrorCategory.CONFIGURATION

    def __init__(self, sync_type: Any, **kwargs):
        super().__init__(f"Unsupported sync type: {sync_type}", **kwargs)
        self.sync_type = sync_type


class UnknownStrategyError(SyncError):
    category = SyncErrorCategory.CONFIGURATION

    def __init__(self, strategy: Any, **kwargs):
        super().__init__(f"Unknown resolution strategy: {strategy}", **kwargs)
        self.strategy = strategy


class MergePolicyRequiredError(SyncError):
    """The merge strategy was requested but no merge policy was supplied."""
    category = SyncErrorCategory.CONFIGURATION


class SyncInProgressError(SyncError):
    """The sync lock for a tenant is already held."""
    category = SyncErrorCategory.CONCURRENCY
    retryable = True

    def __init__(self, tenant_id: str, **kwargs):
        super().__init__(
            f"Sync already in progress for tenant {tenant_id}",
            tenant_id=tenant_id,
            **kwargs
        )


class InvalidStateError(SyncError):
    """A ledger transition was requested from a state that does not allow it."""
    category = SyncErrorCategory.STATE


class RetryExhaustedError(SyncError):
    """retry() called after the maximum number of attempts was reached."""
    category = SyncErrorCategory.STATE
