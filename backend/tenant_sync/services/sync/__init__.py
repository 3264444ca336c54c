"""
Cross-Tenant Synchronization Engine

Sync services keeping a global data partition and per-tenant schemas
consistent.

Components:
- Sync ledger recording every unit of sync work and its lifecycle
- Schema context switching with guaranteed restoration
- Global -> tenant projection and tenant -> global merge-back
- Conflict resolution with pluggable merge policy
- Cross-partition integrity checks
- Sync monitoring, bounded retries and ledger retention
- Per-tenant sync lock
"""

from .ledger import SyncLogLedger
from .schema_context import TenantContext, TenantSchemaSwitcher
from .sync_lock import TenantSyncLock
from .results import UnitOutcome, SyncBatchResult, DirectionOutcome
from .conflict_resolution import ConflictResolver, ConflictStrategy, MergePolicy
from .integrity_validator import IntegrityValidator, IntegrityIssue, ValidationType
from .monitor import SyncMonitor
from .cross_tenant_sync import CrossTenantSyncService, coerce_sync_type

__all__ = [
    # Ledger
    'SyncLogLedger',

    # Schema context
    'TenantContext',
    'TenantSchemaSwitcher',

    # Locking
    'TenantSyncLock',

    # Results
    'UnitOutcome',
    'SyncBatchResult',
    'DirectionOutcome',

    # Conflicts
    'ConflictResolver',
    'ConflictStrategy',
    'MergePolicy',

    # Integrity
    'IntegrityValidator',
    'IntegrityIssue',
    'ValidationType',

    # Monitoring and retries
    'SyncMonitor',

    # Orchestration
    'CrossTenantSyncService',
    'coerce_sync_type',
]
