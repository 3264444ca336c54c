"""
Conflict resolution for cross-tenant sync.

Handles conflicting versions of a record that exist both in the global
partition and in a tenant projection. Each resolution is recorded as its own
ledger entry of type ``conflict_resolution``.
"""

import logging
from datetime import date, datetime
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple, Union

from sqlalchemy import Date, DateTime, Table, inspect
from sqlalchemy.orm import Session

from tenant_sync.core.exceptions import (
    GlobalRecordNotFoundError, MergePolicyRequiredError, UnknownStrategyError
)
from tenant_sync.models.global_data import GlobalCourse, GlobalUser
from tenant_sync.models.sync_log import DataSyncLog, SyncDirection, SyncOperationType, SyncType
from tenant_sync.models.tenant_tables import tenant_courses, tenant_users
from tenant_sync.schemas.sync import ConflictPayload, FlaggedConflict
from tenant_sync.services.sync.ledger import SyncLogLedger
from tenant_sync.services.sync.schema_context import TenantSchemaSwitcher
from tenant_sync.utils import utcnow

logger = logging.getLogger(__name__)

MergePolicy = Callable[[Dict[str, Any], Dict[str, Any]], Dict[str, Any]]


class ConflictStrategy(str, Enum):
    """Available conflict resolution strategies."""
    GLOBAL_WINS = "global_wins"
    TENANT_WINS = "tenant_wins"
    MERGE = "merge"
    MANUAL = "manual"


# Tenant projection table and global model for each side of a conflict
TABLE_PAIRS = {
    "users": (tenant_users, GlobalUser),
    "global_users": (tenant_users, GlobalUser),
    "courses": (tenant_courses, GlobalCourse),
    "global_courses": (tenant_courses, GlobalCourse),
}


def _coerce_value(column_type, value: Any) -> Any:
    # Conflict data usually arrives as JSON, so temporal values are ISO strings
    if isinstance(value, str):
        if isinstance(column_type, DateTime):
            return datetime.fromisoformat(value)
        if isinstance(column_type, Date):
            return date.fromisoformat(value)
    return value


def _writable_values(columns: Dict[str, Any], data: Dict[str, Any]) -> Dict[str, Any]:
    return {
        key: _coerce_value(columns[key], value)
        for key, value in data.items()
        if key in columns and key != "id"
    }


class ConflictResolver:
    """
    Applies a caller-selected strategy to a global/tenant conflict.

    The field-level merge algorithm is not built in: the ``merge`` strategy
    delegates to the ``merge_policy`` supplied by the caller.
    """

    def __init__(
        self,
        ledger: SyncLogLedger,
        switcher: TenantSchemaSwitcher,
        db: Session,
        clock: Callable[[], datetime] = utcnow,
        merge_policy: Optional[MergePolicy] = None,
    ):
        self.ledger = ledger
        self.switcher = switcher
        self.db = db
        self.clock = clock
        self.merge_policy = merge_policy
        self._strategies = {
            ConflictStrategy.GLOBAL_WINS: self._resolve_global_wins,
            ConflictStrategy.TENANT_WINS: self._resolve_tenant_wins,
            ConflictStrategy.MERGE: self._resolve_merge,
            ConflictStrategy.MANUAL: self._resolve_manual,
        }

    def resolve(
        self,
        tenant_id: str,
        conflict_type: str,
        conflict_data: Union[ConflictPayload, Dict[str, Any]],
        strategy: Union[ConflictStrategy, str] = ConflictStrategy.GLOBAL_WINS,
    ) -> Dict[str, Any]:
        """
        Resolve one conflict and record the outcome.

        Returns:
            The resolution data stored on the ledger entry

        Raises:
            UnknownStrategyError: strategy is not one of the known strategies
            MergePolicyRequiredError: merge requested without a merge policy
        """
        if not isinstance(conflict_data, ConflictPayload):
            conflict_data = ConflictPayload.model_validate(conflict_data)

        entry = self.ledger.create_sync(
            SyncType.CONFLICT_RESOLUTION,
            SyncOperationType.RECONCILE,
            conflict_data.source_table,
            conflict_data.target_table,
            tenant_id,
            source_record_id=conflict_data.global_record_id,
            target_record_id=conflict_data.tenant_record_id,
            sync_direction=SyncDirection.BIDIRECTIONAL,
            metadata={
                'conflict_type': conflict_type,
                'resolution_strategy': getattr(strategy, 'value', strategy),
                'conflict_data': conflict_data.model_dump(mode='json'),
            },
        )
        self.ledger.start(entry)

        try:
            try:
                strategy = ConflictStrategy(strategy)
            except ValueError:
                raise UnknownStrategyError(strategy, tenant_id=tenant_id)

            resolution = self._strategies[strategy](entry, tenant_id, conflict_type, conflict_data)
            self.ledger.set_resolution(entry, resolution)
            self.ledger.complete(entry, {
                'conflicts_resolved': 1,
                'resolution_strategy': strategy.value,
            })
        except Exception as exc:
            self.db.rollback()
            self.ledger.fail(entry, str(exc), {
                'exception': type(exc).__name__,
                'conflict_type': conflict_type,
            })
            logger.error(f"Conflict resolution failed for tenant {tenant_id}: {exc}")
            raise

        logger.info(
            f"Resolved {conflict_type} conflict for tenant {tenant_id} "
            f"using {strategy.value}: {resolution['action']}"
        )
        return resolution

    def _tables(self, payload: ConflictPayload) -> Tuple[Optional[Table], Optional[type]]:
        for name in (payload.target_table, payload.source_table):
            if name in TABLE_PAIRS:
                return TABLE_PAIRS[name]
        return None, None

    def _write_tenant(self, tenant_id: str, payload: ConflictPayload, data: Dict[str, Any]) -> bool:
        table, _ = self._tables(payload)
        if table is None or payload.tenant_record_id is None:
            return False

        values = _writable_values({c.name: c.type for c in table.columns}, data)
        if 'updated_at' in table.c:
            values['updated_at'] = self.clock()
        with self.switcher.tenant_context(tenant_id) as context:
            return context.update(table, payload.tenant_record_id, values) > 0

    def _global_record(self, payload: ConflictPayload) -> Optional[Any]:
        """Load the global side of the conflict, or None when it has no global table."""
        _, model = self._tables(payload)
        if model is None or payload.global_record_id is None:
            return None

        record = self.db.get(model, payload.global_record_id)
        if record is None:
            raise GlobalRecordNotFoundError(
                f"Global record not found: {model.__tablename__}/{payload.global_record_id}"
            )
        return record

    def _write_global(self, record: Optional[Any], data: Dict[str, Any]) -> bool:
        if record is None:
            return False

        columns = {attr.key: attr.columns[0].type for attr in inspect(type(record)).column_attrs}
        for key, value in _writable_values(columns, data).items():
            setattr(record, key, value)
        self.db.commit()
        return True

    def _resolution(self, strategy: ConflictStrategy, action: str, **extra) -> Dict[str, Any]:
        return {
            'strategy': strategy.value,
            'action': action,
            'resolved_at': self.clock().isoformat(),
            **extra,
        }

    def _resolve_global_wins(
        self,
        entry: DataSyncLog,
        tenant_id: str,
        conflict_type: str,
        payload: ConflictPayload
    ) -> Dict[str, Any]:
        """Global record is authoritative; overwrite the tenant projection."""
        written = self._write_tenant(tenant_id, payload, payload.global_data)
        return self._resolution(
            ConflictStrategy.GLOBAL_WINS, 'overwrite_tenant_data',
            resolved_data=payload.global_data, tenant_written=written,
        )

    def _resolve_tenant_wins(
        self,
        entry: DataSyncLog,
        tenant_id: str,
        conflict_type: str,
        payload: ConflictPayload
    ) -> Dict[str, Any]:
        """Tenant record is authoritative; overwrite the global record."""
        written = self._write_global(self._global_record(payload), payload.tenant_data)
        return self._resolution(
            ConflictStrategy.TENANT_WINS, 'overwrite_global_data',
            resolved_data=payload.tenant_data, global_written=written,
        )

    def _resolve_merge(
        self,
        entry: DataSyncLog,
        tenant_id: str,
        conflict_type: str,
        payload: ConflictPayload
    ) -> Dict[str, Any]:
        if self.merge_policy is None:
            raise MergePolicyRequiredError(
                "Merge strategy requires a merge policy", tenant_id=tenant_id
            )

        merged = self.merge_policy(dict(payload.global_data), dict(payload.tenant_data))
        # the global record must exist before either side is written
        record = self._global_record(payload)
        tenant_written = self._write_tenant(tenant_id, payload, merged)
        global_written = self._write_global(record, merged)
        return self._resolution(
            ConflictStrategy.MERGE, 'merge_data_fields',
            resolved_data=merged, tenant_written=tenant_written, global_written=global_written,
        )

    def _resolve_manual(
        self,
        entry: DataSyncLog,
        tenant_id: str,
        conflict_type: str,
        payload: ConflictPayload
    ) -> Dict[str, Any]:
        """Flag for human review; nothing is written to either side."""
        flagged = FlaggedConflict(
            conflict_type=conflict_type,
            global_record_id=payload.global_record_id,
            tenant_record_id=payload.tenant_record_id,
            global_data=payload.global_data,
            tenant_data=payload.tenant_data,
        )
        self.ledger.add_conflict(entry, flagged.model_dump(mode='json'))
        return {
            'strategy': ConflictStrategy.MANUAL.value,
            'action': 'flag_for_review',
            'flagged_at': self.clock().isoformat(),
        }
