"""
Result values returned by the orchestrator.

Per-unit failures are reported as data, not exceptions: each unit of work
yields a ``UnitOutcome`` and a run collects them into a ``SyncBatchResult``.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional

from tenant_sync.models.sync_log import DataSyncLog


@dataclass
class UnitOutcome:
    """Outcome of one unit of sync work and its ledger entry."""
    entry: DataSyncLog
    succeeded: bool
    error: Optional[str] = None
    error_type: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'sync_log_id': self.entry.id,
            'tenant_id': self.entry.tenant_id,
            'status': self.entry.status,
            'succeeded': self.succeeded,
            'error': self.error,
            'error_type': self.error_type,
        }


@dataclass
class SyncBatchResult:
    """All unit outcomes produced by one orchestration call."""
    batch_id: str
    outcomes: List[UnitOutcome] = field(default_factory=list)

    def add(self, outcome: UnitOutcome) -> None:
        self.outcomes.append(outcome)

    def extend(self, other: "SyncBatchResult") -> None:
        self.outcomes.extend(other.outcomes)

    @property
    def entries(self) -> List[DataSyncLog]:
        return [o.entry for o in self.outcomes]

    @property
    def succeeded(self) -> List[UnitOutcome]:
        return [o for o in self.outcomes if o.succeeded]

    @property
    def failed(self) -> List[UnitOutcome]:
        return [o for o in self.outcomes if not o.succeeded]

    def __iter__(self) -> Iterator[DataSyncLog]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.outcomes)

    def summary(self) -> Dict[str, Any]:
        return {
            'batch_id': self.batch_id,
            'total': len(self.outcomes),
            'succeeded': len(self.succeeded),
            'failed': len(self.failed),
        }


@dataclass
class DirectionOutcome:
    """One direction of one sync type inside a bidirectional pass."""
    result: Optional[SyncBatchResult] = None
    error: Optional[str] = None
    skipped: bool = False

    @property
    def entries(self) -> List[DataSyncLog]:
        return self.result.entries if self.result else []

    def to_dict(self) -> Dict[str, Any]:
        if self.skipped:
            return {'skipped': True}
        if self.error is not None:
            return {'error': self.error}
        return self.result.summary()
