"""
Per-tenant mutual exclusion for bidirectional sync passes.
"""

import logging
from contextlib import contextmanager
from typing import Dict, Iterator, Optional

from redis.exceptions import LockError
from redis.lock import Lock

from tenant_sync.core.cache import SyncCache
from tenant_sync.core.config import settings
from tenant_sync.core.exceptions import SyncInProgressError

logger = logging.getLogger(__name__)


class TenantSyncLock:
    """
    Distributed lock keyed by tenant.

    The TTL bounds how long a crashed worker can block other passes for the
    same tenant.
    """

    def __init__(self, cache: SyncCache, ttl: Optional[int] = None):
        self.cache = cache
        self.ttl = ttl or settings.SYNC_LOCK_TTL_SECONDS
        self._held: Dict[str, Lock] = {}

    @staticmethod
    def lock_key(tenant_id: str) -> str:
        return f"tenant_sync:{tenant_id}"

    def acquire(self, tenant_id: str) -> None:
        lock = self.cache.lock(self.lock_key(tenant_id), self.ttl)
        if not lock.acquire(blocking=False):
            raise SyncInProgressError(tenant_id)
        self._held[tenant_id] = lock
        logger.debug(f"Acquired sync lock for tenant {tenant_id} (ttl={self.ttl}s)")

    def release(self, tenant_id: str) -> None:
        lock = self._held.pop(tenant_id, None)
        if lock is None:
            return
        try:
            lock.release()
        except LockError:
            # TTL elapsed before release; another worker may own the key now
            logger.warning(f"Sync lock for tenant {tenant_id} expired before release")

    def is_locked(self, tenant_id: str) -> bool:
        return self.cache.lock(self.lock_key(tenant_id), self.ttl).locked()

    @contextmanager
    def hold(self, tenant_id: str) -> Iterator[None]:
        self.acquire(tenant_id)
        try:
            yield
        finally:
            self.release(tenant_id)
