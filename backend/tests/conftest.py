"""
Shared fixtures for the tenant sync test suite.

The database is a single in-memory SQLite connection; each tenant schema is
an attached in-memory database so schema-qualified tenant tables behave as
they would under PostgreSQL schemas.
"""

import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

import pytest
from redis.exceptions import LockNotOwnedError
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from tenant_sync.core.cache import SyncCache
from tenant_sync.core.database import init_db, provision_tenant_schema
from tenant_sync.models import (
    DataSyncLog, GlobalCourse, GlobalUser, SyncStatus, Tenant, TenantCourseOffering,
    UserTenantMembership
)
from tenant_sync.services.sync import CrossTenantSyncService, SyncLogLedger, TenantSchemaSwitcher

TENANT_SCHEMAS = {
    "tenant-alpha": "tenant_alpha",
    "tenant-beta": "tenant_beta",
    "tenant-gamma": "tenant_gamma",
}

FIXED_NOW = datetime(2026, 3, 2, 12, 0, 0)


class FixedClock:
    """Deterministic clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeRedisLock:
    """In-process double of ``redis.lock.Lock`` backed by ``FakeRedis``."""

    def __init__(self, client: "FakeRedis", name: str, timeout: Optional[int] = None):
        self.client = client
        self.name = name
        self.timeout = timeout
        self.token: Optional[str] = None

    def acquire(self, blocking: Optional[bool] = None) -> bool:
        token = uuid.uuid4().hex
        if self.client.set(self.name, token, ex=self.timeout, nx=True):
            self.token = token
            return True
        return False

    def locked(self) -> bool:
        return self.client.get(self.name) is not None

    def release(self) -> None:
        if self.token is None or self.client.get(self.name) != self.token:
            raise LockNotOwnedError("Cannot release a lock that's no longer owned")
        self.client.delete(self.name)
        self.token = None


class FakeRedis:
    """In-process double of the redis client calls the sync cache makes."""

    def __init__(self):
        self.store: Dict[str, Any] = {}
        self.expiries: Dict[str, Optional[int]] = {}
        self.sets: Dict[str, set] = {}

    def get(self, name):
        return self.store.get(name)

    def set(self, name, value, ex=None, nx=False):
        if nx and name in self.store:
            return None
        self.store[name] = value
        self.expiries[name] = ex
        return True

    def delete(self, *names):
        removed = 0
        for name in names:
            if name in self.store:
                del self.store[name]
                self.expiries.pop(name, None)
                removed += 1
            elif name in self.sets:
                del self.sets[name]
                removed += 1
        return removed

    def sadd(self, name, *values):
        members = self.sets.setdefault(name, set())
        before = len(members)
        members.update(values)
        return len(members) - before

    def smembers(self, name):
        return set(self.sets.get(name, set()))

    def lock(self, name, timeout=None, blocking=True, **kwargs):
        return FakeRedisLock(self, name, timeout)


@pytest.fixture
def engine():
    """In-memory engine with one attached database per tenant schema"""
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine, "connect")
    def attach_tenant_schemas(dbapi_connection, connection_record):
        for schema_name in TENANT_SCHEMAS.values():
            dbapi_connection.execute(f"ATTACH DATABASE ':memory:' AS {schema_name}")

    init_db(engine)
    for schema_name in TENANT_SCHEMAS.values():
        provision_tenant_schema(engine, schema_name)

    yield engine

    engine.dispose()


@pytest.fixture
def db_session(engine):
    """Create test database session"""
    session = Session(bind=engine, expire_on_commit=False)

    yield session

    session.close()


@pytest.fixture
def clock():
    return FixedClock(FIXED_NOW)


@pytest.fixture
def redis_client():
    return FakeRedis()


@pytest.fixture
def cache(redis_client):
    return SyncCache(redis_client, prefix="test")


@pytest.fixture
def ledger(db_session, clock):
    return SyncLogLedger(db_session, clock=clock, max_retries=3)


@pytest.fixture
def switcher(engine, db_session):
    return TenantSchemaSwitcher(engine, db_session)


@pytest.fixture
def service(db_session, engine, cache, clock):
    return CrossTenantSyncService(db_session, engine, cache, clock=clock)


@pytest.fixture
def tenants(db_session):
    """Create the three test tenants"""
    records = [
        Tenant(id=tenant_id, name=tenant_id.title(), slug=tenant_id, schema_name=schema_name)
        for tenant_id, schema_name in TENANT_SCHEMAS.items()
    ]
    db_session.add_all(records)
    db_session.commit()
    return {tenant.id: tenant for tenant in records}


@pytest.fixture
def global_users(db_session, tenants):
    """Create global users with memberships in alpha/beta"""
    alice = GlobalUser(
        id="user-alice",
        name="Alice Alumna",
        email="alice@example.edu",
        profile_data={"graduation_year": 2015},
        preferences={"newsletter": True},
    )
    bob = GlobalUser(
        id="user-bob",
        name="Bob Graduate",
        email="bob@example.edu",
        profile_data={"graduation_year": 2018},
        preferences={},
    )
    db_session.add_all([alice, bob])
    db_session.add_all([
        UserTenantMembership(global_user_id="user-alice", tenant_id="tenant-alpha", status="active"),
        UserTenantMembership(global_user_id="user-alice", tenant_id="tenant-beta", status="active"),
        UserTenantMembership(global_user_id="user-bob", tenant_id="tenant-alpha", status="active"),
    ])
    db_session.commit()
    return {"alice": alice, "bob": bob}


@pytest.fixture
def global_course(db_session, tenants):
    """Create a global course offered by alpha (customized) and beta"""
    course = GlobalCourse(
        id="course-data-101",
        title="Data Literacy",
        description="Working with data",
        code="DATA101",
        credits=3.0,
        level="beginner",
        subject_area="data",
    )
    db_session.add(course)
    db_session.add_all([
        TenantCourseOffering(
            tenant_id="tenant-alpha",
            global_course_id=course.id,
            custom_title="Data Literacy for Alumni",
            status="active",
            capacity=40,
        ),
        TenantCourseOffering(tenant_id="tenant-beta", global_course_id=course.id, status="active"),
    ])
    db_session.commit()
    return course


@pytest.fixture
def make_log(db_session):
    """Insert a ledger entry directly in the given state"""

    def _make_log(
        status: SyncStatus = SyncStatus.COMPLETED,
        started_at: Optional[datetime] = None,
        sync_type: str = "user_sync",
        tenant_id: Optional[str] = "tenant-alpha",
        duration_seconds: int = 10,
        **fields
    ) -> DataSyncLog:
        started_at = started_at or FIXED_NOW - timedelta(hours=1)
        end = started_at + timedelta(seconds=duration_seconds)
        entry = DataSyncLog(
            id=fields.pop("id", str(uuid.uuid4())),
            sync_type=sync_type,
            operation="update",
            sync_direction=fields.pop("sync_direction", "global_to_tenant"),
            source_table="global_users",
            target_table="users",
            tenant_id=tenant_id,
            status=SyncStatus(status).value,
            retry_count=fields.pop("retry_count", 0),
            max_retries=fields.pop("max_retries", 3),
            priority=fields.pop("priority", 2),
            sync_data=fields.pop("sync_data", {}),
            sync_metadata=fields.pop("sync_metadata", {}),
            started_at=started_at,
            completed_at=end if status == SyncStatus.COMPLETED else None,
            failed_at=fields.pop("failed_at", end if status in (SyncStatus.FAILED, SyncStatus.CANCELLED) else None),
            created_at=started_at,
            **fields
        )
        db_session.add(entry)
        db_session.commit()
        return entry

    return _make_log
