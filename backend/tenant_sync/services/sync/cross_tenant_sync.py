"""
Cross-Tenant Synchronization Service

Drives synchronization between the global partition and tenant schemas:

- global -> tenant projection of users and courses
- tenant -> global merge-back of user data and aggregation of enrollments
  and tenant analytics into super-admin analytics
- locked bidirectional passes per tenant
- re-execution of failed ledger entries for the retry manager

Every unit of work produces exactly one ledger entry. A failing unit is
recorded as a failed entry and reported as a ``UnitOutcome``; the loop then
moves on to the next unit.
"""

import logging
import traceback
from datetime import datetime
from functools import partial
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

from sqlalchemy import select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from tenant_sync.core.cache import SyncCache
from tenant_sync.core.config import Settings, settings as default_settings
from tenant_sync.core.exceptions import (
    SyncError, GlobalRecordNotFoundError, MissingOfferingError, UnsupportedSyncTypeError
)
from tenant_sync.models.global_data import (
    GlobalUser, GlobalCourse, UserTenantMembership, TenantCourseOffering, SuperAdminAnalytics
)
from tenant_sync.models.sync_log import (
    DataSyncLog, SyncType, SyncOperationType, SyncDirection, SyncPriority
)
from tenant_sync.models.tenant_tables import (
    tenant_users, tenant_courses, tenant_enrollments, tenant_analytics
)
from tenant_sync.services.sync.conflict_resolution import ConflictResolver, MergePolicy
from tenant_sync.services.sync.integrity_validator import IntegrityValidator
from tenant_sync.services.sync.ledger import SyncLogLedger
from tenant_sync.services.sync.monitor import SyncMonitor
from tenant_sync.services.sync.results import DirectionOutcome, SyncBatchResult, UnitOutcome
from tenant_sync.services.sync.schema_context import TenantContext, TenantSchemaSwitcher
from tenant_sync.services.sync.sync_lock import TenantSyncLock
from tenant_sync.utils import new_id, start_of_day, utcnow

logger = logging.getLogger(__name__)

DEFAULT_BIDIRECTIONAL_TYPES = (
    SyncType.USER_SYNC,
    SyncType.COURSE_SYNC,
    SyncType.ENROLLMENT_SYNC,
    SyncType.ANALYTICS_SYNC,
)

RetryExecutor = Callable[[DataSyncLog], Dict[str, Any]]
BidirectionalResult = Dict[str, Dict[str, DirectionOutcome]]


def _coalesce(*values):
    for value in values:
        if value is not None:
            return value
    return None


def coerce_sync_type(sync_type: Union[SyncType, str]) -> SyncType:
    try:
        return SyncType(sync_type)
    except ValueError:
        raise UnsupportedSyncTypeError(sync_type)


class CrossTenantSyncService:
    """
    Orchestrates synchronization between global data and tenant schemas.
    """

    def __init__(
        self,
        db: Session,
        engine: Engine,
        cache: SyncCache,
        clock: Callable[[], datetime] = utcnow,
        id_factory: Callable[[], str] = new_id,
        config: Settings = None,
        merge_policy: Optional[MergePolicy] = None,
    ):
        self.db = db
        self.engine = engine
        self.cache = cache
        self.clock = clock
        self.id_factory = id_factory
        self.config = config or default_settings

        self.ledger = SyncLogLedger(
            db, clock=clock, id_factory=id_factory,
            max_retries=self.config.SYNC_MAX_RETRY_ATTEMPTS
        )
        self.switcher = TenantSchemaSwitcher(engine, db)
        self.lock = TenantSyncLock(cache, ttl=self.config.SYNC_LOCK_TTL_SECONDS)
        self.conflict_resolver = ConflictResolver(
            self.ledger, self.switcher, db, clock=clock, merge_policy=merge_policy
        )
        self.integrity_validator = IntegrityValidator(db, self.switcher)
        self.monitor = SyncMonitor(
            self.ledger, cache, executor=self.execute_sync_log, clock=clock, config=self.config
        )

        self._global_to_tenant_handlers = {
            SyncType.USER_SYNC: self._push_tenant_users,
            SyncType.COURSE_SYNC: self._push_tenant_courses,
        }
        self._tenant_to_global_handlers = {
            SyncType.USER_SYNC: self._sync_tenant_users_to_global,
            SyncType.ENROLLMENT_SYNC: self._sync_tenant_enrollments_to_global,
            SyncType.ANALYTICS_SYNC: self._sync_tenant_analytics_to_global,
        }
        self._retry_executors: Dict[Tuple[SyncType, SyncDirection], RetryExecutor] = {
            (SyncType.USER_SYNC, SyncDirection.GLOBAL_TO_TENANT): self._retry_user_push,
            (SyncType.COURSE_SYNC, SyncDirection.GLOBAL_TO_TENANT): self._retry_course_push,
            (SyncType.USER_SYNC, SyncDirection.TENANT_TO_GLOBAL): self._retry_user_merge,
            (SyncType.ENROLLMENT_SYNC, SyncDirection.TENANT_TO_GLOBAL): self._retry_enrollment_aggregation,
            (SyncType.ANALYTICS_SYNC, SyncDirection.TENANT_TO_GLOBAL): self._retry_analytics_aggregation,
        }

    # === GLOBAL -> TENANT ===

    def sync_global_user_to_tenants(
        self,
        user: GlobalUser,
        tenant_ids: Optional[Iterable[str]] = None,
        batch_id: Optional[str] = None,
        sync_reason: str = "user_update",
        priority: Union[SyncPriority, int] = SyncPriority.NORMAL,
    ) -> SyncBatchResult:
        """
        Project a global user into each target tenant schema.

        Args:
            user: Canonical user record
            tenant_ids: Target tenants (defaults to the user's active memberships)
            batch_id: Batch to attach the ledger entries to
            sync_reason: Recorded in each entry's metadata
            priority: Retry ordering priority

        Returns:
            One outcome per target tenant
        """
        tenant_ids = list(tenant_ids) if tenant_ids is not None else user.tenant_ids
        batch = SyncBatchResult(batch_id or self.id_factory())

        for tenant_id in tenant_ids:
            entry = self.ledger.create_sync(
                SyncType.USER_SYNC,
                SyncOperationType.UPDATE,
                "global_users",
                "users",
                tenant_id,
                batch_id=batch.batch_id,
                source_record_id=user.id,
                sync_direction=SyncDirection.GLOBAL_TO_TENANT,
                priority=priority,
                metadata={'global_user_id': user.id, 'sync_reason': sync_reason},
            )
            batch.add(self._run_unit(entry, partial(self._push_user, user, tenant_id, entry)))

        logger.info(f"User {user.id} synced to tenants: {batch.summary()}")
        return batch

    def sync_global_course_to_tenants(
        self,
        course: GlobalCourse,
        tenant_ids: Optional[Iterable[str]] = None,
        batch_id: Optional[str] = None,
        sync_reason: str = "course_update",
        priority: Union[SyncPriority, int] = SyncPriority.NORMAL,
    ) -> SyncBatchResult:
        """
        Project a global course into each tenant that offers it.

        A tenant without a course offering yields a failed entry.
        """
        tenant_ids = list(tenant_ids) if tenant_ids is not None else course.tenant_ids
        batch = SyncBatchResult(batch_id or self.id_factory())

        for tenant_id in tenant_ids:
            entry = self.ledger.create_sync(
                SyncType.COURSE_SYNC,
                SyncOperationType.UPDATE,
                "global_courses",
                "courses",
                tenant_id,
                batch_id=batch.batch_id,
                source_record_id=course.id,
                sync_direction=SyncDirection.GLOBAL_TO_TENANT,
                priority=priority,
                metadata={'global_course_id': course.id, 'sync_reason': sync_reason},
            )
            batch.add(self._run_unit(entry, partial(self._push_course, course, tenant_id, entry)))

        logger.info(f"Course {course.id} synced to tenants: {batch.summary()}")
        return batch

    def sync_global_data_to_tenant(
        self,
        tenant_id: str,
        sync_type: Union[SyncType, str],
        batch_id: Optional[str] = None,
        **options
    ) -> SyncBatchResult:
        """Push every global record of ``sync_type`` that belongs to the tenant."""
        sync_type = coerce_sync_type(sync_type)
        handler = self._global_to_tenant_handlers.get(sync_type)
        if handler is None:
            raise UnsupportedSyncTypeError(sync_type.value, tenant_id=tenant_id)
        self.switcher.resolve_tenant(tenant_id)
        return handler(tenant_id, batch_id or self.id_factory(), **options)

    def _push_tenant_users(self, tenant_id: str, batch_id: str, **options) -> SyncBatchResult:
        users = self.db.execute(
            select(GlobalUser)
            .join(UserTenantMembership, UserTenantMembership.global_user_id == GlobalUser.id)
            .where(
                UserTenantMembership.tenant_id == tenant_id,
                UserTenantMembership.status == "active",
            )
            .order_by(GlobalUser.id)
        ).scalars().all()

        batch = SyncBatchResult(batch_id)
        for user in users:
            batch.extend(self.sync_global_user_to_tenants(user, [tenant_id], batch_id=batch_id, **options))
        return batch

    def _push_tenant_courses(self, tenant_id: str, batch_id: str, **options) -> SyncBatchResult:
        courses = self.db.execute(
            select(GlobalCourse)
            .join(TenantCourseOffering, TenantCourseOffering.global_course_id == GlobalCourse.id)
            .where(TenantCourseOffering.tenant_id == tenant_id)
            .order_by(GlobalCourse.id)
        ).scalars().all()

        batch = SyncBatchResult(batch_id)
        for course in courses:
            batch.extend(self.sync_global_course_to_tenants(course, [tenant_id], batch_id=batch_id, **options))
        return batch

    def _user_projection(self, user: GlobalUser) -> Dict[str, Any]:
        return {
            'global_user_id': user.id,
            'name': user.name,
            'email': user.email,
            'email_verified_at': user.email_verified_at,
            'profile_data': user.profile_data,
            'preferences': user.preferences,
            'updated_at': self.clock(),
        }

    def _course_projection(self, course: GlobalCourse, offering: TenantCourseOffering) -> Dict[str, Any]:
        return {
            'global_course_id': course.id,
            'title': _coalesce(offering.custom_title, course.title),
            'description': _coalesce(offering.custom_description, course.description),
            'code': _coalesce(offering.custom_code, course.code),
            'credits': _coalesce(offering.custom_credits, course.credits),
            'level': course.level,
            'subject_area': course.subject_area,
            'prerequisites': course.prerequisites,
            'learning_outcomes': course.learning_outcomes,
            'status': offering.status,
            'price': offering.price,
            'capacity': offering.capacity,
            'start_date': offering.start_date,
            'end_date': offering.end_date,
            'updated_at': self.clock(),
        }

    def _upsert_projection(
        self,
        context: TenantContext,
        table,
        key_column: str,
        data: Dict[str, Any]
    ) -> Tuple[bool, Any]:
        """Update the row matching ``key_column`` or insert a new one. Returns (created, row_id)."""
        existing = context.first(table, **{key_column: data[key_column]})
        if existing:
            context.update(table, existing['id'], data)
            return False, existing['id']

        data = dict(data, created_at=self.clock())
        return True, context.insert(table, data)

    def _record_upsert(self, entry: DataSyncLog, created: bool, row_id: Any) -> Dict[str, Any]:
        # target_record_id is only set once the tenant insert has committed
        if created:
            self.ledger.set_target_record(entry, row_id)
            return {'records_processed': 1, 'records_created': 1}
        return {'records_processed': 1, 'records_updated': 1}

    def _push_user(self, user: GlobalUser, tenant_id: str, entry: DataSyncLog) -> Dict[str, Any]:
        with self.switcher.tenant_context(tenant_id) as context:
            created, row_id = self._upsert_projection(
                context, tenant_users, 'global_user_id', self._user_projection(user)
            )
        return self._record_upsert(entry, created, row_id)

    def _push_course(self, course: GlobalCourse, tenant_id: str, entry: DataSyncLog) -> Dict[str, Any]:
        self.switcher.resolve_tenant(tenant_id)
        offering = self.db.execute(
            select(TenantCourseOffering).where(
                TenantCourseOffering.tenant_id == tenant_id,
                TenantCourseOffering.global_course_id == course.id,
            )
        ).scalar_one_or_none()
        if offering is None:
            raise MissingOfferingError(course.id, tenant_id)

        with self.switcher.tenant_context(tenant_id) as context:
            created, row_id = self._upsert_projection(
                context, tenant_courses, 'global_course_id', self._course_projection(course, offering)
            )
        return self._record_upsert(entry, created, row_id)

    # === TENANT -> GLOBAL ===

    def sync_tenant_data_to_global(
        self,
        tenant_id: str,
        sync_type: Union[SyncType, str],
        record_ids: Optional[List[Any]] = None,
        batch_id: Optional[str] = None,
        **options
    ) -> SyncBatchResult:
        """
        Merge tenant data back into the global partition.

        Raises:
            UnsupportedSyncTypeError: sync_type has no tenant-to-global flow
            TenantNotFoundError: tenant_id does not resolve
        """
        sync_type = coerce_sync_type(sync_type)
        handler = self._tenant_to_global_handlers.get(sync_type)
        if handler is None:
            raise UnsupportedSyncTypeError(sync_type.value, tenant_id=tenant_id)
        self.switcher.resolve_tenant(tenant_id)
        return handler(tenant_id, record_ids, batch_id or self.id_factory(), **options)

    def _sync_tenant_users_to_global(
        self,
        tenant_id: str,
        record_ids: Optional[List[Any]],
        batch_id: str,
        priority: Union[SyncPriority, int] = SyncPriority.NORMAL,
        **options
    ) -> SyncBatchResult:
        filters = {'id': record_ids} if record_ids else {}
        with self.switcher.tenant_context(tenant_id) as context:
            rows = context.select(tenant_users, **filters)

        batch = SyncBatchResult(batch_id)
        for row in rows:
            entry = self.ledger.create_sync(
                SyncType.USER_SYNC,
                SyncOperationType.UPDATE,
                "users",
                "global_users",
                tenant_id,
                batch_id=batch_id,
                source_record_id=row['id'],
                target_record_id=row.get('global_user_id'),
                sync_direction=SyncDirection.TENANT_TO_GLOBAL,
                priority=priority,
            )
            batch.add(self._run_unit(entry, partial(self._merge_user_to_global, tenant_id, row)))
        return batch

    def _merge_user_to_global(self, tenant_id: str, row: Dict[str, Any]) -> Dict[str, Any]:
        """Store the tenant-origin fields of a projection on its global user."""
        global_user_id = row.get('global_user_id')
        if not global_user_id:
            raise GlobalRecordNotFoundError(
                "No global user ID associated with tenant user",
                tenant_id=tenant_id,
                details={'tenant_user_id': row['id']},
            )
        user = self.db.get(GlobalUser, global_user_id)
        if user is None:
            raise GlobalRecordNotFoundError(
                f"Global user not found: {global_user_id}",
                tenant_id=tenant_id,
                details={'tenant_user_id': row['id']},
            )

        last_login = row.get('last_login_at')
        tenant_data = dict(user.tenant_data or {})
        tenant_data[tenant_id] = {
            'tenant_user_id': row['id'],
            'profile_data': row.get('profile_data'),
            'preferences': row.get('preferences'),
            'last_login_at': last_login.isoformat() if last_login else None,
            'synced_at': self.clock().isoformat(),
        }
        user.tenant_data = tenant_data
        self.db.commit()
        return {'records_processed': 1, 'records_updated': 1}

    def _sync_tenant_enrollments_to_global(
        self,
        tenant_id: str,
        record_ids: Optional[List[Any]],
        batch_id: str,
        priority: Union[SyncPriority, int] = SyncPriority.NORMAL,
        **options
    ) -> SyncBatchResult:
        entry = self.ledger.create_sync(
            SyncType.ENROLLMENT_SYNC,
            SyncOperationType.UPDATE,
            "enrollments",
            "super_admin_analytics",
            tenant_id,
            batch_id=batch_id,
            sync_direction=SyncDirection.TENANT_TO_GLOBAL,
            priority=priority,
            metadata={'record_ids': record_ids},
        )
        batch = SyncBatchResult(batch_id)
        batch.add(self._run_unit(
            entry, partial(self._aggregate_enrollments, tenant_id, record_ids, batch_id)
        ))
        return batch

    def _aggregate_enrollments(
        self,
        tenant_id: str,
        record_ids: Optional[List[Any]],
        batch_id: str
    ) -> Dict[str, Any]:
        e, c, u = tenant_enrollments, tenant_courses, tenant_users
        query = (
            select(e, c.c.global_course_id, u.c.global_user_id)
            .select_from(e.join(c, e.c.course_id == c.c.id).join(u, e.c.user_id == u.c.id))
        )
        if record_ids:
            query = query.where(e.c.id.in_(record_ids))

        with self.switcher.tenant_context(tenant_id) as context:
            enrollments = [dict(row) for row in context.session.execute(query).mappings()]

        metrics = {
            'total_enrollments': len(enrollments),
            'active_enrollments': sum(1 for row in enrollments if row['status'] == 'active'),
            'completed_enrollments': sum(1 for row in enrollments if row['status'] == 'completed'),
        }
        now = self.clock()
        for metric_type, value in metrics.items():
            self._upsert_metric(
                tenant_id, metric_type, 'daily', start_of_day(now), value,
                {'sync_batch_id': batch_id, 'last_sync_at': now.isoformat()},
            )
        self.db.commit()

        return {'records_processed': len(enrollments), 'metrics_updated': len(metrics)}

    def _sync_tenant_analytics_to_global(
        self,
        tenant_id: str,
        record_ids: Optional[List[Any]],
        batch_id: str,
        priority: Union[SyncPriority, int] = SyncPriority.NORMAL,
        **options
    ) -> SyncBatchResult:
        entry = self.ledger.create_sync(
            SyncType.ANALYTICS_SYNC,
            SyncOperationType.UPDATE,
            "tenant_analytics",
            "super_admin_analytics",
            tenant_id,
            batch_id=batch_id,
            sync_direction=SyncDirection.TENANT_TO_GLOBAL,
            priority=priority,
            metadata={'record_ids': record_ids},
        )
        batch = SyncBatchResult(batch_id)
        batch.add(self._run_unit(
            entry, partial(self._aggregate_tenant_analytics, tenant_id, record_ids, batch_id)
        ))
        return batch

    def _aggregate_tenant_analytics(
        self,
        tenant_id: str,
        record_ids: Optional[List[Any]],
        batch_id: str
    ) -> Dict[str, Any]:
        filters = {'id': record_ids} if record_ids else {}
        with self.switcher.tenant_context(tenant_id) as context:
            metrics = context.select(tenant_analytics, **filters)

        now = self.clock()
        for metric in metrics:
            metadata = dict(metric.get('metadata') or {})
            metadata.update({'sync_batch_id': batch_id, 'last_sync_at': now.isoformat()})
            self._upsert_metric(
                tenant_id,
                metric['metric_type'],
                metric['aggregation_period'],
                metric['period_start'],
                metric['metric_value'],
                metadata,
            )
        self.db.commit()

        return {'records_processed': len(metrics), 'metrics_updated': len(metrics)}

    def _upsert_metric(
        self,
        tenant_id: str,
        metric_type: str,
        aggregation_period: str,
        period_start: datetime,
        value: float,
        metadata: Dict[str, Any]
    ) -> SuperAdminAnalytics:
        row = self.db.execute(
            select(SuperAdminAnalytics).where(
                SuperAdminAnalytics.tenant_id == tenant_id,
                SuperAdminAnalytics.metric_type == metric_type,
                SuperAdminAnalytics.aggregation_period == aggregation_period,
                SuperAdminAnalytics.period_start == period_start,
            )
        ).scalar_one_or_none()

        if row is None:
            row = SuperAdminAnalytics(
                tenant_id=tenant_id,
                metric_type=metric_type,
                aggregation_period=aggregation_period,
                period_start=period_start,
            )
            self.db.add(row)
        row.metric_value = value
        row.analytics_metadata = metadata
        return row

    # === BIDIRECTIONAL PASS ===

    def perform_bidirectional_sync(
        self,
        tenant_id: str,
        sync_types: Optional[Iterable[Union[SyncType, str]]] = None,
        batch_id: Optional[str] = None,
        **options
    ) -> BidirectionalResult:
        """
        Run both directions for each sync type while holding the tenant lock.

        Errors are captured per direction; a failure in one direction or type
        never prevents the others from running, and the lock is always
        released.

        Raises:
            SyncInProgressError: another pass holds the lock for this tenant
        """
        sync_types = [coerce_sync_type(t) for t in (sync_types or DEFAULT_BIDIRECTIONAL_TYPES)]
        self.switcher.resolve_tenant(tenant_id)
        batch_id = batch_id or self.id_factory()

        self.lock.acquire(tenant_id)
        try:
            results: BidirectionalResult = {}
            for sync_type in sync_types:
                results[sync_type.value] = {
                    'global_to_tenant': self._run_direction(
                        self._global_to_tenant_handlers, tenant_id, sync_type,
                        lambda handler: handler(tenant_id, batch_id, **options)
                    ),
                    'tenant_to_global': self._run_direction(
                        self._tenant_to_global_handlers, tenant_id, sync_type,
                        lambda handler: handler(tenant_id, None, batch_id, **options)
                    ),
                }
            logger.info(f"Bidirectional sync for tenant {tenant_id} finished (batch {batch_id})")
            return results
        finally:
            self.lock.release(tenant_id)

    def _run_direction(
        self,
        handlers: Dict[SyncType, Callable[..., SyncBatchResult]],
        tenant_id: str,
        sync_type: SyncType,
        invoke: Callable[[Callable[..., SyncBatchResult]], SyncBatchResult]
    ) -> DirectionOutcome:
        handler = handlers.get(sync_type)
        if handler is None:
            return DirectionOutcome(skipped=True)
        try:
            return DirectionOutcome(result=invoke(handler))
        except Exception as exc:
            self.db.rollback()
            logger.error(
                f"{sync_type.value} direction failed for tenant {tenant_id}: {exc}",
                exc_info=True,
            )
            return DirectionOutcome(error=str(exc))

    # === UNIT EXECUTION ===

    def _failure_context(self, exc: Exception) -> Dict[str, Any]:
        context = {
            'exception': type(exc).__name__,
            'trace': traceback.format_exc(),
        }
        if isinstance(exc, SyncError):
            context['error'] = exc.to_dict()
        return context

    def _run_unit(self, entry: DataSyncLog, work: Callable[[], Dict[str, Any]]) -> UnitOutcome:
        """
        Start, run and complete one unit of work.

        Any failure is recorded on the entry and returned as a failed outcome.
        """
        try:
            self.ledger.start(entry)
            stats = work()
            self.ledger.complete(entry, stats)
            return UnitOutcome(entry=entry, succeeded=True)
        except Exception as exc:
            self.db.rollback()
            self.ledger.fail(entry, str(exc), self._failure_context(exc))
            logger.error(
                f"{entry.sync_type} ({entry.sync_direction}) failed for tenant {entry.tenant_id}: {exc}"
            )
            return UnitOutcome(
                entry=entry, succeeded=False, error=str(exc), error_type=type(exc).__name__
            )

    # === RETRY DISPATCH ===

    def register_retry_executor(
        self,
        sync_type: Union[SyncType, str],
        direction: Union[SyncDirection, str],
        executor: RetryExecutor
    ) -> None:
        """Register how a failed entry of this type and direction is re-executed."""
        self._retry_executors[(coerce_sync_type(sync_type), SyncDirection(direction))] = executor

    def execute_sync_log(self, entry: DataSyncLog) -> DataSyncLog:
        """
        Re-execute the operation recorded by ``entry``.

        Exceptions propagate so the retry manager can record them.
        """
        key = (coerce_sync_type(entry.sync_type), SyncDirection(entry.sync_direction))
        executor = self._retry_executors.get(key)
        if executor is None:
            raise UnsupportedSyncTypeError(
                f"{entry.sync_type}/{entry.sync_direction}", tenant_id=entry.tenant_id
            )

        self.ledger.start(entry)
        stats = executor(entry)
        return self.ledger.complete(entry, stats)

    def _retry_user_push(self, entry: DataSyncLog) -> Dict[str, Any]:
        user = self.db.get(GlobalUser, entry.source_record_id)
        if user is None:
            raise GlobalRecordNotFoundError(
                f"Global user not found: {entry.source_record_id}", tenant_id=entry.tenant_id
            )
        return self._push_user(user, entry.tenant_id, entry)

    def _retry_course_push(self, entry: DataSyncLog) -> Dict[str, Any]:
        course = self.db.get(GlobalCourse, entry.source_record_id)
        if course is None:
            raise GlobalRecordNotFoundError(
                f"Global course not found: {entry.source_record_id}", tenant_id=entry.tenant_id
            )
        return self._push_course(course, entry.tenant_id, entry)

    def _retry_user_merge(self, entry: DataSyncLog) -> Dict[str, Any]:
        with self.switcher.tenant_context(entry.tenant_id) as context:
            row = context.first(tenant_users, id=int(entry.source_record_id))
        if row is None:
            raise GlobalRecordNotFoundError(
                f"Tenant user not found: {entry.source_record_id}", tenant_id=entry.tenant_id
            )
        return self._merge_user_to_global(entry.tenant_id, row)

    def _retry_enrollment_aggregation(self, entry: DataSyncLog) -> Dict[str, Any]:
        record_ids = (entry.sync_metadata or {}).get('record_ids')
        return self._aggregate_enrollments(entry.tenant_id, record_ids, entry.batch_id)

    def _retry_analytics_aggregation(self, entry: DataSyncLog) -> Dict[str, Any]:
        record_ids = (entry.sync_metadata or {}).get('record_ids')
        return self._aggregate_tenant_analytics(entry.tenant_id, record_ids, entry.batch_id)

    # === CONFLICTS, INTEGRITY AND MONITORING ===

    def resolve_data_conflicts(
        self,
        tenant_id: str,
        conflict_type: str,
        conflict_data: Dict[str, Any],
        resolution_strategy: str = "global_wins"
    ) -> Dict[str, Any]:
        return self.conflict_resolver.resolve(tenant_id, conflict_type, conflict_data, resolution_strategy)

    def validate_data_integrity(
        self,
        tenant_id: Optional[str] = None,
        validation_types: Optional[Iterable[str]] = None
    ) -> Dict[str, Dict[str, Dict[str, Any]]]:
        return self.integrity_validator.validate(tenant_id, validation_types)

    def get_sync_status(self, tenant_id: Optional[str] = None, hours: Optional[int] = None, use_cache: bool = False):
        return self.monitor.get_sync_status(tenant_id, hours, use_cache=use_cache)

    def retry_failed_syncs(
        self,
        tenant_id: Optional[str] = None,
        sync_types: Optional[Iterable[str]] = None,
        limit: Optional[int] = None
    ) -> SyncBatchResult:
        return self.monitor.retry_failed_syncs(tenant_id, sync_types, limit)

    def cleanup_sync_data(self, days_to_keep: Optional[int] = None, dry_run: bool = False) -> Dict[str, Any]:
        return self.monitor.cleanup_sync_data(days_to_keep, dry_run)

    def get_batch_status(self, batch_id: str) -> Dict[str, Any]:
        return self.ledger.get_batch_status(batch_id)
