from .sync_log import (
    DataSyncLog, SyncType, SyncOperationType, SyncDirection, SyncStatus, SyncPriority,
    RUNNING_STATUSES, TERMINAL_STATUSES, FAILED_STATUSES
)
from .global_data import (
    Tenant, GlobalUser, GlobalCourse, UserTenantMembership, TenantCourseOffering,
    SuperAdminAnalytics
)
from .tenant_tables import (
    tenant_users, tenant_courses, tenant_enrollments, tenant_analytics, TENANT_TABLES
)

__all__ = [
    "DataSyncLog",
    "SyncType",
    "SyncOperationType",
    "SyncDirection",
    "SyncStatus",
    "SyncPriority",
    "RUNNING_STATUSES",
    "TERMINAL_STATUSES",
    "FAILED_STATUSES",
    "Tenant",
    "GlobalUser",
    "GlobalCourse",
    "UserTenantMembership",
    "TenantCourseOffering",
    "SuperAdminAnalytics",
    "tenant_users",
    "tenant_courses",
    "tenant_enrollments",
    "tenant_analytics",
    "TENANT_TABLES",
]
