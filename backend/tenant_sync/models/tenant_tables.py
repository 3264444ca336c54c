"""
Tenant-partition projection tables.

Declared on ``tenant_metadata`` under the placeholder schema; a tenant
context translates the placeholder into the tenant's real schema. The
``global_*_id`` columns are correlation back-references only, never
foreign keys across partitions.
"""

from sqlalchemy import (
    Column, Integer, String, DateTime, Text, JSON, Float, Numeric, Date, Table
)

from tenant_sync.core.database import tenant_metadata


tenant_users = Table(
    "users",
    tenant_metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("global_user_id", String(36), nullable=True, index=True),
    Column("name", String(255), nullable=False),
    Column("email", String(255), nullable=False),
    Column("email_verified_at", DateTime, nullable=True),
    Column("profile_data", JSON, nullable=True),
    Column("preferences", JSON, nullable=True),
    Column("last_login_at", DateTime, nullable=True),
    Column("created_at", DateTime, nullable=True),
    Column("updated_at", DateTime, nullable=True),
)

tenant_courses = Table(
    "courses",
    tenant_metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("global_course_id", String(36), nullable=True, index=True),
    Column("title", String(255), nullable=False),
    Column("description", Text, nullable=True),
    Column("code", String(50), nullable=True),
    Column("credits", Float, nullable=True),
    Column("level", String(50), nullable=True),
    Column("subject_area", String(100), nullable=True),
    Column("prerequisites", JSON, nullable=True),
    Column("learning_outcomes", JSON, nullable=True),
    Column("status", String(20), nullable=True),
    Column("price", Numeric(10, 2), nullable=True),
    Column("capacity", Integer, nullable=True),
    Column("start_date", Date, nullable=True),
    Column("end_date", Date, nullable=True),
    Column("created_at", DateTime, nullable=True),
    Column("updated_at", DateTime, nullable=True),
)

tenant_enrollments = Table(
    "enrollments",
    tenant_metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("course_id", Integer, nullable=False, index=True),
    Column("status", String(20), nullable=False, default="active"),
    Column("progress", Float, nullable=True),
    Column("enrolled_at", DateTime, nullable=True),
    Column("completed_at", DateTime, nullable=True),
)

tenant_analytics = Table(
    "tenant_analytics",
    tenant_metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("metric_type", String(100), nullable=False),
    Column("aggregation_period", String(20), nullable=False, default="daily"),
    Column("period_start", DateTime, nullable=False),
    Column("metric_value", Float, nullable=False, default=0),
    Column("metadata", JSON, nullable=True),
)

TENANT_TABLES = {
    table.name: table
    for table in (tenant_users, tenant_courses, tenant_enrollments, tenant_analytics)
}

ENROLLMENT_STATUSES = ("active", "completed", "dropped", "pending")
