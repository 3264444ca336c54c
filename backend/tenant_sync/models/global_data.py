"""
Global-partition models: tenants and the canonical, tenant-independent records
that the sync engine projects into tenant schemas.
"""

from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Text, JSON, Numeric, Date,
    ForeignKey, UniqueConstraint, Float
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from tenant_sync.core.database import Base


class Tenant(Base):
    """A logical data partition and its schema identifier."""

    __tablename__ = "tenants"

    id = Column(String(36), primary_key=True)
    name = Column(String(255), nullable=False)
    slug = Column(String(100), unique=True, nullable=True)
    domain = Column(String(255), nullable=True)
    schema_name = Column(String(63), unique=True, nullable=False)
    status = Column(String(20), nullable=False, default="active")
    settings = Column(JSON, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, onupdate=func.now())

    def __repr__(self):
        return f"<Tenant(id={self.id}, schema_name={self.schema_name})>"


class GlobalUser(Base):
    __tablename__ = "global_users"

    id = Column(String(36), primary_key=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)
    email_verified_at = Column(DateTime, nullable=True)
    status = Column(String(20), nullable=False, default="active")
    profile_data = Column(JSON, nullable=True)
    preferences = Column(JSON, nullable=True)
    # Tenant-origin fields merged back from tenant projections, keyed by tenant id
    tenant_data = Column(JSON, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, onupdate=func.now())

    memberships = relationship("UserTenantMembership", back_populates="user")

    @property
    def tenant_ids(self):
        return [m.tenant_id for m in self.memberships if m.status == "active"]


class GlobalCourse(Base):
    __tablename__ = "global_courses"

    id = Column(String(36), primary_key=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    code = Column(String(50), nullable=True)
    credits = Column(Float, nullable=True)
    level = Column(String(50), nullable=True)
    subject_area = Column(String(100), nullable=True)
    prerequisites = Column(JSON, nullable=True)
    learning_outcomes = Column(JSON, nullable=True)
    status = Column(String(20), nullable=False, default="published")

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, onupdate=func.now())

    offerings = relationship("TenantCourseOffering", back_populates="course")

    @property
    def tenant_ids(self):
        seen = []
        for offering in self.offerings:
            if offering.tenant_id not in seen:
                seen.append(offering.tenant_id)
        return seen


class UserTenantMembership(Base):
    __tablename__ = "user_tenant_memberships"

    id = Column(Integer, primary_key=True, autoincrement=True)
    global_user_id = Column(String(36), ForeignKey("global_users.id"), nullable=False, index=True)
    tenant_id = Column(String(36), ForeignKey("tenants.id"), nullable=False, index=True)
    role = Column(String(50), nullable=False, default="alumni")
    status = Column(String(20), nullable=False, default="active")
    joined_at = Column(DateTime, nullable=True)

    user = relationship("GlobalUser", back_populates="memberships")

    __table_args__ = (
        UniqueConstraint("global_user_id", "tenant_id", name="uq_membership_user_tenant"),
    )


class TenantCourseOffering(Base):
    """A tenant's localized view of a global course."""

    __tablename__ = "tenant_course_offerings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(String(36), ForeignKey("tenants.id"), nullable=False, index=True)
    global_course_id = Column(String(36), ForeignKey("global_courses.id"), nullable=False, index=True)

    custom_title = Column(String(255), nullable=True)
    custom_description = Column(Text, nullable=True)
    custom_code = Column(String(50), nullable=True)
    custom_credits = Column(Float, nullable=True)

    status = Column(String(20), nullable=False, default="active")
    price = Column(Numeric(10, 2), nullable=True)
    capacity = Column(Integer, nullable=True)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    is_featured = Column(Boolean, default=False)

    course = relationship("GlobalCourse", back_populates="offerings")

    __table_args__ = (
        UniqueConstraint("tenant_id", "global_course_id", name="uq_offering_tenant_course"),
    )


class SuperAdminAnalytics(Base):
    """Aggregated metric rows upserted by the tenant-to-global sync paths."""

    __tablename__ = "super_admin_analytics"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(String(36), nullable=False, index=True)
    metric_type = Column(String(100), nullable=False)
    aggregation_period = Column(String(20), nullable=False, default="daily")
    period_start = Column(DateTime, nullable=False)
    metric_value = Column(Float, nullable=False, default=0)
    analytics_metadata = Column("metadata", JSON, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, onupdate=func.now())

    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "metric_type", "aggregation_period", "period_start",
            name="uq_super_admin_analytics_metric_period"
        ),
    )
