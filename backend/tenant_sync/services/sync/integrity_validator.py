"""
Data Integrity Validator

Read-only consistency checks between the global partition and tenant
projections, reported per tenant and per check type.
"""

import logging
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from sqlalchemy import select
from sqlalchemy.orm import Session

from tenant_sync.models.global_data import (
    GlobalCourse, GlobalUser, Tenant, TenantCourseOffering, UserTenantMembership
)
from tenant_sync.models.tenant_tables import (
    ENROLLMENT_STATUSES, tenant_courses, tenant_enrollments, tenant_users
)
from tenant_sync.services.sync.schema_context import TenantSchemaSwitcher

logger = logging.getLogger(__name__)


class ValidationType(str, Enum):
    USER_CONSISTENCY = "user_consistency"
    COURSE_CONSISTENCY = "course_consistency"
    ENROLLMENT_CONSISTENCY = "enrollment_consistency"
    MEMBERSHIP_CONSISTENCY = "membership_consistency"


@dataclass
class IntegrityIssue:
    """A single inconsistency found by a check."""
    issue_type: str
    message: str
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class IntegrityValidator:
    """
    Validates that tenant projections agree with the global partition.

    Checks never write. A check that raises is reported with status
    ``error`` and does not stop the remaining checks.
    """

    def __init__(self, db: Session, switcher: TenantSchemaSwitcher):
        self.db = db
        self.switcher = switcher
        self._checks: Dict[ValidationType, Callable[[str], List[IntegrityIssue]]] = {
            ValidationType.USER_CONSISTENCY: self._validate_user_consistency,
            ValidationType.COURSE_CONSISTENCY: self._validate_course_consistency,
            ValidationType.ENROLLMENT_CONSISTENCY: self._validate_enrollment_consistency,
            ValidationType.MEMBERSHIP_CONSISTENCY: self._validate_membership_consistency,
        }

    def validate(
        self,
        tenant_id: Optional[str] = None,
        validation_types: Optional[Iterable[Union[ValidationType, str]]] = None
    ) -> Dict[str, Dict[str, Dict[str, Any]]]:
        """
        Run the requested checks for one tenant, or for every tenant.

        Returns:
            ``{tenant_id: {validation_type: {"status": ..., ...}}}``
        """
        validation_types = list(validation_types or ValidationType)
        if tenant_id:
            tenant_ids = [tenant_id]
        else:
            tenant_ids = list(self.db.execute(select(Tenant.id).order_by(Tenant.id)).scalars())

        results: Dict[str, Dict[str, Dict[str, Any]]] = {}
        for current_tenant in tenant_ids:
            tenant_results = results.setdefault(current_tenant, {})
            for requested in validation_types:
                key = getattr(requested, 'value', requested)
                try:
                    check = self._checks[ValidationType(key)]
                except ValueError:
                    tenant_results[key] = {'status': 'unknown_validation_type'}
                    continue

                try:
                    issues = check(current_tenant)
                except Exception as exc:
                    self.db.rollback()
                    logger.error(f"Integrity check {key} failed for tenant {current_tenant}: {exc}")
                    tenant_results[key] = {'status': 'error', 'message': str(exc)}
                    continue

                tenant_results[key] = {
                    'status': 'invalid' if issues else 'valid',
                    'issues': [issue.to_dict() for issue in issues],
                }
                if issues:
                    logger.warning(f"{len(issues)} {key} issues found for tenant {current_tenant}")

        return results

    def _validate_user_consistency(self, tenant_id: str) -> List[IntegrityIssue]:
        with self.switcher.tenant_context(tenant_id) as context:
            projections = context.select(tenant_users)

        global_ids = {row['global_user_id'] for row in projections if row['global_user_id']}
        users = {}
        if global_ids:
            users = {
                user.id: user
                for user in self.db.execute(
                    select(GlobalUser).where(GlobalUser.id.in_(global_ids))
                ).scalars()
            }

        issues = []
        for row in projections:
            global_id = row['global_user_id']
            if not global_id:
                issues.append(IntegrityIssue(
                    'missing_global_reference',
                    f"Tenant user {row['id']} has no global user reference",
                    {'tenant_user_id': row['id']},
                ))
                continue

            user = users.get(global_id)
            if user is None:
                issues.append(IntegrityIssue(
                    'orphaned_projection',
                    f"Tenant user {row['id']} references missing global user {global_id}",
                    {'tenant_user_id': row['id'], 'global_user_id': global_id},
                ))
            elif (row['email'] or '').lower() != (user.email or '').lower():
                issues.append(IntegrityIssue(
                    'email_mismatch',
                    f"Email of tenant user {row['id']} differs from global user {global_id}",
                    {
                        'tenant_user_id': row['id'],
                        'global_user_id': global_id,
                        'tenant_email': row['email'],
                        'global_email': user.email,
                    },
                ))
        return issues

    def _validate_course_consistency(self, tenant_id: str) -> List[IntegrityIssue]:
        with self.switcher.tenant_context(tenant_id) as context:
            projections = context.select(tenant_courses)

        global_ids = {row['global_course_id'] for row in projections if row['global_course_id']}
        existing = set()
        if global_ids:
            existing = set(self.db.execute(
                select(GlobalCourse.id).where(GlobalCourse.id.in_(global_ids))
            ).scalars())
        offered = set(self.db.execute(
            select(TenantCourseOffering.global_course_id)
            .where(TenantCourseOffering.tenant_id == tenant_id)
        ).scalars())

        issues = []
        for row in projections:
            global_id = row['global_course_id']
            if not global_id or global_id not in existing:
                issues.append(IntegrityIssue(
                    'orphaned_projection',
                    f"Tenant course {row['id']} references missing global course {global_id}",
                    {'tenant_course_id': row['id'], 'global_course_id': global_id},
                ))
            elif global_id not in offered:
                issues.append(IntegrityIssue(
                    'missing_offering',
                    f"Tenant course {row['id']} has no offering for global course {global_id}",
                    {'tenant_course_id': row['id'], 'global_course_id': global_id},
                ))
        return issues

    def _validate_enrollment_consistency(self, tenant_id: str) -> List[IntegrityIssue]:
        with self.switcher.tenant_context(tenant_id) as context:
            enrollments = context.select(tenant_enrollments)
            user_ids = {row['id'] for row in context.select(tenant_users)}
            course_ids = {row['id'] for row in context.select(tenant_courses)}

        issues = []
        for row in enrollments:
            details = {'enrollment_id': row['id'], 'user_id': row['user_id'], 'course_id': row['course_id']}
            if row['user_id'] not in user_ids:
                issues.append(IntegrityIssue(
                    'missing_user', f"Enrollment {row['id']} references missing user {row['user_id']}", details
                ))
            if row['course_id'] not in course_ids:
                issues.append(IntegrityIssue(
                    'missing_course', f"Enrollment {row['id']} references missing course {row['course_id']}", details
                ))
            if row['status'] not in ENROLLMENT_STATUSES:
                issues.append(IntegrityIssue(
                    'invalid_status',
                    f"Enrollment {row['id']} has invalid status '{row['status']}'",
                    dict(details, status=row['status']),
                ))
        return issues

    def _validate_membership_consistency(self, tenant_id: str) -> List[IntegrityIssue]:
        with self.switcher.tenant_context(tenant_id) as context:
            projected = {
                row['global_user_id'] for row in context.select(tenant_users) if row['global_user_id']
            }

        members = set(self.db.execute(
            select(UserTenantMembership.global_user_id).where(
                UserTenantMembership.tenant_id == tenant_id,
                UserTenantMembership.status == "active",
            )
        ).scalars())

        issues = [
            IntegrityIssue(
                'missing_projection',
                f"Active member {user_id} has no tenant user",
                {'global_user_id': user_id},
            )
            for user_id in sorted(members - projected)
        ]
        issues.extend(
            IntegrityIssue(
                'projection_without_membership',
                f"Tenant user for {user_id} has no active membership",
                {'global_user_id': user_id},
            )
            for user_id in sorted(projected - members)
        )
        return issues
