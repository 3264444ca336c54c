"""
Test cases for sync error metadata
"""

from unittest.mock import patch

from tenant_sync.core.exceptions import MissingOfferingError, SyncErrorCategory, TenantNotFoundError

from conftest import FIXED_NOW


class TestSyncError:
    """Test error serialization for ledger details"""

    def test_to_dict_uses_package_clock(self):
        with patch("tenant_sync.core.exceptions.utcnow", return_value=FIXED_NOW):
            error = TenantNotFoundError("tenant-missing")

        assert error.to_dict() == {
            'error': 'TenantNotFoundError',
            'message': 'Tenant not found: tenant-missing',
            'category': SyncErrorCategory.TENANT,
            'tenant_id': 'tenant-missing',
            'details': {},
            'retryable': False,
            'timestamp': FIXED_NOW.isoformat(),
        }

    def test_timestamp_is_naive_utc(self):
        error = MissingOfferingError("course-data-101", "tenant-beta")

        assert error.timestamp.tzinfo is None
        assert error.retryable is True
        assert error.global_course_id == "course-data-101"
