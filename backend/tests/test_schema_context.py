"""
Test cases for tenant schema context switching
"""

import pytest

from tenant_sync.core.exceptions import InvalidStateError, TenantNotFoundError
from tenant_sync.models import tenant_users


def _insert_user(context, email="someone@example.edu", **values):
    return context.insert(tenant_users, {"name": "Someone", "email": email, **values})


class TestTenantContext:
    """Test scoped tenant context behaviour"""

    def test_writes_land_in_tenant_schema_only(self, switcher, tenants):
        with switcher.tenant_context("tenant-alpha") as context:
            _insert_user(context)
            assert context.schema_name == "tenant_alpha"

        with switcher.tenant_context("tenant-alpha") as context:
            assert context.count(tenant_users) == 1
        with switcher.tenant_context("tenant-beta") as context:
            assert context.count(tenant_users) == 0

    def test_unknown_tenant_raises(self, switcher, tenants):
        with pytest.raises(TenantNotFoundError) as exc_info:
            with switcher.tenant_context("tenant-missing"):
                pass

        assert "tenant-missing" in str(exc_info.value)
        assert switcher.active_context is None

    def test_context_restored_after_error(self, switcher, tenants):
        """A failing block rolls back its writes and releases the context"""
        with pytest.raises(RuntimeError):
            with switcher.tenant_context("tenant-alpha") as context:
                _insert_user(context)
                raise RuntimeError("boom")

        assert switcher.active_context is None
        with switcher.tenant_context("tenant-alpha") as context:
            assert context.count(tenant_users) == 0

    def test_nesting_is_rejected(self, switcher, tenants):
        with switcher.tenant_context("tenant-alpha"):
            with pytest.raises(InvalidStateError):
                with switcher.tenant_context("tenant-beta"):
                    pass
            assert switcher.active_context.tenant_id == "tenant-alpha"

        assert switcher.active_context is None

    def test_with_tenant_context_returns_result(self, switcher, tenants):
        row_id = switcher.with_tenant_context("tenant-gamma", _insert_user)

        assert row_id == 1
        assert switcher.resolve_schema("tenant-gamma") == "tenant_gamma"


class TestContextHelpers:
    """Test query helpers bound to a tenant context"""

    def test_select_update_delete(self, switcher, tenants):
        with switcher.tenant_context("tenant-alpha") as context:
            first = _insert_user(context, email="a@example.edu", global_user_id="g-1")
            second = _insert_user(context, email="b@example.edu", global_user_id="g-2")

            assert context.update(tenant_users, first, {"name": "Renamed"}) == 1
            assert context.first(tenant_users, global_user_id="g-1")["name"] == "Renamed"
            assert [r["id"] for r in context.select(tenant_users, id=[first, second])] == [first, second]

            assert context.delete(tenant_users, id=second) == 1
            assert context.first(tenant_users, global_user_id="g-2") is None
            assert context.count(tenant_users) == 1
