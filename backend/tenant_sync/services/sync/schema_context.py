"""
Schema Context Switcher

Makes a tenant's schema the target of reads and writes for the duration of a
``with`` block. The switch is carried by a dedicated session whose engine
translates the placeholder tenant schema into the tenant's real schema, so
the default (global) session is never re-pointed and nothing needs to be
restored by hand when the block exits, successfully or not.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Optional, TypeVar

from sqlalchemy import Table, select, insert, update, delete, func
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from tenant_sync.core.database import TENANT_SCHEMA_PLACEHOLDER
from tenant_sync.core.exceptions import InvalidStateError, TenantNotFoundError
from tenant_sync.models.global_data import Tenant

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class TenantContext:
    """Active tenant partition: query helpers bound to the tenant schema."""
    tenant: Tenant
    session: Session

    @property
    def tenant_id(self) -> str:
        return self.tenant.id

    @property
    def schema_name(self) -> str:
        return self.tenant.schema_name

    def _where(self, query, table: Table, filters: Dict[str, Any]):
        for column, value in filters.items():
            if isinstance(value, (list, tuple, set)):
                query = query.where(table.c[column].in_(list(value)))
            else:
                query = query.where(table.c[column] == value)
        return query

    def select(self, table: Table, **filters) -> List[Dict[str, Any]]:
        query = self._where(select(table), table, filters).order_by(table.c.id)
        return [dict(row) for row in self.session.execute(query).mappings()]

    def first(self, table: Table, **filters) -> Optional[Dict[str, Any]]:
        query = self._where(select(table), table, filters).order_by(table.c.id).limit(1)
        row = self.session.execute(query).mappings().first()
        return dict(row) if row is not None else None

    def count(self, table: Table, **filters) -> int:
        query = self._where(select(func.count()).select_from(table), table, filters)
        return self.session.execute(query).scalar_one()

    def insert(self, table: Table, values: Dict[str, Any]) -> Any:
        result = self.session.execute(insert(table).values(**values))
        return result.inserted_primary_key[0]

    def update(self, table: Table, row_id: Any, values: Dict[str, Any]) -> int:
        result = self.session.execute(
            update(table).where(table.c.id == row_id).values(**values)
        )
        return result.rowcount

    def delete(self, table: Table, **filters) -> int:
        result = self.session.execute(self._where(delete(table), table, filters))
        return result.rowcount


class TenantSchemaSwitcher:
    """
    Resolves tenants and opens single-level tenant contexts.

    One switcher belongs to one execution unit; concurrent workers each
    build their own.
    """

    def __init__(self, engine: Engine, db: Session):
        self.engine = engine
        self.db = db
        self._active: Optional[TenantContext] = None

    def resolve_tenant(self, tenant_id: str) -> Tenant:
        tenant = self.db.get(Tenant, tenant_id)
        if tenant is None or not tenant.schema_name:
            raise TenantNotFoundError(tenant_id)
        return tenant

    def resolve_schema(self, tenant_id: str) -> str:
        return self.resolve_tenant(tenant_id).schema_name

    @property
    def active_context(self) -> Optional[TenantContext]:
        return self._active

    @contextmanager
    def tenant_context(self, tenant_id: str) -> Iterator[TenantContext]:
        """
        Open a tenant context.

        Commits tenant writes when the block succeeds, rolls them back when
        it raises, and always releases the tenant session.
        """
        if self._active is not None:
            raise InvalidStateError(
                f"Tenant context for {self._active.tenant_id} already active; nesting is not supported",
                tenant_id=tenant_id,
            )

        tenant = self.resolve_tenant(tenant_id)
        tenant_engine = self.engine.execution_options(
            schema_translate_map={TENANT_SCHEMA_PLACEHOLDER: tenant.schema_name}
        )
        session = Session(bind=tenant_engine, expire_on_commit=False)
        context = TenantContext(tenant=tenant, session=session)
        self._active = context
        logger.debug(f"Switched to tenant schema {tenant.schema_name}")

        try:
            yield context
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
            self._active = None
            logger.debug(f"Restored default schema after tenant {tenant_id}")

    def with_tenant_context(self, tenant_id: str, fn: Callable[[TenantContext], T]) -> T:
        with self.tenant_context(tenant_id) as context:
            return fn(context)
