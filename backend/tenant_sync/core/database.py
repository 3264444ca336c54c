from typing import Generator, Optional

from sqlalchemy import MetaData, create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.schema import CreateSchema

from tenant_sync.core.config import settings

# Placeholder schema used by every tenant-partition table. A tenant context
# maps it onto the tenant's real schema via ``schema_translate_map``.
TENANT_SCHEMA_PLACEHOLDER = "tenant"


class Base(DeclarativeBase):
    metadata = MetaData(
        naming_convention={
            "ix": "ix_%(column_0_label)s",
            "uq": "uq_%(table_name)s_%(column_0_name)s",
            "ck": "ck_%(table_name)s_%(constraint_name)s",
            "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
            "pk": "pk_%(table_name)s"
        }
    )


tenant_metadata = MetaData(schema=TENANT_SCHEMA_PLACEHOLDER)

_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None


def get_engine() -> Engine:
    """Return the module-level engine, creating it on first call."""
    global _engine
    if _engine is None:
        _engine = create_engine(
            settings.DATABASE_URL,
            echo=settings.DATABASE_ECHO,
            pool_pre_ping=True,
        )
    return _engine


def get_session_factory() -> sessionmaker:
    global _session_factory
    if _session_factory is None:
        _session_factory = sessionmaker(
            bind=get_engine(),
            class_=Session,
            expire_on_commit=False,
        )
    return _session_factory


def get_db() -> Generator[Session, None, None]:
    session = get_session_factory()()
    try:
        yield session
    finally:
        session.close()


def init_db(engine: Optional[Engine] = None) -> None:
    """Create the global-partition tables."""
    # Import models so the metadata is populated before create_all
    import tenant_sync.models  # noqa: F401

    Base.metadata.create_all(engine or get_engine())


def provision_tenant_schema(engine: Engine, schema_name: str) -> None:
    """
    Create a tenant schema and its projection tables.

    Dialects without ``CREATE SCHEMA`` (SQLite) are expected to have the
    schema attached already.
    """
    import tenant_sync.models.tenant_tables  # noqa: F401

    with engine.connect() as conn:
        if conn.dialect.name != "sqlite":
            conn.execute(CreateSchema(schema_name, if_not_exists=True))
        tenant_conn = conn.execution_options(
            schema_translate_map={TENANT_SCHEMA_PLACEHOLDER: schema_name}
        )
        tenant_metadata.create_all(tenant_conn)
        conn.commit()
