"""Fixtures for request handling tests."""

import logging

import pytest
import structlog

from fakes import FakeTenantPool, result
from tenantsql.config.models import PoolConfig, SchemaCacheConfig
from tenantsql.database.history import InMemoryHistorySink, QueryHistoryLogger
from tenantsql.database.introspection import SchemaIntrospector
from tenantsql.database.registry import ConnectionPoolRegistry
from tenantsql.database.tenants import StaticTenantRegistry
from tenantsql.service import TenantDataService


def _column(table, column, data_type, nullable="YES", default=None, constraint=None):
    return {
        "table_name": table,
        "column_name": column,
        "data_type": data_type,
        "is_nullable": nullable,
        "column_default": default,
        "constraint_type": constraint,
        "foreign_table": None,
        "foreign_column": None,
    }


CATALOG = [
    _column("memberships", "a", "integer", "NO", constraint="PRIMARY KEY"),
    _column("memberships", "b", "integer", "NO", constraint="PRIMARY KEY"),
    _column("memberships", "role", "text", "NO"),
    _column("users", "id", "integer", "NO", "nextval('users_id_seq'::regclass)", "PRIMARY KEY"),
    _column("users", "email", "text", "NO", constraint="UNIQUE"),
    _column("users", "name", "character varying"),
    _column("users", "created_at", "timestamp with time zone", "YES", "now()"),
]


class TenantBackend:
    """Shared state behind every fake tenant pool the registry creates.

    Tests set ``handler`` to decide statement outcomes and inspect ``pools``
    to see what reached each tenant.
    """

    def __init__(self):
        self.handler = lambda sql, params: result([{"id": 1}])
        self.pools = {}

    def factory(self, descriptor, config=None):
        pool = FakeTenantPool(
            descriptor,
            config,
            init_delay=0,
            handler=lambda sql, params: self.handler(sql, params),
            fetch_rows=CATALOG,
        )
        self.pools[descriptor.key] = pool
        return pool


@pytest.fixture
def backend():
    return TenantBackend()


@pytest.fixture
def history_sink():
    return InMemoryHistorySink()


@pytest.fixture
def service(backend, history_sink):
    tenants = StaticTenantRegistry({
        "3f0c": "postgresql://tenant:pw@db:5432/project_3f0c",
        "77aa": "postgresql://tenant:pw@db:5432/project_77aa",
    })
    introspector = SchemaIntrospector(SchemaCacheConfig(ttl_seconds=60))
    return TenantDataService(
        ConnectionPoolRegistry(PoolConfig(max_size=2), pool_factory=backend.factory),
        tenants,
        introspector=introspector,
        history=QueryHistoryLogger(history_sink),
    )


@pytest.fixture(autouse=True)
def restore_test_logging():
    """Undo global logging configuration done by service startup."""
    yield

    from tenantsql.logging.factory import _global_factory
    _global_factory.shutdown()

    root_logger = logging.getLogger()
    for handler in root_logger.handlers:
        handler.close()
    root_logger.handlers.clear()

    structlog.configure(
        processors=[structlog.testing.LogCapture()],
        wrapper_class=structlog.BoundLogger,
        logger_factory=structlog.testing.ReturnLoggerFactory(),
        cache_logger_on_first_use=False,
    )
