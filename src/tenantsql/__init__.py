"""tenantsql - Multi-tenant dynamic SQL execution layer.

tenantsql manages connection pools for many independently provisioned
PostgreSQL databases and runs insert/update/delete and batch DDL
operations against them when table and column shapes are only known by
introspecting each tenant at request time.

Modules:
    core: Base classes, exceptions and utilities
    config: Configuration management
    logging: Structured logging framework
    database: Pools, introspection, coercion, statement building, batches
    service: Request handling over the database layer

Example:
    >>> from tenantsql.config import ServiceConfig
    >>> from tenantsql.service import TenantDataService
    >>>
    >>> service = await TenantDataService.create(ServiceConfig.from_file("tenantsql.yaml"))
    >>> response = await service.dispatch(
    ...     "insert", project_id, user_id,
    ...     {"table": "users", "values": {"email": "a@example.com"}},
    ... )
    >>> await service.close()
"""

from . import config, core, database, logging

__version__ = "0.1.0"
__title__ = "tenantsql"
__description__ = "Multi-tenant dynamic SQL execution layer"
__author__ = "tenantsql Team"
__license__ = "MIT"

__all__ = [
    "core",
    "config",
    "logging",
    "database",
    "__version__",
    "__title__",
    "__description__",
    "__author__",
    "__license__",
]
