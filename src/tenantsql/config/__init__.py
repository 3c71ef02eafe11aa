"""tenantsql configuration management.

This package provides type-safe configuration models for tenant pools,
the schema cache, query history and logging.

Classes:
    BaseConfig: Base configuration class
    TenantDescriptor: Tenant connection descriptor
    PoolConfig: Connection pool configuration
    SchemaCacheConfig: Schema cache configuration
    HistoryConfig: Query history configuration
    ExecutorConfig: Batch executor configuration
    LoggingConfig: Logging configuration
    ServiceConfig: Service-wide configuration

Example:
    >>> from tenantsql.config import ServiceConfig
    >>> config = ServiceConfig.from_file("tenantsql.yaml")
    >>> config.schema_cache.ttl_seconds
    300
"""

from .models import (
    DEFAULT_CRITICAL_TYPES,
    BaseConfig,
    ExecutorConfig,
    HistoryConfig,
    LoggingConfig,
    PoolConfig,
    SchemaCacheConfig,
    ServiceConfig,
    TenantDescriptor,
)

__all__ = [
    "DEFAULT_CRITICAL_TYPES",
    "BaseConfig",
    "ExecutorConfig",
    "HistoryConfig",
    "LoggingConfig",
    "PoolConfig",
    "SchemaCacheConfig",
    "ServiceConfig",
    "TenantDescriptor",
]
