"""Registry of live tenant connection pools.

The registry is owned by the service's startup context and passed to the
components that need it. It guarantees at most one pool per tenant key:
concurrent first requests for the same key wait on a per-key lock and the
loser of the race reuses the winner's pool.
"""

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from ..config.models import PoolConfig, TenantDescriptor
from ..core.exceptions import TenantNotFound
from ..logging import get_logger, get_performance_logger
from .pool import TenantPool

DescriptorResolver = Callable[
    [str], Union[Optional[TenantDescriptor], Awaitable[Optional[TenantDescriptor]]]
]
PoolFactory = Callable[[TenantDescriptor, PoolConfig], TenantPool]


class ConnectionPoolRegistry:
    """Maps tenant keys to live, reusable connection pools.

    Pools are created lazily on first use and replaced once they are older
    than ``config.pool_ttl_seconds``.

    Example:
        >>> registry = ConnectionPoolRegistry(service_config.tenant_pool)
        >>> pool = await registry.get_or_create("3f0c", tenants.resolve)
        >>> await registry.close_all()
    """

    def __init__(
        self,
        config: Optional[PoolConfig] = None,
        *,
        pool_factory: PoolFactory = TenantPool,
    ) -> None:
        self.config = config or PoolConfig()
        self._pool_factory = pool_factory
        self._pools: Dict[str, TenantPool] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self.logger = get_logger("registry")

    def __len__(self) -> int:
        return len(self._pools)

    def __contains__(self, key: str) -> bool:
        return key in self._pools

    def _lock_for(self, key: str) -> asyncio.Lock:
        return self._locks.setdefault(key, asyncio.Lock())

    def _is_fresh(self, pool: TenantPool) -> bool:
        return not pool.is_expired(self.config.pool_ttl_seconds)

    def get(self, key: str) -> Optional[TenantPool]:
        """Return the cached pool for ``key`` without creating one."""
        return self._pools.get(key)

    async def get_or_create(self, key: str, resolver: DescriptorResolver) -> TenantPool:
        """Return the pool for ``key``, creating it on first use.

        Args:
            key: Tenant key
            resolver: Looks up the tenant descriptor; may be sync or async and
                may return None or raise TenantNotFound for unknown keys

        Raises:
            TenantNotFound: If the resolver has no active record for ``key``
            DatabaseConnectionError: If the pool cannot be opened
        """
        pool = self._pools.get(key)
        if pool is not None and self._is_fresh(pool):
            return pool

        async with self._lock_for(key):
            pool = self._pools.get(key)
            if pool is not None:
                if self._is_fresh(pool):
                    return pool
                self.logger.info("Replacing expired pool", tenant_key=key, age_seconds=pool.age)
                del self._pools[key]
                await pool.close()

            descriptor = resolver(key)
            if inspect.isawaitable(descriptor):
                descriptor = await descriptor
            if descriptor is None:
                raise TenantNotFound(key)

            pool = self._pool_factory(descriptor, self.config)
            await pool.initialize()
            self._pools[key] = pool

            self.logger.info("Pool created", tenant_key=key, pool_count=len(self._pools))
            return pool

    async def evict(self, key: str) -> bool:
        """Close and forget the pool for ``key``.

        Returns:
            True if a pool was evicted
        """
        async with self._lock_for(key):
            pool = self._pools.pop(key, None)
            if pool is None:
                return False
            await pool.close()

        self.logger.info("Pool evicted", tenant_key=key)
        return True

    async def close_all(self) -> None:
        """Close every pool; used at service shutdown."""
        pools = list(self._pools.values())
        self._pools.clear()

        results = await asyncio.gather(*(pool.close() for pool in pools), return_exceptions=True)
        for pool, result in zip(pools, results):
            if isinstance(result, Exception):
                self.logger.error("Failed to close pool", tenant_key=pool.key, error=str(result))

        self.logger.info("All pools closed", closed=len(pools))
        get_performance_logger("pool").log_summary()

    def stats(self) -> Dict[str, Any]:
        pools: List[Dict[str, Any]] = [pool.stats() for pool in self._pools.values()]
        return {"pool_count": len(pools), "pools": pools}
