"""Lifecycle base class for components that own database resources.

Example:
    >>> class TenantPool(AsyncComponent[PoolConfig]):
    ...     async def _async_initialize(self) -> None:
    ...         self._pool = await asyncpg.create_pool(...)
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, ClassVar, Generic, TypeVar

import structlog

from .exceptions import ConfigurationError, ErrorCodes, TenantSQLException

T = TypeVar("T")


class AsyncComponent(Generic[T], ABC):
    """Configured component with lock-guarded async open and close.

    Type Parameters:
        T: Type of configuration object this component accepts

    ``initialize`` runs ``_async_initialize`` once even when awaited
    concurrently; ``cleanup`` runs ``_async_cleanup`` only after a
    successful initialize and never raises.
    """

    component_name: ClassVar[str] = "AsyncComponent"

    def __init__(self, config: T) -> None:
        if config is None:
            raise ConfigurationError(
                f"{self.component_name} requires a configuration",
                code=ErrorCodes.CONFIG_MISSING,
                context={"component": self.component_name},
            )

        self._config: T = config
        self._initialized = False
        self._lifecycle_lock = asyncio.Lock()
        self._logger = structlog.get_logger(self.component_name)

    @property
    def config(self) -> T:
        return self._config

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """Open the component's resources.

        Raises:
            TenantSQLException: Unchanged if raised by the subclass, otherwise
                wrapping the underlying error with code ``INIT_FAILED``
        """
        async with self._lifecycle_lock:
            if self._initialized:
                return

            try:
                await self._async_initialize()
            except TenantSQLException:
                raise
            except Exception as e:
                self._logger.error(
                    "Component initialization failed",
                    component=self.component_name,
                    error=str(e),
                )
                raise TenantSQLException(
                    f"Failed to initialize {self.component_name}: {e}",
                    code=ErrorCodes.INIT_FAILED,
                    context={"component": self.component_name},
                    cause=e,
                ) from e

            self._initialized = True

    async def cleanup(self) -> None:
        """Release the component's resources; failures are logged only."""
        async with self._lifecycle_lock:
            if not self._initialized:
                return

            try:
                await self._async_cleanup()
            except Exception as e:
                self._logger.error(
                    "Component cleanup failed",
                    component=self.component_name,
                    error=str(e),
                )
            finally:
                self._initialized = False

    @abstractmethod
    async def _async_initialize(self) -> None:
        """Open resources."""

    async def _async_cleanup(self) -> None:
        """Release resources."""

    async def __aenter__(self) -> "AsyncComponent[T]":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.cleanup()

    def __repr__(self) -> str:
        return f"{type(self).__name__}(initialized={self._initialized})"
