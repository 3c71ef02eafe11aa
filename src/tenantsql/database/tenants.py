"""Tenant lookup against the controlling application's project registry."""

from typing import Any, Dict, Mapping, Optional, Protocol, Union, runtime_checkable

from ..config.models import TenantDescriptor
from ..core.exceptions import TenantNotFound
from ..logging import get_logger
from .pool import TenantPool

PROJECT_LOOKUP = (
    "SELECT id, connection_string, database_name, project_name "
    "FROM user_projects WHERE id = $1 AND is_active = true"
)


@runtime_checkable
class TenantRegistry(Protocol):
    """Resolves a tenant key to its connection descriptor."""

    async def resolve(self, key: str, *, user_id: Optional[str] = None) -> TenantDescriptor:
        ...


class PostgresTenantRegistry:
    """Reads active projects from the ``user_projects`` table.

    When ``user_id`` is given the project must also belong to that user,
    which doubles as the ownership check for request handlers.
    """

    def __init__(self, pool: TenantPool) -> None:
        self.pool = pool
        self.logger = get_logger("tenants")

    async def resolve(self, key: str, *, user_id: Optional[str] = None) -> TenantDescriptor:
        """Return the descriptor for an active project.

        Raises:
            TenantNotFound: If no active project matches
        """
        sql = PROJECT_LOOKUP
        args = [key]
        if user_id is not None:
            sql += " AND user_id = $2"
            args.append(user_id)

        rows = await self.pool.fetch(sql, *args)
        if not rows:
            self.logger.info("Tenant lookup missed", tenant_key=key)
            raise TenantNotFound(key)

        row = rows[0]
        return TenantDescriptor(
            key=str(row["id"]),
            connection_string=row["connection_string"],
            database_name=row.get("database_name"),
            project_name=row.get("project_name"),
        )


class StaticTenantRegistry:
    """Serves descriptors from a fixed mapping; for configuration-driven setups and tests."""

    def __init__(self, tenants: Mapping[str, Union[str, TenantDescriptor, Dict[str, Any]]]) -> None:
        self._tenants: Dict[str, TenantDescriptor] = {}
        for key, value in tenants.items():
            if isinstance(value, TenantDescriptor):
                descriptor = value
            elif isinstance(value, str):
                descriptor = TenantDescriptor(key=key, connection_string=value)
            else:
                descriptor = TenantDescriptor(key=key, **value)
            self._tenants[key] = descriptor

    async def resolve(self, key: str, *, user_id: Optional[str] = None) -> TenantDescriptor:
        descriptor = self._tenants.get(key)
        if descriptor is None:
            raise TenantNotFound(key)
        return descriptor
