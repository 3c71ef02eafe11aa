"""Tests for tenant descriptor lookup."""

import pytest
from pydantic import ValidationError as PydanticValidationError

from fakes import FakePool
from tenantsql.config.models import TenantDescriptor
from tenantsql.core.exceptions import TenantNotFound
from tenantsql.database.tenants import (
    PROJECT_LOOKUP,
    PostgresTenantRegistry,
    StaticTenantRegistry,
    TenantRegistry,
)

PROJECT_ROW = {
    "id": 42,
    "connection_string": "postgresql://tenant:pw@db:5432/project_42",
    "database_name": "project_42",
    "project_name": "Inventory",
}


class TestPostgresTenantRegistry:
    """Test cases for lookups in the project registry table."""

    @pytest.mark.asyncio
    async def test_resolve(self):
        pool = FakePool(fetch_rows=[PROJECT_ROW])
        tenants = PostgresTenantRegistry(pool)

        descriptor = await tenants.resolve("42")

        assert descriptor.key == "42"
        assert descriptor.dsn == PROJECT_ROW["connection_string"]
        assert descriptor.project_name == "Inventory"
        assert pool.fetched == [(PROJECT_LOOKUP, ("42",))]

    @pytest.mark.asyncio
    async def test_resolve_checks_ownership(self):
        pool = FakePool(fetch_rows=[PROJECT_ROW])

        await PostgresTenantRegistry(pool).resolve("42", user_id="u-1")

        sql, args = pool.fetched[0]
        assert sql.endswith("AND is_active = true AND user_id = $2")
        assert args == ("42", "u-1")

    @pytest.mark.asyncio
    async def test_unknown_or_inactive(self):
        with pytest.raises(TenantNotFound) as exc_info:
            await PostgresTenantRegistry(FakePool()).resolve("404")

        assert exc_info.value.status == 404
        assert exc_info.value.message == "Tenant not found: 404"


class TestStaticTenantRegistry:
    """Test cases for mapping-backed lookups."""

    @pytest.mark.asyncio
    async def test_accepts_strings_dicts_and_descriptors(self):
        tenants = StaticTenantRegistry({
            "a": "postgresql://u:p@db/a",
            "b": {"connection_string": "postgresql://u:p@db/b", "project_name": "B"},
            "c": TenantDescriptor(key="c", connection_string="postgresql://u:p@db/c"),
        })

        assert (await tenants.resolve("a")).dsn == "postgresql://u:p@db/a"
        assert (await tenants.resolve("b")).project_name == "B"
        assert (await tenants.resolve("c", user_id="ignored")).key == "c"

    @pytest.mark.asyncio
    async def test_unknown_key(self):
        with pytest.raises(TenantNotFound):
            await StaticTenantRegistry({}).resolve("missing")

    def test_invalid_connection_string(self):
        with pytest.raises(PydanticValidationError):
            StaticTenantRegistry({"a": "not a url"})

    def test_protocol(self):
        assert isinstance(StaticTenantRegistry({}), TenantRegistry)
        assert isinstance(PostgresTenantRegistry(FakePool()), TenantRegistry)
