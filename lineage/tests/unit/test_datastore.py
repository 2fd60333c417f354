from __future__ import annotations

import asyncio

import pytest
from sqlalchemy.exc import OperationalError

from lineage.core.errors import EntityNotFoundError, TransientError
from lineage.services.datastore import bounded_call


@pytest.mark.asyncio
async def test_timeout_becomes_transient() -> None:
    async def _slow() -> None:
        await asyncio.sleep(1)

    with pytest.raises(TransientError) as exc_info:
        await bounded_call(_slow, timeout_ms=10, operation="slow")
    assert exc_info.value.status_code == 500


@pytest.mark.asyncio
async def test_database_errors_become_transient() -> None:
    async def _fail() -> None:
        raise OperationalError("SELECT 1", {}, Exception("connection reset"))

    with pytest.raises(TransientError) as exc_info:
        await bounded_call(_fail, timeout_ms=1000, operation="fail")
    assert isinstance(exc_info.value.__cause__, OperationalError)


@pytest.mark.asyncio
async def test_domain_errors_pass_through() -> None:
    async def _missing() -> None:
        raise EntityNotFoundError("person")

    with pytest.raises(EntityNotFoundError):
        await bounded_call(_missing, timeout_ms=1000, operation="missing")


@pytest.mark.asyncio
async def test_result_is_returned() -> None:
    async def _ok() -> int:
        return 7

    assert await bounded_call(_ok, timeout_ms=1000, operation="ok") == 7
