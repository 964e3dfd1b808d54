from contextlib import asynccontextmanager
from unittest.mock import MagicMock, patch

import psycopg
import pytest

from slotswap.db import pool as pool_module
from slotswap.db.pool import DatabasePoolManager
from slotswap.features.swaps.domain import StateConflictError


@pytest.fixture
def manager():
    @asynccontextmanager
    async def connection():
        yield MagicMock()

    manager = DatabasePoolManager()
    manager.pool = MagicMock()
    manager.pool.connection = connection
    manager._initialized = True
    return manager


@pytest.mark.asyncio
async def test_application_errors_are_not_logged_as_connection_errors(manager):
    with patch.object(pool_module, "logger") as logger:
        with pytest.raises(StateConflictError):
            async with manager.connection():
                raise StateConflictError("Their slot is no longer swappable")

    logger.error.assert_not_called()


@pytest.mark.asyncio
async def test_driver_errors_are_logged(manager):
    with patch.object(pool_module, "logger") as logger:
        with pytest.raises(psycopg.OperationalError):
            async with manager.connection():
                raise psycopg.OperationalError("server closed the connection")

    logger.error.assert_called_once()


@pytest.mark.asyncio
async def test_connection_requires_initialized_pool():
    with pytest.raises(RuntimeError):
        async with DatabasePoolManager().connection():
            pass
