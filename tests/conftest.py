"""
Fixtures pytest partagées pour les tests heartbeat.

Ce fichier contient :
- Helpers de mock asyncpg (pool.acquire() en async context manager)
- Mock Redis pour les circuit breakers
- Horloge figée pour les checkers

Note : L'event loop est géré automatiquement par pytest-asyncio en mode auto.
Voir pyproject.toml pour la configuration.
"""

import sys
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

# ==========================================
# PYTHONPATH Setup
# ==========================================

repo_root = Path(__file__).parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))


FIXED_NOW = datetime(2026, 3, 10, 9, 0, tzinfo=timezone.utc)


# ==========================================
# Mock Helpers for Unit Tests
# ==========================================


def create_mock_pool_with_conn(mock_conn: AsyncMock) -> MagicMock:
    """
    Helper pour créer un mock asyncpg.Pool avec async context manager correctement configuré.

    Le pattern correct pour mocker pool.acquire() est :
    - pool.acquire() retourne un MagicMock (pas AsyncMock)
    - Ce MagicMock a __aenter__ et __aexit__ configurés comme AsyncMock
    - __aenter__ retourne la mock_conn

    Usage:
        >>> mock_conn = AsyncMock()
        >>> mock_conn.fetch.return_value = [...]
        >>> mock_pool = create_mock_pool_with_conn(mock_conn)
    """
    mock_pool = MagicMock()
    acquire_ctx = AsyncMock()
    acquire_ctx.__aenter__ = AsyncMock(return_value=mock_conn)
    acquire_ctx.__aexit__ = AsyncMock(return_value=None)
    mock_pool.acquire = MagicMock(return_value=acquire_ctx)
    return mock_pool


@pytest.fixture
def mock_conn():
    """Connexion asyncpg mockée (execute retourne un tag UPDATE 1)."""
    conn = AsyncMock()
    conn.fetch.return_value = []
    conn.fetchrow.return_value = None
    conn.fetchval.return_value = None
    conn.execute.return_value = "UPDATE 1"
    return conn


@pytest.fixture
def mock_pool(mock_conn):
    return create_mock_pool_with_conn(mock_conn)


@pytest.fixture
def mock_redis_client():
    """Mock Redis client pour circuit breaker (aucun circuit ouvert)."""
    redis = AsyncMock()
    redis.get.return_value = None
    redis.incr.return_value = 1
    redis.expire.return_value = True
    redis.setex.return_value = True
    redis.delete.return_value = 1
    return redis


@pytest.fixture
def fixed_clock():
    """Horloge figée (mardi 10 mars 2026, 09:00 UTC)."""
    return lambda: FIXED_NOW
