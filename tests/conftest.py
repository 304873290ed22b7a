"""
Shared fixtures for Points Server tests.

Every test gets its own temporary database directory; nothing is shared
between tests.
"""

import tempfile

import pytest

from loyalty.points_server.api.servicer import PointsServicer
from loyalty.points_server.config import ServerConfig, StorageConfig


@pytest.fixture
def data_dir():
    """Create temporary data directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def config(data_dir):
    """Server configuration pointing at the temporary directory."""
    return ServerConfig(storage=StorageConfig(data_dir=data_dir, wal_mode=False))


@pytest.fixture
async def points(config):
    """Fully wired servicer over an initialized database."""
    servicer = PointsServicer.from_config(config)
    await servicer.database.initialize()
    return servicer
