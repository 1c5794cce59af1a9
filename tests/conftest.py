"""
Pytest configuration and shared fixtures.
"""
import os

# Keep the dotenv loader from pulling a developer's .env into unit tests
os.environ.setdefault("ENVIRONMENT", "prod")

import pytest

from src.config.config import Config, MonitoringConfig, StoreConfig, TransportConfig


def pytest_configure(config):
    """Register custom marks. Async tests require pytest-asyncio."""
    config.addinivalue_line("markers", "asyncio: mark test as async (pytest-asyncio).")


@pytest.fixture
def fast_transport():
    """Transport timers shrunk to milliseconds (bypasses the production bounds)."""
    return TransportConfig.model_construct(
        url="http://engine.test",
        reconnect_delay_seconds=0.01,
        inactivity_timeout_seconds=0.2,
        disconnect_grace_seconds=0.05,
        connect_delay_seconds=0.0,
        handshake_timeout_seconds=1.0,
        debug_packet_count=10,
    )


@pytest.fixture
def test_config(tmp_path, fast_transport):
    """Config writing ledgers under tmp_path with the remote mirror disabled."""
    return Config.model_construct(
        transport=fast_transport,
        store=StoreConfig(data_dir=str(tmp_path), remote_sync_enabled=False),
        monitoring=MonitoringConfig(),
        universe=["BTCUSD", "ETHUSD", "XAUUSD"],
        environment="dev",
    )

