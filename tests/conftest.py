"""
Global pytest configuration and fixtures for MediLink testing.
"""
import pytest

from medilink.models.emergency import EmergencySnapshot
from medilink.services.tracking.state_store import EmergencyStateStore
from tests.mocks.emergency_api_mocks import MockEmergencyAPI
from tests.utils import FakeClock, make_snapshot_payload


@pytest.fixture
def clock():
    """Deterministic clock for the state store."""
    return FakeClock()


@pytest.fixture
def store(clock):
    """Empty state store using the fake clock."""
    return EmergencyStateStore(clock=clock)


@pytest.fixture
def snapshot_payload():
    """Wire-format snapshot of a pending emergency."""
    return make_snapshot_payload()


@pytest.fixture
def pending_snapshot(snapshot_payload):
    return EmergencySnapshot.from_dict(snapshot_payload)


@pytest.fixture
def mock_api(snapshot_payload):
    """Backend mock serving the pending snapshot."""
    return MockEmergencyAPI(snapshot_payload)


@pytest.fixture
def test_config():
    """Provide test configuration."""
    return {
        "api": {"base_url": "http://backend.test", "timeout": 1, "max_retries": 0},
        "tracking": {"poll_interval": 0.05, "failure_threshold": 3, "backoff_max": 1, "distance_unit": "km"},
        "geolocation": {"enabled": False, "timeout": 0.1,
                        "fallback": {"latitude": -1.2921, "longitude": 36.8219}},
        "logging": {"level": "DEBUG", "file": None, "console": False}
    }
