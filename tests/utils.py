"""
Test utilities and helper functions for MediLink testing.
"""
import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional


class AsyncTestHelper:
    """Helper class for async testing operations."""

    @staticmethod
    async def wait_for_condition(condition: Callable[[], bool], timeout: float = 1.0) -> bool:
        """Wait for a condition to become true."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while loop.time() < deadline:
            if condition():
                return True
            await asyncio.sleep(0.01)
        return condition()


class FakeClock:
    """Deterministic clock advancing one second per reading."""

    def __init__(self, start: Optional[datetime] = None, step: timedelta = timedelta(seconds=1)):
        self.now = start or datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
        self.step = step

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + self.step
        return current


def make_snapshot_payload(emergency_id: str = "E-123", status: str = "pending",
                          history: Optional[List[str]] = None,
                          ambulance: bool = True,
                          **overrides: Any) -> Dict[str, Any]:
    """Build a backend snapshot payload in wire format."""
    history = history if history is not None else [status]
    base = datetime(2024, 5, 1, 11, 50, tzinfo=timezone.utc)
    payload = {
        "id": emergency_id,
        "status": status,
        "createdAt": base.isoformat().replace("+00:00", "Z"),
        "patientName": "Jane Wanjiru",
        "emergencyType": "Cardiac",
        "priority": "Critical",
        "assignedHospital": {
            "id": 7,
            "name": "Kenyatta National Hospital",
            "address": "Hospital Rd, Nairobi",
            "phone": "+254-20-2726300",
            "distance": "3.1 km"
        },
        "ambulance": {
            "id": "AMB-042",
            "driverName": "Peter Otieno",
            "phone": "+254-711-000111",
            "location": {"lat": -1.2800, "lng": 36.8100}
        } if ambulance else None,
        "statusHistory": [
            {"status": entry, "timestamp": (base + timedelta(minutes=i)).isoformat()}
            for i, entry in enumerate(history)
        ],
        "nearbyHospitals": [
            {"id": 7, "name": "Kenyatta National Hospital", "lat": -1.3010, "lng": 36.8070},
            {"id": 9, "name": "Nairobi Hospital", "lat": -1.2950, "lng": 36.8040},
        ]
    }
    payload.update(overrides)
    return payload
