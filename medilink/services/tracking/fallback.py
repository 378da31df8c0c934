"""
Synthetic emergency snapshot used when the backend cannot be reached
"""

from datetime import datetime, timedelta
from typing import Optional

from medilink.models.emergency import (
    Ambulance, Coordinates, EmergencySnapshot, EmergencyStatus,
    Hospital, StatusHistoryEntry, utcnow
)


def build_fallback_snapshot(emergency_id: str, now: Optional[datetime] = None) -> EmergencySnapshot:
    """
    Build the deterministic stand-in snapshot for an emergency.

    The result is an en-route response with a three-step history
    (pending 5 min ago, dispatched 4 min ago, en_route 2 min ago),
    so the tracking view stays fully functional while offline.
    """
    now = now or utcnow()

    history = [
        StatusHistoryEntry(EmergencyStatus.PENDING, now - timedelta(minutes=5)),
        StatusHistoryEntry(EmergencyStatus.DISPATCHED, now - timedelta(minutes=4)),
        StatusHistoryEntry(EmergencyStatus.EN_ROUTE, now - timedelta(minutes=2)),
    ]

    return EmergencySnapshot(
        id=emergency_id,
        status=EmergencyStatus.EN_ROUTE,
        created_at=now,
        patient_name="John Doe",
        emergency_type="Medical Emergency",
        priority="High",
        assigned_hospital=Hospital(
            id=1,
            name="City General Hospital",
            address="123 Health Street, Nairobi",
            phone="+254-700-123456",
            distance_label="2.3 km"
        ),
        ambulance=Ambulance(
            id="AMB-001",
            driver_name="Dr. Sarah Johnson",
            phone="+254-700-789012",
            location=Coordinates(lat=-1.2921, lng=36.8219)
        ),
        status_history=history,
        nearby_hospitals=[],
        is_fallback=True
    )
