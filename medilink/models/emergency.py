"""
Emergency Tracking Data Models

Defines the status state machine and the data structures exchanged with the
MediLink backend while an emergency request is being tracked.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class EmergencyStatus(Enum):
    """Lifecycle status of an emergency request"""
    PENDING = "pending"
    DISPATCHED = "dispatched"
    EN_ROUTE = "en_route"
    ARRIVED = "arrived"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @classmethod
    def parse(cls, value: Any) -> 'EmergencyStatus':
        """
        Parse a wire value into a status.

        Raises:
            ValueError: If the value is not a known status
        """
        if isinstance(value, cls):
            return value
        return cls(str(value).strip().lower())

    @property
    def is_terminal(self) -> bool:
        """Terminal statuses have no outgoing transitions"""
        return self in TERMINAL_STATUSES

    @property
    def label(self) -> str:
        """Display label, e.g. EN ROUTE"""
        return self.value.replace('_', ' ').upper()

    @property
    def message(self) -> str:
        """User-facing description of the status"""
        return STATUS_MESSAGES[self]

    def accepts(self, new_status: 'EmergencyStatus') -> bool:
        """
        Check whether a transition from this status to new_status is allowed.

        Statuses only move forward along pending < dispatched < en_route <
        arrived < completed, possibly skipping steps. Cancellation is allowed
        from any non-terminal status. Terminal statuses accept nothing.
        """
        if self.is_terminal or new_status == self:
            return False
        if new_status == EmergencyStatus.CANCELLED:
            return True
        return STATUS_ORDER.index(new_status) > STATUS_ORDER.index(self)


STATUS_ORDER = [
    EmergencyStatus.PENDING,
    EmergencyStatus.DISPATCHED,
    EmergencyStatus.EN_ROUTE,
    EmergencyStatus.ARRIVED,
    EmergencyStatus.COMPLETED,
]

TERMINAL_STATUSES = frozenset({EmergencyStatus.COMPLETED, EmergencyStatus.CANCELLED})

# Single-step transitions reported by the backend in normal operation.
# Skip-ahead updates are also accepted, see EmergencyStatus.accepts.
ALLOWED_TRANSITIONS = {
    EmergencyStatus.PENDING: frozenset({EmergencyStatus.DISPATCHED, EmergencyStatus.CANCELLED}),
    EmergencyStatus.DISPATCHED: frozenset({EmergencyStatus.EN_ROUTE, EmergencyStatus.CANCELLED}),
    EmergencyStatus.EN_ROUTE: frozenset({EmergencyStatus.ARRIVED, EmergencyStatus.CANCELLED}),
    EmergencyStatus.ARRIVED: frozenset({EmergencyStatus.COMPLETED, EmergencyStatus.CANCELLED}),
    EmergencyStatus.COMPLETED: frozenset(),
    EmergencyStatus.CANCELLED: frozenset(),
}

STATUS_MESSAGES = {
    EmergencyStatus.PENDING: "Emergency request received. Finding nearest ambulance...",
    EmergencyStatus.DISPATCHED: "Ambulance dispatched. Help is on the way!",
    EmergencyStatus.EN_ROUTE: "Ambulance is en route to your location.",
    EmergencyStatus.ARRIVED: "Ambulance has arrived at your location.",
    EmergencyStatus.COMPLETED: "Emergency response completed.",
    EmergencyStatus.CANCELLED: "Emergency request was cancelled.",
}


def utcnow() -> datetime:
    """Timezone-aware current UTC time"""
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 timestamp, accepting a trailing Z"""
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class Coordinates:
    """Geographic position in decimal degrees"""
    lat: float
    lng: float

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Coordinates':
        """Create from {lat, lng} or {latitude, longitude}"""
        lat = data.get('lat', data.get('latitude'))
        lng = data.get('lng', data.get('longitude'))
        if lat is None or lng is None:
            raise ValueError(f"Missing coordinates in {data!r}")
        return cls(lat=float(lat), lng=float(lng))

    def to_dict(self) -> Dict[str, float]:
        return {'lat': self.lat, 'lng': self.lng}


@dataclass
class Hospital:
    """Hospital assigned to, or near, an emergency"""
    id: Any
    name: str
    address: str = ""
    phone: Optional[str] = None
    distance_label: Optional[str] = None
    location: Optional[Coordinates] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Hospital':
        location = data.get('location')
        if location is None and 'lat' in data and 'lng' in data:
            location = data
        return cls(
            id=data.get('id'),
            name=data.get('name', ''),
            address=data.get('address', ''),
            phone=data.get('phone'),
            distance_label=data.get('distanceLabel', data.get('distance')),
            location=Coordinates.from_dict(location) if location else None
        )


@dataclass
class Ambulance:
    """Ambulance unit responding to an emergency"""
    id: str
    driver_name: str = ""
    phone: Optional[str] = None
    location: Optional[Coordinates] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Ambulance':
        location = data.get('location')
        return cls(
            id=str(data.get('id', '')),
            driver_name=data.get('driverName', ''),
            phone=data.get('phone'),
            location=Coordinates.from_dict(location) if location else None
        )


@dataclass(frozen=True)
class StatusHistoryEntry:
    """One committed status transition"""
    status: EmergencyStatus
    timestamp: datetime

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StatusHistoryEntry':
        return cls(
            status=EmergencyStatus.parse(data['status']),
            timestamp=parse_timestamp(data['timestamp'])
        )

    def to_dict(self) -> Dict[str, str]:
        return {'status': self.status.value, 'timestamp': self.timestamp.isoformat()}


@dataclass
class EmergencySnapshot:
    """Full emergency state as returned by the snapshot endpoint"""
    id: str
    status: EmergencyStatus
    created_at: datetime
    patient_name: str = ""
    emergency_type: str = ""
    priority: str = ""
    assigned_hospital: Optional[Hospital] = None
    ambulance: Optional[Ambulance] = None
    status_history: List[StatusHistoryEntry] = field(default_factory=list)
    nearby_hospitals: List[Hospital] = field(default_factory=list)
    is_fallback: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EmergencySnapshot':
        """
        Create from the backend's JSON payload.

        Raises:
            ValueError: If required fields are missing or malformed
        """
        if not isinstance(data, dict):
            raise ValueError(f"Snapshot payload must be an object, got {type(data).__name__}")
        try:
            emergency_id = data['id']
            status = EmergencyStatus.parse(data['status'])
        except KeyError as e:
            raise ValueError(f"Snapshot is missing required field {e}")

        hospital = data.get('assignedHospital')
        ambulance = data.get('ambulance')
        created_at = data.get('createdAt')
        return cls(
            id=str(emergency_id),
            status=status,
            created_at=parse_timestamp(created_at) if created_at else utcnow(),
            patient_name=data.get('patientName', ''),
            emergency_type=data.get('emergencyType', ''),
            priority=data.get('priority', ''),
            assigned_hospital=Hospital.from_dict(hospital) if hospital else None,
            ambulance=Ambulance.from_dict(ambulance) if ambulance else None,
            status_history=[StatusHistoryEntry.from_dict(e) for e in data.get('statusHistory') or []],
            nearby_hospitals=[Hospital.from_dict(h) for h in data.get('nearbyHospitals') or []]
        )


@dataclass(frozen=True)
class StatusUpdate:
    """Status poll response, tagged with the identifier it was requested for"""
    emergency_id: str
    status: EmergencyStatus
    estimated_arrival_minutes: Optional[float] = None

    @classmethod
    def from_dict(cls, emergency_id: str, data: Dict[str, Any]) -> 'StatusUpdate':
        if not isinstance(data, dict) or 'status' not in data:
            raise ValueError(f"Status payload is missing 'status': {data!r}")
        eta = data.get('estimatedArrivalMinutes', data.get('estimatedArrival'))
        return cls(
            emergency_id=emergency_id,
            status=EmergencyStatus.parse(data['status']),
            estimated_arrival_minutes=float(eta) if eta is not None else None
        )


@dataclass(frozen=True)
class LocationUpdate:
    """Ambulance location poll response, tagged with its identifier"""
    emergency_id: str
    location: Coordinates

    @classmethod
    def from_dict(cls, emergency_id: str, data: Dict[str, Any]) -> 'LocationUpdate':
        if not isinstance(data, dict) or not data.get('location'):
            raise ValueError(f"Location payload is missing 'location': {data!r}")
        return cls(emergency_id=emergency_id, location=Coordinates.from_dict(data['location']))


@dataclass
class EmergencyRecord:
    """
    Canonical state of the tracked emergency.

    Owned by EmergencyStateStore; other components must treat it as read-only.
    """
    id: str
    status: EmergencyStatus
    created_at: datetime
    patient_name: str = ""
    emergency_type: str = ""
    priority: str = ""
    assigned_hospital: Optional[Hospital] = None
    ambulance: Optional[Ambulance] = None
    estimated_arrival_minutes: Optional[float] = None
    status_history: List[StatusHistoryEntry] = field(default_factory=list)
    nearby_hospitals: List[Hospital] = field(default_factory=list)
    is_tracking: bool = True
    is_fallback: bool = False
    viewer_location: Optional[Coordinates] = None
    ambulance_distance_km: Optional[float] = None
    last_location_update: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-friendly dictionary"""
        ambulance = None
        if self.ambulance:
            ambulance = {
                'id': self.ambulance.id,
                'driverName': self.ambulance.driver_name,
                'phone': self.ambulance.phone,
                'location': self.ambulance.location.to_dict() if self.ambulance.location else None
            }
        hospital = None
        if self.assigned_hospital:
            hospital = {
                'id': self.assigned_hospital.id,
                'name': self.assigned_hospital.name,
                'address': self.assigned_hospital.address,
                'phone': self.assigned_hospital.phone,
                'distanceLabel': self.assigned_hospital.distance_label
            }
        return {
            'id': self.id,
            'status': self.status.value,
            'createdAt': self.created_at.isoformat(),
            'patientName': self.patient_name,
            'emergencyType': self.emergency_type,
            'priority': self.priority,
            'assignedHospital': hospital,
            'ambulance': ambulance,
            'estimatedArrivalMinutes': self.estimated_arrival_minutes,
            'statusHistory': [entry.to_dict() for entry in self.status_history],
            'isTracking': self.is_tracking,
            'isFallback': self.is_fallback,
            'ambulanceDistanceKm': self.ambulance_distance_km
        }
