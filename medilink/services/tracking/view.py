"""
Text rendering of the emergency tracker
"""

from datetime import datetime
from typing import Optional

from medilink.models.emergency import EmergencyRecord
from .distance import format_distance, sort_by_distance

KM_PER_MILE = 1.609344


def format_time(timestamp: datetime) -> str:
    """Format a timestamp as HH:MM"""
    return timestamp.strftime('%H:%M')


def phone_uri(phone: Optional[str]) -> Optional[str]:
    """Build a tel: link from a display phone number"""
    if not phone:
        return None
    digits = ''.join(ch for ch in phone if ch.isdigit() or ch == '+')
    return f"tel:{digits}" if digits else None


def render_tracker(record: Optional[EmergencyRecord], connection_lost: bool = False,
                   notice: Optional[str] = None, unit: str = 'km') -> str:
    """Render the tracking view for a record"""
    if record is None:
        return "Loading emergency details...\n"

    status = record.status
    content = "🚑 Emergency Tracking\n"
    content += f"ID: #{record.id}\n"
    if record.is_fallback:
        content += "⚠️ Offline: showing sample data\n"
    if connection_lost:
        content += "⚠️ Live updates unavailable, retrying\n"
    if notice:
        content += f"⚠️ {notice}\n"

    content += f"\n{status.label}\n"
    content += f"{status.message}\n"
    if record.estimated_arrival_minutes is not None and not status.is_terminal:
        content += f"ETA: {record.estimated_arrival_minutes:g} minutes\n"

    content += "\nEmergency Information\n"
    content += f"Type: {record.emergency_type}\n"
    content += f"Priority: {record.priority}\n"
    content += f"Requested: {format_time(record.created_at)}\n"

    hospital = record.assigned_hospital
    if hospital:
        content += "\nAssigned Hospital\n"
        content += f"{hospital.name}\n"
        if hospital.address:
            content += f"{hospital.address}\n"
        if hospital.distance_label:
            content += f"Distance: {hospital.distance_label}\n"

    ambulance = record.ambulance
    if ambulance:
        content += "\nAmbulance Details\n"
        content += f"Unit: {ambulance.id or 'awaiting assignment'}\n"
        if ambulance.driver_name:
            content += f"Paramedic: {ambulance.driver_name}\n"
        if record.ambulance_distance_km is not None:
            distance = record.ambulance_distance_km
            if unit == 'miles':
                distance = distance / KM_PER_MILE
            content += f"Distance: {format_distance(distance, unit)} away\n"

    if record.nearby_hospitals and record.viewer_location:
        content += "\nNearby Hospitals\n"
        for nearby, distance in sort_by_distance(record.viewer_location, record.nearby_hospitals, unit):
            label = format_distance(distance, unit) if distance is not None else (nearby.distance_label or "?")
            content += f"- {nearby.name} ({label})\n"

    content += "\nStatus Updates\n"
    for entry in record.status_history:
        content += f"{entry.status.label:<12} {format_time(entry.timestamp)}\n"

    actions = []
    if not status.is_terminal:
        actions.append("[c] Cancel Emergency")
    actions.append("[r] Refresh Status")
    if ambulance and ambulance.phone:
        actions.append("[a] Call Ambulance")
    if hospital and hospital.phone:
        actions.append("[h] Call Hospital")
    content += "\n" + "  ".join(actions) + "\n"

    return content
