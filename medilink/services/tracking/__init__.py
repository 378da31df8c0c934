"""
Emergency Tracking Service Module

Provides live tracking of a single emergency request:
- Canonical record with append-only status history
- Status and ambulance location polling with stale-response filtering
- Offline fallback snapshot and viewer geolocation
- User actions (cancel, refresh, contact) and text rendering
"""

from .api_client import EmergencyAPIClient, EmergencyAPIError
from .distance import haversine_distance, format_distance, sort_by_distance
from .fallback import build_fallback_snapshot
from .geolocation import (
    GeolocationAcquirer,
    GeolocationError,
    GeolocationPermissionDenied,
    GeolocationUnavailable,
    IPGeolocationLocator,
    StaticLocator
)
from .polling_scheduler import PollingScheduler
from .state_store import EmergencyStateStore, StoreStateError
from .tracker_controller import TrackerController
from .view import render_tracker

__all__ = [
    'EmergencyAPIClient',
    'EmergencyAPIError',
    'haversine_distance',
    'format_distance',
    'sort_by_distance',
    'build_fallback_snapshot',
    'GeolocationAcquirer',
    'GeolocationError',
    'GeolocationPermissionDenied',
    'GeolocationUnavailable',
    'IPGeolocationLocator',
    'StaticLocator',
    'PollingScheduler',
    'EmergencyStateStore',
    'StoreStateError',
    'TrackerController',
    'render_tracker'
]
