"""
Emergency State Store

Single owner of the tracked EmergencyRecord. Status polling, location
polling, geolocation and user actions all write through this store, which
checks response identity and status ordering before committing anything.
"""

import asyncio
from dataclasses import replace
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Union

from medilink.core.logging import get_logger
from medilink.models.emergency import (
    ALLOWED_TRANSITIONS, Ambulance, Coordinates, EmergencyRecord,
    EmergencySnapshot, EmergencyStatus, StatusHistoryEntry, utcnow
)
from .distance import haversine_distance


class StoreStateError(Exception):
    """Raised when the store is driven out of order"""
    pass


Observer = Callable[[Optional[EmergencyRecord]], None]
CoordinatesLike = Union[Coordinates, Dict[str, Any]]


class EmergencyStateStore:
    """
    Holds the canonical record for one tracked emergency.

    Every accepted mutation schedules a single observer notification for the
    current event-loop iteration, so a status change and a location change
    that land in the same iteration re-render once.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self.logger = get_logger('tracking.store')
        self._clock = clock
        self._record: Optional[EmergencyRecord] = None
        self._generation = 0
        self._observers: List[Observer] = []
        self._flush_scheduled = False

    @property
    def record(self) -> Optional[EmergencyRecord]:
        return self._record

    @property
    def generation(self) -> int:
        """Incremented on every initialize and reset"""
        return self._generation

    @property
    def tracked_id(self) -> Optional[str]:
        return self._record.id if self._record else None

    @property
    def is_terminal(self) -> bool:
        return self._record is not None and self._record.is_terminal

    def is_current(self, emergency_id: Optional[str], generation: Optional[int] = None) -> bool:
        """Check whether a response tagged with this identity may be applied"""
        if self._record is None:
            return False
        if emergency_id is not None and emergency_id != self._record.id:
            return False
        if generation is not None and generation != self._generation:
            return False
        return True

    def initialize(self, snapshot: EmergencySnapshot) -> int:
        """
        Load a full snapshot as the tracked record.

        Returns:
            The generation of the new session

        Raises:
            StoreStateError: If a record is already loaded
        """
        if self._record is not None:
            raise StoreStateError(
                f"Store is already tracking {self._record.id}; reset() before loading {snapshot.id}"
            )

        history: List[StatusHistoryEntry] = []
        for entry in snapshot.status_history:
            if not history or history[-1].status != entry.status:
                history.append(entry)
        if not history or history[-1].status != snapshot.status:
            history.append(StatusHistoryEntry(snapshot.status, self._clock()))

        self._generation += 1
        self._record = EmergencyRecord(
            id=snapshot.id,
            status=snapshot.status,
            created_at=snapshot.created_at,
            patient_name=snapshot.patient_name,
            emergency_type=snapshot.emergency_type,
            priority=snapshot.priority,
            assigned_hospital=replace(snapshot.assigned_hospital) if snapshot.assigned_hospital else None,
            ambulance=replace(snapshot.ambulance) if snapshot.ambulance else None,
            status_history=history,
            nearby_hospitals=list(snapshot.nearby_hospitals),
            is_tracking=not snapshot.status.is_terminal,
            is_fallback=snapshot.is_fallback
        )
        self._recompute_distance()

        self.logger.info(
            f"Tracking emergency {snapshot.id} at status {snapshot.status.value}"
            + (" (fallback data)" if snapshot.is_fallback else "")
        )
        self._notify()
        return self._generation

    def apply_status_update(self, status: Union[EmergencyStatus, str],
                            estimated_arrival_minutes: Optional[float] = None,
                            emergency_id: Optional[str] = None,
                            generation: Optional[int] = None) -> bool:
        """
        Apply a status reported by the backend or by a local action.

        Returns:
            True if the record changed
        """
        record = self._record
        if not self.is_current(emergency_id, generation):
            self.logger.debug(f"Discarding status update for stale session {emergency_id}")
            return False

        try:
            new_status = EmergencyStatus.parse(status)
        except ValueError:
            self.logger.warning(f"Ignoring unknown status {status!r} for {record.id}")
            return False

        if new_status == record.status:
            # Same status: only the ETA may move, and never once terminal
            if (estimated_arrival_minutes is not None and not record.is_terminal
                    and estimated_arrival_minutes != record.estimated_arrival_minutes):
                record.estimated_arrival_minutes = estimated_arrival_minutes
                self._notify()
                return True
            return False

        if not record.status.accepts(new_status):
            self.logger.debug(
                f"Rejected out-of-order status {new_status.value} for {record.id} "
                f"(current {record.status.value})"
            )
            return False

        if new_status not in ALLOWED_TRANSITIONS[record.status]:
            self.logger.debug(f"Status for {record.id} skipped ahead from "
                              f"{record.status.value} to {new_status.value}")

        record.status = new_status
        record.status_history.append(StatusHistoryEntry(new_status, self._clock()))
        if estimated_arrival_minutes is not None:
            record.estimated_arrival_minutes = estimated_arrival_minutes
        if new_status.is_terminal:
            record.is_tracking = False

        self.logger.info(f"Emergency {record.id} is now {new_status.value}")
        self._notify()
        return True

    def apply_location_update(self, coords: CoordinatesLike,
                              emergency_id: Optional[str] = None,
                              generation: Optional[int] = None) -> bool:
        """
        Overwrite the ambulance position; the most recent write wins.

        Returns:
            True if the record changed
        """
        record = self._record
        if not self.is_current(emergency_id, generation):
            self.logger.debug(f"Discarding location update for stale session {emergency_id}")
            return False
        if record.is_terminal:
            self.logger.debug(f"Ignoring location update for closed emergency {record.id}")
            return False

        location = coords if isinstance(coords, Coordinates) else Coordinates.from_dict(coords)
        if record.ambulance is None:
            # Position reported before the snapshot named a unit
            record.ambulance = Ambulance(id="")
        elif record.ambulance.location == location:
            return False

        record.ambulance.location = location
        record.last_location_update = self._clock()
        self._recompute_distance()
        self._notify()
        return True

    def set_viewer_location(self, coords: CoordinatesLike,
                            emergency_id: Optional[str] = None,
                            generation: Optional[int] = None) -> bool:
        """Record where the viewer is, for the live distance readout"""
        record = self._record
        if not self.is_current(emergency_id, generation) or record.is_terminal:
            return False

        location = coords if isinstance(coords, Coordinates) else Coordinates.from_dict(coords)
        if record.viewer_location == location:
            return False

        record.viewer_location = location
        self._recompute_distance()
        self._notify()
        return True

    def reset(self) -> None:
        """Drop the tracked record; late responses for it will be discarded"""
        if self._record is not None:
            self.logger.info(f"Stopped tracking emergency {self._record.id}")
        self._generation += 1
        had_record = self._record is not None
        self._record = None
        if had_record:
            self._notify()

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """
        Register a change observer.

        Returns:
            Callable that removes the observer
        """
        self._observers.append(observer)

        def unsubscribe():
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def _recompute_distance(self):
        record = self._record
        ambulance_location = record.ambulance.location if record.ambulance else None
        if record.viewer_location and ambulance_location:
            record.ambulance_distance_km = haversine_distance(record.viewer_location, ambulance_location)
        else:
            record.ambulance_distance_km = None

    def _notify(self):
        if self._flush_scheduled:
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._flush()
            return

        self._flush_scheduled = True
        loop.call_soon(self._flush)

    def _flush(self):
        self._flush_scheduled = False
        record = self._record
        for observer in list(self._observers):
            try:
                observer(record)
            except Exception as e:
                self.logger.error(f"Error in store observer {observer!r}: {e}", exc_info=True)
