"""
Emergency Tracker Controller

Composition root for live emergency tracking: loads the initial snapshot
(or the offline fallback), acquires the viewer's location, runs the polling
scheduler, and exposes the user actions of the tracking view.
"""

import asyncio
import inspect
from typing import Any, Callable, Optional

from medilink.core.logging import get_structured_logger
from medilink.models.emergency import Coordinates, EmergencySnapshot, EmergencyStatus
from .api_client import EmergencyAPIClient, EmergencyAPIError
from .fallback import build_fallback_snapshot
from .geolocation import GeolocationAcquirer
from .polling_scheduler import PollingScheduler
from .state_store import EmergencyStateStore
from .view import phone_uri, render_tracker

CANCEL_PROMPT = "Are you sure you want to cancel this emergency request?"
CANCEL_FAILED_MESSAGE = ("Could not cancel the emergency request. "
                         "Please try again or call emergency services directly.")


class TrackerController:
    """Wires the tracking components together and handles user actions"""

    def __init__(self, client: EmergencyAPIClient,
                 store: Optional[EmergencyStateStore] = None,
                 scheduler: Optional[PollingScheduler] = None,
                 geolocator: Optional[GeolocationAcquirer] = None,
                 confirm: Optional[Callable[[str], Any]] = None,
                 dialer: Optional[Callable[[str], Any]] = None,
                 on_close: Optional[Callable[[], Any]] = None,
                 poll_interval: Optional[float] = None,
                 distance_unit: str = 'km'):
        """
        Args:
            client: Backend client
            store: State store (created if omitted)
            scheduler: Polling scheduler bound to the same store (created if omitted)
            geolocator: Viewer location source (fallback-only if omitted)
            confirm: Yes/no prompt used before cancelling; sync or async
            dialer: Receives tel: links from the contact actions
            on_close: Host callback invoked when the user dismisses the tracker
            poll_interval: Override for the scheduler interval
            distance_unit: 'km' or 'miles' for the rendered view
        """
        self.client = client
        self.store = store or EmergencyStateStore()
        self.scheduler = scheduler or PollingScheduler(client, self.store)
        self.geolocator = geolocator or GeolocationAcquirer()
        self.confirm = confirm
        self.dialer = dialer
        self.on_close = on_close
        self.poll_interval = poll_interval
        self.distance_unit = distance_unit
        self.log = get_structured_logger('tracking.controller')

        self.emergency_id: Optional[str] = None
        self.last_error: Optional[str] = None
        self._generation: Optional[int] = None
        self._session = 0
        self._viewer_location: Optional[Coordinates] = None
        self._geolocation_task: Optional[asyncio.Task] = None

    @property
    def connection_lost(self) -> bool:
        return self.scheduler.connection_lost

    @property
    def is_fallback(self) -> bool:
        record = self.store.record
        return record is not None and record.is_fallback

    def subscribe(self, observer):
        """Register a re-render callback; returns an unsubscribe callable"""
        return self.store.subscribe(observer)

    async def open(self, emergency_id: str) -> bool:
        """
        Start tracking an emergency.

        Returns:
            True if tracking started; False if the session was closed or
            replaced before the snapshot arrived
        """
        if self.emergency_id is not None:
            await self.close()

        self._session += 1
        session = self._session
        self.emergency_id = emergency_id
        self.last_error = None
        self.log.info("tracker_opening", emergency_id=emergency_id)

        self._geolocation_task = asyncio.create_task(self._acquire_location(emergency_id, session))

        snapshot = await self._load_snapshot(emergency_id)
        if session != self._session:
            self.log.info("snapshot_discarded", emergency_id=emergency_id)
            return False

        self._generation = self.store.initialize(snapshot)
        if self._viewer_location is not None:
            self.store.set_viewer_location(self._viewer_location, emergency_id, self._generation)

        if not snapshot.status.is_terminal:
            self.scheduler.start(emergency_id, interval=self.poll_interval, generation=self._generation)

        self.log.info("tracker_opened", emergency_id=emergency_id,
                      status=snapshot.status.value, fallback=snapshot.is_fallback)
        return True

    async def _load_snapshot(self, emergency_id: str) -> EmergencySnapshot:
        try:
            return await self.client.fetch_snapshot(emergency_id)
        except EmergencyAPIError as e:
            self.log.warning("snapshot_unavailable_using_fallback",
                             emergency_id=emergency_id, error=str(e))
            return build_fallback_snapshot(emergency_id)

    async def _acquire_location(self, emergency_id: str, session: int):
        coordinates = await self.geolocator.acquire()
        if session != self._session:
            return

        self._viewer_location = coordinates
        if self._generation is not None:
            self.store.set_viewer_location(coordinates, emergency_id, self._generation)

    async def cancel(self) -> bool:
        """
        Cancel the tracked emergency after confirmation.

        The local record only changes once the backend acknowledges; on
        failure last_error holds a message for the user.

        Returns:
            True if the emergency was cancelled
        """
        record = self.store.record
        if record is None or record.is_terminal or self.emergency_id is None:
            return False

        if not await self._confirm(CANCEL_PROMPT):
            self.log.info("cancel_declined", emergency_id=self.emergency_id)
            return False

        emergency_id = self.emergency_id
        generation = self._generation
        self.last_error = None

        try:
            await self.client.cancel_emergency(emergency_id)
        except EmergencyAPIError as e:
            self.last_error = CANCEL_FAILED_MESSAGE
            self.log.error("cancel_failed", emergency_id=emergency_id, error=str(e))
            return False

        if not self.store.is_current(emergency_id, generation):
            self.log.info("cancel_acknowledged_after_close", emergency_id=emergency_id)
            return False

        applied = self.store.apply_status_update(EmergencyStatus.CANCELLED,
                                                 emergency_id=emergency_id, generation=generation)
        self.scheduler.stop()
        if applied:
            self.log.info("emergency_cancelled", emergency_id=emergency_id)
        else:
            # A poll committed a terminal status while the request was in flight
            self.log.info("cancel_superseded", emergency_id=emergency_id,
                          status=self.store.record.status.value)
        return applied

    async def _confirm(self, prompt: str) -> bool:
        if self.confirm is None:
            return False
        answer = self.confirm(prompt)
        if inspect.isawaitable(answer):
            answer = await answer
        return bool(answer)

    async def refresh_now(self) -> bool:
        """Fetch status and location immediately"""
        if self.emergency_id is None or self._generation is None:
            return False
        return await self.scheduler.poll_once(self.emergency_id, self._generation)

    def contact_ambulance(self) -> Optional[str]:
        """Dial the ambulance crew; returns the tel: link used"""
        record = self.store.record
        ambulance = record.ambulance if record else None
        return self._dial(ambulance.phone if ambulance else None)

    def contact_hospital(self) -> Optional[str]:
        """Dial the assigned hospital; returns the tel: link used"""
        record = self.store.record
        hospital = record.assigned_hospital if record else None
        return self._dial(hospital.phone if hospital else None)

    def _dial(self, phone: Optional[str]) -> Optional[str]:
        uri = phone_uri(phone)
        if uri and self.dialer:
            self.dialer(uri)
        return uri

    def render(self) -> str:
        """Render the current tracking view"""
        return render_tracker(self.store.record,
                              connection_lost=self.connection_lost,
                              notice=self.last_error,
                              unit=self.distance_unit)

    def dismiss(self):
        """User closed the tracker; hand control back to the host"""
        if self.on_close:
            self.on_close()

    async def close(self):
        """Tear down polling and location lookups and drop the record"""
        self._session += 1
        self.scheduler.stop()

        task = self._geolocation_task
        self._geolocation_task = None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        emergency_id = self.emergency_id
        self.store.reset()
        self.emergency_id = None
        self._generation = None
        self._viewer_location = None
        self.last_error = None

        if emergency_id is not None:
            self.log.info("tracker_closed", emergency_id=emergency_id)
