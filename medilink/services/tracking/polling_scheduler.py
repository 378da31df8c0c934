"""
Polling Scheduler

Drives periodic status and ambulance-location refreshes for one tracked
emergency and feeds the results into the EmergencyStateStore.
"""

import asyncio
from typing import Dict, List, Optional, Set, Tuple

from medilink.core.logging import get_logger
from .api_client import EmergencyAPIClient, EmergencyAPIError
from .state_store import EmergencyStateStore

STATUS = "status"
LOCATION = "location"

RequestKey = Tuple[str, str, int]


class PollingScheduler:
    """
    Fixed-interval refresh loop for a single emergency.

    Each tick fires a status request and a location request without waiting
    for the previous tick to finish, but never has two requests for the same
    resource in flight at once. Results are tagged with the identifier and
    store generation they were requested for, so anything that resolves after
    a reset or identifier change is discarded by the store.

    A failed request is logged and skipped. Consecutive failed ticks stretch
    the next period (interval * 2**failures, capped at backoff_max) and, past
    failure_threshold, mark the connection as lost until a tick succeeds.
    """

    def __init__(self, client: EmergencyAPIClient, store: EmergencyStateStore,
                 interval: float = 30, failure_threshold: int = 5,
                 backoff_max: float = 300):
        if interval <= 0:
            raise ValueError(f"Interval must be positive, got: {interval}")

        self.client = client
        self.store = store
        self.interval = interval
        self.failure_threshold = failure_threshold
        self.backoff_max = max(backoff_max, interval)
        self.logger = get_logger('tracking.scheduler')

        self.emergency_id: Optional[str] = None
        self.generation: Optional[int] = None
        self.tick_count = 0
        self.consecutive_failures = 0
        self.connection_lost = False

        self._active = False
        self._run_id = 0
        self._task: Optional[asyncio.Task] = None
        self._in_flight: Dict[RequestKey, asyncio.Task] = {}
        self._tick_tasks: Set[asyncio.Task] = set()

    @property
    def is_active(self) -> bool:
        return self._active

    def start(self, emergency_id: str, interval: Optional[float] = None,
              generation: Optional[int] = None):
        """
        Begin polling for emergency_id.

        Must be called from within a running event loop. Starting while
        already running restarts the loop for the new identifier.
        """
        if interval is not None:
            if interval <= 0:
                raise ValueError(f"Interval must be positive, got: {interval}")
            self.interval = interval
            self.backoff_max = max(self.backoff_max, interval)

        if self._active:
            self.stop()

        generation = self.store.generation if generation is None else generation
        if not self.store.is_current(emergency_id, generation):
            self.logger.warning(f"Not polling {emergency_id}: it is not the tracked emergency")
            return
        if self.store.is_terminal:
            self.logger.info(f"Not polling {emergency_id}: emergency is already closed")
            return

        self.emergency_id = emergency_id
        self.generation = generation
        self.tick_count = 0
        self.consecutive_failures = 0
        self.connection_lost = False
        self._run_id += 1
        self._active = True
        self._task = asyncio.create_task(self._run(self._run_id))

        self.logger.info(f"Polling emergency {emergency_id} every {self.interval}s")

    def stop(self):
        """
        Cancel the timer. Safe to call repeatedly.

        In-flight requests are left to resolve; their results are filtered by
        the store's identity check.
        """
        if not self._active and self._task is None:
            return

        was_active = self._active
        self._active = False
        task = self._task
        self._task = None

        if task is not None and not task.done():
            try:
                current = asyncio.current_task()
            except RuntimeError:
                current = None
            if task is not current:
                task.cancel()

        if was_active:
            self.logger.info(f"Stopped polling emergency {self.emergency_id}")

    async def join(self):
        """Wait for the timer task and any outstanding requests to finish"""
        pending: List[asyncio.Task] = list(self._tick_tasks) + list(self._in_flight.values())
        if self._task is not None:
            pending.append(self._task)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    def next_delay(self) -> float:
        """Seconds until the next tick, including failure backoff"""
        if self.consecutive_failures == 0:
            return self.interval
        exponent = min(self.consecutive_failures, 16)
        return min(self.interval * (2 ** exponent), self.backoff_max)

    async def poll_once(self, emergency_id: Optional[str] = None,
                        generation: Optional[int] = None) -> bool:
        """
        Refresh status and location now, outside the timer cadence.

        A request already in flight for a resource is awaited instead of
        duplicated.

        Returns:
            True if every refresh succeeded
        """
        emergency_id = emergency_id or self.emergency_id or self.store.tracked_id
        if generation is None:
            generation = self.generation if emergency_id == self.emergency_id else self.store.generation

        if emergency_id is None or not self.store.is_current(emergency_id, generation):
            self.logger.debug("Manual refresh skipped: no tracked emergency")
            return False
        if self.store.is_terminal:
            self.logger.debug(f"Manual refresh skipped: emergency {emergency_id} is closed")
            return False

        tasks = [self._launch(resource, emergency_id, generation, join_existing=True)
                 for resource in (STATUS, LOCATION)]
        results = await asyncio.gather(*tasks)
        succeeded = all(results)
        self._record_outcome(self._run_id, succeeded)
        return succeeded

    async def _run(self, run_id: int):
        self.logger.debug(f"Polling loop started for {self.emergency_id}")

        try:
            while self._active and run_id == self._run_id:
                await asyncio.sleep(self.next_delay())

                if not self._active or run_id != self._run_id:
                    break
                if self.store.is_terminal or not self.store.is_current(self.emergency_id, self.generation):
                    self.logger.info(f"Emergency {self.emergency_id} is no longer live, stopping polling")
                    self.stop()
                    break

                self._tick(run_id)

        except asyncio.CancelledError:
            self.logger.debug(f"Polling loop for {self.emergency_id} cancelled")

        self.logger.debug(f"Polling loop ended for {self.emergency_id}")

    def _tick(self, run_id: int):
        self.tick_count += 1
        self.logger.debug(f"Tick #{self.tick_count} for {self.emergency_id}")

        launched = [self._launch(resource, self.emergency_id, self.generation)
                    for resource in (STATUS, LOCATION)]
        launched = [task for task in launched if task is not None]
        if not launched:
            return

        tick_task = asyncio.create_task(self._settle_tick(run_id, launched))
        self._tick_tasks.add(tick_task)
        tick_task.add_done_callback(self._tick_tasks.discard)

    async def _settle_tick(self, run_id: int, tasks: List[asyncio.Task]):
        results = await asyncio.gather(*tasks)
        self._record_outcome(run_id, all(results))

    def _launch(self, resource: str, emergency_id: str, generation: int,
                join_existing: bool = False) -> Optional[asyncio.Task]:
        key = (resource, emergency_id, generation)
        existing = self._in_flight.get(key)
        if existing is not None and not existing.done():
            if join_existing:
                return existing
            self.logger.debug(f"{resource} request for {emergency_id} still in flight, skipping")
            return None

        if resource == STATUS:
            coro = self._refresh_status(emergency_id, generation)
        else:
            coro = self._refresh_location(emergency_id, generation)

        task = asyncio.create_task(coro)
        self._in_flight[key] = task

        def _done(finished: asyncio.Task, key=key):
            if self._in_flight.get(key) is finished:
                del self._in_flight[key]

        task.add_done_callback(_done)
        return task

    async def _refresh_status(self, emergency_id: str, generation: int) -> bool:
        try:
            update = await self.client.fetch_status(emergency_id)
        except EmergencyAPIError as e:
            self.logger.warning(f"Status refresh for {emergency_id} failed: {e}")
            return False
        except Exception as e:
            self.logger.error(f"Unexpected error refreshing status for {emergency_id}: {e}", exc_info=True)
            return False

        self.store.apply_status_update(
            update.status,
            update.estimated_arrival_minutes,
            emergency_id=update.emergency_id,
            generation=generation
        )

        if (self._active and emergency_id == self.emergency_id
                and self.store.is_current(emergency_id, generation) and self.store.is_terminal):
            self.logger.info(f"Emergency {emergency_id} reached {self.store.record.status.value}")
            self.stop()
        return True

    async def _refresh_location(self, emergency_id: str, generation: int) -> bool:
        try:
            update = await self.client.fetch_ambulance_location(emergency_id)
        except EmergencyAPIError as e:
            self.logger.warning(f"Location refresh for {emergency_id} failed: {e}")
            return False
        except Exception as e:
            self.logger.error(f"Unexpected error refreshing location for {emergency_id}: {e}", exc_info=True)
            return False

        self.store.apply_location_update(
            update.location,
            emergency_id=update.emergency_id,
            generation=generation
        )
        return True

    def _record_outcome(self, run_id: int, succeeded: bool):
        if run_id != self._run_id:
            return

        if succeeded:
            if self.connection_lost:
                self.logger.info(f"Live updates for {self.emergency_id} restored")
            self.consecutive_failures = 0
            self.connection_lost = False
            return

        self.consecutive_failures += 1
        if self.consecutive_failures >= self.failure_threshold and not self.connection_lost:
            self.connection_lost = True
            self.logger.warning(
                f"Lost live updates for {self.emergency_id} after "
                f"{self.consecutive_failures} failed refreshes"
            )
