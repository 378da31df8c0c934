"""
Unit Tests for PollingScheduler

Tests the refresh loop lifecycle, single-flight requests, failure backoff
and stale-response handling.
"""

import asyncio
import pytest
import pytest_asyncio

from medilink.models.emergency import EmergencySnapshot, EmergencyStatus
from medilink.services.tracking.api_client import EmergencyAPIError
from medilink.services.tracking.polling_scheduler import PollingScheduler
from tests.utils import AsyncTestHelper, make_snapshot_payload


@pytest.fixture
def tracked_store(store, pending_snapshot):
    store.initialize(pending_snapshot)
    return store


@pytest_asyncio.fixture
async def scheduler(mock_api, tracked_store):
    scheduler = PollingScheduler(mock_api, tracked_store, interval=0.01,
                                 failure_threshold=2, backoff_max=0.02)
    yield scheduler
    scheduler.stop()
    for endpoint in ("status", "location"):
        mock_api.release(endpoint)
    await scheduler.join()


class TestPollingLifecycle:
    """Start/stop behaviour"""

    def test_interval_must_be_positive(self, mock_api, store):
        with pytest.raises(ValueError, match="Interval must be positive"):
            PollingScheduler(mock_api, store, interval=0)

    def test_stop_without_start(self, mock_api, store):
        scheduler = PollingScheduler(mock_api, store)
        scheduler.stop()
        scheduler.stop()
        assert not scheduler.is_active

    @pytest.mark.asyncio
    async def test_polls_both_resources_each_tick(self, scheduler, mock_api, tracked_store):
        scheduler.start("E-123")
        assert scheduler.is_active

        assert await AsyncTestHelper.wait_for_condition(lambda: scheduler.tick_count >= 3)
        assert mock_api.call_count("status") >= 2
        assert mock_api.call_count("location") >= 2

    @pytest.mark.asyncio
    async def test_stop_halts_fetches(self, scheduler, mock_api):
        scheduler.start("E-123")
        assert await AsyncTestHelper.wait_for_condition(lambda: scheduler.tick_count >= 1)

        scheduler.stop()
        scheduler.stop()
        await scheduler.join()
        calls = len(mock_api.calls)

        await asyncio.sleep(0.05)
        assert len(mock_api.calls) == calls
        assert not scheduler.is_active

    @pytest.mark.asyncio
    async def test_not_started_for_untracked_emergency(self, scheduler):
        scheduler.start("E-999")
        assert not scheduler.is_active

    @pytest.mark.asyncio
    async def test_not_started_for_closed_emergency(self, mock_api, store):
        store.initialize(EmergencySnapshot.from_dict(make_snapshot_payload(status="completed")))
        scheduler = PollingScheduler(mock_api, store, interval=0.01)

        scheduler.start("E-123")

        assert not scheduler.is_active
        await asyncio.sleep(0.03)
        assert mock_api.calls == []

    @pytest.mark.asyncio
    async def test_status_applied_to_store(self, scheduler, mock_api, tracked_store):
        mock_api.status = {"status": "en_route", "estimatedArrivalMinutes": 9}
        scheduler.start("E-123")

        assert await AsyncTestHelper.wait_for_condition(
            lambda: tracked_store.record.status == EmergencyStatus.EN_ROUTE
        )
        assert tracked_store.record.estimated_arrival_minutes == 9

    @pytest.mark.asyncio
    async def test_location_applied_to_store(self, scheduler, mock_api, tracked_store):
        mock_api.location = {"location": {"lat": -1.2999, "lng": 36.8001}}
        scheduler.start("E-123")

        assert await AsyncTestHelper.wait_for_condition(
            lambda: tracked_store.record.ambulance.location.lat == -1.2999
        )

    @pytest.mark.asyncio
    async def test_stops_itself_on_terminal_status(self, scheduler, mock_api, tracked_store):
        mock_api.status = {"status": "completed"}
        scheduler.start("E-123")

        assert await AsyncTestHelper.wait_for_condition(lambda: not scheduler.is_active)
        await scheduler.join()
        calls = len(mock_api.calls)

        await asyncio.sleep(0.05)
        assert tracked_store.record.status == EmergencyStatus.COMPLETED
        assert len(mock_api.calls) == calls

    @pytest.mark.asyncio
    async def test_restart_resets_counters(self, scheduler, mock_api):
        mock_api.status_error = EmergencyAPIError("boom")
        scheduler.start("E-123")
        assert await AsyncTestHelper.wait_for_condition(lambda: scheduler.consecutive_failures >= 1)

        mock_api.status_error = None
        scheduler.start("E-123")

        assert scheduler.consecutive_failures == 0
        assert scheduler.is_active


class TestSingleFlight:
    """Overlapping ticks never duplicate a request"""

    @pytest.mark.asyncio
    async def test_slow_status_request_not_duplicated(self, scheduler, mock_api):
        mock_api.hold("status")
        scheduler.start("E-123")

        assert await AsyncTestHelper.wait_for_condition(lambda: scheduler.tick_count >= 4)
        assert mock_api.call_count("status") == 1
        assert mock_api.call_count("location") >= 3

        mock_api.release("status")
        assert await AsyncTestHelper.wait_for_condition(lambda: mock_api.call_count("status") >= 2)

    @pytest.mark.asyncio
    async def test_poll_once_joins_in_flight_request(self, scheduler, mock_api, tracked_store):
        mock_api.hold("status")
        mock_api.status = {"status": "dispatched"}
        scheduler.start("E-123")
        assert await AsyncTestHelper.wait_for_condition(lambda: mock_api.call_count("status") == 1)

        manual = asyncio.create_task(scheduler.poll_once())
        await asyncio.sleep(0.02)
        assert mock_api.call_count("status") == 1

        mock_api.release("status")
        assert await manual is True
        assert tracked_store.record.status == EmergencyStatus.DISPATCHED


class TestFailures:
    """Failed refreshes are skipped and backed off"""

    @pytest.mark.asyncio
    async def test_failed_tick_keeps_polling(self, scheduler, mock_api):
        mock_api.status_error = EmergencyAPIError("HTTP 503")
        scheduler.start("E-123")

        assert await AsyncTestHelper.wait_for_condition(lambda: mock_api.call_count("status") >= 3)
        assert scheduler.is_active

    @pytest.mark.asyncio
    async def test_unexpected_error_is_contained(self, scheduler, mock_api):
        mock_api.location_error = RuntimeError("decoder exploded")
        scheduler.start("E-123")

        assert await AsyncTestHelper.wait_for_condition(lambda: mock_api.call_count("location") >= 2)
        assert scheduler.is_active

    @pytest.mark.asyncio
    async def test_connection_lost_and_restored(self, scheduler, mock_api):
        mock_api.status_error = EmergencyAPIError("HTTP 503")
        scheduler.start("E-123")

        assert await AsyncTestHelper.wait_for_condition(lambda: scheduler.connection_lost)
        assert scheduler.consecutive_failures >= 2

        mock_api.status_error = None
        assert await AsyncTestHelper.wait_for_condition(lambda: not scheduler.connection_lost)
        assert scheduler.consecutive_failures == 0

    def test_next_delay_backs_off_to_cap(self, mock_api, store):
        scheduler = PollingScheduler(mock_api, store, interval=30, backoff_max=300)

        assert scheduler.next_delay() == 30
        scheduler.consecutive_failures = 1
        assert scheduler.next_delay() == 60
        scheduler.consecutive_failures = 3
        assert scheduler.next_delay() == 240
        scheduler.consecutive_failures = 50
        assert scheduler.next_delay() == 300


class TestStaleResponses:
    """Responses for a replaced session are discarded"""

    @pytest.mark.asyncio
    async def test_late_status_after_reset_discarded(self, scheduler, mock_api, tracked_store, pending_snapshot):
        mock_api.hold("status")
        mock_api.status = {"status": "dispatched"}
        scheduler.start("E-123")
        assert await AsyncTestHelper.wait_for_condition(lambda: mock_api.call_count("status") == 1)

        scheduler.stop()
        tracked_store.reset()
        tracked_store.initialize(pending_snapshot)

        mock_api.release("status")
        await scheduler.join()

        assert tracked_store.record.status == EmergencyStatus.PENDING
        assert len(tracked_store.record.status_history) == 1


class TestPollOnce:
    """Manual refresh"""

    @pytest.mark.asyncio
    async def test_poll_once_without_timer(self, mock_api, tracked_store):
        scheduler = PollingScheduler(mock_api, tracked_store, interval=60)
        mock_api.status = {"status": "dispatched"}

        assert await scheduler.poll_once("E-123", tracked_store.generation) is True

        assert tracked_store.record.status == EmergencyStatus.DISPATCHED
        assert mock_api.call_count("location") == 1
        assert not scheduler.is_active

    @pytest.mark.asyncio
    async def test_poll_once_reports_failure(self, mock_api, tracked_store):
        scheduler = PollingScheduler(mock_api, tracked_store, interval=60)
        mock_api.location_error = EmergencyAPIError("timeout")

        assert await scheduler.poll_once() is False
        assert scheduler.consecutive_failures == 1

    @pytest.mark.asyncio
    async def test_poll_once_skipped_when_closed(self, mock_api, tracked_store):
        tracked_store.apply_status_update("cancelled")
        scheduler = PollingScheduler(mock_api, tracked_store, interval=60)

        assert await scheduler.poll_once() is False
        assert mock_api.calls == []

    @pytest.mark.asyncio
    async def test_poll_once_skipped_for_other_emergency(self, mock_api, tracked_store):
        scheduler = PollingScheduler(mock_api, tracked_store, interval=60)

        assert await scheduler.poll_once("E-999") is False
        assert mock_api.calls == []
