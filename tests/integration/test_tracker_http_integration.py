"""
Integration Tests for emergency tracking over HTTP

Runs the tracker against an in-process aiohttp backend serving the
emergency endpoints.
"""

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from medilink.models.emergency import EmergencyStatus
from medilink.services.tracking import (
    EmergencyAPIClient, EmergencyAPIError, EmergencyStateStore, GeolocationAcquirer,
    PollingScheduler, TrackerController
)
from tests.utils import AsyncTestHelper, make_snapshot_payload


class FakeBackend:
    """Mutable backend state behind the aiohttp routes"""

    def __init__(self):
        self.emergencies = {"E-123": make_snapshot_payload()}
        self.locations = {"E-123": {"lat": -1.2800, "lng": 36.8100}}
        self.eta = {}
        self.fail_status = False
        self.refuse_cancel = False
        self.requests = []

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_get('/api/emergency/{id}', self.snapshot)
        app.router.add_get('/api/emergency/{id}/status', self.status)
        app.router.add_get('/api/emergency/{id}/ambulance/location', self.location)
        app.router.add_post('/api/emergency/{id}/cancel', self.cancel)
        return app

    def _lookup(self, request):
        emergency_id = request.match_info['id']
        self.requests.append((request.method, request.path))
        if emergency_id not in self.emergencies:
            raise web.HTTPNotFound(text='{"error": "not found"}', content_type='application/json')
        return emergency_id, self.emergencies[emergency_id]

    async def snapshot(self, request):
        _, emergency = self._lookup(request)
        return web.json_response(emergency)

    async def status(self, request):
        emergency_id, emergency = self._lookup(request)
        if self.fail_status:
            raise web.HTTPServiceUnavailable()
        return web.json_response({"status": emergency["status"],
                                  "estimatedArrival": self.eta.get(emergency_id)})

    async def location(self, request):
        emergency_id, _ = self._lookup(request)
        return web.json_response({"location": self.locations[emergency_id]})

    async def cancel(self, request):
        _, emergency = self._lookup(request)
        if self.refuse_cancel:
            return web.json_response({"success": False, "message": "ambulance already arrived"})
        emergency["status"] = "cancelled"
        return web.json_response({"success": True})


@pytest.fixture
def backend():
    return FakeBackend()


@pytest_asyncio.fixture
async def server(backend):
    server = TestServer(backend.app())
    await server.start_server()
    yield server
    await server.close()


@pytest_asyncio.fixture
async def client(server):
    client = EmergencyAPIClient(str(server.make_url('/')), timeout=2)
    yield client
    await client.close()


@pytest_asyncio.fixture
async def controller(client):
    store = EmergencyStateStore()
    scheduler = PollingScheduler(client, store, interval=0.02, failure_threshold=2, backoff_max=0.05)
    controller = TrackerController(client, store=store, scheduler=scheduler,
                                   geolocator=GeolocationAcquirer(), confirm=lambda prompt: True)
    yield controller
    await controller.close()
    await scheduler.join()


@pytest.mark.integration
class TestTrackerOverHTTP:
    """End-to-end tracking against the HTTP backend"""

    @pytest.mark.asyncio
    async def test_client_endpoints(self, client, backend):
        backend.eta["E-123"] = 14

        snapshot = await client.fetch_snapshot("E-123")
        status = await client.fetch_status("E-123")
        location = await client.fetch_ambulance_location("E-123")

        assert snapshot.id == "E-123"
        assert status.estimated_arrival_minutes == 14
        assert location.location.lat == -1.28
        assert ("GET", "/api/emergency/E-123/ambulance/location") in backend.requests

    @pytest.mark.asyncio
    async def test_unknown_emergency_is_client_error(self, client):
        with pytest.raises(EmergencyAPIError, match="404"):
            await client.fetch_snapshot("E-404")

    @pytest.mark.asyncio
    async def test_follows_backend_progress_to_completion(self, controller, backend):
        await controller.open("E-123")
        store = controller.store

        backend.emergencies["E-123"]["status"] = "dispatched"
        assert await AsyncTestHelper.wait_for_condition(
            lambda: store.record.status == EmergencyStatus.DISPATCHED)

        backend.emergencies["E-123"]["status"] = "en_route"
        backend.eta["E-123"] = 6
        backend.locations["E-123"] = {"lat": -1.2900, "lng": 36.8200}
        assert await AsyncTestHelper.wait_for_condition(
            lambda: store.record.ambulance.location.lat == -1.29
            and store.record.estimated_arrival_minutes == 6)

        backend.emergencies["E-123"]["status"] = "completed"
        assert await AsyncTestHelper.wait_for_condition(lambda: not controller.scheduler.is_active)

        assert [e.status for e in store.record.status_history] == [
            EmergencyStatus.PENDING, EmergencyStatus.DISPATCHED,
            EmergencyStatus.EN_ROUTE, EmergencyStatus.COMPLETED
        ]
        assert "[c] Cancel Emergency" not in controller.render()

    @pytest.mark.asyncio
    async def test_cancel_round_trip(self, controller, backend):
        await controller.open("E-123")

        assert await controller.cancel() is True

        assert backend.emergencies["E-123"]["status"] == "cancelled"
        assert controller.store.record.status == EmergencyStatus.CANCELLED
        assert not controller.scheduler.is_active

    @pytest.mark.asyncio
    async def test_refused_cancel(self, controller, backend):
        backend.refuse_cancel = True
        await controller.open("E-123")

        assert await controller.cancel() is False
        assert controller.last_error is not None
        assert controller.store.record.status == EmergencyStatus.PENDING

    @pytest.mark.asyncio
    async def test_missing_emergency_falls_back(self, controller):
        await controller.open("E-404")

        assert controller.is_fallback
        assert controller.store.record.id == "E-404"
        assert controller.store.record.status == EmergencyStatus.EN_ROUTE

    @pytest.mark.asyncio
    async def test_outage_marks_connection_lost(self, controller, backend):
        await controller.open("E-123")
        backend.fail_status = True

        assert await AsyncTestHelper.wait_for_condition(lambda: controller.connection_lost, timeout=2)

        backend.fail_status = False
        assert await AsyncTestHelper.wait_for_condition(lambda: not controller.connection_lost, timeout=2)
