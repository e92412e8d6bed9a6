"""
test_status_store.py — Tests for the client status store.

Covers:
    • init: device user creation, persisted subset, auto-start polling
    • Polling lifecycle: double start → one loop, double stop → no-op
    • Stop during an in-flight fetch: fetch completes, result discarded
    • Fail-safe: a failed fetch shows safe and the loop keeps going
    • One state replacement (one notification) per fetch
    • Safe acknowledgment and UI mode derivation
    • Nearby-sensor filtering, local persistence, API client

Run with:
    pytest tests/test_status_store.py -v
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, List, Optional

import httpx
import pytest

from bantay.client.api_client import StatusAPIClient
from bantay.client.persistence import ClientPersistence
from bantay.client.state import ClientSessionState, UIMode
from bantay.client.status_store import ClientStatusStore, PollHandle
from bantay.core.errors import TransientFetchError
from bantay.threats.models import ThreatLevel
from bantay.threats.query import FAILURE_DESCRIPTION


# ═══════════════════════════════════════════════════════════════════════════
# Test Fixtures
# ═══════════════════════════════════════════════════════════════════════════

def _threat(level: str, timestamp: str = "2026-10-19T03:00:00Z") -> Dict[str, Any]:
    return {
        "is_active": level != "safe",
        "level": level,
        "description": f"{level} test",
        "polygon": [[14.75, 120.9], [14.4, 121.15]] if level != "safe" else None,
        "timestamp": timestamp,
        "sources": ["Open-Meteo"],
        "last_updated": timestamp,
        "hours_active": 0,
    }


SAFE = _threat("safe")
WARNING = _threat("warning")
DANGER_A = _threat("danger", "2026-10-19T03:00:00Z")
DANGER_B = _threat("danger", "2026-10-19T09:00:00Z")

SENSORS = [
    {"sensor_id": "marikina", "name": "Marikina Station", "water_level": 2.7,
     "location": {"lat": 14.65, "lng": 121.05}},
    {"sensor_id": "paranaque", "name": "Parañaque Station", "water_level": 1.0,
     "location": {"lat": 14.48, "lng": 121.0}},
    {"sensor_id": "navotas", "name": "Navotas Station", "water_level": 1.1,
     "location": {"lat": 14.67, "lng": 120.94}},
]

OUTAGE = TransientFetchError("status-api", "HTTP 503")


class FakeAPI:
    """Scripted stand-in for StatusAPIClient."""

    def __init__(self, statuses: Optional[List[Any]] = None, sensors: Optional[list] = None):
        self.statuses = list(statuses or [SAFE])
        self.sensors = sensors if sensors is not None else list(SENSORS)
        self.gate: Optional[asyncio.Event] = None
        self.status_calls = 0
        self.sensor_calls = 0
        self.safe_calls: List[str] = []
        self.location_calls: List[tuple] = []
        self.fail_writes = False
        self.closed = False

    async def fetch_status(self) -> Dict[str, Any]:
        self.status_calls += 1
        if self.gate is not None:
            await self.gate.wait()
        item = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        if isinstance(item, Exception):
            raise item
        return dict(item)

    async def fetch_sensors(self) -> list:
        self.sensor_calls += 1
        return [dict(s) for s in self.sensors]

    async def mark_safe(self, user_id: str) -> Dict[str, Any]:
        if self.fail_writes:
            raise OUTAGE
        self.safe_calls.append(user_id)
        return {"success": True, "user_id": user_id, "is_safe": True}

    async def save_location(self, user_id: str, home_location: Dict[str, Any]) -> Dict[str, Any]:
        if self.fail_writes:
            raise OUTAGE
        self.location_calls.append((user_id, home_location))
        return {"success": True}

    async def close(self) -> None:
        self.closed = True


async def _eventually(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.005)


def _store(tmp_path, api: FakeAPI, poll_interval: float = 3600.0) -> ClientStatusStore:
    return ClientStatusStore(
        api, ClientPersistence(tmp_path / "session.json"), poll_interval=poll_interval,
    )


async def _onboarded(tmp_path, api: FakeAPI, poll_interval: float = 3600.0) -> ClientStatusStore:
    """A store for a returning user; its first automatic poll has completed."""
    ClientPersistence(tmp_path / "session.json").save({
        "user": {"id": "user-abc"},
        "has_completed_onboarding": True,
        "home_location": {"lat": 14.65, "lng": 121.05},
        "location_permission": "granted",
    })
    store = _store(tmp_path, api, poll_interval)
    await store.init()
    await _eventually(lambda: store.state.last_checked is not None)
    return store


# ═══════════════════════════════════════════════════════════════════════════
# Lifecycle
# ═══════════════════════════════════════════════════════════════════════════

class TestInit:

    async def test_fresh_install_creates_user_and_waits_for_onboarding(self, tmp_path):
        api = FakeAPI()
        store = _store(tmp_path, api)
        state = await store.init()

        assert state.user_id.startswith("user-")
        assert state.ui_mode == UIMode.ONBOARDING
        assert store.poll_handle is None
        assert api.status_calls == 0
        saved = json.loads((tmp_path / "session.json").read_text())
        assert saved["user"]["id"] == state.user_id
        await store.teardown()

    async def test_returning_user_starts_polling(self, tmp_path):
        api = FakeAPI([WARNING])
        store = await _onboarded(tmp_path, api)
        assert store.state.is_polling
        assert store.state.user_id == "user-abc"
        assert store.state.current_status == ThreatLevel.WARNING
        assert store.ui_mode == UIMode.DASHBOARD
        await store.teardown()

    async def test_teardown_persists_and_closes(self, tmp_path):
        api = FakeAPI()
        store = await _onboarded(tmp_path, api)
        await store.teardown()
        assert api.closed
        assert not store.state.is_polling
        reloaded = ClientPersistence(tmp_path / "session.json").load()
        assert reloaded["has_completed_onboarding"] is True

    def test_poll_interval_must_be_positive(self, tmp_path):
        with pytest.raises(ValueError):
            _store(tmp_path, FakeAPI(), poll_interval=0)


class TestPollingLifecycle:

    async def test_double_start_leaves_one_loop(self, tmp_path):
        api = FakeAPI()
        store = _store(tmp_path, api)
        await store.init()

        first = store.start_polling()
        second = store.start_polling()
        assert isinstance(first, PollHandle)
        assert not first.active
        assert second.active
        assert store.poll_handle is second

        await _eventually(lambda: api.status_calls >= 1 and store.state.last_checked is not None)
        await asyncio.sleep(0.05)
        assert api.status_calls == 1
        assert first.task.done()
        await store.teardown()

    async def test_double_stop_is_noop(self, tmp_path):
        store = await _onboarded(tmp_path, FakeAPI())
        handle = store.poll_handle
        store.stop_polling()
        store.stop_polling()
        assert not handle.active
        assert store.poll_handle is None
        assert not store.state.is_polling
        await store.teardown()

    async def test_stop_without_start(self, tmp_path):
        store = _store(tmp_path, FakeAPI())
        store.stop_polling()
        assert store.poll_handle is None

    async def test_repeats_on_interval(self, tmp_path):
        api = FakeAPI()
        store = await _onboarded(tmp_path, api, poll_interval=0.01)
        await _eventually(lambda: api.status_calls >= 3)
        await store.teardown()

    async def test_stop_during_fetch_discards_result(self, tmp_path):
        api = FakeAPI([DANGER_A])
        api.gate = asyncio.Event()
        store = _store(tmp_path, api)
        await store.init()

        store.start_polling()
        await _eventually(lambda: api.status_calls == 1)
        store.stop_polling()
        api.gate.set()
        await _eventually(lambda: api.sensor_calls == 1)
        await asyncio.sleep(0.01)

        # fetch ran to completion but its result was not applied
        assert store.state.current_status == ThreatLevel.SAFE
        assert store.state.threat_data is None
        assert store.state.last_checked is None
        await store.teardown()


# ═══════════════════════════════════════════════════════════════════════════
# Fetch behaviour
# ═══════════════════════════════════════════════════════════════════════════

class TestFetch:

    async def test_failure_defaults_to_safe(self, tmp_path):
        api = FakeAPI([DANGER_A, OUTAGE])
        store = await _onboarded(tmp_path, api)
        assert store.state.current_status == ThreatLevel.DANGER

        state = await store.fetch_current_status()
        assert state.current_status == ThreatLevel.SAFE
        assert state.error
        assert state.ui_mode == UIMode.DASHBOARD
        await store.teardown()

    async def test_loop_survives_failures(self, tmp_path):
        api = FakeAPI([OUTAGE, OUTAGE, WARNING])
        store = _store(tmp_path, api, poll_interval=0.01)
        await store.init()
        seen: List[ClientSessionState] = []
        store.subscribe(seen.append)

        store.start_polling()
        await _eventually(lambda: store.state.current_status == ThreatLevel.WARNING)
        failed = [s for s in seen if s.error]
        assert len(failed) >= 2
        assert all(s.current_status == ThreatLevel.SAFE for s in failed)
        await store.teardown()

    async def test_failure_replaces_stale_threat_data(self, tmp_path):
        api = FakeAPI([DANGER_A, OUTAGE])
        store = await _onboarded(tmp_path, api)
        assert store.state.threat_data["level"] == "danger"

        state = await store.fetch_current_status()
        assert state.threat_data["level"] == "safe"
        assert state.threat_data["is_active"] is False
        assert state.threat_data["polygon"] is None
        assert state.threat_data["description"] == FAILURE_DESCRIPTION
        await store.teardown()

    async def test_unexpected_error_keeps_loop_alive(self, tmp_path):
        api = FakeAPI([RuntimeError("boom"), SAFE, SAFE])
        store = _store(tmp_path, api, poll_interval=0.01)
        await store.init()
        seen: List[ClientSessionState] = []
        store.subscribe(seen.append)

        handle = store.start_polling()
        await _eventually(lambda: api.status_calls >= 3)
        assert not handle.task.done()
        assert store.state.is_polling

        crashed = [s for s in seen if s.error == "boom"]
        assert crashed
        assert crashed[0].current_status == ThreatLevel.SAFE
        assert crashed[0].threat_data["level"] == "safe"
        await _eventually(lambda: store.state.error is None)
        await store.teardown()

    async def test_one_notification_per_fetch(self, tmp_path):
        api = FakeAPI([SAFE, WARNING])
        store = await _onboarded(tmp_path, api)
        store.update_user_location(14.64, 121.05)
        seen: List[ClientSessionState] = []
        store.subscribe(seen.append)

        await store.fetch_current_status()

        assert len(seen) == 1
        state = seen[0]
        assert state.current_status == ThreatLevel.WARNING
        assert state.threat_data["level"] == "warning"
        assert len(state.sensors) == 3
        assert [s["sensor_id"] for s in state.nearby_sensors] == ["marikina"]
        assert state.last_checked is not None
        await store.teardown()

    async def test_unsubscribe(self, tmp_path):
        store = await _onboarded(tmp_path, FakeAPI())
        seen: list = []
        unsubscribe = store.subscribe(seen.append)
        unsubscribe()
        await store.fetch_current_status()
        assert seen == []
        await store.teardown()

    async def test_polling_continues_during_danger(self, tmp_path):
        api = FakeAPI([DANGER_A, DANGER_A, SAFE])
        store = await _onboarded(tmp_path, api, poll_interval=0.01)
        await _eventually(lambda: store.state.current_status == ThreatLevel.SAFE)
        assert store.state.is_polling
        await store.teardown()


# ═══════════════════════════════════════════════════════════════════════════
# User actions
# ═══════════════════════════════════════════════════════════════════════════

class TestAcknowledgment:

    async def test_danger_alert_until_marked_safe(self, tmp_path):
        api = FakeAPI([DANGER_A, DANGER_A, DANGER_B])
        store = await _onboarded(tmp_path, api)
        assert store.ui_mode == UIMode.DANGER_ALERT

        assert await store.mark_user_safe() is True
        assert api.safe_calls == ["user-abc"]
        assert store.ui_mode == UIMode.DASHBOARD
        assert store.state.acknowledged_threat_at == DANGER_A["timestamp"]

        # same threat polled again: stays acknowledged
        await store.fetch_current_status()
        assert store.ui_mode == UIMode.DASHBOARD

        # a new danger event needs a new acknowledgment
        await store.fetch_current_status()
        assert store.ui_mode == UIMode.DANGER_ALERT
        assert store.state.user_is_safe is False
        await store.teardown()

    async def test_server_failure_still_updates_locally(self, tmp_path):
        api = FakeAPI([DANGER_A])
        store = await _onboarded(tmp_path, api)
        api.fail_writes = True
        assert await store.mark_user_safe() is False
        assert store.ui_mode == UIMode.DASHBOARD
        assert store.state.error
        await store.teardown()


class TestOnboarding:

    async def test_complete_onboarding(self, tmp_path):
        api = FakeAPI([WARNING])
        store = _store(tmp_path, api)
        await store.init()
        home = {"lat": 14.6, "lng": 121.0, "address": "Quezon City"}

        handle = await store.complete_onboarding(home)
        await _eventually(lambda: store.state.last_checked is not None)

        assert handle.active
        assert api.location_calls == [(store.state.user_id, home)]
        assert store.ui_mode == UIMode.DASHBOARD
        saved = ClientPersistence(tmp_path / "session.json").load()
        assert saved["home_location"] == home
        assert saved["has_completed_onboarding"] is True
        await store.teardown()

    async def test_server_save_failure_does_not_block(self, tmp_path):
        api = FakeAPI()
        api.fail_writes = True
        store = _store(tmp_path, api)
        await store.init()
        await store.complete_onboarding({"lat": 14.6, "lng": 121.0})
        assert store.state.has_completed_onboarding
        assert store.state.is_polling
        await store.teardown()


# ═══════════════════════════════════════════════════════════════════════════
# Persistence
# ═══════════════════════════════════════════════════════════════════════════

class TestClientPersistence:

    def test_only_persisted_subset_written(self, tmp_path):
        persistence = ClientPersistence(tmp_path / "s.json")
        persistence.save({"user": {"id": "u"}, "current_status": "danger", "sensors": [1]})
        raw = json.loads((tmp_path / "s.json").read_text())
        assert set(raw) == {"user", "has_completed_onboarding", "home_location", "location_permission"}

    def test_missing_and_corrupt_files_load_empty(self, tmp_path):
        path = tmp_path / "s.json"
        assert ClientPersistence(path).load() == {}
        path.write_text("{not json")
        assert ClientPersistence(path).load() == {}

    def test_ephemeral_state_not_restored(self, tmp_path):
        path = tmp_path / "s.json"
        path.write_text(json.dumps({"user": {"id": "u"}, "current_status": "danger"}))
        assert ClientPersistence(path).load() == {"user": {"id": "u"}}


# ═══════════════════════════════════════════════════════════════════════════
# HTTP client
# ═══════════════════════════════════════════════════════════════════════════

class TestStatusAPIClient:

    async def test_fetch_status_and_mark_safe(self):
        requests: List[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            if request.url.path.endswith("/status"):
                return httpx.Response(200, json={"threat": WARNING})
            return httpx.Response(200, json={"success": True, "is_safe": True})

        api = StatusAPIClient("http://api.test/api/v1", transport=httpx.MockTransport(handler))
        assert (await api.fetch_status())["level"] == "warning"
        await api.mark_safe("user-abc")
        assert requests[-1].url.path == "/api/v1/user/safe"
        assert json.loads(requests[-1].content) == {"user_id": "user-abc"}
        await api.close()

    async def test_http_error_is_transient(self):
        api = StatusAPIClient(
            "http://api.test/api/v1",
            transport=httpx.MockTransport(lambda r: httpx.Response(500)),
        )
        with pytest.raises(TransientFetchError):
            await api.fetch_status()

    async def test_malformed_status_is_transient(self):
        api = StatusAPIClient(
            "http://api.test/api/v1",
            transport=httpx.MockTransport(lambda r: httpx.Response(200, json={"threat": {}})),
        )
        with pytest.raises(TransientFetchError):
            await api.fetch_status()

    async def test_sensors_wrapped_or_bare(self):
        api = StatusAPIClient(
            "http://api.test/api/v1",
            transport=httpx.MockTransport(lambda r: httpx.Response(200, json={"sensors": SENSORS})),
        )
        assert len(await api.fetch_sensors()) == 3
