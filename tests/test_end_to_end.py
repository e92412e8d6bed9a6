"""
test_end_to_end.py — Full propagation path, server to client and back.

    readings ─► StatusReconciler ─► record store ─► GET /status ─► ClientStatusStore
                                                                     │ mark_user_safe
                  record store ◄── POST /user/safe ◄─────────────────┘

The client's real StatusAPIClient talks to the FastAPI app in-process
through httpx.ASGITransport; the app's store and readings dependencies
are overridden with in-memory versions shared with the reconciler.

Run with:
    pytest tests/test_end_to_end.py -v
"""

from __future__ import annotations

import asyncio
from datetime import timedelta

import httpx
import pytest

from bantay.client.api_client import StatusAPIClient
from bantay.client.persistence import ClientPersistence
from bantay.client.state import UIMode
from bantay.client.status_store import ClientStatusStore
from bantay.core.config import settings
from bantay.main import app
from bantay.store.factory import get_record_store
from bantay.threats.classifier import ClassifierConfig
from bantay.threats.models import ThreatLevel
from bantay.threats.readings import get_readings_source
from bantay.threats.reconciler import ReconcileOutcome, StatusReconciler
from bantay.users.service import UserService

from conftest import FIXED_NOW, make_readings

HOME = {"lat": 14.65, "lng": 121.05, "address": "Marikina City"}


class TickingClock:
    """Each call is one minute later than the last."""

    def __init__(self):
        self.now = FIXED_NOW

    def __call__(self):
        self.now = self.now + timedelta(minutes=1)
        return self.now


async def _eventually(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.005)


@pytest.fixture
def served(store, source):
    app.dependency_overrides[get_record_store] = lambda: store
    app.dependency_overrides[get_readings_source] = lambda: source
    yield store, source
    app.dependency_overrides.clear()


@pytest.fixture
def reconciler(served):
    store, source = served
    return StatusReconciler(
        store,
        source,
        ClassifierConfig.from_settings(settings),
        polygon=settings.THREAT_POLYGON,
        sources=settings.THREAT_SOURCES,
        clock=TickingClock(),
    )


@pytest.fixture
async def client(served, tmp_path):
    api = StatusAPIClient(
        "http://testserver/api/v1",
        transport=httpx.ASGITransport(app=app),
    )
    session = ClientStatusStore(api, ClientPersistence(tmp_path / "session.json"))
    await session.init()
    yield session
    await session.teardown()


async def _onboard(client: ClientStatusStore) -> None:
    await client.complete_onboarding(HOME)
    await _eventually(lambda: client.state.last_checked is not None)


# ═══════════════════════════════════════════════════════════════════════════
# Danger published, user acknowledges
# ═══════════════════════════════════════════════════════════════════════════

class TestDangerAcknowledged:

    async def test_danger_reaches_client_and_ack_reaches_store(self, client, reconciler, served):
        store, source = served
        users = UserService(store)

        await _onboard(client)
        assert client.ui_mode == UIMode.DASHBOARD
        assert (await users.get_user(client.state.user_id)).is_safe is False

        source.set(make_readings(3.5))
        result = await reconciler.run_once()
        assert result.outcome == ReconcileOutcome.UPDATED

        await client.fetch_current_status()
        assert client.state.current_status == ThreatLevel.DANGER
        assert client.state.threat_data["polygon"] == settings.THREAT_POLYGON
        assert client.ui_mode == UIMode.DANGER_ALERT

        client.update_user_location(14.65, 121.05)
        assert [s["sensor_id"] for s in client.state.nearby_sensors] == ["s1"]

        assert await client.mark_user_safe() is True
        assert client.ui_mode == UIMode.DASHBOARD
        assert (await users.get_user(client.state.user_id)).is_safe is True

        # Same threat on the next poll: acknowledgment sticks
        await client.fetch_current_status()
        assert client.state.current_status == ThreatLevel.DANGER
        assert client.ui_mode == UIMode.DASHBOARD

    async def test_new_danger_after_ack_alerts_again(self, client, reconciler, served):
        _, source = served
        await _onboard(client)

        source.set(make_readings(3.5))
        await reconciler.run_once()
        await client.fetch_current_status()
        await client.mark_user_safe()

        source.set(make_readings(1.0))
        await reconciler.run_once()
        source.set(make_readings(3.2))
        await reconciler.run_once()

        await client.fetch_current_status()
        assert client.ui_mode == UIMode.DANGER_ALERT


# ═══════════════════════════════════════════════════════════════════════════
# Danger cleared
# ═══════════════════════════════════════════════════════════════════════════

class TestDangerCleared:

    async def test_clear_returns_client_to_dashboard(self, client, reconciler, served):
        _, source = served
        await _onboard(client)

        source.set(make_readings(3.5))
        await reconciler.run_once()
        await client.fetch_current_status()
        assert client.ui_mode == UIMode.DANGER_ALERT

        source.set(make_readings(1.0))
        result = await reconciler.run_once()
        assert result.outcome == ReconcileOutcome.UPDATED
        assert result.published_level == ThreatLevel.SAFE

        await client.fetch_current_status()
        assert client.state.current_status == ThreatLevel.SAFE
        assert client.state.user_is_safe is True
        assert client.ui_mode == UIMode.DASHBOARD

    async def test_warning_does_not_replace_danger(self, client, reconciler, served):
        _, source = served
        await _onboard(client)

        source.set(make_readings(3.5))
        await reconciler.run_once()
        source.set(make_readings(2.2))
        result = await reconciler.run_once()
        assert result.outcome == ReconcileOutcome.SUPPRESSED_DOWNGRADE

        await client.fetch_current_status()
        assert client.state.current_status == ThreatLevel.DANGER
        assert client.ui_mode == UIMode.DANGER_ALERT
