"""
status_store.py — Client-side status store and polling state machine.

One ClientStatusStore per client session. It owns the session state, the
single poll loop and the local persistence file; there is no module-level
instance.

═══════════════════════════════════════════════════════════════════════════
LIFECYCLE
═══════════════════════════════════════════════════════════════════════════

    init()                load persisted subset, create device user if absent,
                          start polling when onboarding is complete
    complete_onboarding() save home location (local + server), start polling
    start_polling()       cancel any previous PollHandle, fetch now, then
                          every poll_interval seconds
    stop_polling()        idempotent; cancels the timer, never the fetch
    teardown()            stop polling, wait for in-flight fetches, persist,
                          close the API client

═══════════════════════════════════════════════════════════════════════════
POLL LOOP
═══════════════════════════════════════════════════════════════════════════

    ┌──────────────┐   fetch task (shielded)   ┌────────────────────┐
    │ handle.active├──────────────────────────►│ fetch status +     │
    └──────┬───────┘                           │ sensors, apply in  │
           │ ◄─────────── awaited ─────────────┤ one state replace  │
           ▼                                   └────────────────────┘
     sleep(poll_interval)

Ticks never overlap: the next sleep starts only after the fetch finished.
Cancelling the loop while a fetch is running leaves the fetch alone; its
result is dropped because its handle is no longer active.

A failed or crashed status fetch replaces ``current_status`` and
``threat_data`` with a synthesised safe status and the loop keeps going. Polling
continues while danger is shown so a cleared threat reaches the user
without a manual refresh.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import replace
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set

from bantay.client.api_client import StatusAPIClient
from bantay.client.persistence import ClientPersistence
from bantay.client.state import PERSISTED_FIELDS, ClientSessionState, UIMode
from bantay.core.errors import TransientFetchError, ValidationError
from bantay.core.timeutil import format_timestamp, utc_now
from bantay.spatial.geo import DEFAULT_NEARBY_RADIUS_KM, Coordinate, nearby_sensors
from bantay.threats.models import ThreatLevel, ThreatStatus
from bantay.threats.query import FAILURE_DESCRIPTION

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 300.0  # seconds

Subscriber = Callable[[ClientSessionState], None]


def new_device_user() -> Dict[str, Any]:
    return {"id": f"user-{uuid.uuid4().hex}", "created_at": format_timestamp(utc_now())}


class PollHandle:
    """Cancellable handle for one poll loop. ``active`` flips immediately on cancel."""

    def __init__(self) -> None:
        self.active = True
        self.task: Optional[asyncio.Task] = None

    def cancel(self) -> None:
        self.active = False
        if self.task is not None and not self.task.done():
            self.task.cancel()


class ClientStatusStore:
    """
    Client session: threat status polling, safe acknowledgment, onboarding.

    Usage:
        store = ClientStatusStore(StatusAPIClient(url), ClientPersistence(path))
        await store.init()
        store.subscribe(lambda state: render(state.ui_mode))
        ...
        await store.teardown()
    """

    def __init__(
        self,
        api: StatusAPIClient,
        persistence: ClientPersistence,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        nearby_radius_km: float = DEFAULT_NEARBY_RADIUS_KM,
        clock: Callable[[], datetime] = utc_now,
    ):
        if poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        self.api = api
        self.persistence = persistence
        self.poll_interval = poll_interval
        self.nearby_radius_km = nearby_radius_km
        self._clock = clock
        self._state = ClientSessionState()
        self._subscribers: List[Subscriber] = []
        self._handle: Optional[PollHandle] = None
        self._inflight: Set[asyncio.Task] = set()

    @classmethod
    def from_settings(cls, settings: Any) -> "ClientStatusStore":
        return cls(
            StatusAPIClient(settings.CLIENT_API_BASE_URL, timeout=settings.FETCH_TIMEOUT),
            ClientPersistence(settings.CLIENT_STATE_PATH),
            poll_interval=settings.CLIENT_POLL_INTERVAL_SECONDS,
            nearby_radius_km=settings.NEARBY_SENSOR_RADIUS_KM,
        )

    # ═══════════════════════════════════════════════════════════════════════
    # State
    # ═══════════════════════════════════════════════════════════════════════

    @property
    def state(self) -> ClientSessionState:
        return self._state

    @property
    def ui_mode(self) -> UIMode:
        return self._state.ui_mode

    @property
    def poll_handle(self) -> Optional[PollHandle]:
        return self._handle

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a listener; returns the unsubscribe function."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _apply(self, **changes: Any) -> None:
        """Replace the state in one step and notify subscribers once."""
        previous = self._state
        self._state = replace(previous, **changes)
        if any(name in changes for name in PERSISTED_FIELDS):
            self._persist()
        for callback in list(self._subscribers):
            try:
                callback(self._state)
            except Exception:
                logger.exception("State subscriber failed")

    def _persist(self) -> None:
        try:
            self.persistence.save(self._state.persisted())
        except OSError as e:
            logger.warning("Could not persist session: %s", e)

    def _nearby(
        self,
        sensors: List[Dict[str, Any]],
        location: Optional[Dict[str, float]] = None,
    ) -> List[Dict[str, Any]]:
        center = Coordinate.from_mapping(location or self._state.user_location)
        if center is None:
            return []
        return nearby_sensors(center, sensors, self.nearby_radius_km)

    # ═══════════════════════════════════════════════════════════════════════
    # Lifecycle
    # ═══════════════════════════════════════════════════════════════════════

    async def init(self) -> ClientSessionState:
        saved = self.persistence.load()
        user = saved.get("user") or new_device_user()
        self._apply(
            user=user,
            has_completed_onboarding=bool(saved.get("has_completed_onboarding", False)),
            home_location=saved.get("home_location"),
            location_permission=saved.get("location_permission") or "default",
        )
        logger.info("Client session ready", extra={"user_id": self._state.user_id})
        if self._state.has_completed_onboarding:
            self.start_polling()
        return self._state

    async def teardown(self) -> None:
        self.stop_polling()
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)
        self._persist()
        await self.api.close()

    # ═══════════════════════════════════════════════════════════════════════
    # Polling
    # ═══════════════════════════════════════════════════════════════════════

    def start_polling(self) -> PollHandle:
        """Install a fresh poll loop; any previous loop is cancelled first."""
        if self._handle is not None:
            self._handle.cancel()
        handle = PollHandle()
        handle.task = asyncio.create_task(self._poll_loop(handle))
        self._handle = handle
        self._apply(is_polling=True)
        logger.info("Started threat polling every %.0fs", self.poll_interval)
        return handle

    def stop_polling(self) -> None:
        if self._handle is None:
            return
        self._handle.cancel()
        self._handle = None
        self._apply(is_polling=False)
        logger.info("Stopped threat polling")

    async def _poll_loop(self, handle: PollHandle) -> None:
        while handle.active:
            fetch = asyncio.create_task(self._fetch(handle))
            self._inflight.add(fetch)
            fetch.add_done_callback(self._inflight.discard)
            try:
                await asyncio.shield(fetch)
            except Exception as e:
                logger.exception("Status fetch crashed; showing safe")
                if handle.active:
                    self._fail_safe(str(e) or type(e).__name__)
            if not handle.active:
                break
            await asyncio.sleep(self.poll_interval)

    def _fail_safe(self, message: str) -> None:
        """Show a synthesised safe status; threat_data never keeps an older level."""
        now = self._clock()
        fallback = ThreatStatus.safe(FAILURE_DESCRIPTION, timestamp=now).to_dict()
        self._apply(
            current_status=ThreatLevel.SAFE,
            threat_data=fallback,
            last_checked=format_timestamp(now),
            user_is_safe=True,
            error=message,
        )

    async def fetch_current_status(self) -> ClientSessionState:
        """Manual refresh; always applied, independent of the poll loop."""
        await self._fetch(None)
        return self._state

    async def _fetch(self, handle: Optional[PollHandle]) -> None:
        def wanted() -> bool:
            return handle is None or handle.active

        try:
            threat = await self.api.fetch_status()
            level = ThreatLevel(threat["level"])
        except (TransientFetchError, ValueError) as e:
            if not wanted():
                return
            logger.warning("Status fetch failed; showing safe: %s", e)
            self._fail_safe(str(e))
            return

        try:
            sensors = await self.api.fetch_sensors()
        except TransientFetchError as e:
            logger.warning("Sensor fetch failed; keeping previous readings: %s", e)
            sensors = list(self._state.sensors)

        if not wanted():
            logger.debug("Discarding fetch result from a stopped poll loop")
            return

        user_is_safe = self._state.user_is_safe
        if level == ThreatLevel.DANGER:
            if threat.get("timestamp") != self._state.acknowledged_threat_at:
                user_is_safe = False
        else:
            user_is_safe = True

        self._apply(
            current_status=level,
            last_checked=format_timestamp(self._clock()),
            threat_data=threat,
            sensors=sensors,
            nearby_sensors=self._nearby(sensors),
            user_is_safe=user_is_safe,
            error=None,
        )
        logger.info("Status updated: %s", level.value, extra={"threat_level": level.value})

    # ═══════════════════════════════════════════════════════════════════════
    # User actions
    # ═══════════════════════════════════════════════════════════════════════

    async def complete_onboarding(self, home_location: Dict[str, Any]) -> PollHandle:
        """Persist the home location, save it server-side (best effort), start polling."""
        self._apply(home_location=dict(home_location), has_completed_onboarding=True)
        if self._state.user_id:
            try:
                await self.api.save_location(self._state.user_id, self._state.home_location)
            except TransientFetchError as e:
                logger.warning("Home location not saved server-side: %s", e)
                self._apply(error=e.message)
        return self.start_polling()

    def set_location_permission(self, permission: str) -> None:
        self._apply(location_permission=permission)

    def update_user_location(self, lat: float, lng: float) -> None:
        location = {"lat": float(lat), "lng": float(lng)}
        self._apply(
            user_location=location,
            nearby_sensors=self._nearby(self._state.sensors, location),
        )

    async def mark_user_safe(self) -> bool:
        """
        Acknowledge the current threat.

        Local state is updated even when the server call fails; returns
        whether the server accepted the acknowledgment.
        """
        user_id = self._state.user_id
        if not user_id:
            raise ValidationError("No user data available", field="user_id")

        accepted = True
        try:
            await self.api.mark_safe(user_id)
        except TransientFetchError as e:
            accepted = False
            logger.warning("Safe acknowledgment not delivered: %s", e, extra={"user_id": user_id})

        threat = self._state.threat_data or {}
        self._apply(
            user_is_safe=True,
            acknowledged_threat_at=threat.get("timestamp"),
            error=None if accepted else "Safe acknowledgment not delivered",
        )
        return accepted
