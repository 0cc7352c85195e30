"""Fixed-rate simulation ticker for every active room.

One daemon thread advances all rooms. Inbound messages are queued and
applied at the start of the next tick, so managers only ever run on the
ticker thread (or under the engine lock when the ticker is not running).
"""

import logging
import os
import queue
import threading
import time

from services.room import Room

logger = logging.getLogger(__name__)

DEFAULT_TICK_HZ = 60
ROOM_IDLE_TIMEOUT = 600  # 10 minutes, matches the saved-document TTL
MAX_DELTA = 0.25  # clamp long stalls so one tick never jumps far ahead


class SimulationEngine:
    """Owns the rooms and the ticker thread.

    ``document_loader(session_id)`` returns the saved document used when a
    room is first created. ``room_factory`` builds rooms; tests pass one that
    skips audio and model loading.
    """

    def __init__(self, document_loader=None, bridge=None, loader=None,
                 tick_hz=None, room_factory=Room, clock=time.monotonic):
        self.document_loader = document_loader
        self.bridge = bridge
        self.loader = loader
        self.tick_hz = float(tick_hz or os.environ.get("SIM_TICK_HZ", DEFAULT_TICK_HZ))
        self.room_factory = room_factory
        self.clock = clock

        self.rooms = {}  # session_id -> Room
        self.last_seen = {}  # session_id -> clock time of last request
        self._inbox = queue.Queue()
        self._lock = threading.RLock()
        self._thread = None
        self._running = False
        self.ticks = 0

        if bridge is not None:
            bridge.subscribe(self._on_bridge_message)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self):
        if self._running:
            return
        self._running = True
        self._thread = threading.Thread(target=self._run, name="simulation", daemon=True)
        self._thread.start()
        logger.info("Simulation ticker started at %.0f Hz", self.tick_hz)

    def stop(self):
        self._running = False
        if self._thread is not None:
            self._thread.join(timeout=1.0)
            self._thread = None
        with self._lock:
            for room in self.rooms.values():
                room.cleanup()
        logger.info("Simulation ticker stopped")

    @property
    def running(self):
        return self._running

    def _run(self):
        interval = 1.0 / self.tick_hz
        last = self.clock()
        while self._running:
            now = self.clock()
            self.tick(min(now - last, MAX_DELTA))
            last = now
            time.sleep(max(0.0, interval - (self.clock() - now)))

    # ------------------------------------------------------------------
    # Rooms
    # ------------------------------------------------------------------

    def room(self, session_id):
        """Return the session's room, creating it from the saved document."""
        with self._lock:
            self.last_seen[session_id] = self.clock()
            room = self.rooms.get(session_id)
        if room is not None:
            return room

        # Built outside the lock so the ticker keeps running during model
        # and audio loading
        document = self.document_loader(session_id) if self.document_loader else {}
        created = self.room_factory(session_id, document, bridge=self.bridge,
                                    loader=self.loader)
        with self._lock:
            room = self.rooms.setdefault(session_id, created)
            self.last_seen[session_id] = self.clock()
        if room is created:
            logger.info("Created room for session %s (%s)", session_id, room.client_id)
        else:
            created.cleanup()
        return room

    def drop_room(self, session_id):
        with self._lock:
            room = self.rooms.pop(session_id, None)
            self.last_seen.pop(session_id, None)
        if room is not None:
            room.cleanup()
        return room is not None

    def evict_idle(self):
        now = self.clock()
        with self._lock:
            stale = [sid for sid, seen in self.last_seen.items()
                     if now - seen > ROOM_IDLE_TIMEOUT]
        for session_id in stale:
            logger.info("Evicting idle room %s", session_id)
            self.drop_room(session_id)
        return stale

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def submit(self, session_id, topic, payload):
        """Queue a message for the session's room.

        When the ticker is not running the message is applied immediately
        and the dispatch result is returned; otherwise returns True.
        """
        room = self.room(session_id)
        if not self._running:
            with self._lock:
                return room.dispatch(topic, payload)
        self._inbox.put((session_id, topic, payload, False))
        return True

    def _on_bridge_message(self, topic, payload):
        # Every room mirrors the shared installation, except the room whose
        # own command is being echoed back by the relay
        client_id = payload.get("clientId") if isinstance(payload, dict) else None
        with self._lock:
            targets = [sid for sid, room in self.rooms.items()
                       if room.client_id != client_id]
        for session_id in targets:
            self._inbox.put((session_id, topic, payload, True))

    def _drain_inbox(self):
        while True:
            try:
                session_id, topic, payload, relayed = self._inbox.get_nowait()
            except queue.Empty:
                return
            room = self.rooms.get(session_id)
            if room is None:
                continue
            try:
                room.dispatch(topic, payload, relayed=relayed)
            except Exception:
                logger.exception("Room %s failed to handle %s", session_id, topic)

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    def tick(self, delta_time):
        with self._lock:
            self._drain_inbox()
            for session_id, room in list(self.rooms.items()):
                try:
                    room.update(delta_time)
                except Exception:
                    logger.exception("Room %s tick failed", session_id)
            self.ticks += 1
        if self.ticks % int(self.tick_hz * 60 or 1) == 0:
            self.evict_idle()

    def room_state(self, session_id):
        room = self.room(session_id)
        with self._lock:
            return room.snapshot()

    def with_room(self, session_id, fn):
        """Run ``fn(room)`` under the engine lock and return its result."""
        room = self.room(session_id)
        with self._lock:
            return fn(room)
