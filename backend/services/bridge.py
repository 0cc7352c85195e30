"""UDP message bridge to the physical installations.

Outbound device commands are JSON datagrams ``{"topic": ..., "payload": ...}``
sent fire-and-forget to a relay that forwards them onto the broker the
devices listen on. The relay sends broker traffic back in the same framing
to the listen port; the listener thread hands each message to subscribers
via ``deliver``.
"""

import json
import logging
import os
import socket
import threading

logger = logging.getLogger(__name__)

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 4010
DEFAULT_LISTEN_PORT = 4011
MAX_DATAGRAM = 65000
LISTEN_TIMEOUT = 1.0  # seconds; bounds how long stop_listener waits


class MessageBridge:
    """Publishes room commands and fans inbound messages out to subscribers.

    Thread-safe: subscriber list and sockets are guarded by a lock.
    """

    def __init__(self, host=None, port=None, enabled=None, listen_port=None):
        self.host = host or os.environ.get("BRIDGE_HOST", DEFAULT_HOST)
        self.port = int(port or os.environ.get("BRIDGE_PORT", DEFAULT_PORT))
        if listen_port is None:
            listen_port = os.environ.get("BRIDGE_LISTEN_PORT", DEFAULT_LISTEN_PORT)
        self.listen_port = int(listen_port)
        if enabled is None:
            enabled = os.environ.get("BRIDGE_ENABLED", "0") == "1"
        self.connected = bool(enabled)
        self._subscribers = []
        self._sock = None
        self._listen_sock = None
        self._listener = None
        self._listening = False
        self._lock = threading.Lock()
        self.sent = 0
        self.received = 0

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    def disconnect(self):
        self.stop_listener()
        with self._lock:
            self.connected = False
            if self._sock is not None:
                self._sock.close()
                self._sock = None
        logger.info("Bridge disconnected")

    def _socket(self):
        if self._sock is None:
            self._sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        return self._sock

    # ------------------------------------------------------------------
    # Listener
    # ------------------------------------------------------------------

    def start_listener(self):
        """Bind the listen port and start receiving relayed messages."""
        if self._listening:
            return
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind(("", self.listen_port))
        except OSError:
            sock.close()
            raise
        sock.settimeout(LISTEN_TIMEOUT)
        self.listen_port = sock.getsockname()[1]
        self._listen_sock = sock
        self._listening = True
        self._listener = threading.Thread(target=self._listen, name="bridge-listener",
                                          daemon=True)
        self._listener.start()
        logger.info("Bridge listening on UDP %d", self.listen_port)

    def stop_listener(self):
        if not self._listening:
            return
        self._listening = False
        if self._listener is not None:
            self._listener.join(timeout=LISTEN_TIMEOUT * 2)
            self._listener = None
        if self._listen_sock is not None:
            self._listen_sock.close()
            self._listen_sock = None

    @property
    def listening(self):
        return self._listening

    def _listen(self):
        sock = self._listen_sock
        while self._listening:
            try:
                data, _addr = sock.recvfrom(MAX_DATAGRAM + 1024)
            except socket.timeout:
                continue
            except OSError as exc:
                if self._listening:
                    logger.error("Bridge listen error: %s", exc)
                break
            self.handle_datagram(data)

    def handle_datagram(self, data):
        """Decode one relayed ``{"topic", "payload"}`` datagram and deliver it."""
        try:
            message = json.loads(data.decode("utf-8"))
        except ValueError:
            logger.warning("Ignoring malformed datagram (%d bytes)", len(data))
            return False
        if not isinstance(message, dict) or not message.get("topic"):
            logger.warning("Ignoring datagram without a topic")
            return False
        self.received += 1
        return self.deliver(message["topic"], message.get("payload"))

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    def publish(self, topic, payload, client_id=None):
        """Send one message. Returns False when disconnected or the send fails."""
        if not self.connected:
            logger.debug("Bridge disconnected, dropping %s", topic)
            return False

        if isinstance(payload, dict) and client_id:
            payload = dict(payload, clientId=client_id)

        try:
            data = json.dumps({"topic": topic, "payload": payload}).encode("utf-8")
        except (TypeError, ValueError) as exc:
            logger.error("Cannot encode message for %s: %s", topic, exc)
            return False
        if len(data) > MAX_DATAGRAM:
            logger.error("Message for %s too large (%d bytes)", topic, len(data))
            return False

        with self._lock:
            try:
                self._socket().sendto(data, (self.host, self.port))
            except OSError as exc:
                logger.error("UDP send to %s:%d failed: %s", self.host, self.port, exc)
                return False
            self.sent += 1
        return True

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def subscribe(self, callback):
        with self._lock:
            self._subscribers.append(callback)

    def deliver(self, topic, raw):
        """Decode an inbound message and hand it to every subscriber."""
        if isinstance(raw, (bytes, str)):
            try:
                payload = json.loads(raw)
            except ValueError:
                logger.warning("Ignoring non-JSON message on %s", topic)
                return False
        else:
            payload = raw

        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(topic, payload)
            except Exception:
                logger.exception("Subscriber failed for %s", topic)
        return True
