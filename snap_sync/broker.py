"""MQTT listener for Snap Sync.

Wraps a paho-mqtt client: connects in the background, resubscribes to
``<prefix>/#`` on every (re)connect, parses each publish with
:func:`~snap_sync.events.parse_message` and hands the result to a
callback.  Losing the broker only means no events arrive; paho's network
loop keeps reconnecting with backoff.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from enum import Enum
from typing import Any

import paho.mqtt.client as mqtt
from paho.mqtt.enums import CallbackAPIVersion

from snap_sync.events import ArtifactEvent, StateChange, parse_message

logger = logging.getLogger(__name__)

_SUBSCRIBE_QOS = 2
_RECONNECT_MIN_DELAY = 1
_RECONNECT_MAX_DELAY = 60


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class MqttListener:
    """Background subscriber to the Frigate topic tree."""

    def __init__(
        self,
        host: str,
        port: int,
        on_message: Callable[[StateChange | ArtifactEvent], Any],
        username: str | None = None,
        password: str | None = None,
        client_id: str = "snap-sync",
        keep_alive: int = 5,
        topic_prefix: str = "frigate",
        client: mqtt.Client | None = None,
    ):
        self.host = host
        self.port = port
        self.topic_prefix = topic_prefix
        self._keep_alive = keep_alive
        self._on_message = on_message
        self._state = ConnectionState.DISCONNECTED
        self._state_lock = threading.Lock()

        # persistent session so QoS 1/2 publishes are queued while we are away
        self._client = client or mqtt.Client(
            CallbackAPIVersion.VERSION2,
            client_id=client_id,
            clean_session=False,
        )
        if username:
            self._client.username_pw_set(username, password)
        self._client.on_connect = self._handle_connect
        self._client.on_disconnect = self._handle_disconnect
        self._client.on_message = self._handle_message
        self._client.on_subscribe = self._handle_subscribe

    # ---- lifecycle ----

    @property
    def state(self) -> ConnectionState:
        with self._state_lock:
            return self._state

    def _set_state(self, state: ConnectionState) -> None:
        with self._state_lock:
            previous, self._state = self._state, state
        if previous is not state:
            logger.debug("Broker connection %s -> %s", previous.value, state.value)

    def start(self) -> None:
        """Connect in the background and start the network loop."""
        self._set_state(ConnectionState.CONNECTING)
        self._client.reconnect_delay_set(
            min_delay=_RECONNECT_MIN_DELAY, max_delay=_RECONNECT_MAX_DELAY
        )
        self._client.connect_async(self.host, self.port, keepalive=self._keep_alive)
        self._client.loop_start()
        logger.info("Connecting to MQTT broker %s:%d", self.host, self.port)

    def stop(self) -> None:
        """Disconnect and stop the network loop."""
        self._set_state(ConnectionState.DISCONNECTED)
        try:
            self._client.disconnect()
        finally:
            self._client.loop_stop()
        logger.info("MQTT listener stopped.")

    # ---- paho callbacks ----

    def _handle_connect(self, client, userdata, flags, reason_code, properties) -> None:
        if reason_code.is_failure:
            logger.error("MQTT connection refused: %s", reason_code)
            self._set_state(ConnectionState.CONNECTING)
            return
        self._set_state(ConnectionState.CONNECTED)
        topic = f"{self.topic_prefix}/#"
        client.subscribe(topic, qos=_SUBSCRIBE_QOS)
        logger.info("Connected to MQTT broker %s:%d, subscribing to %s", self.host, self.port, topic)

    def _handle_disconnect(self, client, userdata, disconnect_flags, reason_code, properties) -> None:
        if self.state is ConnectionState.DISCONNECTED:
            return
        logger.warning("Disconnected from MQTT broker (%s), reconnecting", reason_code)
        self._set_state(ConnectionState.CONNECTING)

    def _handle_subscribe(self, client, userdata, mid, reason_code_list, properties) -> None:
        for rc in reason_code_list:
            if rc.is_failure:
                logger.error("Subscription to %s/# rejected: %s", self.topic_prefix, rc)

    def _handle_message(self, client, userdata, message) -> None:
        msg = parse_message(message.topic, message.payload, prefix=self.topic_prefix)
        if msg is None:
            return
        try:
            self._on_message(msg)
        except Exception:
            logger.exception("Error handling message on topic %s", message.topic)
