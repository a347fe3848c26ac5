from typing import Any, Callable, List, Optional, Tuple
import signal
import ssl
import sys
import threading
import time

import paho.mqtt.client as mqtt

from mqtt_bridge.broker.tls import create_tls_context
from mqtt_bridge.config.loader import BrokerConfig
from mqtt_bridge.mappings.base import MappingRegistry
from mqtt_bridge.processing.dispatcher import Dispatcher, MessageHandler
from mqtt_bridge.utils.exceptions import BrokerConnectionError
from mqtt_bridge.utils.logger import logger


# Subscriptions are at-most-once
SUBSCRIBE_QOS = 0


class ConnectionManager:
    """
    Owns the single broker connection and its lifecycle.

    On every successful connect, including automatic reconnects, the handler
    table is rebuilt from the mapping registry and every mapping's topic is
    subscribed again. The table is replaced rather than extended, so a
    reconnect never leaves duplicate handlers behind.

    Messages are delivered on paho's network thread while the calling thread
    parks in ``connect`` so that signal handlers keep running.
    """

    def __init__(
        self,
        config: BrokerConfig,
        registry: MappingRegistry,
        dispatcher: Dispatcher,
        graceful_shutdown: bool = False,
        idle_interval: float = 1.0,
    ) -> None:
        """
        Initialize the connection manager.

        Args:
            config: Broker connection settings
            registry: Mappings to subscribe on every connect
            dispatcher: Builds the per-mapping message handlers
            graceful_shutdown: On a termination signal, disconnect and run the
                shutdown hooks before exiting instead of exiting at once
            idle_interval: Seconds between liveness checks of the parked thread
        """
        self.config = config
        self.registry = registry
        self.dispatcher = dispatcher
        self.graceful_shutdown = graceful_shutdown
        self.idle_interval = idle_interval

        self.client: Optional[mqtt.Client] = None
        self.running = False
        self.fatal_error: Optional[Exception] = None

        self._handlers: List[Tuple[str, MessageHandler]] = []
        self._handlers_lock = threading.Lock()
        self._connected_once = False
        self._shutdown_hooks: List[Callable[[], None]] = []

    def add_shutdown_hook(self, hook: Callable[[], None]) -> None:
        """Register a callable run on graceful shutdown, after disconnecting."""
        self._shutdown_hooks.append(hook)

    def create_client(self) -> mqtt.Client:
        """Build the paho client from the broker configuration."""
        client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=self.config.client_id,
            clean_session=self.config.clean_session,
            transport=self.config.transport,
            protocol=mqtt.MQTTv311,
        )

        if self.config.username:
            client.username_pw_set(self.config.username, self.config.password or None)

        if self.config.uses_tls:
            client.tls_set_context(self._create_tls_context())

        client.reconnect_delay_set(
            min_delay=self.config.reconnect_delay_min,
            max_delay=self.config.reconnect_delay_max,
        )

        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        client.on_message = self._on_message

        return client

    def _create_tls_context(self) -> ssl.SSLContext:
        if self.config.tls_defined:
            return create_tls_context(
                self.config.tls_cert,
                self.config.tls_private_key,
                self.config.tls_ca_cert,
            )
        # Secure scheme requested without a client certificate
        return ssl.create_default_context(cafile=self.config.tls_ca_cert)

    def connect(self) -> None:
        """
        Connect to the broker and park until the manager stops.

        Does not return while the bridge is healthy. Reconnects after a lost
        connection are handled by paho in the background.

        Raises:
            BrokerConnectionError: If the initial connection fails.
            MqttBridgeError: If a message handler hit a fatal error.
        """
        self.install_signal_handlers()

        self.client = self.create_client()
        logger.info(
            f"Connecting to {self.config.broker_uri} as {self.config.client_id}"
        )

        try:
            self.client.connect(
                self.config.host, self.config.port, keepalive=self.config.keepalive
            )
        except (OSError, ValueError) as e:
            error_msg = f"Failed to connect to {self.config.broker_uri}: {e}"
            logger.error(error_msg)
            raise BrokerConnectionError(error_msg) from e

        self.running = True
        self.client.loop_start()

        while self.running:
            time.sleep(self.idle_interval)

        if self.fatal_error is not None:
            self.client.loop_stop()
            raise self.fatal_error

    def stop(self) -> None:
        """Disconnect from the broker and let ``connect`` return."""
        if not self.running:
            return

        logger.info("Disconnecting from broker")
        self.running = False
        if self.client:
            self.client.disconnect()
            self.client.loop_stop()

    def install_signal_handlers(self) -> None:
        """Exit on SIGINT or SIGTERM. Must be called from the main thread."""
        signal.signal(signal.SIGINT, self._handle_signal)
        signal.signal(signal.SIGTERM, self._handle_signal)

    def _handle_signal(self, signum: int, _frame: Any) -> None:
        logger.error(f"Signal {signal.Signals(signum).name} received, exiting")

        if self.graceful_shutdown:
            self.stop()
            for hook in self._shutdown_hooks:
                try:
                    hook()
                except Exception as e:
                    logger.error(f"Shutdown hook failed: {e}")

        sys.exit(0)

    def _fail(self, error: Exception) -> None:
        """Record a fatal error and stop the manager."""
        logger.critical(f"Fatal error: {error}")
        if self.fatal_error is None:
            self.fatal_error = error
        self.running = False
        if self.client:
            self.client.disconnect()

    def _install_handlers(self) -> List[Tuple[str, MessageHandler]]:
        handlers = [
            (mapping.topic, self.dispatcher.handler_for(mapping))
            for mapping in self.registry
        ]
        with self._handlers_lock:
            self._handlers = handlers
        return handlers

    def _on_connect(
        self, client: mqtt.Client, userdata: Any, flags: Any, reason_code: Any, properties: Any
    ) -> None:
        if reason_code.is_failure:
            if not self._connected_once:
                self._fail(
                    BrokerConnectionError(
                        f"Broker {self.config.broker_uri} refused connection: {reason_code}"
                    )
                )
            else:
                logger.error(f"Reconnect refused by broker: {reason_code}")
            return

        self._connected_once = True
        logger.info(f"Connected to {self.config.broker_uri}")

        try:
            handlers = self._install_handlers()
        except Exception as e:
            self._fail(e)
            return

        for topic, _ in handlers:
            result, _mid = client.subscribe(topic, qos=SUBSCRIBE_QOS)
            if result != mqtt.MQTT_ERR_SUCCESS:
                logger.error(f"Failed to subscribe to {topic}: rc={result}")
            else:
                logger.info(f"Subscribed to {topic}")

    def _on_disconnect(
        self,
        client: mqtt.Client,
        userdata: Any,
        disconnect_flags: Any,
        reason_code: Any,
        properties: Any,
    ) -> None:
        if reason_code.is_failure:
            logger.error(f"Connection lost: {reason_code}")
        else:
            logger.info("Disconnected from broker")

    def _on_message(
        self, client: mqtt.Client, userdata: Any, message: mqtt.MQTTMessage
    ) -> None:
        if self.fatal_error is not None:
            return

        with self._handlers_lock:
            handlers = list(self._handlers)

        for topic_filter, handler in handlers:
            if not mqtt.topic_matches_sub(topic_filter, message.topic):
                continue
            try:
                handler(message.topic, message.payload)
            except Exception as e:
                self._fail(e)
                return
