import queue
import signal
from unittest.mock import MagicMock, call, patch

import paho.mqtt.client as mqtt
import pytest

from mqtt_bridge.broker.connection import ConnectionManager
from mqtt_bridge.config.loader import BrokerConfig
from mqtt_bridge.mappings.base import Mapping, MappingRegistry
from mqtt_bridge.processing.dispatcher import Dispatcher
from mqtt_bridge.utils.exceptions import BrokerConnectionError, ScriptPredicateError


def make_mqtt_message(topic, payload):
    message = mqtt.MQTTMessage(topic=topic.encode())
    message.payload = payload
    return message


@pytest.fixture
def rc_ok():
    return MagicMock(is_failure=False)


@pytest.fixture
def rc_failure():
    return MagicMock(is_failure=True)


@pytest.fixture
def broker_config():
    return BrokerConfig(host="broker", client_id="bridge")


@pytest.fixture
def registry():
    return MappingRegistry(
        [
            Mapping(topic="sensors/+/temperature", filters=({"unit": "celsius"},)),
            Mapping(topic="alarms/#"),
        ]
    )


@pytest.fixture
def outbound():
    return queue.Queue()


@pytest.fixture
def mock_client():
    client = MagicMock()
    client.subscribe.return_value = (mqtt.MQTT_ERR_SUCCESS, 1)
    return client


@pytest.fixture
def manager(broker_config, registry, outbound, mock_client):
    manager = ConnectionManager(broker_config, registry, Dispatcher(outbound))
    manager.client = mock_client
    return manager


class TestCreateClient:
    """Test cases for building the paho client from BrokerConfig."""

    def test_client_options(self, registry, outbound):
        config = BrokerConfig(
            host="broker",
            client_id="bridge",
            username="user",
            password="secret",
            clean_session=True,
        )
        manager = ConnectionManager(config, registry, Dispatcher(outbound))

        with patch("mqtt_bridge.broker.connection.mqtt.Client") as client_cls:
            client = manager.create_client()

        client_cls.assert_called_once_with(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id="bridge",
            clean_session=True,
            transport="tcp",
            protocol=mqtt.MQTTv311,
        )
        client.username_pw_set.assert_called_once_with("user", "secret")
        client.tls_set_context.assert_not_called()
        client.reconnect_delay_set.assert_called_once_with(min_delay=1, max_delay=120)
        assert client.on_connect == manager._on_connect
        assert client.on_disconnect == manager._on_disconnect
        assert client.on_message == manager._on_message

    def test_no_credentials_without_username(self, manager):
        with patch("mqtt_bridge.broker.connection.mqtt.Client") as client_cls:
            manager.create_client()

        client_cls.return_value.username_pw_set.assert_not_called()

    def test_tls_context_from_certificate_pair(self, registry, outbound):
        config = BrokerConfig(
            host="broker",
            client_id="bridge",
            tls_cert="/certs/client.crt",
            tls_private_key="/certs/client.key",
        )
        manager = ConnectionManager(config, registry, Dispatcher(outbound))
        context = MagicMock()

        with patch("mqtt_bridge.broker.connection.mqtt.Client") as client_cls, patch(
            "mqtt_bridge.broker.connection.create_tls_context", return_value=context
        ) as mock_create:
            manager.create_client()

        mock_create.assert_called_once_with("/certs/client.crt", "/certs/client.key", None)
        client_cls.return_value.tls_set_context.assert_called_once_with(context)

    def test_secure_websockets_without_certificate(self, registry, outbound):
        config = BrokerConfig(host="broker", client_id="bridge", protocol="wss", port=443)
        manager = ConnectionManager(config, registry, Dispatcher(outbound))

        with patch("mqtt_bridge.broker.connection.mqtt.Client") as client_cls, patch(
            "mqtt_bridge.broker.connection.ssl.create_default_context"
        ) as mock_default:
            manager.create_client()

        assert client_cls.call_args[1]["transport"] == "websockets"
        client_cls.return_value.tls_set_context.assert_called_once_with(
            mock_default.return_value
        )


class TestSubscriptions:
    """Test cases for (re)subscribing mappings on connect."""

    def test_on_connect_subscribes_every_mapping_in_order(self, manager, mock_client, rc_ok):
        manager._on_connect(mock_client, None, None, rc_ok, None)

        assert mock_client.subscribe.call_args_list == [
            call("sensors/+/temperature", qos=0),
            call("alarms/#", qos=0),
        ]

    def test_reconnect_resubscribes_without_duplicate_handlers(
        self, manager, mock_client, outbound, rc_ok, rc_failure
    ):
        manager._on_connect(mock_client, None, None, rc_ok, None)
        manager._on_disconnect(mock_client, None, None, rc_failure, None)
        manager._on_connect(mock_client, None, None, rc_ok, None)

        # Each mapping subscribed exactly once per connect
        topics = [c[0][0] for c in mock_client.subscribe.call_args_list]
        assert topics == ["sensors/+/temperature", "alarms/#"] * 2

        manager._on_message(mock_client, None, make_mqtt_message("alarms/door", b"open"))

        assert outbound.qsize() == 1

    def test_failed_subscribe_is_logged(self, manager, mock_client, rc_ok):
        mock_client.subscribe.return_value = (mqtt.MQTT_ERR_NO_CONN, None)

        with patch("mqtt_bridge.broker.connection.logger") as mock_logger:
            manager._on_connect(mock_client, None, None, rc_ok, None)

        assert mock_logger.error.call_count == 2
        assert manager.fatal_error is None

    def test_refused_first_connection_is_fatal(self, manager, mock_client, rc_failure):
        manager.running = True

        manager._on_connect(mock_client, None, None, rc_failure, None)

        assert isinstance(manager.fatal_error, BrokerConnectionError)
        assert manager.running is False
        mock_client.disconnect.assert_called_once()
        mock_client.subscribe.assert_not_called()

    def test_refused_reconnect_is_reported(self, manager, mock_client, rc_ok, rc_failure):
        manager._on_connect(mock_client, None, None, rc_ok, None)

        with patch("mqtt_bridge.broker.connection.logger") as mock_logger:
            manager._on_connect(mock_client, None, None, rc_failure, None)

            assert "Reconnect refused" in mock_logger.error.call_args[0][0]

        assert manager.fatal_error is None

    def test_connection_lost_is_reported_not_fatal(self, manager, mock_client, rc_failure):
        manager.running = True

        with patch("mqtt_bridge.broker.connection.logger") as mock_logger:
            manager._on_disconnect(mock_client, None, None, rc_failure, None)

            assert "Connection lost" in mock_logger.error.call_args[0][0]

        assert manager.running is True
        assert manager.fatal_error is None


class TestMessageRouting:
    """Test cases for routing inbound messages to mapping handlers."""

    def test_wildcard_topic_routes_to_mapping(self, manager, mock_client, outbound, rc_ok):
        manager._on_connect(mock_client, None, None, rc_ok, None)

        manager._on_message(
            mock_client,
            None,
            make_mqtt_message("sensors/kitchen/temperature", b'{"unit": "celsius"}'),
        )
        manager._on_message(
            mock_client,
            None,
            make_mqtt_message("sensors/kitchen/temperature", b'{"unit": "kelvin"}'),
        )
        manager._on_message(mock_client, None, make_mqtt_message("other/topic", b"{}"))

        assert outbound.qsize() == 1
        message = outbound.get_nowait()
        assert message.topic == "sensors/kitchen/temperature"
        assert message.mapping.topic == "sensors/+/temperature"

    def test_mappings_sharing_a_topic_each_receive_message(
        self, broker_config, outbound, mock_client, rc_ok
    ):
        first = Mapping(topic="alarms/door")
        second = Mapping(topic="alarms/door", filters=({"state": "open"},))
        manager = ConnectionManager(
            broker_config, MappingRegistry([first, second]), Dispatcher(outbound)
        )

        manager._on_connect(mock_client, None, None, rc_ok, None)
        manager._on_message(mock_client, None, make_mqtt_message("alarms/door", b'{"state": "open"}'))

        assert [outbound.get_nowait().mapping for _ in range(2)] == [first, second]

    def test_no_messages_before_connect(self, manager, mock_client, outbound):
        manager._on_message(mock_client, None, make_mqtt_message("alarms/door", b"x"))

        assert outbound.empty()

    def test_script_fault_stops_the_manager(
        self, broker_config, outbound, mock_client, rc_ok, tmp_path
    ):
        script = tmp_path / "broken.py"
        script.write_text("def match(payload):\n    raise ValueError('bad payload')\n")
        manager = ConnectionManager(
            broker_config,
            MappingRegistry([Mapping(topic="alarms/#", script=str(script))]),
            Dispatcher(outbound),
        )
        manager.client = mock_client
        manager.running = True
        manager._on_connect(mock_client, None, None, rc_ok, None)

        manager._on_message(mock_client, None, make_mqtt_message("alarms/door", b"x"))

        assert isinstance(manager.fatal_error, ScriptPredicateError)
        assert manager.running is False
        mock_client.disconnect.assert_called_once()

        # Later messages are ignored once a fatal error is recorded
        script.write_text("def match(payload):\n    return True\n")
        manager._on_message(mock_client, None, make_mqtt_message("alarms/door", b"x"))
        assert outbound.empty()

    def test_script_exit_stops_the_manager(
        self, broker_config, outbound, mock_client, rc_ok, tmp_path
    ):
        script = tmp_path / "exits.py"
        script.write_text("import sys\n\ndef match(payload):\n    sys.exit(0)\n")
        manager = ConnectionManager(
            broker_config,
            MappingRegistry([Mapping(topic="alarms/#", script=str(script))]),
            Dispatcher(outbound),
        )
        manager.client = mock_client
        manager.running = True
        manager._on_connect(mock_client, None, None, rc_ok, None)

        manager._on_message(mock_client, None, make_mqtt_message("alarms/door", b"x"))

        assert isinstance(manager.fatal_error, ScriptPredicateError)
        assert manager.running is False

    def test_unsupported_script_type_is_fatal_on_connect(
        self, broker_config, outbound, mock_client, rc_ok
    ):
        manager = ConnectionManager(
            broker_config,
            MappingRegistry([Mapping(topic="alarms/#", script="alarm.lua")]),
            Dispatcher(outbound),
        )
        manager.client = mock_client

        manager._on_connect(mock_client, None, None, rc_ok, None)

        assert manager.fatal_error is not None
        mock_client.subscribe.assert_not_called()


class TestConnect:
    """Test cases for the connection lifecycle."""

    @pytest.fixture(autouse=True)
    def no_signal_handlers(self):
        with patch("mqtt_bridge.broker.connection.signal.signal") as mock_signal:
            yield mock_signal

    def test_installs_signal_handlers(self, manager, no_signal_handlers):
        manager.install_signal_handlers()

        no_signal_handlers.assert_any_call(signal.SIGINT, manager._handle_signal)
        no_signal_handlers.assert_any_call(signal.SIGTERM, manager._handle_signal)

    def test_initial_connection_failure_raises(self, manager, mock_client):
        mock_client.connect.side_effect = ConnectionRefusedError("refused")

        with patch.object(manager, "create_client", return_value=mock_client):
            with pytest.raises(BrokerConnectionError) as exc_info:
                manager.connect()

        assert "tcp://broker:1883" in str(exc_info.value)
        mock_client.loop_start.assert_not_called()

    def test_connect_uses_configured_endpoint(self, manager, mock_client):
        mock_client.loop_start.side_effect = manager.stop

        with patch.object(manager, "create_client", return_value=mock_client):
            manager.connect()

        mock_client.connect.assert_called_once_with("broker", 1883, keepalive=60)
        mock_client.disconnect.assert_called_once()
        mock_client.loop_stop.assert_called_once()

    def test_fatal_error_is_raised_from_connect(self, manager, mock_client):
        error = ScriptPredicateError("script failed")
        mock_client.loop_start.side_effect = lambda: manager._fail(error)

        with patch.object(manager, "create_client", return_value=mock_client):
            with pytest.raises(ScriptPredicateError):
                manager.connect()

    def test_parks_until_stopped(self, manager, mock_client):
        sleeps = []

        def fake_sleep(seconds):
            sleeps.append(seconds)
            if len(sleeps) == 3:
                manager.stop()

        with patch.object(manager, "create_client", return_value=mock_client), patch(
            "mqtt_bridge.broker.connection.time.sleep", side_effect=fake_sleep
        ):
            manager.connect()

        assert sleeps == [1.0, 1.0, 1.0]


class TestSignalHandling:
    """Test cases for termination signals."""

    def test_signal_exits_immediately_by_default(self, manager, mock_client):
        hook = MagicMock()
        manager.add_shutdown_hook(hook)
        manager.running = True

        with pytest.raises(SystemExit) as exc_info:
            manager._handle_signal(signal.SIGTERM, None)

        assert exc_info.value.code == 0
        hook.assert_not_called()
        mock_client.disconnect.assert_not_called()

    def test_graceful_shutdown_disconnects_and_runs_hooks(self, manager, mock_client):
        hook = MagicMock()
        manager.add_shutdown_hook(hook)
        manager.graceful_shutdown = True
        manager.running = True

        with pytest.raises(SystemExit):
            manager._handle_signal(signal.SIGINT, None)

        mock_client.disconnect.assert_called_once()
        hook.assert_called_once()
        assert manager.running is False

    def test_failing_hook_does_not_prevent_exit(self, manager):
        manager.graceful_shutdown = True
        manager.add_shutdown_hook(MagicMock(side_effect=RuntimeError("stuck")))

        with pytest.raises(SystemExit):
            manager._handle_signal(signal.SIGTERM, None)
