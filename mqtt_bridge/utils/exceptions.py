class MqttBridgeError(Exception):
    """Base exception for all MQTT bridge related errors."""

    pass


class ConfigurationError(MqttBridgeError):
    """Raised when there is an issue with configuration settings."""

    pass


class UnsupportedTypeError(MqttBridgeError):
    """Raised when an unsupported type is requested from a factory."""

    pass


class BrokerConnectionError(MqttBridgeError):
    """Raised when the connection to the broker cannot be established."""

    pass


class ScriptPredicateError(MqttBridgeError):
    """Raised when a predicate script cannot be loaded or fails while running.

    Script faults are not isolated per message: this error ends the process.
    """

    pass


class StreamError(MqttBridgeError):
    """Raised when there is an issue with a stream operation."""

    pass


class SerializationError(MqttBridgeError):
    """Raised when there is an issue with message serialization."""

    pass
