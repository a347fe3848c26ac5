from dataclasses import dataclass
from typing import Any, Dict, Mapping as MappingType, Optional, Tuple
import os

import yaml

from mqtt_bridge.mappings.base import MappingRegistry
from mqtt_bridge.utils.exceptions import ConfigurationError
from mqtt_bridge.utils.logger import logger


MQTT_DEFAULT_PORT = 1883

SUPPORTED_PROTOCOLS = ("tcp", "ssl", "ws", "wss")

# mqtt section key -> environment variable overriding it
MQTT_ENV_OVERRIDES = {
    "host": "MQTT_HOST",
    "port": "MQTT_PORT",
    "protocol": "MQTT_PROTOCOL",
    "client_id": "MQTT_CLIENT_ID",
    "username": "MQTT_USERNAME",
    "password": "MQTT_PASSWORD",
    "clean_session": "MQTT_CLEAN_SESSION",
    "tls_cert": "MQTT_TLS_CERT",
    "tls_private_key": "MQTT_TLS_PRIVATE_KEY",
    "tls_ca_cert": "MQTT_TLS_CA_CERT",
}


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def _as_int(values: Dict[str, Any], key: str, default: int) -> int:
    value = values.get(key)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"Invalid mqtt.{key}: {value}")


@dataclass
class AppConfig(object):
    """
    Application-wide configuration.

    Process level settings read from the environment: logging, where the
    broker and mapping configuration lives, and how forwarded messages are
    delivered downstream.
    """

    log_level: str
    config_file: str
    stream_type: str
    outbound_queue_size: int
    batch_size: int
    flush_interval: float
    graceful_shutdown: bool

    @classmethod
    def load(cls) -> "AppConfig":
        """
        Create an AppConfig instance from environment variables.

        Raises:
            ConfigurationError: If a numeric setting cannot be parsed.
        """
        log_level = os.getenv("LOG_LEVEL", "INFO").upper()
        config_file = os.getenv("CONFIG_FILE", "config.yaml")
        stream_type = os.getenv("STREAM_TYPE", "log").lower()
        graceful_shutdown = _as_bool(os.getenv("GRACEFUL_SHUTDOWN", "false"))

        try:
            outbound_queue_size = int(os.getenv("OUTBOUND_QUEUE_SIZE", "1000"))
            batch_size = int(os.getenv("BATCH_SIZE", "10"))
            flush_interval = float(os.getenv("FLUSH_INTERVAL", "5.0"))
        except ValueError as e:
            raise ConfigurationError(f"Invalid numeric setting: {e}")

        logger.info(
            f"Config: log_level={log_level}, config_file={config_file}, "
            f"stream={stream_type}, queue_size={outbound_queue_size}, "
            f"batch_size={batch_size}, interval={flush_interval}, "
            f"graceful_shutdown={graceful_shutdown}"
        )

        return cls(
            log_level=log_level,
            config_file=config_file,
            stream_type=stream_type,
            outbound_queue_size=outbound_queue_size,
            batch_size=batch_size,
            flush_interval=flush_interval,
            graceful_shutdown=graceful_shutdown,
        )


@dataclass(frozen=True)
class BrokerConfig:
    """
    Connection settings for the MQTT broker.

    Attributes:
        host: Broker hostname
        client_id: Client identifier, required
        port: Broker port (default: 1883)
        protocol: Explicit transport, one of tcp, ssl, ws, wss. When unset it is
            derived: ssl if a certificate pair is configured, tcp otherwise
        username: Optional username, empty when unset
        password: Optional password, empty when unset
        clean_session: Whether the broker discards prior session state
        tls_cert: Client certificate path
        tls_private_key: Client private key path
        tls_ca_cert: Optional CA bundle used to verify the broker
        keepalive: Keepalive interval in seconds
        reconnect_delay_min: Minimum delay between reconnection attempts (seconds)
        reconnect_delay_max: Maximum delay between reconnection attempts (seconds)
    """

    host: str
    client_id: str
    port: int = MQTT_DEFAULT_PORT
    protocol: Optional[str] = None
    username: str = ""
    password: str = ""
    clean_session: bool = False
    tls_cert: Optional[str] = None
    tls_private_key: Optional[str] = None
    tls_ca_cert: Optional[str] = None
    keepalive: int = 60
    reconnect_delay_min: int = 1
    reconnect_delay_max: int = 120

    def __post_init__(self) -> None:
        if not self.client_id:
            raise ConfigurationError("mqtt.client_id is required")
        if not self.host:
            raise ConfigurationError("mqtt.host is required")
        if self.protocol is not None and self.protocol not in SUPPORTED_PROTOCOLS:
            raise ConfigurationError(
                f"Unsupported mqtt.protocol: {self.protocol}. "
                f"Supported protocols: {list(SUPPORTED_PROTOCOLS)}"
            )
        if self.reconnect_delay_min > self.reconnect_delay_max:
            raise ConfigurationError(
                "mqtt.reconnect_delay_min must not exceed mqtt.reconnect_delay_max"
            )

    @property
    def tls_defined(self) -> bool:
        return bool(self.tls_cert) and bool(self.tls_private_key)

    @property
    def transport_protocol(self) -> str:
        if self.protocol:
            return self.protocol
        if self.tls_defined:
            return "ssl"
        return "tcp"

    @property
    def uses_tls(self) -> bool:
        return self.transport_protocol in ("ssl", "wss")

    @property
    def transport(self) -> str:
        """Transport name as understood by paho-mqtt."""
        if self.transport_protocol in ("ws", "wss"):
            return "websockets"
        return "tcp"

    @property
    def broker_uri(self) -> str:
        return f"{self.transport_protocol}://{self.host}:{self.port}"

    @classmethod
    def from_dict(
        cls,
        section: Optional[Dict[str, Any]],
        environ: Optional[MappingType[str, str]] = None,
    ) -> "BrokerConfig":
        """
        Build a BrokerConfig from the ``mqtt`` config section.

        MQTT_* environment variables take precedence over the section values.

        Raises:
            ConfigurationError: If a required value is missing or malformed.
        """
        if section is None:
            section = {}
        if not isinstance(section, dict):
            raise ConfigurationError("The mqtt section must be a mapping")

        environ = os.environ if environ is None else environ
        values = dict(section)
        for key, env_var in MQTT_ENV_OVERRIDES.items():
            if environ.get(env_var):
                values[key] = environ[env_var]

        port = _as_int(values, "port", MQTT_DEFAULT_PORT)

        protocol = values.get("protocol")

        return cls(
            host=str(values.get("host") or ""),
            client_id=str(values.get("client_id") or ""),
            port=port,
            protocol=str(protocol).lower() if protocol else None,
            username=str(values.get("username") or ""),
            password=str(values.get("password") or ""),
            clean_session=_as_bool(values.get("clean_session")),
            tls_cert=values.get("tls_cert") or None,
            tls_private_key=values.get("tls_private_key") or None,
            tls_ca_cert=values.get("tls_ca_cert") or None,
            keepalive=_as_int(values, "keepalive", 60),
            reconnect_delay_min=_as_int(values, "reconnect_delay_min", 1),
            reconnect_delay_max=_as_int(values, "reconnect_delay_max", 120),
        )


def load_config_file(
    path: str, environ: Optional[MappingType[str, str]] = None
) -> Tuple[BrokerConfig, MappingRegistry]:
    """
    Load the broker settings and the mapping list from a YAML file.

    Raises:
        ConfigurationError: If the file is missing, unparseable or invalid.
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            document = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigurationError(f"Cannot read config file {path}: {e}")
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Cannot parse config file {path}: {e}")

    if not isinstance(document, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")

    broker_config = BrokerConfig.from_dict(document.get("mqtt"), environ)
    registry = MappingRegistry.from_list(document.get("mappings"))

    logger.info(
        f"Loaded {len(registry)} mappings for {broker_config.broker_uri} "
        f"as {broker_config.client_id}"
    )

    return broker_config, registry
