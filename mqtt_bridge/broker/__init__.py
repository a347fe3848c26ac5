from mqtt_bridge.broker.connection import ConnectionManager
from mqtt_bridge.broker.tls import create_tls_context

__all__ = ["ConnectionManager", "create_tls_context"]
