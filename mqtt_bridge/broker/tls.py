from typing import Optional
import ssl

from mqtt_bridge.utils.exceptions import ConfigurationError
from mqtt_bridge.utils.logger import logger


def create_tls_context(
    cert_path: str, key_path: str, ca_path: Optional[str] = None
) -> ssl.SSLContext:
    """
    Build the client TLS context from a certificate and private key pair.

    The broker certificate is verified against ``ca_path`` when given, or the
    system trust store otherwise.

    Raises:
        ConfigurationError: If the certificate material cannot be loaded.
    """
    try:
        context = ssl.create_default_context(ssl.Purpose.SERVER_AUTH, cafile=ca_path)
        context.load_cert_chain(certfile=cert_path, keyfile=key_path)
    except (OSError, ssl.SSLError) as e:
        raise ConfigurationError(
            f"Failed to load TLS material ({cert_path}, {key_path}): {e}"
        )

    logger.debug(f"Loaded TLS client certificate {cert_path}")
    return context
