import queue
import sys

from dotenv import load_dotenv

from mqtt_bridge.utils.logger import Logger
from mqtt_bridge.utils.exceptions import MqttBridgeError
from mqtt_bridge.config.loader import AppConfig, load_config_file
from mqtt_bridge.streams.factory import StreamFactory
from mqtt_bridge.processing.dispatcher import Dispatcher
from mqtt_bridge.processing.forwarder import Forwarder, BatchSizeAndTimePolicy
from mqtt_bridge.broker.connection import ConnectionManager


def run() -> None:
    """
    Wire the bridge together and hand control to the connection manager.

    Raises:
        MqttBridgeError: On any fatal configuration, connection or script error.
    """
    app_config = AppConfig.load()
    Logger.update_level(app_config.log_level)

    broker_config, registry = load_config_file(app_config.config_file)

    outbound: "queue.Queue" = queue.Queue(maxsize=app_config.outbound_queue_size)

    stream = StreamFactory.create(app_config.stream_type)
    forwarder = Forwarder(
        outbound=outbound,
        stream=stream,
        flush_policy=BatchSizeAndTimePolicy(
            batch_size=app_config.batch_size,
            flush_interval=app_config.flush_interval,
        ),
    )

    manager = ConnectionManager(
        config=broker_config,
        registry=registry,
        dispatcher=Dispatcher(outbound),
        graceful_shutdown=app_config.graceful_shutdown,
    )
    manager.add_shutdown_hook(forwarder.stop)

    forwarder.start()
    manager.connect()


def main() -> None:
    """
    Main entry point for the mqtt-bridge application.

    Fatal errors are logged and end the process with status 1; an external
    supervisor is expected to restart it.
    """
    load_dotenv()

    logger = Logger.get_logger()

    try:
        run()
    except MqttBridgeError as e:
        logger.critical(f"Fatal: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
