from mqtt_bridge.streams.base import Stream
from mqtt_bridge.streams.factory import StreamFactory
from mqtt_bridge.streams.log import LogStream
from mqtt_bridge.streams.sqs import SQS

# Register the shipped streams with the factory
StreamFactory.register_stream('sqs', SQS)
StreamFactory.register_stream('log', LogStream)

__all__ = [
    'Stream',
    'StreamFactory',
    'LogStream',
    'SQS'
]
