from typing import Any, Dict, List, Optional, Protocol
import queue
import threading
import time

from mqtt_bridge.message import InboundMessage
from mqtt_bridge.streams.base import Stream
from mqtt_bridge.utils.logger import logger
from mqtt_bridge.utils.serializer import Serializer


class FlushPolicy(Protocol):
    """Protocol defining a component that determines when to flush the buffer."""

    def should_flush(
        self, buffer: List[Dict[str, Any]], last_flush_time: float
    ) -> bool:
        """Determine if the buffer should be flushed."""
        ...

    def reset(self) -> None:
        """Reset the flush policy state after a flush."""
        ...


class BatchSizeAndTimePolicy:
    """
    Flush policy based on batch size and elapsed time.
    """

    def __init__(self, batch_size: int, flush_interval: float):
        self.batch_size = batch_size
        self.flush_interval = flush_interval

    def should_flush(
        self, buffer: List[Dict[str, Any]], last_flush_time: float
    ) -> bool:
        """
        Determine if buffer should be flushed based on size or elapsed time.

        Returns:
            bool: True if buffer should be flushed, False otherwise
        """
        if not buffer:
            return False

        batch_size_reached = len(buffer) >= self.batch_size
        time_interval_elapsed = time.time() - last_flush_time >= self.flush_interval

        return batch_size_reached or time_interval_elapsed

    def reset(self) -> None:
        """Reset the policy state (no state to reset in this implementation)."""
        pass


class Forwarder:
    """
    Downstream consumer of the outbound queue.

    Pulls kept messages off the queue on a background thread, buffers them and
    sends batches to a stream whenever the flush policy says so. A batch is only
    removed from the buffer once the stream accepted it; a failed send leaves it
    in place for the next flush.
    """

    def __init__(
        self,
        outbound: "queue.Queue[InboundMessage]",
        stream: Stream,
        flush_policy: FlushPolicy,
        poll_interval: float = 0.5,
        max_buffer_size: int = 10000,
    ) -> None:
        """
        Initialize the Forwarder.

        Args:
            outbound: The queue the dispatcher puts kept messages on
            stream: The stream batches are sent to
            flush_policy: Component that determines when to flush the buffer
            poll_interval: Seconds to wait on an empty queue before re-checking
                the flush policy
            max_buffer_size: Most messages held while the stream keeps failing;
                the oldest are dropped beyond it
        """
        self.outbound = outbound
        self.stream = stream
        self.flush_policy = flush_policy
        self.poll_interval = poll_interval
        self.max_buffer_size = max_buffer_size
        self.serializer = Serializer()

        self.buffer: List[Dict[str, Any]] = []
        self.last_flush_time = time.time()
        self.running = False
        self._thread: Optional[threading.Thread] = None
        self._buffer_lock = threading.Lock()

    def start(self) -> None:
        """Start consuming the outbound queue on a daemon thread."""
        if self.running:
            return

        self.running = True
        self._thread = threading.Thread(
            target=self.run, name="mqtt-bridge-forwarder", daemon=True
        )
        self._thread.start()
        logger.info("Forwarder started")

    def run(self) -> None:
        """Consume the outbound queue until stopped."""
        while self.running:
            self.process_next()

    def process_next(self) -> bool:
        """
        Take at most one message off the queue and flush if the policy says so.

        Returns:
            bool: True if a message was taken off the queue.
        """
        received = False
        try:
            message = self.outbound.get(timeout=self.poll_interval)
            self._buffer_message(message)
            received = True
        except queue.Empty:
            pass

        with self._buffer_lock:
            if self.flush_policy.should_flush(self.buffer, self.last_flush_time):
                self._flush_to_stream()

        return received

    def _buffer_message(self, message: InboundMessage) -> None:
        try:
            serialized = self.serializer.serialize(message)
        except Exception as e:
            logger.error(f"Dropping message on {message.topic}: {e}")
            return

        with self._buffer_lock:
            self.buffer.append(serialized)
            logger.debug(f"Buffered message, buffer size: {len(self.buffer)}")

    def _flush_to_stream(self) -> bool:
        """
        Send buffered messages to the stream. Caller holds the buffer lock.

        Returns:
            bool: True if the buffer was sent or empty.
        """
        if not self.buffer:
            return True

        messages = list(self.buffer)
        logger.debug(f"Flushing {len(messages)} messages to stream")

        try:
            self.stream.send(messages)
        except Exception as e:
            logger.error(f"Failed to flush {len(messages)} messages: {e}")
            self._trim_buffer()
            self.last_flush_time = time.time()
            return False

        del self.buffer[: len(messages)]
        self.last_flush_time = time.time()
        self.flush_policy.reset()
        return True

    def _trim_buffer(self) -> None:
        overflow = len(self.buffer) - self.max_buffer_size
        if overflow > 0:
            del self.buffer[:overflow]
            logger.error(f"Buffer full, dropped {overflow} oldest messages")

    def drain(self) -> bool:
        """
        Move everything still queued into the buffer and flush it.

        Returns:
            bool: True if nothing was left unsent.
        """
        while True:
            try:
                self._buffer_message(self.outbound.get_nowait())
            except queue.Empty:
                break

        with self._buffer_lock:
            return self._flush_to_stream()

    def stop(self, drain: bool = True) -> None:
        """
        Stop the forwarder and close the stream.

        Waits for the worker thread to finish its current send before draining,
        so no batch is sent twice.

        Args:
            drain: Whether to flush messages still waiting on the queue.
        """
        logger.debug("Stopping forwarder")
        self.running = False

        if self._thread and self._thread is not threading.current_thread():
            self._thread.join()

        try:
            if drain and not self.drain():
                logger.error(f"{len(self.buffer)} messages left unsent at shutdown")
            self.stream.close()
            logger.info("Forwarder stopped")
        except Exception as e:
            logger.error(f"Error stopping forwarder: {e}")
