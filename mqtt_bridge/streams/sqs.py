from typing import List, Any, Dict, Optional
import json
import os
from threading import Lock

import boto3
from boto3.session import Session
from botocore.config import Config

from mqtt_bridge.streams.base import Stream
from mqtt_bridge.utils.logger import logger
from mqtt_bridge.utils.exceptions import ConfigurationError, StreamError


class SQS(Stream):
    """
    AWS SQS implementation of the Stream interface.

    Forwarded broker messages become SQS messages whose body is the serialized
    message and whose attributes carry the bridge source and the MQTT topic.
    Sends are batched within SQS's entry count and request size limits.
    """

    # SQS accepts at most 10 entries per batch
    SQS_MAX_BATCH_SIZE = 10
    # Slightly below the 262,144 byte batch request limit
    SQS_BATCH_REQUEST_SIZE_LIMIT = 262_000
    # Leaves room for attributes within the 256KB message limit
    SQS_EFFECTIVE_SIZE_LIMIT = 240 * 1024

    def __init__(
        self,
        queue_url: Optional[str] = None,
        region: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        aws_access_key_id: Optional[str] = None,
        aws_secret_access_key: Optional[str] = None,
        source: Optional[str] = None,
    ):
        """
        Initialize the SQS stream with configuration.

        Args:
            queue_url: The URL of the SQS queue. Defaults to SQS_QUEUE_URL.
            region: The AWS region. Defaults to AWS_REGION.
            endpoint_url: The AWS endpoint URL. Defaults to AWS_ENDPOINT_URL.
            aws_access_key_id: Defaults to AWS_ACCESS_KEY_ID.
            aws_secret_access_key: Defaults to AWS_SECRET_ACCESS_KEY.
            source: Source attribute of sent messages. Defaults to SOURCE or
                "mqtt_bridge".

        Raises:
            ConfigurationError: If any required configuration parameter is missing.
        """
        self.source = source or os.getenv("SOURCE") or "mqtt_bridge"

        self.queue_url = queue_url or os.getenv("SQS_QUEUE_URL")
        if not self.queue_url:
            raise ConfigurationError("SQS_QUEUE_URL is required")

        self.region = region or os.getenv("AWS_REGION")
        if not self.region:
            raise ConfigurationError("AWS_REGION is required")

        self.endpoint_url = endpoint_url or os.getenv("AWS_ENDPOINT_URL")
        if not self.endpoint_url:
            raise ConfigurationError("AWS_ENDPOINT_URL is required")

        self.aws_access_key_id = aws_access_key_id or os.getenv("AWS_ACCESS_KEY_ID")
        if not self.aws_access_key_id:
            raise ConfigurationError("AWS_ACCESS_KEY_ID is required")

        self.aws_secret_access_key = aws_secret_access_key or os.getenv(
            "AWS_SECRET_ACCESS_KEY"
        )
        if not self.aws_secret_access_key:
            raise ConfigurationError("AWS_SECRET_ACCESS_KEY is required")

        self._client = None
        self._client_lock = Lock()
        self._session: Optional[Session] = None

    def _get_client(self) -> Any:
        """Get or lazily create the boto3 SQS client."""
        if self._client is None:
            with self._client_lock:
                if self._client is None:
                    if self._session is None:
                        self._session = boto3.session.Session(
                            region_name=self.region,
                            aws_access_key_id=self.aws_access_key_id,
                            aws_secret_access_key=self.aws_secret_access_key,
                        )

                    config = Config(
                        connect_timeout=3,
                        read_timeout=5,
                        retries={"max_attempts": 3},
                        tcp_keepalive=True,
                    )

                    self._client = self._session.client(
                        "sqs", endpoint_url=self.endpoint_url, config=config
                    )

                    logger.debug(
                        f"Setup SQS client: {self.queue_url} - {self.endpoint_url} "
                        f"- {self.region}"
                    )

        return self._client

    def send(self, messages: List[Dict[str, Any]]) -> None:
        """
        Send forwarded messages to SQS in as few batch requests as the limits allow.

        Raises:
            StreamError: If a whole batch is rejected or the request fails.
        """
        if not messages:
            return

        client = self._get_client()

        batch_entries: List[Dict[str, Any]] = []
        current_batch_size = 0

        for index, msg in enumerate(messages):
            entry = self._prepare_entry(msg, str(index))
            entry_size = self._calculate_entry_size(entry)

            if (
                current_batch_size + entry_size > self.SQS_BATCH_REQUEST_SIZE_LIMIT
                or len(batch_entries) >= self.SQS_MAX_BATCH_SIZE
            ):
                self._send_batch_to_sqs(client, batch_entries)
                batch_entries = []
                current_batch_size = 0

            batch_entries.append(entry)
            current_batch_size += entry_size

        if batch_entries:
            self._send_batch_to_sqs(client, batch_entries)

    def _attributes(self, msg: Dict[str, Any]) -> Dict[str, Dict[str, str]]:
        attributes = {"source": {"StringValue": self.source, "DataType": "String"}}
        topic = msg.get("topic")
        if topic:
            attributes["topic"] = {"StringValue": str(topic), "DataType": "String"}
        return attributes

    def _prepare_entry(self, msg: Dict[str, Any], entry_id: str) -> Dict[str, Any]:
        """
        Build the SQS batch entry for one message.

        Messages over the size limit are replaced by a reference carrying the
        topic and receive time but no payload.
        """
        body = json.dumps(msg, default=str)
        body_size = len(body.encode("utf-8"))

        if body_size > self.SQS_EFFECTIVE_SIZE_LIMIT:
            logger.warning(
                f"Message on {msg.get('topic')} exceeds SQS limit: {body_size} bytes"
            )
            return self._create_oversized_reference(msg, entry_id, body_size)

        return {
            "Id": entry_id,
            "MessageBody": body,
            "MessageAttributes": self._attributes(msg),
        }

    def _create_oversized_reference(
        self, msg: Dict[str, Any], entry_id: str, original_size: int
    ) -> Dict[str, Any]:
        reference = {
            "original_size_exceeded": True,
            "original_size": original_size,
            "topic": msg.get("topic"),
            "mapping": msg.get("mapping"),
            "received_at": msg.get("received_at"),
        }
        attributes = self._attributes(msg)
        attributes["oversized"] = {"StringValue": "true", "DataType": "String"}

        logger.info(f"Created reference for oversized message: {entry_id}")

        return {
            "Id": entry_id,
            "MessageBody": json.dumps(reference, default=str),
            "MessageAttributes": attributes,
        }

    def _calculate_entry_size(self, entry: Dict[str, Any]) -> int:
        return len(json.dumps(entry).encode("utf-8"))

    def _send_batch_to_sqs(self, client: Any, entries: List[Dict[str, Any]]) -> None:
        """
        Send one batch request.

        Partial failures are logged; a batch where every entry failed raises.
        A batch rejected as too long is split in half and retried.

        Raises:
            StreamError: If the whole batch fails.
        """
        if not entries:
            return

        try:
            response = client.send_message_batch(
                QueueUrl=self.queue_url, Entries=entries
            )
        except Exception as e:
            if "BatchRequestTooLong" in str(e) and len(entries) > 1:
                mid = len(entries) // 2
                logger.info(f"Splitting batch of {len(entries)} messages and retrying")
                self._send_batch_to_sqs(client, entries[:mid])
                self._send_batch_to_sqs(client, entries[mid:])
                return

            logger.error(f"SQS send_message_batch failed: {str(e)}")
            raise StreamError(f"Failed to send messages to SQS: {str(e)}")

        failed = response.get("Failed") or []
        if not failed:
            logger.debug(
                f"Successfully sent {len(response.get('Successful', []))} messages to SQS"
            )
            return

        for failed_msg in failed:
            logger.error(
                f"Message {failed_msg['Id']} failed: "
                f"{failed_msg.get('Message', 'Unknown error')}"
            )

        error_msg = (
            f"Failed to send {len(failed)} messages to SQS. "
            f"IDs: {[item['Id'] for item in failed]}"
        )
        logger.error(error_msg)

        if len(failed) == len(entries):
            raise StreamError(error_msg)

    def close(self) -> None:
        """No persistent resources to close for SQS connections."""
        pass
