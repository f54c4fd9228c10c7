import enum
import hashlib
import json
import logging
from typing import Any, Dict, List, Optional

import aioboto3
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    EndpointConnectionError,
    NoCredentialsError,
)
from app.core.config import settings

logger = logging.getLogger(__name__)


class QueueTopic(str, enum.Enum):
    """Logical queues; each concern retries and dead-letters independently"""

    CHAT_MESSAGE_EVENTS = "chat-message-events"
    FILE_UPLOAD_JOBS = "file-upload-jobs"
    CONNECTION_LIFECYCLE_EVENTS = "connection-lifecycle-events"
    BILLING_EVENTS = "billing-events"
    DEAD_LETTER = "dead-letter"


def queue_url_for(topic: QueueTopic) -> Optional[str]:
    return {
        QueueTopic.CHAT_MESSAGE_EVENTS: settings.SQS_CHAT_MESSAGE_EVENTS_QUEUE_URL,
        QueueTopic.FILE_UPLOAD_JOBS: settings.SQS_FILE_UPLOAD_JOBS_QUEUE_URL,
        QueueTopic.CONNECTION_LIFECYCLE_EVENTS: settings.SQS_CONNECTION_LIFECYCLE_EVENTS_QUEUE_URL,
        QueueTopic.BILLING_EVENTS: settings.SQS_BILLING_EVENTS_QUEUE_URL,
        QueueTopic.DEAD_LETTER: settings.SQS_DEAD_LETTER_QUEUE_URL,
    }[topic]


def max_retries_for(topic: QueueTopic) -> int:
    return settings.QUEUE_MAX_RETRIES_OVERRIDES.get(
        topic.value, settings.QUEUE_MAX_RETRIES
    )


def dedup_id(topic: QueueTopic, dedup_key: str) -> str:
    """SQS caps MessageDeduplicationId at 128 chars; hash keeps it fixed-size"""
    return hashlib.sha256(f"{topic.value}:{dedup_key}".encode()).hexdigest()


def message_group_id(topic: QueueTopic, group_key: Optional[str]) -> str:
    """FIFO ordering holds within a group only; unrelated keys never block each other"""
    if not group_key:
        return topic.value
    return hashlib.sha256(f"{topic.value}:{group_key}".encode()).hexdigest()


class SQSClient:
    def __init__(self):
        """
        Initializes an SQSClient instance.

        Queue URLs are resolved per topic from settings. The aioboto3 session and
        client are created lazily on first use by `_get_sqs_client`.
        """
        self.region = settings.AWS_REGION
        self._session = None
        self._sqs = None

    async def _get_sqs_client(self):
        """
        Ensure an initialized aioboto3 SQS client is available and return it.

        Initializes and caches an aioboto3 SQS client using the configured AWS region and, when an endpoint is configured (LocalStack), an explicit endpoint URL. Raises ValueError if AWS region is not configured.

        Returns:
            sqs_client: The initialized aioboto3 SQS client instance.
        """
        if self._sqs is None:
            self._session = aioboto3.Session()
            if not self.region:
                logger.error("AWS_REGION not configured")
                raise ValueError("AWS_REGION not configured")
            client_kwargs = {"region_name": self.region}

            # Add endpoint_url for LocalStack support in development
            if settings.AWS_ENDPOINT_URL:
                client_kwargs["endpoint_url"] = settings.AWS_ENDPOINT_URL

            self._sqs = await self._session.client("sqs", **client_kwargs).__aenter__()
        return self._sqs

    async def publish(
        self,
        topic: QueueTopic,
        message_body: Dict[str, Any],
        dedup_key: Optional[str] = None,
        delay_seconds: int = 0,
        group_key: Optional[str] = None,
    ) -> bool:
        """
        Send a JSON-serializable message to the queue behind `topic`.

        When `dedup_key` is given on a FIFO queue it becomes the
        MessageDeduplicationId, so republishing the same logical event inside
        the SQS dedup interval is a no-op. On standard queues it is attached
        as a message attribute for downstream tracing. `group_key` picks the
        FIFO message group; messages without one share a group per topic.

        Returns:
            True if the message was accepted by SQS, False otherwise.
        """
        queue_url = queue_url_for(topic)
        try:
            if not queue_url:
                logger.error(f"Queue URL for {topic.value} not configured")
                return False

            sqs = await self._get_sqs_client()

            params: Dict[str, Any] = {
                "QueueUrl": queue_url,
                "MessageBody": json.dumps(message_body),
            }
            if queue_url.endswith(".fifo"):
                params["MessageGroupId"] = message_group_id(topic, group_key)
                if dedup_key:
                    params["MessageDeduplicationId"] = dedup_id(topic, dedup_key)
            else:
                params["DelaySeconds"] = delay_seconds
                if dedup_key:
                    params["MessageAttributes"] = {
                        "DedupKey": {"DataType": "String", "StringValue": dedup_key}
                    }

            response = await sqs.send_message(**params)

            logger.debug(
                f"Message sent to {topic.value}: {response.get('MessageId')}"
            )
            return True

        except (
            ClientError,
            EndpointConnectionError,
            NoCredentialsError,
            BotoCoreError,
        ):
            logger.exception(f"Failed to send message to {topic.value}")
            return False
        except Exception:
            logger.exception(f"Unexpected error while sending message to {topic.value}")
            return False

    async def receive_messages(
        self, topic: QueueTopic, max_messages: int = 1, wait_time: int = 20
    ) -> List[dict]:
        """
        Retrieve up to `max_messages` from the topic's queue using long polling and attach a parsed JSON body.

        Returns:
            list: Message dicts as returned by SQS. Each carries `ParsedBody` (the JSON-decoded `Body` or `None` if parsing failed) and `ReceiveCount` (from ApproximateReceiveCount). Returns an empty list if the queue URL is not configured or on error.
        """
        queue_url = queue_url_for(topic)
        try:
            if not queue_url:
                logger.error(f"Queue URL for {topic.value} not configured")
                return []

            sqs = await self._get_sqs_client()

            response = await sqs.receive_message(
                QueueUrl=queue_url,
                MaxNumberOfMessages=max_messages,
                WaitTimeSeconds=wait_time,
                MessageAttributeNames=["All"],
                AttributeNames=["ApproximateReceiveCount"],
            )

            messages = response.get("Messages", [])

            for message in messages:
                try:
                    message["ParsedBody"] = json.loads(message["Body"])
                except json.JSONDecodeError:
                    logger.exception(f"Failed to parse message body on {topic.value}")
                    message["ParsedBody"] = None
                attributes = message.get("Attributes") or {}
                message["ReceiveCount"] = int(
                    attributes.get("ApproximateReceiveCount", 1)
                )

            return messages

        except (
            ClientError,
            EndpointConnectionError,
            NoCredentialsError,
            BotoCoreError,
        ):
            logger.exception(f"Failed to receive messages from {topic.value}")
            return []
        except Exception:
            logger.exception(f"Unexpected error while receiving messages from {topic.value}")
            return []

    async def delete_message(self, topic: QueueTopic, receipt_handle: str) -> bool:
        """
        Acknowledge a message by deleting it from the topic's queue.

        Returns:
            bool: `True` if the message was successfully deleted, `False` otherwise.
        """
        queue_url = queue_url_for(topic)
        try:
            if not queue_url:
                logger.error(f"Queue URL for {topic.value} not configured")
                return False

            sqs = await self._get_sqs_client()

            await sqs.delete_message(QueueUrl=queue_url, ReceiptHandle=receipt_handle)

            logger.debug(f"Message deleted from {topic.value}")
            return True

        except (
            ClientError,
            EndpointConnectionError,
            NoCredentialsError,
            BotoCoreError,
        ):
            logger.exception(f"Failed to delete message from {topic.value}")
            return False
        except Exception:
            logger.exception(f"Unexpected error while deleting message from {topic.value}")
            return False

    async def change_message_visibility(
        self, topic: QueueTopic, receipt_handle: str, visibility_timeout: int
    ) -> bool:
        """
        Schedule redelivery of an in-flight message after `visibility_timeout` seconds.

        Returns:
            bool: `True` if SQS accepted the change, `False` otherwise.
        """
        queue_url = queue_url_for(topic)
        try:
            if not queue_url:
                logger.error(f"Queue URL for {topic.value} not configured")
                return False

            sqs = await self._get_sqs_client()

            await sqs.change_message_visibility(
                QueueUrl=queue_url,
                ReceiptHandle=receipt_handle,
                VisibilityTimeout=visibility_timeout,
            )
            return True

        except (
            ClientError,
            EndpointConnectionError,
            NoCredentialsError,
            BotoCoreError,
        ):
            logger.exception(f"Failed to change visibility on {topic.value}")
            return False
        except Exception:
            logger.exception(f"Unexpected error while changing visibility on {topic.value}")
            return False

    async def close(self):
        """
        Close the internal SQS client and clear stored session state.
        """
        if self._sqs:
            await self._sqs.__aexit__(None, None, None)
            self._sqs = None
        # aioboto3 Session doesn't need explicit close
        self._session = None


sqs_client = SQSClient()
