"""Service Bus message store.

Provides:
- Topic and subscription discovery with active / dead-letter counts
- Non-destructive peeks of active and dead-lettered messages
- Resubmission of a dead-lettered message to its source topic

Authentication:
- SERVICE_BUS_FQDN set: DefaultAzureCredential (managed identity, optionally
  a user-assigned one via AZURE_CLIENT_ID)
- Otherwise AZURE_SERVICE_BUS_CONNECTION_STRING
- Neither: ConfigurationError on first use

Resubmission does not remove the dead-lettered original. The dead-letter
listing is re-read afterwards and may still contain it.
"""

import asyncio
import json
from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any

from azure.core.exceptions import AzureError, ResourceNotFoundError
from azure.identity.aio import DefaultAzureCredential
from azure.servicebus import ServiceBusMessage, ServiceBusReceivedMessage, ServiceBusSubQueue
from azure.servicebus.aio import ServiceBusClient
from azure.servicebus.aio.management import ServiceBusAdministrationClient
from azure.servicebus.amqp import AmqpMessageBodyType
from azure.servicebus.exceptions import (
    MessageSizeExceededError,
    MessagingEntityDisabledError,
    MessagingEntityNotFoundError,
    ServiceBusQuotaExceededError,
)

from opsconsole.errors import (
    ApiErrorCode,
    ConfigurationError,
    MalformedResponseError,
    NotFoundError,
    TransportError,
)
from opsconsole.gateway.types import Message, SubscriptionInfo, TopicInfo
from opsconsole.logging import get_logger

logger = get_logger(__name__)

DEFAULT_PEEK_MAX = 100

# Service-side refusals of a specific message. Reported as a failed
# resubmission rather than a transport fault.
REJECTION_ERRORS = (
    MessageSizeExceededError,
    MessagingEntityDisabledError,
    MessagingEntityNotFoundError,
    ServiceBusQuotaExceededError,
)


def decode_body(received: ServiceBusReceivedMessage) -> Any:
    """Decode a received body into a JSON value, text, or list of sections."""
    body_type = received.body_type
    if body_type == AmqpMessageBodyType.DATA:
        raw = b"".join(received.body)
        text = raw.decode("utf-8", errors="replace")
        try:
            return json.loads(text)
        except ValueError:
            return text
    if body_type == AmqpMessageBodyType.SEQUENCE:
        return [_decode_value(list(section)) for section in received.body]
    return _decode_value(received.body)


def _decode_scalar(value: Any) -> Any:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _decode_value(value: Any) -> Any:
    """Make an AMQP value JSON-safe: bytes become text, nested containers are walked."""
    if isinstance(value, dict):
        return {_decode_scalar(k): _decode_value(v) for k, v in value.items()}
    if isinstance(value, list | tuple):
        return [_decode_value(item) for item in value]
    return _decode_scalar(value)


def to_message(received: ServiceBusReceivedMessage) -> Message:
    """Convert an SDK message into the console's Message."""
    if received.sequence_number is None or received.enqueued_time_utc is None:
        raise MalformedResponseError("Peeked message is missing broker-assigned fields")

    enqueued = received.enqueued_time_utc
    if enqueued.tzinfo is None:
        enqueued = enqueued.replace(tzinfo=UTC)

    properties = {
        _decode_scalar(key): _decode_scalar(value)
        for key, value in (received.application_properties or {}).items()
    }
    return Message(
        message_id=str(received.message_id or received.sequence_number),
        sequence_number=received.sequence_number,
        enqueued_time=enqueued,
        body=decode_body(received),
        subject=received.subject,
        application_properties=properties,
        content_type=received.content_type,
    )


def to_outgoing(message: Message) -> ServiceBusMessage:
    """Build the message re-published on resubmission.

    Body, subject, application properties, content type and message id are
    carried over. Broker-assigned fields are not.
    """
    body = message.body
    content_type = message.content_type
    if not isinstance(body, str | bytes):
        body = json.dumps(body)
        content_type = content_type or "application/json"
    return ServiceBusMessage(
        body,
        subject=message.subject,
        application_properties=dict(message.application_properties) or None,
        content_type=content_type,
        message_id=message.message_id,
    )


class MessageStore(ABC):
    """Abstract base class for message store implementations."""

    @abstractmethod
    async def list_topics(self) -> list[TopicInfo]:
        """Return every topic with its subscriptions and message counts."""
        ...

    @abstractmethod
    async def get_subscription(self, topic: str, subscription: str) -> SubscriptionInfo:
        """Return one subscription's counts.

        Raises:
            NotFoundError: If the topic or subscription does not exist.
        """
        ...

    @abstractmethod
    async def list_active(self, topic: str, subscription: str) -> list[Message]:
        """Peek active messages without locking or settling them."""
        ...

    @abstractmethod
    async def list_dead_lettered(self, topic: str, subscription: str) -> list[Message]:
        """Peek the subscription's dead-letter sub-queue."""
        ...

    @abstractmethod
    async def resubmit(self, topic: str, subscription: str, message: Message) -> bool:
        """Re-publish a message to its source topic.

        Returns:
            True on success, False if the service refused the message.

        Raises:
            TransportError: If the call failed in transit.
        """
        ...

    async def close(self) -> None:
        """Release network resources."""
        return None


class ServiceBusMessageStore(MessageStore):
    """Production Service Bus store using the async SDK."""

    def __init__(
        self,
        *,
        fqdn: str | None = None,
        connection_string: str | None = None,
        managed_identity_client_id: str | None = None,
        peek_max: int = DEFAULT_PEEK_MAX,
    ):
        self._fqdn = fqdn
        self._connection_string = connection_string
        self._managed_identity_client_id = managed_identity_client_id
        self._peek_max = peek_max
        self._credential: DefaultAzureCredential | None = None
        self._client: ServiceBusClient | None = None
        self._admin_client: ServiceBusAdministrationClient | None = None

    def _ensure_clients(self) -> None:
        if self._client is not None and self._admin_client is not None:
            return

        # Prefer managed identity when the namespace host is known
        if self._fqdn:
            if self._managed_identity_client_id:
                self._credential = DefaultAzureCredential(
                    managed_identity_client_id=self._managed_identity_client_id
                )
            else:
                self._credential = DefaultAzureCredential()
            self._client = ServiceBusClient(self._fqdn, self._credential)
            self._admin_client = ServiceBusAdministrationClient(self._fqdn, self._credential)
            auth_mode = "managed_identity"
        elif self._connection_string:
            self._client = ServiceBusClient.from_connection_string(self._connection_string)
            self._admin_client = ServiceBusAdministrationClient.from_connection_string(
                self._connection_string
            )
            auth_mode = "connection_string"
        else:
            raise ConfigurationError(
                "Service Bus configuration missing: set SERVICE_BUS_FQDN (or SERVICE-BUS-FQDN) "
                "for managed identity or AZURE_SERVICE_BUS_CONNECTION_STRING "
                "(or AZURE-SERVICE-BUS-CONNECTION-STRING)."
            )
        logger.info("service_bus_clients_initialized", auth_mode=auth_mode)

    def _get_client(self) -> ServiceBusClient:
        self._ensure_clients()
        return self._client  # type: ignore[return-value]

    def _get_admin_client(self) -> ServiceBusAdministrationClient:
        self._ensure_clients()
        return self._admin_client  # type: ignore[return-value]

    @contextmanager
    def _translate_errors(self, operation: str) -> Iterator[None]:
        try:
            yield
        except ResourceNotFoundError as e:
            raise NotFoundError(ApiErrorCode.E_NOT_FOUND, str(e.message or e)) from e
        except AzureError as e:
            logger.warning("service_bus_call_failed", operation=operation, error=str(e))
            raise TransportError(f"Service Bus {operation} failed: {e}") from e

    async def list_topics(self) -> list[TopicInfo]:
        admin = self._get_admin_client()
        topics = []
        with self._translate_errors("list_topics"):
            async for topic in admin.list_topics():
                subscriptions = []
                async for sub in admin.list_subscriptions_runtime_properties(topic.name):
                    subscriptions.append(
                        SubscriptionInfo(
                            topic=topic.name,
                            name=sub.name,
                            active_message_count=sub.active_message_count or 0,
                            dead_letter_message_count=sub.dead_letter_message_count or 0,
                        )
                    )
                topics.append(TopicInfo(name=topic.name, subscriptions=tuple(subscriptions)))
        return topics

    async def get_subscription(self, topic: str, subscription: str) -> SubscriptionInfo:
        admin = self._get_admin_client()
        with self._translate_errors("get_subscription"):
            props = await admin.get_subscription_runtime_properties(topic, subscription)
        return SubscriptionInfo(
            topic=topic,
            name=subscription,
            active_message_count=props.active_message_count or 0,
            dead_letter_message_count=props.dead_letter_message_count or 0,
        )

    async def list_active(self, topic: str, subscription: str) -> list[Message]:
        return await self._peek(topic, subscription, sub_queue=None)

    async def list_dead_lettered(self, topic: str, subscription: str) -> list[Message]:
        return await self._peek(topic, subscription, sub_queue=ServiceBusSubQueue.DEAD_LETTER)

    async def _peek(
        self, topic: str, subscription: str, sub_queue: ServiceBusSubQueue | None
    ) -> list[Message]:
        client = self._get_client()
        messages: list[Message] = []
        with self._translate_errors("peek"):
            async with client.get_subscription_receiver(
                topic_name=topic, subscription_name=subscription, sub_queue=sub_queue
            ) as receiver:
                # A peek can return fewer messages than asked while more remain,
                # so keep peeking from the last sequence number seen.
                next_sequence = 0
                while len(messages) < self._peek_max:
                    batch = await receiver.peek_messages(
                        max_message_count=self._peek_max - len(messages),
                        sequence_number=next_sequence,
                    )
                    if not batch:
                        break
                    messages.extend(to_message(received) for received in batch)
                    next_sequence = batch[-1].sequence_number + 1

        logger.info(
            "messages_peeked",
            topic=topic,
            subscription=subscription,
            dead_letter=sub_queue is not None,
            count=len(messages),
        )
        return messages

    async def resubmit(self, topic: str, subscription: str, message: Message) -> bool:
        client = self._get_client()
        outgoing = to_outgoing(message)
        with self._translate_errors("send"):
            try:
                async with client.get_topic_sender(topic_name=topic) as sender:
                    await sender.send_messages(outgoing)
            except REJECTION_ERRORS as e:
                logger.warning(
                    "resubmission_rejected",
                    topic=topic,
                    subscription=subscription,
                    message_id=message.message_id,
                    error=str(e),
                )
                return False
        return True

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None
        if self._admin_client is not None:
            await self._admin_client.close()
            self._admin_client = None
        if self._credential is not None:
            await self._credential.close()
            self._credential = None


class FakeMessageStore(MessageStore):
    """In-memory message store for tests and local development.

    Resubmitting appends a copy to the active list of every subscription of
    the topic (topic fan-out) and leaves the dead-letter list untouched.
    """

    def __init__(self):
        self._active: dict[tuple[str, str], list[Message]] = {}
        self._dead_letter: dict[tuple[str, str], list[Message]] = {}
        self._failures: list[Exception] = []
        self.resubmit_result = True
        self.published: list[tuple[str, Message]] = []
        self.gate: asyncio.Event | None = None
        self.calls: list[tuple[str, dict[str, Any]]] = []

    async def _enter(self, operation: str, **kwargs: Any) -> None:
        self.calls.append((operation, kwargs))
        if self.gate is not None:
            await self.gate.wait()
        if self._failures:
            raise self._failures.pop(0)

    async def list_topics(self) -> list[TopicInfo]:
        await self._enter("list_topics")
        names = sorted({topic for topic, _ in self._subscriptions()})
        return [
            TopicInfo(
                name=name,
                subscriptions=tuple(
                    self._info(topic, sub) for topic, sub in self._subscriptions() if topic == name
                ),
            )
            for name in names
        ]

    async def get_subscription(self, topic: str, subscription: str) -> SubscriptionInfo:
        await self._enter("get_subscription", topic=topic, subscription=subscription)
        if (topic, subscription) not in self._subscriptions():
            raise NotFoundError(
                ApiErrorCode.E_NOT_FOUND, f"Subscription not found: {topic}/{subscription}"
            )
        return self._info(topic, subscription)

    async def list_active(self, topic: str, subscription: str) -> list[Message]:
        await self._enter("list_active", topic=topic, subscription=subscription)
        return list(self._active.get((topic, subscription), []))

    async def list_dead_lettered(self, topic: str, subscription: str) -> list[Message]:
        await self._enter("list_dead_lettered", topic=topic, subscription=subscription)
        return list(self._dead_letter.get((topic, subscription), []))

    async def resubmit(self, topic: str, subscription: str, message: Message) -> bool:
        await self._enter(
            "resubmit", topic=topic, subscription=subscription, message_id=message.message_id
        )
        if not self.resubmit_result:
            return False
        self.published.append((topic, message))
        for key in self._subscriptions():
            if key[0] == topic:
                self._active.setdefault(key, []).append(message)
        return True

    def _subscriptions(self) -> list[tuple[str, str]]:
        return sorted(set(self._active) | set(self._dead_letter))

    def _info(self, topic: str, subscription: str) -> SubscriptionInfo:
        return SubscriptionInfo(
            topic=topic,
            name=subscription,
            active_message_count=len(self._active.get((topic, subscription), [])),
            dead_letter_message_count=len(self._dead_letter.get((topic, subscription), [])),
        )

    # Test helper methods

    def add_subscription(
        self,
        topic: str,
        subscription: str,
        active: list[Message] | None = None,
        dead_letter: list[Message] | None = None,
    ) -> None:
        self._active[(topic, subscription)] = list(active or [])
        self._dead_letter[(topic, subscription)] = list(dead_letter or [])

    def remove_dead_lettered(self, topic: str, subscription: str, message_id: str) -> None:
        key = (topic, subscription)
        self._dead_letter[key] = [
            m for m in self._dead_letter.get(key, []) if m.message_id != message_id
        ]

    def fail_next(self, exc: Exception) -> None:
        self._failures.append(exc)
