"""Service Bus Pydantic schemas.

Contains request and response models for topic, subscription and message
endpoints. Every timestamp is sent twice: the ISO-8601 value for sorting and
a DD/MM/YYYY HH:MM:SS display string.
"""

from datetime import UTC, datetime, tzinfo
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from opsconsole.gateway.types import Message, TopicInfo
from opsconsole.services.presentation import format_display_time

# =============================================================================
# Response Schemas
# =============================================================================


class SubscriptionOut(BaseModel):
    topic: str
    name: str
    active_message_count: int = 0
    dead_letter_message_count: int = 0

    model_config = ConfigDict(from_attributes=True)


class TopicOut(BaseModel):
    name: str
    subscriptions: list[SubscriptionOut] = Field(default_factory=list)

    @classmethod
    def from_topic(cls, topic: TopicInfo) -> "TopicOut":
        return cls(
            name=topic.name,
            subscriptions=[SubscriptionOut.model_validate(sub) for sub in topic.subscriptions],
        )


class MessageOut(BaseModel):
    """A peeked message."""

    message_id: str
    sequence_number: int
    enqueued_time: datetime
    enqueued_time_display: str
    subject: str | None = None
    body: Any = None
    application_properties: dict[str, Any] = Field(default_factory=dict)
    content_type: str | None = None

    @classmethod
    def from_message(cls, message: Message, tz: tzinfo = UTC) -> "MessageOut":
        return cls(
            message_id=message.message_id,
            sequence_number=message.sequence_number,
            enqueued_time=message.enqueued_time,
            enqueued_time_display=format_display_time(message.enqueued_time, tz),
            subject=message.subject,
            body=message.body,
            application_properties=dict(message.application_properties),
            content_type=message.content_type,
        )


class MessageListOut(BaseModel):
    """Filtered message listing.

    count_label reads "2 / 20" while a query is active, "20" otherwise.
    """

    items: list[MessageOut] = Field(default_factory=list)
    count_label: str
    total: int


# =============================================================================
# Request Schemas
# =============================================================================


class MessageIn(BaseModel):
    """Message snapshot sent back for resubmission.

    Broker-assigned fields are optional: they are not re-published.
    """

    message_id: str = Field(..., min_length=1)
    sequence_number: int = 0
    enqueued_time: datetime | None = None
    subject: str | None = None
    body: Any = None
    application_properties: dict[str, Any] = Field(default_factory=dict)
    content_type: str | None = None

    def to_message(self) -> Message:
        return Message(
            message_id=self.message_id,
            sequence_number=self.sequence_number,
            enqueued_time=self.enqueued_time or datetime.now(UTC),
            body=self.body,
            subject=self.subject,
            application_properties=dict(self.application_properties),
            content_type=self.content_type,
        )


class ResubmitRequest(BaseModel):
    """Request body for a one-shot dead-letter resubmission."""

    message: MessageIn
