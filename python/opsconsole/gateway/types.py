"""Shared type definitions for the remote gateway.

Page invariants:
- next_cursor is the only termination signal. A page may carry zero items
  and still have a next_cursor; the caller must keep paging.
- PageRequest and PageResponse are immutable once built.

Message invariants:
- message_id is unique within one subscription's message space
- sequence_number is assigned by the broker and grows monotonically
- enqueued_time is timezone-aware (UTC)
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

# A document is a plain JSON object with a required "id" key
Document = dict[str, Any]


@dataclass(frozen=True)
class ContainerRef:
    """Addresses one Cosmos container."""

    database: str
    container: str

    def __str__(self) -> str:
        return f"{self.database}/{self.container}"


@dataclass(frozen=True)
class SubscriptionRef:
    """Addresses the active or dead-letter listing of one subscription."""

    topic: str
    subscription: str
    dead_letter: bool = False

    def __str__(self) -> str:
        suffix = "/$DeadLetterQueue" if self.dead_letter else ""
        return f"{self.topic}/subscriptions/{self.subscription}{suffix}"


@dataclass(frozen=True)
class FieldSearch:
    """Server-side field search: case-insensitive substring on one field."""

    field: str
    value: str


@dataclass(frozen=True)
class PageRequest:
    """One bounded page request.

    Attributes:
        resource: Container or subscription the page is read from
        cursor: Continuation token from the previous page, None for the first page
        query: Raw SQL query text, None for the default listing
        max_count: Maximum number of items in the page
        search: Field search to run instead of a listing (single batch)
    """

    resource: ContainerRef | SubscriptionRef
    cursor: str | None = None
    query: str | None = None
    max_count: int = 25
    search: FieldSearch | None = None


@dataclass(frozen=True)
class PageResponse:
    """One page of results.

    Attributes:
        items: Items in the order the service returned them
        next_cursor: Continuation token, present iff more data may exist
    """

    items: tuple = ()
    next_cursor: str | None = None

    @property
    def has_more(self) -> bool:
        return self.next_cursor is not None


@dataclass(frozen=True)
class Message:
    """A peeked Service Bus message.

    Attributes:
        message_id: Application or broker assigned message id
        sequence_number: Broker assigned, monotonic within the entity
        enqueued_time: When the broker accepted the message (UTC)
        body: Decoded payload (JSON value when the bytes parse, else text)
        subject: Optional label set by the publisher
        application_properties: Custom string -> scalar properties
        content_type: MIME type set by the publisher, kept for resubmission
    """

    message_id: str
    sequence_number: int
    enqueued_time: datetime
    body: Any = None
    subject: str | None = None
    application_properties: dict[str, Any] = field(default_factory=dict)
    content_type: str | None = None


@dataclass(frozen=True)
class ContainerInfo:
    id: str
    partition_key: str


@dataclass(frozen=True)
class SubscriptionInfo:
    topic: str
    name: str
    active_message_count: int = 0
    dead_letter_message_count: int = 0


@dataclass(frozen=True)
class TopicInfo:
    name: str
    subscriptions: tuple[SubscriptionInfo, ...] = ()


def lookup_field(doc: Document, path: str) -> Any:
    """Resolve a dotted field path ("customer.email") in a document.

    Returns None when any segment is missing or not an object.
    """
    value: Any = doc
    for part in path.split("."):
        if not isinstance(value, dict) or part not in value:
            return None
        value = value[part]
    return value
