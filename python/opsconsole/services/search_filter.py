"""Live search over already-fetched results.

Every function here is pure: no network access, no mutation, deterministic
output. They run on each keystroke against the session's accumulation and
cannot find items that have not been paged in yet.

Matching rules:
- The query is trimmed and lower-cased; a blank query returns the input unchanged
- Matching is case-insensitive substring containment
- Documents: one named field (dotted paths reach nested objects). Strings are
  used as is, other JSON values in their compact JSON form, missing and null
  fields never match.
- Messages: any of message id, subject, body (text as is, otherwise compact
  JSON) and compact JSON of the application properties.

Document search on the server is a separate path (DocumentBrowsingSession.search).
The messaging backend has no indexed search, so messages are only ever
filtered here.
"""

import json
from collections.abc import Iterable, Sequence
from typing import Any

from opsconsole.gateway.types import Document, Message, TopicInfo, lookup_field


def normalize_query(query: str | None) -> str:
    """Trim and lower-case a query. Returns "" for blank input."""
    return (query or "").strip().lower()


def compact_json(value: Any) -> str:
    """Serialize like JSON.stringify: no whitespace, non-ASCII kept."""
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=str)


def stringify_value(value: Any) -> str | None:
    """String form of a document value for matching. None for null/missing."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return compact_json(value)


def message_projections(message: Message) -> tuple[str, ...]:
    """The four searchable projections of a message."""
    body = message.body if isinstance(message.body, str) else compact_json(message.body)
    return (
        message.message_id,
        message.subject or "",
        body,
        compact_json(message.application_properties or {}),
    )


def filter_documents(items: Sequence[Document], query: str | None, field: str) -> list[Document]:
    """Keep documents whose field contains the query (case-insensitive)."""
    needle = normalize_query(query)
    if not needle:
        return list(items)

    matches = []
    for doc in items:
        text = stringify_value(lookup_field(doc, field))
        if text is not None and needle in text.lower():
            matches.append(doc)
    return matches


def filter_messages(items: Sequence[Message], query: str | None) -> list[Message]:
    """Keep messages where any searchable projection contains the query."""
    needle = normalize_query(query)
    if not needle:
        return list(items)

    return [
        message
        for message in items
        if any(needle in projection.lower() for projection in message_projections(message))
    ]


def filter_topics(topics: Iterable[TopicInfo], query: str | None) -> list[TopicInfo]:
    """Filter the topic tree by topic or subscription name.

    A topic whose name matches keeps all its subscriptions. Otherwise only
    matching subscriptions are kept, and topics with none are dropped.
    """
    needle = normalize_query(query)
    if not needle:
        return list(topics)

    filtered = []
    for topic in topics:
        if needle in topic.name.lower():
            filtered.append(topic)
            continue
        subscriptions = tuple(sub for sub in topic.subscriptions if needle in sub.name.lower())
        if subscriptions:
            filtered.append(TopicInfo(name=topic.name, subscriptions=subscriptions))
    return filtered


def count_label(shown: int, total: int, query: str | None) -> str:
    """Header label: "2 / 20" while a query is active, "20" otherwise."""
    if normalize_query(query):
        return f"{shown} / {total}"
    return str(total)


def document_count_label(total: int, has_more: bool) -> str:
    """Document header label: "25+" while more pages can be loaded."""
    return f"{total}+" if has_more else str(total)
