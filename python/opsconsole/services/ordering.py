"""Ordering policy for message listings.

Messages are shown newest first: descending by enqueued time, ties kept in
arrival order. The comparison uses the timestamp value, never a formatted
string. Documents have no canonical temporal field and are never reordered.
"""

from collections.abc import Iterable

from opsconsole.gateway.types import Message


def order_messages(items: Iterable[Message]) -> list[Message]:
    """Return messages sorted newest first (stable on equal timestamps)."""
    # sorted() stays stable with reverse=True
    return sorted(items, key=lambda message: message.enqueued_time, reverse=True)
