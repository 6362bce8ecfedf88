"""Result accumulator for a browsing session.

Successive pages are merged into one collection without resetting state on
each fetch. Arrival order is kept: page order first, then the order inside
each page. No identity-based deduplication is done across pages; a single
cursor chain is trusted not to repeat items.

An optional ordering policy runs after every reset/append (message
listings use order_messages).
"""

from collections.abc import Callable, Iterable
from typing import Any

OrderingPolicy = Callable[[Iterable[Any]], list[Any]]


class ResultAccumulator:
    """Growing, ordered collection of fetched items."""

    def __init__(self, ordering: OrderingPolicy | None = None):
        self._ordering = ordering
        self._items: list[Any] = []

    def reset(self, items: Iterable[Any]) -> None:
        """Replace the accumulation."""
        self._items = list(items)
        self._apply_ordering()

    def append(self, items: Iterable[Any]) -> None:
        """Concatenate a page after the current accumulation."""
        self._items.extend(items)
        self._apply_ordering()

    def clear(self) -> None:
        self._items = []

    @property
    def items(self) -> tuple[Any, ...]:
        """Snapshot of the accumulation."""
        return tuple(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def _apply_ordering(self) -> None:
        if self._ordering is not None:
            self._items = self._ordering(self._items)
