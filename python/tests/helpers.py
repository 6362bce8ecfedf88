"""Test helpers for building fixture data.

Provides:
- Message factories with controllable enqueue times
- Document factories for container fixtures
- Scripted page fetchers for cursor manager tests
"""

import asyncio
from datetime import UTC, datetime, timedelta
from typing import Any

from opsconsole.gateway.types import ContainerRef, Document, Message, PageRequest, PageResponse

BASE_TIME = datetime(2024, 3, 1, 12, 0, 0, tzinfo=UTC)

ORDERS = ContainerRef(database="shop", container="orders")


def make_message(
    message_id: str,
    minutes: int = 0,
    *,
    subject: str | None = None,
    body: Any = None,
    properties: dict[str, Any] | None = None,
    sequence_number: int | None = None,
) -> Message:
    """Build a message enqueued `minutes` after BASE_TIME."""
    return Message(
        message_id=message_id,
        sequence_number=sequence_number if sequence_number is not None else minutes,
        enqueued_time=BASE_TIME + timedelta(minutes=minutes),
        body=body if body is not None else {"id": message_id},
        subject=subject,
        application_properties=properties or {},
    )


def make_documents(count: int, prefix: str = "doc", **fields: Any) -> list[Document]:
    """Build `count` documents with ids prefix-0, prefix-1, ..."""
    return [{"id": f"{prefix}-{i}", "index": i, **fields} for i in range(count)]


class ScriptedFetcher:
    """Page fetcher that replays scripted responses and records requests.

    Each script entry is a PageResponse to return or an exception to raise.
    When hold is set, every call waits on it before answering.
    """

    def __init__(self, *script: PageResponse | Exception):
        self.script = list(script)
        self.requests: list[PageRequest] = []
        self.hold: asyncio.Event | None = None

    async def __call__(self, request: PageRequest) -> PageResponse:
        self.requests.append(request)
        if self.hold is not None:
            await self.hold.wait()
        result = self.script.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


def page(count: int, cursor: str | None = None, prefix: str = "doc") -> PageResponse:
    """A PageResponse of `count` documents."""
    return PageResponse(items=tuple(make_documents(count, prefix)), next_cursor=cursor)
