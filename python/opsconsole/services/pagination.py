"""Continuation-cursor lifecycle for one browsing session.

State: cursor (token or None), has_more, and the query/search the current
cursor chain descends from.

Rules:
- start() always begins a fresh chain with no cursor. It supersedes any
  outstanding request (last write wins). A custom query is a reset trigger,
  never a filter on what was already fetched.
- advance() is a no-op returning None when has_more is false: no request is
  issued. While a request is outstanding it is rejected with
  PageRequestInFlightError, so at most one page request is in flight.
- has_more is derived only from next_cursor presence. An empty page with a
  cursor still has more.
- On failure the error propagates and cursor/has_more/query keep their
  last-known-good values, so restarting the session is always safe.
- A superseded or cancelled request raises StalePageError to its caller and
  its response is never applied.
"""

import asyncio
from collections.abc import Awaitable, Callable

from opsconsole.errors import PageRequestInFlightError, StalePageError
from opsconsole.gateway.types import (
    ContainerRef,
    FieldSearch,
    PageRequest,
    PageResponse,
    SubscriptionRef,
)
from opsconsole.logging import get_logger, hash_query

logger = get_logger(__name__)

FetchPage = Callable[[PageRequest], Awaitable[PageResponse]]


class CursorManager:
    """Owns the continuation token of one session."""

    def __init__(
        self,
        fetch_page: FetchPage,
        resource: ContainerRef | SubscriptionRef,
        max_count: int,
    ):
        self._fetch_page = fetch_page
        self._resource = resource
        self._max_count = max_count
        self._pending: asyncio.Future | None = None
        self._generation = 0

        self.cursor: str | None = None
        self.has_more = False
        self.query: str | None = None
        self.search: FieldSearch | None = None

    @property
    def in_flight(self) -> bool:
        return self._pending is not None and not self._pending.done()

    async def start(
        self, query: str | None = None, search: FieldSearch | None = None
    ) -> PageResponse:
        """Fetch the first page of a new chain.

        Args:
            query: Raw query text, None for the default listing.
            search: Field search to run instead of a listing.

        Returns:
            The first page.

        Raises:
            StalePageError: If a newer start() or cancel() superseded this call.
            TransportError: If the fetch failed.
        """
        self.cancel()
        request = PageRequest(
            resource=self._resource,
            cursor=None,
            query=query,
            max_count=self._max_count,
            search=search,
        )
        response = await self._issue(request)

        self.query = query
        self.search = search
        self.cursor = response.next_cursor
        self.has_more = response.has_more
        return response

    async def advance(self) -> PageResponse | None:
        """Fetch the next page of the current chain.

        Returns:
            The next page, or None when there is nothing more to fetch.

        Raises:
            PageRequestInFlightError: If a request is already outstanding.
            StalePageError: If start() or cancel() superseded this call.
            TransportError: If the fetch failed.
        """
        if not self.has_more:
            logger.debug("advance_ignored", reason="no_more_pages")
            return None
        if self.in_flight:
            raise PageRequestInFlightError()

        request = PageRequest(
            resource=self._resource,
            cursor=self.cursor,
            query=self.query,
            max_count=self._max_count,
        )
        response = await self._issue(request)

        self.cursor = response.next_cursor
        self.has_more = response.has_more
        return response

    def cancel(self) -> bool:
        """Abandon the outstanding request, if any.

        Returns:
            True if a request was cancelled.
        """
        self._generation += 1
        if self.in_flight:
            self._pending.cancel()  # type: ignore[union-attr]
            logger.info("page_request_cancelled", resource=str(self._resource))
            return True
        return False

    async def _issue(self, request: PageRequest) -> PageResponse:
        generation = self._generation
        task = asyncio.ensure_future(self._fetch_page(request))
        self._pending = task
        try:
            response = await task
        except asyncio.CancelledError:
            if generation != self._generation:
                raise StalePageError() from None
            raise
        except Exception as e:
            if generation != self._generation:
                raise StalePageError() from e
            logger.warning(
                "page_fetch_failed",
                resource=str(self._resource),
                has_cursor=request.cursor is not None,
                query_hash=hash_query(request.query),
                error=str(e),
            )
            raise
        finally:
            if self._pending is task:
                self._pending = None

        # The task may have finished just before it was superseded
        if generation != self._generation:
            raise StalePageError()

        logger.info(
            "page_fetched",
            resource=str(self._resource),
            has_cursor=request.cursor is not None,
            query_hash=hash_query(request.query),
            search_field=request.search.field if request.search else None,
            item_count=len(response.items),
            has_more=response.has_more,
        )
        return response
