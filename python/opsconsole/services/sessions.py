"""Browsing sessions and their registry.

A browsing session owns one result accumulator, one cursor manager and the
query its accumulation descends from. Every item in a session was fetched
through cursors of the same initial query: a new query or search field
restarts the session (reset, never append).

Sessions live server-side, addressed by an opaque id. They share nothing but
the stateless RemoteGateway, so the active and dead-letter views of the same
subscription can load concurrently.
"""

import uuid
from collections import OrderedDict
from datetime import UTC, datetime

from opsconsole.errors import ApiErrorCode, InvalidRequestError, NotFoundError
from opsconsole.gateway import RemoteGateway
from opsconsole.gateway.documents import validate_field_path
from opsconsole.gateway.types import (
    ContainerRef,
    Document,
    FieldSearch,
    Message,
    PageRequest,
    PageResponse,
    SubscriptionRef,
)
from opsconsole.logging import get_logger, hash_query, set_session_id
from opsconsole.services.accumulator import ResultAccumulator
from opsconsole.services.ordering import order_messages
from opsconsole.services.pagination import CursorManager
from opsconsole.services.resubmission import ResubmissionWorkflow
from opsconsole.services.search_filter import filter_documents, filter_messages

logger = get_logger(__name__)

DEFAULT_FILTER_FIELD = "id"


class BrowsingSession:
    """Base class for server-side browsing sessions."""

    kind: str = ""
    cursor: CursorManager
    accumulator: ResultAccumulator

    def __init__(self, session_id: str):
        self.id = session_id
        self.created_at = datetime.now(UTC)

    @property
    def has_more(self) -> bool:
        return self.cursor.has_more

    @property
    def total(self) -> int:
        return len(self.accumulator)

    def close(self) -> None:
        """Cancel any outstanding page request and drop the loaded items."""
        self.cursor.cancel()
        self.accumulator.clear()


class DocumentBrowsingSession(BrowsingSession):
    """Cursor-paginated browsing of one Cosmos container."""

    kind = "documents"

    def __init__(
        self,
        session_id: str,
        gateway: RemoteGateway,
        container: ContainerRef,
        page_size: int,
        search_max: int,
    ):
        super().__init__(session_id)
        self.container = container
        self._gateway = gateway
        self._search_max = search_max
        self.accumulator = ResultAccumulator()
        self.cursor = CursorManager(self._fetch, container, page_size)

    async def _fetch(self, request: PageRequest) -> PageResponse:
        if request.search is not None:
            docs = await self._gateway.documents.search(
                self.container, request.search.field, request.search.value, self._search_max
            )
            # Search results are a single batch, their cursor is never chained
            return PageResponse(items=tuple(docs))
        return await self._gateway.documents.list_page(
            self.container, request.query, request.cursor, request.max_count
        )

    @property
    def query(self) -> str | None:
        return self.cursor.query

    @property
    def search_state(self) -> FieldSearch | None:
        return self.cursor.search

    async def start(self, query: str | None = None) -> PageResponse:
        """(Re)load the first page. A blank query means the default listing."""
        if query is not None and not query.strip():
            query = None
        page = await self.cursor.start(query=query)
        self.accumulator.reset(page.items)
        logger.info(
            "document_session_started",
            container=str(self.container),
            query_hash=hash_query(query),
            item_count=len(page.items),
        )
        return page

    async def advance(self) -> PageResponse | None:
        """Append the next page. Returns None when there is nothing more."""
        page = await self.cursor.advance()
        if page is not None:
            self.accumulator.append(page.items)
        return page

    async def search(self, field: str, value: str | None) -> PageResponse:
        """Replace the accumulation with a server-side field search.

        A blank value clears the search and reloads the default listing.
        """
        if value is None or not value.strip():
            return await self.start(None)
        validate_field_path(field)
        page = await self.cursor.start(search=FieldSearch(field=field, value=value))
        self.accumulator.reset(page.items)
        return page

    def view(self, query: str | None, field: str | None = None) -> list[Document]:
        """Filter the accumulation on one field without any network call."""
        return filter_documents(self.accumulator.items, query, field or DEFAULT_FILTER_FIELD)

    def available_fields(self) -> list[str]:
        """Sorted union of user field names across the accumulation."""
        names: set[str] = set()
        for doc in self.accumulator.items:
            names.update(key for key in doc if not key.startswith("_"))
        return sorted(names)


class MessageBrowsingSession(BrowsingSession):
    """Listing of a subscription's active or dead-lettered messages.

    The broker offers peeks, not cursors, so each listing is a single page
    and refresh() is the only way to load. Items are ordered newest first.
    """

    kind = "messages"

    def __init__(
        self,
        session_id: str,
        gateway: RemoteGateway,
        subscription: SubscriptionRef,
        peek_max: int,
    ):
        super().__init__(session_id)
        self.subscription = subscription
        self._gateway = gateway
        self.accumulator = ResultAccumulator(ordering=order_messages)
        self.cursor = CursorManager(self._fetch, subscription, peek_max)
        self.resubmission: ResubmissionWorkflow | None = None
        if subscription.dead_letter:
            self.resubmission = ResubmissionWorkflow(
                gateway.messages,
                subscription.topic,
                subscription.subscription,
                refresh=self.refresh,
            )

    async def _fetch(self, request: PageRequest) -> PageResponse:
        ref = self.subscription
        if ref.dead_letter:
            messages = await self._gateway.messages.list_dead_lettered(ref.topic, ref.subscription)
        else:
            messages = await self._gateway.messages.list_active(ref.topic, ref.subscription)
        return PageResponse(items=tuple(messages))

    async def refresh(self) -> PageResponse:
        """Re-fetch the whole listing and replace the accumulation."""
        page = await self.cursor.start()
        self.accumulator.reset(page.items)
        return page

    def view(self, query: str | None) -> list[Message]:
        """Filter on message id, subject, body and application properties."""
        return filter_messages(self.accumulator.items, query)

    def find(self, message_id: str) -> Message:
        """Look up an accumulated message by id.

        Raises:
            NotFoundError: If the message is not in the current listing.
        """
        for message in self.accumulator.items:
            if message.message_id == message_id:
                return message
        raise NotFoundError(
            ApiErrorCode.E_MESSAGE_NOT_FOUND,
            f"Message {message_id} is not in the current listing",
        )


class SessionRegistry:
    """In-memory registry of open browsing sessions.

    Bounded by max_sessions: opening one more closes the least recently
    used session.
    """

    def __init__(
        self,
        gateway: RemoteGateway,
        *,
        max_sessions: int = 64,
        page_size: int = 25,
        search_max: int = 50,
        peek_max: int = 100,
    ):
        self._gateway = gateway
        self._max_sessions = max_sessions
        self._page_size = page_size
        self._search_max = search_max
        self._peek_max = peek_max
        self._sessions: OrderedDict[str, BrowsingSession] = OrderedDict()

    def __len__(self) -> int:
        return len(self._sessions)

    def create_document_session(self, container: ContainerRef) -> DocumentBrowsingSession:
        session = DocumentBrowsingSession(
            uuid.uuid4().hex, self._gateway, container, self._page_size, self._search_max
        )
        self._add(session)
        return session

    def create_message_session(self, subscription: SubscriptionRef) -> MessageBrowsingSession:
        session = MessageBrowsingSession(
            uuid.uuid4().hex, self._gateway, subscription, self._peek_max
        )
        self._add(session)
        return session

    def get(self, session_id: str, kind: str | None = None) -> BrowsingSession:
        """Return an open session and mark it recently used.

        Raises:
            NotFoundError: If no open session has this id.
            InvalidRequestError: If the session is not of the requested kind.
        """
        session = self._sessions.get(session_id)
        if session is None:
            raise NotFoundError(ApiErrorCode.E_SESSION_NOT_FOUND, "Session not found")
        if kind is not None and session.kind != kind:
            raise InvalidRequestError(
                ApiErrorCode.E_INVALID_SESSION_KIND,
                f"Session {session_id} is a {session.kind} session, not {kind}",
            )
        self._sessions.move_to_end(session_id)
        set_session_id(session_id)
        return session

    def close(self, session_id: str) -> None:
        """Close a session, cancelling its outstanding request.

        Raises:
            NotFoundError: If no open session has this id.
        """
        session = self._sessions.pop(session_id, None)
        if session is None:
            raise NotFoundError(ApiErrorCode.E_SESSION_NOT_FOUND, "Session not found")
        session.close()
        logger.info("session_closed", session_id=session_id, kind=session.kind)

    def close_all(self) -> None:
        while self._sessions:
            _, session = self._sessions.popitem(last=False)
            session.close()

    def _add(self, session: BrowsingSession) -> None:
        while len(self._sessions) >= self._max_sessions:
            evicted_id, evicted = self._sessions.popitem(last=False)
            evicted.close()
            logger.info("session_evicted", session_id=evicted_id, kind=evicted.kind)
        self._sessions[session.id] = session
        set_session_id(session.id)
        logger.info("session_opened", session_id=session.id, kind=session.kind)
