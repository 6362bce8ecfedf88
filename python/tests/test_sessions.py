"""Tests for browsing sessions and the session registry.

Tests cover:
- Document sessions: paging, raw query reset, field search, live view
- Message sessions: ordering, refresh, find
- Registry: lookup, kind checks, closing, eviction
"""

import asyncio

import pytest

from opsconsole.errors import (
    InvalidRequestError,
    NotFoundError,
    StalePageError,
    TransportError,
)
from opsconsole.gateway import (
    FakeDocumentStore,
    FakeMessageStore,
    RemoteGateway,
    SubscriptionRef,
)
from opsconsole.services.sessions import (
    DocumentBrowsingSession,
    MessageBrowsingSession,
    SessionRegistry,
)
from tests.helpers import ORDERS, make_documents, make_message


@pytest.fixture
def documents(fake_documents: FakeDocumentStore):
    docs = make_documents(30, status="open")
    docs[3]["status"] = "Shipped"
    docs[27]["status"] = "shipped late"
    fake_documents.add_container(ORDERS, docs)
    return docs


@pytest.fixture
def doc_session(gateway: RemoteGateway, documents) -> DocumentBrowsingSession:
    return DocumentBrowsingSession("d1", gateway, ORDERS, page_size=25, search_max=50)


class TestDocumentBrowsingSession:
    """Cursor-paginated container browsing."""

    @pytest.mark.asyncio
    async def test_start_then_advance_accumulates(self, doc_session):
        first = await doc_session.start()
        assert len(first.items) == 25
        assert doc_session.has_more is True

        await doc_session.advance()

        assert doc_session.total == 30
        assert doc_session.has_more is False
        assert [d["id"] for d in doc_session.accumulator.items][-1] == "doc-29"

    @pytest.mark.asyncio
    async def test_advance_at_end_is_a_no_op(self, doc_session, fake_documents):
        await doc_session.start()
        await doc_session.advance()
        calls = len(fake_documents.calls)

        assert await doc_session.advance() is None
        assert len(fake_documents.calls) == calls
        assert doc_session.total == 30

    @pytest.mark.asyncio
    async def test_blank_query_means_default_listing(self, doc_session, fake_documents):
        await doc_session.start("   ")
        assert fake_documents.calls[-1][1]["query"] is None
        assert doc_session.query is None

    @pytest.mark.asyncio
    async def test_raw_query_resets_accumulation(self, doc_session, fake_documents):
        query = "SELECT * FROM c WHERE c.status = 'Shipped'"
        fake_documents.set_query_result(ORDERS, query, [{"id": "doc-3", "status": "Shipped"}])
        await doc_session.start()
        await doc_session.advance()

        await doc_session.start(query)

        assert [d["id"] for d in doc_session.accumulator.items] == ["doc-3"]
        assert doc_session.query == query

    @pytest.mark.asyncio
    async def test_field_search_replaces_accumulation(self, doc_session):
        await doc_session.start()

        page = await doc_session.search("status", "SHIPPED")

        assert page.has_more is False
        assert [d["id"] for d in doc_session.accumulator.items] == ["doc-3", "doc-27"]
        assert doc_session.search_state.field == "status"
        assert doc_session.has_more is False

    @pytest.mark.asyncio
    async def test_field_search_reaches_unfetched_pages(self, doc_session):
        """Server-side search finds items live search cannot see yet."""
        await doc_session.start()
        assert doc_session.view("late", "status") == []

        await doc_session.search("status", "late")

        assert [d["id"] for d in doc_session.accumulator.items] == ["doc-27"]

    @pytest.mark.asyncio
    async def test_blank_search_value_resets_to_listing(self, doc_session):
        await doc_session.search("status", "shipped")

        await doc_session.search("status", "  ")

        assert doc_session.total == 25
        assert doc_session.search_state is None
        assert doc_session.has_more is True

    @pytest.mark.asyncio
    async def test_invalid_search_field_is_rejected(self, doc_session, fake_documents):
        with pytest.raises(InvalidRequestError):
            await doc_session.search("status; DROP", "x")
        assert fake_documents.calls == []

    @pytest.mark.asyncio
    async def test_live_view_filters_without_network(self, doc_session, fake_documents):
        await doc_session.start()
        calls = len(fake_documents.calls)

        shown = doc_session.view("ship", "status")

        assert [d["id"] for d in shown] == ["doc-3"]
        assert len(fake_documents.calls) == calls

    @pytest.mark.asyncio
    async def test_view_defaults_to_id_field(self, doc_session):
        await doc_session.start()
        assert [d["id"] for d in doc_session.view("doc-2")] == ["doc-2"] + [
            f"doc-{i}" for i in range(20, 25)
        ]

    @pytest.mark.asyncio
    async def test_available_fields_exclude_system_properties(self, gateway, fake_documents):
        fake_documents.add_container(
            ORDERS, [{"id": "1", "b": 1, "_etag": "x"}, {"id": "2", "a": 2}]
        )
        session = DocumentBrowsingSession("d2", gateway, ORDERS, page_size=25, search_max=50)
        await session.start()

        assert session.available_fields() == ["a", "b", "id"]

    @pytest.mark.asyncio
    async def test_failed_advance_keeps_accumulation(self, doc_session, fake_documents):
        await doc_session.start()
        fake_documents.fail_next(TransportError("Cosmos DB query failed: throttled"))

        with pytest.raises(TransportError):
            await doc_session.advance()

        assert doc_session.total == 25
        assert doc_session.has_more is True

    @pytest.mark.asyncio
    async def test_superseded_search_is_discarded(self, doc_session, fake_documents):
        """Last write wins: the older search gets StalePageError."""
        fake_documents.gate = asyncio.Event()
        older = asyncio.create_task(doc_session.search("status", "open"))
        await asyncio.sleep(0)
        newer = asyncio.create_task(doc_session.search("status", "shipped"))
        await asyncio.sleep(0)
        fake_documents.gate.set()

        with pytest.raises(StalePageError):
            await older
        await newer

        assert [d["id"] for d in doc_session.accumulator.items] == ["doc-3", "doc-27"]

    @pytest.mark.asyncio
    async def test_close_cancels_outstanding_request(self, doc_session, fake_documents):
        fake_documents.gate = asyncio.Event()
        pending = asyncio.create_task(doc_session.start())
        await asyncio.sleep(0)

        doc_session.close()

        with pytest.raises(StalePageError):
            await pending
        assert doc_session.total == 0

    @pytest.mark.asyncio
    async def test_close_drops_loaded_items(self, doc_session):
        await doc_session.start()
        assert doc_session.total == 25

        doc_session.close()

        assert doc_session.total == 0
        assert doc_session.accumulator.items == ()


class TestMessageBrowsingSession:
    """Peeked listings of one subscription."""

    @pytest.fixture
    def messages(self, fake_messages: FakeMessageStore):
        fake_messages.add_subscription(
            "orders",
            "billing",
            active=[make_message("a", 1), make_message("b", 7), make_message("c", 4)],
            dead_letter=[make_message("dl-1", 2, subject="order-77")],
        )
        return fake_messages

    @pytest.mark.asyncio
    async def test_refresh_orders_newest_first(self, gateway, messages):
        session = MessageBrowsingSession(
            "m1", gateway, SubscriptionRef("orders", "billing"), peek_max=100
        )
        page = await session.refresh()

        assert page.has_more is False
        assert [m.message_id for m in session.accumulator.items] == ["b", "c", "a"]

    @pytest.mark.asyncio
    async def test_dead_letter_session_reads_dead_letter_queue(self, gateway, messages):
        session = MessageBrowsingSession(
            "m2", gateway, SubscriptionRef("orders", "billing", dead_letter=True), peek_max=100
        )
        await session.refresh()

        assert [m.message_id for m in session.accumulator.items] == ["dl-1"]
        assert messages.calls[-1][0] == "list_dead_lettered"

    @pytest.mark.asyncio
    async def test_refresh_replaces_listing(self, gateway, messages):
        session = MessageBrowsingSession(
            "m3", gateway, SubscriptionRef("orders", "billing"), peek_max=100
        )
        await session.refresh()
        messages.add_subscription("orders", "billing", active=[make_message("z", 9)])

        await session.refresh()

        assert [m.message_id for m in session.accumulator.items] == ["z"]

    @pytest.mark.asyncio
    async def test_view_and_find(self, gateway, messages):
        session = MessageBrowsingSession(
            "m4", gateway, SubscriptionRef("orders", "billing", dead_letter=True), peek_max=100
        )
        await session.refresh()

        assert [m.message_id for m in session.view("ORDER-77")] == ["dl-1"]
        assert session.find("dl-1").subject == "order-77"
        with pytest.raises(NotFoundError):
            session.find("missing")


class TestSessionRegistry:
    """Open session bookkeeping."""

    @pytest.fixture
    def registry(self, gateway) -> SessionRegistry:
        return SessionRegistry(gateway, max_sessions=2)

    def test_create_and_get(self, registry):
        session = registry.create_document_session(ORDERS)

        assert registry.get(session.id) is session
        assert registry.get(session.id, kind="documents") is session
        assert len(registry) == 1

    def test_unknown_id_is_not_found(self, registry):
        with pytest.raises(NotFoundError) as exc:
            registry.get("nope")
        assert exc.value.code.value == "E_SESSION_NOT_FOUND"

    def test_wrong_kind_is_rejected(self, registry):
        session = registry.create_message_session(SubscriptionRef("orders", "billing"))
        with pytest.raises(InvalidRequestError) as exc:
            registry.get(session.id, kind="documents")
        assert exc.value.code.value == "E_INVALID_SESSION_KIND"

    def test_session_ids_are_unique(self, registry):
        first = registry.create_document_session(ORDERS)
        second = registry.create_document_session(ORDERS)
        assert first.id != second.id

    def test_close_removes_session(self, registry):
        session = registry.create_document_session(ORDERS)
        registry.close(session.id)

        with pytest.raises(NotFoundError):
            registry.get(session.id)
        with pytest.raises(NotFoundError):
            registry.close(session.id)

    def test_least_recently_used_is_evicted(self, registry):
        first = registry.create_document_session(ORDERS)
        second = registry.create_document_session(ORDERS)
        registry.get(first.id)

        third = registry.create_document_session(ORDERS)

        assert len(registry) == 2
        assert registry.get(first.id) is first
        assert registry.get(third.id) is third
        with pytest.raises(NotFoundError):
            registry.get(second.id)

    def test_close_all(self, registry):
        registry.create_document_session(ORDERS)
        registry.create_message_session(SubscriptionRef("orders", "billing", dead_letter=True))

        registry.close_all()

        assert len(registry) == 0
