"""Tests for the remote gateway.

Tests cover:
- Field path validation and the CONTAINS search query
- Cosmos listing over the SDK pager (continuation token handling)
- Service Bus message conversion in both directions
- Lazy client creation and configuration errors
- The in-memory fakes used by the rest of the suite
"""

from datetime import UTC, datetime
from types import SimpleNamespace

import pytest
from azure.core.exceptions import ServiceRequestError
from azure.servicebus.amqp import AmqpMessageBodyType

from opsconsole.config import Settings
from opsconsole.errors import (
    ConfigurationError,
    InvalidRequestError,
    MalformedResponseError,
    NotFoundError,
    TransportError,
)
from opsconsole.gateway import (
    FakeDocumentStore,
    FakeMessageStore,
    RemoteGateway,
)
from opsconsole.gateway.documents import (
    CosmosDocumentStore,
    build_search_query,
    validate_field_path,
)
from opsconsole.gateway.messaging import (
    ServiceBusMessageStore,
    decode_body,
    to_message,
    to_outgoing,
)
from opsconsole.schemas.messages import MessageOut
from tests.helpers import ORDERS, make_documents, make_message


class _Page:
    def __init__(self, items):
        self._items = list(items)

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for item in self._items:
            yield item


class _Pager:
    """Stands in for the SDK's by_page() iterator."""

    def __init__(self, items, next_token):
        self._pages = [_Page(items)] if items is not None else []
        self._next_token = next_token
        self.continuation_token = None

    def __aiter__(self):
        return self

    async def __anext__(self):
        if not self._pages:
            raise StopAsyncIteration
        self.continuation_token = self._next_token
        return self._pages.pop(0)


class _QueryIterable:
    def __init__(self, pager, calls):
        self._pager = pager
        self._calls = calls

    def by_page(self, continuation_token=None):
        self._calls.append(("by_page", continuation_token))
        return self._pager


class _ContainerClient:
    def __init__(self, items=None, next_token=None, error=None):
        self.items = items
        self.next_token = next_token
        self.error = error
        self.calls = []

    def query_items(self, **kwargs):
        self.calls.append(("query_items", kwargs))
        if self.error is not None:
            raise self.error
        return _QueryIterable(_Pager(self.items, self.next_token), self.calls)


def _cosmos_store(container_client: _ContainerClient) -> CosmosDocumentStore:
    store = CosmosDocumentStore("AccountEndpoint=https://example.documents.azure.com/;AccountKey=x")
    store._container = lambda ref: container_client  # type: ignore[method-assign]
    return store


def _received(**overrides):
    values = {
        "message_id": "m-1",
        "sequence_number": 42,
        "enqueued_time_utc": datetime(2024, 3, 1, 12, 0, 0),
        "body_type": AmqpMessageBodyType.DATA,
        "body": iter([b'{"orderId": 77}']),
        "subject": "order-77",
        "application_properties": {b"tenant": b"contoso", "attempt": 3},
        "content_type": "application/json",
    }
    values.update(overrides)
    return SimpleNamespace(**values)


class TestFieldPaths:
    """Field names are interpolated into SQL, so they are validated."""

    @pytest.mark.parametrize("field", ["status", "customer.email", "_ts", "a1.b_2"])
    def test_valid_paths(self, field):
        assert validate_field_path(field) == field

    @pytest.mark.parametrize("field", ["", "a b", "a;DROP", "1abc", "a..b", "x)"])
    def test_invalid_paths(self, field):
        with pytest.raises(InvalidRequestError):
            validate_field_path(field)

    def test_search_query_is_parameterised(self):
        assert build_search_query("customer.email") == (
            "SELECT * FROM c WHERE CONTAINS(c.customer.email, @searchValue, true)"
        )


class TestCosmosDocumentStore:
    """Cosmos listing and search over a stubbed container client."""

    @pytest.mark.asyncio
    async def test_list_page_returns_items_and_token(self):
        client = _ContainerClient(items=make_documents(2), next_token="tok1")
        store = _cosmos_store(client)

        page = await store.list_page(ORDERS, None, None, 25)

        assert [d["id"] for d in page.items] == ["doc-0", "doc-1"]
        assert page.next_cursor == "tok1"
        assert client.calls[0] == (
            "query_items",
            {"query": "SELECT * FROM c", "max_item_count": 25},
        )
        assert client.calls[1] == ("by_page", None)

    @pytest.mark.asyncio
    async def test_list_page_passes_cursor_and_query(self):
        client = _ContainerClient(items=[], next_token=None)
        store = _cosmos_store(client)

        page = await store.list_page(ORDERS, "SELECT c.id FROM c", "tok1", 10)

        assert page.items == ()
        assert page.has_more is False
        assert client.calls[0][1]["query"] == "SELECT c.id FROM c"
        assert client.calls[1] == ("by_page", "tok1")

    @pytest.mark.asyncio
    async def test_empty_token_means_no_more_pages(self):
        store = _cosmos_store(_ContainerClient(items=make_documents(1), next_token=""))
        page = await store.list_page(ORDERS, None, None, 25)
        assert page.next_cursor is None

    @pytest.mark.asyncio
    async def test_no_pages_is_an_empty_result(self):
        store = _cosmos_store(_ContainerClient(items=None))
        page = await store.list_page(ORDERS, None, None, 25)
        assert page.items == ()
        assert page.has_more is False

    @pytest.mark.asyncio
    async def test_non_object_items_are_malformed(self):
        store = _cosmos_store(_ContainerClient(items=[1, 2]))
        with pytest.raises(MalformedResponseError):
            await store.list_page(ORDERS, "SELECT VALUE c.total FROM c", None, 25)

    @pytest.mark.asyncio
    async def test_sdk_errors_become_transport_errors(self):
        store = _cosmos_store(_ContainerClient(error=ServiceRequestError("connection refused")))
        with pytest.raises(TransportError, match="connection refused"):
            await store.list_page(ORDERS, None, None, 25)

    @pytest.mark.asyncio
    async def test_search_uses_parameter_and_caps_batch(self):
        client = _ContainerClient(items=make_documents(5), next_token="ignored")
        store = _cosmos_store(client)

        docs = await store.search(ORDERS, "status", "open", 3)

        assert len(docs) == 3
        kwargs = client.calls[0][1]
        assert kwargs["parameters"] == [{"name": "@searchValue", "value": "open"}]
        assert "CONTAINS(c.status, @searchValue, true)" in kwargs["query"]

    @pytest.mark.asyncio
    async def test_missing_connection_string_is_configuration_error(self):
        store = CosmosDocumentStore(None)
        with pytest.raises(ConfigurationError, match="COSMOS_DB_CONNECTION_STRING"):
            await store.list_databases()


class TestMessageConversion:
    """SDK message <-> console Message."""

    def test_to_message(self):
        message = to_message(_received())

        assert message.message_id == "m-1"
        assert message.sequence_number == 42
        assert message.enqueued_time == datetime(2024, 3, 1, 12, 0, 0, tzinfo=UTC)
        assert message.body == {"orderId": 77}
        assert message.subject == "order-77"
        assert message.application_properties == {"tenant": "contoso", "attempt": 3}
        assert message.content_type == "application/json"

    def test_non_json_data_body_is_text(self):
        assert decode_body(_received(body=iter([b"plain ", b"text"]))) == "plain text"

    def test_value_body_is_kept(self):
        assert decode_body(_received(body_type=AmqpMessageBodyType.VALUE, body=12)) == 12

    def test_binary_value_body_is_text(self):
        received = _received(body_type=AmqpMessageBodyType.VALUE, body=b"\xff\xfe\x00binary")

        out = MessageOut.from_message(to_message(received)).model_dump(mode="json")

        assert out["body"] == "\ufffd\ufffd\x00binary"

    def test_nested_value_body_bytes_are_text(self):
        body = {b"order": [b"A-1", 2], "meta": {"raw": b"ok"}}
        received = _received(body_type=AmqpMessageBodyType.VALUE, body=body)

        assert decode_body(received) == {"order": ["A-1", 2], "meta": {"raw": "ok"}}

    def test_sequence_body_bytes_are_text(self):
        received = _received(
            body_type=AmqpMessageBodyType.SEQUENCE, body=iter([[b"a", 1], [b"\xff"]])
        )

        assert decode_body(received) == [["a", 1], ["\ufffd"]]

    def test_missing_message_id_falls_back_to_sequence_number(self):
        assert to_message(_received(message_id=None)).message_id == "42"

    def test_missing_broker_fields_are_malformed(self):
        with pytest.raises(MalformedResponseError):
            to_message(_received(enqueued_time_utc=None))

    def test_to_outgoing_keeps_identity_and_metadata(self):
        message = make_message(
            "m-9", subject="order-77", body={"orderId": 77}, properties={"tenant": "contoso"}
        )

        outgoing = to_outgoing(message)

        assert outgoing.message_id == "m-9"
        assert outgoing.subject == "order-77"
        assert outgoing.content_type == "application/json"
        assert outgoing.application_properties == {"tenant": "contoso"}
        assert b"".join(outgoing.body) == b'{"orderId": 77}'

    def test_to_outgoing_text_body(self):
        outgoing = to_outgoing(make_message("m-1", body="hello"))
        assert b"".join(outgoing.body) == b"hello"
        assert outgoing.content_type is None


class TestServiceBusMessageStore:
    """Client creation is lazy and checked."""

    @pytest.mark.asyncio
    async def test_missing_configuration(self):
        store = ServiceBusMessageStore()
        with pytest.raises(ConfigurationError, match="SERVICE_BUS_FQDN"):
            await store.list_active("orders", "billing")

    @pytest.mark.asyncio
    async def test_close_without_clients_is_a_no_op(self):
        await ServiceBusMessageStore(connection_string="Endpoint=sb://x/").close()


class TestRemoteGateway:
    """Gateway construction from settings."""

    def test_fake_backends(self):
        settings = Settings(OPSCONSOLE_ENV="test", USE_FAKE_BACKENDS=True)
        gateway = RemoteGateway.from_settings(settings)

        assert isinstance(gateway.documents, FakeDocumentStore)
        assert isinstance(gateway.messages, FakeMessageStore)

    def test_azure_backends_open_no_connection(self):
        settings = Settings(
            OPSCONSOLE_ENV="test",
            SERVICE_BUS_FQDN="example.servicebus.windows.net",
            COSMOS_DB_CONNECTION_STRING="AccountEndpoint=https://x/;AccountKey=y",
        )
        gateway = RemoteGateway.from_settings(settings)

        assert isinstance(gateway.documents, CosmosDocumentStore)
        assert isinstance(gateway.messages, ServiceBusMessageStore)
        assert gateway.documents._client is None
        assert gateway.messages._client is None

    @pytest.mark.asyncio
    async def test_close(self, gateway):
        await gateway.close()


class TestFakeStores:
    """The in-memory stores behave like the services they replace."""

    @pytest.mark.asyncio
    async def test_fake_paging_uses_offset_tokens(self, fake_documents):
        fake_documents.add_container(ORDERS, make_documents(5))

        first = await fake_documents.list_page(ORDERS, None, None, 2)
        last = await fake_documents.list_page(ORDERS, None, "4", 2)

        assert first.next_cursor == "2"
        assert [d["id"] for d in last.items] == ["doc-4"]
        assert last.next_cursor is None

    @pytest.mark.asyncio
    async def test_fake_get_item_matches_partition_key(self, fake_documents):
        fake_documents.add_container(
            ORDERS, [{"id": "1", "customer": {"id": "c9"}}], partition_key="/customer/id"
        )

        assert await fake_documents.get_item(ORDERS, "1", "c9") == {
            "id": "1",
            "customer": {"id": "c9"},
        }
        assert await fake_documents.get_item(ORDERS, "1", "other") is None

    @pytest.mark.asyncio
    async def test_fake_topics_and_counts(self, fake_messages):
        fake_messages.add_subscription(
            "orders", "billing", active=[make_message("a")], dead_letter=[make_message("b")]
        )
        fake_messages.add_subscription("orders", "audit")

        topics = await fake_messages.list_topics()
        info = await fake_messages.get_subscription("orders", "billing")

        assert [t.name for t in topics] == ["orders"]
        assert [s.name for s in topics[0].subscriptions] == ["audit", "billing"]
        assert (info.active_message_count, info.dead_letter_message_count) == (1, 1)

    @pytest.mark.asyncio
    async def test_fake_unknown_subscription(self, fake_messages):
        with pytest.raises(NotFoundError):
            await fake_messages.get_subscription("orders", "missing")

    @pytest.mark.asyncio
    async def test_fake_resubmit_fans_out_to_topic(self, fake_messages):
        fake_messages.add_subscription("orders", "billing", dead_letter=[make_message("x")])
        fake_messages.add_subscription("orders", "audit")

        assert await fake_messages.resubmit("orders", "billing", make_message("x")) is True

        assert [m.message_id for m in await fake_messages.list_active("orders", "audit")] == ["x"]
        assert len(await fake_messages.list_dead_lettered("orders", "billing")) == 1
