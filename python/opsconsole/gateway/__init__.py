"""Remote gateway over the document and messaging backends.

One RemoteGateway is built per process in the application lifespan, kept on
app.state and closed at shutdown. It holds no session state, so concurrent
browsing sessions share it freely. Backend clients are created on first use.
"""

from opsconsole.config import Settings
from opsconsole.gateway.documents import CosmosDocumentStore, DocumentStore, FakeDocumentStore
from opsconsole.gateway.messaging import FakeMessageStore, MessageStore, ServiceBusMessageStore
from opsconsole.gateway.types import (
    ContainerInfo,
    ContainerRef,
    Document,
    FieldSearch,
    Message,
    PageRequest,
    PageResponse,
    SubscriptionInfo,
    SubscriptionRef,
    TopicInfo,
)
from opsconsole.logging import get_logger

logger = get_logger(__name__)


class RemoteGateway:
    """Pairs a document store with a message store."""

    def __init__(self, documents: DocumentStore, messages: MessageStore):
        self.documents = documents
        self.messages = messages

    @classmethod
    def from_settings(cls, settings: Settings) -> "RemoteGateway":
        """Build the gateway described by settings.

        No network connection is opened here.
        """
        if settings.use_fake_backends:
            logger.info("gateway_using_fake_backends")
            return cls(FakeDocumentStore(), FakeMessageStore())

        return cls(
            CosmosDocumentStore(settings.cosmos_connection_string),
            ServiceBusMessageStore(
                fqdn=settings.service_bus_fqdn,
                connection_string=settings.service_bus_connection_string,
                managed_identity_client_id=settings.azure_client_id,
                peek_max=settings.message_peek_max,
            ),
        )

    async def close(self) -> None:
        try:
            await self.documents.close()
        finally:
            await self.messages.close()
        logger.info("gateway_closed")


__all__ = [
    "ContainerInfo",
    "ContainerRef",
    "Document",
    "DocumentStore",
    "FakeDocumentStore",
    "FakeMessageStore",
    "FieldSearch",
    "Message",
    "MessageStore",
    "PageRequest",
    "PageResponse",
    "RemoteGateway",
    "SubscriptionInfo",
    "SubscriptionRef",
    "TopicInfo",
]
