"""Pydantic schemas for request/response models.

All schemas are re-exported here for convenient imports.
"""

from opsconsole.schemas.documents import (
    ContainerOut,
    DocumentDetailOut,
    DocumentRowOut,
    ItemPageOut,
)
from opsconsole.schemas.messages import (
    MessageIn,
    MessageListOut,
    MessageOut,
    ResubmitRequest,
    SubscriptionOut,
    TopicOut,
)
from opsconsole.schemas.sessions import (
    CreateDocumentSessionRequest,
    CreateMessageSessionRequest,
    DocumentSessionOut,
    FieldSearchRequest,
    MessageSessionOut,
    RestartSessionRequest,
    ResubmissionOutcomeOut,
    ResubmissionStateOut,
    SelectMessageRequest,
)

__all__ = [
    # Documents
    "ContainerOut",
    "DocumentDetailOut",
    "DocumentRowOut",
    "ItemPageOut",
    # Messages
    "MessageIn",
    "MessageListOut",
    "MessageOut",
    "ResubmitRequest",
    "SubscriptionOut",
    "TopicOut",
    # Sessions
    "CreateDocumentSessionRequest",
    "CreateMessageSessionRequest",
    "DocumentSessionOut",
    "FieldSearchRequest",
    "MessageSessionOut",
    "RestartSessionRequest",
    "ResubmissionOutcomeOut",
    "ResubmissionStateOut",
    "SelectMessageRequest",
]
