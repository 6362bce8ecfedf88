"""Browsing session Pydantic schemas.

A session response always describes the filtered view of the session's
accumulation together with the cursor state it was fetched with.
"""

from typing import Literal

from pydantic import BaseModel, Field

from opsconsole.schemas.documents import DocumentRowOut
from opsconsole.schemas.messages import MessageOut

SESSION_KINDS = Literal["documents", "messages"]

RESUBMISSION_STATES = Literal[
    "idle", "awaiting_confirmation", "in_flight", "succeeded", "failed"
]


# =============================================================================
# Request Schemas
# =============================================================================


class CreateDocumentSessionRequest(BaseModel):
    """Open a document session. query is raw SQL, omitted for SELECT * FROM c."""

    database: str = Field(..., min_length=1)
    container: str = Field(..., min_length=1)
    query: str | None = None


class CreateMessageSessionRequest(BaseModel):
    topic: str = Field(..., min_length=1)
    subscription: str = Field(..., min_length=1)
    dead_letter: bool = False


class RestartSessionRequest(BaseModel):
    """Reload a document session, optionally with a new raw query."""

    query: str | None = None


class FieldSearchRequest(BaseModel):
    """Server-side field search. A blank value resets to the plain listing."""

    field: str = Field(..., min_length=1)
    value: str | None = None


class SelectMessageRequest(BaseModel):
    message_id: str = Field(..., min_length=1)


# =============================================================================
# Response Schemas
# =============================================================================


class DocumentSessionOut(BaseModel):
    id: str
    kind: SESSION_KINDS = "documents"
    database: str
    container: str
    query: str | None = None
    search_field: str | None = None
    search_value: str | None = None
    has_more: bool = False
    total: int = 0
    count_label: str
    items: list[DocumentRowOut] = Field(default_factory=list)
    available_fields: list[str] = Field(default_factory=list)


class MessageSessionOut(BaseModel):
    id: str
    kind: SESSION_KINDS = "messages"
    topic: str
    subscription: str
    dead_letter: bool = False
    total: int = 0
    count_label: str
    items: list[MessageOut] = Field(default_factory=list)


class ResubmissionOutcomeOut(BaseModel):
    succeeded: bool
    message_id: str
    error: str | None = None
    refresh_error: str | None = None


class ResubmissionStateOut(BaseModel):
    state: RESUBMISSION_STATES
    selected_message_id: str | None = None
    last_outcome: ResubmissionOutcomeOut | None = None
