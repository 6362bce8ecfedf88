"""Cosmos DB Pydantic schemas.

Contains response models for database, container and document endpoints.
Documents are free-form JSON objects, so they are carried as plain dicts.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from opsconsole.gateway.types import Document
from opsconsole.services.presentation import document_preview, split_system_fields

# =============================================================================
# Response Schemas
# =============================================================================


class ContainerOut(BaseModel):
    """A container and its partition key path(s)."""

    id: str
    partition_key: str

    model_config = ConfigDict(from_attributes=True)


class ItemPageOut(BaseModel):
    """One page of a document listing or a field search batch.

    has_more is false for field searches: they return a single batch.
    """

    items: list[dict[str, Any]] = Field(default_factory=list)
    continuation_token: str | None = None
    has_more: bool = False


class DocumentRowOut(BaseModel):
    """A document as shown in a listing row."""

    id: str
    preview: str
    document: dict[str, Any]

    @classmethod
    def from_document(cls, doc: Document) -> "DocumentRowOut":
        return cls(id=str(doc.get("id", "")), preview=document_preview(doc), document=doc)


class DocumentDetailOut(BaseModel):
    """A single document with Cosmos system properties split off."""

    id: str
    fields: dict[str, Any]
    system_fields: dict[str, Any]

    @classmethod
    def from_document(cls, doc: Document) -> "DocumentDetailOut":
        fields, system_fields = split_system_fields(doc)
        return cls(id=str(doc.get("id", "")), fields=fields, system_fields=system_fields)
