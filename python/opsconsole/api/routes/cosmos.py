"""Cosmos DB routes.

Routes are transport-only:
- Read the shared gateway from app state
- Call exactly one gateway operation
- Return success(...) or raise ApiError

These endpoints are stateless: the caller carries the continuation token.
Use the /sessions endpoints to let the server accumulate pages.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query

from opsconsole.api.deps import get_gateway, get_settings
from opsconsole.config import Settings
from opsconsole.errors import ApiErrorCode, NotFoundError
from opsconsole.gateway import ContainerRef, RemoteGateway
from opsconsole.responses import success_response
from opsconsole.schemas import ContainerOut, DocumentDetailOut, ItemPageOut

router = APIRouter()


@router.get("/cosmos/databases")
async def list_databases(gateway: Annotated[RemoteGateway, Depends(get_gateway)]) -> dict:
    """List database ids in the Cosmos DB account."""
    return success_response(await gateway.documents.list_databases())


@router.get("/cosmos/databases/{database}/containers")
async def list_containers(
    database: str,
    gateway: Annotated[RemoteGateway, Depends(get_gateway)],
) -> dict:
    """List the containers of a database with their partition key paths."""
    containers = await gateway.documents.list_containers(database)
    return success_response(
        [ContainerOut.model_validate(c).model_dump(mode="json") for c in containers]
    )


@router.get("/cosmos/databases/{database}/containers/{container}/items")
async def list_items(
    database: str,
    container: str,
    gateway: Annotated[RemoteGateway, Depends(get_gateway)],
    settings: Annotated[Settings, Depends(get_settings)],
    query: str | None = Query(default=None, description="Raw SQL, default SELECT * FROM c"),
    continuation_token: str | None = Query(default=None, description="Token of the next page"),
    max_item_count: int | None = Query(default=None, ge=1, le=1000),
    search_field: str | None = Query(default=None, description="Field for a CONTAINS search"),
    search_value: str | None = Query(default=None, description="Value for a CONTAINS search"),
) -> dict:
    """List one page of documents, or run a field search.

    **Listing:** returns up to max_item_count documents and the token of the
    next page. has_more is true iff a token was returned, even when the page
    itself is empty.

    **Field search:** when search_field and a non-blank search_value are
    given, runs a case-insensitive substring search on that field and
    returns a single batch with has_more always false.
    """
    ref = ContainerRef(database=database, container=container)

    if search_field and search_value and search_value.strip():
        docs = await gateway.documents.search(
            ref, search_field, search_value, settings.document_search_max
        )
        page = ItemPageOut(items=docs)
    else:
        response = await gateway.documents.list_page(
            ref,
            query.strip() if query and query.strip() else None,
            continuation_token,
            max_item_count or settings.document_page_size,
        )
        page = ItemPageOut(
            items=list(response.items),
            continuation_token=response.next_cursor,
            has_more=response.has_more,
        )
    return success_response(page.model_dump(mode="json"))


@router.get("/cosmos/databases/{database}/containers/{container}/items/{item_id}")
async def get_item(
    database: str,
    container: str,
    item_id: str,
    gateway: Annotated[RemoteGateway, Depends(get_gateway)],
    partition_key: str = Query(..., description="Partition key value of the item"),
) -> dict:
    """Point read of one document. System properties are returned separately."""
    ref = ContainerRef(database=database, container=container)
    doc = await gateway.documents.get_item(ref, item_id, partition_key)
    if doc is None:
        raise NotFoundError(ApiErrorCode.E_NOT_FOUND, f"Item not found: {item_id}")
    return success_response(DocumentDetailOut.from_document(doc).model_dump(mode="json"))
