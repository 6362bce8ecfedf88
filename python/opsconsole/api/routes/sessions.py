"""Browsing session routes.

Routes are transport-only:
- Resolve the session from the registry
- Call exactly one session or workflow operation
- Return success(...) or raise ApiError

Every session response carries the filtered view for q (and field, for
documents), so live search is a GET against the accumulation with no
upstream call.
"""

from dataclasses import asdict
from typing import Annotated
from zoneinfo import ZoneInfo

from fastapi import APIRouter, Depends, Query, Response

from opsconsole.api.deps import get_display_zone, get_session_registry
from opsconsole.errors import ApiError, ApiErrorCode, InvalidRequestError
from opsconsole.gateway import ContainerRef, SubscriptionRef
from opsconsole.responses import success_response
from opsconsole.schemas import (
    CreateDocumentSessionRequest,
    CreateMessageSessionRequest,
    DocumentRowOut,
    DocumentSessionOut,
    FieldSearchRequest,
    MessageOut,
    MessageSessionOut,
    RestartSessionRequest,
    ResubmissionOutcomeOut,
    ResubmissionStateOut,
    SelectMessageRequest,
)
from opsconsole.services.resubmission import ResubmissionWorkflow
from opsconsole.services.search_filter import (
    count_label,
    document_count_label,
    normalize_query,
)
from opsconsole.services.sessions import (
    BrowsingSession,
    DocumentBrowsingSession,
    MessageBrowsingSession,
    SessionRegistry,
)

router = APIRouter()

Registry = Annotated[SessionRegistry, Depends(get_session_registry)]
DisplayZone = Annotated[ZoneInfo, Depends(get_display_zone)]


def _document_out(session: DocumentBrowsingSession, q: str | None, field: str | None) -> dict:
    shown = session.view(q, field)
    if normalize_query(q):
        label = f"{len(shown)} / {document_count_label(session.total, session.has_more)}"
    else:
        label = document_count_label(session.total, session.has_more)
    search = session.search_state
    out = DocumentSessionOut(
        id=session.id,
        database=session.container.database,
        container=session.container.container,
        query=session.query,
        search_field=search.field if search else None,
        search_value=search.value if search else None,
        has_more=session.has_more,
        total=session.total,
        count_label=label,
        items=[DocumentRowOut.from_document(doc) for doc in shown],
        available_fields=session.available_fields(),
    )
    return out.model_dump(mode="json")


def _message_out(session: MessageBrowsingSession, q: str | None, tz: ZoneInfo) -> dict:
    shown = session.view(q)
    out = MessageSessionOut(
        id=session.id,
        topic=session.subscription.topic,
        subscription=session.subscription.subscription,
        dead_letter=session.subscription.dead_letter,
        total=session.total,
        count_label=count_label(len(shown), session.total, q),
        items=[MessageOut.from_message(m, tz) for m in shown],
    )
    return out.model_dump(mode="json")


def _session_out(
    session: BrowsingSession, q: str | None, field: str | None, tz: ZoneInfo
) -> dict:
    if isinstance(session, DocumentBrowsingSession):
        return _document_out(session, q, field)
    return _message_out(session, q, tz)  # type: ignore[arg-type]


def _workflow(session: BrowsingSession) -> ResubmissionWorkflow:
    workflow = getattr(session, "resubmission", None)
    if workflow is None:
        raise InvalidRequestError(
            ApiErrorCode.E_INVALID_SESSION_KIND,
            "Resubmission is only available on dead-letter sessions",
        )
    return workflow


def _workflow_out(workflow: ResubmissionWorkflow) -> dict:
    outcome = workflow.last_outcome
    out = ResubmissionStateOut(
        state=workflow.state.value,
        selected_message_id=workflow.selected.message_id if workflow.selected else None,
        last_outcome=ResubmissionOutcomeOut(**asdict(outcome)) if outcome else None,
    )
    return out.model_dump(mode="json")


# =============================================================================
# Session lifecycle
# =============================================================================


@router.post("/sessions/documents", status_code=201)
async def create_document_session(body: CreateDocumentSessionRequest, registry: Registry) -> dict:
    """Open a document session and load its first page.

    If the first page fails the session is discarded and the error returned.
    """
    session = registry.create_document_session(
        ContainerRef(database=body.database, container=body.container)
    )
    try:
        await session.start(body.query)
    except ApiError:
        registry.close(session.id)
        raise
    return success_response(_document_out(session, None, None))


@router.post("/sessions/messages", status_code=201)
async def create_message_session(
    body: CreateMessageSessionRequest, registry: Registry, tz: DisplayZone
) -> dict:
    """Open an active or dead-letter message session and load the listing."""
    session = registry.create_message_session(
        SubscriptionRef(
            topic=body.topic, subscription=body.subscription, dead_letter=body.dead_letter
        )
    )
    try:
        await session.refresh()
    except ApiError:
        registry.close(session.id)
        raise
    return success_response(_message_out(session, None, tz))


@router.get("/sessions/{session_id}")
async def get_session(
    session_id: str,
    registry: Registry,
    tz: DisplayZone,
    q: str | None = Query(default=None, description="Live search over fetched items"),
    field: str | None = Query(default=None, description="Document field to search (default id)"),
) -> dict:
    """Filtered view of the session's accumulation. Never calls upstream."""
    return success_response(_session_out(registry.get(session_id), q, field, tz))


@router.delete("/sessions/{session_id}", status_code=204)
async def close_session(session_id: str, registry: Registry) -> Response:
    """Close a session. An outstanding page request is cancelled."""
    registry.close(session_id)
    return Response(status_code=204)


# =============================================================================
# Paging
# =============================================================================


@router.post("/sessions/{session_id}/advance")
async def advance_session(
    session_id: str,
    registry: Registry,
    q: str | None = Query(default=None),
    field: str | None = Query(default=None),
) -> dict:
    """Append the next page of a document session.

    Does nothing when no more pages exist. Returns 409 E_REQUEST_IN_FLIGHT
    while another page request of the session is outstanding.
    """
    session = registry.get(session_id, kind=DocumentBrowsingSession.kind)
    await session.advance()  # type: ignore[attr-defined]
    return success_response(_document_out(session, q, field))  # type: ignore[arg-type]


@router.post("/sessions/{session_id}/search")
async def search_session(session_id: str, body: FieldSearchRequest, registry: Registry) -> dict:
    """Replace a document session's accumulation with a field search.

    A blank value clears the search and reloads the default listing. A newer
    search supersedes an outstanding one; the older call gets 409
    E_STALE_PAGE.
    """
    session = registry.get(session_id, kind=DocumentBrowsingSession.kind)
    await session.search(body.field, body.value)  # type: ignore[attr-defined]
    return success_response(_document_out(session, None, None))  # type: ignore[arg-type]


@router.post("/sessions/{session_id}/refresh")
async def refresh_session(
    session_id: str,
    registry: Registry,
    tz: DisplayZone,
    body: RestartSessionRequest | None = None,
) -> dict:
    """Restart a session from its first page.

    Document sessions keep their current query unless the body names a new
    one. Message sessions re-peek the whole listing.
    """
    session = registry.get(session_id)
    if isinstance(session, DocumentBrowsingSession):
        query = body.query if body is not None else session.query
        await session.start(query)
    else:
        await session.refresh()  # type: ignore[attr-defined]
    return success_response(_session_out(session, None, None, tz))


# =============================================================================
# Resubmission
# =============================================================================


@router.get("/sessions/{session_id}/resubmission")
async def get_resubmission(session_id: str, registry: Registry) -> dict:
    """Current state of the session's resubmission workflow."""
    workflow = _workflow(registry.get(session_id, kind=MessageBrowsingSession.kind))
    return success_response(_workflow_out(workflow))


@router.post("/sessions/{session_id}/resubmission")
async def select_for_resubmission(
    session_id: str, body: SelectMessageRequest, registry: Registry
) -> dict:
    """Select a dead-lettered message and wait for confirmation.

    Returns 409 E_RESUBMISSION_IN_PROGRESS while another resubmission is
    pending.
    """
    session = registry.get(session_id, kind=MessageBrowsingSession.kind)
    workflow = _workflow(session)
    workflow.select(session.find(body.message_id))  # type: ignore[attr-defined]
    return success_response(_workflow_out(workflow))


@router.post("/sessions/{session_id}/resubmission/confirm")
async def confirm_resubmission(session_id: str, registry: Registry, tz: DisplayZone) -> dict:
    """Resubmit the selected message once, then re-read the dead-letter listing.

    A refused or failed resubmission is reported in the outcome and leaves
    the listing untouched. The original may still be listed after success:
    the broker does not delete it.
    """
    session = registry.get(session_id, kind=MessageBrowsingSession.kind)
    outcome = await _workflow(session).confirm()
    return success_response(
        {
            "outcome": ResubmissionOutcomeOut(**asdict(outcome)).model_dump(mode="json"),
            "session": _message_out(session, None, tz),  # type: ignore[arg-type]
        }
    )


@router.post("/sessions/{session_id}/resubmission/decline")
async def decline_resubmission(session_id: str, registry: Registry) -> dict:
    """Drop the pending selection. Nothing is sent."""
    workflow = _workflow(registry.get(session_id, kind=MessageBrowsingSession.kind))
    workflow.decline()
    return success_response(_workflow_out(workflow))
