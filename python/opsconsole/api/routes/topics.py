"""Service Bus routes.

Routes are transport-only:
- Read the shared gateway from app state
- Call exactly one gateway operation, then filter in memory
- Return success(...) or raise ApiError

The broker has no indexed search, so q is always applied to the peeked
listing here, never sent upstream.
"""

from typing import Annotated
from zoneinfo import ZoneInfo

from fastapi import APIRouter, Depends, Query

from opsconsole.api.deps import get_display_zone, get_gateway
from opsconsole.errors import ResubmissionFailure
from opsconsole.gateway import Message, RemoteGateway
from opsconsole.logging import get_logger
from opsconsole.responses import success_response
from opsconsole.schemas import (
    MessageListOut,
    MessageOut,
    ResubmitRequest,
    SubscriptionOut,
    TopicOut,
)
from opsconsole.services.ordering import order_messages
from opsconsole.services.search_filter import count_label, filter_messages, filter_topics

router = APIRouter()

logger = get_logger(__name__)


def _message_list(messages: list[Message], q: str | None, tz: ZoneInfo) -> dict:
    ordered = order_messages(messages)
    shown = filter_messages(ordered, q)
    out = MessageListOut(
        items=[MessageOut.from_message(m, tz) for m in shown],
        count_label=count_label(len(shown), len(ordered), q),
        total=len(ordered),
    )
    return out.model_dump(mode="json")


@router.get("/topics")
async def list_topics(
    gateway: Annotated[RemoteGateway, Depends(get_gateway)],
    q: str | None = Query(default=None, description="Filter on topic or subscription name"),
) -> dict:
    """List topics with their subscriptions and message counts.

    A topic whose name matches q keeps all its subscriptions; otherwise only
    the matching subscriptions are kept.
    """
    topics = filter_topics(await gateway.messages.list_topics(), q)
    return success_response([TopicOut.from_topic(t).model_dump(mode="json") for t in topics])


@router.get("/topics/{topic}/subscriptions/{subscription}")
async def get_subscription(
    topic: str,
    subscription: str,
    gateway: Annotated[RemoteGateway, Depends(get_gateway)],
) -> dict:
    """Active and dead-letter counts of one subscription."""
    info = await gateway.messages.get_subscription(topic, subscription)
    return success_response(SubscriptionOut.model_validate(info).model_dump(mode="json"))


@router.get("/topics/{topic}/subscriptions/{subscription}/messages")
async def list_active_messages(
    topic: str,
    subscription: str,
    gateway: Annotated[RemoteGateway, Depends(get_gateway)],
    tz: Annotated[ZoneInfo, Depends(get_display_zone)],
    q: str | None = Query(default=None, description="Filter on id, subject, body, properties"),
) -> dict:
    """Peek active messages, newest first, filtered by q."""
    messages = await gateway.messages.list_active(topic, subscription)
    return success_response(_message_list(messages, q, tz))


@router.get("/topics/{topic}/subscriptions/{subscription}/dlq")
async def list_dead_lettered_messages(
    topic: str,
    subscription: str,
    gateway: Annotated[RemoteGateway, Depends(get_gateway)],
    tz: Annotated[ZoneInfo, Depends(get_display_zone)],
    q: str | None = Query(default=None, description="Filter on id, subject, body, properties"),
) -> dict:
    """Peek dead-lettered messages, newest first, filtered by q."""
    messages = await gateway.messages.list_dead_lettered(topic, subscription)
    return success_response(_message_list(messages, q, tz))


@router.post("/topics/{topic}/subscriptions/{subscription}/dlq/resubmit")
async def resubmit_message(
    topic: str,
    subscription: str,
    body: ResubmitRequest,
    gateway: Annotated[RemoteGateway, Depends(get_gateway)],
) -> dict:
    """Re-publish a dead-lettered message to its topic.

    The dead-lettered original is not removed. Re-read the dead-letter
    listing to see the broker's state.

    Returns 502 E_RESUBMISSION_FAILED when the broker refuses the message.
    """
    message = body.message.to_message()
    if not await gateway.messages.resubmit(topic, subscription, message):
        raise ResubmissionFailure()
    logger.info(
        "message_resubmitted",
        topic=topic,
        subscription=subscription,
        message_id=message.message_id,
    )
    return success_response({"resubmitted": True})
