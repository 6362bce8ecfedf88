"""Dead-letter resubmission workflow.

State machine:
    IDLE -> AWAITING_CONFIRMATION      select(message)
    AWAITING_CONFIRMATION -> IDLE      decline(), no side effect
    AWAITING_CONFIRMATION -> IN_FLIGHT confirm(), one gateway.resubmit call
    IN_FLIGHT -> SUCCEEDED -> IDLE     dead-letter listing is re-fetched
    IN_FLIGHT -> FAILED -> IDLE        listing left untouched, no retry

Only one resubmission is outstanding at a time: select() and confirm() are
rejected from any state other than the one they start from.

The dead-lettered original is not removed locally after a successful
resubmission. The listing is re-read from the broker, which does not delete
it automatically, so it may still be shown.
"""

import asyncio
import copy
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any

from opsconsole.errors import (
    ApiError,
    InvalidWorkflowStateError,
    ResubmissionFailure,
    ResubmissionInProgressError,
)
from opsconsole.gateway.messaging import MessageStore
from opsconsole.gateway.types import Message
from opsconsole.logging import get_logger

logger = get_logger(__name__)


class ResubmissionState(str, Enum):
    IDLE = "idle"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    IN_FLIGHT = "in_flight"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class ResubmissionRequest:
    """Snapshot sent once on confirmation and discarded afterwards."""

    topic: str
    subscription: str
    message: Message


@dataclass(frozen=True)
class ResubmissionOutcome:
    """Result reported to the operator.

    Attributes:
        succeeded: Whether the broker accepted the re-published message
        message_id: Id of the resubmitted message
        error: Why the resubmission failed (None on success)
        refresh_error: Why the dead-letter re-fetch failed after a success
    """

    succeeded: bool
    message_id: str
    error: str | None = None
    refresh_error: str | None = None


Notify = Callable[[ResubmissionOutcome], None]


class ResubmissionWorkflow:
    """Drives resubmission of dead-lettered messages for one subscription."""

    def __init__(
        self,
        messages: MessageStore,
        topic: str,
        subscription: str,
        refresh: Callable[[], Awaitable[Any]],
        notify: Notify | None = None,
    ):
        self._messages = messages
        self._topic = topic
        self._subscription = subscription
        self._refresh = refresh
        self._notify = notify

        self.state = ResubmissionState.IDLE
        self.selected: Message | None = None
        self.last_outcome: ResubmissionOutcome | None = None
        # Transitions of the current cycle only, starting from IDLE
        self.history: list[ResubmissionState] = [ResubmissionState.IDLE]

    def select(self, message: Message) -> None:
        """Ask for confirmation to resubmit a dead-lettered message.

        Raises:
            ResubmissionInProgressError: If another resubmission is pending.
        """
        if self.state != ResubmissionState.IDLE:
            raise ResubmissionInProgressError()
        self.selected = message
        self.history = [self.state]
        self._transition(ResubmissionState.AWAITING_CONFIRMATION)

    def decline(self) -> None:
        """Drop the pending selection without contacting the broker.

        Raises:
            InvalidWorkflowStateError: If nothing is awaiting confirmation.
        """
        if self.state != ResubmissionState.AWAITING_CONFIRMATION:
            raise InvalidWorkflowStateError(
                f"Cannot decline a resubmission in state {self.state.value}"
            )
        self.selected = None
        self._transition(ResubmissionState.IDLE)

    async def confirm(self) -> ResubmissionOutcome:
        """Resubmit the selected message and reconcile the dead-letter listing.

        Failures are reported in the returned outcome, not raised.

        Raises:
            ResubmissionInProgressError: If a resubmission is already in flight.
            InvalidWorkflowStateError: If nothing is awaiting confirmation.
        """
        if self.state == ResubmissionState.IN_FLIGHT:
            raise ResubmissionInProgressError()
        if self.state != ResubmissionState.AWAITING_CONFIRMATION or self.selected is None:
            raise InvalidWorkflowStateError(
                f"Cannot confirm a resubmission in state {self.state.value}"
            )

        request = ResubmissionRequest(
            topic=self._topic,
            subscription=self._subscription,
            message=copy.deepcopy(self.selected),
        )
        self.selected = None
        self._transition(ResubmissionState.IN_FLIGHT)

        try:
            accepted = await self._messages.resubmit(
                request.topic, request.subscription, request.message
            )
        except asyncio.CancelledError:
            self._transition(ResubmissionState.IDLE)
            raise
        except Exception as e:
            error = e.message if isinstance(e, ApiError) else str(e)
            return self._fail(request, error)

        if not accepted:
            return self._fail(request, ResubmissionFailure().message)

        self._transition(ResubmissionState.SUCCEEDED)
        logger.info(
            "resubmission_succeeded",
            topic=request.topic,
            subscription=request.subscription,
            message_id=request.message.message_id,
        )

        outcome = ResubmissionOutcome(succeeded=True, message_id=request.message.message_id)
        # The workflow returns to IDLE even if the re-fetch is cancelled or raises
        try:
            await self._refresh()
        except ApiError as e:
            outcome = replace(outcome, refresh_error=e.message)
            logger.warning("resubmission_refresh_failed", error=e.message)
        finally:
            self._finish(outcome)
        return outcome

    def _fail(self, request: ResubmissionRequest, error: str) -> ResubmissionOutcome:
        self._transition(ResubmissionState.FAILED)
        logger.warning(
            "resubmission_failed",
            topic=request.topic,
            subscription=request.subscription,
            message_id=request.message.message_id,
            error=error,
        )
        return self._finish(
            ResubmissionOutcome(
                succeeded=False, message_id=request.message.message_id, error=error
            )
        )

    def _finish(self, outcome: ResubmissionOutcome) -> ResubmissionOutcome:
        self.last_outcome = outcome
        self._transition(ResubmissionState.IDLE)
        if self._notify is not None:
            self._notify(outcome)
        return outcome

    def _transition(self, state: ResubmissionState) -> None:
        self.state = state
        self.history.append(state)
