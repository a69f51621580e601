"""
NegotiationProtocol — structured disagreement between two agents.

A session moves through a small state machine, and every transition is also
a message on the bus so the exchange shows up in inboxes and threads:

    open ──respond──▶ countered ──respond──▶ countered
      │                   │
      ├──resolve──────────┴──▶ agreed      (terminal)
      └──escalate─────────────▶ escalated  (terminal)

An agreed or escalated session is final. Responding to, resolving or
escalating it again raises SessionClosedError instead of overwriting the
recorded outcome, so a session only ever moves forward.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any

from macs.core.bus import MessageBus
from macs.core.errors import MessageValidationError, SessionClosedError, SessionNotFoundError
from macs.core.models import (
    AUTO_RESOLVER,
    BROADCAST,
    DEFAULT_ARBITRATOR,
    AgentMessage,
    AgentName,
    MessageType,
    NegotiationSession,
    NegotiationStatus,
    Priority,
)

if TYPE_CHECKING:
    from macs.observability.metrics import MetricsCollector
    from macs.observability.recorder import EventRecorder

logger = logging.getLogger("macs.negotiation")

DEFAULT_TRIGGER_THRESHOLD = 0.65


def should_trigger_negotiation(
    confidence: float,
    peer_has_expertise: bool,
    threshold: float = DEFAULT_TRIGGER_THRESHOLD,
) -> bool:
    """An unsure agent should negotiate when a peer knows the topic better."""
    return confidence < threshold and peer_has_expertise


class NegotiationProtocol:
    """
    Tracks negotiation sessions and drives them over a MessageBus.

    Only `MessageBus.send` is used; the protocol keeps no other hold on the bus.
    """

    def __init__(
        self,
        bus: MessageBus,
        *,
        arbitrator: AgentName = DEFAULT_ARBITRATOR,
        trigger_threshold: float = DEFAULT_TRIGGER_THRESHOLD,
        metrics: "MetricsCollector | None" = None,
        recorder: "EventRecorder | None" = None,
    ) -> None:
        self._bus = bus
        self.arbitrator = arbitrator
        self.trigger_threshold = trigger_threshold
        self._metrics = metrics
        self._recorder = recorder
        self._sessions: dict[str, NegotiationSession] = {}

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def open_negotiation(
        self,
        task_id: str,
        initiator: AgentName,
        respondent: AgentName,
        topic: str,
        initiator_position: str,
    ) -> NegotiationSession:
        """
        Start a session and send the opening proposal to the respondent.

        The session becomes visible to queries once the proposal was sent.

        Raises:
            MessageValidationError: The proposal is malformed. No session
                is created.
        """
        message = await self._bus.send(dict(
            type=MessageType.PROPOSE,
            sender=initiator,
            recipient=respondent,
            subject=topic,
            body=initiator_position,
            task_id=task_id,
            priority=Priority.NORMAL,
            requires_response=True,
        ))

        session = NegotiationSession(
            task_id=task_id,
            initiator=initiator,
            respondent=respondent,
            topic=topic,
            initiator_position=initiator_position,
            message_ids=[message.id],
        )
        self._sessions[session.id] = session
        logger.info(
            "Negotiation %s opened: %s vs %s on '%s'",
            session.id[:8], initiator, respondent, topic,
        )
        if self._metrics:
            self._metrics.record_negotiation_opened()
        if self._recorder:
            self._recorder.record_negotiation("negotiation_opened", session)
        return session

    async def respond_to_negotiation(self, session_id: str, position: str) -> NegotiationSession:
        """
        Record the respondent's position and send it back as a counter.

        May be called repeatedly; the latest position wins.

        Raises:
            SessionNotFoundError: Unknown session.
            SessionClosedError: The session was already agreed or escalated.
            MessageValidationError: The counter is malformed. The session is
                left unchanged.
        """
        session = self._open_session(session_id)
        await self._transition(
            session,
            dict(
                type=MessageType.COUNTER,
                sender=session.respondent,
                recipient=session.initiator,
                subject=f"Re: {session.topic}",
                body=position,
                task_id=session.task_id,
                priority=Priority.NORMAL,
                requires_response=True,
                reply_to_id=self._proposal_id(session),
            ),
            respondent_position=position,
            status=NegotiationStatus.COUNTERED,
        )

        logger.info("Negotiation %s countered by %s", session.id[:8], session.respondent)
        if self._metrics:
            self._metrics.record_negotiation_countered()
        if self._recorder:
            self._recorder.record_negotiation("negotiation_countered", session)
        return session

    async def resolve(
        self,
        session_id: str,
        resolution: str,
        resolved_by: AgentName = AUTO_RESOLVER,
    ) -> NegotiationSession:
        """
        Close the session with an agreed approach and announce it to everyone.

        With `resolved_by="auto"` the announcement is sent by the initiator.
        Handlers of the agree message already see the session as agreed.

        Raises:
            SessionNotFoundError: Unknown session.
            SessionClosedError: The session was already agreed or escalated.
            MessageValidationError: Empty `resolved_by` or a malformed
                announcement. The session is left unchanged.
        """
        session = self._open_session(session_id)
        if not resolved_by:
            raise MessageValidationError("resolved_by must name an agent or 'auto'")
        rounds = self._rounds(session)

        await self._transition(
            session,
            dict(
                type=MessageType.AGREE,
                sender=session.initiator if resolved_by == AUTO_RESOLVER else resolved_by,
                recipient=BROADCAST,
                subject=f"Resolved: {session.topic}",
                body=f"Approach agreed: {resolution}",
                task_id=session.task_id,
                priority=Priority.NORMAL,
                reply_to_id=self._proposal_id(session),
            ),
            status=NegotiationStatus.AGREED,
            resolution=resolution,
            resolved_by=resolved_by,
            resolved_at=time.time(),
        )

        logger.info("Negotiation %s agreed by %s: %s", session.id[:8], resolved_by, resolution)
        if self._metrics:
            self._metrics.record_negotiation_closed("agreed", rounds)
        if self._recorder:
            self._recorder.record_negotiation("negotiation_resolved", session)
        return session

    async def escalate(self, session_id: str, reason: str) -> NegotiationSession:
        """
        Hand the decision to the arbitrator.

        Raises:
            SessionNotFoundError: Unknown session.
            SessionClosedError: The session was already agreed or escalated.
            MessageValidationError: The escalation is malformed. The session
                is left unchanged.
        """
        session = self._open_session(session_id)
        rounds = self._rounds(session)

        await self._transition(
            session,
            dict(
                type=MessageType.ESCALATE,
                sender=session.initiator,
                recipient=self.arbitrator,
                subject=f"Escalated: {session.topic}",
                body=reason,
                task_id=session.task_id,
                priority=Priority.HIGH,
                requires_response=True,
            ),
            status=NegotiationStatus.ESCALATED,
            resolution=reason,
            resolved_by=self.arbitrator,
            resolved_at=time.time(),
        )

        logger.info("Negotiation %s escalated to %s: %s", session.id[:8], self.arbitrator, reason)
        if self._metrics:
            self._metrics.record_negotiation_closed("escalated", rounds)
        if self._recorder:
            self._recorder.record_negotiation("negotiation_escalated", session)
        return session

    async def _transition(
        self,
        session: NegotiationSession,
        draft: dict[str, Any],
        **changes: Any,
    ) -> AgentMessage:
        """
        Apply `changes` to the session and send the message that records them.

        The draft is checked before anything changes. If sending fails the
        previous field values are put back, so a session never moves without
        gaining exactly one message id.
        """
        checked = self._bus.validate(draft)
        previous = {name: getattr(session, name) for name in changes}
        for name, value in changes.items():
            setattr(session, name, value)
        try:
            message = await self._bus.send(checked)
        except Exception:
            for name, value in previous.items():
                setattr(session, name, value)
            raise
        session.message_ids.append(message.id)
        return message

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def should_trigger_negotiation(self, confidence: float, peer_has_expertise: bool) -> bool:
        return should_trigger_negotiation(confidence, peer_has_expertise, self.trigger_threshold)

    def get_session(self, session_id: str) -> NegotiationSession:
        """Look up a session. Raises SessionNotFoundError if missing."""
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def get_sessions(self, task_id: str) -> list[NegotiationSession]:
        return [s for s in self._sessions.values() if s.task_id == task_id]

    def get_open_negotiations(self, task_id: str) -> list[NegotiationSession]:
        """Sessions of the task that are still open or countered."""
        return [s for s in self.get_sessions(task_id) if not s.is_terminal]

    def transcript(self, session_id: str) -> list[AgentMessage]:
        """The bus messages of a session, in the order they were sent."""
        session = self.get_session(session_id)
        messages = (self._bus.get_message(i) for i in session.message_ids)
        return [m for m in messages if m is not None]

    def clear_task(self, task_id: str) -> int:
        """Forget every session of a task. Returns the number removed."""
        doomed = [sid for sid, s in self._sessions.items() if s.task_id == task_id]
        for session_id in doomed:
            del self._sessions[session_id]
        return len(doomed)

    def __len__(self) -> int:
        return len(self._sessions)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _open_session(self, session_id: str) -> NegotiationSession:
        # Outcomes are never overwritten, not even by a second resolve.
        session = self.get_session(session_id)
        if session.is_terminal:
            raise SessionClosedError(session_id, session.status.value)
        return session

    def _proposal_id(self, session: NegotiationSession) -> str | None:
        # The proposal is gone once its task was cleared from the bus.
        proposal_id = session.message_ids[0]
        return proposal_id if self._bus.get_message(proposal_id) is not None else None

    @staticmethod
    def _rounds(session: NegotiationSession) -> int:
        # Every message after the proposal so far is a counter.
        return len(session.message_ids) - 1
