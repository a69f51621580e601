"""
Core data models for MACS.

Defines the messages exchanged over the bus, the negotiation sessions layered
on top of it, and the entries stored on the shared blackboard.
All models use Pydantic v2 for validation and serialization.
"""

from __future__ import annotations

import time
import uuid
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Agent identifiers are plain strings; the platform's roster is listed below.
AgentName = str

BROADCAST = "BROADCAST"
AUTO_RESOLVER = "auto"
DEFAULT_ARBITRATOR = "JUPITER"

KNOWN_AGENTS: tuple[str, ...] = (
    "MARS", "VENUS", "MERCURY", "JUPITER", "SATURN", "PLUTO",
    "ATLAS", "GANYMEDE", "IO", "CALLISTO", "MIMAS", "NEPTUNE",
    "ANDROMEDA", "ENCELADUS", "SUN", "EARTH", "RALPH",
)


def new_id() -> str:
    """Return a fresh opaque identifier."""
    return uuid.uuid4().hex


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class MessageType(str, Enum):
    """Kinds of message agents exchange."""
    FINDING_SHARE = "finding-share"
    PROPOSE = "propose"
    COUNTER = "counter"
    AGREE = "agree"
    ESCALATE = "escalate"
    QUESTION = "question"
    ANSWER = "answer"
    DISCOVERY = "discovery"
    WARNING = "warning"
    STATUS_UPDATE = "status-update"
    REVIEW_REQUEST = "review-request"
    REVIEW_RESULT = "review-result"
    DEPENDENCY = "dependency"

    @classmethod
    def _missing_(cls, value: object) -> "MessageType | None":
        if not isinstance(value, str):
            return None
        normalized = value.strip().lower().replace("_", "-")
        normalized = _LEGACY_MESSAGE_TYPES.get(normalized, normalized)
        for member in cls:
            if member.value == normalized:
                return member
        return None


# Names used by the older uppercase message vocabulary.
_LEGACY_MESSAGE_TYPES = {
    "share-finding": "finding-share",
    "request-help": "question",
    "flag-concern": "warning",
}


class Priority(str, Enum):
    """Message priority, ordered low < normal < high < critical."""
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _PRIORITY_ORDER.index(self)

    @classmethod
    def _missing_(cls, value: object) -> "Priority | None":
        if not isinstance(value, str):
            return None
        normalized = value.strip().lower()
        normalized = _PRIORITY_ALIASES.get(normalized, normalized)
        for member in cls:
            if member.value == normalized:
                return member
        return None


_PRIORITY_ORDER = [Priority.LOW, Priority.NORMAL, Priority.HIGH, Priority.CRITICAL]
_PRIORITY_ALIASES = {"medium": "normal", "urgent": "critical"}


class NegotiationStatus(str, Enum):
    """Lifecycle states of a negotiation session."""
    OPEN = "open"
    COUNTERED = "countered"
    AGREED = "agreed"
    ESCALATED = "escalated"

    @property
    def is_terminal(self) -> bool:
        return self in (NegotiationStatus.AGREED, NegotiationStatus.ESCALATED)


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------

class MessageDraft(BaseModel):
    """Everything a sender supplies for a message; the bus fills in the rest."""

    model_config = ConfigDict(populate_by_name=True)

    type: MessageType
    sender: AgentName = Field(alias="from", min_length=1)
    recipient: AgentName = Field(alias="to", min_length=1)
    subject: str
    body: str
    task_id: str = Field(min_length=1)
    priority: Priority = Priority.NORMAL
    requires_response: bool = False
    reply_to_id: str | None = None
    response_deadline_ms: int | None = None

    @field_validator("type", mode="before")
    @classmethod
    def _coerce_type(cls, value: Any) -> Any:
        if isinstance(value, str) and not isinstance(value, MessageType):
            return MessageType(value)
        return value

    @field_validator("priority", mode="before")
    @classmethod
    def _coerce_priority(cls, value: Any) -> Any:
        if isinstance(value, str) and not isinstance(value, Priority):
            return Priority(value)
        return value

    @field_validator("recipient")
    @classmethod
    def _normalize_broadcast(cls, value: str) -> str:
        # "*" was the wildcard of the older bus; there is one sentinel now.
        return BROADCAST if value == "*" else value


class AgentMessage(MessageDraft):
    """A message as recorded by the bus."""

    id: str = Field(default_factory=new_id)
    sent_at: float = Field(default_factory=time.time)
    seq: int = 0
    read_at: float | None = None
    read_by: list[AgentName] = Field(default_factory=list)

    @property
    def is_broadcast(self) -> bool:
        return self.recipient == BROADCAST

    @property
    def is_reply(self) -> bool:
        return self.reply_to_id is not None

    def is_addressed_to(self, agent: AgentName) -> bool:
        """True if the message reaches `agent` directly or by broadcast."""
        return self.recipient == agent or self.recipient == BROADCAST


class HandlerFailure(BaseModel):
    """A subscriber handler that raised or timed out during fan-out."""
    agent: AgentName
    subscription_id: str
    message_id: str
    task_id: str
    error: str
    timed_out: bool = False
    at: float = Field(default_factory=time.time)


class BusStats(BaseModel):
    """Aggregate snapshot of the messages held by a bus."""
    total: int = 0
    by_type: dict[str, int] = Field(
        default_factory=lambda: {t.value: 0 for t in MessageType}
    )
    by_priority: dict[str, int] = Field(
        default_factory=lambda: {p.value: 0 for p in Priority}
    )
    broadcasts: int = 0


# ---------------------------------------------------------------------------
# Negotiation
# ---------------------------------------------------------------------------

class NegotiationSession(BaseModel):
    """A bounded consensus exchange between two agents."""
    id: str = Field(default_factory=new_id)
    task_id: str
    initiator: AgentName
    respondent: AgentName
    topic: str
    initiator_position: str
    respondent_position: str | None = None
    status: NegotiationStatus = NegotiationStatus.OPEN
    resolution: str | None = None
    resolved_by: AgentName | None = None
    opened_at: float = Field(default_factory=time.time)
    resolved_at: float | None = None
    message_ids: list[str] = Field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


# ---------------------------------------------------------------------------
# Blackboard
# ---------------------------------------------------------------------------

class BlackboardEntry(BaseModel):
    """A timestamped, confidence-scored fact written by an agent for a task."""
    id: str = Field(default_factory=new_id)
    key: str = Field(min_length=1)
    value: Any = None
    agent_id: AgentName
    task_id: str
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    tags: set[str] = Field(default_factory=set)
    written_at: float = Field(default_factory=time.time)
    seq: int = 0
    supersedes: str | None = None
