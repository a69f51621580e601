"""
EventRecorder — a time-ordered stream of coordination events.

Captures every send, handler failure, negotiation transition and blackboard
write so a build can be inspected after the fact. Events are kept in memory
and can be exported to JSON for debugging; nothing is ever read back into
the live stores.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from macs.core.models import AgentMessage, BlackboardEntry, NegotiationSession

logger = logging.getLogger("macs.observability.recorder")


class EventType(str, Enum):
    """Categories of recordable events."""
    MESSAGE_SENT = "message_sent"
    HANDLER_FAILED = "handler_failed"
    MESSAGE_READ = "message_read"
    TASK_CLEARED = "task_cleared"
    NEGOTIATION_OPENED = "negotiation_opened"
    NEGOTIATION_COUNTERED = "negotiation_countered"
    NEGOTIATION_RESOLVED = "negotiation_resolved"
    NEGOTIATION_ESCALATED = "negotiation_escalated"
    BLACKBOARD_WRITE = "blackboard_write"
    BLACKBOARD_SUPERSEDE = "blackboard_supersede"
    BLACKBOARD_CLEARED = "blackboard_cleared"
    PROMPT_TRUNCATED = "prompt_truncated"


@dataclass
class Event:
    """A single recorded event."""
    type: EventType
    timestamp: float = field(default_factory=time.time)
    data: dict[str, Any] = field(default_factory=dict)
    seq: int = 0

    @property
    def task_id(self) -> str | None:
        return self.data.get("task_id")

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "timestamp": self.timestamp,
            "seq": self.seq,
            "data": self.data,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "Event":
        return cls(
            type=EventType(d["type"]),
            timestamp=d["timestamp"],
            seq=d.get("seq", 0),
            data=d.get("data", {}),
        )


class EventRecorder:
    """
    Records coordination events in the order they happen.

    Usage:
        recorder = EventRecorder()
        bus = MessageBus(recorder=recorder)
        ...
        recorder.export_json("build-events.json")
    """

    def __init__(self) -> None:
        self._events: list[Event] = []

    def record(self, event_type: EventType | str, data: dict[str, Any] | None = None) -> Event:
        """
        Record a new event.

        Args:
            event_type: The type of event, as an EventType or its value.
            data: Optional payload.

        Returns:
            The recorded Event.
        """
        event = Event(
            type=EventType(event_type),
            seq=len(self._events) + 1,
            data=data or {},
        )
        self._events.append(event)
        logger.debug("Event recorded: %s (#%d)", event.type.value, event.seq)
        return event

    # ------------------------------------------------------------------
    # Convenience recording methods
    # ------------------------------------------------------------------

    def record_message_sent(self, message: "AgentMessage", recipients: int) -> None:
        self.record(EventType.MESSAGE_SENT, {
            "task_id": message.task_id,
            "message_id": message.id,
            "message_type": message.type.value,
            "from": message.sender,
            "to": message.recipient,
            "subject": message.subject[:200],
            "priority": message.priority.value,
            "recipients": recipients,
        })

    def record_handler_failed(self, agent: str, message_id: str, error: str, timed_out: bool) -> None:
        self.record(EventType.HANDLER_FAILED, {
            "agent": agent,
            "message_id": message_id,
            "error": error[:300],
            "timed_out": timed_out,
        })

    def record_message_read(self, message_id: str, agent: str) -> None:
        self.record(EventType.MESSAGE_READ, {
            "message_id": message_id,
            "agent": agent,
        })

    def record_task_cleared(self, component: str, task_id: str, removed: int) -> None:
        event_type = EventType.BLACKBOARD_CLEARED if component == "blackboard" else EventType.TASK_CLEARED
        self.record(event_type, {
            "component": component,
            "task_id": task_id,
            "removed": removed,
        })

    def record_negotiation(self, event_type: EventType | str, session: "NegotiationSession") -> None:
        self.record(event_type, {
            "task_id": session.task_id,
            "session_id": session.id,
            "initiator": session.initiator,
            "respondent": session.respondent,
            "topic": session.topic,
            "status": session.status.value,
            "resolution": session.resolution,
            "resolved_by": session.resolved_by,
        })

    def record_blackboard(self, event_type: EventType | str, entry: "BlackboardEntry") -> None:
        self.record(event_type, {
            "task_id": entry.task_id,
            "entry_id": entry.id,
            "key": entry.key,
            "agent": entry.agent_id,
            "confidence": entry.confidence,
            "supersedes": entry.supersedes,
        })

    def record_prompt_truncated(self, task_id: str, max_tokens: int) -> None:
        self.record(EventType.PROMPT_TRUNCATED, {
            "task_id": task_id,
            "max_tokens": max_tokens,
        })

    # ------------------------------------------------------------------
    # Export / Import
    # ------------------------------------------------------------------

    @property
    def events(self) -> list[Event]:
        return list(self._events)

    @property
    def event_count(self) -> int:
        return len(self._events)

    def clear(self) -> None:
        self._events.clear()

    def to_dict(self) -> dict[str, Any]:
        """Export the full recording as a dictionary."""
        return {
            "event_count": len(self._events),
            "events": [e.to_dict() for e in self._events],
        }

    def export_json(self, path: str | Path) -> None:
        """Export the recording to a JSON file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2, ensure_ascii=False, default=str)
        logger.info("Recording exported to %s (%d events)", path, len(self._events))

    @classmethod
    def load_json(cls, path: str | Path) -> "EventRecorder":
        """Load a recording exported with `export_json`."""
        with open(path, encoding="utf-8") as f:
            data = json.load(f)

        recorder = cls()
        recorder._events = [Event.from_dict(e) for e in data.get("events", [])]
        logger.info("Recording loaded from %s (%d events)", path, len(recorder._events))
        return recorder

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def events_by_type(self, event_type: EventType | str) -> list[Event]:
        """Filter events by type."""
        wanted = EventType(event_type)
        return [e for e in self._events if e.type == wanted]

    def events_for_task(self, task_id: str) -> list[Event]:
        return [e for e in self._events if e.task_id == task_id]

    def timeline(self) -> list[dict[str, Any]]:
        """
        A simplified timeline for display.

        Returns a list of dicts with: seq, timestamp, type, summary.
        """
        return [
            {
                "seq": event.seq,
                "timestamp": event.timestamp,
                "type": event.type.value,
                "summary": _event_summary(event),
            }
            for event in self._events
        ]


def _event_summary(event: Event) -> str:
    """One-line human-readable summary of an event."""
    d = event.data
    match event.type:
        case EventType.MESSAGE_SENT:
            return f"{d.get('from', '?')} → {d.get('to', '?')} {d.get('message_type', '?')}: {d.get('subject', '')[:60]}"
        case EventType.HANDLER_FAILED:
            kind = "timed out" if d.get("timed_out") else "failed"
            return f"Handler for {d.get('agent', '?')} {kind}: {d.get('error', '')[:60]}"
        case EventType.MESSAGE_READ:
            return f"{d.get('agent', '?')} read {str(d.get('message_id', '?'))[:8]}"
        case EventType.TASK_CLEARED | EventType.BLACKBOARD_CLEARED:
            return f"Cleared {d.get('removed', 0)} from {d.get('component', '?')} for {d.get('task_id', '?')}"
        case EventType.NEGOTIATION_OPENED:
            return f"Negotiation opened: {d.get('initiator', '?')} vs {d.get('respondent', '?')} on {d.get('topic', '')[:40]}"
        case EventType.NEGOTIATION_COUNTERED:
            return f"Negotiation countered by {d.get('respondent', '?')}"
        case EventType.NEGOTIATION_RESOLVED:
            return f"Negotiation agreed by {d.get('resolved_by', '?')}: {str(d.get('resolution', ''))[:60]}"
        case EventType.NEGOTIATION_ESCALATED:
            return f"Negotiation escalated to {d.get('resolved_by', '?')}"
        case EventType.BLACKBOARD_WRITE:
            return f"{d.get('agent', '?')} wrote {d.get('key', '?')} ({d.get('confidence', 0):.2f})"
        case EventType.BLACKBOARD_SUPERSEDE:
            return f"{d.get('agent', '?')} superseded {str(d.get('supersedes', '?'))[:8]} with {d.get('key', '?')}"
        case EventType.PROMPT_TRUNCATED:
            return f"Prompt context for {d.get('task_id', '?')} truncated to {d.get('max_tokens', 0)} tokens"
        case _:
            return event.type.value
