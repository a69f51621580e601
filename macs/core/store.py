"""
MessageStore — the task-scoped log behind the message bus.

Messages are appended once and kept in send order. Secondary indexes by
recipient, task and reply parent keep inbox and thread queries from scanning
the whole log.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Iterator

from macs.core.models import BROADCAST, AgentMessage, AgentName
from macs.utils.clock import MonotonicClock

logger = logging.getLogger("macs.store")


class MessageStore:
    """In-memory message log. Data is lost when the process exits."""

    def __init__(self) -> None:
        self._messages: dict[str, AgentMessage] = {}
        self._by_recipient: dict[str, list[str]] = defaultdict(list)
        self._by_task: dict[str, list[str]] = defaultdict(list)
        self._by_parent: dict[str, list[str]] = defaultdict(list)
        self._clock = MonotonicClock()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def stamp(self) -> tuple[float, int]:
        """Return the next ``(sent_at, seq)`` pair, strictly increasing."""
        return self._clock.tick()

    def append(self, message: AgentMessage) -> None:
        """Record a message and index it."""
        if message.id in self._messages:
            raise ValueError(f"Message '{message.id}' is already stored.")
        self._messages[message.id] = message
        self._by_recipient[message.recipient].append(message.id)
        self._by_task[message.task_id].append(message.id)
        if message.reply_to_id is not None:
            self._by_parent[message.reply_to_id].append(message.id)

    def remove_task(self, task_id: str) -> int:
        """Delete every message of a task. Returns the number removed."""
        ids = self._by_task.pop(task_id, [])
        if not ids:
            return 0
        doomed = set(ids)
        for message_id in ids:
            self._messages.pop(message_id, None)
        for index in (self._by_recipient, self._by_parent):
            for key in list(index):
                remaining = [i for i in index[key] if i not in doomed]
                if remaining:
                    index[key] = remaining
                else:
                    del index[key]
        for message_id in ids:
            self._by_parent.pop(message_id, None)
        logger.debug("Removed %d messages for task %s", len(ids), task_id)
        return len(ids)

    def clear(self) -> None:
        """Drop every message. The clock keeps running."""
        self._messages.clear()
        self._by_recipient.clear()
        self._by_task.clear()
        self._by_parent.clear()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, message_id: str) -> AgentMessage | None:
        return self._messages.get(message_id)

    def all(self) -> list[AgentMessage]:
        """All messages in send order."""
        return list(self._messages.values())

    def addressed_to(self, agent: AgentName) -> list[AgentMessage]:
        """Messages sent to `agent` directly or by broadcast, in send order."""
        ids = list(self._by_recipient.get(BROADCAST, []))
        if agent != BROADCAST:
            ids += self._by_recipient.get(agent, [])
        messages = [self._messages[i] for i in ids]
        messages.sort(key=lambda m: m.seq)
        return messages

    def for_task(self, task_id: str) -> list[AgentMessage]:
        return [self._messages[i] for i in self._by_task.get(task_id, [])]

    def replies_to(self, message_id: str) -> list[AgentMessage]:
        """Direct replies to a message, in send order."""
        return [self._messages[i] for i in self._by_parent.get(message_id, [])]

    def task_ids(self) -> list[str]:
        return list(self._by_task)

    def __len__(self) -> int:
        return len(self._messages)

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._messages

    def __iter__(self) -> Iterator[AgentMessage]:
        return iter(list(self._messages.values()))
