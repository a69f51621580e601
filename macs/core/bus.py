"""
MessageBus — addressed and broadcast pub/sub between agents.

Agents subscribe handlers under their name. A message addressed to an agent
reaches only that agent's handlers; a message addressed to BROADCAST reaches
every subscribed handler. `send` records the message first, then fans out to
all matching handlers concurrently and returns once every handler settled.
A failing handler is caught at the fan-out boundary, logged and recorded; it
never reaches the sender. A hanging coroutine handler is cut off after
`handler_timeout`. Plain functions run inline on the event loop, so a
blocking one holds up the whole fan-out and is not timed out.

Usage:
    bus = MessageBus()
    bus.subscribe("VENUS", on_message)
    msg = await bus.send({
        "type": "question", "from": "MARS", "to": "VENUS",
        "subject": "Schema", "body": "Which fields?", "task_id": "task-001",
    })
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Mapping

from pydantic import BaseModel, ValidationError

from macs.core.errors import HandlerTimeoutError, MessageValidationError
from macs.core.models import (
    BROADCAST,
    AgentMessage,
    AgentName,
    BusStats,
    HandlerFailure,
    MessageDraft,
    MessageType,
    Priority,
    new_id,
)
from macs.core.store import MessageStore

if TYPE_CHECKING:
    from macs.observability.metrics import MetricsCollector
    from macs.observability.recorder import EventRecorder

logger = logging.getLogger("macs.bus")

# Handlers may be coroutine functions or plain callables.
MessageHandler = Callable[[AgentMessage], Awaitable[None] | None]

DEFAULT_HANDLER_TIMEOUT = 30.0


@dataclass(eq=False)
class Subscription:
    """One handler registered for one agent."""
    id: str
    agent: AgentName
    handler: MessageHandler
    active: bool = True


class MessageBus:
    """
    In-process message bus with threading, read tracking and priority queries.

    Delivery is synchronous from the caller's point of view: `send` awaits the
    fan-out of all matching handlers. Handlers run concurrently with each
    other, each bounded by `handler_timeout` seconds. Plain (non-async)
    handlers run inline and are not subject to the timeout.
    """

    def __init__(
        self,
        store: MessageStore | None = None,
        *,
        handler_timeout: float | None = DEFAULT_HANDLER_TIMEOUT,
        deliver_broadcast_to_sender: bool = True,
        metrics: "MetricsCollector | None" = None,
        recorder: "EventRecorder | None" = None,
    ) -> None:
        self._store = store if store is not None else MessageStore()
        self._handler_timeout = handler_timeout
        self._deliver_broadcast_to_sender = deliver_broadcast_to_sender
        self._metrics = metrics
        self._recorder = recorder
        self._subscriptions: dict[AgentName, list[Subscription]] = {}
        self._failures: list[HandlerFailure] = []

    @property
    def store(self) -> MessageStore:
        return self._store

    # ------------------------------------------------------------------
    # Subscription
    # ------------------------------------------------------------------

    def subscribe(self, agent: AgentName, handler: MessageHandler) -> Callable[[], None]:
        """
        Register a handler for messages addressed to `agent`.

        Several handlers may be registered for the same agent.

        Returns:
            A function that removes exactly this handler. Calling it more than
            once is harmless.
        """
        if not agent:
            raise ValueError("Cannot subscribe without an agent name.")
        subscription = Subscription(id=new_id()[:12], agent=agent, handler=handler)
        self._subscriptions.setdefault(agent, []).append(subscription)
        logger.debug("Subscribed handler %s for %s", subscription.id, agent)

        def unsubscribe() -> None:
            self._remove(subscription)

        return unsubscribe

    def unsubscribe_all(self, agent: AgentName | None = None) -> int:
        """Remove every handler of `agent`, or of all agents. Returns the count."""
        if agent is None:
            targets = [s for subs in self._subscriptions.values() for s in subs]
        else:
            targets = list(self._subscriptions.get(agent, []))
        for subscription in targets:
            self._remove(subscription)
        return len(targets)

    def subscribers(self, agent: AgentName | None = None) -> int:
        """Number of active handlers for `agent`, or in total."""
        if agent is not None:
            return len(self._subscriptions.get(agent, []))
        return sum(len(subs) for subs in self._subscriptions.values())

    def subscribed_agents(self) -> list[AgentName]:
        return [agent for agent, subs in self._subscriptions.items() if subs]

    def _remove(self, subscription: Subscription) -> None:
        if not subscription.active:
            return
        subscription.active = False
        subs = self._subscriptions.get(subscription.agent, [])
        if subscription in subs:
            subs.remove(subscription)
        if not subs:
            self._subscriptions.pop(subscription.agent, None)
        logger.debug("Unsubscribed handler %s for %s", subscription.id, subscription.agent)

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    async def send(self, draft: MessageDraft | Mapping[str, Any]) -> AgentMessage:
        """
        Record a message and deliver it to every matching handler.

        Args:
            draft: A MessageDraft, or a mapping of its fields ("from"/"to"
                are accepted as aliases of sender/recipient).

        Returns:
            The stored AgentMessage with its id and sent_at assigned.

        Raises:
            MessageValidationError: If the draft is malformed. Nothing is
                stored or delivered in that case.
        """
        parsed = self.validate(draft)

        sent_at, seq = self._store.stamp()
        message = AgentMessage(**parsed.model_dump(), sent_at=sent_at, seq=seq)
        self._store.append(message)

        targets = self._targets(message)
        logger.info(
            "[%s → %s] %s: %s",
            message.sender, message.recipient, message.type.value, message.subject,
        )
        if self._metrics:
            self._metrics.record_message_sent(message.type.value, message.sender, message.is_broadcast)
        if self._recorder:
            self._recorder.record_message_sent(message, recipients=len(targets))

        if targets:
            await asyncio.gather(*(self._deliver(sub, message) for sub in targets))
        return message

    def validate(self, draft: MessageDraft | Mapping[str, Any]) -> MessageDraft:
        """Check a draft the way `send` would, without storing anything."""
        if isinstance(draft, BaseModel):
            data: Any = draft.model_dump(include=set(MessageDraft.model_fields))
        elif isinstance(draft, Mapping):
            data = dict(draft)
        else:
            raise MessageValidationError(f"expected a message draft, got {type(draft).__name__}")

        try:
            parsed = MessageDraft.model_validate(data)
        except ValidationError as e:
            raise MessageValidationError(_describe_errors(e)) from e

        if parsed.reply_to_id is not None and parsed.reply_to_id not in self._store:
            raise MessageValidationError(
                f"reply_to_id '{parsed.reply_to_id}' does not reference a known message"
            )
        return parsed

    def _targets(self, message: AgentMessage) -> list[Subscription]:
        if message.is_broadcast:
            targets = [s for subs in self._subscriptions.values() for s in subs]
            if not self._deliver_broadcast_to_sender:
                targets = [s for s in targets if s.agent != message.sender]
            return targets
        return list(self._subscriptions.get(message.recipient, []))

    async def _deliver(self, subscription: Subscription, message: AgentMessage) -> bool:
        """Run one handler. Never raises; failures are recorded instead."""
        # Unsubscribed after the fan-out started but before being called.
        if not subscription.active:
            return False

        started = time.perf_counter()
        try:
            result = subscription.handler(message)
            if inspect.isawaitable(result):
                await asyncio.wait_for(result, timeout=self._handler_timeout)
        except asyncio.TimeoutError:
            timeout = self._handler_timeout or 0.0
            self._record_failure(
                subscription, message, HandlerTimeoutError(subscription.agent, timeout),
                timed_out=True, latency=time.perf_counter() - started,
            )
            return False
        except Exception as e:
            self._record_failure(
                subscription, message, e,
                timed_out=False, latency=time.perf_counter() - started,
            )
            return False

        if self._metrics:
            self._metrics.record_delivery(subscription.agent, time.perf_counter() - started, success=True)
        return True

    def _record_failure(
        self,
        subscription: Subscription,
        message: AgentMessage,
        error: BaseException,
        timed_out: bool,
        latency: float,
    ) -> None:
        failure = HandlerFailure(
            agent=subscription.agent,
            subscription_id=subscription.id,
            message_id=message.id,
            task_id=message.task_id,
            error=f"{type(error).__name__}: {error}",
            timed_out=timed_out,
        )
        self._failures.append(failure)
        logger.warning(
            "Handler for %s failed on message %s from %s: %s",
            subscription.agent, message.id, message.sender, failure.error,
        )
        if self._metrics:
            self._metrics.record_delivery(subscription.agent, latency, success=False, timed_out=timed_out)
        if self._recorder:
            self._recorder.record_handler_failed(subscription.agent, message.id, failure.error, timed_out)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_message(self, message_id: str) -> AgentMessage | None:
        """Look up a message by ID. Returns None if not found."""
        return self._store.get(message_id)

    def get_thread(self, root_id: str) -> list[AgentMessage]:
        """
        Return a thread: the given message followed by its direct replies.

        Replies are ordered by sent_at. Replies to those replies belong to
        their own threads. Unknown IDs give an empty list.
        """
        root = self._store.get(root_id)
        if root is None:
            return []
        replies = sorted(self._store.replies_to(root.id), key=lambda m: (m.sent_at, m.seq))
        return [root, *replies]

    def get_inbox(self, agent: AgentName, task_id: str | None = None) -> list[AgentMessage]:
        """Messages addressed to `agent` directly or by broadcast, newest first."""
        inbox = [
            m for m in self._store.addressed_to(agent)
            if task_id is None or m.task_id == task_id
        ]
        inbox.sort(key=lambda m: (m.sent_at, m.seq), reverse=True)
        return inbox

    def get_unread(self, agent: AgentName, task_id: str | None = None) -> list[AgentMessage]:
        """Inbox messages nobody has marked read yet."""
        return [m for m in self.get_inbox(agent, task_id) if m.read_at is None]

    def mark_read(self, message_id: str, agent: AgentName) -> bool:
        """
        Mark a message read.

        `read_at` lives on the message, not per recipient: the first reader of
        a broadcast marks it read for everyone. Each reader is still noted in
        `read_by`.

        Returns:
            True if `agent` is a recipient of an existing message.
        """
        message = self._store.get(message_id)
        if message is None or not message.is_addressed_to(agent):
            return False
        if agent not in message.read_by:
            message.read_by.append(agent)
        if message.read_at is None:
            message.read_at = time.time()
            if self._recorder:
                self._recorder.record_message_read(message_id, agent)
        return True

    def get_for(self, agent: AgentName, min_priority: Priority | str | None = None) -> list[AgentMessage]:
        """Messages sent to, broadcast to, or sent by `agent`, in send order."""
        messages = [
            m for m in self._store.all()
            if m.is_addressed_to(agent) or m.sender == agent
        ]
        return _at_least(messages, min_priority)

    def get_broadcasts(self, min_priority: Priority | str | None = None) -> list[AgentMessage]:
        return _at_least([m for m in self._store.all() if m.is_broadcast], min_priority)

    def get_all(self, min_priority: Priority | str | None = None) -> list[AgentMessage]:
        return _at_least(self._store.all(), min_priority)

    def get_stats(self, task_id: str | None = None) -> BusStats:
        """Counts by type and priority, plus the number of broadcasts."""
        messages = self._store.all() if task_id is None else self._store.for_task(task_id)
        stats = BusStats()
        for m in messages:
            stats.total += 1
            stats.by_type[m.type.value] += 1
            stats.by_priority[m.priority.value] += 1
            if m.is_broadcast:
                stats.broadcasts += 1
        return stats

    def get_failures(self, task_id: str | None = None) -> list[HandlerFailure]:
        """Handler failures caught during fan-out."""
        if task_id is None:
            return list(self._failures)
        return [f for f in self._failures if f.task_id == task_id]

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    def clear_task(self, task_id: str) -> int:
        """Delete every message of a task. Returns the number removed."""
        removed = self._store.remove_task(task_id)
        self._failures = [f for f in self._failures if f.task_id != task_id]
        logger.info("Cleared %d messages for task %s", removed, task_id)
        if self._recorder:
            self._recorder.record_task_cleared("bus", task_id, removed)
        return removed

    def clear(self) -> None:
        """Drop all messages and failures. Subscriptions are kept."""
        self._store.clear()
        self._failures.clear()


def _at_least(messages: list[AgentMessage], min_priority: Priority | str | None) -> list[AgentMessage]:
    if min_priority is None:
        return messages
    threshold = Priority(min_priority).rank
    return [m for m in messages if m.priority.rank >= threshold]


def _describe_errors(error: ValidationError) -> str:
    parts = []
    for err in error.errors():
        location = ".".join(str(p) for p in err["loc"]) or "draft"
        parts.append(f"{location}: {err['msg']}")
    return "; ".join(parts)


# ---------------------------------------------------------------------------
# Typed helpers
# ---------------------------------------------------------------------------

async def ask(
    bus: MessageBus,
    sender: AgentName,
    recipient: AgentName,
    subject: str,
    body: str,
    priority: Priority | str = Priority.NORMAL,
    *,
    task_id: str,
) -> AgentMessage:
    """Ask another agent a question that expects an answer."""
    return await bus.send(dict(
        type=MessageType.QUESTION, sender=sender, recipient=recipient,
        subject=subject, body=body, task_id=task_id, priority=priority,
        requires_response=True,
    ))


async def answer(
    bus: MessageBus,
    sender: AgentName,
    recipient: AgentName,
    reply_to_id: str,
    subject: str,
    body: str,
    priority: Priority | str = Priority.NORMAL,
    *,
    task_id: str,
) -> AgentMessage:
    return await bus.send(dict(
        type=MessageType.ANSWER, sender=sender, recipient=recipient,
        subject=subject, body=body, task_id=task_id, priority=priority,
        reply_to_id=reply_to_id,
    ))


async def broadcast(
    bus: MessageBus,
    sender: AgentName,
    subject: str,
    body: str,
    priority: Priority | str = Priority.NORMAL,
    *,
    task_id: str,
) -> AgentMessage:
    """Announce a discovery to every agent."""
    return await bus.send(dict(
        type=MessageType.DISCOVERY, sender=sender, recipient=BROADCAST,
        subject=subject, body=body, task_id=task_id, priority=priority,
    ))


async def share_finding(
    bus: MessageBus,
    sender: AgentName,
    recipient: AgentName,
    subject: str,
    body: str,
    priority: Priority | str = Priority.NORMAL,
    *,
    task_id: str,
) -> AgentMessage:
    return await bus.send(dict(
        type=MessageType.FINDING_SHARE, sender=sender, recipient=recipient,
        subject=subject, body=body, task_id=task_id, priority=priority,
    ))


async def warn(
    bus: MessageBus,
    sender: AgentName,
    recipient: AgentName,
    subject: str,
    body: str,
    priority: Priority | str = Priority.HIGH,
    *,
    task_id: str,
) -> AgentMessage:
    """Flag a concern. Warnings default to high priority."""
    return await bus.send(dict(
        type=MessageType.WARNING, sender=sender, recipient=recipient,
        subject=subject, body=body, task_id=task_id, priority=priority,
    ))


async def request_review(
    bus: MessageBus,
    sender: AgentName,
    reviewer: AgentName,
    subject: str,
    body: str,
    priority: Priority | str = Priority.NORMAL,
    *,
    task_id: str,
) -> AgentMessage:
    return await bus.send(dict(
        type=MessageType.REVIEW_REQUEST, sender=sender, recipient=reviewer,
        subject=subject, body=body, task_id=task_id, priority=priority,
        requires_response=True,
    ))


async def review_result(
    bus: MessageBus,
    sender: AgentName,
    recipient: AgentName,
    reply_to_id: str,
    subject: str,
    body: str,
    priority: Priority | str = Priority.NORMAL,
    *,
    task_id: str,
) -> AgentMessage:
    return await bus.send(dict(
        type=MessageType.REVIEW_RESULT, sender=sender, recipient=recipient,
        subject=subject, body=body, task_id=task_id, priority=priority,
        reply_to_id=reply_to_id,
    ))


async def declare_dependency(
    bus: MessageBus,
    sender: AgentName,
    recipient: AgentName,
    subject: str,
    body: str,
    priority: Priority | str = Priority.NORMAL,
    *,
    task_id: str,
) -> AgentMessage:
    """Tell another agent that the sender's work depends on theirs."""
    return await bus.send(dict(
        type=MessageType.DEPENDENCY, sender=sender, recipient=recipient,
        subject=subject, body=body, task_id=task_id, priority=priority,
    ))


async def status_update(
    bus: MessageBus,
    sender: AgentName,
    subject: str,
    body: str,
    *,
    task_id: str,
) -> AgentMessage:
    """Broadcast progress. Status updates are always low priority."""
    return await bus.send(dict(
        type=MessageType.STATUS_UPDATE, sender=sender, recipient=BROADCAST,
        subject=subject, body=body, task_id=task_id, priority=Priority.LOW,
    ))
