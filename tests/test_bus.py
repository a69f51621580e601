"""Tests for the MessageBus and its typed helpers."""

import asyncio
import time

import pytest

from macs.core.bus import (
    MessageBus,
    answer,
    ask,
    broadcast,
    declare_dependency,
    request_review,
    review_result,
    share_finding,
    status_update,
    warn,
)
from macs.core.errors import MessageValidationError
from macs.core.models import BROADCAST, MessageType, Priority
from macs.observability.metrics import MetricsCollector
from macs.observability.recorder import EventRecorder, EventType

TASK = "task-001"


def _draft(**overrides) -> dict:
    data = {
        "type": "question",
        "from": "EARTH",
        "to": "MARS",
        "subject": "Schema",
        "body": "Which fields?",
        "task_id": TASK,
    }
    data.update(overrides)
    return data


class Inbox:
    """Collects delivered messages."""

    def __init__(self) -> None:
        self.messages = []

    async def __call__(self, message) -> None:
        self.messages.append(message)


class TestSend:
    def setup_method(self) -> None:
        self.bus = MessageBus()

    async def test_direct_delivery(self) -> None:
        mars, venus = Inbox(), Inbox()
        self.bus.subscribe("MARS", mars)
        self.bus.subscribe("VENUS", venus)

        msg = await self.bus.send(_draft())

        assert [m.id for m in mars.messages] == [msg.id]
        assert venus.messages == []

    async def test_broadcast_reaches_everyone(self) -> None:
        inboxes = {name: Inbox() for name in ("MARS", "VENUS", "JUPITER")}
        for name, inbox in inboxes.items():
            self.bus.subscribe(name, inbox)

        msg = await self.bus.send(_draft(type="discovery", **{"from": "JUPITER", "to": BROADCAST}))

        for inbox in inboxes.values():
            assert [m.id for m in inbox.messages] == [msg.id]

    async def test_broadcast_can_skip_sender(self) -> None:
        bus = MessageBus(deliver_broadcast_to_sender=False)
        jupiter, mars = Inbox(), Inbox()
        bus.subscribe("JUPITER", jupiter)
        bus.subscribe("MARS", mars)

        await bus.send(_draft(type="discovery", **{"from": "JUPITER", "to": BROADCAST}))

        assert jupiter.messages == []
        assert len(mars.messages) == 1

    async def test_sync_handler(self) -> None:
        seen = []
        self.bus.subscribe("MARS", seen.append)
        await self.bus.send(_draft())
        assert len(seen) == 1

    async def test_multiple_handlers_per_agent(self) -> None:
        first, second = Inbox(), Inbox()
        self.bus.subscribe("MARS", first)
        self.bus.subscribe("MARS", second)
        await self.bus.send(_draft())
        assert len(first.messages) == len(second.messages) == 1
        assert self.bus.subscribers("MARS") == 2

    async def test_send_without_subscribers_still_stores(self) -> None:
        msg = await self.bus.send(_draft())
        assert self.bus.get_message(msg.id) == msg

    async def test_ids_unique_and_times_increasing(self) -> None:
        sent = [await self.bus.send(_draft()) for _ in range(30)]
        assert len({m.id for m in sent}) == 30
        assert all(a.sent_at < b.sent_at for a, b in zip(sent, sent[1:]))

    async def test_validation_errors_store_nothing(self) -> None:
        mars = Inbox()
        self.bus.subscribe("MARS", mars)

        with pytest.raises(MessageValidationError):
            await self.bus.send(_draft(**{"from": ""}))
        with pytest.raises(MessageValidationError, match="reply_to_id"):
            await self.bus.send(_draft(reply_to_id="no-such-message"))

        assert mars.messages == []
        assert self.bus.get_all() == []

    async def test_validation_error_is_value_error(self) -> None:
        data = _draft()
        del data["task_id"]
        with pytest.raises(ValueError):
            await self.bus.send(data)


class TestHandlerIsolation:
    def setup_method(self) -> None:
        self.metrics = MetricsCollector()
        self.recorder = EventRecorder()
        self.bus = MessageBus(handler_timeout=0.05, metrics=self.metrics, recorder=self.recorder)

    async def test_failing_handler_does_not_reach_sender(self) -> None:
        async def broken(message) -> None:
            raise RuntimeError("boom")

        healthy = Inbox()
        self.bus.subscribe("MARS", broken)
        self.bus.subscribe("MARS", healthy)

        msg = await self.bus.send(_draft())

        assert len(healthy.messages) == 1
        failures = self.bus.get_failures()
        assert len(failures) == 1
        assert failures[0].agent == "MARS"
        assert failures[0].message_id == msg.id
        assert "boom" in failures[0].error
        assert not failures[0].timed_out

    async def test_hanging_handler_times_out(self) -> None:
        async def stuck(message) -> None:
            await asyncio.sleep(10)

        healthy = Inbox()
        self.bus.subscribe("MARS", stuck)
        self.bus.subscribe("VENUS", healthy)

        await self.bus.send(_draft(to=BROADCAST))

        assert len(healthy.messages) == 1
        failures = self.bus.get_failures(TASK)
        assert [f.timed_out for f in failures] == [True]
        assert self.metrics.delivery_metrics("MARS").timeouts == 1
        assert len(self.recorder.events_by_type(EventType.HANDLER_FAILED)) == 1

    async def test_failing_sync_handler(self) -> None:
        def broken(message) -> None:
            raise KeyError("missing")

        self.bus.subscribe("MARS", broken)
        await self.bus.send(_draft())
        assert len(self.bus.get_failures()) == 1

    async def test_handlers_run_concurrently(self) -> None:
        # Each handler waits for the other to start; run one after another
        # the first would time out.
        bus = MessageBus(handler_timeout=1.0)
        mars_started, venus_started = asyncio.Event(), asyncio.Event()

        async def mars(message) -> None:
            mars_started.set()
            await venus_started.wait()

        async def venus(message) -> None:
            venus_started.set()
            await mars_started.wait()

        bus.subscribe("MARS", mars)
        bus.subscribe("VENUS", venus)
        await bus.send(_draft(to=BROADCAST))

        assert bus.get_failures() == []

    async def test_slow_handlers_overlap(self) -> None:
        bus = MessageBus()

        async def slow(message) -> None:
            await asyncio.sleep(0.2)

        for name in ("MARS", "VENUS", "JUPITER"):
            bus.subscribe(name, slow)

        started = time.perf_counter()
        await bus.send(_draft(to=BROADCAST))
        assert time.perf_counter() - started < 0.5

    async def test_sync_handler_runs_inline_without_timeout(self) -> None:
        calls = []

        def blocking(message) -> None:
            time.sleep(0.1)
            calls.append(message.id)

        self.bus.subscribe("MARS", blocking)
        msg = await self.bus.send(_draft())

        assert calls == [msg.id]
        assert self.bus.get_failures() == []


class TestSubscription:
    def setup_method(self) -> None:
        self.bus = MessageBus()

    async def test_unsubscribe_removes_only_that_handler(self) -> None:
        first, second = Inbox(), Inbox()
        unsubscribe = self.bus.subscribe("MARS", first)
        self.bus.subscribe("MARS", second)

        unsubscribe()
        unsubscribe()
        await self.bus.send(_draft())

        assert first.messages == []
        assert len(second.messages) == 1
        assert self.bus.subscribers("MARS") == 1

    async def test_unsubscribe_during_fan_out(self) -> None:
        late = Inbox()
        handles = {}

        def early(message) -> None:
            handles["late"]()

        self.bus.subscribe("MARS", early)
        handles["late"] = self.bus.subscribe("MARS", late)

        await self.bus.send(_draft())
        assert late.messages == []

    def test_subscribe_requires_agent(self) -> None:
        with pytest.raises(ValueError):
            self.bus.subscribe("", Inbox())

    def test_unsubscribe_all(self) -> None:
        self.bus.subscribe("MARS", Inbox())
        self.bus.subscribe("VENUS", Inbox())
        assert self.bus.unsubscribe_all() == 2
        assert self.bus.subscribers() == 0
        assert self.bus.subscribed_agents() == []


class TestQueries:
    def setup_method(self) -> None:
        self.bus = MessageBus()

    async def test_thread_shape(self) -> None:
        root = await self.bus.send(_draft())
        first = await self.bus.send(_draft(type="answer", reply_to_id=root.id, **{"from": "MARS", "to": "EARTH"}))
        second = await self.bus.send(_draft(type="answer", reply_to_id=root.id, **{"from": "VENUS", "to": "EARTH"}))
        await self.bus.send(_draft(subject="unrelated"))

        thread = self.bus.get_thread(root.id)
        assert [m.id for m in thread] == [root.id, first.id, second.id]
        assert self.bus.get_thread("missing") == []

    async def test_thread_of_a_reply_holds_its_own_replies(self) -> None:
        root = await self.bus.send(_draft())
        reply = await self.bus.send(_draft(type="answer", reply_to_id=root.id, **{"from": "MARS", "to": "EARTH"}))
        other = await self.bus.send(_draft(type="answer", reply_to_id=root.id, **{"from": "VENUS", "to": "EARTH"}))
        nested = await self.bus.send(_draft(type="question", reply_to_id=reply.id, **{"from": "EARTH", "to": "MARS"}))

        assert [m.id for m in self.bus.get_thread(reply.id)] == [reply.id, nested.id]
        assert [m.id for m in self.bus.get_thread(root.id)] == [root.id, reply.id, other.id]

    async def test_inbox_newest_first(self) -> None:
        first = await self.bus.send(_draft())
        shout = await self.bus.send(_draft(to=BROADCAST))
        await self.bus.send(_draft(to="VENUS"))
        last = await self.bus.send(_draft())

        inbox = self.bus.get_inbox("MARS")
        assert [m.id for m in inbox] == [last.id, shout.id, first.id]
        assert all(a.sent_at > b.sent_at for a, b in zip(inbox, inbox[1:]))

    async def test_inbox_by_task(self) -> None:
        await self.bus.send(_draft())
        other = await self.bus.send(_draft(task_id="task-002"))
        assert [m.id for m in self.bus.get_inbox("MARS", "task-002")] == [other.id]

    async def test_mark_read(self) -> None:
        msg = await self.bus.send(_draft())
        assert len(self.bus.get_unread("MARS")) == 1

        assert self.bus.mark_read(msg.id, "MARS") is True
        first_read = self.bus.get_message(msg.id).read_at
        assert first_read is not None
        assert self.bus.get_unread("MARS") == []

        assert self.bus.mark_read(msg.id, "MARS") is True
        assert self.bus.get_message(msg.id).read_at == first_read

    async def test_mark_read_rejects_strangers(self) -> None:
        msg = await self.bus.send(_draft())
        assert self.bus.mark_read(msg.id, "VENUS") is False
        assert self.bus.mark_read("missing", "MARS") is False
        assert self.bus.get_message(msg.id).read_at is None

    async def test_broadcast_read_is_message_level(self) -> None:
        msg = await self.bus.send(_draft(to=BROADCAST))
        self.bus.mark_read(msg.id, "VENUS")
        assert self.bus.get_unread("MARS") == []
        assert self.bus.get_message(msg.id).read_by == ["VENUS"]

    async def test_priority_queries(self) -> None:
        await self.bus.send(_draft(priority="low"))
        high = await self.bus.send(_draft(priority="high", to=BROADCAST))
        crit = await self.bus.send(_draft(priority="critical", **{"from": "MARS", "to": "VENUS"}))
        await self.bus.send(_draft(to="VENUS"))

        assert [m.id for m in self.bus.get_for("MARS", Priority.HIGH)] == [high.id, crit.id]
        assert len(self.bus.get_for("MARS")) == 3
        assert [m.id for m in self.bus.get_broadcasts("high")] == [high.id]
        assert len(self.bus.get_all("medium")) == 3

    async def test_stats(self) -> None:
        await self.bus.send(_draft())
        await self.bus.send(_draft(type="discovery", to=BROADCAST, priority="high"))
        await self.bus.send(_draft(task_id="task-002"))

        stats = self.bus.get_stats()
        assert stats.total == 3
        assert stats.by_type["question"] == 2
        assert stats.by_type["warning"] == 0
        assert stats.by_priority["high"] == 1
        assert stats.broadcasts == 1
        assert self.bus.get_stats("task-002").total == 1

    async def test_clear_task_isolation(self) -> None:
        root = await self.bus.send(_draft())
        keep = await self.bus.send(_draft(task_id="task-002"))

        assert self.bus.clear_task(TASK) == 1
        assert self.bus.get_inbox("MARS", TASK) == []
        assert self.bus.get_thread(root.id) == []
        assert self.bus.get_stats(TASK).total == 0
        assert self.bus.get_message(keep.id) is not None

    async def test_clear_keeps_subscriptions(self) -> None:
        inbox = Inbox()
        self.bus.subscribe("MARS", inbox)
        await self.bus.send(_draft())
        self.bus.clear()
        assert self.bus.get_all() == []
        await self.bus.send(_draft())
        assert len(inbox.messages) == 2


class TestHelpers:
    def setup_method(self) -> None:
        self.bus = MessageBus()

    async def test_ask(self) -> None:
        msg = await ask(self.bus, "EARTH", "MARS", "Schema question", "What fields?", "high", task_id=TASK)
        assert msg.type == MessageType.QUESTION
        assert msg.sender == "EARTH"
        assert msg.recipient == "MARS"
        assert msg.priority == Priority.HIGH
        assert msg.requires_response

    async def test_answer_threads(self) -> None:
        question = await ask(self.bus, "EARTH", "MARS", "q", "?", task_id=TASK)
        reply = await answer(self.bus, "MARS", "EARTH", question.id, "a", "!", task_id=TASK)
        assert reply.type == MessageType.ANSWER
        assert reply.reply_to_id == question.id
        assert [m.id for m in self.bus.get_thread(question.id)] == [question.id, reply.id]

    async def test_broadcast(self) -> None:
        msg = await broadcast(self.bus, "JUPITER", "Use PostgreSQL", "why", task_id=TASK)
        assert msg.type == MessageType.DISCOVERY
        assert msg.recipient == BROADCAST
        assert msg.priority == Priority.NORMAL

    async def test_warn_defaults_high(self) -> None:
        msg = await warn(self.bus, "MERCURY", "MARS", "Type mismatch", "detail", task_id=TASK)
        assert msg.type == MessageType.WARNING
        assert msg.priority == Priority.HIGH

    async def test_status_update_is_low_broadcast(self) -> None:
        msg = await status_update(self.bus, "MARS", "Progress", "50%", task_id=TASK)
        assert msg.type == MessageType.STATUS_UPDATE
        assert msg.recipient == BROADCAST
        assert msg.priority == Priority.LOW

    async def test_review_round_trip(self) -> None:
        request = await request_review(self.bus, "MARS", "SATURN", "Review schema", "diff", task_id=TASK)
        assert request.type == MessageType.REVIEW_REQUEST
        assert request.requires_response
        result = await review_result(self.bus, "SATURN", "MARS", request.id, "LGTM", "ok", task_id=TASK)
        assert result.type == MessageType.REVIEW_RESULT
        assert result.reply_to_id == request.id

    async def test_finding_and_dependency(self) -> None:
        finding = await share_finding(self.bus, "PLUTO", BROADCAST, "Auth gap", "details", task_id=TASK)
        assert finding.type == MessageType.FINDING_SHARE
        assert finding.is_broadcast
        dep = await declare_dependency(self.bus, "VENUS", "MARS", "Needs API", "users endpoint", task_id=TASK)
        assert dep.type == MessageType.DEPENDENCY

    async def test_helpers_raise_validation_errors(self) -> None:
        with pytest.raises(MessageValidationError):
            await ask(self.bus, "", "VENUS", "s", "b", task_id=TASK)
        with pytest.raises(MessageValidationError):
            await warn(self.bus, "MERCURY", "MARS", "s", "b", "loud", task_id=TASK)
        with pytest.raises(MessageValidationError, match="reply_to_id"):
            await answer(self.bus, "MARS", "EARTH", "no-such-question", "a", "!", task_id=TASK)
        assert self.bus.get_all() == []
