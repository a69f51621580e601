"""Tests for the MessageStore."""

import pytest

from macs.core.models import BROADCAST, AgentMessage
from macs.core.store import MessageStore


def _message(store: MessageStore, sender="EARTH", recipient="MARS", task_id="task-001", reply_to_id=None) -> AgentMessage:
    sent_at, seq = store.stamp()
    msg = AgentMessage(
        type="question", sender=sender, recipient=recipient, subject="s", body="b",
        task_id=task_id, reply_to_id=reply_to_id, sent_at=sent_at, seq=seq,
    )
    store.append(msg)
    return msg


class TestMessageStore:
    def setup_method(self) -> None:
        self.store = MessageStore()

    def test_stamps_strictly_increase(self) -> None:
        stamps = [self.store.stamp() for _ in range(200)]
        times = [t for t, _ in stamps]
        seqs = [s for _, s in stamps]
        assert all(a < b for a, b in zip(times, times[1:]))
        assert seqs == list(range(1, 201))

    def test_append_and_get(self) -> None:
        msg = _message(self.store)
        assert self.store.get(msg.id) is msg
        assert msg.id in self.store
        assert len(self.store) == 1

    def test_duplicate_id_rejected(self) -> None:
        msg = _message(self.store)
        with pytest.raises(ValueError, match="already stored"):
            self.store.append(msg)

    def test_addressed_to_includes_broadcasts(self) -> None:
        direct = _message(self.store, recipient="MARS")
        shout = _message(self.store, recipient=BROADCAST)
        _message(self.store, recipient="VENUS")
        assert [m.id for m in self.store.addressed_to("MARS")] == [direct.id, shout.id]

    def test_replies_index(self) -> None:
        root = _message(self.store)
        reply = _message(self.store, sender="MARS", recipient="EARTH", reply_to_id=root.id)
        assert self.store.replies_to(root.id) == [reply]

    def test_remove_task(self) -> None:
        keep = _message(self.store, task_id="task-002")
        root = _message(self.store)
        _message(self.store, reply_to_id=root.id)

        assert self.store.remove_task("task-001") == 2
        assert self.store.for_task("task-001") == []
        assert self.store.replies_to(root.id) == []
        assert self.store.addressed_to("MARS") == [keep]
        assert self.store.remove_task("task-001") == 0

    def test_clear(self) -> None:
        _message(self.store)
        self.store.clear()
        assert len(self.store) == 0
        assert self.store.task_ids() == []
