"""Tests for build_communication_context."""

from macs.core.bus import MessageBus
from macs.core.context import HEADER, build_communication_context
from macs.core.models import BROADCAST
from macs.utils.tokens import TRUNCATION_MARKER

TASK = "task-001"


async def _post(bus: MessageBus, type: str, sender: str, recipient: str, subject: str, priority: str = "normal", **extra):
    return await bus.send({
        "type": type, "from": sender, "to": recipient, "subject": subject,
        "body": "Body", "task_id": extra.pop("task_id", TASK), "priority": priority, **extra,
    })


class TestCommunicationContext:
    def setup_method(self) -> None:
        self.bus = MessageBus()

    def test_empty(self) -> None:
        assert build_communication_context(self.bus, "MARS") == ""

    async def test_line_formats(self) -> None:
        await _post(self.bus, "question", "EARTH", "MARS", "What fields does the user table need?")
        await _post(self.bus, "discovery", "JUPITER", BROADCAST, "We should use PostgreSQL for this project", "high")
        await _post(self.bus, "warning", "MERCURY", "MARS", "Type mismatch detected in schema", "critical")

        context = build_communication_context(self.bus, "MARS")

        assert context.startswith(HEADER)
        assert "EARTH → MARS: What fields does the user table need?" in context
        assert "JUPITER broadcasts discovery: We should use PostgreSQL for this project [HIGH]" in context
        assert "MERCURY → MARS: Type mismatch detected in schema [CRITICAL]" in context

    async def test_glyphs(self) -> None:
        await _post(self.bus, "question", "EARTH", "MARS", "Question")
        await _post(self.bus, "discovery", "JUPITER", BROADCAST, "Discovery")
        await _post(self.bus, "warning", "MERCURY", "MARS", "Warning")

        context = build_communication_context(self.bus, "MARS")
        assert "❓" in context
        assert "💡" in context
        assert "⚠️" in context

    async def test_priority_then_recency(self) -> None:
        await _post(self.bus, "status_update", "AGENT1", "MARS", "Low priority", "low")
        await _post(self.bus, "warning", "AGENT2", "MARS", "Critical priority", "critical")
        await _post(self.bus, "discovery", "AGENT3", "MARS", "Normal priority", "normal")
        await _post(self.bus, "discovery", "AGENT4", "MARS", "Newer normal", "normal")

        lines = [l for l in build_communication_context(self.bus, "MARS").split("\n") if l.startswith("-")]
        assert "Critical priority" in lines[0]
        assert "Newer normal" in lines[1]
        assert "Normal priority" in lines[2]
        assert "Low priority" in lines[3]

    async def test_only_own_messages(self) -> None:
        await _post(self.bus, "question", "EARTH", "VENUS", "For Venus")
        await _post(self.bus, "discovery", "JUPITER", BROADCAST, "For everyone")

        mars = build_communication_context(self.bus, "MARS")
        assert "For Venus" not in mars
        assert "For everyone" in mars

        venus = build_communication_context(self.bus, "VENUS")
        assert "For Venus" in venus
        assert "For everyone" in venus

    async def test_replies(self) -> None:
        question = await _post(self.bus, "question", "EARTH", "MARS", "Original question")
        await _post(self.bus, "answer", "MARS", "EARTH", "Here is the answer", reply_to_id=question.id)

        assert "MARS replies to EARTH: Here is the answer" in build_communication_context(self.bus, "EARTH")

    async def test_marker_in_subject_is_escaped(self) -> None:
        await _post(self.bus, "warning", "MERCURY", "MARS", "Log ends in [truncated]")

        context = build_communication_context(self.bus, "MARS", max_tokens=500)

        assert TRUNCATION_MARKER not in context
        assert "Log ends in (truncated)" in context

    async def test_task_filter_and_budget(self) -> None:
        for i in range(40):
            await _post(self.bus, "finding-share", "PLUTO", "MARS", f"Finding number {i} about the auth flow")
        await _post(self.bus, "question", "EARTH", "MARS", "Other task", task_id="task-002")

        context = build_communication_context(self.bus, "MARS", task_id=TASK, max_tokens=50)
        assert "Other task" not in context
        assert context.endswith(TRUNCATION_MARKER)
        assert len(context) <= 50 * 4 + len(TRUNCATION_MARKER)

    async def test_does_not_mark_read(self) -> None:
        await _post(self.bus, "question", "EARTH", "MARS", "Unread")
        build_communication_context(self.bus, "MARS")
        assert len(self.bus.get_unread("MARS")) == 1
