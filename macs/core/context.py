"""
Communication context — renders an agent's inbox for prompt injection.

The output is a markdown block placed in front of an agent's prompt so the
model sees what its peers asked, found, and flagged:

    ## Messages for you:
    - ⚠️ MERCURY → MARS: Type mismatch detected in schema [CRITICAL]
    - 💡 JUPITER broadcasts discovery: Use PostgreSQL [HIGH]
    - 💬 VENUS replies to MARS: Here are the fields
"""

from __future__ import annotations

from macs.core.bus import MessageBus
from macs.core.models import AgentMessage, AgentName, MessageType, Priority
from macs.utils.tokens import escape_marker, truncate_to_budget

HEADER = "## Messages for you:"

GLYPHS: dict[MessageType, str] = {
    MessageType.QUESTION: "❓",
    MessageType.ANSWER: "💬",
    MessageType.DISCOVERY: "💡",
    MessageType.WARNING: "⚠️",
    MessageType.FINDING_SHARE: "🔎",
    MessageType.PROPOSE: "📝",
    MessageType.COUNTER: "↩️",
    MessageType.AGREE: "🤝",
    MessageType.ESCALATE: "🚨",
    MessageType.STATUS_UPDATE: "📊",
    MessageType.REVIEW_REQUEST: "👀",
    MessageType.REVIEW_RESULT: "✅",
    MessageType.DEPENDENCY: "🔗",
}

_FLAGGED = (Priority.HIGH, Priority.CRITICAL)


def format_message_line(message: AgentMessage) -> str:
    """One bullet line for a message."""
    glyph = GLYPHS.get(message.type, "•")
    if message.is_broadcast:
        line = f"- {glyph} {message.sender} broadcasts {message.type.value}: {message.subject}"
    elif message.is_reply:
        line = f"- {glyph} {message.sender} replies to {message.recipient}: {message.subject}"
    else:
        line = f"- {glyph} {message.sender} → {message.recipient}: {message.subject}"
    if message.priority in _FLAGGED:
        line += f" [{message.priority.value.upper()}]"
    return escape_marker(line)


def build_communication_context(
    bus: MessageBus,
    agent: AgentName,
    *,
    task_id: str | None = None,
    max_tokens: int | None = None,
) -> str:
    """
    Summarize the messages addressed to `agent` for its next prompt.

    Messages are ordered by priority (critical first), then newest first.
    Read state is not touched.

    Args:
        bus: The bus to read from.
        agent: Whose inbox to render.
        task_id: Restrict to one task.
        max_tokens: Optional token budget for the rendered block.

    Returns:
        The markdown block, or an empty string when there are no messages.
    """
    # get_inbox is already newest first; the sort is stable.
    inbox = bus.get_inbox(agent, task_id)
    if not inbox:
        return ""
    inbox.sort(key=lambda m: m.priority.rank, reverse=True)

    text = "\n".join([HEADER, *(format_message_line(m) for m in inbox)])
    if max_tokens is not None:
        text, _ = truncate_to_budget(text, max_tokens)
    return text
