"""
Agent Roster — who takes part in coordination and what they know.

Participants are declared with a decorator that turns a message handler into
an AgentSpec. The roster answers the question the negotiation trigger needs:
does some other agent have expertise on this topic?

Usage:
    from macs.agents.roster import participant, AgentRoster

    @participant(
        name="MARS",
        description="Backend specialist for APIs, databases and server logic.",
        expertise=["backend", "api", "database"],
    )
    async def mars(message: AgentMessage) -> None:
        ...

    roster = AgentRoster()
    roster.register(mars)
    roster.has_expert("database schema", exclude="VENUS")  # True
"""

from __future__ import annotations

import inspect
import logging
import re
from dataclasses import dataclass, field
from typing import Callable

from macs.core.bus import MessageHandler
from macs.core.models import AgentMessage, AgentName

logger = logging.getLogger("macs.agents")

_WORD = re.compile(r"[a-z0-9]+")


def _words(text: str) -> list[str]:
    return _WORD.findall(text.lower())


@dataclass
class AgentSpec:
    """A coordination participant."""
    name: AgentName
    description: str
    expertise: list[str] = field(default_factory=list)
    handler: MessageHandler | None = None

    async def __call__(self, message: AgentMessage) -> None:
        """Deliver a message to the agent's handler."""
        if self.handler is None:
            raise RuntimeError(f"Agent '{self.name}' has no message handler.")
        result = self.handler(message)
        if inspect.isawaitable(result):
            await result

    def expertise_score(self, topic: str) -> int:
        """How many of the agent's expertise tags occur in `topic` as whole words."""
        words = set(_words(topic))
        return sum(1 for tag in self.expertise if _words(tag) and set(_words(tag)) <= words)


def participant(
    name: AgentName,
    description: str,
    expertise: list[str] | None = None,
) -> Callable[[MessageHandler], AgentSpec]:
    """
    Decorator to declare a coordination participant.

    Args:
        name: Agent name, used as its address on the bus.
        description: What the agent does.
        expertise: Topic tags the agent is an authority on. Used to decide
            whether an unsure peer should open a negotiation with it.

    Returns:
        A decorator that wraps a message handler into an AgentSpec.
    """
    def decorator(fn: MessageHandler) -> AgentSpec:
        return AgentSpec(
            name=name,
            description=description,
            expertise=list(expertise or []),
            handler=fn,
        )
    return decorator


class AgentRoster:
    """Registry of coordination participants."""

    def __init__(self) -> None:
        self._agents: dict[AgentName, AgentSpec] = {}

    def register(self, agent: AgentSpec) -> None:
        """
        Register a participant.

        Raises:
            ValueError: If an agent with the same name is already registered.
        """
        if agent.name in self._agents:
            raise ValueError(f"Agent '{agent.name}' is already registered.")
        self._agents[agent.name] = agent
        logger.info("Registered agent: %s (%s)", agent.name, ", ".join(agent.expertise) or "no expertise")

    def unregister(self, name: AgentName) -> AgentSpec | None:
        return self._agents.pop(name, None)

    def get(self, name: AgentName) -> AgentSpec | None:
        """Look up an agent by name. Returns None if not found."""
        return self._agents.get(name)

    def list_agents(self) -> list[AgentSpec]:
        return list(self._agents.values())

    def experts_for(self, topic: str, exclude: AgentName | None = None) -> list[AgentSpec]:
        """
        Agents with expertise matching `topic`, strongest match first.

        Ties keep registration order. `exclude` leaves out one agent,
        normally the one asking.
        """
        scored = [
            (agent.expertise_score(topic), agent)
            for agent in self._agents.values()
            if agent.name != exclude
        ]
        ranked = sorted((pair for pair in scored if pair[0] > 0), key=lambda pair: pair[0], reverse=True)
        return [agent for _, agent in ranked]

    def has_expert(self, topic: str, exclude: AgentName | None = None) -> bool:
        return bool(self.experts_for(topic, exclude))

    def describe_all(self) -> str:
        """Markdown list of every participant and its expertise."""
        if not self._agents:
            return "(No agents registered)"

        lines: list[str] = []
        for agent in self._agents.values():
            lines.append(f"- **{agent.name}**: {agent.description}")
            if agent.expertise:
                lines.append(f"  Expertise: {', '.join(agent.expertise)}")
        return "\n".join(lines)

    def __len__(self) -> int:
        return len(self._agents)

    def __contains__(self, name: object) -> bool:
        return name in self._agents
