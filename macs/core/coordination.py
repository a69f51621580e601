"""
CoordinationContext — wires the bus, negotiation, blackboard and roster
for one build.

Each build gets its own context instead of sharing process-wide instances,
so concurrent builds and tests never see each other's messages.

Usage:
    with CoordinationContext() as ctx:
        ctx.enroll(mars)
        ctx.enroll(venus)
        await ask(ctx.bus, "MARS", "VENUS", "Schema", "Which fields?", task_id="task-001")
        prompt = ctx.prompt_context("VENUS", "task-001", token_budget=800)
        ctx.teardown_task("task-001")
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable

from macs.agents.roster import AgentRoster, AgentSpec
from macs.core.blackboard import SharedBlackboard
from macs.core.bus import MessageBus
from macs.core.context import build_communication_context
from macs.core.models import AgentName
from macs.core.negotiation import NegotiationProtocol
from macs.core.store import MessageStore
from macs.observability.metrics import MetricsCollector
from macs.observability.recorder import EventRecorder
from macs.utils.config import MACSConfig
from macs.utils.tokens import truncate_to_budget

logger = logging.getLogger("macs.coordination")


class CoordinationContext:
    """
    Per-build container for every coordination component.

    All components share one MetricsCollector and one EventRecorder.
    """

    def __init__(
        self,
        config: MACSConfig | None = None,
        agents: Iterable[AgentSpec] | None = None,
    ) -> None:
        """
        Args:
            config: Configuration object. If None, loads from file/env.
            agents: Participants to enroll right away.
        """
        self._config = config or MACSConfig.load()
        self._metrics = MetricsCollector()
        self._recorder = EventRecorder()
        self._roster = AgentRoster()
        self._enrollments: dict[AgentName, Callable[[], None]] = {}
        self._build_components()

        for agent in agents or []:
            self.enroll(agent)

        logger.info(
            "CoordinationContext ready: %d agents, arbitrator=%s",
            len(self._roster), self._config.negotiation.arbitrator,
        )

    def _build_components(self) -> None:
        cfg = self._config
        self._store = MessageStore()
        self._bus = MessageBus(
            self._store,
            handler_timeout=cfg.bus.handler_timeout,
            deliver_broadcast_to_sender=cfg.bus.deliver_broadcast_to_sender,
            metrics=self._metrics,
            recorder=self._recorder,
        )
        self._negotiation = NegotiationProtocol(
            self._bus,
            arbitrator=cfg.negotiation.arbitrator,
            trigger_threshold=cfg.negotiation.trigger_threshold,
            metrics=self._metrics,
            recorder=self._recorder,
        )
        self._blackboard = SharedBlackboard(
            default_confidence=cfg.blackboard.default_confidence,
            default_max_tokens=cfg.blackboard.prompt_max_tokens,
            high_threshold=cfg.blackboard.high_threshold,
            medium_threshold=cfg.blackboard.medium_threshold,
            metrics=self._metrics,
            recorder=self._recorder,
        )

    # ------------------------------------------------------------------
    # Components
    # ------------------------------------------------------------------

    @property
    def config(self) -> MACSConfig:
        return self._config

    @property
    def bus(self) -> MessageBus:
        return self._bus

    @property
    def negotiation(self) -> NegotiationProtocol:
        return self._negotiation

    @property
    def blackboard(self) -> SharedBlackboard:
        return self._blackboard

    @property
    def roster(self) -> AgentRoster:
        return self._roster

    @property
    def metrics(self) -> MetricsCollector:
        return self._metrics

    @property
    def recorder(self) -> EventRecorder:
        return self._recorder

    # ------------------------------------------------------------------
    # Participants
    # ------------------------------------------------------------------

    def enroll(self, agent: AgentSpec) -> None:
        """
        Register a participant and subscribe its handler to the bus.

        Agents without a handler are registered for expertise lookups only.

        Raises:
            ValueError: If an agent with the same name is already enrolled.
        """
        self._roster.register(agent)
        if agent.handler is not None:
            self._enrollments[agent.name] = self._bus.subscribe(agent.name, agent)

    def withdraw(self, name: AgentName) -> bool:
        """Unsubscribe and unregister a participant. Returns False if unknown."""
        unsubscribe = self._enrollments.pop(name, None)
        if unsubscribe is not None:
            unsubscribe()
        removed = self._roster.unregister(name)
        if removed is not None:
            logger.info("Withdrew agent %s", name)
        return removed is not None

    def should_negotiate(self, agent: AgentName, confidence: float, topic: str) -> bool:
        """True when `agent` is unsure and some other participant knows `topic`."""
        peer_has_expertise = self._roster.has_expert(topic, exclude=agent)
        return self._negotiation.should_trigger_negotiation(confidence, peer_has_expertise)

    # ------------------------------------------------------------------
    # Prompt assembly
    # ------------------------------------------------------------------

    def prompt_context(
        self,
        agent: AgentName,
        task_id: str,
        token_budget: int | None = None,
    ) -> str:
        """
        Everything `agent` should see before its next model call: its inbox
        followed by the task's blackboard, within one token budget.
        """
        budget = self._config.blackboard.prompt_max_tokens if token_budget is None else token_budget
        messages = build_communication_context(self._bus, agent, task_id=task_id)
        board = self._blackboard.format_for_prompt(task_id, budget)

        text = "\n\n".join(part for part in (messages, board) if part)
        text, truncated = truncate_to_budget(text, budget)
        if truncated:
            logger.debug("Prompt context for %s on %s truncated to %d tokens", agent, task_id, budget)
        return text

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def teardown_task(self, task_id: str) -> dict[str, int]:
        """Clear a finished task everywhere. Returns what was removed."""
        removed = {
            "messages": self._bus.clear_task(task_id),
            "negotiations": self._negotiation.clear_task(task_id),
            "entries": self._blackboard.clear(task_id),
        }
        logger.info(
            "Task %s torn down: %d messages, %d negotiations, %d entries",
            task_id, removed["messages"], removed["negotiations"], removed["entries"],
        )
        return removed

    def reset(self) -> None:
        """Start over with empty stores, keeping the enrolled participants."""
        self._bus.unsubscribe_all()
        self._enrollments.clear()
        self._build_components()
        for agent in self._roster.list_agents():
            if agent.handler is not None:
                self._enrollments[agent.name] = self._bus.subscribe(agent.name, agent)
        logger.info("CoordinationContext reset")

    def close(self) -> None:
        """Unsubscribe every handler. Stored state stays readable."""
        self._bus.unsubscribe_all()
        self._enrollments.clear()

    def __enter__(self) -> "CoordinationContext":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
