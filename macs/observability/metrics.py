"""
MetricsCollector — counters and latencies for the coordination layer.

Collects:
- Per-agent handler deliveries (successes, failures, timeouts, latency)
- Message counts by type and sender
- Negotiation outcomes and rounds to resolution
- Blackboard writes, supersessions and prompt renders

All metrics live in memory and can be exported as a dict for reporting.
"""

from __future__ import annotations

import logging
import statistics
import time
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger("macs.observability.metrics")


@dataclass
class DeliveryMetrics:
    """Handler deliveries to a single agent."""
    agent: str
    deliveries: int = 0
    failures: int = 0
    timeouts: int = 0
    latencies: list[float] = field(default_factory=list)

    @property
    def avg_latency(self) -> float:
        return statistics.mean(self.latencies) if self.latencies else 0.0

    @property
    def p95_latency(self) -> float:
        if len(self.latencies) < 2:
            return self.latencies[0] if self.latencies else 0.0
        ordered = sorted(self.latencies)
        idx = int(len(ordered) * 0.95)
        return ordered[min(idx, len(ordered) - 1)]

    @property
    def min_latency(self) -> float:
        return min(self.latencies) if self.latencies else 0.0

    @property
    def max_latency(self) -> float:
        return max(self.latencies) if self.latencies else 0.0

    @property
    def success_rate(self) -> float:
        if self.deliveries == 0:
            return 0.0
        return (self.deliveries - self.failures) / self.deliveries

    def to_dict(self) -> dict[str, Any]:
        return {
            "agent": self.agent,
            "deliveries": self.deliveries,
            "failures": self.failures,
            "timeouts": self.timeouts,
            "avg_latency_s": round(self.avg_latency, 4),
            "p95_latency_s": round(self.p95_latency, 4),
            "min_latency_s": round(self.min_latency, 4),
            "max_latency_s": round(self.max_latency, 4),
            "success_rate": round(self.success_rate, 4),
        }


@dataclass
class NegotiationMetrics:
    """Outcomes of negotiation sessions."""
    opened: int = 0
    counters: int = 0
    agreed: int = 0
    escalated: int = 0
    rounds_per_session: list[int] = field(default_factory=list)

    @property
    def avg_rounds(self) -> float:
        return statistics.mean(self.rounds_per_session) if self.rounds_per_session else 0.0

    @property
    def agreement_rate(self) -> float:
        closed = self.agreed + self.escalated
        return self.agreed / closed if closed else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "opened": self.opened,
            "counters": self.counters,
            "agreed": self.agreed,
            "escalated": self.escalated,
            "avg_rounds_to_resolution": round(self.avg_rounds, 2),
            "agreement_rate": round(self.agreement_rate, 4),
        }


@dataclass
class BlackboardMetrics:
    writes: int = 0
    supersessions: int = 0
    prompt_renders: int = 0
    truncations: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "writes": self.writes,
            "supersessions": self.supersessions,
            "prompt_renders": self.prompt_renders,
            "truncations": self.truncations,
        }


class MetricsCollector:
    """
    Central metrics collector shared by the bus, negotiation protocol and
    blackboard of one coordination context.

    Usage:
        collector = MetricsCollector()
        bus = MessageBus(metrics=collector)
        ...
        report = collector.to_dict()
    """

    def __init__(self) -> None:
        self._started: float = time.time()
        self._deliveries: dict[str, DeliveryMetrics] = {}
        self._messages_by_type: dict[str, int] = {}
        self._messages_by_sender: dict[str, int] = {}
        self._broadcasts: int = 0
        self._negotiation = NegotiationMetrics()
        self._blackboard = BlackboardMetrics()

    # ------------------------------------------------------------------
    # Bus
    # ------------------------------------------------------------------

    def record_message_sent(self, message_type: str, sender: str, broadcast: bool = False) -> None:
        self._messages_by_type[message_type] = self._messages_by_type.get(message_type, 0) + 1
        self._messages_by_sender[sender] = self._messages_by_sender.get(sender, 0) + 1
        if broadcast:
            self._broadcasts += 1

    def record_delivery(
        self,
        agent: str,
        latency: float,
        success: bool = True,
        timed_out: bool = False,
    ) -> None:
        """Record one handler invocation for `agent`."""
        if agent not in self._deliveries:
            self._deliveries[agent] = DeliveryMetrics(agent=agent)

        m = self._deliveries[agent]
        m.deliveries += 1
        m.latencies.append(latency)
        if not success:
            m.failures += 1
        if timed_out:
            m.timeouts += 1

        logger.debug("Delivery metric: %s latency=%.4fs success=%s", agent, latency, success)

    # ------------------------------------------------------------------
    # Negotiation
    # ------------------------------------------------------------------

    def record_negotiation_opened(self) -> None:
        self._negotiation.opened += 1

    def record_negotiation_countered(self) -> None:
        self._negotiation.counters += 1

    def record_negotiation_closed(
        self,
        outcome: str,  # "agreed" or "escalated"
        rounds: int,
    ) -> None:
        """Record a session reaching a terminal state after `rounds` counters."""
        self._negotiation.rounds_per_session.append(rounds)
        if outcome == "agreed":
            self._negotiation.agreed += 1
        elif outcome == "escalated":
            self._negotiation.escalated += 1

    # ------------------------------------------------------------------
    # Blackboard
    # ------------------------------------------------------------------

    def record_blackboard_write(self, superseded: bool = False) -> None:
        self._blackboard.writes += 1
        if superseded:
            self._blackboard.supersessions += 1

    def record_prompt_render(self, truncated: bool) -> None:
        self._blackboard.prompt_renders += 1
        if truncated:
            self._blackboard.truncations += 1

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    @property
    def elapsed_time(self) -> float:
        return time.time() - self._started

    def delivery_metrics(self, agent: str) -> DeliveryMetrics | None:
        return self._deliveries.get(agent)

    def to_dict(self) -> dict[str, Any]:
        """Export all collected metrics as a structured dictionary."""
        total_deliveries = sum(m.deliveries for m in self._deliveries.values())
        total_failures = sum(m.failures for m in self._deliveries.values())

        return {
            "summary": {
                "elapsed_time_s": round(self.elapsed_time, 2),
                "messages_sent": sum(self._messages_by_type.values()),
                "broadcasts": self._broadcasts,
                "deliveries": total_deliveries,
                "delivery_failures": total_failures,
            },
            "messages_by_type": dict(sorted(self._messages_by_type.items())),
            "messages_by_sender": dict(sorted(self._messages_by_sender.items())),
            "deliveries": {
                name: m.to_dict()
                for name, m in sorted(self._deliveries.items())
            },
            "negotiation": self._negotiation.to_dict(),
            "blackboard": self._blackboard.to_dict(),
        }

    def summary_text(self) -> str:
        """Generate a human-readable summary of the metrics."""
        d = self.to_dict()
        s = d["summary"]
        lines = [
            "=== MACS Coordination Metrics ===",
            f"Messages Sent:       {s['messages_sent']}",
            f"  Broadcasts:        {s['broadcasts']}",
            f"Deliveries:          {s['deliveries']}",
            f"  Failures:          {s['delivery_failures']}",
            "",
            "--- Per-Agent Deliveries ---",
        ]

        for name, dm in d["deliveries"].items():
            lines.append(
                f"  {name}: {dm['deliveries']} deliveries, "
                f"{dm['failures']} failed, "
                f"avg {dm['avg_latency_s'] * 1000:.1f}ms"
            )

        nm = d["negotiation"]
        if nm["opened"] > 0:
            lines.extend([
                "",
                "--- Negotiation ---",
                f"  Opened:            {nm['opened']}",
                f"  Agreed:            {nm['agreed']}",
                f"  Escalated:         {nm['escalated']}",
                f"  Avg rounds:        {nm['avg_rounds_to_resolution']:.1f}",
            ])

        bm = d["blackboard"]
        if bm["writes"] > 0:
            lines.extend([
                "",
                "--- Blackboard ---",
                f"  Writes:            {bm['writes']}",
                f"  Supersessions:     {bm['supersessions']}",
                f"  Truncated renders: {bm['truncations']}/{bm['prompt_renders']}",
            ])

        return "\n".join(lines)
