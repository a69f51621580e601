"""
Shared Blackboard — ranked team knowledge for the current task.

Agents post what they learned as keyed entries with a confidence score. The
board is an append-only log: a second write to the same key, or a
`supersede`, adds a new entry and leaves the old one in place as an audit
trail. A `(task_id, key) → latest id` index keeps `read` and `snapshot` cheap.

Before a model call, `format_for_prompt` renders the task's entries bucketed
by confidence and cut to a token budget.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any, Iterable

from pydantic import ValidationError

from macs.core.errors import EntryNotFoundError, EntryValidationError
from macs.core.models import AgentName, BlackboardEntry
from macs.utils.clock import MonotonicClock
from macs.utils.tokens import escape_marker, truncate_to_budget

if TYPE_CHECKING:
    from macs.observability.metrics import MetricsCollector
    from macs.observability.recorder import EventRecorder

logger = logging.getLogger("macs.blackboard")

PROMPT_HEADER = "## Shared Team Context"
TIER_HIGH = "[HIGH CONFIDENCE]"
TIER_MEDIUM = "[MEDIUM]"
TIER_LOW = "[LOW]"
EMPTY_TIER = "- (none)"


class SharedBlackboard:
    """
    Confidence-ranked, supersession-aware knowledge store.

    Usage:
        board = SharedBlackboard()
        board.write("db.engine", "PostgreSQL", "MARS", "task-001", confidence=0.9)
        board.read("db.engine", "task-001").value  # "PostgreSQL"
        prompt_block = board.format_for_prompt("task-001", max_tokens=500)
    """

    def __init__(
        self,
        *,
        default_confidence: float = 0.5,
        default_max_tokens: int = 2000,
        high_threshold: float = 0.8,
        medium_threshold: float = 0.5,
        metrics: "MetricsCollector | None" = None,
        recorder: "EventRecorder | None" = None,
    ) -> None:
        if not 0.0 <= medium_threshold <= high_threshold <= 1.0:
            raise ValueError("Thresholds must satisfy 0 <= medium <= high <= 1.")
        self.default_confidence = default_confidence
        self.default_max_tokens = default_max_tokens
        self.high_threshold = high_threshold
        self.medium_threshold = medium_threshold
        self._metrics = metrics
        self._recorder = recorder
        self._entries: dict[str, BlackboardEntry] = {}
        # task_id -> key -> id of the latest entry for that key
        self._latest: dict[str, dict[str, str]] = {}
        self._clock = MonotonicClock()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def write(
        self,
        key: str,
        value: Any,
        agent_id: AgentName,
        task_id: str,
        *,
        confidence: float | None = None,
        tags: Iterable[str] | None = None,
    ) -> BlackboardEntry:
        """
        Append an entry for `key`. Earlier entries for the key are kept.

        Raises:
            EntryValidationError: Empty key, agent or task, or a confidence
                outside [0, 1].
        """
        entry = self._append(
            key, value, agent_id, task_id,
            confidence=self.default_confidence if confidence is None else confidence,
            tags=tags or (),
            supersedes=None,
        )
        logger.debug("%s wrote %s for task %s (%.2f)", agent_id, key, task_id, entry.confidence)
        if self._recorder:
            self._recorder.record_blackboard("blackboard_write", entry)
        return entry

    def supersede(
        self,
        old_id: str,
        new_key: str,
        new_value: Any,
        agent_id: AgentName,
        *,
        confidence: float | None = None,
        tags: Iterable[str] | None = None,
    ) -> BlackboardEntry:
        """
        Replace an entry with a corrected one that links back to it.

        The new entry lands in the old entry's task and may use a different
        key. Confidence and tags carry over unless given.

        Raises:
            EntryNotFoundError: No entry with `old_id`.
        """
        old = self._entries.get(old_id)
        if old is None:
            raise EntryNotFoundError(old_id)

        entry = self._append(
            new_key, new_value, agent_id, old.task_id,
            confidence=old.confidence if confidence is None else confidence,
            tags=old.tags if tags is None else tags,
            supersedes=old.id,
        )
        logger.info(
            "%s superseded %s (%s) with %s for task %s",
            agent_id, old.key, old.id[:8], new_key, old.task_id,
        )
        if self._recorder:
            self._recorder.record_blackboard("blackboard_supersede", entry)
        return entry

    def _append(
        self,
        key: str,
        value: Any,
        agent_id: AgentName,
        task_id: str,
        *,
        confidence: float,
        tags: Iterable[str],
        supersedes: str | None,
    ) -> BlackboardEntry:
        if not agent_id:
            raise EntryValidationError("agent_id must not be empty")
        if not task_id:
            raise EntryValidationError("task_id must not be empty")
        if isinstance(tags, str):
            tags = [tags]

        written_at, seq = self._clock.tick()
        try:
            entry = BlackboardEntry(
                key=key,
                value=value,
                agent_id=agent_id,
                task_id=task_id,
                confidence=confidence,
                tags=set(tags),
                written_at=written_at,
                seq=seq,
                supersedes=supersedes,
            )
        except ValidationError as e:
            detail = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
            )
            raise EntryValidationError(detail) from e

        self._entries[entry.id] = entry
        self._latest.setdefault(task_id, {})[key] = entry.id
        if self._metrics:
            self._metrics.record_blackboard_write(superseded=supersedes is not None)
        return entry

    def clear(self, task_id: str) -> int:
        """Delete every entry of a task. Returns the number removed."""
        doomed = [eid for eid, e in self._entries.items() if e.task_id == task_id]
        for entry_id in doomed:
            del self._entries[entry_id]
        self._latest.pop(task_id, None)
        logger.info("Cleared %d blackboard entries for task %s", len(doomed), task_id)
        if self._recorder:
            self._recorder.record_task_cleared("blackboard", task_id, len(doomed))
        return len(doomed)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def read(self, key: str, task_id: str) -> BlackboardEntry | None:
        """The latest entry for `key` in the task, or None."""
        entry_id = self._latest.get(task_id, {}).get(key)
        return self._entries.get(entry_id) if entry_id else None

    def read_all(self, task_id: str, tags: Iterable[str] | None = None) -> list[BlackboardEntry]:
        """
        Every entry of the task, highest confidence first.

        Equal confidences are ordered newest first. With `tags`, only entries
        carrying at least one of them are returned.
        """
        entries = [e for e in self._entries.values() if e.task_id == task_id]
        if tags is not None:
            wanted = {tags} if isinstance(tags, str) else set(tags)
            entries = [e for e in entries if e.tags & wanted]
        entries.sort(key=lambda e: (e.confidence, e.written_at, e.seq), reverse=True)
        return entries

    def get_entry(self, entry_id: str) -> BlackboardEntry | None:
        return self._entries.get(entry_id)

    def lineage(self, entry_id: str) -> list[BlackboardEntry]:
        """Follow `supersedes` links back from an entry, newest first."""
        chain: list[BlackboardEntry] = []
        entry = self._entries.get(entry_id)
        while entry is not None:
            chain.append(entry)
            entry = self._entries.get(entry.supersedes) if entry.supersedes else None
        return chain

    def snapshot(self, task_id: str) -> dict[str, BlackboardEntry]:
        """The latest entry per key for the task."""
        return {
            key: self._entries[entry_id]
            for key, entry_id in self._latest.get(task_id, {}).items()
        }

    def task_ids(self) -> list[str]:
        return list(self._latest)

    def __len__(self) -> int:
        return len(self._entries)

    # ------------------------------------------------------------------
    # Prompt rendering
    # ------------------------------------------------------------------

    def tier_of(self, confidence: float) -> str:
        if confidence >= self.high_threshold:
            return TIER_HIGH
        if confidence >= self.medium_threshold:
            return TIER_MEDIUM
        return TIER_LOW

    def format_for_prompt(self, task_id: str, max_tokens: int | None = None) -> str:
        """
        Render the task's entries as a markdown block for a model prompt.

        All three confidence tiers are always listed. When the block is longer
        than the token budget it is cut and ends with ``[truncated]``.

        Args:
            task_id: The task to render.
            max_tokens: Token budget, defaulting to the board's setting.

        Returns:
            The block, or an empty string when the task has no entries.
        """
        entries = self.read_all(task_id)
        if not entries:
            return ""
        budget = self.default_max_tokens if max_tokens is None else max_tokens

        tiers: dict[str, list[str]] = {TIER_HIGH: [], TIER_MEDIUM: [], TIER_LOW: []}
        for entry in entries:
            tiers[self.tier_of(entry.confidence)].append(_format_entry(entry))

        lines = [PROMPT_HEADER]
        for heading, rendered in tiers.items():
            lines.append(heading)
            lines.extend(rendered or [EMPTY_TIER])

        text, truncated = truncate_to_budget("\n".join(lines), budget)
        if self._metrics:
            self._metrics.record_prompt_render(truncated)
        if truncated:
            logger.debug("Blackboard context for task %s truncated to %d tokens", task_id, budget)
            if self._recorder:
                self._recorder.record_prompt_truncated(task_id, budget)
        return text


def _format_entry(entry: BlackboardEntry) -> str:
    line = f"- {entry.key}: {_render_value(entry.value)} (by {entry.agent_id}, {entry.confidence:.2f})"
    return escape_marker(line)


def _render_value(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False, default=str)
