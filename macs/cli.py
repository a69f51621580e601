"""
MACS CLI — command-line entry point.

Usage:
    macs init
    macs demo --task-id build-42 --max-tokens 400 --verbose
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from macs.agents.roster import participant
from macs.core.bus import ask, answer, broadcast, status_update, warn
from macs.core.context import build_communication_context
from macs.core.coordination import CoordinationContext
from macs.core.models import AgentMessage, MessageType, Priority
from macs.utils.config import DEFAULT_CONFIG_FILE, MACSConfig
from macs.utils.log import setup_logging

console = Console()

SAMPLE_CONFIG = """# MACS Configuration

bus:
  # Seconds a subscriber handler may run before it counts as failed
  handler_timeout: 30
  # Whether a broadcast is also delivered to its sender's own handlers
  deliver_broadcast_to_sender: true

negotiation:
  # Agent that receives escalated negotiations
  arbitrator: "JUPITER"
  # Agents below this confidence negotiate with a peer expert
  trigger_threshold: 0.65

blackboard:
  # Confidence used when a write does not give one
  default_confidence: 0.5
  # Token budget for format_for_prompt (1 token ~ 4 characters)
  prompt_max_tokens: 2000
  # Tier boundaries for [HIGH CONFIDENCE] / [MEDIUM] / [LOW]
  high_threshold: 0.8
  medium_threshold: 0.5

logging:
  # Log level: DEBUG, INFO, WARNING, ERROR
  level: "INFO"
"""


@click.group()
@click.version_option(package_name="macs")
def main() -> None:
    """MACS — Multi-Agent Coordination Substrate: messaging, negotiation and shared context."""
    pass


@main.command()
@click.option("--path", "-p", default=DEFAULT_CONFIG_FILE, help="Where to write the file (default: macs.yaml)")
def init(path: str) -> None:
    """Generate a sample macs.yaml configuration file."""
    Path(path).write_text(SAMPLE_CONFIG, encoding="utf-8")
    console.print(f"[green]Created {path} with default configuration.[/green]")


@main.command()
@click.option("--task-id", "-t", default="demo-task", help="Task ID used for the scenario (default: demo-task)")
@click.option("--max-tokens", "-m", default=None, type=int, help="Token budget for the rendered prompt context")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose (DEBUG) logging")
def demo(task_id: str, max_tokens: int | None, verbose: bool) -> None:
    """Run a scripted coordination scenario and show what agents would see."""
    config = MACSConfig.load()
    if verbose:
        config.logging.level = "DEBUG"
    setup_logging(config.logging.level)

    console.print()
    console.print(Panel(
        f"[bold]Scripted build on task {task_id}[/bold]",
        title="[cyan]MACS Demo[/cyan]",
        subtitle=f"arbitrator={config.negotiation.arbitrator} | timeout={config.bus.handler_timeout}s",
        border_style="cyan",
    ))

    with CoordinationContext(config=config) as ctx:
        asyncio.run(_run_scenario(ctx, task_id))
        budget = max_tokens if max_tokens is not None else config.blackboard.prompt_max_tokens

        messages = build_communication_context(ctx.bus, "MARS", task_id=task_id, max_tokens=budget)
        board = ctx.blackboard.format_for_prompt(task_id, budget)
        console.print(Panel(Text(messages or "(no messages)"), title="[yellow]Inbox context for MARS[/yellow]", border_style="dim"))
        console.print(Panel(Text(board or "(empty)"), title="[yellow]Blackboard[/yellow]", border_style="dim"))

        _display_stats(ctx, task_id)


async def _run_scenario(ctx: CoordinationContext, task_id: str) -> None:
    bus = ctx.bus

    @participant(
        name="VENUS",
        description="Design agent for UI/UX, styling and visual components.",
        expertise=["ui", "design", "css", "styling"],
    )
    async def venus(message: AgentMessage) -> None:
        if message.type == MessageType.QUESTION:
            await answer(
                bus, "VENUS", message.sender, message.id,
                f"Re: {message.subject}", "id, email, display_name, avatar_url",
                task_id=message.task_id,
            )

    @participant(
        name="MARS",
        description="Backend specialist for APIs, databases and server-side logic.",
        expertise=["backend", "api", "database", "schema"],
    )
    async def mars(message: AgentMessage) -> None:
        pass

    @participant(
        name="JUPITER",
        description="Architecture and planning agent; arbitrates escalations.",
        expertise=["architecture", "planning"],
    )
    async def jupiter(message: AgentMessage) -> None:
        pass

    for agent in (mars, venus, jupiter):
        ctx.enroll(agent)

    await ask(bus, "MARS", "VENUS", "Which user fields does the profile page show?", "Need them for the table.", task_id=task_id)
    await broadcast(bus, "JUPITER", "We should use PostgreSQL for this project", "Relational data, strong typing.", Priority.HIGH, task_id=task_id)
    await warn(bus, "MERCURY", "MARS", "Type mismatch detected in schema", "created_at is a string in the API.", Priority.CRITICAL, task_id=task_id)

    board = ctx.blackboard
    board.write("db.engine", "PostgreSQL", "JUPITER", task_id, confidence=0.95, tags=["database"])
    board.write("ui.framework", "React", "VENUS", task_id, confidence=0.75, tags=["ui"])
    cache = board.write("cache", "in-process LRU", "MARS", task_id, confidence=0.4, tags=["backend"])
    board.supersede(cache.id, "cache", "Redis", "MARS", confidence=0.6)

    topic = "database schema for user profiles"
    if ctx.should_negotiate("VENUS", 0.5, topic):
        session = await ctx.negotiation.open_negotiation(
            task_id, "VENUS", "MARS", topic, "Store avatars inline as base64",
        )
        await ctx.negotiation.respond_to_negotiation(session.id, "Store avatar URLs; files go to object storage")
        await ctx.negotiation.resolve(session.id, "Store avatar URLs", "auto")

    await status_update(bus, "MARS", "Schema draft ready", "users, profiles, sessions", task_id=task_id)


def _display_stats(ctx: CoordinationContext, task_id: str) -> None:
    stats = ctx.bus.get_stats(task_id)

    table = Table(title="Message Stats", show_lines=True)
    table.add_column("Type", style="cyan")
    table.add_column("Count", justify="right")
    for message_type, count in stats.by_type.items():
        if count:
            table.add_row(message_type, str(count))
    table.add_row("[bold]Total[/bold]", str(stats.total))
    table.add_row("Broadcasts", str(stats.broadcasts))
    console.print(table)

    sessions = ctx.negotiation.get_sessions(task_id)
    if sessions:
        neg_table = Table(title="Negotiations", show_lines=True)
        neg_table.add_column("Topic", style="cyan")
        neg_table.add_column("Parties")
        neg_table.add_column("Status", style="green")
        neg_table.add_column("Resolution", style="yellow")
        for s in sessions:
            neg_table.add_row(s.topic, f"{s.initiator} / {s.respondent}", s.status.value, s.resolution or "-")
        console.print(neg_table)

    failures = ctx.bus.get_failures(task_id)
    if failures:
        console.print(f"[red]{len(failures)} handler failure(s) recorded.[/red]")

    console.print()
    console.print(ctx.metrics.summary_text(), markup=False, highlight=False)


if __name__ == "__main__":
    main()
