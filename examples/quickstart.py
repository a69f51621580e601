"""
MACS Quickstart Example — two agents coordinating on one task.

This example demonstrates the core MACS workflow:
1. Agents are declared with @participant and enrolled in a context.
2. MARS asks VENUS a question; VENUS's handler answers on the bus.
3. VENUS is unsure about a database topic and negotiates with MARS.
4. Both post findings to the shared blackboard.
5. The prompt context MARS would see before its next model call is printed.

Usage:
    python examples/quickstart.py
"""

import asyncio

from macs import CoordinationContext, participant
from macs.core.bus import answer, ask
from macs.core.models import AgentMessage, MessageType
from macs.utils.config import MACSConfig

TASK_ID = "quickstart-001"


def build_agents(ctx: CoordinationContext) -> None:
    @participant(
        name="MARS",
        description="Backend specialist for APIs and databases.",
        expertise=["api", "database", "schema"],
    )
    async def mars(message: AgentMessage) -> None:
        print(f"  MARS received {message.type.value}: {message.subject}")

    @participant(
        name="VENUS",
        description="Design agent for UI and styling.",
        expertise=["ui", "css"],
    )
    async def venus(message: AgentMessage) -> None:
        if message.type == MessageType.QUESTION:
            await answer(
                ctx.bus, "VENUS", message.sender, message.id,
                f"Re: {message.subject}", "name, email, avatar",
                task_id=message.task_id,
            )

    ctx.enroll(mars)
    ctx.enroll(venus)


async def main() -> None:
    with CoordinationContext(config=MACSConfig()) as ctx:
        build_agents(ctx)

        question = await ask(ctx.bus, "MARS", "VENUS", "Profile fields?", "What does the page show?", task_id=TASK_ID)
        print(f"\nThread has {len(ctx.bus.get_thread(question.id))} messages")

        topic = "database schema for avatars"
        if ctx.should_negotiate("VENUS", confidence=0.4, topic=topic):
            session = await ctx.negotiation.open_negotiation(
                TASK_ID, "VENUS", "MARS", topic, "Store images inline",
            )
            await ctx.negotiation.respond_to_negotiation(session.id, "Store URLs to object storage")
            session = await ctx.negotiation.resolve(session.id, "Store URLs", "auto")
            print(f"Negotiation {session.status.value}: {session.resolution}")

        ctx.blackboard.write("db.engine", "PostgreSQL", "MARS", TASK_ID, confidence=0.9)
        ctx.blackboard.write("ui.avatar", "circular, 48px", "VENUS", TASK_ID, confidence=0.6)

        print("\n--- Prompt context for MARS ---")
        print(ctx.prompt_context("MARS", TASK_ID, token_budget=400))

        print("\n" + ctx.metrics.summary_text())
        ctx.teardown_task(TASK_ID)


if __name__ == "__main__":
    asyncio.run(main())
