"""
MACS — Multi-Agent Coordination Substrate

The in-process coordination layer for a multi-agent build platform: an
addressed and broadcast message bus, a negotiation protocol for settling
disagreements, and a confidence-ranked shared blackboard whose contents are
rendered into token-bounded prompt context.
"""

__version__ = "0.1.0"

from macs.agents.roster import AgentRoster, AgentSpec, participant
from macs.core.blackboard import SharedBlackboard
from macs.core.bus import MessageBus
from macs.core.context import build_communication_context
from macs.core.coordination import CoordinationContext
from macs.core.models import BROADCAST, AgentMessage, MessageType, Priority
from macs.core.negotiation import NegotiationProtocol

__all__ = [
    "AgentMessage",
    "AgentRoster",
    "AgentSpec",
    "BROADCAST",
    "CoordinationContext",
    "MessageBus",
    "MessageType",
    "NegotiationProtocol",
    "Priority",
    "SharedBlackboard",
    "build_communication_context",
    "participant",
    "__version__",
]
