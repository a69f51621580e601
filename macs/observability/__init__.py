"""
MACS Observability — metrics collection and event recording.

This package provides the instrumentation layer for MACS:
- Delivery, negotiation and blackboard metrics
- A time-ordered event stream with JSON export for debugging
"""

from macs.observability.metrics import MetricsCollector
from macs.observability.recorder import EventRecorder, EventType

__all__ = ["MetricsCollector", "EventRecorder", "EventType"]
