"""
Configuration management for MACS.

Supports loading configuration from:
1. YAML configuration file (macs.yaml)
2. Environment variables (prefixed with MACS_)
3. Constructor arguments (highest priority)

Configuration hierarchy (highest to lowest priority):
    Constructor args > Environment variables > YAML file > Defaults
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

logger = logging.getLogger("macs.config")

DEFAULT_CONFIG_FILE = "macs.yaml"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


@dataclass
class BusConfig:
    """Configuration for the message bus."""
    handler_timeout: float = 30.0
    deliver_broadcast_to_sender: bool = True


@dataclass
class NegotiationConfig:
    """Configuration for the negotiation protocol."""
    arbitrator: str = "JUPITER"
    trigger_threshold: float = 0.65


@dataclass
class BlackboardConfig:
    """Configuration for the shared blackboard."""
    default_confidence: float = 0.5
    prompt_max_tokens: int = 2000
    high_threshold: float = 0.8
    medium_threshold: float = 0.5


@dataclass
class LoggingConfig:
    """Configuration for logging."""
    level: str = "INFO"


@dataclass
class MACSConfig:
    """Top-level configuration for one coordination context."""
    bus: BusConfig = field(default_factory=BusConfig)
    negotiation: NegotiationConfig = field(default_factory=NegotiationConfig)
    blackboard: BlackboardConfig = field(default_factory=BlackboardConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def load(cls, config_path: str | Path | None = None) -> "MACSConfig":
        """
        Load configuration from file and environment variables.

        Args:
            config_path: Path to a YAML configuration file.
                         If None, looks for 'macs.yaml' in the current directory.

        Returns:
            A fully resolved MACSConfig instance.
        """
        config = cls()

        # Step 1: Load from YAML file
        config_path = Path(config_path) if config_path is not None else Path(DEFAULT_CONFIG_FILE)
        if config_path.exists():
            config = _load_yaml(config_path, config)
            logger.info("Loaded config from %s", config_path)

        # Step 2: Override with environment variables
        config = _apply_env_overrides(config)

        return config


def _load_yaml(path: Path, config: MACSConfig) -> MACSConfig:
    """Load configuration from a YAML file."""
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    bus_data = data.get("bus") or {}
    if bus_data:
        config.bus.handler_timeout = float(bus_data.get("handler_timeout", config.bus.handler_timeout))
        config.bus.deliver_broadcast_to_sender = _as_bool(
            "bus.deliver_broadcast_to_sender",
            bus_data.get("deliver_broadcast_to_sender", config.bus.deliver_broadcast_to_sender),
        )

    neg_data = data.get("negotiation") or {}
    if neg_data:
        config.negotiation.arbitrator = neg_data.get("arbitrator", config.negotiation.arbitrator)
        config.negotiation.trigger_threshold = float(
            neg_data.get("trigger_threshold", config.negotiation.trigger_threshold)
        )

    bb_data = data.get("blackboard") or {}
    if bb_data:
        config.blackboard.default_confidence = float(
            bb_data.get("default_confidence", config.blackboard.default_confidence)
        )
        config.blackboard.prompt_max_tokens = int(
            bb_data.get("prompt_max_tokens", config.blackboard.prompt_max_tokens)
        )
        config.blackboard.high_threshold = float(bb_data.get("high_threshold", config.blackboard.high_threshold))
        config.blackboard.medium_threshold = float(
            bb_data.get("medium_threshold", config.blackboard.medium_threshold)
        )

    log_data = data.get("logging") or {}
    if log_data:
        config.logging.level = log_data.get("level", config.logging.level)

    return config


def _apply_env_overrides(config: MACSConfig) -> MACSConfig:
    """Override configuration with environment variables."""
    # Bus
    if val := os.environ.get("MACS_HANDLER_TIMEOUT"):
        config.bus.handler_timeout = float(val)
    if val := os.environ.get("MACS_BROADCAST_TO_SENDER"):
        config.bus.deliver_broadcast_to_sender = _parse_bool("MACS_BROADCAST_TO_SENDER", val)

    # Negotiation
    if val := os.environ.get("MACS_ARBITRATOR"):
        config.negotiation.arbitrator = val
    if val := os.environ.get("MACS_NEGOTIATION_THRESHOLD"):
        config.negotiation.trigger_threshold = float(val)

    # Blackboard
    if val := os.environ.get("MACS_DEFAULT_CONFIDENCE"):
        config.blackboard.default_confidence = float(val)
    if val := os.environ.get("MACS_PROMPT_MAX_TOKENS"):
        config.blackboard.prompt_max_tokens = int(val)

    # Logging
    if val := os.environ.get("MACS_LOG_LEVEL"):
        config.logging.level = val

    return config


def _parse_bool(name: str, value: str) -> bool:
    normalized = value.strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be a boolean, got {value!r}")


def _as_bool(name: str, value: object) -> bool:
    # YAML gives real booleans for true/false but strings for quoted values.
    if isinstance(value, bool):
        return value
    return _parse_bool(name, str(value))
