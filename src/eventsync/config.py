"""
Configuration dataclasses for the eventsync system.

This module defines all configuration structures used throughout the system,
including transport endpoints, reconnection backoff, heartbeats, the offline
action queue and logging.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional


@dataclass
class TransportConfig:
    """Push-stream endpoint and timeouts."""

    endpoint: str
    connect_timeout_seconds: float = 10.0
    send_timeout_seconds: float = 10.0
    query: dict[str, str] = field(
        default_factory=lambda: {"clientType": "python", "version": "0.1.0"}
    )


@dataclass
class ReconnectConfig:
    """Exponential backoff with jitter for session recovery."""

    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 30.0
    max_jitter_seconds: float = 1.0
    max_attempts: int = 10


@dataclass
class HeartbeatConfig:
    """Heartbeat cadence and tolerance."""

    interval_seconds: float = 30.0
    timeout_seconds: float = 10.0
    max_missed: int = 2


@dataclass
class ActionEndpointConfig:
    """REST endpoint used to deliver actions outside the push stream."""

    base_url: str
    scan_path: str = "/api/tickets/scan"
    timeout_seconds: float = 15.0


@dataclass
class QueueConfig:
    """Offline action queue persistence."""

    storage_dir: Path
    storage_key: str = "scanner_offline_queue_v1"
    max_attempts: Optional[int] = None  # None keeps actions until delivered or rejected


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "info"
    output_format: str = "text"  # 'json', 'text', 'both'


@dataclass
class SyncConfig:
    """Main configuration combining all sub-configurations."""

    transport: TransportConfig
    queue: QueueConfig
    reconnect: ReconnectConfig = field(default_factory=ReconnectConfig)
    heartbeat: HeartbeatConfig = field(default_factory=HeartbeatConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    actions: Optional[ActionEndpointConfig] = None
    language: str = "en"  # 'de' or 'en'
