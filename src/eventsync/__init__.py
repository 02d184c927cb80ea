"""
eventsync - Resilient real-time synchronization client.

This package keeps a logical connection to a server-pushed event stream
alive across an unreliable network, re-joins channels after every
reconnect and delivers user actions through a durable offline queue that
drains in order once connectivity returns.
"""

__version__ = "0.1.0"
__author__ = "eventsync Team"

from eventsync.exceptions import (
    SyncError,
    AuthMissingError,
    AuthRejectedError,
    TransportUnavailableError,
    HeartbeatTimeoutError,
    ActionNetworkError,
    ActionRejectedError,
    PersistenceError,
    QueueCorruptError,
    SessionStateError,
)
from eventsync.enums import (
    SessionState,
    StatusKind,
    FailureReason,
    ErrorKind,
    ChannelType,
    ActionOutcome,
    LogLevel,
)
from eventsync.config import (
    TransportConfig,
    ReconnectConfig,
    HeartbeatConfig,
    ActionEndpointConfig,
    QueueConfig,
    LoggingConfig,
    SyncConfig,
)
from eventsync.models import (
    ChannelSubscription,
    PendingAction,
    SessionInfo,
    ConnectionStatus,
    ActionResult,
    DrainResult,
)
from eventsync.events import (
    ServerEvent,
    PollCreated,
    VoteUpdate,
    PollClosed,
    PollUpdated,
    EventUpdate,
    EventReaction,
    EventBacklog,
    UserOnline,
    UserOffline,
    ChannelJoined,
    UnknownEvent,
    ConnectionStatusChanged,
    ActionSettled,
    parse_event,
)
from eventsync.audit_logger import (
    AuditLogger,
    LogEntry,
)
from eventsync.storage import (
    KeyValueStorage,
    MemoryStorage,
    FileStorage,
)
from eventsync.action_store import (
    DurableActionStore,
)
from eventsync.reconnect import (
    ReconnectionScheduler,
)
from eventsync.subscriptions import (
    SubscriptionRegistry,
)
from eventsync.dispatcher import (
    EventDispatcher,
    HandlerError,
)
from eventsync.auth import (
    AuthProvider,
    StaticTokenProvider,
)
from eventsync.transport import (
    Transport,
    TransportHandle,
    WebSocketTransport,
    classify_transport_error,
)
from eventsync.senders import (
    ActionSender,
    HttpActionSender,
    SessionActionSender,
)
from eventsync.offline_queue import (
    OfflineActionQueue,
    ticket_scan_action,
)
from eventsync.session import (
    SyncSession,
)
from eventsync.client import (
    SyncClient,
)
from eventsync.i18n import (
    get_message,
    describe_action_error,
    get_all_message_keys,
    get_missing_translations,
    validate_translations,
    TRANSLATIONS,
    SUPPORTED_LANGUAGES,
    DEFAULT_LANGUAGE,
)
from eventsync.cli import (
    main as cli_main,
    create_parser,
    create_default_config,
    load_config_from_file,
    save_config_to_file,
)

__all__ = [
    # Exceptions
    "SyncError",
    "AuthMissingError",
    "AuthRejectedError",
    "TransportUnavailableError",
    "HeartbeatTimeoutError",
    "ActionNetworkError",
    "ActionRejectedError",
    "PersistenceError",
    "QueueCorruptError",
    "SessionStateError",
    # Enums
    "SessionState",
    "StatusKind",
    "FailureReason",
    "ErrorKind",
    "ChannelType",
    "ActionOutcome",
    "LogLevel",
    # Configuration
    "TransportConfig",
    "ReconnectConfig",
    "HeartbeatConfig",
    "ActionEndpointConfig",
    "QueueConfig",
    "LoggingConfig",
    "SyncConfig",
    # Models
    "ChannelSubscription",
    "PendingAction",
    "SessionInfo",
    "ConnectionStatus",
    "ActionResult",
    "DrainResult",
    # Events
    "ServerEvent",
    "PollCreated",
    "VoteUpdate",
    "PollClosed",
    "PollUpdated",
    "EventUpdate",
    "EventReaction",
    "EventBacklog",
    "UserOnline",
    "UserOffline",
    "ChannelJoined",
    "UnknownEvent",
    "ConnectionStatusChanged",
    "ActionSettled",
    "parse_event",
    # Audit Logger
    "AuditLogger",
    "LogEntry",
    # Storage
    "KeyValueStorage",
    "MemoryStorage",
    "FileStorage",
    "DurableActionStore",
    # Session
    "ReconnectionScheduler",
    "SubscriptionRegistry",
    "EventDispatcher",
    "HandlerError",
    "AuthProvider",
    "StaticTokenProvider",
    "Transport",
    "TransportHandle",
    "WebSocketTransport",
    "classify_transport_error",
    "SyncSession",
    # Actions
    "ActionSender",
    "HttpActionSender",
    "SessionActionSender",
    "OfflineActionQueue",
    "ticket_scan_action",
    # Client
    "SyncClient",
    # I18n
    "get_message",
    "describe_action_error",
    "get_all_message_keys",
    "get_missing_translations",
    "validate_translations",
    "TRANSLATIONS",
    "SUPPORTED_LANGUAGES",
    "DEFAULT_LANGUAGE",
    # CLI
    "cli_main",
    "create_parser",
    "create_default_config",
    "load_config_from_file",
    "save_config_to_file",
]
