"""
Core Infrastructure for the Vellum bridge

Foundational pieces shared by every integration: dependency injection,
configuration, the in-process event bus and the roster model.

Key Components:
- ServiceRegistry: Dependency injection container for all services
- ConfigurationManager: YAML configuration with environment overrides
- EventBus: Chat, presence and server status events between components
- RosterManager: Per-server player rosters with join/leave reconciliation
"""

from .service_registry import (
    ServiceRegistry, ServiceLifetime, ServiceNotFound,
    CircularDependencyError, ServiceConfigurationError
)
from .config_manager import (
    ConfigurationManager, ConfigurationError, BridgeConfiguration,
    DiscordSyncConfig, ServerSyncConfig, MessageTemplates
)
from .event_bus import (
    EventBus, Event, EventPriority, Channel, ChatEvent, PresenceEvent, ServerStatusEvent,
    CHAT_MESSAGE, PLAYER_JOINED, PLAYER_LEFT, SERVER_ONLINE, SERVER_OFFLINE, BUS_COMMAND_SUPPORT,
    PRESENCE_EVENTS, STATUS_EVENTS
)
from .roster import (
    RosterManager, ServerRoster, RosterDelta, DeltaKind, Affixes,
    IdentifiedPlayer, NamedPlayer, Player, parse_name_list
)

__all__ = [
    'ServiceRegistry',
    'ServiceLifetime',
    'ServiceNotFound',
    'CircularDependencyError',
    'ServiceConfigurationError',
    'ConfigurationManager',
    'ConfigurationError',
    'BridgeConfiguration',
    'DiscordSyncConfig',
    'ServerSyncConfig',
    'MessageTemplates',
    'EventBus',
    'Event',
    'EventPriority',
    'Channel',
    'ChatEvent',
    'PresenceEvent',
    'ServerStatusEvent',
    'CHAT_MESSAGE',
    'PLAYER_JOINED',
    'PLAYER_LEFT',
    'SERVER_ONLINE',
    'SERVER_OFFLINE',
    'BUS_COMMAND_SUPPORT',
    'PRESENCE_EVENTS',
    'STATUS_EVENTS',
    'RosterManager',
    'ServerRoster',
    'RosterDelta',
    'DeltaKind',
    'Affixes',
    'IdentifiedPlayer',
    'NamedPlayer',
    'Player',
    'parse_name_list',
]
