"""
Event Bus for the Vellum bridge

In-process publish/subscribe used to carry chat, presence and server status
events between the console boundary, the roster, the Discord integration and
the relay router. Handlers are isolated: an exception in one handler is
logged and counted, never re-raised to the publisher.
"""

import logging
import asyncio
from datetime import datetime, timezone
from typing import Dict, Any, Optional, List, Callable, Union
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger('core.event_bus')


class EventPriority(Enum):
    """Event handler priority levels"""
    HIGH = 10
    NORMAL = 50
    LOW = 100


class Channel(Enum):
    """A place events come from and text can be relayed to"""
    CONSOLE = "console"
    BUS = "bus"
    DISCORD = "discord"


# Event type names
CHAT_MESSAGE = 'chat_message'
PLAYER_JOINED = 'player_joined'
PLAYER_LEFT = 'player_left'
SERVER_ONLINE = 'server_online'
SERVER_OFFLINE = 'server_offline'
BUS_COMMAND_SUPPORT = 'bus_command_support'

PRESENCE_EVENTS = [PLAYER_JOINED, PLAYER_LEFT]
STATUS_EVENTS = [SERVER_ONLINE, SERVER_OFFLINE]


@dataclass
class Event:
    """
    Base event with metadata.

    ``source`` holds the value of the originating :class:`Channel` for bridge
    events.
    """

    event_type: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    source: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)
    propagate: bool = True

    def stop_propagation(self):
        """Stop event propagation to remaining handlers"""
        self.propagate = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'event_type': self.event_type,
            'timestamp': self.timestamp.isoformat(),
            'source': self.source,
            'data': self.data,
        }


class BridgeEvent(Event):
    """Base class for events that carry an origin channel and a server name"""

    def __init__(self, event_type: str, origin: Channel, server_name: str, **kwargs):
        super().__init__(event_type=event_type, **kwargs)
        self.source = origin.value
        self.data['server_name'] = server_name

    @property
    def origin(self) -> Channel:
        return Channel(self.source)

    @property
    def server_name(self) -> str:
        return self.data['server_name']


class ChatEvent(BridgeEvent):
    """A line of chat seen on one channel"""

    def __init__(self, origin: Channel, server_name: str, author: str, text: str, **kwargs):
        super().__init__(CHAT_MESSAGE, origin, server_name, **kwargs)
        self.data.update({
            'author': author,
            'text': text
        })

    @property
    def author(self) -> str:
        return self.data['author']

    @property
    def text(self) -> str:
        return self.data['text']


class PresenceEvent(BridgeEvent):
    """A player joined or left a server's roster"""

    def __init__(self, event_type: str, origin: Channel, server_name: str, player, local: bool, **kwargs):
        super().__init__(event_type, origin, server_name, **kwargs)
        self.data.update({
            'player': player,
            'local': local
        })

    @classmethod
    def from_delta(cls, delta, origin: Channel, local: bool) -> 'PresenceEvent':
        event_type = PLAYER_JOINED if delta.joined else PLAYER_LEFT
        return cls(event_type, origin, delta.server_name, delta.player, local)

    @property
    def player(self):
        return self.data['player']

    @property
    def local(self) -> bool:
        return self.data['local']

    @property
    def joined(self) -> bool:
        return self.event_type == PLAYER_JOINED


class ServerStatusEvent(BridgeEvent):
    """A server came online or went offline"""

    def __init__(self, online: bool, origin: Channel, server_name: str, local: bool, **kwargs):
        super().__init__(SERVER_ONLINE if online else SERVER_OFFLINE, origin, server_name, **kwargs)
        self.data['local'] = local

    @property
    def local(self) -> bool:
        return self.data['local']

    @property
    def online(self) -> bool:
        return self.event_type == SERVER_ONLINE


@dataclass
class EventHandler:
    """Event handler registration information"""

    handler_id: str
    handler_func: Callable
    event_types: List[str]
    priority: EventPriority = EventPriority.NORMAL
    async_handler: bool = False
    filter_func: Optional[Callable[[Event], bool]] = None

    def __post_init__(self):
        self.async_handler = asyncio.iscoroutinefunction(self.handler_func)

    def can_handle(self, event: Event) -> bool:
        if event.event_type not in self.event_types and '*' not in self.event_types:
            return False

        if self.filter_func and not self.filter_func(event):
            return False

        return True


class EventBus:
    """
    Pub/sub hub shared by all bridge components.

    ``publish_async`` runs every matching handler and waits for the async
    ones, which keeps relay order deterministic for a single publisher.
    """

    def __init__(self):
        self._handlers: Dict[str, EventHandler] = {}
        self._stats = {
            'events_published': 0,
            'events_handled': 0,
            'handler_errors': 0
        }

        logger.info("EventBus initialized")

    def subscribe(
        self,
        event_types: Union[str, List[str]],
        handler: Callable,
        handler_id: Optional[str] = None,
        priority: EventPriority = EventPriority.NORMAL,
        filter_func: Optional[Callable[[Event], bool]] = None
    ) -> str:
        """
        Subscribe to events with a handler function.

        Args:
            event_types: Event type(s) to subscribe to ('*' for all)
            handler: Handler function (sync or async)
            handler_id: Unique handler ID (auto-generated if None)
            priority: Handler priority level
            filter_func: Optional filter function

        Returns:
            Handler ID for later unsubscription
        """
        if isinstance(event_types, str):
            event_types = [event_types]

        if handler_id is None:
            handler_id = f"{handler.__name__}_{id(handler)}"

        self._handlers[handler_id] = EventHandler(
            handler_id=handler_id,
            handler_func=handler,
            event_types=event_types,
            priority=priority,
            filter_func=filter_func
        )

        logger.debug(f"Subscribed handler {handler_id} to events: {event_types}")
        return handler_id

    def unsubscribe(self, handler_id: str) -> bool:
        if handler_id in self._handlers:
            del self._handlers[handler_id]
            logger.debug(f"Unsubscribed handler {handler_id}")
            return True
        return False

    async def publish_async(self, event: Event) -> int:
        """
        Publish an event and wait for all async handlers to complete.

        Returns:
            Number of handlers the event was delivered to
        """
        self._stats['events_published'] += 1
        handled_count = 0
        async_tasks = []

        for handler in self._get_applicable_handlers(event):
            if not event.propagate:
                break

            try:
                if handler.async_handler:
                    async_tasks.append(asyncio.create_task(self._handle_async(handler, event)))
                else:
                    handler.handler_func(event)

                handled_count += 1
                self._stats['events_handled'] += 1

            except Exception as e:
                self._stats['handler_errors'] += 1
                logger.error(f"Error in handler {handler.handler_id}: {e}")

        if async_tasks:
            await asyncio.gather(*async_tasks, return_exceptions=True)

        logger.debug(f"Published event {event.event_type} to {handled_count} handlers")
        return handled_count

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self._stats,
            'active_handlers': len(self._handlers)
        }

    def get_handlers(self) -> List[str]:
        return list(self._handlers.keys())

    def _get_applicable_handlers(self, event: Event) -> List[EventHandler]:
        applicable = [h for h in self._handlers.values() if h.can_handle(event)]
        applicable.sort(key=lambda h: h.priority.value)
        return applicable

    async def _handle_async(self, handler: EventHandler, event: Event):
        try:
            await handler.handler_func(event)
        except Exception as e:
            self._stats['handler_errors'] += 1
            logger.error(f"Error in async handler {handler.handler_id}: {e}")
