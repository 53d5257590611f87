"""
Relay Router for the Vellum bridge

Fans chat, presence and server status events out to every other channel.
An event is never sent back to the channel it came from: Discord chat goes
to the console and the bus, local console chat goes to Discord and the bus,
and peer events learned over the bus go to Discord and the console.
"""

import logging
from typing import Dict, Any, List, Optional

from core import (
    ServiceRegistry, ConfigurationManager, EventBus, RosterManager, Event,
    Channel, ChatEvent, PresenceEvent, ServerStatusEvent, Affixes, IdentifiedPlayer,
    CHAT_MESSAGE, PRESENCE_EVENTS, STATUS_EVENTS
)
from integrations.bus import BusClient
from integrations.console import ConsoleBridge
from integrations.discord_sync import MessagingService
from integrations.essentials import ProfileService

logger = logging.getLogger('services.relay_service')

DESTINATION_ORDER = [Channel.DISCORD, Channel.BUS, Channel.CONSOLE]


class RelayRouter:
    """
    Decides where an event goes and formats it with the matching template.

    The router assumes everything it receives is worth relaying; command-like
    chat is dropped earlier by the console bridge.
    """

    def __init__(self, service_registry: ServiceRegistry):
        self.service_registry = service_registry
        self.config = service_registry.get(ConfigurationManager).get_configuration()
        self.event_bus = service_registry.get(EventBus)
        self.roster_manager = service_registry.get(RosterManager)

        self.bus = service_registry.get_optional(BusClient)
        self.messaging = service_registry.get_optional(MessagingService)
        self.console = service_registry.get_optional(ConsoleBridge)
        self.profiles = service_registry.get_optional(ProfileService)

        self.templates = self.config.templates
        self._stats = {
            'routed_events': 0,
            'dispatched': {channel.value: 0 for channel in Channel},
            'dispatch_errors': 0
        }

        self.event_bus.subscribe(
            [CHAT_MESSAGE] + PRESENCE_EVENTS + STATUS_EVENTS,
            self.route,
            handler_id='relay_router'
        )

        logger.info("RelayRouter initialized")

    def enabled_destinations(self) -> List[Channel]:
        available = {
            Channel.DISCORD: self.messaging is not None,
            Channel.BUS: self.bus is not None,
            Channel.CONSOLE: self.console is not None,
        }
        return [channel for channel in DESTINATION_ORDER if available[channel]]

    def destinations_for(self, event: Event) -> List[Channel]:
        """
        Channels an event should be relayed to, never including its origin.
        """
        if isinstance(event, PresenceEvent):
            if not self.config.player_conn_messages:
                return []
            if not event.local and not self.config.server_sync.relay_peer_presence:
                return []
        elif isinstance(event, ServerStatusEvent):
            if not self.config.server_status_messages:
                return []
            if not event.local and not self.config.server_sync.relay_peer_presence:
                return []
        elif not isinstance(event, ChatEvent):
            return []

        return [channel for channel in self.enabled_destinations() if channel is not event.origin]

    async def format_message(self, event: Event) -> Optional[str]:
        """
        Render an event with its template.

        Returns:
            The text to relay, or None when the template is empty
        """
        template, args = await self._template_for(event)
        if not template:
            return None

        try:
            return template.format(*args)
        except (IndexError, KeyError, ValueError) as e:
            logger.error(f"Bad template {template!r}: {e}")
            return " ".join(str(a) for a in args if a)

    async def route(self, event: Event) -> List[Channel]:
        """
        Relay one event.

        Returns:
            The channels the event was dispatched to
        """
        try:
            destinations = self.destinations_for(event)
            if not destinations:
                return []

            text = await self.format_message(event)
            if not text:
                return []

            self._stats['routed_events'] += 1
            for destination in destinations:
                await self._dispatch(destination, text)
            return destinations

        except Exception as e:
            logger.error(f"Error routing {event.event_type}: {e}")
            return []

    def get_relay_stats(self) -> Dict[str, Any]:
        return {
            **self._stats,
            'destinations': [c.value for c in self.enabled_destinations()]
        }

    async def _template_for(self, event: Event):
        t = self.templates

        if isinstance(event, ChatEvent):
            if event.origin is Channel.DISCORD:
                return t.from_discord, (event.server_name, event.author, event.text)
            affixes = await self._chat_affixes(event)
            return t.chat, (event.server_name, event.author, event.text, affixes.prefix, affixes.postfix)

        if isinstance(event, PresenceEvent):
            template = t.player_join if event.joined else t.player_leave
            affixes = event.player.affixes
            return template, (event.server_name, event.player.name, affixes.prefix, affixes.postfix)

        if isinstance(event, ServerStatusEvent):
            return (t.server_up if event.online else t.server_down), (event.server_name,)

        return None, ()

    async def _chat_affixes(self, event: ChatEvent) -> Affixes:
        """Current decoration for a chatting player, refreshed from the profile store"""
        roster = self.roster_manager.get(event.server_name)
        player = roster.find(event.author) if roster else None
        if player is None:
            return Affixes()

        if self.profiles is not None and isinstance(player, IdentifiedPlayer):
            affixes = await self.profiles.lookup_affixes(player.xuid)
            await roster.set_affixes(player.name, affixes)
            return affixes

        return player.affixes

    async def _dispatch(self, destination: Channel, text: str) -> None:
        try:
            if destination is Channel.DISCORD:
                await self.messaging.send_message(text)
            elif destination is Channel.BUS:
                peers = [peer.name for peer in self.roster_manager.peers()]
                await self.bus.broadcast(peers, text)
            elif destination is Channel.CONSOLE:
                await self.console.say(text)
            self._stats['dispatched'][destination.value] += 1

        except Exception as e:
            self._stats['dispatch_errors'] += 1
            logger.error(f"Failed to relay to {destination.value}: {e}")
