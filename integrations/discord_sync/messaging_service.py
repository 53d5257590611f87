"""
Messaging Service - the Discord side of the bridge

Inbound: messages in the bridged channel are normalized and published as
``ChatEvent`` with origin ``Channel.DISCORD``.

Outbound: text is cleaned, queued and sent by one background worker with a
fixed pause between sends. The channel topic follows the roster through a
:class:`TopicThrottle`.
"""

import logging
import asyncio
from dataclasses import dataclass
from typing import Dict, Any, Optional

import discord

from core import (
    ServiceRegistry, ConfigurationManager, EventBus, RosterManager, Channel, ChatEvent,
    PRESENCE_EVENTS, STATUS_EVENTS
)
from .text_filters import normalize_inbound, prepare_outbound, replace_mention_codes, insert_mentions
from .topic_throttle import TopicThrottle

logger = logging.getLogger('integrations.discord_sync.messaging_service')

DISCORD_SOURCE_LABEL = "Discord"


@dataclass
class OutboundMessage:
    """One queued send to the bridged channel"""
    text: str
    embed: Optional[discord.Embed] = None


class MessagingService:
    """
    Two-way bridge between the game network and one Discord channel.

    Event handlers are attached to the client and the event bus once, here in
    the constructor; a configuration reload builds a new service.
    """

    def __init__(self, service_registry: ServiceRegistry):
        self.service_registry = service_registry
        self.config = service_registry.get(ConfigurationManager).get_configuration()
        self.discord_config = self.config.discord
        self.client = service_registry.get(discord.Client)
        self.event_bus = service_registry.get(EventBus)
        self.roster_manager = service_registry.get(RosterManager)

        self.send_delay = self.discord_config.send_delay
        self.send_queue: asyncio.Queue = asyncio.Queue()
        self.processing_task: Optional[asyncio.Task] = None
        self.is_running = False

        self.topic = TopicThrottle(self._apply_topic, self.discord_config.topic_cooldown)

        self._stats = {
            'received': 0,
            'sent': 0,
            'send_failures': 0
        }

        self.client.event(self.on_ready)
        self.client.event(self.on_message)
        self.event_bus.subscribe(
            PRESENCE_EVENTS + STATUS_EVENTS,
            self._on_roster_change,
            handler_id='messaging_topic'
        )

        logger.info("MessagingService initialized")

    @property
    def channel(self):
        return self.client.get_channel(self.discord_config.channel_id)

    async def start(self) -> None:
        """Start the send worker"""
        if not self.is_running:
            self.is_running = True
            self.processing_task = asyncio.create_task(self._process_send_queue())
            logger.info("MessagingService started")

    async def stop(self) -> None:
        """Stop the send worker and the topic timer"""
        self.topic.cancel()
        if self.is_running:
            self.is_running = False
            if self.processing_task:
                self.processing_task.cancel()
                try:
                    await self.processing_task
                except asyncio.CancelledError:
                    pass
            logger.info("MessagingService stopped")

    async def drain(self, timeout: float) -> bool:
        """Wait until every queued message, including one mid-send, has been delivered"""
        try:
            await asyncio.wait_for(self.send_queue.join(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            logger.warning(f"{self.send_queue.qsize()} messages still queued at shutdown")
            return False

    async def on_ready(self) -> None:
        """Discord connection ready: set presence and publish the first topic"""
        try:
            logger.info(f"Connected to Discord as {self.client.user}")
            if self.channel is None:
                logger.error(f"Channel {self.discord_config.channel_id} is not visible to the bot")

            if self.config.is_topic_authority and self.discord_config.playing:
                await self.client.change_presence(activity=discord.Game(name=self.discord_config.playing))

            await self.update_topic()

        except Exception as e:
            logger.error(f"Error in on_ready: {e}")

    async def on_message(self, message: discord.Message) -> None:
        """Relay a message from the bridged channel into the game"""
        try:
            if not self.config.is_topic_authority:
                return

            if message.channel.id != self.discord_config.channel_id:
                return

            if self.client.user is not None and message.author.id == self.client.user.id:
                return

            text = self.normalize_message(message)
            if text is None:
                return

            self._stats['received'] += 1
            await self.event_bus.publish_async(
                ChatEvent(Channel.DISCORD, DISCORD_SOURCE_LABEL, message.author.name, text)
            )

        except Exception as e:
            logger.error(f"Error handling Discord message: {e}")

    def normalize_message(self, message: discord.Message) -> Optional[str]:
        """
        Build game-ready text from a Discord message.

        Returns:
            The text, or None for a message with nothing to show
        """
        text = message.content or ""
        if not text.strip():
            # Bridge bots post join/leave notices as embeds with no content
            names = [e.author.name for e in message.embeds if e.author and e.author.name]
            if not names:
                return None
            text = "\n".join(names)

        known_users = {m.id: m.name for m in message.mentions}

        def user_name(user_id: int) -> Optional[str]:
            if user_id in known_users:
                return known_users[user_id]
            user = self.client.get_user(user_id)
            return user.name if user is not None else None

        def channel_name(channel_id: int) -> Optional[str]:
            found = self.client.get_channel(channel_id)
            return getattr(found, 'name', None)

        text = replace_mention_codes(
            text, user_name, channel_name,
            drop_unresolved=self.discord_config.drop_unresolved_mentions
        )
        return normalize_inbound(
            text,
            latin_only=self.discord_config.latin_only,
            char_limit=self.discord_config.char_limit
        )

    async def send_message(self, text: str, embed: Optional[discord.Embed] = None) -> None:
        """Clean game text and queue it for the bridged channel"""
        message = prepare_outbound(text)
        if self.discord_config.mentions:
            message = insert_mentions(message, self._member_mention, self._channel_id_by_name)
        self.send_queue.put_nowait(OutboundMessage(message, embed))

    def compute_topic(self) -> Optional[str]:
        """
        Topic text for the current roster.

        The network-wide format wins for the controller of a synced network;
        a non-controller never owns the topic.
        """
        if not self.config.is_topic_authority:
            return None

        templates = self.config.templates
        try:
            if self.config.server_sync.enabled and templates.multi_topic:
                return templates.multi_topic.format(
                    self.roster_manager.player_count,
                    self.roster_manager.online_server_count
                )
            if templates.topic:
                local = self.roster_manager.local
                return templates.topic.format(local.player_count, local.player_slots)
        except (IndexError, KeyError, ValueError) as e:
            logger.error(f"Bad topic template: {e}")
        return None

    async def update_topic(self) -> None:
        value = self.compute_topic()
        if value is not None:
            await self.topic.request(value)

    async def publish_offline_topic(self, timeout: float) -> bool:
        """Final topic on shutdown, bypassing the cooldown"""
        if not self.config.is_topic_authority:
            return False
        return await self.topic.force(self.config.templates.offline_topic, timeout)

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self._stats,
            'queue_size': self.send_queue.qsize(),
            'is_running': self.is_running,
            'topic': self.topic.get_stats()
        }

    async def _on_roster_change(self, event) -> None:
        await self.update_topic()

    async def _apply_topic(self, value: str) -> None:
        channel = self.channel
        if channel is None:
            raise RuntimeError(f"channel {self.discord_config.channel_id} unavailable")
        await channel.edit(topic=value)

    async def _process_send_queue(self) -> None:
        """Send queued messages one at a time, in order"""
        while self.is_running:
            try:
                try:
                    item = await asyncio.wait_for(self.send_queue.get(), timeout=1.0)
                except asyncio.TimeoutError:
                    continue

                try:
                    await self._deliver(item)
                finally:
                    self.send_queue.task_done()
                await asyncio.sleep(self.send_delay)

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in send queue processing: {e}")

    async def _deliver(self, item: OutboundMessage) -> None:
        channel = self.channel
        if channel is None:
            self._stats['send_failures'] += 1
            logger.warning("Dropping message, Discord channel unavailable")
            return

        try:
            await channel.send(content=item.text, embed=item.embed)
            self._stats['sent'] += 1
        except discord.HTTPException as e:
            self._stats['send_failures'] += 1
            logger.warning(f"Discord send failed ({e.status}): {e.text}")
        except Exception as e:
            self._stats['send_failures'] += 1
            logger.error(f"Discord send failed: {e}")

    def _member_mention(self, name: str) -> Optional[str]:
        channel = self.channel
        guild = getattr(channel, 'guild', None)
        if guild is None:
            return None
        wanted = name.lower()
        for member in guild.members:
            if member.name.lower() == wanted:
                return member.mention
        return None

    def _channel_id_by_name(self, name: str) -> Optional[int]:
        channel = self.channel
        guild = getattr(channel, 'guild', None)
        if guild is None:
            return None
        for candidate in guild.channels:
            if candidate.name == name:
                return candidate.id
        return None
