"""
Console Bridge - the local game server console boundary

Turns console output into roster updates and chat events, and sends
commands and text back to the server. Commands go through the bus once the
local bus reports CommandSupport; text goes through the bus once it reports
ChatAPI. Otherwise both are written to the server's stdin.
"""

import logging
import asyncio
import re
from dataclasses import replace
from typing import Dict, Any, Optional, Tuple

from core import (
    ServiceRegistry, ConfigurationManager, EventBus, Event, RosterManager,
    Channel, ChatEvent, IdentifiedPlayer, BUS_COMMAND_SUPPORT
)
from integrations.bus import BusClient, parse_command_result
from integrations.essentials import ProfileService
from .process_console import ProcessConsole

logger = logging.getLogger('integrations.console.console_bridge')


CHAT_MARKER = "[CHAT]"
CHAT_PATTERN = re.compile(r'\[.+\].+\[(.+)\] (.+)')
BUS_EXTENSION_PATTERN = re.compile(r'.+\[Bus\].+Load builtin extension for (ChatAPI|CommandSupport)$')
PLAYER_CONNECTED_PATTERN = re.compile(r'.+Player connected: (.+), xuid: (\d+)')
PLAYER_DISCONNECTED_PATTERN = re.compile(r'.+Player disconnected: (.+), xuid: (\d+)')
ROSTER_HEADER_PATTERN = re.compile(r'There are (\d+)/(\d+) players online:$')
SERVER_STARTED_PATTERN = re.compile(r'Server started\.')
LOG_PREFIX_PATTERN = re.compile(r'^(NO LOG FILE! - )?\[\d{4}-\d{2}-\d{2}[^\]]*\]')


class ConsoleBridge:
    """
    Structured console callbacks plus the line matcher that drives them.

    ``feed_line`` is awaited from the process pump on the event loop; hosts
    that deliver lines from another thread use ``feed_line_threadsafe``.
    """

    def __init__(self, service_registry: ServiceRegistry):
        self.service_registry = service_registry
        self.config = service_registry.get(ConfigurationManager).get_configuration()
        self.event_bus = service_registry.get(EventBus)
        self.roster_manager = service_registry.get(RosterManager)
        self.bus = service_registry.get_optional(BusClient)
        self.profiles = service_registry.get_optional(ProfileService)
        self.process = service_registry.get_optional(ProcessConsole)

        self.world_name = self.config.world_name
        self.command_prefix = self.config.command_prefix

        # "There are X/Y players online:" is followed by an unprefixed name line
        self._pending_roster: Optional[Tuple[int, int]] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

        logger.info("ConsoleBridge initialized")

    def bind_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

    def feed_line_threadsafe(self, line: str) -> None:
        """Hand a console line over from a foreign thread"""
        if self._loop is None:
            logger.error("Console line dropped, no event loop bound")
            return
        asyncio.run_coroutine_threadsafe(self.feed_line(line), self._loop)

    async def feed_line(self, line: str) -> None:
        """Match one line of console output"""
        try:
            line = line.rstrip('\r\n')

            if self._pending_roster is not None:
                current, maximum = self._pending_roster
                self._pending_roster = None
                if CHAT_MARKER in line or LOG_PREFIX_PATTERN.match(line):
                    logger.debug("Roster header was not followed by a name line")
                else:
                    await self.on_roster_query(current, maximum, line)
                    return

            is_chat = CHAT_MARKER in line

            match = BUS_EXTENSION_PATTERN.match(line)
            if match and not is_chat:
                await self.on_bus_extension_loaded(match.group(1))
                return

            if is_chat:
                match = CHAT_PATTERN.search(line)
                if match:
                    await self.on_chat(match.group(1), match.group(2).strip())
                return

            match = PLAYER_CONNECTED_PATTERN.match(line)
            if match:
                await self.on_player_connected(match.group(1), int(match.group(2)))
                return

            match = PLAYER_DISCONNECTED_PATTERN.match(line)
            if match:
                await self.on_player_disconnected(match.group(1), int(match.group(2)))
                return

            match = ROSTER_HEADER_PATTERN.search(line)
            if match:
                current, maximum = int(match.group(1)), int(match.group(2))
                if current == 0:
                    await self.on_roster_query(current, maximum, "")
                else:
                    self._pending_roster = (current, maximum)
                return

            if SERVER_STARTED_PATTERN.search(line):
                await self.on_server_started()

        except Exception as e:
            logger.error(f"Error handling console line {line!r}: {e}")

    async def on_player_connected(self, name: str, xuid: int) -> None:
        player = IdentifiedPlayer(name, xuid)
        if self.profiles is not None:
            player = replace(player, affixes=await self.profiles.lookup_affixes(xuid))
        await self.roster_manager.local.add_player(player)

    async def on_player_disconnected(self, name: str, xuid: int) -> None:
        await self.roster_manager.local.remove_player(xuid=xuid, name=name)

    async def on_server_started(self) -> None:
        await self.roster_manager.local.mark_online()
        # Ask for the roster to learn the player slot count
        await self.refresh_local_roster()

    async def on_server_stopped(self) -> None:
        await self.roster_manager.local.mark_offline()

    async def on_chat(self, author: str, text: str) -> None:
        if self.command_prefix and text.startswith(self.command_prefix):
            logger.debug(f"Ignoring command from {author}")
            return
        await self.event_bus.publish_async(
            ChatEvent(Channel.CONSOLE, self.world_name, author, text)
        )

    async def on_roster_query(self, current: int, maximum: int, names: str) -> None:
        await self.roster_manager.local.apply_console_roster(current, maximum, names)

    async def on_bus_extension_loaded(self, extension: str) -> None:
        if self.bus is None:
            logger.debug(f"Bus extension {extension} loaded but server sync is disabled")
            return

        logger.info(f"Connected to bus: {extension}")
        if extension == "ChatAPI":
            self.bus.chat_support_loaded = True
        elif extension == "CommandSupport":
            self.bus.command_support_loaded = True
            await self.event_bus.publish_async(Event(event_type=BUS_COMMAND_SUPPORT, source=Channel.CONSOLE.value))

    async def refresh_local_roster(self) -> bool:
        """
        Request the local roster.

        Through the bus the answer comes back directly and is applied here;
        through the console it arrives later as console output.

        Returns:
            True if the roster changed
        """
        result = await self.execute("list")
        if not result:
            return False

        info = parse_command_result(result)
        if info is None:
            logger.warning("Local roster query returned no player list")
            return False
        return await self.roster_manager.local.apply_bus_info(info.player_list, info.max_players)

    async def execute(self, command: str) -> Optional[str]:
        """
        Run a command on the local server.

        Returns:
            The bus result text when routed through the bus, otherwise None
        """
        if self.bus is not None and self.bus.command_support_loaded:
            return await self.bus.execute_command(self.world_name, command)

        if self.process is not None and self.process.send_input(command):
            return None

        logger.warning(f"No console to run command: {command}")
        return None

    async def say(self, text: str) -> bool:
        """Show text to every player on the local server"""
        if self.bus is not None and self.bus.chat_support_loaded:
            await self.bus.announce(self.world_name, text)
            return True

        escaped = text.replace('"', '\\"')
        command = 'tellraw @a {"rawtext":[{"text":"' + escaped + '"}]}'
        if self.process is not None and self.process.send_input(command):
            return True

        logger.warning(f"No bus or console to show message: {text}")
        return False

    def get_status(self) -> Dict[str, Any]:
        return {
            'world_name': self.world_name,
            'console_attached': self.process is not None and self.process.is_running,
            'bus_chat': bool(self.bus and self.bus.chat_support_loaded),
            'bus_commands': bool(self.bus and self.bus.command_support_loaded)
        }
