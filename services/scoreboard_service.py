"""
Scoreboard Service - presence mirrored into in-game scoreboards

Two dummy objectives are maintained on every server of the network: one
listing online players (optionally shown in the player list display slot)
and one counting players per server.
"""

import logging
import asyncio
from typing import Dict, Iterable, Optional

from core import (
    ServiceRegistry, ConfigurationManager, EventBus, RosterManager, Event,
    PresenceEvent, ServerStatusEvent, PRESENCE_EVENTS, STATUS_EVENTS, BUS_COMMAND_SUPPORT
)
from integrations.bus import BusClient
from integrations.console import ConsoleBridge

logger = logging.getLogger('services.scoreboard_service')

MIN_LISTED_NAME = 2


class ScoreboardService:
    """
    Issues scoreboard commands for presence changes.

    Local changes are applied network-wide; changes learned about peers are
    only applied to the local server, since each peer mirrors its own.
    """

    def __init__(self, service_registry: ServiceRegistry):
        self.service_registry = service_registry
        config = service_registry.get(ConfigurationManager).get_configuration()
        self.event_bus = service_registry.get(EventBus)
        self.roster_manager = service_registry.get(RosterManager)
        self.bus = service_registry.get(BusClient)
        self.console = service_registry.get(ConsoleBridge)

        self.world_name = config.world_name
        self.online_board = config.server_sync.online_list_scoreboard
        self.server_board = config.server_sync.server_list_scoreboard
        self.display_online_list = config.server_sync.display_online_list

        self.event_bus.subscribe(PRESENCE_EVENTS, self._on_presence, handler_id='scoreboard_presence')
        self.event_bus.subscribe(STATUS_EVENTS, self._on_status, handler_id='scoreboard_status')
        self.event_bus.subscribe(BUS_COMMAND_SUPPORT, self.reset_objectives, handler_id='scoreboard_reset')

        logger.info("ScoreboardService initialized")

    async def broadcast_command(self, command: str, skip_local: bool = False) -> bool:
        """
        Run a command on the local server and on every online peer.

        A peer that does not answer is marked offline.

        Returns:
            True if any peer was marked offline
        """
        if not skip_local:
            await self.console.execute(command)

        online_peers = [peer for peer in self.roster_manager.peers() if peer.online]
        results = await asyncio.gather(
            *(self.bus.execute_command(peer.name, command) for peer in online_peers)
        )

        changed = False
        for peer, result in zip(online_peers, results):
            if not result:
                logger.info(f"[{peer.name}]: No answer on the bus, marking offline")
                await peer.mark_offline()
                changed = True
        return changed

    async def reset_objectives(self, event: Optional[Event] = None) -> None:
        """Recreate both objectives on the local server"""
        try:
            if self.server_board:
                await self._recreate_objective(self.server_board)
                await self.broadcast_command(
                    f'scoreboard players add "{self.world_name}" "{self.server_board}" 0',
                    skip_local=True
                )

            if self.online_board:
                await self._recreate_objective(self.online_board)
                if self.display_online_list:
                    await self.console.execute(f'scoreboard objectives setdisplay list "{self.online_board}"')

        except Exception as e:
            logger.error(f"Failed to reset scoreboards: {e}")

    async def publish_network_roster(self, peer_counts: Dict[str, Optional[int]],
                                     players: Iterable[str]) -> None:
        """
        Rebuild the scoreboards after a bus refresh.

        Args:
            peer_counts: Player count per peer, None for a peer that did not answer
            players: Names of players online anywhere on the network
        """
        try:
            if self.server_board:
                await self.console.execute(
                    f'scoreboard objectives add "{self.server_board}" dummy "{self.server_board}"'
                )
                for name, count in peer_counts.items():
                    await self.console.execute(f'scoreboard players reset "{name}" "{self.server_board}"')
                    if count is not None:
                        await self.console.execute(
                            f'scoreboard players add "{name}" "{self.server_board}" {count}'
                        )

            if self.online_board:
                await self._recreate_objective(self.online_board)
                if self.display_online_list:
                    await self.console.execute(f'scoreboard objectives setdisplay list "{self.online_board}"')
                for player in players:
                    if len(player) < MIN_LISTED_NAME:
                        continue
                    await self.console.execute(f'scoreboard players add "{player}" "{self.online_board}" 0')

        except Exception as e:
            logger.error(f"Failed to publish network roster: {e}")

    async def _recreate_objective(self, objective: str) -> None:
        await self.console.execute(f'scoreboard objectives remove "{objective}"')
        await self.console.execute(f'scoreboard objectives add "{objective}" dummy "{objective}"')

    async def _on_presence(self, event: PresenceEvent) -> None:
        if not event.local:
            return

        name = event.player.name
        if event.joined:
            if self.online_board:
                await self.broadcast_command(f'scoreboard players add "{name}" "{self.online_board}" 0')
            if self.server_board:
                await self.broadcast_command(f'scoreboard players add "{self.world_name}" "{self.server_board}" 1')
        else:
            if self.online_board:
                await self.broadcast_command(f'scoreboard players reset "{name}" "{self.online_board}"')
            if self.server_board:
                await self.broadcast_command(f'scoreboard players remove "{self.world_name}" "{self.server_board}" 1')

    async def _on_status(self, event: ServerStatusEvent) -> None:
        if not self.server_board:
            return

        if event.online:
            command = f'scoreboard players add "{event.server_name}" "{self.server_board}" 0'
        else:
            command = f'scoreboard players reset "{event.server_name}" "{self.server_board}"'

        if event.local:
            # The local console is gone once the local server is down
            await self.broadcast_command(command, skip_local=not event.online)
        else:
            await self.console.execute(command)
