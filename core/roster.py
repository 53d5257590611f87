"""
Roster Management for the Vellum bridge

Keeps the in-memory view of which players are connected to which server.
Each :class:`ServerRoster` serializes its own mutations with an asyncio lock
and publishes join/leave/status events on the :class:`EventBus` after the
lock has been released, one at a time and in the order the changes were
committed. The player map is replaced wholesale on every
change, so a reader holding ``roster.players`` always sees one complete
state.
"""

import logging
import asyncio
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from collections import deque
from typing import Dict, Any, Deque, List, Optional, Union, Iterable

from .event_bus import EventBus, Event, Channel, PresenceEvent, ServerStatusEvent
from .service_registry import ServiceRegistry
from .config_manager import ConfigurationManager

logger = logging.getLogger('core.roster')


@dataclass(frozen=True)
class Affixes:
    """Prefix/postfix decoration shown around a player name"""
    prefix: str = ""
    postfix: str = ""


@dataclass(frozen=True)
class IdentifiedPlayer:
    """Player seen through a connect event, with a platform id"""
    name: str
    xuid: int
    affixes: Affixes = Affixes()


@dataclass(frozen=True)
class NamedPlayer:
    """Player only known by name from a roster listing"""
    name: str
    affixes: Affixes = Affixes()


Player = Union[IdentifiedPlayer, NamedPlayer]


class DeltaKind(Enum):
    JOIN = "join"
    LEAVE = "leave"


@dataclass(frozen=True)
class RosterDelta:
    """One join or leave transition"""
    server_name: str
    player: Player
    kind: DeltaKind

    @property
    def joined(self) -> bool:
        return self.kind is DeltaKind.JOIN


def parse_name_list(raw: Optional[str]) -> List[str]:
    """
    Split a comma separated player list.

    Blank input means an empty roster. Duplicates keep their first position.
    """
    if not raw:
        return []

    names: List[str] = []
    for part in raw.split(','):
        name = part.strip()
        if name and name not in names:
            names.append(name)
    return names


class ServerRoster:
    """
    Players connected to one logical server.

    Lifecycle is ``offline -> online -> offline`` and repeats across server
    sessions; the object itself lives as long as the process. An offline
    server holds no players, so list and connect updates are ignored until
    the server is marked online.

    Events are queued under the lock in the order the changes were made and
    published by whichever caller is draining the queue. A handler that
    mutates the same roster only queues its events; the running drain
    publishes them after the current one.
    """

    def __init__(self, name: str, event_bus: EventBus, is_local: bool = False):
        self.name = name
        self.event_bus = event_bus
        self.is_local = is_local
        self.origin = Channel.CONSOLE if is_local else Channel.BUS

        self.online = False
        self.player_slots = 0
        self.boot_time: Optional[datetime] = None

        self._players: Dict[str, Player] = {}
        self._lock = asyncio.Lock()
        self._outbox: Deque[Event] = deque()
        self._draining = False

    @property
    def players(self) -> List[Player]:
        """Snapshot of the current players"""
        return list(self._players.values())

    @property
    def player_names(self) -> List[str]:
        return list(self._players.keys())

    @property
    def player_count(self) -> int:
        return len(self._players)

    def find(self, name: str) -> Optional[Player]:
        return self._players.get(name)

    async def mark_online(self) -> bool:
        """
        Record that the server is up.

        Returns:
            True if this call changed the state
        """
        async with self._lock:
            changed = self._set_online()

        await self._drain()
        return changed

    async def mark_offline(self) -> bool:
        """
        Record that the server went down, forcing every tracked player out.

        Returns:
            True if this call changed the state
        """
        async with self._lock:
            if not self.online:
                return False
            self.online = False
            leaving = list(self._players.values())
            self._players = {}
            logger.info(f"[{self.name}]: Server offline, {len(leaving)} players removed")
            self._queue([RosterDelta(self.name, p, DeltaKind.LEAVE) for p in leaving])
            self._outbox.append(ServerStatusEvent(False, self.origin, self.name, self.is_local))

        await self._drain()
        return True

    async def add_player(self, player: Player) -> bool:
        """
        Explicit connect path.

        A connect for a name already tracked from a listing upgrades the entry
        to the identified player without announcing a second join.

        Returns:
            True if a join was emitted
        """
        async with self._lock:
            if not self.online:
                logger.debug(f"[{self.name}]: Ignoring connect of {player.name} while offline")
                return False

            existing = self._players.get(player.name)
            if existing is not None:
                if isinstance(player, IdentifiedPlayer) and isinstance(existing, NamedPlayer):
                    if player.affixes == Affixes():
                        player = replace(player, affixes=existing.affixes)
                    self._players = {**self._players, player.name: player}
                    logger.debug(f"[{self.name}]: Identified {player.name} as {player.xuid}")
                return False

            self._players = {**self._players, player.name: player}
            self._queue([RosterDelta(self.name, player, DeltaKind.JOIN)])

        await self._drain()
        return True

    async def remove_player(self, xuid: Optional[int] = None, name: Optional[str] = None) -> bool:
        """
        Explicit disconnect path, matched by platform id first then by name.

        Returns:
            True if a leave was emitted
        """
        async with self._lock:
            target = None
            if xuid is not None:
                target = next(
                    (p for p in self._players.values()
                     if isinstance(p, IdentifiedPlayer) and p.xuid == xuid),
                    None
                )
            if target is None and name is not None:
                target = self._players.get(name)

            if target is None:
                logger.warning(f"[{self.name}]: Cannot remove unknown player {name} ({xuid})")
                return False

            self._players = {n: p for n, p in self._players.items() if n != target.name}
            self._queue([RosterDelta(self.name, target, DeltaKind.LEAVE)])

        await self._drain()
        return True

    async def set_affixes(self, name: str, affixes: Affixes) -> Optional[Player]:
        """Store decoration for a tracked player and return the updated entry"""
        async with self._lock:
            player = self._players.get(name)
            if player is None or player.affixes == affixes:
                return player
            player = replace(player, affixes=affixes)
            self._players = {**self._players, name: player}
            return player

    async def reconcile(self, raw: Optional[str], already_updated: bool = False) -> bool:
        """
        Replace the roster with an observed player list.

        Names missing from ``raw`` leave, new names join as
        :class:`NamedPlayer`. Calling again with the same list changes nothing.
        A list for an offline server is ignored.

        Args:
            raw: Comma separated names; blank means nobody is online
            already_updated: Changed flag carried from an earlier step of the same pass

        Returns:
            True if anything changed in this call or ``already_updated`` was set
        """
        names = parse_name_list(raw)

        async with self._lock:
            if not self.online:
                logger.debug(f"[{self.name}]: Ignoring player list while offline")
                return already_updated
            changed = self._diff(names)

        await self._drain()
        return already_updated or changed

    async def apply_console_roster(self, current: int, max_slots: int, names: Optional[str]) -> bool:
        """Apply a "There are X/Y players online" result from the local console"""
        if current == 0:
            names = ""
        return await self._apply_listing(names, max_slots)

    async def apply_bus_info(self, player_list: str, max_players: Optional[int] = None) -> bool:
        """Apply a roster answer obtained over the bus"""
        return await self._apply_listing(player_list, max_players)

    def get_status(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'local': self.is_local,
            'online': self.online,
            'player_slots': self.player_slots,
            'players': self.player_names,
            'boot_time': self.boot_time.isoformat() if self.boot_time else None
        }

    async def _apply_listing(self, raw: Optional[str], max_slots: Optional[int]) -> bool:
        """A listing proves the server is up; mark it online and diff in one step"""
        names = parse_name_list(raw)

        async with self._lock:
            changed = self._set_online()
            if max_slots is not None:
                self.player_slots = max_slots
            changed = self._diff(names) or changed

        await self._drain()
        return changed

    def _set_online(self) -> bool:
        """Caller holds the lock"""
        if self.online:
            return False
        self.online = True
        self.boot_time = datetime.now(timezone.utc)
        logger.info(f"[{self.name}]: Server online")
        self._outbox.append(ServerStatusEvent(True, self.origin, self.name, self.is_local))
        return True

    def _diff(self, names: List[str]) -> bool:
        """Commit the new map and queue its deltas; caller holds the lock"""
        current = self._players
        incoming = set(names)

        leaving = [p for n, p in current.items() if n not in incoming]
        joining = [NamedPlayer(n) for n in names if n not in current]
        if not leaving and not joining:
            return False

        updated = {n: p for n, p in current.items() if n in incoming}
        for player in joining:
            updated[player.name] = player
        self._players = updated

        self._queue(
            [RosterDelta(self.name, p, DeltaKind.LEAVE) for p in leaving] +
            [RosterDelta(self.name, p, DeltaKind.JOIN) for p in joining]
        )
        return True

    def _queue(self, deltas: Iterable[RosterDelta]) -> None:
        """Caller holds the lock"""
        for delta in deltas:
            verb = "joined" if delta.joined else "left"
            logger.info(f"[{self.name}]: {delta.player.name} {verb}")
            self._outbox.append(PresenceEvent.from_delta(delta, self.origin, self.is_local))

    async def _drain(self) -> None:
        if self._draining:
            return

        self._draining = True
        try:
            while self._outbox:
                await self.event_bus.publish_async(self._outbox.popleft())
        finally:
            self._draining = False


class RosterManager:
    """
    Owns the local server roster and one roster per peer.

    Peers named in configuration exist from the start; any other peer is
    created the first time it is mentioned.
    """

    def __init__(self, service_registry: ServiceRegistry):
        self.service_registry = service_registry
        self.event_bus = service_registry.get(EventBus)
        config = service_registry.get(ConfigurationManager).get_configuration()

        self.local = ServerRoster(config.world_name, self.event_bus, is_local=True)
        self._servers: Dict[str, ServerRoster] = {self.local.name: self.local}
        for peer_name in config.server_sync.other_servers:
            self.get_or_create(peer_name)

        logger.info("RosterManager initialized")

    def get(self, name: str) -> Optional[ServerRoster]:
        return self._servers.get(name)

    def get_or_create(self, name: str) -> ServerRoster:
        roster = self._servers.get(name)
        if roster is None:
            roster = ServerRoster(name, self.event_bus)
            self._servers[name] = roster
            logger.debug(f"Tracking peer server {name}")
        return roster

    def peers(self) -> List[ServerRoster]:
        return [s for s in self._servers.values() if not s.is_local]

    def servers(self) -> List[ServerRoster]:
        return list(self._servers.values())

    @property
    def player_count(self) -> int:
        """Players across every online server"""
        return sum(s.player_count for s in self._servers.values() if s.online)

    @property
    def online_server_count(self) -> int:
        return sum(1 for s in self._servers.values() if s.online)

    def all_player_names(self) -> List[str]:
        names: List[str] = []
        for server in self._servers.values():
            if server.online:
                names.extend(server.player_names)
        return names

    def get_roster_stats(self) -> Dict[str, Any]:
        return {
            'player_count': self.player_count,
            'online_servers': self.online_server_count,
            'servers': {name: s.get_status() for name, s in self._servers.items()}
        }
