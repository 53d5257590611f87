"""
Bus response parsing and announce escaping.

The bus answers ``execute_command.json`` with a JSON-shaped blob whose exact
layout varies between versions, so the fields the bridge needs are pulled
out with patterns instead of a JSON parser.
"""

import re
from dataclasses import dataclass
from typing import List, Optional

from core.roster import parse_name_list

PLAYERS_PATTERN = re.compile(r'"players"\s*:\s*"([^"]*)"')
CURRENT_COUNT_PATTERN = re.compile(r'"currentPlayerCount"\s*:\s*"?(\d+)"?')
MAX_COUNT_PATTERN = re.compile(r'"maxPlayerCount"\s*:\s*"?(\d+)"?')


@dataclass(frozen=True)
class BusRosterInfo:
    """Roster fields extracted from a ``list`` command result"""
    player_list: str
    current_players: Optional[int] = None
    max_players: Optional[int] = None

    @property
    def players(self) -> List[str]:
        return parse_name_list(self.player_list)


def parse_command_result(text: Optional[str]) -> Optional[BusRosterInfo]:
    """
    Extract roster fields from a bus command result.

    Returns:
        The parsed info, or None when the text carries no player list
    """
    if not text:
        return None

    players = PLAYERS_PATTERN.search(text)
    if players is None:
        return None

    current = CURRENT_COUNT_PATTERN.search(text)
    maximum = MAX_COUNT_PATTERN.search(text)
    return BusRosterInfo(
        player_list=players.group(1),
        current_players=int(current.group(1)) if current else None,
        max_players=int(maximum.group(1)) if maximum else None
    )


def escape_bus_text(text: str) -> str:
    """
    Escape quotes in announce bodies.

    The formatting marker goes out as plain UTF-8; command and find-player
    bodies are sent unchanged.
    """
    return text.replace('"', '\\"')
