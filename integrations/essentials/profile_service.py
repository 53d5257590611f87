"""
Profile Service - player name decoration from the essentials databases
"""

import logging
import asyncio
import sqlite3
from pathlib import Path
from typing import Optional

from core import ServiceRegistry, ConfigurationManager, Affixes

logger = logging.getLogger('integrations.essentials.profile_service')


class ProfileService:
    """
    Reads custom name prefixes and postfixes written by the server's
    essentials extension.

    The user database maps a player's xuid to an internal uuid; the essentials
    database keys the custom name by that uuid. Both are read-only here and
    any failure yields empty affixes.
    """

    def __init__(self, service_registry: ServiceRegistry):
        self.service_registry = service_registry
        config = service_registry.get(ConfigurationManager).get_configuration()

        self.user_db = Path(config.user_db)
        self.essentials_db = Path(config.essentials_db)

        logger.info("ProfileService initialized")

    async def lookup_affixes(self, xuid: int) -> Affixes:
        """Look up decoration for a player without blocking the event loop"""
        return await asyncio.to_thread(self.get_affixes, xuid)

    def get_affixes(self, xuid: int) -> Affixes:
        """
        Blocking lookup.

        Args:
            xuid: Platform id of the player

        Returns:
            The player's affixes, empty when unknown or unavailable
        """
        try:
            uuid_hex = self._find_uuid(xuid)
            if uuid_hex is None:
                return Affixes()

            if not self.essentials_db.exists():
                return Affixes()

            with sqlite3.connect(self.essentials_db) as conn:
                cursor = conn.execute(
                    "SELECT prefix, postfix FROM custom_name WHERE uuid = ?",
                    (bytes.fromhex(uuid_hex),)
                )
                row = cursor.fetchone()

            if row is None:
                return Affixes()
            return Affixes(prefix=row[0] or "", postfix=row[1] or "")

        except (sqlite3.Error, ValueError) as e:
            logger.warning(f"Affix lookup failed for {xuid}: {e}")
            return Affixes()

    def _find_uuid(self, xuid: int) -> Optional[str]:
        if not self.user_db.exists():
            return None

        with sqlite3.connect(self.user_db) as conn:
            cursor = conn.execute("SELECT hex(uuid) FROM user WHERE xuid = ?", (xuid,))
            row = cursor.fetchone()

        return row[0] if row else None
