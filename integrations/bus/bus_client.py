"""
Bus Client for peer server communication

Talks to the bus sidecar that every server in the network runs. All calls
are POSTs of a raw text body to ``map/{server}/{endpoint}``. A call that
times out, cannot connect, or gets an error status yields an empty string;
callers read that as "peer unreachable". Undecodable bytes in an answer are
replaced rather than raised.
"""

import logging
import asyncio
from typing import Dict, Any, Iterable, Optional

import aiohttp

from core import ServiceRegistry, ConfigurationManager
from .responses import escape_bus_text

logger = logging.getLogger('integrations.bus.bus_client')


class BusClient:
    """
    HTTP client for the bus endpoints of the local server and its peers.

    Every request carries the configured deadline and is followed by a short
    spacing pause, so a slow peer costs at most one timeout per call.
    """

    ANNOUNCE = "announce"
    EXECUTE_COMMAND = "execute_command.json"
    FIND_PLAYER = "find-player"

    def __init__(self, service_registry: ServiceRegistry):
        self.service_registry = service_registry
        config = service_registry.get(ConfigurationManager).get_configuration()
        sync_config = config.server_sync

        self.base_url = f"http://{sync_config.bus_address}:{sync_config.bus_port}/"
        self.timeout = sync_config.bus_timeout
        self.request_spacing = sync_config.request_spacing

        # Set by the console bridge when the local bus loads these extensions
        self.chat_support_loaded = False
        self.command_support_loaded = False

        self.session: Optional[aiohttp.ClientSession] = None
        self._stats = {
            'requests': 0,
            'failures': 0
        }

        logger.info(f"BusClient initialized for {self.base_url}")

    async def start(self) -> None:
        """Open the HTTP session"""
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
            logger.info("BusClient session opened")

    async def close(self) -> None:
        if self.session is not None and not self.session.closed:
            await self.session.close()
            logger.info("BusClient session closed")
        self.session = None

    async def announce(self, destination: str, text: str) -> None:
        """Broadcast text in the destination world; failures are only logged"""
        await self._post(destination, self.ANNOUNCE, escape_bus_text(text))

    async def execute_command(self, destination: str, command: str) -> str:
        """
        Run a command on the destination server.

        Returns:
            The result blob, or an empty string if the peer did not answer
        """
        return await self._post(destination, self.EXECUTE_COMMAND, command)

    async def find_player(self, destination: str, identifier: str) -> str:
        """Ask the destination bus about a player; empty string on failure"""
        return await self._post(destination, self.FIND_PLAYER, identifier)

    async def broadcast(self, destinations: Iterable[str], text: str) -> None:
        """Announce the same text on several servers concurrently"""
        await asyncio.gather(*(self.announce(d, text) for d in destinations))

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self._stats,
            'base_url': self.base_url,
            'chat_support_loaded': self.chat_support_loaded,
            'command_support_loaded': self.command_support_loaded
        }

    async def _post(self, destination: str, endpoint: str, body: str) -> str:
        url = f"{self.base_url}map/{destination}/{endpoint}"
        self._stats['requests'] += 1

        if self.session is None or self.session.closed:
            await self.start()

        try:
            async with self.session.post(url, data=body.encode('utf-8')) as response:
                if response.status >= 400:
                    self._stats['failures'] += 1
                    logger.warning(f"Bus call {url} failed: HTTP {response.status}")
                    return ""
                return await response.text(errors='replace')

        except asyncio.TimeoutError:
            self._stats['failures'] += 1
            logger.debug(f"Bus call {url} timed out after {self.timeout}s")
            return ""
        except aiohttp.ClientError as e:
            self._stats['failures'] += 1
            logger.debug(f"Bus call {url} failed: {e}")
            return ""
        finally:
            if self.request_spacing > 0:
                await asyncio.sleep(self.request_spacing)
