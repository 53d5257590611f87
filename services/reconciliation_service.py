"""
Reconciliation Scheduler for the Vellum bridge

Console join/leave lines and bus answers can be missed, so rosters are
periodically replaced with what the servers themselves report.
"""

import logging
import asyncio
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional, Tuple
from discord.ext import tasks

from core import (
    ServiceRegistry, ConfigurationManager, EventBus, RosterManager, ServerRoster,
    Event, ServerStatusEvent, SERVER_ONLINE, BUS_COMMAND_SUPPORT
)
from integrations.bus import BusClient, parse_command_result
from integrations.console import ConsoleBridge
from .scoreboard_service import ScoreboardService

logger = logging.getLogger('services.reconciliation_service')


@dataclass
class ReconciliationReport:
    """Outcome of one reconciliation pass"""
    skipped: bool = False
    changed: bool = False
    peers_checked: int = 0
    failed_peers: List[str] = field(default_factory=list)
    local_refreshed: bool = False


class ReconciliationScheduler:
    """
    Runs a reconciliation pass on a fixed interval.

    Peers are queried concurrently so one slow peer costs at most one bus
    timeout. A pass requested while another is running is skipped, not queued.
    """

    def __init__(self, service_registry: ServiceRegistry):
        self.service_registry = service_registry
        self.config = service_registry.get(ConfigurationManager).get_configuration()
        self.event_bus = service_registry.get(EventBus)
        self.roster_manager = service_registry.get(RosterManager)
        self.console = service_registry.get(ConsoleBridge)
        self.bus = service_registry.get_optional(BusClient)
        self.scoreboard = service_registry.get_optional(ScoreboardService)

        self.interval = self.config.server_sync.reconcile_interval
        self.is_running = False
        self._pass_running = False
        self._stats = {
            'passes': 0,
            'skipped_passes': 0,
            'peer_failures': 0
        }

        self.event_bus.subscribe(
            SERVER_ONLINE, self._on_server_online,
            handler_id='reconciliation_start',
            filter_func=lambda event: isinstance(event, ServerStatusEvent) and event.local
        )
        self.event_bus.subscribe(BUS_COMMAND_SUPPORT, self._on_command_support, handler_id='reconciliation_bus')

        logger.info("ReconciliationScheduler initialized")

    async def start(self) -> None:
        """Start the periodic pass"""
        try:
            if self.is_running:
                logger.debug("Reconciliation already running")
                return

            self.is_running = True
            self.reconcile_loop.change_interval(seconds=self.interval)
            self.reconcile_loop.start()

            logger.info(f"Roster reconciliation started every {self.interval}s")

        except Exception as e:
            self.is_running = False
            logger.error(f"Failed to start reconciliation: {e}")
            raise

    async def stop(self) -> None:
        """Stop the periodic pass"""
        try:
            if not self.is_running:
                return

            self.is_running = False
            if self.reconcile_loop.is_running():
                self.reconcile_loop.cancel()

            logger.info("Roster reconciliation stopped")

        except Exception as e:
            logger.error(f"Error stopping reconciliation: {e}")

    @tasks.loop(seconds=60)
    async def reconcile_loop(self):
        try:
            await self.run_pass()
        except Exception as e:
            logger.error(f"Unhandled error in reconciliation loop: {e}")

    async def run_pass(self) -> ReconciliationReport:
        """
        Refresh peers over the bus, then the local server.

        Returns:
            A report of what was checked and what changed
        """
        if self._pass_running:
            self._stats['skipped_passes'] += 1
            logger.debug("Reconciliation pass already in progress, skipping")
            return ReconciliationReport(skipped=True)

        self._pass_running = True
        report = ReconciliationReport()
        try:
            if self.bus is not None and self.config.server_sync.enabled:
                await self.refresh_bus(report)

            try:
                report.changed = await self.console.refresh_local_roster() or report.changed
                report.local_refreshed = True
            except Exception as e:
                logger.error(f"Local roster refresh failed: {e}")

            self._stats['passes'] += 1
            return report

        finally:
            self._pass_running = False

    async def refresh_bus(self, report: Optional[ReconciliationReport] = None) -> ReconciliationReport:
        """Query every peer's roster and apply the answers"""
        report = report or ReconciliationReport()
        peers = self.roster_manager.peers()

        results = await asyncio.gather(
            *(self._refresh_peer(peer) for peer in peers),
            return_exceptions=True
        )

        peer_counts: Dict[str, Optional[int]] = {}
        for peer, result in zip(peers, results):
            report.peers_checked += 1
            if isinstance(result, BaseException):
                logger.error(f"[{peer.name}]: Refresh failed: {result}")
                report.failed_peers.append(peer.name)
                peer_counts[peer.name] = None
                continue

            answered, changed = result
            if not answered:
                report.failed_peers.append(peer.name)
            report.changed = report.changed or changed
            peer_counts[peer.name] = peer.player_count if answered else None

        self._stats['peer_failures'] += len(report.failed_peers)
        if report.failed_peers:
            logger.info(f"{len(report.failed_peers)} of {len(peers)} peers did not answer")

        if self.scoreboard is not None:
            await self.scoreboard.publish_network_roster(
                peer_counts, self.roster_manager.all_player_names()
            )

        return report

    async def _refresh_peer(self, peer: ServerRoster) -> Tuple[bool, bool]:
        """
        Returns:
            (answered, changed) for one peer
        """
        result = await self.bus.execute_command(peer.name, "list")
        if not result:
            changed = False
            if peer.online:
                logger.info(f"[{peer.name}]: No answer on the bus, marking offline")
                changed = await peer.mark_offline()
            return False, changed

        info = parse_command_result(result)
        if info is None:
            # Unreadable answer counts as no data; the peer keeps its state
            logger.warning(f"[{peer.name}]: Unreadable roster answer: {result[:200]!r}")
            return True, False

        changed = await peer.apply_bus_info(info.player_list, info.max_players)
        return True, changed

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self._stats,
            'interval': self.interval,
            'running': self.is_running,
            'pass_in_progress': self._pass_running
        }

    async def _on_server_online(self, event: Event) -> None:
        await self.start()

    async def _on_command_support(self, event: Event) -> None:
        await self.run_pass()
