"""
Vellum Bridge Application
"""

import logging
import logging.handlers
import asyncio
from pathlib import Path
from typing import Dict, Any, Optional
import discord

from core import (
    ServiceRegistry, ServiceLifetime, ConfigurationManager, BridgeConfiguration,
    EventBus, RosterManager
)
from integrations.bus import BusClient
from integrations.console import ConsoleBridge, ProcessConsole
from integrations.discord_sync import MessagingService
from integrations.essentials import ProfileService
from .relay_service import RelayRouter
from .scoreboard_service import ScoreboardService
from .reconciliation_service import ReconciliationScheduler

from dotenv import load_dotenv

logger = logging.getLogger('services.bridge_application')


class BridgeApplication:
    """
    Main bridge application that orchestrates all services.

    The game server process is the life of the bridge: when it exits the
    bridge marks the world offline, publishes the final topic and shuts down.
    """

    def __init__(self, service_registry: Optional[ServiceRegistry] = None,
                 base_path: Optional[Path] = None):
        self.service_registry = service_registry or ServiceRegistry()
        self.base_path = base_path
        self.config: Optional[BridgeConfiguration] = None
        self.client: Optional[discord.Client] = None
        self._startup_complete = False
        self._shutdown_started = False

        # Load environment variables
        load_dotenv()

        logger.info("BridgeApplication initialized")

    async def initialize(self) -> None:
        """Load configuration and construct every service"""
        try:
            logger.info("Initializing BridgeApplication services...")

            config_manager = ConfigurationManager(self.base_path)
            self.config = config_manager.load_configuration()

            self._setup_logging()

            self._register_core_services(config_manager)
            self._register_integrations()
            self._register_discord()
            self._register_relay_services()

            self._startup_complete = True
            logger.info("BridgeApplication services initialized successfully")

        except Exception as e:
            logger.error(f"Failed to initialize BridgeApplication: {e}")
            raise

    async def run(self) -> None:
        """Start the server process and the Discord connection, then wait for either to end"""
        try:
            await self.initialize()

            bus = self.service_registry.get_optional(BusClient)
            if bus is not None:
                await bus.start()

            messaging = self.service_registry.get_optional(MessagingService)
            if messaging is not None:
                await messaging.start()

            console = self.service_registry.get(ConsoleBridge)
            console.bind_loop(asyncio.get_running_loop())

            process = self.service_registry.get(ProcessConsole)
            if not await process.start(console.feed_line, console.on_server_stopped):
                raise RuntimeError(f"Could not start server: {' '.join(self.config.server_command)}")

            waiters = [asyncio.create_task(process.wait())]
            if self.client is not None:
                logger.info("Starting Discord client...")
                waiters.append(asyncio.create_task(self.client.start(self.config.discord.token)))

            done, pending = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                if task.exception() is not None:
                    logger.error(f"Bridge task failed: {task.exception()}")

            await self.shutdown()

            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        except Exception as e:
            logger.error(f"Failed to run BridgeApplication: {e}")
            await self.shutdown()
            raise

    def run_sync(self) -> None:
        """Run the bridge synchronously (for main entry point)"""
        try:
            asyncio.run(self.run())
        except KeyboardInterrupt:
            logger.info("Bridge shutdown requested")
        except Exception as e:
            logger.error(f"Bridge application error: {e}")
            raise

    async def shutdown(self) -> None:
        """Gracefully shutdown the application"""
        if self._shutdown_started:
            return
        self._shutdown_started = True

        try:
            logger.info("Shutting down BridgeApplication...")
            timeout = self.config.shutdown_timeout if self.config else 5.0

            scheduler = self.service_registry.get_optional(ReconciliationScheduler)
            if scheduler is not None:
                await scheduler.stop()

            messaging = self.service_registry.get_optional(MessagingService)
            if messaging is not None:
                messaging.topic.cancel()
                await messaging.publish_offline_topic(timeout)
                await messaging.drain(timeout)

            if self.client is not None and not self.client.is_closed():
                await self.client.close()

            if messaging is not None:
                await messaging.stop()

            bus = self.service_registry.get_optional(BusClient)
            if bus is not None:
                await bus.close()

            process = self.service_registry.get_optional(ProcessConsole)
            if process is not None:
                await process.stop(timeout)

            logger.info("BridgeApplication shutdown complete")

        except Exception as e:
            logger.error(f"Error during shutdown: {e}")

    def _register_core_services(self, config_manager: ConfigurationManager) -> None:
        """Register core infrastructure services"""
        try:
            self.service_registry.register_instance(ServiceRegistry, self.service_registry)
            self.service_registry.register_instance(ConfigurationManager, config_manager)
            self.service_registry.register(EventBus, lifetime=ServiceLifetime.SINGLETON)
            self.service_registry.register(RosterManager, lifetime=ServiceLifetime.SINGLETON)

            logger.debug("Core services registered")

        except Exception as e:
            logger.error(f"Failed to register core services: {e}")
            raise

    def _register_integrations(self) -> None:
        """Register the console, bus and profile integrations"""
        try:
            self.service_registry.register_instance(
                ProcessConsole, ProcessConsole(self.config.server_command)
            )

            if self.config.server_sync.enabled:
                self.service_registry.register(BusClient, lifetime=ServiceLifetime.SINGLETON)

            self._register_optional(ProfileService)

            self.service_registry.register(ConsoleBridge, lifetime=ServiceLifetime.SINGLETON)
            self.service_registry.get(ConsoleBridge)

            logger.debug("Integrations registered")

        except Exception as e:
            logger.error(f"Failed to register integrations: {e}")
            raise

    def _register_discord(self) -> None:
        """Create the Discord client and messaging service when configured"""
        discord_config = self.config.discord
        if not discord_config.enabled:
            logger.info("Discord sync disabled")
            return

        if not discord_config.token:
            logger.warning("Discord sync enabled but no BOT_TOKEN set - running without Discord")
            return

        try:
            intents = discord.Intents.default()
            intents.message_content = True
            intents.members = True

            client = discord.Client(intents=intents)
            self.service_registry.register_instance(discord.Client, client)
            self.service_registry.register(MessagingService, lifetime=ServiceLifetime.SINGLETON)
            self.service_registry.get(MessagingService)
            self.client = client

            logger.info(f"Discord client created for channel {discord_config.channel_id}")

        except Exception as e:
            logger.error(f"Failed to initialize Discord - running without Discord: {e}")
            self.client = None

    def _register_relay_services(self) -> None:
        """Register the router, scoreboards and reconciliation"""
        self.service_registry.register(RelayRouter, lifetime=ServiceLifetime.SINGLETON)
        self.service_registry.get(RelayRouter)

        if self.config.server_sync.enabled:
            self._register_optional(ScoreboardService)

        self.service_registry.register(ReconciliationScheduler, lifetime=ServiceLifetime.SINGLETON)
        self.service_registry.get(ReconciliationScheduler)

    def _register_optional(self, service_type) -> None:
        """Construct an optional service, unregistering it when construction fails"""
        try:
            self.service_registry.register(service_type, lifetime=ServiceLifetime.SINGLETON)
            self.service_registry.get(service_type)
        except Exception as e:
            logger.error(f"{service_type.__name__} unavailable: {e}")
            self.service_registry.unregister(service_type)

    def _setup_logging(self) -> None:
        """Set up logging configuration"""
        try:
            root_logger = logging.getLogger()
            root_logger.setLevel(self.config.log_level)
            logging.getLogger('discord').setLevel(self.config.log_level)

            # Set specific loggers to INFO to reduce noise
            logging.getLogger('discord.http').setLevel(logging.INFO)
            logging.getLogger('discord.gateway').setLevel(logging.INFO)

            formatter = logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
            )

            if self.config.log_file_path:
                log_path = Path(self.config.log_file_path)
                log_path.parent.mkdir(parents=True, exist_ok=True)
                file_handler = logging.handlers.RotatingFileHandler(
                    filename=log_path,
                    encoding='utf-8',
                    maxBytes=self.config.log_max_bytes,
                    backupCount=self.config.log_backup_count
                )
                file_handler.setFormatter(formatter)
                root_logger.addHandler(file_handler)

            logger.debug("Logging configured")

        except Exception as e:
            logger.error(f"Failed to setup logging: {e}")
            # Don't raise - logging setup failure shouldn't stop the bridge

    def get_service_stats(self) -> Dict[str, Any]:
        """Get statistics about all registered services"""
        try:
            registered_services = self.service_registry.get_registered_services()

            service_stats = {}
            for service_type, service_def in registered_services.items():
                service_stats[service_type.__name__] = {
                    'lifetime': service_def.lifetime.value,
                    'has_instance': service_def.instance is not None
                }

            roster_manager = self.service_registry.get_optional(RosterManager)
            return {
                'total_services': len(registered_services),
                'startup_complete': self._startup_complete,
                'discord_ready': self.client is not None and self.client.is_ready(),
                'rosters': roster_manager.get_roster_stats() if roster_manager else {},
                'services': service_stats
            }

        except Exception as e:
            logger.error(f"Failed to get service stats: {e}")
            return {
                'total_services': 0,
                'startup_complete': False,
                'error': str(e)
            }


# Factory function for creating the application
def create_application(base_path: Optional[Path] = None) -> BridgeApplication:
    """Create and configure a new BridgeApplication instance"""
    service_registry = ServiceRegistry()
    return BridgeApplication(service_registry, base_path)
