"""
Vellum Bridge - game server, Discord and peer server relay

Usage:
    python bot.py

Configuration lives in config/bridge.yaml (written with defaults on first
start). Environment variables, also read from .env, override it:
    BOT_TOKEN - Discord bot token
    DISCORD_CHANNEL - Id of the bridged Discord channel
    BUS_ADDRESS / BUS_PORT - Address of the bus sidecar (default: 127.0.0.1:8234)
    WORLD_NAME - Name of the local world
    LOG_LEVEL - Logging level (default: INFO)
    LOG_FILE_PATH - Log file (default: ./log.txt)
"""

import logging
import sys

# Set up basic logging first
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

logger = logging.getLogger('vellum')


def main():
    """Main entry point for the bridge"""
    try:
        logger.info("Starting Vellum bridge...")

        # Import and create the application
        from services.bridge_application import create_application

        app = create_application()

        # Run the application
        app.run_sync()

    except ImportError as e:
        logger.error(f"Failed to import required modules: {e}")
        logger.error("Make sure all dependencies are installed:")
        logger.error("  pip install -e .")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Bridge failed to start: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
