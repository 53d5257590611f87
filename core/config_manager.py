"""
Configuration Management for the Vellum bridge
"""

import os
import logging
from pathlib import Path
from typing import Dict, Any, List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

logger = logging.getLogger('core.config_manager')


class ConfigurationError(Exception):
    """Raised when configuration is invalid or unreadable"""
    pass


class MessageTemplates(BaseModel):
    """
    Text templates relayed between channels.

    All templates use positional ``str.format`` placeholders:

    - chat: {0} server, {1} player, {2} text, {3} prefix, {4} postfix
    - player_join / player_leave: {0} server, {1} player, {2} prefix, {3} postfix
    - server_up / server_down: {0} server
    - from_discord: {0} source label, {1} author, {2} text
    - topic: {0} local player count, {1} player slots
    - multi_topic: {0} players across the network, {1} online servers
    """

    chat: str = "(§6{0}§r) <{3}{1}{4}> {2}"
    player_join: str = "(§6{0}§r) {2}{1}{3} Connected"
    player_leave: str = "(§6{0}§r) {2}{1}{3} Left"
    server_up: str = "(§6{0}§r): §aOnline§r"
    server_down: str = "(§6{0}§r): §cOffline§r"
    from_discord: str = "(§d{0}§r) [§b{1}§r] {2}"
    topic: str = "{0}/{1} players online"
    multi_topic: str = "{0} players online across {1} servers"
    offline_topic: str = " "


class DiscordSyncConfig(BaseModel):
    """Chat platform settings"""

    enabled: bool = False
    token: str = ""
    channel_id: int = 0
    mentions: bool = True
    latin_only: bool = False
    char_limit: int = 0
    drop_unresolved_mentions: bool = False
    send_delay: float = 1.0
    topic_cooldown: float = 300.0
    playing: str = "Minecraft"

    @field_validator('char_limit')
    @classmethod
    def validate_char_limit(cls, v):
        if v < 0:
            raise ValueError('char_limit must be 0 (unlimited) or positive')
        return v

    @field_validator('send_delay', 'topic_cooldown')
    @classmethod
    def validate_delays(cls, v):
        if v < 0:
            raise ValueError('delays must not be negative')
        return v


class ServerSyncConfig(BaseModel):
    """Bus settings for a network of peer servers"""

    enabled: bool = False
    discord_controller: bool = False
    other_servers: List[str] = Field(default_factory=list)
    bus_address: str = "127.0.0.1"
    bus_port: int = 8234
    bus_timeout: float = 3.0
    request_spacing: float = 0.2
    display_online_list: bool = True
    online_list_scoreboard: str = "Online"
    server_list_scoreboard: str = "Servers"
    reconcile_interval: float = 60.0
    relay_peer_presence: bool = False

    @field_validator('bus_port')
    @classmethod
    def validate_port(cls, v):
        if not 0 < v < 65536:
            raise ValueError('bus_port must be between 1 and 65535')
        return v

    @field_validator('reconcile_interval', 'bus_timeout')
    @classmethod
    def validate_positive(cls, v):
        if v <= 0:
            raise ValueError('must be greater than zero')
        return v


class BridgeConfiguration(BaseModel):
    """Main bridge configuration model with pydantic validation"""

    world_name: str = "Bedrock level"
    server_command: List[str] = Field(default_factory=lambda: ["./bedrock_server"])
    command_prefix: str = "."
    player_conn_messages: bool = True
    server_status_messages: bool = True
    user_db: str = "./user.db"
    essentials_db: str = "./essentials.db"
    shutdown_timeout: float = 5.0

    # Logging
    log_level: str = "INFO"
    log_file_path: str = "./log.txt"
    log_max_bytes: int = 32 * 1024 * 1024
    log_backup_count: int = 5

    discord: DiscordSyncConfig = Field(default_factory=DiscordSyncConfig)
    server_sync: ServerSyncConfig = Field(default_factory=ServerSyncConfig)
    templates: MessageTemplates = Field(default_factory=MessageTemplates)

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v):
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f'log_level must be one of {valid_levels}')
        return v.upper()

    @property
    def is_topic_authority(self) -> bool:
        """False for a non-controller member of a synced network"""
        return not self.server_sync.enabled or self.server_sync.discord_controller


class ConfigurationManager:
    """
    Loads the bridge configuration.

    Order of precedence, lowest first: model defaults, ``config/bridge.yaml``,
    environment variables (after ``.env`` has been loaded by the application).
    A missing YAML file is created from the defaults so operators can edit
    every setting.
    """

    # environment variable -> dotted config key
    ENV_MAPPINGS = {
        'BOT_TOKEN': 'discord.token',
        'DISCORD_CHANNEL': 'discord.channel_id',
        'BUS_ADDRESS': 'server_sync.bus_address',
        'BUS_PORT': 'server_sync.bus_port',
        'WORLD_NAME': 'world_name',
        'LOG_LEVEL': 'log_level',
        'LOG_FILE_PATH': 'log_file_path',
    }

    def __init__(self, base_path: Optional[Path] = None, config_name: str = "bridge.yaml"):
        self.base_path = base_path or Path.cwd()
        self.config_dir = self.base_path / "config"
        self.config_path = self.config_dir / config_name
        self._configuration: Optional[BridgeConfiguration] = None

        logger.info(f"ConfigurationManager initialized with {self.config_path}")

    def load_configuration(self) -> BridgeConfiguration:
        """
        Load and validate configuration from all sources.

        Returns:
            Validated configuration object

        Raises:
            ConfigurationError: If the file is unreadable or a value is invalid
        """
        if not self.config_path.exists():
            self.write_defaults()

        config_data = self._load_yaml_file(self.config_path)
        config_data = self._apply_environment_variables(config_data)

        try:
            self._configuration = BridgeConfiguration(**config_data)
        except ValidationError as e:
            logger.error(f"Invalid configuration in {self.config_path}: {e}")
            raise ConfigurationError(f"Invalid configuration: {e}") from e

        logger.info("Configuration loaded successfully")
        return self._configuration

    def get_configuration(self) -> BridgeConfiguration:
        """Get current configuration, loading if necessary"""
        if self._configuration is None:
            return self.load_configuration()
        return self._configuration

    def reload_configuration(self) -> BridgeConfiguration:
        self._configuration = None
        return self.load_configuration()

    def write_defaults(self) -> None:
        """Persist the default configuration so every tunable is visible"""
        try:
            self.config_dir.mkdir(parents=True, exist_ok=True)
            with open(self.config_path, 'w', encoding='utf-8') as f:
                yaml.safe_dump(
                    BridgeConfiguration().model_dump(),
                    f,
                    allow_unicode=True,
                    sort_keys=False
                )
            logger.info(f"Wrote default configuration to {self.config_path}")
        except OSError as e:
            logger.error(f"Failed to write default configuration: {e}")

    def _load_yaml_file(self, path: Path) -> Dict[str, Any]:
        if not path.exists():
            return {}

        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Failed to read {path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"{path} must contain a mapping at the top level")

        logger.debug(f"Loaded configuration from {path}")
        return data

    def _apply_environment_variables(self, config_data: Dict[str, Any]) -> Dict[str, Any]:
        """Apply environment variable overrides; pydantic coerces the strings"""
        for env_var, dotted_key in self.ENV_MAPPINGS.items():
            env_value = os.getenv(env_var)
            if env_value is None:
                continue
            config_data = self._deep_merge(config_data, self._nest(dotted_key, env_value))
            logger.debug(f"Applied environment variable {env_var} -> {dotted_key}")
        return config_data

    @staticmethod
    def _nest(dotted_key: str, value: Any) -> Dict[str, Any]:
        result: Dict[str, Any] = {}
        node = result
        parts = dotted_key.split('.')
        for part in parts[:-1]:
            node = node.setdefault(part, {})
        node[parts[-1]] = value
        return result

    def _deep_merge(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge two dictionaries"""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result
