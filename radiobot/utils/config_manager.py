"""Configuration manager for the radio bot."""
import logging
import os
from typing import Any, Dict, Optional
import yaml

DEFAULT_CONFIG_PATH = "config/config.yaml"


class ConfigManager:
    """
    Configuration manager for the radio bot.

    Handles loading and accessing configuration values from the config file.
    """

    def __init__(self, config_path: str = DEFAULT_CONFIG_PATH):
        """
        Initialize the ConfigManager.

        Args:
            config_path: Path to the configuration file

        Raises:
            FileNotFoundError: If the configuration file does not exist
            yaml.YAMLError: If the configuration file is not valid YAML
        """
        self.logger = logging.getLogger("radiobot.config")
        self.config_path = config_path
        self.config: Dict[str, Any] = {}

        self._load_config()

    def _load_config(self) -> None:
        """
        Load the configuration from the config file.

        Raises:
            FileNotFoundError: If the configuration file does not exist
            yaml.YAMLError: If the configuration file is not valid YAML
        """
        if not os.path.exists(self.config_path):
            example_path = f"{self.config_path}.example"
            if os.path.exists(example_path):
                self.logger.error(
                    f"Configuration file {self.config_path} not found. "
                    f"Please copy {example_path} to {self.config_path} and update it."
                )
            else:
                self.logger.error(f"Configuration file {self.config_path} not found.")
            raise FileNotFoundError(f"Configuration file {self.config_path} not found")

        try:
            with open(self.config_path, 'r', encoding='utf-8') as config_file:
                self.config = yaml.safe_load(config_file) or {}
                self.logger.debug(f"Loaded configuration from {self.config_path}")
        except yaml.YAMLError as e:
            self.logger.error(f"Error parsing configuration file: {e}")
            raise

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a configuration value.

        Args:
            key: The configuration key (dot notation for nested keys)
            default: Default value to return if the key is not found

        Returns:
            The configuration value or the default value if not found
        """
        keys = key.split('.')
        value = self.config

        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                self.logger.debug(f"Configuration key '{key}' not found, using default: {default}")
                return default

        return value

    def get_discord_token(self) -> str:
        """
        Get the Discord bot token.

        Returns:
            The Discord bot token

        Raises:
            ValueError: If the Discord bot token is not set
        """
        token = self.get('discord.token')
        if not token or token == "YOUR_DISCORD_BOT_TOKEN_HERE":
            self.logger.error("Discord bot token not set in configuration")
            raise ValueError("Discord bot token not set in configuration")
        return token

    def get_command_guild_id(self) -> Optional[int]:
        """
        Get the guild used for fast slash command sync.

        Returns:
            The guild ID, or None to sync commands globally
        """
        guild_id = self.get('discord.guild_id')
        return int(guild_id) if guild_id else None

    # Radio Configuration Methods
    def get_music_dir(self) -> str:
        """
        Get the music library directory.

        Returns:
            Path of the directory scanned for tracks
        """
        return self.get('radio.music_dir', './music')

    def get_disconnect_role_id(self) -> Optional[int]:
        """
        Get the role allowed to disconnect the bot from voice.

        Returns:
            The role ID, or None if the disconnect button is disabled
        """
        role_id = str(self.get('radio.disconnect_role_id', '') or '').strip()
        return int(role_id) if role_id else None

    def get_connect_timeout(self) -> float:
        """
        获取语音连接就绪的超时时间

        Returns:
            超时秒数
        """
        return float(self.get('radio.connect_timeout', 30))

    def get_recovery_timeout(self) -> float:
        """
        获取语音断线后的恢复等待时间

        Returns:
            超时秒数
        """
        return float(self.get('radio.recovery_timeout', 5))

    def get_panel_refresh_delay(self) -> float:
        """
        获取控制面板刷新的防抖延迟

        Returns:
            延迟秒数
        """
        return float(self.get('radio.panel_refresh_delay', 0.15))

    def get_ffmpeg_path(self) -> str:
        """
        获取 FFmpeg 可执行文件路径

        优先使用配置文件，其次是 FFMPEG_PATH 环境变量。

        Returns:
            FFmpeg 路径
        """
        return self.get('ffmpeg.path') or os.environ.get('FFMPEG_PATH') or 'ffmpeg'

    # Logging Configuration Methods
    def get_log_level(self) -> str:
        """
        Get the logging level.

        Returns:
            The logging level
        """
        return self.get('logging.level', 'INFO')

    def get_log_file(self) -> Optional[str]:
        """
        Get the log file path.

        Returns:
            The log file path or None if not set
        """
        return self.get('logging.file', None)

    def get_log_max_size(self) -> int:
        """
        Get the maximum log file size.

        Returns:
            The maximum log file size in bytes
        """
        return self.get('logging.max_size', 10485760)  # 10 MB

    def get_log_backup_count(self) -> int:
        """
        Get the number of backup log files to keep.

        Returns:
            The number of backup log files
        """
        return self.get('logging.backup_count', 5)
