"""
Slash命令模块 - 电台命令与控制面板按钮处理
"""

from .base_command import BaseSlashCommand
from .radio_commands import RadioCommands, SLASH_COMMANDS

__all__ = ["BaseSlashCommand", "RadioCommands", "SLASH_COMMANDS"]
