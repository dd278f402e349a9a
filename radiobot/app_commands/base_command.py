"""
基础Slash命令类

提供所有电台命令的通用功能：
- 统一的错误处理
- 过期交互的容错回复
- 语音频道检查
"""

import logging
from typing import Optional

import discord

from radiobot.core.errors import RadioError
from radiobot.utils.config_manager import ConfigManager

UNKNOWN_INTERACTION = 10062


class BaseSlashCommand:
    """
    电台命令的基础类

    提供通用功能和标准化的回复流程
    """

    def __init__(self, config: ConfigManager):
        """
        初始化基础命令

        Args:
            config: 配置管理器
        """
        self.config = config
        self.logger = logging.getLogger(f"radiobot.app_commands.{self.__class__.__name__}")

    async def check_prerequisites(self, interaction: discord.Interaction) -> bool:
        """
        检查命令执行的前置条件

        Returns:
            True if prerequisites are met, False otherwise
        """
        if interaction.guild is None:
            await self.safe_respond(interaction, "❌ 此机器人只能在服务器中使用", ephemeral=True)
            return False
        return True

    def get_member_voice_channel(self, interaction: discord.Interaction) -> Optional[discord.VoiceChannel]:
        """获取用户所在的普通语音频道（不含舞台频道）"""
        voice = getattr(interaction.user, "voice", None)
        channel = getattr(voice, "channel", None)
        if isinstance(channel, discord.VoiceChannel):
            return channel
        return None

    async def safe_respond(
        self,
        interaction: discord.Interaction,
        content: str,
        ephemeral: bool = False
    ) -> None:
        """
        回复交互，交互令牌过期时只记录警告

        Args:
            interaction: Discord交互对象
            content: 消息内容
            ephemeral: 是否为私密消息
        """
        try:
            if interaction.response.is_done():
                await interaction.followup.send(content, ephemeral=ephemeral)
            else:
                await interaction.response.send_message(content, ephemeral=ephemeral)
        except discord.NotFound as e:
            if e.code == UNKNOWN_INTERACTION:
                self.logger.warning("无法回复：交互令牌已失效")
                return
            raise

    async def defer(self, interaction: discord.Interaction) -> None:
        if not interaction.response.is_done():
            await interaction.response.defer(ephemeral=True, thinking=True)

    async def handle_command_error(
        self,
        interaction: discord.Interaction,
        action: str,
        error: Exception
    ) -> None:
        """
        处理命令执行错误

        RadioError 的消息直接展示给用户，其他错误只记录日志。

        Args:
            interaction: Discord交互对象
            action: 命令名或按钮ID
            error: 异常对象
        """
        if isinstance(error, RadioError):
            self.logger.warning(f"{action} 失败 - 用户: {interaction.user.display_name}, 原因: {error}")
            message = f"❌ {error}"
        else:
            self.logger.error(
                f"{action} 执行错误 - 用户: {interaction.user.display_name}, 错误: {error}",
                exc_info=True
            )
            message = "❌ 操作失败，请查看机器人日志"

        try:
            await self.safe_respond(interaction, message, ephemeral=True)
        except discord.HTTPException as e:
            self.logger.error(f"发送错误响应失败: {e}")
