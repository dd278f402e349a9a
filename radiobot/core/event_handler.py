"""电台机器人事件处理器。"""
import logging
from typing import Optional

import discord
from discord.ext import commands

from radiobot.playback.session_registry import SessionRegistry


class EventHandler:
    """
    电台机器人事件处理器。

    管理机器人生命周期事件，并把机器人自身的语音状态变化转交给对应的播放会话。
    """

    def __init__(self, bot: commands.Bot, registry: SessionRegistry):
        """
        初始化事件处理器。

        Args:
            bot: Discord 机器人实例
            registry: 会话注册表
        """
        self.logger = logging.getLogger("radiobot.events")
        self.bot = bot
        self.registry = registry

        self._register_events()

    def _register_events(self) -> None:
        """注册 Discord 事件处理器。"""
        self.bot.add_listener(self._on_ready, "on_ready")
        self.bot.add_listener(self.on_voice_state_update, "on_voice_state_update")
        self.logger.debug("事件处理器注册完成")

    async def _on_ready(self) -> None:
        """处理机器人就绪事件。"""
        if self.bot.user is None:
            self.logger.error("机器人用户在 on_ready 事件中为 None")
            return

        self.logger.info(f"📻 电台机器人已就绪。登录为 {self.bot.user.name} ({self.bot.user.id})")

        activity = discord.Activity(type=discord.ActivityType.listening, name="📻 /radio")
        await self.bot.change_presence(activity=activity)

    async def on_voice_state_update(
        self,
        member: discord.Member,
        before: discord.VoiceState,
        after: discord.VoiceState
    ) -> None:
        """只关心机器人自己：被踢出、被移动或重新连上"""
        if self.bot.user is None or member.id != self.bot.user.id:
            return

        engine = self.registry.get(member.guild.id)
        if engine is None:
            return

        channel: Optional[discord.abc.Connectable] = after.channel
        self.logger.debug(
            f"[{member.guild.id}] 机器人语音状态: "
            f"{getattr(before.channel, 'id', None)} -> {getattr(channel, 'id', None)}"
        )
        engine.handle_voice_state(channel)
