"""
电台命令实现

处理电台相关的Slash命令和控制面板按钮：
- 加入语音频道、开始/继续播放
- 跳过、上一首、停止
- 控制面板、当前曲目、重新扫描曲库
"""

from typing import Optional

import discord
from discord import app_commands

from radiobot.core.interfaces import PlayerState, display_name
from radiobot.library.library import Library
from radiobot.playback.playback_engine import PlaybackEngine
from radiobot.playback.session_registry import SessionRegistry
from radiobot.ui.control_panel import ControlIds, ControlPanelManager
from radiobot.utils.config_manager import ConfigManager
from .base_command import BaseSlashCommand

SLASH_COMMANDS = {
    "join": "加入你当前所在的语音频道",
    "radio": "开始或继续播放本地电台",
    "stop": "停止播放",
    "skip": "跳过当前曲目",
    "prev": "播放上一首曲目",
    "panel": "发送或刷新电台控制面板",
    "now": "显示正在播放的曲目",
    "rescan": "重新扫描本地音乐目录",
}


def _with_reason(message: str, engine: PlaybackEngine) -> str:
    reason = engine.get_last_error()
    return f"{message} 原因: {reason}" if reason else message


def has_role(member: Optional[discord.abc.User], role_id: Optional[int]) -> bool:
    if member is None or role_id is None:
        return False
    return any(role.id == role_id for role in getattr(member, "roles", []))


class RadioCommands(BaseSlashCommand):
    """
    电台命令处理器

    Slash命令和面板按钮共用同一组播放引擎操作。
    """

    def __init__(
        self,
        config: ConfigManager,
        registry: SessionRegistry,
        library: Library,
        panel_manager: ControlPanelManager
    ):
        """
        初始化电台命令

        Args:
            config: 配置管理器
            registry: 会话注册表
            library: 本地曲库
            panel_manager: 控制面板管理器
        """
        super().__init__(config)
        self.registry = registry
        self.library = library
        self.panel_manager = panel_manager
        self.disconnect_role_id = config.get_disconnect_role_id()

        self.logger.debug("电台命令已初始化")

    def register(self, tree: app_commands.CommandTree, guild: Optional[discord.abc.Snowflake] = None) -> None:
        """
        把电台命令注册到命令树

        Args:
            tree: 命令树
            guild: 只注册到该服务器，None 表示全局命令
        """
        for name, description in SLASH_COMMANDS.items():
            tree.command(name=name, description=description, guild=guild)(self._make_callback(name))
        self.logger.info(f"已注册 {len(SLASH_COMMANDS)} 个电台命令")

    def _make_callback(self, name: str):
        async def callback(interaction: discord.Interaction) -> None:
            await self.execute(interaction, name)
        callback.__name__ = f"radio_{name}"
        return callback

    async def execute(self, interaction: discord.Interaction, name: str) -> None:
        """
        执行Slash命令

        Args:
            interaction: Discord交互对象
            name: 命令名
        """
        if not await self.check_prerequisites(interaction):
            return

        handler = getattr(self, f"_command_{name}", None)
        if handler is None:
            await self.safe_respond(interaction, "❌ 未知命令", ephemeral=True)
            return

        engine = self.registry.get_or_create(interaction.guild.id)
        self.logger.debug(f"/{name} - 用户: {interaction.user.display_name}, 服务器: {interaction.guild.id}")
        try:
            await handler(interaction, engine)
        except Exception as e:
            await self.handle_command_error(interaction, f"/{name}", e)

    async def handle_button(self, interaction: discord.Interaction, action: str) -> None:
        """
        处理控制面板按钮

        Args:
            interaction: Discord交互对象
            action: 按钮 custom_id
        """
        if not await self.check_prerequisites(interaction):
            return

        engine = self.registry.get_or_create(interaction.guild.id)
        self.logger.debug(f"按钮 {action} - 用户: {interaction.user.display_name}, 服务器: {interaction.guild.id}")
        try:
            await self._dispatch_button(interaction, engine, action)
        except Exception as e:
            await self.handle_command_error(interaction, action, e)

    async def sync_panel(self, interaction: discord.Interaction, engine: PlaybackEngine) -> None:
        """在当前频道发送或更新控制面板，失败不影响命令本身"""
        try:
            await self.panel_manager.upsert(interaction.guild.id, interaction.channel, engine)
        except discord.HTTPException as e:
            self.logger.warning(f"更新控制面板失败: {e}")

    # Slash命令

    async def _command_join(self, interaction: discord.Interaction, engine: PlaybackEngine) -> None:
        channel = self.get_member_voice_channel(interaction)
        if channel is None:
            await self.safe_respond(interaction, "❌ 请先加入一个语音频道", ephemeral=True)
            return

        await self.defer(interaction)
        await engine.join(channel)
        await self.sync_panel(interaction, engine)
        await self.safe_respond(interaction, f"🔊 已加入 **{channel.name}**，控制面板已更新")

    async def _command_radio(self, interaction: discord.Interaction, engine: PlaybackEngine) -> None:
        channel = None
        if engine.connection is None:
            channel = self.get_member_voice_channel(interaction)
            if channel is None:
                await self.safe_respond(interaction, "❌ 请先加入一个语音频道，或使用 /join", ephemeral=True)
                return

        await self.defer(interaction)
        if channel is not None:
            await engine.join(channel)

        track = await engine.play_or_resume()
        if not track:
            await self.safe_respond(
                interaction,
                _with_reason("❌ 没有可播放的曲目。请添加音乐文件后使用 /rescan。", engine)
            )
            return

        await self.sync_panel(interaction, engine)
        await self.safe_respond(interaction, f"📻 电台已开启: **{display_name(track)}**，控制面板已更新")

    async def _command_panel(self, interaction: discord.Interaction, engine: PlaybackEngine) -> None:
        await self.defer(interaction)
        await self.sync_panel(interaction, engine)
        await self.safe_respond(interaction, "✅ 控制面板已在此频道发送/更新")

    async def _command_stop(self, interaction: discord.Interaction, engine: PlaybackEngine) -> None:
        engine.stop()
        await self.sync_panel(interaction, engine)
        await self.safe_respond(interaction, "⏹ 播放已停止")

    async def _command_skip(self, interaction: discord.Interaction, engine: PlaybackEngine) -> None:
        skipped = await engine.skip()
        if not skipped:
            await self.safe_respond(interaction, "❌ 当前没有可以跳过的曲目", ephemeral=True)
            return

        await self.sync_panel(interaction, engine)
        await self.safe_respond(interaction, f"⏭ 已跳过: **{display_name(skipped)}**")

    async def _command_prev(self, interaction: discord.Interaction, engine: PlaybackEngine) -> None:
        previous = await engine.prev()
        if not previous:
            await self.safe_respond(interaction, _with_reason("❌ 没有可以返回的上一首。", engine), ephemeral=True)
            return

        await self.sync_panel(interaction, engine)
        await self.safe_respond(interaction, f"⏮ 回到: **{display_name(previous)}**")

    async def _command_now(self, interaction: discord.Interaction, engine: PlaybackEngine) -> None:
        now = engine.now_playing()
        await self.sync_panel(interaction, engine)
        await self.safe_respond(interaction, f"🎶 正在播放: **{now.title}**" if now else "当前没有正在播放的曲目")

    async def _command_rescan(self, interaction: discord.Interaction, engine: PlaybackEngine) -> None:
        await self.defer(interaction)
        tracks = await self.library.scan()
        await self.sync_panel(interaction, engine)
        await self.safe_respond(interaction, f"🔄 曲库已重新扫描，共找到 **{len(tracks)}** 首曲目")

    # 面板按钮

    async def _dispatch_button(self, interaction: discord.Interaction, engine: PlaybackEngine, action: str) -> None:
        if action == ControlIds.PLAY:
            await self._button_play(interaction, engine)
        elif action == ControlIds.SKIP:
            skipped = await engine.skip()
            if not skipped:
                await self.safe_respond(interaction, "❌ 当前没有可以跳过的曲目", ephemeral=True)
                return
            await self.sync_panel(interaction, engine)
            await self.safe_respond(interaction, f"⏭ 已跳过: **{display_name(skipped)}**", ephemeral=True)
        elif action == ControlIds.PREV:
            previous = await engine.prev()
            if not previous:
                await self.safe_respond(interaction, _with_reason("❌ 没有可以返回的上一首。", engine), ephemeral=True)
                return
            await self.sync_panel(interaction, engine)
            await self.safe_respond(interaction, f"⏮ 回到: **{display_name(previous)}**", ephemeral=True)
        elif action == ControlIds.STOP:
            engine.stop()
            await self.sync_panel(interaction, engine)
            await self.safe_respond(interaction, "⏹ 播放已停止", ephemeral=True)
        elif action == ControlIds.NOW:
            now = engine.now_playing()
            await self.sync_panel(interaction, engine)
            await self.safe_respond(
                interaction,
                f"🎶 正在播放: **{now.title}**" if now else "当前没有正在播放的曲目",
                ephemeral=True
            )
        elif action == ControlIds.RESCAN:
            tracks = await self.library.scan()
            await self.sync_panel(interaction, engine)
            await self.safe_respond(interaction, f"🔄 曲库已重新扫描，共找到 **{len(tracks)}** 首曲目", ephemeral=True)
        elif action == ControlIds.DISCONNECT:
            await self._button_disconnect(interaction, engine)
        else:
            self.logger.warning(f"未知的按钮: {action}")

    async def _button_play(self, interaction: discord.Interaction, engine: PlaybackEngine) -> None:
        if engine.connection is None:
            channel = self.get_member_voice_channel(interaction)
            if channel is None:
                await self.safe_respond(interaction, "❌ 请先加入一个语音频道", ephemeral=True)
                return
            await self.defer(interaction)
            await engine.join(channel)

        if engine.player_state in (PlayerState.PLAYING, PlayerState.BUFFERING):
            engine.pause()
            await self.sync_panel(interaction, engine)
            await self.safe_respond(interaction, "⏸ 已暂停", ephemeral=True)
            return

        if engine.player_state is PlayerState.PAUSED:
            engine.resume()
            await self.sync_panel(interaction, engine)
            await self.safe_respond(interaction, "▶ 已继续播放", ephemeral=True)
            return

        track = await engine.play_or_resume()
        if not track:
            await self.safe_respond(
                interaction,
                _with_reason("❌ 没有可播放的曲目。请添加音乐文件后使用 /rescan。", engine),
                ephemeral=True
            )
            return

        await self.sync_panel(interaction, engine)
        await self.safe_respond(interaction, f"📻 电台已开启: **{display_name(track)}**", ephemeral=True)

    async def _button_disconnect(self, interaction: discord.Interaction, engine: PlaybackEngine) -> None:
        if self.disconnect_role_id is None:
            await self.safe_respond(interaction, "❌ 未配置断开权限角色（radio.disconnect_role_id）", ephemeral=True)
            return

        if not has_role(interaction.user, self.disconnect_role_id):
            await self.safe_respond(interaction, "❌ 你没有断开机器人的权限", ephemeral=True)
            return

        if engine.connection is None:
            await self.safe_respond(interaction, "❌ 机器人当前不在语音频道中", ephemeral=True)
            return

        await engine.leave()
        await self.safe_respond(interaction, "🔌 机器人已断开语音连接", ephemeral=True)
