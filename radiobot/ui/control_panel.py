"""
电台控制面板 - 每个服务器一条带按钮的面板消息

提供：
- 面板内容（播放状态和当前曲目）
- 持久化按钮视图（重启后旧面板上的按钮仍然可用）
- 面板的发送、更新、删除以及防抖刷新
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional, Set

import discord

from radiobot.core.interfaces import PlayerState
from radiobot.playback.playback_engine import PlaybackEngine
from radiobot.playback.session_registry import SessionRegistry


class ControlIds:
    """按钮 custom_id"""
    PLAY = "radio:play"
    PREV = "radio:prev"
    SKIP = "radio:skip"
    STOP = "radio:stop"
    NOW = "radio:now"
    RESCAN = "radio:rescan"
    DISCONNECT = "radio:disconnect"


ButtonHandler = Callable[[discord.Interaction, str], Awaitable[None]]


def get_playback_status(engine: Optional[PlaybackEngine]) -> str:
    if engine is None:
        return "Stopped"
    status = engine.status
    if status is PlayerState.PLAYING:
        return "Playing"
    if status is PlayerState.PAUSED:
        return "Paused"
    return "Stopped"


def build_panel_content(engine: Optional[PlaybackEngine]) -> str:
    """面板消息正文"""
    now = engine.now_playing() if engine is not None else None
    now_line = f"**{now.title}**" if now else "Nothing"
    return f"📻 电台控制面板\n状态: **{get_playback_status(engine)}**\n正在播放: {now_line}"


class ControlButton(discord.ui.Button):
    """把点击转交给按钮处理器的按钮"""

    def __init__(self, action: str, handler: ButtonHandler, **kwargs):
        super().__init__(custom_id=action, **kwargs)
        self.action = action
        self.handler = handler

    async def callback(self, interaction: discord.Interaction) -> None:
        await self.handler(interaction, self.action)


class ControlPanelView(discord.ui.View):
    """
    控制面板按钮视图

    不设超时，所有按钮都有固定的 custom_id，
    因此可以通过 bot.add_view() 注册为持久化视图。
    """

    def __init__(self, handler: ButtonHandler, engine: Optional[PlaybackEngine] = None, show_disconnect: bool = False):
        """
        Args:
            handler: 按钮处理器，参数为 (interaction, custom_id)
            engine: 用于决定播放按钮标签的播放引擎
            show_disconnect: 是否显示断开按钮
        """
        super().__init__(timeout=None)

        playing = engine is not None and engine.status is PlayerState.PLAYING
        play_label = "⏸ Pause" if playing else "▶ Play"

        self.add_item(ControlButton(ControlIds.PLAY, handler, label=play_label, style=discord.ButtonStyle.success, row=0))
        self.add_item(ControlButton(ControlIds.PREV, handler, label="⏮ Prev", style=discord.ButtonStyle.primary, row=0))
        self.add_item(ControlButton(ControlIds.SKIP, handler, label="⏭ Skip", style=discord.ButtonStyle.primary, row=0))
        self.add_item(ControlButton(ControlIds.STOP, handler, label="⏹ Stop", style=discord.ButtonStyle.danger, row=0))
        self.add_item(ControlButton(ControlIds.NOW, handler, label="🎵 Now", style=discord.ButtonStyle.secondary, row=1))
        self.add_item(ControlButton(ControlIds.RESCAN, handler, label="🔄 Rescan", style=discord.ButtonStyle.secondary, row=1))
        if show_disconnect:
            self.add_item(ControlButton(
                ControlIds.DISCONNECT, handler, label="🔌 Disconnect", style=discord.ButtonStyle.danger, row=1
            ))


@dataclass
class PanelRef:
    """面板消息的位置"""
    channel_id: int
    message_id: int


class ControlPanelManager:
    """
    控制面板管理器

    每个服务器最多一条面板消息。找不到的消息或频道会被静默丢弃。
    """

    def __init__(
        self,
        client: discord.Client,
        registry: SessionRegistry,
        show_disconnect: bool = False,
        refresh_delay: float = 0.15
    ):
        """
        初始化控制面板管理器

        Args:
            client: Discord 客户端
            registry: 会话注册表
            show_disconnect: 是否显示断开按钮
            refresh_delay: 防抖刷新延迟（秒）
        """
        self.client = client
        self.registry = registry
        self.show_disconnect = show_disconnect
        self.refresh_delay = refresh_delay
        self.logger = logging.getLogger("radiobot.ui.control_panel")

        self.handler: Optional[ButtonHandler] = None
        self.panels: Dict[int, PanelRef] = {}
        self._timers: Dict[int, asyncio.TimerHandle] = {}
        self._tasks: Set[asyncio.Task] = set()

    def set_handler(self, handler: ButtonHandler) -> None:
        self.handler = handler

    def build_view(self, engine: Optional[PlaybackEngine] = None) -> ControlPanelView:
        if self.handler is None:
            raise RuntimeError("控制面板按钮处理器未设置")
        return ControlPanelView(self.handler, engine, self.show_disconnect)

    async def upsert(
        self,
        guild_id: int,
        channel: discord.abc.Messageable,
        engine: Optional[PlaybackEngine]
    ) -> Optional[discord.Message]:
        """
        更新已有的面板消息，没有时在给定频道中发送新面板

        Args:
            guild_id: 服务器ID
            channel: 发起操作的频道
            engine: 播放引擎

        Returns:
            面板消息，频道不支持发送消息时返回 None
        """
        if not isinstance(channel, discord.abc.Messageable):
            return None

        content = build_panel_content(engine)
        existing = self.panels.get(guild_id)
        if existing is not None:
            try:
                target = channel if existing.channel_id == channel.id else await self._fetch_channel(existing.channel_id)
                if isinstance(target, discord.abc.Messageable):
                    message = await target.fetch_message(existing.message_id)
                    return await message.edit(content=content, view=self.build_view(engine))
            except discord.HTTPException as e:
                self.logger.debug(f"[{guild_id}] 旧面板不可用，重新发送: {e}")
            self.panels.pop(guild_id, None)

        message = await channel.send(content=content, view=self.build_view(engine))
        self.panels[guild_id] = PanelRef(channel_id=channel.id, message_id=message.id)
        self.logger.debug(f"[{guild_id}] 控制面板已发送: {message.id}")
        return message

    async def refresh(self, guild_id: int) -> None:
        """按当前播放状态重绘面板"""
        panel = self.panels.get(guild_id)
        if panel is None:
            return
        engine = self.registry.get(guild_id)
        if engine is None:
            return

        try:
            channel = await self._fetch_channel(panel.channel_id)
            if not isinstance(channel, discord.abc.Messageable):
                self.panels.pop(guild_id, None)
                return
            message = await channel.fetch_message(panel.message_id)
            await message.edit(content=build_panel_content(engine), view=self.build_view(engine))
        except discord.HTTPException as e:
            self.logger.debug(f"[{guild_id}] 刷新面板失败，丢弃面板引用: {e}")
            self.panels.pop(guild_id, None)

    async def delete(self, guild_id: int) -> None:
        """删除面板消息并取消待执行的刷新"""
        panel = self.panels.pop(guild_id, None)
        timer = self._timers.pop(guild_id, None)
        if timer is not None:
            timer.cancel()
        if panel is None:
            return

        try:
            channel = await self._fetch_channel(panel.channel_id)
            if not isinstance(channel, discord.abc.Messageable):
                return
            message = await channel.fetch_message(panel.message_id)
            await message.delete()
            self.logger.debug(f"[{guild_id}] 控制面板已删除")
        except discord.HTTPException as e:
            self.logger.debug(f"[{guild_id}] 面板已不存在: {e}")

    def queue_refresh(self, guild_id: int, delay: Optional[float] = None) -> None:
        """防抖刷新：短时间内的多次状态变化只刷新一次"""
        previous = self._timers.pop(guild_id, None)
        if previous is not None:
            previous.cancel()

        loop = asyncio.get_running_loop()
        self._timers[guild_id] = loop.call_later(
            self.refresh_delay if delay is None else delay,
            self._run_refresh,
            guild_id
        )

    def on_state_change(self, guild_id: int, state: PlayerState) -> None:
        self.queue_refresh(guild_id)

    def on_disconnected(self, guild_id: int) -> None:
        self._spawn(self.delete(guild_id))

    async def close(self) -> None:
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    def _run_refresh(self, guild_id: int) -> None:
        self._timers.pop(guild_id, None)
        self._spawn(self.refresh(guild_id))

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            self.logger.error(f"控制面板任务失败: {task.exception()}")

    async def _fetch_channel(self, channel_id: int):
        channel = self.client.get_channel(channel_id)
        if channel is None:
            channel = await self.client.fetch_channel(channel_id)
        return channel
