"""
连接管理器 - 管理单个会话的语音连接生命周期

负责加入、离开语音频道，以及意外断线后的自动恢复：
断线时同时等待"重新协商"和"重新连接"两条路径，
任意一条在限定时间内完成即视为短暂抖动，否则视为真正掉线。
"""

import asyncio
import logging
from typing import Callable, Optional

import discord

from radiobot.core.errors import ConnectTimeout, PermissionDenied, RadioError, TransportError
from radiobot.core.interfaces import ConnectionStatus
from .voice_link import VoiceLink

LinkFactory = Callable[[discord.abc.Connectable], VoiceLink]
DisconnectObserver = Callable[[int], None]


class ConnectionManager:
    """
    单个服务器会话的语音连接管理器

    会话独占自己的连接；不会留下半开的连接引用。
    """

    def __init__(
        self,
        guild_id: int,
        link_factory: LinkFactory,
        connect_timeout: float = 30.0,
        recovery_timeout: float = 5.0,
        on_disconnected: Optional[DisconnectObserver] = None
    ):
        """
        初始化连接管理器

        Args:
            guild_id: 服务器ID
            link_factory: 根据语音频道创建语音链路的工厂
            connect_timeout: 连接就绪的超时时间（秒）
            recovery_timeout: 每条恢复路径的超时时间（秒）
            on_disconnected: 连接 -> 断开转换时的回调，参数为服务器ID
        """
        self.guild_id = guild_id
        self.link_factory = link_factory
        self.connect_timeout = connect_timeout
        self.recovery_timeout = recovery_timeout
        self.on_disconnected = on_disconnected
        self.logger = logging.getLogger("radiobot.playback.connection")

        self.connection: Optional[VoiceLink] = None
        self.channel_id: Optional[int] = None
        self._recovery_task: Optional[asyncio.Task] = None

    @property
    def is_connected(self) -> bool:
        return self.connection is not None

    async def join(self, channel: discord.abc.Connectable) -> VoiceLink:
        """
        加入语音频道并等待连接就绪

        Args:
            channel: 目标语音频道

        Returns:
            就绪的语音链路

        Raises:
            PermissionDenied: 缺少连接或发言权限
            ConnectTimeout: 连接未能在限定时间内就绪
            TransportError: 连接建立失败
        """
        self._check_permissions(channel)

        if self.connection is not None:
            if self.channel_id == channel.id:
                self.logger.debug(f"[{self.guild_id}] 已在频道 {channel.id} 中")
                return self.connection
            await self.connection.move_to(channel)
            self.channel_id = channel.id
            self.logger.info(f"[{self.guild_id}] 移动到语音频道: {getattr(channel, 'name', channel.id)}")
            return self.connection

        link = self.link_factory(channel)
        self.connection = link
        self.channel_id = channel.id
        link.on_status(ConnectionStatus.DISCONNECTED, self._on_link_disconnected)
        link.on_error(self._on_link_error)

        try:
            link.connect()
            await link.wait_for(ConnectionStatus.READY, self.connect_timeout)
        except (asyncio.TimeoutError, ConnectTimeout) as e:
            await self._abandon(link)
            self.logger.error(f"[{self.guild_id}] 语音连接超时: {channel.id}")
            raise ConnectTimeout(
                "Voice connection timed out. Check bot Connect/Speak permissions and try again."
            ) from e
        except RadioError:
            await self._abandon(link)
            raise
        except Exception as e:
            await self._abandon(link)
            raise TransportError(f"Voice connection failed: {e}") from e

        self.logger.info(f"[{self.guild_id}] 🔊 已加入语音频道: {getattr(channel, 'name', channel.id)}")
        return link

    async def leave(self) -> bool:
        """
        离开语音频道，幂等

        Returns:
            是否真的拆除了一个连接
        """
        link = self.connection
        self.connection = None
        self.channel_id = None
        self._cancel_recovery()

        if link is None:
            return False

        await self._destroy(link)
        self.logger.info(f"[{self.guild_id}] 已离开语音频道")
        self._notify_disconnected()
        return True

    def handle_voice_state(self, channel: Optional[discord.abc.Connectable]) -> None:
        """转发机器人自身的语音状态更新"""
        if self.connection is None:
            return
        if channel is not None:
            self.channel_id = channel.id
        self.connection.handle_voice_state(channel)

    def _check_permissions(self, channel: discord.abc.Connectable) -> None:
        me = getattr(channel.guild, "me", None)
        if me is None:
            return
        permissions = channel.permissions_for(me)
        if not (permissions.connect and permissions.speak):
            raise PermissionDenied("I need Connect and Speak permission in your voice channel.")

    def _on_link_disconnected(self, link: VoiceLink) -> None:
        if link is not self.connection:
            return
        if self._recovery_task is not None and not self._recovery_task.done():
            return
        self.logger.warning(f"[{self.guild_id}] ⚠️ 语音连接断开，尝试恢复...")
        self._recovery_task = asyncio.get_running_loop().create_task(self._recover(link))

    async def _recover(self, link: VoiceLink) -> None:
        """重新协商和重新连接两条路径竞速，先完成的决定结果"""
        paths = [
            asyncio.ensure_future(link.wait_for(ConnectionStatus.SIGNALLING, self.recovery_timeout)),
            asyncio.ensure_future(link.wait_for(ConnectionStatus.CONNECTING, self.recovery_timeout)),
        ]
        try:
            done, pending = await asyncio.wait(paths, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            for path in paths:
                path.cancel()
            await asyncio.gather(*paths, return_exceptions=True)
            raise

        for path in pending:
            path.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

        recovered = any(path.exception() is None for path in done)
        if recovered:
            self.logger.info(f"[{self.guild_id}] ✅ 语音连接已恢复")
            return

        self.logger.warning(f"[{self.guild_id}] ❌ 语音连接恢复失败，销毁连接")
        if self.connection is link:
            # 先让观察者停止播放，销毁链路时产生的结束事件不会再触发推进
            self.connection = None
            self.channel_id = None
            self._notify_disconnected()
        await self._destroy(link)

    def _on_link_error(self, error: Exception) -> None:
        self.logger.error(f"[{self.guild_id}] 语音连接错误: {error}")

    async def _abandon(self, link: VoiceLink) -> None:
        """拆除未就绪的连接并清除引用"""
        await self._destroy(link)
        if self.connection is link:
            self.connection = None
            self.channel_id = None

    async def _destroy(self, link: VoiceLink) -> None:
        try:
            await link.destroy()
        except Exception as e:
            self.logger.error(f"[{self.guild_id}] 销毁语音连接失败: {e}", exc_info=True)

    def _cancel_recovery(self) -> None:
        if self._recovery_task is not None and not self._recovery_task.done():
            if self._recovery_task is not asyncio.current_task():
                self._recovery_task.cancel()
        self._recovery_task = None

    def _notify_disconnected(self) -> None:
        if self.on_disconnected is None:
            return
        try:
            self.on_disconnected(self.guild_id)
        except Exception as e:
            self.logger.error(f"[{self.guild_id}] 断开连接回调失败: {e}", exc_info=True)
