"""
语音链路 - 实时语音会话的状态机

VoiceLink 维护连接状态并允许等待某个状态出现，
DiscordVoiceLink 把 discord.py 的 VoiceClient 接入这个状态机。
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional, Tuple

import discord

from radiobot.core.errors import ConnectTimeout, NotConnected, TransportError
from radiobot.core.interfaces import ConnectionStatus

StatusListener = Callable[["VoiceLink"], None]
ErrorListener = Callable[[Exception], None]


class VoiceLink(ABC):
    """
    语音链路基类

    状态变化只在事件循环线程中发生。
    """

    def __init__(self):
        self.status = ConnectionStatus.SIGNALLING
        self.logger = logging.getLogger("radiobot.playback.voice_link")
        self._status_listeners: Dict[ConnectionStatus, List[StatusListener]] = {}
        self._error_listeners: List[ErrorListener] = []
        self._waiters: List[Tuple[ConnectionStatus, asyncio.Future]] = []

    @property
    @abstractmethod
    def channel_id(self) -> Optional[int]:
        """当前所在的语音频道ID"""

    @abstractmethod
    def connect(self) -> None:
        """开始建立连接，就绪时状态变为 READY"""

    @abstractmethod
    async def move_to(self, channel: discord.abc.Connectable) -> None:
        """移动到同一服务器的另一个语音频道"""

    @abstractmethod
    async def destroy(self) -> None:
        """拆除连接，幂等"""

    @abstractmethod
    def play(self, source: discord.AudioSource, after: Callable[[Optional[Exception]], None]) -> None:
        """播放音频源，after 在播放线程中以错误或 None 调用"""

    @abstractmethod
    def stop(self) -> None:
        pass

    @abstractmethod
    def pause(self) -> None:
        pass

    @abstractmethod
    def resume(self) -> None:
        pass

    def on_status(self, status: ConnectionStatus, listener: StatusListener) -> None:
        self._status_listeners.setdefault(status, []).append(listener)

    def on_error(self, listener: ErrorListener) -> None:
        self._error_listeners.append(listener)

    def set_status(self, status: ConnectionStatus, error: Optional[Exception] = None) -> None:
        """
        切换状态并唤醒等待者

        Args:
            status: 新状态
            error: 进入 DESTROYED 时交给其他等待者的异常
        """
        if self.status is ConnectionStatus.DESTROYED:
            return

        previous = self.status
        self.status = status
        self.logger.debug(f"语音链路状态: {previous.value} -> {status.value}")

        for waiting_for, future in list(self._waiters):
            if future.done():
                continue
            if waiting_for is status:
                future.set_result(None)
            elif status is ConnectionStatus.DESTROYED:
                future.set_exception(error or TransportError("Voice connection was destroyed."))

        for listener in list(self._status_listeners.get(status, [])):
            listener(self)

    def emit_error(self, error: Exception) -> None:
        for listener in list(self._error_listeners):
            listener(error)

    async def wait_for(self, status: ConnectionStatus, timeout: float) -> None:
        """
        等待链路进入指定状态

        Raises:
            asyncio.TimeoutError: 超时
            TransportError: 链路在此之前被销毁
        """
        if self.status is status:
            return
        if self.status is ConnectionStatus.DESTROYED:
            raise TransportError("Voice connection was destroyed.")

        future = asyncio.get_running_loop().create_future()
        entry = (status, future)
        self._waiters.append(entry)
        try:
            await asyncio.wait_for(future, timeout)
        finally:
            self._waiters.remove(entry)

    def handle_voice_state(self, channel: Optional[discord.abc.Connectable]) -> None:
        """
        处理机器人自身的语音状态更新

        频道为空表示被断开；断开后重新出现频道表示正在重连。
        """
        if channel is None:
            if self.status in (ConnectionStatus.READY, ConnectionStatus.SIGNALLING, ConnectionStatus.CONNECTING):
                self.set_status(ConnectionStatus.DISCONNECTED)
        elif self.status is ConnectionStatus.DISCONNECTED:
            self.set_status(ConnectionStatus.CONNECTING)


class DiscordVoiceLink(VoiceLink):
    """基于 discord.py VoiceClient 的语音链路"""

    RENEGOTIATE_POLL_INTERVAL = 0.5

    def __init__(self, channel: discord.abc.Connectable, connect_timeout: float = 30.0):
        """
        Args:
            channel: 要加入的语音频道
            connect_timeout: discord.py 建立连接的超时时间
        """
        super().__init__()
        self.channel = channel
        self.connect_timeout = connect_timeout
        self.voice_client: Optional[discord.VoiceClient] = None
        self._connect_task: Optional[asyncio.Task] = None
        self._watch_task: Optional[asyncio.Task] = None

    @property
    def channel_id(self) -> Optional[int]:
        if self.voice_client and self.voice_client.channel:
            return self.voice_client.channel.id
        return self.channel.id

    def connect(self) -> None:
        self._connect_task = asyncio.get_running_loop().create_task(self._connect())

    async def _connect(self) -> None:
        try:
            existing = self.channel.guild.voice_client
            if existing is not None and existing.is_connected():
                self.voice_client = existing
                if existing.channel != self.channel:
                    await existing.move_to(self.channel)
            else:
                self.voice_client = await self.channel.connect(
                    timeout=self.connect_timeout,
                    reconnect=True,
                    self_deaf=True
                )
        except asyncio.TimeoutError as e:
            self.set_status(ConnectionStatus.DESTROYED, ConnectTimeout(
                "Voice connection timed out. Check bot Connect/Speak permissions and try again."
            ))
            self.emit_error(e)
            return
        except (discord.ClientException, discord.HTTPException, OSError) as e:
            self.set_status(ConnectionStatus.DESTROYED, TransportError(f"Voice connection failed: {e}"))
            self.emit_error(e)
            return

        self.set_status(ConnectionStatus.READY)

    async def move_to(self, channel: discord.abc.Connectable) -> None:
        self.channel = channel
        if self.voice_client is None:
            raise NotConnected()
        await self.voice_client.move_to(channel)

    async def destroy(self) -> None:
        if self.status is ConnectionStatus.DESTROYED:
            return

        for task in (self._connect_task, self._watch_task):
            if task is not None and not task.done() and task is not asyncio.current_task():
                task.cancel()

        self.set_status(ConnectionStatus.DESTROYED)
        if self.voice_client is not None:
            try:
                await self.voice_client.disconnect(force=True)
            except (discord.ClientException, discord.HTTPException, OSError) as e:
                self.emit_error(e)
            self.voice_client = None

    def play(self, source: discord.AudioSource, after: Callable[[Optional[Exception]], None]) -> None:
        if self.voice_client is None or not self.voice_client.is_connected():
            raise NotConnected()
        self.voice_client.play(source, after=after)

    def stop(self) -> None:
        if self.voice_client is not None:
            self.voice_client.stop()

    def pause(self) -> None:
        if self.voice_client is not None:
            self.voice_client.pause()

    def resume(self) -> None:
        if self.voice_client is not None:
            self.voice_client.resume()

    def handle_voice_state(self, channel: Optional[discord.abc.Connectable]) -> None:
        if channel is not None:
            self.channel = channel
        super().handle_voice_state(channel)
        if self.status is ConnectionStatus.DISCONNECTED and (self._watch_task is None or self._watch_task.done()):
            self._watch_task = asyncio.get_running_loop().create_task(self._watch_renegotiation())

    async def _watch_renegotiation(self) -> None:
        """轮询 VoiceClient 自身的重连结果"""
        while self.status is ConnectionStatus.DISCONNECTED:
            await asyncio.sleep(self.RENEGOTIATE_POLL_INTERVAL)
            if self.voice_client is not None and self.voice_client.is_connected():
                self.set_status(ConnectionStatus.SIGNALLING)
                self.set_status(ConnectionStatus.READY)
