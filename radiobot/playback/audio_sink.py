"""
音频输出 - 会话的播放器

把解码后的音频流交给当前语音链路播放，维护播放器状态。
语音播放线程上的结束/出错通知会被转发回事件循环，
再以 SinkEvent 的形式交给播放引擎。
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

from radiobot.core.errors import NotConnected
from radiobot.core.interfaces import PlayerState
from .decode_pipeline import RawAudioStream
from .voice_link import VoiceLink

StateListener = Callable[[PlayerState, PlayerState], None]


@dataclass
class SinkEvent:
    """播放结束事件，error 为 None 表示自然结束（包括被强制停止）"""
    stream: RawAudioStream
    error: Optional[Exception] = None

    @property
    def is_error(self) -> bool:
        return self.error is not None


class AudioSink:
    """单个会话的音频输出"""

    def __init__(self, guild_id: int, on_event: Callable[[SinkEvent], None]):
        """
        Args:
            guild_id: 服务器ID
            on_event: 播放结束时在事件循环中调用
        """
        self.guild_id = guild_id
        self.on_event = on_event
        self.logger = logging.getLogger("radiobot.playback.sink")

        self.state = PlayerState.IDLE
        self.link: Optional[VoiceLink] = None
        self.stream: Optional[RawAudioStream] = None
        self._state_listeners: List[StateListener] = []

    @property
    def is_active(self) -> bool:
        return self.state is not PlayerState.IDLE

    def add_state_listener(self, listener: StateListener) -> None:
        self._state_listeners.append(listener)

    def attach(self, link: VoiceLink) -> None:
        """订阅语音链路"""
        self.link = link

    def detach(self) -> None:
        self.link = None

    def play(self, stream: RawAudioStream) -> None:
        """
        开始播放音频流

        Raises:
            NotConnected: 没有可用的语音链路
        """
        if self.link is None:
            raise NotConnected()

        loop = asyncio.get_running_loop()

        def after(error: Optional[Exception]) -> None:
            loop.call_soon_threadsafe(self._finished, stream, error)

        def started() -> None:
            loop.call_soon_threadsafe(self._started, stream)

        stream.set_start_callback(started)
        self.link.play(stream, after)
        self.stream = stream
        self._set_state(PlayerState.BUFFERING)

    def stop(self) -> bool:
        """
        强制停止当前音频流

        Returns:
            是否有正在进行的播放被终止（终止后会收到一个结束事件）
        """
        if not self.is_active:
            return False
        self.stream = None
        self._set_state(PlayerState.IDLE)
        if self.link is not None:
            self.link.stop()
        return True

    def pause(self) -> bool:
        if self.state not in (PlayerState.PLAYING, PlayerState.BUFFERING) or self.link is None:
            return False
        self.link.pause()
        self._set_state(PlayerState.PAUSED)
        return True

    def resume(self) -> bool:
        if self.state is not PlayerState.PAUSED or self.link is None:
            return False
        self.link.resume()
        self._set_state(PlayerState.PLAYING)
        return True

    def _started(self, stream: RawAudioStream) -> None:
        if stream is self.stream and self.state is PlayerState.BUFFERING:
            self._set_state(PlayerState.PLAYING)

    def _finished(self, stream: RawAudioStream, error: Optional[Exception]) -> None:
        if stream is self.stream:
            self.stream = None
            self._set_state(PlayerState.IDLE)
        self.on_event(SinkEvent(stream=stream, error=error))

    def _set_state(self, state: PlayerState) -> None:
        previous = self.state
        if previous is state:
            return
        self.state = state
        self.logger.debug(f"[{self.guild_id}] 播放器状态: {previous.value} -> {state.value}")
        for listener in list(self._state_listeners):
            try:
                listener(previous, state)
            except Exception as e:
                self.logger.error(f"[{self.guild_id}] 状态监听器出错: {e}", exc_info=True)
