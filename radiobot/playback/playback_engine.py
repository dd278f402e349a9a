"""
播放引擎 - 单个服务器会话的电台核心

持有会话状态、曲目列表和游标，提供播放、暂停、跳过、上一首、停止等操作。
把解码管线的输出接到连接管理器的语音链路上，
并在曲目自然结束或管线出错时自动推进到下一首。
"""

import asyncio
import logging
from typing import Callable, List, Optional, Set

import discord

from radiobot.core.errors import DecodeError, EmptyLibrary, NotConnected, RadioError
from radiobot.core.interfaces import ITrackSource, NowPlaying, PlayerState, display_name
from .audio_sink import AudioSink, SinkEvent
from .connection_manager import ConnectionManager
from .decode_pipeline import DecodePipeline, RawAudioStream
from .voice_link import VoiceLink

StateObserver = Callable[[int, PlayerState], None]


class PlaybackEngine:
    """
    单个服务器会话的播放引擎

    所有操作都在同一个事件循环中执行；播放器的结束/出错事件
    通过队列串行处理，同一会话的事件处理不会重叠。
    """

    def __init__(
        self,
        guild_id: int,
        track_source: ITrackSource,
        pipeline: DecodePipeline,
        connection_manager: ConnectionManager
    ):
        """
        初始化播放引擎

        Args:
            guild_id: 服务器ID（会话键）
            track_source: 曲目来源
            pipeline: 解码管线
            connection_manager: 本会话独占的连接管理器
        """
        self.guild_id = guild_id
        self.track_source = track_source
        self.pipeline = pipeline
        self.connection_manager = connection_manager
        self.logger = logging.getLogger("radiobot.playback.engine")

        self.sink = AudioSink(guild_id, self._enqueue_event)
        self.sink.add_state_listener(self._on_sink_state)

        self.track_list: List[str] = []
        self.cursor = -1
        self.current_track: Optional[str] = None
        self.last_error: Optional[str] = None

        self._advancing = False
        # 已交给播放器、结束事件尚未处理的音频流
        self._pending_streams: Set[RawAudioStream] = set()
        # 其中由用户停止的音频流，它们的结束事件不触发推进
        self._stopped_streams: Set[RawAudioStream] = set()

        self._events: asyncio.Queue = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None
        self._state_observers: List[StateObserver] = []

    # 状态访问

    @property
    def connection(self) -> Optional[VoiceLink]:
        return self.connection_manager.connection

    @property
    def channel_id(self) -> Optional[int]:
        return self.connection_manager.channel_id

    @property
    def player_state(self) -> PlayerState:
        return self.sink.state

    @property
    def status(self) -> PlayerState:
        """对外展示的状态，缓冲中视为播放中"""
        if self.sink.state is PlayerState.BUFFERING:
            return PlayerState.PLAYING
        return self.sink.state

    def now_playing(self) -> Optional[NowPlaying]:
        if not self.current_track:
            return None
        return NowPlaying.from_path(self.current_track)

    def get_last_error(self) -> Optional[str]:
        return self.last_error

    def add_state_listener(self, observer: StateObserver) -> None:
        """注册播放器状态变化观察者，参数为 (服务器ID, 新状态)"""
        self._state_observers.append(observer)

    # 连接

    async def join(self, channel: discord.abc.Connectable) -> VoiceLink:
        link = await self.connection_manager.join(channel)
        self.sink.attach(link)
        return link

    async def leave(self) -> None:
        self.stop()
        self.sink.detach()
        await self.connection_manager.leave()

    def handle_voice_state(self, channel: Optional[discord.abc.Connectable]) -> None:
        self.connection_manager.handle_voice_state(channel)

    def handle_disconnected(self) -> None:
        """连接在恢复失败后被销毁：停止播放，保留会话供之后复用"""
        if self.sink.is_active:
            self.logger.info(f"[{self.guild_id}] 连接已断开，停止播放")
        self.stop()
        self.sink.detach()

    # 播放控制

    async def play_or_resume(self) -> Optional[str]:
        """
        开始或继续播放

        Returns:
            当前曲目路径，没有可播放曲目时返回 None

        Raises:
            NotConnected: 没有语音连接
        """
        if self.connection is None:
            raise NotConnected()

        if self.sink.state in (PlayerState.PLAYING, PlayerState.BUFFERING):
            return self.current_track

        if self.current_track and self.sink.state is PlayerState.PAUSED:
            self.sink.resume()
            return self.current_track

        return await self.advance()

    async def advance(self) -> Optional[str]:
        """
        选择并加载下一首可播放的曲目

        从游标的下一个位置开始循环向前，最多尝试一整圈；
        无法解码的曲目会被记录并跳过。

        Returns:
            开始播放的曲目路径，没有可播放曲目时返回 None
        """
        if self._advancing:
            self.logger.debug(f"[{self.guild_id}] 已有推进操作进行中，忽略")
            return self.current_track
        self._advancing = True

        try:
            self.last_error = None
            self.track_list = list(await self.track_source.list_tracks(self.guild_id))

            if not self.track_list:
                self.cursor = -1
                self.current_track = None
                self._halt_sink()
                self.last_error = str(EmptyLibrary())
                self.logger.warning(f"[{self.guild_id}] 曲库为空")
                return None

            if self.connection is None:
                self.current_track = None
                self.last_error = str(NotConnected())
                return None

            count = len(self.track_list)
            for _ in range(count):
                self.cursor = (self.cursor + 1) % count
                track = self.track_list[self.cursor]
                stream = await self._open(track)
                if stream is None:
                    continue
                if self._start(track, stream):
                    return track

            self.current_track = None
            self.logger.error(f"[{self.guild_id}] ❌ 曲目列表中没有可播放的曲目: {self.last_error}")
            return None

        finally:
            self._advancing = False

    async def skip(self) -> Optional[str]:
        """
        跳过当前曲目

        强制停止播放器，由自然结束处理器推进到下一首。

        Returns:
            被跳过的曲目路径，没有可跳过的内容时返回 None
        """
        if not self.track_list:
            self.track_list = list(await self.track_source.list_tracks(self.guild_id))
            if not self.track_list:
                return None

        skipped = self.current_track
        if self.sink.stop():
            self.logger.info(f"[{self.guild_id}] ⏭️ 跳过: {display_name(skipped) if skipped else '-'}")
        return skipped

    async def prev(self) -> Optional[str]:
        """
        回到上一首曲目

        游标循环向后移动（第一首之前是最后一首），直接加载并播放。

        Returns:
            开始播放的曲目路径，解码失败时返回 None
        """
        if self._advancing:
            self.logger.debug(f"[{self.guild_id}] 已有推进操作进行中，忽略上一首")
            return self.current_track
        self._advancing = True

        try:
            if not self.track_list:
                self.track_list = list(await self.track_source.list_tracks(self.guild_id))
                if not self.track_list:
                    return None

            self.last_error = None
            count = len(self.track_list)
            if self.cursor <= 0:
                self.cursor = count - 1
            else:
                self.cursor = min(self.cursor, count) - 1
            track = self.track_list[self.cursor]

            stream = await self._open(track)
            if stream is None or not self._start(track, stream):
                self._halt_sink()
                self.current_track = None
                return None

            self.logger.info(f"[{self.guild_id}] ⏮️ 上一首: {display_name(track)}")
            return track

        finally:
            self._advancing = False

    def stop(self) -> None:
        """停止播放，保持连接"""
        self._halt_sink()
        self.current_track = None

    def pause(self) -> bool:
        return self.sink.pause()

    def resume(self) -> bool:
        return self.sink.resume()

    # 事件处理

    async def flush_events(self) -> None:
        """等待已到达的播放器事件全部处理完毕"""
        await asyncio.sleep(0)
        await self._events.join()

    async def close(self) -> None:
        """停止事件处理任务"""
        if self._worker is not None:
            self._worker.cancel()
            await asyncio.gather(self._worker, return_exceptions=True)
            self._worker = None

    def _enqueue_event(self, event: SinkEvent) -> None:
        self._events.put_nowait(event)
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(self._event_worker())

    async def _event_worker(self) -> None:
        while True:
            event = await self._events.get()
            try:
                await self._handle_sink_event(event)
            except Exception as e:
                self.logger.error(f"[{self.guild_id}] 处理播放器事件失败: {e}", exc_info=True)
            finally:
                self._events.task_done()

    async def _handle_sink_event(self, event: SinkEvent) -> None:
        self._pending_streams.discard(event.stream)
        if event.stream in self._stopped_streams:
            # 由 stop/prev/断线 造成的结束，已经处理过
            self._stopped_streams.discard(event.stream)
            if event.is_error:
                self.logger.debug(f"[{self.guild_id}] 已停止的曲目报告错误: {event.error}")
            return

        if event.is_error:
            self.last_error = str(event.error)
            self.logger.error(f"[{self.guild_id}] 播放器错误 ({event.stream.title}): {event.error}")
        else:
            self.logger.debug(f"[{self.guild_id}] 曲目结束: {event.stream.title}")

        try:
            await self.advance()
        except RadioError as e:
            self.logger.error(f"[{self.guild_id}] 自动推进失败: {e}")

    # 内部

    async def _open(self, track: str) -> Optional[RawAudioStream]:
        try:
            return await self.pipeline.open(track)
        except DecodeError as e:
            self.last_error = str(e)
            self.logger.error(f"[{self.guild_id}] 无法加载 {track}: {e}")
            return None

    def _start(self, track: str, stream: RawAudioStream) -> bool:
        self._halt_sink()
        try:
            self.sink.play(stream)
        except (RadioError, discord.ClientException) as e:
            stream.cleanup()
            self.last_error = f"Failed to play {display_name(track)}: {e}"
            self.logger.error(f"[{self.guild_id}] 无法播放 {track}: {e}")
            return False

        self._pending_streams.add(stream)
        self.current_track = track
        self.logger.info(f"[{self.guild_id}] 🎶 正在播放: {display_name(track)}")
        return True

    def _halt_sink(self) -> None:
        """用户发起的停止：所有结束事件尚未处理的音频流都不再触发推进"""
        self._stopped_streams.update(self._pending_streams)
        self.sink.stop()

    def _on_sink_state(self, previous: PlayerState, state: PlayerState) -> None:
        for observer in list(self._state_observers):
            try:
                observer(self.guild_id, state)
            except Exception as e:
                self.logger.error(f"[{self.guild_id}] 状态观察者出错: {e}", exc_info=True)
