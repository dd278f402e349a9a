"""
测试配置

提供语音链路、解码管线和曲目来源的测试替身，
以及创建播放引擎的 fixtures。
"""

import asyncio
from typing import Callable, List, Optional, Set
from unittest.mock import Mock

import pytest

from radiobot.core.errors import DecodeError, TransportError
from radiobot.core.interfaces import ConnectionStatus, ITrackSource, display_name
from radiobot.playback.connection_manager import ConnectionManager
from radiobot.playback.playback_engine import PlaybackEngine
from radiobot.playback.session_registry import SessionRegistry
from radiobot.playback.voice_link import VoiceLink

TRACKS = ["/music/a.mp3", "/music/b.mp3", "/music/c.mp3"]
GUILD_ID = 12345


class FakeStream:
    """替代 RawAudioStream 的音频流"""

    def __init__(self, track_path: str):
        self.track_path = track_path
        self.title = display_name(track_path)
        self.cleaned_up = False
        self.start_callback: Optional[Callable[[], None]] = None

    def set_start_callback(self, callback):
        self.start_callback = callback

    def cleanup(self):
        self.cleaned_up = True


class FakeVoiceLink(VoiceLink):
    """
    替代 DiscordVoiceLink 的语音链路

    mode 为 "ready" 时连接立即就绪，"hang" 时永不就绪，"fail" 时连接失败。
    stop() 和 discord.py 一样会以 None 调用 after 回调。
    """

    def __init__(self, channel, mode: str = "ready"):
        super().__init__()
        self.channel = channel
        self.mode = mode
        self.destroyed = False
        self.moved_to = []
        self.paused = False
        self.current = None
        self.played: List[FakeStream] = []

    @property
    def channel_id(self):
        return self.channel.id

    def connect(self):
        loop = asyncio.get_running_loop()
        if self.mode == "ready":
            loop.call_soon(self.set_status, ConnectionStatus.READY)
        elif self.mode == "fail":
            loop.call_soon(self.set_status, ConnectionStatus.DESTROYED, TransportError("Voice connection failed: boom"))

    async def move_to(self, channel):
        self.channel = channel
        self.moved_to.append(channel)

    async def destroy(self):
        self.destroyed = True
        self.set_status(ConnectionStatus.DESTROYED)

    def play(self, source, after):
        self.current = (source, after)
        self.played.append(source)

    def stop(self):
        if self.current is not None:
            _, after = self.current
            self.current = None
            after(None)

    def pause(self):
        self.paused = True

    def resume(self):
        self.paused = False

    def start_audio(self):
        """模拟第一帧音频送出"""
        source, _ = self.current
        source.start_callback()

    def finish(self, error: Optional[Exception] = None):
        """模拟当前音频流播放完毕或出错"""
        _, after = self.current
        self.current = None
        after(error)


class StoppingVoiceLink(FakeVoiceLink):
    """和 discord.py 的 disconnect 一样，销毁时先停止播放器再让出事件循环"""

    async def destroy(self):
        self.stop()
        await asyncio.sleep(0)
        await super().destroy()


class FakePipeline:
    """替代 DecodePipeline，failing 中的文件名会解码失败"""

    def __init__(self, failing: Optional[Set[str]] = None):
        self.failing = set(failing or ())
        self.opened: List[str] = []
        self.gate: Optional[asyncio.Event] = None

    async def open(self, track_path: str) -> FakeStream:
        self.opened.append(track_path)
        if self.gate is not None:
            await self.gate.wait()
        title = display_name(track_path)
        if title in self.failing:
            raise DecodeError("input", title, "No such file or directory")
        return FakeStream(track_path)


class FakeTrackSource(ITrackSource):
    """固定曲目列表"""

    def __init__(self, tracks: Optional[List[str]] = None):
        self.tracks = list(TRACKS if tracks is None else tracks)
        self.calls = 0

    async def list_tracks(self, session_key: int) -> List[str]:
        self.calls += 1
        return list(self.tracks)


def make_voice_channel(channel_id: int = 555, name: str = "电台", can_speak: bool = True):
    """创建模拟语音频道，guild.me 拥有指定的权限"""
    channel = Mock()
    channel.id = channel_id
    channel.name = name
    channel.guild = Mock()
    channel.guild.id = GUILD_ID
    channel.guild.me = Mock()
    channel.permissions_for = Mock(return_value=Mock(connect=True, speak=can_speak))
    return channel


@pytest.fixture
def track_source():
    return FakeTrackSource()


@pytest.fixture
def pipeline():
    return FakePipeline()


@pytest.fixture
def links():
    """记录链路工厂创建的所有链路"""
    return []


@pytest.fixture
def link_factory(links):
    def factory(channel):
        link = FakeVoiceLink(channel)
        links.append(link)
        return link
    return factory


@pytest.fixture
def voice_channel():
    return make_voice_channel()


@pytest.fixture
def engine(track_source, pipeline, link_factory):
    """未连接的播放引擎"""
    manager = ConnectionManager(GUILD_ID, link_factory, connect_timeout=1.0, recovery_timeout=0.05)
    return PlaybackEngine(GUILD_ID, track_source, pipeline, manager)


@pytest.fixture
def registry(track_source, pipeline, link_factory):
    return SessionRegistry(track_source, pipeline, link_factory, connect_timeout=1.0, recovery_timeout=0.05)
