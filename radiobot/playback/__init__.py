"""
播放模块 - 语音连接、解码管线与每个服务器的播放引擎
"""

from .audio_sink import AudioSink, SinkEvent
from .connection_manager import ConnectionManager
from .decode_pipeline import DecodePipeline, RawAudioStream
from .playback_engine import PlaybackEngine
from .session_registry import SessionRegistry
from .voice_link import DiscordVoiceLink, VoiceLink

__all__ = [
    "AudioSink",
    "SinkEvent",
    "ConnectionManager",
    "DecodePipeline",
    "RawAudioStream",
    "PlaybackEngine",
    "SessionRegistry",
    "DiscordVoiceLink",
    "VoiceLink",
]
