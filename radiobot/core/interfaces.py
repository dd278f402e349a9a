"""
核心接口定义 - 定义电台各模块间的抽象接口

播放引擎只依赖这里定义的抽象，曲目来源、语音连接等
具体实现由外部注入。
"""

import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import List


def display_name(track_path: str) -> str:
    """曲目的显示名称（文件名）"""
    return os.path.basename(track_path)


class PlayerState(Enum):
    """播放器状态"""
    IDLE = "idle"
    BUFFERING = "buffering"  # 已请求资源，尚未确认音频流出
    PLAYING = "playing"
    PAUSED = "paused"


class ConnectionStatus(Enum):
    """语音连接状态"""
    SIGNALLING = "signalling"
    CONNECTING = "connecting"
    READY = "ready"
    DISCONNECTED = "disconnected"
    DESTROYED = "destroyed"


@dataclass(frozen=True)
class NowPlaying:
    """当前播放曲目信息"""
    path: str
    title: str

    @classmethod
    def from_path(cls, track_path: str) -> "NowPlaying":
        return cls(path=track_path, title=display_name(track_path))


class ITrackSource(ABC):
    """曲目来源接口 - 为会话提供有序的曲目列表"""

    @abstractmethod
    async def list_tracks(self, session_key: int) -> List[str]:
        """
        获取会话的曲目列表

        每次推进播放时都会调用，必须廉价且可重复调用。
        列表顺序即播放顺序。
        """
        pass
