"""核心模块 - 接口、异常和依赖注入"""

from .interfaces import ITrackSource, PlayerState, ConnectionStatus, NowPlaying, display_name
from .errors import (
    RadioError,
    ConnectTimeout,
    PermissionDenied,
    TransportError,
    NotConnected,
    EmptyLibrary,
    DecodeError,
    PreflightError,
)

__all__ = [
    "ITrackSource",
    "PlayerState",
    "ConnectionStatus",
    "NowPlaying",
    "display_name",
    "RadioError",
    "ConnectTimeout",
    "PermissionDenied",
    "TransportError",
    "NotConnected",
    "EmptyLibrary",
    "DecodeError",
    "PreflightError",
]
