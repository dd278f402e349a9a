"""
曲库模块 - 扫描本地音乐目录并为会话提供曲目列表
"""

from .library import Library, SUPPORTED_EXTENSIONS
from .playlist_store import PlaylistStore

__all__ = [
    "Library",
    "SUPPORTED_EXTENSIONS",
    "PlaylistStore"
]
