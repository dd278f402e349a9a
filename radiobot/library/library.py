"""
本地曲库 - 扫描音乐目录

递归遍历音乐目录，只保留支持的音频格式，
按路径排序后缓存，供播放列表读取。
"""

import asyncio
import logging
import os
from typing import List

SUPPORTED_EXTENSIONS = frozenset({
    ".mp3",
    ".wav",
    ".ogg",
    ".flac",
    ".m4a",
    ".aac",
    ".opus",
})


class Library:
    """本地音乐目录"""

    def __init__(self, music_dir: str):
        """
        初始化曲库

        Args:
            music_dir: 音乐目录路径
        """
        self.music_dir = music_dir
        self.tracks: List[str] = []
        self.logger = logging.getLogger("radiobot.library")

    async def scan(self) -> List[str]:
        """
        重新扫描音乐目录

        Returns:
            扫描到的曲目路径列表
        """
        loop = asyncio.get_running_loop()
        files = await loop.run_in_executor(None, self._walk)
        self.tracks = sorted(
            (path for path in files if os.path.splitext(path)[1].lower() in SUPPORTED_EXTENSIONS),
            key=lambda path: (path.casefold(), path)
        )
        self.logger.info(f"📂 曲库扫描完成: {len(self.tracks)} 首曲目 ({self.music_dir})")
        return list(self.tracks)

    def get_tracks(self) -> List[str]:
        """获取当前曲目列表的副本"""
        return list(self.tracks)

    def _walk(self) -> List[str]:
        if not os.path.isdir(self.music_dir):
            self.logger.warning(f"⚠️ 音乐目录不存在: {self.music_dir}")
            return []

        result = []
        for root, dirs, files in os.walk(self.music_dir):
            dirs.sort()
            for name in files:
                full_path = os.path.join(root, name)
                if os.path.isfile(full_path):
                    result.append(full_path)
        return result
