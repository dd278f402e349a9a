"""播放列表存储 - 会话到曲目列表的映射"""

from typing import List

from radiobot.core.interfaces import ITrackSource
from .library import Library


class PlaylistStore(ITrackSource):
    """所有服务器共享同一个曲库目录"""

    def __init__(self, library: Library):
        self.library = library

    async def list_tracks(self, session_key: int) -> List[str]:
        return self.library.get_tracks()
