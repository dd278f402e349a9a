"""
会话注册表 - 每个服务器一个播放引擎

引擎在第一次被访问时创建，断开连接后保留以便之后复用。
"""

import logging
from typing import Callable, Dict, List, Optional

from radiobot.core.interfaces import ITrackSource
from .connection_manager import ConnectionManager, LinkFactory
from .decode_pipeline import DecodePipeline
from .playback_engine import PlaybackEngine, StateObserver

DisconnectObserver = Callable[[int], None]


class SessionRegistry:
    """按服务器ID索引的播放引擎注册表"""

    def __init__(
        self,
        track_source: ITrackSource,
        pipeline: DecodePipeline,
        link_factory: LinkFactory,
        connect_timeout: float = 30.0,
        recovery_timeout: float = 5.0
    ):
        """
        初始化会话注册表

        Args:
            track_source: 所有会话共享的曲目来源
            pipeline: 所有会话共享的解码管线
            link_factory: 语音链路工厂
            connect_timeout: 连接就绪超时（秒）
            recovery_timeout: 断线恢复每条路径的超时（秒）
        """
        self.track_source = track_source
        self.pipeline = pipeline
        self.link_factory = link_factory
        self.connect_timeout = connect_timeout
        self.recovery_timeout = recovery_timeout
        self.logger = logging.getLogger("radiobot.playback.sessions")

        self._sessions: Dict[int, PlaybackEngine] = {}
        self._disconnect_observers: List[DisconnectObserver] = []
        self._state_observers: List[StateObserver] = []

    def __contains__(self, guild_id: int) -> bool:
        return guild_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def add_disconnect_observer(self, observer: DisconnectObserver) -> None:
        """注册连接 -> 断开转换的观察者，参数为服务器ID"""
        self._disconnect_observers.append(observer)

    def add_state_observer(self, observer: StateObserver) -> None:
        """注册播放器状态变化观察者，对之后创建的会话同样生效"""
        self._state_observers.append(observer)
        for engine in self._sessions.values():
            engine.add_state_listener(observer)

    def get(self, guild_id: int) -> Optional[PlaybackEngine]:
        return self._sessions.get(guild_id)

    def get_or_create(self, guild_id: int) -> PlaybackEngine:
        """
        获取服务器的播放引擎，不存在时创建

        Args:
            guild_id: 服务器ID

        Returns:
            该服务器唯一的播放引擎
        """
        engine = self._sessions.get(guild_id)
        if engine is not None:
            return engine

        connection_manager = ConnectionManager(
            guild_id,
            self.link_factory,
            connect_timeout=self.connect_timeout,
            recovery_timeout=self.recovery_timeout,
            on_disconnected=self._on_disconnected
        )
        engine = PlaybackEngine(guild_id, self.track_source, self.pipeline, connection_manager)
        for observer in self._state_observers:
            engine.add_state_listener(observer)

        self._sessions[guild_id] = engine
        self.logger.debug(f"创建播放会话: {guild_id}")
        return engine

    async def cleanup_all(self) -> None:
        """断开所有会话并停止它们的事件处理"""
        for guild_id, engine in list(self._sessions.items()):
            try:
                await engine.leave()
            except Exception as e:
                self.logger.error(f"清理会话 {guild_id} 失败: {e}", exc_info=True)
            await engine.close()
        self.logger.info(f"已清理 {len(self._sessions)} 个播放会话")

    def _on_disconnected(self, guild_id: int) -> None:
        engine = self._sessions.get(guild_id)
        if engine is not None:
            engine.handle_disconnected()

        for observer in list(self._disconnect_observers):
            try:
                observer(guild_id)
            except Exception as e:
                self.logger.error(f"断开连接观察者出错 ({guild_id}): {e}", exc_info=True)
