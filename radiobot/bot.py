"""本地电台机器人主实现"""
import asyncio
import logging
from typing import Optional

import discord
from discord.ext import commands

from radiobot.app_commands.radio_commands import RadioCommands
from radiobot.core.dependency_container import DependencyContainer
from radiobot.core.event_handler import EventHandler
from radiobot.library.library import Library
from radiobot.library.playlist_store import PlaylistStore
from radiobot.playback.decode_pipeline import DecodePipeline
from radiobot.playback.session_registry import SessionRegistry
from radiobot.playback.voice_link import DiscordVoiceLink
from radiobot.ui.control_panel import ControlPanelManager
from radiobot.utils.config_manager import ConfigManager


class RadioBot:
    """
    本地电台机器人主实现类。

    把本地音乐目录循环播放到语音频道：
    - 每个服务器一个独立的播放会话
    - 断线自动恢复，坏文件自动跳过
    - Slash 命令和控制面板按钮
    """

    def __init__(self, config: ConfigManager):
        """
        初始化电台机器人。

        Args:
            config: 配置管理器
        """
        self.logger = logging.getLogger("radiobot.bot")
        self.config = config
        self.container = DependencyContainer()
        self._startup_done = False

        intents = discord.Intents.default()
        intents.guilds = True
        intents.voice_states = True

        self.bot = commands.Bot(command_prefix=commands.when_mentioned, intents=intents, help_command=None)

        self._register_dependencies()
        self._init_core_modules()

        self.event_handler = EventHandler(bot=self.bot, registry=self.registry)
        self.bot.add_listener(self._on_ready, "on_ready")

        self.logger.info("📻 电台机器人初始化成功")

    def _register_dependencies(self) -> None:
        """
        注册组件到依赖容器

        定义组件间的依赖关系，确保按正确顺序初始化。
        """
        config = self.config

        def create_library() -> Library:
            return Library(config.get_music_dir())

        def create_playlist_store(library: Library) -> PlaylistStore:
            return PlaylistStore(library)

        def create_decode_pipeline() -> DecodePipeline:
            return DecodePipeline(executable=config.get_ffmpeg_path())

        def create_session_registry(playlist_store: PlaylistStore, decode_pipeline: DecodePipeline) -> SessionRegistry:
            connect_timeout = config.get_connect_timeout()
            return SessionRegistry(
                track_source=playlist_store,
                pipeline=decode_pipeline,
                link_factory=lambda channel: DiscordVoiceLink(channel, connect_timeout=connect_timeout),
                connect_timeout=connect_timeout,
                recovery_timeout=config.get_recovery_timeout()
            )

        def create_control_panel_manager(session_registry: SessionRegistry) -> ControlPanelManager:
            return ControlPanelManager(
                client=self.bot,
                registry=session_registry,
                show_disconnect=config.get_disconnect_role_id() is not None,
                refresh_delay=config.get_panel_refresh_delay()
            )

        def create_radio_commands(
            session_registry: SessionRegistry,
            library: Library,
            control_panel_manager: ControlPanelManager
        ) -> RadioCommands:
            return RadioCommands(config, session_registry, library, control_panel_manager)

        self.container.register("library", create_library)
        self.container.register("playlist_store", create_playlist_store, ["library"])
        self.container.register("decode_pipeline", create_decode_pipeline)
        self.container.register("session_registry", create_session_registry, ["playlist_store", "decode_pipeline"])
        self.container.register("control_panel_manager", create_control_panel_manager, ["session_registry"])
        self.container.register(
            "radio_commands",
            create_radio_commands,
            ["session_registry", "library", "control_panel_manager"]
        )

        self.container.validate()
        self.logger.debug("📝 组件注册完成")

    def _init_core_modules(self) -> None:
        """解析核心组件并把控制面板接到播放会话的事件上"""
        try:
            self.library: Library = self.container.resolve("library")
            self.registry: SessionRegistry = self.container.resolve("session_registry")
            self.panel_manager: ControlPanelManager = self.container.resolve("control_panel_manager")
            self.radio_commands: RadioCommands = self.container.resolve("radio_commands")
        except (ValueError, RuntimeError) as e:
            self.logger.error(f"❌ 核心模块初始化失败: {e}", exc_info=True)
            raise RuntimeError(f"核心模块初始化失败: {e}") from e

        self.panel_manager.set_handler(self.radio_commands.handle_button)
        self.registry.add_state_observer(self.panel_manager.on_state_change)
        self.registry.add_disconnect_observer(self.panel_manager.on_disconnected)
        self.logger.info("✅ 核心模块初始化完成")

    async def _on_ready(self) -> None:
        """首次就绪：扫描曲库、同步命令、注册持久化面板视图"""
        if self._startup_done:
            return
        self._startup_done = True

        try:
            tracks = await self.library.scan()
            self.logger.info(f"🎵 曲库已加载 {len(tracks)} 首曲目: {self.library.music_dir}")

            guild_id = self.config.get_command_guild_id()
            guild = discord.Object(id=guild_id) if guild_id else None
            self.radio_commands.register(self.bot.tree, guild=guild)
            synced = await self.bot.tree.sync(guild=guild)
            scope = f"服务器 {guild_id}" if guild_id else "全局"
            self.logger.info(f"✅ Slash Commands 已同步 ({scope}, {len(synced)} 个)")

            self.bot.add_view(self.panel_manager.build_view())
        except (discord.HTTPException, OSError) as e:
            self.logger.error(f"启动初始化失败: {e}", exc_info=True)

    async def start(self, token: str) -> None:
        """
        Start the Discord bot.

        Args:
            token: Discord bot token
        """
        self.logger.info("🚀 启动电台机器人...")
        await self.bot.start(token)

    async def close(self) -> None:
        """断开所有播放会话并关闭 Discord 连接。"""
        self.logger.info("🛑 正在关闭电台机器人...")
        try:
            await self.registry.cleanup_all()
            await self.panel_manager.close()
        finally:
            if not self.bot.is_closed():
                await self.bot.close()
        self.logger.info("✅ 电台机器人关闭成功")

    def run(self, token: str) -> None:
        """
        运行 Discord 机器人（阻塞式）。

        Args:
            token: Discord 机器人令牌
        """
        async def runner() -> None:
            try:
                await self.start(token)
            finally:
                await self.close()

        try:
            asyncio.run(runner())
        except KeyboardInterrupt:
            self.logger.info("用户停止了机器人")

    @property
    def user(self) -> Optional[discord.ClientUser]:
        """获取机器人用户。"""
        return self.bot.user
