#!/usr/bin/env python3
"""
本地电台机器人 - 把本地音乐目录循环播放到 Discord 语音频道

主程序入口点，负责配置加载、依赖检查、机器人初始化和启动/关闭处理。
"""
import logging
import sys

from radiobot.bot import RadioBot
from radiobot.core.errors import PreflightError
from radiobot.runtime.preflight import run_preflight_checks
from radiobot.utils.config_manager import ConfigManager
from radiobot.utils.logger import setup_logger


def main() -> int:
    """
    电台机器人主入口函数。

    Returns:
        int: 退出代码（0表示成功，1表示错误）
    """
    try:
        config = ConfigManager()
    except FileNotFoundError as e:
        setup_logger()
        logging.getLogger("radiobot").error(f"❌ 配置文件错误: {e}")
        logging.getLogger("radiobot").error("请复制 config/config.yaml.example 为 config/config.yaml 并填写配置")
        return 1

    setup_logger(
        log_level=config.get_log_level(),
        log_file=config.get_log_file(),
        max_size=config.get_log_max_size(),
        backup_count=config.get_log_backup_count()
    )
    logger = logging.getLogger("radiobot")

    logger.info("=" * 60)
    logger.info("📻 本地电台机器人启动中...")
    logger.info("=" * 60)
    logger.debug(f"日志配置完成 - 级别: {config.get_log_level()}, 文件: {config.get_log_file()}")

    try:
        discord_token = config.get_discord_token()
    except ValueError as e:
        logger.error(f"❌ Discord 令牌配置错误: {e}")
        logger.error("请检查 config/config.yaml 文件并确保 discord.token 已正确设置")
        return 1

    try:
        run_preflight_checks(config.get_ffmpeg_path())
    except PreflightError as e:
        logger.error(f"❌ {e}")
        return 1

    try:
        bot = RadioBot(config)
        _log_bot_configuration(logger, config)
        logger.info("按 Ctrl+C 停止机器人")
        bot.run(discord_token)
    except Exception as e:
        logger.error(f"❌ 启动电台机器人时发生意外错误: {e}", exc_info=True)
        return 1

    return 0


def _log_bot_configuration(logger: logging.Logger, config: ConfigManager) -> None:
    """记录机器人配置摘要"""
    logger.info("📋 机器人配置摘要:")
    logger.info(f"   音乐目录: {config.get_music_dir()}")
    logger.info(f"   FFmpeg: {config.get_ffmpeg_path()}")
    logger.info(f"   命令同步: {config.get_command_guild_id() or '全局'}")
    logger.info(f"   断开权限角色: {config.get_disconnect_role_id() or '未配置'}")
    logger.info(f"   连接超时: {config.get_connect_timeout()} 秒")
    logger.info("=" * 60)


if __name__ == "__main__":
    sys.exit(main())
