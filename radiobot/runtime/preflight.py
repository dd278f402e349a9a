"""
启动前依赖检查

语音播放依赖 PyNaCl（加密）、libopus（编码）和 FFmpeg（转码），
任何一项缺失都会让机器人在第一次播放时才失败，因此在登录前检查。
"""

import ctypes.util
import importlib
import logging
import subprocess
from typing import List

import discord

from radiobot.core.errors import PreflightError

logger = logging.getLogger("radiobot.runtime.preflight")


def _check_nacl() -> List[str]:
    try:
        importlib.import_module("nacl")
    except ImportError:
        return ["Missing PyNaCl (required by discord.py for voice encryption). Install discord.py[voice]."]
    return []


def _check_opus() -> List[str]:
    if discord.opus.is_loaded():
        return []

    name = ctypes.util.find_library("opus")
    if name is None:
        return ["No Opus library found. Install libopus."]

    try:
        discord.opus.load_opus(name)
    except OSError as e:
        return [f"Failed to load Opus library ({name}): {e}"]
    return []


def _check_ffmpeg(ffmpeg_path: str) -> List[str]:
    try:
        result = subprocess.run(
            [ffmpeg_path, "-version"],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            timeout=10
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        return [f"FFmpeg is unavailable ({ffmpeg_path}): {e}"]

    if result.returncode != 0:
        return [f"FFmpeg is unavailable ({ffmpeg_path}): exit code {result.returncode}"]
    return []


def run_preflight_checks(ffmpeg_path: str = "ffmpeg") -> None:
    """
    检查语音播放所需的运行环境

    Args:
        ffmpeg_path: FFmpeg 可执行文件

    Raises:
        PreflightError: 任意一项检查失败
    """
    issues = _check_nacl() + _check_opus() + _check_ffmpeg(ffmpeg_path)

    if not issues:
        logger.debug("依赖检查通过")
        return

    logger.error("依赖检查失败:")
    for issue in issues:
        logger.error(f"- {issue}")
    raise PreflightError("Preflight checks failed")
