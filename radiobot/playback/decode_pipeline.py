"""
解码管线 - 将磁盘上的音频文件转换为连续的原始 PCM 流

基于 discord.FFmpegPCMAudio 的管道模式：
- 输入：discord.py 的写入线程把文件字节送进 FFmpeg 标准输入
- 转码器：FFmpeg 子进程，输出 48kHz 双声道 s16le
- 输出：播放线程按 20ms 帧读取 FFmpeg 标准输出

在此之上加了单次触发的错误闩、退出码检查和按阶段标注的错误消息。
任何一段出错都会拆除整条管线，并且只报告一次 DecodeError。
"""

import asyncio
import collections
import logging
import subprocess
import threading
from typing import IO, Callable, Optional

import discord

from radiobot.core.errors import DecodeError
from radiobot.core.interfaces import display_name

FRAME_SIZE = discord.opus.Encoder.FRAME_SIZE  # 20ms 48kHz 双声道 16bit = 3840 字节

BEFORE_OPTIONS = "-hide_banner"
OPTIONS = "-loglevel error"


class _TrackInput:
    """包装曲目文件，读取失败时通知管线并以 EOF 结束输入"""

    def __init__(self, source: IO[bytes], on_error: Callable[[Exception], None]):
        self._source = source
        self._on_error = on_error

    def read(self, size: int = -1) -> bytes:
        try:
            return self._source.read(size)
        except (OSError, ValueError) as e:
            self._on_error(e)
            return b""

    def close(self) -> None:
        self._source.close()


class _StderrTail:
    """保留 FFmpeg 错误输出的最后几行"""

    def __init__(self, max_lines: int = 5):
        self._lines = collections.deque(maxlen=max_lines)
        self._partial = b""
        self._lock = threading.Lock()
        self.eof = threading.Event()

    def write(self, data: bytes) -> int:
        if not data:
            self.eof.set()
            return 0
        with self._lock:
            *lines, self._partial = (self._partial + data).split(b"\n")
            for line in lines:
                text = line.decode("utf-8", errors="replace").strip()
                if text:
                    self._lines.append(text)
        return len(data)

    def last_line(self) -> Optional[str]:
        with self._lock:
            partial = self._partial.decode("utf-8", errors="replace").strip()
            if partial:
                return partial
            return self._lines[-1] if self._lines else None


class RawAudioStream(discord.FFmpegPCMAudio):
    """
    原始 PCM 音频流

    由 discord.py 的播放线程调用 read()。出错时 read() 抛出 DecodeError，
    播放线程会把它交给 after 回调；正常结束时返回空字节。
    结尾不足一帧的数据被丢弃。
    """

    def __init__(
        self,
        track_path: str,
        source: IO[bytes],
        executable: str = "ffmpeg",
        before_options: Optional[str] = BEFORE_OPTIONS,
        options: Optional[str] = OPTIONS
    ):
        self.track_path = track_path
        self.title = display_name(track_path)
        self.logger = logging.getLogger("radiobot.playback.decode")

        self._lock = threading.Lock()
        self._error: Optional[DecodeError] = None
        self._closed = False
        self._torn_down = False
        self._started = False
        self._start_callback: Optional[Callable[[], None]] = None

        self._input = _TrackInput(source, self._on_input_error)
        self._stderr_tail = _StderrTail()

        super().__init__(
            self._input,
            executable=executable,
            pipe=True,
            stderr=self._stderr_tail,
            before_options=before_options,
            options=options
        )

    def set_start_callback(self, callback: Optional[Callable[[], None]]) -> None:
        """设置第一帧送出时的回调（在播放线程中调用）"""
        self._start_callback = callback

    @property
    def error(self) -> Optional[DecodeError]:
        return self._error

    def read(self) -> bytes:
        if self._error is not None:
            raise self._error
        if self._closed or self._torn_down:
            return b""

        try:
            frame = super().read()
        except (OSError, ValueError) as e:
            self._fail("buffer", str(e))
            frame = b""

        if frame:
            if not self._started:
                self._started = True
                if self._start_callback:
                    self._start_callback()
            return frame

        if self._error is None:
            self._finish()
        if self._error is not None:
            raise self._error
        return b""

    def cleanup(self) -> None:
        """正常拆除管线，不产生错误"""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._teardown()

    def _finish(self) -> None:
        """输出结束：检查转码器退出码"""
        if self._torn_down:
            return
        try:
            code = self._process.wait(timeout=5)
        except subprocess.TimeoutExpired:
            self._fail("transcoder", "FFmpeg closed its output but did not exit")
            return

        if code != 0 and not self._closed:
            self._stderr_tail.eof.wait(timeout=1)
            reason = f"Exit code {code}"
            last_line = self._stderr_tail.last_line()
            if last_line:
                reason = f"{reason}: {last_line}"
            self._fail("transcoder", reason, label="FFmpeg exited unexpectedly")
            return

        self._teardown()

    def _on_input_error(self, error: Exception) -> None:
        self._fail("input", getattr(error, "strerror", None) or str(error))

    def _fail(self, stage: str, reason: str, label: Optional[str] = None) -> None:
        """单次触发的错误闩：只有第一个错误会被记录"""
        with self._lock:
            if self._error is not None or self._closed:
                return
            self._error = DecodeError(stage, self.title, reason, label=label)
        self.logger.error(f"❌ 解码管线失败: {self._error}")
        self._teardown()

    def _teardown(self) -> None:
        with self._lock:
            if self._torn_down:
                return
            self._torn_down = True

        try:
            self._input.close()
        except OSError as e:
            self.logger.debug(f"关闭输入文件失败: {e}")
        if getattr(self, "_process", None):
            super().cleanup()
        self.logger.debug(f"解码管线已拆除: {self.title}")


class DecodePipeline:
    """
    解码管线工厂

    open() 要么返回一条已启动的 RawAudioStream，要么立即抛出 DecodeError。
    """

    def __init__(
        self,
        executable: str = "ffmpeg",
        before_options: Optional[str] = BEFORE_OPTIONS,
        options: Optional[str] = OPTIONS
    ):
        """
        Args:
            executable: 转码器可执行文件
            before_options: 放在输入参数之前的转码器参数
            options: 放在输出参数之前的转码器参数
        """
        self.executable = executable
        self.before_options = before_options
        self.options = options
        self.logger = logging.getLogger("radiobot.playback.decode")

    async def open(self, track_path: str) -> RawAudioStream:
        """
        为曲目创建解码管线

        Args:
            track_path: 曲目文件路径

        Returns:
            已启动的原始音频流

        Raises:
            DecodeError: 文件无法读取或转码器无法启动
        """
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._open_blocking, track_path)

    def _open_blocking(self, track_path: str) -> RawAudioStream:
        title = display_name(track_path)

        try:
            source = open(track_path, "rb")
        except OSError as e:
            raise DecodeError("input", title, e.strerror or str(e)) from e

        try:
            stream = RawAudioStream(
                track_path,
                source,
                executable=self.executable,
                before_options=self.before_options,
                options=self.options
            )
        except (discord.ClientException, OSError) as e:
            source.close()
            raise DecodeError("transcoder", title, getattr(e, "strerror", None) or str(e)) from e

        self.logger.debug(f"🎧 解码管线已启动: {title}")
        return stream
