"""
电台异常定义

所有可以直接展示给用户的错误都继承自 RadioError。
"""

from typing import Optional


class RadioError(Exception):
    """电台错误基类，消息可直接展示给用户"""


class ConnectTimeout(RadioError):
    """语音连接未能在限定时间内就绪"""


class PermissionDenied(RadioError):
    """机器人缺少语音频道的连接或发言权限"""


class TransportError(RadioError):
    """语音连接层错误"""


class NotConnected(RadioError):
    """当前没有语音连接"""

    def __init__(self, message: str = "Not connected to a voice channel."):
        super().__init__(message)


class EmptyLibrary(RadioError):
    """曲库为空"""

    def __init__(self, message: str = "Library is empty"):
        super().__init__(message)


class PreflightError(RadioError):
    """运行环境依赖检查失败"""


class DecodeError(RadioError):
    """
    解码管线错误

    记录出错的阶段、曲目显示名称和底层原因，
    同一条管线只会产生一个 DecodeError。
    """

    STAGE_LABELS = {
        "input": "Input stream failed",
        "transcoder": "FFmpeg stream failed",
        "buffer": "Audio buffer failed",
    }

    def __init__(
        self,
        stage: str,
        title: str,
        reason: Optional[str] = None,
        label: Optional[str] = None
    ):
        self.stage = stage
        self.title = title
        self.reason = reason or "Unknown stream error"
        label = label or self.STAGE_LABELS.get(stage, f"{stage} stage failed")
        super().__init__(f"{label} ({title}): {self.reason}")
