"""
运行时模块 - 启动前的环境检查
"""

from .preflight import run_preflight_checks

__all__ = ["run_preflight_checks"]
