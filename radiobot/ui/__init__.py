"""
界面模块 - 电台控制面板
"""

from .control_panel import (
    ControlIds,
    ControlPanelManager,
    ControlPanelView,
    build_panel_content,
    get_playback_status,
)

__all__ = [
    "ControlIds",
    "ControlPanelManager",
    "ControlPanelView",
    "build_panel_content",
    "get_playback_status",
]
