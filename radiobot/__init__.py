"""
Odysseia-Radio - 本地曲库电台机器人

将磁盘上的音乐目录按顺序循环播放到 Discord 语音频道，
每个服务器拥有独立的播放会话。
"""

__version__ = "1.0.0"
