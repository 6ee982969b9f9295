"""外部能力端口（语音输入/输出、地图、UI 通知）及参考实现。"""

from jarvis_core.ports.base import (
    CaptureListener,
    MapCollaborator,
    NotificationSink,
    OutputListener,
    VoiceCapturePort,
    VoiceOutputPort,
)

__all__ = [
    "CaptureListener",
    "MapCollaborator",
    "NotificationSink",
    "OutputListener",
    "VoiceCapturePort",
    "VoiceOutputPort",
]
