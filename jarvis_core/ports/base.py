"""外部能力端口协议。

编排器只依赖这些抽象，语音识别 / 语音合成 / 地图 / UI 的具体实现都在核心之外。
事件通过监听者回调传递：端口的 subscribe(listener) 返回一个取消订阅的函数，
编排器在 shutdown 时逐一调用，保证会话重启不会泄漏订阅。
"""

from typing import Callable, Protocol

from jarvis_core.domain.models import Role


Unsubscribe = Callable[[], None]


class CaptureListener(Protocol):
    async def on_wake_word_detected(self) -> None:
        ...

    async def on_speech_captured(self, text: str) -> None:
        ...

    async def on_capture_error(self, message: str) -> None:
        ...


class OutputListener(Protocol):
    async def on_speech_finished(self) -> None:
        ...


class VoiceCapturePort(Protocol):
    """语音输入：唤醒词监听与指令采集，失败时抛 VoiceIOError。"""

    def subscribe(self, listener: CaptureListener) -> Unsubscribe:
        ...

    async def start_wake_word_listening(self) -> None:
        ...

    async def stop_listening(self) -> None:
        ...

    async def start_command_capture(self) -> None:
        ...

    async def stop_command_capture(self) -> None:
        ...


class VoiceOutputPort(Protocol):
    """语音输出：speak() 开始播报后立即返回，播报结束时回调 on_speech_finished。"""

    def subscribe(self, listener: OutputListener) -> Unsubscribe:
        ...

    async def speak(self, text: str) -> None:
        ...

    async def stop_speaking(self) -> None:
        ...


class MapCollaborator(Protocol):
    def process_map_request(self, raw_response_text: str) -> None:
        ...


class NotificationSink(Protocol):
    """UI 观察者：只接收通知，不向状态机回传任何东西。"""

    def state_changed(self, previous: str, current: str) -> None:
        ...

    def notice(self, message: str) -> None:
        ...

    def chat_turn(self, role: Role, text: str) -> None:
        ...

    def thinking(self, active: bool) -> None:
        ...

    def partial_response(self, delta: str) -> None:
        ...
