"""端口的参考实现：文本驱动的语音输入与计时模拟的语音输出。

真实设备上由平台 STT/TTS 引擎实现端口；这里的实现用于测试、演示和纯文本会话，
行为与编辑器模拟模式一致：唤醒词按子串匹配，播报时长按文本长度估算。
"""

import asyncio
from typing import List, Optional, Sequence

from jarvis_core.config.settings import DEFAULT_WAKE_WORDS
from jarvis_core.domain.exceptions import VoiceIOError
from jarvis_core.infrastructure.logging.logger import get_logger
from jarvis_core.orchestrator.intents import contains_wake_word
from jarvis_core.ports.base import CaptureListener, OutputListener, Unsubscribe


logger = get_logger("ports")


class SimulatedVoiceCapture:
    def __init__(self, wake_words: Optional[Sequence[str]] = None, fail_on_capture: bool = False):
        self.wake_words = list(wake_words or DEFAULT_WAKE_WORDS)
        self.fail_on_capture = fail_on_capture
        self.is_listening = False
        self.is_capturing = False
        self.calls: List[str] = []
        self._listeners: List[CaptureListener] = []

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def subscribe(self, listener: CaptureListener) -> Unsubscribe:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def start_wake_word_listening(self) -> None:
        self.calls.append("start_wake_word_listening")
        self.is_listening = True

    async def stop_listening(self) -> None:
        self.calls.append("stop_listening")
        self.is_listening = False

    async def start_command_capture(self) -> None:
        self.calls.append("start_command_capture")
        if self.fail_on_capture:
            raise VoiceIOError(code="CAPTURE_FAILED", message="Failed to start voice capture")
        self.is_capturing = True

    async def stop_command_capture(self) -> None:
        self.calls.append("stop_command_capture")
        self.is_capturing = False

    async def hear(self, text: str) -> None:
        """模拟识别到一句话：含唤醒词时触发唤醒，正在采集时作为指令上报。

        "hey jarvis, where is the museum" 这样的一整句会先触发唤醒，
        唤醒词之后的部分在采集已开启时直接作为指令上报。
        """

        text = (text or "").strip()
        if not text:
            return
        if self.is_listening and not self.is_capturing and contains_wake_word(text, self.wake_words):
            await self.emit_wake_word()
            remainder = self._strip_wake_word(text)
            if remainder and self.is_capturing:
                await self.emit_speech(remainder)
            return
        if self.is_capturing:
            await self.emit_speech(text)
            return
        logger.debug("Ignored speech outside of capture", extra={"extra": {"text": text}})

    async def emit_wake_word(self) -> None:
        for listener in list(self._listeners):
            await listener.on_wake_word_detected()

    async def emit_speech(self, text: str) -> None:
        self.is_capturing = False
        for listener in list(self._listeners):
            await listener.on_speech_captured(text)

    async def emit_error(self, message: str) -> None:
        self.is_capturing = False
        for listener in list(self._listeners):
            await listener.on_capture_error(message)

    def _strip_wake_word(self, text: str) -> str:
        lowered = text.lower()
        # 优先匹配最长的唤醒词，避免 "hey jarvis" 只剥掉 "jarvis"
        for word in sorted(self.wake_words, key=len, reverse=True):
            idx = lowered.find(word.lower())
            if idx >= 0:
                return text[idx + len(word):].strip(" ,.!?")
        return text


class SimulatedVoiceOutput:
    """按 max(min_duration, len * 0.05) / speech_rate 秒模拟播报，time_scale 用于测试加速。"""

    def __init__(
        self,
        speech_rate: float = 1.0,
        time_scale: float = 1.0,
        min_duration: float = 2.0,
        pitch: float = 1.0,
        volume: float = 0.8,
        language: str = "en-US",
    ):
        self.speech_rate = speech_rate
        self.pitch = pitch
        self.volume = volume
        self.language = language
        self.time_scale = time_scale
        self.min_duration = min_duration
        self.is_speaking = False
        self.spoken: List[str] = []
        self.stop_count = 0
        self._listeners: List[OutputListener] = []
        self._playback: Optional[asyncio.Task] = None

    @classmethod
    def from_settings(cls, settings, time_scale: float = 1.0) -> "SimulatedVoiceOutput":
        return cls(
            speech_rate=settings.speech_rate,
            time_scale=time_scale,
            pitch=settings.speech_pitch,
            volume=settings.speech_volume,
            language=settings.speech_language,
        )

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def subscribe(self, listener: OutputListener) -> Unsubscribe:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def estimate_duration(self, text: str) -> float:
        return max(self.min_duration, len(text) * 0.05) / self.speech_rate * self.time_scale

    async def speak(self, text: str) -> None:
        if not text:
            return
        self._cancel_playback()
        self.spoken.append(text)
        self.is_speaking = True
        logger.info(
            "[SIMULATED SPEECH]",
            extra={"extra": {
                "text": text,
                "language": self.language,
                "rate": self.speech_rate,
                "pitch": self.pitch,
                "volume": self.volume,
            }},
        )
        self._playback = asyncio.create_task(self._play(self.estimate_duration(text)))

    async def stop_speaking(self) -> None:
        self.stop_count += 1
        if not self.is_speaking:
            return
        self._cancel_playback()
        self.is_speaking = False
        await self._notify_finished()

    async def _play(self, duration: float) -> None:
        await asyncio.sleep(duration)
        self.is_speaking = False
        self._playback = None
        await self._notify_finished()

    def _cancel_playback(self) -> None:
        if self._playback is not None and not self._playback.done():
            self._playback.cancel()
        self._playback = None

    async def _notify_finished(self) -> None:
        for listener in list(self._listeners):
            await listener.on_speech_finished()
