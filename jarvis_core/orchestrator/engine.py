"""交互编排器核心模块。

InteractionOrchestrator 是一个运行在单个 asyncio 事件循环上的回合状态机：

    Idle → Listening → WakeDetected → Capturing → AwaitingAI → Speaking → Listening
                 ↑            (timeout) ↓              (failure: fallback) ↓
                 └──────────────────────┴──────── ErrorRecovery ───────────┘

- 所有状态变化都经过 _transition()，外部只能读取 state。
- 每个在途操作（指令采集、AI 请求、一次播报）都持有一个 epoch 令牌；
  完成回调先比对令牌，过期的完成（被取消 / 已超时 / 已急停）直接丢弃。
- 采集超时与语音结果的竞争按“先到先得”处理：先消费令牌的一方胜出。
- emergency_stop() 是唯一的取消入口，任何状态下都可调用，结束于 Listening。
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from jarvis_core.domain.conversation import ConversationContext
from jarvis_core.domain.exceptions import VoiceIOError
from jarvis_core.domain.models import Failure, FailureKind, RequestOutcome, Success
from jarvis_core.gateway.ai_gateway import AIRequestGateway
from jarvis_core.infrastructure.logging.logger import get_logger
from jarvis_core.orchestrator.intents import MAP_KEYWORDS, contains_map_intent
from jarvis_core.ports.base import (
    MapCollaborator,
    NotificationSink,
    Unsubscribe,
    VoiceCapturePort,
    VoiceOutputPort,
)
from jarvis_core.ports.logging_adapters import LoggingNotificationSink


logger = get_logger("orchestrator")

FALLBACK_MESSAGE = "Sorry, I encountered an error. Please try again."
NO_SPEECH_MESSAGE = "I didn't hear anything. Try again."
VOICE_ERROR_MESSAGE = "Voice system error. Try again."


class OrchestratorState(str, Enum):
    IDLE = "idle"
    LISTENING = "listening"
    WAKE_DETECTED = "wake_detected"
    CAPTURING = "capturing"
    AWAITING_AI = "awaiting_ai"
    SPEAKING = "speaking"
    ERROR_RECOVERY = "error_recovery"


@dataclass
class OrchestratorConfig:
    voice_timeout_seconds: float = 5.0
    fallback_message: str = FALLBACK_MESSAGE
    no_speech_message: str = NO_SPEECH_MESSAGE
    voice_error_message: str = VOICE_ERROR_MESSAGE
    map_keywords: Sequence[str] = MAP_KEYWORDS

    @classmethod
    def from_settings(cls, settings) -> "OrchestratorConfig":
        return cls(voice_timeout_seconds=settings.voice_timeout_seconds)


class InteractionOrchestrator:
    def __init__(
        self,
        context: ConversationContext,
        gateway: AIRequestGateway,
        capture: VoiceCapturePort,
        output: VoiceOutputPort,
        map_collaborator: Optional[MapCollaborator] = None,
        sink: Optional[NotificationSink] = None,
        config: Optional[OrchestratorConfig] = None,
    ):
        self._context = context
        self._gateway = gateway
        self._capture = capture
        self._output = output
        self._map = map_collaborator
        self._sink = sink or LoggingNotificationSink()
        self._config = config or OrchestratorConfig()

        self._state = OrchestratorState.IDLE
        self._processing = False
        self._epoch = 0
        # 令牌为 None 表示对应操作不在途
        self._capture_token: Optional[int] = None
        self._request_token: Optional[int] = None
        self._utterance_token: Optional[int] = None
        self._capture_timer: Optional[asyncio.Task] = None
        self._request_task: Optional[asyncio.Task] = None
        self._unsubscribers: List[Unsubscribe] = []

    @property
    def state(self) -> OrchestratorState:
        return self._state

    @property
    def is_processing(self) -> bool:
        return self._processing

    @property
    def is_listening(self) -> bool:
        return self._state is OrchestratorState.LISTENING

    @property
    def context(self) -> ConversationContext:
        return self._context

    # ------------------------------------------------------------------
    # 生命周期
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Idle → Listening：订阅端口事件并开启唤醒词监听。"""
        if self._state is not OrchestratorState.IDLE:
            self._log(logging.DEBUG, "Start ignored", state=self._state.value)
            return
        self._attach()
        await self._enter_listening("start")

    async def stop_listening(self) -> None:
        """Listening → Idle：暂停唤醒词监听（订阅保留，可再次 start）。"""
        if self._state is not OrchestratorState.LISTENING:
            return
        self._transition(OrchestratorState.IDLE, "stop listening")
        try:
            await self._capture.stop_listening()
        except VoiceIOError as e:
            self._log(logging.WARNING, "Failed to stop listening", error=e.message)

    async def toggle_listening(self) -> None:
        if self._state is OrchestratorState.LISTENING:
            await self.stop_listening()
        elif self._state is OrchestratorState.IDLE:
            await self.start()

    async def emergency_stop(self) -> None:
        """取消一切在途操作并直接回到 Listening；可在任何状态下重复调用。"""
        self._log(logging.INFO, "Emergency stop", state=self._state.value)
        had_capture = await self._cancel_outstanding()
        self._attach()
        await self._stop_output()
        if had_capture:
            await self._stop_capture()
        await self._enter_listening("emergency stop")

    async def shutdown(self) -> None:
        """取消在途操作、关闭监听、退订所有端口事件，回到 Idle。"""
        had_capture = await self._cancel_outstanding()
        await self._stop_output()
        if had_capture:
            await self._stop_capture()
        try:
            await self._capture.stop_listening()
        except VoiceIOError as e:
            self._log(logging.WARNING, "Failed to stop listening", error=e.message)
        self._detach()
        self._transition(OrchestratorState.IDLE, "shutdown")

    # ------------------------------------------------------------------
    # 端口事件（CaptureListener / OutputListener）
    # ------------------------------------------------------------------

    async def on_wake_word_detected(self) -> None:
        if self._processing or self._state is not OrchestratorState.LISTENING:
            self._log(logging.DEBUG, "Wake word ignored", state=self._state.value, processing=self._processing)
            return
        self._transition(OrchestratorState.WAKE_DETECTED, "wake word detected")
        token = self._next_epoch()
        self._capture_token = token
        try:
            await self._capture.start_command_capture()
        except VoiceIOError as e:
            if self._capture_token == token:
                self._capture_token = None
                await self._recover("capture start failed", e.message)
            return
        if self._capture_token != token:
            # 启动采集期间已被急停或已收到结果
            return
        self._transition(OrchestratorState.CAPTURING, "capture started")
        self._capture_timer = asyncio.create_task(self._capture_timeout(token))

    async def on_speech_captured(self, text: str) -> None:
        token = self._capture_token
        if token is None:
            self._log(logging.DEBUG, "Late speech ignored", state=self._state.value, text=text)
            return
        text = (text or "").strip()
        if not text:
            return
        self._capture_token = None
        self._cancel_capture_timer()

        self._sink.chat_turn("user", text)
        self._context.append_user(text)
        self._processing = True
        request_token = self._next_epoch()
        self._request_token = request_token
        self._transition(OrchestratorState.AWAITING_AI, "speech captured")
        self._sink.thinking(True)
        self._request_task = asyncio.create_task(self._run_request(request_token, text))
        await self._stop_capture()

    async def on_capture_error(self, message: str) -> None:
        if self._state not in (
            OrchestratorState.LISTENING,
            OrchestratorState.WAKE_DETECTED,
            OrchestratorState.CAPTURING,
        ):
            self._log(logging.WARNING, "Capture error ignored", state=self._state.value, error=message)
            return
        self._capture_token = None
        self._cancel_capture_timer()
        await self._recover("capture error", message)

    async def on_speech_finished(self) -> None:
        if self._utterance_token is None or self._state is not OrchestratorState.SPEAKING:
            self._log(logging.DEBUG, "Speech finished ignored", state=self._state.value)
            return
        self._utterance_token = None
        await self._enter_listening("speech finished")

    # ------------------------------------------------------------------
    # 内部流程
    # ------------------------------------------------------------------

    async def _capture_timeout(self, token: int) -> None:
        await asyncio.sleep(self._config.voice_timeout_seconds)
        if self._capture_token != token:
            return
        self._capture_token = None
        self._capture_timer = None
        self._log(logging.INFO, "Voice capture timeout", timeout=self._config.voice_timeout_seconds)
        await self._stop_capture()
        if self._epoch != token:
            return
        self._sink.notice(self._config.no_speech_message)
        await self._enter_listening("capture timeout")

    async def _run_request(self, token: int, text: str) -> None:
        try:
            outcome: RequestOutcome = await self._gateway.send(
                self._context,
                text,
                on_partial=lambda delta: self._on_partial(token, delta),
            )
        except asyncio.CancelledError:
            self._log(logging.INFO, "AI request cancelled")
            raise
        except Exception as e:  # noqa: BLE001 - 意外异常按网络错误处理，不停留在 AwaitingAI
            logger.exception("Unexpected gateway error")
            outcome = Failure(FailureKind.NETWORK_ERROR, str(e))

        if self._request_token != token:
            self._log(logging.INFO, "Discarding stale AI outcome")
            return
        self._request_token = None
        self._request_task = None
        self._processing = False
        self._sink.thinking(False)

        if isinstance(outcome, Success):
            await self._handle_success(outcome)
        else:
            await self._handle_failure(outcome)

    def _on_partial(self, token: int, delta: str) -> None:
        if self._request_token == token:
            self._sink.partial_response(delta)

    async def _handle_success(self, outcome: Success) -> None:
        self._context.append_assistant(outcome.raw_text)
        self._sink.chat_turn("assistant", outcome.text)
        if self._map is not None and contains_map_intent(outcome.raw_text, self._config.map_keywords):
            self._log(logging.INFO, "Map intent detected")
            self._map.process_map_request(outcome.raw_text)
        await self._speak(outcome.text, "ai success")

    async def _handle_failure(self, outcome: Failure) -> None:
        if outcome.kind is FailureKind.RATE_LIMITED:
            # 本地限流只记录，不打扰用户
            self._log(logging.WARNING, "AI request dropped", reason=outcome.message)
            await self._enter_listening("rate limited")
            return
        self._log(logging.ERROR, "AI error", kind=outcome.kind.value, error=outcome.message)
        self._sink.chat_turn("assistant", self._config.fallback_message)
        await self._speak(self._config.fallback_message, f"ai failure: {outcome.kind.value}")

    async def _speak(self, text: str, reason: str) -> None:
        if not text.strip():
            await self._enter_listening("nothing to say")
            return
        token = self._next_epoch()
        self._utterance_token = token
        self._transition(OrchestratorState.SPEAKING, reason)
        try:
            await self._output.speak(text)
        except VoiceIOError as e:
            if self._utterance_token == token:
                self._utterance_token = None
                await self._recover("speech output failed", e.message)

    async def _recover(self, reason: str, message: str) -> None:
        self._transition(OrchestratorState.ERROR_RECOVERY, reason)
        self._log(logging.ERROR, "Voice I/O error", reason=reason, error=message)
        self._sink.notice(self._config.voice_error_message)
        await self._stop_capture()
        await self._enter_listening("recovered")

    async def _enter_listening(self, reason: str) -> None:
        self._transition(OrchestratorState.LISTENING, reason)
        try:
            await self._capture.start_wake_word_listening()
        except VoiceIOError as e:
            self._log(logging.ERROR, "Failed to start wake word listening", error=e.message)
            self._sink.notice(self._config.voice_error_message)

    async def _cancel_outstanding(self) -> bool:
        """作废所有令牌，取消计时器与 AI 请求并等待请求任务结束，返回取消前是否有采集在途。"""
        self._next_epoch()
        had_capture = self._capture_token is not None or self._state in (
            OrchestratorState.WAKE_DETECTED,
            OrchestratorState.CAPTURING,
        )
        self._capture_token = None
        self._request_token = None
        self._utterance_token = None
        self._cancel_capture_timer()
        task = self._request_task
        self._request_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            # 等待网关清除在途标记，之后的新指令不会被误判为并发请求
            await asyncio.wait({task})
        if self._processing:
            self._processing = False
            self._sink.thinking(False)
        return had_capture

    def _cancel_capture_timer(self) -> None:
        timer = self._capture_timer
        self._capture_timer = None
        if timer is not None and not timer.done() and timer is not asyncio.current_task():
            timer.cancel()

    async def _stop_capture(self) -> None:
        try:
            await self._capture.stop_command_capture()
        except VoiceIOError as e:
            self._log(logging.WARNING, "Failed to stop voice capture", error=e.message)

    async def _stop_output(self) -> None:
        try:
            await self._output.stop_speaking()
        except VoiceIOError as e:
            self._log(logging.WARNING, "Failed to stop speaking", error=e.message)

    def _attach(self) -> None:
        if self._unsubscribers:
            return
        self._unsubscribers.append(self._capture.subscribe(self))
        self._unsubscribers.append(self._output.subscribe(self))

    def _detach(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()

    def _next_epoch(self) -> int:
        self._epoch += 1
        return self._epoch

    def _transition(self, new_state: OrchestratorState, reason: str) -> None:
        previous = self._state
        if previous is new_state:
            return
        self._state = new_state
        self._log(logging.INFO, "State transition", **{"from": previous.value, "to": new_state.value, "reason": reason})
        self._sink.state_changed(previous.value, new_state.value)

    @staticmethod
    def _log(level: int, message: str, **fields: Any) -> None:
        payload: Dict[str, Any] = dict(fields)
        logger.log(level, message, extra={"extra": payload})
