import asyncio

from jarvis_core.domain.conversation import ConversationContext
from jarvis_core.domain.exceptions import NetworkError
from jarvis_core.domain.models import ChatChoice, ChatResult, ChatStreamChunk, ConversationMessage
from jarvis_core.gateway import AIRequestGateway, GatewayConfig, RateLimiter
from jarvis_core.orchestrator.engine import (
    FALLBACK_MESSAGE,
    NO_SPEECH_MESSAGE,
    VOICE_ERROR_MESSAGE,
    InteractionOrchestrator,
    OrchestratorConfig,
    OrchestratorState,
)
from jarvis_core.ports.simulated import SimulatedVoiceCapture, SimulatedVoiceOutput


class FakeProvider:
    name = "fake"

    def __init__(self, text="It is sunny.", error=None, delay=0.0, deltas=None):
        self.text = text
        self.error = error
        self.delay = delay
        self.deltas = deltas or []
        self.requests = []

    async def chat(self, req):
        self.requests.append(req)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        message = ConversationMessage(role="assistant", content=self.text)
        return ChatResult(provider=self.name, model=req.model, choices=[ChatChoice(index=0, message=message)])

    async def chat_stream(self, req):
        self.requests.append(req)
        for delta in self.deltas:
            yield ChatStreamChunk(provider=self.name, model=req.model, delta_text=delta)


class RecordingSink:
    def __init__(self):
        self.states = []
        self.notices = []
        self.turns = []
        self.thinking_flags = []
        self.partials = []

    def state_changed(self, previous, current):
        self.states.append((previous, current))

    def notice(self, message):
        self.notices.append(message)

    def chat_turn(self, role, text):
        self.turns.append((role, text))

    def thinking(self, active):
        self.thinking_flags.append(active)

    def partial_response(self, delta):
        self.partials.append(delta)


class RecordingMap:
    def __init__(self, output):
        self.output = output
        self.requests = []
        self.spoken_before = []

    def process_map_request(self, raw_response_text):
        self.requests.append(raw_response_text)
        self.spoken_before.append(list(self.output.spoken))


class Harness:
    def __init__(self, provider, voice_timeout=5.0, limiter=None, stream=False, capture=None, output=None, with_map=False):
        self.provider = provider
        self.capture = capture or SimulatedVoiceCapture()
        self.output = output or SimulatedVoiceOutput(time_scale=0)
        self.sink = RecordingSink()
        self.context = ConversationContext(system_prompt="You are Jarvis.", max_history=20)
        self.gateway = AIRequestGateway(
            provider,
            GatewayConfig(stream=stream),
            rate_limiter=limiter or RateLimiter(min_interval=0),
        )
        self.map = RecordingMap(self.output) if with_map else None
        self.orchestrator = InteractionOrchestrator(
            context=self.context,
            gateway=self.gateway,
            capture=self.capture,
            output=self.output,
            map_collaborator=self.map,
            sink=self.sink,
            config=OrchestratorConfig(voice_timeout_seconds=voice_timeout),
        )

    async def turn(self, text, spoken_count=1):
        await self.capture.emit_wake_word()
        await self.capture.emit_speech(text)
        await wait_until(
            lambda: len(self.output.spoken) >= spoken_count
            and self.orchestrator.state is OrchestratorState.LISTENING
        )


async def wait_until(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


def test_full_turn_speaks_and_records_context():
    h = Harness(FakeProvider(text="It is **sunny**."))

    async def run():
        await h.orchestrator.start()
        assert h.orchestrator.is_listening
        await h.capture.emit_wake_word()
        assert h.orchestrator.state is OrchestratorState.CAPTURING
        await h.capture.emit_speech("What's the weather?")
        assert h.orchestrator.state is OrchestratorState.AWAITING_AI
        assert h.orchestrator.is_processing
        await wait_until(lambda: h.output.spoken and h.orchestrator.state is OrchestratorState.LISTENING)

    asyncio.run(run())

    assert h.output.spoken == ["It is sunny."]
    assert [(m.role, m.content) for m in h.context.messages] == [
        ("system", "You are Jarvis."),
        ("user", "What's the weather?"),
        ("assistant", "It is **sunny**."),
    ]
    assert h.sink.turns == [("user", "What's the weather?"), ("assistant", "It is sunny.")]
    assert h.sink.thinking_flags == [True, False]
    assert h.sink.states == [
        ("idle", "listening"),
        ("listening", "wake_detected"),
        ("wake_detected", "capturing"),
        ("capturing", "awaiting_ai"),
        ("awaiting_ai", "speaking"),
        ("speaking", "listening"),
    ]
    assert not h.orchestrator.is_processing
    assert "stop_command_capture" in h.capture.calls


def test_wake_phrase_with_command_in_one_utterance():
    h = Harness(FakeProvider(text="It is noon."))

    async def run():
        await h.orchestrator.start()
        await h.capture.hear("Hey Jarvis, what time is it?")
        await wait_until(lambda: h.output.spoken and h.orchestrator.is_listening)

    asyncio.run(run())
    assert h.context.messages[1].content == "what time is it"
    assert h.output.spoken == ["It is noon."]


def test_map_intent_dispatched_before_speaking():
    text = "The Louvre is marked on the map."
    h = Harness(FakeProvider(text=text), with_map=True)

    async def run():
        await h.orchestrator.start()
        await h.turn("Where is the Louvre?")

    asyncio.run(run())
    assert h.map.requests == [text]
    assert h.map.spoken_before == [[]]
    assert h.output.spoken == [text]


def test_no_map_dispatch_without_intent():
    h = Harness(FakeProvider(text="It is sunny."), with_map=True)

    async def run():
        await h.orchestrator.start()
        await h.turn("Weather?")

    asyncio.run(run())
    assert h.map.requests == []


def test_failure_speaks_fallback_and_keeps_context_clean():
    err = NetworkError(code="NETWORK_ERROR", message="connection refused")
    h = Harness(FakeProvider(error=err))

    async def run():
        await h.orchestrator.start()
        await h.turn("What's the weather?")

    asyncio.run(run())
    assert h.output.spoken == [FALLBACK_MESSAGE]
    assert [m.role for m in h.context.messages] == ["system", "user"]
    assert h.sink.turns[-1] == ("assistant", FALLBACK_MESSAGE)
    assert h.orchestrator.state is OrchestratorState.LISTENING


def test_capture_timeout_returns_to_listening_and_ignores_late_speech():
    provider = FakeProvider()
    h = Harness(provider, voice_timeout=0.05)

    async def run():
        await h.orchestrator.start()
        await h.capture.emit_wake_word()
        await wait_until(lambda: NO_SPEECH_MESSAGE in h.sink.notices)
        assert h.orchestrator.state is OrchestratorState.LISTENING
        await h.capture.emit_speech("too late")
        await asyncio.sleep(0.02)

    asyncio.run(run())
    assert provider.requests == []
    assert len(h.context) == 1
    assert h.capture.calls.count("stop_command_capture") == 1
    assert h.orchestrator.state is OrchestratorState.LISTENING


def test_speech_before_timeout_cancels_timer():
    h = Harness(FakeProvider(), voice_timeout=0.05)

    async def run():
        await h.orchestrator.start()
        await h.turn("Hello")
        await asyncio.sleep(0.1)

    asyncio.run(run())
    assert NO_SPEECH_MESSAGE not in h.sink.notices
    assert h.output.spoken == ["It is sunny."]


def test_wake_word_ignored_while_processing():
    provider = FakeProvider(delay=0.1)
    h = Harness(provider)

    async def run():
        await h.orchestrator.start()
        await h.capture.emit_wake_word()
        await h.capture.emit_speech("first")
        await h.capture.emit_wake_word()
        assert h.orchestrator.state is OrchestratorState.AWAITING_AI
        assert h.capture.calls.count("start_command_capture") == 1
        await wait_until(lambda: h.output.spoken and h.orchestrator.is_listening)

    asyncio.run(run())
    assert len(provider.requests) == 1


def test_emergency_stop_from_idle_is_idempotent():
    h = Harness(FakeProvider())

    async def run():
        await h.orchestrator.emergency_stop()
        await h.orchestrator.emergency_stop()

    asyncio.run(run())
    assert h.orchestrator.state is OrchestratorState.LISTENING
    assert h.capture.listener_count == 1
    assert h.output.listener_count == 1
    assert h.capture.is_listening


def test_emergency_stop_cancels_pending_request():
    provider = FakeProvider(delay=1.0)
    h = Harness(provider)

    async def run():
        await h.orchestrator.start()
        await h.capture.emit_wake_word()
        await h.capture.emit_speech("Tell me a story")
        await asyncio.sleep(0.01)
        assert h.gateway.is_busy
        await h.orchestrator.emergency_stop()
        assert h.orchestrator.state is OrchestratorState.LISTENING
        assert not h.orchestrator.is_processing
        await asyncio.sleep(0.02)

    asyncio.run(run())
    assert not h.gateway.is_busy
    assert h.output.spoken == []
    assert h.sink.thinking_flags == [True, False]
    assert [m.role for m in h.context.messages] == ["system", "user"]


def test_emergency_stop_while_speaking():
    h = Harness(FakeProvider(), output=SimulatedVoiceOutput(time_scale=1.0))

    async def run():
        await h.orchestrator.start()
        await h.capture.emit_wake_word()
        await h.capture.emit_speech("Hello")
        await wait_until(lambda: h.orchestrator.state is OrchestratorState.SPEAKING)
        await h.orchestrator.emergency_stop()

    asyncio.run(run())
    assert h.orchestrator.state is OrchestratorState.LISTENING
    assert not h.output.is_speaking
    assert h.output.stop_count == 1
    assert h.sink.states[-1] == ("speaking", "listening")


def test_shutdown_unsubscribes_and_restart_does_not_leak_listeners():
    h = Harness(FakeProvider())

    async def run():
        await h.orchestrator.start()
        await h.orchestrator.shutdown()
        assert h.orchestrator.state is OrchestratorState.IDLE
        assert h.capture.listener_count == 0
        assert h.output.listener_count == 0
        assert not h.capture.is_listening
        await h.orchestrator.start()

    asyncio.run(run())
    assert h.capture.listener_count == 1
    assert h.output.listener_count == 1
    assert h.orchestrator.is_listening


def test_capture_error_passes_through_recovery():
    h = Harness(FakeProvider())

    async def run():
        await h.orchestrator.start()
        await h.capture.emit_wake_word()
        await h.capture.emit_error("microphone unavailable")

    asyncio.run(run())
    assert ("capturing", "error_recovery") in h.sink.states
    assert h.sink.states[-1] == ("error_recovery", "listening")
    assert VOICE_ERROR_MESSAGE in h.sink.notices


def test_capture_start_failure_recovers():
    h = Harness(FakeProvider(), capture=SimulatedVoiceCapture(fail_on_capture=True))

    async def run():
        await h.orchestrator.start()
        await h.capture.emit_wake_word()

    asyncio.run(run())
    assert ("wake_detected", "error_recovery") in h.sink.states
    assert h.orchestrator.state is OrchestratorState.LISTENING
    assert VOICE_ERROR_MESSAGE in h.sink.notices


def test_rate_limited_request_is_silent():
    clock_now = [100.0]
    limiter = RateLimiter(min_interval=10.0, clock=lambda: clock_now[0])
    provider = FakeProvider()
    h = Harness(provider, limiter=limiter)

    async def run():
        await h.orchestrator.start()
        await h.turn("first")
        await h.capture.emit_wake_word()
        await h.capture.emit_speech("second")
        await wait_until(lambda: h.orchestrator.is_listening and not h.orchestrator.is_processing)

    asyncio.run(run())
    assert len(provider.requests) == 1
    assert h.output.spoken == ["It is sunny."]
    assert h.sink.notices == []
    assert FALLBACK_MESSAGE not in h.output.spoken


def test_stop_and_toggle_listening():
    h = Harness(FakeProvider())

    async def run():
        await h.orchestrator.start()
        await h.orchestrator.toggle_listening()
        assert h.orchestrator.state is OrchestratorState.IDLE
        assert not h.capture.is_listening
        await h.capture.emit_wake_word()
        assert h.orchestrator.state is OrchestratorState.IDLE
        await h.orchestrator.toggle_listening()

    asyncio.run(run())
    assert h.orchestrator.is_listening
    assert h.capture.is_listening


def test_streaming_partials_reach_sink():
    provider = FakeProvider(deltas=["Hel", "lo."])
    h = Harness(provider, stream=True)

    async def run():
        await h.orchestrator.start()
        await h.turn("Hi")

    asyncio.run(run())
    assert h.sink.partials == ["Hel", "lo."]
    assert h.output.spoken == ["Hello."]


def test_new_turn_right_after_emergency_stop_is_answered():
    provider = FakeProvider(delay=1.0)
    h = Harness(provider)

    async def run():
        await h.orchestrator.start()
        await h.capture.emit_wake_word()
        await h.capture.emit_speech("first")
        await asyncio.sleep(0.01)
        await h.orchestrator.emergency_stop()
        assert not h.gateway.is_busy
        provider.delay = 0.0
        await h.capture.emit_wake_word()
        await h.capture.emit_speech("second")
        await wait_until(lambda: h.output.spoken and h.orchestrator.is_listening)

    asyncio.run(run())
    assert len(provider.requests) == 2
    assert h.output.spoken == ["It is sunny."]
    assert [(m.role, m.content) for m in h.context.messages][1:] == [
        ("user", "first"),
        ("user", "second"),
        ("assistant", "It is sunny."),
    ]


def test_shutdown_waits_for_cancelled_request():
    h = Harness(FakeProvider(delay=1.0))

    async def run():
        await h.orchestrator.start()
        await h.capture.emit_wake_word()
        await h.capture.emit_speech("first")
        await asyncio.sleep(0.01)
        await h.orchestrator.shutdown()

    asyncio.run(run())
    assert h.orchestrator.state is OrchestratorState.IDLE
    assert not h.gateway.is_busy
    assert not h.orchestrator.is_processing
