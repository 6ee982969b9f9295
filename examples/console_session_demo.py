"""Text-only Jarvis session: type what you would say, e.g. "hey jarvis, where is the museum".

Empty line triggers an emergency stop, "quit" ends the session.
"""

import asyncio

from jarvis_core import create_session
from jarvis_core.config.settings import settings
from jarvis_core.ports.logging_adapters import LoggingMapCollaborator
from jarvis_core.ports.simulated import SimulatedVoiceCapture, SimulatedVoiceOutput


class ConsoleSink:
    def state_changed(self, previous, current):
        print(f"  [{previous} -> {current}]")

    def notice(self, message):
        print(f"  ! {message}")

    def chat_turn(self, role, text):
        print(f"{role.capitalize()}: {text}")

    def thinking(self, active):
        if active:
            print("  ...thinking")

    def partial_response(self, delta):
        print(delta, end="", flush=True)


async def main() -> None:
    capture = SimulatedVoiceCapture(wake_words=settings.wake_words)
    output = SimulatedVoiceOutput.from_settings(settings, time_scale=0.1)
    session = create_session(
        settings,
        capture=capture,
        output=output,
        map_collaborator=LoggingMapCollaborator(),
        sink=ConsoleSink(),
    )
    await session.orchestrator.start()
    loop = asyncio.get_running_loop()
    try:
        while True:
            line = await loop.run_in_executor(None, input, "> ")
            if line.strip().lower() == "quit":
                break
            if not line.strip():
                await session.orchestrator.emergency_stop()
                continue
            await capture.hear(line)
    finally:
        await session.orchestrator.shutdown()


if __name__ == "__main__":
    asyncio.run(main())
