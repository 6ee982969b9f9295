"""只写日志的 UI / 地图协作者，用于无界面运行。"""

from typing import List

from jarvis_core.domain.models import Role
from jarvis_core.infrastructure.logging.logger import get_logger
from jarvis_core.orchestrator.intents import extract_destination


logger = get_logger("ui")


class LoggingNotificationSink:
    def state_changed(self, previous: str, current: str) -> None:
        logger.info("State changed", extra={"extra": {"from": previous, "to": current}})

    def notice(self, message: str) -> None:
        logger.info(message, extra={"extra": {"event": "notice"}})

    def chat_turn(self, role: Role, text: str) -> None:
        logger.info(text, extra={"extra": {"event": "chat_turn", "role": role}})

    def thinking(self, active: bool) -> None:
        logger.debug("Thinking indicator", extra={"extra": {"active": active}})

    def partial_response(self, delta: str) -> None:
        logger.debug("Partial response", extra={"extra": {"delta": delta}})


class LoggingMapCollaborator:
    def __init__(self):
        self.requests: List[str] = []

    def process_map_request(self, raw_response_text: str) -> None:
        self.requests.append(raw_response_text)
        destination = extract_destination(raw_response_text)
        logger.info(
            "Map request",
            extra={"extra": {"destination": destination or None, "show_current_location": not destination}},
        )
