"""基于关键词的轻量意图判断（尽力而为，误判属于可接受行为）。"""

import re
from typing import Iterable, Sequence

MAP_KEYWORDS: Sequence[str] = ("navigate", "directions", "map", "route", "location", "address", "where is")

_DESTINATION_PATTERNS = (
    re.compile(r"(?:navigate to|directions to|go to|find)\s+(.+)", re.IGNORECASE),
    re.compile(r"(?:where is|location of)\s+(.+)", re.IGNORECASE),
    re.compile(r"(?:show me|find)\s+(.+?)(?:\s+(?:on map|map))?$", re.IGNORECASE),
)


def contains_map_intent(text: str, keywords: Iterable[str] = MAP_KEYWORDS) -> bool:
    lowered = (text or "").lower()
    return any(keyword in lowered for keyword in keywords)


def contains_wake_word(text: str, wake_words: Iterable[str]) -> bool:
    lowered = (text or "").lower()
    return any(word.lower() in lowered for word in wake_words if word)


def extract_destination(text: str) -> str:
    """从地图类请求中提取目的地，提取不到时返回空字符串。"""

    for pattern in _DESTINATION_PATTERNS:
        match = pattern.search(text or "")
        if match:
            return match.group(1).strip().rstrip(".!?")
    return ""
