"""有上限的会话上下文。

ConversationContext 只保存本次会话（进程生命周期内）的消息序列：
- 至多一条 system 消息，裁剪时永远不会被移除；
- 每次追加后立即裁剪到 max_history 以内；
- 唯一的写入方是 InteractionOrchestrator，外部只能通过本类 API 修改。
"""

import dataclasses
from typing import List, Optional, Tuple

from jarvis_core.domain.exceptions import ValidationError
from jarvis_core.domain.models import ConversationMessage, Role


DEFAULT_MAX_HISTORY = 20


class ConversationContext:
    def __init__(self, system_prompt: Optional[str] = None, max_history: int = DEFAULT_MAX_HISTORY):
        if max_history < 1:
            raise ValidationError(code="INVALID_MAX_HISTORY", message=f"max_history must be >= 1, got {max_history}")
        self._max_history = max_history
        self._system_prompt = system_prompt or None
        self._messages: List[ConversationMessage] = []
        if self._system_prompt:
            self._messages.append(ConversationMessage(role="system", content=self._system_prompt))

    @property
    def max_history(self) -> int:
        return self._max_history

    @property
    def system_prompt(self) -> Optional[str]:
        return self._system_prompt

    @property
    def messages(self) -> Tuple[ConversationMessage, ...]:
        return tuple(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def append_user(self, text: str) -> ConversationMessage:
        return self._append("user", text)

    def append_assistant(self, text: str) -> ConversationMessage:
        return self._append("assistant", text)

    def _append(self, role: Role, text: str) -> ConversationMessage:
        message = ConversationMessage(role=role, content=text)
        self._messages.append(message)
        self.trim()
        return message

    def set_system_prompt(self, text: str) -> None:
        """替换 system 消息内容（保持原位置）；不存在时插入到最前面。"""

        self._system_prompt = text
        for i, msg in enumerate(self._messages):
            if msg.role == "system":
                self._messages[i] = dataclasses.replace(msg, content=text)
                return
        self._messages.insert(0, ConversationMessage(role="system", content=text))
        self.trim()

    def trim(self) -> int:
        """移除最旧的非 system 消息直到长度不超过 max_history，返回移除条数。"""

        removed = 0
        while len(self._messages) > self._max_history:
            idx = self._first_non_system_index()
            if idx is None:
                break
            del self._messages[idx]
            removed += 1
        return removed

    def _first_non_system_index(self) -> Optional[int]:
        for i, msg in enumerate(self._messages):
            if msg.role != "system":
                return i
        return None

    def snapshot(self, include_history: bool = True, user_text: Optional[str] = None) -> List[ConversationMessage]:
        """生成随请求发送的消息序列。

        include_history=True 时返回完整历史；否则返回单轮无状态序列
        [System, User(user_text)]（未配置 system prompt 时只有 User）。
        user_text 缺省时取最近一条 user 消息。
        """

        if include_history:
            return list(self._messages)
        if user_text is None:
            user_text = next((m.content for m in reversed(self._messages) if m.role == "user"), "")
        minimal: List[ConversationMessage] = []
        if self._system_prompt:
            minimal.append(ConversationMessage(role="system", content=self._system_prompt))
        minimal.append(ConversationMessage(role="user", content=user_text))
        return minimal

    def clear(self) -> None:
        self._messages.clear()
        if self._system_prompt:
            self._messages.append(ConversationMessage(role="system", content=self._system_prompt))
