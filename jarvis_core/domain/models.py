"""统一的对话与结果数据模型。

本模块定义了语音助手内部在 Provider / Gateway / Orchestrator 之间共享的标准数据结构：

- ConversationMessage: 一条对话消息（system/user/assistant）。
- ChatRequest: 发给底层 AI Provider 的完整请求。
- ChatResult / ChatStreamChunk: 从 Provider 解析后的统一响应结果。
- Success / Failure: AIRequestGateway.send 的唯一产出（RequestOutcome）。

所有 Provider 适配器（如 OpenAIChatClient）都必须只依赖这些模型，
并负责在各自的 API JSON 和这些模型之间做转换。
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Literal, Optional, List, Union


# 消息角色类型（与 OpenAI chat/completions 的 role 字段对应）
Role = Literal["system", "user", "assistant"]


def _now_seconds() -> int:
    return int(time.time())


@dataclass(frozen=True)
class ConversationMessage:
    """一条对话消息，既可用于请求，也可用于响应。

    - role: 消息角色，system/user/assistant。
    - content: 纯文本内容。
    - timestamp: 追加时的 Unix 秒级时间戳。

    追加到 ConversationContext 后不可变；system 消息的内容替换
    由 ConversationContext 以同位置替换的方式完成。
    """

    role: Role
    content: str
    timestamp: int = field(default_factory=_now_seconds)

    def to_payload(self) -> dict:
        return {"role": self.role, "content": self.content}


@dataclass
class ChatRequest:
    """一次完整的聊天请求。

    Gateway 会将上下文快照生成 ChatRequest，再交给具体 ProviderClient。
    Provider 适配层负责把本结构转换成各家 API 的 JSON 请求体。
    """

    provider: str  # 逻辑 Provider 名，如 "openai"
    model: str  # 逻辑模型名，如 "jarvis-chat"（再由 registry 映射为真实模型名）
    messages: List[ConversationMessage]
    temperature: float = 0.7
    max_tokens: Optional[int] = None
    stream: bool = False


@dataclass
class ChatUsage:
    """Provider 返回的 token 统计信息（统一格式）。"""

    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


@dataclass
class ChatChoice:
    """单个候选回答（只使用 index=0 的一条）。"""

    index: int
    message: ConversationMessage
    finish_reason: Optional[str] = None


@dataclass
class ChatResult:
    """一次对话调用的最终结果。

    - choices: 一个或多个候选回答，可能为空（由 Gateway 判定为 NO_CHOICES）。
    - usage: 可选的 token 使用统计。
    - raw: 原始响应 JSON，用于调试或日志记录。
    """

    provider: str
    model: str
    choices: List[ChatChoice]
    usage: Optional[ChatUsage] = None
    raw: Optional[dict] = None


@dataclass
class ChatStreamChunk:
    """流式对话的单条增量：本次新增的文本以及（最后一条上的）用量统计。"""

    provider: str
    model: str
    delta_text: str
    finish_reason: Optional[str] = None
    usage: Optional[ChatUsage] = None
    raw: Optional[dict] = None


class FailureKind(str, Enum):
    """失败分类，仅用于诊断与日志；用户侧统一播报同一句兜底话术。"""

    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"
    NETWORK_ERROR = "network_error"
    API_ERROR = "api_error"
    NO_CHOICES = "no_choices"
    PARSE_ERROR = "parse_error"


@dataclass(frozen=True)
class Success:
    """请求成功。

    - text: 经过 ResponseProcessor 处理、可直接显示/播报的文本。
    - raw_text: 模型返回的原始文本（写入上下文、交给地图协作者）。
    """

    text: str
    raw_text: str
    usage: Optional[ChatUsage] = None


@dataclass(frozen=True)
class Failure:
    kind: FailureKind
    message: str = ""


RequestOutcome = Union[Success, Failure]
