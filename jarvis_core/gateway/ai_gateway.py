"""AI 请求网关。

AIRequestGateway 是编排器与 Provider 之间唯一的通道：

- 本地限流（RateLimiter）与“同一时间至多一个在途请求”；
- 按配置生成上下文快照并封装成 ChatRequest；
- 用 request_timeout 限定整次请求（含流式读取）；
- 把 Provider 抛出的各种 BusinessError 收敛成 Failure(kind, message)；
- 成功时用 ResponseProcessor 处理首个候选并返回 Success。

send() 对每次调用恰好产出一个 RequestOutcome；被取消时 CancelledError
照常向上传播，但在途标记一定会被清除。
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from jarvis_core.domain.conversation import ConversationContext
from jarvis_core.domain.exceptions import (
    ApiError,
    BusinessError,
    RateLimitError,
    RequestTimeoutError,
    ResponseParseError,
    ValidationError,
)
from jarvis_core.domain.models import (
    ChatChoice,
    ChatRequest,
    ChatResult,
    ChatUsage,
    ConversationMessage,
    Failure,
    FailureKind,
    RequestOutcome,
    Success,
)
from jarvis_core.gateway.rate_limiter import RateLimiter
from jarvis_core.gateway.response_processor import ResponseProcessor
from jarvis_core.infrastructure.logging.logger import get_logger
from jarvis_core.providers.base import ProviderClient
from jarvis_core.providers.registry import DEFAULT_LOGICAL_MODEL


logger = get_logger("gateway")

PartialCallback = Callable[[str], None]


@dataclass
class GatewayConfig:
    provider: str = "openai"
    model: str = DEFAULT_LOGICAL_MODEL
    max_tokens: int = 500
    temperature: float = 0.7
    include_history: bool = True  # 对应 maintain_context
    stream: bool = False
    request_timeout: float = 30.0

    @classmethod
    def from_settings(cls, settings) -> "GatewayConfig":
        return cls(
            provider=getattr(settings, "default_provider", "openai"),
            max_tokens=settings.max_tokens,
            temperature=settings.temperature,
            include_history=settings.maintain_context,
            stream=settings.enable_streaming_response,
            request_timeout=settings.request_timeout,
        )


class AIRequestGateway:
    def __init__(
        self,
        provider_client: ProviderClient,
        config: Optional[GatewayConfig] = None,
        rate_limiter: Optional[RateLimiter] = None,
        processor: Optional[ResponseProcessor] = None,
    ):
        self._provider_client = provider_client
        self._config = config or GatewayConfig()
        self._rate_limiter = rate_limiter or RateLimiter()
        self._processor = processor or ResponseProcessor()
        self._outstanding = False

    @property
    def is_busy(self) -> bool:
        return self._outstanding

    @property
    def rate_limiter(self) -> RateLimiter:
        return self._rate_limiter

    async def send(
        self,
        context: ConversationContext,
        user_text: str,
        on_partial: Optional[PartialCallback] = None,
    ) -> RequestOutcome:
        """发送一次请求并返回 Success / Failure。

        Args:
            context: 会话上下文（只读取快照，不修改）
            user_text: 本轮用户输入，单轮无状态模式下用于构造快照
            on_partial: 流式模式下每个文本增量的回调（可选）
        """
        log_ctx: Dict[str, Any] = {"provider": self._provider_client.name}

        if self._outstanding:
            self._log(logging.WARNING, "Request rejected: another request is in flight", log_ctx)
            return Failure(FailureKind.RATE_LIMITED, "A request is already in flight")
        try:
            self._rate_limiter.acquire()
        except RateLimitError as e:
            self._log(logging.WARNING, "Request rate limited", log_ctx, reason=e.message)
            return Failure(FailureKind.RATE_LIMITED, e.message)

        self._outstanding = True
        start_time = time.monotonic()
        try:
            req = ChatRequest(
                provider=self._config.provider,
                model=self._config.model,
                messages=context.snapshot(self._config.include_history, user_text),
                temperature=self._config.temperature,
                max_tokens=self._config.max_tokens,
                stream=self._config.stream,
            )
            self._log(
                logging.INFO,
                "Sending AI request",
                log_ctx,
                messages=len(req.messages),
                stream=req.stream,
                user_text=user_text,
            )
            try:
                result = await asyncio.wait_for(
                    self._complete(req, on_partial),
                    timeout=self._config.request_timeout,
                )
            except asyncio.TimeoutError:
                return self._failure(
                    RequestTimeoutError(code="TIMEOUT", message=f"No response within {self._config.request_timeout}s"),
                    log_ctx,
                )
            except BusinessError as e:
                return self._failure(e, log_ctx)

            if not result.choices:
                self._log(logging.ERROR, "No response choices received from API", log_ctx)
                return Failure(FailureKind.NO_CHOICES, "No response choices received from API")

            raw_text = result.choices[0].message.content
            if not isinstance(raw_text, str):
                return self._failure(
                    ResponseParseError(
                        code="PARSE_ERROR",
                        message="Response content is not text",
                        raw_body=repr(raw_text),
                    ),
                    log_ctx,
                )
            processed = self._processor.process(raw_text)
            usage = result.usage
            self._log(
                logging.INFO,
                "Received AI response",
                log_ctx,
                elapsed_seconds=round(time.monotonic() - start_time, 2),
                prompt_tokens=usage.prompt_tokens if usage else None,
                completion_tokens=usage.completion_tokens if usage else None,
                total_tokens=usage.total_tokens if usage else None,
            )
            return Success(text=processed, raw_text=raw_text, usage=usage)
        finally:
            self._outstanding = False

    async def _complete(self, req: ChatRequest, on_partial: Optional[PartialCallback]) -> ChatResult:
        if not req.stream:
            return await self._provider_client.chat(req)

        parts: List[str] = []
        usage: Optional[ChatUsage] = None
        finish_reason: Optional[str] = None
        async for chunk in self._provider_client.chat_stream(req):
            if chunk.delta_text:
                parts.append(chunk.delta_text)
                if on_partial is not None:
                    on_partial(chunk.delta_text)
            if chunk.usage is not None:
                usage = chunk.usage
            if chunk.finish_reason:
                finish_reason = chunk.finish_reason
        text = "".join(parts)
        choices: List[ChatChoice] = []
        if text:
            choices.append(
                ChatChoice(
                    index=0,
                    message=ConversationMessage(role="assistant", content=text),
                    finish_reason=finish_reason,
                )
            )
        return ChatResult(provider=self._provider_client.name, model=req.model, choices=choices, usage=usage)

    def _failure(self, error: BusinessError, log_ctx: Dict[str, Any]) -> Failure:
        """把 BusinessError 映射为 Failure。"""

        if isinstance(error, RequestTimeoutError):
            kind, message = FailureKind.TIMEOUT, error.message
        elif isinstance(error, ResponseParseError):
            # 原始响应体只进日志，不进入 Failure.message
            self._log(logging.ERROR, "Malformed AI response body", log_ctx, raw_body=error.extra.get("raw_body"))
            kind, message = FailureKind.PARSE_ERROR, "Failed to parse AI response"
        elif isinstance(error, (ApiError, ValidationError)):
            kind, message = FailureKind.API_ERROR, error.message
        elif isinstance(error, RateLimitError):
            kind, message = FailureKind.RATE_LIMITED, error.message
        else:
            # NetworkError 以及其他未细分的业务错误
            kind, message = FailureKind.NETWORK_ERROR, error.message
        self._log(
            logging.ERROR,
            "AI request failed",
            log_ctx,
            kind=kind.value,
            code=error.code,
            http_status=error.http_status,
            error=message,
        )
        return Failure(kind, message)

    @staticmethod
    def _log(level: int, message: str, log_ctx: Dict[str, Any], **fields: Any) -> None:
        payload = dict(log_ctx)
        payload.update(fields)
        logger.log(level, message, extra={"extra": payload})
