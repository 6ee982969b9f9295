"""OpenAI chat/completions Provider 适配器。

本模块负责：

1. 接收统一的 ChatRequest。
2. 将其转换为 OpenAI 兼容的 HTTP API 请求格式。
3. 调用 HTTP 接口并把网络/API 异常映射为 BusinessError 子类。
4. 将响应 JSON（或 SSE 流）解析为统一的 ChatResult / ChatStreamChunk 结构。

换句话说，这里就是“厂商 JSON ⇄ 项目内部统一模型”的转换层；
是否重试、如何向用户反馈由上层 AIRequestGateway / Orchestrator 决定。
"""

import json
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from jarvis_core.domain.models import (
    ChatRequest,
    ChatResult,
    ChatChoice,
    ChatUsage,
    ChatStreamChunk,
    ConversationMessage,
)
from jarvis_core.domain.exceptions import (
    ApiError,
    NetworkError,
    RequestTimeoutError,
    ResponseParseError,
    ValidationError,
)
from jarvis_core.providers.registry import OPENAI_CONFIG, ModelConfig, DEFAULT_LOGICAL_MODEL


class OpenAIChatClient:
    """OpenAI 提供方客户端实现。

    - name: Provider 名称（供日志/调试使用）。
    - chat: 非流式调用入口，返回 ChatResult。
    - chat_stream: 流式调用入口，逐条 yield ChatStreamChunk。
    """

    name = "openai"

    def __init__(self, settings):
        # Settings 里包含 base_url、api_key、超时等配置
        self._settings = settings

    async def chat(self, req: ChatRequest) -> ChatResult:
        """执行一次非流式对话调用。

        步骤：
        1. 读取模型配置（logical model -> provider model）。
        2. 构造 HTTP 请求 payload。
        3. 发送请求并捕获网络错误/超时/服务端错误。
        4. 使用统一的解析函数构造 ChatResult。
        """

        payload = self._build_payload(req, stream=False)
        try:
            async with httpx.AsyncClient(timeout=self._timeout(), trust_env=False) as client:
                resp = await client.post(self._url(), json=payload, headers=self._headers())
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(code="TIMEOUT", message=str(e) or "request timed out", http_status=408)
        except httpx.RequestError as e:
            # 网络错误：DNS 失败、连接被拒绝等
            raise NetworkError(code="NETWORK_ERROR", message=str(e) or type(e).__name__)
        if not 200 <= resp.status_code < 300:
            raise self._error_from_body(resp.status_code, resp.text)
        try:
            data = resp.json()
        except ValueError as e:
            raise ResponseParseError(
                code="PARSE_ERROR",
                message=f"Malformed response body: {e}",
                http_status=resp.status_code,
                raw_body=resp.text,
            )
        return self._parse_response(data, req, raw_text=resp.text)

    async def chat_stream(self, req: ChatRequest) -> AsyncIterator[ChatStreamChunk]:
        """执行一次流式对话调用，逐步 yield ChatStreamChunk。"""

        payload = self._build_payload(req, stream=True)
        try:
            async with httpx.AsyncClient(timeout=self._timeout(), trust_env=False) as client:
                async with client.stream("POST", self._url(), json=payload, headers=self._headers()) as resp:
                    if not 200 <= resp.status_code < 300:
                        await resp.aread()
                        raise self._error_from_body(resp.status_code, resp.text)
                    async for line in resp.aiter_lines():
                        if not line:
                            continue
                        data_str = line
                        if data_str.startswith("data:"):
                            data_str = data_str[5:].strip()
                        else:
                            data_str = data_str.strip()
                        if not data_str or data_str == "[DONE]":
                            continue
                        try:
                            payload_chunk = json.loads(data_str)
                        except json.JSONDecodeError:
                            continue
                        yield self._parse_stream_chunk(payload_chunk, req, raw_text=data_str)
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(code="TIMEOUT", message=str(e) or "request timed out", http_status=408)
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e) or type(e).__name__)

    def _url(self) -> str:
        base = getattr(self._settings, "openai_base_url", None) or OPENAI_CONFIG.base_url
        return f"{base.rstrip('/')}/chat/completions"

    def _timeout(self) -> float:
        return float(getattr(self._settings, "request_timeout", 30.0))

    def _headers(self) -> Dict[str, str]:
        api_key = getattr(self._settings, "openai_api_key", None)
        if not api_key:
            # 配置缺失走 ValidationError，方便上层统一处理
            raise ValidationError(code="MISSING_API_KEY", message="OPENAI_API_KEY not set")
        return {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    def _model_config(self, req: ChatRequest) -> ModelConfig:
        return OPENAI_CONFIG.models.get(req.model) or OPENAI_CONFIG.models[DEFAULT_LOGICAL_MODEL]

    def _build_payload(self, req: ChatRequest, stream: bool) -> dict:
        """将 ChatRequest 转成 chat/completions 所需的请求 JSON。"""

        model_cfg = self._model_config(req)
        # 配置里的 ai_model 优先于 registry 中的默认模型
        model_id = getattr(self._settings, "ai_model", None) or model_cfg.provider_model
        temperature = req.temperature if req.temperature is not None else model_cfg.default_temperature
        return {
            "model": model_id,
            "messages": [m.to_payload() for m in req.messages],
            "max_tokens": req.max_tokens or model_cfg.max_tokens,
            "temperature": temperature,
            "stream": stream,
        }

    @staticmethod
    def _error_from_body(status_code: int, body: str) -> Exception:
        """非 2xx：优先解析 {error: {message, type, param, code}}，否则视为网络错误。"""

        try:
            data = json.loads(body) if body else None
        except json.JSONDecodeError:
            data = None
        error = data.get("error") if isinstance(data, dict) else None
        if isinstance(error, dict) and error.get("message"):
            return ApiError(
                code="API_ERROR",
                message=str(error["message"]),
                http_status=status_code,
                type=error.get("type"),
                param=error.get("param"),
                error_code=error.get("code"),
            )
        return NetworkError(
            code="HTTP_ERROR",
            message=body or f"HTTP {status_code}",
            http_status=status_code,
        )

    def _parse_response(self, data: Any, req: ChatRequest, raw_text: str = "") -> ChatResult:
        """将原始响应 JSON 解析为统一的 ChatResult。"""

        if not isinstance(data, dict):
            raise ResponseParseError(code="PARSE_ERROR", message="Response is not a JSON object", raw_body=raw_text)
        raw_choices = data.get("choices") or []
        if not isinstance(raw_choices, list):
            raise ResponseParseError(code="PARSE_ERROR", message="'choices' is not a list", raw_body=raw_text)
        choices: List[ChatChoice] = []
        for i, ch in enumerate(raw_choices):
            if not isinstance(ch, dict):
                raise ResponseParseError(code="PARSE_ERROR", message="choice is not an object", raw_body=raw_text)
            msg = ch.get("message") or {}
            if not isinstance(msg, dict):
                raise ResponseParseError(code="PARSE_ERROR", message="choice message is not an object", raw_body=raw_text)
            cm = ConversationMessage(
                role=msg.get("role") or "assistant",
                content=self._content_text(msg.get("content"), raw_text),
            )
            choices.append(ChatChoice(index=ch.get("index", i), message=cm, finish_reason=ch.get("finish_reason")))
        return ChatResult(
            provider=self.name,
            model=req.model,
            choices=choices,
            usage=self._parse_usage(data.get("usage")),
            raw=data,
        )

    def _parse_stream_chunk(self, data: Any, req: ChatRequest, raw_text: str = "") -> ChatStreamChunk:
        """解析流式响应中的单条增量（只关心 index=0 的候选）。"""

        if not isinstance(data, dict):
            raise ResponseParseError(code="PARSE_ERROR", message="Stream chunk is not a JSON object", raw_body=raw_text)
        raw_choices = data.get("choices") or []
        if not isinstance(raw_choices, list):
            raise ResponseParseError(code="PARSE_ERROR", message="'choices' is not a list", raw_body=raw_text)
        delta_text = ""
        finish_reason: Optional[str] = None
        for ch in raw_choices:
            if not isinstance(ch, dict):
                raise ResponseParseError(code="PARSE_ERROR", message="choice is not an object", raw_body=raw_text)
            if ch.get("index", 0) != 0:
                continue
            delta = ch.get("delta") or {}
            if not isinstance(delta, dict):
                raise ResponseParseError(code="PARSE_ERROR", message="choice delta is not an object", raw_body=raw_text)
            delta_text = self._content_text(delta.get("content"), raw_text)
            finish_reason = ch.get("finish_reason")
            break
        return ChatStreamChunk(
            provider=self.name,
            model=req.model,
            delta_text=delta_text,
            finish_reason=finish_reason,
            usage=self._parse_usage(data.get("usage")),
            raw=data,
        )

    @staticmethod
    def _content_text(content: Any, raw_text: str) -> str:
        # 只接受纯文本 content；多段 content（list）等结构按解析失败处理
        if content is None:
            return ""
        if not isinstance(content, str):
            raise ResponseParseError(code="PARSE_ERROR", message="message content is not a string", raw_body=raw_text)
        return content

    @staticmethod
    def _parse_usage(usage_raw: Any) -> Optional[ChatUsage]:
        if not isinstance(usage_raw, dict) or not usage_raw:
            return None
        return ChatUsage(
            prompt_tokens=usage_raw.get("prompt_tokens", 0),
            completion_tokens=usage_raw.get("completion_tokens", 0),
            total_tokens=usage_raw.get("total_tokens", 0),
        )
