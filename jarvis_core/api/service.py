"""会话装配模块。

把配置、会话上下文、网关与各端口显式地注入 InteractionOrchestrator，
核心模块内部不做任何全局查找。
"""

from dataclasses import dataclass
from typing import Optional

from jarvis_core.config.settings import Settings
from jarvis_core.domain.conversation import ConversationContext
from jarvis_core.gateway.ai_gateway import AIRequestGateway, GatewayConfig
from jarvis_core.gateway.rate_limiter import RateLimiter
from jarvis_core.gateway.response_processor import ResponseProcessor
from jarvis_core.infrastructure.logging.logger import logger
from jarvis_core.orchestrator.engine import InteractionOrchestrator, OrchestratorConfig
from jarvis_core.ports.base import MapCollaborator, NotificationSink, VoiceCapturePort, VoiceOutputPort
from jarvis_core.prompts import load_system_prompt
from jarvis_core.providers import create_provider
from jarvis_core.providers.base import ProviderClient


@dataclass
class Session:
    """一次会话拥有的全部对象；不同会话之间不共享任何可变状态。"""

    orchestrator: InteractionOrchestrator
    context: ConversationContext
    gateway: AIRequestGateway


def create_session(
    settings: Settings,
    capture: VoiceCapturePort,
    output: VoiceOutputPort,
    map_collaborator: Optional[MapCollaborator] = None,
    sink: Optional[NotificationSink] = None,
    provider: Optional[ProviderClient] = None,
) -> Session:
    """根据配置装配一个新会话。

    Args:
        settings: 已加载并完成钳制的配置
        capture: 语音输入端口
        output: 语音输出端口
        map_collaborator: 地图协作者（可选）
        sink: UI 通知接收者（可选，默认只写日志）
        provider: 自定义 Provider（可选，默认按配置创建）

    Returns:
        Session，其中 orchestrator 处于 Idle，需调用 start() 开始监听
    """
    system_prompt = settings.system_prompt or load_system_prompt()
    context = ConversationContext(
        system_prompt=system_prompt,
        max_history=settings.max_conversation_history,
    )
    gateway = AIRequestGateway(
        provider_client=provider or create_provider(settings),
        config=GatewayConfig.from_settings(settings),
        rate_limiter=RateLimiter(min_interval=settings.min_request_interval),
        processor=ResponseProcessor(),
    )
    orchestrator = InteractionOrchestrator(
        context=context,
        gateway=gateway,
        capture=capture,
        output=output,
        map_collaborator=map_collaborator,
        sink=sink,
        config=OrchestratorConfig.from_settings(settings),
    )
    if not settings.has_api_key:
        logger.warning("OpenAI API key is missing; AI requests will fail")
    logger.info(
        "Session created",
        extra={"extra": {
            "model": settings.ai_model,
            "max_history": settings.max_conversation_history,
            "maintain_context": settings.maintain_context,
            "stream": settings.enable_streaming_response,
        }},
    )
    return Session(orchestrator=orchestrator, context=context, gateway=gateway)
