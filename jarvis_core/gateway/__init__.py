"""AI 请求网关：限流、超时、响应后处理与错误分类。"""

from jarvis_core.gateway.ai_gateway import AIRequestGateway, GatewayConfig
from jarvis_core.gateway.rate_limiter import RateLimiter
from jarvis_core.gateway.response_processor import ResponseProcessor

__all__ = ["AIRequestGateway", "GatewayConfig", "RateLimiter", "ResponseProcessor"]
