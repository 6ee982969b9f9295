"""AI Provider 集成层。

该包下的模块负责：
- 定义 Provider 抽象接口 (base)。
- 维护 Provider 与模型配置 (registry)。
- 提供具体实现 (openai_client)。
"""

from typing import Optional

from jarvis_core.providers.base import ProviderClient
from jarvis_core.providers.openai_client import OpenAIChatClient
from jarvis_core.providers.registry import get_provider_config


def create_provider(settings, name: Optional[str] = None) -> ProviderClient:
    """根据名称创建 Provider 实例，默认取配置中的 provider。"""

    provider_name = (name or getattr(settings, "default_provider", "openai")).lower()
    # 未知名称直接抛 KeyError，避免静默落到错误的厂商
    get_provider_config(provider_name)
    return OpenAIChatClient(settings)

