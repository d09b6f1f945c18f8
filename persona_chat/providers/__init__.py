"""补全服务 Provider 集成层。

- base: CompletionClient 协议。
- registry: Provider 与模型配置。
- openai_client: OpenAI 兼容协议的 httpx 实现（openai、glm 共用）。
"""

from typing import Optional

from persona_chat.config.settings import settings
from persona_chat.providers.base import CompletionClient
from persona_chat.providers.openai_client import OpenAICompatibleClient
from persona_chat.providers.registry import get_provider_config


def create_provider(name: Optional[str] = None) -> CompletionClient:
    """根据名称创建 Provider 实例，默认取配置中的 provider。"""

    provider_name = (name or getattr(settings, "default_provider", "openai")).lower()
    return OpenAICompatibleClient(get_provider_config(provider_name), settings)
