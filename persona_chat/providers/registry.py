"""Provider 与模型配置。

代码里只使用逻辑模型名（如 "persona-chat"），具体映射到哪个厂商模型由这里集中配置。
"""

from dataclasses import dataclass
from typing import Dict, Mapping


@dataclass
class ModelConfig:
    logical_name: str
    provider_model: str
    max_tokens: int
    default_temperature: float


@dataclass
class ProviderConfig:
    name: str
    base_url: str
    models: Dict[str, ModelConfig]


OPENAI_CONFIG = ProviderConfig(
    name="openai",
    base_url="https://api.openai.com/v1",
    models={
        "persona-chat": ModelConfig(
            logical_name="persona-chat",
            provider_model="gpt-4o-mini",
            max_tokens=1000,
            default_temperature=0.7,
        )
    },
)

# GLM / BigModel 同样兼容 chat/completions 协议
GLM_CONFIG = ProviderConfig(
    name="glm",
    base_url="https://open.bigmodel.cn/api/paas/v4",
    models={
        "persona-chat": ModelConfig(
            logical_name="persona-chat",
            provider_model="glm-4-flash",
            max_tokens=1000,
            default_temperature=0.7,
        )
    },
)


PROVIDER_REGISTRY: Mapping[str, ProviderConfig] = {
    "openai": OPENAI_CONFIG,
    "glm": GLM_CONFIG,
}


def get_provider_config(name: str) -> ProviderConfig:
    """根据名称获取 ProviderConfig，名称不区分大小写。"""

    key = name.lower()
    for k, cfg in PROVIDER_REGISTRY.items():
        if k.lower() == key:
            return cfg
    raise KeyError(f"Unknown provider: {name!r}")
