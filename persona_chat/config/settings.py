"""配置管理模块。

支持从 .env、config.yaml 以及环境变量加载配置，优先级：
初始化参数 > 环境变量 > .env > config.yaml > secrets。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("PERSONA_CHAT_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
    ])

    seen: set[Path] = set()
    for path in candidates:
        if not path or path in seen:
            continue
        seen.add(path)
        try:
            if path.exists():
                data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
                if isinstance(data, dict):
                    return data
                warnings.warn(f"Config file {path} is not a mapping, ignored")
        except (OSError, yaml.YAMLError) as exc:
            warnings.warn(f"Failed to read config file {path}: {exc}")
    return {}


class Settings(BaseSettings):
    """运行时配置。"""

    # ---- Provider ----
    default_provider: str = Field(default="openai", description="默认 Provider 名称，例如 openai、glm")
    default_model: str = Field(default="persona-chat", description="逻辑模型名，由 registry 映射为具体厂商模型")
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API 密钥")
    openai_base_url: str = Field(default="https://api.openai.com/v1", description="OpenAI API 基础URL")
    glm_api_key: Optional[str] = Field(default=None, description="GLM API 密钥")
    glm_base_url: str = Field(default="https://open.bigmodel.cn/api/paas/v4", description="GLM API 基础URL")
    http_timeout: float = Field(default=30.0, ge=1.0, description="补全调用超时时间（秒）")
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=1000, ge=1)

    # ---- Chat pipeline ----
    max_history_turns: int = Field(default=20, ge=0, le=200, description="随请求发送的最大历史条数")
    part_delay_min: float = Field(default=0.5, ge=0.0, description="分段之间的最小延迟（秒）")
    part_delay_max: float = Field(default=1.5, ge=0.0, description="分段之间的最大延迟（秒，不含）")

    # ---- Client-side storage ----
    storage_path: str = Field(default=".storage/chat_history.json", description="本地聊天记录文件")
    max_messages_per_persona: int = Field(default=1000, ge=1)
    max_personas: int = Field(default=10, ge=1)
    storage_max_bytes: Optional[int] = Field(default=5 * 1024 * 1024, description="本地存储容量上限，None 表示不限制")

    # ---- Client ----
    api_base_url: str = Field(default="http://localhost:3001")
    client_timeout: float = Field(default=10.0, gt=0.0)
    retry_max_attempts: int = Field(default=3, ge=1)
    retry_base_delay: float = Field(default=1.0, ge=0.0)
    persona_cache_ttl: float = Field(default=300.0, ge=0.0, description="人设列表缓存有效期（秒）")

    # ---- Server ----
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3001)
    frontend_url: str = Field(default="http://localhost:3000")
    environment: str = Field(default="production", description="development 时错误响应携带详细信息")

    # ---- Logging ----
    log_dir: str = Field(default="logs", description="日志目录")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator("openai_api_key", "glm_api_key")
    @classmethod
    def validate_api_key(cls, v: Optional[str]) -> Optional[str]:
        if v and len(v) < 10:
            raise ValueError("API key seems too short")
        return v

    @model_validator(mode="after")
    def validate_delay_range(self) -> "Settings":
        if self.part_delay_max < self.part_delay_min:
            raise ValueError("part_delay_max must not be smaller than part_delay_min")
        return self

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            cls._config_source,
            file_secret_settings,
        )


settings = Settings()
