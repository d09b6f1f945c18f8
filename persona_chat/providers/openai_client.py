"""OpenAI 兼容的 chat/completions 适配器。

- URL: {base_url}/chat/completions
- 认证: Authorization: Bearer <api_key>

只做请求/响应式调用（不开启 stream），分段与节奏由 CompletionStreamer 负责。
429 会按响应体里的 error.code 区分为额度耗尽与限流两种错误，均不在此处重试。
"""

from typing import Any, Dict

import httpx

from persona_chat.domain.exceptions import (
    ApiError,
    NetworkError,
    UpstreamQuotaExceeded,
    UpstreamRateLimited,
    ValidationError,
)
from persona_chat.domain.models import ChatChoice, ChatMessage, ChatRequest, ChatResult, ChatUsage
from persona_chat.providers.registry import ModelConfig, ProviderConfig


QUOTA_ERROR_CODES = {"insufficient_quota"}


class OpenAICompatibleClient:
    def __init__(self, provider_config: ProviderConfig, cfg):
        self._provider = provider_config
        self._settings = cfg
        self.name = provider_config.name

    @property
    def _api_key(self):
        return getattr(self._settings, f"{self.name}_api_key", None)

    @property
    def _base_url(self) -> str:
        return getattr(self._settings, f"{self.name}_base_url", None) or self._provider.base_url

    def chat(self, req: ChatRequest) -> ChatResult:
        if not self._api_key:
            raise ValidationError(code="MISSING_API_KEY", message=f"{self.name.upper()}_API_KEY not set")
        try:
            model_cfg = self._provider.models[req.model]
        except KeyError:
            raise ValidationError(code="UNKNOWN_MODEL", message=f"Unknown model {req.model!r} for {self.name}") from None
        payload = self._build_payload(req, model_cfg)
        try:
            with httpx.Client(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = client.post(
                    f"{self._base_url}/chat/completions",
                    json=payload,
                    headers={
                        "Authorization": f"Bearer {self._api_key}",
                        "Content-Type": "application/json",
                    },
                )
        except httpx.TimeoutException as e:
            raise NetworkError(code="TIMEOUT_ERROR", message="Completion request timed out", http_status=504, details=str(e))
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e), http_status=502)
        if resp.status_code == 429:
            raise self._rate_limit_error(resp)
        if resp.status_code >= 400:
            raise ApiError(code="API_ERROR", message=resp.text, http_status=resp.status_code)
        return self._parse_response(resp.json(), req)

    def _build_payload(self, req: ChatRequest, model_cfg: ModelConfig) -> Dict[str, Any]:
        temperature = req.temperature if req.temperature is not None else model_cfg.default_temperature
        return {
            "model": model_cfg.provider_model,
            "messages": [m.to_payload() for m in req.messages],
            "temperature": temperature,
            "max_tokens": req.max_tokens or model_cfg.max_tokens,
        }

    def _rate_limit_error(self, resp: httpx.Response) -> Exception:
        try:
            body = resp.json()
        except ValueError:
            body = {}
        error = body.get("error") if isinstance(body, dict) else None
        code = error.get("code") if isinstance(error, dict) else None
        if code in QUOTA_ERROR_CODES:
            return UpstreamQuotaExceeded(
                code="QUOTA_EXCEEDED",
                message=f"{self.name} API quota exceeded",
                http_status=429,
                details="Please check your account billing",
            )
        return UpstreamRateLimited(
            code="RATE_LIMIT",
            message=f"{self.name} API rate limit exceeded",
            http_status=429,
            details="Please try again in a moment",
        )

    def _parse_response(self, data: dict, req: ChatRequest) -> ChatResult:
        choices: list[ChatChoice] = []
        for i, ch in enumerate(data.get("choices", [])):
            msg = ch.get("message") or {}
            choices.append(
                ChatChoice(
                    index=ch.get("index", i),
                    message=ChatMessage(role=msg.get("role") or "assistant", content=msg.get("content") or ""),
                    finish_reason=ch.get("finish_reason"),
                )
            )
        usage_raw = data.get("usage") or {}
        usage = ChatUsage(
            prompt_tokens=usage_raw.get("prompt_tokens", 0),
            completion_tokens=usage_raw.get("completion_tokens", 0),
            total_tokens=usage_raw.get("total_tokens", 0),
        )
        return ChatResult(provider=self.name, model=req.model, choices=choices, usage=usage, raw=data)
