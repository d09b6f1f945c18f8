"""聊天后端的 httpx 客户端。

普通 GET 请求套用 RetryPolicy；聊天请求返回推送流，不做自动重试。
后端的 {success:false, error:{code, message, details}} 会还原成对应的 BusinessError。
"""

from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Type

import httpx

from persona_chat.chat.channel import MEDIA_TYPE, decode_events, iter_lines
from persona_chat.config.settings import settings
from persona_chat.domain.exceptions import (
    ApiError,
    BusinessError,
    InvalidInput,
    NetworkError,
    UpstreamQuotaExceeded,
    UpstreamRateLimited,
)
from persona_chat.domain.stream import StreamEvent
from persona_chat.infrastructure.http.retry import RetryPolicy


_ERRORS_BY_CODE: Dict[str, Type[BusinessError]] = {
    "INVALID_MESSAGE": InvalidInput,
    "INVALID_HISTORY": InvalidInput,
    "INVALID_JSON": InvalidInput,
    "PERSONA_NOT_FOUND": InvalidInput,
    "QUOTA_EXCEEDED": UpstreamQuotaExceeded,
    "RATE_LIMIT": UpstreamRateLimited,
}


class ApiClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        retry_policy: Optional[RetryPolicy] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self._base_url = (base_url or settings.api_base_url).rstrip("/")
        self._timeout = timeout or settings.client_timeout
        self._retry = retry_policy or RetryPolicy(
            max_attempts=settings.retry_max_attempts,
            base_delay=settings.retry_base_delay,
        )
        self._transport = transport

    def _client(self, timeout: Optional[httpx.Timeout] = None) -> httpx.Client:
        return httpx.Client(
            base_url=self._base_url,
            timeout=timeout or self._timeout,
            transport=self._transport,
            trust_env=False,
        )

    # ---- 人设 ----

    def list_personas(self) -> List[Dict[str, Any]]:
        return self._get("/api/personas")

    def get_persona(self, persona_id: str) -> Dict[str, Any]:
        return self._get(f"/api/personas/{persona_id}")

    def health(self) -> Dict[str, Any]:
        return self._get("/api/health")

    def _get(self, path: str) -> Any:
        def operation() -> Any:
            try:
                with self._client() as client:
                    resp = client.get(path)
            except httpx.TimeoutException as e:
                raise NetworkError(
                    code="TIMEOUT_ERROR",
                    message="Request timed out",
                    http_status=504,
                    details=f"Request took longer than {self._timeout}s: {e}",
                )
            except httpx.RequestError as e:
                raise NetworkError(code="NETWORK_ERROR", message="Network request failed", http_status=503, details=str(e))
            return self._unwrap(resp)

        return self._retry.call(operation)

    # ---- 聊天 ----

    @contextmanager
    def open_chat(
        self,
        persona_id: str,
        message: str,
        history: Optional[List[Dict[str, str]]] = None,
    ) -> Iterator[Iterator[StreamEvent]]:
        """发起一轮聊天，产出惰性的事件迭代器；离开 with 块即关闭连接。

        读取推送流时只限制连接与写入时间，分段之间的等待不受读超时影响。
        """

        body = {"message": message.strip(), "history": list(history or [])}
        timeout = httpx.Timeout(self._timeout, read=None)
        try:
            with self._client(timeout) as client:
                with client.stream(
                    "POST",
                    f"/api/chat/{persona_id}",
                    json=body,
                    headers={"Accept": MEDIA_TYPE},
                ) as resp:
                    if resp.status_code >= 400:
                        resp.read()
                        raise self._error_from(resp)
                    yield decode_events(iter_lines(resp.iter_text()))
        except httpx.TimeoutException as e:
            raise NetworkError(code="TIMEOUT_ERROR", message="Request timed out", http_status=504, details=str(e))
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message="Network request failed", http_status=503, details=str(e))

    # ---- 响应处理 ----

    def _unwrap(self, resp: httpx.Response) -> Any:
        if resp.status_code >= 400:
            raise self._error_from(resp)
        try:
            payload = resp.json()
        except ValueError as e:
            raise ApiError(code="PARSE_ERROR", message="Failed to parse response JSON", http_status=resp.status_code, details=str(e))
        if not isinstance(payload, dict) or not payload.get("success"):
            raise self._error_from(resp)
        return payload.get("data")

    @staticmethod
    def _error_from(resp: httpx.Response) -> BusinessError:
        try:
            payload = resp.json()
        except ValueError:
            payload = {}
        error = payload.get("error") if isinstance(payload, dict) else None
        if not isinstance(error, dict):
            error = {
                "code": "HTTP_ERROR",
                "message": f"HTTP {resp.status_code}: {resp.reason_phrase}",
                "details": "Request failed",
            }
        code = str(error.get("code") or "HTTP_ERROR")
        cls = _ERRORS_BY_CODE.get(code, ApiError)
        return cls(
            code=code,
            message=str(error.get("message") or f"HTTP {resp.status_code}"),
            http_status=resp.status_code,
            details=str(error.get("details") or ""),
        )
