"""Provider 抽象接口。

CompletionStreamer 不直接依赖具体厂商的 HTTP 细节，而是依赖此协议：
chat(req) 执行一次请求/响应式补全，返回统一的 ChatResult。
"""

from typing import Protocol

from persona_chat.domain.models import ChatRequest, ChatResult


class CompletionClient(Protocol):
    name: str

    def chat(self, req: ChatRequest) -> ChatResult:
        ...
