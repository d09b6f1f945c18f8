"""发往补全服务的统一数据模型。

- ChatMessage: 一条 prompt 消息（system/user/assistant）。
- ChatRequest: 发给 Provider 的完整请求。
- ChatResult: 从 Provider 解析后的统一响应结果。

Provider 适配器只依赖这些模型，并负责与各家 API JSON 之间的转换。
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional


Role = Literal["system", "user", "assistant"]


@dataclass
class ChatMessage:
    """一条 prompt 消息。meta 不会发给 Provider，仅用于日志。"""

    role: Role
    content: str
    meta: Dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass
class ChatRequest:
    """一次完整的补全请求。"""

    provider: str  # 逻辑 Provider 名，如 "openai"
    model: str  # 逻辑模型名，如 "persona-chat"
    messages: List[ChatMessage]
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None


@dataclass
class ChatUsage:
    """Provider 返回的 token 统计信息。"""

    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


@dataclass
class ChatChoice:
    index: int
    message: ChatMessage
    finish_reason: Optional[str] = None


@dataclass
class ChatResult:
    """一次补全调用的最终结果，raw 保留原始响应便于调试。"""

    provider: str
    model: str
    choices: List[ChatChoice]
    usage: Optional[ChatUsage] = None
    raw: Optional[dict] = None

    @property
    def text(self) -> str:
        """第一个候选回答的文本，没有候选时为空字符串。"""

        if not self.choices:
            return ""
        return self.choices[0].message.content or ""


@dataclass
class ConversationTurn:
    """一次用户发送：目标人设、用户文本以及此前的对话历史。请求结束即丢弃。"""

    persona_id: str
    user_text: str
    history: List[Dict[str, str]] = field(default_factory=list)
