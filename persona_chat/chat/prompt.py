"""PromptAssembler：system 人设 + 裁剪后的历史 + 新的用户消息。"""

from typing import Any, Iterable, List, Mapping, Optional

from persona_chat.config.settings import settings
from persona_chat.domain.conversation import StoredMessage
from persona_chat.domain.exceptions import InvalidInput
from persona_chat.domain.models import ChatMessage, ConversationTurn
from persona_chat.personas import PersonaRegistry


_HISTORY_ROLES = {"user", "assistant"}


def validate_user_text(text: Any) -> str:
    if not isinstance(text, str) or not text.strip():
        raise InvalidInput(
            code="INVALID_MESSAGE",
            message="Message content is required",
            details="Message must be a non-empty string",
        )
    return text.strip()


def normalize_history(history: Any) -> List[ChatMessage]:
    """把 StoredMessage / ChatMessage / {role, content} 统一成 ChatMessage 列表。"""

    if history is None:
        return []
    if isinstance(history, (str, bytes, Mapping)) or not isinstance(history, Iterable):
        raise InvalidInput(
            code="INVALID_HISTORY",
            message="History must be an array",
            details="History should be an array of message objects",
        )
    normalized: List[ChatMessage] = []
    for entry in history:
        if isinstance(entry, StoredMessage):
            role, content = entry.sender, entry.content
        elif isinstance(entry, ChatMessage):
            role, content = entry.role, entry.content
        elif isinstance(entry, Mapping):
            role, content = entry.get("role"), entry.get("content")
        else:
            role, content = None, None
        if role not in _HISTORY_ROLES or not isinstance(content, str):
            raise InvalidInput(
                code="INVALID_HISTORY",
                message="Invalid history entry",
                details="Each history item needs role user|assistant and string content",
            )
        normalized.append(ChatMessage(role=role, content=content))
    return normalized


class PromptAssembler:
    def __init__(self, registry: PersonaRegistry, max_history: Optional[int] = None):
        self._registry = registry
        self._max_history = settings.max_history_turns if max_history is None else max_history

    def assemble(self, persona_id: str, user_text: str, history: Any = None) -> List[ChatMessage]:
        """生成发往补全服务的有序消息列表。

        超出 max_history 的旧历史直接丢弃（不做摘要）。未知人设抛 PersonaNotFound，
        空白消息或格式错误的历史抛 InvalidInput。
        """

        persona = self._registry.get(persona_id)
        text = validate_user_text(user_text)
        past = normalize_history(history)
        past = past[-self._max_history:] if self._max_history > 0 else []
        return [
            ChatMessage(role="system", content=persona.system_prompt, meta={"persona_id": persona.id}),
            *past,
            ChatMessage(role="user", content=text),
        ]

    def assemble_turn(self, turn: ConversationTurn) -> List[ChatMessage]:
        return self.assemble(turn.persona_id, turn.user_text, turn.history)
