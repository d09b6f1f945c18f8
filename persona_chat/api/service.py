"""对外服务模块。

路由层只做 HTTP 转换，人设查询与聊天流的业务逻辑都在 ChatService 中。
"""

from typing import Any, Dict, Iterator, List, Optional

from persona_chat.chat.prompt import PromptAssembler, normalize_history, validate_user_text
from persona_chat.chat.streamer import CompletionStreamer
from persona_chat.domain.exceptions import InvalidInput
from persona_chat.domain.models import ConversationTurn
from persona_chat.domain.stream import StreamEvent
from persona_chat.infrastructure.logging.logger import get_logger
from persona_chat.personas import PersonaRegistry
from persona_chat.providers import create_provider


log = get_logger("api.service")


def parse_turn(persona_id: str, body: Any) -> ConversationTurn:
    """校验请求体 {message, history} 并转换为 ConversationTurn。"""

    if not isinstance(body, dict):
        body = {}
    history = body.get("history")
    if history is not None and not isinstance(history, list):
        raise InvalidInput(
            code="INVALID_HISTORY",
            message="History must be an array",
            details="History should be an array of message objects",
        )
    text = validate_user_text(body.get("message"))
    turns = [m.to_payload() for m in normalize_history(history)]
    return ConversationTurn(persona_id=persona_id, user_text=text, history=turns)


class ChatService:
    def __init__(
        self,
        registry: PersonaRegistry,
        streamer: CompletionStreamer,
        assembler: Optional[PromptAssembler] = None,
    ):
        self._registry = registry
        self._streamer = streamer
        self._assembler = assembler or PromptAssembler(registry)

    @property
    def registry(self) -> PersonaRegistry:
        return self._registry

    def list_personas(self) -> List[Dict[str, Any]]:
        return [p.summary() for p in self._registry]

    def get_persona(self, persona_id: str) -> Dict[str, Any]:
        return self._registry.get(persona_id).detail()

    def open_chat(self, persona_id: str, body: Any) -> Iterator[StreamEvent]:
        """校验请求并返回该轮回复的事件流。

        未知人设、空消息、历史格式错误、补全额度/限流错误都会在这里直接抛出，
        调用方据此返回普通 JSON 错误响应，不会打开推送流。
        """

        self._registry.get(persona_id)
        turn = parse_turn(persona_id, body)
        messages = self._assembler.assemble_turn(turn)
        log.info(
            "Chat turn started",
            extra={"extra": {"persona_id": persona_id, "history": len(turn.history), "prompt_messages": len(messages)}},
        )
        return self._streamer.stream(messages, persona_id=persona_id)


def create_default_service() -> ChatService:
    return ChatService(
        registry=PersonaRegistry.from_catalog(),
        streamer=CompletionStreamer(create_provider()),
    )
