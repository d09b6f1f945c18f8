"""ChatSession：客户端一次发送的完整流程。

保存用户消息 → 把本地历史转换为 {role, content} → 打开聊天流 → 交给 StreamConsumer
逐段写入本地记录。同一人设同一时间只允许一个进行中的发送。
"""

from datetime import datetime
from typing import Callable, List, Optional

from persona_chat.chat.consumer import StreamConsumer, TurnResult
from persona_chat.chat.grouping import Bubble, group_messages
from persona_chat.chat.prompt import validate_user_text
from persona_chat.client.api_client import ApiClient
from persona_chat.domain.conversation import ConversationStore, StoredMessage, format_ts, new_message_id, utcnow
from persona_chat.domain.exceptions import BusinessError
from persona_chat.infrastructure.logging.logger import get_logger


log = get_logger("client.session")


class ChatSession:
    def __init__(
        self,
        client: ApiClient,
        store: ConversationStore,
        consumer: Optional[StreamConsumer] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._client = client
        self._store = store
        self._clock = clock
        self._consumer = consumer or StreamConsumer(store, clock=clock)

    def history(self, persona_id: str) -> List[StoredMessage]:
        return self._store.get(persona_id)

    def bubbles(self, persona_id: str) -> List[Bubble]:
        return group_messages(self._store.get(persona_id))

    def clear(self, persona_id: str) -> bool:
        return self._store.clear(persona_id)

    def send(
        self,
        persona_id: str,
        text: str,
        on_part: Optional[Callable[[StoredMessage], None]] = None,
        on_complete: Optional[Callable[[], None]] = None,
        on_error: Optional[Callable[[BusinessError], None]] = None,
    ) -> TurnResult:
        content = validate_user_text(text)
        # 先占用人设，再保存用户消息
        with self._consumer.claim(persona_id):
            history = self._store.get(persona_id)
            user_message = self._user_message(persona_id, content, history)
            if not self._store.append(persona_id, user_message):
                log.error("Failed to store user message", extra={"extra": {"persona_id": persona_id}})
            api_history = [{"role": m.sender, "content": m.content} for m in history]

            try:
                with self._client.open_chat(persona_id, content, api_history) as events:
                    return self._consumer.read(
                        persona_id,
                        events,
                        on_part=on_part,
                        on_complete=on_complete,
                        on_error=on_error,
                    )
            except BusinessError as e:
                log.warning("Send failed", extra={"extra": {"persona_id": persona_id, "code": e.code}})
                if on_error:
                    on_error(e)
                return TurnResult(persona_id=persona_id, error=e)

    def _user_message(self, persona_id: str, content: str, history: List[StoredMessage]) -> StoredMessage:
        now = self._clock()
        if history and now < history[-1].created_at:
            now = history[-1].created_at
        return StoredMessage(
            id=new_message_id(),
            persona_id=persona_id,
            sender="user",
            content=content,
            timestamp=format_ts(now),
        )
