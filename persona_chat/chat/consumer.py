"""StreamConsumer：客户端读取推送流，逐段写入本地聊天记录。

每收到一个 part 立即追加一条 assistant 消息（不等整轮结束）。
complete 事件结束本轮；error 事件或连接异常结束本轮并报告错误，
已写入的消息不回滚。同一人设同一时间只允许一个进行中的流。
"""

import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable, Iterator, List, Optional, Set

import httpx

from persona_chat.domain.conversation import (
    ConversationStore,
    StoredMessage,
    format_ts,
    new_message_id,
    utcnow,
)
from persona_chat.domain.exceptions import BusinessError, StreamError, StreamInFlight, StreamTransportError
from persona_chat.domain.stream import MessagePart, StreamEvent
from persona_chat.infrastructure.logging.logger import get_logger


log = get_logger("chat.consumer")


@dataclass
class TurnResult:
    persona_id: str
    messages: List[StoredMessage] = field(default_factory=list)
    completed: bool = False
    error: Optional[BusinessError] = None
    storage_failures: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.completed and self.error is None

    def raise_for_error(self) -> "TurnResult":
        if self.error is not None:
            raise self.error
        return self


class StreamConsumer:
    def __init__(self, store: ConversationStore, clock: Callable[[], datetime] = utcnow):
        self._store = store
        self._clock = clock
        self._active: Set[str] = set()
        self._lock = threading.Lock()

    def is_active(self, persona_id: str) -> bool:
        with self._lock:
            return persona_id in self._active

    @contextmanager
    def claim(self, persona_id: str) -> Iterator[None]:
        """占用某个人设的流；已被占用时抛 StreamInFlight，离开 with 块释放。"""

        with self._lock:
            if persona_id in self._active:
                raise StreamInFlight(
                    code="STREAM_IN_FLIGHT",
                    message=f"A reply from '{persona_id}' is still streaming",
                    http_status=409,
                )
            self._active.add(persona_id)
        try:
            yield
        finally:
            with self._lock:
                self._active.discard(persona_id)

    def consume(
        self,
        persona_id: str,
        events: Iterable[StreamEvent],
        on_part: Optional[Callable[[StoredMessage], None]] = None,
        on_complete: Optional[Callable[[], None]] = None,
        on_error: Optional[Callable[[BusinessError], None]] = None,
    ) -> TurnResult:
        with self.claim(persona_id):
            return self.read(persona_id, events, on_part, on_complete, on_error)

    def read(
        self,
        persona_id: str,
        events: Iterable[StreamEvent],
        on_part: Optional[Callable[[StoredMessage], None]] = None,
        on_complete: Optional[Callable[[], None]] = None,
        on_error: Optional[Callable[[BusinessError], None]] = None,
    ) -> TurnResult:
        """读取事件流并逐段写入，调用方需已通过 claim 占用该人设。"""

        result = TurnResult(persona_id=persona_id)
        last = self._store.get(persona_id)
        last_ts = last[-1].created_at if last else None
        try:
            for event in events:
                if event.kind == "part" and event.part is not None:
                    message = self._to_message(persona_id, event.part, last_ts)
                    last_ts = message.created_at
                    if not self._store.append(persona_id, message):
                        result.storage_failures.append(message.id)
                    result.messages.append(message)
                    if on_part:
                        on_part(message)
                elif event.kind == "complete":
                    result.completed = True
                    break
                elif event.kind == "error":
                    info = event.error
                    result.error = StreamError(
                        code=info.code if info else "STREAM_ERROR",
                        message=info.message if info else "Stream failed",
                        http_status=502,
                        details=info.details if info else "",
                    )
                    break
            else:
                result.error = StreamTransportError(
                    code="STREAM_READ_ERROR",
                    message="Stream closed before completion",
                    http_status=502,
                )
        except (httpx.HTTPError, OSError) as e:
            result.error = StreamTransportError(
                code="STREAM_READ_ERROR",
                message="Failed to read message stream",
                http_status=502,
                details=str(e),
            )
        finally:
            close = getattr(events, "close", None)
            if callable(close):
                close()

        log_fields = {
            "persona_id": persona_id,
            "parts": len(result.messages),
            "completed": result.completed,
            "storage_failures": len(result.storage_failures),
        }
        if result.error is not None:
            log_fields["code"] = result.error.code
            log.warning("Stream ended with error", extra={"extra": log_fields})
            if on_error:
                on_error(result.error)
        else:
            log.info("Stream completed", extra={"extra": log_fields})
            if on_complete:
                on_complete()
        return result

    def _to_message(self, persona_id: str, part: MessagePart, not_before: Optional[datetime]) -> StoredMessage:
        now = self._clock()
        if not_before is not None and now < not_before:
            now = not_before
        return StoredMessage(
            id=new_message_id(),
            persona_id=persona_id,
            sender="assistant",
            content=part.content,
            timestamp=format_ts(now),
            part_index=part.index,
            total_parts=part.total,
        )
