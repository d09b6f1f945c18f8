"""CompletionStreamer：一次补全 → 多个定速推送的 MessagePart。

补全服务按请求/响应方式调用一次；"打字节奏"完全由这里产生：
第 0 段立即发出，之后每段之前等待 DelayPolicy 给出的随机延迟。
"""

import logging
import random
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional

from persona_chat.chat.segmenter import split_reply
from persona_chat.config.settings import settings
from persona_chat.domain.exceptions import BusinessError, RateLimitError
from persona_chat.domain.models import ChatMessage, ChatRequest
from persona_chat.domain.stream import MessagePart, StreamEvent
from persona_chat.infrastructure.logging.logger import get_logger
from persona_chat.providers.base import CompletionClient


log = get_logger("chat.streamer")


@dataclass
class DelayPolicy:
    """分段之间的随机延迟，区间为 [min_seconds, max_seconds)。"""

    min_seconds: float = 0.5
    max_seconds: float = 1.5
    rng: random.Random = field(default_factory=random.Random, repr=False)

    def __post_init__(self) -> None:
        if self.min_seconds < 0 or self.max_seconds < self.min_seconds:
            raise ValueError(f"invalid delay range [{self.min_seconds}, {self.max_seconds})")

    @classmethod
    def none(cls) -> "DelayPolicy":
        return cls(0.0, 0.0)

    @classmethod
    def from_settings(cls, cfg=settings) -> "DelayPolicy":
        return cls(cfg.part_delay_min, cfg.part_delay_max)

    def delay_for(self, index: int) -> float:
        if index <= 0:
            return 0.0
        return self.min_seconds + self.rng.random() * (self.max_seconds - self.min_seconds)


class CompletionStreamer:
    def __init__(
        self,
        provider: CompletionClient,
        delay_policy: Optional[DelayPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ):
        self._provider = provider
        self._delays = delay_policy or DelayPolicy.from_settings()
        self._sleep = sleep
        self._model = model or settings.default_model
        self._temperature = settings.temperature if temperature is None else temperature
        self._max_tokens = max_tokens or settings.max_tokens

    def complete(self, messages: List[ChatMessage]) -> str:
        """调用一次补全服务并返回完整回复文本。"""

        req = ChatRequest(
            provider=self._provider.name,
            model=self._model,
            messages=messages,
            temperature=self._temperature,
            max_tokens=self._max_tokens,
        )
        return self._provider.chat(req).text

    def emit(self, parts: List[MessagePart]) -> Iterator[StreamEvent]:
        """按顺序逐段产出事件，最后产出 complete 事件。"""

        for i, part in enumerate(parts):
            delay = self._delays.delay_for(i)
            if delay > 0:
                self._sleep(delay)
            yield StreamEvent.of_part(part)
        yield StreamEvent.completed()

    def stream(self, messages: List[ChatMessage], persona_id: Optional[str] = None) -> Iterator[StreamEvent]:
        """执行一轮：先同步拿到回复，再返回定速推送的事件流。

        补全调用在这里立即执行，因此额度耗尽/限流错误会在任何事件发出之前
        直接抛给调用方（不自动重试）。其他失败转换为只含一个 error 事件的流。
        """

        log_ctx: Dict[str, Any] = {"persona_id": persona_id, "provider": self._provider.name}
        started = time.time()
        try:
            reply = self.complete(messages)
        except RateLimitError as e:
            self._log(logging.WARNING, "Completion rate limited", log_ctx, code=e.code)
            raise
        except BusinessError as e:
            self._log(logging.ERROR, "Completion failed", log_ctx, code=e.code, error=e.message)
            return iter([StreamEvent.failed(e.code, e.message, e.details)])
        except Exception as e:
            self._log(logging.ERROR, "Completion failed", log_ctx, code="CHAT_PROCESSING_ERROR", error=str(e))
            return iter([StreamEvent.failed("CHAT_PROCESSING_ERROR", "Failed to process chat message", str(e))])

        parts = split_reply(reply)
        log_ctx.update(parts=len(parts), completion_seconds=round(time.time() - started, 2))
        self._log(logging.INFO, "Completion received", log_ctx)
        return self._guarded(parts, log_ctx, started)

    def _guarded(self, parts: List[MessagePart], log_ctx: Dict[str, Any], started: float) -> Iterator[StreamEvent]:
        emitted = 0
        finished = False
        try:
            for event in self.emit(parts):
                if event.kind == "part":
                    emitted += 1
                yield event
            finished = True
        except Exception as e:
            # 已发出的分段保持有效，用 error 事件代替 complete
            finished = True
            self._log(logging.ERROR, "Stream aborted", log_ctx, emitted=emitted, error=str(e))
            yield StreamEvent.failed("STREAM_ERROR", "Failed to stream message parts", str(e))
            return
        finally:
            if not finished:
                # 消费端不再读取，生成器被关闭
                self._log(logging.WARNING, "Stream closed by consumer", log_ctx, emitted=emitted)
        self._log(logging.INFO, "Stream completed", log_ctx, emitted=emitted, elapsed_seconds=round(time.time() - started, 2))

    @staticmethod
    def _log(level: int, message: str, log_ctx: Dict[str, Any], **fields: Any) -> None:
        payload = dict(log_ctx)
        payload.update(fields)
        log.log(level, message, extra={"extra": payload})
