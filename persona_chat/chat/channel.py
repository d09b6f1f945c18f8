"""推送通道编解码（Server-Sent Events 文本格式）。

生产端把有序的 StreamEvent 编码成 ``data: {json}\\n\\n``；
消费端把收到的文本行惰性地解码回 StreamEvent。解码得到的是一个有限、
不可重放的生成器：读完或被关闭后即失效。
"""

import json
from typing import Iterable, Iterator

from persona_chat.domain.stream import ErrorInfo, MessagePart, StreamEvent
from persona_chat.infrastructure.logging.logger import get_logger


log = get_logger("chat.channel")

MEDIA_TYPE = "text/event-stream"
DATA_PREFIX = "data:"


def encode_event(event: StreamEvent) -> str:
    return f"{DATA_PREFIX} {json.dumps(event.to_payload(), ensure_ascii=False)}\n\n"


def encode_stream(events: Iterable[StreamEvent]) -> Iterator[str]:
    for event in events:
        yield encode_event(event)


def iter_lines(chunks: Iterable[str]) -> Iterator[str]:
    """把任意切分的文本块还原成完整的行（跨块的半行会被缓存）。"""

    buffer = ""
    for chunk in chunks:
        buffer += chunk
        *lines, buffer = buffer.split("\n")
        for line in lines:
            yield line.rstrip("\r")
    if buffer:
        yield buffer.rstrip("\r")


def decode_event(payload: dict) -> StreamEvent:
    if not payload.get("success"):
        error = payload.get("error") or {}
        return StreamEvent(
            kind="error",
            error=ErrorInfo(
                code=str(error.get("code") or "STREAM_ERROR"),
                message=str(error.get("message") or "Stream failed"),
                details=str(error.get("details") or ""),
            ),
        )
    data = payload.get("data") or {}
    if data.get("type") == "complete":
        return StreamEvent.completed()
    return StreamEvent.of_part(MessagePart.from_payload(data))


def decode_events(lines: Iterable[str]) -> Iterator[StreamEvent]:
    """逐行解析 ``data:`` 记录；无法解析的行记录警告后跳过。"""

    for line in lines:
        if not line.startswith(DATA_PREFIX):
            continue
        raw = line[len(DATA_PREFIX):].strip()
        if not raw:
            continue
        try:
            payload = json.loads(raw)
            if not isinstance(payload, dict):
                raise ValueError("event payload is not an object")
            event = decode_event(payload)
        except (ValueError, KeyError, TypeError) as e:
            log.warning("Failed to parse stream event", extra={"extra": {"line": line[:200], "error": str(e)}})
            continue
        yield event
