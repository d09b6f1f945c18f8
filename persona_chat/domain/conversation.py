from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional, Protocol
from uuid import uuid4
import time


Sender = Literal["user", "assistant"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_ts(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_ts(value: str) -> datetime:
    """解析 ISO 时间；不带时区的时间按 UTC 处理，返回值总是 UTC。"""

    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def new_message_id() -> str:
    """基于毫秒时间戳的唯一 ID，后缀保证同一毫秒内不重复。"""

    return f"{int(time.time() * 1000)}-{uuid4().hex[:8]}"


@dataclass(frozen=True)
class StoredMessage:
    id: str
    persona_id: str
    sender: Sender
    content: str
    timestamp: str
    part_index: Optional[int] = None
    total_parts: Optional[int] = None

    @property
    def created_at(self) -> datetime:
        return parse_ts(self.timestamp)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "personaId": self.persona_id,
            "sender": self.sender,
            "content": self.content,
            "timestamp": self.timestamp,
        }
        if self.part_index is not None:
            data["partIndex"] = self.part_index
        if self.total_parts is not None:
            data["totalParts"] = self.total_parts
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StoredMessage":
        """从存储字典还原；字段缺失、发送者未知或时间无法解析时抛 ValueError/KeyError/TypeError。"""

        part_index = data.get("partIndex")
        total_parts = data.get("totalParts")
        sender = data["sender"]
        if sender not in ("user", "assistant"):
            raise ValueError(f"unknown sender {sender!r}")
        timestamp = str(data["timestamp"])
        parse_ts(timestamp)
        return cls(
            id=str(data["id"]),
            persona_id=str(data["personaId"]),
            sender=sender,
            content=data.get("content") or "",
            timestamp=timestamp,
            part_index=int(part_index) if part_index is not None else None,
            total_parts=int(total_parts) if total_parts is not None else None,
        )


EPOCH = format_ts(datetime.fromtimestamp(0, timezone.utc))


@dataclass
class ChatHistory:
    persona_id: str
    messages: List[StoredMessage] = field(default_factory=list)
    last_updated: str = field(default_factory=lambda: format_ts(utcnow()))
    # 读取时因格式错误被跳过的消息数
    skipped: int = field(default=0, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "personaId": self.persona_id,
            "messages": [m.to_dict() for m in self.messages],
            "lastUpdated": self.last_updated,
        }

    @classmethod
    def from_dict(cls, persona_id: str, data: Dict[str, Any]) -> "ChatHistory":
        """逐条还原消息，只丢弃无法解析的那几条；lastUpdated 无效时按纪元时间处理。"""

        raw_messages = data.get("messages") or []
        if not isinstance(raw_messages, list):
            raise TypeError("messages must be a list")
        messages: List[StoredMessage] = []
        for raw in raw_messages:
            try:
                messages.append(StoredMessage.from_dict(raw))
            except (KeyError, TypeError, ValueError, AttributeError):
                continue
        last_updated = data.get("lastUpdated")
        try:
            last_updated = format_ts(parse_ts(last_updated)) if last_updated else EPOCH
        except (TypeError, ValueError):
            last_updated = EPOCH
        return cls(
            persona_id=str(data.get("personaId") or persona_id),
            messages=messages,
            last_updated=last_updated,
            skipped=len(raw_messages) - len(messages),
        )


class ConversationStore(Protocol):
    def get(self, persona_id: str) -> List[StoredMessage]:
        ...

    def append(self, persona_id: str, message: StoredMessage) -> bool:
        ...

    def clear(self, persona_id: str) -> bool:
        ...
