"""推送通道上的数据结构。

一次补全回复会被切分为若干 MessagePart，服务端按顺序发出
kind="part" 的事件，最后以 kind="complete"（成功）或 kind="error"（失败）结束。
"""

from dataclasses import dataclass
from typing import Any, Dict, Literal, Optional


@dataclass(frozen=True)
class MessagePart:
    """回复中的一个有序片段，对应前端的一个气泡。"""

    id: str
    index: int
    total: int
    content: str
    is_complete: bool

    def to_payload(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "content": self.content,
            "isComplete": self.is_complete,
            "partIndex": self.index,
            "totalParts": self.total,
        }

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "MessagePart":
        return cls(
            id=str(data.get("id") or ""),
            index=int(data["partIndex"]),
            total=int(data["totalParts"]),
            content=data.get("content") or "",
            is_complete=bool(data.get("isComplete")),
        )


@dataclass(frozen=True)
class ErrorInfo:
    code: str
    message: str
    details: str = ""

    def to_payload(self) -> Dict[str, str]:
        return {"code": self.code, "message": self.message, "details": self.details}


@dataclass(frozen=True)
class StreamEvent:
    """推送流中的单个事件。

    kind:
        - "part": 携带一个 MessagePart。
        - "complete": 本轮回复结束，总是成功流的最后一个事件。
        - "error": 终止错误，替代 complete 出现；之前已发出的 part 依然有效。
    """

    kind: Literal["part", "complete", "error"]
    part: Optional[MessagePart] = None
    error: Optional[ErrorInfo] = None

    @classmethod
    def of_part(cls, part: MessagePart) -> "StreamEvent":
        return cls(kind="part", part=part)

    @classmethod
    def completed(cls) -> "StreamEvent":
        return cls(kind="complete")

    @classmethod
    def failed(cls, code: str, message: str, details: str = "") -> "StreamEvent":
        return cls(kind="error", error=ErrorInfo(code=code, message=message, details=details))

    def to_payload(self) -> Dict[str, Any]:
        if self.kind == "part" and self.part is not None:
            return {"success": True, "data": self.part.to_payload()}
        if self.kind == "complete":
            return {"success": True, "data": {"type": "complete"}}
        error = self.error or ErrorInfo(code="STREAM_ERROR", message="Unknown stream error")
        return {"success": False, "error": error.to_payload()}
