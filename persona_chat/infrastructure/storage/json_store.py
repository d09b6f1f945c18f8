import errno
import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional
from datetime import datetime
from uuid import uuid4

from persona_chat.config.settings import settings
from persona_chat.domain.conversation import ChatHistory, StoredMessage, format_ts, parse_ts, utcnow
from persona_chat.domain.exceptions import StorageWriteError
from persona_chat.infrastructure.logging.logger import get_logger


log = get_logger("storage")

_CAPACITY_ERRNOS = {errno.ENOSPC, getattr(errno, "EDQUOT", errno.ENOSPC)}
_UNSET = object()


class StorageCapacityExceeded(OSError):
    """写入后的文件大小超过 max_bytes。"""


@dataclass
class StorageStats:
    used_bytes: int
    available: bool


class JsonHistoryStore:
    """把所有人设的聊天记录保存在同一个 JSON 文件里。

    文件结构：{persona_id: {"personaId", "messages", "lastUpdated"}}。
    每个人设最多保留 max_messages 条（先进先出），最多保留 max_personas 个人设
    （最久未更新的整段淘汰）。写入失败不会抛异常，而是返回 False。
    """

    def __init__(
        self,
        path: str | Path | None = None,
        max_messages: Optional[int] = None,
        max_personas: Optional[int] = None,
        max_bytes=_UNSET,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._path = Path(path or settings.storage_path).resolve()
        self._max_messages = max_messages or settings.max_messages_per_persona
        self._max_personas = max_personas or settings.max_personas
        self._max_bytes: Optional[int] = settings.storage_max_bytes if max_bytes is _UNSET else max_bytes
        self._clock = clock

    @property
    def path(self) -> Path:
        return self._path

    # ---- 读取 ----

    def get(self, persona_id: str) -> List[StoredMessage]:
        history = self._read_all().get(persona_id)
        if history is None:
            return []
        return list(history.messages)

    def last_message(self, persona_id: str) -> Optional[StoredMessage]:
        messages = self.get(persona_id)
        return messages[-1] if messages else None

    def personas(self) -> List[str]:
        return list(self._read_all().keys())

    def stats(self) -> StorageStats:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
        except OSError:
            return StorageStats(used_bytes=0, available=False)
        used = self._path.stat().st_size if self._path.exists() else 0
        return StorageStats(used_bytes=used, available=True)

    # ---- 写入 ----

    def append(self, persona_id: str, message: StoredMessage) -> bool:
        histories = self._read_all()
        existing = histories.get(persona_id)
        messages = list(existing.messages) if existing else []
        messages.append(message)
        return self._save(histories, persona_id, messages)

    def save_history(self, persona_id: str, messages: List[StoredMessage]) -> bool:
        """整体替换某个人设的聊天记录（同样会裁剪到 max_messages）。"""

        return self._save(self._read_all(), persona_id, list(messages))

    def clear(self, persona_id: str) -> bool:
        histories = self._read_all()
        if persona_id not in histories:
            return True
        del histories[persona_id]
        ok = self._write_all(histories)
        if ok:
            log.info("Cleared chat history", extra={"extra": {"persona_id": persona_id}})
        return ok

    def clear_all(self) -> bool:
        try:
            self._path.unlink(missing_ok=True)
        except OSError as e:
            log.error("Failed to clear chat data", extra={"extra": {"error": str(e)}})
            return False
        return True

    def evict_oldest(self, limit: Optional[int] = None) -> List[str]:
        """淘汰最久未更新的人设，直到人设数量不超过 limit（默认 max_personas）。"""

        histories = self._read_all()
        removed = self._evict(histories, limit=limit)
        if removed:
            self._write_all(histories)
        return removed

    # ---- 内部实现 ----

    def _save(self, histories: Dict[str, ChatHistory], persona_id: str, messages: List[StoredMessage]) -> bool:
        if len(messages) > self._max_messages:
            messages = messages[-self._max_messages:]
        histories[persona_id] = ChatHistory(
            persona_id=persona_id,
            messages=messages,
            last_updated=format_ts(self._clock()),
        )
        if len(histories) > self._max_personas:
            self._evict(histories, keep=persona_id)
        ok = self._write_all(histories, keep=persona_id)
        if not ok:
            log.error("Failed to save chat history", extra={"extra": {"persona_id": persona_id}})
        return ok

    def _evict(
        self,
        histories: Dict[str, ChatHistory],
        keep: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[str]:
        target = self._max_personas if limit is None else max(limit, 0)
        candidates = sorted(
            (pid for pid in histories if pid != keep),
            key=lambda pid: parse_ts(histories[pid].last_updated),
        )
        removed: List[str] = []
        for pid in candidates:
            if len(histories) <= target:
                break
            del histories[pid]
            removed.append(pid)
        if removed:
            log.info("Evicted chat histories", extra={"extra": {"evicted": removed, "remaining": len(histories)}})
        return removed

    def _write_all(self, histories: Dict[str, ChatHistory], keep: Optional[str] = None) -> bool:
        try:
            self._dump(histories)
            return True
        except OSError as e:
            if not self._is_capacity_error(e):
                log.error("Storage write failed", extra={"extra": {"error": str(e)}})
                return False
            log.warning("Storage capacity exceeded, attempting cleanup", extra={"extra": {"error": str(e)}})

        # 容量不足：淘汰一轮（至少移除一个其他人设）后重试一次
        limit = min(self._max_personas, len(histories) - 1)
        self._evict(histories, keep=keep, limit=limit)
        try:
            self._dump(histories)
            return True
        except OSError as e:
            err = StorageWriteError(code="STORE_WRITE_ERROR", message="Failed to save even after cleanup", details=str(e))
            log.error(err.message, extra={"extra": {"code": err.code, "error": str(e)}})
            return False

    def _dump(self, histories: Dict[str, ChatHistory]) -> None:
        data = json.dumps({pid: h.to_dict() for pid, h in histories.items()}, ensure_ascii=False)
        encoded = data.encode("utf-8")
        if self._max_bytes is not None and len(encoded) > self._max_bytes:
            raise StorageCapacityExceeded(
                errno.ENOSPC, f"history document is {len(encoded)} bytes, limit is {self._max_bytes}"
            )
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_name(f"{self._path.name}.{uuid4().hex}.tmp")
        try:
            tmp_path.write_bytes(encoded)
            os.replace(tmp_path, self._path)
        finally:
            if tmp_path.exists():
                tmp_path.unlink()

    def _read_all(self) -> Dict[str, ChatHistory]:
        if not self._path.exists():
            return {}
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            log.error("Error parsing chat histories", extra={"extra": {"error": str(e)}})
            return {}
        if not isinstance(raw, dict):
            return {}
        histories: Dict[str, ChatHistory] = {}
        for pid, data in raw.items():
            try:
                if not isinstance(data, dict):
                    raise TypeError("history entry is not an object")
                history = ChatHistory.from_dict(pid, data)
            except (KeyError, TypeError, ValueError) as e:
                log.warning("Skipping unreadable chat history", extra={"extra": {"persona_id": pid, "error": str(e)}})
                continue
            if history.skipped:
                log.warning(
                    "Skipping unreadable messages",
                    extra={"extra": {"persona_id": pid, "skipped": history.skipped, "kept": len(history.messages)}},
                )
            histories[pid] = history
        return histories

    @staticmethod
    def _is_capacity_error(error: OSError) -> bool:
        return isinstance(error, StorageCapacityExceeded) or error.errno in _CAPACITY_ERRNOS
