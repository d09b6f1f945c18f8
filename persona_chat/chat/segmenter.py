import time
from typing import List, Optional

from persona_chat.domain.stream import MessagePart


def split_reply(reply: Optional[str], id_prefix: Optional[str] = None) -> List[MessagePart]:
    """按换行切分回复：去掉空白行，每个非空行（去首尾空白）成为一个 MessagePart。

    没有任何非空行时，整段回复（去首尾空白）作为唯一的一段。
    """

    text = reply or ""
    prefix = id_prefix or str(int(time.time() * 1000))
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    if not lines:
        lines = [text.strip()]
    total = len(lines)
    return [
        MessagePart(
            id=f"{prefix}_{index}",
            index=index,
            total=total,
            content=line,
            is_complete=index == total - 1,
        )
        for index, line in enumerate(lines)
    ]
