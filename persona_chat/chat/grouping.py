"""MessageGrouper：渲染时把相邻的同一发送者消息合并成一个气泡。

纯函数，不修改存储。判定顺序（先命中先生效）：

1. 发送者不同：不合并。
2. 当前气泡里有未闭合的代码块：强制合并，直到遇到闭合标记。
3. 下一条只是一个单独的闭合 ```：合并。
4. 时间间隔超过窗口（默认 2 分钟）：不合并。
5. 两边各自已含完整代码块：不合并。
6. 其余情况合并。
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Sequence

from persona_chat.domain.conversation import Sender, StoredMessage, parse_ts


FENCE = "```"
MERGE_WINDOW = timedelta(minutes=2)
_COMPLETE_BLOCK = re.compile(r"```[\s\S]*?```")


@dataclass
class Bubble:
    id: str
    sender: Sender
    content: str
    timestamp: str
    message_ids: List[str] = field(default_factory=list)

    @property
    def created_at(self) -> datetime:
        return parse_ts(self.timestamp)

    @classmethod
    def start(cls, message: StoredMessage) -> "Bubble":
        return cls(
            id=message.id,
            sender=message.sender,
            content=message.content,
            timestamp=message.timestamp,
            message_ids=[message.id],
        )

    def absorb(self, message: StoredMessage) -> None:
        self.content = f"{self.content}\n\n{message.content}"
        if message.created_at >= self.created_at:
            self.timestamp = message.timestamp
        self.message_ids.append(message.id)


def has_open_fence(text: str) -> bool:
    return text.count(FENCE) % 2 == 1


def is_lone_fence(text: str) -> bool:
    return text.strip() == FENCE


def has_complete_block(text: str) -> bool:
    return _COMPLETE_BLOCK.search(text) is not None


def should_merge(bubble: Bubble, message: StoredMessage, window: timedelta = MERGE_WINDOW) -> bool:
    if bubble.sender != message.sender:
        return False
    if has_open_fence(bubble.content):
        return True
    if is_lone_fence(message.content):
        return True
    if abs(message.created_at - bubble.created_at) > window:
        return False
    if has_complete_block(bubble.content) and has_complete_block(message.content):
        return False
    return True


def group_messages(messages: Sequence[StoredMessage], window: timedelta = MERGE_WINDOW) -> List[Bubble]:
    bubbles: List[Bubble] = []
    for message in messages:
        if bubbles and should_merge(bubbles[-1], message, window):
            bubbles[-1].absorb(message)
        else:
            bubbles.append(Bubble.start(message))
    return bubbles
