"""对话入口（Dialog）的公共协议。

对话入口负责从某个渠道（终端、聊天机器人等）读取用户消息，
交给 MessageHandler 处理，并把返回文本送回给用户。
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional, Protocol


TextCallback = Callable[[str], None]
# 返回最终文本；"" 表示无需再输出（例如 /clear 或回答已经流式输出）
MessageHandler = Callable[["InboundMessage", Optional[TextCallback]], str]


@dataclass(frozen=True)
class InboundMessage:
    """从对话入口收到的一条消息。"""

    source: str
    sender_id: str
    text: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class DialogProvider(Protocol):
    name: str

    def run(self, handler: MessageHandler) -> None:
        """阻塞运行主循环，直到用户退出。"""

        ...

    def send(self, to: str, message: str) -> None:
        ...
