"""会话消息的内存存储。

ConversationStore 是一个只追加的有序消息日志，每一轮模型调用都以它为输入。
会话只能整体清空（显式 reset 命令），不能删除或修改单条消息。
"""

from typing import Iterator, List, Optional, Tuple, Iterable

from .exceptions import ValidationError
from .models import ChatMessage


class ConversationStore:
    """只追加的会话日志。

    追加 tool 消息时校验：其 tool_call_id 必须出现在最近一条 assistant 消息的
    tool_calls 中，且两者之间只能有其他 tool 消息。
    """

    def __init__(self, messages: Optional[Iterable[ChatMessage]] = None):
        self._messages: List[ChatMessage] = []
        if messages:
            self.extend(messages)

    def append(self, message: ChatMessage) -> None:
        if message.role == "tool":
            self._check_tool_result(message)
        self._messages.append(message)

    def extend(self, messages: Iterable[ChatMessage]) -> None:
        for message in messages:
            self.append(message)

    def messages(self) -> Tuple[ChatMessage, ...]:
        """返回当前消息的只读快照。"""

        return tuple(self._messages)

    def last(self) -> Optional[ChatMessage]:
        return self._messages[-1] if self._messages else None

    def clear(self) -> None:
        self._messages.clear()

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[ChatMessage]:
        return iter(tuple(self._messages))

    def _check_tool_result(self, message: ChatMessage) -> None:
        if not message.tool_call_id:
            raise ValidationError(code="TOOL_CALL_ID_MISSING", message="tool message without tool_call_id")
        for previous in reversed(self._messages):
            if previous.role == "tool":
                continue
            if previous.role == "assistant" and previous.tool_calls:
                if any(call.id == message.tool_call_id for call in previous.tool_calls):
                    return
            break
        raise ValidationError(
            code="TOOL_CALL_ID_MISMATCH",
            message=f"tool result {message.tool_call_id!r} does not answer the preceding assistant message",
        )
