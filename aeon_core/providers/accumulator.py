"""流式工具调用的拼装。

两家 Provider 以不同方式分片下发工具调用：

- OpenAI：每个片段带 index，多个调用的片段可以交错到达；
- Anthropic：content_block_start / delta / stop 顺序出现，同一时刻只有一个
  “当前”块。

ToolCallAccumulator 同时支持两种路径，每个流创建一个实例，finalize 之后即关闭。
"""

from dataclasses import dataclass
from typing import Dict, List, Optional

from aeon_core.tools.definitions import ToolCall


@dataclass
class _Slot:
    tool_call_id: Optional[str] = None
    name: Optional[str] = None
    arguments: str = ""
    emitted: bool = False


class ToolCallAccumulator:
    """把工具调用片段拼装为完整的 ToolCall。

    每个调用只产出一次（参数为空也会产出）；缺少 id 时使用 ``call_<index>``，
    缺少名称时使用 ``"unknown"``。
    """

    def __init__(self) -> None:
        self._slots: Dict[int, _Slot] = {}
        self._last_index: Optional[int] = None
        self._current: Optional[int] = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    # ---- 按 index 的路径（OpenAI） ----

    def add_indexed(
        self,
        index: Optional[int],
        tool_call_id: Optional[str] = None,
        name: Optional[str] = None,
        arguments: Optional[str] = None,
    ) -> int:
        """合并一个带 index 的片段，返回实际写入的 index。

        index 缺失时写入最近一次出现的槽位（没有时为 0）。
        """

        self._check_open()
        if index is None:
            index = self._last_index if self._last_index is not None else 0
        slot = self._slots.setdefault(index, _Slot())
        if tool_call_id and not slot.tool_call_id:
            slot.tool_call_id = tool_call_id
        if name and not slot.name:
            slot.name = name
        if arguments:
            slot.arguments += arguments
        self._last_index = index
        return index

    # ---- 顺序块路径（Anthropic） ----

    def start_block(self, tool_call_id: Optional[str], name: Optional[str]) -> int:
        """开始一个新的工具块；未结束的当前块留待 finalize 产出。"""

        self._check_open()
        index = max(self._slots) + 1 if self._slots else 0
        self._slots[index] = _Slot(tool_call_id=tool_call_id or None, name=name or None)
        self._current = index
        self._last_index = index
        return index

    def append_current(self, fragment: str) -> Optional[int]:
        """向当前块追加参数片段；没有当前块时忽略并返回 None。"""

        self._check_open()
        if self._current is None:
            return None
        if fragment:
            self._slots[self._current].arguments += fragment
        return self._current

    def stop_block(self) -> Optional[ToolCall]:
        """结束当前块并返回完整调用；没有当前块时返回 None。"""

        self._check_open()
        if self._current is None:
            return None
        index = self._current
        self._current = None
        return self._emit(index)

    # ---- 收尾 ----

    def finalize(self) -> List[ToolCall]:
        """按 index 顺序产出所有尚未产出的调用，并关闭累加器。"""

        if self._closed:
            return []
        self._current = None
        calls: List[ToolCall] = []
        for index in sorted(self._slots):
            call = self._emit(index)
            if call is not None:
                calls.append(call)
        self._closed = True
        return calls

    def _emit(self, index: int) -> Optional[ToolCall]:
        slot = self._slots[index]
        if slot.emitted:
            return None
        slot.emitted = True
        return ToolCall(
            id=slot.tool_call_id or f"call_{index}",
            name=slot.name or "unknown",
            arguments=slot.arguments,
        )

    def _check_open(self) -> None:
        if self._closed:
            raise RuntimeError("ToolCallAccumulator already finalized")
