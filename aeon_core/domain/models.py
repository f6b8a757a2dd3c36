"""统一的对话与结果数据模型。

本模块定义了 Agent 内部在不同 Provider 之间共享的标准数据结构：

- ChatMessage: 一条对话消息（system/user/assistant/tool）。
- ChatRequest: 发给底层 LLM Provider 的完整请求（canonical request）。
- ChatResult: 非流式调用解析后的统一响应结果。
- StreamEvent: 流式调用中由 Provider 适配层产出的统一事件。

所有 Provider 适配器（OpenAIClient / AnthropicClient）都只依赖这些模型，
并负责在各自的 API JSON 和这些模型之间做转换。
"""

from dataclasses import dataclass, field
from typing import Literal, Optional, Any, Dict, List, TYPE_CHECKING

if TYPE_CHECKING:
    # 仅在类型检查时导入，避免运行时循环依赖
    from aeon_core.tools.definitions import ToolCall, ToolDef


# LLM 消息角色类型
Role = Literal["system", "user", "assistant", "tool"]

# 统一的结束原因词表；未识别的厂商取值原样透传
FINISH_STOP = "stop"
FINISH_LENGTH = "length"
FINISH_TOOL_CALLS = "tool_calls"


@dataclass(frozen=True)
class ChatMessage:
    """一条对话消息，追加进会话后不可修改。

    - role: 消息角色。
    - content: 纯文本内容。
    - name: role 为 "tool" 时记录工具名。
    - tool_call_id: role 为 "tool" 时关联某一次工具调用。
    - tool_calls: role 为 "assistant" 且模型触发工具调用时的调用列表。
    - meta: 附加元数据，不直接发给 Provider，主要用于日志。
    """

    role: Role
    content: str
    name: Optional[str] = None
    tool_call_id: Optional[str] = None
    tool_calls: Optional[List["ToolCall"]] = None
    meta: Dict[str, Any] = field(default_factory=dict, compare=False)


@dataclass
class ChatRequest:
    """一次完整的聊天请求。

    Provider 适配层负责把本结构转换成各家 API 的 JSON 请求体。
    system_prompt 为显式覆盖字段；为空时各适配器从 messages 中提取。
    """

    model: str
    messages: List[ChatMessage]
    tools: Optional[List["ToolDef"]] = None
    max_tokens: int = 4096
    temperature: float = 1.0
    stream: bool = True
    system_prompt: Optional[str] = None


@dataclass
class ChatUsage:
    """Provider 返回的 token 统计信息（统一格式）。"""

    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


@dataclass
class ChatResult:
    """一次非流式调用的最终结果。

    - content: 文本回答，模型只发起工具调用时可能为 None。
    - tool_calls: 模型发起的工具调用。
    - finish_reason: 已归一化的结束原因（stop/length/tool_calls 或透传值）。
    - usage: 可选的 token 使用统计。
    - raw: 原始响应 JSON，用于调试或日志记录。
    """

    content: Optional[str]
    tool_calls: Optional[List["ToolCall"]]
    finish_reason: str
    usage: Optional[ChatUsage] = None
    raw: Optional[dict] = None


StreamEventKind = Literal["text_delta", "tool_call_delta", "tool_call", "done", "error"]


@dataclass
class StreamEvent:
    """Provider 流式输出的统一事件。

    kind:
        - "text_delta": 文本增量，见 text。
        - "tool_call_delta": 工具调用片段（index/tool_call_id/name/arguments 均可选），
          仅用于展示进度，完整调用以 "tool_call" 事件为准。
        - "tool_call": 一次完整的工具调用，见 tool_call。
        - "done": 流结束，携带 finish_reason 与 usage。
        - "error": Provider 在流中报告的错误，见 text。
    """

    kind: StreamEventKind
    text: Optional[str] = None
    index: Optional[int] = None
    tool_call_id: Optional[str] = None
    name: Optional[str] = None
    arguments: Optional[str] = None
    tool_call: Optional["ToolCall"] = None
    finish_reason: Optional[str] = None
    usage: Optional[ChatUsage] = None
