"""Provider 抽象接口。

上层 AgentEngine 不直接依赖具体厂商的 HTTP 协议，而是依赖此协议：

- 每个厂商实现一个 ProviderClient（OpenAIClient、AnthropicClient）。
- 负责：将 ChatRequest 转成具体 API 请求，并把响应 JSON / SSE 流解析为
  ChatResult / StreamEvent。

Provider 集合是封闭的，新增厂商需要同时在 registry 与 create_provider 中登记。
"""

from typing import Protocol, Iterable, Optional

from aeon_core.domain.models import ChatRequest, ChatResult, StreamEvent


class ProviderClient(Protocol):
    """LLM Provider 客户端协议。

    实现者需要提供：
    - name: Provider 名称，用于日志/统计。
    - chat(req): 执行一次非流式对话调用，返回统一的 ChatResult。
    - chat_stream(req): 执行一次流式调用，逐个产出 StreamEvent，以 "done" 结束。
    - build_payload / parse_response / normalize_finish_reason: 不涉及网络的纯转换函数。
    """

    name: str

    def chat(self, req: ChatRequest) -> ChatResult:
        ...

    def chat_stream(self, req: ChatRequest) -> Iterable[StreamEvent]:
        """执行一次流式对话调用，逐步产出事件。"""

        ...

    def build_payload(self, req: ChatRequest, stream: bool) -> dict:
        ...

    def parse_response(self, data: dict) -> ChatResult:
        ...

    def normalize_finish_reason(self, raw: Optional[str]) -> str:
        ...
