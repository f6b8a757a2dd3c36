"""Agent 引擎核心模块。

实现一次用户输入的完整处理：把会话交给 Provider、收集文本与工具调用、
执行工具并回灌结果，直到模型给出最终回答或达到最大轮数。

状态流转：awaiting_model -> responding | tools_pending -> ... -> terminated。
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Literal, Optional
from uuid import uuid4
import logging
import time

from aeon_core.domain.conversation import ConversationStore
from aeon_core.domain.exceptions import ProviderError
from aeon_core.domain.models import ChatMessage, ChatRequest, ChatUsage, FINISH_STOP
from aeon_core.infrastructure.logging.logger import logger
from aeon_core.providers.base import ProviderClient
from aeon_core.tools.definitions import ToolCall, ToolResult
from aeon_core.tools.executor import ToolExecutor


ROUND_LIMIT_SENTINEL = "[Max tool rounds exceeded]"

AgentState = Literal["idle", "awaiting_model", "responding", "tools_pending", "terminated"]
TextCallback = Callable[[str], None]


@dataclass
class AgentConfig:
    model: str
    max_tool_rounds: int = 10  # 每次用户输入内模型调用的最大轮数
    max_tokens: int = 4096
    temperature: float = 1.0
    stream: bool = True
    system_prompt: Optional[str] = None


@dataclass
class ModelTurn:
    """单轮模型调用收集到的结果。"""

    text: str
    tool_calls: List[ToolCall]
    finish_reason: str
    usage: Optional[ChatUsage] = None


class AgentEngine:
    def __init__(
        self,
        provider_client: ProviderClient,
        tool_executor: Optional[ToolExecutor] = None,
        config: Optional[AgentConfig] = None,
        store: Optional[ConversationStore] = None,
    ):
        self._provider_client = provider_client
        self._tool_executor = tool_executor
        self._config = config or AgentConfig(model="")
        self._store = store if store is not None else ConversationStore()
        self._state: AgentState = "idle"
        self._rounds = 0

    @property
    def history(self) -> ConversationStore:
        return self._store

    @property
    def last_state(self) -> AgentState:
        return self._state

    @property
    def last_rounds(self) -> int:
        return self._rounds

    def clear_history(self) -> None:
        self._store.clear()
        self._state = "idle"
        self._rounds = 0

    def process_message(self, user_text: str, on_text: Optional[TextCallback] = None) -> str:
        """处理一条用户输入并返回最终文本。

        Args:
            user_text: 用户输入。
            on_text: 可选的文本增量回调，流式模式下每个增量调用一次。

        Returns:
            模型的最终回答；达到最大轮数时返回 ROUND_LIMIT_SENTINEL。

        Raises:
            ProviderError / NetworkError: 本轮 Provider 调用失败，用户消息保留在会话中。
        """

        start_time = time.time()
        log_ctx: Dict[str, Any] = {
            "trace_id": f"tr-{uuid4().hex}",
            "provider": getattr(self._provider_client, "name", None),
            "model": self._config.model,
        }
        self._store.append(ChatMessage(role="user", content=user_text))
        self._rounds = 0

        tool_defs = self._tool_executor.tool_defs() if self._tool_executor else []
        max_rounds = self._config.max_tool_rounds

        for round_num in range(1, max_rounds + 1):
            self._state = "awaiting_model"
            self._rounds = round_num
            self._log(
                logging.INFO,
                "Model round",
                log_ctx,
                round=round_num,
                max_rounds=max_rounds,
                message_count=len(self._store) + (1 if self._config.system_prompt else 0),
            )
            req = ChatRequest(
                model=self._config.model,
                messages=self._build_messages(),
                tools=tool_defs or None,
                max_tokens=self._config.max_tokens,
                temperature=self._config.temperature,
                stream=self._config.stream,
            )
            turn = self._call_model(req, on_text)
            if turn.usage:
                self._log(logging.INFO, "Token usage", log_ctx, **self._usage_meta_from_usage(turn.usage))

            self._store.append(
                ChatMessage(
                    role="assistant",
                    content=turn.text,
                    tool_calls=turn.tool_calls or None,
                    meta={"finish_reason": turn.finish_reason, "round": round_num},
                )
            )

            if not turn.tool_calls:
                self._state = "terminated"
                self._log(
                    logging.INFO,
                    "Completed agent step",
                    log_ctx,
                    rounds=round_num,
                    finish_reason=turn.finish_reason,
                    elapsed_seconds=round(time.time() - start_time, 2),
                )
                return turn.text

            self._state = "tools_pending"
            self._log(logging.INFO, "Executing tool calls", log_ctx, call_count=len(turn.tool_calls))
            for tool_call in turn.tool_calls:
                result = self._run_tool(tool_call, log_ctx)
                self._store.append(
                    ChatMessage(
                        role="tool",
                        content=result.output,
                        name=tool_call.name,
                        tool_call_id=tool_call.id,
                        meta={"success": result.success, "error": result.error},
                    )
                )

        self._state = "terminated"
        self._log(
            logging.WARNING,
            "Reached max tool rounds",
            log_ctx,
            max_rounds=max_rounds,
            elapsed_seconds=round(time.time() - start_time, 2),
        )
        return ROUND_LIMIT_SENTINEL

    def _build_messages(self) -> List[ChatMessage]:
        """系统提示只在发送时拼接，不写入会话。"""

        messages: List[ChatMessage] = []
        if self._config.system_prompt:
            messages.append(ChatMessage(role="system", content=self._config.system_prompt))
        messages.extend(self._store.messages())
        return messages

    def _call_model(self, req: ChatRequest, on_text: Optional[TextCallback]) -> ModelTurn:
        if not req.stream:
            result = self._provider_client.chat(req)
            text = result.content or ""
            if text:
                self._state = "responding"
                if on_text:
                    on_text(text)
            return ModelTurn(
                text=text,
                tool_calls=list(result.tool_calls or []),
                finish_reason=result.finish_reason,
                usage=result.usage,
            )

        parts: List[str] = []
        tool_calls: List[ToolCall] = []
        finish_reason = FINISH_STOP
        usage: Optional[ChatUsage] = None
        for event in self._provider_client.chat_stream(req):
            if event.kind == "text_delta" and event.text:
                self._state = "responding"
                parts.append(event.text)
                if on_text:
                    on_text(event.text)
            elif event.kind == "tool_call" and event.tool_call is not None:
                tool_calls.append(event.tool_call)
            elif event.kind == "done":
                finish_reason = event.finish_reason or FINISH_STOP
                usage = event.usage
            elif event.kind == "error":
                raise ProviderError(
                    code="STREAM_ERROR",
                    message=event.text or "provider reported a stream error",
                    provider=getattr(self._provider_client, "name", None),
                )
        return ModelTurn(text="".join(parts), tool_calls=tool_calls, finish_reason=finish_reason, usage=usage)

    def _run_tool(self, tool_call: ToolCall, log_ctx: Dict[str, Any]) -> ToolResult:
        self._log(
            logging.INFO,
            "Tool call received",
            log_ctx,
            tool_name=tool_call.name,
            tool_call_id=tool_call.id,
            tool_args=tool_call.arguments,
        )
        if self._tool_executor is None:
            result = ToolResult(success=False, output=f"Unknown tool: {tool_call.name}", error="Tool not found")
        else:
            result = self._tool_executor.execute_call(tool_call)
        self._log(
            logging.INFO if result.success else logging.WARNING,
            "Tool execution finished",
            log_ctx,
            tool_call_id=tool_call.id,
            success=result.success,
            error=result.error,
            result_preview=result.output[:200],
        )
        return result

    @staticmethod
    def _usage_meta_from_usage(usage: Optional[ChatUsage]) -> Dict[str, Any]:
        if not usage:
            return {}
        return {
            "prompt_tokens": usage.prompt_tokens,
            "completion_tokens": usage.completion_tokens,
            "total_tokens": usage.total_tokens,
        }

    @staticmethod
    def _log(level: int, message: str, log_ctx: Dict[str, Any], **fields: Any) -> None:
        payload = dict(log_ctx)
        payload.update(fields)
        logger.log(level, message, extra={"extra": payload})
