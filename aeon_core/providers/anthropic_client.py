"""Anthropic Provider 适配器。

Anthropic Messages API 与 OpenAI 的主要差异：

- system 提示是顶层字段，而不是一条消息；
- 工具结果以 user 消息中的 tool_result 块回传；
- 流式事件以 `event:` / `data:` 成对出现，工具参数通过 content_block_start /
  content_block_delta(input_json_delta) / content_block_stop 顺序下发，
  `message_stop` 表示流结束。
"""

import json
from typing import Any, Dict, Iterable, Iterator, List, Optional

import httpx

from aeon_core.domain.exceptions import (
    NetworkError,
    ParseError,
    ProviderError,
    RateLimitError,
    ValidationError,
)
from aeon_core.domain.models import (
    FINISH_LENGTH,
    FINISH_STOP,
    FINISH_TOOL_CALLS,
    ChatMessage,
    ChatRequest,
    ChatResult,
    ChatUsage,
    StreamEvent,
)
from aeon_core.infrastructure.logging.logger import logger
from aeon_core.providers.accumulator import ToolCallAccumulator
from aeon_core.providers.registry import ANTHROPIC_CONFIG
from aeon_core.providers.sse import (
    SseStreamDecoder,
    as_object,
    load_event_payload,
    parse_data_line,
    parse_event_line,
)
from aeon_core.tools.definitions import ToolCall, ToolDef

_STOP_REASONS = {
    "end_turn": FINISH_STOP,
    "stop_sequence": FINISH_STOP,
    "max_tokens": FINISH_LENGTH,
    "tool_use": FINISH_TOOL_CALLS,
}


class AnthropicClient:
    """Anthropic 提供方客户端实现。"""

    name = "anthropic"

    def __init__(self, settings):
        self._settings = settings

    def chat(self, req: ChatRequest) -> ChatResult:
        """执行一次非流式对话调用。"""

        headers = self._headers()
        payload = self.build_payload(req, stream=False)
        try:
            with httpx.Client(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = client.post(self._url(), json=payload, headers=headers)
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e), provider=self.name)
        self._raise_for_status(resp.status_code, resp.text)
        try:
            data = resp.json()
        except ValueError:
            raise ProviderError(code="BAD_RESPONSE", message="Anthropic returned non-JSON body", provider=self.name)
        return self.parse_response(data)

    def chat_stream(self, req: ChatRequest) -> Iterable[StreamEvent]:
        """执行一次流式对话调用，逐步 yield StreamEvent，最后一个事件为 "done"。"""

        headers = self._headers()
        payload = self.build_payload(req, stream=True)
        decoder = SseStreamDecoder()
        accumulator = ToolCallAccumulator()
        state: Dict[str, Any] = {
            "event": None,
            "finish_reason": None,
            "input_tokens": None,
            "output_tokens": None,
            "done": False,
        }
        try:
            with httpx.Client(timeout=self._settings.http_timeout, trust_env=False) as client:
                with client.stream("POST", self._url(), json=payload, headers=headers) as resp:
                    if resp.status_code >= 400:
                        resp.read()
                        self._raise_for_status(resp.status_code, resp.text)
                    for chunk in resp.iter_bytes():
                        for line in decoder.feed(chunk):
                            yield from self._handle_line(line, accumulator, state)
                        if state["done"]:
                            break
                    if not state["done"]:
                        for line in decoder.flush():
                            yield from self._handle_line(line, accumulator, state)
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e), provider=self.name)

        # 被截断的流可能留下未 stop 的工具块
        for call in accumulator.finalize():
            yield StreamEvent(kind="tool_call", tool_call=call)
        yield StreamEvent(
            kind="done",
            finish_reason=self.normalize_finish_reason(state["finish_reason"]),
            usage=self._usage_from_counts(state["input_tokens"], state["output_tokens"]),
        )

    # ---- 纯转换函数 ----

    def build_payload(self, req: ChatRequest, stream: bool) -> dict:
        """将 ChatRequest 转成 Anthropic Messages API 的请求 JSON。"""

        system = req.system_prompt
        # 只有在没有显式 system_prompt 时，第一条 system 消息才提升为顶层 system
        system_index: Optional[int] = None
        if not system:
            for i, m in enumerate(req.messages):
                if m.role == "system":
                    system_index = i
                    system = m.content
                    break

        messages: List[Dict[str, Any]] = []
        for i, m in enumerate(req.messages):
            if i == system_index:
                continue
            if m.role == "tool":
                self._append_tool_result(messages, m)
            elif m.role == "assistant" and m.tool_calls:
                messages.append({"role": "assistant", "content": self._assistant_blocks(m)})
            elif m.role == "assistant" and not m.content:
                # Messages API 拒绝空的 assistant 内容
                continue
            elif m.role == "system":
                # Messages API 只允许一个顶层 system，多余的按 user 发送
                messages.append({"role": "user", "content": m.content})
            else:
                messages.append({"role": m.role, "content": m.content})

        payload: Dict[str, Any] = {
            "model": req.model or ANTHROPIC_CONFIG.default_model,
            "messages": messages,
            "max_tokens": req.max_tokens,
        }
        if system:
            payload["system"] = system
        if req.temperature != 1.0:
            payload["temperature"] = req.temperature
        if stream:
            payload["stream"] = True
        if req.tools:
            payload["tools"] = [self._serialize_tool(tool) for tool in req.tools]
        return payload

    def parse_response(self, data: dict) -> ChatResult:
        """将 Anthropic 的原始响应 JSON 解析为统一的 ChatResult。"""

        if not isinstance(data, dict):
            raise ProviderError(code="BAD_RESPONSE", message="Anthropic response is not an object", provider=self.name)
        if data.get("type") == "error":
            error = data.get("error") or {}
            raise ProviderError(code="API_ERROR", message=error.get("message") or "Anthropic error", provider=self.name)
        blocks = data.get("content")
        if not isinstance(blocks, list):
            raise ProviderError(code="BAD_RESPONSE", message="Anthropic response has no content", provider=self.name)

        texts: List[str] = []
        tool_calls: List[ToolCall] = []
        for block in blocks:
            block_type = block.get("type")
            if block_type == "text":
                texts.append(block.get("text") or "")
            elif block_type == "tool_use":
                tool_calls.append(
                    ToolCall(
                        id=block.get("id") or f"call_{len(tool_calls)}",
                        name=block.get("name") or "unknown",
                        arguments=json.dumps(block.get("input") or {}, ensure_ascii=False),
                    )
                )
        usage_raw = data.get("usage") or {}
        return ChatResult(
            content="".join(texts) if texts else None,
            tool_calls=tool_calls or None,
            finish_reason=self.normalize_finish_reason(data.get("stop_reason")),
            usage=self._usage_from_counts(usage_raw.get("input_tokens"), usage_raw.get("output_tokens")),
            raw=data,
        )

    def normalize_finish_reason(self, raw: Optional[str]) -> str:
        if not raw:
            return FINISH_STOP
        return _STOP_REASONS.get(raw, raw)

    # ---- 内部实现 ----

    def _url(self) -> str:
        base = getattr(self._settings, "anthropic_base_url", None) or ANTHROPIC_CONFIG.base_url
        return f"{base.rstrip('/')}{ANTHROPIC_CONFIG.endpoint}"

    def _headers(self) -> Dict[str, str]:
        api_key = getattr(self._settings, "anthropic_api_key", None)
        if not api_key:
            raise ValidationError(code="MISSING_API_KEY", message="ANTHROPIC_API_KEY not set")
        return {
            "x-api-key": api_key,
            "Content-Type": "application/json",
            **ANTHROPIC_CONFIG.headers,
        }

    def _raise_for_status(self, status_code: int, body: str) -> None:
        if status_code == 429:
            raise RateLimitError(code="RATE_LIMIT", message="Anthropic rate limit", http_status=429, provider=self.name)
        if status_code >= 400:
            raise ProviderError(code="API_ERROR", message=body, http_status=status_code, provider=self.name)

    def _handle_line(
        self,
        line: str,
        accumulator: ToolCallAccumulator,
        state: Dict[str, Any],
    ) -> Iterator[StreamEvent]:
        """处理单个 SSE 行。事件类型优先取 data 中的 type 字段，其次取 event 行。"""

        if state["done"]:
            return
        event_name = parse_event_line(line)
        if event_name is not None:
            state["event"] = event_name
            return
        data_str = parse_data_line(line)
        if data_str is None or not data_str.strip():
            return
        try:
            data = load_event_payload(data_str)
        except ParseError as e:
            logger.debug("Skipping malformed SSE payload", extra={"extra": {"provider": self.name, "error": e.message}})
            return
        event_type = data.get("type") or state["event"]
        state["event"] = None

        if event_type == "message_start":
            usage = as_object(as_object(data.get("message")).get("usage"))
            if isinstance(usage.get("input_tokens"), int):
                state["input_tokens"] = usage["input_tokens"]
        elif event_type == "content_block_start":
            block = as_object(data.get("content_block"))
            if block.get("type") == "tool_use":
                tool_call_id = _text_field(block.get("id"))
                name = _text_field(block.get("name"))
                index = accumulator.start_block(tool_call_id, name)
                yield StreamEvent(kind="tool_call_delta", index=index, tool_call_id=tool_call_id, name=name)
            elif block.get("type") == "text" and _text_field(block.get("text")):
                yield StreamEvent(kind="text_delta", text=block["text"])
        elif event_type == "content_block_delta":
            delta = as_object(data.get("delta"))
            if delta.get("type") == "text_delta":
                if _text_field(delta.get("text")):
                    yield StreamEvent(kind="text_delta", text=delta["text"])
            elif delta.get("type") == "input_json_delta":
                fragment = _text_field(delta.get("partial_json")) or ""
                index = accumulator.append_current(fragment)
                if index is not None:
                    yield StreamEvent(kind="tool_call_delta", index=index, arguments=fragment)
        elif event_type == "content_block_stop":
            call = accumulator.stop_block()
            if call is not None:
                yield StreamEvent(kind="tool_call", tool_call=call)
        elif event_type == "message_delta":
            stop_reason = _text_field(as_object(data.get("delta")).get("stop_reason"))
            if stop_reason:
                state["finish_reason"] = stop_reason
            usage = as_object(data.get("usage"))
            if isinstance(usage.get("output_tokens"), int):
                state["output_tokens"] = usage["output_tokens"]
        elif event_type == "message_stop":
            state["done"] = True
        elif event_type == "error":
            error = data.get("error")
            if isinstance(error, dict):
                message = _text_field(error.get("message"))
            else:
                message = str(error) if error else None
            yield StreamEvent(kind="error", text=message or "Anthropic stream error")
        # ping 与未知事件直接忽略

    @staticmethod
    def _usage_from_counts(input_tokens: Optional[int], output_tokens: Optional[int]) -> Optional[ChatUsage]:
        if input_tokens is None and output_tokens is None:
            return None
        prompt = input_tokens or 0
        completion = output_tokens or 0
        return ChatUsage(prompt_tokens=prompt, completion_tokens=completion, total_tokens=prompt + completion)

    @staticmethod
    def _append_tool_result(messages: List[Dict[str, Any]], message: ChatMessage) -> None:
        """tool 消息转成 user 消息中的 tool_result 块，连续的结果合并到同一条消息。"""

        block = {
            "type": "tool_result",
            "tool_use_id": message.tool_call_id or "unknown",
            "content": message.content,
        }
        if messages:
            previous = messages[-1]
            content = previous.get("content")
            if (
                previous.get("role") == "user"
                and isinstance(content, list)
                and content
                and all(b.get("type") == "tool_result" for b in content)
            ):
                content.append(block)
                return
        messages.append({"role": "user", "content": [block]})

    @staticmethod
    def _assistant_blocks(message: ChatMessage) -> List[Dict[str, Any]]:
        blocks: List[Dict[str, Any]] = []
        if message.content:
            blocks.append({"type": "text", "text": message.content})
        for call in message.tool_calls or []:
            try:
                tool_input = call.parsed_arguments()
            except json.JSONDecodeError:
                tool_input = {}
            if not isinstance(tool_input, dict):
                tool_input = {}
            blocks.append({"type": "tool_use", "id": call.id, "name": call.name, "input": tool_input})
        return blocks

    @staticmethod
    def _serialize_tool(tool: ToolDef) -> Dict[str, Any]:
        return {
            "name": tool.name,
            "description": tool.description,
            "input_schema": tool.parameters_schema(),
        }


def _text_field(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None
