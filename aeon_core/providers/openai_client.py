"""OpenAI Provider 适配器。

本模块负责：

1. 接收统一的 ChatRequest。
2. 将其转换为 OpenAI Chat Completions 的请求 JSON。
3. 调用 HTTP 接口并处理网络/API 异常。
4. 将响应 JSON（或 SSE 流）解析为统一的 ChatResult / StreamEvent。

流式模式下每个 `data:` 行携带一个 choices[].delta，工具调用以带 index 的
片段下发，由 ToolCallAccumulator 负责拼装，`data: [DONE]` 表示流结束。
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
from aeon_core.providers.registry import OPENAI_CONFIG
from aeon_core.providers.sse import SseStreamDecoder, as_object, load_event_payload, parse_data_line
from aeon_core.tools.definitions import ToolCall, ToolDef

DONE_SENTINEL = "[DONE]"

_FINISH_REASONS = {
    "stop": FINISH_STOP,
    "length": FINISH_LENGTH,
    "tool_calls": FINISH_TOOL_CALLS,
    "function_call": FINISH_TOOL_CALLS,
}


class OpenAIClient:
    """OpenAI 提供方客户端实现。

    - name: Provider 名称（供日志/调试使用）。
    - chat: 非流式调用入口，返回 ChatResult。
    - chat_stream: 流式调用入口，产出 StreamEvent。
    """

    name = "openai"

    def __init__(self, settings):
        # Settings 里包含 base_url、api_key、超时等配置
        self._settings = settings

    def chat(self, req: ChatRequest) -> ChatResult:
        """执行一次非流式对话调用。"""

        headers = self._headers()
        payload = self.build_payload(req, stream=False)
        try:
            with httpx.Client(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = client.post(self._url(), json=payload, headers=headers)
        except httpx.RequestError as e:
            # 网络错误：DNS 失败、连接超时等
            raise NetworkError(code="NETWORK_ERROR", message=str(e), provider=self.name)
        self._raise_for_status(resp.status_code, resp.text)
        try:
            data = resp.json()
        except ValueError:
            raise ProviderError(code="BAD_RESPONSE", message="OpenAI returned non-JSON body", provider=self.name)
        return self.parse_response(data)

    def chat_stream(self, req: ChatRequest) -> Iterable[StreamEvent]:
        """执行一次流式对话调用，逐步 yield StreamEvent，最后一个事件为 "done"。"""

        headers = self._headers()
        payload = self.build_payload(req, stream=True)
        decoder = SseStreamDecoder()
        accumulator = ToolCallAccumulator()
        state: Dict[str, Any] = {"finish_reason": None, "usage": None, "done": False}
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

        for call in accumulator.finalize():
            yield StreamEvent(kind="tool_call", tool_call=call)
        yield StreamEvent(
            kind="done",
            finish_reason=self.normalize_finish_reason(state["finish_reason"]),
            usage=state["usage"],
        )

    # ---- 纯转换函数 ----

    def build_payload(self, req: ChatRequest, stream: bool) -> dict:
        """将 ChatRequest 转成 OpenAI 所需的请求 JSON。"""

        messages = [self._message_to_payload(m) for m in req.messages]
        if req.system_prompt and not any(m.role == "system" for m in req.messages):
            messages.insert(0, {"role": "system", "content": req.system_prompt})
        payload: Dict[str, Any] = {
            "model": req.model or OPENAI_CONFIG.default_model,
            "messages": messages,
            "max_tokens": req.max_tokens,
            "temperature": req.temperature,
            "stream": stream,
        }
        if req.tools:
            payload["tools"] = [self._serialize_tool(tool) for tool in req.tools]
        return payload

    def parse_response(self, data: dict) -> ChatResult:
        """将 OpenAI 的原始响应 JSON 解析为统一的 ChatResult。"""

        choices = data.get("choices") if isinstance(data, dict) else None
        if not isinstance(choices, list) or not choices:
            raise ProviderError(code="BAD_RESPONSE", message="OpenAI response has no choices", provider=self.name)
        choice = choices[0] or {}
        message = choice.get("message") or {}
        tool_calls = self._parse_tool_calls(message)
        return ChatResult(
            content=message.get("content"),
            tool_calls=tool_calls or None,
            finish_reason=self.normalize_finish_reason(choice.get("finish_reason")),
            usage=self._parse_usage(data.get("usage")),
            raw=data,
        )

    def normalize_finish_reason(self, raw: Optional[str]) -> str:
        if not raw:
            return FINISH_STOP
        return _FINISH_REASONS.get(raw, raw)

    # ---- 内部实现 ----

    def _url(self) -> str:
        base = getattr(self._settings, "openai_base_url", None) or OPENAI_CONFIG.base_url
        return f"{base.rstrip('/')}{OPENAI_CONFIG.endpoint}"

    def _headers(self) -> Dict[str, str]:
        api_key = getattr(self._settings, "openai_api_key", None)
        if not api_key:
            # 配置缺失走 ValidationError，方便上层统一处理
            raise ValidationError(code="MISSING_API_KEY", message="OPENAI_API_KEY not set")
        return {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    def _raise_for_status(self, status_code: int, body: str) -> None:
        if status_code == 429:
            # 限流错误交给上层做重试/退避
            raise RateLimitError(code="RATE_LIMIT", message="OpenAI rate limit", http_status=429, provider=self.name)
        if status_code >= 400:
            raise ProviderError(code="API_ERROR", message=body, http_status=status_code, provider=self.name)

    def _handle_line(
        self,
        line: str,
        accumulator: ToolCallAccumulator,
        state: Dict[str, Any],
    ) -> Iterator[StreamEvent]:
        """处理单个 SSE 行，产出零个或多个事件。"""

        if state["done"]:
            return
        data_str = parse_data_line(line)
        if data_str is None:
            return
        data_str = data_str.strip()
        if not data_str:
            return
        if data_str == DONE_SENTINEL:
            state["done"] = True
            return
        try:
            chunk = load_event_payload(data_str)
        except ParseError as e:
            logger.debug("Skipping malformed SSE payload", extra={"extra": {"provider": self.name, "error": e.message}})
            return

        error = chunk.get("error")
        if error:
            message = _text_field(error.get("message")) if isinstance(error, dict) else str(error)
            yield StreamEvent(kind="error", text=message or "OpenAI stream error")
            return

        choices = chunk.get("choices")
        for choice in choices if isinstance(choices, list) else []:
            if not isinstance(choice, dict):
                continue
            delta = as_object(choice.get("delta"))
            content = delta.get("content")
            if isinstance(content, str) and content:
                yield StreamEvent(kind="text_delta", text=content)
            fragments = delta.get("tool_calls")
            for fragment in fragments if isinstance(fragments, list) else []:
                if not isinstance(fragment, dict):
                    continue
                func = as_object(fragment.get("function"))
                raw_index = fragment.get("index")
                tool_call_id = _text_field(fragment.get("id"))
                name = _text_field(func.get("name"))
                arguments = _text_field(func.get("arguments"))
                index = accumulator.add_indexed(
                    raw_index if isinstance(raw_index, int) and not isinstance(raw_index, bool) else None,
                    tool_call_id=tool_call_id,
                    name=name,
                    arguments=arguments,
                )
                yield StreamEvent(
                    kind="tool_call_delta",
                    index=index,
                    tool_call_id=tool_call_id,
                    name=name,
                    arguments=arguments,
                )
            # 旧版 function_call 增量只有一个调用，固定写入槽位 0
            function_call = delta.get("function_call")
            if isinstance(function_call, dict) and function_call:
                name = _text_field(function_call.get("name"))
                arguments = _text_field(function_call.get("arguments"))
                index = accumulator.add_indexed(0, name=name, arguments=arguments)
                yield StreamEvent(kind="tool_call_delta", index=index, name=name, arguments=arguments)
            finish_reason = choice.get("finish_reason")
            if isinstance(finish_reason, str) and finish_reason:
                state["finish_reason"] = finish_reason

        usage = self._parse_usage(chunk.get("usage"))
        if usage:
            state["usage"] = usage

    def _parse_tool_calls(self, message: Dict[str, Any]) -> List[ToolCall]:
        tool_calls: List[ToolCall] = []
        for idx, call in enumerate(message.get("tool_calls") or []):
            func = call.get("function") or {}
            tool_calls.append(
                ToolCall(
                    id=call.get("id") or f"call_{idx}",
                    name=func.get("name") or "unknown",
                    arguments=_arguments_text(func.get("arguments")),
                )
            )
        # 部分兼容接口仍会返回旧版 function_call 字段
        function_call = message.get("function_call")
        if function_call:
            tool_calls.append(
                ToolCall(
                    id=function_call.get("id") or f"call_{len(tool_calls)}",
                    name=function_call.get("name") or "unknown",
                    arguments=_arguments_text(function_call.get("arguments")),
                )
            )
        return tool_calls

    @staticmethod
    def _parse_usage(raw: Any) -> Optional[ChatUsage]:
        if not isinstance(raw, dict) or not raw:
            return None
        prompt = raw.get("prompt_tokens") or 0
        completion = raw.get("completion_tokens") or 0
        return ChatUsage(
            prompt_tokens=prompt,
            completion_tokens=completion,
            total_tokens=raw.get("total_tokens") or prompt + completion,
        )

    @staticmethod
    def _serialize_tool(tool: ToolDef) -> Dict[str, Any]:
        """把内部的 ToolDef 转成 OpenAI 的 function tool 描述。"""

        return {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description,
                "parameters": tool.parameters_schema(),
            },
        }

    @staticmethod
    def _message_to_payload(message: ChatMessage) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"role": message.role}
        if message.role == "assistant" and message.tool_calls:
            payload["content"] = message.content or None
            payload["tool_calls"] = [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {"name": call.name, "arguments": call.arguments},
                }
                for call in message.tool_calls
            ]
        else:
            payload["content"] = message.content
        if message.role == "tool" and message.tool_call_id:
            payload["tool_call_id"] = message.tool_call_id
        return payload


def _arguments_text(raw: Any) -> str:
    if raw is None:
        return ""
    if isinstance(raw, str):
        return raw
    return json.dumps(raw, ensure_ascii=False)


def _text_field(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None
