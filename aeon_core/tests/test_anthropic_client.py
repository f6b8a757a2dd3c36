import json

import pytest

from aeon_core.domain.exceptions import ProviderError, RateLimitError
from aeon_core.domain.models import ChatMessage, ChatRequest
from aeon_core.providers.anthropic_client import AnthropicClient
from aeon_core.tools.definitions import ToolCall, ToolDef, ToolParam


class SettingsStub:
    anthropic_api_key = "sk-ant-test"
    http_timeout = 1.0
    anthropic_base_url = "https://api.anthropic.com"


def _request(**kw):
    kw.setdefault("messages", [ChatMessage(role="user", content="hi")])
    return ChatRequest(model="claude-sonnet-4-20250514", **kw)


def _sse(*events):
    parts = []
    for name, data in events:
        parts.append(f"event: {name}\n")
        parts.append(f"data: {json.dumps(data)}\n\n")
    return "".join(parts).encode("utf-8")


class FakeResponse:
    def __init__(self, chunks, status_code=200, body=""):
        self._chunks = chunks
        self.status_code = status_code
        self.text = body

    def read(self):
        return self.text.encode("utf-8")

    def iter_bytes(self):
        for chunk in self._chunks:
            yield chunk


class StreamContext:
    def __init__(self, resp):
        self._resp = resp

    def __enter__(self):
        return self._resp

    def __exit__(self, *a):
        return False


def _install_stream(monkeypatch, resp, captured=None):
    class Client:
        def __init__(self, *a, **kw):
            pass

        def __enter__(self):
            return self

        def __exit__(self, *a):
            return False

        def stream(self, method, url, json=None, headers=None, **_):
            if captured is not None:
                captured.update({"url": url, "payload": json, "headers": headers})
            return StreamContext(resp)

    monkeypatch.setattr("httpx.Client", Client)


def _install_post(monkeypatch, data, status_code=200, text="", captured=None):
    class Resp:
        def __init__(self):
            self.status_code = status_code
            self.text = text

        def json(self):
            return data

    class Client:
        def __init__(self, *a, **kw):
            pass

        def __enter__(self):
            return self

        def __exit__(self, *a):
            return False

        def post(self, url, json=None, headers=None, **_):
            if captured is not None:
                captured.update({"url": url, "payload": json, "headers": headers})
            return Resp()

    monkeypatch.setattr("httpx.Client", Client)


TOOL_STREAM = _sse(
    ("message_start", {"type": "message_start", "message": {"id": "msg_1", "usage": {"input_tokens": 12}}}),
    ("content_block_start", {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}}),
    ("ping", {"type": "ping"}),
    ("content_block_delta", {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "Let me check."}}),
    ("content_block_stop", {"type": "content_block_stop", "index": 0}),
    (
        "content_block_start",
        {"type": "content_block_start", "index": 1, "content_block": {"type": "tool_use", "id": "toolu_1", "name": "exec", "input": {}}},
    ),
    ("content_block_delta", {"type": "content_block_delta", "index": 1, "delta": {"type": "input_json_delta", "partial_json": '{"command"'}}),
    ("content_block_delta", {"type": "content_block_delta", "index": 1, "delta": {"type": "input_json_delta", "partial_json": ': "ls -la"}'}}),
    ("content_block_stop", {"type": "content_block_stop", "index": 1}),
    (
        "content_block_start",
        {"type": "content_block_start", "index": 2, "content_block": {"type": "tool_use", "id": "toolu_2", "name": "file_read", "input": {}}},
    ),
    ("content_block_stop", {"type": "content_block_stop", "index": 2}),
    ("message_delta", {"type": "message_delta", "delta": {"stop_reason": "tool_use"}, "usage": {"output_tokens": 30}}),
    ("message_stop", {"type": "message_stop"}),
)


def test_build_payload_extracts_system_and_merges_tool_results():
    client = AnthropicClient(SettingsStub())
    req = _request(
        messages=[
            ChatMessage(role="system", content="You are Aeon"),
            ChatMessage(role="user", content="run two commands"),
            ChatMessage(
                role="assistant",
                content="Sure.",
                tool_calls=[
                    ToolCall(id="toolu_1", name="exec", arguments='{"command": "pwd"}'),
                    ToolCall(id="toolu_2", name="exec", arguments=""),
                ],
            ),
            ChatMessage(role="tool", content="/home", name="exec", tool_call_id="toolu_1"),
            ChatMessage(role="tool", content="", name="exec", tool_call_id="toolu_2"),
            ChatMessage(role="system", content="late note"),
        ]
    )
    payload = client.build_payload(req, stream=False)
    assert payload["system"] == "You are Aeon"
    assert "temperature" not in payload
    assert "stream" not in payload
    assert "tools" not in payload
    messages = payload["messages"]
    assert messages[0] == {"role": "user", "content": "run two commands"}
    assert messages[1]["role"] == "assistant"
    assert messages[1]["content"] == [
        {"type": "text", "text": "Sure."},
        {"type": "tool_use", "id": "toolu_1", "name": "exec", "input": {"command": "pwd"}},
        {"type": "tool_use", "id": "toolu_2", "name": "exec", "input": {}},
    ]
    assert messages[2] == {
        "role": "user",
        "content": [
            {"type": "tool_result", "tool_use_id": "toolu_1", "content": "/home"},
            {"type": "tool_result", "tool_use_id": "toolu_2", "content": ""},
        ],
    }
    assert messages[3] == {"role": "user", "content": "late note"}


def test_build_payload_streaming_options_and_tools():
    client = AnthropicClient(SettingsStub())
    tool = ToolDef(
        name="file_read",
        description="Read a file",
        params={"path": ToolParam(name="path", description="Path", required=True, schema={"type": "string"})},
    )
    payload = client.build_payload(_request(tools=[tool], temperature=0.5, system_prompt="override"), stream=True)
    assert payload["stream"] is True
    assert payload["temperature"] == 0.5
    assert payload["system"] == "override"
    assert payload["tools"] == [
        {
            "name": "file_read",
            "description": "Read a file",
            "input_schema": {
                "type": "object",
                "properties": {"path": {"type": "string", "description": "Path"}},
                "required": ["path"],
            },
        }
    ]


def test_normalize_finish_reason():
    client = AnthropicClient(SettingsStub())
    assert client.normalize_finish_reason("end_turn") == "stop"
    assert client.normalize_finish_reason("stop_sequence") == "stop"
    assert client.normalize_finish_reason("max_tokens") == "length"
    assert client.normalize_finish_reason("tool_use") == "tool_calls"
    assert client.normalize_finish_reason("pause_turn") == "pause_turn"


def test_chat_stream_tool_use(monkeypatch):
    captured = {}
    _install_stream(monkeypatch, FakeResponse([TOOL_STREAM]), captured)
    events = list(AnthropicClient(SettingsStub()).chat_stream(_request()))

    assert captured["url"] == "https://api.anthropic.com/v1/messages"
    assert captured["headers"]["x-api-key"] == "sk-ant-test"
    assert captured["headers"]["anthropic-version"] == "2023-06-01"
    assert captured["payload"]["stream"] is True

    assert [e.text for e in events if e.kind == "text_delta"] == ["Let me check."]
    calls = [e.tool_call for e in events if e.kind == "tool_call"]
    assert [c.id for c in calls] == ["toolu_1", "toolu_2"]
    assert calls[0].parsed_arguments() == {"command": "ls -la"}
    assert calls[1].name == "file_read"
    assert calls[1].arguments == ""
    done = events[-1]
    assert done.kind == "done"
    assert done.finish_reason == "tool_calls"
    assert done.usage.prompt_tokens == 12
    assert done.usage.completion_tokens == 30
    assert done.usage.total_tokens == 42


def test_chat_stream_is_independent_of_network_chunking(monkeypatch):
    def summarize(events):
        return [(e.kind, e.text, e.index, e.arguments, e.tool_call, e.finish_reason) for e in events]

    _install_stream(monkeypatch, FakeResponse([TOOL_STREAM]))
    expected = summarize(AnthropicClient(SettingsStub()).chat_stream(_request()))
    for size in (1, 5, 64):
        chunks = [TOOL_STREAM[i:i + size] for i in range(0, len(TOOL_STREAM), size)]
        _install_stream(monkeypatch, FakeResponse(chunks))
        assert summarize(AnthropicClient(SettingsStub()).chat_stream(_request())) == expected


def test_chat_stream_text_only(monkeypatch):
    body = _sse(
        ("message_start", {"type": "message_start", "message": {"usage": {"input_tokens": 3}}}),
        ("content_block_start", {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}}),
        ("content_block_delta", {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "Hi"}}),
        ("content_block_stop", {"type": "content_block_stop", "index": 0}),
        ("message_delta", {"type": "message_delta", "delta": {"stop_reason": "end_turn"}, "usage": {"output_tokens": 1}}),
        ("message_stop", {"type": "message_stop"}),
        ("content_block_delta", {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "late"}}),
    )
    _install_stream(monkeypatch, FakeResponse([body]))
    events = list(AnthropicClient(SettingsStub()).chat_stream(_request()))
    assert [e.kind for e in events] == ["text_delta", "done"]
    assert events[-1].finish_reason == "stop"


def test_chat_stream_error_event(monkeypatch):
    body = _sse(("error", {"type": "error", "error": {"type": "overloaded_error", "message": "Overloaded"}}))
    _install_stream(monkeypatch, FakeResponse([body]))
    events = list(AnthropicClient(SettingsStub()).chat_stream(_request()))
    assert events[0].kind == "error"
    assert events[0].text == "Overloaded"


def test_chat_stream_rate_limited(monkeypatch):
    _install_stream(monkeypatch, FakeResponse([], status_code=429, body="rate limited"))
    with pytest.raises(RateLimitError):
        list(AnthropicClient(SettingsStub()).chat_stream(_request()))


def test_chat_parses_text_and_tool_use(monkeypatch):
    data = {
        "id": "msg_1",
        "type": "message",
        "role": "assistant",
        "content": [
            {"type": "text", "text": "Reading "},
            {"type": "text", "text": "now."},
            {"type": "tool_use", "id": "toolu_9", "name": "file_read", "input": {"path": "/etc/hosts"}},
        ],
        "stop_reason": "tool_use",
        "usage": {"input_tokens": 5, "output_tokens": 8},
    }
    captured = {}
    _install_post(monkeypatch, data, captured=captured)
    res = AnthropicClient(SettingsStub()).chat(_request())
    assert "stream" not in captured["payload"]
    assert res.content == "Reading now."
    assert res.finish_reason == "tool_calls"
    assert res.tool_calls[0].id == "toolu_9"
    assert res.tool_calls[0].parsed_arguments() == {"path": "/etc/hosts"}
    assert res.usage.total_tokens == 13


def test_chat_error_envelope(monkeypatch):
    _install_post(monkeypatch, {"type": "error", "error": {"message": "invalid model"}})
    with pytest.raises(ProviderError) as excinfo:
        AnthropicClient(SettingsStub()).chat(_request())
    assert excinfo.value.message == "invalid model"

    _install_post(monkeypatch, {}, status_code=400, text="bad request")
    with pytest.raises(ProviderError) as excinfo:
        AnthropicClient(SettingsStub()).chat(_request())
    assert excinfo.value.http_status == 400


def test_chat_stream_error_event_with_plain_string(monkeypatch):
    body = _sse(("error", {"type": "error", "error": "overloaded"}))
    _install_stream(monkeypatch, FakeResponse([body]))
    events = list(AnthropicClient(SettingsStub()).chat_stream(_request()))
    assert events[0].kind == "error"
    assert events[0].text == "overloaded"


def test_chat_stream_skips_wrongly_shaped_events(monkeypatch):
    body = _sse(
        ("message_start", {"type": "message_start", "message": "not an object"}),
        ("content_block_start", {"type": "content_block_start", "index": 0, "content_block": None}),
        ("content_block_delta", {"type": "content_block_delta", "index": 0, "delta": ["x"]}),
        ("content_block_delta", {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "Hi"}}),
        ("message_delta", {"type": "message_delta", "delta": 7, "usage": "lots"}),
        ("message_delta", {"type": "message_delta", "delta": {"stop_reason": "end_turn"}, "usage": {"output_tokens": 2}}),
        ("message_stop", {"type": "message_stop"}),
    )
    _install_stream(monkeypatch, FakeResponse([body]))
    events = list(AnthropicClient(SettingsStub()).chat_stream(_request()))
    assert [e.kind for e in events] == ["text_delta", "done"]
    assert events[0].text == "Hi"
    assert events[-1].finish_reason == "stop"
    assert events[-1].usage.completion_tokens == 2


def test_build_payload_keeps_history_system_message_when_prompt_overrides():
    client = AnthropicClient(SettingsStub())
    req = _request(
        system_prompt="override",
        messages=[
            ChatMessage(role="system", content="from-history"),
            ChatMessage(role="user", content="hi"),
        ],
    )
    payload = client.build_payload(req, stream=False)
    assert payload["system"] == "override"
    assert payload["messages"] == [
        {"role": "user", "content": "from-history"},
        {"role": "user", "content": "hi"},
    ]


def test_build_payload_drops_empty_assistant_turns():
    client = AnthropicClient(SettingsStub())
    req = _request(
        messages=[
            ChatMessage(role="user", content="hi"),
            ChatMessage(role="assistant", content=""),
            ChatMessage(role="user", content="still there?"),
        ]
    )
    payload = client.build_payload(req, stream=False)
    assert [m["role"] for m in payload["messages"]] == ["user", "user"]
    assert all(m["content"] for m in payload["messages"])
