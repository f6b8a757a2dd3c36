import io

from aeon_core.agents.assistant_agent import AssistantAgent
from aeon_core.agents.base_agent import AgentConfig
from aeon_core.dialogs.base import InboundMessage
from aeon_core.dialogs.cli import CliDialog
from aeon_core.domain.exceptions import ProviderError
from aeon_core.domain.models import StreamEvent
from aeon_core.tools.executor import ToolExecutor


def _scripted(lines):
    it = iter(lines)

    def _input(prompt):
        try:
            return next(it)
        except StopIteration:
            raise EOFError

    return _input


def test_cli_dialog_commands_and_streaming():
    received = []

    def handler(message, on_text):
        received.append(message)
        if message.text == "/clear":
            return ""
        on_text("Hi")
        return "Hi"

    out = io.StringIO()
    CliDialog(input_func=_scripted(["hello", "  ", "/help", "/clear", "/bogus", "/quit", "never read"]), output=out).run(handler)
    text = out.getvalue()

    assert "AEON Assistant" in text
    assert text.count("assistant> Hi") == 1
    assert "assistant> HiHi" not in text
    assert "Commands:" in text
    assert "Conversation history cleared." in text
    assert "Unknown command: /bogus" in text
    assert text.rstrip().endswith("Goodbye!")
    assert [m.text for m in received] == ["hello", "/clear"]
    assert received[0].source == "cli"
    assert received[0].sender_id == "local"


def test_cli_dialog_prints_non_streamed_reply_and_survives_errors(capsys):
    def handler(message, on_text):
        if message.text == "fail":
            raise ProviderError(code="API_ERROR", message="boom", http_status=500)
        return "plain reply"

    out = io.StringIO()
    CliDialog(input_func=_scripted(["fail", "again"]), output=out).run(handler)
    assert "assistant> plain reply" in out.getvalue()
    assert "Goodbye!" in out.getvalue()
    assert "Error processing message: [API_ERROR] boom" in capsys.readouterr().err


class EchoProvider:
    name = "fake"

    def chat_stream(self, req):
        yield StreamEvent(kind="text_delta", text=f"echo: {req.messages[-1].content}")
        yield StreamEvent(kind="done", finish_reason="stop")


def test_assistant_agent_routes_clear_command():
    agent = AssistantAgent(
        provider_client=EchoProvider(),
        tool_executor=ToolExecutor(),
        config=AgentConfig(model="m", system_prompt="You are Aeon"),
    )
    reply = agent.handle(InboundMessage(source="cli", sender_id="local", text="hello"))
    assert reply == "echo: hello"
    assert len(agent.engine.history) == 2
    assert agent.handle(InboundMessage(source="cli", sender_id="local", text=" /clear ")) == ""
    assert len(agent.engine.history) == 0
