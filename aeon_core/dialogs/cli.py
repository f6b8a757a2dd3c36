"""终端交互式对话入口。"""

import sys
from typing import Callable, List, Optional, TextIO

from aeon_core.dialogs.base import InboundMessage, MessageHandler
from aeon_core.domain.exceptions import BusinessError


BANNER = "\n".join(
    [
        "+--------------------------------------+",
        "|            AEON Assistant            |",
        "+--------------------------------------+",
    ]
)

HELP_TEXT = """
Commands:
  /quit, /exit  Exit the chat
  /clear        Clear conversation history
  /help         Show this help
"""


class CliDialog:
    """读取一行输入、交给 handler、打印回答，循环直到 /quit 或 EOF。

    回答优先通过流式回调实时输出；handler 没有产生任何增量时再打印返回值。
    """

    name = "cli"

    def __init__(
        self,
        input_func: Callable[[str], str] = input,
        output: Optional[TextIO] = None,
        sender_id: str = "local",
    ):
        self._input = input_func
        self._out = output or sys.stdout
        self._sender_id = sender_id
        self._running = False

    def send(self, to: str, message: str) -> None:
        self._write(f"{message}\n")

    def run(self, handler: MessageHandler) -> None:
        self._running = True
        self._write(f"\n{BANNER}\n")
        self._write("Type your message and press Enter. Commands: /quit, /clear, /help\n\n")
        while self._running:
            try:
                line = self._input("you> ")
            except (EOFError, KeyboardInterrupt):
                self._write("\nGoodbye!\n")
                break
            text = line.strip()
            if not text:
                continue
            if text.startswith("/"):
                self._handle_command(text, handler)
                continue
            self._respond(text, handler)
        self._running = False

    def _handle_command(self, command: str, handler: MessageHandler) -> None:
        if command in ("/quit", "/exit"):
            self._write("Goodbye!\n")
            self._running = False
        elif command == "/help":
            self._write(f"{HELP_TEXT}\n")
        elif command == "/clear":
            handler(self._inbound(command), None)
            self._write("Conversation history cleared.\n\n")
        else:
            self._write(f"Unknown command: {command}. Type /help for available commands.\n\n")

    def _respond(self, text: str, handler: MessageHandler) -> None:
        self._write("\nassistant> ")
        streamed: List[str] = []

        def on_text(delta: str) -> None:
            streamed.append(delta)
            self._write(delta)

        try:
            response = handler(self._inbound(text), on_text)
        except BusinessError as exc:
            sys.stderr.write(f"\nError processing message: [{exc.code}] {exc.message}\n")
            return
        if response and not streamed:
            self._write(response)
        self._write("\n\n")

    def _inbound(self, text: str) -> InboundMessage:
        return InboundMessage(source=self.name, sender_id=self._sender_id, text=text)

    def _write(self, text: str) -> None:
        self._out.write(text)
        self._out.flush()
