"""对话入口与 AgentEngine 之间的包装。

负责把 InboundMessage 路由到 AgentEngine，并处理不需要调用模型的命令。
"""

from typing import Optional

from aeon_core.agents.base_agent import AgentConfig, AgentEngine, TextCallback
from aeon_core.config.settings import settings
from aeon_core.dialogs.base import InboundMessage
from aeon_core.domain.conversation import ConversationStore
from aeon_core.prompts import load_system_prompt
from aeon_core.providers.base import ProviderClient
from aeon_core.tools.executor import ToolExecutor, default_executor


CLEAR_COMMAND = "/clear"


class AssistantAgent:
    """面向对话入口的 Agent 包装类。

    未显式传入的参数从全局 settings 读取：模型、轮数上限、流式开关、角色提示与 exec 超时。
    """

    def __init__(
        self,
        provider_client: ProviderClient,
        tool_executor: Optional[ToolExecutor] = None,
        config: Optional[AgentConfig] = None,
        store: Optional[ConversationStore] = None,
    ):
        if tool_executor is None:
            tool_executor = default_executor(settings.exec_timeout_ms)
        if config is None:
            config = AgentConfig(
                model=settings.llm_model,
                max_tool_rounds=settings.max_tool_rounds,
                max_tokens=settings.max_tokens,
                temperature=settings.temperature,
                stream=settings.stream,
                system_prompt=load_system_prompt(settings.role_path),
            )
        self._engine = AgentEngine(
            provider_client=provider_client,
            tool_executor=tool_executor,
            config=config,
            store=store,
        )

    @property
    def engine(self) -> AgentEngine:
        return self._engine

    def handle(self, message: InboundMessage, on_text: Optional[TextCallback] = None) -> str:
        """处理一条入站消息。返回 "" 表示没有可见输出。"""

        if message.text.strip() == CLEAR_COMMAND:
            self._engine.clear_history()
            return ""
        return self._engine.process_message(message.text, on_text=on_text)

    __call__ = handle
