"""对外 API 服务模块。

提供简化的函数接口供上层应用调用：默认 Agent 单例、单条消息处理、
历史查询以及启动终端对话。
"""

from typing import Optional, Dict, Any, List

from aeon_core.agents.assistant_agent import AssistantAgent
from aeon_core.agents.base_agent import TextCallback
from aeon_core.config.settings import settings
from aeon_core.dialogs.base import DialogProvider, InboundMessage
from aeon_core.dialogs.cli import CliDialog
from aeon_core.domain.exceptions import ValidationError
from aeon_core.infrastructure.logging.logger import logger
from aeon_core.providers import create_provider


_agent: Optional[AssistantAgent] = None


def get_default_agent() -> AssistantAgent:
    """获取默认的 AssistantAgent 实例（单例）。"""
    global _agent
    if _agent is None:
        _agent = AssistantAgent(provider_client=create_provider(settings.llm_provider))
    return _agent


def reset_default_agent() -> None:
    global _agent
    _agent = None


def handle_inbound(message: InboundMessage, on_text: Optional[TextCallback] = None) -> str:
    """处理一条入站消息并返回最终文本。

    Raises:
        各种 domain.exceptions 中定义的异常
    """
    try:
        return get_default_agent().handle(message, on_text)
    except Exception as e:
        logger.error(f"Chat failed: {e}", extra={"extra": {
            "source": message.source,
            "sender_id": message.sender_id,
            "error": str(e),
        }})
        raise


def get_conversation_messages() -> List[Dict[str, Any]]:
    """获取默认 Agent 当前会话的所有消息。"""
    agent = get_default_agent()
    return [
        {
            "role": m.role,
            "content": m.content,
            "name": m.name,
            "tool_call_id": m.tool_call_id,
            "tool_calls": [
                {"id": c.id, "name": c.name, "arguments": c.arguments} for c in m.tool_calls or []
            ],
            "meta": m.meta,
        }
        for m in agent.engine.history
    ]


def create_dialog(name: Optional[str] = None) -> DialogProvider:
    messenger = (name or settings.messenger).lower()
    if messenger == "cli":
        return CliDialog()
    raise ValidationError(code="UNKNOWN_MESSENGER", message=f"Unknown messenger: {messenger}")


def run_cli(dialog: Optional[DialogProvider] = None) -> None:
    """启动对话入口并阻塞直到用户退出。"""
    logger.info("Starting dialog", extra={"extra": {
        "messenger": settings.messenger,
        "provider": settings.llm_provider,
        "model": settings.llm_model,
    }})
    (dialog or create_dialog()).run(handle_inbound)
