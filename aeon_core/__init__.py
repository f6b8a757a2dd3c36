"""Aeon Core 顶层包。

该包提供本地 AI 助手的核心实现，包括配置加载、领域模型、
OpenAI / Anthropic 流式适配、工具系统、对话引擎与终端对话入口。
"""

from aeon_core.agents.base_agent import AgentEngine, AgentConfig, ROUND_LIMIT_SENTINEL
from aeon_core.agents.assistant_agent import AssistantAgent

__all__ = ["AgentEngine", "AgentConfig", "AssistantAgent", "ROUND_LIMIT_SENTINEL"]
