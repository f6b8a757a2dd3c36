"""LLM Provider 集成层。

该包下的模块负责：
- 定义 Provider 抽象接口 (base)。
- 维护 Provider 配置 (registry)。
- SSE 行解码 (sse) 与工具调用片段拼装 (accumulator)。
- 提供各厂商的具体实现 (openai_client、anthropic_client)。
"""

from typing import Optional

from aeon_core.config.settings import settings
from aeon_core.domain.exceptions import ValidationError
from aeon_core.providers.base import ProviderClient
from aeon_core.providers.openai_client import OpenAIClient
from aeon_core.providers.anthropic_client import AnthropicClient


def create_provider(name: Optional[str] = None, cfg=None) -> ProviderClient:
    """根据名称创建 Provider 实例，默认取配置中的 llm_provider。"""

    cfg = cfg or settings
    provider_name = (name or getattr(cfg, "llm_provider", "openai")).lower()
    if provider_name == "openai":
        return OpenAIClient(cfg)
    if provider_name == "anthropic":
        return AnthropicClient(cfg)
    raise ValidationError(code="UNKNOWN_PROVIDER", message=f"Unknown provider: {provider_name}")
