"""Provider 配置表。

集中维护每个 Provider 的默认 base_url、请求路径与默认模型，
Settings 中的 *_base_url 可以覆盖这里的默认值。"""

from dataclasses import dataclass, field
from typing import Dict, Mapping


@dataclass
class ProviderConfig:
    """某个 Provider 的整体配置。"""

    name: str
    base_url: str
    endpoint: str
    default_model: str
    headers: Dict[str, str] = field(default_factory=dict)


OPENAI_CONFIG = ProviderConfig(
    name="openai",
    base_url="https://api.openai.com/v1",
    endpoint="/chat/completions",
    default_model="gpt-4o-mini",
)

# Anthropic 的 base_url 不带版本号，版本放在请求路径里
ANTHROPIC_CONFIG = ProviderConfig(
    name="anthropic",
    base_url="https://api.anthropic.com",
    endpoint="/v1/messages",
    default_model="claude-sonnet-4-20250514",
    headers={"anthropic-version": "2023-06-01"},
)


PROVIDER_REGISTRY: Mapping[str, ProviderConfig] = {
    "openai": OPENAI_CONFIG,
    "anthropic": ANTHROPIC_CONFIG,
}


def get_provider_config(name: str) -> ProviderConfig:
    """根据名称获取 ProviderConfig，名称不区分大小写。"""

    key = name.lower()
    for k, cfg in PROVIDER_REGISTRY.items():
        if k.lower() == key:
            return cfg
    raise KeyError(f"Unknown provider: {name!r}")
