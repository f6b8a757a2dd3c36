"""配置管理模块。

支持从环境变量、.env 以及 config.yaml 加载配置，优先级从高到低为：
构造参数 > 环境变量 > .env > YAML 配置文件。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


SUPPORTED_PROVIDERS = ("openai", "anthropic")


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("AEON_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path.home() / ".aeon" / "config.yaml",
    ])

    seen: set = set()
    for path in candidates:
        if not path or path in seen:
            continue
        seen.add(path)
        try:
            if path.exists():
                data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
                if isinstance(data, dict):
                    return data
                warnings.warn(f"Config file {path} is not a mapping, ignored")
        except (OSError, yaml.YAMLError) as exc:
            warnings.warn(f"Failed to read config file {path}: {exc}")
    return {}


class Settings(BaseSettings):
    """配置设置（使用 Pydantic）。"""

    # ---- Provider 相关配置 ----
    llm_provider: str = Field(default="openai", description="使用的 Provider 名称：openai 或 anthropic")
    llm_model: str = Field(default="gpt-4o-mini", description="发送给 Provider 的模型 ID")

    # OpenAI
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API 密钥")
    openai_base_url: str = Field(default="https://api.openai.com/v1", description="OpenAI API 基础URL")
    # Anthropic
    anthropic_api_key: Optional[str] = Field(default=None, description="Anthropic API 密钥")
    anthropic_base_url: str = Field(default="https://api.anthropic.com", description="Anthropic API 基础URL")

    http_timeout: float = Field(default=120.0, ge=1.0, description="HTTP 超时时间（秒）")
    max_tokens: int = Field(default=4096, ge=1, description="单次回复的最大 token 数")
    temperature: float = Field(default=1.0, ge=0.0, le=2.0, description="生成温度")
    stream: bool = Field(default=True, description="是否使用流式调用")

    # ---- Agent 循环 ----
    max_tool_rounds: int = Field(default=10, ge=1, description="单轮对话内模型调用的最大轮数")
    exec_timeout_ms: int = Field(default=60000, ge=0, description="exec 工具默认超时（毫秒），0 表示不限制")
    role_path: Optional[str] = Field(default=None, description="自定义角色提示文件路径，为空时使用内置提示")

    # ---- 日志与对话入口 ----
    log_dir: str = Field(default="logs", description="日志目录")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")
    messenger: str = Field(default="cli", description="对话入口，目前仅支持 cli")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator("llm_provider")
    @classmethod
    def validate_provider(cls, v: str) -> str:
        v = (v or "").strip().lower()
        if v not in SUPPORTED_PROVIDERS:
            raise ValueError(f"llm_provider must be one of {', '.join(SUPPORTED_PROVIDERS)}")
        return v

    @field_validator("openai_api_key", "anthropic_api_key")
    @classmethod
    def validate_api_key(cls, v: Optional[str]) -> Optional[str]:
        if v and len(v) < 10:
            raise ValueError("API key seems too short")
        return v or None

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            cls._config_source,
            file_secret_settings,
        )


settings = Settings()
