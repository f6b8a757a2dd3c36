"""系统提示词加载工具。

默认从 prompts/<locale>/assistant_system.md 读取内置角色提示；
配置了 role_path 时改为读取用户自己的角色文件。
"""

from pathlib import Path
from typing import Optional

from aeon_core.domain.exceptions import ValidationError


PROMPTS_DIR = Path(__file__).resolve().parent


def load_system_prompt(role_path: Optional[str] = None, locale: str = "en") -> str:
    """加载系统提示词文本，role_path 优先于内置提示。"""

    if role_path:
        path = Path(role_path).expanduser()
        try:
            return path.read_text(encoding="utf-8").strip()
        except OSError as exc:
            raise ValidationError(code="ROLE_FILE_ERROR", message=f"Cannot read role file {path}: {exc}")
    fname = PROMPTS_DIR / locale / "assistant_system.md"
    return fname.read_text(encoding="utf-8").strip()
