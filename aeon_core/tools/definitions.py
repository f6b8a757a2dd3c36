"""工具数据结构定义。

这些 dataclass 描述了“工具调用”的 schema，既用于：
- 将可用工具列表暴露给 LLM（ToolDef / ToolParam）。
- 在 AgentEngine 中保存和执行模型触发的工具调用（ToolCall / ToolResult）。
"""

import json
from dataclasses import dataclass
from typing import Dict, Any, List, Optional


@dataclass
class ToolParam:
    """单个工具参数的定义。"""

    name: str
    description: str
    required: bool
    schema: Dict[str, Any]


@dataclass
class ToolDef:
    """一个可供 LLM 调用的工具定义。"""

    name: str
    description: str
    params: Dict[str, ToolParam]

    def parameters_schema(self) -> Dict[str, Any]:
        """生成两家 Provider 共用的 JSON Schema。

        OpenAI 放在 function.parameters 下，Anthropic 放在 input_schema 下；
        required 列表是 required=True 的参数投影。
        """

        properties: Dict[str, Any] = {}
        required: List[str] = []
        for name, param in self.params.items():
            schema = param.schema or {"type": "string"}
            if param.description:
                schema = {**schema, "description": param.description}
            properties[name] = schema
            if param.required:
                required.append(name)
        return {"type": "object", "properties": properties, "required": required}


@dataclass(frozen=True)
class ToolCall:
    """模型发起的一次工具调用请求，arguments 为原始 JSON 文本。"""

    id: str
    name: str
    arguments: str

    def parsed_arguments(self) -> Dict[str, Any]:
        """解析 arguments；空文本视为 {}，非法 JSON 抛出 json.JSONDecodeError。"""

        if not self.arguments.strip():
            return {}
        return json.loads(self.arguments)


@dataclass
class ToolResult:
    """工具执行结果。output 会作为 tool 消息内容回灌给模型。"""

    success: bool
    output: str
    error: Optional[str] = None
