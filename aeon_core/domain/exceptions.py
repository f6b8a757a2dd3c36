"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在对话边界（CLI 等）做统一捕获与用户提示。

RoundLimitExceeded 不是异常：达到最大轮数时 AgentEngine 返回固定提示文本。
"""


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "API_ERROR"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 provider 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class NetworkError(BusinessError):
    """网络层错误，例如连接失败、传输中断、超时等。"""


class ProviderError(BusinessError):
    """Provider 返回非 2xx 状态、顶层响应结构异常或在流中报告错误。

    当前轮次中止，错误作为本次对话的可恢复失败交给调用方。
    """


class RateLimitError(ProviderError):
    """Provider 限流错误（HTTP 429），由上层负责重试/退避策略。"""


class ParseError(BusinessError):
    """单条 SSE 行或 JSON 片段无法解析。

    适配器内部吞掉该错误并跳过该行，以兼容 keep-alive 与未知事件类型。
    """


class ToolError(BusinessError):
    """工具执行失败（启动/读取/等待/超时）。

    ToolExecutor 会把它转换为 ToolResult(success=False) 回灌给模型，而不是中止循环。
    """


class ValidationError(BusinessError):
    """参数、配置或会话不变量校验失败。"""
