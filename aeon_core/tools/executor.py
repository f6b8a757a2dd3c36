from typing import Callable, Dict, Any, List, Optional, Union
from pathlib import Path
import json
import os
import signal
import subprocess

from aeon_core.domain.exceptions import ToolError
from aeon_core.infrastructure.logging.logger import logger
from .definitions import ToolCall, ToolResult, ToolDef, ToolParam


ToolFunc = Callable[[Dict[str, Any]], Union[str, ToolResult]]
DEFAULT_EXEC_TIMEOUT_MS = 60000
MAX_READ_BYTES = 10 * 1024 * 1024
STDERR_SEPARATOR = "\n--- stderr ---\n"
TIMEOUT_MESSAGE = (
    "Command timed out after {timeout_ms}ms. If the command requires interactive input "
    "(password, confirmation), provide it via the 'stdin' parameter."
)


class ToolExecutor:
    """按名称注册并执行工具。

    所有失败都以 ToolResult(success=False) 返回，由调用方作为 tool 消息回灌给模型。
    """

    def __init__(self, tools: Optional[Dict[str, ToolFunc]] = None, tool_defs: Optional[List[ToolDef]] = None):
        self._tools: Dict[str, ToolFunc] = {}
        self._defs: Dict[str, ToolDef] = {}
        defs_by_name = {d.name: d for d in tool_defs or []}
        for name, func in (tools or {}).items():
            self._tools[name] = func
            if name in defs_by_name:
                self._defs[name] = defs_by_name[name]

    def register(self, defn: ToolDef, func: ToolFunc) -> None:
        self._tools[defn.name] = func
        self._defs[defn.name] = defn

    def tool_defs(self) -> List[ToolDef]:
        return list(self._defs.values())

    def names(self) -> List[str]:
        return list(self._tools)

    def execute(self, name: str, arguments_json: str) -> ToolResult:
        func = self._tools.get(name)
        if not func:
            return ToolResult(success=False, output=f"Unknown tool: {name}", error="Tool not found")
        try:
            args = json.loads(arguments_json) if arguments_json and arguments_json.strip() else {}
        except json.JSONDecodeError:
            return ToolResult(success=False, output="Failed to parse tool arguments", error="Invalid JSON")
        if not isinstance(args, dict):
            return ToolResult(success=False, output="Failed to parse tool arguments", error="Invalid JSON")
        try:
            result = func(args)
        except ToolError as exc:
            return ToolResult(success=False, output=exc.message, error=exc.code)
        except Exception as exc:
            logger.warning("Tool raised", extra={"extra": {"tool_name": name, "error": str(exc)}})
            return ToolResult(success=False, output=f"Tool {name} failed: {exc}", error="Tool error")
        if isinstance(result, ToolResult):
            return result
        return ToolResult(success=True, output=str(result))

    def execute_call(self, call: ToolCall) -> ToolResult:
        return self.execute(call.name, call.arguments)


def run_command(command: str, stdin: Optional[str] = None, timeout_ms: Optional[int] = None) -> ToolResult:
    """在 /bin/sh 中执行命令并等待结果。

    命令运行在独立的进程组中，超时后整组强制结束，保证不会被 sh 派生的
    子进程挂住。timeout_ms 为 0 表示不限时。

    Raises:
        ToolError: 启动失败、等待失败或超时；ToolExecutor 会把它转换为失败的 ToolResult。
    """

    if timeout_ms is None:
        timeout_ms = DEFAULT_EXEC_TIMEOUT_MS
    timeout = timeout_ms / 1000.0 if timeout_ms > 0 else None
    try:
        proc = subprocess.Popen(
            ["/bin/sh", "-c", command],
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            start_new_session=True,
        )
    except OSError as exc:
        raise ToolError(code="Spawn error", message=f"Failed to spawn command: {exc}")

    data = None
    if stdin is not None:
        # 交互式提示（如 sudo -S）需要换行才会读取
        data = (stdin if stdin.endswith("\n") else stdin + "\n").encode("utf-8")
    try:
        out, err = proc.communicate(input=data, timeout=timeout)
    except subprocess.TimeoutExpired:
        _kill_process_group(proc)
        raise ToolError(code="Timeout", message=TIMEOUT_MESSAGE.format(timeout_ms=timeout_ms))
    except OSError as exc:
        _kill_process_group(proc)
        raise ToolError(code="Wait error", message=f"Failed to wait for command: {exc}")

    stdout = out.decode("utf-8", errors="replace")
    stderr = err.decode("utf-8", errors="replace")
    # 被信号终止时 returncode 为负数，同样视为失败
    success = proc.returncode == 0
    if stdout and stderr:
        output = f"{stdout}{STDERR_SEPARATOR}{stderr}"
    else:
        output = stdout or stderr
    return ToolResult(success=success, output=output, error=None if success else "Command failed")


def _kill_process_group(proc: subprocess.Popen) -> None:
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        # 进程组已不存在，只需回收 sh 本身
        proc.kill()
    proc.wait()
    for pipe in (proc.stdin, proc.stdout, proc.stderr):
        if pipe is not None:
            pipe.close()


def _require_str(args: Dict[str, Any], key: str) -> Optional[str]:
    value = args.get(key)
    return value if isinstance(value, str) else None


def _missing(key: str) -> ToolResult:
    return ToolResult(success=False, output=f"Missing required parameter: {key}", error="Missing parameter")


def _make_file_read_tool() -> ToolFunc:
    def _run(args: Dict[str, Any]) -> ToolResult:
        raw = _require_str(args, "path")
        if raw is None:
            return _missing("path")
        path = Path(raw).expanduser()
        try:
            with path.open("rb") as fh:
                content = fh.read(MAX_READ_BYTES + 1)
        except OSError as exc:
            return ToolResult(success=False, output=f"Failed to open file '{raw}': {exc}", error="File open error")
        if len(content) > MAX_READ_BYTES:
            return ToolResult(
                success=False,
                output=f"Failed to read file '{raw}': file exceeds {MAX_READ_BYTES} bytes",
                error="File read error",
            )
        return ToolResult(success=True, output=content.decode("utf-8", errors="replace"))

    return _run


def _make_file_write_tool() -> ToolFunc:
    def _run(args: Dict[str, Any]) -> ToolResult:
        raw = _require_str(args, "path")
        if raw is None:
            return _missing("path")
        content = _require_str(args, "content")
        if content is None:
            return _missing("content")
        data = content.encode("utf-8")
        try:
            Path(raw).expanduser().write_bytes(data)
        except OSError as exc:
            return ToolResult(success=False, output=f"Failed to write to file '{raw}': {exc}", error="File write error")
        return ToolResult(success=True, output=f"Successfully wrote {len(data)} bytes to '{raw}'")

    return _run


def _make_exec_tool(default_timeout_ms: int) -> ToolFunc:
    def _run(args: Dict[str, Any]) -> ToolResult:
        command = _require_str(args, "command")
        if command is None:
            return _missing("command")
        stdin = _require_str(args, "stdin")
        raw_timeout = args.get("timeout_ms")
        # 只接受整数，其他类型按默认值处理
        if isinstance(raw_timeout, int) and not isinstance(raw_timeout, bool) and raw_timeout >= 0:
            timeout_ms = raw_timeout
        else:
            timeout_ms = default_timeout_ms
        return run_command(command, stdin=stdin, timeout_ms=timeout_ms)

    return _run


def default_tools(exec_timeout_ms: Optional[int] = None) -> Dict[str, ToolFunc]:
    timeout_ms = DEFAULT_EXEC_TIMEOUT_MS if exec_timeout_ms is None else exec_timeout_ms
    return {
        "file_read": _make_file_read_tool(),
        "file_write": _make_file_write_tool(),
        "exec": _make_exec_tool(timeout_ms),
    }


def default_tool_defs() -> List[ToolDef]:
    return [
        ToolDef(
            name="file_read",
            description="Read the contents of a file at the given path",
            params={
                "path": ToolParam(
                    name="path",
                    description="Path to the file to read",
                    required=True,
                    schema={"type": "string"},
                )
            },
        ),
        ToolDef(
            name="file_write",
            description=(
                "Write content to a file at the given path. "
                "Creates the file if it doesn't exist, overwrites if it does."
            ),
            params={
                "path": ToolParam(
                    name="path",
                    description="Path to the file to write",
                    required=True,
                    schema={"type": "string"},
                ),
                "content": ToolParam(
                    name="content",
                    description="Content to write to the file",
                    required=True,
                    schema={"type": "string"},
                ),
            },
        ),
        ToolDef(
            name="exec",
            description=(
                "Execute a shell command and return its output. For commands that require "
                "password/input, provide it via the stdin parameter. Commands that require "
                "interaction will fail if no stdin is provided."
            ),
            params={
                "command": ToolParam(
                    name="command",
                    description="Shell command to execute",
                    required=True,
                    schema={"type": "string"},
                ),
                "stdin": ToolParam(
                    name="stdin",
                    description="Optional input to provide to the command's stdin (e.g., password for sudo -S)",
                    required=False,
                    schema={"type": "string"},
                ),
                "timeout_ms": ToolParam(
                    name="timeout_ms",
                    description="Optional timeout in milliseconds. Default is 60000 (60 seconds). Use 0 for no timeout.",
                    required=False,
                    schema={"type": "integer", "minimum": 0},
                ),
            },
        ),
    ]


def default_executor(exec_timeout_ms: Optional[int] = None) -> ToolExecutor:
    return ToolExecutor(default_tools(exec_timeout_ms), default_tool_defs())
