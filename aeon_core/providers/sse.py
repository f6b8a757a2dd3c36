"""SSE 流解码。

HTTP 流式响应按网络块到达，一条逻辑行可能被切在任意字节处（包括多字节
UTF-8 字符中间）。SseStreamDecoder 负责缓存残余字节，只在遇到换行时
才吐出完整的行，因此无论网络如何分块，得到的行序列都完全一致。
"""

import json
from typing import Any, Dict, List, Optional

from aeon_core.domain.exceptions import ParseError


class SseStreamDecoder:
    """把任意切分的字节块还原成逻辑行。"""

    def __init__(self) -> None:
        self._buffer = bytearray()

    def feed(self, chunk: bytes) -> List[str]:
        """追加一个网络块，返回其中已经完整的行（不含换行符）。"""

        if not chunk:
            return []
        self._buffer.extend(chunk)
        lines: List[str] = []
        while True:
            pos = self._buffer.find(b"\n")
            if pos < 0:
                break
            raw = bytes(self._buffer[:pos])
            del self._buffer[: pos + 1]
            lines.append(_decode_line(raw))
        return lines

    def flush(self) -> List[str]:
        """流结束时取出最后一条没有换行结尾的行。"""

        if not self._buffer:
            return []
        raw = bytes(self._buffer)
        self._buffer.clear()
        return [_decode_line(raw)]


def _decode_line(raw: bytes) -> str:
    if raw.endswith(b"\r"):
        raw = raw[:-1]
    return raw.decode("utf-8", errors="replace")


def parse_data_line(line: str) -> Optional[str]:
    """返回 `data:` 行的负载；其他行返回 None。"""

    if not line.startswith("data:"):
        return None
    payload = line[5:]
    if payload.startswith(" "):
        payload = payload[1:]
    return payload


def parse_event_line(line: str) -> Optional[str]:
    """返回 `event:` 行中的事件名；其他行返回 None。"""

    if not line.startswith("event:"):
        return None
    return line[6:].strip()


def load_event_payload(text: str) -> Dict[str, Any]:
    """把 data 负载解析为 JSON 对象，失败时抛出 ParseError。"""

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ParseError(code="SSE_PARSE_ERROR", message=str(e))
    if not isinstance(data, dict):
        raise ParseError(code="SSE_PARSE_ERROR", message="SSE payload is not a JSON object")
    return data


def as_object(value: Any) -> Dict[str, Any]:
    """嵌套字段不是 JSON 对象时按空对象处理。"""

    return value if isinstance(value, dict) else {}
