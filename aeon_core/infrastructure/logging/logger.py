import json
import logging
from pathlib import Path
from datetime import datetime, timezone
from aeon_core.config.settings import settings


class JsonFormatter(logging.Formatter):
    def __init__(self, redact: bool = False):
        super().__init__()
        self._redact = redact

    def format(self, record: logging.LogRecord) -> str:
        msg = record.getMessage()
        if self._redact:
            msg = (msg or "")[:64]
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "name": record.name,
            "msg": msg,
        }
        extra = getattr(record, "extra", None)
        if isinstance(extra, dict):
            payload.update(extra)
        return json.dumps(payload, ensure_ascii=False, default=str)


def setup_logger(log_dir=None, redact=None) -> logging.Logger:
    logger = logging.getLogger("aeon_core")
    logger.setLevel(logging.INFO)
    # 重复调用时不叠加 handler
    for handler in list(logger.handlers):
        if getattr(handler, "_aeon_json", False):
            logger.removeHandler(handler)
            handler.close()
    log_dir = Path(log_dir or settings.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    fh = logging.FileHandler(log_dir / "aeon.log", encoding="utf-8")
    fh.setLevel(logging.INFO)
    fh._aeon_json = True
    fh.setFormatter(JsonFormatter(settings.log_redact_content if redact is None else redact))
    logger.addHandler(fh)
    return logger


logger = setup_logger()
