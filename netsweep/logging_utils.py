import json, logging, os, sys, time
from pathlib import Path
from typing import Dict, Optional

# LogRecord attributes that are never copied into the JSON payload.
_RESERVED = frozenset((
    "name", "msg", "args", "exc_info", "exc_text", "stack_info", "stack_level", "created",
    "msecs", "relativeCreated", "levelno", "levelname", "pathname", "filename",
    "module", "lineno", "funcName", "thread", "threadName", "processName", "process",
    "taskName", "message",
))


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(record.created)),
            "level": record.levelname,
            "name": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        # Fields passed through ``extra=`` land on the record itself
        for k, v in record.__dict__.items():
            if k in _RESERVED:
                continue
            try:
                json.dumps({k: v})
                payload[k] = v
            except (TypeError, ValueError):
                payload[k] = str(v)
        return json.dumps(payload)


def _level_from_env() -> int:
    name = os.environ.get("LOG_LEVEL", "INFO").strip().upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def get_logger(name: str = "netsweep") -> logging.Logger:
    logger = logging.getLogger(name)
    if "." in name:
        # Children inherit the root harness logger's handlers.
        get_logger(name.split(".", 1)[0])
        return logger
    if logger.handlers:
        return logger
    logger.setLevel(_level_from_env())
    h = logging.StreamHandler(sys.stdout)
    h.setFormatter(JsonFormatter())
    logger.addHandler(h)
    logger.propagate = False
    return logger


def configure_file_logger(label: str, logger: Optional[logging.Logger] = None, logs_dir: Path = Path("logs")) -> Path:
    """Attach a JSON file handler named after ``label`` and return its path."""

    active_logger = logger or get_logger()

    # Drop file handlers from an earlier sweep in the same process.
    for handler in list(active_logger.handlers):
        if getattr(handler, "_netsweep_file_handler", False):
            active_logger.removeHandler(handler)
            handler.close()

    logs_dir.mkdir(parents=True, exist_ok=True)
    timestamp = time.strftime("%Y%m%d-%H%M%S", time.gmtime())
    path = logs_dir / f"{label}-{timestamp}.log"

    file_handler = logging.FileHandler(path, encoding="utf-8")
    file_handler.setFormatter(JsonFormatter())
    file_handler._netsweep_file_handler = True  # type: ignore[attr-defined]
    active_logger.addHandler(file_handler)

    return path

# Very small metrics hook (no deps)
class Counter:
    def __init__(self): self.value = 0
    def inc(self, n: int = 1): self.value += n

class Gauge:
    def __init__(self): self.value = 0.0
    def set(self, v: float): self.value = v

class Metrics:
    def __init__(self):
        self.counters: Dict[str, Counter] = {}
        self.gauges: Dict[str, Gauge] = {}
    def counter(self, name: str) -> Counter:
        self.counters.setdefault(name, Counter()); return self.counters[name]
    def gauge(self, name: str) -> Gauge:
        self.gauges.setdefault(name, Gauge()); return self.gauges[name]
    def snapshot(self) -> Dict[str, float]:
        values: Dict[str, float] = {k: c.value for k, c in self.counters.items()}
        values.update({k: g.value for k, g in self.gauges.items()})
        return values

METRICS = Metrics()
