# _logging.py
# Console logger for the sync engine: "[time] [MODULE] LEVEL message key=value", optional JSON lines.
from __future__ import annotations
import datetime, json, os, sys, threading, time
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, TextIO

RESET = "\033[0m"
DIM = "\033[90m"
RED = "\033[91m"
YELLOW = "\033[33m"
BLUE = "\033[94m"

LEVELS = {"silent": 60, "error": 40, "warn": 30, "info": 20, "debug": 10}
_TAG_COLORS = {"DEBUG": YELLOW, "INFO": BLUE, "WARN": YELLOW, "ERROR": RED}


def _env_flag(name: str) -> bool:
    return (os.getenv(name) or "").strip().lower() in ("1", "true", "yes", "on")


def level_from_env(default: str = "info") -> str:
    v = (os.getenv("SS_LOG_LEVEL") or "").strip().lower()
    if v == "warning":
        v = "warn"
    return v if v in LEVELS else default


def color_from_env() -> bool:
    if os.getenv("NO_COLOR") is not None:
        return False
    return (os.getenv("SS_LOG_COLOR") or "auto").strip().lower() not in ("0", "false", "no", "off")


def mask_token(token: Optional[str]) -> str:
    t = str(token or "")
    if not t:
        return "<none>"
    return f"…{t[-4:]}" if len(t) > 4 else "…"


class _DebugGate:
    """
    Debug lines pass when SS_DEBUG is set, or when config.json has
    runtime.debug on. The file is re-read at most every `ttl` seconds so the
    switch works on a running engine.
    """

    def __init__(self, ttl: float = 5.0) -> None:
        self.ttl = ttl
        self._on = False
        self._read_at: Optional[float] = None
        self._lock = threading.Lock()

    @staticmethod
    def _path() -> Path:
        base = os.getenv("CONFIG_BASE")
        if base:
            return Path(base) / "config.json"
        if Path("/config/config.json").exists():
            return Path("/config/config.json")
        return Path("config.json")

    def _read(self) -> bool:
        try:
            with open(self._path(), "r", encoding="utf-8") as f:
                cfg = json.load(f)
        except (OSError, ValueError):
            return False
        rt = cfg.get("runtime") if isinstance(cfg, dict) else None
        return bool(isinstance(rt, dict) and rt.get("debug"))

    def reset(self) -> None:
        with self._lock:
            self._read_at = None

    def __call__(self) -> bool:
        if _env_flag("SS_DEBUG"):
            return True
        now = time.monotonic()
        with self._lock:
            if self._read_at is None or now - self._read_at > self.ttl:
                self._on = self._read()
                self._read_at = now
            return self._on


debug_enabled = _DebugGate()


class _Output:
    # Shared by a logger and everything bound from it.
    def __init__(self, stream: TextIO, level: str, use_color: bool, show_time: bool) -> None:
        self.stream = stream
        self.level_no = LEVELS.get(level, LEVELS["info"])
        self.use_color = use_color
        self.show_time = show_time
        self.json_stream: Optional[TextIO] = None
        self.lock = threading.Lock()

    def write(self, line: str, record: Dict[str, Any]) -> None:
        with self.lock:
            self.stream.write(line + "\n")
            self.stream.flush()
            if self.json_stream is not None:
                self.json_stream.write(json.dumps(record, ensure_ascii=False, default=str) + "\n")
                self.json_stream.flush()


class Logger:
    def __init__(
        self,
        stream: TextIO = sys.stdout,
        level: str = "info",
        use_color: bool = True,
        show_time: bool = True,
        *,
        _out: Optional[_Output] = None,
        _context: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self._out = _out or _Output(stream, level, use_color, show_time)
        self._context: Dict[str, Any] = dict(_context or {})

    # settings apply to every logger bound from this one
    def set_level(self, level: str) -> None:
        self._out.level_no = LEVELS.get(level, self._out.level_no)

    def enable_color(self, on: bool = True) -> None:
        self._out.use_color = on

    def enable_json(self, file_path: str) -> None:
        self._out.json_stream = open(file_path, "a", encoding="utf-8")

    @property
    def level_name(self) -> str:
        for k, v in LEVELS.items():
            if v == self._out.level_no:
                return k
        return "info"

    def bind(self, **ctx: Any) -> "Logger":
        merged = dict(self._context)
        merged.update(ctx)
        return Logger(_out=self._out, _context=merged)

    def child(self, name: str) -> "Logger":
        return self.bind(module=name)

    def _line(self, tag: str, msg: str) -> str:
        out = self._out
        extra = " ".join(f"{k}={v}" for k, v in sorted(self._context.items()) if k != "module" and v is not None)
        if extra:
            msg = f"{msg} {extra}"
        col = _TAG_COLORS.get(tag) if out.use_color else None
        shown = f"{col}{tag}{RESET}" if col else tag
        mod = str(self._context.get("module") or "").strip()
        line = f"[{mod}] {shown} {msg}" if mod else f"{shown} {msg}"
        if not out.show_time:
            return line
        ts = datetime.datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        return f"{DIM}[{ts}]{RESET} {line}" if out.use_color else f"[{ts}] {line}"

    def _emit(self, severity: str, parts: tuple, extra: Optional[Mapping[str, Any]]) -> None:
        sev_no = LEVELS[severity]
        if self._out.level_no > sev_no and not (severity == "debug" and debug_enabled()):
            return
        tag = severity.upper()
        msg = " ".join(str(p) for p in parts)
        record: Dict[str, Any] = {
            "ts": datetime.datetime.now(datetime.timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": tag,
            "msg": msg,
            "ctx": dict(self._context),
        }
        if extra:
            record["extra"] = dict(extra)
        self._out.write(self._line(tag, msg), record)

    def debug(self, *parts: Any, extra: Optional[Mapping[str, Any]] = None) -> None:
        self._emit("debug", parts, extra)

    def info(self, *parts: Any, extra: Optional[Mapping[str, Any]] = None) -> None:
        self._emit("info", parts, extra)

    def warn(self, *parts: Any, extra: Optional[Mapping[str, Any]] = None) -> None:
        self._emit("warn", parts, extra)

    warning = warn

    def error(self, *parts: Any, extra: Optional[Mapping[str, Any]] = None) -> None:
        self._emit("error", parts, extra)


# default instance
log = Logger(level=level_from_env(), use_color=color_from_env())

__all__ = ["Logger", "log", "mask_token", "debug_enabled", "LEVELS"]
