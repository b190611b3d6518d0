# sync_platform/config_base.py
# config.json location, defaults, per-user settings and the thread-safe ConfigStore.
from __future__ import annotations

import copy
import json
import os
import secrets
import threading
import time
from dataclasses import asdict, dataclass, fields
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .errors import ConfigError

# ------------------------------------------------------------
# Base dir resolution
# ------------------------------------------------------------
def CONFIG_BASE() -> Path:
    """
    Determine the base directory for config files.

    Priority:
      1) $CONFIG_BASE if set
      2) /config (when running in a container that mounts /config)
      3) Project root (one level up from this package)
    """
    env = os.getenv("CONFIG_BASE")
    if env:
        return Path(env)

    if Path("/config").is_dir():
        return Path("/config")

    return Path(__file__).resolve().parents[1]


# Default config structure
DEFAULT_CFG: Dict[str, Any] = {
    "simkl": {
        "api_key": "",                                  # Client id of the SIMKL app, sent as simkl-api-key
        "base_url": "https://api.simkl.com",            # API root
        "timeout": 15.0,                                # Per-request timeout (seconds)
        "max_retries": 1,                               # 1 = no retry inside a cycle; the next run retries
        "batch_size": 100,                              # Movies per outbound request
    },
    "library_sync_delay": 30,                           # Debounce (seconds) for catalog add/remove events
    "runtime": {
        "debug": False,                                 # Verbose logging
    },
    "users": [],                                        # List of per-user records (see UserConfig)
}


@dataclass
class UserConfig:
    id: str
    user_token: str = ""
    sync_library_to_simkl: bool = False
    sync_history_from_simkl: bool = False
    sync_user_data_changes: bool = True
    sync_library_changes: bool = True
    user_data_sync_delay: int = 10
    library_sync_delay: int = 30
    last_sync_activities: Optional[datetime] = None

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "UserConfig":
        if not isinstance(raw, dict) or not str(raw.get("id") or "").strip():
            raise ConfigError(f"user entry without id: {raw!r}")
        known = {f.name for f in fields(cls)}
        data = {k: v for k, v in raw.items() if k in known}
        data["id"] = str(data["id"]).strip()
        data["last_sync_activities"] = parse_iso(raw.get("last_sync_activities"))
        for k in ("user_data_sync_delay", "library_sync_delay"):
            if k in data:
                try:
                    data[k] = max(0, int(data[k]))
                except (TypeError, ValueError):
                    raise ConfigError(f"{k} must be an integer (user {data['id']})")
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        out["last_sync_activities"] = to_iso(self.last_sync_activities)
        return out

    @property
    def has_token(self) -> bool:
        return bool((self.user_token or "").strip())


# ------------------------------------------------------------
# Time helpers (checkpoints are stored as ISO-8601 UTC strings)
# ------------------------------------------------------------
def parse_iso(v: Any) -> Optional[datetime]:
    if v is None or v == "":
        return None
    if isinstance(v, datetime):
        return v if v.tzinfo else v.replace(tzinfo=timezone.utc)
    try:
        dt = datetime.fromisoformat(str(v).strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def to_iso(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


# ------------------------------------------------------------
# File I/O
# ------------------------------------------------------------
def _cfg_file() -> Path:
    return CONFIG_BASE() / "config.json"


def _read_json(p: Path) -> Dict[str, Any]:
    with p.open("r", encoding="utf-8") as f:
        data = json.load(f)
    return data if isinstance(data, dict) else {}


def _write_json_atomic(p: Path, data: Dict[str, Any]) -> None:
    p.parent.mkdir(parents=True, exist_ok=True)
    suffix = f".{time.time_ns()}.{os.getpid()}.{threading.get_ident()}.{secrets.token_hex(4)}.tmp"
    tmp = p.with_suffix(suffix)

    with tmp.open("w", encoding="utf-8", newline="\n") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)
        f.write("\n")
    tmp.replace(p)


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    out = copy.deepcopy(base)
    for k, v in (override or {}).items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)  # type: ignore[assignment]
        else:
            out[k] = v
    return out


# ------------------------------------------------------------
# Public API
# ------------------------------------------------------------
def load_config(path: Optional[Path] = None) -> Dict[str, Any]:
    """Read config.json merged over the defaults. A broken file raises ConfigError."""
    p = path or _cfg_file()
    user_cfg: Dict[str, Any] = {}
    if p.exists():
        try:
            user_cfg = _read_json(p)
        except (OSError, ValueError) as e:
            raise ConfigError(f"cannot read {p}: {e}") from e
    return _deep_merge(DEFAULT_CFG, user_cfg)


def save_config(cfg: Dict[str, Any], path: Optional[Path] = None) -> None:
    _write_json_atomic(path or _cfg_file(), dict(cfg or {}))


class ConfigStore:
    """
    Narrow read/write access to settings for the sync components.

    Components receive a store at construction and read it at event time,
    so setting changes apply without a restart. Writes are limited to the
    pull checkpoint and token invalidation.
    """

    def __init__(self, cfg: Optional[Dict[str, Any]] = None, *, path: Optional[Path] = None, persist: bool = True) -> None:
        self._lock = threading.RLock()
        self._path = path
        self._persist = persist
        raw = _deep_merge(DEFAULT_CFG, cfg) if cfg is not None else load_config(path)
        self._raw: Dict[str, Any] = raw
        self._users: List[UserConfig] = self._parse_users(raw)

    @staticmethod
    def _parse_users(raw: Dict[str, Any]) -> List[UserConfig]:
        users = raw.get("users") or []
        if not isinstance(users, list):
            raise ConfigError("'users' must be a list")
        return [UserConfig.from_dict(u) for u in users]

    # --- reads ---------------------------------------------------------------
    def simkl(self) -> Dict[str, Any]:
        with self._lock:
            return dict(self._raw.get("simkl") or {})

    def debug(self) -> bool:
        with self._lock:
            return bool((self._raw.get("runtime") or {}).get("debug"))

    def users(self) -> List[UserConfig]:
        with self._lock:
            return [copy.copy(u) for u in self._users]

    def get_user(self, user_id: str) -> Optional[UserConfig]:
        with self._lock:
            for u in self._users:
                if u.id == str(user_id):
                    return copy.copy(u)
        return None

    def users_with_token(self, flag: Optional[str] = None) -> List[UserConfig]:
        """Users holding a token, optionally also having the boolean setting `flag` on."""
        out = []
        for u in self.users():
            if not u.has_token:
                continue
            if flag and not bool(getattr(u, flag, False)):
                continue
            out.append(u)
        return out

    def library_sync_delay(self) -> int:
        with self._lock:
            try:
                return max(0, int(self._raw.get("library_sync_delay", 30)))
            except (TypeError, ValueError):
                return 30

    # --- writes --------------------------------------------------------------
    def save_checkpoint(self, user_id: str, ts: Optional[datetime]) -> None:
        with self._lock:
            for u in self._users:
                if u.id == str(user_id):
                    u.last_sync_activities = parse_iso(ts)
            self.save()

    def invalidate_token(self, token: str) -> bool:
        """Clear every user record holding this token. True when something changed."""
        if not token:
            return False
        changed = False
        with self._lock:
            for u in self._users:
                if u.user_token and u.user_token == token:
                    u.user_token = ""
                    changed = True
            if changed:
                self.save()
        return changed

    def reload(self) -> None:
        if not self._persist:
            return
        with self._lock:
            raw = load_config(self._path)
            self._raw = raw
            self._users = self._parse_users(raw)

    def save(self) -> None:
        with self._lock:
            self._raw["users"] = [u.to_dict() for u in self._users]
            if self._persist:
                save_config(self._raw, self._path)
