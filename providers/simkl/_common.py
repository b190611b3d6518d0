# providers/simkl/_common.py
# SIMKL endpoints, headers, time helpers and the retrying request helper.
from __future__ import annotations
import json
import os
import time
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Tuple

import requests

BASE = "https://api.simkl.com"
UA = os.getenv("SS_UA", "SimklSync/1.0 (SIMKL)")

URL_ACTIVITIES = "/sync/activities"
URL_ALL_ITEMS = "/sync/all-items/"
URL_HISTORY_ADD = "/sync/history"
URL_HISTORY_REMOVE = "/sync/history/remove"
URL_ADD_TO_LIST = "/sync/add-to-list"
URL_SEARCH_FILE = "/search/file/"
URL_USER_SETTINGS = "/users/settings/"

STATUSES = ("completed", "plantowatch", "watching", "hold", "dropped", "notinteresting")
STATUS_COMPLETED = "completed"
STATUS_PLAN_TO_WATCH = "plantowatch"
ITEM_TYPES = ("movies", "shows", "anime")

# ---------- headers

def build_headers(api_key: str, token: Optional[str] = None) -> Dict[str, str]:
    h = {
        "Accept": "application/json",
        "Content-Type": "application/json",
        "User-Agent": UA,
        "simkl-api-key": str(api_key or "").strip(),
    }
    tok = str(token or "").strip()
    if tok:
        h["Authorization"] = f"Bearer {tok}"
    return h

# ---------- rate limits

def parse_rate_limit(h: Mapping[str, str]) -> Dict[str, Any]:
    def _i(x):
        try: return int(x)
        except (TypeError, ValueError): return None
    return {
        "limit":     _i(h.get("X-RateLimit-Limit") or h.get("RateLimit-Limit")),
        "remaining": _i(h.get("X-RateLimit-Remaining") or h.get("RateLimit-Remaining")),
        "reset_ts":  _i(h.get("X-RateLimit-Reset") or h.get("RateLimit-Reset")),
    }

# ---------- time helpers

def iso_z(dt: datetime) -> str:
    if dt.tzinfo is None: dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")

def date_param(dt: datetime) -> str:
    """SIMKL date_from takes a plain YYYY-MM-DD."""
    if dt.tzinfo is not None: dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%d")

def all_items_path(type_: Optional[str] = None, status: Optional[str] = None) -> str:
    path = URL_ALL_ITEMS
    if type_:
        path += type_
        if status:
            path += f"/{status}"
    return path

# ---------- transport

def safe_json(resp: requests.Response) -> Any:
    """Decoded body; raises ValueError on a non-empty body that is not JSON."""
    text = (resp.text or "").strip()
    if not text:
        return None
    return json.loads(text)

def request_with_retries(
    session: requests.Session,
    method: str,
    url: str,
    *,
    timeout: float = 15.0,
    max_retries: int = 1,
    retry_on: Tuple[int, ...] = (429, 500, 502, 503, 504),
    backoff_base: float = 0.5,
    **kwargs: Any,
) -> requests.Response:
    """
    One request, retried at most max_retries-1 times on retry_on statuses or
    transport errors. The last response is returned as is; the last transport
    error is re-raised.
    """
    attempts = max(1, int(max_retries))
    for i in range(attempts):
        last_try = i == attempts - 1
        try:
            resp = session.request(method, url, timeout=timeout, **kwargs)
        except (requests.Timeout, requests.ConnectionError):
            if last_try:
                raise
            time.sleep(backoff_base * (2 ** i))
            continue
        if resp.status_code in retry_on and not last_try:
            wait = backoff_base * (2 ** i)
            if resp.status_code == 429:
                try:
                    wait = max(wait, float(resp.headers.get("Retry-After") or 0))
                except ValueError:
                    pass
            time.sleep(wait)
            continue
        return resp
    raise requests.RequestException(f"request failed after retries: {method} {url}")
