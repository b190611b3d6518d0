# providers/simkl/client.py
# SIMKL API client (requests). Maps HTTP failures onto the sync error taxonomy.
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Mapping, Optional, Type, TypeVar

import requests
from pydantic import BaseModel, ValidationError

from _logging import log as _root_log, mask_token
from sync_platform.errors import InvalidTokenError, SIMKLError, TransientError

from ._common import (
    BASE,
    URL_ACTIVITIES,
    URL_ADD_TO_LIST,
    URL_HISTORY_ADD,
    URL_HISTORY_REMOVE,
    URL_SEARCH_FILE,
    URL_USER_SETTINGS,
    all_items_path,
    build_headers,
    date_param,
    parse_rate_limit,
    request_with_retries,
    safe_json,
)
from .models import (
    SearchFileResponse,
    SyncActivitiesResponse,
    SyncAllItemsResponse,
    SyncHistoryResponse,
    UserSettings,
)

log = _root_log.child("SIMKL")

M = TypeVar("M", bound=BaseModel)

_TRANSIENT_STATUSES = (408, 429, 500, 502, 503, 504)


class SimklClient:
    BASE = BASE

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = BASE,
        timeout: float = 15.0,
        max_retries: int = 1,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.api_key = str(api_key or "").strip()
        self.base_url = (base_url or BASE).rstrip("/")
        self.timeout = float(timeout)
        self.max_retries = max(1, int(max_retries))
        self.session: requests.Session = session or requests.Session()
        self.last_rate_limit: Dict[str, Any] = {}

    @classmethod
    def from_config(cls, simkl_cfg: Mapping[str, Any], *, session: Optional[requests.Session] = None) -> "SimklClient":
        return cls(
            str(simkl_cfg.get("api_key") or ""),
            base_url=str(simkl_cfg.get("base_url") or BASE),
            timeout=float(simkl_cfg.get("timeout") or 15.0),
            max_retries=int(simkl_cfg.get("max_retries") or 1),
            session=session,
        )

    # ---------- transport

    def _request(
        self,
        method: str,
        path: str,
        *,
        token: Optional[str] = None,
        params: Optional[Mapping[str, Any]] = None,
        body: Any = None,
    ) -> Any:
        url = f"{self.base_url}{path}"
        kw: Dict[str, Any] = {"headers": build_headers(self.api_key, token)}
        if params:
            kw["params"] = dict(params)
        if body is not None:
            kw["json"] = body
        try:
            resp = request_with_retries(
                self.session, method, url,
                timeout=self.timeout, max_retries=self.max_retries, **kw,
            )
        except requests.Timeout as e:
            raise TransientError(f"timeout after {self.timeout}s", endpoint=path) from e
        except requests.RequestException as e:
            raise TransientError(f"transport error: {e}", endpoint=path) from e

        self.last_rate_limit = parse_rate_limit(resp.headers or {})
        status = resp.status_code
        if status == 401:
            raise InvalidTokenError(f"token rejected ({mask_token(token)})", status=status, endpoint=path)
        if status in _TRANSIENT_STATUSES:
            raise TransientError(f"HTTP {status}", status=status, endpoint=path)
        if not (200 <= status < 300):
            raise SIMKLError(f"HTTP {status}: {(resp.text or '')[:200]}", status=status, endpoint=path)
        try:
            data = safe_json(resp)
        except ValueError as e:
            raise TransientError("unreadable response body", status=status, endpoint=path) from e
        log.debug(f"{method} {path} -> {status}")
        return data

    @staticmethod
    def _parse(model: Type[M], data: Any, path: str) -> M:
        try:
            return model.model_validate(data if isinstance(data, dict) else {})
        except ValidationError as e:
            raise TransientError(f"unexpected response shape: {e.error_count()} error(s)", endpoint=path) from e

    # ---------- reads

    def get_activities(self, token: str) -> SyncActivitiesResponse:
        data = self._request("GET", URL_ACTIVITIES, token=token)
        return self._parse(SyncActivitiesResponse, data, URL_ACTIVITIES)

    def get_all_items(
        self,
        token: str,
        type: Optional[str] = None,
        status: Optional[str] = None,
        date_from: Optional[datetime] = None,
        extended: Optional[str] = None,
    ) -> SyncAllItemsResponse:
        path = all_items_path(type, status)
        params: Dict[str, Any] = {}
        if date_from is not None:
            params["date_from"] = date_param(date_from)
        if extended:
            params["extended"] = extended
        data = self._request("GET", path, token=token, params=params)
        return self._parse(SyncAllItemsResponse, data, path)

    def get_user_settings(self, token: str) -> UserSettings:
        """Token probe. A rejected token comes back as error='user_token_failed'."""
        try:
            data = self._request("POST", URL_USER_SETTINGS, token=token, body={})
        except InvalidTokenError:
            return UserSettings(error="user_token_failed")
        return self._parse(UserSettings, data, URL_USER_SETTINGS)

    # ---------- writes

    def sync_history_add(self, payload: Mapping[str, Any], token: str) -> SyncHistoryResponse:
        log.debug(f"history add: {dict(payload)}")
        data = self._request("POST", URL_HISTORY_ADD, token=token, body=dict(payload))
        return self._parse(SyncHistoryResponse, data, URL_HISTORY_ADD)

    def sync_history_remove(self, payload: Mapping[str, Any], token: str) -> SyncHistoryResponse:
        log.debug(f"history remove: {dict(payload)}")
        data = self._request("POST", URL_HISTORY_REMOVE, token=token, body=dict(payload))
        return self._parse(SyncHistoryResponse, data, URL_HISTORY_REMOVE)

    def add_to_collection(self, payload: Mapping[str, Any], token: str) -> SyncHistoryResponse:
        log.debug(f"add-to-list: {dict(payload)}")
        data = self._request("POST", URL_ADD_TO_LIST, token=token, body=dict(payload))
        return self._parse(SyncHistoryResponse, data, URL_ADD_TO_LIST)

    def search_by_file(self, path: str) -> Optional[SearchFileResponse]:
        log.info(f"file search: {path}")
        data = self._request("POST", URL_SEARCH_FILE, body={"file": path})
        if not isinstance(data, dict) or not data:
            return None
        return self._parse(SearchFileResponse, data, URL_SEARCH_FILE)
