# services/pipeline.py
# Batched outbound pushes: movies/shows in fixed-size batches, episodes one call per show.
from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Literal, Mapping, Optional

from _logging import log as _root_log
from providers.simkl import payloads
from providers.simkl._common import STATUS_PLAN_TO_WATCH
from providers.simkl.client import SimklClient
from providers.simkl.models import SyncHistoryResponse
from sync_platform.errors import InvalidTokenError, SIMKLError
from sync_platform.models import LocalMediaItem

log = _root_log.child("PUSH")

PushMode = Literal["history-add", "history-remove", "collection-add"]
MODES: tuple[str, ...] = ("history-add", "history-remove", "collection-add")

DEFAULT_BATCH_SIZE = 100


@dataclass
class PushReport:
    mode: str
    batches: int = 0
    failed: int = 0
    mismatched: int = 0
    skipped: int = 0
    cancelled: bool = False
    submitted: Dict[str, int] = field(default_factory=lambda: {"movies": 0, "shows": 0, "episodes": 0})
    accepted: Dict[str, int] = field(default_factory=lambda: {"movies": 0, "shows": 0, "episodes": 0})

    @property
    def ok(self) -> bool:
        return not self.failed and not self.cancelled

    def _add(self, dst: Dict[str, int], src: Mapping[str, int]) -> None:
        for k, v in src.items():
            dst[k] = dst.get(k, 0) + int(v or 0)


def _chunks(rows: List[Any], size: int) -> Iterable[List[Any]]:
    for i in range(0, len(rows), size):
        yield rows[i:i + size]


class BatchPushPipeline:
    def __init__(self, client: SimklClient, *, batch_size: int = DEFAULT_BATCH_SIZE) -> None:
        self.client = client
        self.batch_size = max(1, int(batch_size))

    def _sender(self, mode: str) -> Callable[[Mapping[str, Any], str], SyncHistoryResponse]:
        if mode == "history-add":
            return self.client.sync_history_add
        if mode == "history-remove":
            return self.client.sync_history_remove
        if mode == "collection-add":
            return self.client.add_to_collection
        raise ValueError(f"unknown push mode: {mode}")

    def push(
        self,
        items: Iterable[LocalMediaItem],
        mode: PushMode,
        token: str,
        *,
        watched_at: Optional[Mapping[str, datetime]] = None,
        to: Optional[str] = None,
        cancel: Optional[threading.Event] = None,
    ) -> PushReport:
        """
        Submit items in one mode. Items without an imdb/tmdb/tvdb id (on
        themselves, or on the parent show for episodes) are skipped. A failing
        batch is logged and the next one still runs; InvalidTokenError aborts.
        """
        send = self._sender(mode)
        target = (to or STATUS_PLAN_TO_WATCH) if mode == "collection-add" else None
        with_dates = watched_at if mode == "history-add" else None
        report = PushReport(mode=mode)

        movies: List[Dict[str, Any]] = []
        shows: List[Dict[str, Any]] = []
        episodes: List[LocalMediaItem] = []
        seen: set[str] = set()
        for it in items:
            if not it.has_required_ids():
                report.skipped += 1
                continue
            if it.id in seen:
                continue
            seen.add(it.id)
            if it.is_movie:
                ts = (with_dates or {}).get(it.id)
                movies.append(payloads.movie_entry(it, watched_at=ts, to=target))
            elif it.is_series:
                shows.append(payloads.show_entry(it, to=target))
            elif it.is_episode:
                episodes.append(it)

        units: List[tuple[str, Dict[str, Any]]] = []
        for chunk in _chunks(movies, self.batch_size):
            units.append((f"movies[{len(chunk)}]", payloads.build_body(movies=chunk)))
        for chunk in _chunks(shows, self.batch_size):
            units.append((f"shows[{len(chunk)}]", payloads.build_body(shows=chunk)))
        for key, group in payloads.group_episodes(episodes, watched_at=with_dates, to=target).items():
            units.append((f"show {group.get('title') or key}", payloads.build_body(shows=[group])))

        for label, body in units:
            if cancel is not None and cancel.is_set():
                report.cancelled = True
                log.info(f"{mode}: cancelled before {label}")
                break
            report.batches += 1
            sent = payloads.submitted_counts(body)
            report._add(report.submitted, sent)
            try:
                resp = send(body, token)
            except InvalidTokenError:
                raise
            except SIMKLError as e:
                report.failed += 1
                log.error(f"{mode} {label} failed: {e}")
                continue
            got = payloads.accepted_counts(resp, removed=(mode == "history-remove"))
            report._add(report.accepted, got)
            if mode != "collection-add" and got != sent:
                report.mismatched += 1
                log.warn(f"{mode} {label}: submitted {sent} accepted {got}")
            else:
                log.debug(f"{mode} {label}: accepted {got}")

        log.info(
            f"{mode}: batches={report.batches} failed={report.failed} "
            f"mismatched={report.mismatched} skipped={report.skipped}"
        )
        return report
