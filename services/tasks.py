# services/tasks.py
# Scheduled SIMKL tasks (import, export, plan-to-watch) and a small interval runner.
from __future__ import annotations

import threading
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from _logging import log as _root_log, mask_token
from providers.simkl._common import STATUS_PLAN_TO_WATCH
from providers.simkl.client import SimklClient
from sync_platform.config_base import ConfigStore, UserConfig
from sync_platform.errors import InvalidTokenError, SIMKLError
from sync_platform.host import LibraryQuery, ProgressSink, UserDataStore, null_progress
from sync_platform.models import ItemKind, LocalMediaItem

from .pipeline import BatchPushPipeline
from .plantowatch import filter_plan_to_watch
from .pull import IncrementalPullEngine

log = _root_log.child("TASKS")

HOUR = 3600


class SyncTask:
    name = ""
    key = ""
    description = ""
    category = "SIMKL"
    interval: Optional[int] = None   # seconds; None = manual only
    user_flag: Optional[str] = None  # UserConfig attribute that must be on

    def __init__(self, config: ConfigStore) -> None:
        self.config = config

    def users(self) -> List[UserConfig]:
        return self.config.users_with_token(self.user_flag)

    def execute(self, progress: ProgressSink = null_progress, cancel: Optional[threading.Event] = None) -> Dict[str, Any]:
        """Run for every eligible user; progress gets 0-100 after each one."""
        cancel = cancel or threading.Event()
        users = self.users()
        if not users:
            log.info(f"{self.key}: no users configured")
            return {"ok": True, "users": 0, "done": 0, "failed": 0, "cancelled": False}
        log.info(f"{self.key}: starting for {len(users)} user(s)")
        done = failed = 0
        for u in users:
            if cancel.is_set():
                break
            try:
                self.run_user(u, cancel)
            except InvalidTokenError:
                failed += 1
                self.config.invalidate_token(u.user_token)
                log.error(f"{self.key}: SIMKL rejected token {mask_token(u.user_token)} of {u.id}; removed")
            except SIMKLError as e:
                failed += 1
                log.error(f"{self.key}: {u.id} failed: {e}")
            except Exception as e:
                failed += 1
                log.error(f"{self.key}: {u.id} crashed: {e}")
            done += 1
            progress(done / len(users) * 100.0)
        cancelled = cancel.is_set()
        log.info(f"{self.key}: finished users={done}/{len(users)} failed={failed}{' (cancelled)' if cancelled else ''}")
        return {"ok": not failed and not cancelled, "users": len(users), "done": done, "failed": failed, "cancelled": cancelled}

    def run_user(self, user: UserConfig, cancel: threading.Event) -> None:
        raise NotImplementedError


class SyncFromSimklTask(SyncTask):
    name = "Import history from SIMKL"
    key = "SimklSyncFromSimkl"
    description = "Imports watch history from SIMKL and marks matching items as watched"
    interval = 12 * HOUR
    user_flag = "sync_history_from_simkl"

    def __init__(self, config: ConfigStore, engine: IncrementalPullEngine) -> None:
        super().__init__(config)
        self.engine = engine

    def run_user(self, user: UserConfig, cancel: threading.Event) -> None:
        self.engine.run_for_user(user, cancel)


class _LibraryTask(SyncTask):
    def __init__(
        self,
        config: ConfigStore,
        library: LibraryQuery,
        store: UserDataStore,
        pipeline: BatchPushPipeline,
    ) -> None:
        super().__init__(config)
        self.library = library
        self.store = store
        self.pipeline = pipeline

    def _items(self, user_id: str, kind: ItemKind, *, watched: bool) -> List[LocalMediaItem]:
        out: List[LocalMediaItem] = []
        for it in self.library.get_items(user_id, kind):
            ud = self.store.get_user_data(user_id, it)
            if bool(ud is not None and ud.played) == watched:
                out.append(it)
        return out


class SyncLibraryTask(_LibraryTask):
    name = "Export library to SIMKL"
    key = "SimklSyncLibrary"
    description = "Exports watched items from the library to SIMKL as watched history"
    interval = 24 * HOUR
    user_flag = "sync_library_to_simkl"

    def run_user(self, user: UserConfig, cancel: threading.Event) -> None:
        movies = [m for m in self._items(user.id, "movie", watched=True) if m.has_required_ids()]
        episodes = [e for e in self._items(user.id, "episode", watched=True) if e.series is not None and e.has_required_ids()]
        log.info(f"{user.id}: found {len(movies)} watched movie(s), {len(episodes)} watched episode(s)")
        stamps: Dict[str, datetime] = {}
        for it in movies + episodes:
            ud = self.store.get_user_data(user.id, it)
            if ud is not None and ud.last_played is not None:
                stamps[it.id] = ud.last_played
        self.pipeline.push(movies, "history-add", user.user_token, watched_at=stamps, cancel=cancel)
        if cancel.is_set():
            return
        self.pipeline.push(episodes, "history-add", user.user_token, watched_at=stamps, cancel=cancel)


class SyncUnwatchedMoviesTask(_LibraryTask):
    name = "Sync unwatched movies to SIMKL"
    key = "SimklSyncUnwatchedMovies"
    description = "Adds unwatched library movies to SIMKL as 'plan to watch'"
    interval = None

    def __init__(
        self,
        config: ConfigStore,
        library: LibraryQuery,
        store: UserDataStore,
        pipeline: BatchPushPipeline,
        client: SimklClient,
    ) -> None:
        super().__init__(config, library, store, pipeline)
        self.client = client

    def run_user(self, user: UserConfig, cancel: threading.Event) -> None:
        remote = self.client.get_all_items(user.user_token, type="movies")
        unwatched = self._items(user.id, "movie", watched=False)
        todo = filter_plan_to_watch(unwatched, remote.movies)
        log.info(f"{user.id}: {len(todo)} of {len(unwatched)} unwatched movie(s) need 'plan to watch'")
        if todo:
            self.pipeline.push(todo, "collection-add", user.user_token, to=STATUS_PLAN_TO_WATCH, cancel=cancel)


# ──────────────────────────────────────────────────────────────────────────────
# runner

def _now_iso() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class TaskRunner:
    """
    Runs tasks on background threads, one run per task at a time.
    start() adds a loop that triggers interval tasks when due.
    """

    def __init__(self, tasks: List[SyncTask], *, clock: Callable[[], float] = time.time) -> None:
        self.tasks: Dict[str, SyncTask] = {t.key: t for t in tasks}
        self._clock = clock
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._poke = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._running: Dict[str, threading.Thread] = {}
        self._cancel: Dict[str, threading.Event] = {}
        self._status: Dict[str, Dict[str, Any]] = {
            k: {"running": False, "progress": 0.0, "last_run_at": 0.0, "last_run_iso": "", "last_result": None, "last_error": ""}
            for k in self.tasks
        }

    def status(self, key: Optional[str] = None) -> Dict[str, Any]:
        with self._lock:
            if key is not None:
                return dict(self._status[key])
            return {k: dict(v) for k, v in self._status.items()}

    def run(self, key: str, *, wait: bool = False) -> bool:
        """Start a task now. False when it is already running or unknown."""
        task = self.tasks.get(key)
        if task is None:
            log.warn(f"unknown task {key}")
            return False
        with self._lock:
            t = self._running.get(key)
            if t is not None and t.is_alive():
                log.info(f"{key}: already running")
                return False
            cancel = threading.Event()
            self._cancel[key] = cancel
            self._status[key].update(running=True, progress=0.0, last_error="")
            t = threading.Thread(target=self._execute, args=(task, cancel), name=f"task-{key}", daemon=True)
            self._running[key] = t
        t.start()
        if wait:
            t.join()
        return True

    def cancel(self, key: str) -> bool:
        with self._lock:
            ev = self._cancel.get(key)
            t = self._running.get(key)
        if ev is None or t is None or not t.is_alive():
            return False
        ev.set()
        return True

    def _execute(self, task: SyncTask, cancel: threading.Event) -> None:
        def _progress(pct: float) -> None:
            with self._lock:
                self._status[task.key]["progress"] = round(float(pct), 1)

        result: Optional[Dict[str, Any]] = None
        err = ""
        try:
            result = task.execute(_progress, cancel)
        except Exception as e:
            err = str(e)
            log.error(f"{task.key}: crashed: {e}")
        finally:
            with self._lock:
                st = self._status[task.key]
                st.update(
                    running=False,
                    last_run_at=self._clock(),
                    last_run_iso=_now_iso(),
                    last_result=result,
                    last_error=err,
                )

    def due(self) -> List[str]:
        now = self._clock()
        out: List[str] = []
        with self._lock:
            for key, task in self.tasks.items():
                if not task.interval:
                    continue
                st = self._status[key]
                if st["running"]:
                    continue
                if not st["last_run_at"] or now - st["last_run_at"] >= task.interval:
                    out.append(key)
        return out

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._poke.clear()
        self._thread = threading.Thread(target=self._loop, name="TaskRunner", daemon=True)
        self._thread.start()
        log.info("task runner started")

    def stop(self) -> None:
        self._stop.set()
        self._poke.set()
        with self._lock:
            events = list(self._cancel.values())
        for ev in events:
            ev.set()
        t = self._thread
        if t and t.is_alive():
            t.join(timeout=3.0)
        log.info("task runner stopped")

    def _loop(self) -> None:
        while not self._stop.is_set():
            for key in self.due():
                self.run(key)
            self._poke.wait(timeout=30.0)
            self._poke.clear()
