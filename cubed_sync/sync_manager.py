"""Watches the local directory and pushes changes to the selected server."""

from __future__ import annotations

import fnmatch
import logging
import os
import random
import threading
import time
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from .config import Config
from .console import Console
from .errors import CannotRecover, SessionStateError, TransportError, Unreachable
from .session import AuthSession

logger = logging.getLogger(__name__)


class FileChangeHandler(FileSystemEventHandler):
    def __init__(self, sync_manager: "SyncManager"): self.sync_manager = sync_manager
    def on_modified(self, e):  # type: ignore[override]
        if not e.is_directory: self.sync_manager.handle_local_change(e.src_path)
    def on_created(self, e):  # type: ignore[override]
        if not e.is_directory: self.sync_manager.handle_local_change(e.src_path)
    def on_deleted(self, e):  # type: ignore[override]
        if not e.is_directory: self.sync_manager.handle_local_deletion(e.src_path)
    def on_moved(self, e):  # type: ignore[override]
        if not e.is_directory:
            self.sync_manager.handle_local_deletion(e.src_path)
            self.sync_manager.handle_local_change(e.dest_path)


class SyncManager:
    def __init__(self, config: Config, session: AuthSession, transport, console: Console):
        self.config = config
        self.session = session
        self.transport = transport
        self.console = console
        self.observer = Observer()
        self.stop_event = threading.Event()
        self.fatal: Optional[CannotRecover] = None
        self._pending: Dict[str, Tuple[str, threading.Timer]] = {}  # rel -> (path, timer)
        self._pending_lock = threading.Lock()
        self._metrics = {
            "uploads": 0,
            "deletions": 0,
            "failures": 0,
            "bytes_uploaded": 0,
        }
        self._metrics_lock = threading.Lock()
        self._setup_local()
        session.on_expired = lambda: console.info("Current session expired. Refreshing it!")

    # --- setup ---
    def _setup_local(self):
        Path(self.config.local_directory).expanduser().mkdir(parents=True, exist_ok=True)

    # --- utilities ---
    def _relpath(self, path: str) -> str:
        return Path(os.path.relpath(path, self.config.local_directory)).as_posix()

    def _path_included(self, rel: str) -> bool:
        name = rel.rsplit("/", 1)[-1]
        # Ignore patterns take absolute precedence
        for p in self.config.ignore_patterns:
            if fnmatch.fnmatch(rel, p) or fnmatch.fnmatch(name, p):
                return False
        if rel.startswith("../"):
            return False
        if not self.config.folder_support and "/" in rel:
            return False
        inc, exc = self.config.include_patterns, self.config.exclude_patterns
        if inc and not any(fnmatch.fnmatch(rel, p) for p in inc): return False
        if exc and any(fnmatch.fnmatch(rel, p) for p in exc): return False
        return True

    def remote_path(self, rel: str) -> str:
        """Remote location of a local file relative to the watched directory."""
        if not self.config.folder_support:
            rel = rel.rsplit("/", 1)[-1]
        base = self.session.base_dir
        return f"{base}/{rel}" if base else rel

    def _schedule(self, path: str, rel: str):
        """Upload ``rel`` once no further change has arrived for ``debounce_ms``."""
        timer = threading.Timer(self.config.debounce_ms / 1000.0, self._flush_one, args=(path, rel))
        timer.daemon = True
        with self._pending_lock:
            previous = self._pending.get(rel)
            self._pending[rel] = (path, timer)
        if previous is not None:
            previous[1].cancel()
            logger.debug(f"Coalesced change for {rel}")
        timer.start()

    def _cancel_pending(self, rel: str):
        with self._pending_lock:
            entry = self._pending.pop(rel, None)
        if entry is not None:
            entry[1].cancel()

    def _flush_one(self, path: str, rel: str):
        with self._pending_lock:
            entry = self._pending.get(rel)
            if entry is None or entry[1] is not threading.current_thread():
                return
            del self._pending[rel]
        self._upload(path, rel)

    def flush_pending(self):
        """Upload every change still waiting out its debounce window."""
        with self._pending_lock:
            entries = list(self._pending.items())
            self._pending.clear()
        for rel, (path, timer) in entries:
            timer.cancel()
            self._upload(path, rel)

    def _count(self, key: str, amount: int = 1):
        with self._metrics_lock: self._metrics[key] += amount

    # --- lifecycle ---
    def start(self):
        """Watch until stopped. Raises CannotRecover if the session is lost for good."""
        handler = FileChangeHandler(self)
        self.observer.schedule(handler, self.config.local_directory, recursive=self.config.folder_support)
        self.observer.start()
        self.console.info(f"Watching {self.config.local_directory} -> {self.session.base_dir or '/'}")
        interval = self.config.keepalive_interval
        try:
            while not self.stop_event.wait(interval if interval > 0 else None):
                self._keepalive()
        finally:
            self.shutdown()
        if self.fatal is not None:
            raise self.fatal

    def shutdown(self):
        if self.observer.is_alive():
            self.observer.stop(); self.observer.join(timeout=5)
        self.flush_pending()
        self._emit_stats()
        logger.info("Shutdown complete")

    def _keepalive(self):
        try:
            self.session.ensure_valid()
        except CannotRecover as e:
            self._fail(e)
        except Unreachable as e:
            logger.warning(f"Keep-alive check failed: {e}")

    def _fail(self, error: CannotRecover):
        if self.fatal is None:
            self.fatal = error
            self.console.error(f"{error}. Exiting system.")
        self.stop_event.set()

    # --- local events ---
    def handle_local_change(self, path: str):
        rel = self._relpath(path)
        if not self._path_included(rel): return
        if self.config.debounce_ms > 0:
            self._schedule(path, rel)
        else:
            self._upload(path, rel)

    def _upload(self, path: str, rel: str):
        try:
            with open(path, "rb") as f: data = f.read()
        except FileNotFoundError:
            return
        except OSError as e:
            logger.warning(f"Could not read {rel}: {e}")
            return
        remote = self.remote_path(rel)

        def _do():
            return self.transport.upload_file(self.session.active_headers(), remote, data)
        diagnostics = self._remote_op(_do, f"upload {rel}")
        if diagnostics is None:
            return
        self._count("uploads"); self._count("bytes_uploaded", len(data))
        self.console.log(f"Uploaded {rel}")
        for line in diagnostics:
            if self.config.log_errors:
                self.console.error(f"{rel}: {line}")
            else:
                logger.debug(f"{rel}: {line}")

    def handle_local_deletion(self, path: str):
        rel = self._relpath(path)
        if not self._path_included(rel): return
        self._cancel_pending(rel)
        remote = self.remote_path(rel)

        def _do():
            self.transport.delete_file(self.session.active_headers(), remote)
            return True
        if self._remote_op(_do, f"delete {rel}") is None:
            return
        self._count("deletions")
        self.console.log(f"Deleted {rel}")

    def sync_all(self) -> int:
        """Upload every included file once. Returns the number of files pushed."""
        before = self.stats()["uploads"]
        base = Path(self.config.local_directory)
        paths = base.rglob("*") if self.config.folder_support else base.glob("*")
        for p in sorted(paths):
            if self.stop_event.is_set(): break
            rel = self._relpath(str(p))
            if p.is_file() and self._path_included(rel):
                self._cancel_pending(rel)
                self._upload(str(p), rel)
        if self.fatal is not None:
            raise self.fatal
        return self.stats()["uploads"] - before

    # --- remote helpers ---
    def _remote_op(self, func: Callable[[], Any], op_name: str):
        """Run ``func`` on a live session; None means it did not happen."""
        if self.fatal is not None:
            return None
        try:
            self.session.ensure_valid()
        except CannotRecover as e:
            self._fail(e)
            return None
        except Unreachable as e:
            self._count("failures")
            self.console.error(f"{op_name} skipped: {e}")
            return None
        try:
            return self._with_retries(func, op_name)
        except CannotRecover as e:
            self._fail(e)
        except (TransportError, Unreachable, SessionStateError) as e:
            self._count("failures")
            self.console.error(f"{op_name} failed: {e}")
        return None

    def _with_retries(self, func: Callable[[], Any], op_name: str, attempts: int = 3, base_delay: float = 0.5):
        for i in range(1, attempts + 1):
            try:
                return func()
            except TransportError as e:
                if e.status in (401, 403):
                    # Session went away between the check and the request.
                    self.session.mark_expired()
                    self.session.ensure_valid()
                elif 400 <= e.status < 500:
                    raise
                if i == attempts:
                    raise
                d = base_delay * (2 ** (i - 1)) * (0.5 + random.random())
                logger.debug(f"Retry {i}/{attempts} {op_name}: {e}; sleep {d:.2f}s")
                time.sleep(d)

    # --- stats ---
    def stats(self) -> Dict[str, int]:
        with self._metrics_lock: m = dict(self._metrics)
        m["refreshes"] = self.session.refresh_count
        return m

    def _emit_stats(self):
        m = self.stats()
        logger.info(
            "STATS uploads=%d deletions=%d failures=%d refreshes=%d up_bytes=%d" % (
                m["uploads"], m["deletions"], m["failures"], m["refreshes"], m["bytes_uploaded"],
            )
        )
