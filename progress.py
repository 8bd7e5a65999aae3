"""
progress.py: out-of-band run status for the admin dashboard.

The progress file is a single slot: the forge overwrites it after every
state change and the dashboard polls it. Last write wins.
"""

import os
import json
import time
import random
from dataclasses import dataclass
from typing import Callable

from config import LOCK_PATH, PROGRESS_PATH, SLEEP_BETWEEN_ARTICLES, STALE_LOCK_SECONDS

RUNNING, COMPLETED, ERROR, IDLE = "running", "completed", "error", "idle"


def _now_ms() -> int:
    return int(time.time() * 1000)


def _write_json(path: str, payload: dict) -> None:
    tmp = f"{path}.tmp"
    with open(tmp, "w", encoding="utf-8") as f:
        json.dump(payload, f, ensure_ascii=False)
    os.replace(tmp, path)


class ProgressSink:
    """Writes {progress, message, status, timestamp}; progress never moves backwards."""

    def __init__(self, path: str = PROGRESS_PATH, clock: Callable[[], int] = _now_ms):
        self.path = path
        self.clock = clock
        self.last = 0

    def publish(self, progress: int, message: str, status: str = RUNNING) -> dict:
        progress = max(self.last, min(100, int(progress)))
        self.last = progress
        record = {
            "progress": progress,
            "message": message,
            "status": status,
            "timestamp": self.clock(),
        }
        try:
            _write_json(self.path, record)
        except OSError as e:
            print(f"⚠️  Could not write progress file: {e}")
        return record

    def complete(self, message: str) -> dict:
        return self.publish(100, message, COMPLETED)

    def fail(self, message: str) -> dict:
        return self.publish(self.last, message, ERROR)


def read_progress(path: str = PROGRESS_PATH) -> dict:
    if not os.path.exists(path):
        return {"progress": 0, "message": "待機中", "status": IDLE, "timestamp": _now_ms()}
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, ValueError) as e:
        print(f"⚠️  Could not read progress file: {e}")
        return {"progress": 0, "message": "進捗の取得に失敗しました", "status": ERROR, "timestamp": _now_ms()}


class RunLockedError(Exception):
    pass


class RunLock:
    """Exclusive lock file so two forge runs never overlap."""

    def __init__(self, path: str = LOCK_PATH, stale_after: float = STALE_LOCK_SECONDS):
        self.path = path
        self.stale_after = stale_after
        self.held = False

    def _is_stale(self) -> bool:
        try:
            return time.time() - os.path.getmtime(self.path) > self.stale_after
        except OSError:
            return False

    def acquire(self) -> None:
        if os.path.exists(self.path) and self._is_stale():
            print(f"♻️ Removing stale lock {self.path}")
            os.remove(self.path)
        try:
            fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except FileExistsError:
            raise RunLockedError(f"another run holds {self.path}")
        with os.fdopen(fd, "w") as f:
            f.write(str(os.getpid()))
        self.held = True

    def release(self) -> None:
        if self.held:
            try:
                os.remove(self.path)
            except FileNotFoundError:
                pass
            self.held = False

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, *exc):
        self.release()
        return False


@dataclass
class RateLimiter:
    """Fixed pause between saved articles, with optional jitter."""
    interval: float = SLEEP_BETWEEN_ARTICLES
    jitter: float = 0.0
    sleep: Callable[[float], None] = time.sleep

    def wait(self) -> float:
        delay = self.interval + (random.uniform(0, self.jitter) if self.jitter else 0.0)
        if delay > 0:
            print(f"⏳ Waiting {delay:g}s...")
            self.sleep(delay)
        return delay
