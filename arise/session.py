"""Countdown tracking for a single timed workout or quest attempt.

The running session is written to a :class:`~arise.storage.LocalStore` before
the countdown starts and rewritten on every tick, together with the owning
process id and a heartbeat. An active record whose owner has exited or stopped
ticking means the run ended before the countdown finished or was cancelled, so
it is invalidated, never resumed. A timer whose record was invalidated under it
stops without crediting the activity.
"""

from __future__ import annotations

import logging
import os
import time
from enum import Enum
from typing import Callable

from arise.storage import LocalStore

logger = logging.getLogger(__name__)

STORAGE_KEY = "active_session"
ACTIVITY_KINDS = ("workout", "quest")
TICK_MS = 1000
MAX_DURATION_MS = 12 * 3600 * 1000
# A running timer rewrites its heartbeat every tick.
STALE_AFTER_MS = 30 * TICK_MS

SessionCallback = Callable[[dict], None]


class SessionState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    INVALIDATED = "invalidated"


class InvalidDuration(ValueError):
    pass


class SessionAlreadyActive(RuntimeError):
    pass


def _now_ms() -> int:
    return int(time.time() * 1000)


def _whole_number(part: str) -> int:
    part = part.strip()
    if not (part.isascii() and part.isdigit()):
        raise InvalidDuration("Invalid time format. Use minutes (e.g., 30) or hh:mm:ss format.")
    return int(part)


def parse_time_input(text: str) -> int:
    """Parse ``"30"`` (minutes), ``"m:ss"`` or ``"h:mm:ss"`` into milliseconds."""
    text = (text or "").strip()
    parts = text.split(":")
    if len(parts) == 1:
        total_s = _whole_number(parts[0]) * 60
    elif len(parts) == 2:
        mins, secs = (_whole_number(p) for p in parts)
        if secs >= 60:
            raise InvalidDuration("Seconds must be below 60.")
        total_s = mins * 60 + secs
    elif len(parts) == 3:
        hours, mins, secs = (_whole_number(p) for p in parts)
        if mins >= 60 or secs >= 60:
            raise InvalidDuration("Minutes and seconds must be below 60.")
        total_s = hours * 3600 + mins * 60 + secs
    else:
        raise InvalidDuration("Invalid time format. Use minutes (e.g., 30) or hh:mm:ss format.")

    if total_s <= 0:
        raise InvalidDuration("Duration must be greater than zero.")
    if total_s * 1000 > MAX_DURATION_MS:
        raise InvalidDuration("Maximum duration is 12 hours.")
    return total_s * 1000


def format_time_display(ms: int) -> str:
    total = max(0, ms) // 1000
    hours, rest = divmod(total, 3600)
    mins, secs = divmod(rest, 60)
    if hours > 0:
        return f"{hours:02d}:{mins:02d}:{secs:02d}"
    return f"{mins:02d}:{secs:02d}"


def _process_alive(pid) -> bool:
    if not isinstance(pid, int) or pid <= 0:
        return False
    if os.name == "nt":
        # os.kill would terminate the process here; rely on the heartbeat.
        return True
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError:
        return False
    return True


def _owner_is_live(record: dict, now_ms: int) -> bool:
    """True while the process that started ``record`` is alive and still ticking it."""
    heartbeat = record.get("heartbeat")
    if not isinstance(heartbeat, int) or now_ms - heartbeat > STALE_AFTER_MS:
        return False
    return _process_alive(record.get("owner_pid"))


def invalidate_unfinished(store: LocalStore, on_cancel: SessionCallback | None = None, clock: Callable[[], int] = _now_ms) -> dict | None:
    """Deactivate a session whose owning process has gone away and report it.

    A session another live process is still ticking is left alone.
    """
    record = store.get(STORAGE_KEY)
    if not isinstance(record, dict) or not record.get("is_active"):
        return None
    if _owner_is_live(record, clock()):
        return None
    record["is_active"] = False
    record["end_time"] = clock()
    store.set(STORAGE_KEY, record)
    logger.warning("Unfinished %s session %s detected and invalidated", record.get("kind"), record.get("id"))
    if on_cancel:
        on_cancel(record)
    return record


class ActivityTimer:
    def __init__(
        self,
        store: LocalStore,
        kind: str,
        target_id: int | str,
        on_complete: SessionCallback,
        on_cancel: SessionCallback | None = None,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        if kind not in ACTIVITY_KINDS:
            raise ValueError(f"Unknown activity kind: {kind}")
        self.store = store
        self.kind = kind
        self.target_id = target_id
        self.on_complete = on_complete
        self.on_cancel = on_cancel
        self.clock = clock
        self.state = SessionState.IDLE
        self.last_outcome: SessionState | None = None
        self.minimized = False
        self.remaining_ms = 0
        self.session: dict | None = None
        self.invalidated = invalidate_unfinished(store, on_cancel, clock)
        if self.invalidated is not None:
            self.last_outcome = SessionState.INVALIDATED

    @property
    def running(self) -> bool:
        return self.state is SessionState.RUNNING

    def start(self, duration_text: str) -> dict:
        if self.running:
            raise SessionAlreadyActive("A session is already running.")
        stored = self.store.get(STORAGE_KEY)
        if isinstance(stored, dict) and stored.get("is_active"):
            raise SessionAlreadyActive(f"Session {stored.get('id')} is still active.")
        duration_ms = parse_time_input(duration_text)

        started = self.clock()
        self.session = {
            "id": f"{self.kind}-{self.target_id}-{started}",
            "kind": self.kind,
            "target_id": self.target_id,
            "start_time": started,
            "estimated_duration": duration_ms,
            "remaining": duration_ms,
            "is_active": True,
            "owner_pid": os.getpid(),
            "heartbeat": started,
        }
        self.store.set(STORAGE_KEY, self.session)
        self.remaining_ms = duration_ms
        self.minimized = False
        self.state = SessionState.RUNNING
        return dict(self.session)

    def tick(self, elapsed_ms: int = TICK_MS) -> bool:
        """Advance the countdown; returns True while the session keeps running."""
        if not self.running:
            return False
        assert self.session is not None
        if self._lost_record():
            return False
        self.remaining_ms = max(0, self.remaining_ms - elapsed_ms)
        self.session["remaining"] = self.remaining_ms
        self.session["heartbeat"] = self.clock()
        self.store.set(STORAGE_KEY, self.session)
        if self.remaining_ms == 0:
            self._finish(SessionState.COMPLETED)
            return False
        return True

    def cancel(self) -> dict | None:
        if not self.running or self._lost_record():
            return None
        return self._finish(SessionState.CANCELLED)

    def minimize(self) -> None:
        if self.running:
            self.minimized = True

    def restore(self) -> None:
        self.minimized = False

    def _lost_record(self) -> bool:
        """Stop without credit when another process deactivated or replaced our record."""
        assert self.session is not None
        stored = self.store.get(STORAGE_KEY)
        if isinstance(stored, dict) and stored.get("id") == self.session["id"] and stored.get("is_active"):
            return False
        logger.warning("Session %s was invalidated by another process", self.session["id"])
        self.session = None
        self.state = SessionState.IDLE
        self.minimized = False
        self.remaining_ms = 0
        self.last_outcome = SessionState.INVALIDATED
        return True

    def _finish(self, outcome: SessionState) -> dict:
        assert self.session is not None
        record = self.session
        record["is_active"] = False
        record["end_time"] = self.clock()
        self.store.set(STORAGE_KEY, record)

        self.session = None
        self.state = SessionState.IDLE
        self.minimized = False
        self.remaining_ms = 0
        self.last_outcome = outcome

        if outcome is SessionState.COMPLETED:
            self.on_complete(record)
        elif self.on_cancel:
            self.on_cancel(record)
        return record

    def run(self, sleep: Callable[[float], None] | None = None, on_tick: Callable[[int], None] | None = None) -> SessionState | None:
        sleep = sleep or time.sleep
        try:
            while self.running:
                sleep(TICK_MS / 1000)
                if self.tick() and on_tick:
                    on_tick(self.remaining_ms)
        except KeyboardInterrupt:
            self.cancel()
        return self.last_outcome
