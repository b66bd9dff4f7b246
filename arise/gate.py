from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable

from arise.storage import LocalStore

logger = logging.getLogger(__name__)

LOGIN_FLAG_KEY = "show_quest_notif"
DEFAULT_SNOOZE_MINUTES = 60


def seen_key(account_id: int) -> str:
    return f"quest_notif_seen:{account_id}"


def remind_key(account_id: int) -> str:
    return f"quest_notif_remind:{account_id}"


def _epoch_ms(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


def _next_local_midnight_ms(now: datetime) -> int:
    return _epoch_ms(datetime.combine(now.date() + timedelta(days=1), datetime.min.time(), tzinfo=now.tzinfo))


class QuestNotificationGate:
    """Decides whether today's quest prompt should be shown to an account.

    The prompt shows at most once per account per quest day, unless a fresh
    login re-arms it or a "remind me later" snooze expires before it was seen.
    The quest day ends at the server's ``nextUnlock``, so the client and server
    agree on midnight even when their timezones differ.

    ``fetch_quest`` returns the ``{"quest": ..., "nextUnlock": ...}`` payload of
    the today endpoint.
    """

    def __init__(
        self,
        store: LocalStore,
        fetch_quest: Callable[[], dict | None],
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.store = store
        self.fetch_quest = fetch_quest
        self.clock = clock

    def signal_login(self) -> None:
        self.store.set(LOGIN_FLAG_KEY, True)

    def should_show(self, account_id: int) -> bool:
        now_ms = _epoch_ms(self.clock())
        if self.store.get(LOGIN_FLAG_KEY):
            return True
        seen = self.store.get(seen_key(account_id))
        if isinstance(seen, dict) and now_ms < int(seen.get("until", 0)):
            return False
        remind_at = self.store.get(remind_key(account_id))
        return remind_at is None or now_ms >= int(remind_at)

    def pending(self, account_id: int) -> dict | None:
        """Fetch today's payload when a prompt is due, without touching any marker.

        Errors from ``fetch_quest`` propagate so the next run retries.
        """
        if not self.should_show(account_id):
            return None
        payload = self.fetch_quest()
        if not payload or not payload.get("quest"):
            return None
        return payload

    def mark_shown(self, account_id: int, payload: dict) -> None:
        now = self.clock()
        until = payload.get("nextUnlock") or _next_local_midnight_ms(now)
        self.store.delete(LOGIN_FLAG_KEY)
        self.store.set(seen_key(account_id), {"day": payload["quest"].get("quest_date"), "until": int(until)})
        remind_at = self.store.get(remind_key(account_id))
        if remind_at is not None and _epoch_ms(now) >= int(remind_at):
            self.store.delete(remind_key(account_id))
        logger.info("Quest prompt shown for account %s", account_id)

    def evaluate(self, account_id: int) -> dict | None:
        """Return the quest to prompt with and mark it shown, or None when the prompt stays hidden."""
        payload = self.pending(account_id)
        if payload is None:
            return None
        self.mark_shown(account_id, payload)
        return payload["quest"]

    def remind_later(self, account_id: int, minutes: int = DEFAULT_SNOOZE_MINUTES) -> int:
        """Snooze the prompt; it is shown again once ``minutes`` have passed."""
        remind_at = _epoch_ms(self.clock() + timedelta(minutes=minutes))
        self.store.set(remind_key(account_id), remind_at)
        # A snoozed prompt does not count as seen.
        self.store.delete(seen_key(account_id))
        return remind_at
