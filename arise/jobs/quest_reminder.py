from __future__ import annotations

import argparse
import logging
import os

from arise.api_client import DEFAULT_API, AriseClient
from arise.gate import QuestNotificationGate
from arise.notifier import Notifier, build_notifier, quest_prompt
from arise.storage import AUTH_KEY, LocalStore, default_state_path

logger = logging.getLogger(__name__)


def _build_notifier() -> Notifier:
    return build_notifier(
        discord_webhook_url=os.environ.get("ARISE_DISCORD_WEBHOOK", ""),
        ntfy_topic_url=os.environ.get("ARISE_NTFY_TOPIC", ""),
    )


def send_quest_prompt(store: LocalStore, client: AriseClient, notifier: Notifier) -> bool:
    session = store.get(AUTH_KEY) or {}
    if not session.get("token"):
        logger.info("Not logged in; no quest prompt to send.")
        return False
    client.token = session["token"]
    account_id = session["user"]["id"]
    gate = QuestNotificationGate(store, client.today_quest)
    payload = gate.pending(account_id)
    if payload is None:
        return False
    if not notifier.send(*quest_prompt(payload["quest"])):
        logger.warning("Quest prompt for account %s was not delivered; will retry on the next run", account_id)
        return False
    gate.mark_shown(account_id, payload)
    return True


def main() -> None:
    # Run this every 10-15 minutes via cron/systemd timer.
    parser = argparse.ArgumentParser()
    parser.add_argument("--api", default=os.environ.get("ARISE_API", DEFAULT_API))
    parser.add_argument("--state", default=str(default_state_path()))
    args = parser.parse_args()

    send_quest_prompt(LocalStore(args.state), AriseClient(args.api), _build_notifier())


if __name__ == "__main__":
    main()
