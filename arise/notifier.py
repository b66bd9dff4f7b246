from __future__ import annotations

import json
import logging
import sys
import time
import urllib.error
import urllib.request
from typing import TextIO

logger = logging.getLogger(__name__)


class Notifier:
    """Delivers a quest prompt; ``send`` returns True once the prompt reached its target."""

    def send(self, title: str, body: str, priority: str = "normal") -> bool:
        raise NotImplementedError


class ConsoleNotifier(Notifier):
    def __init__(self, stream: TextIO | None = None) -> None:
        self.stream = stream

    def send(self, title: str, body: str, priority: str = "normal") -> bool:
        stream = self.stream or sys.stdout
        stream.write(f"== {title} ==\n{body}\n")
        stream.flush()
        return True


class _HttpNotifier(Notifier):
    max_attempts = 3
    timeout_s = 5

    def build_request(self, title: str, body: str, priority: str) -> urllib.request.Request:
        raise NotImplementedError

    def send(self, title: str, body: str, priority: str = "normal") -> bool:
        req = self.build_request(title, body, priority)
        for attempt in range(1, self.max_attempts + 1):
            try:
                with urllib.request.urlopen(req, timeout=self.timeout_s) as resp:
                    resp.read()
                logger.debug("Delivered %r via %s", title, type(self).__name__)
                return True
            except (urllib.error.URLError, TimeoutError, OSError) as exc:
                if attempt >= self.max_attempts:
                    logger.warning("%s could not deliver %r after %s attempts: %s", type(self).__name__, title, attempt, exc)
                    return False
                time.sleep(0.25 * attempt)
        return False


class DiscordNotifier(_HttpNotifier):
    def __init__(self, webhook_url: str) -> None:
        self.webhook_url = webhook_url

    def build_request(self, title: str, body: str, priority: str) -> urllib.request.Request:
        return urllib.request.Request(
            self.webhook_url,
            data=json.dumps({"content": f"**{title}**\n{body}"}).encode("utf-8"),
            headers={"Content-Type": "application/json"},
            method="POST",
        )


class NtfyNotifier(_HttpNotifier):
    def __init__(self, topic_url: str) -> None:
        self.topic_url = topic_url

    def build_request(self, title: str, body: str, priority: str) -> urllib.request.Request:
        return urllib.request.Request(
            self.topic_url,
            data=body.encode("utf-8"),
            headers={"Title": title, "Priority": "4" if priority == "high" else "3", "Tags": "crossed_swords"},
            method="POST",
        )


def build_notifier(discord_webhook_url: str = "", ntfy_topic_url: str = "") -> Notifier:
    if discord_webhook_url:
        return DiscordNotifier(discord_webhook_url)
    if ntfy_topic_url:
        return NtfyNotifier(ntfy_topic_url)
    return ConsoleNotifier()


def quest_prompt(quest: dict) -> tuple[str, str]:
    title = f"Today's Quest: {quest.get('title', 'Daily Quest')}"
    lines = [quest.get("description", "")]
    if "scaled_reps" in quest:
        lines.append(f"Reps: {quest['scaled_reps']}  Duration: {quest['scaled_duration']}m")
    if quest.get("quote"):
        lines.append(f'"{quest["quote"]}"')
    return title, "\n".join(line for line in lines if line)
