from __future__ import annotations

import json
import logging
import time
import urllib.error
import urllib.request

logger = logging.getLogger(__name__)

DEFAULT_API = "http://127.0.0.1:8000"


class ApiError(Exception):
    def __init__(self, status: int, message: str) -> None:
        super().__init__(f"{status}: {message}")
        self.status = status
        self.message = message


def _error_detail(exc: urllib.error.HTTPError) -> str:
    try:
        payload = json.loads(exc.read() or b"{}")
    except ValueError:
        return exc.reason or "request failed"
    detail = payload.get("detail") if isinstance(payload, dict) else None
    if isinstance(detail, list):
        return "; ".join(str(item.get("msg", item)) if isinstance(item, dict) else str(item) for item in detail)
    return str(detail or exc.reason or "request failed")


class AriseClient:
    max_attempts = 3
    timeout_s = 10

    def __init__(self, base_url: str = DEFAULT_API, token: str | None = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token

    def _request(self, method: str, path: str, payload: dict | None = None) -> dict:
        headers = {"Accept": "application/json"}
        data = None
        if payload is not None:
            data = json.dumps(payload).encode("utf-8")
            headers["Content-Type"] = "application/json"
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        req = urllib.request.Request(self.base_url + path, data=data, headers=headers, method=method)

        # Only requests that are safe to repeat are retried.
        attempts = self.max_attempts if method in ("GET", "PUT") else 1
        for attempt in range(1, attempts + 1):
            try:
                with urllib.request.urlopen(req, timeout=self.timeout_s) as resp:
                    return json.loads(resp.read() or b"{}")
            except urllib.error.HTTPError as exc:
                raise ApiError(exc.code, _error_detail(exc)) from exc
            except (urllib.error.URLError, TimeoutError, OSError) as exc:
                if attempt >= attempts:
                    raise
                logger.debug("%s %s failed (attempt %s): %s", method, path, attempt, exc)
                time.sleep(0.25 * attempt)
        raise AssertionError("unreachable")

    def register(self, username: str, password: str) -> dict:
        result = self._request("POST", "/api/register", {"username": username, "password": password})
        self.token = result["token"]
        return result

    def login(self, username: str, password: str) -> dict:
        result = self._request("POST", "/api/login", {"username": username, "password": password})
        self.token = result["token"]
        return result

    def profile(self) -> dict:
        return self._request("GET", "/api/profile")["user"]

    def today_quest(self) -> dict:
        return self._request("GET", "/api/quests/today")

    def update_quest(self, quest_id: int, **fields) -> dict:
        return self._request("PUT", f"/api/quests/{quest_id}", fields)["quest"]

    def complete_quest(self, quest_id: int) -> dict:
        return self._request("POST", f"/api/quests/{quest_id}/complete")

    def log_workout(self, name: str, sets: int = 0, reps: int = 0, duration: int = 0) -> dict:
        return self._request("POST", "/api/workouts", {"name": name, "sets": sets, "reps": reps, "duration": duration})

    def log_meal(self, name: str, calories: int = 0) -> dict:
        return self._request("POST", "/api/meals", {"name": name, "calories": calories})

    def workouts(self) -> list[dict]:
        return self._request("GET", "/api/workouts")["workouts"]

    def meals(self) -> list[dict]:
        return self._request("GET", "/api/meals")["meals"]

    def achievements(self) -> list[dict]:
        return self._request("GET", "/api/achievements")["achievements"]
