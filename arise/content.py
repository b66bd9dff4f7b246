from __future__ import annotations

import json
import logging
import random
from pathlib import Path

logger = logging.getLogger(__name__)

BASE_DIR = Path(__file__).resolve().parent
POOL_PATH = BASE_DIR / "quest_pool.json"

DEFAULT_POOL = [
    {"title": "Morning Run", "description": "Start your day with a run", "base_reps": 5, "base_duration": 20, "quote": "A mile a day keeps the fatigue away."},
    {"title": "Strength Training", "description": "Build muscle and power", "base_reps": 15, "base_duration": 30, "quote": "Strength comes from overcoming what you thought you couldn't."},
    {"title": "Cardio Blast", "description": "Pump up your heart rate", "base_reps": 20, "base_duration": 25, "quote": "You can't win if you don't try."},
    {"title": "Flexibility & Stretch", "description": "Improve your range of motion", "base_reps": 10, "base_duration": 15, "quote": "Flexibility is the foundation of fitness."},
    {"title": "HIIT Workout", "description": "High intensity, high reward", "base_reps": 30, "base_duration": 20, "quote": "The pain today is the strength tomorrow."},
]


def _load_json(path: Path, fallback):
    if not path.exists():
        return fallback
    return json.loads(path.read_text(encoding="utf-8-sig"))


def _normalise_template(entry) -> dict | None:
    if not isinstance(entry, dict) or not str(entry.get("title", "")).strip():
        return None
    try:
        base_reps = int(entry.get("base_reps", 10))
        base_duration = int(entry.get("base_duration", 20))
    except (TypeError, ValueError):
        return None
    if base_reps <= 0 or base_duration <= 0:
        return None
    return {
        "title": str(entry["title"]).strip(),
        "description": str(entry.get("description", "")),
        "base_reps": base_reps,
        "base_duration": base_duration,
        "quote": str(entry.get("quote", "")),
    }


def load_quest_pool(path: Path | None = None) -> list[dict]:
    """Read the quest template pool, falling back to the built-in templates."""
    path = path or POOL_PATH
    try:
        raw = _load_json(path, [])
    except json.JSONDecodeError as exc:
        logger.warning("Quest pool %s is not valid JSON: %s", path, exc)
        raw = []
    if not isinstance(raw, list):
        raw = []
    pool = [t for t in (_normalise_template(entry) for entry in raw) if t is not None]
    if not pool:
        return [dict(t) for t in DEFAULT_POOL]
    return pool


def choose_template(rng: random.Random, pool: list[dict]) -> dict:
    return dict(rng.choice(pool or DEFAULT_POOL))
