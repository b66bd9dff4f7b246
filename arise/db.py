from __future__ import annotations

import logging
import os
import random
import sqlite3
from datetime import datetime, time, timedelta, timezone
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from arise.content import choose_template, load_quest_pool
from arise.leveling import level_info, scaled_value

logger = logging.getLogger(__name__)

DB_PATH = Path(os.environ.get("ARISE_DB_PATH") or Path(__file__).resolve().parent.parent / "data.sqlite3")
DAY_TIMEZONE = os.environ.get("ARISE_TIMEZONE", "")

WORKOUT_BASE_XP = 15
MEAL_XP = 5
QUEST_XP = 50
HISTORY_LIMIT = 200

QUEST_EDITABLE_FIELDS = ("title", "description", "base_reps", "base_duration")

ACHIEVEMENTS = {
    "first_workout": "First Workout",
    "first_meal": "First Meal Logged",
    "first_quest": "First Quest Cleared",
}
LEVEL_MILESTONES = (5, 10, 25, 50)


class ValidationError(ValueError):
    pass


class QuestValidationError(ValidationError):
    pass


class QuestNotFound(LookupError):
    pass


class AccountNotFound(LookupError):
    pass


class UsernameTaken(ValueError):
    pass


def get_conn() -> sqlite3.Connection:
    conn = sqlite3.connect(DB_PATH, timeout=10)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def local_now() -> datetime:
    if DAY_TIMEZONE:
        try:
            return datetime.now(ZoneInfo(DAY_TIMEZONE))
        except ZoneInfoNotFoundError:
            logger.warning("Unknown timezone %r, using server local time", DAY_TIMEZONE)
    return datetime.now().astimezone()


def today_key(now: datetime | None = None) -> str:
    return (now or local_now()).date().isoformat()


def next_unlock_ms(now: datetime | None = None) -> int:
    """Epoch milliseconds of the next local midnight."""
    now = now or local_now()
    midnight = datetime.combine(now.date() + timedelta(days=1), time.min, tzinfo=now.tzinfo)
    return int(midnight.timestamp() * 1000)


def init_db() -> None:
    conn = get_conn()
    try:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS users (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                username TEXT NOT NULL UNIQUE,
                password_hash TEXT NOT NULL,
                xp INTEGER NOT NULL DEFAULT 0 CHECK (xp >= 0),
                streak INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS quests (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL REFERENCES users(id),
                title TEXT NOT NULL,
                description TEXT NOT NULL DEFAULT '',
                base_reps INTEGER NOT NULL DEFAULT 10,
                base_duration INTEGER NOT NULL DEFAULT 20,
                quest_date TEXT NOT NULL,
                completed INTEGER NOT NULL DEFAULT 0,
                completed_at TEXT,
                quote TEXT NOT NULL DEFAULT '',
                created_at TEXT NOT NULL,
                UNIQUE (user_id, quest_date)
            );

            CREATE TABLE IF NOT EXISTS workouts (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL REFERENCES users(id),
                name TEXT NOT NULL,
                sets INTEGER NOT NULL DEFAULT 0,
                reps INTEGER NOT NULL DEFAULT 0,
                duration INTEGER NOT NULL DEFAULT 0,
                log_date TEXT NOT NULL,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS meals (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL REFERENCES users(id),
                name TEXT NOT NULL,
                calories INTEGER NOT NULL DEFAULT 0,
                log_date TEXT NOT NULL,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS achievements (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL REFERENCES users(id),
                key TEXT NOT NULL,
                name TEXT NOT NULL,
                earned_at TEXT NOT NULL,
                UNIQUE (user_id, key)
            );
            """
        )
        conn.commit()
    finally:
        conn.close()


def _user_payload(row: sqlite3.Row) -> dict:
    user = {k: row[k] for k in row.keys() if k != "password_hash"}
    info = level_info(user["xp"])
    user["level"] = info.level
    user["progress"] = info.progress
    return user


def create_user(username: str, password_hash: str) -> dict:
    conn = get_conn()
    try:
        try:
            cur = conn.execute(
                "INSERT INTO users (username, password_hash, created_at) VALUES (?, ?, ?)",
                (username, password_hash, utc_now_iso()),
            )
        except sqlite3.IntegrityError as exc:
            raise UsernameTaken(f"Username {username!r} is already taken.") from exc
        conn.commit()
        row = conn.execute("SELECT * FROM users WHERE id = ?", (cur.lastrowid,)).fetchone()
        assert row is not None
        return _user_payload(row)
    finally:
        conn.close()


def get_user(user_id: int) -> dict:
    conn = get_conn()
    try:
        row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        if row is None:
            raise AccountNotFound(f"No account with id {user_id}.")
        return _user_payload(row)
    finally:
        conn.close()


def get_credentials(username: str) -> dict | None:
    conn = get_conn()
    try:
        row = conn.execute("SELECT id, username, password_hash FROM users WHERE username = ?", (username,)).fetchone()
        return dict(row) if row else None
    finally:
        conn.close()


def _unlock(conn: sqlite3.Connection, user_id: int, key: str) -> dict | None:
    name = ACHIEVEMENTS.get(key) or f"Reached Level {key.rpartition('_')[2]}"
    earned_at = utc_now_iso()
    cur = conn.execute(
        "INSERT OR IGNORE INTO achievements (user_id, key, name, earned_at) VALUES (?, ?, ?, ?)",
        (user_id, key, name, earned_at),
    )
    if cur.rowcount != 1:
        return None
    logger.info("User %s unlocked achievement %s", user_id, key)
    return {"key": key, "name": name, "earned_at": earned_at}


def _grant_xp(conn: sqlite3.Connection, user_id: int, amount: int, achievement: str | None = None) -> dict:
    """Add XP inside the caller's transaction and report level and achievement changes."""
    conn.execute("UPDATE users SET xp = xp + ? WHERE id = ?", (amount, user_id))
    row = conn.execute("SELECT xp FROM users WHERE id = ?", (user_id,)).fetchone()
    if row is None:
        raise AccountNotFound(f"No account with id {user_id}.")
    before = level_info(row["xp"] - amount).level
    after = level_info(row["xp"]).level

    keys = [achievement] if achievement else []
    keys += [f"level_{n}" for n in LEVEL_MILESTONES if before < n <= after]
    earned = []
    for key in keys:
        unlocked = _unlock(conn, user_id, key)
        if unlocked:
            earned.append(unlocked)
    if after > before:
        logger.info("User %s reached level %s", user_id, after)
    return {"level_up": after > before, "new_level": after, "achievements": earned}


def list_achievements(user_id: int) -> list[dict]:
    conn = get_conn()
    try:
        rows = conn.execute(
            "SELECT key, name, earned_at FROM achievements WHERE user_id = ? ORDER BY id DESC", (user_id,)
        ).fetchall()
        return [dict(r) for r in rows]
    finally:
        conn.close()


def _quest_payload(row: sqlite3.Row) -> dict:
    quest = dict(row)
    quest["completed"] = bool(quest["completed"])
    info = level_info(quest["xp"])
    quest["level"] = info.level
    quest["progress"] = info.progress
    quest["scaled_reps"] = scaled_value(quest["base_reps"], info.level)
    quest["scaled_duration"] = scaled_value(quest["base_duration"], info.level)
    return quest


def _fetch_quest(conn: sqlite3.Connection, where: str, params: tuple) -> sqlite3.Row | None:
    return conn.execute(
        f"SELECT q.*, u.xp AS xp FROM quests q JOIN users u ON q.user_id = u.id WHERE {where}",
        params,
    ).fetchone()


def get_or_create_quest(user_id: int, for_date: str, rng: random.Random | None = None) -> dict:
    conn = get_conn()
    try:
        row = _fetch_quest(conn, "q.user_id = ? AND q.quest_date = ?", (user_id, for_date))
        if row is None:
            if conn.execute("SELECT 1 FROM users WHERE id = ?", (user_id,)).fetchone() is None:
                raise AccountNotFound(f"No account with id {user_id}.")
            template = choose_template(rng or random.Random(), load_quest_pool())
            try:
                conn.execute(
                    """
                    INSERT INTO quests (user_id, title, description, base_reps, base_duration, quest_date, quote, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        user_id,
                        template["title"],
                        template["description"],
                        template["base_reps"],
                        template["base_duration"],
                        for_date,
                        template["quote"],
                        utc_now_iso(),
                    ),
                )
                conn.commit()
                logger.info("Assigned quest %r to user %s for %s", template["title"], user_id, for_date)
            except sqlite3.IntegrityError:
                conn.rollback()
                logger.warning("Quest for user %s on %s was created concurrently; reusing it", user_id, for_date)
            row = _fetch_quest(conn, "q.user_id = ? AND q.quest_date = ?", (user_id, for_date))
        assert row is not None
        return _quest_payload(row)
    finally:
        conn.close()


def get_today_quest(user_id: int, rng: random.Random | None = None, now: datetime | None = None) -> dict:
    now = now or local_now()
    return {"quest": get_or_create_quest(user_id, today_key(now), rng), "nextUnlock": next_unlock_ms(now)}


def _validate_quest_fields(fields: dict) -> dict:
    unknown = set(fields) - set(QUEST_EDITABLE_FIELDS)
    if unknown:
        raise QuestValidationError(f"Cannot edit quest fields: {', '.join(sorted(unknown))}.")
    if not fields:
        raise QuestValidationError("Nothing to update.")
    clean = {}
    for key, value in fields.items():
        if key in ("title", "description"):
            if not isinstance(value, str):
                raise QuestValidationError(f"{key} must be text.")
            value = value.strip()
            if key == "title" and not value:
                raise QuestValidationError("title must not be empty.")
        else:
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise QuestValidationError(f"{key} must be a positive whole number.")
        clean[key] = value
    return clean


def update_quest(user_id: int, quest_id: int, fields: dict) -> dict:
    clean = _validate_quest_fields(fields)
    # Column names come from QUEST_EDITABLE_FIELDS only.
    assignments = ", ".join(f"{key} = ?" for key in clean)
    conn = get_conn()
    try:
        cur = conn.execute(
            f"UPDATE quests SET {assignments} WHERE id = ? AND user_id = ?",
            (*clean.values(), quest_id, user_id),
        )
        if cur.rowcount == 0:
            raise QuestNotFound("quest not found")
        conn.commit()
        row = _fetch_quest(conn, "q.id = ?", (quest_id,))
        assert row is not None
        return _quest_payload(row)
    finally:
        conn.close()


def complete_quest(user_id: int, quest_id: int) -> dict:
    conn = get_conn()
    try:
        cur = conn.execute(
            "UPDATE quests SET completed = 1, completed_at = ? WHERE id = ? AND user_id = ? AND completed = 0",
            (utc_now_iso(), quest_id, user_id),
        )
        awarded = 0
        progress = None
        if cur.rowcount == 1:
            progress = _grant_xp(conn, user_id, QUEST_XP, "first_quest")
            awarded = QUEST_XP
        elif conn.execute("SELECT 1 FROM quests WHERE id = ? AND user_id = ?", (quest_id, user_id)).fetchone() is None:
            raise QuestNotFound("quest not found")
        conn.commit()
        if awarded:
            logger.info("User %s completed quest %s (+%s xp)", user_id, quest_id, awarded)
        row = _fetch_quest(conn, "q.id = ?", (quest_id,))
        assert row is not None
        quest = _quest_payload(row)
        if progress is None:
            progress = {"level_up": False, "new_level": quest["level"], "achievements": []}
        return {"quest": quest, "xp_awarded": awarded, "already_completed": not awarded, **progress}
    finally:
        conn.close()


def _non_negative(name: str, value: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError(f"{name} must be a non-negative whole number.")
    return value


def _required_name(name: str) -> str:
    name = (name or "").strip()
    if not name:
        raise ValidationError("name must not be empty.")
    return name


def workout_xp(sets: int, reps: int) -> int:
    return WORKOUT_BASE_XP + sets + reps // 10


def log_workout(user_id: int, name: str, sets: int = 0, reps: int = 0, duration: int = 0) -> dict:
    name = _required_name(name)
    sets, reps, duration = _non_negative("sets", sets), _non_negative("reps", reps), _non_negative("duration", duration)
    gained = workout_xp(sets, reps)
    conn = get_conn()
    try:
        cur = conn.execute(
            "INSERT INTO workouts (user_id, name, sets, reps, duration, log_date, created_at) VALUES (?, ?, ?, ?, ?, ?, ?)",
            (user_id, name, sets, reps, duration, today_key(), utc_now_iso()),
        )
        progress = _grant_xp(conn, user_id, gained, "first_workout")
        conn.commit()
        row = conn.execute("SELECT * FROM workouts WHERE id = ?", (cur.lastrowid,)).fetchone()
        assert row is not None
        return {**dict(row), "xp_gained": gained, **progress}
    finally:
        conn.close()


def log_meal(user_id: int, name: str, calories: int = 0) -> dict:
    name = _required_name(name)
    calories = _non_negative("calories", calories)
    conn = get_conn()
    try:
        cur = conn.execute(
            "INSERT INTO meals (user_id, name, calories, log_date, created_at) VALUES (?, ?, ?, ?, ?)",
            (user_id, name, calories, today_key(), utc_now_iso()),
        )
        progress = _grant_xp(conn, user_id, MEAL_XP, "first_meal")
        conn.commit()
        row = conn.execute("SELECT * FROM meals WHERE id = ?", (cur.lastrowid,)).fetchone()
        assert row is not None
        return {**dict(row), "xp_gained": MEAL_XP, **progress}
    finally:
        conn.close()


def list_workouts(user_id: int) -> list[dict]:
    conn = get_conn()
    try:
        rows = conn.execute(
            "SELECT * FROM workouts WHERE user_id = ? ORDER BY id DESC LIMIT ?", (user_id, HISTORY_LIMIT)
        ).fetchall()
        return [dict(r) for r in rows]
    finally:
        conn.close()


def list_meals(user_id: int) -> list[dict]:
    conn = get_conn()
    try:
        rows = conn.execute("SELECT * FROM meals WHERE user_id = ? ORDER BY id DESC LIMIT ?", (user_id, HISTORY_LIMIT)).fetchall()
        return [dict(r) for r in rows]
    finally:
        conn.close()
