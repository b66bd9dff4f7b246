from __future__ import annotations

import argparse
import getpass
import logging
import os
import shlex
import sys
import urllib.error
from datetime import datetime

from arise.api_client import DEFAULT_API, ApiError, AriseClient
from arise.gate import DEFAULT_SNOOZE_MINUTES, QuestNotificationGate
from arise.jobs.quest_reminder import send_quest_prompt
from arise.leveling import level_info
from arise.notifier import ConsoleNotifier
from arise.session import ActivityTimer, InvalidDuration, SessionAlreadyActive, SessionState, format_time_display, invalidate_unfinished
from arise.storage import AUTH_KEY, LocalStore, default_state_path


class NotLoggedIn(Exception):
    pass


def _progress_bar(progress: float, width: int = 24) -> str:
    filled = int(min(1.0, max(0.0, progress)) * width)
    return "[" + "#" * filled + "-" * (width - filled) + f"] {round(progress * 100)}%"


def _report_invalidated(record: dict) -> None:
    print(f"Previous {record.get('kind', 'activity')} was not completed and has been invalidated.")


def _authed(client: AriseClient, store: LocalStore) -> dict:
    session = store.get(AUTH_KEY) or {}
    if not session.get("token"):
        raise NotLoggedIn("Not logged in. Run `arise login` first.")
    client.token = session["token"]
    return session["user"]


def _save_session(store: LocalStore, result: dict) -> None:
    store.set(AUTH_KEY, {"token": result["token"], "user": result["user"]})
    QuestNotificationGate(store, lambda: None).signal_login()
    print(f"Logged in as {result['user']['username']}.")


def _password(args: argparse.Namespace) -> str:
    return args.password or getpass.getpass("Password: ")


def cmd_register(args, store, client) -> int:
    _save_session(store, client.register(args.username, _password(args)))
    return 0


def cmd_login(args, store, client) -> int:
    _save_session(store, client.login(args.username, _password(args)))
    return 0


def cmd_logout(args, store, client) -> int:
    store.delete(AUTH_KEY)
    print("Logged out.")
    return 0


def cmd_profile(args, store, client) -> int:
    _authed(client, store)
    user = client.profile()
    info = level_info(user["xp"])
    print(f"{user['username']}  Level {info.level}  {user['xp']} XP  streak {user['streak']}")
    print(_progress_bar(info.progress))
    return 0


def cmd_quest(args, store, client) -> int:
    _authed(client, store)
    result = client.today_quest()
    quest = result["quest"]
    status = "COMPLETE" if quest["completed"] else "open"
    print(f"#{quest['id']} {quest['title']} ({status})")
    if quest["description"]:
        print(quest["description"])
    print(f"Reps: {quest['scaled_reps']}  Duration: {quest['scaled_duration']}m  (level {quest['level']})")
    if quest["quote"]:
        print(f'"{quest["quote"]}"')
    remaining_ms = result["nextUnlock"] - int(datetime.now().timestamp() * 1000)
    print(f"Next quest unlocks in {format_time_display(remaining_ms)}")
    return 0


def cmd_quest_edit(args, store, client) -> int:
    _authed(client, store)
    fields = {k: v for k, v in {"title": args.title, "description": args.description, "base_reps": args.reps, "base_duration": args.duration}.items() if v is not None}
    quest_id = args.quest_id or client.today_quest()["quest"]["id"]
    quest = client.update_quest(quest_id, **fields)
    print(f"Updated quest #{quest['id']}: {quest['title']}")
    return 0


def _print_progress(result: dict) -> None:
    if result.get("level_up"):
        print(f"LEVEL UP! You reached level {result['new_level']}.")
    for achievement in result.get("achievements", []):
        print(f"Achievement unlocked: {achievement['name']}")


def _print_completion(result: dict) -> None:
    if result["already_completed"]:
        print("Quest was already completed.")
    else:
        print(f"Quest completed! +{result['xp_awarded']} xp")
        _print_progress(result)


def cmd_complete(args, store, client) -> int:
    _authed(client, store)
    quest_id = args.quest_id or client.today_quest()["quest"]["id"]
    _print_completion(client.complete_quest(quest_id))
    return 0


def cmd_workout(args, store, client) -> int:
    _authed(client, store)
    result = client.log_workout(args.name, args.sets, args.reps, args.duration)
    print(f"Logged {result['name']} (+{result['xp_gained']} xp)")
    _print_progress(result)
    return 0


def cmd_meal(args, store, client) -> int:
    _authed(client, store)
    result = client.log_meal(args.name, args.calories)
    print(f"Logged {result['name']} (+{result['xp_gained']} xp)")
    _print_progress(result)
    return 0


def cmd_achievements(args, store, client) -> int:
    _authed(client, store)
    unlocked = client.achievements()
    if not unlocked:
        print("No achievements yet.")
    for achievement in unlocked:
        print(f"{achievement['earned_at'][:10]}  {achievement['name']}")
    return 0


def _planned_minutes(session: dict) -> int:
    return max(1, round(session["estimated_duration"] / 60000))


def cmd_timer(args, store, client) -> int:
    _authed(client, store)
    if args.kind == "quest":
        target = args.quest_id or client.today_quest()["quest"]["id"]

        def retry_hint(session: dict) -> str:
            return f"arise complete --quest-id {target}"

        def on_complete(record: dict) -> None:
            _print_completion(client.complete_quest(target))

    else:
        if not args.name:
            print("A workout name is required (--name).")
            return 1
        target = args.name

        def on_complete(record: dict) -> None:
            result = client.log_workout(args.name, args.sets, args.reps, _planned_minutes(record))
            print(f"\nLogged {result['name']} (+{result['xp_gained']} xp)")
            _print_progress(result)

        def retry_hint(session: dict) -> str:
            return f"arise workout {shlex.quote(args.name)} --sets {args.sets} --reps {args.reps} --duration {_planned_minutes(session)}"

    timer = ActivityTimer(store, args.kind, target, on_complete, on_cancel=lambda record: print(f"\n{args.kind.capitalize()} cancelled."))
    try:
        session = timer.start(args.duration)
    except (InvalidDuration, SessionAlreadyActive) as exc:
        print(exc)
        return 1
    print(f"{args.kind.capitalize()} in progress. Keep this running until the timer completes (Ctrl+C cancels).")
    try:
        outcome = timer.run(on_tick=lambda ms: print(f"\r{format_time_display(ms)} ", end="", flush=True))
    except (ApiError, urllib.error.URLError):
        print(f"\nTimer finished but the result was not saved. Run `{retry_hint(session)}` to claim it.")
        raise
    if outcome is SessionState.INVALIDATED:
        print(f"\n{args.kind.capitalize()} was invalidated by another arise process; nothing was recorded.")
        return 1
    return 0


def cmd_notify(args, store, client) -> int:
    _authed(client, store)
    if not send_quest_prompt(store, client, ConsoleNotifier()):
        print("No quest prompt right now.")
    return 0


def cmd_remind_later(args, store, client) -> int:
    user = _authed(client, store)
    remind_at = QuestNotificationGate(store, client.today_quest).remind_later(user["id"], args.minutes)
    print(f"Will remind you at {datetime.fromtimestamp(remind_at / 1000):%H:%M}.")
    return 0


def cmd_serve(args, store, client) -> int:
    import uvicorn

    uvicorn.run("arise.main:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="arise", description="Daily quests, XP and timed workouts.")
    parser.add_argument("--api", default=os.environ.get("ARISE_API", DEFAULT_API), help="API base URL")
    parser.add_argument("--state", default=str(default_state_path()), help="Local state file")
    parser.add_argument("-v", "--verbose", action="store_true")
    sub = parser.add_subparsers(dest="command", required=True)

    for name, func in (("register", cmd_register), ("login", cmd_login)):
        p = sub.add_parser(name)
        p.add_argument("username")
        p.add_argument("--password")
        p.set_defaults(func=func)

    sub.add_parser("logout").set_defaults(func=cmd_logout)
    sub.add_parser("profile").set_defaults(func=cmd_profile)
    sub.add_parser("quest", help="Show today's quest").set_defaults(func=cmd_quest)
    sub.add_parser("achievements").set_defaults(func=cmd_achievements)

    p = sub.add_parser("quest-edit")
    p.add_argument("--quest-id", type=int)
    p.add_argument("--title")
    p.add_argument("--description")
    p.add_argument("--reps", type=int)
    p.add_argument("--duration", type=int)
    p.set_defaults(func=cmd_quest_edit)

    p = sub.add_parser("complete")
    p.add_argument("--quest-id", type=int)
    p.set_defaults(func=cmd_complete)

    p = sub.add_parser("workout")
    p.add_argument("name")
    p.add_argument("--sets", type=int, default=0)
    p.add_argument("--reps", type=int, default=0)
    p.add_argument("--duration", type=int, default=0)
    p.set_defaults(func=cmd_workout)

    p = sub.add_parser("meal")
    p.add_argument("name")
    p.add_argument("--calories", type=int, default=0)
    p.set_defaults(func=cmd_meal)

    p = sub.add_parser("timer", help="Time a workout or today's quest")
    p.add_argument("kind", choices=["workout", "quest"])
    p.add_argument("--duration", default="30", help="minutes, m:ss or h:mm:ss")
    p.add_argument("--quest-id", type=int)
    p.add_argument("--name")
    p.add_argument("--sets", type=int, default=0)
    p.add_argument("--reps", type=int, default=0)
    p.set_defaults(func=cmd_timer)

    sub.add_parser("notify", help="Show today's quest prompt if due").set_defaults(func=cmd_notify)

    p = sub.add_parser("remind-later")
    p.add_argument("--minutes", type=int, default=DEFAULT_SNOOZE_MINUTES)
    p.set_defaults(func=cmd_remind_later)

    p = sub.add_parser("serve", help="Run the API server")
    p.add_argument("--host", default="127.0.0.1")
    p.add_argument("--port", type=int, default=8000)
    p.add_argument("--reload", action="store_true")
    p.set_defaults(func=cmd_serve)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    store = LocalStore(args.state)
    client = AriseClient(args.api)
    invalidate_unfinished(store, on_cancel=_report_invalidated)
    try:
        return args.func(args, store, client)
    except NotLoggedIn as exc:
        print(exc)
        return 1
    except ApiError as exc:
        print(f"Error: {exc.message}")
        return 1
    except urllib.error.URLError as exc:
        print(f"Cannot reach {args.api}: {exc.reason}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
