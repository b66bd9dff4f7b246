from __future__ import annotations

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from arise import auth
from arise.db import (
    AccountNotFound,
    QuestNotFound,
    UsernameTaken,
    ValidationError,
    complete_quest,
    create_user,
    get_credentials,
    get_today_quest,
    get_user,
    init_db,
    list_achievements,
    list_meals,
    list_workouts,
    log_meal,
    log_workout,
    update_quest,
)

app = FastAPI(title="Arise")


class Credentials(BaseModel):
    username: str = ""
    password: str = ""


class WorkoutIn(BaseModel):
    name: str
    sets: int = 0
    reps: int = 0
    duration: int = 0


class MealIn(BaseModel):
    name: str
    calories: int = 0


class QuestUpdate(BaseModel):
    title: str | None = None
    description: str | None = None
    base_reps: int | None = None
    base_duration: int | None = None


@app.on_event("startup")
def startup() -> None:
    init_db()


@app.exception_handler(QuestNotFound)
async def quest_not_found(request: Request, exc: QuestNotFound) -> JSONResponse:
    return JSONResponse({"detail": str(exc)}, status_code=404)


@app.exception_handler(ValidationError)
async def validation_failed(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse({"detail": str(exc)}, status_code=400)


def current_user_id(authorization: str | None = Header(default=None)) -> int:
    if not authorization:
        raise HTTPException(status_code=401, detail="missing auth")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer":
        raise HTTPException(status_code=401, detail="invalid token")
    try:
        claims = auth.verify_token(token.strip())
    except auth.InvalidToken as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc
    return claims["sub"]


def _session_response(user: dict) -> dict:
    return {"token": auth.issue_token(user["id"], user["username"]), "user": user}


@app.post("/api/register")
def register(body: Credentials) -> dict:
    try:
        auth.validate_registration(body.username, body.password)
        user = create_user(body.username, auth.hash_password(body.password))
    except (auth.RegistrationError, UsernameTaken) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _session_response(user)


@app.post("/api/login")
def login(body: Credentials) -> dict:
    creds = get_credentials(body.username)
    if creds is None or not auth.verify_password(body.password, creds["password_hash"]):
        raise HTTPException(status_code=400, detail="invalid credentials")
    return _session_response(get_user(creds["id"]))


@app.get("/api/profile")
def profile(user_id: int = Depends(current_user_id)) -> dict:
    try:
        return {"user": get_user(user_id)}
    except AccountNotFound as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc


@app.post("/api/workouts")
def add_workout(body: WorkoutIn, user_id: int = Depends(current_user_id)) -> dict:
    return log_workout(user_id, body.name, body.sets, body.reps, body.duration)


@app.get("/api/workouts")
def workouts(user_id: int = Depends(current_user_id)) -> dict:
    return {"workouts": list_workouts(user_id)}


@app.post("/api/meals")
def add_meal(body: MealIn, user_id: int = Depends(current_user_id)) -> dict:
    return log_meal(user_id, body.name, body.calories)


@app.get("/api/meals")
def meals(user_id: int = Depends(current_user_id)) -> dict:
    return {"meals": list_meals(user_id)}


@app.get("/api/achievements")
def achievements(user_id: int = Depends(current_user_id)) -> dict:
    return {"achievements": list_achievements(user_id)}


@app.get("/api/quests/today")
def today_quest(user_id: int = Depends(current_user_id)) -> dict:
    try:
        return get_today_quest(user_id)
    except AccountNotFound as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc


@app.put("/api/quests/{quest_id}")
def edit_quest(quest_id: int, body: QuestUpdate, user_id: int = Depends(current_user_id)) -> dict:
    return {"quest": update_quest(user_id, quest_id, body.model_dump(exclude_none=True))}


@app.post("/api/quests/{quest_id}/complete")
def finish_quest(quest_id: int, user_id: int = Depends(current_user_id)) -> dict:
    return complete_quest(user_id, quest_id)
