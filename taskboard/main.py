import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import urlencode

from fastapi import Cookie, Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from . import config, oauth
from .auth import create_token, get_current_user, hash_password, require_admin, verify_password
from .db import Board, SessionLocal, Task, TaskList, User, get_db, init_db
from .errors import (
    Conflict,
    Forbidden,
    NotFound,
    Unauthenticated,
    ValidationError,
    install_error_handlers,
)
from .ownership import BOARD, LIST, owned_board, owned_list, owned_task
from .schemas import (
    BoardIn,
    BoardOut,
    BoardPatch,
    ListIn,
    ListOut,
    ListPatch,
    LoginIn,
    RegisterIn,
    RoleIn,
    StatsOut,
    TaskIn,
    TaskMove,
    TaskOut,
    TaskPatch,
    UserOut,
)
from .storage import Storage
from .utils import is_valid_email, normalize_email

logger = logging.getLogger(__name__)


def seed_admin(db: Session) -> Optional[User]:
    """Create the default admin account when the user table is empty."""
    storage = Storage(db)
    if storage.count_users() > 0:
        return None
    admin = storage.create_user(
        name="Admin",
        email=normalize_email(config.SEED_ADMIN_EMAIL),
        password_hash=hash_password(config.SEED_ADMIN_PASSWORD),
        role="admin",
    )
    logger.info("Seeded default admin: %s", admin.email)
    return admin


@asynccontextmanager
async def lifespan(app: FastAPI):
    config.configure_logging()
    init_db()
    db = SessionLocal()
    try:
        seed_admin(db)
    finally:
        db.close()
    yield


app = FastAPI(title="Taskboard API", version="1.0.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
install_error_handlers(app)


# === Helpers ===


def user_out(user: User) -> UserOut:
    return UserOut(
        id=user.id,
        name=user.name,
        email=user.email,
        role=user.role,
        createdAt=user.created_at,
    )


def auth_out(user: User) -> dict:
    return {"token": create_token(user), "user": user_out(user)}


def task_out(task: Task) -> TaskOut:
    return TaskOut(
        id=task.id,
        title=task.title,
        description=task.description or "",
        listId=task.list_id,
        userId=task.user_id,
        completed=task.completed,
        priority=task.priority,
        dueDate=task.due_date,
        tags=list(task.tags or []),
        createdAt=task.created_at,
        updatedAt=task.updated_at,
    )


def list_out(task_list: TaskList, owner_id: Optional[str] = None) -> ListOut:
    if owner_id is None:
        owner_id = task_list.board.user_id
    return ListOut(
        id=task_list.id,
        title=task_list.title,
        boardId=task_list.board_id,
        color=task_list.color,
        order=task_list.order,
        tasks=[task_out(t) for t in task_list.tasks if t.user_id == owner_id],
        createdAt=task_list.created_at,
        updatedAt=task_list.updated_at,
    )


def board_out(board: Board) -> BoardOut:
    return BoardOut(
        id=board.id,
        title=board.title,
        userId=board.user_id,
        lists=[list_out(tl, board.user_id) for tl in board.lists],
        createdAt=board.created_at,
        updatedAt=board.updated_at,
    )


def check_principal(user: User, supplied_user_id: Optional[str], what: str) -> None:
    if supplied_user_id is not None and supplied_user_id != user.id:
        raise Forbidden(f"Cannot create {what} for different user")


# === Health ===


@app.get("/api/health")
def health() -> dict:
    return {
        "ok": True,
        "service": "taskboard-backend",
        "time": datetime.now(timezone.utc).isoformat(),
    }


# === Auth endpoints ===


@app.post("/api/auth/register", status_code=201)
@app.post("/api/auth/signup", status_code=201, include_in_schema=False)
def register(payload: RegisterIn, db: Session = Depends(get_db)):
    email = normalize_email(payload.email)
    if not is_valid_email(email):
        raise ValidationError("Invalid email format")
    if len(payload.password) < 6:
        raise ValidationError("Password must be at least 6 characters long")
    storage = Storage(db)
    if storage.get_user_by_email(email):
        raise Conflict("Email is already registered")
    role = "admin" if storage.count_users() == 0 else "user"
    name = (payload.name or "").strip() or email.split("@")[0]
    user = storage.create_user(name, email, hash_password(payload.password), role)
    return auth_out(user)


@app.post("/api/auth/login")
def login(payload: LoginIn, db: Session = Depends(get_db)):
    user = Storage(db).get_user_by_email(normalize_email(payload.email))
    if user is None or not verify_password(payload.password, user.password_hash):
        raise Unauthenticated("Invalid credentials")
    logger.debug("User %s signed in", user.id)
    return auth_out(user)


@app.get("/api/auth/me")
def me(user: User = Depends(get_current_user)):
    return {"user": user_out(user)}


@app.get("/api/auth/google")
def google_login():
    state, cookie = oauth.new_state()
    response = RedirectResponse(oauth.authorization_url(state))
    response.set_cookie(
        oauth.STATE_COOKIE,
        cookie,
        max_age=oauth.STATE_MAX_AGE,
        path="/api/auth/google",
        httponly=True,
        samesite="lax",
    )
    return response


def _oauth_redirect(url: str) -> RedirectResponse:
    response = RedirectResponse(url)
    response.delete_cookie(oauth.STATE_COOKIE, path="/api/auth/google")
    return response


@app.get("/api/auth/google/callback")
def google_callback(
    code: Optional[str] = None,
    error: Optional[str] = None,
    state: Optional[str] = None,
    oauth_state: Optional[str] = Cookie(default=None),
    db: Session = Depends(get_db),
):
    failure = f"{config.FRONTEND_URL}/login?error=oauth_failed"
    if error or not code:
        logger.warning("Google callback without code (error=%s)", error)
        return _oauth_redirect(failure)
    if not oauth.state_matches(state, oauth_state):
        logger.warning("Google callback with missing or mismatched state")
        return _oauth_redirect(failure)
    try:
        profile = oauth.fetch_profile(code)
    except Unauthenticated:
        return _oauth_redirect(failure)

    storage = Storage(db)
    email = normalize_email(profile["email"])
    user = storage.get_user_by_google_id(profile["sub"])
    if user is None:
        user = storage.get_user_by_email(email)
        if user is not None:
            user.google_id = profile["sub"]
            db.commit()
            db.refresh(user)
        else:
            role = "admin" if storage.count_users() == 0 else "user"
            name = profile.get("name") or email.split("@")[0]
            user = storage.create_user(name, email, role=role, google_id=profile["sub"])

    user_json = user_out(user).model_dump_json(exclude={"createdAt"})
    query = urlencode({"token": create_token(user), "user": user_json})
    return _oauth_redirect(f"{config.FRONTEND_URL}/auth/callback?{query}")


# === User administration ===


@app.get("/api/users")
@app.get("/api/admin/users", include_in_schema=False)
def list_users(admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    logger.debug("Admin %s listing all users", admin.id)
    return {"users": [user_out(u) for u in Storage(db).list_users()]}


@app.delete("/api/users/{user_id}")
def delete_user(user_id: str, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    target = db.get(User, user_id)
    if target is None:
        raise NotFound("User not found")
    if target.email == normalize_email(config.SEED_ADMIN_EMAIL):
        logger.warning("Admin %s attempted to delete the seed admin", admin.id)
        raise Forbidden("The default admin account cannot be deleted")
    if target.id == admin.id:
        logger.warning("Admin %s attempted to delete their own account", admin.id)
        raise Forbidden("You cannot delete your own account")
    Storage(db).delete_user(target)
    return {"ok": True}


@app.put("/api/users/{user_id}/role")
@app.post("/api/admin/users/{user_id}/role", include_in_schema=False)
def change_role(
    user_id: str,
    payload: RoleIn,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    target = db.get(User, user_id)
    if target is None:
        raise NotFound("User not found")
    if target.email == normalize_email(config.SEED_ADMIN_EMAIL) and payload.role != "admin":
        raise Forbidden("The default admin account cannot be demoted")
    target = Storage(db).set_role(target, payload.role)
    logger.info("Admin %s set role of %s to %s", admin.id, target.id, target.role)
    return {"user": user_out(target)}


@app.get("/api/admin/stats")
def admin_stats(admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    return {"stats": StatsOut(**Storage(db).stats())}


# === Board endpoints ===


@app.get("/api/boards")
def list_boards(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    boards = Storage(db).list_boards_for_user(user.id)
    return {"boards": [board_out(b) for b in boards]}


@app.post("/api/boards", status_code=201)
def create_board(
    payload: BoardIn,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    check_principal(user, payload.userId, "board")
    board = Storage(db).create_board(user, payload.title)
    return {"board": board_out(board)}


@app.get("/api/boards/{board_id}")
def get_board(board: Board = Depends(owned_board)):
    return {"board": board_out(board)}


@app.put("/api/boards/{board_id}")
def update_board(
    payload: BoardPatch,
    board: Board = Depends(owned_board),
    db: Session = Depends(get_db),
):
    board = Storage(db).update_board(board, payload.title)
    return {"board": board_out(board)}


@app.delete("/api/boards/{board_id}")
def delete_board(board: Board = Depends(owned_board), db: Session = Depends(get_db)):
    Storage(db).delete_board(board)
    return {"ok": True}


# === List endpoints ===


@app.get("/api/lists")
def list_lists(
    boardId: Optional[str] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    storage = Storage(db)
    if boardId is not None:
        boards = [BOARD.load(db, boardId, user)]
    else:
        boards = storage.list_boards_for_user(user.id)
    lists = [tl for board in boards for tl in storage.lists_for_board(board)]
    return {"lists": [list_out(tl, user.id) for tl in lists]}


@app.post("/api/lists", status_code=201)
def create_list(
    payload: ListIn,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    board = BOARD.load(db, payload.boardId, user)
    task_list = Storage(db).create_list(board, payload.title, payload.color, payload.order)
    return {"list": list_out(task_list)}


@app.put("/api/lists/{list_id}")
def update_list(
    payload: ListPatch,
    task_list: TaskList = Depends(owned_list),
    db: Session = Depends(get_db),
):
    task_list = Storage(db).update_list(task_list, payload.model_dump(exclude_unset=True))
    return {"list": list_out(task_list)}


@app.delete("/api/lists/{list_id}")
def delete_list(task_list: TaskList = Depends(owned_list), db: Session = Depends(get_db)):
    Storage(db).delete_list(task_list)
    return {"ok": True}


# === Task endpoints ===


@app.get("/api/tasks")
def list_tasks(
    listId: Optional[str] = None,
    boardId: Optional[str] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if listId is not None:
        LIST.load(db, listId, user)
    if boardId is not None:
        BOARD.load(db, boardId, user)
    tasks = Storage(db).tasks_for_user(user.id, list_id=listId, board_id=boardId)
    return {"tasks": [task_out(t) for t in tasks]}


@app.post("/api/tasks", status_code=201)
def create_task(
    payload: TaskIn,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    check_principal(user, payload.userId, "task")
    task_list = LIST.load(db, payload.listId, user)
    task = Storage(db).create_task(task_list, user.id, payload.model_dump())
    return {"task": task_out(task)}


@app.put("/api/tasks/{task_id}")
def update_task(
    payload: TaskPatch,
    task: Task = Depends(owned_task),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    task = Storage(db).update_task(task.id, user.id, payload.model_dump(exclude_unset=True))
    return {"task": task_out(task)}


@app.put("/api/tasks/{task_id}/move")
def move_task(
    payload: TaskMove,
    task: Task = Depends(owned_task),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    to_list = LIST.load(db, payload.listId, user)
    task = Storage(db).move_task(task.id, user.id, to_list)
    return {"task": task_out(task)}


@app.delete("/api/tasks/{task_id}")
def delete_task(
    task: Task = Depends(owned_task),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    Storage(db).delete_task(task.id, user.id)
    return {"ok": True}
