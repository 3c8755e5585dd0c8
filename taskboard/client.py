"""HTTP client and mirror-keeping store for the taskboard API."""

from __future__ import annotations

import logging
from typing import Any, Callable, List, Optional

import httpx

from . import mirror
from .mirror import MirrorState
from .schemas import Priority, TaskOut, UserOut

logger = logging.getLogger(__name__)


class ClientValidationError(Exception):
    """Raised before any request is sent when local checks fail."""


class ApiRequestError(Exception):
    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class ApiClient:
    """Thin JSON wrapper around an ``httpx.Client``.

    Pass ``http`` to reuse an existing client (for instance FastAPI's
    ``TestClient``); otherwise one is created against ``base_url``.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:4000",
        token: Optional[str] = None,
        http: Optional[httpx.Client] = None,
    ) -> None:
        self.http = http or httpx.Client(base_url=base_url)
        self.token = token

    def close(self) -> None:
        self.http.close()

    def request(self, method: str, path: str, json: Any = None, auth: bool = True) -> dict:
        headers = {"Content-Type": "application/json"}
        if auth:
            if not self.token:
                raise ClientValidationError("No authentication token")
            headers["Authorization"] = f"Bearer {self.token}"
        logger.debug("%s %s", method, path)
        response = self.http.request(method, f"/api{path}", json=json, headers=headers)
        if response.is_error:
            try:
                message = response.json().get("error")
            except ValueError:
                message = None
            raise ApiRequestError(message or "API request failed", response.status_code)
        return response.json()

    # === Auth ===
    def login(self, email: str, password: str) -> dict:
        data = self.request("POST", "/auth/login", {"email": email, "password": password}, auth=False)
        self.token = data["token"]
        return data

    def register(self, name: str, email: str, password: str) -> dict:
        body = {"name": name, "email": email, "password": password}
        data = self.request("POST", "/auth/register", body, auth=False)
        self.token = data["token"]
        return data

    def me(self) -> dict:
        return self.request("GET", "/auth/me")

    # === Boards ===
    def list_boards(self) -> dict:
        return self.request("GET", "/boards")

    def create_board(self, body: dict) -> dict:
        return self.request("POST", "/boards", body)

    def update_board(self, board_id: str, body: dict) -> dict:
        return self.request("PUT", f"/boards/{board_id}", body)

    def delete_board(self, board_id: str) -> dict:
        return self.request("DELETE", f"/boards/{board_id}")

    # === Lists ===
    def create_list(self, body: dict) -> dict:
        return self.request("POST", "/lists", body)

    def update_list(self, list_id: str, body: dict) -> dict:
        return self.request("PUT", f"/lists/{list_id}", body)

    def delete_list(self, list_id: str) -> dict:
        return self.request("DELETE", f"/lists/{list_id}")

    # === Tasks ===
    def create_task(self, body: dict) -> dict:
        return self.request("POST", "/tasks", body)

    def update_task(self, task_id: str, body: dict) -> dict:
        return self.request("PUT", f"/tasks/{task_id}", body)

    def move_task(self, task_id: str, list_id: str) -> dict:
        return self.request("PUT", f"/tasks/{task_id}/move", {"listId": list_id})

    def delete_task(self, task_id: str) -> dict:
        return self.request("DELETE", f"/tasks/{task_id}")

    # === Admin ===
    def list_users(self) -> dict:
        return self.request("GET", "/users")

    def delete_user(self, user_id: str) -> dict:
        return self.request("DELETE", f"/users/{user_id}")

    def stats(self) -> dict:
        return self.request("GET", "/admin/stats")


class TaskStore:
    """Keeps a ``MirrorState`` in step with the server.

    Every mutation validates locally, calls the API, then folds the response
    into the mirror through the matching reducer. Failures are recorded on
    ``state.error`` and re-raised.
    """

    def __init__(self, api: ApiClient) -> None:
        self.api = api
        self.state = MirrorState()

    # === Principal ===
    def set_principal(self, user: Optional[dict | UserOut], token: Optional[str] = None) -> MirrorState:
        if token is not None:
            self.api.token = token
        if user is None:
            return self.sign_out()
        principal = UserOut.model_validate(user)
        if principal.id != self.state.principal_id:
            self.state = mirror.cleared(principal)
            self.reload()
        return self.state

    def sign_in(self, email: str, password: str) -> MirrorState:
        data = self.api.login(email, password)
        return self.set_principal(data["user"])

    def sign_up(self, name: str, email: str, password: str) -> MirrorState:
        data = self.api.register(name, email, password)
        return self.set_principal(data["user"])

    def sign_out(self) -> MirrorState:
        self.api.token = None
        self.state = mirror.cleared()
        return self.state

    def reload(self) -> MirrorState:
        if self.state.principal is None:
            logger.debug("No principal, skipping board load")
            return self.state
        return self._run("load boards", lambda: mirror.loaded(self.state, self.api.list_boards()))

    def select_board(self, board_id: str) -> MirrorState:
        self.state = mirror.board_selected(self.state, board_id)
        return self.state

    # === Tasks ===
    def create_task(
        self,
        title: str,
        list_id: str,
        user_id: Optional[str] = None,
        description: str = "",
        priority: Priority = "medium",
        completed: bool = False,
        due_date: Optional[str] = None,
        tags: Optional[List[str]] = None,
    ) -> TaskOut:
        def call() -> MirrorState:
            owner = user_id if user_id is not None else self.state.principal_id
            self._check_principal(owner, "Cannot create task for different user")
            if not title or not title.strip():
                raise ClientValidationError("Task title is required")
            if not list_id or not list_id.strip():
                raise ClientValidationError("Task listId is required")
            body = {
                "title": title.strip(),
                "description": description or "",
                "listId": list_id.strip(),
                "userId": owner,
                "priority": priority or "medium",
                "completed": completed,
                "dueDate": due_date,
                "tags": tags or [],
            }
            response = self.api.create_task(body)
            self._check_returned(response["task"], "Created task does not belong to current user")
            return mirror.task_created(self.state, response)

        self._run("create task", call)
        return self.state.tasks[-1]

    def update_task(self, task_id: str, **updates: Any) -> MirrorState:
        def call() -> MirrorState:
            self._check_owned_task(task_id, "Cannot update task that does not belong to current user")
            response = self.api.update_task(task_id, updates)
            self._check_returned(response["task"], "Updated task does not belong to current user")
            return mirror.task_updated(self.state, response)

        return self._run("update task", call)

    def delete_task(self, task_id: str) -> MirrorState:
        def call() -> MirrorState:
            self._check_owned_task(task_id, "Cannot delete task that does not belong to current user")
            self.api.delete_task(task_id)
            return mirror.task_deleted(self.state, task_id)

        return self._run("delete task", call)

    def move_task(self, task_id: str, to_list_id: str) -> MirrorState:
        def call() -> MirrorState:
            self._check_owned_task(task_id, "Cannot move task that does not belong to current user")
            response = self.api.move_task(task_id, to_list_id)
            return mirror.task_moved(self.state, response)

        return self._run("move task", call)

    def toggle_completion(self, task_id: str) -> MirrorState:
        task = next((t for t in self.state.tasks if t.id == task_id), None)
        if task is None:
            self.state = mirror.with_error(self.state, "Task not found")
            raise ClientValidationError("Task not found")
        return self.update_task(task_id, completed=not task.completed)

    # === Lists ===
    def create_list(
        self,
        title: str,
        board_id: str,
        color: Optional[str] = None,
        order: Optional[int] = None,
    ) -> MirrorState:
        def call() -> MirrorState:
            if not title or not title.strip():
                raise ClientValidationError("List title is required")
            body = {"title": title.strip(), "boardId": board_id, "color": color, "order": order}
            return mirror.list_created(self.state, self.api.create_list(body))

        return self._run("create list", call)

    def update_list(self, list_id: str, **updates: Any) -> MirrorState:
        return self._run(
            "update list",
            lambda: mirror.list_updated(self.state, self.api.update_list(list_id, updates)),
        )

    def delete_list(self, list_id: str) -> MirrorState:
        def call() -> MirrorState:
            self.api.delete_list(list_id)
            return mirror.list_deleted(self.state, list_id)

        return self._run("delete list", call)

    # === Boards ===
    def create_board(self, title: str, user_id: Optional[str] = None) -> MirrorState:
        def call() -> MirrorState:
            owner = user_id if user_id is not None else self.state.principal_id
            self._check_principal(owner, "Cannot create board for different user")
            if not title or not title.strip():
                raise ClientValidationError("Board title is required")
            self.api.create_board({"title": title.strip(), "userId": owner})
            # default lists are created server side, so fetch everything again
            return mirror.loaded(self.state, self.api.list_boards())

        return self._run("create board", call)

    def update_board(self, board_id: str, **updates: Any) -> MirrorState:
        return self._run(
            "update board",
            lambda: mirror.board_updated(self.state, self.api.update_board(board_id, updates)),
        )

    def delete_board(self, board_id: str) -> MirrorState:
        def call() -> MirrorState:
            self.api.delete_board(board_id)
            return mirror.board_deleted(self.state, board_id)

        return self._run("delete board", call)

    # === Views ===
    @property
    def tasks(self) -> List[TaskOut]:
        return mirror.visible_tasks(self.state)

    def tasks_by_list(self, list_id: str) -> List[TaskOut]:
        return mirror.tasks_by_list(self.state, list_id)

    def tasks_by_board(self, board_id: str) -> List[TaskOut]:
        return mirror.tasks_by_board(self.state, board_id)

    def search_tasks(self, query: str) -> List[TaskOut]:
        return mirror.search_tasks(self.state, query)

    def tasks_by_tag(self, tag: str) -> List[TaskOut]:
        return mirror.tasks_by_tag(self.state, tag)

    def tasks_by_priority(self, priority: Priority) -> List[TaskOut]:
        return mirror.tasks_by_priority(self.state, priority)

    # === Internals ===
    def _run(self, action: str, call: Callable[[], MirrorState]) -> MirrorState:
        try:
            new_state = call()
        except (ClientValidationError, ApiRequestError) as exc:
            logger.warning("Failed to %s: %s", action, exc)
            self.state = mirror.with_error(self.state, str(exc))
            raise
        self.state = new_state
        return self.state

    def _check_principal(self, user_id: Optional[str], message: str) -> None:
        if self.state.principal is None:
            raise ClientValidationError("Not signed in")
        if not user_id or user_id != self.state.principal_id:
            raise ClientValidationError(message)

    def _check_owned_task(self, task_id: str, message: str) -> None:
        existing = next((t for t in self.state.tasks if t.id == task_id), None)
        if existing is not None and existing.userId != self.state.principal_id:
            raise ClientValidationError(message)

    def _check_returned(self, task: dict, message: str) -> None:
        if task.get("userId") != self.state.principal_id:
            raise ClientValidationError(message)
