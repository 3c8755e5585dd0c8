"""Client-side mirror of the principal's boards, lists and tasks.

``MirrorState`` is never mutated in place. Every reducer takes the current
state plus a server response and returns a new state, re-sorting the tasks of
each touched list newest first.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Callable, Iterable, List, Optional

from .schemas import BoardOut, ListOut, Priority, TaskOut, UserOut


@dataclass(frozen=True)
class MirrorState:
    principal: Optional[UserOut] = None
    boards: List[BoardOut] = field(default_factory=list)
    lists: List[ListOut] = field(default_factory=list)
    tasks: List[TaskOut] = field(default_factory=list)
    current_board_id: Optional[str] = None
    error: Optional[str] = None

    @property
    def principal_id(self) -> Optional[str]:
        return self.principal.id if self.principal else None

    @property
    def current_board(self) -> Optional[BoardOut]:
        return next((b for b in self.boards if b.id == self.current_board_id), None)


def sort_tasks(tasks: Iterable[TaskOut]) -> List[TaskOut]:
    return sorted(tasks, key=lambda t: t.createdAt, reverse=True)


def _map_lists(
    state: MirrorState, fn: Callable[[ListOut], Optional[ListOut]]
) -> tuple[List[BoardOut], List[ListOut]]:
    """Apply ``fn`` to every list, both nested in boards and in the flat view.

    ``fn`` returns the replacement list, or ``None`` to drop it.
    """

    def apply(lists: Iterable[ListOut]) -> List[ListOut]:
        out = []
        for task_list in lists:
            new = fn(task_list)
            if new is not None:
                out.append(new)
        return out

    boards = [b.model_copy(update={"lists": apply(b.lists)}) for b in state.boards]
    return boards, apply(state.lists)


def _with_tasks(task_list: ListOut, tasks: Iterable[TaskOut]) -> ListOut:
    return task_list.model_copy(update={"tasks": sort_tasks(tasks)})


# === Principal and full loads ===


def cleared(principal: Optional[UserOut] = None) -> MirrorState:
    return MirrorState(principal=principal)


def loaded(state: MirrorState, response: dict) -> MirrorState:
    """Replace the whole mirror with a ``GET /api/boards`` response."""
    owner = state.principal_id
    boards: List[BoardOut] = []
    lists: List[ListOut] = []
    tasks: List[TaskOut] = []
    for raw in response.get("boards") or []:
        board = BoardOut.model_validate(raw)
        if board.userId != owner:
            continue
        board_lists = []
        for task_list in board.lists:
            own = [t for t in task_list.tasks if t.userId == owner]
            task_list = _with_tasks(task_list, own)
            board_lists.append(task_list)
            lists.append(task_list)
            tasks.extend(task_list.tasks)
        boards.append(board.model_copy(update={"lists": board_lists}))

    current = state.current_board_id
    if current not in {b.id for b in boards}:
        current = boards[0].id if boards else None
    return replace(
        state,
        boards=boards,
        lists=lists,
        tasks=tasks,
        current_board_id=current,
        error=None,
    )


def with_error(state: MirrorState, message: Optional[str]) -> MirrorState:
    return replace(state, error=message)


# === Task reducers ===


def task_created(state: MirrorState, response: dict) -> MirrorState:
    task = TaskOut.model_validate(response["task"])

    def add(task_list: ListOut) -> ListOut:
        if task_list.id != task.listId:
            return task_list
        return _with_tasks(task_list, [*task_list.tasks, task])

    boards, lists = _map_lists(state, add)
    return replace(state, boards=boards, lists=lists, tasks=[*state.tasks, task])


def task_updated(state: MirrorState, response: dict) -> MirrorState:
    updated = TaskOut.model_validate(response["task"])

    def swap(task: TaskOut) -> TaskOut:
        return updated if task.id == updated.id else task

    def patch(task_list: ListOut) -> ListOut:
        if not any(t.id == updated.id for t in task_list.tasks):
            return task_list
        return _with_tasks(task_list, [swap(t) for t in task_list.tasks])

    boards, lists = _map_lists(state, patch)
    return replace(state, boards=boards, lists=lists, tasks=[swap(t) for t in state.tasks])


def task_deleted(state: MirrorState, task_id: str) -> MirrorState:
    def drop(task_list: ListOut) -> ListOut:
        if not any(t.id == task_id for t in task_list.tasks):
            return task_list
        return task_list.model_copy(
            update={"tasks": [t for t in task_list.tasks if t.id != task_id]}
        )

    boards, lists = _map_lists(state, drop)
    tasks = [t for t in state.tasks if t.id != task_id]
    return replace(state, boards=boards, lists=lists, tasks=tasks)


def task_moved(state: MirrorState, response: dict) -> MirrorState:
    """Move a task to the list named by the response's ``listId``.

    Only the task's list reference changes; every other task keeps its place.
    """
    moved = TaskOut.model_validate(response["task"])

    def relocate(task_list: ListOut) -> ListOut:
        others = [t for t in task_list.tasks if t.id != moved.id]
        if task_list.id == moved.listId:
            return _with_tasks(task_list, [*others, moved])
        if len(others) != len(task_list.tasks):
            return task_list.model_copy(update={"tasks": others})
        return task_list

    boards, lists = _map_lists(state, relocate)
    tasks = [moved if t.id == moved.id else t for t in state.tasks]
    return replace(state, boards=boards, lists=lists, tasks=tasks)


# === List reducers ===


def list_created(state: MirrorState, response: dict) -> MirrorState:
    new_list = ListOut.model_validate(response["list"]).model_copy(update={"tasks": []})
    boards = [
        b.model_copy(update={"lists": [*b.lists, new_list]}) if b.id == new_list.boardId else b
        for b in state.boards
    ]
    return replace(state, boards=boards, lists=[*state.lists, new_list])


def list_updated(state: MirrorState, response: dict) -> MirrorState:
    changes = ListOut.model_validate(response["list"]).model_dump(exclude={"tasks"})

    def patch(task_list: ListOut) -> ListOut:
        if task_list.id != changes["id"]:
            return task_list
        return task_list.model_copy(update=changes)

    boards, lists = _map_lists(state, patch)
    return replace(state, boards=boards, lists=lists)


def list_deleted(state: MirrorState, list_id: str) -> MirrorState:
    boards, lists = _map_lists(state, lambda tl: None if tl.id == list_id else tl)
    tasks = [t for t in state.tasks if t.listId != list_id]
    return replace(state, boards=boards, lists=lists, tasks=tasks)


# === Board reducers ===


def board_updated(state: MirrorState, response: dict) -> MirrorState:
    updated = BoardOut.model_validate(response["board"])
    changes = {"title": updated.title, "updatedAt": updated.updatedAt}
    boards = [
        b.model_copy(update=changes) if b.id == updated.id else b for b in state.boards
    ]
    return replace(state, boards=boards)


def board_deleted(state: MirrorState, board_id: str) -> MirrorState:
    gone = {tl.id for tl in state.lists if tl.boardId == board_id}
    current = None if state.current_board_id == board_id else state.current_board_id
    return replace(
        state,
        boards=[b for b in state.boards if b.id != board_id],
        lists=[tl for tl in state.lists if tl.boardId != board_id],
        tasks=[t for t in state.tasks if t.listId not in gone],
        current_board_id=current,
    )


def board_selected(state: MirrorState, board_id: str) -> MirrorState:
    if not any(b.id == board_id for b in state.boards):
        return state
    return replace(state, current_board_id=board_id)


# === Derived views ===


def _own(state: MirrorState, tasks: Iterable[TaskOut]) -> List[TaskOut]:
    owner = state.principal_id
    return [t for t in tasks if owner is not None and t.userId == owner]


def visible_tasks(state: MirrorState) -> List[TaskOut]:
    return sort_tasks(_own(state, state.tasks))


def tasks_by_list(state: MirrorState, list_id: str) -> List[TaskOut]:
    task_list = next((tl for tl in state.lists if tl.id == list_id), None)
    return _own(state, task_list.tasks) if task_list else []


def tasks_by_board(state: MirrorState, board_id: str) -> List[TaskOut]:
    board = next((b for b in state.boards if b.id == board_id), None)
    if board is None:
        return []
    return [t for tl in board.lists for t in _own(state, tl.tasks)]


def search_tasks(state: MirrorState, query: str) -> List[TaskOut]:
    needle = query.lower()
    return [
        t
        for t in _own(state, state.tasks)
        if needle in t.title.lower() or needle in (t.description or "").lower()
    ]


def tasks_by_tag(state: MirrorState, tag: str) -> List[TaskOut]:
    return [t for t in _own(state, state.tasks) if tag in t.tags]


def tasks_by_priority(state: MirrorState, priority: Priority) -> List[TaskOut]:
    return [t for t in _own(state, state.tasks) if t.priority == priority]
