"""Ownership resolution for boards, lists and tasks.

Each resource kind knows how to find the user that transitively owns one of
its rows. Nothing is cached: every request walks the chain again.

A resource that exists but belongs to someone else is reported exactly like a
missing one, so callers cannot probe for ids they do not own.
"""

from __future__ import annotations

import logging
from typing import Generic, TypeVar

from fastapi import Depends
from sqlalchemy.orm import Session

from .auth import get_current_user
from .db import Board, Task, TaskList, User, get_db
from .errors import NotFound

logger = logging.getLogger(__name__)

T = TypeVar("T", Board, TaskList, Task)


class OwnedResource(Generic[T]):
    model: type[T]
    label: str

    def resolve_owner(self, db: Session, resource_id: str) -> str | None:
        raise NotImplementedError

    def load(self, db: Session, resource_id: str, principal: User) -> T:
        owner = self.resolve_owner(db, resource_id)
        if owner is None or owner != principal.id:
            if owner is not None:
                logger.debug(
                    "User %s denied access to %s %s", principal.id, self.label, resource_id
                )
            raise NotFound(f"{self.label} not found")
        return db.get(self.model, resource_id)


class BoardResource(OwnedResource[Board]):
    model = Board
    label = "Board"

    def resolve_owner(self, db: Session, resource_id: str) -> str | None:
        board = db.get(Board, resource_id)
        return board.user_id if board else None


class ListResource(OwnedResource[TaskList]):
    model = TaskList
    label = "List"

    def resolve_owner(self, db: Session, resource_id: str) -> str | None:
        task_list = db.get(TaskList, resource_id)
        if task_list is None:
            return None
        return BOARD.resolve_owner(db, task_list.board_id)


class TaskResource(OwnedResource[Task]):
    model = Task
    label = "Task"

    def resolve_owner(self, db: Session, resource_id: str) -> str | None:
        task = db.get(Task, resource_id)
        if task is None:
            return None
        task_list = db.get(TaskList, task.list_id)
        if task_list is None:
            return None
        board = db.get(Board, task_list.board_id)
        if board is None:
            return None
        # a task whose own user_id disagrees with its board is never served
        if task.user_id != board.user_id:
            logger.warning("Task %s user does not match board %s owner", task.id, board.id)
            return None
        return board.user_id


BOARD = BoardResource()
LIST = ListResource()
TASK = TaskResource()


def owned_board(
    board_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Board:
    return BOARD.load(db, board_id, user)


def owned_list(
    list_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> TaskList:
    return LIST.load(db, list_id, user)


def owned_task(
    task_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Task:
    return TASK.load(db, task_id, user)
