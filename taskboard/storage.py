from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .db import Board, Task, TaskList, User, now_utc
from .errors import Conflict, NotFound

logger = logging.getLogger(__name__)

DEFAULT_LISTS = (
    ("Today", "#3b82f6"),
    ("This Week", "#10b981"),
    ("Later", "#f59e0b"),
    ("Doing", "#8b5cf6"),
)

TASK_FIELDS = {
    "title": "title",
    "description": "description",
    "completed": "completed",
    "priority": "priority",
    "dueDate": "due_date",
    "tags": "tags",
}


class Storage:
    """Board, list and task persistence over a SQLAlchemy session."""

    def __init__(self, db: Session) -> None:
        self.db = db

    # === User operations ===
    def get_user_by_email(self, email: str) -> Optional[User]:
        return self.db.scalar(select(User).where(func.lower(User.email) == email.lower()))

    def get_user_by_google_id(self, google_id: str) -> Optional[User]:
        return self.db.scalar(select(User).where(User.google_id == google_id))

    def count_users(self) -> int:
        return self.db.scalar(select(func.count()).select_from(User)) or 0

    def create_user(
        self,
        name: str,
        email: str,
        password_hash: Optional[str] = None,
        role: str = "user",
        google_id: Optional[str] = None,
    ) -> User:
        user = User(
            name=name,
            email=email,
            password_hash=password_hash,
            role=role,
            google_id=google_id,
        )
        self.db.add(user)
        try:
            self.db.commit()
        except IntegrityError as exc:
            # a concurrent registration won the unique email or google_id
            self.db.rollback()
            logger.warning("Duplicate user rejected: %s", email)
            raise Conflict("Email is already registered") from exc
        self.db.refresh(user)
        logger.info("User created: %s (ID: %s, role: %s)", user.email, user.id, user.role)
        return user

    def list_users(self) -> List[User]:
        return list(self.db.scalars(select(User).order_by(User.created_at)))

    def set_role(self, user: User, role: str) -> User:
        user.role = role
        self.db.commit()
        self.db.refresh(user)
        return user

    def delete_user(self, user: User) -> None:
        # boards cascade to lists and tasks through the ORM relationships
        self.db.delete(user)
        self.db.commit()
        logger.info("User deleted: %s (ID: %s)", user.email, user.id)

    # === Board operations ===
    def create_board(self, owner: User, title: str) -> Board:
        board = Board(title=title, user_id=owner.id)
        board.lists = [
            TaskList(title=list_title, color=color, order=index)
            for index, (list_title, color) in enumerate(DEFAULT_LISTS)
        ]
        self.db.add(board)
        self.db.commit()
        self.db.refresh(board)
        logger.info("Board created: %s (ID: %s) by user %s", board.title, board.id, owner.id)
        return board

    def list_boards_for_user(self, user_id: str) -> List[Board]:
        stmt = select(Board).where(Board.user_id == user_id).order_by(Board.created_at)
        return list(self.db.scalars(stmt))

    def update_board(self, board: Board, title: str) -> Board:
        board.title = title
        self.db.commit()
        self.db.refresh(board)
        return board

    def delete_board(self, board: Board) -> None:
        self.db.delete(board)
        self.db.commit()
        logger.info("Board deleted: %s", board.id)

    # === List operations ===
    def create_list(
        self,
        board: Board,
        title: str,
        color: Optional[str],
        order: Optional[int],
    ) -> TaskList:
        if order is None:
            highest = self.db.scalar(
                select(func.max(TaskList.order)).where(TaskList.board_id == board.id)
            )
            order = 0 if highest is None else highest + 1
        task_list = TaskList(
            title=title,
            board_id=board.id,
            color=color,
            order=order,
        )
        self.db.add(task_list)
        board.updated_at = now_utc()
        self.db.commit()
        self.db.refresh(task_list)
        return task_list

    def lists_for_board(self, board: Board) -> List[TaskList]:
        stmt = (
            select(TaskList)
            .where(TaskList.board_id == board.id)
            .order_by(TaskList.order, TaskList.created_at)
        )
        return list(self.db.scalars(stmt))

    def update_list(self, task_list: TaskList, changes: Dict[str, Any]) -> TaskList:
        if changes.get("title") is not None:
            task_list.title = changes["title"]
        if "color" in changes:
            task_list.color = changes["color"]
        if changes.get("order") is not None:
            task_list.order = changes["order"]
        self.db.commit()
        self.db.refresh(task_list)
        return task_list

    def delete_list(self, task_list: TaskList) -> None:
        self.db.delete(task_list)
        self.db.commit()

    # === Task operations ===
    def create_task(self, task_list: TaskList, owner_id: str, fields: Dict[str, Any]) -> Task:
        task = Task(
            title=fields["title"],
            description=(fields.get("description") or "").strip(),
            list_id=task_list.id,
            user_id=owner_id,
            completed=bool(fields.get("completed", False)),
            priority=fields.get("priority") or "medium",
            due_date=fields.get("dueDate"),
            tags=list(fields.get("tags") or []),
        )
        self.db.add(task)
        self.db.commit()
        self.db.refresh(task)
        return task

    def get_task(self, task_id: str, user_id: str) -> Task:
        task = self.db.scalar(select(Task).where(Task.id == task_id, Task.user_id == user_id))
        if task is None:
            raise NotFound("Task not found")
        return task

    def tasks_for_user(
        self,
        user_id: str,
        list_id: Optional[str] = None,
        board_id: Optional[str] = None,
    ) -> List[Task]:
        stmt = select(Task).where(Task.user_id == user_id)
        if list_id is not None:
            stmt = stmt.where(Task.list_id == list_id)
        if board_id is not None:
            stmt = stmt.join(TaskList, TaskList.id == Task.list_id).where(
                TaskList.board_id == board_id
            )
        return list(self.db.scalars(stmt.order_by(Task.created_at.desc())))

    def update_task(self, task_id: str, user_id: str, changes: Dict[str, Any]) -> Task:
        task = self.get_task(task_id, user_id)
        for key, attr in TASK_FIELDS.items():
            if key not in changes:
                continue
            value = changes[key]
            if key == "description":
                value = (value or "").strip()
            elif key in ("title", "completed", "priority", "tags") and value is None:
                continue
            setattr(task, attr, value)
        self.db.commit()
        self.db.refresh(task)
        return task

    def move_task(self, task_id: str, user_id: str, to_list: TaskList) -> Task:
        task = self.get_task(task_id, user_id)
        task.list_id = to_list.id
        self.db.commit()
        self.db.refresh(task)
        return task

    def delete_task(self, task_id: str, user_id: str) -> None:
        task = self.get_task(task_id, user_id)
        self.db.delete(task)
        self.db.commit()

    # === Admin statistics ===
    def stats(self, months: int = 6) -> Dict[str, Any]:
        def count(stmt) -> int:
            return self.db.scalar(stmt) or 0

        by_priority = {"low": 0, "medium": 0, "high": 0}
        rows = self.db.execute(
            select(Task.priority, func.count()).group_by(Task.priority)
        ).all()
        for priority, total in rows:
            by_priority[priority] = total

        return {
            "totalUsers": count(select(func.count()).select_from(User)),
            "totalAdmins": count(select(func.count()).select_from(User).where(User.role == "admin")),
            "totalBoards": count(select(func.count()).select_from(Board)),
            "totalLists": count(select(func.count()).select_from(TaskList)),
            "totalTasks": count(select(func.count()).select_from(Task)),
            "completedTasks": count(select(func.count()).select_from(Task).where(Task.completed.is_(True))),
            "tasksByPriority": by_priority,
            "userGrowth": self.user_growth(months),
        }

    def user_growth(self, months: int, today: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """Users created per calendar month, for the last ``months`` months, oldest first."""
        today = today or datetime.now(timezone.utc)
        keys = []
        year, month = today.year, today.month
        for _ in range(months):
            keys.append(f"{year:04d}-{month:02d}")
            month -= 1
            if month == 0:
                year, month = year - 1, 12
        keys.reverse()

        created = Counter(
            stamp.strftime("%Y-%m") for stamp in self.db.scalars(select(User.created_at))
        )
        return [{"month": key, "count": created.get(key, 0)} for key in keys]
