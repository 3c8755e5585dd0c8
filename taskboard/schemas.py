from __future__ import annotations

from datetime import datetime
from typing import Annotated, Literal, Optional

from pydantic import BaseModel, Field, StringConstraints

Priority = Literal["low", "medium", "high"]
Role = Literal["user", "admin"]

BoardTitle = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=140)]
ListTitle = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=80)]
TaskTitle = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=200)]


# === Auth ===


class RegisterIn(BaseModel):
    name: Optional[str] = Field(default=None, max_length=120)
    email: str = Field(min_length=1, max_length=320)
    password: str = Field(min_length=1, max_length=512)


class LoginIn(BaseModel):
    email: str = Field(min_length=1, max_length=320)
    password: str = Field(min_length=1, max_length=512)


class UserOut(BaseModel):
    id: str
    name: str
    email: str
    role: Role
    createdAt: Optional[datetime] = None


class AuthOut(BaseModel):
    token: str
    user: UserOut


class RoleIn(BaseModel):
    role: Role


# === Boards ===


class BoardIn(BaseModel):
    title: BoardTitle
    userId: Optional[str] = None


class BoardPatch(BaseModel):
    title: BoardTitle


# === Lists ===


class ListIn(BaseModel):
    title: ListTitle
    boardId: str = Field(min_length=1)
    color: Optional[str] = Field(default=None, max_length=32)
    order: Optional[int] = None


class ListPatch(BaseModel):
    title: Optional[ListTitle] = None
    color: Optional[str] = Field(default=None, max_length=32)
    order: Optional[int] = None


# === Tasks ===


class TaskIn(BaseModel):
    title: TaskTitle
    description: Optional[str] = Field(default="", max_length=8000)
    listId: str = Field(min_length=1)
    userId: Optional[str] = None
    completed: bool = False
    priority: Priority = "medium"
    dueDate: Optional[datetime] = None
    tags: list[str] = Field(default_factory=list)


class TaskPatch(BaseModel):
    title: Optional[TaskTitle] = None
    description: Optional[str] = Field(default=None, max_length=8000)
    completed: Optional[bool] = None
    priority: Optional[Priority] = None
    dueDate: Optional[datetime] = None
    tags: Optional[list[str]] = None


class TaskMove(BaseModel):
    listId: str = Field(min_length=1)


# === Output shapes, also used by the client mirror ===


class TaskOut(BaseModel):
    id: str
    title: str
    description: str = ""
    listId: str
    userId: str
    completed: bool = False
    priority: Priority = "medium"
    dueDate: Optional[datetime] = None
    tags: list[str] = Field(default_factory=list)
    createdAt: datetime
    updatedAt: datetime


class ListOut(BaseModel):
    id: str
    title: str
    boardId: str
    color: Optional[str] = None
    order: int = 0
    tasks: list[TaskOut] = Field(default_factory=list)
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None


class BoardOut(BaseModel):
    id: str
    title: str
    userId: str
    lists: list[ListOut] = Field(default_factory=list)
    createdAt: datetime
    updatedAt: datetime


# === Admin ===


class MonthCount(BaseModel):
    month: str
    count: int


class StatsOut(BaseModel):
    totalUsers: int
    totalAdmins: int
    totalBoards: int
    totalLists: int
    totalTasks: int
    completedTasks: int
    tasksByPriority: dict[str, int]
    userGrowth: list[MonthCount]
