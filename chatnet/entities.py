"""Plain records for users, group members and groups."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class User:
    """A row of the user table."""

    id: int = -1
    name: str = ""
    password: str = ""
    state: str = "offline"


@dataclass
class GroupUser(User):
    """A user seen as a member of a group, with the member's role."""

    role: str = ""


@dataclass
class Group:
    """A row of the group table together with its members."""

    id: int = -1
    name: str = ""
    desc: str = ""
    users: list[GroupUser] = field(default_factory=list)