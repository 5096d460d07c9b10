"""Table access for users, friends, groups and offline messages."""

from __future__ import annotations

import logging
import sqlite3

from .db import Database
from .entities import Group, GroupUser, User

log = logging.getLogger(__name__)


class UserModel:
    """Operations on the user table."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def insert(self, user: User) -> bool:
        """Store a new user and set its id; False if the store refused it."""
        try:
            user.id = self._db.insert(
                "INSERT INTO user(name, password, state) VALUES (?, ?, ?)",
                (user.name, user.password, user.state),
            )
        except sqlite3.Error as exc:
            log.error("insert user %r failed: %s", user.name, exc)
            return False
        return True

    def query(self, user_id: int) -> User:
        """Return the user with this id, or a default User if there is none."""
        rows = self._db.query(
            "SELECT id, name, password, state FROM user WHERE id = ?", (user_id,)
        )
        if not rows:
            return User()
        uid, name, password, state = rows[0]
        return User(id=uid, name=name, password=password, state=state)

    def update_state(self, user: User) -> bool:
        """Write the user's state; False if the update failed."""
        try:
            self._db.update(
                "UPDATE user SET state = ? WHERE id = ?", (user.state, user.id)
            )
        except sqlite3.Error as exc:
            log.error("update state of user %d failed: %s", user.id, exc)
            return False
        return True

    def reset_state(self) -> None:
        """Mark every online user offline."""
        self._db.update("UPDATE user SET state = 'offline' WHERE state = 'online'")


class FriendModel:
    """Operations on the friend table."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def insert(self, userid: int, friendid: int) -> None:
        """Record that userid has friendid as a friend."""
        try:
            self._db.insert("INSERT INTO friend VALUES (?, ?)", (userid, friendid))
        except sqlite3.Error as exc:
            log.error("add friend %d for %d failed: %s", friendid, userid, exc)

    def query(self, userid: int) -> list[User]:
        """Return the friends of userid with their id, name and state."""
        rows = self._db.query(
            "SELECT a.id, a.name, a.state FROM user a "
            "INNER JOIN friend b ON b.friendid = a.id "
            "WHERE b.userid = ? ORDER BY b.rowid",
            (userid,),
        )
        return [User(id=uid, name=name, state=state) for uid, name, state in rows]


class GroupModel:
    """Operations on the group and group membership tables."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def create_group(self, group: Group) -> bool:
        """Store a new group and set its id; False if the store refused it."""
        try:
            group.id = self._db.insert(
                "INSERT INTO allgroup(groupname, groupdesc) VALUES (?, ?)",
                (group.name, group.desc),
            )
        except sqlite3.Error as exc:
            log.error("create group %r failed: %s", group.name, exc)
            return False
        return True

    def add_group(self, userid: int, groupid: int, role: str) -> None:
        """Add userid to groupid with the given role."""
        try:
            self._db.insert(
                "INSERT INTO groupuser VALUES (?, ?, ?)", (groupid, userid, role)
            )
        except sqlite3.Error as exc:
            log.error("add user %d to group %d failed: %s", userid, groupid, exc)

    def query_groups(self, userid: int) -> list[Group]:
        """Return the groups userid belongs to, each with all its members."""
        rows = self._db.query(
            "SELECT a.id, a.groupname, a.groupdesc FROM allgroup a "
            "INNER JOIN groupuser b ON a.id = b.groupid "
            "WHERE b.userid = ? ORDER BY b.rowid",
            (userid,),
        )
        groups = [Group(id=gid, name=name, desc=desc) for gid, name, desc in rows]
        for group in groups:
            members = self._db.query(
                "SELECT a.id, a.name, a.state, b.grouprole FROM user a "
                "INNER JOIN groupuser b ON b.userid = a.id "
                "WHERE b.groupid = ? ORDER BY b.rowid",
                (group.id,),
            )
            group.users = [
                GroupUser(id=uid, name=name, state=state, role=role)
                for uid, name, state, role in members
            ]
        return groups

    def query_group_users(self, userid: int, groupid: int) -> list[int]:
        """Return the ids of the members of groupid other than userid."""
        rows = self._db.query(
            "SELECT userid FROM groupuser WHERE groupid = ? AND userid != ? "
            "ORDER BY rowid",
            (groupid, userid),
        )
        return [uid for (uid,) in rows]


class OfflineMessageModel:
    """Operations on the offline message table."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def insert(self, userid: int, msg: str) -> None:
        """Keep a message for a user who is offline."""
        self._db.insert("INSERT INTO offlinemessage VALUES (?, ?)", (userid, msg))

    def remove(self, userid: int) -> None:
        """Delete all stored messages of userid."""
        self._db.update("DELETE FROM offlinemessage WHERE userid = ?", (userid,))

    def query(self, userid: int) -> list[str]:
        """Return the stored messages of userid in arrival order."""
        rows = self._db.query(
            "SELECT message FROM offlinemessage WHERE userid = ? ORDER BY rowid",
            (userid,),
        )
        return [message for (message,) in rows]