"""Chat business logic: login, registration, chats, friends and groups."""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable
from typing import Any, Protocol

from .db import Database
from .entities import Group, User
from .models import FriendModel, GroupModel, OfflineMessageModel, UserModel
from .protocol import TERMINATOR, MsgType, encode

log = logging.getLogger(__name__)


class Connection(Protocol):
    def send(self, data: bytes) -> Any: ...


class Broker(Protocol):
    def connect(self) -> bool: ...
    def publish(self, channel: int, message: str) -> bool: ...
    def subscribe(self, channel: int) -> bool: ...
    def unsubscribe(self, channel: int) -> bool: ...
    def set_notify_handler(self, handler: Callable[[int, str], None]) -> None: ...


Handler = Callable[[Connection, dict], None]


def _dump(message: dict[str, Any]) -> str:
    return encode(message)[: -len(TERMINATOR)].decode("utf-8")


def _send_text(conn: Connection, text: str) -> None:
    conn.send(text.encode("utf-8") + TERMINATOR)


class ChatService:
    """Dispatches decoded client messages to their business handlers."""

    def __init__(self, db: Database, broker: Broker) -> None:
        self.users = UserModel(db)
        self.friends = FriendModel(db)
        self.groups = GroupModel(db)
        self.offline_messages = OfflineMessageModel(db)
        self.broker = broker
        self.unhandled: list[Any] = []
        self._conn_lock = threading.RLock()
        self._user_conns: dict[int, Connection] = {}
        self._handlers: dict[int, Handler] = {
            MsgType.LOGIN_MSG: self.login,
            MsgType.LOGINOUT_MSG: self.loginout,
            MsgType.REG_MSG: self.register,
            MsgType.ONE_CHAT_MSG: self.one_chat,
            MsgType.ADD_FRIEND_MSG: self.add_friend,
            MsgType.CREATE_GROUP_MSG: self.create_group,
            MsgType.ADD_GROUP_MSG: self.add_group,
            MsgType.GROUP_CHAT_MSG: self.group_chat,
        }
        if broker.connect():
            broker.set_notify_handler(self.handle_broker_message)

    def handler_for(self, msgid: int) -> Handler:
        """Return the handler of a message id; unknown ids get one that records it."""
        handler = self._handlers.get(msgid)
        if handler is not None:
            return handler

        def _unknown(conn: Connection, message: dict) -> None:
            self.unhandled.append(msgid)
            log.error("msgid: %s can not find handler!", msgid)

        return _unknown

    def dispatch(self, conn: Connection, message: dict[str, Any]) -> None:
        """Run the handler for the message's msgid."""
        self.handler_for(message["msgid"])(conn, message)

    def login(self, conn: Connection, message: dict[str, Any]) -> None:
        """Check credentials, mark the user online and send the login reply."""
        userid = int(message["id"])
        password = message["password"]
        user = self.users.query(userid)
        if user.id != userid or user.password != password:
            conn.send(encode({
                "msgid": MsgType.LOGIN_MSG_ACK,
                "errno": 1,
                "errmsg": "用户名或者密码错误",
            }))
            return
        if user.state == "online":
            conn.send(encode({
                "msgid": MsgType.LOGIN_MSG_ACK,
                "errno": 2,
                "errmsg": "this account is using ,input another",
            }))
            return

        with self._conn_lock:
            self._user_conns[userid] = conn
        self.broker.subscribe(userid)

        user.state = "online"
        self.users.update_state(user)

        response: dict[str, Any] = {
            "msgid": MsgType.LOGIN_MSG_ACK,
            "errno": 0,
            "id": user.id,
            "name": user.name,
        }
        offline = self.offline_messages.query(userid)
        if offline:
            response["offlinemsg"] = offline
            self.offline_messages.remove(userid)

        friends = self.friends.query(userid)
        if friends:
            response["friends"] = [
                _dump({"id": f.id, "name": f.name, "state": f.state}) for f in friends
            ]

        groups = self.groups.query_groups(userid)
        if groups:
            response["groups"] = [self._group_text(g) for g in groups]

        conn.send(encode(response))

    @staticmethod
    def _group_text(group: Group) -> str:
        return _dump({
            "id": group.id,
            "groupname": group.name,
            "groupdesc": group.desc,
            "users": [
                _dump({"id": u.id, "name": u.name, "state": u.state, "role": u.role})
                for u in group.users
            ],
        })

    def register(self, conn: Connection, message: dict[str, Any]) -> None:
        """Store a new user and reply with its id, or with errno 1 on failure."""
        user = User(name=message["name"], password=message["password"])
        if self.users.insert(user):
            conn.send(encode({"msgid": MsgType.REG_MSG_ACK, "errno": 0, "id": user.id}))
        else:
            conn.send(encode({"msgid": MsgType.REG_MSG_ACK, "errno": 1}))

    def _deliver(self, userid: int, text: str) -> None:
        """Send to a local connection, publish to another server, or store."""
        with self._conn_lock:
            conn = self._user_conns.get(userid)
            if conn is not None:
                _send_text(conn, text)
                return
        if self.users.query(userid).state == "online":
            self.broker.publish(userid, text)
            return
        self.offline_messages.insert(userid, text)

    def one_chat(self, conn: Connection, message: dict[str, Any]) -> None:
        """Forward a private message to its recipient."""
        self._deliver(int(message["toid"]), _dump(message))

    def add_friend(self, conn: Connection, message: dict[str, Any]) -> None:
        """Record a friendship."""
        self.friends.insert(int(message["id"]), int(message["friendid"]))

    def create_group(self, conn: Connection, message: dict[str, Any]) -> None:
        """Create a group with the sender as its creator."""
        group = Group(name=message["groupname"], desc=message["groupdesc"])
        if self.groups.create_group(group):
            self.groups.add_group(int(message["id"]), group.id, "creator")

    def add_group(self, conn: Connection, message: dict[str, Any]) -> None:
        """Add the sender to a group as a normal member."""
        self.groups.add_group(int(message["id"]), int(message["groupid"]), "normal")

    def group_chat(self, conn: Connection, message: dict[str, Any]) -> None:
        """Forward a group message to every other member of the group."""
        userid = int(message["id"])
        groupid = int(message["groupid"])
        text = _dump(message)
        with self._conn_lock:
            for member in self.groups.query_group_users(userid, groupid):
                self._deliver(member, text)

    def loginout(self, conn: Connection, message: dict[str, Any]) -> None:
        """Log a user out and mark it offline."""
        userid = int(message["id"])
        with self._conn_lock:
            self._user_conns.pop(userid, None)
        self.broker.unsubscribe(userid)
        self.users.update_state(User(id=userid, state="offline"))

    def client_close_exception(self, conn: Connection) -> None:
        """Handle a connection that closed without logging out."""
        user = User()
        with self._conn_lock:
            for userid, known in self._user_conns.items():
                if known is conn:
                    user.id = userid
                    del self._user_conns[userid]
                    break
        if user.id != -1:
            self.broker.unsubscribe(user.id)
            user.state = "offline"
            self.users.update_state(user)

    def reset(self) -> None:
        """Mark every online user offline, as after a server stop."""
        self.users.reset_state()

    def handle_broker_message(self, userid: int, msg: str) -> None:
        """Deliver a message relayed by the broker, or keep it offline."""
        with self._conn_lock:
            conn = self._user_conns.get(userid)
            if conn is not None:
                _send_text(conn, msg)
                return
            self.offline_messages.insert(userid, msg)