"""Interactive chat client and the commands it sends to the server."""

from __future__ import annotations

import logging
import queue
import socket
import sys
import threading
import time
from collections.abc import Callable, Sequence
from typing import Any, TextIO

from .entities import Group, GroupUser, User
from .protocol import TERMINATOR, MsgType, decode, encode

log = logging.getLogger(__name__)

_RECV_SIZE = 4096

COMMANDS: dict[str, str] = {
    "help": "显示所有支持的命令，格式help",
    "chat": "一对一聊天，格式chat:friendid:message",
    "addfriend": "添加好友，格式addfriend:friendid",
    "creategroup": "创建群组，格式creategroup:groupname:groupdesc",
    "addgroup": "加入群组，格式addgroup:groupid",
    "groupchat": "群聊，格式groupchat:groupid:message",
    "loginout": "注销，格式loginout",
}


class ChatError(Exception):
    """Base class of client errors."""


class LoginError(ChatError):
    """The server refused a login."""


class RegisterError(ChatError):
    """The server refused a registration."""


class CommandError(ChatError):
    """A command line could not be understood."""


def current_time() -> str:
    """Return the local time as ``YYYY-MM-DD HH:MM:SS``."""
    return time.strftime("%Y-%m-%d %H:%M:%S", time.localtime())


def split_command(line: str) -> tuple[str, str]:
    """Split ``command:args`` into its command and the rest of the line."""
    command, _, args = line.partition(":")
    return command, args


def format_chat_message(message: dict[str, Any]) -> str:
    """Render a private or group chat message as one line of text."""
    text = f"{message['time']} [{message['id']}]{message['name']} said: {message['msg']}"
    if message["msgid"] == MsgType.ONE_CHAT_MSG:
        return text
    return f"群消息[{message['groupid']}]:{text}"


def _parse_int(text: str, command: str) -> int:
    try:
        return int(text.strip())
    except ValueError:
        raise CommandError(f"{command} command invalid!") from None


def _parse_group(text: str) -> Group:
    data = decode(text)
    group = Group(id=int(data["id"]), name=data["groupname"], desc=data["groupdesc"])
    for member_text in data.get("users", []):
        member = decode(member_text)
        group.users.append(
            GroupUser(
                id=int(member["id"]),
                name=member["name"],
                state=member["state"],
                role=member["role"],
            )
        )
    return group


class ChatClient:
    """A connection to the chat server with the logged-in user's data."""

    def __init__(self, host: str, port: int) -> None:
        self._sock = socket.create_connection((host, port))
        self.out: TextIO = sys.stdout
        self.timeout = 5.0
        self.current_user = User()
        self.friends: list[User] = []
        self.groups: list[Group] = []
        self.offline_messages: list[dict[str, Any]] = []
        self.logged_in = False
        self.inbox: queue.Queue[dict[str, Any]] = queue.Queue()
        self._responses: queue.Queue[dict[str, Any] | None] = queue.Queue()
        self._send_lock = threading.Lock()
        self._commands: dict[str, Callable[[str], Any]] = {
            "help": self.help,
            "chat": self.chat,
            "addfriend": self.add_friend,
            "creategroup": self.create_group,
            "addgroup": self.add_group,
            "groupchat": self.group_chat,
            "loginout": self.loginout,
        }
        self._reader = threading.Thread(target=self._read_loop, daemon=True)
        self._reader.start()

    def _read_loop(self) -> None:
        buffer = b""
        try:
            while True:
                chunk = self._sock.recv(_RECV_SIZE)
                if not chunk:
                    break
                buffer += chunk
                *frames, buffer = buffer.split(TERMINATOR)
                for frame in frames:
                    if frame.strip():
                        self._route(frame)
        except OSError:
            pass
        finally:
            self._responses.put(None)

    def _route(self, frame: bytes) -> None:
        try:
            message = decode(frame)
        except ValueError as exc:
            log.error("bad message from server: %s", exc)
            return
        if message.get("msgid") in (MsgType.ONE_CHAT_MSG, MsgType.GROUP_CHAT_MSG):
            self.out.write(format_chat_message(message) + "\n")
            self.out.flush()
            self.inbox.put(message)
        else:
            self._responses.put(message)

    def _send(self, message: dict[str, Any]) -> None:
        with self._send_lock:
            self._sock.sendall(encode(message))

    def _await_response(self, msgid: MsgType) -> dict[str, Any]:
        while True:
            try:
                response = self._responses.get(timeout=self.timeout)
            except queue.Empty:
                raise TimeoutError("no response from server") from None
            if response is None:
                self._responses.put(None)
                raise ConnectionError("connection closed by server")
            if response.get("msgid") == msgid:
                return response

    def login(self, userid: int, password: str) -> User:
        """Log in and load friends, groups and offline messages.

        Raises LoginError with the server's message if the login is refused.
        """
        self._send({"msgid": MsgType.LOGIN_MSG, "id": userid, "password": password})
        response = self._await_response(MsgType.LOGIN_MSG_ACK)
        if response.get("errno", 1) != 0:
            raise LoginError(response.get("errmsg", "login failed"))
        self.current_user = User(id=int(response["id"]), name=response["name"], state="online")
        self.friends = [
            User(id=int(f["id"]), name=f["name"], state=f["state"])
            for f in map(decode, response.get("friends", []))
        ]
        self.groups = [_parse_group(text) for text in response.get("groups", [])]
        self.offline_messages = [decode(text) for text in response.get("offlinemsg", [])]
        self.logged_in = True
        return self.current_user

    def register(self, name: str, password: str) -> int:
        """Register a new user and return its id; RegisterError if refused."""
        self._send({"msgid": MsgType.REG_MSG, "name": name, "password": password})
        response = self._await_response(MsgType.REG_MSG_ACK)
        if response.get("errno", 1) != 0:
            raise RegisterError(f"{name} is already exist, register error!")
        return int(response["id"])

    def help(self, args: str = "") -> str:
        """Write and return the list of supported commands."""
        lines = ["show command list >>>"]
        lines += [f"{name} : {usage}" for name, usage in COMMANDS.items()]
        text = "\n".join(lines) + "\n\n"
        self.out.write(text)
        return text

    def chat(self, args: str) -> None:
        """Send ``friendid:message`` as a private message."""
        target, sep, text = args.partition(":")
        if not sep:
            raise CommandError("chat command invalid!")
        self._send({
            "msgid": MsgType.ONE_CHAT_MSG,
            "id": self.current_user.id,
            "name": self.current_user.name,
            "toid": _parse_int(target, "chat"),
            "msg": text,
            "time": current_time(),
        })

    def add_friend(self, args: str) -> None:
        """Add the user with id ``args`` as a friend."""
        self._send({
            "msgid": MsgType.ADD_FRIEND_MSG,
            "id": self.current_user.id,
            "friendid": _parse_int(args, "addfriend"),
        })

    def create_group(self, args: str) -> None:
        """Create a group from ``groupname:groupdesc``."""
        name, sep, desc = args.partition(":")
        if not sep:
            raise CommandError("creategroup command invalid!")
        self._send({
            "msgid": MsgType.CREATE_GROUP_MSG,
            "id": self.current_user.id,
            "groupname": name,
            "groupdesc": desc,
        })

    def add_group(self, args: str) -> None:
        """Join the group with id ``args``."""
        self._send({
            "msgid": MsgType.ADD_GROUP_MSG,
            "id": self.current_user.id,
            "groupid": _parse_int(args, "addgroup"),
        })

    def group_chat(self, args: str) -> None:
        """Send ``groupid:message`` to a group."""
        target, sep, text = args.partition(":")
        if not sep:
            raise CommandError("groupchat command invalid!")
        self._send({
            "msgid": MsgType.GROUP_CHAT_MSG,
            "id": self.current_user.id,
            "name": self.current_user.name,
            "groupid": _parse_int(target, "groupchat"),
            "msg": text,
            "time": current_time(),
        })

    def loginout(self, args: str = "") -> None:
        """Log the current user out."""
        self._send({"msgid": MsgType.LOGINOUT_MSG, "id": self.current_user.id})
        self.logged_in = False

    def run_command(self, line: str) -> Any:
        """Run one command line such as ``chat:2:hello``."""
        command, args = split_command(line)
        handler = self._commands.get(command)
        if handler is None:
            raise CommandError("invalid input command !")
        return handler(args)

    def show_user_data(self) -> str:
        """Write and return the user's id, name, friends and groups."""
        user = self.current_user
        lines = [
            "======================login user======================",
            f"current login user => id:{user.id} name:{user.name}",
            "----------------------friend list---------------------",
        ]
        lines += [f"{f.id} {f.name} {f.state}" for f in self.friends]
        lines.append("----------------------group list----------------------")
        for group in self.groups:
            lines.append(f"{group.id} {group.name} {group.desc}")
            lines += [f"{m.id} {m.name} {m.state} {m.role}" for m in group.users]
        lines.append("======================================================")
        text = "\n".join(lines) + "\n"
        self.out.write(text)
        return text

    def close(self) -> None:
        """Close the connection to the server."""
        self.logged_in = False
        try:
            self._sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        self._sock.close()

    def __enter__(self) -> "ChatClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def _login_flow(client: ChatClient) -> None:
    try:
        userid = int(input("userid:").strip())
    except ValueError:
        print("invalid input!", file=sys.stderr)
        return
    typed = input("userpassword:")
    try:
        client.login(userid, typed)
    except LoginError as exc:
        print(exc, file=sys.stderr)
        return
    except OSError as exc:
        print(f"login error: {exc}", file=sys.stderr)
        return
    client.show_user_data()
    for message in client.offline_messages:
        print(format_chat_message(message))
    _main_menu(client)


def _register_flow(client: ChatClient) -> None:
    name = input("username:")
    typed = input("userpassword:")
    try:
        userid = client.register(name, typed)
    except RegisterError as exc:
        print(exc, file=sys.stderr)
    except OSError as exc:
        print(f"register error: {exc}", file=sys.stderr)
    else:
        print(f"{name} register success, userid is {userid}, do not forget it!")


def _main_menu(client: ChatClient) -> None:
    client.help()
    while client.logged_in:
        try:
            line = input()
        except EOFError:
            break
        try:
            client.run_command(line)
        except CommandError as exc:
            print(exc, file=sys.stderr)
        except OSError as exc:
            print(f"send error: {exc}", file=sys.stderr)


def main(argv: Sequence[str] | None = None) -> int:
    """Run the interactive chat client."""
    args = sys.argv[1:] if argv is None else list(argv)
    if len(args) < 2:
        print("command invalid! example: chatnet-client 127.0.0.1 6000", file=sys.stderr)
        return 1
    host = args[0]
    try:
        port = int(args[1])
    except ValueError:
        print("command invalid! port must be a number", file=sys.stderr)
        return 1
    try:
        client = ChatClient(host, port)
    except OSError:
        print("connect server error", file=sys.stderr)
        return 1

    with client:
        while True:
            print("=============================")
            print("1.login")
            print("2.register")
            print("3.logout")
            print("=============================")
            try:
                choice = input("choice:").strip()
            except EOFError:
                return 0
            if choice == "1":
                _login_flow(client)
            elif choice == "2":
                _register_flow(client)
            elif choice == "3":
                return 0
            else:
                print("invalid input!", file=sys.stderr)