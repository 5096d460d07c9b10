# chatnet

A small chat system: a multi-user TCP server and an interactive console
client that talk to each other in JSON messages. Users register, log in,
add friends, create and join groups, and chat one-to-one or in groups.
Messages for users who are offline are stored in SQLite and delivered at
their next login. Several servers sharing one database can reach each
other's online users through a Redis publish/subscribe broker.

## Installation

```
pip install .
```

For running the tests:

```
pip install ".[test]"
pytest
```

## Running the server

```
chatnet-server 127.0.0.1 6000
```

The server takes the address to listen on and the port. Options:

| Option            | Default     | Meaning                                          |
|-------------------|-------------|--------------------------------------------------|
| `--db PATH`       | `chat.db`   | SQLite database file                             |
| `--redis-host`    | `127.0.0.1` | Redis server used to relay messages              |
| `--redis-port`    | `6379`      | port of that Redis server                        |
| `--local-broker`  | off         | relay messages in-process instead of via Redis   |

Without `--local-broker` the server tries to reach Redis at start; if it
cannot, it still serves its own clients, and messages for users who are
online on another server are not relayed. On Ctrl+C every user still marked
online is reset to offline before the server exits.

## Running the client

```
chatnet-client 127.0.0.1 6000
```

The client first shows a menu:

```
1.login
2.register
3.logout
```

Registering asks for a user name and a password and answers with the new
user id. Logging in asks for the user id and the password; on success the
client shows your friends, your groups with their members, and any messages
that arrived while you were offline.

After login, type commands of the form `command:arguments`:

| Command                               | Effect                         |
|---------------------------------------|--------------------------------|
| `help`                                | list the supported commands    |
| `chat:friendid:message`               | send a message to one user     |
| `addfriend:friendid`                  | add a friend                   |
| `creategroup:groupname:groupdesc`     | create a group, as its creator |
| `addgroup:groupid`                    | join a group                   |
| `groupchat:groupid:message`           | send a message to a group      |
| `loginout`                            | log out, back to the menu      |

Incoming messages are printed as they arrive, with the sender's time, id
and name; group messages are prefixed with `群消息[groupid]:`.

## Protocol

Every request and response is one JSON object whose `msgid` field holds a
`chatnet.protocol.MsgType` value (`LOGIN_MSG`, `REG_MSG`, `LOGINOUT_MSG`,
`REG_MSG_ACK`, `LOGIN_MSG_ACK`, `ONE_CHAT_MSG`, `ADD_FRIEND_MSG`,
`CREATE_GROUP_MSG`, `ADD_GROUP_MSG`, `GROUP_CHAT_MSG`).
`chatnet.protocol.encode` writes a message as compact UTF-8 JSON with sorted
keys followed by a NUL byte; `chatnet.protocol.decode` reads one back and
raises `ValueError` if it is not a JSON object. Acknowledgements carry an
`errno` field: `0` on success, non-zero with an `errmsg` on failure (login:
`1` for a wrong id or password, `2` if the account is already online).

## Using the library

The parts can be used on their own:

- `chatnet.entities` – the `User`, `GroupUser` and `Group` dataclasses.
- `chatnet.db.Database` – a thread-safe SQLite connection with the tables
  for users, friends, groups and offline messages (`":memory:"` by default).
- `chatnet.models` – `UserModel`, `FriendModel`, `GroupModel` and
  `OfflineMessageModel`, each working on a `Database`.
- `chatnet.broker` – `LocalBroker` for a single server process, and
  `RedisBroker(host, port)` to relay messages between servers through Redis.
- `chatnet.chatservice.ChatService` – the business logic; it connects the
  broker, maps each `msgid` to its handler (`handler_for`) and runs it on a
  decoded message (`dispatch`).
- `chatnet.server.ChatServer` – the TCP front end that feeds incoming
  messages to a `ChatService`; `start()` binds (port `0` picks a free port),
  `serve_forever()` serves, `shutdown()` stops and drops all clients.
- `chatnet.client.ChatClient` – a connection to the server with `login`,
  `register`, the command methods and `run_command("chat:2:hello")`.

```python
from chatnet.broker import LocalBroker
from chatnet.chatservice import ChatService
from chatnet.db import Database
from chatnet.server import ChatServer

service = ChatService(Database("chat.db"), LocalBroker())
server = ChatServer("127.0.0.1", 6000, service)
server.serve_forever()
```

## What it does not do

- Passwords are stored and sent as plain text; connections are not
  encrypted.
- Friend and group lists are sent to the client only at login; changes made
  afterwards show up at the next login.
- Adding a friend records the friendship in one direction only.