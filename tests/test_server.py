import socket
import threading
import time

import pytest

from chatnet.broker import LocalBroker
from chatnet.chatservice import ChatService
from chatnet.db import Database
from chatnet.protocol import TERMINATOR, MsgType, decode, encode
from chatnet.server import ChatServer, main


@pytest.fixture
def running():
    service = ChatService(Database(), LocalBroker())
    server = ChatServer("127.0.0.1", 0, service)
    server.start()
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield server, service
    server.shutdown()
    thread.join(5)


def connect(server):
    sock = socket.create_connection(("127.0.0.1", server.port))
    sock.settimeout(5)
    return sock


def recv_message(sock):
    data = b""
    while not data.endswith(TERMINATOR):
        chunk = sock.recv(4096)
        if not chunk:
            raise ConnectionError("closed")
        data += chunk
    return decode(data)


def wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


def register(sock, name):
    password = "password"
    sock.sendall(encode({"msgid": MsgType.REG_MSG, "name": name, "password": password}))
    return recv_message(sock)


def login(sock, userid):
    password = "password"
    sock.sendall(encode({"msgid": MsgType.LOGIN_MSG, "id": userid, "password": password}))
    return recv_message(sock)


def test_register_over_socket_stores_user(running):
    server, service = running
    with connect(server) as sock:
        reply = register(sock, "alice")
    assert reply["msgid"] == MsgType.REG_MSG_ACK
    assert reply["errno"] == 0
    assert service.users.query(reply["id"]).name == "alice"


def test_start_assigns_port(running):
    server, _ = running
    assert server.port > 0


def test_second_login_is_refused(running):
    server, _ = running
    with connect(server) as first, connect(server) as second:
        userid = register(first, "alice")["id"]
        assert login(first, userid)["errno"] == 0
        reply = login(second, userid)
    assert reply["msgid"] == MsgType.LOGIN_MSG_ACK
    assert reply["errno"] == 2
    assert reply["errmsg"] == "this account is using ,input another"


def test_unknown_message_keeps_connection(running):
    server, service = running
    with connect(server) as sock:
        sock.sendall(encode({"msgid": 99}))
        reply = register(sock, "carol")
    assert reply["errno"] == 0
    assert service.users.query(reply["id"]).name == "carol"


def test_malformed_frame_is_ignored(running):
    server, _ = running
    with connect(server) as sock:
        sock.sendall(b"not json" + TERMINATOR)
        reply = register(sock, "dave")
    assert reply["errno"] == 0


def test_disconnect_marks_user_offline(running):
    server, service = running
    sock = connect(server)
    userid = register(sock, "alice")["id"]
    assert login(sock, userid)["errno"] == 0
    assert service.users.query(userid).state == "online"
    sock.close()
    assert wait_for(lambda: service.users.query(userid).state == "offline")


def test_one_chat_is_forwarded(running):
    server, _ = running
    with connect(server) as alice, connect(server) as bob:
        alice_id = register(alice, "alice")["id"]
        bob_id = register(bob, "bob")["id"]
        login(alice, alice_id)
        login(bob, bob_id)
        chat = {
            "msgid": MsgType.ONE_CHAT_MSG,
            "id": alice_id,
            "name": "alice",
            "toid": bob_id,
            "msg": "hello",
            "time": "2024-01-01 00:00:00",
        }
        alice.sendall(encode(chat))
        received = recv_message(bob)
    assert received == chat


def test_shutdown_closes_client_connections(running):
    server, _ = running
    sock = connect(server)
    register(sock, "erin")
    server.shutdown()
    assert sock.recv(10) == b""
    sock.close()


def test_main_needs_host_and_port(capsys):
    assert main([]) == 1
    assert "command invalid" in capsys.readouterr().err