"""TCP front end of the chat server: framing, dispatch and the server command."""

from __future__ import annotations

import argparse
import logging
import socket
import socketserver
import sys
import threading
from collections.abc import Sequence

from .broker import LocalBroker, RedisBroker
from .chatservice import ChatService
from .db import Database
from .protocol import TERMINATOR, decode

log = logging.getLogger(__name__)

_RECV_SIZE = 4096


class _Connection:
    """A client connection as seen by the chat service."""

    def __init__(self, sock: socket.socket) -> None:
        self._sock = sock
        self._lock = threading.Lock()

    def send(self, data: bytes) -> None:
        with self._lock:
            try:
                self._sock.sendall(data)
            except OSError as exc:
                log.error("send to client failed: %s", exc)

    def close(self) -> None:
        try:
            self._sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass


class _Server(socketserver.ThreadingTCPServer):
    daemon_threads = True
    allow_reuse_address = True

    def __init__(self, address: tuple[str, int], service: ChatService) -> None:
        self.service = service
        self._connections: set[_Connection] = set()
        self._connections_lock = threading.Lock()
        super().__init__(address, _Handler)

    def track(self, conn: _Connection) -> None:
        with self._connections_lock:
            self._connections.add(conn)

    def untrack(self, conn: _Connection) -> None:
        with self._connections_lock:
            self._connections.discard(conn)

    def close_connections(self) -> None:
        with self._connections_lock:
            connections = list(self._connections)
        for conn in connections:
            conn.close()


class _Handler(socketserver.BaseRequestHandler):
    server: _Server

    def handle(self) -> None:
        conn = _Connection(self.request)
        self.server.track(conn)
        buffer = b""
        try:
            while True:
                try:
                    chunk = self.request.recv(_RECV_SIZE)
                except OSError:
                    break
                if not chunk:
                    break
                buffer += chunk
                *frames, buffer = buffer.split(TERMINATOR)
                for frame in frames:
                    if frame.strip():
                        self._dispatch(conn, frame)
        finally:
            self.server.untrack(conn)
            self.server.service.client_close_exception(conn)

    def _dispatch(self, conn: _Connection, frame: bytes) -> None:
        try:
            message = decode(frame)
        except ValueError as exc:
            log.error("bad message from client: %s", exc)
            return
        try:
            self.server.service.dispatch(conn, message)
        except (KeyError, ValueError, TypeError) as exc:
            log.error("message %r could not be handled: %s", message, exc)


class ChatServer:
    """Accepts client connections and hands their messages to a ChatService."""

    def __init__(self, host: str, port: int, service: ChatService) -> None:
        self.host = host
        self.port = port
        self.service = service
        self._server: _Server | None = None
        self._serving = False

    def start(self) -> None:
        """Bind and listen; the actual port is stored in ``port``."""
        if self._server is not None:
            return
        self._server = _Server((self.host, self.port), self.service)
        self.port = self._server.server_address[1]

    def serve_forever(self) -> None:
        """Serve clients until shutdown() is called."""
        self.start()
        assert self._server is not None
        self._serving = True
        try:
            self._server.serve_forever(poll_interval=0.1)
        finally:
            self._serving = False

    def shutdown(self) -> None:
        """Stop serving, drop all client connections and close the socket."""
        server = self._server
        if server is None:
            return
        if self._serving:
            server.shutdown()
        server.close_connections()
        server.server_close()
        self._server = None

    def __enter__(self) -> "ChatServer":
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()


def main(argv: Sequence[str] | None = None) -> int:
    """Run the chat server until interrupted."""
    args = sys.argv[1:] if argv is None else list(argv)
    if len(args) < 2:
        print("command invalid! example: chatnet-server 127.0.0.1 6000", file=sys.stderr)
        return 1
    parser = argparse.ArgumentParser(prog="chatnet-server")
    parser.add_argument("host")
    parser.add_argument("port", type=int)
    parser.add_argument("--db", default="chat.db", help="SQLite database file")
    parser.add_argument("--redis-host", default="127.0.0.1")
    parser.add_argument("--redis-port", type=int, default=6379)
    parser.add_argument(
        "--local-broker",
        action="store_true",
        help="relay messages in-process instead of through Redis",
    )
    opts = parser.parse_args(args)

    logging.basicConfig(level=logging.INFO)
    db = Database(opts.db)
    broker: LocalBroker | RedisBroker
    if opts.local_broker:
        broker = LocalBroker()
    else:
        broker = RedisBroker(opts.redis_host, opts.redis_port)
    service = ChatService(db, broker)
    server = ChatServer(opts.host, opts.port, service)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        service.reset()
        server.shutdown()
        broker.close()
        db.close()
    return 0