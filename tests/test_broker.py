import socket

import pytest

from chatnet.broker import LocalBroker, RedisBroker


@pytest.fixture
def broker():
    b = LocalBroker()
    b.connect()
    yield b
    b.close()


def _collect(broker):
    received = []
    broker.set_notify_handler(lambda channel, msg: received.append((channel, msg)))
    return received


def test_local_publish_before_connect_fails():
    b = LocalBroker()
    assert b.publish(7, "hello") is False
    assert b.subscribe(7) is False
    assert b.unsubscribe(7) is False


def test_local_connect_succeeds():
    assert LocalBroker().connect() is True


def test_local_subscribed_channel_delivers(broker):
    received = _collect(broker)
    assert broker.subscribe(7) is True
    assert broker.publish(7, "hello") is True
    assert received == [(7, "hello")]


def test_local_unsubscribed_channel_not_delivered(broker):
    received = _collect(broker)
    broker.subscribe(7)
    assert broker.publish(8, "hello") is True
    assert received == []


def test_local_unsubscribe_stops_delivery(broker):
    received = _collect(broker)
    broker.subscribe(7)
    broker.unsubscribe(7)
    broker.publish(7, "hello")
    assert received == []
    assert 7 not in broker.channels


def test_local_channels_reflect_subscriptions(broker):
    broker.subscribe(1)
    broker.subscribe(2)
    broker.unsubscribe(1)
    assert broker.channels == frozenset({2})


def test_local_publish_without_handler(broker):
    broker.subscribe(3)
    assert broker.publish(3, "x") is True


def test_local_close_disconnects(broker):
    received = _collect(broker)
    broker.subscribe(4)
    broker.close()
    assert broker.publish(4, "x") is False
    assert received == []
    assert broker.channels == frozenset()


def _free_port():
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def test_redis_connect_to_unreachable_server_fails():
    b = RedisBroker("127.0.0.1", _free_port())
    assert b.connect() is False


def test_redis_operations_before_connect_fail():
    b = RedisBroker("127.0.0.1", _free_port())
    assert b.publish(1, "x") is False
    assert b.subscribe(1) is False
    assert b.unsubscribe(1) is False
    b.close()