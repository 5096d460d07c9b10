import json

import pytest

from chatnet.protocol import MsgType, decode, encode


@pytest.mark.parametrize(
    ("member", "wire_value"),
    [
        (MsgType.LOGIN_MSG, 1),
        (MsgType.REG_MSG, 2),
        (MsgType.ONE_CHAT_MSG, 6),
        (MsgType.GROUP_CHAT_MSG, 10),
    ],
)
def test_msg_type_values_follow_source_order(member, wire_value):
    data = encode({"msgid": member})
    assert json.loads(data.rstrip(b"\0")) == {"msgid": wire_value}
    assert decode(data)["msgid"] == member


def test_all_msg_types_encode_in_source_order():
    data = encode({"ids": list(MsgType)})
    assert decode(data)["ids"] == list(range(1, 11))


def test_encode_simple_message_sorted_and_compact():
    message = {
        "msg_type": 2,
        "from": "zhang san",
        "to": "li si",
        "msg": "Hello ,what are you doing",
    }
    expected = (
        '{"from":"zhang san","msg":"Hello ,what are you doing",'
        '"msg_type":2,"to":"li si"}'
    )
    assert encode(message) == expected.encode("utf-8") + b"\0"


def test_encode_nested_message():
    message = {
        "id": [1, 2, 3, 4, 5],
        "name": "zhang san",
        "msg": {"zhang san": "hello world", "liu shuo": "hello china"},
    }
    expected = (
        '{"id":[1,2,3,4,5],"msg":{"liu shuo":"hello china",'
        '"zhang san":"hello world"},"name":"zhang san"}'
    )
    assert encode(message) == expected.encode("utf-8") + b"\0"


def test_list_and_pairs_round_trip_with_unicode():
    message = {"list": [1, 2, 5], "path": [[1, "黄山"], [2, "华山"], [3, "泰山"]]}
    data = encode(message)
    assert data == '{"list":[1,2,5],"path":[[1,"黄山"],[2,"华山"],[3,"泰山"]]}'.encode(
        "utf-8"
    ) + b"\0"
    decoded = decode(data)
    assert decoded["list"] == [1, 2, 5]
    assert dict(decoded["path"]) == {1: "黄山", 2: "华山", 3: "泰山"}


def test_decode_reads_fields_of_simple_message():
    decoded = decode(
        encode({"msg_type": 2, "from": "zhang san", "to": "li si", "msg": "hi"})
    )
    assert decoded["msg_type"] == 2
    assert decoded["from"] == "zhang san"
    assert decoded["to"] == "li si"


def test_msgid_enum_encodes_as_integer():
    data = encode({"msgid": MsgType.LOGIN_MSG})
    assert json.loads(data.rstrip(b"\0")) == {"msgid": 1}
    assert decode(data)["msgid"] == MsgType.LOGIN_MSG


def test_decode_accepts_str_and_unterminated_bytes():
    assert decode('{"a":1}') == {"a": 1}
    assert decode(b'{"a":1}') == {"a": 1}
    assert decode('{"a":1}\0') == {"a": 1}


def test_decode_rejects_non_object():
    with pytest.raises(ValueError):
        decode(b"[1,2,3]\0")


def test_decode_rejects_garbage():
    with pytest.raises(ValueError):
        decode(b"not json")