import base64
from datetime import datetime, timezone

import pytest

from jobqueue.adapters.base import (
    QueueAdapter,
    QueueEmptyError,
    QueueError,
    decode_item,
    encode_item,
)


class _FixedSizeAdapter(QueueAdapter):
    def __init__(self, count):
        self.count = count

    def enqueue(self, queue_name, item):
        self.count += 1

    def dequeue(self, queue_name):
        raise QueueEmptyError(queue_name)

    def enqueue_batch(self, queue_name, items):
        self.count += len(list(items))

    def size(self, queue_name):
        return self.count

    def clear(self, queue_name):
        self.count = 0


class _WithDict:
    def __init__(self, ident):
        self.ident = ident

    def to_dict(self):
        return {"id": self.ident}


def test_abstract_adapter_cannot_be_instantiated():
    with pytest.raises(TypeError):
        QueueAdapter()


def test_is_empty_follows_size():
    adapter = _FixedSizeAdapter(0)
    assert QueueAdapter.is_empty(adapter, "jobs") is True
    adapter.enqueue("jobs", "item")
    assert QueueAdapter.is_empty(adapter, "jobs") is False
    adapter.enqueue_batch("jobs", ["a", "b"])
    assert QueueAdapter.is_empty(adapter, "jobs") is False
    adapter.clear("jobs")
    assert QueueAdapter.is_empty(adapter, "jobs") is True


def test_encode_is_compact_json():
    assert encode_item({"key": "value"}) == b'{"key":"value"}'
    assert encode_item("item") == b'"item"'


@pytest.mark.parametrize(
    "value",
    [{"key": "value"}, [1, 2, 3], "text", 42, None, True, {"nested": {"list": [1, "a"]}}],
)
def test_round_trip(value):
    assert decode_item(encode_item(value)) == value


def test_to_dict_is_used():
    assert decode_item(encode_item(_WithDict("abc"))) == {"id": "abc"}
    assert decode_item(encode_item([_WithDict("x"), _WithDict("y")])) == [
        {"id": "x"},
        {"id": "y"},
    ]


def test_datetime_encoded_as_utc_string():
    moment = datetime.now(timezone.utc)
    text = decode_item(encode_item(moment))
    assert text.endswith("Z")
    assert datetime.fromisoformat(text[:-1] + "+00:00") == moment


def test_bytes_encoded_as_base64():
    raw = b"\x00\x01payload"
    assert base64.b64decode(decode_item(encode_item(raw))) == raw


def test_unserializable_item_raises():
    with pytest.raises(QueueError, match="error marshaling queue item"):
        encode_item(object())


def test_nan_is_rejected():
    with pytest.raises(QueueError):
        encode_item(float("nan"))


def test_decode_invalid_json_raises():
    with pytest.raises(QueueError):
        decode_item(b"{invalid json}")


def test_decode_accepts_text():
    assert decode_item('{"a":[1]}') == {"a": [1]}


def test_queue_empty_error_message():
    error = QueueEmptyError("jobs")
    assert str(error) == "queue is empty: jobs"
    assert error.queue_name == "jobs"
    with pytest.raises(QueueError):
        raise error


def test_queue_empty_error_custom_message():
    assert str(QueueEmptyError("jobs", "priority queue is empty")) == (
        "priority queue is empty: jobs"
    )