import json
import logging
import queue
import threading
import uuid

import pytest

from answer_service.entities import Answer, new_event
from answer_service.listener import (
    EVENT_TYPE_ANSWER_CREATE,
    EVENT_TYPE_ANSWER_DELETE,
    EventChannelFullError,
    Listener,
)

LOGGER = logging.getLogger("test.listener")


class FakeService:
    def __init__(self, fail=False):
        self.added = []
        self.deleted = []
        self.fail = fail

    def add(self, answer):
        self.added.append(answer)
        if self.fail:
            raise RuntimeError("add failed")

    def delete(self, answer_id):
        self.deleted.append(answer_id)
        if self.fail:
            raise RuntimeError("delete failed")


def _run_until_drained(listener, events):
    stop = threading.Event()
    thread = threading.Thread(target=listener.run, args=(stop,), daemon=True)
    thread.start()
    events.join()
    stop.set()
    thread.join(timeout=5)
    return thread


def _make_answer():
    return Answer(id=uuid.uuid4(), form_id=uuid.uuid4(), user_id=uuid.uuid4())


def test_send_event_raises_when_full():
    listener = Listener.with_channel_size(LOGGER, FakeService(), 1)
    listener.send_event(new_event("x", b"{}"))
    event = new_event("y", b"{}")
    with pytest.raises(EventChannelFullError) as info:
        listener.send_event(event)
    assert event.id in str(info.value)
    assert listener.event_channel_length() == 1


def test_channel_capacity_and_length():
    listener = Listener.with_channel_size(LOGGER, FakeService(), 5)
    assert listener.event_channel_capacity() == 5
    assert listener.event_channel_length() == 0
    listener.send_event(new_event("x", b"{}"))
    listener.send_event(new_event("x", b"{}"))
    assert listener.event_channel_length() == 2


def test_create_event_adds_answer():
    service = FakeService()
    events = queue.Queue(maxsize=10)
    listener = Listener(LOGGER, service, events)
    answer = _make_answer()
    answer.add_element(1, "yes")
    payload = json.dumps(answer.to_dict()).encode()
    listener.send_event(new_event(EVENT_TYPE_ANSWER_CREATE, payload))

    thread = _run_until_drained(listener, events)

    assert not thread.is_alive()
    assert len(service.added) == 1
    added = service.added[0]
    assert added.id == answer.id
    assert added.form_id == answer.form_id
    assert [e.content for e in added.elements] == ["yes"]


def test_delete_event_deletes_answer():
    service = FakeService()
    events = queue.Queue()
    listener = Listener(LOGGER, service, events)
    answer_id = str(uuid.uuid4())
    listener.send_event(
        new_event(EVENT_TYPE_ANSWER_DELETE, json.dumps({"id": answer_id}).encode())
    )
    _run_until_drained(listener, events)
    assert service.deleted == [answer_id]


@pytest.mark.parametrize(
    "event_type,payload",
    [
        ("unknown.type", b"{}"),
        (EVENT_TYPE_ANSWER_CREATE, b"not json"),
        (EVENT_TYPE_ANSWER_CREATE, b'{"id": 5}'),
        (EVENT_TYPE_ANSWER_DELETE, b"{}"),
        (EVENT_TYPE_ANSWER_DELETE, b'{"id": 7}'),
        (EVENT_TYPE_ANSWER_DELETE, b"[1, 2]"),
    ],
)
def test_bad_events_reach_no_service_call(event_type, payload):
    service = FakeService()
    events = queue.Queue()
    listener = Listener(LOGGER, service, events)
    listener.send_event(new_event(event_type, payload))
    _run_until_drained(listener, events)
    assert service.added == []
    assert service.deleted == []
    assert listener.event_channel_length() == 0


def test_service_failure_does_not_stop_processing():
    service = FakeService(fail=True)
    events = queue.Queue()
    listener = Listener(LOGGER, service, events)
    first, second = str(uuid.uuid4()), str(uuid.uuid4())
    for answer_id in (first, second):
        listener.send_event(
            new_event(EVENT_TYPE_ANSWER_DELETE, json.dumps({"id": answer_id}).encode())
        )
    _run_until_drained(listener, events)
    assert service.deleted == [first, second]


def test_run_returns_when_stopped():
    listener = Listener.with_channel_size(LOGGER, FakeService(), 3)
    stop = threading.Event()
    stop.set()
    listener.run(stop)
    assert listener.event_channel_length() == 0