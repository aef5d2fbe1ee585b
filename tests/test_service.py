import threading
import uuid

import pytest

from answer_service.entities import NIL_UUID, Answer
from answer_service.service import (
    ANSWER_CREATED_EVENT_TYPE,
    ANSWER_DELETED_EVENT_TYPE,
    DEFAULT_RETRIER_ATTEMPTS,
    AnswerNilError,
    DeletePayload,
    InvalidIDError,
    Service,
    ServiceError,
)


class FakeRepository:
    def __init__(self, fail=False):
        self.fail = fail
        self.created = []
        self.deleted = []

    def create_answer(self, answer):
        if self.fail:
            raise RuntimeError("db down")
        answer.ensure_id()
        self.created.append(answer)

    def delete_answer(self, answer_id):
        if self.fail:
            raise RuntimeError("db down")
        self.deleted.append(answer_id)


class FakeCacher:
    def __init__(self, failures=0):
        self.failures = failures
        self.lock = threading.Lock()
        self.cached = []
        self.deleted = []
        self.calls = 0

    def _maybe_fail(self):
        with self.lock:
            self.calls += 1
            if self.calls <= self.failures:
                raise ConnectionError("redis down")

    def do_caching(self, key, payload):
        self._maybe_fail()
        self.cached.append((key, payload))

    def delete_from_cache(self, key):
        self._maybe_fail()
        self.deleted.append(key)


class FakePublisher:
    def __init__(self, fail=False):
        self.fail = fail
        self.published = []

    def publish(self, payload, routing_key):
        if self.fail:
            raise ConnectionError("broker down")
        self.published.append((payload, routing_key))


def _service(cacher=None, publisher=None, repo=None, timeout=10.0):
    return Service(
        cacher or FakeCacher(),
        publisher or FakePublisher(),
        repo or FakeRepository(),
        timeout,
        0,
    )


def _answer():
    return Answer(form_id=uuid.uuid4(), user_id=uuid.uuid4())


def test_add_stores_caches_and_publishes():
    cacher, publisher, repo = FakeCacher(), FakePublisher(), FakeRepository()
    service = _service(cacher, publisher, repo)
    answer = _answer()

    service.add(answer)

    assert repo.created == [answer]
    assert answer.id != NIL_UUID
    assert cacher.cached == [(f"answer:{answer.id}", answer)]
    assert publisher.published == [(answer, ANSWER_CREATED_EVENT_TYPE)]


def test_add_none_raises():
    repo = FakeRepository()
    with pytest.raises(AnswerNilError):
        _service(repo=repo).add(None)
    assert repo.created == []


def test_add_repository_failure_skips_cache_and_publish():
    cacher, publisher = FakeCacher(), FakePublisher()
    service = _service(cacher, publisher, FakeRepository(fail=True))
    with pytest.raises(ServiceError, match="failed to create answer"):
        service.add(_answer())
    assert cacher.calls == 0
    assert publisher.published == []


def test_add_retries_cache_until_success():
    cacher = FakeCacher(failures=DEFAULT_RETRIER_ATTEMPTS - 1)
    service = _service(cacher=cacher)
    answer = _answer()
    service.add(answer)
    assert cacher.calls == DEFAULT_RETRIER_ATTEMPTS
    assert cacher.cached == [(f"answer:{answer.id}", answer)]


def test_add_cache_failure_after_all_attempts():
    cacher = FakeCacher(failures=100)
    service = _service(cacher=cacher)
    with pytest.raises(ServiceError, match="failed to complete async operations") as info:
        service.add(_answer())
    assert isinstance(info.value.__cause__, ConnectionError)
    assert cacher.calls == DEFAULT_RETRIER_ATTEMPTS


def test_add_publish_failure_raises():
    service = _service(publisher=FakePublisher(fail=True))
    with pytest.raises(ServiceError) as info:
        service.add(_answer())
    assert isinstance(info.value.__cause__, ConnectionError)


def test_add_expired_timeout_fails_cache_operation():
    cacher = FakeCacher()
    service = _service(cacher=cacher, timeout=-1)
    with pytest.raises(ServiceError) as info:
        service.add(_answer())
    assert isinstance(info.value.__cause__, TimeoutError)
    assert cacher.calls == 0


def test_delete_removes_and_publishes():
    cacher, publisher, repo = FakeCacher(), FakePublisher(), FakeRepository()
    service = _service(cacher, publisher, repo)
    answer_id = str(uuid.uuid4())

    service.delete(answer_id)

    assert repo.deleted == [uuid.UUID(answer_id)]
    assert cacher.deleted == [f"answer:{answer_id}"]
    assert publisher.published == [
        (DeletePayload(id=answer_id), ANSWER_DELETED_EVENT_TYPE)
    ]


def test_delete_invalid_id_raises_before_repository():
    repo = FakeRepository()
    with pytest.raises(InvalidIDError, match="not-a-uuid"):
        _service(repo=repo).delete("not-a-uuid")
    assert repo.deleted == []


def test_delete_repository_failure():
    cacher = FakeCacher()
    service = _service(cacher=cacher, repo=FakeRepository(fail=True))
    with pytest.raises(ServiceError, match="failed to delete answer"):
        service.delete(str(uuid.uuid4()))
    assert cacher.calls == 0


def test_delete_payload_to_dict():
    answer_id = str(uuid.uuid4())
    assert DeletePayload(id=answer_id).to_dict() == {"id": answer_id}