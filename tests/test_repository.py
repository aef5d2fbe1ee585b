import logging
import uuid

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.exc import IntegrityError, OperationalError

from answer_service.entities import NIL_UUID, Answer
from answer_service.repository import Repository


@pytest.fixture
def engine():
    eng = create_engine("sqlite://")
    yield eng
    eng.dispose()


@pytest.fixture
def repo(engine):
    repository = Repository(engine, logging.getLogger("test.repository"))
    repository.auto_migrate()
    return repository


def _answer():
    answer = Answer(form_id=uuid.uuid4(), user_id=uuid.uuid4())
    return answer


def _rows(engine, sql):
    with engine.connect() as conn:
        return conn.execute(text(sql)).all()


def test_create_assigns_id_and_stores_row(repo, engine):
    answer = _answer()
    repo.create_answer(answer)
    assert answer.id != NIL_UUID
    rows = _rows(engine, "SELECT id, form_id, user_id, is_complete FROM answers")
    assert rows == [(str(answer.id), str(answer.form_id), str(answer.user_id), False)]
    assert answer.created_at is not None and answer.updated_at is not None


def test_create_keeps_existing_id(repo, engine):
    answer = _answer()
    fixed = uuid.uuid4()
    answer.id = fixed
    repo.create_answer(answer)
    assert answer.id == fixed
    assert _rows(engine, "SELECT id FROM answers") == [(str(fixed),)]


def test_create_stores_elements_bound_to_answer(repo, engine):
    answer = _answer()
    answer.add_element(1, "first")
    answer.add_element(2, "second")
    repo.create_answer(answer)

    rows = _rows(
        engine,
        "SELECT id, answer_id, question_order_number, content "
        "FROM answer_elements ORDER BY question_order_number",
    )
    assert [(r[1], r[2], r[3]) for r in rows] == [
        (str(answer.id), 1, "first"),
        (str(answer.id), 2, "second"),
    ]
    assert [e.id for e in answer.elements] == [r[0] for r in rows]
    assert all(e.answer_id == answer.id for e in answer.elements)
    assert len({e.id for e in answer.elements}) == 2


def test_create_duplicate_id_raises(repo):
    first = _answer()
    repo.create_answer(first)
    second = _answer()
    second.id = first.id
    with pytest.raises(IntegrityError):
        repo.create_answer(second)


def test_create_without_tables_raises(engine):
    repository = Repository(engine, logging.getLogger("test.repository"))
    with pytest.raises(OperationalError):
        repository.create_answer(_answer())


def test_delete_removes_answer_and_elements(repo, engine):
    kept = _answer()
    kept.add_element(1, "kept")
    gone = _answer()
    gone.add_element(1, "gone")
    repo.create_answer(kept)
    repo.create_answer(gone)

    repo.delete_answer(gone.id)

    assert _rows(engine, "SELECT id FROM answers") == [(str(kept.id),)]
    assert _rows(engine, "SELECT content FROM answer_elements") == [("kept",)]


def test_delete_unknown_id_leaves_data(repo, engine):
    answer = _answer()
    repo.create_answer(answer)
    repo.delete_answer(uuid.uuid4())
    assert _rows(engine, "SELECT id FROM answers") == [(str(answer.id),)]


def test_delete_without_tables_raises(engine):
    repository = Repository(engine, logging.getLogger("test.repository"))
    with pytest.raises(OperationalError):
        repository.delete_answer(uuid.uuid4())