"""Persistence of answers and their elements in a SQL database."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from .entities import Answer

METADATA = MetaData()

ANSWERS = Table(
    "answers",
    METADATA,
    Column("id", String(36), primary_key=True),
    Column("created_at", DateTime(timezone=True)),
    Column("updated_at", DateTime(timezone=True)),
    Column("form_id", String(36)),
    Column("user_id", String(36)),
    Column("is_complete", Boolean, nullable=False, default=False),
)

ANSWER_ELEMENTS = Table(
    "answer_elements",
    METADATA,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("created_at", DateTime(timezone=True)),
    Column("updated_at", DateTime(timezone=True)),
    Column("deleted_at", DateTime(timezone=True), nullable=True, index=True),
    Column(
        "answer_id",
        String(36),
        ForeignKey("answers.id", onupdate="CASCADE", ondelete="CASCADE"),
    ),
    Column("question_order_number", Integer),
    Column("content", Text),
)


class Repository:
    """Stores answers through a SQLAlchemy engine."""

    def __init__(self, engine: Engine, logger: logging.Logger | logging.LoggerAdapter) -> None:
        self._engine = engine
        self._logger = logger

    def auto_migrate(self) -> None:
        """Create the answer tables if they do not exist yet."""
        METADATA.create_all(self._engine)

    def create_answer(self, answer: Answer) -> None:
        """Insert the answer and all its elements in one transaction."""
        answer.ensure_id()
        now = datetime.now().astimezone()
        if answer.created_at is None:
            answer.created_at = now
        if answer.updated_at is None:
            answer.updated_at = now

        new_ids: list[int] = []
        try:
            with self._engine.begin() as conn:
                conn.execute(
                    ANSWERS.insert().values(
                        id=str(answer.id),
                        created_at=answer.created_at,
                        updated_at=answer.updated_at,
                        form_id=str(answer.form_id),
                        user_id=str(answer.user_id),
                        is_complete=answer.is_complete,
                    )
                )
                for element in answer.elements:
                    values: dict[str, Any] = {
                        "created_at": now,
                        "updated_at": now,
                        "answer_id": str(answer.id),
                        "question_order_number": element.question_order_number,
                        "content": element.content,
                    }
                    if element.id:
                        values["id"] = element.id
                    result = conn.execute(ANSWER_ELEMENTS.insert().values(**values))
                    new_ids.append(result.inserted_primary_key[0])
        except SQLAlchemyError as exc:
            self._logger.error(
                "error create answer",
                extra={"answer_id": str(answer.id), "error": str(exc)},
            )
            raise

        for element, new_id in zip(answer.elements, new_ids):
            element.answer_id = answer.id
            element.id = new_id

    def delete_answer(self, answer_id: uuid.UUID) -> None:
        """Delete the answer with the given ID together with its elements."""
        key = str(answer_id)
        try:
            with self._engine.begin() as conn:
                conn.execute(
                    ANSWER_ELEMENTS.delete().where(ANSWER_ELEMENTS.c.answer_id == key)
                )
                conn.execute(ANSWERS.delete().where(ANSWERS.c.id == key))
        except SQLAlchemyError as exc:
            self._logger.error(
                "error delete answer",
                extra={"answer_id": key, "error": str(exc)},
            )
            raise