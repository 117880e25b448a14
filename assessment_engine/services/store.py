"""
Persistence operations used by the selector, the attempt tracker and the stats
aggregator. Nothing here commits on its own except ``commit``; each engine
operation decides when its single unit of work is applied.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload
from sqlalchemy.orm.exc import StaleDataError

from assessment_engine.core.errors import ConcurrentModificationError, DuplicateActiveAttemptError, NotFoundError
from assessment_engine.models.orm import (
    AnswerRecord, Attempt, AttemptStatus, Question, QuestionSet, question_tags,
)

logger = logging.getLogger(__name__)


@dataclass
class QuestionFilters:
    topic_id: Optional[int] = None
    tag_ids: List[int] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {"topic_id": self.topic_id, "tag_ids": list(self.tag_ids)}


class AssessmentStore:
    def __init__(self, db: Session):
        self.db = db

    # ---- questions ----

    def _pool(self, filters: QuestionFilters, *columns):
        stmt = select(*columns).where(Question.is_active.is_(True))
        if filters.topic_id is not None:
            stmt = stmt.where(Question.topic_id == filters.topic_id)
        if filters.tag_ids:
            tagged = select(question_tags.c.question_id).where(question_tags.c.tag_id.in_(filters.tag_ids))
            stmt = stmt.where(Question.id.in_(tagged))
        return stmt

    def find_active_question_refs(self, filters: QuestionFilters, difficulty: Optional[str] = None) -> List[Tuple[int, str]]:
        """(id, difficulty) of every active question matching the filters."""
        stmt = self._pool(filters, Question.id, Question.difficulty)
        if difficulty is not None:
            stmt = stmt.where(Question.difficulty == difficulty)
        return [(int(r[0]), r[1]) for r in self.db.execute(stmt.order_by(Question.id)).all()]

    def find_active_questions(self, filters: QuestionFilters) -> List[Question]:
        stmt = self._pool(filters, Question).options(selectinload(Question.options)).order_by(Question.id)
        return list(self.db.scalars(stmt).all())

    def get_question(self, question_id: int) -> Question:
        q = self.db.get(Question, question_id)
        if q is None:
            raise NotFoundError("Question not found", question_id=question_id)
        return q

    def get_questions(self, ids: Iterable[int]) -> Dict[int, Question]:
        ids = list(ids)
        if not ids:
            return {}
        rows = self.db.scalars(select(Question).where(Question.id.in_(ids)).options(selectinload(Question.options))).all()
        return {q.id: q for q in rows}

    def increment_question_stats(self, outcomes: Iterable[Tuple[int, bool]]) -> None:
        """Atomic counter bumps; one statement for correct answers, one for the rest."""
        correct, incorrect = [], []
        for question_id, is_correct in outcomes:
            (correct if is_correct else incorrect).append(question_id)
        if correct:
            self.db.execute(
                update(Question).where(Question.id.in_(correct))
                .values(times_used=Question.times_used + 1, times_correct=Question.times_correct + 1)
                .execution_options(synchronize_session=False)
            )
        if incorrect:
            self.db.execute(
                update(Question).where(Question.id.in_(incorrect))
                .values(times_used=Question.times_used + 1)
                .execution_options(synchronize_session=False)
            )

    # ---- question sets ----

    def get_question_set(self, set_id: int) -> QuestionSet:
        qs = self.db.scalar(select(QuestionSet).where(QuestionSet.id == set_id).options(selectinload(QuestionSet.items)))
        if qs is None:
            raise NotFoundError("Question set not found", question_set_id=set_id)
        return qs

    def increment_attempt_count(self, set_id: int) -> None:
        self.db.execute(
            update(QuestionSet).where(QuestionSet.id == set_id)
            .values(attempt_count=QuestionSet.attempt_count + 1)
            .execution_options(synchronize_session=False)
        )

    # ---- attempts ----

    def get_attempt(self, attempt_id: str, user_id: Optional[str] = None) -> Attempt:
        attempt = self.db.get(Attempt, attempt_id)
        # another user's attempt is reported exactly like a missing one
        if attempt is None or (user_id is not None and attempt.user_id != user_id):
            raise NotFoundError("Attempt not found", attempt_id=attempt_id)
        return attempt

    def find_active_attempt(self, user_id: str, set_id: int) -> Optional[Attempt]:
        return self.db.scalar(select(Attempt).where(
            Attempt.user_id == user_id,
            Attempt.question_set_id == set_id,
            Attempt.status == AttemptStatus.IN_PROGRESS.value,
        ))

    def create_attempt(self, attempt: Attempt) -> Attempt:
        self.db.add(attempt)
        try:
            self.db.flush()
        except IntegrityError:
            self.db.rollback()
            existing = self.find_active_attempt(attempt.user_id, attempt.question_set_id)
            if existing is None:
                raise
            logger.warning("Lost start race for user=%s set=%s", attempt.user_id, attempt.question_set_id)
            raise DuplicateActiveAttemptError(
                "An attempt for this question set is already in progress", attempt_id=existing.id
            )
        return attempt

    def list_attempts(self, user_id: str, status: Optional[str] = None, set_id: Optional[int] = None,
                      page: int = 1, page_size: int = 25) -> Tuple[List[Attempt], int]:
        where = [Attempt.user_id == user_id]
        if status:
            where.append(Attempt.status == status)
        if set_id is not None:
            where.append(Attempt.question_set_id == set_id)
        total = self.db.scalar(select(func.count()).select_from(Attempt).where(*where)) or 0
        rows = self.db.scalars(
            select(Attempt).where(*where).order_by(Attempt.started_at.desc())
            .offset((page - 1) * page_size).limit(page_size)
        ).all()
        return list(rows), int(total)

    def find_expired_attempt_ids(self, deadline: datetime) -> List[str]:
        """Timed attempts whose expiry is before ``deadline``."""
        return list(self.db.scalars(select(Attempt.id).where(
            Attempt.status == AttemptStatus.IN_PROGRESS.value,
            Attempt.expires_at.is_not(None),
            Attempt.expires_at < deadline,
        )).all())

    def find_idle_attempt_ids(self, idle_before: datetime) -> List[str]:
        """Untimed attempts with no activity since ``idle_before``."""
        return list(self.db.scalars(select(Attempt.id).where(
            Attempt.status == AttemptStatus.IN_PROGRESS.value,
            Attempt.expires_at.is_(None),
            Attempt.last_activity_at < idle_before,
        )).all())

    # ---- answer records ----

    def get_answers(self, attempt_id: str) -> Dict[int, AnswerRecord]:
        rows = self.db.scalars(select(AnswerRecord).where(AnswerRecord.attempt_id == attempt_id)).all()
        return {r.question_id: r for r in rows}

    def upsert_answer(self, attempt: Attempt, question_id: int, label: str, is_correct: bool, now: datetime) -> AnswerRecord:
        record = self.db.scalar(select(AnswerRecord).where(
            AnswerRecord.attempt_id == attempt.id, AnswerRecord.question_id == question_id
        ))
        if record is None:
            record = AnswerRecord(attempt_id=attempt.id, question_id=question_id)
            self.db.add(record)
        record.selected_label = label
        record.is_correct = is_correct
        record.submitted_at = now
        # the attempt row must change on every answer so its version bumps even when
        # the clock has not moved; this serialises submits against complete()
        attempt.answer_writes = (attempt.answer_writes or 0) + 1
        attempt.last_activity_at = now
        return record

    # ---- unit of work ----

    def flush(self) -> None:
        try:
            self.db.flush()
        except StaleDataError:
            self.db.rollback()
            raise ConcurrentModificationError("Attempt was modified concurrently; nothing was applied")

    def commit(self) -> None:
        try:
            self.db.commit()
        except StaleDataError:
            self.db.rollback()
            raise ConcurrentModificationError("Attempt was modified concurrently; nothing was applied")

    def rollback(self) -> None:
        self.db.rollback()
