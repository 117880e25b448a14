"""
Attempt Tracker.

One state machine for practice sessions and quizzes:

    in_progress -> completed | abandoned

Both terminal states are final. Answers overwrite per (attempt, question); the
score is computed once, from the stored answers, at the completed transition.
Each operation is a single unit of work: it commits once, or raises and leaves
nothing behind. Writes to an attempt are guarded by its version column, so a
submit racing a complete fails one side with ConcurrentModificationError instead
of interleaving.

Quiz time limits are enforced by ``TimeLimitedAttemptTracker`` wrapped around the
shared core.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Mapping, Optional
from uuid import uuid4

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from assessment_engine.core.config import Settings, settings
from assessment_engine.core.errors import (
    AttemptExpiredError, AttemptNotActiveError, ConcurrentModificationError, ConfigurationError,
    DuplicateActiveAttemptError, InvalidAnswerError, QuestionSetUnavailableError, StateConflictError,
)
from assessment_engine.models.orm import AnswerRecord, Attempt, AttemptKind, AttemptStatus, utcnow
from assessment_engine.services.question_sets import public_question
from assessment_engine.services.stats import StatsAggregator
from assessment_engine.services.store import AssessmentStore

logger = logging.getLogger(__name__)

IN_PROGRESS = AttemptStatus.IN_PROGRESS.value
COMPLETED = AttemptStatus.COMPLETED.value
ABANDONED = AttemptStatus.ABANDONED.value

END_SUBMITTED = "submitted"
END_TIME_LIMIT = "time_limit"
END_STALE = "stale"
END_USER = "user"
END_ADMIN = "admin"


def percentage(part: int, whole: int) -> int:
    """round(100 * part / whole), halves rounded up; 0 for an empty whole."""
    if whole <= 0:
        return 0
    return (200 * part + whole) // (2 * whole)


@dataclass
class Score:
    correct: int
    wrong: int
    skipped: int
    earned_points: int
    total_points: int
    score: int


def score_attempt(items: List[Mapping], answers: Mapping[int, AnswerRecord]) -> Score:
    """Score the snapshot; unanswered questions stay in the denominator as incorrect."""
    correct = wrong = skipped = earned = total_points = 0
    for item in items:
        qid, points = int(item["question_id"]), int(item.get("points", 1))
        total_points += points
        record = answers.get(qid)
        if record is None:
            skipped += 1
        elif record.is_correct:
            correct += 1
            earned += points
        else:
            wrong += 1
    return Score(correct=correct, wrong=wrong, skipped=skipped, earned_points=earned,
                 total_points=total_points, score=percentage(correct, len(items)))


def summarize(attempt: Attempt) -> Dict:
    return {
        "attempt_id": attempt.id,
        "question_set_id": attempt.question_set_id,
        "kind": attempt.kind,
        "status": attempt.status,
        "started_at": attempt.started_at,
        "expires_at": attempt.expires_at,
        "ended_at": attempt.ended_at,
        "end_reason": attempt.end_reason,
        "total_questions": attempt.total_questions,
        "correct_count": attempt.correct_count,
        "wrong_count": attempt.wrong_count,
        "skipped_count": attempt.skipped_count,
        "total_points": attempt.total_points,
        "earned_points": attempt.earned_points,
        "score": attempt.score,
        "passing_score": attempt.passing_score,
        "passed": attempt.passed,
        "time_spent_seconds": attempt.time_spent_seconds,
    }


class AttemptTracker:
    def __init__(self, db: Session, config: Settings = settings, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.store = AssessmentStore(db)
        self.stats = StatsAggregator(self.store)
        self.config = config
        self.clock = clock

    def _require_active(self, attempt: Attempt, action: str) -> None:
        if attempt.status != IN_PROGRESS:
            logger.warning("Rejected %s on attempt=%s status=%s", action, attempt.id, attempt.status)
            raise AttemptNotActiveError(f"Cannot {action}: attempt is {attempt.status}", status=attempt.status)

    def _close(self, attempt: Attempt, status: str, reason: str, now: datetime) -> None:
        attempt.status = status
        attempt.ended_at = now
        attempt.end_reason = reason
        attempt.time_spent_seconds = max(0, int((now - attempt.started_at).total_seconds()))

    def start(self, user_id: str, question_set_id: int, kind: str = AttemptKind.PRACTICE.value) -> Dict:
        try:
            kind = AttemptKind(kind).value
        except ValueError:
            raise ConfigurationError("Unknown attempt kind", kind=kind, allowed=[k.value for k in AttemptKind])

        qs = self.store.get_question_set(question_set_id)
        own_practice = qs.kind == "practice" and qs.created_by == user_id
        if not qs.is_published and not own_practice:
            raise QuestionSetUnavailableError("Question set is not published", question_set_id=question_set_id)
        existing = self.store.find_active_attempt(user_id, question_set_id)
        if existing is not None:
            logger.warning("Duplicate start user=%s set=%s active=%s", user_id, question_set_id, existing.id)
            raise DuplicateActiveAttemptError(
                "An attempt for this question set is already in progress", attempt_id=existing.id
            )

        # snapshot: ids and points only, later edits to the set do not reach this attempt
        items = [{"question_id": it.question_id, "points": it.points} for it in qs.items]
        questions = self.store.get_questions([it["question_id"] for it in items])

        now = self.clock()
        time_limit = passing = expires_at = None
        if kind == AttemptKind.QUIZ.value:
            time_limit = min(qs.time_limit_minutes or self.config.DEFAULT_TIME_LIMIT_MINUTES,
                             self.config.MAX_TIME_LIMIT_MINUTES)
            passing = qs.passing_score if qs.passing_score is not None else self.config.DEFAULT_PASSING_SCORE
            expires_at = now + timedelta(minutes=time_limit)

        attempt = Attempt(
            id=str(uuid4()), user_id=user_id, question_set_id=qs.id, kind=kind, status=IN_PROGRESS,
            items=items, total_questions=len(items), total_points=sum(it["points"] for it in items),
            time_limit_minutes=time_limit, passing_score=passing,
            started_at=now, expires_at=expires_at, last_activity_at=now,
        )
        self.store.create_attempt(attempt)
        self.store.increment_attempt_count(qs.id)
        self.store.commit()
        logger.info("Started %s attempt=%s user=%s set=%s questions=%d", kind, attempt.id, user_id, qs.id, len(items))

        view = summarize(attempt)
        view["time_limit_minutes"] = attempt.time_limit_minutes
        view["questions"] = [
            public_question(questions[it["question_id"]], it["points"], i) for i, it in enumerate(items)
        ]
        return view

    def submit_answer(self, attempt_id: str, question_id: int, selected_label: str, user_id: Optional[str] = None) -> Dict:
        attempt = self.store.get_attempt(attempt_id, user_id)
        self._require_active(attempt, "submit an answer")
        if question_id not in attempt.question_ids:
            raise InvalidAnswerError("Question is not part of this attempt", question_id=question_id)
        question = self.store.get_question(question_id)
        label = (selected_label or "").strip().upper()
        if label not in question.option_labels():
            raise InvalidAnswerError(
                "Selected label is not an option of this question",
                question_id=question_id, label=label, options=question.option_labels(),
            )

        is_correct = label == question.correct_label
        self.store.upsert_answer(attempt, question_id, label, is_correct, self.clock())
        try:
            self.store.commit()
        except IntegrityError:
            # a concurrent first answer to the same question won the insert
            self.store.rollback()
            logger.warning("Concurrent answer insert attempt=%s question=%s", attempt_id, question_id)
            raise ConcurrentModificationError("Answer was submitted concurrently; nothing was applied",
                                              attempt_id=attempt_id, question_id=question_id)
        except ConcurrentModificationError:
            logger.warning("Stale submit attempt=%s question=%s", attempt_id, question_id)
            raise

        ack = {"attempt_id": attempt_id, "question_id": question_id, "selected_label": label, "accepted": True, "correct": None}
        # quizzes never reveal correctness before the end
        if attempt.kind == AttemptKind.PRACTICE.value:
            ack["correct"] = is_correct
        return ack

    def complete(self, attempt_id: str, user_id: Optional[str] = None) -> Dict:
        attempt = self.store.get_attempt(attempt_id, user_id)
        if attempt.status == COMPLETED:
            logger.info("Complete replayed for attempt=%s, returning stored result", attempt.id)
            return summarize(attempt)
        self._require_active(attempt, "complete")

        answers = self.store.get_answers(attempt.id)
        result = score_attempt(attempt.items or [], answers)
        self._close(attempt, COMPLETED, END_SUBMITTED, self.clock())
        attempt.correct_count = result.correct
        attempt.wrong_count = result.wrong
        attempt.skipped_count = result.skipped
        attempt.earned_points = result.earned_points
        attempt.score = result.score
        if attempt.passing_score is not None:
            attempt.passed = result.score >= attempt.passing_score

        try:
            # version check first; counters only move for the write that wins
            self.store.flush()
            self.stats.apply_completed_attempt(attempt, answers)
            self.store.commit()
        except ConcurrentModificationError:
            logger.warning("Stale complete on attempt=%s, left in_progress", attempt_id)
            raise
        logger.info("Completed attempt=%s score=%d correct=%d/%d", attempt_id, result.score, result.correct, len(attempt.items or []))
        return summarize(attempt)

    def abandon(self, attempt_id: str, user_id: Optional[str] = None, reason: str = END_USER) -> Dict:
        attempt = self.store.get_attempt(attempt_id, user_id)
        self._require_active(attempt, "abandon")
        self._close(attempt, ABANDONED, reason, self.clock())
        self.store.commit()
        logger.info("Abandoned attempt=%s reason=%s", attempt_id, reason)
        return summarize(attempt)

    def get_attempt_view(self, attempt_id: str, user_id: Optional[str] = None) -> Dict:
        attempt = self.store.get_attempt(attempt_id, user_id)
        questions = self.store.get_questions(attempt.question_ids)
        answers = self.store.get_answers(attempt.id)
        show_correct = attempt.kind == AttemptKind.PRACTICE.value or attempt.status == COMPLETED
        rows = []
        for i, item in enumerate(attempt.items or []):
            qid = int(item["question_id"])
            row = public_question(questions[qid], int(item["points"]), i)
            record = answers.get(qid)
            row["selected_label"] = record.selected_label if record else None
            row["correct"] = record.is_correct if (record and show_correct) else None
            rows.append(row)
        view = summarize(attempt)
        view["time_limit_minutes"] = attempt.time_limit_minutes
        view["answered"] = len([qid for qid in attempt.question_ids if qid in answers])
        view["questions"] = rows
        return view

    def _details_hidden(self, attempt: Attempt) -> bool:
        if attempt.kind != AttemptKind.QUIZ.value or not attempt.time_limit_minutes:
            return False
        reveal_after = attempt.time_limit_minutes * 60 * self.config.RESULT_REVEAL_FRACTION
        return (attempt.time_spent_seconds or 0) < reveal_after

    def get_result(self, attempt_id: str, user_id: Optional[str] = None) -> Dict:
        attempt = self.store.get_attempt(attempt_id, user_id)
        if attempt.status != COMPLETED:
            raise StateConflictError("Results are available only for completed attempts", status=attempt.status)
        hidden = self._details_hidden(attempt)
        questions = self.store.get_questions(attempt.question_ids)
        answers = self.store.get_answers(attempt.id)
        rows = []
        for i, item in enumerate(attempt.items or []):
            qid = int(item["question_id"])
            q, record = questions[qid], answers.get(qid)
            rows.append({
                "question_id": qid,
                "position": i,
                "points": int(item["points"]),
                "difficulty": q.difficulty,
                "selected_label": record.selected_label if record else None,
                "correct": bool(record and record.is_correct),
                "correct_label": None if hidden else q.correct_label,
                "explanation": None if hidden else q.explanation,
            })
        result = summarize(attempt)
        result["details_hidden"] = hidden
        result["questions"] = rows
        return result

    def list_attempts(self, user_id: str, status: Optional[str] = None, question_set_id: Optional[int] = None,
                      page: int = 1, page_size: int = 25) -> Dict:
        if status is not None and status not in {s.value for s in AttemptStatus}:
            raise ConfigurationError("Unknown attempt status", status=status)
        rows, total = self.store.list_attempts(user_id, status, question_set_id, page, page_size)
        return {"items": [summarize(a) for a in rows], "total": total, "page": page, "page_size": page_size}


class TimeLimitedAttemptTracker:
    """
    Time-limit enforcement around ``AttemptTracker``.

    A quiz past ``expires_at`` plus the grace allowance is abandoned with
    ``end_reason="time_limit"`` on its next submit or complete, and the caller
    gets AttemptExpiredError. Everything else is delegated unchanged.
    """

    def __init__(self, inner: AttemptTracker):
        self.inner = inner

    def __getattr__(self, name):
        return getattr(self.inner, name)

    def is_expired(self, attempt: Attempt, now: datetime) -> bool:
        if attempt.expires_at is None:
            return False
        return now > attempt.expires_at + timedelta(seconds=self.inner.config.ATTEMPT_GRACE_SECONDS)

    def _expire_if_due(self, attempt_id: str, user_id: Optional[str]) -> None:
        attempt = self.inner.store.get_attempt(attempt_id, user_id)
        if attempt.status == IN_PROGRESS and self.is_expired(attempt, self.inner.clock()):
            self.inner.abandon(attempt_id, reason=END_TIME_LIMIT)
            raise AttemptExpiredError(
                "Time limit has passed; the attempt was abandoned", status=ABANDONED, attempt_id=attempt_id
            )

    def submit_answer(self, attempt_id: str, question_id: int, selected_label: str, user_id: Optional[str] = None) -> Dict:
        self._expire_if_due(attempt_id, user_id)
        return self.inner.submit_answer(attempt_id, question_id, selected_label, user_id)

    def complete(self, attempt_id: str, user_id: Optional[str] = None) -> Dict:
        self._expire_if_due(attempt_id, user_id)
        return self.inner.complete(attempt_id, user_id)


def get_tracker(db: Session, config: Settings = settings, clock: Callable[[], datetime] = utcnow) -> TimeLimitedAttemptTracker:
    return TimeLimitedAttemptTracker(AttemptTracker(db, config, clock))
