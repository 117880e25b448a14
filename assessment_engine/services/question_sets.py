import logging
from typing import Dict, Optional, Sequence

from sqlalchemy.orm import Session

from assessment_engine.core.config import Settings, settings
from assessment_engine.core.errors import ConfigurationError, NotFoundError
from assessment_engine.models.orm import Question, QuestionSet, QuestionSetItem
from assessment_engine.services.selector import AssembledSet
from assessment_engine.services.store import AssessmentStore

logger = logging.getLogger(__name__)


def default_time_limit(question_count: int, config: Settings = settings) -> int:
    # about a minute per question, never under ten
    return min(max(question_count, 10), config.MAX_TIME_LIMIT_MINUTES)


def _describe(assembled: AssembledSet) -> str:
    mix = ", ".join(f"{n} {t}" for t, n in assembled.tier_counts.items() if n)
    return f"{len(assembled.items)} questions ({mix}), {assembled.total_points} points"


def save_generated_set(db: Session, assembled: AssembledSet, created_by: str, kind: str = "exam",
                       title: Optional[str] = None, description: Optional[str] = None,
                       topic_id: Optional[int] = None, time_limit_minutes: Optional[int] = None,
                       passing_score: Optional[int] = None,
                       publish: bool = False, config: Settings = settings) -> QuestionSet:
    """Persist a selector result with the parameters that produced it. Flushes, does not commit."""
    qs = QuestionSet(
        title=title or f"Generated {kind} ({len(assembled.items)} questions)",
        description=description or _describe(assembled),
        kind=kind,
        created_by=created_by,
        topic_id=topic_id,
        time_limit_minutes=time_limit_minutes or default_time_limit(len(assembled.items), config),
        passing_score=passing_score,
        total_points=assembled.total_points,
        is_published=publish,
        generation_params=assembled.params,
    )
    qs.items = [
        QuestionSetItem(question_id=it.question_id, points=it.points, position=i)
        for i, it in enumerate(assembled.items)
    ]
    db.add(qs)
    db.flush()
    logger.info("Saved generated set id=%s questions=%d", qs.id, len(qs.items))
    return qs


def save_authored_set(db: Session, created_by: str, title: str, question_ids: Sequence[int],
                      points: Optional[Sequence[int]] = None, description: Optional[str] = None,
                      kind: str = "exam", topic_id: Optional[int] = None,
                      time_limit_minutes: Optional[int] = None, passing_score: Optional[int] = None,
                      publish: bool = False) -> QuestionSet:
    """Explicitly ordered set; every question must exist and be active."""
    if len(set(question_ids)) != len(question_ids):
        raise ConfigurationError("A question may appear only once in a set")
    if points is not None and len(points) != len(question_ids):
        raise ConfigurationError("points must have one entry per question")
    store = AssessmentStore(db)
    found = store.get_questions(question_ids)
    missing = [qid for qid in question_ids if qid not in found]
    if missing:
        raise NotFoundError("Question not found", question_ids=missing)
    retired = [qid for qid in question_ids if not found[qid].is_active]
    if retired:
        raise ConfigurationError("Retired questions cannot be added to a set", question_ids=retired)

    item_points = list(points) if points is not None else [found[qid].points for qid in question_ids]
    if any(p < 1 for p in item_points):
        raise ConfigurationError("Item points must be at least 1")
    qs = QuestionSet(
        title=title, description=description, kind=kind, created_by=created_by, topic_id=topic_id,
        time_limit_minutes=time_limit_minutes, passing_score=passing_score,
        total_points=sum(item_points), is_published=publish,
    )
    qs.items = [
        QuestionSetItem(question_id=qid, points=p, position=i)
        for i, (qid, p) in enumerate(zip(question_ids, item_points))
    ]
    db.add(qs)
    db.flush()
    logger.info("Saved authored set id=%s questions=%d", qs.id, len(qs.items))
    return qs


def public_question(q: Question, points: int, position: int) -> Dict:
    """A question as shown to a taker: no correct label, no explanation."""
    return {
        "question_id": q.id,
        "position": position,
        "content": q.content,
        "difficulty": q.difficulty,
        "points": points,
        "topic_id": q.topic_id,
        "options": [{"label": o.label, "text": o.text} for o in q.options],
    }


def public_set_view(db: Session, set_id: int) -> Dict:
    store = AssessmentStore(db)
    qs = store.get_question_set(set_id)
    questions = store.get_questions([it.question_id for it in qs.items])
    return {
        "id": qs.id,
        "title": qs.title,
        "description": qs.description,
        "kind": qs.kind,
        "time_limit_minutes": qs.time_limit_minutes,
        "passing_score": qs.passing_score,
        "total_points": qs.total_points,
        "is_published": qs.is_published,
        "attempt_count": qs.attempt_count,
        "generation_params": qs.generation_params,
        "questions": [public_question(questions[it.question_id], it.points, i) for i, it in enumerate(qs.items)],
    }


def set_published(db: Session, set_id: int, published: bool) -> QuestionSet:
    qs = AssessmentStore(db).get_question_set(set_id)
    qs.is_published = published
    db.commit()
    logger.info("Question set id=%s published=%s", set_id, published)
    return qs
