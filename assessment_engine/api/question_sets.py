from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, constr
from typing import Dict, List, Optional, Literal
from sqlalchemy.orm import Session
from assessment_engine.core.config import settings
from assessment_engine.core.database import get_db
from assessment_engine.core.auth import require_roles, get_current_user, TokenData
from assessment_engine.core.errors import NotFoundError
from assessment_engine.services.selector import QuestionSelector
from assessment_engine.services.store import AssessmentStore, QuestionFilters
from assessment_engine.services.question_sets import save_generated_set, save_authored_set, public_set_view, set_published

router = APIRouter()

class GenerateSet(BaseModel):
    topic_id: Optional[int] = None
    tag_ids: List[int] = []
    question_count: int = settings.DEFAULT_QUESTION_COUNT
    difficulty: Optional[str] = None
    distribution: Optional[Dict[str, float]] = None
    points_policy: Literal["equal","byDifficulty"] = "equal"
    randomize_questions: bool = True
    kind: Literal["exam","practice"] = "exam"
    title: Optional[str] = None
    description: Optional[str] = None
    time_limit_minutes: Optional[int] = Field(default=None, ge=1, le=settings.MAX_TIME_LIMIT_MINUTES)
    passing_score: Optional[int] = Field(default=None, ge=0, le=100)
    publish: bool = False

class SetGenerated(BaseModel):
    question_set_id: int
    question_ids: List[int]
    tier_counts: Dict[str, int]
    total_points: int
    time_limit_minutes: Optional[int] = None

class AuthorSet(BaseModel):
    title: constr(min_length=1)
    description: Optional[str] = None
    question_ids: List[int]
    points: Optional[List[int]] = None
    kind: Literal["exam","practice"] = "exam"
    topic_id: Optional[int] = None
    time_limit_minutes: Optional[int] = Field(default=None, ge=1, le=settings.MAX_TIME_LIMIT_MINUTES)
    passing_score: Optional[int] = Field(default=None, ge=0, le=100)
    publish: bool = False

class Publish(BaseModel):
    published: bool = True

@router.post("/generate", response_model=SetGenerated, status_code=201, dependencies=[Depends(require_roles("author","admin"))])
def generate_set(payload: GenerateSet, user: TokenData = Depends(require_roles("author","admin")), db: Session = Depends(get_db)):
    selector = QuestionSelector(AssessmentStore(db))
    assembled = selector.assemble(
        QuestionFilters(topic_id=payload.topic_id, tag_ids=payload.tag_ids), payload.question_count,
        difficulty=payload.difficulty, distribution=payload.distribution,
        points_policy=payload.points_policy, randomize=payload.randomize_questions,
    )
    qs = save_generated_set(
        db, assembled, created_by=user.sub, kind=payload.kind, title=payload.title, description=payload.description,
        topic_id=payload.topic_id, time_limit_minutes=payload.time_limit_minutes, passing_score=payload.passing_score,
        publish=payload.publish,
    )
    db.commit()
    return SetGenerated(question_set_id=qs.id, question_ids=assembled.question_ids, tier_counts=assembled.tier_counts,
                        total_points=assembled.total_points, time_limit_minutes=qs.time_limit_minutes)

@router.post("", status_code=201, dependencies=[Depends(require_roles("author","admin"))])
def author_set(payload: AuthorSet, user: TokenData = Depends(require_roles("author","admin")), db: Session = Depends(get_db)):
    qs = save_authored_set(
        db, created_by=user.sub, title=payload.title, question_ids=payload.question_ids, points=payload.points,
        description=payload.description, kind=payload.kind, topic_id=payload.topic_id,
        time_limit_minutes=payload.time_limit_minutes, passing_score=payload.passing_score, publish=payload.publish,
    )
    db.commit()
    return {"question_set_id": qs.id, "total_points": qs.total_points, "question_count": len(payload.question_ids)}

@router.post("/{set_id}/publish", dependencies=[Depends(require_roles("author","admin"))])
def publish_set(set_id: int, payload: Publish = Publish(), db: Session = Depends(get_db)):
    qs = set_published(db, set_id, payload.published)
    return {"question_set_id": qs.id, "is_published": qs.is_published}

@router.get("/{set_id}", dependencies=[Depends(require_roles("student","author","admin"))])
def get_set(set_id: int, user: TokenData = Depends(get_current_user), db: Session = Depends(get_db)):
    view = public_set_view(db, set_id)
    if not view["is_published"] and not (user.has_role("author") or user.has_role("admin")):
        raise NotFoundError("Question set not found", question_set_id=set_id)
    return view
