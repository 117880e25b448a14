from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, constr
from typing import List, Optional, Literal
from sqlalchemy.orm import Session
from sqlalchemy import select
from assessment_engine.core.database import get_db
from assessment_engine.core.auth import require_roles, TokenData
from assessment_engine.models.orm import Topic, Tag, Question, QuestionOption
from assessment_engine.services.store import AssessmentStore

router = APIRouter()

class OptionIn(BaseModel):
    label: constr(min_length=1, max_length=8)
    text: constr(min_length=1)

class QuestionCreate(BaseModel):
    topic_name: constr(min_length=1)
    content: constr(min_length=1)
    options: List[OptionIn]
    correct_label: constr(min_length=1, max_length=8)
    explanation: Optional[str] = None
    difficulty: Literal["easy","medium","hard"] = "medium"
    points: int = Field(default=1, ge=1)
    tags: List[str] = []

class QuestionStats(BaseModel):
    question_id: int
    is_active: bool
    times_used: int
    times_correct: int
    correct_rate: float

def _topic(db: Session, name: str) -> Topic:
    t = db.scalar(select(Topic).where(Topic.name == name))
    if not t:
        t = Topic(name=name); db.add(t); db.flush()
    return t

def _tags(db: Session, names: List[str]) -> List[Tag]:
    out = []
    for name in dict.fromkeys(n.strip() for n in names if n.strip()):
        tag = db.scalar(select(Tag).where(Tag.name == name))
        if not tag:
            tag = Tag(name=name); db.add(tag); db.flush()
        out.append(tag)
    return out

@router.post("", status_code=201, dependencies=[Depends(require_roles("author","admin"))])
def create_question(payload: QuestionCreate, user: TokenData = Depends(require_roles("author","admin")), db: Session = Depends(get_db)):
    labels = [o.label.strip().upper() for o in payload.options]
    if len(labels) < 2: raise HTTPException(422, "A question needs at least two options")
    if len(set(labels)) != len(labels): raise HTTPException(422, "Option labels must be unique")
    correct = payload.correct_label.strip().upper()
    if correct not in labels: raise HTTPException(422, "correct_label must match one of the option labels")
    t = _topic(db, payload.topic_name)
    q = Question(
        content=payload.content, correct_label=correct, explanation=payload.explanation,
        difficulty=payload.difficulty, points=payload.points, topic_id=t.id, created_by=user.sub, is_active=True,
    )
    q.options = [QuestionOption(position=i, label=label, text=o.text) for i, (label, o) in enumerate(zip(labels, payload.options))]
    q.tags = _tags(db, payload.tags)
    db.add(q); db.commit()
    return {"question_id": q.id, "topic_id": t.id, "tag_ids": [tg.id for tg in q.tags]}

@router.post("/{question_id}/retire", dependencies=[Depends(require_roles("author","admin"))])
def retire_question(question_id: int, db: Session = Depends(get_db)):
    q = AssessmentStore(db).get_question(question_id)
    # soft retire only; historical attempts still reference it
    q.is_active = False
    db.commit()
    return {"question_id": question_id, "is_active": False}

@router.get("/{question_id}/stats", response_model=QuestionStats, dependencies=[Depends(require_roles("author","admin"))])
def question_stats(question_id: int, db: Session = Depends(get_db)):
    q = AssessmentStore(db).get_question(question_id)
    return QuestionStats(question_id=q.id, is_active=q.is_active, times_used=q.times_used,
                         times_correct=q.times_correct, correct_rate=round(q.correct_rate, 4))
