from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, constr
from typing import Dict, List, Optional, Literal
from datetime import datetime
from sqlalchemy.orm import Session
from assessment_engine.core.database import get_db
from assessment_engine.core.auth import require_roles, TokenData
from assessment_engine.services.attempts import get_tracker, TimeLimitedAttemptTracker, END_ADMIN, END_USER
from assessment_engine.services.selector import QuestionSelector
from assessment_engine.services.store import AssessmentStore, QuestionFilters
from assessment_engine.services.question_sets import save_generated_set

router = APIRouter()
practice_router = APIRouter()

class AttemptStart(BaseModel):
  question_set_id: int
  kind: Literal["practice","quiz"] = "practice"

class OptionOut(BaseModel):
  label: str
  text: str

class QuestionOut(BaseModel):
  question_id: int
  position: int
  content: str
  difficulty: str
  points: int
  topic_id: Optional[int] = None
  options: List[OptionOut]
  selected_label: Optional[str] = None
  correct: Optional[bool] = None

class AttemptSummary(BaseModel):
  attempt_id: str
  question_set_id: int
  kind: str
  status: str
  started_at: datetime
  expires_at: Optional[datetime] = None
  ended_at: Optional[datetime] = None
  end_reason: Optional[str] = None
  total_questions: int
  correct_count: int
  wrong_count: int
  skipped_count: int
  total_points: int
  earned_points: Optional[int] = None
  score: Optional[int] = None
  passing_score: Optional[int] = None
  passed: Optional[bool] = None
  time_spent_seconds: Optional[int] = None

class AttemptView(AttemptSummary):
  time_limit_minutes: Optional[int] = None
  answered: int = 0
  questions: List[QuestionOut]

class AnswerSubmit(BaseModel):
  question_id: int
  selected_label: constr(min_length=1, max_length=8)

class AnswerAck(BaseModel):
  attempt_id: str
  question_id: int
  selected_label: str
  accepted: bool
  correct: Optional[bool] = None

class ResultQuestion(BaseModel):
  question_id: int
  position: int
  points: int
  difficulty: str
  selected_label: Optional[str] = None
  correct: bool
  correct_label: Optional[str] = None
  explanation: Optional[str] = None

class AttemptResult(AttemptSummary):
  details_hidden: bool
  questions: List[ResultQuestion]

class AttemptPage(BaseModel):
  items: List[AttemptSummary]
  total: int
  page: int
  page_size: int

class PracticeCreate(BaseModel):
  topic_id: Optional[int] = None
  tag_ids: List[int] = []
  question_count: int = 10
  difficulty: Optional[str] = None
  distribution: Optional[Dict[str, float]] = None

def tracker_dep(db: Session = Depends(get_db)) -> TimeLimitedAttemptTracker:
  return get_tracker(db)

@router.post("", response_model=AttemptView, status_code=201, dependencies=[Depends(require_roles("student","admin"))])
def start_attempt(payload: AttemptStart, user: TokenData = Depends(require_roles("student","admin")), tracker: TimeLimitedAttemptTracker = Depends(tracker_dep)):
  return tracker.start(user.sub, payload.question_set_id, payload.kind)

@router.get("", response_model=AttemptPage, dependencies=[Depends(require_roles("student","admin"))])
def list_attempts(status: Optional[str] = None, question_set_id: Optional[int] = None,
                  page: int = Query(1, ge=1), page_size: int = Query(25, ge=1, le=100),
                  user: TokenData = Depends(require_roles("student","admin")), tracker: TimeLimitedAttemptTracker = Depends(tracker_dep)):
  return tracker.list_attempts(user.sub, status, question_set_id, page, page_size)

@router.get("/{attempt_id}", response_model=AttemptView, dependencies=[Depends(require_roles("student","admin"))])
def get_attempt(attempt_id: str, user: TokenData = Depends(require_roles("student","admin")), tracker: TimeLimitedAttemptTracker = Depends(tracker_dep)):
  return tracker.get_attempt_view(attempt_id, user.sub)

@router.post("/{attempt_id}/answers", response_model=AnswerAck, dependencies=[Depends(require_roles("student","admin"))])
def submit_answer(attempt_id: str, payload: AnswerSubmit, user: TokenData = Depends(require_roles("student","admin")), tracker: TimeLimitedAttemptTracker = Depends(tracker_dep)):
  return tracker.submit_answer(attempt_id, payload.question_id, payload.selected_label, user.sub)

@router.post("/{attempt_id}/complete", response_model=AttemptSummary, dependencies=[Depends(require_roles("student","admin"))])
def complete_attempt(attempt_id: str, user: TokenData = Depends(require_roles("student","admin")), tracker: TimeLimitedAttemptTracker = Depends(tracker_dep)):
  return tracker.complete(attempt_id, user.sub)

@router.post("/{attempt_id}/abandon", response_model=AttemptSummary, dependencies=[Depends(require_roles("student","admin"))])
def abandon_attempt(attempt_id: str, user: TokenData = Depends(require_roles("student","admin")), tracker: TimeLimitedAttemptTracker = Depends(tracker_dep)):
  # admins may abandon anyone's attempt
  if user.has_role("admin"):
    return tracker.abandon(attempt_id, reason=END_ADMIN)
  return tracker.abandon(attempt_id, user.sub, reason=END_USER)

@router.get("/{attempt_id}/result", response_model=AttemptResult, dependencies=[Depends(require_roles("student","admin"))])
def attempt_result(attempt_id: str, user: TokenData = Depends(require_roles("student","admin")), tracker: TimeLimitedAttemptTracker = Depends(tracker_dep)):
  return tracker.get_result(attempt_id, user.sub)

@practice_router.post("", response_model=AttemptView, status_code=201, dependencies=[Depends(require_roles("student","admin"))])
def start_practice(payload: PracticeCreate, user: TokenData = Depends(require_roles("student","admin")), db: Session = Depends(get_db)):
  assembled = QuestionSelector(AssessmentStore(db)).assemble(
    QuestionFilters(topic_id=payload.topic_id, tag_ids=payload.tag_ids), payload.question_count,
    difficulty=payload.difficulty, distribution=payload.distribution,
  )
  # left unpublished: only its creator may start it
  qs = save_generated_set(db, assembled, created_by=user.sub, kind="practice", topic_id=payload.topic_id)
  # the set and the attempt land in one commit
  return get_tracker(db).start(user.sub, qs.id, "practice")
