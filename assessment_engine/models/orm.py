import enum
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy import (
    BigInteger, Integer, String, Text, Boolean, ForeignKey, JSON, DateTime,
    Column, Table, UniqueConstraint, Index, CheckConstraint, text,
)

# SQLite only autoincrements INTEGER PRIMARY KEY
BigIntPK = BigInteger().with_variant(Integer(), "sqlite")


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the timezone-less DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase): pass


class Difficulty(str, enum.Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"

# Easiest first; apportionment tie-breaks and natural draw order follow this.
TIERS = [Difficulty.EASY.value, Difficulty.MEDIUM.value, Difficulty.HARD.value]


class AttemptKind(str, enum.Enum):
    PRACTICE = "practice"
    QUIZ = "quiz"


class AttemptStatus(str, enum.Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


question_tags = Table(
    "question_tags",
    Base.metadata,
    Column("question_id", BigIntPK, ForeignKey("questions.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", BigIntPK, ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
)


class Topic(Base):
    __tablename__ = "topics"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), unique=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class Tag(Base):
    __tablename__ = "tags"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), unique=True)


class Question(Base):
    __tablename__ = "questions"
    __table_args__ = (
        Index("idx_questions_pool", "is_active", "difficulty", "topic_id"),
        CheckConstraint("points >= 1", name="ck_question_points"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    content: Mapped[str] = mapped_column(Text)
    correct_label: Mapped[str] = mapped_column(String(8))
    explanation: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    difficulty: Mapped[str] = mapped_column(String(10), default=Difficulty.MEDIUM.value)
    points: Mapped[int] = mapped_column(Integer, default=1)
    topic_id: Mapped[int] = mapped_column(BigIntPK, ForeignKey("topics.id"))
    created_by: Mapped[str] = mapped_column(String(255))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    times_used: Mapped[int] = mapped_column(Integer, default=0)
    times_correct: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    topic: Mapped["Topic"] = relationship()
    options: Mapped[List["QuestionOption"]] = relationship(
        back_populates="question", cascade="all, delete-orphan", order_by="QuestionOption.position"
    )
    tags: Mapped[List["Tag"]] = relationship(secondary=question_tags)

    @property
    def correct_rate(self) -> float:
        return (self.times_correct / self.times_used) if self.times_used else 0.0

    def option_labels(self) -> List[str]:
        return [o.label for o in self.options]


class QuestionOption(Base):
    __tablename__ = "question_options"
    __table_args__ = (UniqueConstraint("question_id", "label", name="uq_question_option_label"),)

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    question_id: Mapped[int] = mapped_column(BigIntPK, ForeignKey("questions.id", ondelete="CASCADE"))
    position: Mapped[int] = mapped_column(Integer)
    label: Mapped[str] = mapped_column(String(8))
    text: Mapped[str] = mapped_column(Text)

    question: Mapped["Question"] = relationship(back_populates="options")


class QuestionSet(Base):
    __tablename__ = "question_sets"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    title: Mapped[str] = mapped_column(String(255))
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    kind: Mapped[str] = mapped_column(String(20), default="exam")  # exam / practice
    created_by: Mapped[str] = mapped_column(String(255))
    topic_id: Mapped[Optional[int]] = mapped_column(BigIntPK, ForeignKey("topics.id"), nullable=True)
    time_limit_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    passing_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    total_points: Mapped[int] = mapped_column(Integer, default=0)
    is_published: Mapped[bool] = mapped_column(Boolean, default=False)
    generation_params: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    attempt_count: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    items: Mapped[List["QuestionSetItem"]] = relationship(
        back_populates="question_set", cascade="all, delete-orphan", order_by="QuestionSetItem.position"
    )


class QuestionSetItem(Base):
    __tablename__ = "question_set_items"
    __table_args__ = (
        UniqueConstraint("question_set_id", "question_id", name="uq_set_item_question"),
        UniqueConstraint("question_set_id", "position", name="uq_set_item_position"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    question_set_id: Mapped[int] = mapped_column(BigIntPK, ForeignKey("question_sets.id", ondelete="CASCADE"))
    question_id: Mapped[int] = mapped_column(BigIntPK, ForeignKey("questions.id"))
    points: Mapped[int] = mapped_column(Integer, default=1)
    position: Mapped[int] = mapped_column(Integer)

    question_set: Mapped["QuestionSet"] = relationship(back_populates="items")


class Attempt(Base):
    __tablename__ = "attempts"
    __table_args__ = (
        Index("idx_attempts_user", "user_id", "started_at"),
        Index("idx_attempts_status", "status", "expires_at"),
        # at most one in_progress attempt per (user, question set)
        Index(
            "uq_attempts_active", "user_id", "question_set_id", unique=True,
            postgresql_where=text("status = 'in_progress'"),
            sqlite_where=text("status = 'in_progress'"),
        ),
        CheckConstraint("correct_count <= total_questions", name="ck_attempt_correct_count"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(255))
    question_set_id: Mapped[int] = mapped_column(BigIntPK, ForeignKey("question_sets.id"))
    kind: Mapped[str] = mapped_column(String(20), default=AttemptKind.PRACTICE.value)
    status: Mapped[str] = mapped_column(String(20), default=AttemptStatus.IN_PROGRESS.value)
    items: Mapped[List[Dict[str, Any]]] = mapped_column(JSON)  # [{"question_id", "points"}], fixed at start
    total_questions: Mapped[int] = mapped_column(Integer, default=0)
    total_points: Mapped[int] = mapped_column(Integer, default=0)
    time_limit_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    passing_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    started_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    last_activity_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    ended_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    end_reason: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    correct_count: Mapped[int] = mapped_column(Integer, default=0)
    wrong_count: Mapped[int] = mapped_column(Integer, default=0)
    skipped_count: Mapped[int] = mapped_column(Integer, default=0)
    earned_points: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    passed: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    time_spent_seconds: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    answer_writes: Mapped[int] = mapped_column(Integer, default=0)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    answers: Mapped[List["AnswerRecord"]] = relationship(back_populates="attempt", cascade="all, delete-orphan")

    @property
    def question_ids(self) -> List[int]:
        return [int(it["question_id"]) for it in (self.items or [])]


class AnswerRecord(Base):
    __tablename__ = "answer_records"
    __table_args__ = (
        UniqueConstraint("attempt_id", "question_id", name="uq_answer_record"),
        Index("idx_answer_records_question", "question_id"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    attempt_id: Mapped[str] = mapped_column(String(36), ForeignKey("attempts.id", ondelete="CASCADE"))
    question_id: Mapped[int] = mapped_column(BigIntPK, ForeignKey("questions.id"))
    selected_label: Mapped[str] = mapped_column(String(8))
    is_correct: Mapped[bool] = mapped_column(Boolean)
    submitted_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    attempt: Mapped["Attempt"] = relationship(back_populates="answers")
