from sqlalchemy import (
    Integer, String, Text, Boolean, Float, ForeignKey, DateTime,
    UniqueConstraint, Index, CheckConstraint, Enum as SQLEnum, func
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from datetime import datetime
from typing import Optional, List
import uuid
import enum
from quiz_delivery.core.database import Base

def _enum_values(enum_cls) -> List[str]:
    return [m.value for m in enum_cls]

def new_id() -> str:
    return str(uuid.uuid4())

class DifficultyLevel(str, enum.Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"

class QuestionType(str, enum.Enum):
    MULTIPLE_CHOICE = "multiple_choice"
    TRUE_FALSE = "true_false"
    FILL_BLANK = "fill_blank"

# ========== Content Models ==========

class Category(Base):
    __tablename__ = "categories"
    __table_args__ = (
        Index("idx_categories_sort", "sort_order"),
        Index("idx_categories_active", "is_active"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    description: Mapped[Optional[str]] = mapped_column(Text)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now())

    questions: Mapped[List["Question"]] = relationship(back_populates="category")

class Question(Base):
    __tablename__ = "quiz_questions"
    __table_args__ = (
        Index("idx_qq_category_difficulty", "category_id", "difficulty_level", "is_active"),
        Index("idx_qq_created", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    category_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("categories.id", ondelete="RESTRICT"), nullable=False
    )
    question_text: Mapped[str] = mapped_column(Text, nullable=False)
    question_type: Mapped[QuestionType] = mapped_column(
        SQLEnum(QuestionType, native_enum=False, values_callable=_enum_values), nullable=False, default=QuestionType.MULTIPLE_CHOICE
    )
    difficulty_level: Mapped[DifficultyLevel] = mapped_column(
        SQLEnum(DifficultyLevel, native_enum=False, values_callable=_enum_values), nullable=False, default=DifficultyLevel.BEGINNER
    )
    points: Mapped[int] = mapped_column(Integer, default=10)
    explanation: Mapped[Optional[str]] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now())

    category: Mapped["Category"] = relationship(back_populates="questions")
    answers: Mapped[List["Answer"]] = relationship(
        back_populates="question", cascade="all, delete-orphan", order_by="Answer.sort_order"
    )

class Answer(Base):
    __tablename__ = "quiz_answers"
    __table_args__ = (
        Index("idx_qa_question", "question_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    question_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("quiz_questions.id", ondelete="CASCADE"), nullable=False
    )
    answer_text: Mapped[str] = mapped_column(Text, nullable=False)
    is_correct: Mapped[bool] = mapped_column(Boolean, default=False)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)
    explanation: Mapped[Optional[str]] = mapped_column(Text)

    question: Mapped["Question"] = relationship(back_populates="answers")

# ========== Progress Models ==========

class UserProgress(Base):
    __tablename__ = "user_progress"
    __table_args__ = (
        UniqueConstraint("user_id", "category_id", name="uq_user_progress"),
        CheckConstraint("correct_answers <= total_questions_attempted", name="ck_progress_correct"),
        CheckConstraint("average_score >= 0 AND average_score <= 100", name="ck_progress_score"),
        Index("idx_up_user", "user_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    category_id: Mapped[str] = mapped_column(String(36), ForeignKey("categories.id"), nullable=False)
    total_questions_attempted: Mapped[int] = mapped_column(Integer, default=0)
    correct_answers: Mapped[int] = mapped_column(Integer, default=0)
    total_points_earned: Mapped[int] = mapped_column(Integer, default=0)
    average_score: Mapped[float] = mapped_column(Float, default=0.0)
    current_streak: Mapped[int] = mapped_column(Integer, default=0)
    longest_streak: Mapped[int] = mapped_column(Integer, default=0)
    completion_percentage: Mapped[float] = mapped_column(Float, default=0.0)
    last_activity: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

class QuizAttempt(Base):
    __tablename__ = "quiz_attempts"
    __table_args__ = (
        Index("idx_qat_user", "user_id"),
        Index("idx_qat_question", "question_id"),
        Index("idx_qat_created", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    question_id: Mapped[str] = mapped_column(String(36), ForeignKey("quiz_questions.id"), nullable=False)
    selected_answer_id: Mapped[Optional[str]] = mapped_column(String(36))
    user_answer_text: Mapped[Optional[str]] = mapped_column(Text)
    is_correct: Mapped[bool] = mapped_column(Boolean, nullable=False)
    points_earned: Mapped[int] = mapped_column(Integer, default=0)
    time_taken_seconds: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now())
