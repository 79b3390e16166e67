from datetime import datetime
from typing import Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from quiz_delivery.models.orm import DifficultyLevel, QuestionType

class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

# ========== Questions ==========

class AnswerOut(CamelModel):
    """Answer as delivered to a quiz taker: no correctness flag, no explanation."""
    id: str
    text: str = Field(validation_alias="answer_text")
    sort_order: int

class QuestionOut(CamelModel):
    id: str
    category_id: str
    text: str = Field(validation_alias="question_text")
    question_type: QuestionType
    difficulty: DifficultyLevel = Field(validation_alias="difficulty_level")
    points: int
    answers: List[AnswerOut] = []

class QuestionSelectionResult(CamelModel):
    category_id: str
    requested_difficulty: Optional[DifficultyLevel] = None
    questions: List[QuestionOut]
    difficulty_mix: Dict[DifficultyLevel, int]
    fingerprint: str

# ========== Categories ==========

class ProgressOut(CamelModel):
    total_questions_attempted: int
    correct_answers: int
    total_points_earned: int
    average_score: float
    current_streak: int
    longest_streak: int
    completion_percentage: float
    last_activity: Optional[datetime] = None

class CategoryOut(CamelModel):
    id: str
    name: str
    slug: str
    description: Optional[str] = None
    sort_order: int
    total_questions: int = 0
    progress: Optional[ProgressOut] = None

class PaginationMeta(CamelModel):
    page: int
    page_size: int
    total: int
    total_pages: int

class CategoryListMeta(CamelModel):
    pagination: PaginationMeta

class CategoryList(CamelModel):
    categories: List[CategoryOut]
    meta: CategoryListMeta

# ========== Attempts & stats ==========

class AttemptIn(CamelModel):
    question_id: str
    answer_id: Optional[str] = None
    answer_text: Optional[str] = None
    time_taken: int = Field(default=0, ge=0)

class AttemptResult(CamelModel):
    success: bool = True
    is_correct: bool
    points_earned: int
    explanation: Optional[str] = None

class UserStats(CamelModel):
    total_questions: int
    total_attempted: int
    correct_answers: int
    total_points: int
    current_streak: int
    longest_streak: int
    average_score: float
    last_activity: Optional[datetime] = None

# ========== Adaptive difficulty ==========

class TierTally(CamelModel):
    correct: int = 0
    total: int = 0

class PerformanceMetrics(CamelModel):
    """Summary of a user's most recent attempts."""
    accuracy: float = 50.0
    average_time: float = 30.0
    current_streak: int = 0
    recent_performance: List[int] = []
    difficulty_distribution: Dict[DifficultyLevel, TierTally] = Field(
        default_factory=lambda: {tier: TierTally() for tier in DifficultyLevel}
    )

class Recommendation(CamelModel):
    recommended_difficulty: DifficultyLevel
    confidence_score: float
    reasoning: str
    should_adjust: bool

class BaselineResult(CamelModel):
    baseline_difficulty: DifficultyLevel
    attempts: int
    message: str = "Baseline assessment completed"
