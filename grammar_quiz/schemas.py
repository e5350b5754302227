from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

AnswerLetter = Literal["A", "B", "C", "D"]
DifficultyLevel = Literal["beginner", "intermediate", "advanced"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class QuestionPayload(BaseModel):
    """One generated question, before it has been persisted."""

    model_config = ConfigDict(str_strip_whitespace=True)

    question_text: str = Field(min_length=1)
    option_a: str = Field(min_length=1)
    option_b: str = Field(min_length=1)
    option_c: str = Field(min_length=1)
    option_d: str = Field(min_length=1)
    correct_answer: AnswerLetter
    explanation: str = Field(min_length=1)
    grammar_type: str = Field(min_length=1)
    difficulty_level: DifficultyLevel


class QuestionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    question_text: str
    option_a: str
    option_b: str
    option_c: str
    option_d: str
    correct_answer: str
    explanation: str
    grammar_type: str
    difficulty_level: str
    created_at: datetime


class QuestionsResponse(BaseModel):
    success: bool = True
    questions: List[QuestionOut]
    count: int


class GenerateQuestionsRequest(CamelModel):
    grammar_type: str = Field(min_length=1)
    difficulty_level: DifficultyLevel
    count: int = Field(default=5, ge=1, le=10)


class SubmittedQuestion(BaseModel):
    id: int
    correct_answer: AnswerLetter


class ScoreIn(BaseModel):
    correct: int = Field(ge=0)
    total: int = Field(ge=0)
    percentage: float = Field(ge=0, le=100)


class QuizResultsRequest(CamelModel):
    grammar_type: str = Field(min_length=1)
    difficulty_level: DifficultyLevel
    questions: List[SubmittedQuestion]
    # Keyed by the question's position in ``questions``
    answers: Dict[int, AnswerLetter] = Field(default_factory=dict)
    score: ScoreIn

    @field_validator("answers", mode="before")
    @classmethod
    def drop_blank_answers(cls, value):
        # A blank selection is the same as leaving the question unanswered
        if isinstance(value, dict):
            return {k: v for k, v in value.items() if not (v is None or (isinstance(v, str) and not v.strip()))}
        return value


class QuizResultsResponse(CamelModel):
    success: bool = True
    session_id: int
    answers_saved: bool


class GrammarTypeStatOut(BaseModel):
    grammar_type: str
    total_quizzes: int
    total_questions: int
    correct_answers: int
    average_score: int


class DifficultyStatOut(BaseModel):
    difficulty_level: str
    total_quizzes: int
    total_questions: int
    correct_answers: int
    average_score: int


class RecentProgressOut(BaseModel):
    date: datetime
    score: int
    grammar_type: str
    difficulty: str


class PerformanceStatsOut(CamelModel):
    total_quizzes: int
    total_questions: int
    average_score: int
    grammar_type_stats: List[GrammarTypeStatOut]
    difficulty_stats: List[DifficultyStatOut]
    weak_areas: List[GrammarTypeStatOut]
    recent_progress: List[RecentProgressOut]


class PerformanceResponse(BaseModel):
    success: bool = True
    stats: PerformanceStatsOut


class AdminQuestionsResponse(CamelModel):
    success: bool = True
    questions: List[QuestionOut]
    total_count: int
    current_page: int
    total_pages: int


class DeleteQuestionRequest(CamelModel):
    question_id: int


class SuccessResponse(BaseModel):
    success: bool = True


class RecentActivityOut(BaseModel):
    id: int
    user_id: str
    email: str
    grammar_type: str
    difficulty_level: str
    total_questions: int
    correct_answers: int
    score_percentage: int
    completed_at: datetime


class AdminStatsOut(CamelModel):
    total_users: int
    total_questions: int
    total_sessions: int
    grammar_type_stats: Dict[str, int]
    difficulty_stats: Dict[str, int]
    recent_activity: List[RecentActivityOut]


class AdminStatsResponse(BaseModel):
    success: bool = True
    stats: AdminStatsOut


class AdminUserOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    email: str
    created_at: datetime
    total_sessions: int = Field(alias="totalSessions")
    average_score: int = Field(alias="averageScore")
    last_activity: Optional[datetime] = Field(default=None, alias="lastActivity")


class AdminUsersResponse(BaseModel):
    success: bool = True
    users: List[AdminUserOut]
