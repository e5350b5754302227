from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from grammar_quiz.database import Base


class UserProfile(Base):
    __tablename__ = "user_profiles"

    # Same id as the external auth service's subject
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    email: Mapped[str] = mapped_column(String(255), default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    sessions = relationship("QuizSession", back_populates="user", cascade="all, delete-orphan")


class GrammarQuestion(Base):
    __tablename__ = "grammar_questions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    question_text: Mapped[str] = mapped_column(Text)
    option_a: Mapped[str] = mapped_column(Text)
    option_b: Mapped[str] = mapped_column(Text)
    option_c: Mapped[str] = mapped_column(Text)
    option_d: Mapped[str] = mapped_column(Text)
    correct_answer: Mapped[str] = mapped_column(String(1))
    explanation: Mapped[str] = mapped_column(Text)
    grammar_type: Mapped[str] = mapped_column(String(120), index=True)
    difficulty_level: Mapped[str] = mapped_column(String(32), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)

    answers = relationship("UserAnswer", back_populates="question", cascade="all, delete-orphan")


class QuizSession(Base):
    __tablename__ = "quiz_sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("user_profiles.id"), index=True)
    grammar_type: Mapped[str] = mapped_column(String(120))
    difficulty_level: Mapped[str] = mapped_column(String(32))
    total_questions: Mapped[int] = mapped_column(Integer)
    correct_answers: Mapped[int] = mapped_column(Integer)
    score_percentage: Mapped[int] = mapped_column(Integer)
    completed_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)

    user = relationship("UserProfile", back_populates="sessions")


class UserAnswer(Base):
    __tablename__ = "user_answers"

    # One row per (user, question); answering again overwrites the previous row
    user_id: Mapped[str] = mapped_column(ForeignKey("user_profiles.id"), primary_key=True)
    question_id: Mapped[int] = mapped_column(ForeignKey("grammar_questions.id"), primary_key=True)
    selected_answer: Mapped[str] = mapped_column(String(1))
    is_correct: Mapped[bool] = mapped_column(Boolean, default=False)

    question = relationship("GrammarQuestion", back_populates="answers")
