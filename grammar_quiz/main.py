import logging
import math
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

from fastapi import Depends, FastAPI, Query
from sqlalchemy import func, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Query as OrmQuery
from sqlalchemy.orm import Session

from grammar_quiz.analytics import (
    CategoryStats,
    compute_performance,
    summarize_user_sessions,
    tally_questions,
)
from grammar_quiz.auth import AuthenticatedUser, get_current_user
from grammar_quiz.config import settings
from grammar_quiz.database import Base, engine, get_db
from grammar_quiz.errors import PersistenceError, ValidationError, register_error_handlers
from grammar_quiz.models import GrammarQuestion, QuizSession, UserProfile
from grammar_quiz.recorder import record_quiz_session
from grammar_quiz.schemas import (
    AdminQuestionsResponse,
    AdminStatsOut,
    AdminStatsResponse,
    AdminUserOut,
    AdminUsersResponse,
    DeleteQuestionRequest,
    DifficultyStatOut,
    GenerateQuestionsRequest,
    GrammarTypeStatOut,
    PerformanceResponse,
    PerformanceStatsOut,
    QuestionOut,
    QuestionsResponse,
    QuizResultsRequest,
    QuizResultsResponse,
    RecentActivityOut,
    RecentProgressOut,
    SuccessResponse,
)
from grammar_quiz.services import GrammarQuestionGenerator

app = FastAPI(title=settings.app_name)
logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
logger = logging.getLogger(__name__)
register_error_handlers(app)

Base.metadata.create_all(bind=engine)

ADMIN_USERS_MAX_WORKERS = 8
RECENT_ACTIVITY_LIMIT = 10


def get_question_generator() -> GrammarQuestionGenerator:
    return GrammarQuestionGenerator()


def _filter_questions(query: OrmQuery, grammar_type: Optional[str], difficulty_level: Optional[str]) -> OrmQuery:
    if grammar_type:
        query = query.filter(GrammarQuestion.grammar_type == grammar_type)
    if difficulty_level:
        query = query.filter(GrammarQuestion.difficulty_level == difficulty_level)
    return query


def _newest_questions_first(query: OrmQuery) -> OrmQuery:
    return query.order_by(GrammarQuestion.created_at.desc(), GrammarQuestion.id.desc())


def _grammar_type_stat(stats: CategoryStats) -> GrammarTypeStatOut:
    return GrammarTypeStatOut(
        grammar_type=stats.key,
        total_quizzes=stats.total_quizzes,
        total_questions=stats.total_questions,
        correct_answers=stats.correct_answers,
        average_score=stats.average_score,
    )


def _difficulty_stat(stats: CategoryStats) -> DifficultyStatOut:
    return DifficultyStatOut(
        difficulty_level=stats.key,
        total_quizzes=stats.total_quizzes,
        total_questions=stats.total_questions,
        correct_answers=stats.correct_answers,
        average_score=stats.average_score,
    )


@app.get("/api/health")
def health(db: Session = Depends(get_db)):
    db.execute(text("SELECT 1"))
    return {"status": "ok"}


@app.get("/api/questions", response_model=QuestionsResponse)
def list_questions(
    grammar_type: Optional[str] = Query(default=None, alias="grammarType"),
    difficulty_level: Optional[str] = Query(default=None, alias="difficultyLevel"),
    limit: int = Query(default=10, ge=1, le=100),
    db: Session = Depends(get_db),
):
    try:
        query = _filter_questions(db.query(GrammarQuestion), grammar_type, difficulty_level)
        rows = _newest_questions_first(query).limit(limit).all()
    except SQLAlchemyError as exc:
        logger.exception("Fetching questions failed")
        raise PersistenceError("Failed to fetch questions") from exc

    questions = [QuestionOut.model_validate(row) for row in rows]
    return QuestionsResponse(questions=questions, count=len(questions))


@app.post("/api/generate-questions", response_model=QuestionsResponse)
def generate_questions(
    payload: GenerateQuestionsRequest,
    db: Session = Depends(get_db),
    generator: GrammarQuestionGenerator = Depends(get_question_generator),
):
    grammar_type = payload.grammar_type.strip()
    if not grammar_type:
        raise ValidationError("Grammar type and difficulty level are required")
    logger.info(
        "Generate questions request received (grammar_type=%r, difficulty_level=%s, count=%s)",
        grammar_type,
        payload.difficulty_level,
        payload.count,
    )

    generated = generator.generate_questions(
        grammar_type=grammar_type,
        difficulty_level=payload.difficulty_level,
        count=payload.count,
    )

    rows = [GrammarQuestion(**question.model_dump()) for question in generated]
    try:
        db.add_all(rows)
        db.commit()
        for row in rows:
            db.refresh(row)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Saving generated questions failed")
        raise PersistenceError("Failed to save questions to database") from exc

    questions = [QuestionOut.model_validate(row) for row in rows]
    return QuestionsResponse(questions=questions, count=len(questions))


@app.post("/api/quiz-results", response_model=QuizResultsResponse)
def submit_quiz_results(
    payload: QuizResultsRequest,
    db: Session = Depends(get_db),
    user: AuthenticatedUser = Depends(get_current_user),
):
    recorded = record_quiz_session(db, user, payload)
    return QuizResultsResponse(session_id=recorded.session_id, answers_saved=recorded.answers_saved)


@app.get("/api/performance", response_model=PerformanceResponse)
def get_performance(db: Session = Depends(get_db), user: AuthenticatedUser = Depends(get_current_user)):
    try:
        sessions = (
            db.query(QuizSession)
            .filter(QuizSession.user_id == user.id)
            .order_by(QuizSession.completed_at.desc(), QuizSession.id.desc())
            .all()
        )
    except SQLAlchemyError as exc:
        logger.exception("Fetching sessions failed for user %s", user.id)
        raise PersistenceError("Failed to fetch performance data") from exc

    stats = compute_performance(sessions)
    return PerformanceResponse(
        stats=PerformanceStatsOut(
            total_quizzes=stats.total_quizzes,
            total_questions=stats.total_questions,
            average_score=stats.average_score,
            grammar_type_stats=[_grammar_type_stat(s) for s in stats.grammar_type_stats],
            difficulty_stats=[_difficulty_stat(s) for s in stats.difficulty_stats],
            weak_areas=[_grammar_type_stat(s) for s in stats.weak_areas],
            recent_progress=[
                RecentProgressOut(date=p.date, score=p.score, grammar_type=p.grammar_type, difficulty=p.difficulty)
                for p in stats.recent_progress
            ],
        )
    )


@app.get("/api/admin/questions", response_model=AdminQuestionsResponse)
def list_admin_questions(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    grammar_type: Optional[str] = Query(default=None, alias="grammarType"),
    difficulty_level: Optional[str] = Query(default=None, alias="difficultyLevel"),
    db: Session = Depends(get_db),
    _user: AuthenticatedUser = Depends(get_current_user),
):
    try:
        query = _filter_questions(db.query(GrammarQuestion), grammar_type, difficulty_level)
        total_count = query.count()
        rows = _newest_questions_first(query).offset((page - 1) * limit).limit(limit).all()
    except SQLAlchemyError as exc:
        logger.exception("Fetching admin question page %s failed", page)
        raise PersistenceError("Failed to fetch questions") from exc

    return AdminQuestionsResponse(
        questions=[QuestionOut.model_validate(row) for row in rows],
        total_count=total_count,
        current_page=page,
        total_pages=math.ceil(total_count / limit),
    )


@app.delete("/api/admin/questions", response_model=SuccessResponse)
def delete_admin_question(
    payload: DeleteQuestionRequest,
    db: Session = Depends(get_db),
    user: AuthenticatedUser = Depends(get_current_user),
):
    try:
        question = db.get(GrammarQuestion, payload.question_id)
        if question is not None:
            db.delete(question)
            db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Deleting question %s failed", payload.question_id)
        raise PersistenceError("Failed to delete question") from exc

    logger.info("User %s deleted question %s (found=%s)", user.id, payload.question_id, question is not None)
    return SuccessResponse()


@app.get("/api/admin/stats", response_model=AdminStatsResponse)
def get_admin_stats(db: Session = Depends(get_db), _user: AuthenticatedUser = Depends(get_current_user)):
    try:
        total_users = db.query(func.count(UserProfile.id)).scalar() or 0
        total_questions = db.query(func.count(GrammarQuestion.id)).scalar() or 0
        total_sessions = db.query(func.count(QuizSession.id)).scalar() or 0
        question_rows = db.query(GrammarQuestion.grammar_type, GrammarQuestion.difficulty_level).all()
        recent_rows = (
            db.query(QuizSession, UserProfile.email)
            .join(UserProfile, UserProfile.id == QuizSession.user_id)
            .order_by(QuizSession.completed_at.desc(), QuizSession.id.desc())
            .limit(RECENT_ACTIVITY_LIMIT)
            .all()
        )
    except SQLAlchemyError as exc:
        logger.exception("Fetching admin statistics failed")
        raise PersistenceError("Failed to fetch admin statistics") from exc

    grammar_type_stats, difficulty_stats = tally_questions(question_rows)
    recent_activity = [
        RecentActivityOut(
            id=session.id,
            user_id=session.user_id,
            email=email,
            grammar_type=session.grammar_type,
            difficulty_level=session.difficulty_level,
            total_questions=session.total_questions,
            correct_answers=session.correct_answers,
            score_percentage=session.score_percentage,
            completed_at=session.completed_at,
        )
        for session, email in recent_rows
    ]
    return AdminStatsResponse(
        stats=AdminStatsOut(
            total_users=total_users,
            total_questions=total_questions,
            total_sessions=total_sessions,
            grammar_type_stats=grammar_type_stats,
            difficulty_stats=difficulty_stats,
            recent_activity=recent_activity,
        )
    )


def _load_user_sessions(bind: Engine | Connection, user_id: str):
    with Session(bind=bind) as worker_db:
        return (
            worker_db.query(QuizSession.score_percentage, QuizSession.completed_at)
            .filter(QuizSession.user_id == user_id)
            .order_by(QuizSession.completed_at.desc(), QuizSession.id.desc())
            .all()
        )


@app.get("/api/admin/users", response_model=AdminUsersResponse)
def list_admin_users(db: Session = Depends(get_db), _user: AuthenticatedUser = Depends(get_current_user)):
    try:
        users = db.query(UserProfile).order_by(UserProfile.created_at.desc()).all()
        bind = db.get_bind()
        # Independent per-user reads, each on its own session
        with ThreadPoolExecutor(max_workers=min(ADMIN_USERS_MAX_WORKERS, len(users) or 1)) as executor:
            sessions_per_user = list(executor.map(lambda u: _load_user_sessions(bind, u.id), users))
    except SQLAlchemyError as exc:
        logger.exception("Fetching admin user list failed")
        raise PersistenceError("Failed to fetch users") from exc

    results = []
    for user, sessions in zip(users, sessions_per_user):
        total_sessions, average_score = summarize_user_sessions([s.score_percentage for s in sessions])
        results.append(
            AdminUserOut(
                id=user.id,
                email=user.email,
                created_at=user.created_at,
                total_sessions=total_sessions,
                average_score=average_score,
                last_activity=sessions[0].completed_at if sessions else user.created_at,
            )
        )
    return AdminUsersResponse(users=results)
