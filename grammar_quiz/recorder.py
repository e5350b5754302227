import logging
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from grammar_quiz.analytics import percentage
from grammar_quiz.auth import AuthenticatedUser
from grammar_quiz.errors import PersistenceError, ValidationError
from grammar_quiz.models import QuizSession, UserAnswer, UserProfile
from grammar_quiz.schemas import QuizResultsRequest

logger = logging.getLogger(__name__)

# Stored for questions the user skipped; is_correct stays False for them
UNANSWERED_PLACEHOLDER = "A"


@dataclass
class RecordedSession:
    session_id: int
    answers_saved: bool


def _ensure_profile(db: Session, user: AuthenticatedUser):
    try:
        profile = db.get(UserProfile, user.id)
        if profile is None:
            db.add(UserProfile(id=user.id, email=user.email))
        elif user.email and profile.email != user.email:
            profile.email = user.email
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Profile upsert failed for user %s", user.id)


def record_quiz_session(db: Session, user: AuthenticatedUser, payload: QuizResultsRequest) -> RecordedSession:
    """Persist a finished quiz: the session row first, then one answer row per question.

    The session is committed on its own. Answer rows are written afterwards as a
    best-effort step, so a failure there leaves the session in place and is
    reported through ``answers_saved``.
    """
    total_questions = len(payload.questions)
    if total_questions < 1:
        raise ValidationError("A quiz session needs at least one question")
    if payload.score.correct > total_questions:
        raise ValidationError("score.correct cannot exceed the number of questions")

    score_percentage = percentage(payload.score.correct, total_questions)
    if score_percentage != payload.score.percentage or payload.score.total != total_questions:
        logger.warning(
            "Client score %s/%s (%s%%) disagrees with %s/%s (%s%%); storing the recomputed value",
            payload.score.correct,
            payload.score.total,
            payload.score.percentage,
            payload.score.correct,
            total_questions,
            score_percentage,
        )

    _ensure_profile(db, user)

    session = QuizSession(
        user_id=user.id,
        grammar_type=payload.grammar_type,
        difficulty_level=payload.difficulty_level,
        total_questions=total_questions,
        correct_answers=payload.score.correct,
        score_percentage=score_percentage,
    )
    try:
        db.add(session)
        db.commit()
        db.refresh(session)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Saving quiz session failed for user %s", user.id)
        raise PersistenceError("Failed to save quiz session") from exc

    try:
        for idx, question in enumerate(payload.questions):
            selected = payload.answers.get(idx)
            db.merge(
                UserAnswer(
                    user_id=user.id,
                    question_id=question.id,
                    selected_answer=selected or UNANSWERED_PLACEHOLDER,
                    is_correct=selected == question.correct_answer,
                )
            )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.warning("Saving answers failed for session %s; the session itself was kept", session.id, exc_info=True)
        return RecordedSession(session_id=session.id, answers_saved=False)

    logger.info(
        "Recorded quiz session %s for user %s (%s/%s correct)",
        session.id,
        user.id,
        payload.score.correct,
        total_questions,
    )
    return RecordedSession(session_id=session.id, answers_saved=True)
