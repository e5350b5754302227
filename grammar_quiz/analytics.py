"""Score aggregation over stored quiz sessions and question rows.

Everything here is a pure fold over rows the caller has already fetched; no
function in this module touches the datastore.
"""
import math
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Sequence

WEAK_AREA_LIMIT = 3
RECENT_LIMIT = 10


def percentage(correct: int, total: int) -> int:
    """Whole-number percentage, rounding halves up. 0 when ``total`` is 0."""
    if not total:
        return 0
    return math.floor(correct * 100 / total + 0.5)


@dataclass
class CategoryStats:
    key: str
    total_quizzes: int = 0
    total_questions: int = 0
    correct_answers: int = 0
    average_score: int = 0

    def add_session(self, total_questions: int, correct_answers: int):
        self.total_quizzes += 1
        self.total_questions += total_questions
        self.correct_answers += correct_answers
        # Weighted by question count, not a mean of per-session percentages
        self.average_score = percentage(self.correct_answers, self.total_questions)


@dataclass
class RecentProgress:
    date: datetime
    score: int
    grammar_type: str
    difficulty: str


@dataclass
class PerformanceStats:
    total_quizzes: int
    total_questions: int
    average_score: int
    grammar_type_stats: List[CategoryStats] = field(default_factory=list)
    difficulty_stats: List[CategoryStats] = field(default_factory=list)
    weak_areas: List[CategoryStats] = field(default_factory=list)
    recent_progress: List[RecentProgress] = field(default_factory=list)


def _fold_by(sessions: Sequence, key_attr: str) -> Dict[str, CategoryStats]:
    buckets: Dict[str, CategoryStats] = {}
    for session in sessions:
        key = getattr(session, key_attr)
        stats = buckets.get(key)
        if stats is None:
            stats = buckets[key] = CategoryStats(key=key)
        stats.add_session(session.total_questions, session.correct_answers)
    return buckets


def compute_performance(sessions: Sequence) -> PerformanceStats:
    """Aggregate one user's sessions, given newest first.

    Each session needs ``grammar_type``, ``difficulty_level``,
    ``total_questions``, ``correct_answers``, ``score_percentage`` and
    ``completed_at``. Weak areas are the lowest-accuracy grammar types; ties
    keep the order in which the types first appear in ``sessions``.
    """
    total_questions = sum(s.total_questions for s in sessions)
    total_correct = sum(s.correct_answers for s in sessions)

    by_type = _fold_by(sessions, "grammar_type")
    by_difficulty = _fold_by(sessions, "difficulty_level")

    weak_areas = sorted(by_type.values(), key=lambda stats: stats.average_score)[:WEAK_AREA_LIMIT]
    recent_progress = [
        RecentProgress(
            date=s.completed_at,
            score=s.score_percentage,
            grammar_type=s.grammar_type,
            difficulty=s.difficulty_level,
        )
        for s in sessions[:RECENT_LIMIT]
    ]

    return PerformanceStats(
        total_quizzes=len(sessions),
        total_questions=total_questions,
        average_score=percentage(total_correct, total_questions),
        grammar_type_stats=list(by_type.values()),
        difficulty_stats=list(by_difficulty.values()),
        weak_areas=weak_areas,
        recent_progress=recent_progress,
    )


def tally_questions(questions: Iterable) -> tuple[Dict[str, int], Dict[str, int]]:
    """Count questions per grammar type and per difficulty level in one pass."""
    by_type: Dict[str, int] = defaultdict(int)
    by_difficulty: Dict[str, int] = defaultdict(int)
    for question in questions:
        by_type[question.grammar_type] += 1
        by_difficulty[question.difficulty_level] += 1
    return dict(by_type), dict(by_difficulty)


def summarize_user_sessions(score_percentages: Sequence[int]) -> tuple[int, int]:
    """Session count and rounded mean score for the admin user listing."""
    count = len(score_percentages)
    if not count:
        return 0, 0
    return count, percentage(sum(score_percentages), count * 100)
