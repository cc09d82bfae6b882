"""
Question bank quiz engine with a Discord front end.
"""
from .models import OMITTED, Category, HistoryRecord, Question, QuestionBank, SessionMode, SessionSnapshot
from .session_engine import InvalidConfiguration, QuizError, SessionEngine

__version__ = "1.0.0"

__all__ = [
    "OMITTED",
    "Category",
    "HistoryRecord",
    "InvalidConfiguration",
    "Question",
    "QuestionBank",
    "QuizError",
    "SessionEngine",
    "SessionMode",
    "SessionSnapshot",
]
