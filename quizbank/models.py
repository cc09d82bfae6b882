"""
Core data models for the question bank quiz engine.
"""
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple


# Sentinel stored as the selected answer of an omitted attempt
OMITTED = None


class MediaKind(str, Enum):
    """Kinds of media a question can carry."""
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"


class MediaTiming(str, Enum):
    """When question media is displayed."""
    WITH_QUESTION = "question"
    WITH_ANSWER = "answer"


class SessionMode(Enum):
    """States of the quiz session state machine."""
    IDLE = "idle"
    ACTIVE = "active"
    ANSWERED_WAITING = "answered_waiting"
    FINISHED = "finished"


class Category(str, Enum):
    """History categories used for dashboard counts and catalog filters."""
    UNUSED = "unused"
    USED = "used"
    CORRECT = "correct"
    INCORRECT = "incorrect"
    MARKED = "marked"
    OMITTED = "omitted"


@dataclass(frozen=True)
class Media:
    """Media attached to a question."""
    kind: MediaKind
    url: str
    show_with: MediaTiming = MediaTiming.WITH_QUESTION


@dataclass
class Question:
    """A single multiple-choice question owned by the catalog."""
    id: int
    bank_id: str
    text: str
    options: List[str]
    correct_answer_index: int
    explanation: Optional[str] = None
    media: Optional[Media] = None
    is_marked: bool = False

    @property
    def correct_option(self) -> str:
        return self.options[self.correct_answer_index]

    def media_visible(self, is_answered: bool) -> bool:
        """Whether the question's media should be shown at this point."""
        if self.media is None:
            return False
        if self.media.show_with == MediaTiming.WITH_ANSWER:
            return is_answered
        return True


@dataclass
class QuestionBank:
    """A named, ordered collection of questions."""
    id: str
    name: str
    description: str = ""
    questions: Tuple[Question, ...] = ()

    def __len__(self) -> int:
        return len(self.questions)


@dataclass(frozen=True)
class QuestionAttempt:
    """One recorded answer (or omission) for one question in one session."""
    question_id: int
    selected_answer: Optional[int]
    is_correct: bool

    @property
    def is_omitted(self) -> bool:
        return self.selected_answer is OMITTED

    def to_dict(self) -> Dict[str, Any]:
        return {
            'question_id': self.question_id,
            'selected_answer': self.selected_answer,
            'is_correct': self.is_correct,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QuestionAttempt":
        selected = data.get('selected_answer')
        return cls(
            question_id=int(data['question_id']),
            selected_answer=None if selected is None else int(selected),
            # An omission is never correct, whatever was stored
            is_correct=bool(data.get('is_correct', False)) and selected is not None,
        )


def new_record_id() -> str:
    """Create a time-based unique history record id."""
    return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"


@dataclass(frozen=True)
class HistoryRecord:
    """Immutable record of one completed or quit quiz session."""
    id: str
    date: datetime
    bank_id: str
    score: int
    total_questions: int
    attempts: Tuple[QuestionAttempt, ...] = ()

    @property
    def percentage(self) -> float:
        if self.total_questions <= 0:
            return 0.0
        return self.score / self.total_questions * 100

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'date': self.date.isoformat(),
            'bank_id': self.bank_id,
            'score': self.score,
            'total_questions': self.total_questions,
            'attempts': [attempt.to_dict() for attempt in self.attempts],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HistoryRecord":
        return cls(
            id=str(data['id']),
            date=datetime.fromisoformat(data['date']),
            bank_id=str(data['bank_id']),
            score=int(data['score']),
            total_questions=int(data['total_questions']),
            attempts=tuple(QuestionAttempt.from_dict(a) for a in data.get('attempts', [])),
        )


@dataclass
class QuizSettings:
    """Configuration settings for starting a quiz session."""
    question_count: int = 5
    tutor_mode: bool = False
    timer_enabled: bool = False
    time_per_question: int = 60


@dataclass
class SessionState:
    """Mutable state of the active quiz, owned by a single SessionEngine."""
    bank_id: str
    question_ids: Tuple[int, ...]
    tutor_mode: bool
    timer_enabled: bool
    time_per_question: float
    current_index: int = 0
    attempts: Dict[int, QuestionAttempt] = field(default_factory=dict)
    selected_answer: Optional[int] = None
    is_answered: bool = False
    score: int = 0
    is_paused: bool = False
    show_explanation: bool = False
    # Seconds left on the current question's countdown, captured on pause
    paused_remaining: Optional[float] = None
    start_time: datetime = field(default_factory=datetime.now)

    @property
    def total_questions(self) -> int:
        return len(self.question_ids)

    @property
    def is_last_question(self) -> bool:
        return self.current_index == len(self.question_ids) - 1

    def ordered_attempts(self) -> Tuple[QuestionAttempt, ...]:
        return tuple(self.attempts[i] for i in sorted(self.attempts))


@dataclass(frozen=True)
class SessionSnapshot:
    """Read-only view of a session handed to the presentation layer."""
    mode: SessionMode
    bank_id: Optional[str] = None
    question_ids: Tuple[int, ...] = ()
    current_index: int = 0
    current_question: Optional[Question] = None
    attempts: Tuple[QuestionAttempt, ...] = ()
    selected_answer: Optional[int] = None
    is_answered: bool = False
    score: int = 0
    tutor_mode: bool = False
    timer_enabled: bool = False
    time_per_question: float = 0
    is_paused: bool = False
    show_explanation: bool = False
    marked_ids: FrozenSet[int] = frozenset()
    remaining_time: Optional[float] = None
    last_record: Optional[HistoryRecord] = None
    start_time: Optional[datetime] = None

    @property
    def total_questions(self) -> int:
        return len(self.question_ids)

    @property
    def view(self) -> str:
        """Top-level screen: exactly one of dashboard, session, final_score."""
        if self.mode in (SessionMode.ACTIVE, SessionMode.ANSWERED_WAITING):
            return "session"
        if self.mode == SessionMode.FINISHED:
            return "final_score"
        return "dashboard"

    @property
    def can_go_previous(self) -> bool:
        return self.view == "session" and self.current_index > 0 and not self.timer_enabled

    @property
    def can_go_next(self) -> bool:
        return self.view == "session" and self.is_answered

    @property
    def is_current_marked(self) -> bool:
        return self.current_question is not None and self.current_question.id in self.marked_ids
