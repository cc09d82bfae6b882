"""
Quiz engine core logic.
Handles question sampling and the per-session question countdown timers.
"""
import asyncio
import itertools
import logging
import random
import time
from typing import Any, Callable, Dict, List, Optional, Sequence

from .models import Question

# Set up logger for timer operations
logger = logging.getLogger(__name__)


class TimerLifecycleLogger:
    """Structured logging for timer lifecycle events."""

    @staticmethod
    def log_timer_armed(session_key: str, duration: float, token: int) -> None:
        """Log a timer being armed."""
        logger.info(
            f"Timer lifecycle: ARMED - Session {session_key}, Duration {duration:.1f}s, Token {token}",
            extra={
                'event_type': 'timer_armed',
                'session_key': session_key,
                'duration': duration,
                'token': token,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_fired(session_key: str, token: int) -> None:
        """Log natural expiry of a timer."""
        logger.info(
            f"Timer lifecycle: FIRED - Session {session_key}, Token {token}",
            extra={
                'event_type': 'timer_fired',
                'session_key': session_key,
                'token': token,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_cancelled(session_key: str, token: int, remaining_time: float, reason: str) -> None:
        """Log cancellation of a live timer."""
        logger.info(
            f"Timer lifecycle: CANCELLED - Session {session_key}, Token {token}, "
            f"Remaining {remaining_time:.1f}s ({reason})",
            extra={
                'event_type': 'timer_cancelled',
                'session_key': session_key,
                'token': token,
                'remaining_time': remaining_time,
                'reason': reason,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_error(session_key: str, error_type: str, error_message: str, operation: str) -> None:
        """Log timer-related errors with context."""
        logger.error(
            f"Timer lifecycle: ERROR - Session {session_key}, Operation {operation}, "
            f"Type {error_type}: {error_message}",
            extra={
                'event_type': 'timer_error',
                'session_key': session_key,
                'error_type': error_type,
                'error_message': error_message,
                'operation': operation,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_race_condition_detected(session_key: str, details: str) -> None:
        """Log race condition detection."""
        logger.warning(
            f"Timer lifecycle: RACE_CONDITION - Session {session_key}: {details}",
            extra={
                'event_type': 'timer_race_condition',
                'session_key': session_key,
                'details': details,
                'timestamp': time.time()
            }
        )


class QuizTimer:
    """
    Cancelable countdown for one question.

    The timer is a scheduled callback plus a cancellation token: every arm()
    issues a new token, and a firing whose token is no longer current is
    dropped. At most one scheduled callback is live per timer.

    The scheduler only needs ``call_later(delay, callback, *args)`` returning
    a handle with ``cancel()``, and ``time()``; an asyncio event loop fits.
    """

    _tokens = itertools.count(1)

    def __init__(self, session_key: str, scheduler: Any):
        self._session_key = session_key
        self._scheduler = scheduler
        self._handle = None
        self._token: Optional[int] = None
        self._deadline = 0.0
        self._duration = 0.0
        self._on_fire: Optional[Callable[[], Any]] = None

    def arm(self, duration: float, on_fire: Callable[[], Any]) -> int:
        """
        Schedule ``on_fire`` after ``duration`` seconds, cancelling any live countdown.

        Returns:
            The token identifying this countdown
        """
        if self.is_armed:
            TimerLifecycleLogger.log_race_condition_detected(
                self._session_key,
                f"Re-arming over live token {self._token}, previous countdown cancelled"
            )
            self.cancel("re-armed")

        token = next(self._tokens)
        self._token = token
        self._duration = duration
        self._deadline = self._scheduler.time() + duration
        self._on_fire = on_fire
        self._handle = self._scheduler.call_later(duration, self._fire, token)

        TimerLifecycleLogger.log_timer_armed(self._session_key, duration, token)
        return token

    def _fire(self, token: int) -> None:
        if token != self._token:
            TimerLifecycleLogger.log_race_condition_detected(
                self._session_key,
                f"Stale timer token {token} fired (current {self._token}), ignored"
            )
            return

        on_fire = self._on_fire
        self._handle = None
        self._token = None
        self._on_fire = None
        TimerLifecycleLogger.log_timer_fired(self._session_key, token)
        on_fire()

    def cancel(self, reason: str = "cancel requested") -> bool:
        """
        Cancel the live countdown.

        Returns:
            True if a countdown was cancelled, False if none was live
        """
        if not self.is_armed:
            return False

        remaining = self.remaining_time
        self._handle.cancel()
        TimerLifecycleLogger.log_timer_cancelled(self._session_key, self._token, remaining, reason)
        self._handle = None
        self._token = None
        self._on_fire = None
        return True

    @property
    def is_armed(self) -> bool:
        """Check if a countdown is live."""
        return self._token is not None

    @property
    def token(self) -> Optional[int]:
        return self._token

    @property
    def duration(self) -> float:
        return self._duration

    @property
    def remaining_time(self) -> float:
        """Seconds left on the live countdown, 0 if none."""
        if not self.is_armed:
            return 0.0
        return max(0.0, self._deadline - self._scheduler.time())


class QuizEngine:
    """Core quiz engine that handles question sampling and question timers."""

    def __init__(self, scheduler: Any = None, rng: Optional[random.Random] = None):
        """
        Initialize the quiz engine.

        Args:
            scheduler: Object providing call_later() and time(); defaults to the running event loop
            rng: Random source for sampling; defaults to the module-level generator
        """
        self._scheduler = scheduler
        self._rng = rng or random.Random()
        self._timers: Dict[str, QuizTimer] = {}  # Session key -> Timer mapping

    def sample_questions(self, questions: Sequence[Question], count: int) -> List[Question]:
        """
        Draw ``count`` distinct questions in random order.

        A full random permutation is taken and its prefix kept, so every
        question has the same chance of being included.

        Args:
            questions: Questions available for the session
            count: Number of questions to keep

        Returns:
            New list of sampled questions

        Raises:
            ValueError: If count is outside 1..len(questions)
        """
        if not questions:
            raise ValueError("Cannot sample questions from empty list")
        if count < 1 or count > len(questions):
            raise ValueError(f"Cannot sample {count} questions from {len(questions)} available")

        return self.shuffle_questions(questions)[:count]

    def shuffle_questions(self, questions: Sequence[Question]) -> List[Question]:
        """
        Shuffle questions randomly.

        Args:
            questions: Questions to shuffle

        Returns:
            New list with questions in random order
        """
        shuffled = list(questions)
        self._rng.shuffle(shuffled)
        return shuffled

    def _get_scheduler(self) -> Any:
        if self._scheduler is not None:
            return self._scheduler
        return asyncio.get_running_loop()

    def arm_timer(self, session_key: str, duration: float, on_fire: Callable[[], Any]) -> int:
        """
        Arm the question timer for a session, replacing any live one.

        Args:
            session_key: Identifier of the owning session
            duration: Countdown length in seconds
            on_fire: Called when the countdown elapses

        Returns:
            Token of the new countdown

        Raises:
            ValueError: If duration is not positive
            RuntimeError: If no scheduler was given and no event loop is running
        """
        if duration <= 0:
            raise ValueError(f"Timer duration must be positive, got {duration}")

        timer = self._timers.get(session_key)
        if timer is None:
            try:
                timer = QuizTimer(session_key, self._get_scheduler())
            except RuntimeError as e:
                TimerLifecycleLogger.log_timer_error(session_key, "no_event_loop", str(e), "arm_timer")
                raise
            self._timers[session_key] = timer

        return timer.arm(duration, on_fire)

    def cancel_timer(self, session_key: str, reason: str = "cancel requested") -> bool:
        """
        Cancel the timer for a session.

        Args:
            session_key: Identifier of the owning session
            reason: Logged cancellation reason

        Returns:
            True if a live countdown was cancelled, False otherwise
        """
        timer = self._timers.get(session_key)
        if timer is None:
            logger.debug(
                f"No timer registered for session {session_key}",
                extra={
                    'event_type': 'timer_cancel_no_timer',
                    'session_key': session_key,
                    'timestamp': time.time()
                }
            )
            return False
        return timer.cancel(reason)

    def release_timer(self, session_key: str) -> None:
        """Cancel and forget a session's timer."""
        timer = self._timers.pop(session_key, None)
        if timer is not None:
            timer.cancel("released")

    def get_remaining_time(self, session_key: str) -> Optional[float]:
        """Seconds left for the session's live countdown, None if none is live."""
        timer = self._timers.get(session_key)
        if timer is None or not timer.is_armed:
            return None
        return timer.remaining_time

    def get_timer_status(self, session_key: str) -> Optional[dict]:
        """
        Get the status of a timer for a specific session.

        Args:
            session_key: Identifier of the owning session

        Returns:
            Dictionary with timer status or None if no timer is registered
        """
        timer = self._timers.get(session_key)
        if timer is None:
            return None
        return {
            'is_armed': timer.is_armed,
            'token': timer.token,
            'duration': timer.duration,
            'remaining_time': timer.remaining_time,
        }

    def active_timer_count(self) -> int:
        return sum(1 for timer in self._timers.values() if timer.is_armed)
