"""
Quiz session engine.

Owns the state of one quiz at a time: question order, position, timer,
pause state, scoring and the tutor-mode explanation flow. Every mutation goes
through the intent methods below; calls that arrive out of turn are ignored
and reported by a False/None return value.
"""
import logging
import time
from datetime import datetime
from typing import Any, Callable, Iterable, Optional

from .data_manager import DataManager
from .history_store import HistoryStore
from .metrics import filter_catalog
from .models import (
    OMITTED,
    Category,
    HistoryRecord,
    Question,
    QuestionAttempt,
    SessionMode,
    SessionSnapshot,
    SessionState,
    new_record_id,
)
from .quiz_engine import QuizEngine

IN_SESSION = (SessionMode.ACTIVE, SessionMode.ANSWERED_WAITING)

PREVIOUS = "previous"
NEXT = "next"


class QuizError(Exception):
    """Base exception for quiz engine errors."""
    pass


class InvalidConfiguration(QuizError):
    """Raised when a quiz cannot be started with the requested configuration."""
    pass


class SessionEngine:
    """
    State machine for a single quiz session.

    Idle -> Active -> (AnsweredWaiting, tutor mode only) -> Active -> ... -> Finished -> Idle.
    Quitting goes from Active/AnsweredWaiting straight back to Idle. Exactly one
    HistoryRecord is appended per session, on the transition out of the session.
    """

    def __init__(
        self,
        catalog: DataManager,
        history: HistoryStore,
        quiz_engine: Optional[QuizEngine] = None,
        session_key: str = "default",
        on_event: Optional[Callable[[str, SessionSnapshot], Any]] = None
    ):
        """
        Initialize the session engine.

        Args:
            catalog: Question catalog the banks are read from
            history: Append-only log finished sessions are written to
            quiz_engine: Sampling and timer service, shared between sessions
            session_key: Identifier of this session's timer slot
            on_event: Observer called after each transition with the new snapshot
        """
        self.logger = logging.getLogger(__name__)
        self.catalog = catalog
        self.history = history
        self.quiz_engine = quiz_engine or QuizEngine()
        self.session_key = session_key
        self.on_event = on_event

        self._mode = SessionMode.IDLE
        self._state: Optional[SessionState] = None
        self._last_record: Optional[HistoryRecord] = None
        self._record_emitted = False

    @property
    def mode(self) -> SessionMode:
        return self._mode

    @property
    def in_session(self) -> bool:
        return self._mode in IN_SESSION

    @property
    def last_record(self) -> Optional[HistoryRecord]:
        return self._last_record

    def start(
        self,
        bank_id: str,
        question_count: int,
        tutor_mode: bool = False,
        timer_enabled: bool = False,
        time_per_question: float = 60,
        filters: Iterable[Category] = ()
    ) -> bool:
        """
        Start a quiz on a bank of the (optionally filtered) catalog.

        Args:
            bank_id: Bank to draw questions from
            question_count: Number of questions to sample
            tutor_mode: Show the explanation after each answer and wait for continue
            timer_enabled: Give each question a countdown
            time_per_question: Countdown length in seconds
            filters: History categories restricting the catalog; empty for none

        Returns:
            True if the session started, False if a session is already in progress

        Raises:
            InvalidConfiguration: If the bank or question count cannot be satisfied.
                Nothing changes in that case.
        """
        if self.in_session:
            return self._reject("start", "a session is already in progress")

        if isinstance(question_count, bool) or not isinstance(question_count, int):
            raise InvalidConfiguration(f"Question count must be an integer, got {question_count!r}")

        if timer_enabled and (
            isinstance(time_per_question, bool)
            or not isinstance(time_per_question, (int, float))
            or time_per_question <= 0
        ):
            raise InvalidConfiguration(f"Time per question must be positive, got {time_per_question!r}")

        try:
            active_filters = {Category(f) for f in filters}
        except ValueError as e:
            raise InvalidConfiguration(f"Unknown filter: {e}") from e

        banks = filter_catalog(self.catalog.list_banks(), self.history.read_all(), active_filters)
        bank = next((b for b in banks if b.id == bank_id), None)
        if bank is None:
            if self.catalog.get_bank(bank_id) is None:
                raise InvalidConfiguration(f"Question bank '{bank_id}' not found")
            raise InvalidConfiguration(f"Question bank '{bank_id}' has no questions matching the active filters")

        if question_count < 1 or question_count > len(bank):
            raise InvalidConfiguration(
                f"Question count must be between 1 and {len(bank)}, got {question_count}"
            )

        sampled = self.quiz_engine.sample_questions(bank.questions, question_count)

        previous = (self._state, self._mode, self._record_emitted)
        self._reset()
        self._state = SessionState(
            bank_id=bank.id,
            question_ids=tuple(q.id for q in sampled),
            tutor_mode=tutor_mode,
            timer_enabled=timer_enabled,
            time_per_question=time_per_question,
        )
        self._record_emitted = False
        try:
            self._enter_position(0)
        except RuntimeError as e:
            # Put back whatever the engine showed before the attempt
            self._cancel_timer("start_failed")
            self._state, self._mode, self._record_emitted = previous
            raise InvalidConfiguration(f"Question timer cannot be armed: {e}") from e

        self.logger.info(
            f"Started session {self.session_key}: bank='{bank.id}', questions={question_count}, "
            f"tutor_mode={tutor_mode}, timer={time_per_question if timer_enabled else 'off'}",
            extra={
                'event_type': 'session_started',
                'session_key': self.session_key,
                'bank_id': bank.id,
                'question_count': question_count,
                'timestamp': time.time()
            }
        )
        self._notify("started")
        return True

    def answer(self, option_index: int) -> bool:
        """
        Record the user's choice for the current question.

        Returns:
            True if the answer was recorded, False if it was rejected
        """
        state = self._state
        if self._mode != SessionMode.ACTIVE or state is None:
            return self._reject("answer", f"not accepting answers in mode {self._mode.value}")
        if state.is_paused:
            return self._reject("answer", "session is paused")
        if state.is_answered:
            return self._reject("answer", "question already answered")

        question = self._current_question()
        if question is None:
            return self._reject("answer", "current question missing from catalog")
        if isinstance(option_index, bool) or not isinstance(option_index, int) \
                or not 0 <= option_index < len(question.options):
            return self._reject("answer", f"option {option_index!r} out of range")

        self._record_attempt(question, option_index)
        self._after_attempt("answered")
        return True

    def timeout(self) -> bool:
        """
        Record an omitted attempt when the question's countdown elapses.

        Returns:
            True if the omission was recorded, False if the question was already settled
        """
        state = self._state
        if self._mode != SessionMode.ACTIVE or state is None:
            return self._reject("timeout", f"not accepting timeouts in mode {self._mode.value}")
        if state.is_paused:
            return self._reject("timeout", "session is paused")
        if state.is_answered:
            return self._reject("timeout", "question already answered")

        question = self._current_question()
        if question is None:
            return self._reject("timeout", "current question missing from catalog")

        self._record_attempt(question, OMITTED)
        self._after_attempt("timeout")
        return True

    def advance(self) -> bool:
        """
        Move past the current (answered) question, finishing after the last one.

        Returns:
            True if the session moved on, False if the current question is unanswered
        """
        state = self._state
        if not self.in_session or state is None:
            return self._reject("advance", f"no session in progress (mode {self._mode.value})")
        if not state.is_answered:
            return self._reject("advance", "current question not answered")

        finished = self._advance()
        self._notify("finished" if finished else "advanced")
        return True

    def continue_quiz(self) -> bool:
        """Leave the tutor-mode explanation and go to the next question."""
        return self.advance()

    def navigate(self, direction: str) -> bool:
        """
        Move to the previous or next question.

        Going back is refused while the timer is enabled, so a timed-out
        question cannot be reopened. Going forward requires an answer.

        Args:
            direction: "previous" (or "prev") or "next"

        Returns:
            True if the position changed
        """
        state = self._state
        if not self.in_session or state is None:
            return self._reject("navigate", f"no session in progress (mode {self._mode.value})")

        if direction == NEXT:
            return self.advance()

        if direction not in (PREVIOUS, "prev"):
            return self._reject("navigate", f"unknown direction {direction!r}")
        if state.timer_enabled:
            return self._reject("navigate", "backward navigation is disabled while the timer is enabled")
        if state.current_index == 0:
            return self._reject("navigate", "already at the first question")

        self._cancel_timer("navigated")
        self._enter_position(state.current_index - 1)
        self._notify("navigated")
        return True

    def pause(self) -> bool:
        """
        Pause the session, cancelling the live countdown and keeping its remainder.

        Returns:
            True if the session was paused
        """
        state = self._state
        if not self.in_session or state is None:
            return self._reject("pause", f"no session in progress (mode {self._mode.value})")
        if state.is_paused:
            return self._reject("pause", "already paused")

        remaining = self.quiz_engine.get_remaining_time(self.session_key)
        self._cancel_timer("paused")
        state.paused_remaining = remaining
        state.is_paused = True

        self.logger.info(
            f"Paused session {self.session_key}, remaining time: {remaining}",
            extra={
                'event_type': 'session_paused',
                'session_key': self.session_key,
                'remaining_time': remaining,
                'timestamp': time.time()
            }
        )
        self._notify("paused")
        return True

    def resume(self) -> bool:
        """
        Resume a paused session. An unanswered timed question gets a fresh
        countdown for the time that was left when it was paused.

        Returns:
            True if the session was resumed
        """
        state = self._state
        if not self.in_session or state is None:
            return self._reject("resume", f"no session in progress (mode {self._mode.value})")
        if not state.is_paused:
            return self._reject("resume", "not paused")

        remaining = state.paused_remaining
        state.paused_remaining = None
        state.is_paused = False

        self.logger.info(
            f"Resumed session {self.session_key}, remaining time: {remaining}",
            extra={
                'event_type': 'session_resumed',
                'session_key': self.session_key,
                'remaining_time': remaining,
                'timestamp': time.time()
            }
        )

        if state.timer_enabled and not state.is_answered and self._mode == SessionMode.ACTIVE:
            if remaining is not None and remaining <= 0:
                # Paused on the very edge of expiry
                self.timeout()
                return True
            self._arm_timer(remaining if remaining is not None else state.time_per_question)

        self._notify("resumed")
        return True

    def toggle_pause(self) -> bool:
        if self._state is not None and self._state.is_paused:
            return self.resume()
        return self.pause()

    def toggle_mark(self, question_id: Optional[int] = None) -> Optional[bool]:
        """
        Flip the marked flag of a catalog question, in any state.

        Args:
            question_id: Question to toggle; defaults to the current question

        Returns:
            New flag value, or None if there is no such question
        """
        if question_id is None:
            question = self._current_question()
            if question is None:
                self._reject("toggle_mark", "no current question")
                return None
            question_id = question.id

        marked = self.catalog.toggle_mark(question_id)
        if marked is not None:
            self._notify("marked")
        return marked

    def quit(self) -> Optional[HistoryRecord]:
        """
        End the session early, recording only the questions actually attempted.

        Returns:
            The emitted HistoryRecord, or None if no session was in progress
        """
        if not self.in_session or self._state is None:
            self._reject("quit", f"no session in progress (mode {self._mode.value})")
            return None

        self._cancel_timer("quit")
        record = self._emit_record()
        self._reset()
        self.logger.info(f"Session {self.session_key} quit")
        self._notify("quit")
        return record

    def restart(self) -> bool:
        """
        Return to the dashboard after a finished or quit session.

        Returns:
            True if the engine is back in Idle
        """
        if self.in_session:
            return self._reject("restart", "session in progress, quit it first")

        self._reset()
        self._last_record = None
        self._notify("restarted")
        return True

    def shutdown(self) -> None:
        """Release the session's timer."""
        self.quiz_engine.release_timer(self.session_key)

    def snapshot(self) -> SessionSnapshot:
        """Read-only view of the current state."""
        state = self._state
        if state is None:
            return SessionSnapshot(mode=self._mode, last_record=self._last_record)

        marked_ids = frozenset(
            qid for qid in state.question_ids
            if self.catalog.get_question(qid) is not None and self.catalog.get_question(qid).is_marked
        )

        if state.is_paused:
            remaining = state.paused_remaining
        else:
            remaining = self.quiz_engine.get_remaining_time(self.session_key)

        return SessionSnapshot(
            mode=self._mode,
            bank_id=state.bank_id,
            question_ids=state.question_ids,
            current_index=state.current_index,
            current_question=self._current_question(),
            attempts=state.ordered_attempts(),
            selected_answer=state.selected_answer,
            is_answered=state.is_answered,
            score=state.score,
            tutor_mode=state.tutor_mode,
            timer_enabled=state.timer_enabled,
            time_per_question=state.time_per_question,
            is_paused=state.is_paused,
            show_explanation=state.show_explanation,
            marked_ids=marked_ids,
            remaining_time=remaining,
            last_record=self._last_record,
            start_time=state.start_time,
        )

    def _current_question(self) -> Optional[Question]:
        if self._state is None:
            return None
        return self.catalog.get_question(self._state.question_ids[self._state.current_index])

    def _record_attempt(self, question: Question, selected: Optional[int]) -> None:
        state = self._state
        # The check-then-set below has no suspension point, so answer and timeout cannot both land
        is_correct = selected is not OMITTED and selected == question.correct_answer_index
        state.attempts[state.current_index] = QuestionAttempt(
            question_id=question.id,
            selected_answer=selected,
            is_correct=is_correct,
        )
        if is_correct:
            state.score += 1
        state.selected_answer = selected
        state.is_answered = True
        self._cancel_timer("answered" if selected is not OMITTED else "timed out")

        self.logger.debug(
            f"Session {self.session_key}: question {question.id} "
            f"{'omitted' if selected is OMITTED else f'answered {selected}'}, correct={is_correct}",
            extra={
                'event_type': 'attempt_recorded',
                'session_key': self.session_key,
                'question_id': question.id,
                'selected_answer': selected,
                'is_correct': is_correct,
                'timestamp': time.time()
            }
        )

    def _after_attempt(self, event: str) -> None:
        state = self._state
        if state.tutor_mode:
            state.show_explanation = True
            self._mode = SessionMode.ANSWERED_WAITING
            self._notify(event)
            return

        finished = self._advance()
        self._notify("finished" if finished else event)

    def _advance(self) -> bool:
        """Move on from the current question; True when the session finished."""
        state = self._state
        self._cancel_timer("advanced")
        if state.is_last_question:
            self._emit_record()
            state.show_explanation = False
            self._mode = SessionMode.FINISHED
            self.logger.info(
                f"Session {self.session_key} finished: {state.score}/{state.total_questions}",
                extra={
                    'event_type': 'session_finished',
                    'session_key': self.session_key,
                    'score': state.score,
                    'total_questions': state.total_questions,
                    'timestamp': time.time()
                }
            )
            return True

        self._enter_position(state.current_index + 1)
        return False

    def _enter_position(self, index: int) -> None:
        """Load the per-question fields for ``index``, restoring any recorded attempt."""
        state = self._state
        state.current_index = index
        attempt = state.attempts.get(index)
        state.is_answered = attempt is not None
        state.selected_answer = attempt.selected_answer if attempt is not None else None
        state.show_explanation = state.tutor_mode and state.is_answered
        state.paused_remaining = None
        self._mode = SessionMode.ANSWERED_WAITING if state.show_explanation else SessionMode.ACTIVE

        if state.timer_enabled and not state.is_answered:
            if state.is_paused:
                state.paused_remaining = state.time_per_question
            else:
                self._arm_timer(state.time_per_question)

    def _arm_timer(self, duration: float) -> None:
        index = self._state.current_index
        self.quiz_engine.arm_timer(self.session_key, duration, lambda: self._on_timer_fired(index))

    def _cancel_timer(self, reason: str) -> None:
        self.quiz_engine.cancel_timer(self.session_key, reason)

    def _on_timer_fired(self, index: int) -> None:
        if self._state is None or self._state.current_index != index:
            self.logger.warning(
                f"Session {self.session_key}: timer for question index {index} fired after moving on, ignored"
            )
            return
        self.timeout()

    def _emit_record(self) -> Optional[HistoryRecord]:
        if self._record_emitted:
            return self._last_record

        state = self._state
        record = HistoryRecord(
            id=new_record_id(),
            date=datetime.now(),
            bank_id=state.bank_id,
            score=state.score,
            total_questions=state.total_questions,
            attempts=state.ordered_attempts(),
        )
        self._record_emitted = True
        self._last_record = record

        try:
            self.history.append(record)
        except OSError as e:
            self.logger.error(f"Failed to persist history record {record.id}: {e}", exc_info=True)

        return record

    def _reset(self) -> None:
        self._cancel_timer("reset")
        self._state = None
        self._mode = SessionMode.IDLE

    def _reject(self, operation: str, reason: str) -> bool:
        self.logger.debug(
            f"Session {self.session_key}: {operation} ignored, {reason}",
            extra={
                'event_type': 'intent_rejected',
                'session_key': self.session_key,
                'operation': operation,
                'reason': reason,
                'timestamp': time.time()
            }
        )
        return False

    def _notify(self, event: str) -> None:
        if self.on_event is None:
            return
        try:
            self.on_event(event, self.snapshot())
        except Exception:
            self.logger.exception(f"Session {self.session_key}: observer failed on '{event}'")
