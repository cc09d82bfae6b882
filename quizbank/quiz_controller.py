"""
Quiz session controller for the Discord quiz bot.
Keeps one session engine and one set of dashboard filters per Discord channel.
"""
import logging
import time
from datetime import datetime
from typing import Any, Callable, Dict, FrozenSet, Optional, Set

from .config_manager import ConfigManager
from .data_manager import DataManager
from .history_store import HistoryStore
from .metrics import classify, filter_catalog, history_series, overall_accuracy
from .models import Category, SessionMode, SessionSnapshot
from .quiz_engine import QuizEngine
from .session_engine import InvalidConfiguration, SessionEngine

EventListener = Callable[[int, str, SessionSnapshot], Any]

NO_SESSION_MESSAGE = "❌ No active quiz found in this channel. Start a quiz with `/start`."
PAUSED_MESSAGE = "⏸️ The quiz is paused. Use `/resume` to continue."


class QuizController:
    """
    Orchestrates quiz sessions across Discord channels.

    Each channel owns at most one SessionEngine; all engines share one
    QuizEngine, which keeps a timer slot per channel. Every user intent is
    forwarded to the channel's engine and answered with a result dictionary
    ``{'success', 'message', 'user_message', 'session_info'}``.
    """

    def __init__(
        self,
        data_manager: DataManager,
        config_manager: ConfigManager,
        history_store: HistoryStore,
        quiz_engine: Optional[QuizEngine] = None
    ):
        """
        Initialize the quiz controller.

        Args:
            data_manager: Question catalog
            config_manager: Source of the default quiz settings
            history_store: Log of finished sessions
            quiz_engine: Shared sampling and timer service
        """
        self.logger = logging.getLogger(__name__)
        self.data_manager = data_manager
        self.config_manager = config_manager
        self.history_store = history_store
        self.quiz_engine = quiz_engine or QuizEngine()

        self._engines: Dict[int, SessionEngine] = {}
        self._filters: Dict[int, Set[Category]] = {}
        self._event_listener: Optional[EventListener] = None

        self.logger.info("QuizController initialized")

    def set_event_listener(self, listener: Optional[EventListener]) -> None:
        """
        Register a callback for session transitions.

        Args:
            listener: Called as ``listener(channel_id, event, snapshot)``; None to remove
        """
        self._event_listener = listener

    def _get_engine(self, channel_id: int, create: bool = False) -> Optional[SessionEngine]:
        engine = self._engines.get(channel_id)
        if engine is None and create:
            engine = SessionEngine(
                self.data_manager,
                self.history_store,
                quiz_engine=self.quiz_engine,
                session_key=str(channel_id),
                on_event=lambda event, snapshot: self._on_session_event(channel_id, event, snapshot)
            )
            self._engines[channel_id] = engine
        return engine

    def _on_session_event(self, channel_id: int, event: str, snapshot: SessionSnapshot) -> None:
        self.logger.debug(
            f"Channel {channel_id}: session event '{event}'",
            extra={
                'event_type': f'session_{event}',
                'channel_id': channel_id,
                'mode': snapshot.mode.value,
                'timestamp': time.time()
            }
        )
        if self._event_listener is not None:
            self._event_listener(channel_id, event, snapshot)

    def _result(
        self,
        channel_id: int,
        success: bool,
        message: str,
        user_message: Optional[str] = None
    ) -> Dict[str, Any]:
        return {
            'success': success,
            'message': message,
            'user_message': user_message or message,
            'session_info': self.get_session_progress(channel_id)
        }

    def _rejected(self, channel_id: int, operation: str, reason: str) -> Dict[str, Any]:
        """Build the failed result for an intent the engine ignored."""
        snapshot = self.get_snapshot(channel_id)
        if snapshot.view != "session":
            user_message = NO_SESSION_MESSAGE
        elif snapshot.is_paused and operation in ("answer", "pause"):
            user_message = PAUSED_MESSAGE
        else:
            user_message = f"❌ {reason}"
        self.logger.debug(f"Channel {channel_id}: {operation} rejected ({reason})")
        return self._result(channel_id, False, reason, user_message)

    def has_active_session(self, channel_id: int) -> bool:
        """
        Check if a channel has a quiz in progress.

        Args:
            channel_id: Discord channel identifier

        Returns:
            True if a session is Active or waiting in tutor mode
        """
        engine = self._engines.get(channel_id)
        return engine is not None and engine.in_session

    def get_snapshot(self, channel_id: int) -> SessionSnapshot:
        """Read-only view of the channel's session, Idle if none was ever started."""
        engine = self._engines.get(channel_id)
        if engine is None:
            return SessionSnapshot(mode=SessionMode.IDLE)
        return engine.snapshot()

    def start_quiz(
        self,
        channel_id: int,
        bank_id: Optional[str] = None,
        question_count: Optional[int] = None,
        tutor_mode: Optional[bool] = None,
        timer_enabled: Optional[bool] = None,
        time_per_question: Optional[int] = None
    ) -> Dict[str, Any]:
        """
        Start a quiz in a channel. Omitted parameters come from the configured defaults.

        Args:
            channel_id: Discord channel identifier
            bank_id: Bank to quiz on; defaults to the first bank left by the active filters
            question_count: Number of questions to sample
            tutor_mode: Show explanations and wait for continue
            timer_enabled: Give each question a countdown
            time_per_question: Countdown length in seconds

        Returns:
            Dictionary with operation results and session information
        """
        if self.has_active_session(channel_id):
            return self._result(
                channel_id, False,
                f"Quiz already running in channel {channel_id}",
                "❌ A quiz is already running in this channel. Finish it or use `/quit` first."
            )

        settings = self.config_manager.get_quiz_settings()
        if question_count is None:
            question_count = settings.question_count
        if tutor_mode is None:
            tutor_mode = settings.tutor_mode
        if timer_enabled is None:
            timer_enabled = settings.timer_enabled
        if time_per_question is None:
            time_per_question = settings.time_per_question

        filters = self.get_active_filters(channel_id)
        if bank_id is None:
            banks = filter_catalog(self.data_manager.list_banks(), self.history_store.read_all(), filters)
            if not banks:
                return self._result(
                    channel_id, False,
                    "No question bank has questions matching the active filters",
                    "❌ No questions match the active filters. Use `/clear_filters` or pick other filters."
                )
            bank_id = banks[0].id

        engine = self._get_engine(channel_id, create=True)
        try:
            started = engine.start(
                bank_id,
                question_count,
                tutor_mode=tutor_mode,
                timer_enabled=timer_enabled,
                time_per_question=time_per_question,
                filters=filters
            )
        except InvalidConfiguration as e:
            self.logger.warning(
                f"Failed to start quiz for channel {channel_id}: {e}",
                extra={
                    'event_type': 'session_start_failed',
                    'channel_id': channel_id,
                    'bank_id': bank_id,
                    'reason': str(e),
                    'timestamp': time.time()
                }
            )
            return self._result(channel_id, False, str(e), f"❌ Could not start the quiz: {e}")

        if not started:
            return self._result(
                channel_id, False,
                f"Quiz already running in channel {channel_id}",
                "❌ A quiz is already running in this channel. Finish it or use `/quit` first."
            )

        bank = self.data_manager.get_bank(bank_id)
        return self._result(
            channel_id, True,
            f"Quiz '{bank_id}' started successfully",
            f"🎯 Started **{bank.name if bank else bank_id}** with {question_count} questions"
        )

    def answer(self, channel_id: int, option_index: int) -> Dict[str, Any]:
        """
        Submit an answer for the current question.

        Args:
            channel_id: Discord channel identifier
            option_index: Zero-based index of the chosen option

        Returns:
            Dictionary with operation results; ``is_correct`` is set on success
        """
        engine = self._get_engine(channel_id)
        if engine is None:
            return self._rejected(channel_id, "answer", "No active quiz")

        question = engine.snapshot().current_question
        if not engine.answer(option_index):
            snapshot = engine.snapshot()
            if snapshot.view == "session" and snapshot.is_answered:
                reason = "This question has already been answered"
            elif question is not None and snapshot.view == "session" and not snapshot.is_paused:
                reason = f"Choose an option between 1 and {len(question.options)}"
            else:
                reason = "Answer not accepted"
            return self._rejected(channel_id, "answer", reason)

        is_correct = question is not None and option_index == question.correct_answer_index
        result = self._result(
            channel_id, True,
            "Answer recorded",
            "✅ Correct!" if is_correct else "❌ Incorrect"
        )
        result['is_correct'] = is_correct
        return result

    def continue_quiz(self, channel_id: int) -> Dict[str, Any]:
        """Leave the tutor-mode explanation and move on."""
        engine = self._get_engine(channel_id)
        if engine is None or not engine.continue_quiz():
            return self._rejected(channel_id, "continue", "Answer the current question first")
        return self._result(channel_id, True, "Moved to the next question")

    def navigate(self, channel_id: int, direction: str) -> Dict[str, Any]:
        """
        Move to the previous or next question.

        Args:
            channel_id: Discord channel identifier
            direction: "previous" or "next"

        Returns:
            Dictionary with operation results and session information
        """
        engine = self._get_engine(channel_id)
        if engine is None or not engine.navigate(direction):
            snapshot = self.get_snapshot(channel_id)
            if direction == "next":
                reason = "Answer the current question first"
            elif snapshot.timer_enabled:
                reason = "Going back is disabled while the timer is on"
            else:
                reason = "Already at the first question"
            return self._rejected(channel_id, "navigate", reason)
        return self._result(channel_id, True, f"Moved to the {direction} question")

    def pause_quiz(self, channel_id: int) -> Dict[str, Any]:
        """
        Pause the quiz in a channel.

        Args:
            channel_id: Discord channel identifier

        Returns:
            Dictionary with operation results and session information
        """
        engine = self._get_engine(channel_id)
        if engine is None or not engine.pause():
            return self._rejected(channel_id, "pause", "Quiz is already paused")
        return self._result(
            channel_id, True,
            "Quiz paused successfully",
            "⏸️ Quiz paused. Use `/resume` to continue."
        )

    def resume_quiz(self, channel_id: int) -> Dict[str, Any]:
        """
        Resume a paused quiz in a channel.

        Args:
            channel_id: Discord channel identifier

        Returns:
            Dictionary with operation results and session information
        """
        engine = self._get_engine(channel_id)
        if engine is None or not engine.resume():
            return self._rejected(channel_id, "resume", "Quiz is not paused")
        return self._result(channel_id, True, "Quiz resumed successfully", "▶️ Quiz resumed.")

    def toggle_mark(self, channel_id: int, question_id: Optional[int] = None) -> Dict[str, Any]:
        """
        Flip the marked flag of a question, the current one by default.

        Returns:
            Dictionary with operation results; ``is_marked`` holds the new flag on success
        """
        engine = self._get_engine(channel_id)
        if engine is not None:
            marked = engine.toggle_mark(question_id)
        elif question_id is not None:
            marked = self.data_manager.toggle_mark(question_id)
        else:
            marked = None

        if marked is None:
            target = f"Question {question_id}" if question_id is not None else "No current question"
            return self._result(
                channel_id, False,
                f"{target} not found",
                "❌ There is no question to mark. Pass a question id or start a quiz."
            )

        result = self._result(
            channel_id, True,
            "Question marked" if marked else "Question unmarked",
            "🔖 Question marked for review" if marked else "🔖 Mark removed"
        )
        result['is_marked'] = marked
        return result

    def quit_quiz(self, channel_id: int) -> Dict[str, Any]:
        """
        Quit the quiz early. Only the attempted questions are recorded.

        Returns:
            Dictionary with operation results; ``record`` holds the emitted HistoryRecord
        """
        engine = self._get_engine(channel_id)
        record = engine.quit() if engine is not None else None
        if record is None:
            return self._rejected(channel_id, "quit", "No active quiz to quit")

        result = self._result(
            channel_id, True,
            "Quiz quit",
            f"🛑 Quiz ended early: {record.score}/{len(record.attempts)} attempted questions correct"
        )
        result['record'] = record
        return result

    def restart(self, channel_id: int) -> Dict[str, Any]:
        """Return a finished channel to the dashboard."""
        engine = self._get_engine(channel_id)
        if engine is None:
            return self._result(channel_id, True, "Back to the dashboard")
        if not engine.restart():
            return self._result(
                channel_id, False,
                "Session in progress",
                "❌ A quiz is still running. Use `/quit` to end it first."
            )
        return self._result(channel_id, True, "Back to the dashboard")

    def get_active_filters(self, channel_id: int) -> FrozenSet[Category]:
        return frozenset(self._filters.get(channel_id, ()))

    def toggle_filter(self, channel_id: int, category: str) -> Dict[str, Any]:
        """
        Add or remove a dashboard filter for a channel.

        Args:
            channel_id: Discord channel identifier
            category: Category value (unused, used, correct, incorrect, marked, omitted)

        Returns:
            Dictionary with operation results; ``filters`` holds the active set
        """
        try:
            category = Category(category)
        except ValueError:
            valid = ", ".join(c.value for c in Category)
            return self._result(
                channel_id, False,
                f"Unknown filter: {category}",
                f"❌ Unknown filter `{category}`. Choose one of: {valid}"
            )

        filters = self._filters.setdefault(channel_id, set())
        if category in filters:
            filters.discard(category)
            message = f"Filter '{category.value}' removed"
        else:
            filters.add(category)
            message = f"Filter '{category.value}' added"

        self.logger.info(f"Channel {channel_id}: {message}")
        result = self._result(channel_id, True, message, f"✅ {message}")
        result['filters'] = self.get_active_filters(channel_id)
        return result

    def clear_filters(self, channel_id: int) -> Dict[str, Any]:
        self._filters.pop(channel_id, None)
        result = self._result(channel_id, True, "Filters cleared", "✅ All filters cleared")
        result['filters'] = frozenset()
        return result

    def get_dashboard(self, channel_id: int) -> Dict[str, Any]:
        """
        Compute the dashboard for a channel from the catalog and the full history.

        Returns:
            Dictionary with category counts, overall accuracy, active filters,
            the filtered banks and the score series
        """
        catalog = self.data_manager.list_banks()
        history = self.history_store.read_all()
        filters = self.get_active_filters(channel_id)
        counts = classify(catalog, history)
        filtered = filter_catalog(catalog, history, filters)

        return {
            'counts': counts,
            'accuracy': overall_accuracy(counts),
            'active_filters': filters,
            'banks': [
                {
                    'id': bank.id,
                    'name': bank.name,
                    'description': bank.description,
                    'available': len(bank),
                    'total': len(self.data_manager.get_bank(bank.id) or bank),
                }
                for bank in filtered
            ],
            'series': list(history_series(history)),
            'total_questions': sum(len(bank) for bank in catalog),
            'history_count': len(history),
        }

    def get_session_progress(self, channel_id: int) -> Optional[Dict[str, Any]]:
        """
        Get progress information for a channel's session.

        Args:
            channel_id: Discord channel identifier

        Returns:
            Dictionary with progress info, None if the channel is on the dashboard
        """
        snapshot = self.get_snapshot(channel_id)
        if snapshot.view == "dashboard":
            return None

        if snapshot.view == "final_score" and snapshot.last_record is not None:
            bank_id = snapshot.last_record.bank_id
        else:
            bank_id = snapshot.bank_id
        bank = self.data_manager.get_bank(bank_id) if bank_id else None

        return {
            'bank_id': bank_id,
            'bank_name': bank.name if bank else bank_id,
            'mode': snapshot.mode.value,
            'current_question': snapshot.current_index + 1,
            'total_questions': snapshot.total_questions,
            'answered': len(snapshot.attempts),
            'score': snapshot.score,
            'is_active': snapshot.view == "session",
            'is_paused': snapshot.is_paused,
            'is_finished': snapshot.view == "final_score",
            'remaining_time': snapshot.remaining_time,
            'start_time': snapshot.start_time,
            'settings': {
                'tutor_mode': snapshot.tutor_mode,
                'timer_enabled': snapshot.timer_enabled,
                'time_per_question': snapshot.time_per_question,
            }
        }

    def get_session_status_summary(self, channel_id: int) -> str:
        """
        Get a human-readable summary of the session status.

        Args:
            channel_id: Discord channel identifier

        Returns:
            Formatted string describing the session status
        """
        session_info = self.get_session_progress(channel_id)
        if session_info is None:
            return "No active quiz session in this channel."

        status_parts = [f"Quiz: {session_info['bank_name']}"]

        if session_info['is_finished']:
            status_parts.append("Status: Finished")
            status_parts.append(f"Score: {session_info['score']}/{session_info['total_questions']}")
            return " | ".join(status_parts)

        status_parts.append(f"Progress: {session_info['current_question']}/{session_info['total_questions']}")
        status_parts.append(f"Score: {session_info['score']}/{session_info['answered']}")
        status_parts.append("Status: Paused" if session_info['is_paused'] else "Status: Active")

        settings = session_info['settings']
        status_parts.append(f"Tutor: {'on' if settings['tutor_mode'] else 'off'}")
        if settings['timer_enabled']:
            status_parts.append(f"Timer: {settings['time_per_question']}s per question")
        else:
            status_parts.append("Timer: off")

        if session_info['start_time'] is not None:
            duration = datetime.now() - session_info['start_time']
            minutes = int(duration.total_seconds() // 60)
            seconds = int(duration.total_seconds() % 60)
            status_parts.append(f"Duration: {minutes}m {seconds}s")

        return " | ".join(status_parts)

    def get_all_active_sessions(self) -> Dict[int, Dict[str, Any]]:
        """
        Get information about all sessions in progress.

        Returns:
            Dictionary mapping channel IDs to session progress info
        """
        return {
            channel_id: self.get_session_progress(channel_id)
            for channel_id, engine in self._engines.items()
            if engine.in_session
        }

    def shutdown(self) -> None:
        """Cancel every channel's timer."""
        for engine in self._engines.values():
            engine.shutdown()
        self.logger.info(
            f"QuizController shut down, {len(self._engines)} sessions released",
            extra={
                'event_type': 'controller_shutdown',
                'session_count': len(self._engines),
                'timestamp': time.time()
            }
        )
