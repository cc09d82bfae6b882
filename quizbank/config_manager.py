"""
Configuration manager for quiz defaults and storage locations.
"""
import logging
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List

from .models import QuizSettings


class ConfigManager:
    """Manages the default quiz settings and where banks and history live."""

    # Default configuration values
    DEFAULT_QUESTION_COUNT = 5
    DEFAULT_TUTOR_MODE = False
    DEFAULT_TIMER_ENABLED = False
    DEFAULT_TIME_PER_QUESTION = 60
    DEFAULT_QUIZ_DIRECTORY = "./quizzes/"
    DEFAULT_HISTORY_PATH = "./history/history.jsonl"

    # Validation limits
    MIN_QUESTION_COUNT = 1
    MAX_QUESTION_COUNT = 20
    MIN_TIME_PER_QUESTION = 10
    MAX_TIME_PER_QUESTION = 300  # 5 minutes

    def __init__(self):
        """Initialize ConfigManager with default settings."""
        self.logger = logging.getLogger(__name__)
        self._global_settings = QuizSettings()
        self._quiz_directory = self.DEFAULT_QUIZ_DIRECTORY
        self._history_path = self.DEFAULT_HISTORY_PATH

    def get_quiz_settings(self) -> QuizSettings:
        """
        Get current quiz settings.

        Returns:
            Copy of the current QuizSettings
        """
        return replace(self._global_settings)

    def set_question_count(self, count: int) -> Dict[str, Any]:
        """
        Set the default number of questions per quiz.

        Args:
            count: Number of questions

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if isinstance(count, bool) or not isinstance(count, int):
            error_msg = f"Question count must be an integer, got {type(count).__name__}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Invalid input: Expected a number, got {type(count).__name__}"
            }

        if count < self.MIN_QUESTION_COUNT:
            error_msg = f"Question count must be at least {self.MIN_QUESTION_COUNT}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Too few questions: Minimum is {self.MIN_QUESTION_COUNT}"
            }

        if count > self.MAX_QUESTION_COUNT:
            error_msg = f"Question count cannot exceed {self.MAX_QUESTION_COUNT}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Too many questions: Maximum is {self.MAX_QUESTION_COUNT}"
            }

        self._global_settings.question_count = count
        self.logger.info(f"Question count set to {count}")
        return {
            'success': True,
            'message': f"Question count set to {count}",
            'user_message': f"✅ Question count set to {count}"
        }

    def get_question_count(self) -> int:
        return self._global_settings.question_count

    def set_tutor_mode(self, enabled: bool) -> Dict[str, Any]:
        """
        Enable or disable tutor mode (explanation after each answer).

        Args:
            enabled: True to show explanations and wait for continue

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if not isinstance(enabled, bool):
            error_msg = f"Tutor mode must be a boolean, got {type(enabled).__name__}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Invalid input: Expected true/false, got {type(enabled).__name__}"
            }

        self._global_settings.tutor_mode = enabled
        state = "enabled" if enabled else "disabled"
        self.logger.info(f"Tutor mode {state}")
        return {
            'success': True,
            'message': f"Tutor mode {state}",
            'user_message': f"✅ Tutor mode {state}"
        }

    def get_tutor_mode(self) -> bool:
        return self._global_settings.tutor_mode

    def toggle_tutor_mode(self) -> Dict[str, Any]:
        """Flip tutor mode; the result carries the new value."""
        new_value = not self._global_settings.tutor_mode
        result = self.set_tutor_mode(new_value)
        if result['success']:
            result['new_value'] = new_value
        return result

    def set_timer_enabled(self, enabled: bool) -> Dict[str, Any]:
        """
        Enable or disable the per-question timer.

        Args:
            enabled: True to give each question a countdown

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if not isinstance(enabled, bool):
            error_msg = f"Timer flag must be a boolean, got {type(enabled).__name__}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Invalid input: Expected true/false, got {type(enabled).__name__}"
            }

        self._global_settings.timer_enabled = enabled
        state = "enabled" if enabled else "disabled"
        self.logger.info(f"Question timer {state}")
        return {
            'success': True,
            'message': f"Question timer {state}",
            'user_message': f"✅ Question timer {state}"
        }

    def get_timer_enabled(self) -> bool:
        return self._global_settings.timer_enabled

    def toggle_timer(self) -> Dict[str, Any]:
        """Flip the question timer; the result carries the new value."""
        new_value = not self._global_settings.timer_enabled
        result = self.set_timer_enabled(new_value)
        if result['success']:
            result['new_value'] = new_value
        return result

    def set_time_per_question(self, seconds: int) -> Dict[str, Any]:
        """
        Set the countdown length for each question.

        Args:
            seconds: Timer duration in seconds

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if isinstance(seconds, bool) or not isinstance(seconds, int):
            error_msg = f"Time per question must be an integer, got {type(seconds).__name__}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Invalid input: Expected a number, got {type(seconds).__name__}"
            }

        if seconds < self.MIN_TIME_PER_QUESTION:
            error_msg = f"Time per question must be at least {self.MIN_TIME_PER_QUESTION} seconds"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Timer too short: Minimum is {self.MIN_TIME_PER_QUESTION} seconds"
            }

        if seconds > self.MAX_TIME_PER_QUESTION:
            error_msg = f"Time per question cannot exceed {self.MAX_TIME_PER_QUESTION} seconds"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': (
                    f"❌ Timer too long: Maximum is {self.MAX_TIME_PER_QUESTION} seconds "
                    f"({self.MAX_TIME_PER_QUESTION // 60} minutes)"
                )
            }

        self._global_settings.time_per_question = seconds
        self.logger.info(f"Time per question set to {seconds} seconds")
        return {
            'success': True,
            'message': f"Time per question set to {seconds} seconds",
            'user_message': f"✅ Timer set to {seconds} seconds per question"
        }

    def get_time_per_question(self) -> int:
        return self._global_settings.time_per_question

    def set_quiz_directory(self, directory: str) -> Dict[str, Any]:
        """
        Set the directory the question banks are loaded from.

        Args:
            directory: Path to the quiz files directory

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if not isinstance(directory, str) or not directory.strip():
            error_msg = f"Quiz directory must be a non-empty string, got {directory!r}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': "❌ Directory path cannot be empty"
            }

        normalized_path = str(Path(directory).expanduser())
        self._quiz_directory = normalized_path
        self.logger.info(f"Quiz directory set to {normalized_path}")
        return {
            'success': True,
            'message': f"Quiz directory set to {normalized_path}",
            'user_message': f"✅ Quiz directory set to {normalized_path}"
        }

    def get_quiz_directory(self) -> str:
        return self._quiz_directory

    def set_history_path(self, path: str) -> Dict[str, Any]:
        """
        Set the JSON-lines file finished sessions are appended to.

        Args:
            path: History file path

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if not isinstance(path, str) or not path.strip():
            error_msg = f"History path must be a non-empty string, got {path!r}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': "❌ History path cannot be empty"
            }

        normalized_path = str(Path(path).expanduser())
        self._history_path = normalized_path
        self.logger.info(f"History path set to {normalized_path}")
        return {
            'success': True,
            'message': f"History path set to {normalized_path}",
            'user_message': f"✅ History will be stored in {normalized_path}"
        }

    def get_history_path(self) -> str:
        return self._history_path

    def apply_config(self, config: Dict[str, Any]) -> List[str]:
        """
        Apply the ``quiz`` section of a configuration dictionary.

        Invalid values are logged and skipped; the previous setting stays.

        Args:
            config: Parsed config.json contents

        Returns:
            List of error messages for the values that were rejected
        """
        quiz_config = config.get('quiz', {}) if config else {}
        setters = (
            ('quiz_directory', self.set_quiz_directory),
            ('history_path', self.set_history_path),
            ('default_question_count', self.set_question_count),
            ('default_tutor_mode', self.set_tutor_mode),
            ('default_timer_enabled', self.set_timer_enabled),
            ('default_time_per_question', self.set_time_per_question),
        )

        errors = []
        for key, setter in setters:
            if key not in quiz_config:
                continue
            result = setter(quiz_config[key])
            if not result['success']:
                errors.append(f"{key}: {result['error']}")

        if errors:
            self.logger.warning(f"Configuration applied with {len(errors)} rejected values: {errors}")
        else:
            self.logger.info("Configuration applied successfully")
        return errors

    def reset_to_defaults(self) -> None:
        """Reset all settings to their default values."""
        self._global_settings = QuizSettings(
            question_count=self.DEFAULT_QUESTION_COUNT,
            tutor_mode=self.DEFAULT_TUTOR_MODE,
            timer_enabled=self.DEFAULT_TIMER_ENABLED,
            time_per_question=self.DEFAULT_TIME_PER_QUESTION
        )
        self._quiz_directory = self.DEFAULT_QUIZ_DIRECTORY
        self._history_path = self.DEFAULT_HISTORY_PATH
        self.logger.info("All settings reset to default values")

    def validate_settings(self) -> Dict[str, Any]:
        """
        Validate current settings and return validation results.

        Returns:
            Dictionary with validation results and any issues found
        """
        validation_result = {
            "valid": True,
            "issues": []
        }
        settings = self._global_settings

        if (isinstance(settings.question_count, bool) or
                not isinstance(settings.question_count, int) or
                settings.question_count < self.MIN_QUESTION_COUNT or
                settings.question_count > self.MAX_QUESTION_COUNT):
            validation_result["valid"] = False
            validation_result["issues"].append(f"Invalid question count: {settings.question_count}")

        if not isinstance(settings.tutor_mode, bool):
            validation_result["valid"] = False
            validation_result["issues"].append(f"Invalid tutor mode setting: {settings.tutor_mode}")

        if not isinstance(settings.timer_enabled, bool):
            validation_result["valid"] = False
            validation_result["issues"].append(f"Invalid timer setting: {settings.timer_enabled}")

        if (isinstance(settings.time_per_question, bool) or
                not isinstance(settings.time_per_question, int) or
                settings.time_per_question < self.MIN_TIME_PER_QUESTION or
                settings.time_per_question > self.MAX_TIME_PER_QUESTION):
            validation_result["valid"] = False
            validation_result["issues"].append(f"Invalid time per question: {settings.time_per_question}")

        for label, value in (("quiz directory", self._quiz_directory), ("history path", self._history_path)):
            if not isinstance(value, str) or not value.strip():
                validation_result["valid"] = False
                validation_result["issues"].append(f"Invalid {label}: {value}")

        return validation_result

    def get_settings_summary(self) -> str:
        """
        Get a formatted summary of current settings.

        Returns:
            Human-readable string describing current settings
        """
        settings = self._global_settings
        timer_str = f"{settings.time_per_question} seconds" if settings.timer_enabled else "off"
        return (
            f"Quiz Settings:\n"
            f"• Questions: {settings.question_count}\n"
            f"• Tutor mode: {'on' if settings.tutor_mode else 'off'}\n"
            f"• Timer: {timer_str}\n"
            f"• Quiz Directory: {self._quiz_directory}\n"
            f"• History: {self._history_path}"
        )
