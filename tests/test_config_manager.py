"""
Unit tests for ConfigManager class.
"""
import unittest
from pathlib import Path

from quizbank.config_manager import ConfigManager
from quizbank.models import QuizSettings


class TestConfigManager(unittest.TestCase):
    """Test cases for ConfigManager functionality."""

    def setUp(self):
        """Set up test fixtures."""
        self.config_manager = ConfigManager()

    def test_defaults(self):
        """Test that ConfigManager starts with the default settings."""
        settings = self.config_manager.get_quiz_settings()

        self.assertIsInstance(settings, QuizSettings)
        self.assertEqual(settings.question_count, 5)
        self.assertFalse(settings.tutor_mode)
        self.assertFalse(settings.timer_enabled)
        self.assertEqual(settings.time_per_question, 60)
        self.assertEqual(self.config_manager.get_quiz_directory(), "./quizzes/")
        self.assertEqual(self.config_manager.get_history_path(), "./history/history.jsonl")

    def test_get_quiz_settings_returns_copy(self):
        """Test that mutating the returned settings does not change the manager."""
        settings = self.config_manager.get_quiz_settings()
        settings.question_count = 99

        self.assertEqual(self.config_manager.get_question_count(), 5)

    def test_set_question_count_valid(self):
        """Test setting valid question counts, including both limits."""
        for count in (1, 10, 20):
            with self.subTest(count=count):
                result = self.config_manager.set_question_count(count)
                self.assertTrue(result['success'])
                self.assertEqual(self.config_manager.get_question_count(), count)
                self.assertIn(str(count), result['user_message'])

    def test_set_question_count_out_of_range(self):
        """Test that counts outside 1-20 are rejected."""
        result = self.config_manager.set_question_count(0)
        self.assertFalse(result['success'])
        self.assertIn("Minimum is 1", result['user_message'])

        result = self.config_manager.set_question_count(21)
        self.assertFalse(result['success'])
        self.assertIn("Maximum is 20", result['user_message'])

        self.assertEqual(self.config_manager.get_question_count(), 5)

    def test_set_question_count_wrong_type(self):
        """Test that non-integer counts are rejected."""
        for value in ("5", 5.0, True, None):
            with self.subTest(value=value):
                result = self.config_manager.set_question_count(value)
                self.assertFalse(result['success'])
                self.assertIn("must be an integer", result['error'])

    def test_set_tutor_mode(self):
        """Test enabling and disabling tutor mode."""
        self.assertTrue(self.config_manager.set_tutor_mode(True)['success'])
        self.assertTrue(self.config_manager.get_tutor_mode())

        result = self.config_manager.set_tutor_mode(False)
        self.assertEqual(result['message'], "Tutor mode disabled")
        self.assertFalse(self.config_manager.get_tutor_mode())

    def test_set_tutor_mode_wrong_type(self):
        """Test that non-boolean tutor mode values are rejected."""
        result = self.config_manager.set_tutor_mode("yes")

        self.assertFalse(result['success'])
        self.assertFalse(self.config_manager.get_tutor_mode())

    def test_toggle_tutor_mode(self):
        """Test toggling tutor mode reports the new value."""
        result = self.config_manager.toggle_tutor_mode()
        self.assertTrue(result['new_value'])
        self.assertTrue(self.config_manager.get_tutor_mode())

        result = self.config_manager.toggle_tutor_mode()
        self.assertFalse(result['new_value'])

    def test_toggle_timer(self):
        """Test toggling the question timer."""
        result = self.config_manager.toggle_timer()

        self.assertTrue(result['success'])
        self.assertTrue(result['new_value'])
        self.assertTrue(self.config_manager.get_timer_enabled())
        self.assertEqual(result['message'], "Question timer enabled")

    def test_set_timer_enabled_wrong_type(self):
        """Test that non-boolean timer flags are rejected."""
        self.assertFalse(self.config_manager.set_timer_enabled(1)['success'])

    def test_set_time_per_question_valid(self):
        """Test setting valid timer durations, including both limits."""
        for seconds in (10, 45, 300):
            with self.subTest(seconds=seconds):
                result = self.config_manager.set_time_per_question(seconds)
                self.assertTrue(result['success'])
                self.assertEqual(self.config_manager.get_time_per_question(), seconds)

    def test_set_time_per_question_out_of_range(self):
        """Test that durations outside 10-300 seconds are rejected."""
        result = self.config_manager.set_time_per_question(9)
        self.assertFalse(result['success'])
        self.assertIn("Minimum is 10 seconds", result['user_message'])

        result = self.config_manager.set_time_per_question(301)
        self.assertFalse(result['success'])
        self.assertIn("5 minutes", result['user_message'])

        self.assertEqual(self.config_manager.get_time_per_question(), 60)

    def test_set_time_per_question_wrong_type(self):
        """Test that non-integer durations are rejected."""
        self.assertFalse(self.config_manager.set_time_per_question("30")['success'])
        self.assertFalse(self.config_manager.set_time_per_question(False)['success'])

    def test_set_quiz_directory(self):
        """Test setting the quiz directory."""
        result = self.config_manager.set_quiz_directory("/tmp/banks")

        self.assertTrue(result['success'])
        self.assertEqual(self.config_manager.get_quiz_directory(), str(Path("/tmp/banks")))

    def test_set_paths_reject_empty(self):
        """Test that blank paths are rejected."""
        self.assertFalse(self.config_manager.set_quiz_directory("   ")['success'])
        self.assertFalse(self.config_manager.set_history_path("")['success'])
        self.assertFalse(self.config_manager.set_history_path(None)['success'])

    def test_set_history_path(self):
        """Test setting the history file path."""
        result = self.config_manager.set_history_path("data/history.jsonl")

        self.assertTrue(result['success'])
        self.assertEqual(self.config_manager.get_history_path(), str(Path("data/history.jsonl")))


class TestApplyConfig(unittest.TestCase):
    """Test cases for applying config.json values."""

    def setUp(self):
        """Set up test fixtures."""
        self.config_manager = ConfigManager()

    def test_apply_full_config(self):
        """Test that every supported key is applied."""
        errors = self.config_manager.apply_config({
            "quiz": {
                "quiz_directory": "banks",
                "history_path": "data/history.jsonl",
                "default_question_count": 8,
                "default_tutor_mode": True,
                "default_timer_enabled": True,
                "default_time_per_question": 30
            }
        })

        self.assertEqual(errors, [])
        settings = self.config_manager.get_quiz_settings()
        self.assertEqual(settings, QuizSettings(question_count=8, tutor_mode=True, timer_enabled=True, time_per_question=30))
        self.assertEqual(self.config_manager.get_quiz_directory(), "banks")

    def test_apply_skips_invalid_values(self):
        """Test that rejected values are reported and the old setting stays."""
        errors = self.config_manager.apply_config({
            "quiz": {
                "default_question_count": 50,
                "default_time_per_question": 20
            }
        })

        self.assertEqual(len(errors), 1)
        self.assertTrue(errors[0].startswith("default_question_count"))
        self.assertEqual(self.config_manager.get_question_count(), 5)
        self.assertEqual(self.config_manager.get_time_per_question(), 20)

    def test_apply_empty_config(self):
        """Test that a missing quiz section keeps the defaults."""
        self.assertEqual(self.config_manager.apply_config({}), [])
        self.assertEqual(self.config_manager.apply_config(None), [])
        self.assertEqual(self.config_manager.get_question_count(), 5)


class TestSettingsMaintenance(unittest.TestCase):
    """Test cases for reset, validation and summaries."""

    def setUp(self):
        """Set up test fixtures."""
        self.config_manager = ConfigManager()

    def test_reset_to_defaults(self):
        """Test resetting after changes."""
        self.config_manager.set_question_count(12)
        self.config_manager.set_timer_enabled(True)
        self.config_manager.set_quiz_directory("/tmp/elsewhere")

        self.config_manager.reset_to_defaults()

        self.assertEqual(self.config_manager.get_quiz_settings(), QuizSettings())
        self.assertEqual(self.config_manager.get_quiz_directory(), ConfigManager.DEFAULT_QUIZ_DIRECTORY)

    def test_validate_settings(self):
        """Test validation of the current settings."""
        self.assertEqual(self.config_manager.validate_settings(), {"valid": True, "issues": []})

        self.config_manager._global_settings.question_count = 0
        self.config_manager._global_settings.time_per_question = "soon"

        result = self.config_manager.validate_settings()
        self.assertFalse(result["valid"])
        self.assertEqual(len(result["issues"]), 2)

    def test_settings_summary(self):
        """Test the human-readable summary."""
        summary = self.config_manager.get_settings_summary()
        self.assertIn("Questions: 5", summary)
        self.assertIn("Timer: off", summary)

        self.config_manager.set_timer_enabled(True)
        self.config_manager.set_tutor_mode(True)
        summary = self.config_manager.get_settings_summary()
        self.assertIn("Timer: 60 seconds", summary)
        self.assertIn("Tutor mode: on", summary)


if __name__ == '__main__':
    unittest.main()
