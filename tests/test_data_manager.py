"""
Unit tests for DataManager class.
"""
import json
import os
import shutil
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from quizbank.data_manager import DataManager
from quizbank.models import MediaKind, MediaTiming
from tests.test_fixtures import TestFixtures


class TestBankValidation(unittest.TestCase):
    """Test cases for question bank structure validation."""

    def setUp(self):
        """Set up test fixtures."""
        self.temp_dir = tempfile.mkdtemp()
        self.data_manager = DataManager(self.temp_dir)

    def tearDown(self):
        """Clean up test fixtures."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def valid_question(self, **overrides):
        question = {
            "id": 1,
            "question": "What is 2+2?",
            "options": ["3", "4"],
            "correct_answer": 1
        }
        question.update(overrides)
        return question

    def test_validate_valid_bank(self):
        """Test validation with a valid bank."""
        self.assertTrue(self.data_manager.validate_bank_structure(TestFixtures.create_bank_json()))

    def test_validate_minimal_bank(self):
        """Test that id, name and description are optional."""
        self.assertTrue(self.data_manager.validate_bank_structure({"quiz": [self.valid_question()]}))

    def test_validate_rejects_non_object(self):
        """Test validation fails for a top-level array."""
        self.assertFalse(self.data_manager.validate_bank_structure([self.valid_question()]))

    def test_validate_missing_quiz_key(self):
        """Test validation fails when 'quiz' key is missing."""
        self.assertFalse(self.data_manager.validate_bank_structure({"questions": [self.valid_question()]}))

    def test_validate_quiz_not_array(self):
        """Test validation fails when 'quiz' value is not an array."""
        self.assertFalse(self.data_manager.validate_bank_structure({"quiz": "not an array"}))

    def test_validate_empty_quiz_array(self):
        """Test validation fails when quiz array is empty."""
        self.assertFalse(self.data_manager.validate_bank_structure({"quiz": []}))

    def test_validate_missing_required_fields(self):
        """Test validation fails when a question misses a required field."""
        for field in ("id", "question", "options", "correct_answer"):
            question = self.valid_question()
            del question[field]
            with self.subTest(field=field):
                self.assertFalse(self.data_manager.validate_bank_structure({"quiz": [question]}))

    def test_validate_bad_field_types(self):
        """Test validation fails for wrongly typed question fields."""
        bad_questions = [
            self.valid_question(id="1"),
            self.valid_question(id=True),
            self.valid_question(question=42),
            self.valid_question(options="3, 4"),
            self.valid_question(options=["only one"]),
            self.valid_question(options=["3", 4]),
            self.valid_question(correct_answer=2),
            self.valid_question(correct_answer=-1),
            self.valid_question(correct_answer="1"),
            self.valid_question(explanation=["not", "a", "string"]),
        ]
        for question in bad_questions:
            with self.subTest(question=question):
                self.assertFalse(self.data_manager.validate_bank_structure({"quiz": [question]}))

    def test_validate_duplicate_question_ids(self):
        """Test validation fails when two questions share an id."""
        data = {"quiz": [self.valid_question(), self.valid_question()]}
        self.assertFalse(self.data_manager.validate_bank_structure(data))

    def test_validate_bank_name_must_be_string(self):
        """Test validation fails for a non-string bank name."""
        self.assertFalse(self.data_manager.validate_bank_structure({"name": 3, "quiz": [self.valid_question()]}))

    def test_validate_media(self):
        """Test validation of the optional media object."""
        valid = self.valid_question(media={"type": "image", "url": "https://example.com/a.png"})
        self.assertTrue(self.data_manager.validate_bank_structure({"quiz": [valid]}))

        for media in (
            "https://example.com/a.png",
            {"type": "gif", "url": "https://example.com/a.gif"},
            {"type": "image"},
            {"type": "image", "url": "https://example.com/a.png", "show_with": "later"},
        ):
            with self.subTest(media=media):
                question = self.valid_question(media=media)
                self.assertFalse(self.data_manager.validate_bank_structure({"quiz": [question]}))


class TestBankLoading(unittest.TestCase):
    """Test cases for loading bank files from the quiz directory."""

    def setUp(self):
        """Set up test fixtures."""
        self.temp_dir = tempfile.mkdtemp()
        self.data_manager = DataManager(self.temp_dir)

    def tearDown(self):
        """Clean up test fixtures."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_load_creates_missing_directory(self):
        """Test that loading creates the quiz directory if it doesn't exist."""
        non_existent_dir = os.path.join(self.temp_dir, "new_quiz_dir")
        dm = DataManager(non_existent_dir)

        dm.load_quiz_files()

        self.assertTrue(Path(non_existent_dir).exists())

    def test_load_valid_files(self):
        """Test loading several bank files."""
        TestFixtures.write_json(self.temp_dir, "a.json", TestFixtures.create_bank_json("bank_a", 1, 3))
        TestFixtures.write_json(self.temp_dir, "b.json", TestFixtures.create_bank_json("bank_b", 10, 2))

        banks = self.data_manager.load_quiz_files()

        self.assertEqual(set(banks), {"bank_a", "bank_b"})
        self.assertEqual(self.data_manager.get_question_count("bank_a"), 3)
        self.assertEqual(self.data_manager.get_question_count("bank_b"), 2)
        self.assertFalse(self.data_manager.has_load_errors())

    def test_banks_keep_file_order(self):
        """Test that banks are listed in file name order."""
        TestFixtures.write_json(self.temp_dir, "b.json", TestFixtures.create_bank_json("second", 10, 2))
        TestFixtures.write_json(self.temp_dir, "a.json", TestFixtures.create_bank_json("first", 1, 2))

        self.data_manager.load_quiz_files()

        self.assertEqual(self.data_manager.get_available_banks(), ["first", "second"])

    def test_parsed_question_fields(self):
        """Test that question fields are parsed into the model."""
        data = {
            "name": "Science",
            "quiz": [{
                "id": 7,
                "question": "Which planet is this?",
                "options": ["Mars", "Saturn"],
                "correct_answer": 1,
                "explanation": "Rings.",
                "media": {"type": "image", "url": "https://example.com/s.png", "show_with": "answer"}
            }]
        }
        TestFixtures.write_json(self.temp_dir, "science.json", data)

        self.data_manager.load_quiz_files()

        bank = self.data_manager.get_bank("science")
        self.assertEqual(bank.name, "Science")
        question = self.data_manager.get_question(7)
        self.assertEqual(question.bank_id, "science")
        self.assertEqual(question.correct_option, "Saturn")
        self.assertEqual(question.explanation, "Rings.")
        self.assertEqual(question.media.kind, MediaKind.IMAGE)
        self.assertEqual(question.media.show_with, MediaTiming.WITH_ANSWER)
        self.assertFalse(question.is_marked)

    def test_bank_id_defaults_to_file_name(self):
        """Test that a bank without an id takes the file stem."""
        TestFixtures.write_json(self.temp_dir, "history_quiz.json", {"quiz": [{
            "id": 1, "question": "Q?", "options": ["A", "B"], "correct_answer": 0
        }]})

        self.data_manager.load_quiz_files()

        self.assertTrue(self.data_manager.bank_exists("history_quiz"))
        self.assertEqual(self.data_manager.get_bank("history_quiz").name, "history_quiz")

    def test_invalid_json_is_skipped(self):
        """Test that a malformed file is reported while others still load."""
        TestFixtures.write_json(self.temp_dir, "good.json", TestFixtures.create_bank_json("good", 1, 2))
        with open(Path(self.temp_dir) / "bad.json", 'w', encoding='utf-8') as f:
            f.write('{"quiz": [')

        self.data_manager.load_quiz_files()

        self.assertEqual(self.data_manager.get_available_banks(), ["good"])
        errors = self.data_manager.get_load_errors()
        self.assertEqual(len(errors), 1)
        self.assertIn("bad.json", errors[0])

    def test_duplicate_bank_id_rejected(self):
        """Test that a second file with the same bank id is rejected."""
        TestFixtures.write_json(self.temp_dir, "a.json", TestFixtures.create_bank_json("same", 1, 2))
        TestFixtures.write_json(self.temp_dir, "b.json", TestFixtures.create_bank_json("same", 10, 2))

        self.data_manager.load_quiz_files()

        self.assertEqual(self.data_manager.get_question_count("same"), 2)
        self.assertIsNotNone(self.data_manager.get_question(1))
        self.assertIsNone(self.data_manager.get_question(10))
        self.assertIn("Duplicate bank id", self.data_manager.get_load_errors()[0])

    def test_question_ids_unique_across_banks(self):
        """Test that a bank reusing another bank's question ids is rejected."""
        TestFixtures.write_json(self.temp_dir, "a.json", TestFixtures.create_bank_json("bank_a", 1, 3))
        TestFixtures.write_json(self.temp_dir, "b.json", TestFixtures.create_bank_json("bank_b", 3, 3))

        self.data_manager.load_quiz_files()

        self.assertEqual(self.data_manager.get_available_banks(), ["bank_a"])
        self.assertEqual(self.data_manager.get_question(3).bank_id, "bank_a")

    def test_file_too_large(self):
        """Test that oversized files are rejected before parsing."""
        TestFixtures.write_json(self.temp_dir, "big.json", TestFixtures.create_bank_json("big", 1, 2))

        with patch.object(DataManager, 'MAX_FILE_SIZE', 10):
            self.data_manager.load_quiz_files()

        self.assertTrue(self.data_manager.is_fallback_bank_active())
        self.assertTrue(any("too large" in e for e in self.data_manager.get_load_errors()))

    def test_empty_directory_creates_sample_bank(self):
        """Test that an empty directory gets a sample bank written to it."""
        banks = self.data_manager.load_quiz_files()

        self.assertIn("sample_bank", banks)
        self.assertEqual(len(banks["sample_bank"]), 3)
        self.assertTrue((Path(self.temp_dir) / "sample_bank.json").exists())
        self.assertFalse(self.data_manager.is_fallback_bank_active())

        # The written sample loads normally next time
        self.data_manager.load_quiz_files()
        self.assertFalse(self.data_manager.has_load_errors())
        self.assertEqual(self.data_manager.get_available_banks(), ["sample_bank"])

    def test_all_files_invalid_creates_fallback_bank(self):
        """Test that a fallback bank is served when nothing loads."""
        TestFixtures.write_json(self.temp_dir, "bad.json", {"quiz": []})

        banks = self.data_manager.load_quiz_files()

        self.assertEqual(list(banks), ["fallback_bank"])
        self.assertTrue(self.data_manager.is_fallback_bank_active())
        self.assertIn("All question bank files failed to load", self.data_manager.get_load_errors())

    def test_unreadable_directory_creates_fallback_bank(self):
        """Test that directory access errors fall back to the in-memory bank."""
        with patch.object(DataManager, '_ensure_quiz_directory',
                          return_value={'success': False, 'error': "Permission denied"}):
            self.data_manager.load_quiz_files()

        self.assertTrue(self.data_manager.is_fallback_bank_active())
        self.assertEqual(self.data_manager.get_load_errors(), ["Permission denied"])

    def test_reload_resets_state(self):
        """Test that a reload starts from a clean catalog."""
        TestFixtures.write_json(self.temp_dir, "a.json", TestFixtures.create_bank_json("bank_a", 1, 2))
        self.data_manager.load_quiz_files()
        os.remove(Path(self.temp_dir) / "a.json")
        TestFixtures.write_json(self.temp_dir, "b.json", TestFixtures.create_bank_json("bank_b", 5, 2))

        self.data_manager.load_quiz_files()

        self.assertEqual(self.data_manager.get_available_banks(), ["bank_b"])
        self.assertIsNone(self.data_manager.get_question(1))

    def test_loading_summary(self):
        """Test the loading summary contents."""
        TestFixtures.write_json(self.temp_dir, "a.json", TestFixtures.create_bank_json("bank_a", 1, 4))
        self.data_manager.load_quiz_files()

        summary = self.data_manager.get_loading_summary()

        self.assertEqual(summary['total_banks'], 1)
        self.assertEqual(summary['total_questions'], 4)
        self.assertFalse(summary['has_errors'])
        self.assertEqual(summary['error_count'], 0)
        self.assertFalse(summary['fallback_active'])
        self.assertEqual(summary['available_banks'], ["bank_a"])


class TestCatalogQueries(unittest.TestCase):
    """Test cases for catalog lookups and marking."""

    def setUp(self):
        """Set up test fixtures."""
        self.temp_dir = tempfile.mkdtemp()
        self.data_manager = TestFixtures.create_catalog(self.temp_dir, (("bank_a", 1, 3), ("bank_b", 10, 2)))

    def tearDown(self):
        """Clean up test fixtures."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_unknown_lookups(self):
        """Test lookups of unknown banks and questions."""
        self.assertIsNone(self.data_manager.get_bank("missing"))
        self.assertFalse(self.data_manager.bank_exists("missing"))
        self.assertEqual(self.data_manager.get_question_count("missing"), 0)
        self.assertIsNone(self.data_manager.get_question(999))

    def test_list_banks(self):
        """Test listing banks in order."""
        banks = self.data_manager.list_banks()

        self.assertEqual([b.id for b in banks], ["bank_a", "bank_b"])
        self.assertEqual(self.data_manager.get_bank_count(), 2)

    def test_toggle_mark(self):
        """Test that marking flips the flag on the canonical question."""
        self.assertTrue(self.data_manager.toggle_mark(10))
        self.assertTrue(self.data_manager.get_question(10).is_marked)
        self.assertIs(self.data_manager.get_bank("bank_b").questions[0], self.data_manager.get_question(10))
        self.assertEqual(self.data_manager.get_marked_ids(), frozenset({10}))

        self.assertFalse(self.data_manager.toggle_mark(10))
        self.assertEqual(self.data_manager.get_marked_ids(), frozenset())

    def test_toggle_mark_unknown_question(self):
        """Test marking a question that does not exist."""
        self.assertIsNone(self.data_manager.toggle_mark(999))


if __name__ == '__main__':
    unittest.main()
