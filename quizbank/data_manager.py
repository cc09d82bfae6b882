"""
Data manager for question bank JSON files.

Serves as the question catalog: banks are read-only once loaded, except for
the per-question ``is_marked`` flag, which is toggled in place.
"""
import json
import os
import logging
from typing import Any, Dict, FrozenSet, List, Optional
from pathlib import Path

from .models import Media, MediaKind, MediaTiming, Question, QuestionBank


class DataManager:
    """Manages loading and validation of JSON question bank files."""

    MAX_FILE_SIZE = 10 * 1024 * 1024  # 10MB

    def __init__(self, quiz_directory: str = "./quizzes/"):
        """
        Initialize DataManager with quiz directory path.

        Args:
            quiz_directory: Path to directory containing JSON bank files
        """
        self.quiz_directory = Path(quiz_directory)
        self.loaded_banks: Dict[str, QuestionBank] = {}
        self._questions: Dict[int, Question] = {}
        self.logger = logging.getLogger(__name__)
        self.load_errors: List[str] = []  # Track loading errors for user feedback
        self.fallback_bank_created = False

    def load_quiz_files(self) -> Dict[str, QuestionBank]:
        """
        Load all JSON bank files from the quiz directory.

        Returns:
            Dictionary mapping bank ids to QuestionBank objects
        """
        self.loaded_banks.clear()
        self._questions.clear()
        self.load_errors.clear()
        self.fallback_bank_created = False

        directory_result = self._ensure_quiz_directory()
        if not directory_result['success']:
            self.load_errors.append(directory_result['error'])
            return self._create_fallback_bank()

        scan_result = self._scan_quiz_files()
        if not scan_result['success']:
            self.load_errors.append(scan_result['error'])
            return self._create_fallback_bank()

        json_files = scan_result['files']

        if not json_files:
            self.logger.warning(f"No JSON files found in {self.quiz_directory}")
            self.load_errors.append(f"No question bank files found in {self.quiz_directory}")
            return self._create_sample_bank()

        successful_loads = 0
        for json_file in json_files:
            load_result = self._load_bank_file_safely(json_file)
            if load_result['success']:
                successful_loads += 1
            else:
                self.load_errors.append(f"{json_file.name}: {load_result['error']}")

        if successful_loads == 0:
            self.logger.error("No question bank files could be loaded successfully")
            self.load_errors.append("All question bank files failed to load")
            return self._create_fallback_bank()

        self.logger.info(f"Successfully loaded {successful_loads} question bank files")
        if self.load_errors:
            self.logger.warning(f"Encountered {len(self.load_errors)} loading errors")

        return self.loaded_banks

    def _load_single_file(self, file_path: Path) -> Optional[dict]:
        """
        Load and parse a single JSON file.

        Args:
            file_path: Path to the JSON file

        Returns:
            Parsed JSON data or None if loading or validation failed
        """
        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            self.logger.error(f"Invalid JSON in {file_path}: {e}")
            return None
        except FileNotFoundError:
            self.logger.error(f"Question bank file not found: {file_path}")
            return None
        except OSError as e:
            self.logger.error(f"Failed to read question bank file {file_path}: {e}")
            return None

        if not self.validate_bank_structure(data):
            self.logger.error(f"Invalid question bank structure in {file_path}")
            return None
        return data

    def validate_bank_structure(self, data: Any) -> bool:
        """
        Validate that JSON data has the correct question bank structure.

        Expected structure:
        {
            "id": str,            # Optional, defaults to the file name
            "name": str,          # Optional
            "description": str,   # Optional
            "quiz": [
                {
                    "id": int,
                    "question": str,
                    "options": [str, ...],   # At least 2
                    "correct_answer": int,   # Index into options
                    "explanation": str,      # Optional
                    "media": {               # Optional
                        "type": "image" | "video" | "audio",
                        "url": str,
                        "show_with": "question" | "answer"
                    }
                }
            ]
        }

        Args:
            data: Parsed JSON data to validate

        Returns:
            True if structure is valid, False otherwise
        """
        if not isinstance(data, dict):
            self.logger.error("Question bank data must be a JSON object")
            return False

        for key in ("id", "name", "description"):
            if key in data and not isinstance(data[key], str):
                self.logger.error(f"Bank '{key}' field must be a string")
                return False

        if "quiz" not in data:
            self.logger.error("Question bank data must contain a 'quiz' key")
            return False

        quiz_array = data["quiz"]
        if not isinstance(quiz_array, list):
            self.logger.error("'quiz' value must be an array")
            return False

        if not quiz_array:
            self.logger.error("Quiz array cannot be empty")
            return False

        seen_ids = set()
        for i, question_data in enumerate(quiz_array):
            if not self._validate_question(i, question_data):
                return False
            if question_data["id"] in seen_ids:
                self.logger.error(f"Question {i} has duplicate id {question_data['id']}")
                return False
            seen_ids.add(question_data["id"])

        return True

    def _validate_question(self, i: int, question_data: Any) -> bool:
        if not isinstance(question_data, dict):
            self.logger.error(f"Question {i} must be an object")
            return False

        for required in ("id", "question", "options", "correct_answer"):
            if required not in question_data:
                self.logger.error(f"Question {i} missing '{required}' field")
                return False

        # bool is an int subclass; reject it explicitly
        if not isinstance(question_data["id"], int) or isinstance(question_data["id"], bool):
            self.logger.error(f"Question {i} 'id' field must be an integer")
            return False

        if not isinstance(question_data["question"], str):
            self.logger.error(f"Question {i} 'question' field must be a string")
            return False

        options = question_data["options"]
        if not isinstance(options, list) or len(options) < 2:
            self.logger.error(f"Question {i} 'options' field must be an array of at least 2 entries")
            return False

        if not all(isinstance(option, str) for option in options):
            self.logger.error(f"Question {i} options must be strings")
            return False

        correct = question_data["correct_answer"]
        if not isinstance(correct, int) or isinstance(correct, bool) or not 0 <= correct < len(options):
            self.logger.error(f"Question {i} 'correct_answer' must index into options")
            return False

        if "explanation" in question_data and not isinstance(question_data["explanation"], str):
            self.logger.error(f"Question {i} 'explanation' field must be a string")
            return False

        if "media" in question_data:
            return self._validate_media(i, question_data["media"])

        return True

    def _validate_media(self, i: int, media: Any) -> bool:
        if not isinstance(media, dict):
            self.logger.error(f"Question {i} 'media' field must be an object")
            return False

        if media.get("type") not in {kind.value for kind in MediaKind}:
            self.logger.error(f"Question {i} media type must be one of image, video, audio")
            return False

        if not isinstance(media.get("url"), str):
            self.logger.error(f"Question {i} media 'url' must be a string")
            return False

        show_with = media.get("show_with", MediaTiming.WITH_QUESTION.value)
        if show_with not in {timing.value for timing in MediaTiming}:
            self.logger.error(f"Question {i} media 'show_with' must be 'question' or 'answer'")
            return False

        return True

    def _parse_bank(self, bank_data: dict, default_id: str) -> QuestionBank:
        """
        Parse validated bank data into a QuestionBank.

        Args:
            bank_data: Validated bank data dictionary
            default_id: Bank id to use when the file does not name one

        Returns:
            QuestionBank holding the parsed questions
        """
        bank_id = bank_data.get("id", default_id)
        questions = []

        for question_data in bank_data["quiz"]:
            media = None
            if "media" in question_data:
                media_data = question_data["media"]
                media = Media(
                    kind=MediaKind(media_data["type"]),
                    url=media_data["url"],
                    show_with=MediaTiming(media_data.get("show_with", MediaTiming.WITH_QUESTION.value)),
                )
            questions.append(Question(
                id=question_data["id"],
                bank_id=bank_id,
                text=question_data["question"],
                options=list(question_data["options"]),
                correct_answer_index=question_data["correct_answer"],
                explanation=question_data.get("explanation"),
                media=media,
            ))

        return QuestionBank(
            id=bank_id,
            name=bank_data.get("name", bank_id),
            description=bank_data.get("description", ""),
            questions=tuple(questions),
        )

    def _register_bank(self, bank: QuestionBank) -> None:
        self.loaded_banks[bank.id] = bank
        for question in bank.questions:
            self._questions[question.id] = question

    def list_banks(self) -> List[QuestionBank]:
        """
        Get the loaded banks in load order.

        Returns:
            List of QuestionBank objects
        """
        return list(self.loaded_banks.values())

    def get_available_banks(self) -> List[str]:
        """Get list of available bank ids."""
        return list(self.loaded_banks.keys())

    def get_bank(self, bank_id: str) -> Optional[QuestionBank]:
        """
        Retrieve a bank by id.

        Args:
            bank_id: Identifier of the bank

        Returns:
            QuestionBank, or None if the bank is not loaded
        """
        return self.loaded_banks.get(bank_id)

    def bank_exists(self, bank_id: str) -> bool:
        return bank_id in self.loaded_banks

    def get_question(self, question_id: int) -> Optional[Question]:
        """Look up the canonical Question record by id."""
        return self._questions.get(question_id)

    def get_bank_count(self) -> int:
        return len(self.loaded_banks)

    def get_question_count(self, bank_id: str) -> int:
        """
        Get the number of questions in a specific bank.

        Args:
            bank_id: Identifier of the bank

        Returns:
            Number of questions in the bank, or 0 if bank not found
        """
        bank = self.get_bank(bank_id)
        return len(bank) if bank else 0

    def toggle_mark(self, question_id: int) -> Optional[bool]:
        """
        Flip the marked flag on a catalog question.

        Args:
            question_id: Identifier of the question

        Returns:
            The new flag value, or None if the question is unknown
        """
        question = self._questions.get(question_id)
        if question is None:
            self.logger.debug(f"Cannot toggle mark: unknown question {question_id}")
            return None

        question.is_marked = not question.is_marked
        self.logger.info(
            f"Question {question_id} {'marked' if question.is_marked else 'unmarked'}"
        )
        return question.is_marked

    def get_marked_ids(self) -> FrozenSet[int]:
        return frozenset(qid for qid, question in self._questions.items() if question.is_marked)

    def _ensure_quiz_directory(self) -> Dict[str, Any]:
        """
        Ensure quiz directory exists.

        Returns:
            Dictionary with success status and error message if applicable
        """
        try:
            if not self.quiz_directory.exists():
                self.quiz_directory.mkdir(parents=True, exist_ok=True)
                self.logger.info(f"Created quiz directory: {self.quiz_directory}")

            if not os.access(self.quiz_directory, os.R_OK):
                return {
                    'success': False,
                    'error': f"Permission denied: Cannot read from {self.quiz_directory}"
                }

            return {'success': True}

        except PermissionError:
            return {
                'success': False,
                'error': f"Permission denied: Cannot access {self.quiz_directory}"
            }
        except OSError as e:
            return {
                'success': False,
                'error': f"System error accessing {self.quiz_directory}: {e}"
            }

    def _scan_quiz_files(self) -> Dict[str, Any]:
        """
        Scan quiz directory for JSON files.

        Returns:
            Dictionary with success status, sorted files list, and error message if applicable
        """
        try:
            return {
                'success': True,
                'files': sorted(self.quiz_directory.glob("*.json"))
            }
        except PermissionError:
            return {
                'success': False,
                'error': f"Permission denied: Cannot read directory {self.quiz_directory}",
                'files': []
            }
        except OSError as e:
            return {
                'success': False,
                'error': f"System error scanning {self.quiz_directory}: {e}",
                'files': []
            }

    def _load_bank_file_safely(self, json_file: Path) -> Dict[str, Any]:
        """
        Load a single bank file, reporting instead of raising on failure.

        Args:
            json_file: Path to the JSON file to load

        Returns:
            Dictionary with success status and error message if applicable
        """
        try:
            file_size = json_file.stat().st_size
        except OSError as e:
            return {'success': False, 'error': f"System error: {e}"}

        if file_size > self.MAX_FILE_SIZE:
            return {
                'success': False,
                'error': f"File too large ({file_size / 1024 / 1024:.1f}MB). "
                         f"Maximum size is {self.MAX_FILE_SIZE / 1024 / 1024}MB"
            }

        bank_data = self._load_single_file(json_file)
        if bank_data is None:
            return {
                'success': False,
                'error': "Invalid JSON structure or validation failed"
            }

        bank = self._parse_bank(bank_data, json_file.stem)

        if bank.id in self.loaded_banks:
            return {'success': False, 'error': f"Duplicate bank id '{bank.id}'"}

        clashing = [q.id for q in bank.questions if q.id in self._questions]
        if clashing:
            return {
                'success': False,
                'error': f"Question ids already used by another bank: {clashing[:5]}"
            }

        self._register_bank(bank)
        self.logger.info(f"Loaded bank '{bank.id}' with {len(bank)} questions")
        return {'success': True}

    def _create_sample_bank(self) -> Dict[str, QuestionBank]:
        """
        Write and load a sample bank when no bank files are found.

        Returns:
            Dictionary with the sample bank loaded
        """
        sample_bank_data = {
            "id": "sample_bank",
            "name": "Sample Bank",
            "description": "A small bank to try the quiz with",
            "quiz": [
                {
                    "id": 1,
                    "question": "What is the capital of France?",
                    "options": ["London", "Paris", "Berlin", "Madrid"],
                    "correct_answer": 1,
                    "explanation": "Paris has been the capital of France since 987."
                },
                {
                    "id": 2,
                    "question": "What is 2 + 2?",
                    "options": ["4", "3", "5", "22"],
                    "correct_answer": 0
                },
                {
                    "id": 3,
                    "question": "Which planet is the largest?",
                    "options": ["Earth", "Mars", "Jupiter", "Venus"],
                    "correct_answer": 2
                }
            ]
        }

        sample_file_path = self.quiz_directory / "sample_bank.json"
        try:
            if not sample_file_path.exists():
                with open(sample_file_path, 'w', encoding='utf-8') as f:
                    json.dump(sample_bank_data, f, indent=2, ensure_ascii=False)
                self.logger.info(f"Created sample bank file: {sample_file_path}")
        except OSError as e:
            self.logger.error(f"Failed to write sample bank: {e}")
            self.load_errors.append(f"Failed to write sample bank: {e}")

        self._register_bank(self._parse_bank(sample_bank_data, "sample_bank"))
        self.logger.info("Loaded sample bank with 3 questions")
        return self.loaded_banks

    def _create_fallback_bank(self) -> Dict[str, QuestionBank]:
        """
        Create a minimal fallback bank in memory when file operations fail.

        Returns:
            Dictionary with the fallback bank loaded
        """
        fallback_bank = QuestionBank(
            id="fallback_bank",
            name="Fallback Bank",
            description="Shown because no question bank files could be loaded",
            questions=(
                Question(
                    id=0,
                    bank_id="fallback_bank",
                    text="What should you check when question banks can't be loaded?",
                    options=["The quiz directory and file permissions", "Nothing"],
                    correct_answer_index=0,
                ),
            ),
        )
        self._register_bank(fallback_bank)
        self.fallback_bank_created = True
        self.logger.warning("Created fallback bank due to file loading failures")
        return self.loaded_banks

    def get_load_errors(self) -> List[str]:
        """Get list of errors encountered during the last load operation."""
        return self.load_errors.copy()

    def has_load_errors(self) -> bool:
        return len(self.load_errors) > 0

    def is_fallback_bank_active(self) -> bool:
        return self.fallback_bank_created

    def get_loading_summary(self) -> Dict[str, Any]:
        """
        Get a summary of the last loading operation.

        Returns:
            Dictionary with loading statistics and status
        """
        return {
            'total_banks': len(self.loaded_banks),
            'total_questions': len(self._questions),
            'has_errors': self.has_load_errors(),
            'error_count': len(self.load_errors),
            'errors': self.get_load_errors(),
            'fallback_active': self.is_fallback_bank_active(),
            'quiz_directory': str(self.quiz_directory),
            'available_banks': self.get_available_banks()
        }
