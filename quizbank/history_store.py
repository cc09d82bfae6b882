"""
Append-only log of completed and quit quiz sessions.

Records are kept in memory in insertion order. When a path is given the log
is mirrored to a JSON-lines file: existing lines are read once on startup and
each append adds exactly one line.
"""
import json
import logging
import time
from pathlib import Path
from typing import List, Optional, Set, Tuple

from .models import HistoryRecord

logger = logging.getLogger(__name__)


class HistoryStore:
    """Ordered, append-only store of HistoryRecords."""

    def __init__(self, path: Optional[str] = None):
        self.path = Path(path) if path else None
        self._records: List[HistoryRecord] = []
        self._ids: Set[str] = set()
        self.load_errors: List[str] = []

        if self.path is not None:
            self._load()

    def _load(self) -> None:
        if not self.path.exists():
            logger.info(f"No history file at {self.path}, starting empty")
            return

        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                lines = f.readlines()
        except OSError as e:
            error_msg = f"Failed to read history file {self.path}: {e}"
            logger.error(error_msg)
            self.load_errors.append(error_msg)
            return

        for line_number, line in enumerate(lines, start=1):
            if not line.strip():
                continue
            try:
                record = HistoryRecord.from_dict(json.loads(line))
            except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
                error_msg = f"Skipping malformed history line {line_number}: {e}"
                logger.error(error_msg)
                self.load_errors.append(error_msg)
                continue
            if record.id in self._ids:
                logger.warning(f"Skipping duplicate history record {record.id}")
                continue
            self._records.append(record)
            self._ids.add(record.id)

        logger.info(f"Loaded {len(self._records)} history records from {self.path}")

    def append(self, record: HistoryRecord) -> None:
        """
        Append a record to the log.

        Args:
            record: The finished session's record

        Raises:
            ValueError: If a record with the same id was already appended
            OSError: If the backing file cannot be written. The record is still
                kept in memory in that case.
        """
        if record.id in self._ids:
            raise ValueError(f"History record {record.id} already exists")

        self._records.append(record)
        self._ids.add(record.id)

        if self.path is not None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, 'a', encoding='utf-8') as f:
                f.write(json.dumps(record.to_dict(), ensure_ascii=False) + "\n")

        logger.info(
            f"Appended history record {record.id}: bank={record.bank_id}, "
            f"score={record.score}/{record.total_questions}",
            extra={
                'event_type': 'history_appended',
                'record_id': record.id,
                'bank_id': record.bank_id,
                'timestamp': time.time()
            }
        )

    def read_all(self) -> Tuple[HistoryRecord, ...]:
        """Return all records in chronological (insertion) order."""
        return tuple(self._records)

    def get_record(self, record_id: str) -> Optional[HistoryRecord]:
        for record in self._records:
            if record.id == record_id:
                return record
        return None

    def records_for_bank(self, bank_id: str) -> Tuple[HistoryRecord, ...]:
        return tuple(record for record in self._records if record.bank_id == bank_id)

    def __len__(self) -> int:
        return len(self._records)
