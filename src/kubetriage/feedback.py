"""
Feedback store

An append-only JSON Lines log of human judgments. Records are kept in
memory after loading; every ``record`` call appends one line and fsyncs
before returning.
"""

import json
import logging
import os
import threading
from pathlib import Path
from typing import Union

from pydantic import ValidationError

from .errors import FeedbackStoreError
from .models import FeedbackRecord, FeedbackStats

logger = logging.getLogger(__name__)


class FeedbackStore:
    """
    Durable, append-only store of feedback records

    Args:
        path: Location of the JSON Lines file; created if missing

    Raises:
        FeedbackStoreError: The file exists but cannot be read, or the
            directory cannot be created
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._lock = threading.Lock()
        self._records: list[FeedbackRecord] = []
        self._load()

    def _load(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            if not self.path.exists():
                self.path.touch()
                logger.info(f"Created new feedback log at {self.path}")
                return
            with open(self.path, encoding="utf-8") as f:
                lines = f.readlines()
        except OSError as e:
            raise FeedbackStoreError(f"Cannot open feedback log {self.path}: {e}") from e

        for lineno, line in enumerate(lines, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                self._records.append(FeedbackRecord.model_validate_json(line))
            except ValidationError as e:
                logger.warning(f"Skipping malformed feedback line {lineno}: {e}")

        logger.info(f"Loaded {len(self._records)} feedback records from {self.path}")

    def record(self, feedback: FeedbackRecord) -> None:
        """Append one record; durable once this returns"""
        line = json.dumps(feedback.model_dump(mode="json"), ensure_ascii=False)
        with self._lock:
            try:
                with open(self.path, "a", encoding="utf-8") as f:
                    f.write(line + "\n")
                    f.flush()
                    os.fsync(f.fileno())
            except OSError as e:
                raise FeedbackStoreError(f"Failed to write feedback: {e}") from e
            self._records.append(feedback)

        verdict = "correct" if feedback.is_correct else "incorrect"
        logger.info(f"Recorded {verdict} feedback for {feedback.alert_name}")

    def get_relevant_feedback(
        self, category: str, alert_name: str, limit: int = 1
    ) -> list[FeedbackRecord]:
        """
        Most relevant past feedback, newest first

        Exact alert-name matches come first; remaining slots go to other
        alerts of the same category.
        """
        if limit <= 0:
            return []

        with self._lock:
            newest_first = list(reversed(self._records))

        relevant: list[FeedbackRecord] = []
        seen = set()
        for fb in newest_first:
            if len(relevant) >= limit:
                break
            if fb.alert_name == alert_name:
                relevant.append(fb)
                seen.add(fb.timestamp)

        for fb in newest_first:
            if len(relevant) >= limit:
                break
            if (
                fb.category == category
                and fb.alert_name != alert_name
                and fb.timestamp not in seen
            ):
                relevant.append(fb)
                seen.add(fb.timestamp)

        return relevant

    def get_stats(self) -> FeedbackStats:
        with self._lock:
            total = len(self._records)
            correct = sum(1 for fb in self._records if fb.is_correct)
        return FeedbackStats(total=total, correct=correct, incorrect=total - correct)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
