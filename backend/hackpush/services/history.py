from __future__ import annotations

import logging

from pydantic import ValidationError

from ..schemas import HistoryRecord, parse_timestamp
from .storage import JsonStore

logger = logging.getLogger(__name__)

HISTORY_KEY = 'submissions'
DEDUP_WINDOW_SECONDS = 60.0


class HistoryLedger:
  """Append-only record of synced submissions, deduplicated per problem and language."""

  def __init__(self, store: JsonStore, window_seconds: float = DEDUP_WINDOW_SECONDS) -> None:
    self.store = store
    self.window_seconds = window_seconds

  def _load(self) -> list[HistoryRecord]:
    records: list[HistoryRecord] = []
    for entry in self.store.get(HISTORY_KEY) or []:
      try:
        records.append(HistoryRecord.model_validate(entry))
      except ValidationError:
        logger.warning('Skipping malformed history entry: %r', entry)
    return records

  def is_duplicate(self, record: HistoryRecord, existing: list[HistoryRecord] | None = None) -> bool:
    records = existing if existing is not None else self._load()
    new_time = parse_timestamp(record.timestamp)
    for entry in records:
      if entry.problem_slug != record.problem_slug or entry.language != record.language:
        continue
      try:
        delta = abs((parse_timestamp(entry.timestamp) - new_time).total_seconds())
      except ValueError:
        continue
      if delta <= self.window_seconds:
        return True
    return False

  def append(self, record: HistoryRecord) -> bool:
    records = self._load()
    if self.is_duplicate(record, records):
      logger.info('History already holds %s (%s) within %ss; not recording again.', record.problem_slug, record.language, self.window_seconds)
      return False
    records.append(record)
    self.store.set(HISTORY_KEY, [entry.model_dump(by_alias=True) for entry in records])
    return True

  def list(self) -> list[HistoryRecord]:
    return self._load()

  def count(self) -> int:
    return len(self._load())

  def clear(self) -> None:
    self.store.set(HISTORY_KEY, [])
