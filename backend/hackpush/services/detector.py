from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable
from urllib.parse import urlparse

from bs4 import BeautifulSoup

from ..schemas import ExtractedSubmission, SyncResponse
from .channel import SyncChannel, reference_summary
from .errors import DetectionTimeout, ExtractionFailed
from .extractor import (
  ExtractedFields,
  extract_code,
  extract_from_page,
  extract_from_record,
  extract_language,
  extract_problem_slug,
)
from .hackerrank import HackerRankAPIError, HackerRankClient, is_pending
from .page import PageSource, Subscription

logger = logging.getLogger(__name__)

REJECTED_KEYWORDS = [
  'wrong answer',
  'runtime error',
  'compilation error',
  'segmentation fault',
  'timeout',
  'failed',
  'error',
]
ACCEPTED_KEYWORDS = [
  'accepted',
  'success',
  'all test cases passed',
  'congratulations',
  'passed',
  'successfully',
]
PENDING_KEYWORDS = ['processing', 'running', 'compiling', 'queued', 'submitting', 'evaluating']

VERDICT_REGION = ', '.join([
  '[class*="result"]',
  '[class*="submission"]',
  '[class*="test-result"]',
  '.test-results',
  '[data-analytics*="result"]',
])

Notifier = Callable[[str, str], None]


class DetectionState(str, Enum):
  IDLE = 'idle'
  ARMED = 'armed'
  AWAITING_VERDICT = 'awaiting_verdict'
  EVALUATING = 'evaluating'
  ACCEPTED = 'accepted'


class Verdict(str, Enum):
  ACCEPTED = 'accepted'
  REJECTED = 'rejected'
  PENDING = 'pending'
  UNKNOWN = 'unknown'


def classify_verdict(text: str | None) -> Verdict:
  lower = (text or '').lower()
  # A message mentioning both outcomes counts as rejected.
  if any(keyword in lower for keyword in REJECTED_KEYWORDS):
    return Verdict.REJECTED
  if any(keyword in lower for keyword in ACCEPTED_KEYWORDS):
    return Verdict.ACCEPTED
  if any(keyword in lower for keyword in PENDING_KEYWORDS):
    return Verdict.PENDING
  return Verdict.UNKNOWN


def classify_record(record: dict[str, Any]) -> Verdict:
  if is_pending(record):
    return Verdict.PENDING
  return classify_verdict(record.get('status'))


def is_problem_page(url: str) -> bool:
  path = urlparse(url).path
  return '/problem' in path or '/challenges/' in path


def _iso_now() -> str:
  return datetime.now(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


@dataclass(frozen=True)
class SubmissionEvent:
  submitted_at: datetime
  code: str | None = None
  language: str | None = None

  @property
  def dedup_id(self) -> str:
    return f'{self.submitted_at.timestamp():.6f}'


@dataclass
class _Cycle:
  event: SubmissionEvent
  subscription: Subscription | None = None
  debounce: asyncio.TimerHandle | None = None
  record: dict[str, Any] | None = field(default=None)


class PageObserver:
  """Watches one challenge page and hands every accepted submission to the sync channel."""

  def __init__(
    self,
    page: PageSource,
    channel: SyncChannel,
    *,
    client: HackerRankClient | None = None,
    notify: Notifier | None = None,
    verdict_region: str = VERDICT_REGION,
    debounce_seconds: float = 2.0,
    poll_delay_seconds: float = 3.0,
    settle_delay_seconds: float = 1.0,
    timeout_seconds: float = 30.0,
    dedup_ttl_seconds: float = 300.0,
    stale_after_seconds: float = 120.0,
  ) -> None:
    self.page = page
    self.channel = channel
    self.client = client
    self.notify = notify
    self.verdict_region = verdict_region
    self.debounce_seconds = debounce_seconds
    self.poll_delay_seconds = poll_delay_seconds
    self.settle_delay_seconds = settle_delay_seconds
    self.timeout_seconds = timeout_seconds
    self.dedup_ttl_seconds = dedup_ttl_seconds
    self.stale_after_seconds = stale_after_seconds

    self.state = DetectionState.IDLE
    self.last_response: SyncResponse | None = None
    self._cycle_task: asyncio.Task[None] | None = None
    self._recent: dict[str, float] = {}

  @property
  def current_cycle(self) -> asyncio.Task[None] | None:
    return self._cycle_task

  def _set_state(self, state: DetectionState) -> None:
    if state is not self.state:
      logger.debug('Detection state %s -> %s', self.state.value, state.value)
      self.state = state

  def _notify(self, message: str, level: str = 'info') -> None:
    logger.info('[%s] %s', level, message)
    if self.notify is not None:
      self.notify(message, level)

  def on_submit(self, submitted_at: datetime | None = None) -> bool:
    if self.state is not DetectionState.IDLE:
      logger.info('Already processing a submission; ignoring this submit.')
      return False

    loop = asyncio.get_running_loop()
    self._set_state(DetectionState.ARMED)
    event = self._capture(submitted_at or datetime.now(timezone.utc))
    self._cycle_task = loop.create_task(self._run_cycle(event))
    return True

  def _capture(self, submitted_at: datetime) -> SubmissionEvent:
    # The editor may be hidden once the page starts judging, so snapshot it now.
    code: str | None = None
    language: str | None = None
    try:
      code = extract_code(self.page)
      logger.info('Code cached: %d characters', len(code))
    except ExtractionFailed as exc:
      logger.warning('Could not cache code before submission: %s', exc)
    except Exception:  # noqa: BLE001
      logger.warning('Could not cache code before submission', exc_info=True)
    try:
      language = extract_language(self.page, code)
      logger.info('Language cached: %s', language)
    except Exception:  # noqa: BLE001
      logger.warning('Could not cache language before submission', exc_info=True)
    return SubmissionEvent(submitted_at=submitted_at, code=code, language=language)

  async def _run_cycle(self, event: SubmissionEvent) -> None:
    cycle = _Cycle(event=event)
    try:
      verdict = await self._await_with_timeout(cycle)
      if verdict is Verdict.ACCEPTED:
        self._set_state(DetectionState.ACCEPTED)
        logger.info('Submission accepted!')
        await self._deliver(cycle)
      else:
        logger.info('Submission finished without acceptance (%s).', verdict.value)
    except DetectionTimeout as exc:
      logger.info('%s', exc)
    except asyncio.CancelledError:
      logger.info('Detection cycle cancelled.')
      raise
    except Exception:  # noqa: BLE001
      logger.exception('Error while watching submission')
    finally:
      self._detach(cycle)
      self._set_state(DetectionState.IDLE)

  async def _await_with_timeout(self, cycle: _Cycle) -> Verdict:
    try:
      return await asyncio.wait_for(self._await_verdict(cycle), self.timeout_seconds)
    except asyncio.TimeoutError as exc:
      raise DetectionTimeout(f'No verdict within {self.timeout_seconds}s; back to idle.') from exc

  async def _await_verdict(self, cycle: _Cycle) -> Verdict:
    self._set_state(DetectionState.AWAITING_VERDICT)
    if self.client is None:
      return await self._observe_verdict(cycle)

    try:
      verdict = await self._poll_verdict(cycle, self.client)
    except HackerRankAPIError as exc:
      logger.warning('Submission API unavailable (%s); watching the page instead.', exc)
    else:
      if cycle.record is not None:
        return verdict
      logger.info('No fresh submission record; watching the page instead.')
    return await self._observe_verdict(cycle, prime=True)

  def _is_stale(self, record: dict[str, Any], event: SubmissionEvent) -> bool:
    created_at = record.get('createdAt')
    if created_at is None:
      return False
    return created_at < event.submitted_at.timestamp() - self.stale_after_seconds

  async def _poll_verdict(self, cycle: _Cycle, client: HackerRankClient) -> Verdict:
    slug = extract_problem_slug(self.page.url)

    await asyncio.sleep(self.poll_delay_seconds)
    submissions = await client.fetch_recent_submissions(slug, limit=1)
    if not submissions:
      return Verdict.UNKNOWN
    latest = submissions[0]
    if self._is_stale(latest, cycle.event):
      logger.info('Newest submission %s predates this submit; ignoring it.', latest['id'])
      return Verdict.UNKNOWN

    # The listing can show a submission before its detail record is committed.
    await asyncio.sleep(self.settle_delay_seconds)
    record = await client.fetch_submission_detail(slug, latest['id'])
    self._set_state(DetectionState.EVALUATING)
    verdict = classify_record(record)
    if verdict is Verdict.PENDING:
      self._set_state(DetectionState.AWAITING_VERDICT)
      await asyncio.sleep(self.settle_delay_seconds)
      record = await client.fetch_submission_detail(slug, latest['id'])
      self._set_state(DetectionState.EVALUATING)
      verdict = classify_record(record)

    cycle.record = record
    return verdict

  def _region_text(self) -> str | None:
    soup = BeautifulSoup(self.page.html() or '', 'html.parser')
    element = soup.select_one(self.verdict_region)
    if element is None:
      return None
    return element.get_text(' ', strip=True)

  async def _observe_verdict(self, cycle: _Cycle, *, prime: bool = False) -> Verdict:
    loop = asyncio.get_running_loop()
    verdict_future: asyncio.Future[Verdict] = loop.create_future()

    def evaluate() -> None:
      cycle.debounce = None
      if verdict_future.done():
        return
      text = self._region_text()
      if text is None:
        return
      self._set_state(DetectionState.EVALUATING)
      verdict = classify_verdict(text)
      if verdict is Verdict.PENDING:
        self._set_state(DetectionState.AWAITING_VERDICT)
        return
      verdict_future.set_result(verdict)

    def on_change() -> None:
      if cycle.debounce is not None:
        cycle.debounce.cancel()
      cycle.debounce = loop.call_later(self.debounce_seconds, evaluate)

    self._set_state(DetectionState.AWAITING_VERDICT)
    cycle.subscription = self.page.subscribe(self.verdict_region, on_change)
    if prime and self._region_text() is not None:
      on_change()
    try:
      return await verdict_future
    finally:
      self._detach(cycle)

  def _detach(self, cycle: _Cycle) -> None:
    if cycle.debounce is not None:
      cycle.debounce.cancel()
      cycle.debounce = None
    if cycle.subscription is not None:
      cycle.subscription.cancel()
      cycle.subscription = None

  def _seen_recently(self, dedup_id: str) -> bool:
    now = time.monotonic()
    self._recent = {key: expiry for key, expiry in self._recent.items() if expiry > now}
    return dedup_id in self._recent

  def _remember(self, dedup_id: str) -> None:
    self._recent[dedup_id] = time.monotonic() + self.dedup_ttl_seconds

  def _collect_fields(self, cycle: _Cycle) -> ExtractedFields:
    event = cycle.event
    if cycle.record is not None:
      try:
        return extract_from_record(cycle.record, self.page.url, fallback_code=event.code)
      except ExtractionFailed as exc:
        logger.warning('%s Falling back to the page.', exc)
    return extract_from_page(self.page, code=event.code, language=event.language)

  def _build_submission(self, cycle: _Cycle) -> ExtractedSubmission:
    fields = self._collect_fields(cycle)
    return ExtractedSubmission(
      code=fields.code,
      language=fields.language,
      problem_title=fields.problem_title,
      problem_slug=fields.problem_slug,
      category=fields.category,
      timestamp=_iso_now(),
      source_url=fields.source_url,
    )

  async def _deliver(self, cycle: _Cycle) -> None:
    dedup_id = cycle.event.dedup_id
    if self._seen_recently(dedup_id):
      logger.info('Already processed this submission')
      return

    try:
      submission = self._build_submission(cycle)
    except ExtractionFailed as exc:
      logger.error('Error processing submission: %s', exc)
      self._notify(f'Error: {exc}', 'error')
      return

    logger.info(
      'Extracted data: title=%s slug=%s language=%s category=%s code_length=%d',
      submission.problem_title,
      submission.problem_slug,
      submission.language,
      submission.category,
      len(submission.code),
    )
    self._remember(dedup_id)
    response = await self.channel.request(submission)
    self.last_response = response
    if response.ok:
      self._notify(f'Solution synced to GitHub! {reference_summary(response.reference)}'.strip(), 'success')
    else:
      self._notify(f'Sync failed: {response.error or "Unknown error"}', 'error')

  async def close(self) -> None:
    task = self._cycle_task
    if task is not None and not task.done():
      task.cancel()
      try:
        await task
      except asyncio.CancelledError:
        pass
    self._set_state(DetectionState.IDLE)
