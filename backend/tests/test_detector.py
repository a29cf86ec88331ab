from __future__ import annotations

import asyncio
import time
from datetime import datetime, timezone

import httpx
import pytest

from hackpush.schemas import ExtractedSubmission, RemoteReference, SyncResponse
from hackpush.services.channel import SyncChannel
from hackpush.services.detector import (
  DetectionState,
  PageObserver,
  Verdict,
  classify_record,
  classify_verdict,
  is_problem_page,
)
from hackpush.services.hackerrank import HackerRankClient
from hackpush.services.page import RenderedPage

PROBLEM_URL = 'https://www.hackerrank.com/challenges/simple-array-sum/problem'
ACCEPTED_HTML = '<div class="result-box">Congratulations! All test cases passed.</div>'
REJECTED_HTML = '<div class="result-box">Wrong Answer: 1/3 test cases passed</div>'
PENDING_HTML = '<div class="result-box">Processing...</div>'
HR_URL = 'https://hackerrank.test'


class RecordingChannel(SyncChannel):
  def __init__(self, response: SyncResponse | None = None) -> None:
    super().__init__()
    self.submissions: list[ExtractedSubmission] = []
    self.response = response or SyncResponse(
      ok=True,
      reference=RemoteReference(
        html_url='https://github.com/octo/solutions/blob/main/hackerrank/algorithms/simple-array-sum.py',
        path='hackerrank/algorithms/simple-array-sum.py',
        branch='main',
      ),
    )

  async def _send(self, submission: ExtractedSubmission) -> SyncResponse:
    self.submissions.append(submission)
    return self.response


async def wait_until(predicate, timeout: float = 1.0) -> None:
  deadline = time.monotonic() + timeout
  while not predicate():
    if time.monotonic() > deadline:
      raise AssertionError('condition not met in time')
    await asyncio.sleep(0.005)


def make_page(**kwargs) -> RenderedPage:
  kwargs.setdefault('editor_value', 'def simpleArraySum(ar):\n    return sum(ar)\n')
  kwargs.setdefault('editor_language', 'python3')
  return RenderedPage(PROBLEM_URL, '<h1 class="challenge-title">Simple Array Sum</h1>', **kwargs)


def make_observer(page: RenderedPage, channel: SyncChannel, **kwargs) -> PageObserver:
  kwargs.setdefault('debounce_seconds', 0.01)
  kwargs.setdefault('poll_delay_seconds', 0.0)
  kwargs.setdefault('settle_delay_seconds', 0.0)
  kwargs.setdefault('timeout_seconds', 1.0)
  return PageObserver(page, channel, **kwargs)


@pytest.mark.parametrize(
  ('text', 'expected'),
  [
    ('Congratulations! You solved this challenge.', Verdict.ACCEPTED),
    ('Accepted', Verdict.ACCEPTED),
    ('Wrong Answer', Verdict.REJECTED),
    ('Wrong Answer. 2/3 test cases passed', Verdict.REJECTED),
    ('Compilation error', Verdict.REJECTED),
    ('Running your code', Verdict.PENDING),
    ('Queued', Verdict.PENDING),
    ('Custom input', Verdict.UNKNOWN),
    (None, Verdict.UNKNOWN),
  ],
)
def test_classify_verdict(text, expected):
  assert classify_verdict(text) is expected


def test_classify_record_treats_pending_statuses_first():
  assert classify_record({'status': 'Processing'}) is Verdict.PENDING
  assert classify_record({'status': 'Accepted'}) is Verdict.ACCEPTED
  assert classify_record({'status': 'Terminated due to timeout'}) is Verdict.REJECTED


def test_is_problem_page():
  assert is_problem_page(PROBLEM_URL)
  assert is_problem_page('https://www.hackerrank.com/challenges/staircase')
  assert not is_problem_page('https://www.hackerrank.com/dashboard')


@pytest.mark.asyncio
async def test_accepted_verdict_on_page_is_synced():
  page = make_page()
  channel = RecordingChannel()
  notifications = []
  observer = make_observer(page, channel, notify=lambda message, level: notifications.append((level, message)))

  assert observer.on_submit() is True
  await wait_until(lambda: page.subscription_count > 0)
  assert observer.state is DetectionState.AWAITING_VERDICT

  page.update(html=ACCEPTED_HTML)
  await observer.current_cycle

  submission = channel.submissions[0]
  assert submission.code == 'def simpleArraySum(ar):\n    return sum(ar)'
  assert submission.language == 'python3'
  assert submission.problem_slug == 'simple-array-sum'
  assert submission.problem_title == 'Simple Array Sum'
  assert submission.source_url == PROBLEM_URL
  assert submission.timestamp.endswith('Z')
  assert notifications == [
    ('success', 'Solution synced to GitHub! https://github.com/octo/solutions/blob/main/hackerrank/algorithms/simple-array-sum.py'),
  ]
  assert observer.state is DetectionState.IDLE
  assert page.subscription_count == 0
  assert observer.last_response.ok is True


@pytest.mark.asyncio
async def test_code_snapshot_survives_editor_disappearing():
  page = make_page()
  channel = RecordingChannel()
  observer = make_observer(page, channel)

  observer.on_submit()
  await wait_until(lambda: page.subscription_count > 0)
  page.update(html=ACCEPTED_HTML, clear_editor=True)
  await observer.current_cycle

  assert channel.submissions[0].code.startswith('def simpleArraySum')


@pytest.mark.asyncio
async def test_rejected_verdict_is_not_synced():
  page = make_page()
  channel = RecordingChannel()
  observer = make_observer(page, channel)

  observer.on_submit()
  await wait_until(lambda: page.subscription_count > 0)
  page.update(html=REJECTED_HTML)
  await observer.current_cycle

  assert channel.submissions == []
  assert observer.state is DetectionState.IDLE


@pytest.mark.asyncio
async def test_pending_text_keeps_waiting_until_final_verdict():
  page = make_page()
  channel = RecordingChannel()
  observer = make_observer(page, channel)

  observer.on_submit()
  await wait_until(lambda: page.subscription_count > 0)
  page.update(html=PENDING_HTML)
  await asyncio.sleep(0.05)
  assert observer.state is DetectionState.AWAITING_VERDICT
  assert channel.submissions == []

  page.update(html=ACCEPTED_HTML)
  await observer.current_cycle

  assert len(channel.submissions) == 1


@pytest.mark.asyncio
async def test_rapid_changes_are_debounced_to_the_last_one():
  page = make_page()
  channel = RecordingChannel()
  observer = make_observer(page, channel, debounce_seconds=0.05)

  observer.on_submit()
  await wait_until(lambda: page.subscription_count > 0)
  page.update(html=REJECTED_HTML)
  page.update(html=PENDING_HTML)
  page.update(html=ACCEPTED_HTML)
  await observer.current_cycle

  assert len(channel.submissions) == 1


@pytest.mark.asyncio
async def test_unrelated_markup_does_not_trigger_evaluation():
  page = make_page()
  channel = RecordingChannel()
  observer = make_observer(page, channel, timeout_seconds=0.1)

  observer.on_submit()
  await wait_until(lambda: page.subscription_count > 0)
  page.update(html='<p>Congratulations</p>')
  await observer.current_cycle

  assert channel.submissions == []


@pytest.mark.asyncio
async def test_timeout_returns_to_idle_and_detaches():
  page = make_page()
  channel = RecordingChannel()
  notifications = []
  observer = make_observer(page, channel, timeout_seconds=0.05, notify=lambda *args: notifications.append(args))

  observer.on_submit()
  await observer.current_cycle

  assert observer.state is DetectionState.IDLE
  assert page.subscription_count == 0

  page.update(html=ACCEPTED_HTML)
  await asyncio.sleep(0.05)
  assert channel.submissions == []
  assert notifications == []


@pytest.mark.asyncio
async def test_submit_while_cycle_active_is_ignored():
  page = make_page()
  observer = make_observer(page, RecordingChannel())

  assert observer.on_submit() is True
  assert observer.on_submit() is False

  await observer.close()
  assert observer.state is DetectionState.IDLE
  assert page.subscription_count == 0


@pytest.mark.asyncio
async def test_failed_extraction_does_not_consume_dedup_slot():
  submitted_at = datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)
  page = RenderedPage(PROBLEM_URL, '')
  channel = RecordingChannel()
  notifications = []
  observer = make_observer(page, channel, notify=lambda message, level: notifications.append((level, message)))

  async def run_once() -> None:
    observer.on_submit(submitted_at)
    await wait_until(lambda: page.subscription_count > 0)
    page.update(html=ACCEPTED_HTML)
    await observer.current_cycle

  await run_once()
  assert channel.submissions == []
  assert notifications[-1][0] == 'error'
  assert notifications[-1][1].startswith('Error: Could not extract code')

  page.update(editor_value='print(sum(ar))')
  await run_once()
  assert [submission.code for submission in channel.submissions] == ['print(sum(ar))']

  await run_once()
  assert len(channel.submissions) == 1


@pytest.mark.asyncio
async def test_sync_failure_is_reported():
  page = make_page()
  channel = RecordingChannel(SyncResponse(ok=False, error='Invalid GitHub token.', error_type='credential_invalid'))
  notifications = []
  observer = make_observer(page, channel, notify=lambda message, level: notifications.append((level, message)))

  observer.on_submit()
  await wait_until(lambda: page.subscription_count > 0)
  page.update(html=ACCEPTED_HTML)
  await observer.current_cycle

  assert notifications == [('error', 'Sync failed: Invalid GitHub token.')]


def _submission_api(details: list[dict], *, created_at: int | None = None, listing_status: int = 200):
  calls = {'listing': 0, 'detail': 0}
  created = created_at if created_at is not None else int(time.time())

  def handler(request: httpx.Request) -> httpx.Response:
    assert request.url.path.startswith('/rest/contests/master/challenges/simple-array-sum/submissions/')
    if request.url.path.endswith('/submissions/'):
      calls['listing'] += 1
      if listing_status != 200:
        return httpx.Response(listing_status, json={'message': 'nope'})
      return httpx.Response(200, json={'models': [{'id': 42, 'status': 'Processing', 'created_at': created}]})
    detail = details[min(calls['detail'], len(details) - 1)]
    calls['detail'] += 1
    return httpx.Response(200, json={'model': {'id': 42, 'created_at': created, **detail}})

  client = HackerRankClient('session', 'csrf', base_url=HR_URL, transport=httpx.MockTransport(handler))
  return client, calls


ACCEPTED_DETAIL = {
  'status': 'Accepted',
  'code': 'def simpleArraySum(ar):\n    return sum(ar)\n',
  'language': 'python3',
  'name': 'Simple Array Sum',
  'challenge_slug': 'simple-array-sum',
  'track': {'slug': 'algorithms', 'name': 'Algorithms'},
}


@pytest.mark.asyncio
async def test_api_verdict_uses_record_fields():
  page = make_page(editor_value=None)
  channel = RecordingChannel()
  client, calls = _submission_api([ACCEPTED_DETAIL])
  observer = make_observer(page, channel, client=client)

  observer.on_submit()
  await observer.current_cycle

  submission = channel.submissions[0]
  assert submission.category == 'algorithms'
  assert submission.code == 'def simpleArraySum(ar):\n    return sum(ar)'
  assert submission.problem_title == 'Simple Array Sum'
  assert calls == {'listing': 1, 'detail': 1}
  assert page.subscription_count == 0


@pytest.mark.asyncio
async def test_api_pending_record_is_fetched_once_more():
  page = make_page()
  channel = RecordingChannel()
  client, calls = _submission_api([{**ACCEPTED_DETAIL, 'status': 'Processing'}, ACCEPTED_DETAIL])
  observer = make_observer(page, channel, client=client)

  observer.on_submit()
  await observer.current_cycle

  assert calls['detail'] == 2
  assert len(channel.submissions) == 1


@pytest.mark.asyncio
async def test_api_rejected_record_is_not_synced():
  page = make_page()
  channel = RecordingChannel()
  client, _ = _submission_api([{**ACCEPTED_DETAIL, 'status': 'Wrong Answer'}])
  observer = make_observer(page, channel, client=client)

  observer.on_submit()
  await observer.current_cycle

  assert channel.submissions == []
  assert observer.state is DetectionState.IDLE


@pytest.mark.asyncio
async def test_api_failure_falls_back_to_verdict_already_on_page():
  page = make_page()
  page.update(html=ACCEPTED_HTML)
  channel = RecordingChannel()
  client, calls = _submission_api([ACCEPTED_DETAIL], listing_status=403)
  observer = make_observer(page, channel, client=client)

  observer.on_submit()
  await observer.current_cycle

  assert calls == {'listing': 1, 'detail': 0}
  assert len(channel.submissions) == 1
  assert channel.submissions[0].code.startswith('def simpleArraySum')


@pytest.mark.asyncio
async def test_stale_api_record_falls_back_to_page():
  page = make_page()
  channel = RecordingChannel()
  client, calls = _submission_api([ACCEPTED_DETAIL], created_at=int(time.time()) - 3600)
  observer = make_observer(page, channel, client=client)

  observer.on_submit()
  await wait_until(lambda: page.subscription_count > 0)
  assert calls['detail'] == 0

  page.update(html=REJECTED_HTML)
  await observer.current_cycle

  assert channel.submissions == []
