from __future__ import annotations

import logging
import os
from typing import Any

import httpx

HACKERRANK_BASE_URL = os.getenv('HACKERRANK_BASE_URL', 'https://www.hackerrank.com')

USER_AGENT = os.getenv(
  'HACKERRANK_USER_AGENT',
  'Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36'
)

PENDING_STATUSES = {'processing', 'queued', 'running', 'compiling', 'in queue', 'submitting'}

logger = logging.getLogger(__name__)


class HackerRankAPIError(RuntimeError):
  """Raised when the HackerRank REST API cannot be reached or returns invalid payloads."""


def _stringify(value: Any) -> str | None:
  if value is None:
    return None
  if isinstance(value, str):
    stripped = value.strip()
    return stripped if stripped else value
  return str(value)


def normalize_submission(entry: dict[str, Any]) -> dict[str, Any]:
  """Flatten a submission model into `{id, status, statusCode, code, language, name, track, createdAt}`."""
  challenge = entry.get('challenge') if isinstance(entry.get('challenge'), dict) else {}
  track = entry.get('track')
  if isinstance(track, dict):
    track = track.get('slug') or track.get('name')
  status_code = entry.get('statusCode', entry.get('status_code'))
  created_at = entry.get('created_at', entry.get('createdAt'))
  try:
    created_at = int(created_at) if created_at is not None else None
  except (TypeError, ValueError):
    created_at = None

  return {
    'id': entry.get('id'),
    'status': _stringify(entry.get('status')) or '',
    'statusCode': status_code,
    'code': entry.get('code'),
    'language': _stringify(entry.get('language')),
    'name': _stringify(entry.get('name') or challenge.get('name')),
    'slug': _stringify(entry.get('challenge_slug') or entry.get('slug') or challenge.get('slug')),
    'track': _stringify(track),
    'createdAt': created_at,
  }


def is_pending(record: dict[str, Any]) -> bool:
  return (record.get('status') or '').strip().lower() in PENDING_STATUSES


class HackerRankClient:
  """Reads submissions of the signed-in user through the site's REST endpoints."""

  def __init__(
    self,
    session_cookie: str | None = None,
    csrf_token: str | None = None,
    *,
    base_url: str | None = None,
    contest: str = 'master',
    timeout: float = 15.0,
    transport: httpx.AsyncBaseTransport | None = None,
  ) -> None:
    self.session_cookie = (session_cookie or os.getenv('HACKERRANK_SESSION') or '').strip() or None
    self.csrf_token = (csrf_token or os.getenv('HACKERRANK_CSRF_TOKEN') or '').strip() or None
    self.base_url = (base_url or HACKERRANK_BASE_URL).rstrip('/')
    self.contest = contest
    self.timeout = timeout
    self._transport = transport

  def _build_auth_headers(self, referer: str | None = None) -> dict[str, str]:
    headers = {
      'User-Agent': USER_AGENT,
      'Accept': 'application/json',
      'Referer': referer or self.base_url,
      'X-Requested-With': 'XMLHttpRequest',
    }
    if self.csrf_token:
      headers['X-CSRF-Token'] = self.csrf_token
    if self.session_cookie:
      headers['Cookie'] = f'_hrank_session={self.session_cookie}'
    return headers

  def _submissions_url(self, slug: str) -> str:
    return f'{self.base_url}/rest/contests/{self.contest}/challenges/{slug}/submissions/'

  async def _get_json(self, url: str, slug: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
    headers = self._build_auth_headers(referer=f'{self.base_url}/challenges/{slug}/problem')
    try:
      async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
        response = await client.get(url, params=params, headers=headers)
    except httpx.RequestError as exc:
      raise HackerRankAPIError(f'Could not reach HackerRank ({exc.__class__.__name__}).') from exc

    try:
      response.raise_for_status()
    except httpx.HTTPStatusError as exc:
      status_code = exc.response.status_code
      detail_message = f'Fetching submissions failed with status {status_code}.'
      if status_code in {401, 403}:
        detail_message = (
          f'HackerRank rejected the submissions request (HTTP {status_code}). '
          'Sign in again so the session cookie is refreshed.'
        )
      elif status_code == 404:
        detail_message = f'HackerRank did not recognise the challenge slug "{slug}".'
      elif status_code == 429:
        detail_message = 'HackerRank rate-limited the submissions request (HTTP 429).'
      raise HackerRankAPIError(detail_message) from exc

    try:
      payload = response.json()
    except ValueError as exc:
      raise HackerRankAPIError('HackerRank returned an unexpected (non-JSON) response.') from exc
    if not isinstance(payload, dict):
      raise HackerRankAPIError('Unexpected response structure from HackerRank.')
    return payload

  async def fetch_recent_submissions(self, slug: str, limit: int = 10) -> list[dict[str, Any]]:
    normalized_slug = slug.strip()
    if not normalized_slug:
      raise HackerRankAPIError('Challenge slug is required to fetch submissions.')

    payload = await self._get_json(
      self._submissions_url(normalized_slug),
      normalized_slug,
      params={'offset': 0, 'limit': limit},
    )
    submissions = [normalize_submission(entry) for entry in payload.get('models') or [] if isinstance(entry, dict)]
    submissions = [entry for entry in submissions if entry['id'] is not None]
    # Newest first, whatever order the endpoint used.
    submissions.sort(key=lambda entry: entry['createdAt'] or 0, reverse=True)
    return submissions

  async def fetch_submission_detail(self, slug: str, submission_id: Any) -> dict[str, Any]:
    normalized_slug = slug.strip()
    payload = await self._get_json(f'{self._submissions_url(normalized_slug)}{submission_id}', normalized_slug)
    model = payload.get('model')
    if not isinstance(model, dict):
      raise HackerRankAPIError(f'Submission {submission_id} missing from HackerRank response.')
    return normalize_submission(model)
