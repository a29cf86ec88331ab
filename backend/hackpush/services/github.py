from __future__ import annotations

import base64
import logging
import os
from typing import Any, Protocol
from urllib.parse import quote

import httpx

from ..schemas import RemoteReference, RepositoryInfo
from .errors import CredentialInvalid, NetworkError, RemoteStoreError, RepositoryNotFound, WriteConflict

GITHUB_API_URL = os.getenv('HACKPUSH_GITHUB_API_URL', 'https://api.github.com')

logger = logging.getLogger(__name__)


class VersionedStore(Protocol):
  async def validate_credential(self) -> bool: ...

  async def get_current_revision(self, owner: str, repo: str, path: str, branch: str) -> str | None: ...

  async def create_or_update(
    self,
    owner: str,
    repo: str,
    path: str,
    content: str,
    message: str,
    branch: str,
    revision: str | None = None,
  ) -> RemoteReference: ...

  async def test_repository(self, owner: str, repo: str) -> RepositoryInfo: ...


def _error_message(response: httpx.Response) -> str:
  try:
    payload = response.json()
  except ValueError:
    return response.text[:200] or response.reason_phrase
  if isinstance(payload, dict) and payload.get('message'):
    return str(payload['message'])
  return response.reason_phrase


def _raise_for_store_status(response: httpx.Response, *, context: str) -> None:
  if response.is_success:
    return

  status_code = response.status_code
  message = f'{context} failed with status {status_code}: {_error_message(response)}'
  if status_code in {401, 403}:
    raise CredentialInvalid(message, status_code)
  if status_code == 404:
    raise RepositoryNotFound(message, status_code)
  if status_code == 409:
    raise WriteConflict(message, status_code)
  # GitHub answers 422 when an update omits the sha of the file it would replace.
  if status_code == 422 and 'sha' in message.lower():
    raise WriteConflict(message, status_code)
  raise RemoteStoreError(message, status_code)


class GitHubStore:
  """Versioned file store over the GitHub contents API."""

  def __init__(
    self,
    token: str,
    *,
    base_url: str | None = None,
    timeout: float = 15.0,
    transport: httpx.AsyncBaseTransport | None = None,
  ) -> None:
    self.token = token
    self.base_url = (base_url or GITHUB_API_URL).rstrip('/')
    self.timeout = timeout
    self._transport = transport

  def _headers(self, *, include_content_type: bool = False) -> dict[str, str]:
    headers = {
      'Authorization': f'token {self.token}',
      'Accept': 'application/vnd.github.v3+json',
    }
    if include_content_type:
      headers['Content-Type'] = 'application/json'
    return headers

  def _client(self) -> httpx.AsyncClient:
    return httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self._transport)

  async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
    try:
      async with self._client() as client:
        return await client.request(method, url, **kwargs)
    except httpx.RequestError as exc:
      raise NetworkError(f'Could not reach GitHub ({exc.__class__.__name__}).') from exc

  @staticmethod
  def _contents_url(owner: str, repo: str, path: str) -> str:
    return f'/repos/{owner}/{repo}/contents/{quote(path.strip("/"))}'

  async def validate_credential(self) -> bool:
    try:
      response = await self._request('GET', '/user', headers=self._headers())
    except NetworkError as exc:
      logger.error('Token validation error: %s', exc)
      return False
    return response.is_success

  async def get_current_revision(self, owner: str, repo: str, path: str, branch: str) -> str | None:
    response = await self._request(
      'GET',
      self._contents_url(owner, repo, path),
      params={'ref': branch},
      headers=self._headers(),
    )
    if response.status_code == 404:
      return None
    _raise_for_store_status(response, context=f'Reading {path}')

    payload = response.json()
    if isinstance(payload, list):
      raise RemoteStoreError(f'{path} is a directory in {owner}/{repo}.', response.status_code)
    return payload.get('sha')

  async def create_or_update(
    self,
    owner: str,
    repo: str,
    path: str,
    content: str,
    message: str,
    branch: str,
    revision: str | None = None,
  ) -> RemoteReference:
    body: dict[str, Any] = {
      'message': message,
      'content': base64.b64encode(content.encode('utf-8')).decode('ascii'),
      'branch': branch,
    }
    if revision:
      body['sha'] = revision

    response = await self._request(
      'PUT',
      self._contents_url(owner, repo, path),
      json=body,
      headers=self._headers(include_content_type=True),
    )
    _raise_for_store_status(response, context=f'Writing {path}')

    payload = response.json()
    content_info = payload.get('content') or {}
    commit_info = payload.get('commit') or {}
    return RemoteReference(
      html_url=content_info.get('html_url'),
      path=content_info.get('path') or path,
      branch=branch,
      revision=content_info.get('sha'),
      commit_sha=commit_info.get('sha'),
    )

  async def test_repository(self, owner: str, repo: str) -> RepositoryInfo:
    response = await self._request('GET', f'/repos/{owner}/{repo}', headers=self._headers())
    _raise_for_store_status(response, context=f'Repository lookup for {owner}/{repo}')

    payload = response.json()
    return RepositoryInfo(
      reachable=True,
      canonical_name=payload.get('full_name') or f'{owner}/{repo}',
      default_branch=payload.get('default_branch') or 'main',
    )
