from __future__ import annotations

import base64
import hashlib
import json
from typing import Any

import httpx
import pytest

from hackpush.schemas import SyncConfig
from hackpush.services.github import GitHubStore
from hackpush.services.history import HistoryLedger
from hackpush.services.storage import ConfigStore, JsonStore
from hackpush.services.sync import SyncCoordinator

GITHUB_URL = 'https://github.test'
VALID_TOKEN = 'ghp_valid_token_123456'


class FakeGitHub:
  """In-memory GitHub contents API with real sha compare-and-swap rules."""

  def __init__(self, tokens: set[str] | None = None, repos: set[str] | None = None) -> None:
    self.tokens = tokens if tokens is not None else {VALID_TOKEN}
    self.repos = repos if repos is not None else {'octo/solutions'}
    self.files: dict[tuple[str, str, str], dict[str, Any]] = {}
    self.requests: list[httpx.Request] = []

  def transport(self) -> httpx.MockTransport:
    return httpx.MockTransport(self.handle)

  def store(self, token: str = VALID_TOKEN) -> GitHubStore:
    return GitHubStore(token, base_url=GITHUB_URL, transport=self.transport())

  def content(self, repo: str, branch: str, path: str) -> str:
    return base64.b64decode(self.files[(repo, branch, path)]['content']).decode('utf-8')

  def handle(self, request: httpx.Request) -> httpx.Response:
    self.requests.append(request)
    token = request.headers.get('Authorization', '').removeprefix('token ')
    if token not in self.tokens:
      return httpx.Response(401, json={'message': 'Bad credentials'})

    parts = [part for part in request.url.path.split('/') if part]
    if parts == ['user']:
      return httpx.Response(200, json={'login': 'octo'})
    if len(parts) < 3 or parts[0] != 'repos':
      return httpx.Response(404, json={'message': 'Not Found'})

    repo = f'{parts[1]}/{parts[2]}'
    if repo not in self.repos:
      return httpx.Response(404, json={'message': 'Not Found'})
    if len(parts) == 3:
      return httpx.Response(200, json={'full_name': repo, 'name': parts[2], 'default_branch': 'main'})

    path = '/'.join(parts[4:])
    if request.method == 'GET':
      key = (repo, request.url.params.get('ref', 'main'), path)
      if key not in self.files:
        return httpx.Response(404, json={'message': 'Not Found'})
      return httpx.Response(200, json={'path': path, 'sha': self.files[key]['sha']})

    body = json.loads(request.content)
    key = (repo, body['branch'], path)
    existing = self.files.get(key)
    if existing and 'sha' not in body:
      return httpx.Response(422, json={'message': 'Invalid request.\n\n"sha" wasn\'t supplied.'})
    if existing and body['sha'] != existing['sha']:
      return httpx.Response(409, json={'message': f'{path} does not match {body["sha"]}'})
    if not existing and 'sha' in body:
      return httpx.Response(409, json={'message': f'{path} does not exist'})

    sha = hashlib.sha1(f'{body["content"]}{len(self.files)}{body["message"]}'.encode()).hexdigest()
    self.files[key] = {'sha': sha, 'content': body['content'], 'message': body['message']}
    return httpx.Response(
      200 if existing else 201,
      json={
        'content': {'path': path, 'sha': sha, 'html_url': f'https://github.com/{repo}/blob/{body["branch"]}/{path}'},
        'commit': {'sha': hashlib.sha1(sha.encode()).hexdigest()},
      },
    )


@pytest.fixture
def fake_github() -> FakeGitHub:
  return FakeGitHub()


@pytest.fixture
def json_store(tmp_path) -> JsonStore:
  return JsonStore(tmp_path / 'state.json')


@pytest.fixture
def ledger(json_store) -> HistoryLedger:
  return HistoryLedger(json_store)


@pytest.fixture
def config() -> SyncConfig:
  return SyncConfig(credential=VALID_TOKEN, repository='octo/solutions')


@pytest.fixture
def config_store(json_store, config) -> ConfigStore:
  store = ConfigStore(json_store)
  store.save(config)
  return store


@pytest.fixture
def coordinator(ledger, fake_github) -> SyncCoordinator:
  return SyncCoordinator(ledger, store_factory=fake_github.store)
