from __future__ import annotations

import logging
import re
from typing import Any, Callable

from ..schemas import (
  ConnectionStatus,
  ExtractedSubmission,
  FileTarget,
  HistoryRecord,
  RemoteReference,
  SyncConfig,
)
from .errors import ConfigInvalid, ConfigMissing, CredentialInvalid, HackPushError, SyncInProgress
from .github import GitHubStore, VersionedStore
from .history import HistoryLedger
from .languages import comment_style, file_extension

logger = logging.getLogger(__name__)

REPOSITORY_PATTERN = re.compile(r'^[\w.\-]+/[\w.\-]+$')
PROVENANCE_MARKER = 'Auto-synced by HackPush'

StoreFactory = Callable[[str], VersionedStore]


def sanitize_segment(value: str) -> str:
  return re.sub(r'[^a-z0-9]+', '-', value.lower()).strip('-')


def _sanitize_filename(filename: str) -> str:
  stem, dot, extension = filename.rpartition('.')
  if not dot or not stem:
    return sanitize_segment(filename)
  return f'{sanitize_segment(stem)}.{sanitize_segment(extension)}'


def generate_path(
  template: str,
  *,
  category: str = '',
  filename: str = '',
  slug: str = '',
  language: str = '',
) -> str:
  path = (
    template
    .replace('{category}', category or '')
    .replace('{filename}', _sanitize_filename(filename) if filename else '')
    .replace('{slug}', sanitize_segment(slug) if slug else '')
    .replace('{language}', language or '')
  )
  path = re.sub(r'/+', '/', path)
  return path.strip('/')


def resolve_target(extracted: ExtractedSubmission, config: SyncConfig) -> FileTarget:
  filename = f'{extracted.problem_slug}.{file_extension(extracted.language)}'
  path = generate_path(
    config.path_template,
    category=extracted.category,
    filename=filename,
    slug=extracted.problem_slug,
    language=extracted.language,
  )
  return FileTarget(path=path, branch=config.branch)


def format_file_content(code: str, *, problem_title: str, language: str, timestamp: str, url: str) -> str:
  fields = [
    f'Problem: {problem_title}',
    f'Language: {language}',
    f'Submitted: {timestamp}',
    f'HackerRank URL: {url}',
    PROVENANCE_MARKER,
  ]
  style = comment_style(language)

  if style == 'docstring':
    header = '"""\n' + '\n'.join(fields) + '\n"""'
  elif style == 'block':
    header = '/*\n' + '\n'.join(f' * {line}' for line in fields) + '\n */'
  elif style == 'ruby':
    header = '=begin\n' + '\n'.join(f' {line}' for line in fields) + '\n=end'
  else:
    prefix = '-- ' if style == 'dash' else '# '
    header = '\n'.join(prefix + line for line in fields)

  return f'{header}\n\n{code}'


def commit_message(extracted: ExtractedSubmission) -> str:
  return f'Add solution for {extracted.problem_title} ({extracted.language})'


def split_repository(repository: str | None) -> tuple[str, str]:
  value = (repository or '').strip()
  if not REPOSITORY_PATTERN.match(value):
    raise ConfigInvalid('Invalid repository format. Use format: owner/repo')
  owner, repo = value.split('/', 1)
  return owner, repo


class SyncCoordinator:
  def __init__(self, ledger: HistoryLedger, store_factory: StoreFactory = GitHubStore) -> None:
    self.ledger = ledger
    self.store_factory = store_factory
    self._busy = False

  @property
  def busy(self) -> bool:
    return self._busy

  async def sync(
    self,
    extracted: ExtractedSubmission,
    config: SyncConfig,
    steps: list[dict[str, Any]] | None = None,
  ) -> RemoteReference:
    def add_step(step: str, status: str, detail: str | None = None) -> None:
      if steps is not None:
        steps.append({'step': step, 'status': status, 'detail': detail})

    if self._busy:
      add_step('start', 'error', 'Another sync is still running.')
      raise SyncInProgress('A sync is already in progress; dropping this request.')

    self._busy = True
    try:
      return await self._sync(extracted, config, add_step)
    except HackPushError as exc:
      logger.warning('Sync of %s (%s) failed: %s', extracted.problem_slug, extracted.language, exc)
      raise
    finally:
      self._busy = False

  async def _sync(
    self,
    extracted: ExtractedSubmission,
    config: SyncConfig,
    add_step: Callable[..., None],
  ) -> RemoteReference:
    if not config.credential or not config.repository:
      add_step('validate-config', 'error', 'GitHub token or repository missing.')
      raise ConfigMissing('GitHub not configured. Please set up your token and repository in options.')
    try:
      owner, repo = split_repository(config.repository)
    except ConfigInvalid as exc:
      add_step('validate-config', 'error', str(exc))
      raise
    add_step('validate-config', 'success', f'Syncing to {owner}/{repo}.')

    store = self.store_factory(config.credential)
    if not await store.validate_credential():
      add_step('validate-credential', 'error', 'GitHub rejected the token.')
      raise CredentialInvalid('Invalid GitHub token. Please update your token in options.')
    add_step('validate-credential', 'success', 'GitHub token accepted.')

    target = resolve_target(extracted, config)
    add_step('resolve-path', 'success', f'{target.path} on {target.branch}')

    revision = await store.get_current_revision(owner, repo, target.path, target.branch)
    add_step('fetch-revision', 'info', f'Updating revision {revision}.' if revision else 'Creating a new file.')

    content = format_file_content(
      extracted.code,
      problem_title=extracted.problem_title,
      language=extracted.language,
      timestamp=extracted.timestamp,
      url=extracted.source_url,
    )
    reference = await store.create_or_update(
      owner,
      repo,
      target.path,
      content,
      commit_message(extracted),
      target.branch,
      revision,
    )
    add_step('write', 'success', reference.html_url or target.path)
    logger.info('Synced %s (%s) to %s/%s:%s', extracted.problem_slug, extracted.language, owner, repo, target.path)

    recorded = self.ledger.append(
      HistoryRecord(
        problem_slug=extracted.problem_slug,
        problem_title=extracted.problem_title,
        language=extracted.language,
        category=extracted.category,
        timestamp=extracted.timestamp,
        source_url=extracted.source_url,
        remote_url=reference.html_url,
        path=target.path,
      )
    )
    add_step('record-history', 'success' if recorded else 'info', None if recorded else 'Already recorded within the dedup window.')
    return reference

  async def validate_credential(self, token: str) -> bool:
    return await self.store_factory(token).validate_credential()

  async def test_connection(self, config: SyncConfig) -> ConnectionStatus:
    if not config.credential or not config.repository:
      return ConnectionStatus(connected=False, error='Not configured')
    try:
      owner, repo = split_repository(config.repository)
    except ConfigInvalid:
      return ConnectionStatus(connected=False, error='Invalid repository format')

    store = self.store_factory(config.credential)
    if not await store.validate_credential():
      return ConnectionStatus(connected=False, error='Invalid token')
    try:
      info = await store.test_repository(owner, repo)
    except HackPushError as exc:
      return ConnectionStatus(connected=False, error=str(exc))

    return ConnectionStatus(
      connected=info.reachable,
      repo=info.canonical_name,
      branch=info.default_branch,
      submission_count=self.ledger.count(),
    )
