from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from ..schemas import DEFAULT_BRANCH, DEFAULT_PATH_TEMPLATE, SyncConfig

logger = logging.getLogger(__name__)

STATE_FILE = Path(os.getenv('HACKPUSH_STATE_FILE', Path.home() / '.hackpush' / 'state.json'))

CONFIG_KEY = 'config'


class JsonStore:
  """Small key-value file shared by the configuration and the history ledger."""

  def __init__(self, path: Path | str | None = None) -> None:
    self.path = Path(path) if path else STATE_FILE

  def _read(self) -> dict[str, Any]:
    if not self.path.exists():
      return {}
    try:
      data = json.loads(self.path.read_text(encoding='utf-8'))
    except ValueError:
      logger.warning('State file %s is not valid JSON; starting from an empty state.', self.path)
      return {}
    return data if isinstance(data, dict) else {}

  def _write(self, data: dict[str, Any]) -> None:
    self.path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = self.path.with_suffix(self.path.suffix + '.tmp')
    tmp_path.write_text(json.dumps(data, indent=2), encoding='utf-8')
    tmp_path.replace(self.path)

  def get(self, key: str, default: Any = None) -> Any:
    return self._read().get(key, default)

  def set(self, key: str, value: Any) -> None:
    data = self._read()
    data[key] = value
    self._write(data)

  def delete(self, key: str) -> None:
    data = self._read()
    if key in data:
      del data[key]
      self._write(data)

  def clear(self) -> None:
    self._write({})


def _env(name: str) -> str | None:
  return (os.getenv(name) or '').strip() or None


class ConfigStore:
  def __init__(self, store: JsonStore) -> None:
    self.store = store

  def _raw(self) -> dict[str, Any]:
    raw = self.store.get(CONFIG_KEY) or {}
    if not isinstance(raw, dict):
      logger.warning('Stored configuration is not an object; ignoring it.')
      return {}
    return raw

  def load(self) -> SyncConfig:
    raw = self._raw()
    try:
      stored = SyncConfig.model_validate(raw)
    except ValidationError:
      logger.warning('Ignoring malformed stored configuration.')
      stored = SyncConfig()

    # Stored values win; the environment fills whatever was never saved.
    return SyncConfig(
      credential=(stored.credential or '').strip() or _env('HACKPUSH_GITHUB_TOKEN'),
      repository=(stored.repository or '').strip() or _env('HACKPUSH_GITHUB_REPO'),
      branch=stored.branch if 'branch' in raw else (_env('HACKPUSH_BRANCH') or DEFAULT_BRANCH),
      path_template=(
        stored.path_template
        if raw.get('pathTemplate') or raw.get('path_template')
        else (_env('HACKPUSH_PATH_TEMPLATE') or DEFAULT_PATH_TEMPLATE)
      ),
    )

  def save(self, config: SyncConfig) -> None:
    self.store.set(CONFIG_KEY, config.model_dump(by_alias=True))

  def update(self, **changes: Any) -> SyncConfig:
    try:
      current = SyncConfig.model_validate(self._raw())
    except ValidationError:
      logger.warning('Replacing malformed stored configuration.')
      current = SyncConfig()
    values = {key: value for key, value in changes.items() if value is not None}
    if 'branch' in values:
      values['branch'] = values['branch'].strip() or DEFAULT_BRANCH
    if 'path_template' in values:
      values['path_template'] = values['path_template'].strip() or DEFAULT_PATH_TEMPLATE
    for key in ('credential', 'repository'):
      if key in values:
        values[key] = values[key].strip() or None
    updated = current.model_copy(update=values)
    self.save(updated)
    return updated
