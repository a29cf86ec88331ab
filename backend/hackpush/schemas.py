from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

DEFAULT_BRANCH = 'main'
DEFAULT_PATH_TEMPLATE = 'hackerrank/{category}/{filename}'

FRACTION_PATTERN = re.compile(r'(?<=:\d{2})\.(\d+)')


def _pad_fraction(match: re.Match[str]) -> str:
  return '.' + match.group(1)[:6].ljust(6, '0')


def parse_timestamp(value: str) -> datetime:
  """Parse an ISO-8601 timestamp. A trailing `Z` and fractions of any length are accepted; naive values are UTC."""
  # Older interpreters only take fractions of exactly three or six digits.
  normalized = FRACTION_PATTERN.sub(_pad_fraction, value.strip().replace('Z', '+00:00'), count=1)
  parsed = datetime.fromisoformat(normalized)
  if parsed.tzinfo is None:
    parsed = parsed.replace(tzinfo=timezone.utc)
  return parsed


class CamelModel(BaseModel):
  model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ExtractedSubmission(CamelModel):
  model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

  code: str = Field(min_length=1)
  language: str
  problem_title: str
  problem_slug: str
  category: str = 'misc'
  timestamp: str
  source_url: str = ''

  @field_validator('timestamp')
  @classmethod
  def timestamp_is_iso(cls, value: str) -> str:
    parse_timestamp(value)
    return value


class FileTarget(CamelModel):
  path: str
  branch: str


class RemoteReference(CamelModel):
  html_url: Optional[str] = None
  path: str
  branch: str
  revision: Optional[str] = None
  commit_sha: Optional[str] = None


class RepositoryInfo(CamelModel):
  reachable: bool
  canonical_name: str
  default_branch: str


class HistoryRecord(CamelModel):
  problem_slug: str
  problem_title: str
  language: str
  category: str
  timestamp: str
  source_url: str = ''
  remote_url: Optional[str] = None
  path: str

  @field_validator('timestamp')
  @classmethod
  def timestamp_is_iso(cls, value: str) -> str:
    parse_timestamp(value)
    return value


class SyncConfig(CamelModel):
  credential: Optional[str] = None
  repository: Optional[str] = None
  branch: str = DEFAULT_BRANCH
  path_template: str = DEFAULT_PATH_TEMPLATE


class SyncConfigPayload(CamelModel):
  credential: Optional[str] = None
  repository: Optional[str] = Field(default=None, pattern=r'^[\w.\-]+/[\w.\-]+$')
  branch: Optional[str] = None
  path_template: Optional[str] = None


class SyncConfigView(CamelModel):
  configured: bool
  credential_hint: Optional[str] = None
  repository: Optional[str] = None
  branch: str
  path_template: str


class SyncStep(BaseModel):
  step: str
  status: Literal['info', 'success', 'error']
  detail: Optional[str] = None


class SyncResponse(CamelModel):
  ok: bool
  steps: list[SyncStep] = Field(default_factory=list)
  reference: Optional[RemoteReference] = None
  error: Optional[str] = None
  error_type: Optional[str] = None


class CredentialPayload(BaseModel):
  token: str = Field(min_length=1)


class CredentialStatus(BaseModel):
  valid: bool
  error: Optional[str] = None


class ConnectionStatus(CamelModel):
  connected: bool
  repo: Optional[str] = None
  branch: Optional[str] = None
  submission_count: int = 0
  error: Optional[str] = None
