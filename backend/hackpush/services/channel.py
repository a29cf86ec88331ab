from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from typing import Any

import httpx
from pydantic import ValidationError

from ..schemas import ExtractedSubmission, RemoteReference, SyncResponse, SyncStep
from .errors import HackPushError
from .storage import ConfigStore
from .sync import SyncCoordinator

SYNC_SERVICE_URL = os.getenv('HACKPUSH_SERVICE_URL', 'http://127.0.0.1:8000')

logger = logging.getLogger(__name__)


class SyncChannel(ABC):
  """Request/response link from the detector to the sync surface, one request at a time."""

  def __init__(self) -> None:
    self._pending = False

  @property
  def pending(self) -> bool:
    return self._pending

  async def request(self, submission: ExtractedSubmission) -> SyncResponse:
    if self._pending:
      logger.info('Sync request for %s dropped; another request is outstanding.', submission.problem_slug)
      return SyncResponse(ok=False, error='Another sync request is outstanding.', error_type='sync_in_progress')
    self._pending = True
    try:
      return await self._send(submission)
    finally:
      self._pending = False

  @abstractmethod
  async def _send(self, submission: ExtractedSubmission) -> SyncResponse: ...


async def run_sync(coordinator: SyncCoordinator, config_store: ConfigStore, submission: ExtractedSubmission) -> SyncResponse:
  steps: list[dict[str, Any]] = []
  try:
    reference = await coordinator.sync(submission, config_store.load(), steps)
  except HackPushError as exc:
    return SyncResponse(ok=False, steps=[SyncStep(**step) for step in steps], error=str(exc), error_type=exc.error_type)
  except Exception as exc:  # noqa: BLE001
    logger.exception('Unexpected error while syncing %s', submission.problem_slug)
    return SyncResponse(ok=False, steps=[SyncStep(**step) for step in steps], error=f'Unexpected error while syncing: {exc}', error_type='error')
  return SyncResponse(ok=True, steps=[SyncStep(**step) for step in steps], reference=reference)


class LocalSyncChannel(SyncChannel):
  def __init__(self, coordinator: SyncCoordinator, config_store: ConfigStore) -> None:
    super().__init__()
    self.coordinator = coordinator
    self.config_store = config_store

  async def _send(self, submission: ExtractedSubmission) -> SyncResponse:
    return await run_sync(self.coordinator, self.config_store, submission)


class HttpSyncChannel(SyncChannel):
  def __init__(
    self,
    base_url: str | None = None,
    *,
    timeout: float = 30.0,
    transport: httpx.AsyncBaseTransport | None = None,
  ) -> None:
    super().__init__()
    self.base_url = (base_url or SYNC_SERVICE_URL).rstrip('/')
    self.timeout = timeout
    self._transport = transport

  async def _send(self, submission: ExtractedSubmission) -> SyncResponse:
    try:
      async with httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self._transport) as client:
        response = await client.post('/api/sync', json=submission.model_dump(by_alias=True))
      response.raise_for_status()
    except httpx.HTTPStatusError as exc:
      return SyncResponse(ok=False, error=f'Sync service answered with status {exc.response.status_code}.', error_type='network_error')
    except httpx.RequestError as exc:
      logger.error('Error connecting to sync service: %s', exc)
      return SyncResponse(ok=False, error='Error connecting to sync service.', error_type='network_error')

    try:
      return SyncResponse.model_validate(response.json())
    except (ValueError, ValidationError) as exc:
      logger.error('Sync service sent an unreadable reply: %s', exc)
      return SyncResponse(ok=False, error='Sync service sent an unreadable reply.', error_type='network_error')


def reference_summary(reference: RemoteReference | None) -> str:
  if reference is None:
    return ''
  return reference.html_url or reference.path
