from __future__ import annotations

import logging
import os
from functools import lru_cache
from typing import Annotated, Literal

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware

from .schemas import (
  ConnectionStatus,
  CredentialPayload,
  CredentialStatus,
  ExtractedSubmission,
  HistoryRecord,
  SyncConfigPayload,
  SyncConfigView,
  SyncResponse,
  parse_timestamp,
)
from .services.channel import run_sync
from .services.errors import HackPushError
from .services.history import HistoryLedger
from .services.storage import ConfigStore, JsonStore
from .services.sync import SyncCoordinator

logging.basicConfig(level=os.getenv('HACKPUSH_LOG_LEVEL', 'INFO').upper())

app = FastAPI(title='HackPush Sync API', version='0.1.0')
logger = logging.getLogger(__name__)


def get_allowed_origins() -> list[str]:
  origins_env = os.getenv('FRONTEND_ORIGINS')
  if origins_env:
    return [origin.strip() for origin in origins_env.split(',') if origin.strip()]
  return ['http://localhost:5173']


ALLOWED_ORIGINS = get_allowed_origins()

app.add_middleware(
  CORSMiddleware,
  allow_origins=ALLOWED_ORIGINS,
  allow_credentials=True,
  allow_methods=['*'],
  allow_headers=['*'],
)


@lru_cache(maxsize=1)
def get_store() -> JsonStore:
  return JsonStore()


def get_config_store(store: Annotated[JsonStore, Depends(get_store)]) -> ConfigStore:
  return ConfigStore(store)


def get_ledger(store: Annotated[JsonStore, Depends(get_store)]) -> HistoryLedger:
  return HistoryLedger(store)


@lru_cache(maxsize=1)
def _coordinator_for(store_path: str) -> SyncCoordinator:
  return SyncCoordinator(HistoryLedger(JsonStore(store_path)))


def get_coordinator(store: Annotated[JsonStore, Depends(get_store)]) -> SyncCoordinator:
  # One coordinator per state file, so its in-flight flag is shared across requests.
  return _coordinator_for(str(store.path))


def _mask(credential: str | None) -> str | None:
  if not credential:
    return None
  return f'{credential[:4]}…{credential[-4:]}' if len(credential) > 12 else '…'


@app.get('/health', tags=['Health'])
async def health_check() -> dict[str, str]:
  return {'status': 'ok'}


@app.get('/api/config', response_model=SyncConfigView, tags=['Config'])
async def get_config(config_store: Annotated[ConfigStore, Depends(get_config_store)]) -> SyncConfigView:
  config = config_store.load()
  return SyncConfigView(
    configured=bool(config.credential and config.repository),
    credential_hint=_mask(config.credential),
    repository=config.repository,
    branch=config.branch,
    path_template=config.path_template,
  )


@app.put('/api/config', response_model=SyncConfigView, tags=['Config'])
async def update_config(
  payload: SyncConfigPayload,
  config_store: Annotated[ConfigStore, Depends(get_config_store)],
) -> SyncConfigView:
  config_store.update(**payload.model_dump())
  return await get_config(config_store)


@app.post('/api/credential/validate', response_model=CredentialStatus, tags=['Config'])
async def validate_credential(
  payload: CredentialPayload,
  coordinator: Annotated[SyncCoordinator, Depends(get_coordinator)],
) -> CredentialStatus:
  try:
    return CredentialStatus(valid=await coordinator.validate_credential(payload.token))
  except HackPushError as exc:
    return CredentialStatus(valid=False, error=str(exc))


@app.get('/api/connection', response_model=ConnectionStatus, tags=['Config'])
async def test_connection(
  config_store: Annotated[ConfigStore, Depends(get_config_store)],
  coordinator: Annotated[SyncCoordinator, Depends(get_coordinator)],
) -> ConnectionStatus:
  try:
    return await coordinator.test_connection(config_store.load())
  except HackPushError as exc:
    return ConnectionStatus(connected=False, error=str(exc))


@app.post('/api/sync', response_model=SyncResponse, tags=['Sync'])
async def sync_submission(
  payload: ExtractedSubmission,
  config_store: Annotated[ConfigStore, Depends(get_config_store)],
  coordinator: Annotated[SyncCoordinator, Depends(get_coordinator)],
) -> SyncResponse:
  return await run_sync(coordinator, config_store, payload)


@app.get('/api/history', response_model=list[HistoryRecord], tags=['History'])
async def get_history(
  ledger: Annotated[HistoryLedger, Depends(get_ledger)],
  order: Annotated[Literal['arrival', 'desc'], Query()] = 'arrival',
) -> list[HistoryRecord]:
  records = ledger.list()
  if order == 'desc':
    try:
      records.sort(key=lambda record: parse_timestamp(record.timestamp), reverse=True)
    except ValueError as exc:
      raise HTTPException(status_code=500, detail='History holds an unreadable timestamp.') from exc
  return records


@app.delete('/api/history', status_code=200, tags=['History'])
async def clear_history(ledger: Annotated[HistoryLedger, Depends(get_ledger)]) -> dict[str, str]:
  ledger.clear()
  return {'status': 'ok'}
