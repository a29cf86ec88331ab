from __future__ import annotations


class HackPushError(RuntimeError):
  """Base class for failures the user-facing shell can act on."""

  error_type = 'error'


class ConfigMissing(HackPushError):
  """Raised when the GitHub token or repository has not been configured."""

  error_type = 'config_missing'


class ConfigInvalid(HackPushError):
  error_type = 'config_invalid'


class ExtractionFailed(HackPushError):
  """Raised when every extraction strategy for the submitted code came back empty."""

  error_type = 'extraction_failed'


class DetectionTimeout(HackPushError):
  error_type = 'detection_timeout'


class SyncInProgress(HackPushError):
  error_type = 'sync_in_progress'


class NetworkError(HackPushError):
  """Raised when a remote endpoint could not be reached at all."""

  error_type = 'network_error'


class RemoteStoreError(HackPushError):
  """Raised when the versioned store answers with an unexpected status."""

  error_type = 'remote_store_error'

  def __init__(self, message: str, status_code: int | None = None) -> None:
    super().__init__(message)
    self.status_code = status_code


class CredentialInvalid(RemoteStoreError):
  error_type = 'credential_invalid'


class RepositoryNotFound(RemoteStoreError):
  error_type = 'repository_not_found'


class WriteConflict(RemoteStoreError):
  """Raised when the revision supplied with a write does not match the stored one."""

  error_type = 'write_conflict'
