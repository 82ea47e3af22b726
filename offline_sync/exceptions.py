# offline_sync/exceptions.py
#
#
#######################################################################################################################
#
# Functions:
from typing import Any, Dict, Optional


class SyncError(Exception):
    """Base exception for offline_sync errors."""
    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.details = details or {}
        self.cause = cause


class TransientNetworkError(SyncError):
    """Raised for network, timeout or retryable server issues (408/429/5xx)."""
    def __init__(self, message: str, *, status_code: Optional[int] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.status_code = status_code


class RemoteRejection(SyncError):
    """Raised when the backend refuses a request (validation, constraint, not found). Never retried automatically."""
    def __init__(self, status_code: int, message: str, response_data: Optional[Dict[str, Any]] = None, **kwargs):
        super().__init__(f"Remote rejected request ({status_code}): {message}", **kwargs)
        self.status_code = status_code
        self.response_data = response_data or {}


class AuthenticationError(RemoteRejection):
    """Raised for authentication/authorization failures."""
    pass


class PersistenceError(SyncError):
    """Raised (or returned as a warning) when the durable store cannot be read or written."""
    pass

#
# End of offline_sync/exceptions.py
########################################################################################################################
