"""
Error types for the OG Protocol backend.

Every error carries the HTTP status the service layer maps it to.
"""


class BackendError(Exception):
    """Base class for all backend failures surfaced to callers"""
    status_code = 500

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class InvalidArgument(BackendError):
    """Bad input shape (missing or non-string values)"""
    status_code = 400


class InvalidOrExpiredToken(BackendError):
    """Login token unknown or past its expiry"""
    status_code = 401


class PersistenceFailure(BackendError):
    """Local JSON store could not be written"""
    status_code = 500


# ============================================================================
# Remote store (Arkacdn)
# ============================================================================

class RemoteError(BackendError):
    """Base class for remote store failures"""
    status_code = 502


class RemoteAuthFailure(RemoteError):
    """Credential refresh exhausted or impossible"""


class RemoteRegistrationFailure(RemoteError):
    """Upload of a session record was rejected"""


class RemoteFetchFailure(RemoteError):
    """Readback of a session record failed"""


class RemoteRecordNotReady(RemoteError):
    """Remote store reports the record as not yet available (HTTP 400)"""


class RemoteResponseMalformed(RemoteError):
    """Remote response body did not have the expected shape"""


# ============================================================================
# On-chain contracts
# ============================================================================

class UserNotFound(BackendError):
    status_code = 404


class UserAlreadyExists(BackendError):
    status_code = 409


class ContractConfigError(BackendError):
    """Signer, RPC or compiled artifact missing"""
    status_code = 500


class ContractDeploymentFailure(BackendError):
    status_code = 500
