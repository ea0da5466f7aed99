"""
Service configuration loaded from environment variables (.env supported).
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

DEFAULT_ARKACDN_URL = 'https://arkacdn.cloudycoding.com/api'
DEFAULT_RPC_URL = 'https://rpc.api.moonbase.moonbeam.network'
DEFAULT_DATA_DIR = 'backend'
DEFAULT_ARTIFACT_PATH = os.path.join(
    'artifacts', 'contracts', 'PlayerContract.sol', 'PlayerData.json')

TOKEN_TTL_SECONDS = 3 * 60


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, '')
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, '')
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")


def _env_optional(name: str) -> Optional[str]:
    # Empty strings count as unset
    return os.getenv(name) or None


@dataclass
class Config:
    """Runtime configuration for the backend service"""
    arkacdn_url: str = DEFAULT_ARKACDN_URL
    arkacdn_token: Optional[str] = None
    arkacdn_refresh_token: Optional[str] = None
    arkacdn_timeout: float = 30.0

    data_dir: str = DEFAULT_DATA_DIR
    token_ttl_seconds: int = TOKEN_TTL_SECONDS

    rpc_url: str = DEFAULT_RPC_URL
    private_key: Optional[str] = None
    artifact_path: str = DEFAULT_ARTIFACT_PATH

    port: int = 3000
    log_level: str = 'INFO'

    @property
    def tokens_path(self) -> str:
        return os.path.join(self.data_dir, 'tokens.json')

    @property
    def registered_sessions_path(self) -> str:
        return os.path.join(self.data_dir, 'registeredSessions.json')

    @property
    def user_contracts_path(self) -> str:
        return os.path.join(self.data_dir, 'userContracts.json')

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> 'Config':
        """
        Build configuration from the process environment.

        Loads a .env file first (without overriding variables that are
        already set).
        """
        load_dotenv(dotenv_path)
        return cls(
            arkacdn_url=os.getenv('ARKACDN_URL', DEFAULT_ARKACDN_URL),
            arkacdn_token=_env_optional('ARKACDN_TOKEN'),
            arkacdn_refresh_token=_env_optional('ARKACDN_REFRESH_TOKEN'),
            arkacdn_timeout=_env_float('ARKACDN_TIMEOUT', 30.0),
            data_dir=os.getenv('DATA_DIR', DEFAULT_DATA_DIR),
            token_ttl_seconds=_env_int('TOKEN_TTL_SECONDS', TOKEN_TTL_SECONDS),
            rpc_url=os.getenv('RPC_URL', DEFAULT_RPC_URL),
            private_key=_env_optional('PRIVATE_KEY'),
            artifact_path=os.getenv('ARTIFACT_PATH', DEFAULT_ARTIFACT_PATH),
            port=_env_int('PORT', 3000),
            log_level=os.getenv('LOG_LEVEL', 'INFO').upper(),
        )
