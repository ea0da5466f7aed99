"""
Login tokens and Arkacdn-backed sessions.

Flow:
1. A client asks for a login token (TokenManager.create_token). Tokens live
   for TOKEN_TTL_SECONDS and a username has at most one live token.
2. The client exchanges the token together with its IP (SessionRegistrar).
   The session record {ip, username, createdAt, tokenId} is uploaded to
   Arkacdn and the returned file id is remembered locally.
3. Later the client re-validates with username + IP (SessionValidator). The
   stored record is fetched from Arkacdn and its IP compared to the one
   presented.
"""

import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import requests

from arkacdn_client import ArkacdnClient, CredentialHolder, parse_body
from backend_config import TOKEN_TTL_SECONDS, Config
from backend_errors import (
    InvalidArgument,
    InvalidOrExpiredToken,
    RemoteAuthFailure,
    RemoteFetchFailure,
    RemoteRecordNotReady,
    RemoteRegistrationFailure,
    RemoteResponseMalformed,
)
from json_store import JsonStore

logger = logging.getLogger(__name__)

# Validation outcomes
REASON_NO_SESSION = 'no_session'
REASON_IP_MISMATCH = 'ip_mismatch'

# Where Arkacdn may put the id of a freshly uploaded blob, in priority order
FILE_ID_PATHS = (
    ('data', 'fileId'),
    ('data', 'file_id'),
    ('data', 'id'),
    ('fileId',),
    ('file_id',),
    ('id',),
)


def to_iso(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


def from_iso(value: str) -> float:
    if not isinstance(value, str):
        raise ValueError(f"expected an ISO timestamp, got {value!r}")
    if value.endswith('Z'):
        value = value[:-1] + '+00:00'
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.timestamp()


def _is_nonempty_str(value: Any) -> bool:
    return isinstance(value, str) and len(value) > 0


# ============================================================================
# Data Models
# ============================================================================

@dataclass
class Token:
    """Short-lived login token bound to one username"""
    token_id: str
    username: str
    data: Dict[str, Any]
    created_at: float
    expires_at: float

    def to_record(self) -> Dict[str, Any]:
        """On-disk representation (keyed by token_id in the store)"""
        return {
            'username': self.username,
            'data': self.data,
            'createdAt': to_iso(self.created_at),
            'expiresAt': to_iso(self.expires_at),
        }

    @classmethod
    def from_record(cls, token_id: str, record: Dict[str, Any]) -> 'Token':
        return cls(
            token_id=token_id,
            username=record['username'],
            data=record.get('data') or {},
            created_at=from_iso(record['createdAt']),
            expires_at=from_iso(record['expiresAt']),
        )

    def to_dict(self) -> Dict[str, Any]:
        result = {'id': self.token_id}
        result.update(self.to_record())
        return result


@dataclass
class RegistrationResult:
    """Outcome of a successful session registration"""
    file_id: str
    session: Dict[str, Any]
    verified: bool
    remote_meta: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'fileId': self.file_id,
            'session': self.session,
            'verified': self.verified,
            'arkacdn': self.remote_meta,
        }


@dataclass
class ValidationResult:
    """Outcome of a session validation"""
    allowed: bool
    reason: Optional[str] = None
    file_id: Optional[str] = None
    session: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {'allowed': self.allowed}
        if self.reason is not None:
            result['reason'] = self.reason
        if self.file_id is not None:
            result['fileId'] = self.file_id
        if self.session is not None:
            result['session'] = self.session
        return result


# ============================================================================
# Remote response helpers
# ============================================================================

def extract_file_id(body: Any) -> Optional[str]:
    """Pick the blob id out of an upload response"""
    if not isinstance(body, dict):
        return None
    for path in FILE_ID_PATHS:
        value = body
        for key in path:
            if not isinstance(value, dict):
                value = None
                break
            value = value.get(key)
        if value:
            return str(value)
    return None


def find_session_payload(body: Any, max_depth: int = 3) -> Optional[Dict[str, Any]]:
    """
    Locate the stored session record inside a readback response.

    Arkacdn wraps blob content in one or two `data` envelopes and may keep
    it as a JSON string, so each level is decoded first. The innermost level
    carrying an `ip` wins; envelope fields never shadow the stored record.
    """
    levels = []
    for _ in range(max_depth + 1):
        if isinstance(body, str):
            try:
                body = json.loads(body)
            except ValueError:
                break
        if not isinstance(body, dict):
            break
        levels.append(body)
        body = body.get('data')

    for level in reversed(levels):
        if 'ip' in level:
            return level
    return None


def describe_error(body: Any, status_code: int) -> str:
    """Human readable error text from a failed remote response"""
    if isinstance(body, dict):
        message = body.get('message') or body.get('error')
        if message:
            return str(message)
        return json.dumps(body)
    if body:
        return str(body)
    return f"status {status_code}"


# ============================================================================
# Token Lifecycle
# ============================================================================

class TokenManager:
    """Creates, resolves and deletes login tokens"""

    def __init__(self, store: JsonStore, ttl_seconds: int = TOKEN_TTL_SECONDS,
                 clock: Callable[[], float] = time.time):
        self.store = store
        self.ttl_seconds = ttl_seconds
        self.clock = clock

    def create_token(self, username: str, data: Optional[Dict[str, Any]] = None) -> str:
        """
        Create a token for username and return its id.

        Any token previously issued to the same username is removed first.
        """
        if not _is_nonempty_str(username):
            raise InvalidArgument("username (string) is required to create a token")

        now = self.clock()
        token = Token(
            token_id=str(uuid.uuid4()),
            username=username,
            data=data or {},
            created_at=now,
            expires_at=now + self.ttl_seconds,
        )

        def _replace(tokens: Dict[str, Any]) -> int:
            stale = [tid for tid, rec in tokens.items()
                     if isinstance(rec, dict) and rec.get('username') == username]
            for tid in stale:
                del tokens[tid]
            tokens[token.token_id] = token.to_record()
            return len(stale)

        replaced = self.store.update(_replace)
        if replaced:
            logger.info(f"Replaced {replaced} previous token(s) for {username}")
        return token.token_id

    def get_token(self, token_id: str) -> Optional[Token]:
        """
        Resolve a token id.

        Side effect: an expired token is deleted from the store by this call
        (lazy expiry; nothing else sweeps tokens). A token is valid while
        now < expires_at.
        """
        if not _is_nonempty_str(token_id):
            return None
        record = self.store.get(token_id)
        if not record:
            return None

        try:
            token = Token.from_record(token_id, record)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Dropping unreadable token {token_id}: {e}")
            self.store.delete(token_id)
            return None

        if self.clock() >= token.expires_at:
            self.store.delete(token_id)
            logger.info(f"Token for {token.username} expired")
            return None
        return token

    def delete_token(self, token_id: str) -> bool:
        if not _is_nonempty_str(token_id):
            return False
        return self.store.delete(token_id)


# ============================================================================
# Session Registration
# ============================================================================

class SessionRegistrar:
    """Turns a valid login token into a remotely stored session"""

    def __init__(self, tokens: TokenManager, client: ArkacdnClient,
                 registry: JsonStore, clock: Callable[[], float] = time.time):
        self.tokens = tokens
        self.client = client
        self.registry = registry
        self.clock = clock

    def register_session(self, token_id: str, ip: str) -> RegistrationResult:
        if not _is_nonempty_str(token_id):
            raise InvalidArgument("token id (string) is required")
        if not _is_nonempty_str(ip):
            raise InvalidArgument("ip (string) is required")

        token = self.tokens.get_token(token_id)
        if token is None:
            raise InvalidOrExpiredToken("Invalid or expired token")

        session = {
            'ip': ip,
            'username': token.username,
            'createdAt': to_iso(self.clock()),
            'tokenId': token_id,
        }

        if not self.client.has_credentials:
            raise RemoteAuthFailure(
                "ARKACDN_TOKEN or ARKACDN_REFRESH_TOKEN must be configured")

        # Best effort; a real auth problem surfaces on upload
        if not self.client.attempt_refresh():
            logger.debug("Pre-upload Arkacdn refresh did not produce a new token")

        payload = {
            'data': json.dumps(session),
            'filename': f"{token.username}-session.json",
            'description': f"Session for {token.username}",
        }

        response = self._upload(payload)
        if response.status_code == 401:
            logger.warning(f"Arkacdn rejected upload for {token.username}, refreshing token")
            if not self.client.attempt_refresh():
                raise RemoteAuthFailure(
                    "Arkacdn unauthorized and refresh failed: "
                    f"{describe_error(parse_body(response), response.status_code)}")
            response = self._upload(payload)

        body = parse_body(response)
        if not response.ok:
            raise RemoteRegistrationFailure(
                f"Arkacdn registration failed: {describe_error(body, response.status_code)}")

        file_id = extract_file_id(body)
        if not file_id:
            raise RemoteResponseMalformed(
                f"Arkacdn response missing fileId; response={json.dumps(body)}")

        self.registry.put(file_id, {'username': token.username, 'tokenId': token_id})
        logger.info(f"Registered session {file_id} for {token.username}")

        return RegistrationResult(
            file_id=file_id,
            session=session,
            verified=self._verify(file_id, ip),
            remote_meta={'status': response.status_code, 'body': body},
        )

    def _upload(self, payload: Dict[str, Any]) -> requests.Response:
        try:
            return self.client.upload_plain(payload)
        except requests.RequestException as e:
            raise RemoteRegistrationFailure(f"Arkacdn registration failed: {e}") from e

    def _verify(self, file_id: str, ip: str) -> bool:
        """Read the blob back and check the stored ip. Never raises."""
        try:
            remote = parse_body(self.client.fetch(file_id))
        except requests.RequestException as e:
            logger.warning(f"Could not verify remote session content for {file_id}: {e}")
            return False

        stored = find_session_payload(remote)
        if stored is None or not stored.get('ip'):
            logger.warning(f"Remote session {file_id} did not include ip field")
            return False
        if str(stored['ip']) != ip:
            logger.warning(f"Remote session {file_id} stored a different ip")
            return False
        return True


# ============================================================================
# Session Validation
# ============================================================================

class SessionValidator:
    """Checks a username + ip against the session stored in Arkacdn"""

    def __init__(self, client: ArkacdnClient, registry: JsonStore):
        self.client = client
        self.registry = registry

    def find_file_ids(self, username: str) -> List[str]:
        """Registered file ids for username, oldest registration first"""
        return [file_id for file_id, _ in self.registry.scan(
            lambda _, rec: isinstance(rec, dict) and rec.get('username') == username)]

    def get_session_for_username(self, username: str, ip: str) -> ValidationResult:
        """
        Validate the session registered for username from ip.

        When several sessions are registered for the same user the first one
        in registration order is checked. A record that Arkacdn no longer
        has (404) is dropped from the local registry.
        """
        if not self.client.attempt_refresh():
            raise RemoteAuthFailure("Failed to refresh Arkacdn token")

        if not _is_nonempty_str(username):
            raise InvalidArgument("username (non-empty string) is required")
        if not _is_nonempty_str(ip):
            raise InvalidArgument("ip (non-empty string) is required")

        file_ids = self.find_file_ids(username)
        if not file_ids:
            return ValidationResult(allowed=False, reason=REASON_NO_SESSION)
        file_id = file_ids[0]

        try:
            response = self.client.fetch_json(file_id)
        except requests.RequestException as e:
            raise RemoteFetchFailure(f"Arkacdn fetch failed: {e}") from e

        if response.status_code == 404:
            self.registry.delete(file_id)
            logger.info(f"Session {file_id} for {username} is gone remotely, unregistered")
            return ValidationResult(allowed=False, reason=REASON_NO_SESSION)
        if response.status_code == 400:
            raise RemoteRecordNotReady(
                f"No session found for username {username}. Maybe it hasn't uploaded yet?")
        if not response.ok:
            raise RemoteFetchFailure(f"Arkacdn fetch failed: status {response.status_code}")

        session = find_session_payload(parse_body(response))
        if session is None:
            raise RemoteResponseMalformed(f"Arkacdn session {file_id} has no ip field")

        logger.info(f"Session ip for {username}: {session.get('ip')}, provided: {ip}")
        if session.get('ip') == ip:
            return ValidationResult(allowed=True, file_id=file_id, session=session)
        return ValidationResult(allowed=False, reason=REASON_IP_MISMATCH)


# ============================================================================
# Facade
# ============================================================================

class SessionManager:
    """Wires tokens, the session registry and the Arkacdn client together"""

    def __init__(self, client: ArkacdnClient, token_store: JsonStore,
                 registry: JsonStore, ttl_seconds: int = TOKEN_TTL_SECONDS,
                 clock: Callable[[], float] = time.time):
        self.client = client
        self.registry = registry
        self.tokens = TokenManager(token_store, ttl_seconds=ttl_seconds, clock=clock)
        self.registrar = SessionRegistrar(self.tokens, client, registry, clock=clock)
        self.validator = SessionValidator(client, registry)

    @classmethod
    def from_config(cls, config: Config, http: requests.Session = None,
                    clock: Callable[[], float] = time.time) -> 'SessionManager':
        client = ArkacdnClient(
            config.arkacdn_url,
            credentials=CredentialHolder(config.arkacdn_token),
            refresh_token=config.arkacdn_refresh_token,
            timeout=config.arkacdn_timeout,
            http=http,
        )
        return cls(
            client,
            JsonStore(config.tokens_path),
            JsonStore(config.registered_sessions_path),
            ttl_seconds=config.token_ttl_seconds,
            clock=clock,
        )

    def create_token(self, username: str, data: Optional[Dict[str, Any]] = None) -> str:
        return self.tokens.create_token(username, data)

    def get_token(self, token_id: str) -> Optional[Token]:
        """Resolve a token; deletes it if expired (see TokenManager.get_token)"""
        return self.tokens.get_token(token_id)

    def delete_token(self, token_id: str) -> bool:
        return self.tokens.delete_token(token_id)

    def register_session(self, token_id: str, ip: str) -> RegistrationResult:
        return self.registrar.register_session(token_id, ip)

    def get_session_for_username(self, username: str, ip: str) -> ValidationResult:
        return self.validator.get_session_for_username(username, ip)

    def unregister_session_locally(self, file_id: str) -> bool:
        return self.registry.delete(file_id)
